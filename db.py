from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Local content-addressed blob store -----------------------------------------
Base = declarative_base()


def make_engine(db_url: str):
    if db_url.startswith("sqlite"):
        return create_engine(db_url, connect_args={"check_same_thread": False})
    return create_engine(db_url)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)
