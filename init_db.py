from db import Base, make_engine
import models  # noqa: F401  registers tables on Base
from config import BLOB_DB_URL, DATA_DIR


def main():
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    print(f"Initializing blob store database at: {BLOB_DB_URL}")
    Base.metadata.create_all(make_engine(BLOB_DB_URL))
    print("Tables created: stored_blobs")


if __name__ == "__main__":
    main()
