from datetime import datetime

from sqlalchemy import Column, Integer, String, LargeBinary, DateTime

from db import Base


class StoredBlob(Base):
    """
    One framed envelope, addressed by the digest of its bytes. The row holds
    ciphertext only; keys never reach this table.
    """
    __tablename__ = "stored_blobs"

    cid = Column(String, primary_key=True)
    data = Column(LargeBinary, nullable=False)
    size = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
