import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Wallet authentication
AUTH_NAMESPACE = os.getenv("AUTH_NAMESPACE", "SarawakMedChain")
AUTH_WINDOW_SECONDS = int(os.getenv("AUTH_WINDOW_SECONDS", "300"))

# Permission ledger (EVM JSON-RPC)
RPC_URL = os.getenv("RPC_URL", "http://127.0.0.1:8545")
CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS", "")
LEDGER_TIMEOUT_SECONDS = float(os.getenv("LEDGER_TIMEOUT_SECONDS", "10"))

# Content-addressable store
STORE_BACKEND = os.getenv("STORE_BACKEND", "ipfs")  # ipfs|sqlite
IPFS_API_URL = os.getenv("IPFS_API_URL", "http://127.0.0.1:5001")
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "30"))

# SQLite blob store location (only used by the sqlite backend)
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
BLOB_DB_PATH = DATA_DIR / "blobs.db"
BLOB_DB_URL = os.getenv("BLOB_DB_URL", f"sqlite:///{BLOB_DB_PATH.resolve()}")

# Upload limits
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
ALLOWED_CONTENT_TYPES = tuple(
    t.strip() for t in os.getenv("ALLOWED_CONTENT_TYPES", "application/pdf").split(",") if t.strip()
)

# HTTP
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "3001"))
API_BASE_URL = os.getenv("API_BASE_URL", f"http://localhost:{PORT}")
