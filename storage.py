"""
Content-addressable stores for framed envelopes.

Both backends share one small lifecycle: ``connect()`` once at process
start, ``is_available()`` as a cheap probe, then ``put``/``get`` by content
address. Transport failures and timeouts raise ServiceUnavailable; an
address with nothing behind it raises RecordNotFound.
"""
import hashlib
import logging
from typing import Optional

import requests
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import config
from db import Base, make_engine, make_session_factory
from errors import RecordNotFound, ServiceUnavailable
from models import StoredBlob

log = logging.getLogger(__name__)

# Kubo answers most errors with HTTP 500; these messages mean the object is absent
_NOT_FOUND_HINTS = ("not found", "invalid path", "invalid cid", "no link named", "failed to resolve")


class BlobStore:
    name = "store"

    def connect(self) -> None:
        raise NotImplementedError

    def is_available(self) -> bool:
        raise NotImplementedError

    def put(self, data: bytes) -> str:
        raise NotImplementedError

    def get(self, cid: str) -> bytes:
        raise NotImplementedError


class IpfsStore(BlobStore):
    """Talks to a Kubo node over its HTTP RPC API."""
    name = "ipfs"

    def __init__(
        self,
        api_url: str = config.IPFS_API_URL,
        timeout: float = config.STORE_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    def connect(self) -> None:
        if self._session is None:
            self._session = requests.Session()
        log.info("IPFS client initialized for %s", self.api_url)

    def _post(self, path: str, **kwargs) -> requests.Response:
        if self._session is None:
            raise ServiceUnavailable("IPFS client not initialized")
        try:
            return self._session.post(f"{self.api_url}/api/v0/{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            log.error("IPFS %s failed: %s", path, e)
            raise ServiceUnavailable(f"IPFS request failed: {e}")

    def is_available(self) -> bool:
        try:
            return self._post("version").ok
        except ServiceUnavailable:
            return False

    def put(self, data: bytes) -> str:
        resp = self._post("add", params={"pin": "true"}, files={"file": ("record", data)})
        if not resp.ok:
            raise ServiceUnavailable(f"Failed to upload to IPFS: HTTP {resp.status_code}")
        try:
            cid = resp.json()["Hash"]
        except (ValueError, KeyError) as e:
            raise ServiceUnavailable(f"Unexpected IPFS add response: {e}")
        log.info("File uploaded to IPFS: %s (%d bytes)", cid, len(data))
        return cid

    def get(self, cid: str) -> bytes:
        resp = self._post("cat", params={"arg": cid})
        if not resp.ok:
            log.warning("IPFS cat %s returned HTTP %s", cid, resp.status_code)
            if _is_missing(resp):
                raise RecordNotFound(f"No stored object at {cid}")
            raise ServiceUnavailable(f"Failed to read from IPFS: HTTP {resp.status_code}")
        log.info("File downloaded from IPFS: %s", cid)
        return resp.content


def _is_missing(resp: requests.Response) -> bool:
    if resp.status_code in (400, 404):
        return True
    try:
        message = str(resp.json().get("Message", "")).lower()
    except (ValueError, AttributeError):
        return False
    return any(hint in message for hint in _NOT_FOUND_HINTS)


class SqlBlobStore(BlobStore):
    """Single-node store keyed by the SHA-256 of the stored bytes."""
    name = "sqlite"

    def __init__(self, db_url: str = config.BLOB_DB_URL):
        self.db_url = db_url
        self._engine = None
        self._sessions = None

    @staticmethod
    def address_of(data: bytes) -> str:
        return "sha256-" + hashlib.sha256(data).hexdigest()

    def connect(self) -> None:
        self._engine = make_engine(self.db_url)
        Base.metadata.create_all(self._engine)
        self._sessions = make_session_factory(self._engine)
        log.info("Blob store initialized at %s", self.db_url)

    def is_available(self) -> bool:
        if self._engine is None:
            return False
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            log.warning("blob store probe failed: %s", e)
            return False

    def put(self, data: bytes) -> str:
        cid = self.address_of(data)
        with self._session() as db:
            try:
                if db.get(StoredBlob, cid) is None:
                    db.add(StoredBlob(cid=cid, data=data, size=len(data)))
                    db.commit()
            except IntegrityError:
                # same bytes written concurrently; the address is already taken
                db.rollback()
            except SQLAlchemyError as e:
                raise ServiceUnavailable(f"Blob store write failed: {e}")
        log.info("Blob stored: %s (%d bytes)", cid, len(data))
        return cid

    def get(self, cid: str) -> bytes:
        with self._session() as db:
            try:
                row = db.get(StoredBlob, cid)
            except SQLAlchemyError as e:
                raise ServiceUnavailable(f"Blob store read failed: {e}")
            if row is None:
                raise RecordNotFound(f"No stored object at {cid}")
            return row.data

    def _session(self):
        if self._sessions is None:
            raise ServiceUnavailable("Blob store not connected")
        return self._sessions()


def build_store(backend: str = config.STORE_BACKEND) -> BlobStore:
    if backend == "ipfs":
        return IpfsStore()
    if backend == "sqlite":
        config.DATA_DIR.mkdir(parents=True, exist_ok=True)
        return SqlBlobStore()
    raise ValueError(f"Unknown STORE_BACKEND '{backend}' (expected 'ipfs' or 'sqlite')")
