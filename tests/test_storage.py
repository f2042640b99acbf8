import hashlib

import pytest
import requests

from errors import RecordNotFound, ServiceUnavailable
from storage import IpfsStore, SqlBlobStore, build_store


# ---------- sqlite backend ----------
@pytest.fixture
def sql_store(tmp_path):
    store = SqlBlobStore(f"sqlite:///{tmp_path / 'blobs.db'}")
    store.connect()
    return store


def test_sql_put_get(sql_store):
    cid = sql_store.put(b"framed envelope bytes")
    assert cid == "sha256-" + hashlib.sha256(b"framed envelope bytes").hexdigest()
    assert sql_store.get(cid) == b"framed envelope bytes"


def test_sql_put_is_idempotent(sql_store):
    assert sql_store.put(b"same") == sql_store.put(b"same")
    assert sql_store.get(SqlBlobStore.address_of(b"same")) == b"same"


def test_sql_missing_address(sql_store):
    with pytest.raises(RecordNotFound):
        sql_store.get("sha256-" + "0" * 64)


def test_sql_availability(sql_store, tmp_path):
    assert sql_store.is_available()
    assert not SqlBlobStore(f"sqlite:///{tmp_path / 'other.db'}").is_available()


def test_sql_not_connected():
    store = SqlBlobStore("sqlite://")
    with pytest.raises(ServiceUnavailable):
        store.put(b"x")
    with pytest.raises(ServiceUnavailable):
        store.get("sha256-00")


# ---------- ipfs backend ----------
class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b""):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload
        self.content = content

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """Answers the three RPC calls the store makes; records what was posted."""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.down = False

    def post(self, url, timeout=None, params=None, files=None):
        self.calls.append((url, params))
        if self.down:
            raise requests.ConnectionError("connection refused")
        if url.endswith("/api/v0/version"):
            return FakeResponse(payload={"Version": "0.29.0"})
        if url.endswith("/api/v0/add"):
            data = files["file"][1]
            cid = "Qm" + hashlib.sha256(data).hexdigest()[:44]
            self.objects[cid] = data
            return FakeResponse(payload={"Name": "record", "Hash": cid, "Size": str(len(data))})
        if url.endswith("/api/v0/cat"):
            cid = params["arg"]
            if cid not in self.objects:
                return FakeResponse(status_code=500, payload={"Message": "invalid path", "Code": 0})
            return FakeResponse(content=self.objects[cid])
        return FakeResponse(status_code=404)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def ipfs(session):
    store = IpfsStore(api_url="http://ipfs.local:5001/", session=session)
    store.connect()
    return store


def test_ipfs_add_then_cat(ipfs, session):
    cid = ipfs.put(b"\x00\x00\x00\x02{}ciphertext")
    assert cid.startswith("Qm")
    assert ipfs.get(cid) == b"\x00\x00\x00\x02{}ciphertext"
    url, params = session.calls[0]
    assert url == "http://ipfs.local:5001/api/v0/add"
    assert params == {"pin": "true"}


def test_ipfs_unknown_cid(ipfs):
    with pytest.raises(RecordNotFound):
        ipfs.get("QmDoesNotExist")


def test_ipfs_available(ipfs, session):
    assert ipfs.is_available()
    session.down = True
    assert not ipfs.is_available()


def test_ipfs_transport_failure(ipfs, session):
    session.down = True
    with pytest.raises(ServiceUnavailable):
        ipfs.put(b"data")
    with pytest.raises(ServiceUnavailable):
        ipfs.get("QmAnything")


def test_ipfs_add_error_response(ipfs, session):
    session.post = lambda url, **kw: FakeResponse(status_code=500)
    with pytest.raises(ServiceUnavailable):
        ipfs.put(b"data")


@pytest.mark.parametrize("status,payload", [
    (500, {"Message": "context deadline exceeded", "Code": 0, "Type": "error"}),
    (500, {"Message": "leveldb: closed", "Code": 0, "Type": "error"}),
    (500, None),
    (502, None),
])
def test_ipfs_node_failure_on_cat(ipfs, session, status, payload):
    session.post = lambda url, **kw: FakeResponse(status_code=status, payload=payload)
    with pytest.raises(ServiceUnavailable):
        ipfs.get("QmSomething")


@pytest.mark.parametrize("status,payload", [
    (500, {"Message": "merkledag: not found", "Code": 0, "Type": "error"}),
    (500, {"Message": "invalid path \"QmBad\": invalid cid", "Code": 0, "Type": "error"}),
    (400, None),
])
def test_ipfs_missing_object_on_cat(ipfs, session, status, payload):
    session.post = lambda url, **kw: FakeResponse(status_code=status, payload=payload)
    with pytest.raises(RecordNotFound):
        ipfs.get("QmSomething")


def test_ipfs_not_connected():
    store = IpfsStore(api_url="http://ipfs.local:5001")
    assert not store.is_available()
    with pytest.raises(ServiceUnavailable):
        store.put(b"data")


def test_build_store(tmp_path, monkeypatch):
    import config

    monkeypatch.setattr(config, "DATA_DIR", tmp_path / "data")
    assert isinstance(build_store("ipfs"), IpfsStore)
    assert isinstance(build_store("sqlite"), SqlBlobStore)
    assert (tmp_path / "data").is_dir()
    with pytest.raises(ValueError):
        build_store("s3")


def test_init_db_creates_blob_table(tmp_path, monkeypatch):
    import init_db
    from sqlalchemy import inspect

    from db import make_engine

    url = f"sqlite:///{tmp_path / 'data' / 'blobs.db'}"
    monkeypatch.setattr(init_db, "DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(init_db, "BLOB_DB_URL", url)
    init_db.main()
    assert "stored_blobs" in inspect(make_engine(url)).get_table_names()
