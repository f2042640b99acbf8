import hashlib

import pytest
from eth_account import Account
from fastapi.testclient import TestClient

from app import app, get_exchange
from errors import OracleUnavailable, RecordNotFound
from exchange import ExchangeService
from wallet_auth import SignatureVerifier, sign_request_headers

NOW = 1_760_000_000


class MemoryStore:
    """Content-addressed dict; ``available`` toggles the health probe."""
    name = "memory"

    def __init__(self):
        self.blobs = {}
        self.available = True

    def connect(self):
        pass

    def is_available(self):
        return self.available

    def put(self, data):
        cid = "mem-" + hashlib.sha256(data).hexdigest()
        self.blobs[cid] = data
        return cid

    def get(self, cid):
        if cid not in self.blobs:
            raise RecordNotFound(f"No stored object at {cid}")
        return self.blobs[cid]


class FakeLedger:
    """In-memory permission registry with the same two read calls as LedgerClient."""

    def __init__(self):
        self.issuers = set()
        self.grants = set()
        self.fail = False
        self.permission_calls = 0

    def add_issuer(self, address):
        self.issuers.add(address.lower())

    def grant(self, patient, doctor):
        self.grants.add((patient.lower(), doctor.lower()))

    def revoke(self, patient, doctor):
        self.grants.discard((patient.lower(), doctor.lower()))

    def is_verified_issuer(self, address):
        self._check()
        return address.lower() in self.issuers

    def has_permission(self, patient_address, requester_address):
        self.permission_calls += 1
        self._check()
        return (patient_address.lower(), requester_address.lower()) in self.grants

    def _check(self):
        if self.fail:
            raise OracleUnavailable("connection refused")


@pytest.fixture
def doctor():
    return Account.create()


@pytest.fixture
def patient():
    return Account.create()


@pytest.fixture
def stranger():
    return Account.create()


@pytest.fixture
def sign():
    def _sign(account, action, timestamp=NOW):
        return sign_request_headers(account.key, action, timestamp=timestamp)
    return _sign


@pytest.fixture
def verifier():
    return SignatureVerifier(clock=lambda: NOW)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(doctor):
    ledger = FakeLedger()
    ledger.add_issuer(doctor.address)
    return ledger


@pytest.fixture
def exchange(store, ledger, verifier):
    return ExchangeService(store, ledger, verifier=verifier)


@pytest.fixture
def client(exchange):
    # no lifespan: the real store and ledger are never built
    app.dependency_overrides[get_exchange] = lambda: exchange
    yield TestClient(app)
    app.dependency_overrides.clear()
