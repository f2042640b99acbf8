from unittest.mock import MagicMock

import pytest

from errors import OracleUnavailable
from ledger import LedgerClient

REGISTRY = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def test_unconnected_client_is_unavailable(doctor, patient):
    client = LedgerClient(contract_address=REGISTRY)
    assert not client.is_available()
    with pytest.raises(OracleUnavailable):
        client.has_permission(patient.address, doctor.address)
    with pytest.raises(OracleUnavailable):
        client.is_verified_issuer(doctor.address)


@pytest.mark.parametrize("address", ["", "0x1234", "not-an-address"])
def test_connect_needs_a_contract_address(address):
    with pytest.raises(OracleUnavailable):
        LedgerClient(contract_address=address).connect()


def test_connect_builds_contract_without_network():
    client = LedgerClient(rpc_url="http://127.0.0.1:1", contract_address=REGISTRY.lower())
    client.connect()
    assert client._contract is not None
    assert client._contract.address == REGISTRY


def _stubbed(result=None, error=None):
    client = LedgerClient(contract_address=REGISTRY)
    client._contract = MagicMock()
    for fn in (client._contract.functions.accessPermissions, client._contract.functions.verifiedDoctors):
        if error is not None:
            fn.return_value.call.side_effect = error
        else:
            fn.return_value.call.return_value = result
    return client


def test_has_permission_passes_patient_then_doctor(doctor, patient):
    client = _stubbed(result=True)
    assert client.has_permission(patient.address.lower(), doctor.address.lower()) is True
    client._contract.functions.accessPermissions.assert_called_once_with(patient.address, doctor.address)


def test_is_verified_issuer(doctor):
    client = _stubbed(result=False)
    assert client.is_verified_issuer(doctor.address) is False
    client._contract.functions.verifiedDoctors.assert_called_once_with(doctor.address)


def test_call_failure_raises_oracle_unavailable(doctor, patient):
    client = _stubbed(error=ConnectionError("HTTPConnectionPool(host='rpc.internal', port=8545)"))
    with pytest.raises(OracleUnavailable) as exc:
        client.has_permission(patient.address, doctor.address)
    assert exc.value.message == "permission registry query failed"
    assert "rpc.internal" not in exc.value.message


def test_bad_address_argument_raises_oracle_unavailable(doctor):
    client = _stubbed(result=True)
    with pytest.raises(OracleUnavailable):
        client.has_permission("garbage", doctor.address)
