"""
Chain reader tests against stub Web3 clients (no network access)
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest
import requests
from eth_abi import encode
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3RPCError

from certtrust.chain import (
    REVOKE_CERTIFICATE_SELECTOR,
    SET_CERTIFICATE_SELECTOR,
    ChainClientFactory,
    ChainReader,
    encode_set_certificate,
)
from certtrust.errors import BadRequest, CertTrustError, NotFound, UpstreamUnavailable
from certtrust.models import CertificateFields

from conftest import CONTRACT, TX_HASH, WALLET

FIELDS = ["S-001", "9f86d081884c7d65", "Jane Doe", "inst-1", "Computer Science", "BSc", "2024"]


class StubCall:
    def __init__(self, fn, args):
        self.fn = fn
        self.args = args

    def call(self, tx=None):
        return self.fn(*self.args)


class StubFunctions:
    def __init__(self, methods):
        self._methods = methods

    def __getattr__(self, name):
        fn = self._methods[name]
        return lambda *args: StubCall(fn, args)


class StubEth:
    def __init__(self, transactions=None, balances=None, methods=None, receipts=None):
        self.transactions = transactions or {}
        self.receipts = receipts or {}
        self.balances = balances or {}
        self.methods = methods or {}
        self.contracts = []

    def get_transaction(self, tx_hash):
        tx = self.transactions.get(tx_hash)
        if isinstance(tx, Exception):
            raise tx
        if tx is None:
            raise TransactionNotFound(f"Transaction with hash {tx_hash} not found")
        return tx

    def get_transaction_receipt(self, tx_hash):
        if tx_hash not in self.transactions:
            raise TransactionNotFound(f"Transaction with hash {tx_hash} not found")
        receipt = self.receipts.get(tx_hash, {"status": 1})
        if receipt is None:
            raise TransactionNotFound(f"Transaction with hash {tx_hash} not yet mined")
        return receipt

    def get_balance(self, address):
        balance = self.balances[address.lower()]
        if isinstance(balance, Exception):
            raise balance
        return balance

    def contract(self, address, abi):
        self.contracts.append(address)
        return SimpleNamespace(functions=StubFunctions(self.methods))


class StubFactory:
    def __init__(self, eth):
        self.w3 = SimpleNamespace(eth=eth)

    def client(self, network):
        if network != "localhost":
            raise BadRequest(f"Unknown network: {network}")
        return self.w3


def make_reader(**eth_kwargs):
    eth = StubEth(**eth_kwargs)
    return ChainReader(StubFactory(eth), retries=2, backoff=0), eth


def issuance_input(fields=FIELDS, selector=SET_CERTIFICATE_SELECTOR):
    return "0x" + (selector + encode(["string"] * 7, fields)).hex()


def test_decode_transaction_returns_ordered_fields():
    reader, _ = make_reader(transactions={TX_HASH: {"input": issuance_input(), "to": CONTRACT, "from": WALLET}})
    tx = reader.decode_transaction(TX_HASH, "localhost")
    assert tx.certificate == CertificateFields(*FIELDS)
    assert tx.contract_address == CONTRACT
    assert tx.sender == WALLET


def test_decode_accepts_bytes_input():
    raw = SET_CERTIFICATE_SELECTOR + encode(["string"] * 7, FIELDS)
    reader, _ = make_reader(transactions={TX_HASH: {"input": raw}})
    assert reader.decode_transaction(TX_HASH, "localhost").certificate.student_name == "Jane Doe"


def test_encoded_call_data_is_what_decode_reads():
    reader, _ = make_reader(transactions={TX_HASH: {"input": encode_set_certificate(CertificateFields(*FIELDS))}})
    assert reader.decode_transaction(TX_HASH, "localhost").certificate.as_args() == FIELDS


def test_decode_missing_transaction_is_not_found():
    reader, _ = make_reader()
    with pytest.raises(NotFound):
        reader.decode_transaction(TX_HASH, "localhost")


def test_decode_other_method_is_not_found():
    """A plain transfer or a revoke call carries no certificate payload"""
    reader, _ = make_reader(transactions={
        TX_HASH: {"input": "0x"},
        "0x" + "cd" * 32: {"input": "0x" + (REVOKE_CERTIFICATE_SELECTOR + encode(["string", "string"], ["a", "b"])).hex()},
    })
    with pytest.raises(NotFound):
        reader.decode_transaction(TX_HASH, "localhost")
    with pytest.raises(NotFound):
        reader.decode_transaction("0x" + "cd" * 32, "localhost")


def test_decode_truncated_payload_is_not_found():
    reader, _ = make_reader(transactions={TX_HASH: {"input": "0x" + (SET_CERTIFICATE_SELECTOR + b"\x00" * 10).hex()}})
    with pytest.raises(NotFound):
        reader.decode_transaction(TX_HASH, "localhost")


def test_decode_malformed_hash_is_bad_request():
    reader, _ = make_reader()
    with pytest.raises(BadRequest):
        reader.decode_transaction("0x1234", "localhost")


def test_transient_failures_are_retried_then_reported():
    attempts = []

    def flaky(*args):
        attempts.append(1)
        raise requests.exceptions.ConnectionError("connection refused")

    reader, _ = make_reader(methods={"getCertificateStatus": flaky})
    with pytest.raises(UpstreamUnavailable) as exc:
        reader.get_certificate_status(CONTRACT, "S-001", "localhost")
    assert len(attempts) == 3
    assert exc.value.retryable
    assert exc.value.status_code == 503


def test_transient_failure_then_success():
    attempts = []

    def flaky(*args):
        attempts.append(1)
        if len(attempts) == 1:
            raise requests.exceptions.Timeout("read timed out")
        return [True, 1700000000, "Fraud"]

    reader, _ = make_reader(methods={"getCertificateStatus": flaky})
    status = reader.get_certificate_status(CONTRACT, "S-001", "localhost")
    assert status.is_revoked and status.revoked_at == 1700000000 and status.reason == "Fraud"


def test_status_of_active_certificate():
    reader, eth = make_reader(methods={"getCertificateStatus": lambda sid: [False, 0, ""]})
    status = reader.get_certificate_status(CONTRACT, "S-001", "localhost")
    assert not status.is_revoked
    assert eth.contracts == ["0x" + "12" * 20]


def test_full_info_missing_degrades_to_empty_strings():
    def reverts(sid):
        raise ContractLogicError("execution reverted")

    reader, _ = make_reader(methods={"getFullCertificateInfo": reverts})
    details = reader.get_full_certificate_info(CONTRACT, "S-001", "localhost")
    assert (details.course, details.certificate_type, details.year_of_graduation) == ("", "", "")


def test_full_info_reads_trailing_fields():
    reader, _ = make_reader(methods={
        "getFullCertificateInfo": lambda sid: ["hash", "Jane Doe", "inst-1", "Physics", "MSc", "2023"],
    })
    details = reader.get_full_certificate_info(CONTRACT, "S-001", "localhost")
    assert (details.course, details.certificate_type, details.year_of_graduation) == ("Physics", "MSc", "2023")


def test_get_balance_in_ether():
    reader, _ = make_reader(balances={WALLET: 2 * 10 ** 15})
    assert reader.get_balance("localhost", WALLET) == Decimal("0.002")


def test_list_certificates():
    reader, _ = make_reader(methods={
        "getStudentIDs": lambda: ["S-001", "S-002"],
        "getCertificateInfo": lambda sid: ["hash-" + sid, "Name " + sid],
        "getCertificateStatus": lambda sid: [sid == "S-002", 5 if sid == "S-002" else 0, ""],
    })
    certificates = reader.list_certificates(CONTRACT, "localhost")
    assert [c["studentID"] for c in certificates] == ["S-001", "S-002"]
    assert [c["isRevoked"] for c in certificates] == [False, True]
    assert certificates[0]["hash"] == "hash-S-001"


def test_factory_rejects_unknown_network():
    factory = ChainClientFactory({"localhost": "http://localhost:8545"}, timeout=5)
    assert factory.rpc_url("localhost") == "http://localhost:8545"
    with pytest.raises(BadRequest):
        factory.client("mainnet")


def test_decode_reverted_transaction_is_not_found():
    reader, _ = make_reader(transactions={TX_HASH: {"input": issuance_input()}}, receipts={TX_HASH: {"status": 0}})
    with pytest.raises(NotFound):
        reader.decode_transaction(TX_HASH, "localhost")


def test_decode_pending_transaction_is_not_found():
    reader, _ = make_reader(transactions={TX_HASH: {"input": issuance_input()}}, receipts={TX_HASH: None})
    with pytest.raises(NotFound):
        reader.decode_transaction(TX_HASH, "localhost")


def rpc_error(code, message):
    return Web3RPCError(message, rpc_response={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}})


def test_rate_limited_rpc_is_retried_then_reported():
    attempts = []

    def throttled(*args):
        attempts.append(1)
        raise rpc_error(-32005, "daily request count exceeded, request rate limited")

    reader, _ = make_reader(methods={"getCertificateStatus": throttled})
    with pytest.raises(UpstreamUnavailable) as exc:
        reader.get_certificate_status(CONTRACT, "S-001", "localhost")
    assert len(attempts) == 3
    assert exc.value.status_code == 503


def test_node_rpc_error_is_reported_without_retry():
    reader, _ = make_reader(balances={WALLET: rpc_error(-32000, "header not found")})
    with pytest.raises(CertTrustError) as exc:
        reader.get_balance("localhost", WALLET)
    assert isinstance(exc.value, UpstreamUnavailable)
    assert exc.value.to_dict()["network"] == "localhost"


def test_rpc_error_while_fetching_transaction_is_upstream_failure():
    reader, _ = make_reader(transactions={TX_HASH: rpc_error(-32603, "internal error")})
    with pytest.raises(UpstreamUnavailable):
        reader.decode_transaction(TX_HASH, "localhost")
