"""Read-only access to each network's certificate contract and transaction log.

Clients are built per network name by ``ChainClientFactory`` and handed to
``ChainReader`` explicitly; nothing here keeps a "current" provider.
"""
import os
import json
import re
import time
import logging
import threading
from decimal import Decimal

import requests
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from web3 import Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    RequestTimedOut,
    TooManyRequests,
    TransactionNotFound,
    Web3RPCError,
)

from .errors import BadRequest, NotFound, UpstreamUnavailable
from .models import AcademicDetails, CertificateFields, CertificateTransaction, RevocationStatus

logger = logging.getLogger(__name__)

ABI_PATH = os.path.join(os.path.dirname(__file__), "abi", "certificate_contract.json")

with open(ABI_PATH, "r") as f:
    CONTRACT_ABI = json.load(f)

SET_CERTIFICATE_SIGNATURE = "setCertificate(string,string,string,string,string,string,string)"
REVOKE_CERTIFICATE_SIGNATURE = "revokeCertificate(string,string)"
CERTIFICATE_PARAM_TYPES = ["string"] * 7

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

TRANSIENT_ERRORS = (
    requests.exceptions.RequestException,
    ConnectionError,
    TimeoutError,
    ProviderConnectionError,
    TooManyRequests,
)
CALL_FAILURES = (ContractLogicError, BadFunctionCallOutput, DecodingError)

# JSON-RPC error codes providers use for "slow down" (Infura: -32005)
RATE_LIMIT_CODES = (-32005, 429)


def rpc_error_code(error):
    response = getattr(error, "rpc_response", None)
    if not isinstance(response, dict) or not isinstance(response.get("error"), dict):
        return None
    return response["error"].get("code")


def is_retryable_rpc_error(error):
    return isinstance(error, RequestTimedOut) or rpc_error_code(error) in RATE_LIMIT_CODES


def function_selector(signature):
    return bytes(Web3.keccak(text=signature)[:4])


SET_CERTIFICATE_SELECTOR = function_selector(SET_CERTIFICATE_SIGNATURE)
REVOKE_CERTIFICATE_SELECTOR = function_selector(REVOKE_CERTIFICATE_SIGNATURE)


def encode_set_certificate(certificate):
    """Call data for setCertificate, ready for the issuer's wallet to sign."""
    payload = SET_CERTIFICATE_SELECTOR + encode(CERTIFICATE_PARAM_TYPES, certificate.as_args())
    return "0x" + payload.hex()


def encode_revoke_certificate(student_id, reason):
    payload = REVOKE_CERTIFICATE_SELECTOR + encode(["string", "string"], [student_id, reason])
    return "0x" + payload.hex()


def checksum(address):
    try:
        return Web3.to_checksum_address(address)
    except (TypeError, ValueError) as e:
        raise BadRequest(f"Invalid address: {address}") from e


def _as_bytes(value):
    if value is None:
        return b""
    if isinstance(value, str):
        return Web3.to_bytes(hexstr=value) if value not in ("", "0x") else b""
    return bytes(value)


class ChainClientFactory:
    """Builds one Web3 client per configured network name."""

    def __init__(self, networks, timeout=10.0):
        self.networks = dict(networks)
        self.timeout = timeout
        self._clients = {}
        self._lock = threading.Lock()

    def rpc_url(self, network):
        try:
            return self.networks[network]
        except KeyError:
            raise BadRequest(f"Unknown network: {network}") from None

    def client(self, network):
        url = self.rpc_url(network)
        with self._lock:
            if network not in self._clients:
                provider = Web3.HTTPProvider(url, request_kwargs={"timeout": self.timeout})
                self._clients[network] = Web3(provider)
            return self._clients[network]


class ChainReader:
    def __init__(self, factory, reader_private_key=None, retries=2, backoff=0.5):
        self.factory = factory
        self.retries = max(0, int(retries))
        self.backoff = backoff
        self.reader_address = Account.from_key(reader_private_key).address if reader_private_key else None

    def _call(self, network, what, fn):
        attempts = self.retries + 1
        last = None
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except Web3RPCError as e:
                last = e
                if not is_retryable_rpc_error(e):
                    logger.warning("%s on %s returned an RPC error: %s", what, network, e)
                    break
                logger.warning("%s on %s was throttled (attempt %d/%d): %s", what, network, attempt, attempts, e)
            except TRANSIENT_ERRORS as e:
                last = e
                logger.warning("%s on %s failed (attempt %d/%d): %s", what, network, attempt, attempts, e)
            if attempt < attempts and self.backoff:
                time.sleep(self.backoff * attempt)
        raise UpstreamUnavailable(f"Ledger RPC for {network} is unavailable", network=network) from last

    def _contract(self, network, contract_address):
        w3 = self.factory.client(network)
        return w3.eth.contract(address=checksum(contract_address), abi=CONTRACT_ABI)

    def _read(self, network, contract_address, method, *args):
        contract = self._contract(network, contract_address)
        call_args = {"from": self.reader_address} if self.reader_address else {}
        fn = getattr(contract.functions, method)(*args)
        return self._call(network, method, lambda: fn.call(call_args))

    def get_balance(self, network, address) -> Decimal:
        """Balance of ``address`` on ``network``, in ether."""
        w3 = self.factory.client(network)
        wallet = checksum(address)
        wei = self._call(network, "get_balance", lambda: w3.eth.get_balance(wallet))
        return Decimal(Web3.from_wei(wei, "ether"))

    def decode_transaction(self, tx_hash, network) -> CertificateTransaction:
        """Recover the 7 issuance parameters from a mined setCertificate transaction.

        The result also names the contract the call went to and the account
        that sent it; reverted or still pending transactions are ``NotFound``.
        """
        if not tx_hash or not TX_HASH_RE.match(tx_hash):
            raise BadRequest("Invalid transaction hash")
        w3 = self.factory.client(network)

        def fetch(method):
            def run():
                try:
                    return method(tx_hash)
                except TransactionNotFound:
                    return None
            return run

        tx = self._call(network, "get_transaction", fetch(w3.eth.get_transaction))
        if not tx:
            raise NotFound("Transaction not found")

        data = _as_bytes(tx.get("input"))
        if len(data) < 4 or data[:4] != SET_CERTIFICATE_SELECTOR:
            raise NotFound("Transaction does not carry a certificate")
        try:
            params = decode(CERTIFICATE_PARAM_TYPES, data[4:])
        except (DecodingError, ValueError) as e:
            raise NotFound("Transaction does not carry a certificate") from e

        receipt = self._call(network, "get_transaction_receipt", fetch(w3.eth.get_transaction_receipt))
        if not receipt or receipt.get("status") != 1:
            raise NotFound("Transaction has not succeeded on chain")

        return CertificateTransaction(
            certificate=CertificateFields(*params),
            contract_address=tx.get("to") or "",
            sender=tx.get("from") or "",
        )

    def get_certificate_info(self, contract_address, student_id, network):
        try:
            result = self._read(network, contract_address, "getCertificateInfo", student_id)
        except CALL_FAILURES as e:
            raise NotFound(f"Certificate {student_id} not found") from e
        return result[0], result[1]

    def get_certificate_status(self, contract_address, student_id, network) -> RevocationStatus:
        try:
            result = self._read(network, contract_address, "getCertificateStatus", student_id)
        except CALL_FAILURES as e:
            raise NotFound(f"Certificate {student_id} not found") from e
        return RevocationStatus(is_revoked=bool(result[0]), revoked_at=int(result[1]), reason=result[2] or "")

    def get_full_certificate_info(self, contract_address, student_id, network) -> AcademicDetails:
        """Optional academic fields; contracts or certificates without them yield empty strings."""
        try:
            result = self._read(network, contract_address, "getFullCertificateInfo", student_id)
        except CALL_FAILURES as e:
            logger.info("No full certificate info for %s on %s: %s", student_id, network, e)
            return AcademicDetails()
        values = list(result)[-3:] if result else []
        if len(values) < 3:
            return AcademicDetails()
        return AcademicDetails(
            course=values[0] or "",
            certificate_type=values[1] or "",
            year_of_graduation=values[2] or "",
        )

    def list_certificates(self, contract_address, network):
        try:
            student_ids = self._read(network, contract_address, "getStudentIDs")
        except CALL_FAILURES as e:
            raise NotFound("Contract does not expose certificates") from e

        certificates = []
        for student_id in student_ids:
            document_hash, student_name = self.get_certificate_info(contract_address, student_id, network)
            status = self.get_certificate_status(contract_address, student_id, network)
            certificates.append({
                "studentID": student_id,
                "hash": document_hash,
                "name": student_name,
                "isRevoked": status.is_revoked,
                "revokedAt": status.revoked_at,
                "revocationReason": status.reason,
            })
        return certificates
