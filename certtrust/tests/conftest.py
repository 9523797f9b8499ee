import io
import os
import sys
from decimal import Decimal

import pytest

# Add repository root to path to import the package without installing it
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

from certtrust.app import create_app
from certtrust.auth import make_token
from certtrust.config import Settings
from certtrust.errors import NotFound
from certtrust.models import AcademicDetails, CertificateFields, CertificateTransaction, RevocationStatus

WALLET = "0x" + "aa" * 20
OTHER_WALLET = "0x" + "bb" * 20
CONTRACT = "0x" + "12" * 20
TX_HASH = "0x" + "ab" * 32


class FakeChainReader:
    """In-memory stand-in for ChainReader, keyed the same way the contract is."""

    def __init__(self):
        self.balances = {}
        self.transactions = {}
        self.statuses = {}
        self.details = {}
        self.failing = set()
        self.calls = []

    def _maybe_fail(self, name):
        self.calls.append(name)
        if name in self.failing:
            raise RuntimeError(f"{name} exploded")

    def get_balance(self, network, address):
        self._maybe_fail("get_balance")
        return self.balances.get((network, address.lower()), Decimal("0"))

    def decode_transaction(self, tx_hash, network):
        self._maybe_fail("decode_transaction")
        try:
            tx = self.transactions[(network, tx_hash)]
        except KeyError:
            raise NotFound("Transaction not found") from None
        if isinstance(tx, CertificateFields):
            # Seeded by certificate alone: sent by the test institution to its contract
            tx = CertificateTransaction(tx, contract_address=CONTRACT, sender=WALLET)
        return tx

    def get_certificate_status(self, contract_address, student_id, network):
        self._maybe_fail("get_certificate_status")
        return self.statuses.get((contract_address.lower(), student_id), RevocationStatus())

    def get_full_certificate_info(self, contract_address, student_id, network):
        self._maybe_fail("get_full_certificate_info")
        return self.details.get((contract_address.lower(), student_id), AcademicDetails())

    def get_certificate_info(self, contract_address, student_id, network):
        self._maybe_fail("get_certificate_info")
        return ("", "")

    def list_certificates(self, contract_address, network):
        self._maybe_fail("list_certificates")
        return [
            {"studentID": student_id, "isRevoked": status.is_revoked}
            for (address, student_id), status in self.statuses.items()
            if address == contract_address.lower()
        ]


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, recipient_email, recipient_name, transaction_hash, attachment_path, verification_url):
        self.sent.append({
            "email": recipient_email,
            "name": recipient_name,
            "tx": transaction_hash,
            "path": attachment_path,
            "attachment_exists": os.path.exists(attachment_path),
            "url": verification_url,
        })
        if self.error:
            raise self.error
        return True


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=str(tmp_path / "data"),
        jwt_secret="test-secret",
        networks={"localhost": "http://localhost:8545", "sepolia": "https://sepolia.example/v3/key"},
        verify_base_url="http://verify.test/documents",
        rpc_retries=0,
    )


@pytest.fixture
def reader():
    return FakeChainReader()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def app(settings, reader, notifier):
    """Create a test Flask application bound to JSON storage in a temp dir."""
    flask_app = create_app(settings, reader=reader, notifier=notifier)
    flask_app.config.update({"TESTING": True})
    yield flask_app


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["certtrust"]


@pytest.fixture
def sample_institution_data():
    return {
        "email": "registrar@uni.example.edu",
        "password": "testpass123",
        "issuer": "Example University",
        "domain": "uni.example.edu",
        "walletAddress": WALLET,
    }


@pytest.fixture
def institution(services, sample_institution_data):
    data = sample_institution_data
    return services.institutions.register(
        data["email"], data["password"], data["issuer"], data["domain"], data["walletAddress"],
    )


@pytest.fixture
def auth_headers(institution, settings):
    token = make_token({"id": institution.id}, settings.jwt_secret)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def registered_contract(services, institution):
    return services.registry.register(institution.id, "localhost", CONTRACT)


@pytest.fixture
def funded(reader):
    reader.balances[("localhost", WALLET)] = Decimal("1.5")
    return reader


@pytest.fixture
def pdf_bytes():
    return b"%PDF-1.4 certificate of graduation for Jane Doe"


@pytest.fixture
def upload(services, institution, pdf_bytes):
    """Place a document in the upload store and return its handle."""
    from werkzeug.datastructures import FileStorage

    storage = FileStorage(stream=io.BytesIO(pdf_bytes), filename="transcript.pdf")
    return services.uploads.save(storage, institution.id)
