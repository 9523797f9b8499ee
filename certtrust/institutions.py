import uuid
import datetime
import logging

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import BadRequest, Conflict, DuplicateRecord, Forbidden, NotFound, Unauthorized
from .models import Institution

logger = logging.getLogger(__name__)

COLLECTION = "institutions"


def _to_institution(doc):
    return Institution(
        id=doc["id"],
        email=doc["email"],
        issuer=doc.get("issuer", ""),
        domain=doc.get("domain", ""),
        wallet_address=doc["wallet_address"],
        domain_validated=bool(doc.get("domain_validated", False)),
        created_at=doc.get("created_at"),
    )


def wallets_match(asserted, registered):
    if not asserted or not registered:
        return False
    return asserted.strip().lower() == registered.strip().lower()


def require_wallet(institution, wallet_address):
    """Reject a request whose asserted wallet is not the institution's own."""
    if not wallets_match(wallet_address, institution.wallet_address):
        raise Forbidden("Wallet address does not match registered wallet")


class InstitutionDirectory:
    """Issuing institutions and the wallet each one signs with."""

    def __init__(self, db):
        self._col = db.collection(COLLECTION)
        self._col.create_unique_index("email")
        self._col.create_unique_index("wallet_address")

    def register(self, email, password, issuer, domain, wallet_address):
        if not wallet_address:
            raise BadRequest("Please connect your wallet", payload={"field": "wallet"})
        if not email or not password or not issuer:
            raise BadRequest("Missing fields")

        email = email.strip().lower()
        wallet = wallet_address.strip().lower()
        if self._col.find_one({"wallet_address": wallet}):
            raise Conflict("This wallet address is already registered to another account")

        doc = {
            "id": uuid.uuid4().hex,
            "email": email,
            "password": generate_password_hash(password),
            "issuer": issuer,
            "domain": (domain or "").strip().lower(),
            "domain_validated": False,
            "wallet_address": wallet,
            "created_at": datetime.datetime.utcnow().isoformat(),
        }
        try:
            self._col.insert_one(doc)
        except DuplicateRecord as e:
            raise Conflict("That email or wallet address is already registered") from e
        logger.info("Registered institution %s (%s)", doc["id"], issuer)
        return _to_institution(doc)

    def authenticate(self, email, password):
        doc = self._col.find_one({"email": (email or "").strip().lower()})
        if not doc or not check_password_hash(doc["password"], password or ""):
            raise Unauthorized("Invalid credentials")
        return _to_institution(doc)

    def find(self, institution_id):
        if not institution_id:
            return None
        doc = self._col.find_one({"id": str(institution_id)})
        return _to_institution(doc) if doc else None

    def set_domain_validated(self, institution_id, validated=True):
        # Only called by the out-of-band domain ownership check.
        if not self._col.update_one({"id": str(institution_id)}, {"domain_validated": bool(validated)}):
            raise NotFound("Institution not found")
