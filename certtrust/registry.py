import datetime
import logging

from .chain import checksum
from .errors import BadRequest, Conflict, DuplicateRecord, InsufficientFunds, NotFound
from .institutions import require_wallet
from .models import ContractRegistration

logger = logging.getLogger(__name__)

COLLECTION = "contract_registrations"


def _to_registration(doc):
    return ContractRegistration(
        institution_id=doc["institution_id"],
        network=doc["network"],
        address=doc["address"],
        registered_at=doc.get("registered_at"),
    )


class ContractRegistry:
    """Append-only map of (institution, network) to the deployed contract address."""

    def __init__(self, db, networks=None):
        self._col = db.collection(COLLECTION)
        self._col.create_unique_index("institution_id", "network")
        self.networks = networks

    def _check_network(self, network):
        if not network:
            raise BadRequest("Missing network")
        if self.networks is not None and network not in self.networks:
            raise BadRequest(f"Unknown network: {network}")

    def register(self, institution_id, network, address):
        self._check_network(network)
        if not address:
            raise BadRequest("Missing contract address")
        doc = {
            "institution_id": str(institution_id),
            "network": network,
            "address": checksum(address),
            "registered_at": datetime.datetime.utcnow().isoformat(),
        }
        try:
            self._col.insert_one(doc)
        except DuplicateRecord as e:
            raise Conflict("Contract already deployed on this network") from e
        logger.info("Registered contract %s for %s on %s", doc["address"], institution_id, network)
        return _to_registration(doc)

    def find(self, institution_id, network):
        doc = self._col.find_one({"institution_id": str(institution_id), "network": network})
        return _to_registration(doc) if doc else None

    def lookup(self, institution_id, network):
        registration = self.find(institution_id, network)
        if registration is None:
            raise NotFound("No contract deployed on this network")
        return registration

    def list_for_institution(self, institution_id):
        docs = self._col.find({"institution_id": str(institution_id)})
        return [_to_registration(d) for d in docs]

    def prepare_deployment(self, institution, network, wallet_address, reader, min_balance):
        """Preconditions for the browser to deploy a new contract from its wallet."""
        require_wallet(institution, wallet_address)
        self._check_network(network)
        if self.find(institution.id, network) is not None:
            raise Conflict("Contract already deployed on this network")
        balance = reader.get_balance(network, wallet_address)
        if balance < min_balance:
            logger.info("Not enough Ether to deploy for %s: %s", institution.id, balance)
            raise InsufficientFunds(balance, min_balance)
        return {"network": network, "walletAddress": wallet_address, "balance": str(balance)}
