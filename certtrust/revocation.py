import logging
from dataclasses import dataclass

from .chain import encode_revoke_certificate
from .errors import BadRequest, Conflict
from .institutions import require_wallet

logger = logging.getLogger(__name__)


@dataclass
class RevocationDescriptor:
    contract_address: str
    network: str
    student_id: str
    reason: str
    call_data: str = ""

    def to_dict(self):
        return {
            "data": "ReadyToSign",
            "contractAddress": self.contract_address,
            "network": self.network,
            "studentId": self.student_id,
            "reason": self.reason,
            "callData": self.call_data,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            contract_address=data["contractAddress"],
            network=data["network"],
            student_id=data["studentId"],
            reason=data["reason"],
            call_data=data.get("callData") or encode_revoke_certificate(data["studentId"], data["reason"]),
        )


class RevocationCoordinator:
    """Prepares revokeCertificate calls. Revocation is terminal: there is no way back to active."""

    def __init__(self, registry, reader):
        self.registry = registry
        self.reader = reader

    def prepare(self, institution, network, wallet_address, student_id, reason):
        require_wallet(institution, wallet_address)
        registration = self.registry.lookup(institution.id, network)
        if not student_id:
            raise BadRequest("studentId is required")
        if not reason:
            raise BadRequest("A revocation reason is required")

        status = self.reader.get_certificate_status(registration.address, str(student_id), network)
        if status.is_revoked:
            raise Conflict(
                "Certificate is already revoked",
                payload={"revokedAt": status.revoked_at, "revocationReason": status.reason},
            )

        return RevocationDescriptor(
            contract_address=registration.address,
            network=network,
            student_id=str(student_id),
            reason=reason,
            call_data=encode_revoke_certificate(str(student_id), reason),
        )

    def confirm(self, institution, transaction_hash, network, student_id=None):
        # Status is always read live from the contract; nothing to persist.
        if not transaction_hash:
            raise BadRequest("Transaction hash required")
        logger.info("Revocation of %s by %s on %s confirmed in %s",
                    student_id, institution.id, network, transaction_hash)
        return transaction_hash
