"""Two-phase certificate issuance.

The signing key lives in the issuer's browser wallet, so the server only
prepares the call (Prepare) and records what follows once the wallet reports
a mined transaction (Confirm). The descriptor passed between the two phases is
plain data; nothing is kept in memory in between.
"""
import logging
from dataclasses import dataclass

from .chain import encode_set_certificate
from .errors import BadRequest, DuplicateRecord, InsufficientFunds
from .hasher import hash_file
from .institutions import require_wallet
from .models import CertificateFields

logger = logging.getLogger(__name__)


@dataclass
class IssuanceDescriptor:
    certificate: CertificateFields
    contract_address: str
    network: str
    file_handle: str
    call_data: str = ""

    def to_dict(self):
        return {
            "data": "ReadyToSign",
            "certificateParams": self.certificate.to_dict(),
            "contractAddress": self.contract_address,
            "network": self.network,
            "fileHash": self.certificate.document_hash,
            "fileName": self.file_handle,
            "callData": self.call_data,
        }

    @classmethod
    def from_dict(cls, data):
        certificate = CertificateFields.from_dict(data["certificateParams"])
        return cls(
            certificate=certificate,
            contract_address=data["contractAddress"],
            network=data["network"],
            file_handle=data["fileName"],
            call_data=data.get("callData") or encode_set_certificate(certificate),
        )


class IssuanceCoordinator:
    def __init__(self, registry, reader, metadata, uploads, notifier, min_balance, verify_base_url):
        self.registry = registry
        self.reader = reader
        self.metadata = metadata
        self.uploads = uploads
        self.notifier = notifier
        self.min_balance = min_balance
        self.verify_base_url = verify_base_url.rstrip("/")

    def prepare(self, institution, network, wallet_address, file_handle, student_id, student_name,
                course="", certificate_type="", year_of_graduation=""):
        """Check preconditions and build the unsigned setCertificate call.

        ``file_handle`` names a document already placed in the upload store;
        it is discarded on every failure unless another institution owns it.
        """
        if file_handle and not self.uploads.owns(file_handle, institution.id):
            raise BadRequest("No file uploaded")
        try:
            require_wallet(institution, wallet_address)
            registration = self.registry.lookup(institution.id, network)
            if not file_handle or not self.uploads.exists(file_handle):
                raise BadRequest("No file uploaded")
            if not student_id or not student_name:
                raise BadRequest("studentId and studentName are required")

            balance = self.reader.get_balance(network, wallet_address)
            if balance < self.min_balance:
                raise InsufficientFunds(balance, self.min_balance)

            document_hash = hash_file(self.uploads.path(file_handle))
        except Exception:
            self.uploads.discard(file_handle)
            raise

        logger.info("Generated file hash %s for student %s", document_hash, student_id)
        certificate = CertificateFields(
            student_id=str(student_id),
            document_hash=document_hash,
            student_name=student_name,
            issuer_id=institution.id,
            course=course or "",
            certificate_type=certificate_type or "",
            year_of_graduation=year_of_graduation or "",
        )
        return IssuanceDescriptor(
            certificate=certificate,
            contract_address=registration.address,
            network=network,
            file_handle=file_handle,
            call_data=encode_set_certificate(certificate),
        )

    def verification_url(self, network, transaction_hash):
        return f"{self.verify_base_url}/{network}/{transaction_hash}"

    def confirm(self, institution, transaction_hash, network, student_id=None, student_email=None,
                student_name=None, file_handle=None):
        """Record a mined issuance. Only the auxiliary steps can fail, and they never surface."""
        if file_handle and not self.uploads.owns(file_handle, institution.id):
            logger.warning("Institution %s sent an upload handle it does not own: %r", institution.id, file_handle)
            file_handle = None
        if not transaction_hash:
            self.uploads.discard(file_handle)
            raise BadRequest("Transaction hash required")

        try:
            if student_id and student_email:
                try:
                    self.metadata.record(student_id, student_email, transaction_hash, network, institution.id)
                    logger.info("Certificate metadata saved for %s", student_id)
                except DuplicateRecord as e:
                    logger.warning("Certificate metadata for %s already exists: %s", student_id, e)

            if file_handle and student_email and self.uploads.exists(file_handle):
                try:
                    self.notifier.send(
                        student_email,
                        student_name or "",
                        transaction_hash,
                        self.uploads.path(file_handle),
                        self.verification_url(network, transaction_hash),
                    )
                except Exception as e:
                    logger.warning("Certificate email to %s failed: %s", student_email, e)
        except Exception:
            logger.exception("Post-issuance bookkeeping failed for %s", transaction_hash)
        finally:
            self.uploads.discard(file_handle)

        return transaction_hash
