import hmac
import logging
from concurrent.futures import ThreadPoolExecutor

from .errors import CertTrustError, NotFound
from .hasher import hash_bytes
from .institutions import wallets_match
from .models import AcademicDetails, RevocationStatus

logger = logging.getLogger(__name__)

MATCH = "match"
MISMATCH = "mismatch"

MASK_CHAR = "*"
MAX_MASK_RUN = 5


def mask_email(email):
    """Partially redact an address so its owner can still recognise it.

    ``johndoe@x.com`` -> ``jo****e@x.com``; local parts of 3 characters or
    fewer keep only their first character: ``ab@x.com`` -> ``a***@x.com``.
    """
    if not email:
        return ""
    username, _, domain = email.rpartition("@")
    if not username:
        username, domain = domain, ""
    suffix = f"@{domain}" if domain else ""
    if len(username) <= 3:
        return f"{username[0]}{MASK_CHAR * 3}{suffix}"
    masked = MASK_CHAR * min(len(username) - 3, MAX_MASK_RUN)
    return f"{username[:2]}{masked}{username[-1]}{suffix}"


def _normalise_hash(value):
    value = (value or "").strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    return value


def compare_fingerprints(actual, expected_hash) -> str:
    expected = _normalise_hash(expected_hash)
    if not expected:
        return MISMATCH
    return MATCH if hmac.compare_digest(actual.encode(), expected.encode("utf-8")) else MISMATCH


def verify_document(data: bytes, expected_hash) -> str:
    """Compare an uploaded file against the fingerprint recorded on chain."""
    return compare_fingerprints(hash_bytes(data or b""), expected_hash)


def check_issuer(transaction, registration, institution):
    """Reject a certificate transaction its claimed issuer did not send to its own contract."""
    if not wallets_match(transaction.contract_address, registration.address):
        raise NotFound("Certificate was not issued by this institution's contract")
    if institution is not None and not wallets_match(transaction.sender, institution.wallet_address):
        raise NotFound("Certificate was not issued by this institution's wallet")


def metadata_belongs(metadata, certificate, network):
    return (
        metadata.student_id == certificate.student_id
        and metadata.issuer_id == certificate.issuer_id
        and metadata.network == network
    )


class VerificationAggregator:
    """Joins the decoded transaction, live contract state and the metadata index."""

    def __init__(self, reader, registry, institutions, metadata, max_workers=4):
        self.reader = reader
        self.registry = registry
        self.institutions = institutions
        self.metadata = metadata
        self.max_workers = max_workers

    def _optional(self, what, fn, default):
        try:
            return fn()
        except CertTrustError as e:
            logger.info("Could not get %s: %s", what, e.message)
        except Exception:
            logger.exception("Could not get %s", what)
        return default

    def verify(self, tx_hash, network):
        # The only hard failures: no mined certificate transaction, or one the
        # claimed issuer's contract and wallet did not produce.
        transaction = self.reader.decode_transaction(tx_hash, network)
        certificate = transaction.certificate
        student_id = certificate.student_id
        issuer_id = certificate.issuer_id

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            institution_f = executor.submit(
                self._optional, "issuing institution", lambda: self.institutions.find(issuer_id), None)
            metadata_f = executor.submit(
                self._optional, "certificate metadata", lambda: self.metadata.find_by_transaction(tx_hash), None)
            registration_f = executor.submit(
                self._optional, "contract registration", lambda: self.registry.find(issuer_id, network), None)

            institution = institution_f.result()
            metadata = metadata_f.result()
            registration = registration_f.result()

            if registration is None:
                # Without the issuer's contract the issuerID field is only a claim.
                institution = None
            else:
                check_issuer(transaction, registration, institution)

            details = AcademicDetails()
            status = RevocationStatus()
            if registration is not None:
                address = registration.address
                details_f = executor.submit(
                    self._optional, "full certificate info",
                    lambda: self.reader.get_full_certificate_info(address, student_id, network), AcademicDetails())
                status_f = executor.submit(
                    self._optional, "revocation status",
                    lambda: self.reader.get_certificate_status(address, student_id, network), RevocationStatus())
                details = details_f.result()
                status = status_f.result()

        if metadata is not None and not metadata_belongs(metadata, certificate, network):
            logger.warning("Metadata for %s names student %s of issuer %s on %s; ignoring it",
                           tx_hash, metadata.student_id, metadata.issuer_id, metadata.network)
            metadata = None

        return {
            "transactionHash": tx_hash,
            "network": network,
            "documentHash": certificate.document_hash,
            "studentId": student_id,
            "studentName": certificate.student_name,
            "studentEmail": mask_email(metadata.student_email) if metadata else "",
            "issuedAt": metadata.issued_at if metadata else "",
            "issuerId": issuer_id,
            "issuerName": institution.issuer if institution else "Unknown",
            "domainValidated": institution.domain_validated if institution else False,
            "course": details.course,
            "certificateType": details.certificate_type,
            "yearOfGraduation": details.year_of_graduation,
            "isRevoked": status.is_revoked,
            "revokedAt": status.revoked_at,
            "revocationReason": status.reason,
        }

    def fingerprint(self, data):
        return hash_bytes(data or b"")

    def verify_document(self, data, expected_hash):
        """Hash an uploaded copy once and compare it with ``expected_hash``."""
        actual = self.fingerprint(data)
        return {"result": compare_fingerprints(actual, expected_hash), "documentHash": actual}
