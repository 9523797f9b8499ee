"""Off-chain index of issued certificates.

Advisory only: it holds the recipient's contact email, which the ledger does
not, and is never consulted to decide whether a certificate is genuine.
"""
import datetime

from .models import CertificateMetadata

COLLECTION = "certificate_metadata"


def _to_metadata(doc):
    return CertificateMetadata(
        student_id=doc["student_id"],
        student_email=doc["student_email"],
        transaction_hash=doc["transaction_hash"],
        network=doc["network"],
        issuer_id=doc["issuer_id"],
        issued_at=doc["issued_at"],
    )


class MetadataStore:
    def __init__(self, db):
        self._col = db.collection(COLLECTION)
        self._col.create_unique_index("student_id")

    def record(self, student_id, student_email, transaction_hash, network, issuer_id):
        """Insert one row per student; raises DuplicateRecord on a repeat."""
        metadata = CertificateMetadata(
            student_id=str(student_id),
            student_email=student_email,
            transaction_hash=transaction_hash,
            network=network,
            issuer_id=str(issuer_id),
            issued_at=datetime.datetime.utcnow().isoformat(),
        )
        self._col.insert_one(metadata.to_record())
        return metadata

    def find_by_transaction(self, transaction_hash):
        doc = self._col.find_one({"transaction_hash": transaction_hash})
        return _to_metadata(doc) if doc else None

    def find_by_student(self, student_id):
        doc = self._col.find_one({"student_id": str(student_id)})
        return _to_metadata(doc) if doc else None
