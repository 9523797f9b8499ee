from dataclasses import asdict, dataclass, fields
from typing import Optional


@dataclass
class Institution:
    id: str
    email: str
    issuer: str
    domain: str
    wallet_address: str
    domain_validated: bool = False
    created_at: Optional[str] = None

    def public(self):
        return {
            "id": self.id,
            "email": self.email,
            "issuer": self.issuer,
            "domain": self.domain,
            "walletAddress": self.wallet_address,
            "domainValidated": self.domain_validated,
        }


@dataclass
class ContractRegistration:
    institution_id: str
    network: str
    address: str
    registered_at: Optional[str] = None

    def public(self):
        return {"institutionId": self.institution_id, "network": self.network,
                "address": self.address, "registeredAt": self.registered_at}


@dataclass
class CertificateFields:
    """The 7 ordered parameters of the contract's setCertificate call."""

    student_id: str
    document_hash: str
    student_name: str
    issuer_id: str
    course: str = ""
    certificate_type: str = ""
    year_of_graduation: str = ""

    def as_args(self):
        return [getattr(self, f.name) for f in fields(self)]

    def to_dict(self):
        return {
            "studentId": self.student_id,
            "documentHash": self.document_hash,
            "studentName": self.student_name,
            "issuerID": self.issuer_id,
            "course": self.course,
            "certificateType": self.certificate_type,
            "yearOfGraduation": self.year_of_graduation,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            student_id=data["studentId"],
            document_hash=data["documentHash"],
            student_name=data["studentName"],
            issuer_id=data["issuerID"],
            course=data.get("course", ""),
            certificate_type=data.get("certificateType", ""),
            year_of_graduation=data.get("yearOfGraduation", ""),
        )


@dataclass
class CertificateTransaction:
    """A mined setCertificate call and the accounts it went between."""

    certificate: CertificateFields
    contract_address: str = ""
    sender: str = ""


@dataclass
class RevocationStatus:
    is_revoked: bool = False
    revoked_at: int = 0
    reason: str = ""


@dataclass
class AcademicDetails:
    course: str = ""
    certificate_type: str = ""
    year_of_graduation: str = ""


@dataclass
class CertificateMetadata:
    student_id: str
    student_email: str
    transaction_hash: str
    network: str
    issuer_id: str
    issued_at: str

    def to_record(self):
        return asdict(self)
