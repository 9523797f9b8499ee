import os
import logging

from flask import Blueprint, Flask, current_app, g, jsonify, request

from .auth import auth_required, make_token
from .chain import ChainClientFactory, ChainReader
from .config import load_settings
from .errors import BadRequest, CertTrustError
from .institutions import InstitutionDirectory, require_wallet
from .issuance import IssuanceCoordinator
from .metadata import MetadataStore
from .notify import CertificateMailer
from .registry import ContractRegistry
from .revocation import RevocationCoordinator
from .storage import open_database
from .uploads import UploadStore
from .verification import VerificationAggregator

logger = logging.getLogger(__name__)

bp = Blueprint("certtrust", __name__)


class Services:
    """Everything a request handler needs, built once per application."""

    def __init__(self, settings, db=None, reader=None, notifier=None):
        self.settings = settings
        self.db = db if db is not None else open_database(settings)
        if reader is None:
            factory = ChainClientFactory(settings.networks, timeout=settings.rpc_timeout)
            reader = ChainReader(factory, settings.reader_private_key, retries=settings.rpc_retries)
        self.reader = reader
        self.notifier = notifier if notifier is not None else CertificateMailer(settings)

        self.institutions = InstitutionDirectory(self.db)
        self.registry = ContractRegistry(self.db, networks=settings.networks)
        self.metadata = MetadataStore(self.db)
        self.uploads = UploadStore(settings.upload_dir)
        self.issuance = IssuanceCoordinator(
            self.registry, self.reader, self.metadata, self.uploads, self.notifier,
            settings.min_issuance_balance, settings.verify_base_url,
        )
        self.revocation = RevocationCoordinator(self.registry, self.reader)
        self.verification = VerificationAggregator(self.reader, self.registry, self.institutions, self.metadata)


def services():
    return current_app.extensions["certtrust"]


def _body():
    body = request.get_json(silent=True)
    if body is None:
        body = request.form.to_dict()
    return body


def _network(body):
    return body.get("network") or body.get("testnet")


def _uploaded_file():
    if not request.files:
        return None
    return request.files.get("file") or next(iter(request.files.values()))


# Auth endpoints
@bp.route("/auth/signup", methods=["POST"])
def signup():
    body = _body()
    svc = services()
    institution = svc.institutions.register(
        email=body.get("email"),
        password=body.get("password"),
        issuer=body.get("issuer"),
        domain=body.get("domain"),
        wallet_address=body.get("walletAddress"),
    )
    token = make_token({"id": institution.id}, svc.settings.jwt_secret, svc.settings.token_max_age_days)
    return jsonify({"data": "Success", "token": token, "institution": institution.public()}), 201


@bp.route("/auth/login", methods=["POST"])
def login():
    body = _body()
    svc = services()
    institution = svc.institutions.authenticate(body.get("email"), body.get("password"))
    token = make_token({"id": institution.id}, svc.settings.jwt_secret, svc.settings.token_max_age_days)
    return jsonify({"token": token, "institution": institution.public()})


@bp.route("/auth/me", methods=["GET"])
@auth_required
def me():
    contracts = services().registry.list_for_institution(g.institution.id)
    return jsonify({"institution": g.institution.public(), "contracts": [c.public() for c in contracts]})


# Contract deployment and registration
@bp.route("/documents/deploy", methods=["POST"])
@auth_required
def deploy():
    body = _body()
    svc = services()
    result = svc.registry.prepare_deployment(
        g.institution, _network(body), body.get("walletAddress"), svc.reader, svc.settings.min_deploy_balance,
    )
    result.update({"data": "Success", "message": "Ready to deploy. Please confirm the transaction in your wallet."})
    return jsonify(result)


@bp.route("/documents/contracts", methods=["POST"])
@auth_required
def save_contract():
    body = _body()
    registration = services().registry.register(g.institution.id, _network(body), body.get("contractAddress"))
    return jsonify({"data": "Success", "registration": registration.public()}), 201


@bp.route("/documents/contracts", methods=["GET"])
@auth_required
def list_contracts():
    contracts = services().registry.list_for_institution(g.institution.id)
    return jsonify({"count": len(contracts), "contracts": [c.public() for c in contracts]})


@bp.route("/documents/certificates", methods=["POST"])
@auth_required
def list_certificates():
    body = _body()
    network = _network(body)
    svc = services()
    registration = svc.registry.lookup(g.institution.id, network)
    require_wallet(g.institution, body.get("walletAddress"))
    certificates = svc.reader.list_certificates(registration.address, network)
    return jsonify({"data": "Success", "result": certificates})


# Issuance handshake
@bp.route("/documents/issue", methods=["POST"])
@auth_required
def prepare_issuance():
    form = request.form
    svc = services()
    upload = _uploaded_file()
    handle = svc.uploads.save(upload, g.institution.id) if upload is not None else None
    descriptor = svc.issuance.prepare(
        g.institution,
        _network(form),
        form.get("walletAddress"),
        handle,
        student_id=form.get("studentId"),
        student_name=form.get("studentName"),
        course=form.get("course", ""),
        certificate_type=form.get("certificateType", ""),
        year_of_graduation=form.get("yearOfGraduation", ""),
    )
    return jsonify(descriptor.to_dict())


@bp.route("/documents/issue/confirm", methods=["POST"])
@auth_required
def confirm_issuance():
    body = _body()
    tx_hash = services().issuance.confirm(
        g.institution,
        body.get("transactionHash"),
        _network(body),
        student_id=body.get("studentId"),
        student_email=body.get("studentEmail"),
        student_name=body.get("studentName"),
        file_handle=body.get("fileName"),
    )
    return jsonify({"data": "Success", "transactionHash": tx_hash})


# Revocation handshake
@bp.route("/documents/revoke", methods=["POST"])
@auth_required
def prepare_revocation():
    body = _body()
    descriptor = services().revocation.prepare(
        g.institution, _network(body), body.get("walletAddress"), body.get("studentId"), body.get("reason"),
    )
    return jsonify(descriptor.to_dict())


@bp.route("/documents/revoke/confirm", methods=["POST"])
@auth_required
def confirm_revocation():
    body = _body()
    tx_hash = services().revocation.confirm(
        g.institution, body.get("transactionHash"), _network(body), body.get("studentId"),
    )
    return jsonify({"data": "Success", "transactionHash": tx_hash})


# Public reads
@bp.route("/documents/status/<network>/<institution_id>/<student_id>", methods=["GET"])
def certificate_status(network, institution_id, student_id):
    svc = services()
    registration = svc.registry.lookup(institution_id, network)
    status = svc.reader.get_certificate_status(registration.address, student_id, network)
    return jsonify({
        "data": "Success",
        "isRevoked": status.is_revoked,
        "revokedAt": status.revoked_at,
        "reason": status.reason,
    })


@bp.route("/documents/verify/<network>/<tx_hash>", methods=["GET"])
def verify_certificate(network, tx_hash):
    return jsonify(services().verification.verify(tx_hash, network))


@bp.route("/documents/verify-file", methods=["POST"])
def verify_file():
    upload = _uploaded_file()
    if upload is None:
        raise BadRequest("No file uploaded")
    data = upload.read()
    expected = request.form.get("expectedHash", "")
    return jsonify(services().verification.verify_document(data, expected))


@bp.route("/documents/hash", methods=["POST"])
def hash_document():
    upload = _uploaded_file()
    if upload is None:
        raise BadRequest("No file uploaded")
    return jsonify({"documentHash": services().verification.fingerprint(upload.read())})


# Health check
@bp.route("/api", methods=["GET"])
def api_health():
    return jsonify({"status": "ok", "message": "Backend is running"}), 200


def handle_error(error):
    if error.status_code >= 500:
        logger.warning("%s: %s", type(error).__name__, error.message)
    return jsonify(error.to_dict()), error.status_code


def create_app(settings=None, db=None, reader=None, notifier=None):
    settings = settings or load_settings()
    os.makedirs(settings.data_dir, exist_ok=True)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024
    app.extensions["certtrust"] = Services(settings, db=db, reader=reader, notifier=notifier)
    app.register_blueprint(bp)
    app.register_error_handler(CertTrustError, handle_error)

    # CORS Configuration
    @app.after_request
    def after_request(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type,Authorization"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS,PATCH"
        response.headers["Access-Control-Max-Age"] = "3600"
        return response

    return app


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    app.run(host="0.0.0.0", port=5000, debug=os.getenv("FLASK_DEBUG") == "1")


if __name__ == "__main__":
    main()
