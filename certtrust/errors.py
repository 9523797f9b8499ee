"""Error taxonomy shared by the coordinators, the chain reader and the HTTP layer."""


class CertTrustError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self):
        body = dict(self.payload)
        body["error"] = self.message
        return body


class BadRequest(CertTrustError):
    status_code = 400


class Unauthorized(CertTrustError):
    status_code = 401


class Forbidden(CertTrustError):
    status_code = 403


class NotFound(CertTrustError):
    status_code = 404


class Conflict(CertTrustError):
    status_code = 409


class InsufficientFunds(CertTrustError):
    status_code = 402

    def __init__(self, balance, required):
        self.balance = balance
        self.required = required
        super().__init__(
            f"You need at least {required} Ether for this operation. "
            f"You only have {balance} Ether.",
            payload={"balance": str(balance), "required": str(required)},
        )


class UpstreamUnavailable(CertTrustError):
    """Ledger RPC endpoint failed or timed out. Safe to retry."""

    status_code = 503
    retryable = True

    def __init__(self, message, network=None):
        payload = {"retryable": True}
        if network:
            payload["network"] = network
        super().__init__(message, payload=payload)


class DuplicateRecord(Exception):
    """Raised by the storage layer when a unique index rejects an insert."""

    def __init__(self, collection, key):
        super().__init__(f"duplicate key in {collection}: {key}")
        self.collection = collection
        self.key = key
