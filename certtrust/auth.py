import datetime
from functools import wraps

import jwt
from flask import current_app, g, jsonify, request


def make_token(payload, secret, max_age_days=3):
    payload = payload.copy()
    payload["exp"] = datetime.datetime.utcnow() + datetime.timedelta(days=max_age_days)
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_token(token, secret):
    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None


def auth_required(fn):
    """Resolve the bearer token to an institution and expose it as ``g.institution``."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        services = current_app.extensions["certtrust"]
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer "):
            return jsonify({"error": "Missing token"}), 401
        token = auth.split(" ", 1)[1]
        data = verify_token(token, services.settings.jwt_secret)
        if not data:
            return jsonify({"error": "Invalid token"}), 401

        institution = services.institutions.find(data.get("id"))
        if not institution:
            return jsonify({"error": "Institution not found"}), 401
        g.institution = institution
        return fn(*args, **kwargs)

    return wrapper
