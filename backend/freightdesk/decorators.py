# Overview: Request decorators for API routes (bearer identity, admin guard).

from functools import wraps
from flask import request, jsonify, g

from .services import identity_service


def _has_identity() -> bool:
    return getattr(g, "identity", None) is not None


def require_auth(f):
    """
    Resolve the bearer token into g.identity.

    Returns 401 when the Authorization header is missing or the token is
    unknown, revoked or expired; 403 when the account is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        identity = identity_service.resolve_token(token)

        if not identity:
            return jsonify({"error": "Invalid or expired token"}), 401

        if not identity.is_active:
            return jsonify({"error": "Account is deactivated"}), 403

        g.identity = identity
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Must be stacked under @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _has_identity():
            return jsonify({"error": "Authentication required"}), 401

        if not g.identity.is_admin:
            return jsonify({"error": "Admin access required"}), 403

        return f(*args, **kwargs)

    return decorated_function
