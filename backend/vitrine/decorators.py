# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.owner_id: The tenant id every query is scoped by
    - g.session_context: The full SessionContext object

    Returns 401 for a missing, invalid, expired or revoked token, and when
    the user or tenant has been deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.owner_id = context.owner_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def current_actor_name() -> str | None:
    """Display name recorded as actor_name on ledger rows."""
    user = getattr(g, "current_user", None)
    return user.display_name if user is not None else None
