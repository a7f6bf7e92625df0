# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Session boundary for the admin API.

Login is tenant-scoped: {tenant, username, password} where tenant is the
tenant slug. Successful logins return a bearer token for the
Authorization header.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth, bearer_token
from vitrine.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    try:
        data = request.get_json(silent=True) or {}
        tenant = data.get("tenant")
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([tenant, username, password]):
            return jsonify({"error": "tenant, username/email and password required"}), 400

        user = auth_service.authenticate(tenant, username, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user_id=user.id)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "owner_id": session.owner_id,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token())
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict(), "owner_id": g.owner_id}), 200
