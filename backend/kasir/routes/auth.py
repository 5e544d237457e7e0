# backend/kasir/routes/auth.py
"""
Authentication API routes.

Operator accounts are created by an administrator (see routes/users.py) or
the `flask system init` / `flask users create` commands.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth
from kasir.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    The token goes in `Authorization: Bearer <token>` on protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user.id)
        current_app.logger.info("User %s logged in", user.id)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful",
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.token)
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
