# Overview: Flask API routes for login/logout; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in the Authorization header for protected routes.
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("username") or data.get("email") or data.get("identifier")
    password = data.get("password")

    if not all([identifier, password]):
        return jsonify({"error": "username/email and password required"}), 400

    user = auth_service.authenticate(identifier, password)
    if not user:
        return jsonify({"error": "Invalid credentials"}), 401

    session, token = session_service.create_session(user.id)
    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "expires_at": session.to_dict()["expires_at"],
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the token used for this request."""
    token = request.headers.get("Authorization", "").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out", "user_id": g.current_user.id}), 200
