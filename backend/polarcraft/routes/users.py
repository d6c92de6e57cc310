"""
routes/users.py — Profile and session management for the signed-in user.

Every endpoint requires a bearer access token; the user id always comes from
the token (g.user_id), never from the URL or body.

Endpoints (url_prefix=/api/users):
  GET    /profile              → 200
  PUT    /profile              → 200
  POST   /change-password      → 200
  GET    /sessions             → 200
  DELETE /sessions/<id>        → 200
  POST   /logout-all           → 200
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, request

from backend.polarcraft.extensions import db
from backend.polarcraft.middleware.auth_middleware import require_auth
from backend.polarcraft.routes.auth import clear_refresh_cookie
from backend.polarcraft.schemas.user_schema import ChangePasswordSchema, UpdateProfileSchema
from backend.polarcraft.services import user_service
from backend.polarcraft.utils.responses import success_response

users_bp = Blueprint("users", __name__)


@users_bp.route("/profile", methods=["GET"])
@require_auth
def get_profile():
    return success_response(user_service.get_profile(g.user_id, session=db.session))


@users_bp.route("/profile", methods=["PUT"])
@require_auth
def update_profile():
    """Only the keys present in the body are changed."""
    data = UpdateProfileSchema().load(request.get_json(silent=True) or {})
    result = user_service.update_profile(g.user_id, **data, session=db.session)
    db.session.commit()
    return success_response(result, "Profile updated.")


@users_bp.route("/change-password", methods=["POST"])
@require_auth
def change_password():
    """Revokes every session, including the caller's; the client must log in again."""
    data = ChangePasswordSchema().load(request.get_json(silent=True) or {})
    user_service.change_password(
        g.user_id,
        current_password=data["current_password"],
        new_password=data["new_password"],
        session=db.session,
    )
    db.session.commit()

    response, status = success_response(None, "Password changed. Please log in again.")
    clear_refresh_cookie(response)
    return response, status


@users_bp.route("/sessions", methods=["GET"])
@require_auth
def get_sessions():
    result = user_service.get_sessions(g.user_id, g.session_id, session=db.session)
    return success_response(result)


@users_bp.route("/sessions/<string:session_id>", methods=["DELETE"])
@require_auth
def logout_from_session(session_id: str):
    user_service.logout_from_session(g.user_id, session_id, session=db.session)
    db.session.commit()
    return success_response(None, "Logged out from that device.")


@users_bp.route("/logout-all", methods=["POST"])
@require_auth
def logout_all():
    count = user_service.logout_from_all_sessions(g.user_id, session=db.session)
    db.session.commit()

    current_app.logger.info("User %s logged out from all sessions (%d revoked)", g.user_id, count)
    response, status = success_response({"count": count}, f"Logged out from {count} sessions.")
    clear_refresh_cookie(response)
    return response, status
