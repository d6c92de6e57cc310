"""
routes/admin.py — Administrative endpoints (role "admin" only).

  POST /api/admin/cleanup → 200 {"refreshTokens": n, "resetTokens": m}
"""

from __future__ import annotations

from flask import Blueprint, current_app, g

from backend.polarcraft.extensions import db
from backend.polarcraft.middleware.auth_middleware import require_auth, require_role
from backend.polarcraft.models.user import ROLE_ADMIN
from backend.polarcraft.services import auth_service, token_service
from backend.polarcraft.utils.responses import success_response

admin_bp = Blueprint("admin", __name__)


def run_cleanup(session) -> dict:
    """Shared with the `cleanup-tokens` CLI command."""
    return {
        "refreshTokens": token_service.cleanup_expired(session=session),
        "resetTokens": auth_service.purge_reset_tokens(session=session),
    }


@admin_bp.route("/cleanup", methods=["POST"])
@require_auth
@require_role(ROLE_ADMIN)
def cleanup():
    result = run_cleanup(db.session)
    db.session.commit()
    current_app.logger.info("Token cleanup triggered by admin %s: %s", g.user_id, result)
    return success_response(result, "Cleanup complete.")
