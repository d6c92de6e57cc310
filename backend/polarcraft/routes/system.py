"""
routes/system.py — Unauthenticated housekeeping endpoints.

  GET /api/health      → 200 {"status": "ok"}
  GET /api/csrf-token  → 200 {"csrfToken": "..."} (same value as the cookie
                         set on this response)
"""

from __future__ import annotations

from flask import Blueprint

from backend.polarcraft.middleware.csrf import generate_csrf_token
from backend.polarcraft.utils.responses import success_response

system_bp = Blueprint("system", __name__)


@system_bp.route("/health", methods=["GET"])
def health():
    return success_response({"status": "ok"})


@system_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return success_response({"csrfToken": generate_csrf_token()})
