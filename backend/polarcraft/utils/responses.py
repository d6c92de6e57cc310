"""
utils/responses.py — Response envelope builders.

Success: {"success": true, "data": ..., "message": "..."?}
Error:   {"success": false, "error": {"code", "message", "details"?}}

Both return a (Response, status) tuple that a view returns as-is; nothing is
attached to a shared response object.
"""

from __future__ import annotations

from typing import Any

from flask import Response, jsonify


def success_response(
        data: Any = None,
        message: str | None = None,
        status: int = 200,
) -> tuple[Response, int]:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def error_response(
        code: str,
        message: str,
        status: int,
        details: Any = None,
) -> tuple[Response, int]:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return jsonify({"success": False, "error": error}), status
