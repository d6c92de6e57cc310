"""
schemas/auth_schema.py — Marshmallow schemas for /api/auth endpoints.

Validation responsibility:
  - This file: presence, types, lengths and formats of request fields.
  - services/auth_service.py: password policy (WEAK_PASSWORD, needs config),
    uniqueness (USER_ALREADY_EXISTS, needs the DB) and credential checks.

Request bodies use the frontend's camelCase keys; data_key maps them to the
snake_case names the services take. Unknown keys are dropped.

IMPORTANT: All schemas inherit from marshmallow.Schema directly so they can
           be loaded without an app context (unit tests do exactly that).
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, ValidationError, fields, pre_load, validate


USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"


def validate_not_blank(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank.")


def username_field(**kwargs) -> fields.Str:
    """3–50 chars of letters, digits, underscore and hyphen."""
    return fields.Str(
        validate=[
            validate.Length(
                min=3,
                max=50,
                error="Username must be between 3 and 50 characters.",
            ),
            validate.Regexp(
                USERNAME_PATTERN,
                error="Username may only contain letters, numbers, underscores and hyphens.",
            ),
        ],
        **kwargs,
    )


class BaseSchema(Schema):

    class Meta:
        unknown = EXCLUDE

    # Fields whose surrounding whitespace is meaningless. Passwords are
    # never trimmed.
    _trimmed: tuple[str, ...] = ("username", "email")

    @pre_load
    def _strip_whitespace(self, data, **kwargs):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in self._trimmed:
            if isinstance(data.get(key), str):
                data[key] = data[key].strip()
        return data


class RegisterSchema(BaseSchema):
    """
    POST /auth/register

    username : required, 3–50 chars, [A-Za-z0-9_-]
    password : required; the policy check happens in the service so that a
               weak password yields WEAK_PASSWORD with every violation listed
    email    : optional, valid format
    """

    username = username_field(required=True)
    password = fields.Str(required=True, load_only=True, validate=validate_not_blank)
    email = fields.Email(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=255),
    )


class LoginSchema(BaseSchema):
    """
    POST /auth/login

    Format rules on the username are deliberately loose here: a malformed
    username is just another unknown user (INVALID_CREDENTIALS).
    """

    username = fields.Str(required=True, validate=[validate.Length(max=255), validate_not_blank])
    password = fields.Str(required=True, load_only=True, validate=validate_not_blank)
    remember_me = fields.Bool(data_key="rememberMe", load_default=False)
    captcha_id = fields.Str(data_key="captchaId", load_default=None, allow_none=True)
    captcha = fields.Str(load_default=None, allow_none=True)


class RefreshTokenSchema(BaseSchema):
    """
    POST /auth/refresh

    The body token is optional; the route falls back to the refresh_token
    cookie and answers MISSING_REFRESH_TOKEN when neither is present.
    """

    refresh_token = fields.Str(data_key="refreshToken", load_default=None, allow_none=True)


class ForgotPasswordSchema(BaseSchema):
    """POST /auth/forgot-password — `username` may also hold an email address."""

    username = fields.Str(
        required=True,
        validate=[validate.Length(max=255), validate_not_blank],
        error_messages={"required": "Username or email is required."},
    )


class ResetPasswordSchema(BaseSchema):
    """POST /auth/reset-password"""

    token = fields.Str(required=True, validate=validate_not_blank)
    new_password = fields.Str(
        data_key="newPassword",
        required=True,
        load_only=True,
        validate=validate_not_blank,
    )


class VerifyCaptchaSchema(BaseSchema):
    """POST /auth/verify-captcha"""

    id = fields.Str(required=True, validate=validate_not_blank)
    code = fields.Str(required=True, validate=validate_not_blank)
