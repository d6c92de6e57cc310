"""
schemas/user_schema.py — Marshmallow schemas for /api/users endpoints.

Same rules as auth_schema: marshmallow.Schema directly, camelCase data keys,
unknown keys dropped, policy and uniqueness checks left to the services.
"""

from __future__ import annotations

from marshmallow import fields, validate, validates_schema, ValidationError

from backend.polarcraft.schemas.auth_schema import BaseSchema, username_field, validate_not_blank


class UpdateProfileSchema(BaseSchema):
    """
    PUT /users/profile

    Every field is optional; only keys present in the body are changed.
    Sending email or avatar_url as null clears it.
    """

    username = username_field()
    email = fields.Email(allow_none=True, validate=validate.Length(max=255))
    avatar_url = fields.Url(allow_none=True, validate=validate.Length(max=512))

    @validates_schema
    def validate_not_empty(self, data, **kwargs):
        if not data:
            raise ValidationError("Provide at least one of: username, email, avatar_url.")


class ChangePasswordSchema(BaseSchema):
    """POST /users/change-password"""

    current_password = fields.Str(
        data_key="currentPassword",
        required=True,
        load_only=True,
        validate=validate_not_blank,
    )
    new_password = fields.Str(
        data_key="newPassword",
        required=True,
        load_only=True,
        validate=validate_not_blank,
    )
