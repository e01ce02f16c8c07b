"""
This module contains the pydantic models for the users of the application.
The models include the UserCreate, UserRead and the login response.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator

from epic_auth.core.utils import validate_email, validate_password, validate_username

# pylint: disable=R0903


class UserBase(BaseModel):
    """Base model for user creation."""
    username: str
    name: str | None = Field(default=None, max_length=40)
    email: str

    @field_validator("username")
    @classmethod
    def _validate_username(cls, value: str) -> str:
        return validate_username(value)

    @field_validator("email")
    @classmethod
    def _email_validation(cls, value: str) -> str:
        return validate_email(value)


class UserCreate(UserBase):
    """Model for the registration of a user."""
    password: str

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password(value)


class UserRead(BaseModel):
    """Model for a user in the API."""
    id: str
    username: str
    name: str | None
    email: str
    email_verified: bool
    created_at: int
    updated_at: int

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    """
    The outcome of a login.

    Either `access_token` is set, or `two_factor_required` is True and the
    code must be posted to `verify_url`.
    """
    access_token: str | None = None
    token_type: str | None = None
    two_factor_required: bool = False
    verify_url: str | None = None
