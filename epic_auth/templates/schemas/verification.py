"""
This module contains the pydantic models of the verification flows.

The forms posted to the verification routes are tagged by an `intent` field
and parsed as discriminated unions, each intent is handled by its own entry
point of the route.
"""
from typing import Annotated, Literal
from pydantic import BaseModel, Field, RootModel, field_validator

from epic_auth.core.config import settings
from epic_auth.core.utils import validate_email, validate_password
from epic_auth.core.verification import VerificationType

# pylint: disable=R0903


Code = Annotated[str, Field(min_length=settings.OTP_LENGTH, max_length=settings.OTP_LENGTH)]


class VerifyIntent(BaseModel):
    """Submit a code."""
    intent: Literal["verify"] = "verify"
    code: Code


class CancelIntent(BaseModel):
    """Abandon the pending verification."""
    intent: Literal["cancel"]


class TwoFactorVerifyAction(RootModel[Annotated[VerifyIntent | CancelIntent, Field(discriminator="intent")]]):
    """The form of the 2FA enrollment, either a code or a cancellation."""


class CodeForm(BaseModel):
    """A code submitted on its own (login 2FA, email change)."""
    code: Code


class VerifyForm(BaseModel):
    """A code submitted for any flow, as sent by the link of the verification emails."""
    type: VerificationType
    target: str
    code: Code


class TwoFactorStatus(BaseModel):
    """Whether the 2FA is enabled."""
    is_two_factor_enabled: bool


class TwoFactorEnrollment(BaseModel):
    """What an authenticator app needs to enroll."""
    otp_uri: str
    qr_code_url: str


class ChangeEmailForm(BaseModel):
    """The new email of the current user."""
    email: str

    @field_validator("email")
    @classmethod
    def _email_validation(cls, value: str) -> str:
        return validate_email(value)


class ForgotPasswordForm(BaseModel):
    """Username or email of the account to recover."""
    username_or_email: str


class ResetPasswordForm(BaseModel):
    """The new password, once the reset-password code was verified."""
    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password(value)
