"""
Errors raised by the verification flows.

Every error is an `HTTPException`, so a route handler can let it propagate
and FastAPI renders the user-facing message as the response detail.
"""
from fastapi.exceptions import HTTPException


class VerificationError(HTTPException):
    """Base class of the verification errors."""
    status_code: int = 400
    message: str = "Verification failed"

    def __init__(self, verification_type: str, target: str, detail: str | None = None):
        self.verification_type = verification_type
        self.target = target
        super().__init__(status_code=self.status_code, detail=detail or self.message)


class NotFound(VerificationError):
    """No pending verification for this (type, target): the flow must be restarted."""
    status_code = 404
    message = "No pending verification, please request a new code"


class InvalidCode(VerificationError):
    """The submitted code does not match. The verification stays pending."""
    status_code = 400
    message = "Invalid code"


class VerificationExpired(InvalidCode):
    """The code matched nothing because the verification expired."""
    message = "Invalid code"


class DeliveryFailed(VerificationError):
    """The code could not be delivered (email send failure)."""
    status_code = 502
    message = "Could not send the verification code, please try again"
