"""
Error taxonomy for the staged registration flow.

Every failure the controller can surface is a RegistrationError carrying one
human readable message. Transport and parse errors are classified into these
types before they leave the services and persistence layers.
"""
from typing import Iterable, Optional


class RegistrationError(Exception):
    """Base class for registration errors."""

    default_message = "Registration failed. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(RegistrationError):
    """A single entry field failed a local rule."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(reason)


class DraftStoreError(RegistrationError):
    default_message = "Could not access the saved registration data."


class DraftMissing(DraftStoreError):
    default_message = "Registration data is missing. Please try registering again."


class DraftCorrupt(DraftStoreError):
    default_message = "Error retrieving registration data. Please try again."


class NetworkUnavailable(RegistrationError):
    default_message = (
        "No response from server. Please check your internet connection and try again."
    )


class ServerError(RegistrationError):
    default_message = "Unexpected response format from server"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimited(RegistrationError):
    default_message = "Too many verification requests. Please wait before trying again."


class InvalidEmail(RegistrationError):
    default_message = "Please enter a valid email address"


class AlreadyVerified(RegistrationError):
    default_message = "This email address is already verified."


class EmailAlreadyRegistered(RegistrationError):
    default_message = (
        "Email already registered. Please use a different email or try to log in."
    )


class DuplicateEmail(RegistrationError):
    default_message = "An account with this email already exists."


class CodeInvalid(RegistrationError):
    default_message = "Invalid OTP. Please try again"


class CodeExpired(RegistrationError):
    default_message = "OTP has expired. Please request a new OTP"


class IncompleteDraft(RegistrationError):
    def __init__(self, missing: Iterable[str]):
        self.missing = sorted(missing)
        super().__init__(f"Missing required fields: {', '.join(self.missing)}")


class ValidationRejected(RegistrationError):
    """The account service refused one field of the submitted payload."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"{field} was rejected by the server")


class ActionInProgress(RegistrationError):
    default_message = "Please wait for the current request to finish."


class InvalidTransition(RegistrationError):
    default_message = "That action is not available right now."
