"""Client for the email verification service (send and verify one-time codes)."""
import logging
from typing import Optional

import requests
from pydantic import BaseModel

from config.settings import PortalSettings
from registration.errors import (
    AlreadyVerified,
    CodeExpired,
    CodeInvalid,
    EmailAlreadyRegistered,
    InvalidEmail,
    RateLimited,
    RegistrationError,
    ServerError,
    ValidationError,
)
from registration.validator import RegistrationValidator
from services.http import is_success_status, post, response_body, server_message

logger = logging.getLogger(__name__)


class OtpAck(BaseModel):
    email: str
    message: Optional[str] = None


class VerifiedAck(BaseModel):
    email: str
    message: Optional[str] = None


def classify_send_failure(status_code: int, message: str) -> RegistrationError:
    text = message.lower()
    if status_code == 429 or "too many" in text:
        return RateLimited(message)
    if status_code >= 500:
        return ServerError(message, status_code)
    if "already registered" in text or "already exists" in text:
        return EmailAlreadyRegistered(message)
    if "already verified" in text:
        return AlreadyVerified(message)
    if "email" in text and ("invalid" in text or "required" in text or "valid" in text):
        return InvalidEmail(message)
    return ServerError(message, status_code)


def classify_verify_failure(status_code: int, message: str) -> RegistrationError:
    text = message.lower()
    if status_code >= 500:
        return ServerError(message, status_code)
    if "expired" in text or "no otp found" in text:
        return CodeExpired(message)
    if "invalid" in text or "incorrect" in text or "does not match" in text:
        return CodeInvalid(message)
    return ServerError(message, status_code)


class OtpGatewayClient:
    def __init__(self, settings: PortalSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    def request_code(self, email: str) -> OtpAck:
        """Ask the service to email a fresh code. Any earlier code is superseded."""
        url = self.settings.url(self.settings.send_code_path)
        logger.info("requesting verification code for %s", email)

        response = post(self.session, url, self.settings.request_timeout, json={"email": email})
        body = response_body(response)

        if is_success_status(response.status_code) and body.get("success") is True:
            logger.info("verification code sent to %s", email)
            return OtpAck(email=email, message=body.get("message"))

        message = server_message(body, "Failed to send OTP")
        if is_success_status(response.status_code) and "message" not in body:
            message = ServerError.default_message
        logger.warning(
            "send code for %s failed (%s): %s", email, response.status_code, message
        )
        raise classify_send_failure(response.status_code, message)

    def verify_code(self, email: str, code: str) -> VerifiedAck:
        try:
            code = RegistrationValidator.validate_code(code)
        except ValidationError as e:
            raise CodeInvalid(e.reason) from e

        url = self.settings.url(self.settings.verify_code_path)
        logger.info("verifying code for %s", email)

        response = post(
            self.session,
            url,
            self.settings.request_timeout,
            json={"email": email, "otp": code},
        )
        body = response_body(response)

        if is_success_status(response.status_code) and body.get("success") is True:
            logger.info("email verified: %s", email)
            return VerifiedAck(email=email, message=body.get("message"))

        message = server_message(body, "Failed to verify OTP")
        if is_success_status(response.status_code) and "message" not in body:
            message = ServerError.default_message
        logger.warning(
            "verify code for %s failed (%s): %s", email, response.status_code, message
        )
        raise classify_verify_failure(response.status_code, message)
