"""Builds the account payload from a staged draft and calls the register endpoint."""
import logging
import re
from typing import Any, Dict, Optional

import requests
from pydantic.alias_generators import to_camel

from config.settings import PortalSettings
from registration.errors import (
    DuplicateEmail,
    IncompleteDraft,
    RegistrationError,
    ServerError,
    ValidationRejected,
)
from registration.state import AccountRef, Attachment, RegistrationDraft
from services.http import is_success_status, post, response_body, server_message

logger = logging.getLogger(__name__)

PICTURE_FIELD = "profilePicture"
ACCOUNT_FIELD_NAMES = {
    to_camel(name) for name in RegistrationDraft.model_fields
} | {PICTURE_FIELD}
ACCOUNT_FIELDS_BY_KEY = {name.lower(): name for name in ACCOUNT_FIELD_NAMES}

# "<field> is required", "Date of birth cannot ...", "Invalid email format"
FIELD_MESSAGE_RE = re.compile(
    r"^\s*(?:invalid\s+(?P<invalid>[A-Za-z_ ]+?)(?:\s+format)?\s*$"
    r"|(?P<field>[A-Za-z_ ]+?)\s+(?:is required|must\b|cannot\b|is not in a valid format|is invalid))",
    re.IGNORECASE,
)


def _account_field(name: Any) -> Optional[str]:
    if not isinstance(name, str):
        return None
    key = "".join(re.split(r"[\s_]+", name.strip())).lower()
    return ACCOUNT_FIELDS_BY_KEY.get(key)


def _field_in_message(text: str) -> Optional[str]:
    m = FIELD_MESSAGE_RE.match(text)
    if m is None:
        return None
    return _account_field(m.group("invalid") or m.group("field"))


def rejected_field(body: Dict[str, Any], message: str) -> Optional[str]:
    """Find the account field a 400/422 response complains about, if any."""
    if "file too large" in message.lower():
        return PICTURE_FIELD

    field = _field_in_message(message)
    if field:
        return field

    errors = body.get("errors")
    if isinstance(errors, list):
        for err in errors:
            if isinstance(err, dict):
                for k in ("field", "param", "path"):
                    field = _account_field(err.get(k))
                    if field:
                        return field
            elif isinstance(err, str):
                field = _field_in_message(err)
                if field:
                    return field
    return None


def classify_register_failure(
    status_code: int, body: Dict[str, Any], message: str
) -> RegistrationError:
    text = message.lower()
    if status_code == 409 or (
        "already" in text and ("registered" in text or "exists" in text or "in use" in text)
    ):
        return DuplicateEmail(message)
    if status_code >= 500:
        return ServerError(message, status_code)
    field = rejected_field(body, message)
    if field:
        return ValidationRejected(field, message)
    return ServerError(message, status_code)


class RegistrationSubmitter:
    def __init__(self, settings: PortalSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    def submit(
        self, draft: RegistrationDraft, attachment: Optional[Attachment] = None
    ) -> AccountRef:
        missing = draft.missing_required()
        if missing:
            logger.error("refusing to submit incomplete draft, missing: %s", missing)
            raise IncompleteDraft(missing)

        fields = draft.account_fields()
        url = self.settings.url(self.settings.register_path)
        timeout = self.settings.request_timeout

        logger.info(
            "registering %s at %s (fields: %s, picture: %s)",
            draft.email,
            url,
            sorted(k for k in fields if k != "password"),
            f"{attachment.content_type}, {attachment.size} bytes" if attachment else "none",
        )

        if attachment is not None:
            response = post(
                self.session,
                url,
                timeout,
                data=fields,
                files={
                    PICTURE_FIELD: (attachment.filename, attachment.data, attachment.content_type)
                },
            )
        else:
            response = post(self.session, url, timeout, json=fields)

        body = response_body(response)
        success = body.get("success")
        ok = is_success_status(response.status_code)

        # success flag wins when present, otherwise a 2xx status counts
        if ok and (success is True or "success" not in body):
            data = body.get("data") if isinstance(body.get("data"), dict) else {}
            user_id = data.get("userId") or data.get("user_id") or data.get("id")
            account = AccountRef(
                email=str(draft.email),
                user_id=str(user_id) if user_id is not None else None,
                message=body.get("message") or "Registration successful",
                data=data,
            )
            logger.info("account created for %s", draft.email)
            return account

        message = server_message(body, "Registration failed. Please try again.")
        logger.warning(
            "registration for %s failed (%s): %s", draft.email, response.status_code, message
        )
        raise classify_register_failure(response.status_code, body, message)
