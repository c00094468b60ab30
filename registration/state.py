import json
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer
from pydantic.alias_generators import to_camel

from registration.errors import RegistrationError

REQUIRED_ACCOUNT_FIELDS = ("name", "email", "password", "phoneNumber", "country")
OTP_CODE_LENGTH = 6
RESEND_COOLDOWN_SECONDS = 60
DEFAULT_LANGUAGE = "English"


class FlowState(str, Enum):
    ENTERING = "entering"
    STAGED = "staged"
    AWAITING_CODE = "awaiting_code"
    SUBMITTING = "submitting"
    VERIFYING = "verifying"
    DONE = "done"
    ABANDONED = "abandoned"


class Attachment(BaseModel):
    filename: str = "profile.jpg"
    content_type: str = "image/jpeg"
    data: bytes = Field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


class RegistrationDraft(BaseModel):
    """
    The staged registration payload. Serialized with camelCase aliases, which
    are also the account service's form field names.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(default="", description="Full name")
    email: Optional[EmailStr] = Field(default=None, description="Unverified email")
    password: str = Field(default="", repr=False)
    phone_number: str = Field(default="", description="Digits only")
    country: str = ""

    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    preferred_language: str = DEFAULT_LANGUAGE
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    travel_preferences: Set[str] = Field(default_factory=set)

    @field_serializer("travel_preferences")
    def _sorted_preferences(self, value: Set[str]) -> List[str]:
        return sorted(value)

    def missing_required(self) -> List[str]:
        data = self.model_dump(by_alias=True, mode="json")
        missing = []
        for field in REQUIRED_ACCOUNT_FIELDS:
            val = data.get(field)
            if val is None or (isinstance(val, str) and val.strip() == ""):
                missing.append(field)
        return missing

    def account_fields(self) -> Dict[str, str]:
        """Flat text fields for the register endpoint, empty optionals dropped."""
        data = self.model_dump(by_alias=True, mode="json", exclude_none=True)
        fields: Dict[str, str] = {}
        for key, value in data.items():
            if key == "travelPreferences":
                if value:
                    fields[key] = json.dumps(value)
                continue
            if isinstance(value, str) and value == "":
                continue
            fields[key] = str(value)
        return fields


class RegistrationForm(BaseModel):
    """Raw entry form values, exactly as typed."""

    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    confirm_password: Optional[str] = Field(default=None, repr=False)
    phone_number: Optional[str] = None
    country: Optional[str] = None
    date_of_birth: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    gender: Optional[str] = None
    preferred_language: str = DEFAULT_LANGUAGE
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    travel_preferences: List[str] = Field(default_factory=list)
    profile_picture: Optional[Attachment] = None
    agree_to_terms: bool = False

    def to_draft(self) -> RegistrationDraft:
        return RegistrationDraft(
            name=(self.name or "").strip(),
            email=(self.email or "").strip() or None,
            password=self.password or "",
            phone_number=self.phone_number or "",
            country=self.country or "",
            date_of_birth=self.date_of_birth or None,
            gender=self.gender or None,
            preferred_language=self.preferred_language or DEFAULT_LANGUAGE,
            emergency_contact_name=self.emergency_contact_name or None,
            emergency_contact_phone=self.emergency_contact_phone or None,
            travel_preferences=set(self.travel_preferences),
        )


class LoadedDraft(BaseModel):
    draft: RegistrationDraft
    attachment: Optional[Attachment] = None

    @property
    def has_attachment(self) -> bool:
        return self.attachment is not None


class OtpChallenge(BaseModel):
    email: str
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    cooldown_seconds: int = RESEND_COOLDOWN_SECONDS
    code_length: int = OTP_CODE_LENGTH

    @property
    def resend_available_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.cooldown_seconds)


class AccountRef(BaseModel):
    email: str
    user_id: Optional[str] = None
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class OutcomeKind(str, Enum):
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_CREATED_VERIFICATION_FAILED = "account_created_verification_failed"
    FAILED = "failed"


class SubmissionOutcome(BaseModel):
    kind: OutcomeKind
    account: Optional[AccountRef] = None
    reason: Optional[str] = None

    @classmethod
    def account_created(cls, account: AccountRef) -> "SubmissionOutcome":
        return cls(kind=OutcomeKind.ACCOUNT_CREATED, account=account)

    @classmethod
    def verification_failed(cls, account: AccountRef, reason: str) -> "SubmissionOutcome":
        return cls(
            kind=OutcomeKind.ACCOUNT_CREATED_VERIFICATION_FAILED,
            account=account,
            reason=reason,
        )

    @classmethod
    def failed(cls, reason: str) -> "SubmissionOutcome":
        return cls(kind=OutcomeKind.FAILED, reason=reason)

    @property
    def account_exists(self) -> bool:
        return self.kind is not OutcomeKind.FAILED


class RegistrationState(BaseModel):
    """State carried through the entry and verification pipelines."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    flow_state: FlowState = FlowState.ENTERING
    form: Optional[RegistrationForm] = None
    rejected_email: Optional[str] = None

    validation_errors: Dict[str, str] = Field(default_factory=dict)
    missing_fields: List[str] = Field(default_factory=list)

    draft: Optional[RegistrationDraft] = None
    staged_id: Optional[str] = None

    loaded: Optional[LoadedDraft] = None
    code: Optional[str] = None
    account: Optional[AccountRef] = None
    outcome: Optional[SubmissionOutcome] = None
    error: Optional[RegistrationError] = None
