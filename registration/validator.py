import re
from datetime import date
from typing import Any, Dict, List, Literal, Optional, Set

from registration.errors import ValidationError
from registration.state import OTP_CODE_LENGTH, RegistrationForm, RegistrationState

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
DIGITS_RE = re.compile(r"^[0-9]+$")
CODE_RE = re.compile(r"^[0-9]{%d}$" % OTP_CODE_LENGTH)

ALLOWED_PICTURE_TYPES = {"image/jpeg", "image/jpg", "image/png"}
MAX_PICTURE_BYTES = 5 * 1024 * 1024
MAX_AGE_YEARS = 120

DEFAULT_REQUIRED_FIELDS = {
    "name",
    "email",
    "password",
    "confirm_password",
    "phone_number",
    "country",
}


def _blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def _phone_error(value: str, label: str) -> Optional[str]:
    if not DIGITS_RE.match(value):
        return f"{label} must contain only digits (no spaces or special characters)"
    if len(value) < 7 or len(value) > 15:
        return f"{label} must be between 7 and 15 digits"
    return None


def _years_ago(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return today.replace(year=today.year - years, day=28)


class RegistrationValidator:
    def __init__(self, required_fields: Optional[Set[str]] = None):
        self.required_fields = required_fields or set(DEFAULT_REQUIRED_FIELDS)

    def validate_form(
        self, form: RegistrationForm, rejected_email: Optional[str] = None
    ) -> Dict[str, str]:
        errors: Dict[str, str] = {}

        if _blank(form.name):
            errors["name"] = "Full name is required"
        elif len(form.name.strip()) < 2:
            errors["name"] = "Name must be at least 2 characters"
        elif len(form.name.strip()) > 100:
            errors["name"] = "Name must be less than 100 characters"

        if _blank(form.email):
            errors["email"] = "Email is required"
        elif not EMAIL_RE.match(form.email.strip()):
            errors["email"] = "Please enter a valid email address"
        elif rejected_email and form.email.strip().lower() == rejected_email.lower():
            errors["email"] = (
                "Email already registered. Please use a different email or try to log in."
            )

        if not form.password:
            errors["password"] = "Password is required"
        elif len(form.password) < 6:
            errors["password"] = "Password must be at least 6 characters"
        elif len(form.password) > 50:
            errors["password"] = "Password must be less than 50 characters"

        if not form.confirm_password:
            errors["confirm_password"] = "Please confirm your password"
        elif form.password != form.confirm_password:
            errors["confirm_password"] = "Passwords do not match"

        if _blank(form.phone_number):
            errors["phone_number"] = "Phone number is required"
        else:
            err = _phone_error(form.phone_number, "Phone number")
            if err:
                errors["phone_number"] = err

        if _blank(form.country):
            errors["country"] = "Please select your country"

        if not _blank(form.date_of_birth):
            err = self._date_of_birth_error(form.date_of_birth.strip())
            if err:
                errors["date_of_birth"] = err

        has_contact_name = not _blank(form.emergency_contact_name)
        has_contact_phone = not _blank(form.emergency_contact_phone)
        if has_contact_name and not has_contact_phone:
            errors["emergency_contact_phone"] = (
                "Please provide an emergency contact phone number"
            )
        if has_contact_phone and not has_contact_name:
            errors["emergency_contact_name"] = "Please provide an emergency contact name"
        if has_contact_phone:
            err = _phone_error(form.emergency_contact_phone, "Emergency contact phone")
            if err:
                errors["emergency_contact_phone"] = err

        picture = form.profile_picture
        if picture is not None:
            if picture.content_type not in ALLOWED_PICTURE_TYPES:
                errors["profile_picture"] = "Profile picture must be a JPEG or PNG image"
            elif picture.size == 0:
                errors["profile_picture"] = "Profile picture is empty"
            elif picture.size > MAX_PICTURE_BYTES:
                errors["profile_picture"] = "Profile picture must be 5MB or smaller"

        if not form.agree_to_terms:
            errors["agree_to_terms"] = (
                "You must agree to the terms and conditions to continue"
            )

        return errors

    @staticmethod
    def _date_of_birth_error(value: str) -> Optional[str]:
        try:
            dob = date.fromisoformat(value)
        except ValueError:
            return "Invalid date format"
        today = date.today()
        if dob > today:
            return "Date of birth cannot be in the future"
        if dob < _years_ago(today, MAX_AGE_YEARS):
            return "Please enter a valid date of birth"
        return None

    @staticmethod
    def validate_code(code: Optional[str]) -> str:
        code = (code or "").strip()
        if not CODE_RE.match(code):
            raise ValidationError("code", f"Please enter a valid {OTP_CODE_LENGTH}-digit OTP")
        return code

    def validate_present_fields(self, state: RegistrationState) -> Dict[str, Any]:
        form = state.form or RegistrationForm()
        return {"validation_errors": self.validate_form(form, state.rejected_email)}

    def compute_missing_fields(self, state: RegistrationState) -> Dict[str, Any]:
        form = state.form or RegistrationForm()
        missing: List[str] = []

        for field in self.required_fields:
            val = getattr(form, field, None)
            if val is None:
                missing.append(field)
                continue
            if isinstance(val, str) and val.strip() == "":
                missing.append(field)
                continue

        for field in state.validation_errors.keys():
            if field not in missing:
                missing.append(field)

        return {"missing_fields": sorted(missing)}

    @staticmethod
    def should_stage(state: RegistrationState) -> Literal["end", "stage"]:
        return "stage" if len(state.missing_fields) == 0 else "end"
