from datetime import date, timedelta

import pytest

from registration.errors import ValidationError
from registration.state import Attachment, RegistrationForm, RegistrationState
from registration.validator import MAX_PICTURE_BYTES, RegistrationValidator


@pytest.fixture
def validator():
    return RegistrationValidator()


def form_with(jane_form, **changes):
    return jane_form.model_copy(update=changes)


def test_valid_form_has_no_errors(validator, jane_form):
    assert validator.validate_form(jane_form) == {}


def test_empty_form_reports_every_required_field(validator):
    errors = validator.validate_form(RegistrationForm())

    assert set(errors) == {
        "name",
        "email",
        "password",
        "confirm_password",
        "phone_number",
        "country",
        "agree_to_terms",
    }


@pytest.mark.parametrize(
    "field, value, message",
    [
        ("name", "J", "Name must be at least 2 characters"),
        ("name", "x" * 101, "Name must be less than 100 characters"),
        ("email", "jane@example", "Please enter a valid email address"),
        ("password", "abc", "Password must be at least 6 characters"),
        ("phone_number", "555 123 4567", "Phone number must contain only digits (no spaces or special characters)"),
        ("phone_number", "12345", "Phone number must be between 7 and 15 digits"),
        ("date_of_birth", "02/04/1990", "Invalid date format"),
    ],
)
def test_field_rules(validator, jane_form, field, value, message):
    errors = validator.validate_form(form_with(jane_form, **{field: value}))

    assert errors[field] == message


def test_password_mismatch(validator, jane_form):
    errors = validator.validate_form(form_with(jane_form, confirm_password="secret2"))

    assert errors == {"confirm_password": "Passwords do not match"}


def test_date_of_birth_bounds(validator, jane_form):
    tomorrow = (date.today() + timedelta(days=1)).isoformat()
    ancient = date(date.today().year - 121, 1, 1).isoformat()

    assert validator.validate_form(form_with(jane_form, date_of_birth=tomorrow)) == {
        "date_of_birth": "Date of birth cannot be in the future"
    }
    assert "date_of_birth" in validator.validate_form(form_with(jane_form, date_of_birth=ancient))
    assert validator.validate_form(form_with(jane_form, date_of_birth="1990-04-02")) == {}


def test_emergency_contact_must_be_paired(validator, jane_form):
    only_name = validator.validate_form(form_with(jane_form, emergency_contact_name="John"))
    only_phone = validator.validate_form(
        form_with(jane_form, emergency_contact_phone="15557654321")
    )
    bad_phone = validator.validate_form(
        form_with(jane_form, emergency_contact_name="John", emergency_contact_phone="12-34")
    )

    assert set(only_name) == {"emergency_contact_phone"}
    assert set(only_phone) == {"emergency_contact_name"}
    assert set(bad_phone) == {"emergency_contact_phone"}


def test_rejected_email_is_refused_case_insensitively(validator, jane_form):
    errors = validator.validate_form(jane_form, rejected_email="JANE@example.com")

    assert "email" in errors
    assert validator.validate_form(
        form_with(jane_form, email="other@example.com"), rejected_email="jane@example.com"
    ) == {}


@pytest.mark.parametrize(
    "picture, ok",
    [
        (Attachment(content_type="image/png", data=b"\x89PNG"), True),
        (Attachment(content_type="image/gif", data=b"GIF89a"), False),
        (Attachment(content_type="image/jpeg", data=b""), False),
        (Attachment(content_type="image/jpeg", data=b"\xff" * (MAX_PICTURE_BYTES + 1)), False),
    ],
)
def test_profile_picture_rules(validator, jane_form, picture, ok):
    errors = validator.validate_form(form_with(jane_form, profile_picture=picture))

    assert ("profile_picture" not in errors) is ok


def test_terms_must_be_accepted(validator, jane_form):
    errors = validator.validate_form(form_with(jane_form, agree_to_terms=False))

    assert set(errors) == {"agree_to_terms"}


@pytest.mark.parametrize("code", ["123456", " 000000 "])
def test_validate_code_accepts_six_digits(code):
    assert RegistrationValidator.validate_code(code) == code.strip()


@pytest.mark.parametrize("code", [None, "", "12345", "1234567", "12 456", "abcdef"])
def test_validate_code_rejects(code):
    with pytest.raises(ValidationError) as exc:
        RegistrationValidator.validate_code(code)

    assert exc.value.field == "code"


def test_missing_fields_include_invalid_ones(validator, jane_form):
    state = RegistrationState(form=form_with(jane_form, country=" ", name="J"))
    state.validation_errors = validator.validate_present_fields(state)["validation_errors"]

    missing = validator.compute_missing_fields(state)["missing_fields"]
    state.missing_fields = missing

    assert missing == ["country", "name"]
    assert validator.should_stage(state) == "end"


def test_complete_form_goes_to_stage(validator, jane_form):
    state = RegistrationState(form=jane_form)
    state.missing_fields = validator.compute_missing_fields(state)["missing_fields"]

    assert validator.should_stage(state) == "stage"
