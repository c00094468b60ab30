import base64
from unittest.mock import MagicMock

import pytest

from config.settings import PortalSettings
from persistence.crypto import FieldCipher
from persistence.draft_store import DraftStore
from persistence.session_storage import MemorySessionStorage
from registration.controller import StagedRegistrationController
from registration.errors import DraftStoreError
from registration.state import AccountRef, Attachment, RegistrationDraft, RegistrationForm
from registration.timer import VirtualScheduler
from services.otp_gateway import OtpAck, OtpGatewayClient, VerifiedAck
from services.submitter import RegistrationSubmitter

TEST_KEY_B64 = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode("ascii")


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("no json body")
    else:
        response.json.return_value = body
    return response


class DraftWriteFailingStorage(MemorySessionStorage):
    """Accepts attachment writes and refuses draft writes."""

    def set(self, key: str, value: str) -> None:
        if key.endswith(":draft"):
            raise DraftStoreError()
        super().set(key, value)


def jpeg_bytes(size: int) -> bytes:
    head = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00"
    tail = b"\xff\xd9"
    body = bytes((i * 31 + 7) % 256 for i in range(size - len(head) - len(tail)))
    return head + body + tail


@pytest.fixture
def settings():
    return PortalSettings(api_base_url="http://portal.test/api", encryption_key=TEST_KEY_B64)


@pytest.fixture
def cipher():
    return FieldCipher.from_b64(TEST_KEY_B64)


@pytest.fixture
def storage():
    return MemorySessionStorage()


@pytest.fixture
def store(storage, cipher):
    return DraftStore(storage, cipher)


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def gateway():
    gw = MagicMock(spec=OtpGatewayClient)
    gw.request_code.side_effect = lambda email: OtpAck(email=email, message="OTP sent")
    gw.verify_code.side_effect = lambda email, code: VerifiedAck(email=email)
    return gw


@pytest.fixture
def submitter():
    sub = MagicMock(spec=RegistrationSubmitter)
    sub.submit.side_effect = lambda draft, attachment=None: AccountRef(
        email=str(draft.email), user_id="42", message="Registration successful"
    )
    return sub


@pytest.fixture
def controller(store, gateway, submitter, scheduler):
    return StagedRegistrationController(store, gateway, submitter, scheduler)


@pytest.fixture
def jane_form():
    return RegistrationForm(
        name="Jane Doe",
        email="jane@example.com",
        password="secret1",
        confirm_password="secret1",
        phone_number="15551234567",
        country="US",
        agree_to_terms=True,
    )


@pytest.fixture
def jane_draft():
    return RegistrationDraft(
        name="Jane Doe",
        email="jane@example.com",
        password="secret1",
        phone_number="15551234567",
        country="US",
    )


@pytest.fixture
def big_jpeg():
    return Attachment(
        filename="me.jpg", content_type="image/jpeg", data=jpeg_bytes(2 * 1024 * 1024)
    )
