import base64
import binascii
import json
import logging
import mimetypes
import re
import uuid
from typing import Optional

import pydantic

from persistence.crypto import FieldCipher
from persistence.session_storage import SessionStorage
from registration.errors import DraftCorrupt, DraftMissing, DraftStoreError
from registration.state import Attachment, LoadedDraft, RegistrationDraft

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>[A-Za-z0-9+/=]*)$")
ENC_MARKER = "__enc__"
ENCRYPTED_FIELDS = ("password",)
PICTURE_EXTENSIONS = {"image/jpeg": ".jpg", "image/jpg": ".jpg", "image/png": ".png"}


def encode_data_url(attachment: Attachment) -> str:
    payload = base64.b64encode(attachment.data).decode("ascii")
    return f"data:{attachment.content_type};base64,{payload}"


def decode_data_url(value: str) -> Attachment:
    m = DATA_URL_RE.match(value)
    if m is None:
        raise ValueError("attachment is not a base64 data URL")
    data = base64.b64decode(m.group("payload"), validate=True)
    mime = m.group("mime")
    ext = PICTURE_EXTENSIONS.get(mime) or mimetypes.guess_extension(mime) or ".bin"
    return Attachment(filename=f"profilePicture{ext}", content_type=mime, data=data)


class DraftStore:
    """
    Stages a registration draft between the entry and code screens.

    Each staged draft owns two keys in session storage: the JSON fields and,
    when a picture was attached, the picture as a data URL. The password is
    written encrypted, bound to its staged id and key.
    """

    def __init__(
        self,
        storage: SessionStorage,
        cipher: FieldCipher,
        namespace: str = "registration",
    ):
        self.storage = storage
        self.cipher = cipher
        self.namespace = namespace

    def draft_key(self, staged_id: str) -> str:
        return f"{self.namespace}:{staged_id}:draft"

    def attachment_key(self, staged_id: str) -> str:
        return f"{self.namespace}:{staged_id}:attachment"

    def _aad(self, staged_id: str, field: str) -> bytes:
        return f"{self.draft_key(staged_id)}|{field}".encode("utf-8")

    def stage(self, draft: RegistrationDraft, attachment: Optional[Attachment] = None) -> str:
        staged_id = uuid.uuid4().hex
        fields = draft.model_dump(by_alias=True, mode="json")

        for k in ENCRYPTED_FIELDS:
            enc = self.cipher.encrypt_text(fields.get(k) or "", self._aad(staged_id, k))
            fields[k] = {ENC_MARKER: enc, "__fmt__": "utf-8"}

        try:
            if attachment is not None:
                self.storage.set(self.attachment_key(staged_id), encode_data_url(attachment))
            self.storage.set(self.draft_key(staged_id), json.dumps(fields))
        except DraftStoreError:
            # the caller never learns staged_id, so roll back here
            try:
                self.clear(staged_id)
            except DraftStoreError:
                logger.exception("could not remove partial draft %s", staged_id)
            raise

        logger.info(
            "staged registration draft %s (attachment: %s)",
            staged_id,
            f"{attachment.content_type}, {attachment.size} bytes" if attachment else "none",
        )
        return staged_id

    def load(self, staged_id: str) -> LoadedDraft:
        raw = self.storage.get(self.draft_key(staged_id))
        if raw is None:
            raise DraftMissing()

        try:
            fields = json.loads(raw)
            if not isinstance(fields, dict):
                raise ValueError("draft is not an object")
            for k in ENCRYPTED_FIELDS:
                v = fields.get(k)
                if not (isinstance(v, dict) and isinstance(v.get(ENC_MARKER), str)):
                    raise ValueError(f"{k} is not encrypted")
                fields[k] = self.cipher.decrypt_text(v[ENC_MARKER], self._aad(staged_id, k))
            draft = RegistrationDraft.model_validate(fields)

            attachment = None
            encoded = self.storage.get(self.attachment_key(staged_id))
            if encoded is not None:
                attachment = decode_data_url(encoded)
        except (ValueError, TypeError, binascii.Error, pydantic.ValidationError) as e:
            logger.warning("staged draft %s is corrupt: %s", staged_id, type(e).__name__)
            raise DraftCorrupt() from e

        return LoadedDraft(draft=draft, attachment=attachment)

    def clear(self, staged_id: str) -> None:
        self.storage.delete(self.draft_key(staged_id))
        self.storage.delete(self.attachment_key(staged_id))
        logger.info("cleared staged registration draft %s", staged_id)

    def exists(self, staged_id: str) -> bool:
        return (
            self.storage.get(self.draft_key(staged_id)) is not None
            or self.storage.get(self.attachment_key(staged_id)) is not None
        )
