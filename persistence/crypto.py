import os
import base64
import binascii

from dotenv import load_dotenv
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

load_dotenv()

VERSION_HEADER = b"v1"
NONCE_SIZE = 12


class FieldCipher:
    """AES-256-GCM for single staged fields.

    Tokens are base64 text: b"v1" + 12 byte nonce + ciphertext. The associated
    data binds a token to the draft and field it was written for.
    """

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise RuntimeError(
                f"ENCRYPTION_KEY must decode to 32 bytes for AES-256. Got {len(key)} bytes."
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_b64(cls, key_b64: str) -> "FieldCipher":
        try:
            key = base64.b64decode(key_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise RuntimeError("ENCRYPTION_KEY is not valid base64") from e
        return cls(key)

    @classmethod
    def from_env(cls) -> "FieldCipher":
        key_b64 = os.getenv("ENCRYPTION_KEY")
        if not key_b64:
            raise RuntimeError("ENCRYPTION_KEY missing in .env")
        return cls.from_b64(key_b64)

    def encrypt_bytes(self, plaintext: bytes, aad: bytes) -> str:
        nonce = os.urandom(NONCE_SIZE)
        ct = self._aesgcm.encrypt(nonce, plaintext, aad)
        payload = VERSION_HEADER + nonce + ct
        return base64.b64encode(payload).decode("utf-8")

    def decrypt_bytes(self, payload_b64: str, aad: bytes) -> bytes:
        try:
            raw = base64.b64decode(payload_b64.encode("utf-8"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Encrypted payload is not valid base64") from e
        if raw[:2] != VERSION_HEADER:
            raise ValueError("Not encrypted with expected format/version header")
        nonce = raw[2:2 + NONCE_SIZE]
        ct = raw[2 + NONCE_SIZE:]
        try:
            return self._aesgcm.decrypt(nonce, ct, aad)
        except InvalidTag as e:
            raise ValueError("Encrypted payload failed authentication") from e

    def encrypt_text(self, plaintext: str, aad: bytes) -> str:
        return self.encrypt_bytes(plaintext.encode("utf-8"), aad)

    def decrypt_text(self, payload_b64: str, aad: bytes) -> str:
        return self.decrypt_bytes(payload_b64, aad).decode("utf-8")
