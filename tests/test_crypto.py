# tests/test_crypto.py

import base64

import pytest
from persistence.crypto import FieldCipher


def test_encrypt_decrypt_roundtrip(cipher):
    aad = b"registration:abc:draft|password"
    plaintext = b"hello-world"

    ct = cipher.encrypt_bytes(plaintext, aad)
    out = cipher.decrypt_bytes(ct, aad)

    assert out == plaintext


def test_text_roundtrip_does_not_leak_plaintext(cipher):
    token = cipher.encrypt_text("secret1", b"aad")

    assert "secret1" not in token
    assert cipher.decrypt_text(token, b"aad") == "secret1"


def test_decrypt_fails_with_wrong_aad(cipher):
    ct = cipher.encrypt_bytes(b"secret", b"registration:one:draft|password")

    with pytest.raises(ValueError):
        cipher.decrypt_bytes(ct, b"registration:two:draft|password")


def test_ciphertext_tamper_fails(cipher):
    aad = b"aad"
    raw = bytearray(base64.b64decode(cipher.encrypt_bytes(b"secret", aad)))

    # flip one bit of the ciphertext, keep the header
    raw[-1] ^= 0x01
    tampered = base64.b64encode(bytes(raw)).decode("ascii")

    with pytest.raises(ValueError):
        cipher.decrypt_bytes(tampered, aad)


def test_rejects_unknown_header(cipher):
    payload = base64.b64encode(b"v9" + b"\x00" * 40).decode("ascii")

    with pytest.raises(ValueError):
        cipher.decrypt_bytes(payload, b"aad")


def test_key_must_be_32_bytes():
    with pytest.raises(RuntimeError):
        FieldCipher.from_b64(base64.b64encode(b"short").decode("ascii"))


def test_from_env_requires_key(monkeypatch):
    monkeypatch.delenv("ENCRYPTION_KEY", raising=False)

    with pytest.raises(RuntimeError):
        FieldCipher.from_env()
