import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..models.exceptions import AuthenticationError, ValidationError

KEY_BYTES = 32
IV_BYTES = 16
TAG_BYTES = 16


@dataclass(frozen=True)
class CipherText:
    """AES-256-GCM output with the tag kept apart from the ciphertext."""

    ciphertext: bytes
    iv: bytes
    auth_tag: bytes

    @property
    def ciphertext_hex(self) -> str:
        return self.ciphertext.hex()

    @property
    def iv_hex(self) -> str:
        return self.iv.hex()

    @property
    def auth_tag_hex(self) -> str:
        return self.auth_tag.hex()


def generate_key() -> bytes:
    """Generates a random 256-bit key."""
    return AESGCM.generate_key(bit_length=KEY_BYTES * 8)


def _cipher(key: bytes) -> AESGCM:
    if len(key) != KEY_BYTES:
        raise ValidationError(f"Symmetric key must be {KEY_BYTES} bytes")
    return AESGCM(key)


def encrypt(
    plaintext: bytes, key: bytes, associated_data: bytes | None = None
) -> CipherText:
    """Encrypts `plaintext` under `key` with a fresh 128-bit IV."""
    cipher = _cipher(key)
    iv = os.urandom(IV_BYTES)
    sealed = cipher.encrypt(iv, plaintext, associated_data)
    # AESGCM appends the tag to the ciphertext
    return CipherText(
        ciphertext=sealed[:-TAG_BYTES], iv=iv, auth_tag=sealed[-TAG_BYTES:]
    )


def decrypt(
    ciphertext: bytes,
    key: bytes,
    iv: bytes,
    auth_tag: bytes,
    associated_data: bytes | None = None,
) -> bytes:
    """
    Decrypts and authenticates. Raises AuthenticationError if the tag does not
    verify for this key, IV and ciphertext; no plaintext is returned in that case.
    """
    cipher = _cipher(key)
    if len(auth_tag) != TAG_BYTES or len(iv) != IV_BYTES:
        raise AuthenticationError("Authentication failed")

    try:
        return cipher.decrypt(iv, ciphertext + auth_tag, associated_data)
    except InvalidTag:
        raise AuthenticationError("Authentication failed") from None
