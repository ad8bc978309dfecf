import base64
import binascii
import io

from tink import (
    JsonKeysetReader,
    JsonKeysetWriter,
    KeysetHandle,
    TinkError,
    aead,
    cleartext_keyset_handle,
    new_keyset_handle,
)

from ..models.exceptions import AuthenticationError, KeyMaterialError
from .key_service import AsymmetricKeyService


class CryptoService:
    """
    Explicitly constructed holder of the process-wide key material:
    - the authority's RSA key pair (vote envelopes, receipts)
    - a Tink AEAD keyset for non-vote sensitive fields
    """

    keys: AsymmetricKeyService
    _field_keyset: KeysetHandle

    def __init__(
        self,
        key_service: AsymmetricKeyService,
        field_keyset_json: str | None = None,
    ):
        aead.register()
        self.keys = key_service

        if field_keyset_json:
            try:
                reader = JsonKeysetReader(field_keyset_json)
                self._field_keyset = cleartext_keyset_handle.read(reader)
            except TinkError as e:
                raise KeyMaterialError(f"Invalid field keyset: {e}")
        else:
            self._field_keyset = self.generate_field_keyset()

        self._field_aead = self._field_keyset.primitive(aead.Aead)

    @property
    def public_key_pem(self) -> str:
        return self.keys.public_key_pem

    @staticmethod
    def generate_field_keyset() -> KeysetHandle:
        """Generates a new AES-256-GCM keyset for field encryption."""
        aead.register()
        return new_keyset_handle(aead.aead_key_templates.AES256_GCM)

    @classmethod
    def generate_field_keyset_json(cls) -> str:
        """Generates a keyset and serializes it as cleartext JSON for provisioning."""
        out = io.StringIO()
        writer = JsonKeysetWriter(out)
        cleartext_keyset_handle.write(writer, cls.generate_field_keyset())
        return out.getvalue()

    def encrypt_field(self, plaintext: str, context: str = "") -> str:
        """Encrypts a string; `context` is bound as associated data."""
        ciphertext = self._field_aead.encrypt(plaintext.encode(), context.encode())
        return base64.b64encode(ciphertext).decode()

    def decrypt_field(self, ciphertext_b64: str, context: str = "") -> str:
        """Decrypts a string produced by encrypt_field under the same context."""
        try:
            raw_ciphertext = base64.b64decode(ciphertext_b64, validate=True)
            plaintext = self._field_aead.decrypt(raw_ciphertext, context.encode())
        except (TinkError, binascii.Error, ValueError):
            raise AuthenticationError("Field authentication failed") from None
        return plaintext.decode()
