import abc
import os
from pathlib import Path

import structlog

from ..models.exceptions import KeyMaterialError
from .key_service import DEFAULT_KEY_BITS, KeyPair, generate_key_pair

logger = structlog.stdlib.get_logger()


class KeyPairProvider(abc.ABC):
    """Abstract source of the tallying authority's key pair."""

    @abc.abstractmethod
    def load(self) -> KeyPair:
        """Returns the key pair, creating it only where the provider allows."""
        pass


class EphemeralKeyPairProvider(KeyPairProvider):
    """
    Development provider that keeps a freshly generated key pair in memory.
    Envelopes sealed under it cannot be opened after the process exits.
    """

    def __init__(self, bit_length: int = DEFAULT_KEY_BITS):
        self.bit_length = bit_length
        self._key_pair: KeyPair | None = None

    def load(self) -> KeyPair:
        if self._key_pair is None:
            self._key_pair = generate_key_pair(self.bit_length)
            logger.warning("keys.ephemeral_generated", bits=self.bit_length)
        return self._key_pair


class FileKeyPairProvider(KeyPairProvider):
    """
    Loads PEM files from protected storage.
    Missing files are generated only when `allow_generate` is set, which the
    configuration forbids in staging and production.
    """

    def __init__(
        self,
        public_path: str | Path,
        private_path: str | Path,
        allow_generate: bool = False,
        passphrase: bytes | None = None,
        bit_length: int = DEFAULT_KEY_BITS,
    ):
        self.public_path = Path(public_path)
        self.private_path = Path(private_path)
        self.allow_generate = allow_generate
        self.passphrase = passphrase
        self.bit_length = bit_length

    def load(self) -> KeyPair:
        public_exists = self.public_path.exists()
        private_exists = self.private_path.exists()

        if public_exists and private_exists:
            key_pair = KeyPair(
                public_key_pem=self.public_path.read_text(encoding="ascii"),
                private_key_pem=self.private_path.read_text(encoding="ascii"),
            )
            logger.info("keys.loaded", public_path=str(self.public_path))
            return key_pair

        if public_exists or private_exists:
            # Half a key pair is never regenerated over
            raise KeyMaterialError(
                f"Incomplete key pair at {self.public_path} / {self.private_path}"
            )

        if not self.allow_generate:
            raise KeyMaterialError(
                f"RSA key pair not found at {self.public_path} / {self.private_path}"
            )

        return self._generate_and_store()

    def _generate_and_store(self) -> KeyPair:
        key_pair = generate_key_pair(self.bit_length, passphrase=self.passphrase)

        self.public_path.parent.mkdir(parents=True, exist_ok=True)
        self.private_path.parent.mkdir(parents=True, exist_ok=True)

        # 1. Private key: owner read/write only
        fd = os.open(self.private_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(key_pair.private_key_pem)

        # 2. Public key
        self.public_path.write_text(key_pair.public_key_pem, encoding="ascii")

        logger.warning(
            "keys.generated",
            public_path=str(self.public_path),
            private_path=str(self.private_path),
            bits=self.bit_length,
        )
        return key_pair
