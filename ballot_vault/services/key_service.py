import base64
import binascii
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..models.exceptions import DecryptionError, KeyMaterialError, ValidationError

DEFAULT_KEY_BITS = 2048
PUBLIC_EXPONENT = 65537

PublicKeyLike = rsa.RSAPublicKey | str | bytes
PrivateKeyLike = rsa.RSAPrivateKey | str | bytes


@dataclass(frozen=True)
class KeyPair:
    """PEM-encoded RSA key pair (SubjectPublicKeyInfo / PKCS#8)."""

    public_key_pem: str
    private_key_pem: str


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def generate_key_pair(
    bit_length: int = DEFAULT_KEY_BITS, passphrase: bytes | None = None
) -> KeyPair:
    """Generates a new RSA key pair, optionally encrypting the private half."""
    private_key = rsa.generate_private_key(
        public_exponent=PUBLIC_EXPONENT, key_size=bit_length
    )
    if passphrase:
        encryption: serialization.KeySerializationEncryption = (
            serialization.BestAvailableEncryption(passphrase)
        )
    else:
        encryption = serialization.NoEncryption()

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return KeyPair(
        public_key_pem=public_pem.decode("ascii"),
        private_key_pem=private_pem.decode("ascii"),
    )


def load_public_key(key: PublicKeyLike) -> rsa.RSAPublicKey:
    if isinstance(key, rsa.RSAPublicKey):
        return key
    pem = key.encode("ascii") if isinstance(key, str) else key
    try:
        loaded = serialization.load_pem_public_key(pem)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyMaterialError(f"Invalid public key: {e}")
    if not isinstance(loaded, rsa.RSAPublicKey):
        raise KeyMaterialError("Public key is not an RSA key")
    return loaded


def load_private_key(
    key: PrivateKeyLike, passphrase: bytes | None = None
) -> rsa.RSAPrivateKey:
    if isinstance(key, rsa.RSAPrivateKey):
        return key
    pem = key.encode("ascii") if isinstance(key, str) else key
    try:
        loaded = serialization.load_pem_private_key(pem, password=passphrase)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyMaterialError(f"Invalid private key: {e}")
    if not isinstance(loaded, rsa.RSAPrivateKey):
        raise KeyMaterialError("Private key is not an RSA key")
    return loaded


def max_wrap_bytes(public_key: rsa.RSAPublicKey) -> int:
    """Largest payload RSA-OAEP/SHA-256 can carry under this modulus."""
    return public_key.key_size // 8 - 2 * hashes.SHA256.digest_size - 2


def wrap_key(symmetric_key: bytes, public_key: PublicKeyLike) -> str:
    """Encrypts a short key with RSA-OAEP (SHA-256). Returns base64 ciphertext."""
    pub = load_public_key(public_key)
    if len(symmetric_key) > max_wrap_bytes(pub):
        raise ValidationError("Payload too large to wrap with this key")
    wrapped = pub.encrypt(symmetric_key, _oaep())
    return base64.b64encode(wrapped).decode("ascii")


def unwrap_key(wrapped: str, private_key: PrivateKeyLike) -> bytes:
    """Inverse of wrap_key. Raises DecryptionError on any failure."""
    priv = load_private_key(private_key)
    try:
        raw = base64.b64decode(wrapped, validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionError("Wrapped key is not valid base64") from None

    try:
        return priv.decrypt(raw, _oaep())
    except ValueError:
        raise DecryptionError("Unable to unwrap key") from None


def sign(data: bytes | str, private_key: PrivateKeyLike) -> str:
    """RSA PKCS#1 v1.5 signature over SHA-256(data), base64 encoded."""
    priv = load_private_key(private_key)
    payload = data.encode("utf-8") if isinstance(data, str) else data
    signature = priv.sign(payload, padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def verify(data: bytes | str, signature: str, public_key: PublicKeyLike) -> bool:
    """Returns False for any malformed or mismatched signature."""
    pub = load_public_key(public_key)
    payload = data.encode("utf-8") if isinstance(data, str) else data
    try:
        raw = base64.b64decode(signature, validate=True)
        pub.verify(raw, payload, padding.PKCS1v15(), hashes.SHA256())
    except (InvalidSignature, binascii.Error, ValueError):
        return False
    return True


class AsymmetricKeyService:
    """
    Holds the tallying authority's RSA key pair.
    The keys are read-only after construction and safe to share across tasks.
    """

    _private_key: rsa.RSAPrivateKey
    _public_key: rsa.RSAPublicKey

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self._private_key = private_key
        self._public_key = private_key.public_key()

    @classmethod
    def from_key_pair(
        cls, key_pair: KeyPair, passphrase: bytes | None = None
    ) -> "AsymmetricKeyService":
        service = cls(load_private_key(key_pair.private_key_pem, passphrase))
        public_key = load_public_key(key_pair.public_key_pem)
        if public_key.public_numbers() != service.public_key.public_numbers():
            raise KeyMaterialError("Public key does not match private key")
        return service

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self._public_key

    @property
    def private_key(self) -> rsa.RSAPrivateKey:
        return self._private_key

    @property
    def public_key_pem(self) -> str:
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")

    def wrap_key(self, symmetric_key: bytes) -> str:
        return wrap_key(symmetric_key, self._public_key)

    def unwrap_key(self, wrapped: str) -> bytes:
        return unwrap_key(wrapped, self._private_key)

    def sign(self, data: bytes | str) -> str:
        return sign(data, self._private_key)

    def verify(
        self, data: bytes | str, signature: str, public_key: PublicKeyLike | None = None
    ) -> bool:
        """Verifies against our own key unless a foreign public key is given."""
        return verify(data, signature, public_key or self._public_key)
