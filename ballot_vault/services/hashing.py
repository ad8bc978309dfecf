import secrets

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..models.exceptions import ValidationError

SALT_BYTES = 16
PBKDF2_ITERATIONS = 100_000
PBKDF2_LENGTH = 64
SALT_SEPARATOR = ":"

_ALGORITHMS: dict[str, type[hashes.HashAlgorithm]] = {
    "sha256": hashes.SHA256,
    "sha512": hashes.SHA512,
    "sha3_256": hashes.SHA3_256,
    "sha3_512": hashes.SHA3_512,
}


def _to_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def digest(data: bytes | str, algorithm: str = "sha256") -> str:
    """Returns the hex digest of `data` under one of the supported algorithms."""
    algorithm_cls = _ALGORITHMS.get(algorithm)
    if algorithm_cls is None:
        raise ValidationError(f"Unsupported digest algorithm: {algorithm}")

    h = hashes.Hash(algorithm_cls())
    h.update(_to_bytes(data))
    return h.finalize().hex()


def sha256(data: bytes | str) -> str:
    return digest(data, "sha256")


def sha512(data: bytes | str) -> str:
    return digest(data, "sha512")


def _pbkdf2(salt_hex: str) -> PBKDF2HMAC:
    # The hex form of the salt is the KDF input, as stored
    return PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=PBKDF2_LENGTH,
        salt=salt_hex.encode("ascii"),
        iterations=PBKDF2_ITERATIONS,
    )


def salted_hash(secret_value: str) -> str:
    """
    One-way hash for identifiers that must only ever be verified, never recovered.
    Returns '<saltHex>:<digestHex>'.
    """
    salt_hex = secrets.token_hex(SALT_BYTES)
    derived = _pbkdf2(salt_hex).derive(secret_value.encode("utf-8"))
    return f"{salt_hex}{SALT_SEPARATOR}{derived.hex()}"


def verify_salted_hash(candidate_value: str, stored_hash: str) -> bool:
    """Checks `candidate_value` against a stored salted hash. Malformed input fails closed."""
    salt_hex, sep, digest_hex = stored_hash.partition(SALT_SEPARATOR)
    if not sep or not salt_hex or not digest_hex:
        return False

    try:
        expected = bytes.fromhex(digest_hex)
    except ValueError:
        return False
    if len(expected) != PBKDF2_LENGTH:
        return False

    try:
        # verify() compares in constant time
        _pbkdf2(salt_hex).verify(candidate_value.encode("utf-8"), expected)
    except (InvalidKey, UnicodeEncodeError):
        return False
    return True


def generate_token(length: int = 32) -> str:
    """Generates a random hex token of `length` bytes."""
    return secrets.token_hex(length)
