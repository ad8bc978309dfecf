import pytest

from ballot_vault.models.exceptions import AuthenticationError, ValidationError
from ballot_vault.services import symmetric_cipher


def _flip(data: bytes) -> bytes:
    return bytes([data[0] ^ 0x01]) + data[1:]


def test_round_trip():
    key = symmetric_cipher.generate_key()
    sealed = symmetric_cipher.encrypt(b"hello ballot", key)

    assert len(sealed.iv) == symmetric_cipher.IV_BYTES
    assert len(sealed.auth_tag) == symmetric_cipher.TAG_BYTES
    assert len(sealed.ciphertext) == len(b"hello ballot")
    assert (
        symmetric_cipher.decrypt(sealed.ciphertext, key, sealed.iv, sealed.auth_tag)
        == b"hello ballot"
    )


def test_fresh_iv_per_encryption():
    key = symmetric_cipher.generate_key()
    first = symmetric_cipher.encrypt(b"same", key)
    second = symmetric_cipher.encrypt(b"same", key)

    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext


@pytest.mark.parametrize("field", ["ciphertext", "iv", "auth_tag"])
def test_tampering_is_detected(field: str):
    key = symmetric_cipher.generate_key()
    sealed = symmetric_cipher.encrypt(b"candidate 1", key)
    parts = {
        "ciphertext": sealed.ciphertext,
        "iv": sealed.iv,
        "auth_tag": sealed.auth_tag,
    }
    parts[field] = _flip(parts[field])

    with pytest.raises(AuthenticationError):
        symmetric_cipher.decrypt(parts["ciphertext"], key, parts["iv"], parts["auth_tag"])


def test_wrong_key_fails_authentication():
    sealed = symmetric_cipher.encrypt(b"secret", symmetric_cipher.generate_key())
    with pytest.raises(AuthenticationError):
        symmetric_cipher.decrypt(
            sealed.ciphertext,
            symmetric_cipher.generate_key(),
            sealed.iv,
            sealed.auth_tag,
        )


def test_truncated_tag_fails_authentication():
    key = symmetric_cipher.generate_key()
    sealed = symmetric_cipher.encrypt(b"secret", key)
    with pytest.raises(AuthenticationError):
        symmetric_cipher.decrypt(sealed.ciphertext, key, sealed.iv, sealed.auth_tag[:8])


def test_associated_data_is_bound():
    key = symmetric_cipher.generate_key()
    sealed = symmetric_cipher.encrypt(b"secret", key, associated_data=b"election-1")

    assert (
        symmetric_cipher.decrypt(
            sealed.ciphertext, key, sealed.iv, sealed.auth_tag, b"election-1"
        )
        == b"secret"
    )
    with pytest.raises(AuthenticationError):
        symmetric_cipher.decrypt(
            sealed.ciphertext, key, sealed.iv, sealed.auth_tag, b"election-2"
        )


def test_key_length_is_enforced():
    with pytest.raises(ValidationError):
        symmetric_cipher.encrypt(b"secret", b"short")
