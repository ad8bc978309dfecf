import pytest

from ballot_vault.models.exceptions import ValidationError
from ballot_vault.services.hashing import (
    digest,
    generate_token,
    salted_hash,
    sha256,
    sha512,
    verify_salted_hash,
)

ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_sha256_known_vector():
    assert sha256("abc") == ABC_SHA256
    assert digest(b"abc") == ABC_SHA256


def test_sha512_known_vector():
    assert sha512("abc").startswith("ddaf35a193617aba")
    assert len(sha512("abc")) == 128


def test_digest_is_deterministic_across_input_types():
    assert digest("vote", "sha3_256") == digest(b"vote", "sha3_256")
    assert digest("vote", "sha3_512") != digest("vote", "sha512")


def test_unsupported_algorithm_is_rejected():
    with pytest.raises(ValidationError):
        digest("abc", "md5")


def test_salted_hash_round_trip():
    stored = salted_hash("0xVoterAddress")
    salt, _, derived = stored.partition(":")

    assert len(salt) == 32
    assert len(derived) == 128
    assert verify_salted_hash("0xVoterAddress", stored)
    assert not verify_salted_hash("0xvoteraddress", stored)


def test_salted_hash_uses_fresh_salt():
    assert salted_hash("same") != salted_hash("same")


@pytest.mark.parametrize(
    "stored",
    [
        "",
        "no-separator",
        "abcd:",
        ":" + "00" * 64,
        "abcd:not-hex",
        "abcd:" + "00" * 10,
    ],
)
def test_verify_salted_hash_fails_closed(stored: str):
    assert verify_salted_hash("anything", stored) is False


def test_generate_token():
    token = generate_token()
    assert len(token) == 64
    assert len(generate_token(8)) == 16
    assert token != generate_token()
