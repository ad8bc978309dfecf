import stat

import pytest

from ballot_vault.models.exceptions import KeyMaterialError
from ballot_vault.services.key_provider import (
    EphemeralKeyPairProvider,
    FileKeyPairProvider,
)
from ballot_vault.services.key_service import AsymmetricKeyService


def test_ephemeral_provider_is_stable_within_process():
    provider = EphemeralKeyPairProvider()
    assert provider.load() is provider.load()


def test_file_provider_generates_when_allowed(tmp_path):
    public_path = tmp_path / "keys" / "public.pem"
    private_path = tmp_path / "keys" / "private.pem"
    provider = FileKeyPairProvider(public_path, private_path, allow_generate=True)

    key_pair = provider.load()

    assert public_path.read_text() == key_pair.public_key_pem
    assert private_path.read_text() == key_pair.private_key_pem
    assert stat.S_IMODE(private_path.stat().st_mode) == 0o600

    # A second load reads the same files instead of regenerating
    reloaded = FileKeyPairProvider(public_path, private_path).load()
    assert reloaded == key_pair


def test_file_provider_fails_fast_without_generation(tmp_path):
    provider = FileKeyPairProvider(
        tmp_path / "public.pem", tmp_path / "private.pem", allow_generate=False
    )
    with pytest.raises(KeyMaterialError):
        provider.load()
    assert not (tmp_path / "private.pem").exists()


def test_file_provider_refuses_half_a_pair(tmp_path):
    (tmp_path / "public.pem").write_text("orphan")
    provider = FileKeyPairProvider(
        tmp_path / "public.pem", tmp_path / "private.pem", allow_generate=True
    )
    with pytest.raises(KeyMaterialError):
        provider.load()


def test_file_provider_with_passphrase(tmp_path):
    provider = FileKeyPairProvider(
        tmp_path / "public.pem",
        tmp_path / "private.pem",
        allow_generate=True,
        passphrase=b"s3cret",
    )
    key_pair = provider.load()

    service = AsymmetricKeyService.from_key_pair(key_pair, passphrase=b"s3cret")
    assert service.unwrap_key(service.wrap_key(b"k" * 32)) == b"k" * 32
