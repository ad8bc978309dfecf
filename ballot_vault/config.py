import os
from typing import Literal

from pydantic import PostgresDsn, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    """
    Base configuration for Ballot Vault.
    Loads from .env and .env.{VAULT_ENV} files.
    """

    # We determine the env file names dynamically before class initialization
    _env = os.getenv("VAULT_ENV", "development").lower()
    model_config = SettingsConfigDict(
        env_file=(".env", f".env.{_env}"), env_file_encoding="utf-8", extra="ignore"
    )

    # Core Environment
    vault_env: Literal["development", "testing", "staging", "production"] = (
        "development"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["pretty", "json"] = "pretty"

    # Infrastructure (Defaults to None for Zero-Config Dev/Test)
    database_url: PostgresDsn | None = None
    redis_url: RedisDsn | None = None

    @field_validator("database_url", "redis_url", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: str | None) -> str | None:
        if v == "":
            return None
        return v

    # Tallying authority key pair
    rsa_public_key_path: str = "keys/public.pem"
    rsa_private_key_path: str = "keys/private.pem"
    rsa_key_passphrase: str | None = None
    rsa_key_bits: int = 2048
    allow_key_generation: bool = True

    # Tink cleartext JSON keyset for sensitive non-vote fields
    field_keyset_json: str | None = None

    # Anchoring
    chain_network_id: int = 1

    @property
    def is_production(self) -> bool:
        return self.vault_env == "production"

    @property
    def is_staging(self) -> bool:
        return self.vault_env == "staging"

    @property
    def is_testing(self) -> bool:
        return self.vault_env == "testing"

    @property
    def is_in_memory(self) -> bool:
        """Returns True if the application should use the in-memory store."""
        return self.database_url is None

    @property
    def key_passphrase_bytes(self) -> bytes | None:
        return self.rsa_key_passphrase.encode() if self.rsa_key_passphrase else None


class DevelopmentSettings(BaseAppSettings):
    """Configuration for development environment."""

    vault_env: Literal["development"] = "development"  # type: ignore
    log_format: Literal["pretty"] = "pretty"  # type: ignore


class TestingSettings(BaseAppSettings):
    """Configuration for testing environment."""

    vault_env: Literal["testing"] = "testing"  # type: ignore
    log_format: Literal["pretty"] = "pretty"  # type: ignore


class StagingSettings(BaseAppSettings):
    """Configuration for staging environment. Mirrors production requirements."""

    vault_env: Literal["staging"] = "staging"  # type: ignore
    log_format: Literal["pretty"] = "pretty"  # type: ignore
    allow_key_generation: bool = False

    # Enforce required infrastructure
    database_url: PostgresDsn  # type: ignore
    field_keyset_json: str  # type: ignore

    @field_validator("allow_key_generation")
    @classmethod
    def no_key_generation_in_staging(cls, v: bool) -> bool:
        if v:
            raise ValueError("ALLOW_KEY_GENERATION cannot be true in staging mode")
        return False


class ProductionSettings(BaseAppSettings):
    """Configuration for production environment. Enforces strict requirements."""

    vault_env: Literal["production"] = "production"  # type: ignore
    log_format: Literal["json"] = "json"  # type: ignore
    allow_key_generation: bool = False

    # Enforce required infrastructure
    database_url: PostgresDsn  # type: ignore
    redis_url: RedisDsn  # type: ignore
    field_keyset_json: str  # type: ignore

    @field_validator("allow_key_generation")
    @classmethod
    def no_key_generation_in_prod(cls, v: bool) -> bool:
        if v:
            raise ValueError("ALLOW_KEY_GENERATION cannot be true in production mode")
        return False


def get_settings() -> BaseAppSettings:
    """Factory to return the correct settings object based on VAULT_ENV."""
    env = os.getenv("VAULT_ENV", "development").lower()

    if env == "production":
        return ProductionSettings()
    elif env == "staging":
        return StagingSettings()
    elif env == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


settings = get_settings()
