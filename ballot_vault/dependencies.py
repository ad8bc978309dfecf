import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from redis import asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from .config import BaseAppSettings, settings
from .database import get_sessionmaker
from .repositories.election_repository import (
    ElectionRepository,
    InMemoryElectionRepository,
)
from .repositories.sql_election_repository import SqlElectionRepository
from .services.crypto_service import CryptoService
from .services.key_provider import (
    EphemeralKeyPairProvider,
    FileKeyPairProvider,
    KeyPairProvider,
)
from .services.key_service import AsymmetricKeyService
from .services.tally_service import ElectionStateManager, TallyService
from .services.vote_envelope import VoteEnvelopeCodec
from .services.vote_service import VoteService

# Singletons that MIGHT capture loop state (initialized lazily per loop)
_redis_clients: dict[asyncio.AbstractEventLoop, aioredis.Redis] = {}
_crypto_services: dict[asyncio.AbstractEventLoop, CryptoService] = {}
_election_state_managers: dict[asyncio.AbstractEventLoop, ElectionStateManager] = {}
_in_memory_election_repos: dict[
    asyncio.AbstractEventLoop, InMemoryElectionRepository
] = {}


def build_key_provider(app_settings: BaseAppSettings | None = None) -> KeyPairProvider:
    """
    Chooses where the authority key pair comes from.
    Testing keeps keys in memory; every other environment reads PEM files and
    only generates them when configuration allows it.
    """
    app_settings = app_settings or settings
    if app_settings.is_testing:
        return EphemeralKeyPairProvider(bit_length=app_settings.rsa_key_bits)

    return FileKeyPairProvider(
        public_path=app_settings.rsa_public_key_path,
        private_path=app_settings.rsa_private_key_path,
        allow_generate=app_settings.allow_key_generation,
        passphrase=app_settings.key_passphrase_bytes,
        bit_length=app_settings.rsa_key_bits,
    )


def build_crypto_service(app_settings: BaseAppSettings | None = None) -> CryptoService:
    """Loads key material and constructs the crypto service. Fails fast if keys are missing."""
    app_settings = app_settings or settings
    key_pair = build_key_provider(app_settings).load()
    key_service = AsymmetricKeyService.from_key_pair(
        key_pair, passphrase=app_settings.key_passphrase_bytes
    )
    return CryptoService(key_service, field_keyset_json=app_settings.field_keyset_json)


async def get_redis_client() -> aioredis.Redis | None:
    """Returns a singleton Redis client per loop, initialized on first use."""
    if not settings.redis_url:
        return None
    loop = asyncio.get_running_loop()
    if loop not in _redis_clients:
        _redis_clients[loop] = aioredis.from_url(
            str(settings.redis_url), decode_responses=False
        )
    return _redis_clients[loop]


async def get_crypto_service() -> CryptoService:
    loop = asyncio.get_running_loop()
    if loop not in _crypto_services:
        _crypto_services[loop] = build_crypto_service()
    return _crypto_services[loop]


async def get_election_state_manager() -> ElectionStateManager:
    loop = asyncio.get_running_loop()
    if loop not in _election_state_managers:
        _election_state_managers[loop] = ElectionStateManager()
    return _election_state_managers[loop]


async def get_in_memory_election_repo() -> InMemoryElectionRepository:
    loop = asyncio.get_running_loop()
    if loop not in _in_memory_election_repos:
        _in_memory_election_repos[loop] = InMemoryElectionRepository()
    return _in_memory_election_repos[loop]


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession | None, None]:
    """Yields a DB session, or None when running against the in-memory store."""
    if settings.is_in_memory:
        yield None
        return

    session_factory = get_sessionmaker()
    async with session_factory() as session:
        yield session


async def get_election_repository(
    session: AsyncSession | None = None,
) -> ElectionRepository:
    if not settings.is_in_memory and session:
        return SqlElectionRepository(session)
    return await get_in_memory_election_repo()


async def get_tally_service(session: AsyncSession | None = None) -> TallyService:
    """
    Returns a fresh TallyService per unit of work.
    This avoids sharing a request-scoped repository between callers.
    """
    crypto = await get_crypto_service()
    return TallyService(
        repository=await get_election_repository(session),
        codec=VoteEnvelopeCodec(crypto.keys),
        state_manager=await get_election_state_manager(),
        redis_client=await get_redis_client(),
        network_id=settings.chain_network_id,
    )


async def get_vote_service(session: AsyncSession | None = None) -> VoteService:
    crypto = await get_crypto_service()
    return VoteService(
        repository=await get_election_repository(session),
        codec=VoteEnvelopeCodec(crypto.keys),
        state_manager=await get_election_state_manager(),
        redis_client=await get_redis_client(),
    )
