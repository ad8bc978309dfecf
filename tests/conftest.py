# ruff: noqa: E402
import os

# Set environment to testing before any other imports
os.environ["VAULT_ENV"] = "testing"

from collections.abc import Awaitable, Callable

import pytest
import pytest_asyncio

from ballot_vault.models.election_models import Candidate, Election, ElectionStatus
from ballot_vault.models.vote_models import StoredVote, VoteEnvelope, VoteRecord
from ballot_vault.repositories.election_repository import InMemoryElectionRepository
from ballot_vault.services.key_service import (
    AsymmetricKeyService,
    KeyPair,
    generate_key_pair,
)
from ballot_vault.services.tally_service import ElectionStateManager, TallyService
from ballot_vault.services.vote_envelope import VoteEnvelopeCodec
from ballot_vault.services.vote_service import VoteService

TEST_TIMESTAMP = 1_700_000_000_000


def flip_hex(value: str) -> str:
    """Changes the first hex digit, flipping at least one bit."""
    replacement = "1" if value[0] == "0" else "0"
    return replacement + value[1:]


@pytest.fixture(scope="session")
def key_pair() -> KeyPair:
    return generate_key_pair()


@pytest.fixture(scope="session")
def other_key_pair() -> KeyPair:
    return generate_key_pair()


@pytest.fixture(scope="session")
def key_service(key_pair: KeyPair) -> AsymmetricKeyService:
    return AsymmetricKeyService.from_key_pair(key_pair)


@pytest.fixture
def codec(key_service: AsymmetricKeyService) -> VoteEnvelopeCodec:
    return VoteEnvelopeCodec(key_service)


@pytest.fixture
def repository() -> InMemoryElectionRepository:
    return InMemoryElectionRepository()


@pytest.fixture
def state() -> ElectionStateManager:
    return ElectionStateManager()


@pytest.fixture
def tally_service(
    repository: InMemoryElectionRepository,
    codec: VoteEnvelopeCodec,
    state: ElectionStateManager,
) -> TallyService:
    return TallyService(repository, codec=codec, state_manager=state)


@pytest.fixture
def vote_service(
    repository: InMemoryElectionRepository,
    codec: VoteEnvelopeCodec,
    state: ElectionStateManager,
) -> VoteService:
    return VoteService(repository, codec=codec, state_manager=state)


@pytest_asyncio.fixture
async def ended_election(repository: InMemoryElectionRepository) -> Election:
    """Two candidates, ten eligible voters, voting closed."""
    election = Election(
        election_ref="election-1",
        title="Student Council 2026",
        status=ElectionStatus.ENDED,
        candidates=[
            Candidate(id=1, name="Alice", party="Blue"),
            Candidate(id=2, name="Bob", party="Green"),
        ],
        eligible_voters=[f"0xvoter{i}" for i in range(10)],
        contract_address="0xcontract",
    )
    return await repository.create_election(election)


StoreVote = Callable[..., Awaitable[StoredVote]]


@pytest.fixture
def store_vote(
    repository: InMemoryElectionRepository, codec: VoteEnvelopeCodec
) -> StoreVote:
    """Seals a vote directly (bypassing choice validation) and stores it."""

    async def _store(
        election_ref: str,
        voter_ref: str,
        candidate_choice: int,
        verified: bool = True,
        corrupt: bool = False,
        record_election_ref: str | None = None,
    ) -> StoredVote:
        record = VoteRecord(
            election_ref=record_election_ref or election_ref,
            candidate_choice=candidate_choice,
            voter_ref=voter_ref,
            timestamp=TEST_TIMESTAMP,
        )
        sealed = codec.seal(record)
        envelope: VoteEnvelope = sealed.envelope
        if corrupt:
            envelope = envelope.model_copy(update={"auth_tag": flip_hex(envelope.auth_tag)})

        vote = StoredVote(
            election_ref=election_ref,
            voter_ref=voter_ref,
            envelope=envelope,
            vote_hash=sealed.vote_hash,
            verified=verified,
        )
        await repository.add_vote(vote)
        return vote

    return _store
