import secrets

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from testcontainers.postgres import PostgresContainer

from ballot_vault.models.election_models import Candidate, Election, ElectionStatus
from ballot_vault.models.exceptions import (
    DuplicateResultError,
    DuplicateVoteError,
    NotFoundError,
)
from ballot_vault.models.result_models import ResultMetadata, TallyResult
from ballot_vault.models.vote_models import StoredVote, VoteRecord
from ballot_vault.repositories.models import Base, VoteTable
from ballot_vault.repositories.sql_election_repository import SqlElectionRepository
from ballot_vault.services.tally_service import ElectionStateManager, TallyService
from ballot_vault.services.vote_envelope import VoteEnvelopeCodec


def _docker_available() -> bool:
    try:
        import docker

        docker.from_env().ping()
    except Exception:
        return False
    return True


pytestmark = pytest.mark.skipif(
    not _docker_available(), reason="Docker is required for Postgres tests"
)


@pytest.fixture(scope="session")
def postgres_container():
    with PostgresContainer("postgres:16-alpine") as postgres:
        yield postgres


@pytest.fixture(scope="session")
def db_url(postgres_container):
    return postgres_container.get_connection_url().replace("psycopg2", "asyncpg")


@pytest_asyncio.fixture
async def db_session(db_url: str):
    engine = create_async_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    Session = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with Session() as session:
        yield session
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_repository(db_session: AsyncSession):
    return SqlElectionRepository(db_session)


@pytest_asyncio.fixture
async def sql_election(sql_repository: SqlElectionRepository) -> Election:
    return await sql_repository.create_election(
        Election(
            election_ref=f"election-{secrets.token_hex(4)}",
            title="SQL Election",
            status=ElectionStatus.ENDED,
            candidates=[
                Candidate(id=7, name="Alice", party="Blue"),
                Candidate(id=3, name="Bob"),
            ],
            eligible_voters=["0xa", "0xb", "0xc", "0xd"],
            contract_address="0xcontract",
        )
    )


def _stored(codec: VoteEnvelopeCodec, election_ref: str, voter_ref: str, choice: int):
    sealed = codec.seal(
        VoteRecord(
            election_ref=election_ref,
            candidate_choice=choice,
            voter_ref=voter_ref,
            timestamp=1_700_000_000_000,
        )
    )
    return StoredVote(
        election_ref=election_ref,
        voter_ref=voter_ref,
        envelope=sealed.envelope,
        vote_hash=sealed.vote_hash,
        verified=True,
    )


async def test_election_round_trip(
    sql_repository: SqlElectionRepository, sql_election: Election
):
    fetched = await sql_repository.find_election(sql_election.election_ref)

    assert fetched == sql_election
    assert [c.name for c in fetched.candidates] == ["Alice", "Bob"]
    assert await sql_repository.find_election("missing") is None


async def test_status_update(sql_repository: SqlElectionRepository, sql_election: Election):
    await sql_repository.update_election_status(
        sql_election.election_ref, ElectionStatus.RESULTS_PUBLISHED
    )
    fetched = await sql_repository.find_election(sql_election.election_ref)
    assert fetched.status == ElectionStatus.RESULTS_PUBLISHED

    with pytest.raises(NotFoundError):
        await sql_repository.update_election_status("missing", ElectionStatus.ENDED)


async def test_votes_are_unique_per_voter(
    sql_repository: SqlElectionRepository,
    sql_election: Election,
    codec: VoteEnvelopeCodec,
):
    vote = _stored(codec, sql_election.election_ref, "0xa", 0)
    await sql_repository.add_vote(vote)

    (fetched,) = await sql_repository.find_votes(sql_election.election_ref)
    assert fetched.envelope == vote.envelope
    assert codec.open(fetched.envelope).voter_ref == "0xa"

    with pytest.raises(DuplicateVoteError):
        await sql_repository.add_vote(_stored(codec, sql_election.election_ref, "0xa", 1))


async def test_tally_and_finalize_against_postgres(
    sql_repository: SqlElectionRepository,
    sql_election: Election,
    codec: VoteEnvelopeCodec,
):
    ref = sql_election.election_ref
    for voter, choice in [("0xa", 0), ("0xb", 1), ("0xc", 1)]:
        await sql_repository.add_vote(_stored(codec, ref, voter, choice))

    service = TallyService(
        sql_repository, codec=codec, state_manager=ElectionStateManager()
    )
    result = await service.generate_results(ref)

    assert [r.candidate_id for r in result.results] == [7, 3]
    assert [r.votes for r in result.results] == [1, 2]
    assert result.metadata.turnout_percentage == 75.0
    assert await sql_repository.get_result(ref) == result

    assert (await sql_repository.find_election(ref)).status == ElectionStatus.RESULTS_PUBLISHED
    with pytest.raises(DuplicateResultError):
        await sql_repository.publish_result(result)
    with pytest.raises(DuplicateResultError):
        await service.generate_results(ref)

    finalized = await service.finalize_results(ref, 99, "0xfeed")
    assert await sql_repository.get_result(ref) == finalized
    assert finalized.results == result.results

    listed = await sql_repository.list_results(limit=50)
    assert ref in {r.election_ref for r in listed}


async def test_corrupt_vote_row_does_not_block_tally(
    sql_repository: SqlElectionRepository,
    db_session: AsyncSession,
    sql_election: Election,
    codec: VoteEnvelopeCodec,
):
    ref = sql_election.election_ref
    for voter, choice in [("0xa", 0), ("0xb", 1), ("0xc", 1)]:
        await sql_repository.add_vote(_stored(codec, ref, voter, choice))

    await db_session.execute(
        update(VoteTable)
        .where(VoteTable.election_id == ref, VoteTable.voter_ref == "0xb")
        .values(envelope="{corrupt")
    )
    await db_session.commit()

    votes = await sql_repository.find_votes(ref)
    assert [v.envelope for v in votes if v.voter_ref == "0xb"] == ["{corrupt"]

    service = TallyService(
        sql_repository, codec=codec, state_manager=ElectionStateManager()
    )
    result = await service.generate_results(ref)

    assert [r.votes for r in result.results] == [1, 1]
    assert result.metadata.invalid_votes == 1


async def test_has_voted(
    sql_repository: SqlElectionRepository,
    sql_election: Election,
    codec: VoteEnvelopeCodec,
):
    ref = sql_election.election_ref
    assert not await sql_repository.has_voted(ref, "0xa")

    await sql_repository.add_vote(_stored(codec, ref, "0xa", 0))

    assert await sql_repository.has_voted(ref, "0xA")
    assert not await sql_repository.has_voted(ref, "0xb")


async def test_publish_result_for_unknown_election(
    sql_repository: SqlElectionRepository,
):
    orphan = TallyResult(
        election_ref=f"missing-{secrets.token_hex(4)}",
        results=[],
        winner=None,
        metadata=ResultMetadata(
            total_voters=0, voter_turnout=0, turnout_percentage=0.0, invalid_votes=0
        ),
    )

    with pytest.raises(NotFoundError):
        await sql_repository.publish_result(orphan)
    assert await sql_repository.get_result(orphan.election_ref) is None
