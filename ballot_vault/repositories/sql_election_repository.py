from typing_extensions import override

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.election_models import Candidate, Election, ElectionStatus
from ..models.exceptions import (
    DuplicateResultError,
    DuplicateVoteError,
    NotFoundError,
    ValidationError,
)
from ..models.result_models import TallyResult
from ..models.vote_models import StoredVote, VoteEnvelope
from .election_repository import ElectionRepository
from .models import (
    CandidateTable,
    ElectionTable,
    EligibleVoterTable,
    ResultTable,
    VoteTable,
)


class SqlElectionRepository(ElectionRepository):
    """
    SQL implementation of the ElectionRepository using SQLAlchemy.
    """

    session: AsyncSession

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_election(e: ElectionTable) -> Election:
        return Election(
            election_ref=e.id,
            title=e.title,
            status=ElectionStatus(e.status),
            candidates=[
                Candidate(id=c.candidate_id, name=c.name, party=c.party)
                for c in e.candidates
            ],
            eligible_voters=[v.voter_ref for v in e.eligible_voters],
            election_type=e.election_type,
            contract_address=e.contract_address,
        )

    @staticmethod
    def _to_result(r: ResultTable) -> TallyResult:
        return TallyResult.model_validate(
            {
                "election_ref": r.election_id,
                "published_at": r.published_at,
                "results": r.results,
                "winner": r.winner,
                "metadata": r.result_metadata,
                "is_finalized": r.is_finalized,
            }
        )

    @override
    async def create_election(self, election: Election) -> Election:
        table = ElectionTable(
            id=election.election_ref,
            title=election.title,
            status=election.status.value,
            election_type=election.election_type,
            contract_address=election.contract_address,
        )
        self.session.add(table)
        await self.session.flush()

        for position, candidate in enumerate(election.candidates):
            self.session.add(
                CandidateTable(
                    election_id=table.id,
                    position=position,
                    candidate_id=candidate.id,
                    name=candidate.name,
                    party=candidate.party,
                )
            )
        for voter_ref in election.eligible_voters:
            self.session.add(EligibleVoterTable(election_id=table.id, voter_ref=voter_ref))

        await self.session.commit()

        res = await self.find_election(table.id)
        if not res:
            raise RuntimeError("Failed to re-fetch created election")
        return res

    @override
    async def find_election(self, election_ref: str) -> Election | None:
        stmt = (
            select(ElectionTable)
            .where(ElectionTable.id == election_ref)
            .options(
                selectinload(ElectionTable.candidates),
                selectinload(ElectionTable.eligible_voters),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        e = result.scalar_one_or_none()
        if not e:
            return None
        return self._to_election(e)

    @override
    async def update_election_status(
        self, election_ref: str, status: ElectionStatus
    ) -> None:
        stmt = (
            update(ElectionTable)
            .where(ElectionTable.id == election_ref)
            .values(status=status.value)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            await self.session.rollback()
            raise NotFoundError(f"Election {election_ref} not found")
        await self.session.commit()

    @override
    async def add_vote(self, vote: StoredVote) -> None:
        self.session.add(
            VoteTable(
                election_id=vote.election_ref,
                voter_ref=vote.voter_ref,
                envelope=vote.envelope_blob(),
                vote_hash=vote.vote_hash,
                transaction_ref=vote.transaction_ref,
                verified=vote.verified,
                cast_at=vote.cast_at,
            )
        )
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise DuplicateVoteError(
                f"Voter has already voted in election {vote.election_ref}"
            )

    @override
    async def find_votes(
        self, election_ref: str, verified: bool | None = True
    ) -> list[StoredVote]:
        stmt = select(VoteTable).where(VoteTable.election_id == election_ref)
        if verified is not None:
            stmt = stmt.where(VoteTable.verified == verified)
        result = await self.session.execute(stmt.order_by(VoteTable.id))
        return [self._to_vote(v) for v in result.scalars().all()]

    @staticmethod
    def _to_vote(v: VoteTable) -> StoredVote:
        envelope: VoteEnvelope | str
        try:
            envelope = VoteEnvelope.from_storage(v.envelope)
        except ValidationError:
            # Left for the tally to reject on its own
            envelope = v.envelope
        return StoredVote(
            election_ref=v.election_id,
            voter_ref=v.voter_ref,
            envelope=envelope,
            vote_hash=v.vote_hash,
            transaction_ref=v.transaction_ref,
            verified=v.verified,
            cast_at=v.cast_at,
        )

    @override
    async def has_voted(self, election_ref: str, voter_ref: str) -> bool:
        stmt = select(
            exists().where(
                VoteTable.election_id == election_ref,
                VoteTable.voter_ref == voter_ref.lower(),
            )
        )
        result = await self.session.execute(stmt)
        return bool(result.scalar())

    @override
    async def publish_result(self, result: TallyResult) -> None:
        status_stmt = (
            update(ElectionTable)
            .where(ElectionTable.id == result.election_ref)
            .values(status=ElectionStatus.RESULTS_PUBLISHED.value)
        )
        updated = await self.session.execute(status_stmt)
        if updated.rowcount == 0:  # type: ignore[attr-defined]
            await self.session.rollback()
            raise NotFoundError(f"Election {result.election_ref} not found")

        data = result.model_dump(mode="json")
        self.session.add(
            ResultTable(
                election_id=result.election_ref,
                published_at=result.published_at,
                results=data["results"],
                winner=data["winner"],
                result_metadata=data["metadata"],
                is_finalized=result.is_finalized,
            )
        )
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise DuplicateResultError(
                f"Results already generated for election {result.election_ref}"
            )

    async def _get_result_row(self, election_ref: str) -> ResultTable | None:
        stmt = (
            select(ResultTable)
            .where(ResultTable.election_id == election_ref)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @override
    async def get_result(self, election_ref: str) -> TallyResult | None:
        row = await self._get_result_row(election_ref)
        if not row:
            return None
        return self._to_result(row)

    @override
    async def update_result(self, result: TallyResult) -> None:
        row = await self._get_result_row(result.election_ref)
        if not row:
            raise NotFoundError(f"No results found for election {result.election_ref}")

        data = result.model_dump(mode="json")
        row.results = data["results"]
        row.winner = data["winner"]
        row.result_metadata = data["metadata"]
        row.is_finalized = result.is_finalized
        await self.session.commit()

    @override
    async def list_results(self, offset: int = 0, limit: int = 10) -> list[TallyResult]:
        stmt = (
            select(ResultTable)
            .order_by(ResultTable.published_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._to_result(r) for r in result.scalars().all()]
