import asyncio
from collections.abc import Iterable

import structlog
from anyio import to_thread
from redis import asyncio as aioredis

from ..models.election_models import AuthContext, Election, ElectionStatus, Role
from ..models.exceptions import (
    AuthenticationError,
    DecryptionError,
    DuplicateResultError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..models.result_models import (
    BlockchainInfo,
    CandidateResult,
    ResultMetadata,
    TallyResult,
)
from ..models.vote_models import StoredVote, VoteRecord
from ..repositories.election_repository import ElectionRepository
from .vote_envelope import VoteEnvelopeCodec

logger = structlog.stdlib.get_logger()

GENERATE_ROLES = frozenset({Role.ADMIN, Role.ELECTION_COMMISSIONER})
FINALIZE_ROLES = frozenset({Role.ADMIN})
MAX_PAGE_SIZE = 50


class ElectionStateManager:
    """
    Singleton container for shared in-memory state.
    Holds the per-election asyncio Locks that serialize votes and tallies
    within a process.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def get_lock(self, election_ref: str) -> asyncio.Lock:
        """Get or create an asyncio.Lock for a specific election."""
        if election_ref not in self._locks:
            self._locks[election_ref] = asyncio.Lock()
        return self._locks[election_ref]

    def clear(self):
        """Helper for testing to reset state."""
        self._locks.clear()


def _percentage(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return round(part / whole * 100, 2)


def compute_tally(
    election: Election, records: Iterable[VoteRecord], invalid_votes: int = 0
) -> tuple[list[CandidateResult], CandidateResult | None, int, int]:
    """
    Counts decrypted votes against the declared candidate list.
    Returns (results, winner, valid_votes, invalid_votes). Choices outside the
    candidate range or for another election count as invalid.
    """
    counts = [0] * len(election.candidates)

    for record in records:
        if record.election_ref != election.election_ref:
            invalid_votes += 1
            continue
        if record.candidate_choice >= len(counts):
            invalid_votes += 1
            continue
        counts[record.candidate_choice] += 1

    valid_votes = sum(counts)

    results: list[CandidateResult] = []
    winner: CandidateResult | None = None
    max_votes = -1
    for candidate, votes in zip(election.candidates, counts):
        entry = CandidateResult(
            candidate_id=candidate.id,
            candidate_name=candidate.name,
            party=candidate.party,
            votes=votes,
            percentage=_percentage(votes, valid_votes),
        )
        results.append(entry)

        # Strictly greater: ties go to the first candidate in declared order
        if votes > max_votes:
            max_votes = votes
            winner = entry

    return results, winner, valid_votes, invalid_votes


class TallyService:
    repository: ElectionRepository
    codec: VoteEnvelopeCodec
    state: ElectionStateManager
    redis: aioredis.Redis | None
    network_id: int

    def __init__(
        self,
        repository: ElectionRepository,
        codec: VoteEnvelopeCodec,
        state_manager: ElectionStateManager,
        redis_client: aioredis.Redis | None = None,
        network_id: int = 1,
    ):
        self.repository = repository
        self.codec = codec
        self.state = state_manager
        self.redis = redis_client
        self.network_id = network_id

    @staticmethod
    def _authorize(
        auth: AuthContext | None, allowed: frozenset[Role], action: str
    ) -> None:
        # None means the caller has already been authorized
        if auth is None or auth.role in allowed:
            return
        logger.warning(
            "auth.denied",
            subject_id=auth.subject_id,
            role=auth.role.value,
            action=action,
        )
        raise PermissionDeniedError(
            f"Role '{auth.role.value}' may not perform {action}"
        )

    async def generate_results(
        self, election_ref: str, auth: AuthContext | None = None
    ) -> TallyResult:
        """
        Decrypt and count all verified votes of an ended election, persist the
        result and publish it.
        Serialized per election with a Redis lock when available, otherwise a
        process-local lock; the store's uniqueness constraint settles any race
        that gets past both.
        """
        self._authorize(auth, GENERATE_ROLES, "generate_results")
        lock_name = f"lock:election:{election_ref}:tally"

        try:
            if self.redis:
                async with self.redis.lock(lock_name, timeout=60):
                    result = await self._do_generate_results(election_ref)
            else:
                async with self.state.get_lock(election_ref):
                    result = await self._do_generate_results(election_ref)
        except Exception:
            logger.error("tally.failed", election_ref=election_ref, exc_info=True)
            raise

        logger.info(
            "tally.generated",
            election_ref=election_ref,
            valid_votes=result.metadata.voter_turnout,
            invalid_votes=result.metadata.invalid_votes,
        )
        return result

    async def _do_generate_results(self, election_ref: str) -> TallyResult:
        """Inner logic for generating results."""
        election = await self.repository.find_election(election_ref)
        if not election:
            raise NotFoundError(f"Election {election_ref} not found")

        # A published election always has its result; either one means a repeat
        if (
            election.status == ElectionStatus.RESULTS_PUBLISHED
            or await self.repository.get_result(election_ref)
        ):
            raise DuplicateResultError(
                f"Results already generated for election {election_ref}"
            )

        if election.status != ElectionStatus.ENDED:
            raise InvalidStateError(
                "Cannot generate results for an election that has not ended"
            )

        votes = await self.repository.find_votes(election_ref, verified=True)

        # Offload RSA/AES work to a thread to avoid blocking the event loop
        records, failed = await to_thread.run_sync(self._open_votes, votes)

        results, winner, valid_votes, invalid_votes = compute_tally(
            election, records, invalid_votes=failed
        )
        total_voters = len(election.eligible_voters)

        tally = TallyResult(
            election_ref=election_ref,
            results=results,
            winner=winner,
            metadata=ResultMetadata(
                total_voters=total_voters,
                voter_turnout=valid_votes,
                turnout_percentage=_percentage(valid_votes, total_voters),
                invalid_votes=invalid_votes,
                election_type=election.election_type,
                blockchain_info=BlockchainInfo(
                    network_id=self.network_id,
                    contract_address=election.contract_address or "",
                ),
            ),
        )

        await self.repository.publish_result(tally)
        return tally

    def _open_votes(self, votes: list[StoredVote]) -> tuple[list[VoteRecord], int]:
        """
        Decrypts each envelope. A vote that fails to open is logged and counted
        as invalid; it never aborts the batch.
        """
        records: list[VoteRecord] = []
        failed = 0
        for vote in votes:
            try:
                record = self.codec.open(vote.parsed_envelope())
            except (AuthenticationError, DecryptionError, ValidationError) as e:
                failed += 1
                logger.warning(
                    "tally.invalid_vote",
                    election_ref=vote.election_ref,
                    vote_hash=vote.vote_hash,
                    reason=type(e).__name__,
                )
                continue

            if record.voter_ref.lower() != vote.voter_ref:
                # Envelope does not belong to the document it was stored on
                failed += 1
                logger.warning(
                    "tally.invalid_vote",
                    election_ref=vote.election_ref,
                    vote_hash=vote.vote_hash,
                    reason="voter_mismatch",
                )
                continue

            records.append(record)
        return records, failed

    async def finalize_results(
        self,
        election_ref: str,
        block_height: int,
        transaction_ref: str,
        auth: AuthContext | None = None,
    ) -> TallyResult:
        """
        Attach ledger anchoring data to existing results. Counts are never
        recomputed; finalizing again overwrites only the anchoring fields.
        """
        self._authorize(auth, FINALIZE_ROLES, "finalize_results")

        if block_height < 0:
            raise ValidationError("Block number must be a non-negative integer")
        if not transaction_ref:
            raise ValidationError("Transaction hash is required")

        result = await self.repository.get_result(election_ref)
        if not result:
            raise NotFoundError(f"No results found for election {election_ref}")

        blockchain_info = result.metadata.blockchain_info.model_copy(
            update={
                "finalized_block_number": block_height,
                "finalization_tx_hash": transaction_ref,
            }
        )
        finalized = result.model_copy(
            update={
                "metadata": result.metadata.model_copy(
                    update={"blockchain_info": blockchain_info}
                ),
                "is_finalized": True,
            }
        )

        if finalized != result:
            await self.repository.update_result(finalized)

        logger.info(
            "tally.finalized",
            election_ref=election_ref,
            block_height=block_height,
            transaction_ref=transaction_ref,
        )
        return finalized

    async def get_results(self, election_ref: str) -> TallyResult:
        """Retrieve published results. Raises NotFoundError if none exist."""
        result = await self.repository.get_result(election_ref)
        if not result:
            raise NotFoundError(f"No results found for election {election_ref}")
        return result

    async def list_results(self, page: int = 1, limit: int = 10) -> list[TallyResult]:
        """Retrieve a page of published results, newest first."""
        if page < 1:
            raise ValidationError("Page must be a positive integer")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")
        return await self.repository.list_results(offset=(page - 1) * limit, limit=limit)
