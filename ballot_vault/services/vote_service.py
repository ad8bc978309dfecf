import time

import pydantic
import structlog
from anyio import to_thread
from redis import asyncio as aioredis

from ..models.election_models import ElectionStatus
from ..models.exceptions import (
    DuplicateVoteError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..models.vote_models import SealedVote, StoredVote, VoteRecord
from ..repositories.election_repository import ElectionRepository
from .tally_service import ElectionStateManager
from .vote_envelope import VoteEnvelopeCodec

logger = structlog.stdlib.get_logger()


class VoteService:
    """Validates and seals ballots before they reach the vote store."""

    repository: ElectionRepository
    codec: VoteEnvelopeCodec
    state: ElectionStateManager
    redis: aioredis.Redis | None

    def __init__(
        self,
        repository: ElectionRepository,
        codec: VoteEnvelopeCodec,
        state_manager: ElectionStateManager,
        redis_client: aioredis.Redis | None = None,
    ):
        self.repository = repository
        self.codec = codec
        self.state = state_manager
        self.redis = redis_client

    async def cast_vote(
        self,
        election_ref: str,
        voter_ref: str,
        candidate_choice: int,
        transaction_ref: str | None = None,
        timestamp: int | None = None,
    ) -> SealedVote:
        """
        Record a sealed vote for an active election and return the receipt.
        The same timestamp goes into the envelope and the receipt hash, so the
        voter can later recompute it.
        """
        lock_name = f"lock:election:{election_ref}:votes"

        try:
            if self.redis:
                async with self.redis.lock(lock_name, timeout=10):
                    sealed = await self._do_cast_vote(
                        election_ref, voter_ref, candidate_choice, transaction_ref, timestamp
                    )
            else:
                async with self.state.get_lock(election_ref):
                    sealed = await self._do_cast_vote(
                        election_ref, voter_ref, candidate_choice, transaction_ref, timestamp
                    )
        except Exception:
            logger.error("vote.failed", election_ref=election_ref, exc_info=True)
            raise

        logger.info("vote.recorded", election_ref=election_ref, vote_hash=sealed.vote_hash)
        return sealed

    async def _do_cast_vote(
        self,
        election_ref: str,
        voter_ref: str,
        candidate_choice: int,
        transaction_ref: str | None,
        timestamp: int | None,
    ) -> SealedVote:
        """Inner logic for casting a vote."""
        election = await self.repository.find_election(election_ref)
        if not election:
            raise NotFoundError(f"Election {election_ref} not found")

        if election.status != ElectionStatus.ACTIVE:
            raise InvalidStateError("Election is not active")

        if not 0 <= candidate_choice < len(election.candidates):
            raise ValidationError("Invalid candidate choice")

        normalized_voter = voter_ref.lower()
        if await self.repository.has_voted(election_ref, normalized_voter):
            raise DuplicateVoteError("You have already voted in this election")

        try:
            record = VoteRecord(
                election_ref=election_ref,
                candidate_choice=candidate_choice,
                voter_ref=normalized_voter,
                timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid vote: {e.error_count()} errors")

        # Offload RSA/AES work to a thread
        sealed = await to_thread.run_sync(self.codec.seal, record)

        await self.repository.add_vote(
            StoredVote(
                election_ref=election_ref,
                voter_ref=normalized_voter,
                envelope=sealed.envelope,
                vote_hash=sealed.vote_hash,
                transaction_ref=transaction_ref,
                verified=True,
            )
        )
        return sealed
