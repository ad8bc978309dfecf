import asyncio
from abc import ABC, abstractmethod
from typing_extensions import override

from ..models.election_models import Election, ElectionStatus
from ..models.exceptions import DuplicateResultError, DuplicateVoteError, NotFoundError
from ..models.result_models import TallyResult
from ..models.vote_models import StoredVote


class ElectionRepository(ABC):
    """
    Abstract base class for the election document store.
    """

    @abstractmethod
    async def create_election(self, election: Election) -> Election:
        """Persist a new election with its declared candidates."""
        pass

    @abstractmethod
    async def find_election(self, election_ref: str) -> Election | None:
        """Retrieve an election by its reference."""
        pass

    @abstractmethod
    async def update_election_status(
        self, election_ref: str, status: ElectionStatus
    ) -> None:
        """Move an election to a new lifecycle status."""
        pass

    @abstractmethod
    async def add_vote(self, vote: StoredVote) -> None:
        """Store a vote. Raises DuplicateVoteError if the voter already voted."""
        pass

    @abstractmethod
    async def find_votes(
        self, election_ref: str, verified: bool | None = True
    ) -> list[StoredVote]:
        """Retrieve stored votes, filtered on the verified flag unless it is None."""
        pass

    @abstractmethod
    async def has_voted(self, election_ref: str, voter_ref: str) -> bool:
        """True if any vote, verified or not, is stored for this voter."""
        pass

    @abstractmethod
    async def publish_result(self, result: TallyResult) -> None:
        """
        Persist a new result and mark its election as published, together or not
        at all. Raises DuplicateResultError if a result already exists and
        NotFoundError if the election does not.
        """
        pass

    @abstractmethod
    async def get_result(self, election_ref: str) -> TallyResult | None:
        """Retrieve the result for an election."""
        pass

    @abstractmethod
    async def update_result(self, result: TallyResult) -> None:
        """Replace an existing result. Raises NotFoundError if there is none."""
        pass

    @abstractmethod
    async def list_results(self, offset: int = 0, limit: int = 10) -> list[TallyResult]:
        """Retrieve published results, newest first."""
        pass


class InMemoryElectionRepository(ElectionRepository):
    """
    Thread-safe in-memory implementation of the ElectionRepository.
    """

    elections_db: dict[str, Election]
    votes_db: dict[str, list[StoredVote]]
    results_db: dict[str, TallyResult]
    _lock: asyncio.Lock

    def __init__(self):
        self.elections_db = {}
        self.votes_db = {}
        self.results_db = {}
        self._lock = asyncio.Lock()

    @override
    async def create_election(self, election: Election) -> Election:
        async with self._lock:
            self.elections_db[election.election_ref] = election
            self.votes_db.setdefault(election.election_ref, [])
            return election

    @override
    async def find_election(self, election_ref: str) -> Election | None:
        async with self._lock:
            return self.elections_db.get(election_ref)

    @override
    async def update_election_status(
        self, election_ref: str, status: ElectionStatus
    ) -> None:
        async with self._lock:
            election = self.elections_db.get(election_ref)
            if election is None:
                raise NotFoundError(f"Election {election_ref} not found")
            self.elections_db[election_ref] = election.model_copy(
                update={"status": status}
            )

    @override
    async def add_vote(self, vote: StoredVote) -> None:
        async with self._lock:
            votes = self.votes_db.setdefault(vote.election_ref, [])
            if any(v.voter_ref == vote.voter_ref for v in votes):
                raise DuplicateVoteError(
                    f"Voter has already voted in election {vote.election_ref}"
                )
            if any(
                v.vote_hash == vote.vote_hash
                for stored in self.votes_db.values()
                for v in stored
            ):
                raise DuplicateVoteError("Vote hash already recorded")
            votes.append(vote)

    @override
    async def find_votes(
        self, election_ref: str, verified: bool | None = True
    ) -> list[StoredVote]:
        async with self._lock:
            votes = self.votes_db.get(election_ref, [])
            if verified is None:
                return list(votes)
            return [v for v in votes if v.verified == verified]

    @override
    async def has_voted(self, election_ref: str, voter_ref: str) -> bool:
        async with self._lock:
            voter_ref = voter_ref.lower()
            return any(
                v.voter_ref == voter_ref for v in self.votes_db.get(election_ref, [])
            )

    @override
    async def publish_result(self, result: TallyResult) -> None:
        async with self._lock:
            if result.election_ref in self.results_db:
                raise DuplicateResultError(
                    f"Results already generated for election {result.election_ref}"
                )
            election = self.elections_db.get(result.election_ref)
            if election is None:
                raise NotFoundError(f"Election {result.election_ref} not found")

            self.results_db[result.election_ref] = result
            self.elections_db[result.election_ref] = election.model_copy(
                update={"status": ElectionStatus.RESULTS_PUBLISHED}
            )

    @override
    async def get_result(self, election_ref: str) -> TallyResult | None:
        async with self._lock:
            return self.results_db.get(election_ref)

    @override
    async def update_result(self, result: TallyResult) -> None:
        async with self._lock:
            if result.election_ref not in self.results_db:
                raise NotFoundError(
                    f"No results found for election {result.election_ref}"
                )
            self.results_db[result.election_ref] = result

    @override
    async def list_results(self, offset: int = 0, limit: int = 10) -> list[TallyResult]:
        async with self._lock:
            ordered = sorted(
                self.results_db.values(), key=lambda r: r.published_at, reverse=True
            )
            return ordered[offset : offset + limit]
