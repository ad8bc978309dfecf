from enum import StrEnum

from pydantic import BaseModel, Field


class ElectionStatus(StrEnum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"
    RESULTS_PUBLISHED = "results_published"


class Role(StrEnum):
    VOTER = "voter"
    ADMIN = "admin"
    ELECTION_COMMISSIONER = "election_commissioner"


class Candidate(BaseModel):
    id: int
    name: str = Field(..., min_length=1)
    party: str | None = None


class Election(BaseModel):
    election_ref: str
    title: str
    status: ElectionStatus = ElectionStatus.DRAFT
    candidates: list[Candidate] = Field(default_factory=list)
    eligible_voters: list[str] = Field(default_factory=list)
    election_type: str = "General"
    contract_address: str | None = None


class AuthContext(BaseModel):
    """A caller identity already resolved by the authentication layer."""

    subject_id: str
    role: Role
