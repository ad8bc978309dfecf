from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class CandidateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate_id: int
    candidate_name: str
    party: str | None = None
    votes: int = Field(..., ge=0)
    percentage: float = Field(..., ge=0, le=100)


class BlockchainInfo(BaseModel):
    """External anchoring data. Attaching it never changes vote counts."""

    model_config = ConfigDict(frozen=True)

    network_id: int = 1
    contract_address: str = ""
    finalized_block_number: int = 0
    finalization_tx_hash: str = ""


class ResultMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_voters: int = Field(..., ge=0)
    voter_turnout: int = Field(..., ge=0)
    turnout_percentage: float = Field(..., ge=0)
    invalid_votes: int = Field(..., ge=0)
    election_type: str = "General"
    verification_method: str = "Blockchain"
    blockchain_info: BlockchainInfo = Field(default_factory=BlockchainInfo)


class TallyResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    election_ref: str
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    results: list[CandidateResult]
    winner: CandidateResult | None
    metadata: ResultMetadata
    is_finalized: bool = False
