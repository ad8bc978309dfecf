from datetime import datetime, timezone

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import ValidationError


class VoteRecord(BaseModel):
    """
    The plaintext content sealed inside a vote envelope.
    Serialized with camelCase keys so stored payloads stay readable by
    other consumers of the document store.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    election_ref: str = Field(..., min_length=1, alias="electionRef")
    candidate_choice: int = Field(..., ge=0, alias="candidateChoice")
    voter_ref: str = Field(..., min_length=1, alias="voterRef")
    timestamp: int = Field(..., ge=0, description="Epoch milliseconds")


class VoteEnvelope(BaseModel):
    """
    Persisted, encrypted form of one vote. Immutable once created.
    Storage keys mirror the documents already held by the vote store.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    encrypted_payload: str = Field(..., alias="encryptedVote")
    wrapped_key: str = Field(..., alias="encryptedKey")
    iv: str
    auth_tag: str = Field(..., alias="tag")

    def to_storage(self) -> str:
        """Serializes the envelope into the JSON blob kept on the vote document."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_storage(cls, blob: str) -> "VoteEnvelope":
        try:
            return cls.model_validate_json(blob)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Malformed vote envelope: {e.error_count()} errors")


class SealedVote(BaseModel):
    """An envelope together with the voter's receipt."""

    envelope: VoteEnvelope
    vote_hash: str
    signature: str


class StoredVote(BaseModel):
    """
    A vote document as held by the vote store.
    A stored envelope blob that does not parse is kept as raw text, so one
    corrupt document is rejected when it is opened rather than when it is read.
    """

    election_ref: str
    voter_ref: str
    envelope: VoteEnvelope | str
    vote_hash: str
    transaction_ref: str | None = None
    verified: bool = False
    cast_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("voter_ref")
    @classmethod
    def normalize_voter_ref(cls, v: str) -> str:
        # Wallet addresses are compared case-insensitively
        return v.lower()

    def parsed_envelope(self) -> VoteEnvelope:
        """Raises ValidationError when the stored blob is not an envelope."""
        if isinstance(self.envelope, VoteEnvelope):
            return self.envelope
        return VoteEnvelope.from_storage(self.envelope)

    def envelope_blob(self) -> str:
        if isinstance(self.envelope, VoteEnvelope):
            return self.envelope.to_storage()
        return self.envelope
