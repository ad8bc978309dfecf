from datetime import datetime
from typing import Any, final

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


@final
class ElectionTable(Base):
    __tablename__ = "elections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    election_type: Mapped[str] = mapped_column(
        String(64), nullable=False, default="General"
    )
    contract_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    candidates: Mapped[list["CandidateTable"]] = relationship(
        "CandidateTable",
        back_populates="election",
        cascade="all, delete-orphan",
        order_by="CandidateTable.position",
    )
    eligible_voters: Mapped[list["EligibleVoterTable"]] = relationship(
        "EligibleVoterTable",
        back_populates="election",
        cascade="all, delete-orphan",
        order_by="EligibleVoterTable.id",
    )
    votes: Mapped[list["VoteTable"]] = relationship(
        "VoteTable", back_populates="election", cascade="all, delete-orphan"
    )


@final
class CandidateTable(Base):
    __tablename__ = "candidates"
    __table_args__ = (UniqueConstraint("election_id", "position"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    election_id: Mapped[str] = mapped_column(
        ForeignKey("elections.id"), nullable=False
    )
    # Declared order; a vote's candidate choice indexes into it
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    candidate_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    party: Mapped[str | None] = mapped_column(String(255), nullable=True)

    election: Mapped["ElectionTable"] = relationship(
        "ElectionTable", back_populates="candidates"
    )


@final
class EligibleVoterTable(Base):
    __tablename__ = "eligible_voters"
    __table_args__ = (UniqueConstraint("election_id", "voter_ref"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    election_id: Mapped[str] = mapped_column(
        ForeignKey("elections.id"), nullable=False
    )
    voter_ref: Mapped[str] = mapped_column(String(255), nullable=False)

    election: Mapped["ElectionTable"] = relationship(
        "ElectionTable", back_populates="eligible_voters"
    )


@final
class VoteTable(Base):
    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("election_id", "voter_ref"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    election_id: Mapped[str] = mapped_column(
        ForeignKey("elections.id"), nullable=False, index=True
    )
    voter_ref: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # JSON blob of the VoteEnvelope
    envelope: Mapped[str] = mapped_column(Text, nullable=False)
    vote_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    transaction_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cast_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    election: Mapped["ElectionTable"] = relationship(
        "ElectionTable", back_populates="votes"
    )


@final
class ResultTable(Base):
    __tablename__ = "results"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # One result per election; concurrent tallies race on this constraint
    election_id: Mapped[str] = mapped_column(
        ForeignKey("elections.id"), unique=True, nullable=False
    )
    published_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    results: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    winner: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    result_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False
    )
    is_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
