"""
gatekeeper.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Tables:
- verification_sessions      — Short-lived signed-challenge sessions
- guild_rules                — Quantity tiers and trait rules per guild
- user_verification_states   — Latest verification outcome per member
- verification_history       — Append-only journal of completed checks
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Gatekeeper ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SessionStatus(enum.StrEnum):
    """Lifecycle of a verification session.

    ``pending`` is the only non-terminal state.
    """
    PENDING = "pending"
    VERIFIED = "verified"      # Signature valid, at least one rule met
    COMPLETED = "completed"    # Signature valid, no rule met
    FAILED = "failed"          # Signature did not verify
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.PENDING


class RuleType(enum.StrEnum):
    QUANTITY = "quantity"
    TRAIT = "trait"


class CheckTrigger(enum.StrEnum):
    """What caused a verification check."""
    INTERACTIVE = "interactive"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Verification sessions
# ---------------------------------------------------------------------------
class VerificationSession(Base):
    __tablename__ = "verification_sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    discord_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    wallet_address: Mapped[str | None] = mapped_column(String(64), default=None)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    challenge_message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SessionStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        Index("ix_verification_sessions_member", "discord_id", "guild_id"),
        Index("ix_verification_sessions_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<VerificationSession {self.id} user={self.discord_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Guild rules — read by the evaluator, written by admin commands
# ---------------------------------------------------------------------------
class GuildRule(Base):
    """A role requirement for one collection.

    Quantity rules sharing a ``(guild_id, collection_id)`` form mutually
    exclusive tiers.  Trait rules are evaluated independently.
    """
    __tablename__ = "guild_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    collection_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rule_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=RuleType.QUANTITY.value
    )
    required_count: Mapped[int] = mapped_column(Integer, default=1)
    max_count: Mapped[int | None] = mapped_column(Integer, default=None)
    trait_type: Mapped[str | None] = mapped_column(String(100), default=None)
    trait_value: Mapped[str | None] = mapped_column(String(200), default=None)
    role_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    role_name: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_guild_rules_guild_collection", "guild_id", "collection_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<GuildRule {self.id} guild={self.guild_id} {self.rule_type} "
            f"role={self.role_id}>"
        )


# ---------------------------------------------------------------------------
# Verification state — one row per (member, guild)
# ---------------------------------------------------------------------------
class UserVerificationState(Base):
    __tablename__ = "user_verification_states"

    discord_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    wallet_address: Mapped[str | None] = mapped_column(String(64), default=None)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    last_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_user_verification_states_last_checked", "last_checked_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserVerificationState user={self.discord_id} guild={self.guild_id} "
            f"verified={self.is_verified}>"
        )


# ---------------------------------------------------------------------------
# Verification history — append-only
# ---------------------------------------------------------------------------
class VerificationHistory(Base):
    __tablename__ = "verification_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    asset_count: Mapped[int] = mapped_column(Integer, default=0)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    trigger: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CheckTrigger.INTERACTIVE.value
    )
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_verification_history_member_checked", "discord_id", "guild_id", "checked_at"),
    )
