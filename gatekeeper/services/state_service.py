"""
gatekeeper.services.state_service — Verification state & history
==================================================================

Everything the verification pipeline and the scheduler persist about a
member's wallet checks:

- ``record_check`` — upsert :class:`UserVerificationState` and append a
  :class:`VerificationHistory` row after every completed check.
- ``select_recheck_candidates`` — the scheduler's priority query.
- ``cleanup_sessions`` — prune terminal verification sessions.
- ``get_verification_stats`` — counters for the admin status command.

All functions are synchronous; call them through ``run_db()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, and_, case, delete, func, or_, select
from sqlalchemy.orm import Session

from gatekeeper.config import SchedulerSettings
from gatekeeper.database.engine import as_utc, get_session
from gatekeeper.database.models import (
    CheckTrigger,
    SessionStatus,
    UserVerificationState,
    VerificationHistory,
    VerificationSession,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (
    SessionStatus.EXPIRED.value,
    SessionStatus.COMPLETED.value,
    SessionStatus.FAILED.value,
    SessionStatus.VERIFIED.value,
)


@dataclass(frozen=True, slots=True)
class RecheckCandidate:
    discord_id: int
    guild_id: int
    wallet_address: str
    username: str | None
    is_verified: bool
    last_checked_at: datetime | None
    asset_count: int
    priority: int


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def record_check(
    engine: Engine,
    *,
    discord_id: int,
    guild_id: int,
    wallet_address: str,
    asset_count: int,
    is_verified: bool,
    username: str | None = None,
    trigger: CheckTrigger = CheckTrigger.INTERACTIVE,
    now: datetime | None = None,
) -> None:
    """Persist the outcome of one completed check."""
    with get_session(engine) as session:
        apply_check(
            session,
            discord_id=discord_id,
            guild_id=guild_id,
            wallet_address=wallet_address,
            asset_count=asset_count,
            is_verified=is_verified,
            username=username,
            trigger=trigger,
            now=now or datetime.now(UTC),
        )


def apply_check(
    session: Session,
    *,
    discord_id: int,
    guild_id: int,
    wallet_address: str,
    asset_count: int,
    is_verified: bool,
    username: str | None,
    trigger: CheckTrigger,
    now: datetime,
) -> None:
    """Upsert the member state and append history inside *session*."""
    state = session.get(UserVerificationState, (discord_id, guild_id))
    if state is None:
        state = UserVerificationState(
            discord_id=discord_id,
            guild_id=guild_id,
            created_at=now,
        )
        session.add(state)
    state.wallet_address = wallet_address
    state.is_verified = is_verified
    state.last_checked_at = now
    state.updated_at = now
    if username:
        state.username = username

    session.add(VerificationHistory(
        discord_id=discord_id,
        guild_id=guild_id,
        wallet_address=wallet_address,
        asset_count=asset_count,
        is_verified=is_verified,
        trigger=CheckTrigger(trigger).value,
        checked_at=now,
    ))


def get_state(
    engine: Engine, discord_id: int, guild_id: int,
) -> UserVerificationState | None:
    with get_session(engine) as session:
        state = session.get(UserVerificationState, (discord_id, guild_id))
        if state is not None:
            session.expunge(state)
        return state


# ---------------------------------------------------------------------------
# Scheduler selection
# ---------------------------------------------------------------------------
def select_recheck_candidates(
    engine: Engine,
    settings: SchedulerSettings,
    *,
    guild_id: int | None = None,
    now: datetime | None = None,
) -> list[RecheckCandidate]:
    """Return at most ``max_users_per_run`` members due for re-verification.

    Priority tiers (lower runs first):

    1. never checked
    2. last check older than ``stale_hours``
    3. holds ≥ ``whale_asset_threshold`` assets (largest count recorded in
       the last ``history_window_days``) and last check older than
       ``whale_stale_hours``
    4. state created within the last ``new_user_days``
    5. everyone else

    Members checked within ``cooldown_hours`` are skipped.  Within a tier the
    oldest check goes first, then the larger holder.
    """
    now = now or datetime.now(UTC)
    stale_cutoff = now - timedelta(hours=settings.stale_hours)
    whale_cutoff = now - timedelta(hours=settings.whale_stale_hours)
    cooldown_cutoff = now - timedelta(hours=settings.cooldown_hours)
    new_user_cutoff = now - timedelta(days=settings.new_user_days)
    history_cutoff = now - timedelta(days=settings.history_window_days)

    recent = (
        select(
            VerificationHistory.discord_id.label("discord_id"),
            VerificationHistory.guild_id.label("guild_id"),
            func.max(VerificationHistory.asset_count).label("asset_count"),
        )
        .where(VerificationHistory.checked_at >= history_cutoff)
        .group_by(VerificationHistory.discord_id, VerificationHistory.guild_id)
        .subquery()
    )
    asset_count = func.coalesce(recent.c.asset_count, 0)
    last = UserVerificationState.last_checked_at

    priority = case(
        (last.is_(None), 1),
        (last < stale_cutoff, 2),
        (and_(asset_count >= settings.whale_asset_threshold, last < whale_cutoff), 3),
        (UserVerificationState.created_at > new_user_cutoff, 4),
        else_=5,
    ).label("priority")

    stmt = (
        select(UserVerificationState, asset_count.label("asset_count"), priority)
        .outerjoin(
            recent,
            and_(
                recent.c.discord_id == UserVerificationState.discord_id,
                recent.c.guild_id == UserVerificationState.guild_id,
            ),
        )
        .where(
            UserVerificationState.wallet_address.is_not(None),
            UserVerificationState.wallet_address != "",
            or_(last.is_(None), last < cooldown_cutoff),
        )
        .order_by(
            priority.asc(),
            last.is_(None).desc(),
            last.asc(),
            asset_count.desc(),
        )
        .limit(settings.max_users_per_run)
    )
    if guild_id is not None:
        stmt = stmt.where(UserVerificationState.guild_id == guild_id)

    with get_session(engine) as session:
        rows = session.execute(stmt).all()
        return [
            RecheckCandidate(
                discord_id=state.discord_id,
                guild_id=state.guild_id,
                wallet_address=state.wallet_address,
                username=state.username,
                is_verified=state.is_verified,
                last_checked_at=as_utc(state.last_checked_at),
                asset_count=int(count or 0),
                priority=int(prio),
            )
            for state, count, prio in rows
        ]


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
def cleanup_sessions(
    engine: Engine, retention_days: int = 7, *, now: datetime | None = None,
) -> int:
    """Delete terminal sessions created more than *retention_days* ago."""
    cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
    with get_session(engine) as session:
        result = session.execute(
            delete(VerificationSession).where(
                VerificationSession.status.in_(TERMINAL_STATUSES),
                VerificationSession.created_at < cutoff,
            )
        )
        deleted = result.rowcount or 0
    if deleted:
        logger.info("Session cleanup: %d sessions older than %d days removed", deleted, retention_days)
    return deleted


def get_verification_stats(
    engine: Engine, guild_id: int | None = None, *, now: datetime | None = None,
) -> dict[str, int]:
    """Return ``{"total", "verified", "never_checked", "checked_24h", "checked_7d"}``."""
    now = now or datetime.now(UTC)
    last = UserVerificationState.last_checked_at
    stmt = select(
        func.count().label("total"),
        func.count(case((UserVerificationState.is_verified.is_(True), 1))).label("verified"),
        func.count(case((last.is_(None), 1))).label("never_checked"),
        func.count(case((last > now - timedelta(hours=24), 1))).label("checked_24h"),
        func.count(case((last > now - timedelta(days=7), 1))).label("checked_7d"),
    ).where(UserVerificationState.wallet_address.is_not(None))
    if guild_id is not None:
        stmt = stmt.where(UserVerificationState.guild_id == guild_id)

    with get_session(engine) as session:
        row = session.execute(stmt).one()
        return {
            "total": row.total,
            "verified": row.verified,
            "never_checked": row.never_checked,
            "checked_24h": row.checked_24h,
            "checked_7d": row.checked_7d,
        }
