"""
gatekeeper.services.scheduler — Periodic Re-verification Scheduler
====================================================================

Keeps roles honest after members sell or move NFTs.  Each cycle:

    1. Prunes terminal verification sessions past the retention window.
    2. Selects at most ``max_users_per_run`` members by priority
       (see :func:`~gatekeeper.services.state_service.select_recheck_candidates`).
    3. Re-runs discovery → evaluation → role sync for them in fixed-size
       batches: sequential inside a batch, ``delay_between_users`` between
       members and ``delay_between_batches`` between batches, so provider
       rate limits are respected without coordinating with other callers.

Only one cycle runs at a time per scheduler instance.  A cycle requested
while another is in flight is skipped (or rejected with
:class:`~gatekeeper.errors.SchedulerBusy` when the caller asks for that).
A single member's failure is counted and logged; it never aborts the cycle.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import Engine

from gatekeeper.config import SchedulerSettings
from gatekeeper.database.engine import run_db
from gatekeeper.database.models import CheckTrigger
from gatekeeper.errors import SchedulerBusy, SourceUnavailable
from gatekeeper.services.ownership import OwnershipVerifier
from gatekeeper.services.state_service import (
    RecheckCandidate,
    cleanup_sessions,
    select_recheck_candidates,
)

logger = logging.getLogger(__name__)


class SchedulerState(enum.StrEnum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: datetime | None = None
    selected: int = 0
    processed: int = 0
    verified: int = 0
    unverified: int = 0
    errors: int = 0
    role_changes: int = 0
    role_failures: int = 0
    sessions_deleted: int = 0
    skipped: bool = False
    aborted: bool = False

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "selected": self.selected,
            "processed": self.processed,
            "verified": self.verified,
            "unverified": self.unverified,
            "errors": self.errors,
            "role_changes": self.role_changes,
            "role_failures": self.role_failures,
            "sessions_deleted": self.sessions_deleted,
            "skipped": self.skipped,
            "aborted": self.aborted,
        }


class ReverificationScheduler:
    """Runs bounded, priority-ordered re-verification cycles.

    Parameters
    ----------
    engine:
        Database engine with verification state.
    verifier:
        Shared discovery/evaluation/role-sync pipeline.
    settings:
        Cadence, batch sizing and priority thresholds.
    guild_id:
        Restrict selection to one guild (``None`` = every guild).
    """

    def __init__(
        self,
        engine: Engine,
        verifier: OwnershipVerifier,
        settings: SchedulerSettings,
        *,
        guild_id: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.engine = engine
        self.verifier = verifier
        self.settings = settings
        self.guild_id = guild_id
        self.state = SchedulerState.IDLE
        self.last_report: CycleReport | None = None
        self._sleep = sleep
        self._clock = clock
        self._shutdown = False

    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def request_shutdown(self) -> None:
        """Abandon the current cycle at the next member boundary."""
        self._shutdown = True

    async def run_cycle(self, *, raise_if_busy: bool = False) -> CycleReport:
        """Run one cycle, or skip it if another is already in flight."""
        if self.state is SchedulerState.RUNNING:
            if raise_if_busy:
                raise SchedulerBusy()
            logger.info("Re-verification cycle already running; skipping")
            return CycleReport(started_at=self._clock(), skipped=True)

        # No await between the check above and this assignment.
        self.state = SchedulerState.RUNNING
        self._shutdown = False
        report = CycleReport(started_at=self._clock())
        try:
            await self._run(report)
        finally:
            self.state = SchedulerState.IDLE
            report.finished_at = self._clock()
            self.last_report = report

        logger.info(
            "Re-verification cycle done: selected=%d processed=%d verified=%d "
            "unverified=%d errors=%d role_changes=%d sessions_deleted=%d%s",
            report.selected, report.processed, report.verified, report.unverified,
            report.errors, report.role_changes, report.sessions_deleted,
            " (aborted)" if report.aborted else "",
        )
        return report

    async def _run(self, report: CycleReport) -> None:
        try:
            report.sessions_deleted = await run_db(
                cleanup_sessions,
                self.engine,
                self.settings.session_retention_days,
                now=report.started_at,
            )
        except Exception:
            logger.exception("Session cleanup failed", extra={"task": "session_cleanup"})

        candidates = await run_db(
            select_recheck_candidates,
            self.engine,
            self.settings,
            guild_id=self.guild_id,
            now=report.started_at,
        )
        report.selected = len(candidates)
        if not candidates:
            return

        batch_size = max(1, self.settings.batch_size)
        batches = [
            candidates[i:i + batch_size] for i in range(0, len(candidates), batch_size)
        ]
        for batch_index, batch in enumerate(batches):
            for position, candidate in enumerate(batch):
                if self._shutdown:
                    report.aborted = True
                    logger.info("Re-verification cycle abandoned on shutdown")
                    return
                await self._process(candidate, report)
                if position < len(batch) - 1:
                    await self._sleep(self.settings.delay_between_users)
            if batch_index < len(batches) - 1:
                await self._sleep(self.settings.delay_between_batches)

    async def _process(self, candidate: RecheckCandidate, report: CycleReport) -> None:
        try:
            check = await self.verifier.check_member(
                candidate.guild_id,
                candidate.discord_id,
                candidate.wallet_address,
                username=candidate.username,
                trigger=CheckTrigger.SCHEDULED,
            )
        except SourceUnavailable as exc:
            report.errors += 1
            logger.warning(
                "Re-verification of user %d skipped: %s",
                candidate.discord_id, exc.user_message,
            )
            return
        except Exception:
            report.errors += 1
            logger.exception(
                "Re-verification of user %d failed", candidate.discord_id,
                extra={"task": "reverification"},
            )
            return

        report.processed += 1
        if check.is_verified:
            report.verified += 1
        else:
            report.unverified += 1
        report.role_changes += len(check.role_sync.added) + len(check.role_sync.removed)
        report.role_failures += len(check.role_sync.failures)
        if candidate.is_verified != check.is_verified:
            logger.info(
                "User %d in guild %d is now %s (priority %d, %d assets)",
                candidate.discord_id, candidate.guild_id,
                "verified" if check.is_verified else "unverified",
                candidate.priority, check.asset_count,
            )
