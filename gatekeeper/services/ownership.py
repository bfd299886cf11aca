"""
gatekeeper.services.ownership — Discover → Evaluate → Sync pipeline
=====================================================================

The one pipeline shared by interactive verification and the scheduler:

    wallet ──► DiscoveryService.discover ──► rules.evaluate ──► RoleSynchronizer

Persistence of the outcome differs between callers (the session flow writes
state and the session transition atomically), so this module exposes the
stages separately plus :meth:`OwnershipVerifier.check_member`, which runs
all of them for a member with no session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Engine

from gatekeeper.database.engine import run_db
from gatekeeper.database.models import CheckTrigger
from gatekeeper.engine.rules import RuleEvaluation, RuleSpec, evaluate
from gatekeeper.errors import RoleSyncFailure
from gatekeeper.services.discovery import DiscoveryResult, DiscoveryService
from gatekeeper.services.role_sync import RoleSynchronizer, RoleSyncResult
from gatekeeper.services.rule_store import list_rules_by_guild
from gatekeeper.services.state_service import record_check

logger = logging.getLogger(__name__)


@dataclass
class OwnershipCheck:
    wallet_address: str
    discovery: DiscoveryResult
    evaluation: RuleEvaluation
    checked_at: datetime
    role_sync: RoleSyncResult = field(default_factory=RoleSyncResult)

    @property
    def asset_count(self) -> int:
        return self.evaluation.asset_count

    @property
    def is_verified(self) -> bool:
        return self.evaluation.is_verified


class OwnershipVerifier:
    """Runs discovery and rule evaluation for a wallet, then syncs roles.

    Parameters
    ----------
    engine:
        Database engine holding guild rules and verification state.
    discovery:
        The multi-source discovery service.
    synchronizer:
        Role synchronizer.  ``None`` evaluates without touching roles.
    clock:
        Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        engine: Engine,
        discovery: DiscoveryService,
        synchronizer: RoleSynchronizer | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.engine = engine
        self.discovery = discovery
        self.synchronizer = synchronizer
        self.clock = clock

    async def load_rules(self, guild_id: int) -> list[RuleSpec]:
        return await run_db(list_rules_by_guild, self.engine, guild_id)

    async def evaluate_wallet(
        self, wallet_address: str, rules: Sequence[RuleSpec],
    ) -> OwnershipCheck:
        """Discover and evaluate.  Raises ``SourceUnavailable`` on a full outage."""
        result = await self.discovery.discover(wallet_address)
        evaluation = evaluate(result.assets, rules)
        return OwnershipCheck(
            wallet_address=wallet_address,
            discovery=result,
            evaluation=evaluation,
            checked_at=self.clock(),
        )

    async def sync_roles(
        self, guild_id: int, member_id: int, evaluation: RuleEvaluation,
    ) -> RoleSyncResult:
        """Best-effort role sync; never raises."""
        if self.synchronizer is None:
            return RoleSyncResult()
        try:
            return await self.synchronizer.apply(
                guild_id, member_id, evaluation.grants, evaluation.revokes,
            )
        except Exception as exc:
            logger.exception(
                "Role sync crashed for member %d in guild %d", member_id, guild_id,
            )
            return RoleSyncResult(failures=[RoleSyncFailure(str(exc))])

    async def check_member(
        self,
        guild_id: int,
        member_id: int,
        wallet_address: str,
        *,
        username: str | None = None,
        trigger: CheckTrigger = CheckTrigger.SCHEDULED,
    ) -> OwnershipCheck:
        """Full pipeline for a member outside a verification session."""
        rules = await self.load_rules(guild_id)
        check = await self.evaluate_wallet(wallet_address, rules)
        await run_db(
            record_check,
            self.engine,
            discord_id=member_id,
            guild_id=guild_id,
            wallet_address=wallet_address,
            asset_count=check.asset_count,
            is_verified=check.is_verified,
            username=username,
            trigger=trigger,
            now=check.checked_at,
        )
        check.role_sync = await self.sync_roles(guild_id, member_id, check.evaluation)
        return check
