"""
gatekeeper.services.rule_store — Guild rule persistence
=========================================================

Synchronous CRUD for :class:`~gatekeeper.database.models.GuildRule`.  Call
from async code via ``run_db()``.  The evaluator only ever sees detached
:class:`~gatekeeper.engine.rules.RuleSpec` values returned from here.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, delete, select

from gatekeeper.database.engine import get_session
from gatekeeper.database.models import GuildRule, RuleType
from gatekeeper.engine.rules import RuleSpec

logger = logging.getLogger(__name__)


def list_rules_by_guild(engine: Engine, guild_id: int) -> list[RuleSpec]:
    """Return every rule of *guild_id*, oldest first."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(GuildRule)
            .where(GuildRule.guild_id == guild_id)
            .order_by(GuildRule.id)
        ).all()
        return [RuleSpec.from_row(row) for row in rows]


def add_quantity_rule(
    engine: Engine,
    guild_id: int,
    collection_id: str,
    role_id: int,
    required_count: int = 1,
    max_count: int | None = None,
    role_name: str | None = None,
) -> RuleSpec:
    """Add one quantity tier.

    Raises
    ------
    ValueError
        If the count range is empty or negative.
    """
    if required_count < 1:
        raise ValueError("required_count must be at least 1")
    if max_count is not None and max_count < required_count:
        raise ValueError("max_count must be greater than or equal to required_count")

    with get_session(engine) as session:
        row = GuildRule(
            guild_id=guild_id,
            collection_id=collection_id.strip(),
            rule_type=RuleType.QUANTITY.value,
            required_count=required_count,
            max_count=max_count,
            role_id=role_id,
            role_name=role_name,
        )
        session.add(row)
        session.flush()
        rule = RuleSpec.from_row(row)

    logger.info(
        "Added quantity rule %s for guild %d: %s ≥%d → role %d",
        rule.rule_id, guild_id, collection_id, required_count, role_id,
    )
    return rule


def add_trait_rule(
    engine: Engine,
    guild_id: int,
    collection_id: str,
    trait_type: str,
    trait_value: str,
    role_id: int,
    role_name: str | None = None,
) -> RuleSpec:
    if not trait_type.strip() or not trait_value.strip():
        raise ValueError("trait_type and trait_value are required")

    with get_session(engine) as session:
        row = GuildRule(
            guild_id=guild_id,
            collection_id=collection_id.strip(),
            rule_type=RuleType.TRAIT.value,
            required_count=1,
            trait_type=trait_type.strip(),
            trait_value=trait_value.strip(),
            role_id=role_id,
            role_name=role_name,
        )
        session.add(row)
        session.flush()
        rule = RuleSpec.from_row(row)

    logger.info(
        "Added trait rule %s for guild %d: %s %s=%s → role %d",
        rule.rule_id, guild_id, collection_id, trait_type, trait_value, role_id,
    )
    return rule


def remove_rule(engine: Engine, guild_id: int, rule_id: int) -> bool:
    """Delete one rule.  Returns ``False`` if it did not exist in the guild."""
    with get_session(engine) as session:
        result = session.execute(
            delete(GuildRule).where(
                GuildRule.id == rule_id, GuildRule.guild_id == guild_id,
            )
        )
        removed = result.rowcount > 0

    if removed:
        logger.info("Removed rule %d from guild %d", rule_id, guild_id)
    return removed
