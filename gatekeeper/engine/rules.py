"""
gatekeeper.engine.rules — Rule Evaluation Engine
==================================================

Pure function from (reconciled assets, guild rules) to role grants/revokes.
No Discord I/O, no DB I/O inside the engine.

Two rule kinds:

* **Quantity tiers** — all quantity rules of one collection are mutually
  exclusive.  Of the rules whose ``[required_count, max_count]`` range
  contains the owned count, the one with the highest ``required_count``
  wins; every other role of the group is revoked.
* **Trait rules** — independent.  Granted while the member owns at least
  one asset of the collection carrying the trait, revoked otherwise.

A role granted by any rule is never revoked in the same evaluation, and
roles that no rule mentions are never touched.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gatekeeper.database.models import RuleType
from gatekeeper.engine.assets import ReconciledAsset, count_in_collection

if TYPE_CHECKING:
    from gatekeeper.database.models import GuildRule


# ---------------------------------------------------------------------------
# Inputs / outputs
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RuleSpec:
    """Detached, immutable view of a :class:`GuildRule` row."""

    collection_id: str
    role_id: int
    rule_type: RuleType = RuleType.QUANTITY
    required_count: int = 1
    max_count: int | None = None
    trait_type: str | None = None
    trait_value: str | None = None
    role_name: str | None = None
    rule_id: int | None = None

    @classmethod
    def from_row(cls, row: GuildRule) -> RuleSpec:
        return cls(
            collection_id=row.collection_id,
            role_id=int(row.role_id),
            rule_type=RuleType(row.rule_type),
            required_count=row.required_count or 1,
            max_count=row.max_count,
            trait_type=row.trait_type,
            trait_value=row.trait_value,
            role_name=row.role_name,
            rule_id=row.id,
        )

    def accepts(self, owned: int) -> bool:
        if owned < self.required_count:
            return False
        return self.max_count is None or owned <= self.max_count


@dataclass(slots=True)
class RuleSummary:
    """Per-rule outcome, shown to the member and stored nowhere."""

    rule: RuleSpec
    owned_count: int
    met: bool
    selected: bool = False

    def to_dict(self) -> dict:
        rule = self.rule
        return {
            "rule_id": rule.rule_id,
            "rule_type": rule.rule_type.value,
            "collection_id": rule.collection_id,
            "role_id": str(rule.role_id),
            "role_name": rule.role_name,
            "required_count": rule.required_count if rule.rule_type is RuleType.QUANTITY else 1,
            "max_count": rule.max_count,
            "trait_type": rule.trait_type,
            "trait_value": rule.trait_value,
            "owned_count": self.owned_count,
            "met": self.met,
            "selected": self.selected,
        }


@dataclass
class RuleEvaluation:
    grants: set[int] = field(default_factory=set)
    revokes: set[int] = field(default_factory=set)
    summaries: list[RuleSummary] = field(default_factory=list)
    asset_count: int = 0

    @property
    def is_verified(self) -> bool:
        return any(summary.met for summary in self.summaries)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------
def _group_quantity_rules(rules: Iterable[RuleSpec]) -> dict[str, list[RuleSpec]]:
    groups: dict[str, list[RuleSpec]] = {}
    for rule in rules:
        if rule.rule_type is RuleType.QUANTITY:
            groups.setdefault(rule.collection_id.lower(), []).append(rule)
    return groups


def _count_trait(
    assets: Sequence[ReconciledAsset], rule: RuleSpec,
) -> int:
    if not rule.trait_type or rule.trait_value is None:
        return 0
    return sum(
        1
        for asset in assets
        if asset.in_collection(rule.collection_id)
        and asset.has_trait(rule.trait_type, rule.trait_value)
    )


def evaluate(
    assets: Sequence[ReconciledAsset], rules: Sequence[RuleSpec],
) -> RuleEvaluation:
    """Compute the role changes implied by *assets* under *rules*.

    Parameters
    ----------
    assets:
        Deduplicated assets currently owned by the wallet.
    rules:
        Every rule configured for the guild.

    Returns
    -------
    RuleEvaluation
        ``grants`` and ``revokes`` are disjoint; ``summaries`` preserves the
        input rule order.
    """
    result = RuleEvaluation(asset_count=len(assets))
    summary_by_rule: dict[int, RuleSummary] = {}

    # --- Quantity tiers --------------------------------------------------
    for collection_key, group in _group_quantity_rules(rules).items():
        owned = count_in_collection(assets, collection_key)
        eligible = [rule for rule in group if rule.accepts(owned)]

        chosen: RuleSpec | None = None
        if eligible:
            chosen = max(eligible, key=lambda r: r.required_count)
            result.grants.add(chosen.role_id)

        for rule in group:
            if chosen is None or rule.role_id != chosen.role_id:
                result.revokes.add(rule.role_id)
            summary_by_rule[id(rule)] = RuleSummary(
                rule=rule,
                owned_count=owned,
                met=rule in eligible,
                selected=rule is chosen,
            )

    # --- Trait rules -----------------------------------------------------
    for rule in rules:
        if rule.rule_type is not RuleType.TRAIT:
            continue
        owned = _count_trait(assets, rule)
        if owned > 0:
            result.grants.add(rule.role_id)
        else:
            result.revokes.add(rule.role_id)
        summary_by_rule[id(rule)] = RuleSummary(
            rule=rule, owned_count=owned, met=owned > 0, selected=owned > 0,
        )

    result.revokes -= result.grants
    result.summaries = [summary_by_rule[id(rule)] for rule in rules]
    return result


def pending_summaries(rules: Sequence[RuleSpec]) -> list[RuleSummary]:
    """Summaries for a session that has not been verified yet."""
    return [RuleSummary(rule=rule, owned_count=0, met=False) for rule in rules]
