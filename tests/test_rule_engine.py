"""
tests/test_rule_engine.py — Rule evaluation
=============================================
Quantity tiers are mutually exclusive per collection, trait rules are
independent, and a granted role is never revoked in the same pass.
"""

from __future__ import annotations

from gatekeeper.database.models import RuleType
from gatekeeper.engine.assets import Attribute, ReconciledAsset
from gatekeeper.engine.rules import RuleSpec, evaluate, pending_summaries

COLL = "CoLLection1111"
OTHER = "OtherColl2222"


def _assets(count: int, collection: str = COLL, attributes=()) -> list[ReconciledAsset]:
    return [
        ReconciledAsset(
            asset_id=f"mint{collection}{i}",
            collection_id=collection,
            collections={collection.lower()},
            attributes=tuple(attributes),
        )
        for i in range(count)
    ]


def _tier(role_id: int, required: int, max_count: int | None = None, collection: str = COLL):
    return RuleSpec(
        collection_id=collection, role_id=role_id,
        required_count=required, max_count=max_count,
    )


def _trait(role_id: int, trait_type: str, trait_value: str, collection: str = COLL):
    return RuleSpec(
        collection_id=collection, role_id=role_id, rule_type=RuleType.TRAIT,
        trait_type=trait_type, trait_value=trait_value,
    )


TIERS = [_tier(100, 1), _tier(200, 5), _tier(300, 10)]


class TestQuantityTiers:
    def test_highest_eligible_tier_wins(self):
        result = evaluate(_assets(6), TIERS)
        assert result.grants == {200}
        assert result.revokes == {100, 300}
        assert result.is_verified

    def test_exact_threshold_qualifies(self):
        result = evaluate(_assets(10), TIERS)
        assert result.grants == {300}
        assert result.revokes == {100, 200}

    def test_no_assets_revokes_every_tier(self):
        result = evaluate([], TIERS)
        assert result.grants == set()
        assert result.revokes == {100, 200, 300}
        assert not result.is_verified
        assert result.asset_count == 0

    def test_max_count_caps_a_tier(self):
        rules = [_tier(100, 1, max_count=4), _tier(200, 5, max_count=9)]
        assert evaluate(_assets(4), rules).grants == {100}
        result = evaluate(_assets(12), rules)
        assert result.grants == set()
        assert result.revokes == {100, 200}

    def test_collection_match_is_case_insensitive(self):
        rules = [_tier(100, 1, collection=COLL.upper())]
        assert evaluate(_assets(1), rules).grants == {100}

    def test_other_collections_do_not_count(self):
        result = evaluate(_assets(3, collection=OTHER), TIERS)
        assert result.grants == set()
        assert result.asset_count == 3

    def test_tiers_of_different_collections_are_independent(self):
        rules = TIERS + [_tier(400, 1, collection=OTHER)]
        assets = _assets(2) + _assets(1, collection=OTHER)
        result = evaluate(assets, rules)
        assert result.grants == {100, 400}

    def test_role_shared_by_two_tiers_is_kept(self):
        rules = [_tier(100, 1), _tier(100, 5), _tier(300, 10)]
        result = evaluate(_assets(7), rules)
        assert result.grants == {100}
        assert 100 not in result.revokes


class TestTraitRules:
    def test_trait_granted_alongside_tier(self):
        rules = TIERS + [_trait(900, "Class", "King")]
        assets = _assets(2) + _assets(1, attributes=[Attribute("class", "King")])
        result = evaluate(assets, rules)
        assert result.grants == {100, 900}

    def test_trait_value_is_case_sensitive(self):
        rules = [_trait(900, "Class", "King")]
        result = evaluate(_assets(1, attributes=[Attribute("Class", "king")]), rules)
        assert result.grants == set()
        assert result.revokes == {900}

    def test_trait_outside_collection_does_not_count(self):
        rules = [_trait(900, "Class", "King")]
        assets = _assets(1, collection=OTHER, attributes=[Attribute("Class", "King")])
        assert evaluate(assets, rules).revokes == {900}

    def test_trait_alone_verifies(self):
        rules = [_trait(900, "Class", "King")]
        result = evaluate(_assets(1, attributes=[Attribute("Class", "King")]), rules)
        assert result.is_verified


class TestInvariants:
    def test_grants_and_revokes_are_disjoint(self):
        rules = [_tier(100, 1), _tier(200, 3), _trait(200, "Class", "King")]
        assets = _assets(1, attributes=[Attribute("Class", "King")])
        result = evaluate(assets, rules)
        assert result.grants == {100, 200}
        assert not result.grants & result.revokes

    def test_summaries_follow_rule_order(self):
        rules = [_trait(900, "Class", "King"), *TIERS]
        result = evaluate(_assets(5), rules)
        assert [s.rule for s in result.summaries] == rules
        selected = [s.rule.role_id for s in result.summaries if s.selected]
        assert selected == [200]
        met = [s.rule.role_id for s in result.summaries if s.met]
        assert met == [100, 200]

    def test_no_rules_means_nothing_to_do(self):
        result = evaluate(_assets(3), [])
        assert result.grants == set() and result.revokes == set()
        assert not result.is_verified

    def test_pending_summaries(self):
        summaries = pending_summaries(TIERS)
        assert [s.to_dict()["role_id"] for s in summaries] == ["100", "200", "300"]
        assert not any(s.met for s in summaries)
