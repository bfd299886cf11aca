"""
tests/test_assets.py — Attribute normalization and asset merging
==================================================================
"""

from __future__ import annotations

from gatekeeper.engine.assets import (
    Attribute,
    ReconciledAsset,
    count_in_collection,
    normalize_attributes,
)


class TestNormalizeAttributes:
    def test_list_form(self):
        raw = [{"trait_type": "Class", "value": "King"}, {"traitType": "Eyes", "value": "Laser"}]
        assert normalize_attributes(raw) == (
            Attribute("Class", "King"), Attribute("Eyes", "Laser"),
        )

    def test_map_form(self):
        assert normalize_attributes({"Class": "King", "Level": 3}) == (
            Attribute("Class", "King"), Attribute("Level", "3"),
        )

    def test_list_of_single_key_maps(self):
        assert normalize_attributes([{"Class": "King"}, {"Eyes": "Laser"}]) == (
            Attribute("Class", "King"), Attribute("Eyes", "Laser"),
        )

    def test_booleans_are_lowercase_strings(self):
        assert normalize_attributes({"Legendary": True}) == (Attribute("Legendary", "true"),)

    def test_malformed_payloads_are_dropped(self):
        assert normalize_attributes(None) == ()
        assert normalize_attributes("Class: King") == ()
        assert normalize_attributes([None, 7, {"trait_type": "Class", "value": None}]) == ()

    def test_nested_values_are_ignored(self):
        assert normalize_attributes({"Class": "King", "meta": {"x": 1}}) == (
            Attribute("Class", "King"),
        )


class TestReconciledAsset:
    def test_key_is_lowercase(self):
        assert ReconciledAsset(asset_id="AbC").key == "abc"

    def test_merge_fills_gaps_and_unions(self):
        first = ReconciledAsset(asset_id="A", collections={"c1"}, sources={"helius"})
        second = ReconciledAsset(
            asset_id="a",
            display_name="Realm #1",
            collection_id="C2",
            collections={"c2"},
            attributes=(Attribute("Class", "King"),),
            sources={"magic_eden"},
        )
        first.merge(second)
        assert first.asset_id == "A"
        assert first.display_name == "Realm #1"
        assert first.collections == {"c1", "c2"}
        assert first.sources == {"helius", "magic_eden"}
        assert first.has_trait("class", "King")

    def test_merge_keeps_existing_values(self):
        first = ReconciledAsset(asset_id="A", display_name="From Helius")
        first.merge(ReconciledAsset(asset_id="A", display_name="From ME"))
        assert first.display_name == "From Helius"

    def test_count_in_collection(self):
        assets = [
            ReconciledAsset(asset_id="1", collections={"coll"}),
            ReconciledAsset(asset_id="2", collections={"coll", "sym"}),
            ReconciledAsset(asset_id="3", collections={"other"}),
        ]
        assert count_in_collection(assets, "COLL") == 2
