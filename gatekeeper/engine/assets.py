"""
gatekeeper.engine.assets — Reconciled NFT assets
==================================================

Providers describe the same NFT in different shapes.  This module defines
the single shape the rule evaluator sees (:class:`ReconciledAsset`) and the
attribute normalization every provider payload goes through.

Two attribute encodings exist in the wild and both are accepted:

* list form — ``[{"trait_type": "Class", "value": "King"}, ...]``
* map form  — ``{"Class": "King", ...}`` (or a list of single-key maps)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Attribute:
    type: str
    value: str

    def matches(self, trait_type: str, trait_value: str) -> bool:
        """Trait type compares case-insensitively; the value must be exact."""
        return self.type.lower() == trait_type.lower() and self.value == trait_value


def _coerce_value(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def normalize_attributes(raw: object) -> tuple[Attribute, ...]:
    """Convert any supported attribute encoding to a tuple of :class:`Attribute`.

    Unknown shapes and entries without a type are dropped, never raised on:
    provider metadata is user-authored and frequently malformed.
    """
    if not raw:
        return ()

    if isinstance(raw, Mapping):
        items: Iterable = [raw]
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        return ()

    out: list[Attribute] = []
    for entry in items:
        if not isinstance(entry, Mapping):
            continue
        trait_type = entry.get("trait_type", entry.get("traitType"))
        if trait_type is not None and "value" in entry:
            value = _coerce_value(entry["value"])
            if value is not None:
                out.append(Attribute(str(trait_type), value))
            continue
        # Map form: every key is a trait type
        for key, value in entry.items():
            coerced = _coerce_value(value)
            if coerced is not None and not isinstance(value, (Mapping, list)):
                out.append(Attribute(str(key), coerced))
    return tuple(out)


@dataclass(slots=True)
class ReconciledAsset:
    """One NFT after cross-source deduplication.

    ``asset_id`` keeps the casing of the first source that reported it;
    :attr:`key` is the case-insensitive identity used for deduplication.
    ``collections`` holds every grouping key any source reported, lowercased.
    """

    asset_id: str
    display_name: str = ""
    collection_id: str | None = None
    collections: set[str] = field(default_factory=set)
    attributes: tuple[Attribute, ...] = ()
    sources: set[str] = field(default_factory=set)

    @property
    def key(self) -> str:
        return self.asset_id.lower()

    def in_collection(self, collection_id: str) -> bool:
        return collection_id.lower() in self.collections

    def has_trait(self, trait_type: str, trait_value: str) -> bool:
        return any(attr.matches(trait_type, trait_value) for attr in self.attributes)

    def merge(self, other: ReconciledAsset) -> None:
        """Fold a lower-priority duplicate into this asset.

        Sources and collections are unioned; display name and attributes are
        only filled in where this asset has none.
        """
        self.sources |= other.sources
        self.collections |= other.collections
        if not self.display_name and other.display_name:
            self.display_name = other.display_name
        if not self.collection_id and other.collection_id:
            self.collection_id = other.collection_id
        if not self.attributes and other.attributes:
            self.attributes = other.attributes


def count_in_collection(assets: Iterable[ReconciledAsset], collection_id: str) -> int:
    return sum(1 for asset in assets if asset.in_collection(collection_id))
