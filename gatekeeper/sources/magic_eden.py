"""
gatekeeper.sources.magic_eden — Magic Eden source
===================================================

``GET /v2/wallets/{wallet}/tokens`` with ``offset``/``limit`` paging.
Magic Eden keys collections by marketplace *symbol*, so configured symbols
are mapped back to on-chain collection addresses; a collection-scoped query
uses ``collectionSymbol`` when the collection has a known symbol.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from gatekeeper.constants import SOURCE_MAGIC_EDEN
from gatekeeper.sources.base import HttpSource, PageRequest, SourceItem, SourcePage

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def _symbol_of(raw: dict) -> str | None:
    for candidate in (raw.get("collectionSymbol"), raw.get("collection"), raw.get("symbol")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
        if isinstance(candidate, Mapping) and candidate.get("symbol"):
            return str(candidate["symbol"]).strip()
    return None


def parse_wallet_token(
    raw: dict, symbol_to_address: Mapping[str, str],
) -> SourceItem | None:
    """Map one Magic Eden wallet token to a :class:`SourceItem`.

    *symbol_to_address* is keyed by lowercased symbol.
    """
    asset_id = raw.get("mintAddress") or raw.get("tokenMint") or raw.get("id")
    if not asset_id:
        return None

    collections: list[str] = []
    address = raw.get("collectionAddress")
    if not address and isinstance(raw.get("collection"), Mapping):
        address = raw["collection"].get("address")
    if address:
        collections.append(str(address))

    symbol = _symbol_of(raw)
    if symbol:
        mapped = symbol_to_address.get(symbol.lower())
        if mapped and mapped not in collections:
            collections.append(mapped)
        collections.append(symbol)

    return SourceItem(
        asset_id=str(asset_id),
        name=raw.get("name") or "",
        collection_id=collections[0] if collections else None,
        collections=tuple(collections),
        attributes=raw.get("attributes"),
    )


@dataclass
class MagicEdenSource(HttpSource):
    name: str = SOURCE_MAGIC_EDEN
    base_url: str = "https://api-mainnet.magiceden.dev"
    # Lowercased collection symbol → collection address
    symbols: dict[str, str] = field(default_factory=dict)

    def supports_collection_scope(self, collection_id: str) -> bool:
        return self._symbol_for(collection_id) is not None

    def _symbol_for(self, collection_id: str) -> str | None:
        needle = collection_id.lower()
        for symbol, address in self.symbols.items():
            if address.lower() == needle:
                return symbol
        return None

    async def fetch_page(self, request: PageRequest) -> SourcePage:
        limit = min(request.limit, MAX_PAGE_SIZE)
        params: dict[str, str | int] = {
            "offset": (request.page - 1) * limit,
            "limit": limit,
        }
        if request.collection_id:
            symbol = self._symbol_for(request.collection_id)
            if symbol:
                params["collectionSymbol"] = symbol

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        response = await self._request(
            "GET",
            f"{self.base_url.rstrip('/')}/v2/wallets/{request.wallet}/tokens",
            params=params,
            headers=headers,
        )
        if response.status_code == 404:
            logger.debug("Magic Eden: no tokens for wallet %s", request.wallet)
            return SourcePage()
        self._raise_for_status(response)

        raw_items = response.json() or []
        items = tuple(
            item
            for item in (parse_wallet_token(raw, self.symbols) for raw in raw_items)
            if item is not None
        )
        return SourcePage(items=items, has_more=len(raw_items) == limit)
