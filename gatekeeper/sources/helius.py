"""
gatekeeper.sources.helius — Helius DAS source
===============================================

Uses the Digital Asset Standard JSON-RPC method ``getAssetsByOwner``.
Pages are 1-based; a page shorter than ``limit`` is the last one.  Helius
answers 404 for wallets it has never indexed, which is treated as empty.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from gatekeeper.constants import SOURCE_HELIUS
from gatekeeper.errors import SourceUnavailable
from gatekeeper.sources.base import HttpSource, PageRequest, SourceItem, SourcePage

logger = logging.getLogger(__name__)


def parse_das_asset(raw: dict) -> SourceItem | None:
    """Map one DAS asset object to a :class:`SourceItem`."""
    asset_id = raw.get("id")
    if not asset_id:
        return None

    metadata = (raw.get("content") or {}).get("metadata") or {}
    grouping = raw.get("grouping") or []

    collections: list[str] = []
    primary: str | None = None
    for group in grouping:
        value = group.get("group_value")
        if not value:
            continue
        collections.append(value)
        if primary is None and group.get("group_key") == "collection":
            primary = value

    return SourceItem(
        asset_id=str(asset_id),
        name=metadata.get("name") or "",
        collection_id=primary,
        collections=tuple(collections),
        attributes=metadata.get("attributes"),
    )


@dataclass
class HeliusSource(HttpSource):
    name: str = SOURCE_HELIUS
    base_url: str = "https://mainnet.helius-rpc.com"

    async def fetch_page(self, request: PageRequest) -> SourcePage:
        payload = {
            "jsonrpc": "2.0",
            "id": "gatekeeper",
            "method": "getAssetsByOwner",
            "params": {
                "ownerAddress": request.wallet,
                "page": request.page,
                "limit": request.limit,
                "displayOptions": {
                    "showFungible": False,
                    "showNativeBalance": False,
                    "showInscription": False,
                },
            },
        }
        params = {"api-key": self.api_key} if self.api_key else None
        response = await self._request(
            "POST", f"{self.base_url.rstrip('/')}/", json=payload, params=params,
        )
        if response.status_code == 404:
            logger.debug("Helius: wallet %s not indexed, treating as empty", request.wallet)
            return SourcePage()
        self._raise_for_status(response)

        data = response.json()
        if data.get("error"):
            raise SourceUnavailable(
                f"helius RPC error: {data['error']}", source=self.name,
            )

        raw_items = (data.get("result") or {}).get("items") or []
        items = tuple(
            item for item in (parse_das_asset(raw) for raw in raw_items) if item is not None
        )
        return SourcePage(items=items, has_more=len(raw_items) == request.limit)
