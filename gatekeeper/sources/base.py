"""
gatekeeper.sources.base — NFT source contract
===============================================

Every NFT-indexing provider is wrapped in an object satisfying
:class:`AssetSource`.  A source answers one question: *which assets does
this wallet own, one page at a time?*  It reports failures by raising
:class:`~gatekeeper.errors.SourceUnavailable` (or its throttling subclass
:class:`~gatekeeper.errors.SourceRateLimited`), never by returning an empty
page, so an outage is never mistaken for an empty wallet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx

from gatekeeper.errors import SourceRateLimited, SourceUnavailable


@dataclass(frozen=True, slots=True)
class SourceItem:
    """One NFT as reported by a single provider.

    ``attributes`` is the provider's raw payload; discovery normalizes it.
    """

    asset_id: str
    name: str = ""
    collection_id: str | None = None
    collections: tuple[str, ...] = ()
    attributes: object = None


@dataclass(frozen=True, slots=True)
class SourcePage:
    items: tuple[SourceItem, ...] = ()
    has_more: bool = False


@dataclass(frozen=True, slots=True)
class PageRequest:
    """Everything that identifies one upstream call (and its cache entry)."""

    wallet: str
    page: int = 1
    limit: int = 1000
    collection_id: str | None = None


@runtime_checkable
class AssetSource(Protocol):
    name: str

    def supports_collection_scope(self, collection_id: str) -> bool:
        """True when the provider can filter by *collection_id* server-side."""
        ...

    async def fetch_page(self, request: PageRequest) -> SourcePage:
        ...


@dataclass
class HttpSource:
    """Shared plumbing for providers spoken to over HTTP with httpx."""

    name: str
    base_url: str
    api_key: str | None = None
    timeout: float = 15.0
    client: httpx.AsyncClient | None = field(default=None, repr=False)

    def _client(self) -> httpx.AsyncClient:
        if self.client is None:
            transport = httpx.AsyncHTTPTransport(retries=1)
            self.client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=transport,
                headers={"accept": "application/json"},
            )
        return self.client

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    def supports_collection_scope(self, collection_id: str) -> bool:
        return False

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Translate provider HTTP failures into source errors.

        404 is handled by callers (providers use it for "no tokens").
        """
        if response.status_code == 429:
            raise SourceRateLimited(
                f"{self.name} is throttling requests (HTTP 429)", source=self.name,
            )
        if response.status_code >= 400:
            raise SourceUnavailable(
                f"{self.name} returned HTTP {response.status_code}", source=self.name,
            )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client().request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise SourceUnavailable(
                f"{self.name} request failed: {exc.__class__.__name__}",
                source=self.name,
            ) from exc
