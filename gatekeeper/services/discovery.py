"""
gatekeeper.services.discovery — NFT Discovery & Reconciliation
================================================================

Queries every configured NFT source concurrently for one wallet and merges
what they report into a single deduplicated asset list.

How it works:
    1. Each source is drained page by page (bounded by ``max_pages``).  A
       collection-scoped query uses the provider's server-side filter where
       it has one; otherwise the full listing is filtered locally.
    2. A failing source is recorded in ``per_source`` and the others carry
       on.  Discovery raises when *every* source fails or none is
       configured, so an outage is never evaluated as an empty wallet.
    3. Each source's items become a per-source map keyed by lowercased asset
       id; the maps are then folded together in configured priority order.
       On collision sources and collections are unioned, and the first
       non-empty display name and attribute set win.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field

from gatekeeper.config import GatekeeperConfig
from gatekeeper.constants import SOURCE_HELIUS, SOURCE_MAGIC_EDEN
from gatekeeper.engine.assets import ReconciledAsset, normalize_attributes
from gatekeeper.errors import SourceUnavailable
from gatekeeper.sources.base import AssetSource, PageRequest, SourceItem
from gatekeeper.sources.helius import HeliusSource
from gatekeeper.sources.magic_eden import MagicEdenSource
from gatekeeper.sources.rate_limit import RateLimitedSource

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass
class SourceReport:
    count: int = 0
    pages: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DiscoveryResult:
    assets: list[ReconciledAsset] = field(default_factory=list)
    per_source: dict[str, SourceReport] = field(default_factory=dict)

    @property
    def asset_count(self) -> int:
        return len(self.assets)

    @property
    def failed_sources(self) -> list[str]:
        return [name for name, report in self.per_source.items() if not report.ok]


# ---------------------------------------------------------------------------
# Merge helpers (pure)
# ---------------------------------------------------------------------------
def to_asset(source_name: str, item: SourceItem) -> ReconciledAsset:
    collections = {c.lower() for c in item.collections}
    if item.collection_id:
        collections.add(item.collection_id.lower())
    return ReconciledAsset(
        asset_id=item.asset_id,
        display_name=item.name,
        collection_id=item.collection_id,
        collections=collections,
        attributes=normalize_attributes(item.attributes),
        sources={source_name},
    )


def dedupe_source_items(
    source_name: str, items: Iterable[SourceItem],
) -> dict[str, ReconciledAsset]:
    """Collapse one source's items to a map keyed by lowercased asset id."""
    by_key: dict[str, ReconciledAsset] = {}
    for item in items:
        if not item.asset_id:
            continue
        asset = to_asset(source_name, item)
        existing = by_key.get(asset.key)
        if existing is None:
            by_key[asset.key] = asset
        else:
            existing.merge(asset)
    return by_key


def merge_source_maps(
    maps: Iterable[dict[str, ReconciledAsset]],
) -> list[ReconciledAsset]:
    """Fold per-source maps together; earlier maps take precedence."""
    combined: dict[str, ReconciledAsset] = {}
    for source_map in maps:
        for key, asset in source_map.items():
            existing = combined.get(key)
            if existing is None:
                combined[key] = asset
            else:
                existing.merge(asset)
    return list(combined.values())


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class DiscoveryService:
    """Concurrent multi-source discovery.

    Parameters
    ----------
    sources:
        Sources in priority order (highest first).
    page_limit:
        Page size requested from each provider.
    max_pages:
        Upper bound on pages drained per source per wallet.
    """

    def __init__(
        self,
        sources: Sequence[AssetSource],
        *,
        page_limit: int = 1000,
        max_pages: int = 20,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sources = list(sources)
        self.page_limit = page_limit
        self.max_pages = max_pages
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: GatekeeperConfig) -> DiscoveryService:
        return cls(
            build_sources(cfg),
            page_limit=cfg.discovery.page_limit,
            max_pages=cfg.discovery.max_pages,
        )

    async def discover(
        self, wallet: str, collection_scope: str | None = None,
    ) -> DiscoveryResult:
        """Return every asset *wallet* currently holds across all sources.

        Raises
        ------
        SourceUnavailable
            If no source is configured or every configured source failed.
        """
        if not self.sources:
            raise SourceUnavailable("No NFT sources configured")

        outcomes = await asyncio.gather(
            *(self._drain(source, wallet, collection_scope) for source in self.sources),
            return_exceptions=True,
        )

        result = DiscoveryResult()
        source_maps: list[dict[str, ReconciledAsset]] = []
        for source, outcome in zip(self.sources, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                if isinstance(outcome, SourceUnavailable):
                    logger.warning(
                        "Source %s failed for wallet %s: %s",
                        source.name, wallet, outcome.user_message,
                    )
                else:
                    logger.error(
                        "Source %s raised unexpectedly for wallet %s",
                        source.name, wallet, exc_info=outcome,
                    )
                result.per_source[source.name] = SourceReport(error=str(outcome))
                continue

            items, pages = outcome
            source_map = dedupe_source_items(source.name, items)
            source_maps.append(source_map)
            result.per_source[source.name] = SourceReport(count=len(source_map), pages=pages)

        if not source_maps:
            raise SourceUnavailable(
                "All NFT sources failed: " + ", ".join(result.failed_sources),
            )

        result.assets = merge_source_maps(source_maps)
        logger.info(
            "Discovered %d assets for %s (%s)",
            result.asset_count,
            wallet,
            ", ".join(
                f"{name}={report.count if report.ok else 'error'}"
                for name, report in result.per_source.items()
            ),
        )
        return result

    async def _drain(
        self, source: AssetSource, wallet: str, collection_scope: str | None,
    ) -> tuple[list[SourceItem], int]:
        server_scope = None
        if collection_scope and source.supports_collection_scope(collection_scope):
            server_scope = collection_scope

        items: list[SourceItem] = []
        page = 1
        while True:
            result = await source.fetch_page(
                PageRequest(
                    wallet=wallet,
                    page=page,
                    limit=self.page_limit,
                    collection_id=server_scope,
                )
            )
            items.extend(result.items)
            if not result.has_more:
                break
            if page >= self.max_pages:
                logger.warning(
                    "Source %s still had pages for %s after %d; stopping",
                    source.name, wallet, self.max_pages,
                )
                break
            page += 1
            delay = getattr(source, "page_delay", 0.0)
            if delay:
                await self._sleep(delay)

        if collection_scope:
            needle = collection_scope.lower()
            items = [
                item for item in items
                if needle in {c.lower() for c in item.collections}
                or (item.collection_id or "").lower() == needle
            ]
        return items, page

    async def aclose(self) -> None:
        for source in self.sources:
            close = getattr(source, "aclose", None)
            if close is not None:
                await close()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
def build_sources(cfg: GatekeeperConfig) -> list[RateLimitedSource]:
    """Instantiate the enabled providers in ``cfg.source_priority`` order.

    Raises ``ValueError`` when no enabled, known provider remains.
    """
    symbols = cfg.symbol_map()

    sources: list[RateLimitedSource] = []
    for name in cfg.source_priority:
        settings = cfg.sources.get(name)
        if settings is None:
            logger.warning("Source %s is in source_priority but not configured", name)
            continue
        if not settings.enabled:
            continue

        if name == SOURCE_HELIUS:
            inner: AssetSource = HeliusSource(
                base_url=settings.base_url,
                api_key=settings.api_key,
                timeout=settings.timeout,
            )
        elif name == SOURCE_MAGIC_EDEN:
            inner = MagicEdenSource(
                base_url=settings.base_url,
                api_key=settings.api_key,
                timeout=settings.timeout,
                symbols=symbols,
            )
        else:
            logger.warning("Unknown source %s in config; skipping", name)
            continue

        sources.append(RateLimitedSource(inner, settings))
        logger.info(
            "Source %s enabled (%.0f req/s, %d in flight)",
            name, settings.max_requests_per_second, settings.batch_size,
        )
    if not sources:
        raise ValueError(
            "No usable NFT source: enable helius or magic_eden in config.yaml "
            f"(source_priority={list(cfg.source_priority)})"
        )
    return sources
