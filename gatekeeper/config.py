"""
gatekeeper.config — YAML Configuration Loader
===============================================

This module reads ``config.yaml`` for infrastructure settings: the Discord
identity of the community, NFT provider throttling, discovery bounds, and
the re-verification cadence.  Secrets (bot token, database URL, provider API
keys) never live here; they come from the environment (``.env``).

Guild rules are *not* configuration: they live in the ``guild_rules`` table
and are managed with the admin commands.

Usage::

    from gatekeeper.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.community_name)         # "Realm Holders"
    print(cfg.sources["helius"].max_requests_per_second)   # 20
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

from gatekeeper.constants import (
    DEFAULT_SESSION_TTL_MINUTES,
    DEFAULT_SOURCE_PRIORITY,
    SOURCE_HELIUS,
    SOURCE_MAGIC_EDEN,
)


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SourceSettings:
    """Throttling and endpoint settings for one NFT provider."""

    name: str
    base_url: str
    enabled: bool = True
    api_key_env: str | None = None   # Name of the env var holding the key
    max_requests_per_second: float = 10.0
    batch_size: int = 5              # Max concurrent in-flight requests
    retry_delay: float = 2.0         # Seconds before the single retry
    cache_ttl: float = 300.0         # Seconds a positive response is reused
    timeout: float = 15.0
    page_delay: float = 0.0          # Extra pause between pages of one wallet

    @property
    def api_key(self) -> str | None:
        if not self.api_key_env:
            return None
        return os.getenv(self.api_key_env) or None


@dataclass(frozen=True, slots=True)
class CollectionConfig:
    """A collection the community gates on.

    ``symbols`` are marketplace slugs (Magic Eden ``collectionSymbol``) that
    resolve to the on-chain ``address``.
    """

    address: str
    name: str = ""
    symbols: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DiscoverySettings:
    page_limit: int = 1000
    max_pages: int = 20


@dataclass(frozen=True, slots=True)
class SchedulerSettings:
    """Re-verification cadence and priority thresholds."""

    interval_hours: float = 6.0
    batch_size: int = 5
    delay_between_users: float = 0.5
    delay_between_batches: float = 2.0
    max_users_per_run: int = 50
    cooldown_hours: float = 12.0
    stale_hours: float = 24.0
    whale_asset_threshold: int = 10
    whale_stale_hours: float = 12.0
    new_user_days: int = 7
    history_window_days: int = 7
    session_retention_days: int = 7


_DEFAULT_SOURCES: dict[str, SourceSettings] = {
    SOURCE_HELIUS: SourceSettings(
        name=SOURCE_HELIUS,
        base_url="https://mainnet.helius-rpc.com",
        api_key_env="HELIUS_API_KEY",
        max_requests_per_second=20.0,
        batch_size=5,
        retry_delay=2.0,
        cache_ttl=300.0,
        page_delay=0.2,
    ),
    SOURCE_MAGIC_EDEN: SourceSettings(
        name=SOURCE_MAGIC_EDEN,
        base_url="https://api-mainnet.magiceden.dev",
        api_key_env="MAGIC_EDEN_API_KEY",
        max_requests_per_second=8.0,
        batch_size=5,
        retry_delay=2.0,
        cache_ttl=300.0,
    ),
}


@dataclass(frozen=True, slots=True)
class GatekeeperConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    guild_id: int
    admin_role_id: int  # Discord role required for admin commands

    # Verification portal (the page that asks the wallet to sign)
    portal_url: str

    session_ttl_minutes: int = DEFAULT_SESSION_TTL_MINUTES
    source_priority: tuple[str, ...] = DEFAULT_SOURCE_PRIORITY
    sources: dict[str, SourceSettings] = field(default_factory=lambda: dict(_DEFAULT_SOURCES))
    collections: tuple[CollectionConfig, ...] = ()
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)

    # Optional
    log_channel_id: int | None = None  # Where to post verification results

    def session_link(self, token: str) -> str:
        return f"{self.portal_url.rstrip('/')}/session/{token}"

    def symbol_map(self) -> dict[str, str]:
        """Lowercased marketplace symbol → on-chain collection address."""
        return {
            symbol.lower(): coll.address
            for coll in self.collections
            for symbol in coll.symbols
        }


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------
def _parse_sources(raw: dict | None) -> dict[str, SourceSettings]:
    """Overlay per-source YAML keys onto the built-in provider defaults."""
    sources = dict(_DEFAULT_SOURCES)
    for name, values in (raw or {}).items():
        base = sources.get(name)
        values = values or {}
        if base is None:
            sources[name] = SourceSettings(name=name, **values)
            continue
        sources[name] = replace(base, **values)
    return sources


def _parse_collections(raw: list | None) -> tuple[CollectionConfig, ...]:
    return tuple(
        CollectionConfig(
            address=str(item["address"]),
            name=item.get("name", ""),
            symbols=tuple(item.get("symbols") or ()),
        )
        for item in (raw or [])
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> GatekeeperConfig:
    """Read *path* and return a :class:`GatekeeperConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    ttl = os.getenv("VERIFICATION_SESSION_TTL_MINUTES") or raw.get(
        "session_ttl_minutes", DEFAULT_SESSION_TTL_MINUTES
    )

    return GatekeeperConfig(
        community_name=raw["community_name"],
        guild_id=int(raw["guild_id"]),
        admin_role_id=int(raw["admin_role_id"]),
        portal_url=raw["portal_url"],
        session_ttl_minutes=int(ttl),
        source_priority=tuple(raw.get("source_priority") or DEFAULT_SOURCE_PRIORITY),
        sources=_parse_sources(raw.get("sources")),
        collections=_parse_collections(raw.get("collections")),
        discovery=DiscoverySettings(**(raw.get("discovery") or {})),
        scheduler=SchedulerSettings(**(raw.get("scheduler") or {})),
        log_channel_id=(
            int(raw["log_channel_id"]) if raw.get("log_channel_id") else None
        ),
    )
