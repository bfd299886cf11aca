"""
gatekeeper.api.deps — FastAPI dependency injection
====================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from sqlalchemy import Engine

from gatekeeper.config import GatekeeperConfig, load_config
from gatekeeper.database.engine import create_db_engine
from gatekeeper.services.discovery import DiscoveryService
from gatekeeper.services.ownership import OwnershipVerifier
from gatekeeper.services.role_sync import DiscordRestRolePlatform, RoleSynchronizer
from gatekeeper.services.session_service import VerificationSessionService

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> GatekeeperConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_discovery() -> DiscoveryService:
    return DiscoveryService.from_config(get_config())


@lru_cache(maxsize=1)
def get_role_platform() -> DiscordRestRolePlatform | None:
    """Discord REST role platform, or ``None`` without ``DISCORD_TOKEN``."""
    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        logger.warning("DISCORD_TOKEN not set — the API will verify without syncing roles")
        return None
    return DiscordRestRolePlatform(token)


@lru_cache(maxsize=1)
def get_session_service() -> VerificationSessionService:
    """Session service for the portal.

    The API process has no gateway connection, so roles are changed over
    the Discord REST API with the bot token.  Without a token, verification
    still completes and the bot's next re-verification cycle applies roles.
    """
    cfg = get_config()
    platform = get_role_platform()
    synchronizer = RoleSynchronizer(platform) if platform is not None else None
    verifier = OwnershipVerifier(get_engine(), get_discovery(), synchronizer)
    return VerificationSessionService(
        get_engine(), verifier, ttl_minutes=cfg.session_ttl_minutes,
    )
