"""
gatekeeper.bot.core — Bot Instance & Cog Loader
=================================================

Defines :class:`GatekeeperBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``) and DB engine (``bot.engine``).
2. Wires the verification services once so every Cog shares them:
   ``bot.discovery``, ``bot.verifier``, ``bot.sessions``, ``bot.scheduler``.
   Roles are changed through the bot's own gateway connection.
3. Loads every Cog in ``EXTENSIONS`` and syncs the slash-command tree
   (guild-scoped when ``DEV_GUILD_ID`` is set, global otherwise).
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from gatekeeper.config import GatekeeperConfig
from gatekeeper.services.discovery import DiscoveryService
from gatekeeper.services.ownership import OwnershipVerifier
from gatekeeper.services.role_sync import DiscordGatewayRolePlatform, RoleSynchronizer
from gatekeeper.services.scheduler import ReverificationScheduler
from gatekeeper.services.session_service import VerificationSessionService

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "gatekeeper.bot.cogs.verification",
    "gatekeeper.bot.cogs.admin",
    "gatekeeper.bot.cogs.tasks",
]


class GatekeeperBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`GatekeeperConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: GatekeeperConfig, engine: Engine) -> None:
        intents = discord.Intents.default()
        intents.members = True            # Privileged: member lookup for role sync
        intents.message_content = False
        intents.presences = False

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            description=f"{cfg.community_name} wallet verification",
        )

        self.cfg = cfg
        self.engine = engine

        self.discovery = DiscoveryService.from_config(cfg)
        self.verifier = OwnershipVerifier(
            engine,
            self.discovery,
            RoleSynchronizer(DiscordGatewayRolePlatform(self)),
        )
        self.sessions = VerificationSessionService(
            engine, self.verifier, ttl_minutes=cfg.session_ttl_minutes,
        )
        self.scheduler = ReverificationScheduler(
            engine, self.verifier, cfg.scheduler, guild_id=cfg.guild_id,
        )

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions; one broken Cog doesn't stop the others."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        if self.get_guild(self.cfg.guild_id) is None:
            logger.warning(
                "Primary guild %d not found — role sync will fail until the bot is invited",
                self.cfg.guild_id,
            )

    async def close(self) -> None:
        """Graceful shutdown — stop the scheduler and release HTTP clients."""
        logger.info("Bot shutting down…")
        self.scheduler.request_shutdown()
        await self.discovery.aclose()
        await super().close()
