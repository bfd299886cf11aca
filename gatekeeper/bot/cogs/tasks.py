"""
gatekeeper.bot.cogs.tasks — Periodic Background Tasks
=======================================================

Runs the re-verification scheduler on a ``discord.ext.tasks`` loop every
``scheduler.interval_hours`` (default 6).  The loop fires in the bot process
so role changes go through the bot's own gateway connection.  When
``log_channel_id`` is configured, each cycle that checked anyone posts its
summary there.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from gatekeeper.services.embeds import build_cycle_embed
from gatekeeper.services.scheduler import CycleReport

if TYPE_CHECKING:
    from gatekeeper.bot.core import GatekeeperBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled re-verification."""

    def __init__(self, bot: GatekeeperBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Start task loops when the cog is loaded."""
        self.reverification_loop.change_interval(hours=self.bot.cfg.scheduler.interval_hours)
        self.reverification_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.bot.scheduler.request_shutdown()
        self.reverification_loop.cancel()

    # -------------------------------------------------------------------
    # Re-verification — every scheduler.interval_hours
    # -------------------------------------------------------------------
    @tasks.loop(hours=6)
    async def reverification_loop(self):
        """Re-check a priority-ordered batch of verified wallets."""
        try:
            report = await self.bot.scheduler.run_cycle()
        except Exception:
            logger.exception("Re-verification task failed", extra={"task": "reverification"})
            return
        await self._post_report(report)

    @reverification_loop.before_loop
    async def _wait_reverification(self):
        await self.bot.wait_until_ready()

    async def _post_report(self, report: CycleReport) -> None:
        channel_id = self.bot.cfg.log_channel_id
        if not channel_id or report.skipped or not report.selected:
            return
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            logger.warning("Log channel %d not found", channel_id)
            return
        try:
            await channel.send(embed=build_cycle_embed(report))
        except discord.HTTPException:
            logger.warning("Could not post cycle report to channel %d", channel_id, exc_info=True)


async def setup(bot: GatekeeperBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
