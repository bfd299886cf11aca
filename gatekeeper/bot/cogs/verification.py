"""
gatekeeper.bot.cogs.verification — Member verification commands
==================================================================

- /verify — start a wallet verification session and receive the portal link
- /verification-status — see your last check
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from gatekeeper.database.engine import as_utc, run_db
from gatekeeper.errors import GatekeeperError
from gatekeeper.services.embeds import build_error_embed, build_verify_link_embed
from gatekeeper.services.state_service import get_state

if TYPE_CHECKING:
    from gatekeeper.bot.core import GatekeeperBot

logger = logging.getLogger(__name__)


class Verification(commands.Cog, name="Verification"):
    """Self-service wallet verification."""

    def __init__(self, bot: GatekeeperBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /verify
    # -------------------------------------------------------------------
    @app_commands.command(name="verify", description="Verify your NFT holdings to get your roles.")
    @app_commands.describe(wallet="Your Solana wallet address (optional, can be set in the portal)")
    @app_commands.guild_only()
    async def verify(self, interaction: discord.Interaction, wallet: str | None = None) -> None:
        try:
            ticket = await self.bot.sessions.create_session(
                discord_id=interaction.user.id,
                guild_id=interaction.guild_id or self.bot.cfg.guild_id,
                wallet_address=wallet,
                username=interaction.user.name,
            )
        except GatekeeperError as exc:
            logger.info("/verify rejected for user %d: %s", interaction.user.id, exc.code)
            await interaction.response.send_message(embed=build_error_embed(exc), ephemeral=True)
            return

        await interaction.response.send_message(
            embed=build_verify_link_embed(
                self.bot.cfg.community_name,
                self.bot.cfg.session_link(ticket.token),
                ticket.expires_at,
            ),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /verification-status
    # -------------------------------------------------------------------
    @app_commands.command(
        name="verification-status", description="Show your last wallet verification.",
    )
    @app_commands.guild_only()
    async def verification_status(self, interaction: discord.Interaction) -> None:
        state = await run_db(
            get_state,
            self.bot.engine,
            interaction.user.id,
            interaction.guild_id or self.bot.cfg.guild_id,
        )
        if state is None or not state.wallet_address:
            await interaction.response.send_message(
                "You haven't verified a wallet yet. Run /verify to start.",
                ephemeral=True,
            )
            return

        checked = (
            discord.utils.format_dt(as_utc(state.last_checked_at), style="R")
            if state.last_checked_at else "never"
        )
        status = "✅ verified" if state.is_verified else "⚠️ no qualifying NFTs"
        await interaction.response.send_message(
            f"Wallet `{state.wallet_address}` — {status}\nLast checked {checked}.",
            ephemeral=True,
        )


async def setup(bot: GatekeeperBot) -> None:
    await bot.add_cog(Verification(bot))
