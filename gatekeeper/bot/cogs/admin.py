"""
gatekeeper.bot.cogs.admin — Admin Slash Commands
==================================================

Discord slash commands for server admins:
- /rules-list — show the guild's verification rules
- /rules-add — add a holding tier (min/max NFT count → role)
- /rules-add-trait — add a trait rule (trait type/value → role)
- /rules-remove — delete a rule by id
- /reverify-now — run a re-verification cycle immediately
- /reverify-member — re-check one member's stored wallet now
- /verification-stats — wallet check counters

All commands require the configured admin_role_id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from gatekeeper.database.engine import run_db
from gatekeeper.database.models import CheckTrigger
from gatekeeper.errors import GatekeeperError, SchedulerBusy
from gatekeeper.services.embeds import (
    build_cycle_embed,
    build_error_embed,
    build_member_check_embed,
    build_rules_embed,
    build_stats_embed,
)
from gatekeeper.services.rule_store import (
    add_quantity_rule,
    add_trait_rule,
    list_rules_by_guild,
    remove_rule,
)
from gatekeeper.services.state_service import get_state, get_verification_stats

if TYPE_CHECKING:
    from gatekeeper.bot.core import GatekeeperBot

logger = logging.getLogger(__name__)


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: GatekeeperBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Verification rule management and scheduler control."""

    def __init__(self, bot: GatekeeperBot) -> None:
        self.bot = bot

    def _guild_id(self, interaction: discord.Interaction) -> int:
        return interaction.guild_id or self.bot.cfg.guild_id

    # -------------------------------------------------------------------
    # /rules-list
    # -------------------------------------------------------------------
    @app_commands.command(name="rules-list", description="List NFT verification rules.")
    @is_admin()
    async def rules_list(self, interaction: discord.Interaction) -> None:
        rules = await run_db(list_rules_by_guild, self.bot.engine, self._guild_id(interaction))
        guild_name = interaction.guild.name if interaction.guild else self.bot.cfg.community_name
        await interaction.response.send_message(
            embed=build_rules_embed(guild_name, rules), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /rules-add
    # -------------------------------------------------------------------
    @app_commands.command(name="rules-add", description="Add a holding tier for a collection.")
    @app_commands.describe(
        collection="Collection address (on-chain grouping key)",
        role="Role granted to holders in this tier",
        min_nfts="Minimum NFTs required (default 1)",
        max_nfts="Maximum NFTs for this tier (leave empty for no cap)",
    )
    @is_admin()
    async def rules_add(
        self,
        interaction: discord.Interaction,
        collection: str,
        role: discord.Role,
        min_nfts: app_commands.Range[int, 1] = 1,
        max_nfts: app_commands.Range[int, 1] | None = None,
    ) -> None:
        try:
            rule = await run_db(
                add_quantity_rule,
                self.bot.engine,
                self._guild_id(interaction),
                collection,
                role.id,
                required_count=min_nfts,
                max_count=max_nfts,
                role_name=role.name,
            )
        except ValueError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return

        cap = f"–{max_nfts}" if max_nfts is not None else "+"
        await interaction.response.send_message(
            f"✅ Rule `#{rule.rule_id}`: {min_nfts}{cap} NFTs from `{collection}` → {role.mention}",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /rules-add-trait
    # -------------------------------------------------------------------
    @app_commands.command(name="rules-add-trait", description="Add a trait-based role rule.")
    @app_commands.describe(
        collection="Collection address (on-chain grouping key)",
        trait_type="Attribute name, e.g. Class",
        trait_value="Attribute value, e.g. King",
        role="Role granted to holders of a matching NFT",
    )
    @is_admin()
    async def rules_add_trait(
        self,
        interaction: discord.Interaction,
        collection: str,
        trait_type: str,
        trait_value: str,
        role: discord.Role,
    ) -> None:
        try:
            rule = await run_db(
                add_trait_rule,
                self.bot.engine,
                self._guild_id(interaction),
                collection,
                trait_type,
                trait_value,
                role.id,
                role_name=role.name,
            )
        except ValueError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return

        await interaction.response.send_message(
            f"✅ Rule `#{rule.rule_id}`: {trait_type} = {trait_value} in `{collection}` → {role.mention}",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /rules-remove
    # -------------------------------------------------------------------
    @app_commands.command(name="rules-remove", description="Remove a verification rule.")
    @app_commands.describe(rule_id="Rule id as shown by /rules-list")
    @is_admin()
    async def rules_remove(self, interaction: discord.Interaction, rule_id: int) -> None:
        removed = await run_db(remove_rule, self.bot.engine, self._guild_id(interaction), rule_id)
        if not removed:
            await interaction.response.send_message(
                f"❌ No rule `#{rule_id}` in this server.", ephemeral=True,
            )
            return
        await interaction.response.send_message(f"✅ Rule `#{rule_id}` removed.", ephemeral=True)

    # -------------------------------------------------------------------
    # /reverify-now
    # -------------------------------------------------------------------
    @app_commands.command(name="reverify-now", description="Run a re-verification cycle now.")
    @is_admin()
    async def reverify_now(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            report = await self.bot.scheduler.run_cycle(raise_if_busy=True)
        except SchedulerBusy as exc:
            await interaction.followup.send(f"⏳ {exc.user_message}", ephemeral=True)
            return
        logger.info("Manual re-verification cycle triggered by %d", interaction.user.id)
        await interaction.followup.send(embed=build_cycle_embed(report), ephemeral=True)

    # -------------------------------------------------------------------
    # /reverify-member
    # -------------------------------------------------------------------
    @app_commands.command(name="reverify-member", description="Re-check one member's wallet now.")
    @app_commands.describe(member="Member whose stored wallet is re-checked")
    @is_admin()
    async def reverify_member(
        self, interaction: discord.Interaction, member: discord.Member,
    ) -> None:
        guild_id = self._guild_id(interaction)
        state = await run_db(get_state, self.bot.engine, member.id, guild_id)
        if state is None or not state.wallet_address:
            await interaction.response.send_message(
                f"❌ {member.mention} has no wallet on record. They need to run /verify first.",
                ephemeral=True,
            )
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            check = await self.bot.verifier.check_member(
                guild_id,
                member.id,
                state.wallet_address,
                username=member.name,
                trigger=CheckTrigger.MANUAL,
            )
        except GatekeeperError as exc:
            logger.warning("Manual re-check of %d failed: %s", member.id, exc.code)
            await interaction.followup.send(embed=build_error_embed(exc), ephemeral=True)
            return

        logger.info(
            "Manual re-check of %d by %d: assets=%d verified=%s",
            member.id, interaction.user.id, check.asset_count, check.is_verified,
        )
        await interaction.followup.send(
            embed=build_member_check_embed(member.display_name, check), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /verification-stats
    # -------------------------------------------------------------------
    @app_commands.command(name="verification-stats", description="Show wallet verification counters.")
    @is_admin()
    async def verification_stats(self, interaction: discord.Interaction) -> None:
        stats = await run_db(
            get_verification_stats, self.bot.engine, self._guild_id(interaction),
        )
        await interaction.response.send_message(embed=build_stats_embed(stats), ephemeral=True)


async def setup(bot: GatekeeperBot) -> None:
    await bot.add_cog(Admin(bot))
