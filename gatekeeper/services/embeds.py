"""
gatekeeper.services.embeds — Discord embed builders
=====================================================

All embed construction lives here so cogs only need to supply data.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

import discord

from gatekeeper.constants import ERROR_COLOR, UNVERIFIED_COLOR, VERIFIED_COLOR
from gatekeeper.database.models import RuleType
from gatekeeper.engine.rules import RuleSpec
from gatekeeper.errors import GatekeeperError
from gatekeeper.services.ownership import OwnershipCheck
from gatekeeper.services.scheduler import CycleReport


def _describe_rule(rule: RuleSpec) -> str:
    if rule.rule_type is RuleType.TRAIT:
        requirement = f"trait **{rule.trait_type} = {rule.trait_value}**"
    elif rule.max_count is not None:
        requirement = f"**{rule.required_count}–{rule.max_count}** NFTs"
    else:
        requirement = f"**{rule.required_count}+** NFTs"
    return f"`#{rule.rule_id}` <@&{rule.role_id}> — {requirement} from `{rule.collection_id}`"


def build_verify_link_embed(
    community_name: str, link: str, expires_at: datetime,
) -> discord.Embed:
    """The ephemeral reply to /verify."""
    embed = discord.Embed(
        title="\U0001f510 Verify your wallet",
        description=(
            f"Open the link below to connect your Solana wallet and sign a "
            f"message proving you own it. Your {community_name} roles update "
            f"as soon as the signature checks out.\n\n[Start verification]({link})"
        ),
        color=discord.Color.blurple(),
    )
    embed.add_field(
        name="Expires",
        value=discord.utils.format_dt(expires_at, style="R"),
        inline=True,
    )
    embed.set_footer(text="The link works once. Never share it.")
    return embed


def build_rules_embed(guild_name: str, rules: Sequence[RuleSpec]) -> discord.Embed:
    embed = discord.Embed(
        title=f"Verification rules — {guild_name}",
        color=discord.Color.blurple(),
    )
    if not rules:
        embed.description = "No rules configured. Add one with `/rules-add`."
        return embed

    quantity = [r for r in rules if r.rule_type is RuleType.QUANTITY]
    traits = [r for r in rules if r.rule_type is RuleType.TRAIT]
    if quantity:
        embed.add_field(
            name="Holding tiers",
            value="\n".join(_describe_rule(r) for r in quantity)[:1024],
            inline=False,
        )
    if traits:
        embed.add_field(
            name="Trait roles",
            value="\n".join(_describe_rule(r) for r in traits)[:1024],
            inline=False,
        )
    return embed


def build_cycle_embed(report: CycleReport) -> discord.Embed:
    if report.skipped:
        return discord.Embed(
            title="Re-verification skipped",
            description="A cycle is already running.",
            color=UNVERIFIED_COLOR,
        )
    embed = discord.Embed(
        title="Re-verification cycle complete",
        color=ERROR_COLOR if report.errors else VERIFIED_COLOR,
    )
    embed.add_field(name="Checked", value=f"{report.processed}/{report.selected}")
    embed.add_field(name="Verified", value=str(report.verified))
    embed.add_field(name="Unverified", value=str(report.unverified))
    embed.add_field(name="Role changes", value=str(report.role_changes))
    embed.add_field(name="Errors", value=str(report.errors))
    embed.add_field(name="Sessions pruned", value=str(report.sessions_deleted))
    if report.aborted:
        embed.set_footer(text="Cycle was abandoned on shutdown.")
    return embed


def build_member_check_embed(member_name: str, check: OwnershipCheck) -> discord.Embed:
    """Result of an admin-triggered re-check of one member."""
    embed = discord.Embed(
        title=f"Re-check — {member_name}",
        description=f"Wallet `{check.wallet_address}` holds **{check.asset_count}** NFTs.",
        color=VERIFIED_COLOR if check.is_verified else UNVERIFIED_COLOR,
    )
    lines = [
        f"{'✅' if s.met else '❌'} {_describe_rule(s.rule)} (owns {s.owned_count})"
        for s in check.evaluation.summaries
    ]
    if lines:
        embed.add_field(name="Rules", value="\n".join(lines)[:1024], inline=False)
    sync = check.role_sync
    changes = [f"+<@&{r}>" for r in sync.added] + [f"-<@&{r}>" for r in sync.removed]
    embed.add_field(name="Role changes", value=" ".join(changes) or "none", inline=False)
    if not sync.ok:
        embed.set_footer(text=f"{len(sync.failures)} role change(s) failed; see logs.")
    return embed


def build_stats_embed(stats: dict[str, int]) -> discord.Embed:
    embed = discord.Embed(title="Verification status", color=discord.Color.blurple())
    embed.add_field(name="Wallets", value=str(stats["total"]))
    embed.add_field(name="Verified", value=str(stats["verified"]))
    embed.add_field(name="Never checked", value=str(stats["never_checked"]))
    embed.add_field(name="Checked (24h)", value=str(stats["checked_24h"]))
    embed.add_field(name="Checked (7d)", value=str(stats["checked_7d"]))
    return embed


def build_error_embed(error: GatekeeperError) -> discord.Embed:
    return discord.Embed(
        title="❌ Verification problem",
        description=error.user_message,
        color=ERROR_COLOR,
    )
