"""
tests/test_cogs.py — Slash command and task cog behaviour
===========================================================
Cogs are driven with mocked bots and interactions; no gateway connection.
"""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import FakeRolePlatform, FakeSource, failing_source, item, run_async
from gatekeeper.bot.cogs.admin import Admin
from gatekeeper.bot.cogs.tasks import PeriodicTasks
from gatekeeper.bot.cogs.verification import Verification
from gatekeeper.database.models import VerificationHistory
from gatekeeper.errors import InvalidWalletFormat
from gatekeeper.services.discovery import DiscoveryService
from gatekeeper.services.ownership import OwnershipVerifier
from gatekeeper.services.role_sync import RoleSynchronizer
from gatekeeper.services.rule_store import add_quantity_rule
from gatekeeper.services.scheduler import CycleReport
from gatekeeper.services.session_service import SessionTicket
from gatekeeper.services.state_service import record_check

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def _make_bot(log_channel_id: int | None = None, channel=None) -> MagicMock:
    bot = MagicMock()
    bot.cfg = SimpleNamespace(
        community_name="Realm",
        guild_id=1,
        log_channel_id=log_channel_id,
        session_link=lambda token: f"https://verify.example/session/{token}",
    )
    bot.get_channel.return_value = channel
    bot.sessions.create_session = AsyncMock()
    return bot


def _interaction() -> MagicMock:
    interaction = MagicMock()
    interaction.user.id = 42
    interaction.user.name = "holder"
    interaction.guild_id = 1
    interaction.response.send_message = AsyncMock()
    return interaction


class TestVerifyCommand:
    def test_sends_ephemeral_link(self):
        bot = _make_bot()
        bot.sessions.create_session.return_value = SessionTicket(
            session_id="s1", token="tok", expires_at=NOW, challenge_message="msg",
        )
        cog = Verification(bot)
        interaction = _interaction()

        run_async(cog.verify.callback(cog, interaction, None))

        bot.sessions.create_session.assert_awaited_once_with(
            discord_id=42, guild_id=1, wallet_address=None, username="holder",
        )
        kwargs = interaction.response.send_message.await_args.kwargs
        assert kwargs["ephemeral"] is True
        assert "https://verify.example/session/tok" in kwargs["embed"].description

    def test_invalid_wallet_is_reported(self):
        bot = _make_bot()
        bot.sessions.create_session.side_effect = InvalidWalletFormat()
        cog = Verification(bot)
        interaction = _interaction()

        run_async(cog.verify.callback(cog, interaction, "nope"))

        kwargs = interaction.response.send_message.await_args.kwargs
        assert kwargs["ephemeral"] is True
        assert kwargs["embed"].description == InvalidWalletFormat.default_message


class TestCycleReportPosting:
    def test_posts_to_log_channel(self):
        channel = MagicMock()
        channel.send = AsyncMock()
        cog = PeriodicTasks(_make_bot(log_channel_id=99, channel=channel))

        run_async(cog._post_report(CycleReport(started_at=NOW, selected=3, processed=3)))
        channel.send.assert_awaited_once()

    def test_quiet_cycles_are_not_posted(self):
        channel = MagicMock()
        channel.send = AsyncMock()
        cog = PeriodicTasks(_make_bot(log_channel_id=99, channel=channel))

        run_async(cog._post_report(CycleReport(started_at=NOW)))
        run_async(cog._post_report(CycleReport(started_at=NOW, selected=2, skipped=True)))
        channel.send.assert_not_awaited()

    def test_no_log_channel_configured(self):
        bot = _make_bot()
        cog = PeriodicTasks(bot)
        run_async(cog._post_report(CycleReport(started_at=NOW, selected=1)))
        bot.get_channel.assert_not_called()


class TestReverifyMember:
    def _cog(self, db_engine, sources, platform) -> Admin:
        bot = _make_bot()
        bot.engine = db_engine
        bot.verifier = OwnershipVerifier(
            db_engine, DiscoveryService(sources), RoleSynchronizer(platform), clock=lambda: NOW,
        )
        return Admin(bot)

    def _interaction(self) -> MagicMock:
        interaction = _interaction()
        interaction.response.defer = AsyncMock()
        interaction.followup.send = AsyncMock()
        return interaction

    def _member(self) -> MagicMock:
        member = MagicMock()
        member.id = 77
        member.name = "whale"
        member.display_name = "Whale"
        member.mention = "<@77>"
        return member

    def test_rechecks_stored_wallet(self, db_engine, wallet):
        add_quantity_rule(db_engine, 1, "COLL", role_id=100)
        record_check(
            db_engine, discord_id=77, guild_id=1, wallet_address=wallet.address,
            asset_count=0, is_verified=False, now=NOW,
        )
        platform = FakeRolePlatform()
        cog = self._cog(
            db_engine, [FakeSource("helius", pages={1: [item("Mint1")]})], platform,
        )
        interaction = self._interaction()

        run_async(cog.reverify_member.callback(cog, interaction, self._member()))

        assert platform.roles == {100}
        embed = interaction.followup.send.await_args.kwargs["embed"]
        assert "Whale" in embed.title
        assert "+<@&100>" in embed.fields[-1].value
        with Session(db_engine) as session:
            triggers = session.scalars(
                select(VerificationHistory.trigger).order_by(VerificationHistory.id)
            ).all()
        assert triggers == ["interactive", "manual"]

    def test_member_without_wallet(self, db_engine):
        platform = FakeRolePlatform()
        cog = self._cog(db_engine, [FakeSource("helius")], platform)
        interaction = self._interaction()

        run_async(cog.reverify_member.callback(cog, interaction, self._member()))

        assert "/verify" in interaction.response.send_message.await_args.args[0]
        interaction.response.defer.assert_not_awaited()
        assert platform.calls == []

    def test_outage_keeps_roles(self, db_engine, wallet):
        add_quantity_rule(db_engine, 1, "COLL", role_id=100)
        record_check(
            db_engine, discord_id=77, guild_id=1, wallet_address=wallet.address,
            asset_count=1, is_verified=True, now=NOW,
        )
        platform = FakeRolePlatform(roles={100})
        cog = self._cog(db_engine, [failing_source("helius")], platform)
        interaction = self._interaction()

        run_async(cog.reverify_member.callback(cog, interaction, self._member()))

        embed = interaction.followup.send.await_args.kwargs["embed"]
        assert "helius" in embed.description
        assert platform.roles == {100}
        assert platform.calls == []
