"""
tests/test_role_sync.py — Role synchronizer and Discord platforms
===================================================================
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import httpx
import pytest

from conftest import FakeRolePlatform, run_async
from gatekeeper.errors import MemberNotFound, RoleSyncFailure
from gatekeeper.services.role_sync import (
    DISCORD_API,
    DiscordGatewayRolePlatform,
    DiscordRestRolePlatform,
    RoleSynchronizer,
)

GUILD = 1
MEMBER = 42


class TestRoleSynchronizer:
    def test_adds_and_removes_only_what_differs(self):
        platform = FakeRolePlatform(roles={100, 300, 999})
        result = run_async(RoleSynchronizer(platform).apply(GUILD, MEMBER, {100, 200}, {300, 400}))
        assert result.added == [200]
        assert result.removed == [300]
        assert result.ok and result.changed
        assert platform.roles == {100, 200, 999}

    def test_second_apply_is_a_no_op(self):
        platform = FakeRolePlatform()
        sync = RoleSynchronizer(platform)
        run_async(sync.apply(GUILD, MEMBER, {100}, {200}))
        platform.calls.clear()

        result = run_async(sync.apply(GUILD, MEMBER, {100}, {200}))
        assert platform.calls == []
        assert not result.changed

    def test_grant_wins_over_revoke(self):
        platform = FakeRolePlatform(roles={100})
        result = run_async(RoleSynchronizer(platform).apply(GUILD, MEMBER, {100}, {100}))
        assert platform.roles == {100}
        assert not result.changed

    def test_one_failing_role_does_not_stop_the_rest(self):
        platform = FakeRolePlatform(roles={300}, fail_roles={100})
        result = run_async(RoleSynchronizer(platform).apply(GUILD, MEMBER, {100, 200}, {300}))
        assert result.added == [200]
        assert result.removed == [300]
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert isinstance(failure, RoleSyncFailure)
        assert failure.role_id == 100 and failure.action == "add"

    def test_missing_member_stops_sync(self):
        platform = FakeRolePlatform(missing=True)
        result = run_async(RoleSynchronizer(platform).apply(GUILD, MEMBER, {100, 200}, {300}))
        assert len(result.failures) == 1
        assert isinstance(result.failures[0], MemberNotFound)
        assert platform.calls == []


# ===========================================================================
# discord.py gateway platform
# ===========================================================================
def _gateway(member_roles=(), guild_roles=(100, 200)):
    guild = MagicMock()
    member = MagicMock()
    member.roles = [SimpleNamespace(id=r) for r in member_roles]
    member.guild = guild
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    guild.get_member.return_value = member
    guild.get_role.side_effect = lambda rid: SimpleNamespace(id=rid) if rid in guild_roles else None

    client = MagicMock()
    client.get_guild.return_value = guild
    return DiscordGatewayRolePlatform(client), guild, member


class TestDiscordGatewayRolePlatform:
    def test_member_has_role(self):
        platform, _, _ = _gateway(member_roles=(100,))
        assert run_async(platform.member_has_role(GUILD, MEMBER, 100))
        assert not run_async(platform.member_has_role(GUILD, MEMBER, 200))

    def test_add_role_passes_audit_reason(self):
        platform, _, member = _gateway()
        run_async(platform.add_role(GUILD, MEMBER, 200))
        member.add_roles.assert_awaited_once()
        assert "reason" in member.add_roles.await_args.kwargs

    def test_deleted_role_is_a_failure(self):
        platform, _, _ = _gateway()
        with pytest.raises(RoleSyncFailure, match="no longer exists"):
            run_async(platform.remove_role(GUILD, MEMBER, 555))

    def test_member_fetched_when_not_cached(self):
        platform, guild, member = _gateway(member_roles=(100,))
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(return_value=member)
        assert run_async(platform.member_has_role(GUILD, MEMBER, 100))

    def test_departed_member(self):
        platform, guild, _ = _gateway()
        guild.get_member.return_value = None
        response = MagicMock(status=404, reason="Not Found")
        guild.fetch_member = AsyncMock(side_effect=discord.NotFound(response, "Unknown Member"))
        with pytest.raises(MemberNotFound):
            run_async(platform.member_has_role(GUILD, MEMBER, 100))

    def test_missing_guild(self):
        platform, _, _ = _gateway()
        platform.client.get_guild.return_value = None
        with pytest.raises(RoleSyncFailure):
            run_async(platform.add_role(GUILD, MEMBER, 100))


# ===========================================================================
# REST platform
# ===========================================================================
class TestDiscordRestRolePlatform:
    def _platform(self, handler) -> DiscordRestRolePlatform:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return DiscordRestRolePlatform("bot-token", client=client)

    def test_member_lookup(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"roles": ["100", "300"]})

        platform = self._platform(handler)
        assert run_async(platform.member_has_role(GUILD, MEMBER, 300))
        assert str(seen[0].url) == f"{DISCORD_API}/guilds/{GUILD}/members/{MEMBER}"
        assert seen[0].headers["Authorization"] == "Bot bot-token"

    def test_add_and_remove_use_role_endpoint(self):
        seen: list[tuple[str, str]] = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(204)

        platform = self._platform(handler)
        run_async(platform.add_role(GUILD, MEMBER, 100))
        run_async(platform.remove_role(GUILD, MEMBER, 100))
        path = f"/api/v10/guilds/{GUILD}/members/{MEMBER}/roles/100"
        assert seen == [("PUT", path), ("DELETE", path)]

    def test_unknown_member(self):
        platform = self._platform(lambda r: httpx.Response(404))
        with pytest.raises(MemberNotFound):
            run_async(platform.member_has_role(GUILD, MEMBER, 100))

    def test_forbidden_role_change(self):
        platform = self._platform(lambda r: httpx.Response(403))
        with pytest.raises(RoleSyncFailure) as excinfo:
            run_async(platform.add_role(GUILD, MEMBER, 100))
        assert not isinstance(excinfo.value, MemberNotFound)
        assert excinfo.value.action == "add"
