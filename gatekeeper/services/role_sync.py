"""
gatekeeper.services.role_sync — Role Synchronizer
===================================================

Applies an evaluation's grants/revokes to a member with the fewest possible
Discord calls: a granted role already held, or a revoked role not held, is
skipped.  Applying the same sets twice is a no-op the second time.

Failures are per role.  One role the bot cannot manage (hierarchy, missing
permission, deleted role) is logged and recorded in
:attr:`RoleSyncResult.failures`; the remaining roles are still processed.

Two platforms implement :class:`RolePlatform`:

* :class:`DiscordGatewayRolePlatform` — the bot's own member cache
  (discord.py), used by the bot process and the scheduler.
* :class:`DiscordRestRolePlatform` — the Discord REST API over httpx, used by
  the web API process which has no gateway connection.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import discord
import httpx

from gatekeeper.errors import MemberNotFound, RoleSyncFailure

if TYPE_CHECKING:
    from discord import Client

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"
AUDIT_REASON = "Gatekeeper: NFT ownership verification"


class RolePlatform(Protocol):
    async def member_has_role(self, guild_id: int, member_id: int, role_id: int) -> bool: ...

    async def add_role(self, guild_id: int, member_id: int, role_id: int) -> None: ...

    async def remove_role(self, guild_id: int, member_id: int, role_id: int) -> None: ...


@dataclass
class RoleSyncResult:
    added: list[int] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    failures: list[RoleSyncFailure] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)

    @property
    def ok(self) -> bool:
        return not self.failures


class RoleSynchronizer:
    """Diffs desired role membership against the platform and applies it."""

    def __init__(self, platform: RolePlatform) -> None:
        self.platform = platform

    async def apply(
        self,
        guild_id: int,
        member_id: int,
        grants: Iterable[int],
        revokes: Iterable[int],
    ) -> RoleSyncResult:
        grants = set(grants)
        revokes = set(revokes) - grants
        result = RoleSyncResult()

        for role_id in sorted(grants):
            try:
                if await self.platform.member_has_role(guild_id, member_id, role_id):
                    continue
                await self.platform.add_role(guild_id, member_id, role_id)
            except MemberNotFound as exc:
                logger.info("Member %d not in guild %d; role sync skipped", member_id, guild_id)
                result.failures.append(exc)
                return result
            except Exception as exc:
                result.failures.append(self._failure(exc, guild_id, member_id, role_id, "add"))
                continue
            result.added.append(role_id)
            logger.info("Granted role %d to member %d in guild %d", role_id, member_id, guild_id)

        for role_id in sorted(revokes):
            try:
                if not await self.platform.member_has_role(guild_id, member_id, role_id):
                    continue
                await self.platform.remove_role(guild_id, member_id, role_id)
            except MemberNotFound as exc:
                logger.info("Member %d not in guild %d; role sync skipped", member_id, guild_id)
                result.failures.append(exc)
                return result
            except Exception as exc:
                result.failures.append(self._failure(exc, guild_id, member_id, role_id, "remove"))
                continue
            result.removed.append(role_id)
            logger.info("Revoked role %d from member %d in guild %d", role_id, member_id, guild_id)

        return result

    @staticmethod
    def _failure(
        exc: Exception, guild_id: int, member_id: int, role_id: int, action: str,
    ) -> RoleSyncFailure:
        logger.warning(
            "Failed to %s role %d for member %d in guild %d: %s",
            action, role_id, member_id, guild_id, exc,
        )
        if isinstance(exc, RoleSyncFailure):
            return exc
        return RoleSyncFailure(
            f"Could not {action} role {role_id}: {exc}", role_id=role_id, action=action,
        )


# ---------------------------------------------------------------------------
# discord.py gateway platform
# ---------------------------------------------------------------------------
class DiscordGatewayRolePlatform:
    """Role operations through a connected discord.py client."""

    def __init__(self, client: Client) -> None:
        self.client = client

    async def _member(self, guild_id: int, member_id: int) -> discord.Member:
        guild = self.client.get_guild(guild_id)
        if guild is None:
            raise RoleSyncFailure(f"Guild {guild_id} is not available to the bot")
        member = guild.get_member(member_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(member_id)
        except discord.NotFound:
            raise MemberNotFound(role_id=None, action="lookup") from None

    def _role(self, member: discord.Member, role_id: int) -> discord.Role:
        role = member.guild.get_role(role_id)
        if role is None:
            raise RoleSyncFailure(
                f"Role {role_id} no longer exists", role_id=role_id,
            )
        return role

    async def member_has_role(self, guild_id: int, member_id: int, role_id: int) -> bool:
        member = await self._member(guild_id, member_id)
        return any(role.id == role_id for role in member.roles)

    async def add_role(self, guild_id: int, member_id: int, role_id: int) -> None:
        member = await self._member(guild_id, member_id)
        await member.add_roles(self._role(member, role_id), reason=AUDIT_REASON)

    async def remove_role(self, guild_id: int, member_id: int, role_id: int) -> None:
        member = await self._member(guild_id, member_id)
        await member.remove_roles(self._role(member, role_id), reason=AUDIT_REASON)


# ---------------------------------------------------------------------------
# Discord REST platform
# ---------------------------------------------------------------------------
class DiscordRestRolePlatform:
    """Role operations through the Discord REST API with a bot token."""

    def __init__(self, bot_token: str, client: httpx.AsyncClient | None = None) -> None:
        self._headers = {
            "Authorization": f"Bot {bot_token}",
            "X-Audit-Log-Reason": AUDIT_REASON,
        }
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            transport = httpx.AsyncHTTPTransport(retries=1)
            self._client = httpx.AsyncClient(timeout=10, transport=transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, path: str, *, role_id: int | None, action: str) -> httpx.Response:
        response = await self._http().request(
            method, f"{DISCORD_API}{path}", headers=self._headers,
        )
        if response.status_code == 404 and action == "lookup":
            raise MemberNotFound(role_id=role_id, action=action)
        if response.status_code >= 400:
            raise RoleSyncFailure(
                f"Discord {method} {path} returned HTTP {response.status_code}",
                role_id=role_id,
                action=action,
            )
        return response

    async def member_has_role(self, guild_id: int, member_id: int, role_id: int) -> bool:
        response = await self._send(
            "GET", f"/guilds/{guild_id}/members/{member_id}", role_id=role_id, action="lookup",
        )
        roles = response.json().get("roles", [])
        return str(role_id) in {str(r) for r in roles}

    async def add_role(self, guild_id: int, member_id: int, role_id: int) -> None:
        await self._send(
            "PUT",
            f"/guilds/{guild_id}/members/{member_id}/roles/{role_id}",
            role_id=role_id,
            action="add",
        )

    async def remove_role(self, guild_id: int, member_id: int, role_id: int) -> None:
        await self._send(
            "DELETE",
            f"/guilds/{guild_id}/members/{member_id}/roles/{role_id}",
            role_id=role_id,
            action="remove",
        )
