"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import base58
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from gatekeeper.database.models import Base
from gatekeeper.errors import MemberNotFound, SourceUnavailable
from gatekeeper.sources.base import PageRequest, SourceItem, SourcePage

# ---------------------------------------------------------------------------
# Map BigInteger → INTEGER so autoincrement works on SQLite.
# ---------------------------------------------------------------------------
_bigint_sqlite_registered = False


def _register_bigint_sqlite_compat():
    global _bigint_sqlite_registered
    if _bigint_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _bigint_sqlite_registered = True


_register_bigint_sqlite_compat()


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a fresh event loop."""
    return asyncio.run(coro)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Gatekeeper tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------
class Wallet:
    """A throwaway ed25519 keypair that signs like a Solana wallet adapter."""

    def __init__(self) -> None:
        self._key = Ed25519PrivateKey.generate()
        raw = self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self.address = base58.b58encode(raw).decode()

    def sign_bytes(self, message: str) -> bytes:
        return self._key.sign(message.encode("utf-8"))

    def sign(self, message: str) -> str:
        return base58.b58encode(self.sign_bytes(message)).decode()


@pytest.fixture
def wallet() -> Wallet:
    return Wallet()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
def item(asset_id: str, collection: str | None = "COLL", **kwargs) -> SourceItem:
    """Build a :class:`SourceItem` in one collection."""
    collections = kwargs.pop("collections", (collection,) if collection else ())
    return SourceItem(
        asset_id=asset_id,
        collection_id=collection,
        collections=tuple(collections),
        **kwargs,
    )


@dataclass
class FakeSource:
    """In-memory :class:`AssetSource`.

    ``pages`` maps page number → items; ``error`` is raised on every call.
    """

    name: str
    pages: dict[int, list[SourceItem]] = field(default_factory=dict)
    error: Exception | None = None
    scoped: bool = False
    page_delay: float = 0.0
    requests: list[PageRequest] = field(default_factory=list)

    def supports_collection_scope(self, collection_id: str) -> bool:
        return self.scoped

    async def fetch_page(self, request: PageRequest) -> SourcePage:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        items = self.pages.get(request.page, [])
        return SourcePage(items=tuple(items), has_more=request.page + 1 in self.pages)


def failing_source(name: str) -> FakeSource:
    return FakeSource(name=name, error=SourceUnavailable(f"{name} down", source=name))


class FakeRolePlatform:
    """Records role calls; ``roles`` is the member's current role set."""

    def __init__(self, roles=(), *, fail_roles=(), missing: bool = False) -> None:
        self.roles: set[int] = set(roles)
        self.fail_roles = set(fail_roles)
        self.missing = missing
        self.calls: list[tuple[str, int]] = []

    async def member_has_role(self, guild_id: int, member_id: int, role_id: int) -> bool:
        if self.missing:
            raise MemberNotFound(role_id=role_id, action="lookup")
        return role_id in self.roles

    async def add_role(self, guild_id: int, member_id: int, role_id: int) -> None:
        self.calls.append(("add", role_id))
        if role_id in self.fail_roles:
            raise RuntimeError("Missing Permissions")
        self.roles.add(role_id)

    async def remove_role(self, guild_id: int, member_id: int, role_id: int) -> None:
        self.calls.append(("remove", role_id))
        if role_id in self.fail_roles:
            raise RuntimeError("Missing Permissions")
        self.roles.discard(role_id)
