"""
gatekeeper.services.session_service — Verification Session Manager
=====================================================================

Issues and redeems the short-lived, single-use sessions that gate the
interactive verification path.

Lifecycle::

    create_session ──► pending ──┬─► verified   (signature ok, a rule met)
                                 ├─► completed  (signature ok, no rule met)
                                 ├─► failed     (signature mismatch)
                                 └─► expired    (read after expires_at)

* The raw token leaves this module exactly once, in :class:`SessionTicket`.
  Only its sha256 hex digest is stored.
* ``pending → expired`` happens lazily, the first time an overdue session is
  looked up or redeemed.
* Every terminal transition is a conditional ``UPDATE … WHERE status =
  'pending'``; of two concurrent redemptions only one can win.
* A full provider outage leaves the session ``pending`` so the member can
  retry with the same link until it expires.
* A session that runs past ``expires_at`` while its wallet is being checked
  is expired instead of completed; no state is written.
* The username captured at ``/verify`` wins over one sent with the
  signature.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, select, update

from gatekeeper.constants import (
    DEFAULT_SESSION_TTL_MINUTES,
    SESSION_TOKEN_BYTES,
    build_challenge_message,
)
from gatekeeper.database.engine import as_utc, get_session, run_db
from gatekeeper.database.models import CheckTrigger, SessionStatus, VerificationSession
from gatekeeper.engine.rules import RuleSummary
from gatekeeper.errors import (
    InvalidSignature,
    InvalidWalletFormat,
    SessionAlreadyCompleted,
    SessionExpired,
    SessionNotFound,
)
from gatekeeper.services.ownership import OwnershipVerifier
from gatekeeper.services.role_sync import RoleSyncResult
from gatekeeper.services.signature import require_wallet_address, verify_wallet_signature
from gatekeeper.services.state_service import apply_check

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SessionTicket:
    """Returned once to the session creator.  ``token`` is never stored."""

    session_id: str
    token: str
    expires_at: datetime
    challenge_message: str


@dataclass(frozen=True, slots=True)
class SessionView:
    id: str
    guild_id: int
    discord_id: int
    username: str | None
    wallet_address: str | None
    challenge_message: str
    status: SessionStatus
    created_at: datetime | None
    expires_at: datetime
    verified_at: datetime | None

    @classmethod
    def from_row(cls, row: VerificationSession) -> SessionView:
        return cls(
            id=row.id,
            guild_id=row.guild_id,
            discord_id=row.discord_id,
            username=row.username,
            wallet_address=row.wallet_address,
            challenge_message=row.challenge_message,
            status=SessionStatus(row.status),
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
            verified_at=as_utc(row.verified_at),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "guild_id": str(self.guild_id),
            "discord_id": str(self.discord_id),
            "username": self.username,
            "wallet_address": self.wallet_address,
            "message": self.challenge_message,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat(),
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }


@dataclass
class VerificationResult:
    wallet_address: str
    asset_count: int
    is_verified: bool
    status: SessionStatus
    verified_at: datetime
    rule_summaries: list[RuleSummary] = field(default_factory=list)
    role_sync: RoleSyncResult = field(default_factory=RoleSyncResult)

    def to_dict(self) -> dict:
        return {
            "wallet_address": self.wallet_address,
            "asset_count": self.asset_count,
            "is_verified": self.is_verified,
            "status": self.status.value,
            "verified_at": self.verified_at.isoformat(),
            "rule_summaries": [summary.to_dict() for summary in self.rule_summaries],
            "roles_added": [str(r) for r in self.role_sync.added],
            "roles_removed": [str(r) for r in self.role_sync.removed],
        }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class VerificationSessionService:
    """Creates, looks up, and redeems verification sessions.

    Parameters
    ----------
    engine:
        Database engine.
    verifier:
        Discovery + evaluation + role-sync pipeline run on redemption.
    ttl_minutes:
        Lifetime of a new session.
    clock:
        Returns the current aware UTC datetime (injectable for tests).
    """

    def __init__(
        self,
        engine: Engine,
        verifier: OwnershipVerifier,
        *,
        ttl_minutes: int = DEFAULT_SESSION_TTL_MINUTES,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.engine = engine
        self.verifier = verifier
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock

    # -------------------------------------------------------------------
    # create
    # -------------------------------------------------------------------
    async def create_session(
        self,
        discord_id: int,
        guild_id: int,
        wallet_address: str | None = None,
        username: str | None = None,
    ) -> SessionTicket:
        """Issue a new ``pending`` session.

        Raises
        ------
        InvalidWalletFormat
            If *wallet_address* is supplied but is not a Solana address.
        """
        wallet = require_wallet_address(wallet_address) if wallet_address else None
        now = self.clock()
        token = secrets.token_hex(SESSION_TOKEN_BYTES)
        message = build_challenge_message(discord_id, wallet, int(now.timestamp() * 1000))

        session_id = await run_db(
            self._insert_session,
            guild_id=guild_id,
            discord_id=discord_id,
            username=username,
            wallet_address=wallet,
            token_hash=hash_token(token),
            challenge_message=message,
            created_at=now,
            expires_at=now + self.ttl,
        )
        logger.info(
            "Verification session %s created for user %d in guild %d",
            session_id, discord_id, guild_id,
        )
        return SessionTicket(
            session_id=session_id,
            token=token,
            expires_at=now + self.ttl,
            challenge_message=message,
        )

    def _insert_session(self, **values) -> str:
        with get_session(self.engine) as session:
            row = VerificationSession(status=SessionStatus.PENDING.value, **values)
            session.add(row)
            session.flush()
            return row.id

    # -------------------------------------------------------------------
    # lookup
    # -------------------------------------------------------------------
    async def find_by_token(self, token: str) -> SessionView | None:
        """Return the session for *token*, expiring it first if overdue."""
        if not token:
            return None
        return await run_db(self._load, hash_token(token), self.clock())

    def _load(self, token_hash: str, now: datetime) -> SessionView | None:
        with get_session(self.engine) as session:
            row = session.scalar(
                select(VerificationSession).where(VerificationSession.token_hash == token_hash)
            )
            if row is None:
                return None
            if row.status == SessionStatus.PENDING and now >= as_utc(row.expires_at):
                self._transition(session, row.id, SessionStatus.EXPIRED, now)
                session.refresh(row)
                logger.info("Verification session %s expired", row.id)
            return SessionView.from_row(row)

    @staticmethod
    def _transition(
        session, session_id: str, status: SessionStatus, now: datetime, **values,
    ) -> bool:
        """Conditionally move a pending session to *status*."""
        result = session.execute(
            update(VerificationSession)
            .where(
                VerificationSession.id == session_id,
                VerificationSession.status == SessionStatus.PENDING.value,
            )
            .values(status=status.value, updated_at=now, **values)
        )
        return result.rowcount == 1

    def _mark(self, session_id: str, status: SessionStatus, now: datetime) -> bool:
        with get_session(self.engine) as session:
            return self._transition(session, session_id, status, now)

    # -------------------------------------------------------------------
    # verify
    # -------------------------------------------------------------------
    async def verify(
        self,
        token: str,
        signature: str,
        wallet_address: str | None = None,
        username: str | None = None,
    ) -> VerificationResult:
        """Redeem *token* with a wallet *signature* over the challenge.

        Raises
        ------
        SessionNotFound, SessionExpired, SessionAlreadyCompleted
            On session state mismatches.
        InvalidWalletFormat
            If no valid wallet is bound or supplied.
        InvalidSignature
            If the signature does not verify; the session becomes ``failed``.
        SourceUnavailable
            If every NFT source failed; the session stays ``pending``.
        """
        view = await self.find_by_token(token)
        if view is None:
            raise SessionNotFound()
        if view.status is SessionStatus.EXPIRED:
            raise SessionExpired()
        if view.status is not SessionStatus.PENDING:
            raise SessionAlreadyCompleted()

        wallet = self._resolve_wallet(view, wallet_address)

        try:
            verify_wallet_signature(wallet, view.challenge_message, signature)
        except InvalidSignature:
            await run_db(self._mark, view.id, SessionStatus.FAILED, self.clock())
            logger.info("Verification session %s failed: signature mismatch", view.id)
            raise

        rules = await self.verifier.load_rules(view.guild_id)
        check = await self.verifier.evaluate_wallet(wallet, rules)

        now = self.clock()
        if now >= view.expires_at:
            await run_db(self._mark, view.id, SessionStatus.EXPIRED, now)
            logger.info("Verification session %s expired during discovery", view.id)
            raise SessionExpired()

        status = SessionStatus.VERIFIED if check.is_verified else SessionStatus.COMPLETED
        await run_db(
            self._complete,
            view,
            status=status,
            wallet=wallet,
            username=view.username or username,
            asset_count=check.asset_count,
            now=now,
        )
        logger.info(
            "Verification session %s %s: wallet=%s assets=%d",
            view.id, status.value, wallet, check.asset_count,
        )

        role_sync = await self.verifier.sync_roles(
            view.guild_id, view.discord_id, check.evaluation,
        )
        return VerificationResult(
            wallet_address=wallet,
            asset_count=check.asset_count,
            is_verified=check.is_verified,
            status=status,
            verified_at=now,
            rule_summaries=check.evaluation.summaries,
            role_sync=role_sync,
        )

    @staticmethod
    def _resolve_wallet(view: SessionView, supplied: str | None) -> str:
        if view.wallet_address:
            if supplied and supplied.strip() != view.wallet_address:
                raise InvalidWalletFormat(
                    "This session was started for a different wallet. "
                    "Run /verify again to use this one."
                )
            return view.wallet_address
        if not supplied:
            raise InvalidWalletFormat(
                "Connect your wallet before signing; no wallet address was sent."
            )
        return require_wallet_address(supplied)

    def _complete(
        self,
        view: SessionView,
        *,
        status: SessionStatus,
        wallet: str,
        username: str | None,
        asset_count: int,
        now: datetime,
    ) -> None:
        """Finish the session and record the check in one transaction."""
        with get_session(self.engine) as session:
            won = self._transition(
                session,
                view.id,
                status,
                now,
                wallet_address=wallet,
                username=username,
                verified_at=now,
            )
            if not won:
                raise SessionAlreadyCompleted()
            apply_check(
                session,
                discord_id=view.discord_id,
                guild_id=view.guild_id,
                wallet_address=wallet,
                asset_count=asset_count,
                is_verified=status is SessionStatus.VERIFIED,
                username=username,
                trigger=CheckTrigger.INTERACTIVE,
                now=now,
            )
