"""
gatekeeper.api.routes.verification — Verification portal endpoints
=====================================================================

The portal page a member opens from /verify talks to these two endpoints:

- ``GET  /verification/session/{token}`` — session details, the message to
  sign, and the guild's rules.
- ``POST /verification/session/{token}/signature`` — submit the wallet
  signature; returns the verification result.

Domain errors are rendered by the app-level :class:`GatekeeperError`
handler as ``{"error": code, "message": ...}`` with the error's status.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from gatekeeper.api.deps import get_session_service
from gatekeeper.database.engine import run_db
from gatekeeper.database.models import SessionStatus
from gatekeeper.engine.rules import pending_summaries
from gatekeeper.errors import SessionExpired, SessionNotFound
from gatekeeper.services.rule_store import list_rules_by_guild
from gatekeeper.services.session_service import VerificationSessionService

router = APIRouter(prefix="/verification", tags=["verification"])


class SignatureSubmission(BaseModel):
    signature: str = Field(min_length=1)
    wallet_address: str | None = None
    username: str | None = Field(default=None, max_length=100)


@router.get("/session/{token}")
async def get_verification_session(
    token: str,
    service: VerificationSessionService = Depends(get_session_service),
):
    """Return the session and the rules it will be evaluated against."""
    view = await service.find_by_token(token)
    if view is None:
        raise SessionNotFound()
    if view.status is SessionStatus.EXPIRED:
        raise SessionExpired()

    rules = await run_db(list_rules_by_guild, service.engine, view.guild_id)
    return {
        "session": view.to_dict(),
        "rules": [summary.to_dict() for summary in pending_summaries(rules)],
    }


@router.post("/session/{token}/signature")
async def submit_signature(
    token: str,
    body: SignatureSubmission,
    service: VerificationSessionService = Depends(get_session_service),
):
    """Redeem the session with a wallet signature over its message."""
    result = await service.verify(
        token,
        body.signature,
        wallet_address=body.wallet_address,
        username=body.username,
    )
    return result.to_dict()
