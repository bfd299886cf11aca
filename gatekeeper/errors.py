"""
gatekeeper.errors — Error taxonomy
====================================

Every failure a user or operator can act on is a :class:`GatekeeperError`
subclass carrying three things:

* ``code`` — stable machine identifier (returned by the API as ``error``).
* ``status_code`` — the HTTP status the API responds with.
* ``user_message`` — a specific, actionable sentence safe to show a member.

The bot replies with ``user_message`` ephemerally; the API maps the error to
``{"error": code, "message": user_message}``.
"""

from __future__ import annotations


class GatekeeperError(Exception):
    """Base class for all domain errors."""

    code = "gatekeeper_error"
    status_code = 400
    default_message = "Something went wrong during verification."

    def __init__(self, message: str | None = None) -> None:
        self.user_message = message or self.default_message
        super().__init__(self.user_message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.user_message}


class InvalidWalletFormat(GatekeeperError):
    code = "invalid_wallet_format"
    status_code = 400
    default_message = (
        "That does not look like a Solana wallet address. "
        "Paste the base58 address shown in your wallet app."
    )


class SessionNotFound(GatekeeperError):
    code = "session_not_found"
    status_code = 404
    default_message = (
        "This verification link is not valid. Run /verify to get a new one."
    )


class SessionExpired(GatekeeperError):
    code = "session_expired"
    status_code = 410
    default_message = (
        "This verification session has expired. Please run /verify again."
    )


class SessionAlreadyCompleted(GatekeeperError):
    code = "session_already_completed"
    status_code = 409
    default_message = (
        "This verification session was already used. "
        "Run /verify to start a new one."
    )


class InvalidSignature(GatekeeperError):
    code = "invalid_signature"
    status_code = 401
    default_message = (
        "The signature does not match the wallet. Make sure you sign the "
        "exact message with the wallet you entered, then run /verify again."
    )


class SourceUnavailable(GatekeeperError):
    """An NFT source failed (timeout, HTTP error, or throttling exhausted).

    Raised per source inside discovery, where it is recorded and tolerated.
    Raised to callers only when *every* source failed.
    """

    code = "source_unavailable"
    status_code = 503
    default_message = (
        "NFT data providers are unavailable right now. "
        "Your session is still open; try again in a minute."
    )

    def __init__(self, message: str | None = None, *, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)


class SourceRateLimited(SourceUnavailable):
    """Provider answered with a throttling response (HTTP 429)."""

    code = "source_rate_limited"


class RoleSyncFailure(GatekeeperError):
    """A single role add/remove failed.  Recorded, never fatal."""

    code = "role_sync_failure"
    status_code = 502
    default_message = (
        "Your wallet was verified but a role could not be updated. "
        "An admin has been notified."
    )

    def __init__(
        self,
        message: str | None = None,
        *,
        role_id: int | None = None,
        action: str | None = None,
    ) -> None:
        self.role_id = role_id
        self.action = action
        super().__init__(message)


class MemberNotFound(RoleSyncFailure):
    """The member left the guild; no role can be changed."""

    code = "member_not_found"
    status_code = 404
    default_message = "You are no longer a member of this server."


class SchedulerBusy(GatekeeperError):
    code = "scheduler_busy"
    status_code = 409
    default_message = "A re-verification cycle is already running."
