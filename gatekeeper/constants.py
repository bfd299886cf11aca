"""
gatekeeper.constants — Shared constants
=========================================

Values that more than one layer needs (bot, API, services) and that are not
worth a config knob.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Source identifiers (also the keys under ``sources:`` in config.yaml)
# ---------------------------------------------------------------------------
SOURCE_HELIUS = "helius"
SOURCE_MAGIC_EDEN = "magic_eden"

DEFAULT_SOURCE_PRIORITY: tuple[str, ...] = (SOURCE_HELIUS, SOURCE_MAGIC_EDEN)

# ---------------------------------------------------------------------------
# Verification sessions
# ---------------------------------------------------------------------------
SESSION_TOKEN_BYTES = 32
DEFAULT_SESSION_TTL_MINUTES = 10

# The exact bytes the wallet signs.  The wallet line is omitted when the
# session is created before a wallet is known.
CHALLENGE_HEADER = "Verify your wallet for Discord"


def build_challenge_message(
    discord_id: int, wallet_address: str | None, timestamp_ms: int,
) -> str:
    """Return the human-readable challenge a wallet is asked to sign."""
    lines = [CHALLENGE_HEADER, f"Discord ID: {discord_id}"]
    if wallet_address:
        lines.append(f"Wallet: {wallet_address}")
    lines.append(f"Timestamp: {timestamp_ms}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Solana
# ---------------------------------------------------------------------------
SOLANA_PUBKEY_BYTES = 32
SOLANA_SIGNATURE_BYTES = 64

# ---------------------------------------------------------------------------
# Discord presentation
# ---------------------------------------------------------------------------
VERIFIED_COLOR = 0x2ECC71
UNVERIFIED_COLOR = 0xE67E22
ERROR_COLOR = 0xE74C3C
