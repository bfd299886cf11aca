"""
gatekeeper.services.signature — Solana wallet checks
======================================================

A Solana wallet address is the base58 encoding of a 32-byte ed25519 public
key.  Wallets sign the UTF-8 bytes of the challenge message; browser wallet
adapters return the 64-byte signature base58-encoded, some return base64.
"""

from __future__ import annotations

import base64
import binascii
import logging

import base58
from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from gatekeeper.constants import SOLANA_PUBKEY_BYTES, SOLANA_SIGNATURE_BYTES
from gatekeeper.errors import InvalidSignature, InvalidWalletFormat

logger = logging.getLogger(__name__)


def _b58decode(value: str) -> bytes | None:
    try:
        return base58.b58decode(value)
    except ValueError:
        return None


def is_valid_wallet_address(address: str | None) -> bool:
    """True when *address* decodes to exactly 32 bytes of base58."""
    if not address or not isinstance(address, str):
        return False
    address = address.strip()
    if not 32 <= len(address) <= 44:
        return False
    raw = _b58decode(address)
    return raw is not None and len(raw) == SOLANA_PUBKEY_BYTES


def require_wallet_address(address: str | None) -> str:
    """Return the stripped address or raise :class:`InvalidWalletFormat`."""
    if not is_valid_wallet_address(address):
        raise InvalidWalletFormat()
    return address.strip()


def decode_signature(signature: str) -> bytes:
    """Decode a wallet signature (base58 first, then base64).

    Raises
    ------
    InvalidSignature
        If neither encoding yields exactly 64 bytes.
    """
    signature = (signature or "").strip()
    raw = _b58decode(signature)
    if raw is not None and len(raw) == SOLANA_SIGNATURE_BYTES:
        return raw
    try:
        raw = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        raw = b""
    if len(raw) == SOLANA_SIGNATURE_BYTES:
        return raw
    raise InvalidSignature(
        "The signature could not be read. Sign the message again in your wallet."
    )


def verify_wallet_signature(wallet_address: str, message: str, signature: str) -> None:
    """Check that *wallet_address* signed the exact UTF-8 bytes of *message*.

    Raises
    ------
    InvalidWalletFormat
        If the address is not a valid Solana public key.
    InvalidSignature
        If the signature is malformed or does not verify.
    """
    address = require_wallet_address(wallet_address)
    try:
        public_key = Ed25519PublicKey.from_public_bytes(base58.b58decode(address))
    except ValueError:
        raise InvalidWalletFormat() from None
    sig = decode_signature(signature)
    try:
        public_key.verify(sig, message.encode("utf-8"))
    except CryptoInvalidSignature:
        logger.info("Signature mismatch for wallet %s", address)
        raise InvalidSignature() from None
