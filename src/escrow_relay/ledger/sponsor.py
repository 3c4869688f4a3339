"""Fee sponsor keypair, loaded once at startup.

The sponsor pays every transaction fee and every auxiliary account rent
deposit. Its key is read-only after loading; a missing or malformed key
raises SponsorKeyUnavailableError so the application refuses to start.
"""

from __future__ import annotations

import json
from pathlib import Path

from solders.keypair import Keypair

from escrow_relay.config import get_settings
from escrow_relay.domain.exceptions import SponsorKeyUnavailableError
from escrow_relay.logging_config import get_logger

logger = get_logger(__name__)

_sponsor: Keypair | None = None


def parse_keypair(secret: str) -> Keypair:
    """Parse a base58 secret key or a JSON array of 64 bytes."""
    secret = secret.strip()
    if not secret:
        raise SponsorKeyUnavailableError("Fee sponsor secret key is empty")
    try:
        if secret.startswith("["):
            raw = json.loads(secret)
            if not isinstance(raw, list) or len(raw) != 64:
                raise ValueError("expected a JSON array of 64 bytes")
            return Keypair.from_bytes(bytes(raw))
        return Keypair.from_base58_string(secret)
    except ValueError as err:
        raise SponsorKeyUnavailableError(f"Fee sponsor secret key is malformed: {err}") from err


def load_keypair_file(path: str | Path) -> Keypair:
    """Read a keypair file in the format written by ``solana-keygen``."""
    try:
        content = Path(path).expanduser().read_text(encoding="utf-8")
    except OSError as err:
        raise SponsorKeyUnavailableError(f"Cannot read fee sponsor keypair file {path}: {err}") from err
    return parse_keypair(content)


def init_sponsor() -> Keypair:
    """Load the sponsor from settings. Called during app startup."""
    global _sponsor
    settings = get_settings()
    if settings.fee_sponsor_secret_key:
        keypair = parse_keypair(settings.fee_sponsor_secret_key)
        source = "secret_key"
    elif settings.fee_sponsor_keypair_path:
        keypair = load_keypair_file(settings.fee_sponsor_keypair_path)
        source = "keypair_path"
    else:
        raise SponsorKeyUnavailableError(
            "No fee sponsor configured. Set FEE_SPONSOR_SECRET_KEY or FEE_SPONSOR_KEYPAIR_PATH."
        )
    _sponsor = keypair
    logger.info("sponsor.loaded", pubkey=str(keypair.pubkey()), source=source)
    return keypair


def set_sponsor(keypair: Keypair | None) -> None:
    """Install a sponsor directly, bypassing settings."""
    global _sponsor
    _sponsor = keypair


def get_sponsor() -> Keypair:
    """Return the sponsor keypair. Must call init_sponsor() first."""
    if _sponsor is None:
        raise SponsorKeyUnavailableError("Fee sponsor not loaded. Call init_sponsor() first.")
    return _sponsor
