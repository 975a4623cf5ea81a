"""Seed resolution: 64-byte hex or BIP39 mnemonic to a 64-byte wallet seed."""

from __future__ import annotations

import hashlib
import re
from typing import Protocol

from mnemonic import Mnemonic

from .types import InvalidSeedError

SEED_LENGTH = 64

_HEX_SEED = re.compile(r"^[0-9a-f]{128}$")
_mnemo = Mnemonic("english")


class SeedProvider(Protocol):
    """Capability handed to a manager to obtain the current seed on demand."""

    def resolve_current_seed(self) -> bytes: ...


def _normalize_hex(secret: str) -> str:
    normalized = secret.strip().lower()
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    return normalized


def _canonical(secret: str) -> str:
    """The exact string a secret is parsed from: bare lower-case hex or a
    single-spaced phrase."""
    normalized = _normalize_hex(secret)
    if _HEX_SEED.match(normalized):
        return normalized
    return " ".join(secret.split())


def resolve_seed(secret: str) -> bytes:
    """Parse a seed secret as 64-byte hex or a BIP39 mnemonic.

    Args:
        secret: 128 hex characters (optionally ``0x`` prefixed) or a
            12/24-word english mnemonic

    Returns:
        Exactly 64 bytes of seed material

    Raises:
        InvalidSeedError: If the secret is neither format
    """
    canonical = _canonical(secret)
    if _HEX_SEED.match(canonical):
        return bytes.fromhex(canonical)

    if not _mnemo.check(canonical):
        raise InvalidSeedError("Invalid seed: must be 64-byte hex or valid BIP39 mnemonic")
    return _mnemo.to_seed(canonical, passphrase="")[:SEED_LENGTH]


def fingerprint(secret: str) -> str:
    """Stable identifier for a seed secret, safe to use in cache keys."""
    return hashlib.sha256(_canonical(secret).encode("utf-8")).hexdigest()


class SeedResolver:
    """Re-derives the seed from its secret each time a manager asks for it."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def resolve_current_seed(self) -> bytes:
        return resolve_seed(self._secret)

    def __repr__(self) -> str:
        return f"SeedResolver(fingerprint={fingerprint(self._secret)[:8]})"
