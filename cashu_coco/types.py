"""Type definitions for the cashu-coco package following NUT-00 specifications."""

from __future__ import annotations

from typing import Any, Literal, TypedDict


class Proof(TypedDict):
    """Proof structure as stored by the wallet.

    Extends the basic NUT-00 Proof with mint URL and unit tracking for
    multi-mint support.
    """

    id: str
    amount: int
    secret: str
    C: str
    mint: str
    unit: CurrencyUnit


# Proof lifecycle inside the repositories
ProofState = Literal["ready", "inflight", "spent"]


class CashuCocoError(Exception):
    """Base class for all cashu-coco errors."""


class WalletError(CashuCocoError):
    """Base class for wallet errors."""


class UnknownMintError(WalletError):
    """Raised when an operation targets a mint that was never added."""


class MintError(CashuCocoError):
    """Base exception for mint errors."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidSeedError(CashuCocoError):
    """Raised when a seed secret is neither 64-byte hex nor a BIP39 mnemonic."""


class StorageInitError(CashuCocoError):
    """Raised when a storage backend cannot be opened or its schema created."""


class TokenError(CashuCocoError):
    """Raised for malformed or unsupported Cashu tokens."""


class NodeOperationError(CashuCocoError):
    """Error surfaced to the workflow host for a single input item."""

    def __init__(self, message: str, *, item_index: int | None = None) -> None:
        super().__init__(message)
        self.item_index = item_index


# Standard currency units as per NUT-00 specification
CurrencyUnit = Literal[
    "btc",  # Bitcoin
    "sat",  # Satoshi (1e-8 BTC)
    "msat",  # Millisatoshi (1e-11 BTC)
    "usd",  # US Dollar
    "eur",  # Euro
    # Special units
    "auth",  # Authentication tokens
]


class BlindedMessage(TypedDict):
    """Blinded message for mint operations."""

    amount: int
    B_: str  # hex encoded blinded message
    id: str  # keyset ID


class BlindedSignature(TypedDict):
    """Blinded signature response from mint."""

    amount: int
    C_: str  # hex encoded blinded signature
    id: str  # keyset ID


class KeysetRecord(TypedDict):
    """Keyset as persisted by the repositories."""

    id: str
    mint_url: str
    unit: str
    active: bool
    input_fee_ppk: int
    keys: dict[str, str]  # amount -> pubkey


class MintRecord(TypedDict):
    """Known mint with its last fetched info."""

    url: str
    info: dict[str, Any]
    trusted: bool


class QuoteRecord(TypedDict, total=False):
    """Mint or melt quote as persisted by the repositories."""

    quote: str
    mint_url: str
    amount: int
    unit: str
    request: str
    state: str
    expiry: int
    fee_reserve: int
