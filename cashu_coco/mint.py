"""
Cashu Mint API client wrapper."""

from __future__ import annotations

import logging
import os
from typing import Any, TypedDict, cast

import httpx

from .types import (
    BlindedMessage,
    BlindedSignature,
    CurrencyUnit,
    MintError,
    Proof,
)

logger = logging.getLogger(__name__)

if os.environ.get("MINT_DEBUG", "false").lower() == "true":
    logger.setLevel(logging.DEBUG)


# ──────────────────────────────────────────────────────────────────────────────
# Mint API client
# ──────────────────────────────────────────────────────────────────────────────


class InvalidKeysetError(MintError):
    """Raised when keyset structure is invalid per NUT-01."""


def normalize_mint_url(url: str) -> str:
    """Normalize mint URL by removing whitespace and trailing slashes."""
    return url.strip().rstrip("/")


class Mint:
    def __init__(self, url: str, *, client: httpx.AsyncClient | None = None) -> None:
        self.url = normalize_mint_url(url)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=30.0)

    async def aclose(self) -> None:
        """Close the HTTP client if we created it."""
        if self._owns_client:
            await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make HTTP request to mint."""
        logger.debug("%s request to %s%s", method, self.url, path)
        try:
            response = await self.client.request(
                method,
                f"{self.url}{path}",
                json=json,
                params=params,
            )
        except httpx.HTTPError as e:
            raise MintError(f"Could not reach mint {self.url}: {e}") from e

        if response.status_code >= 400:
            raise MintError(
                f"Mint returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        return response.json()

    def _validate_keyset(self, keyset: dict[str, Any]) -> bool:
        """Validate keyset structure per NUT-01 specification."""
        required_fields = ["id", "unit", "keys"]
        if not all(field in keyset for field in required_fields):
            return False

        # Validate keys structure (amount -> pubkey mapping)
        keys = keyset.get("keys", {})
        if not isinstance(keys, dict):
            return False

        return all(self._is_valid_compressed_pubkey(pubkey) for pubkey in keys.values())

    def _is_valid_compressed_pubkey(self, pubkey: str) -> bool:
        """Validate that pubkey is a valid compressed secp256k1 public key."""
        try:
            # Compressed secp256k1 pubkeys are 33 bytes (66 hex chars)
            if len(pubkey) != 66:
                return False

            if not pubkey.startswith(("02", "03")):
                return False

            bytes.fromhex(pubkey)
            return True
        except (ValueError, TypeError):
            return False

    def _validate_keys_response(self, response: dict[str, Any]) -> KeysResponse:
        """Validate and cast response to NUT-01 compliant KeysResponse.

        Raises:
            InvalidKeysetError: If response doesn't match NUT-01 specification
        """
        if "keysets" not in response:
            raise InvalidKeysetError("Response missing 'keysets' field")

        keysets = response["keysets"]
        if not isinstance(keysets, list):
            raise InvalidKeysetError("'keysets' must be a list")

        for i, keyset in enumerate(keysets):
            if not self._validate_keyset(keyset):
                raise InvalidKeysetError(f"Invalid keyset at index {i}")

        return cast(KeysResponse, response)

    # ───────────────────────── Info & Keys ─────────────────────────────────

    async def get_info(self) -> MintInfo:
        """Get mint information."""
        return cast(MintInfo, await self._request("GET", "/v1/info"))

    async def get_keys(self) -> list[Keyset]:
        """Get public keys of all active keysets (NUT-01)."""
        response = await self._request("GET", "/v1/keys")
        return self._validate_keys_response(response)["keysets"]

    async def get_keyset(self, id: str) -> Keyset:
        """Get keys for a specific keyset."""
        response = await self._request("GET", f"/v1/keys/{id}")
        return self._validate_keys_response(response)["keysets"][0]

    async def get_keysets_info(self) -> list[KeysetInfo]:
        """Get all keyset IDs with their state and fees (NUT-02)."""
        response = await self._request("GET", "/v1/keysets")
        return cast(list[KeysetInfo], response["keysets"])

    # ───────────────────────── Minting (receive) ─────────────────────────────────

    async def create_mint_quote(
        self,
        *,
        amount: int,
        unit: CurrencyUnit = "sat",
    ) -> PostMintQuoteResponse:
        """Request a Lightning invoice to mint tokens."""
        body: dict[str, Any] = {
            "unit": unit,
            "amount": amount,
        }
        return cast(
            PostMintQuoteResponse,
            await self._request("POST", "/v1/mint/quote/bolt11", json=body),
        )

    async def get_mint_quote(self, quote_id: str) -> PostMintQuoteResponse:
        """Check status of a mint quote."""
        return cast(
            PostMintQuoteResponse,
            await self._request("GET", f"/v1/mint/quote/bolt11/{quote_id}"),
        )

    async def mint(
        self,
        *,
        quote: str,
        outputs: list[BlindedMessage],
    ) -> PostMintResponse:
        """Mint tokens after paying the Lightning invoice."""
        body: dict[str, Any] = {
            "quote": quote,
            "outputs": outputs,
        }
        return cast(
            PostMintResponse, await self._request("POST", "/v1/mint/bolt11", json=body)
        )

    # ───────────────────────── Melting (send) ─────────────────────────────────

    async def create_melt_quote(
        self,
        request: str,
        *,
        unit: CurrencyUnit = "sat",
    ) -> PostMeltQuoteResponse:
        """Get a quote for paying a Lightning invoice."""
        body: dict[str, Any] = {
            "unit": unit,
            "request": request,
        }
        return cast(
            PostMeltQuoteResponse,
            await self._request("POST", "/v1/melt/quote/bolt11", json=body),
        )

    async def get_melt_quote(self, quote_id: str) -> PostMeltQuoteResponse:
        """Check status of a melt quote."""
        return cast(
            PostMeltQuoteResponse,
            await self._request("GET", f"/v1/melt/quote/bolt11/{quote_id}"),
        )

    async def melt(
        self,
        *,
        quote: str,
        inputs: list[Proof],
        outputs: list[BlindedMessage] | None = None,
    ) -> PostMeltQuoteResponse:
        """Melt tokens to pay a Lightning invoice."""
        body: dict[str, Any] = {
            "quote": quote,
            "inputs": _wire_proofs(inputs),
        }
        if outputs:
            body["outputs"] = outputs

        return cast(
            PostMeltQuoteResponse,
            await self._request("POST", "/v1/melt/bolt11", json=body),
        )

    # ───────────────────────── Token Management ─────────────────────────────────

    async def swap(
        self,
        *,
        inputs: list[Proof],
        outputs: list[BlindedMessage],
    ) -> PostSwapResponse:
        """Swap proofs for new blinded signatures."""
        body: dict[str, Any] = {
            "inputs": _wire_proofs(inputs),
            "outputs": outputs,
        }
        return cast(
            PostSwapResponse, await self._request("POST", "/v1/swap", json=body)
        )

    async def check_state(self, *, Ys: list[str]) -> PostCheckStateResponse:
        """Check if proofs are spent or pending."""
        body: dict[str, Any] = {"Ys": Ys}
        return cast(
            PostCheckStateResponse,
            await self._request("POST", "/v1/checkstate", json=body),
        )

    async def restore(self, *, outputs: list[BlindedMessage]) -> PostRestoreResponse:
        """Restore proofs from blinded messages."""
        body: dict[str, Any] = {"outputs": outputs}
        return cast(
            PostRestoreResponse, await self._request("POST", "/v1/restore", json=body)
        )


def _wire_proofs(proofs: list[Proof]) -> list[dict[str, Any]]:
    """Strip wallet bookkeeping fields before sending proofs to the mint."""
    return [
        {"id": p["id"], "amount": p["amount"], "secret": p["secret"], "C": p["C"]}
        for p in proofs
    ]


# ──────────────────────────────────────────────────────────────────────────────
# Type definitions based on NUT-01 and OpenAPI spec
# ──────────────────────────────────────────────────────────────────────────────


class MintInfo(TypedDict, total=False):
    """Mint information response."""

    name: str
    pubkey: str
    version: str
    description: str
    description_long: str
    contact: list[dict[str, str]]
    icon_url: str
    motd: str
    nuts: dict[str, dict[str, Any]]


# NUT-01 compliant keyset definitions
class Keyset(TypedDict):
    """Individual keyset per NUT-01 specification."""

    id: str  # keyset identifier
    unit: CurrencyUnit  # currency unit
    keys: dict[str, str]  # amount -> compressed secp256k1 pubkey mapping


class KeysResponse(TypedDict):
    """NUT-01 compliant mint keys response from GET /v1/keys."""

    keysets: list[Keyset]


class KeysetInfoRequired(TypedDict):
    """Required fields for keyset information."""

    id: str
    unit: CurrencyUnit
    active: bool


class KeysetInfoOptional(TypedDict, total=False):
    """Optional fields for keyset information."""

    input_fee_ppk: int  # input fee in parts per thousand


class KeysetInfo(KeysetInfoRequired, KeysetInfoOptional):
    """Extended keyset information for /v1/keysets endpoint."""

    pass


class PostMintQuoteResponse(TypedDict, total=False):
    """Mint quote response."""

    quote: str  # quote id
    request: str  # bolt11 invoice
    amount: int
    unit: CurrencyUnit
    state: str  # "UNPAID", "PAID", "ISSUED"
    expiry: int


class PostMintResponse(TypedDict):
    """Mint response with signatures."""

    signatures: list[BlindedSignature]


class PostMeltQuoteResponse(TypedDict, total=False):
    """Melt quote response."""

    quote: str
    amount: int
    fee_reserve: int
    unit: CurrencyUnit
    request: str
    state: str  # "UNPAID", "PENDING", "PAID"
    expiry: int
    payment_preimage: str
    change: list[BlindedSignature]


class PostSwapResponse(TypedDict):
    """Swap response."""

    signatures: list[BlindedSignature]


class PostCheckStateResponse(TypedDict):
    """Check state response."""

    states: list[dict[str, str]]  # Y -> state mapping


class PostRestoreResponse(TypedDict, total=False):
    """Restore response."""

    outputs: list[BlindedMessage]
    signatures: list[BlindedSignature]
    promises: list[BlindedSignature]  # deprecated
