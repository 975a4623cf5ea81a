"""Cashu token encoding and decoding (V3 ``cashuA`` and V4 ``cashuB``)."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Literal, cast

import cbor2

from .types import CurrencyUnit, Proof, TokenError


@dataclass
class Token:
    """Decoded Cashu token for a single mint."""

    mint: str
    proofs: list[Proof]
    unit: CurrencyUnit = "sat"
    memo: str | None = None

    @property
    def amount(self) -> int:
        return sum(p["amount"] for p in self.proofs)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mint": self.mint,
            "unit": self.unit,
            "amount": self.amount,
            "proofs": [
                {"id": p["id"], "amount": p["amount"], "secret": p["secret"], "C": p["C"]}
                for p in self.proofs
            ],
        }
        if self.memo:
            data["memo"] = self.memo
        return data


def _b64_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64_decode(encoded: str) -> bytes:
    # Add correct padding, (-len) % 4 equals 0,1,2,3
    encoded += "=" * ((-len(encoded)) % 4)
    # Some wallets emit standard base64 alphabet
    encoded = encoded.replace("+", "-").replace("/", "_")
    return base64.urlsafe_b64decode(encoded)


def _encode_v3(token: Token) -> str:
    """Serialize a token into CashuA (V3) format."""
    token_proofs = [
        {"id": p["id"], "amount": p["amount"], "secret": p["secret"], "C": p["C"]}
        for p in token.proofs
    ]
    token_data: dict[str, Any] = {
        "token": [{"mint": token.mint, "proofs": token_proofs}],
        "unit": token.unit,
    }
    if token.memo:
        token_data["memo"] = token.memo
    json_str = json.dumps(token_data, separators=(",", ":"))
    return f"cashuA{_b64_encode(json_str.encode())}"


def _encode_v4(token: Token) -> str:
    """Serialize a token into CashuB (V4) format using CBOR."""
    proofs_by_keyset: dict[str, list[Proof]] = {}
    for proof in token.proofs:
        proofs_by_keyset.setdefault(proof["id"], []).append(proof)

    tokens = []
    for keyset_id, keyset_proofs in proofs_by_keyset.items():
        tokens.append(
            {
                "i": bytes.fromhex(keyset_id),  # keyset id as bytes
                "p": [
                    {
                        "a": proof["amount"],
                        "s": proof["secret"],
                        "c": bytes.fromhex(proof["C"]),
                    }
                    for proof in keyset_proofs
                ],
            }
        )

    token_data: dict[str, Any] = {"m": token.mint, "u": token.unit, "t": tokens}
    if token.memo:
        token_data["d"] = token.memo
    return f"cashuB{_b64_encode(cbor2.dumps(token_data))}"


def get_encoded_token(token: Token, version: Literal[3, 4] = 4) -> str:
    """Encode a token as ``cashuA`` (V3) or ``cashuB`` (V4)."""
    if version == 3:
        return _encode_v3(token)
    elif version == 4:
        return _encode_v4(token)
    raise ValueError(f"Unsupported token version: {version}")


def _decode_v3(encoded: str) -> Token:
    token_data = json.loads(_b64_decode(encoded).decode())
    entries = token_data["token"]
    if not entries:
        raise TokenError("Token contains no proofs")

    mint_url = entries[0]["mint"]
    if any(entry["mint"] != mint_url for entry in entries):
        raise TokenError("Multi-mint tokens are not supported")

    # Unit defaults to "sat" as per Cashu V3 common practice
    unit = cast(CurrencyUnit, token_data.get("unit", "sat"))
    proofs = [
        Proof(
            id=proof["id"],
            amount=proof["amount"],
            secret=proof["secret"],
            C=proof["C"],
            mint=mint_url,
            unit=unit,
        )
        for entry in entries
        for proof in entry["proofs"]
    ]
    return Token(mint=mint_url, proofs=proofs, unit=unit, memo=token_data.get("memo"))


def _decode_v4(encoded: str) -> Token:
    # 'm' = mint URL, 'u' = unit, 't' = tokens array, 'd' = memo
    token_data = cbor2.loads(_b64_decode(encoded))
    mint_url = token_data["m"]
    unit = cast(CurrencyUnit, token_data.get("u", "sat"))

    proofs = []
    for token_entry in token_data["t"]:
        keyset_id = token_entry["i"].hex()
        for proof in token_entry["p"]:
            proofs.append(
                Proof(
                    id=keyset_id,
                    amount=proof["a"],
                    secret=proof["s"],
                    C=proof["c"].hex(),
                    mint=mint_url,
                    unit=unit,
                )
            )
    return Token(mint=mint_url, proofs=proofs, unit=unit, memo=token_data.get("d"))


def get_decoded_token(encoded: str) -> Token:
    """Decode a ``cashuA``/``cashuB`` token string.

    Raises:
        TokenError: If the token is malformed or of an unknown version
    """
    encoded = encoded.strip()
    if not encoded.startswith("cashu"):
        raise TokenError("Invalid token format")

    try:
        if encoded.startswith("cashuA"):
            return _decode_v3(encoded[6:])
        elif encoded.startswith("cashuB"):
            return _decode_v4(encoded[6:])
    except TokenError:
        raise
    except (
        binascii.Error,
        cbor2.CBORDecodeError,
        json.JSONDecodeError,
        UnicodeDecodeError,
        KeyError,
        IndexError,
        TypeError,
        AttributeError,
    ) as e:
        raise TokenError(f"Malformed token: {e}") from e

    raise TokenError(f"Unknown token version: {encoded[:6]}")
