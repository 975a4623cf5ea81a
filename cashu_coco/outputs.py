"""Deterministic blinded outputs and proof construction."""

from __future__ import annotations

from dataclasses import dataclass, field

from coincurve import PublicKey

from .crypto import (
    blind_message,
    derive_blinding_factor,
    derive_secret,
    get_mint_pubkey_for_amount,
    unblind_signature,
)
from .storage import Repositories
from .types import (
    BlindedMessage,
    BlindedSignature,
    CurrencyUnit,
    KeysetRecord,
    MintError,
    Proof,
)


@dataclass
class PreparedOutputs:
    """Blinded messages together with the secrets needed to unblind them."""

    keyset_id: str
    messages: list[BlindedMessage] = field(default_factory=list)
    secrets: list[str] = field(default_factory=list)
    blinding_factors: list[bytes] = field(default_factory=list)
    counters: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.messages)

    def index_of(self, B_: str) -> int:
        return next(i for i, message in enumerate(self.messages) if message["B_"] == B_)


def deterministic_outputs(
    seed: bytes, keyset_id: str, amounts: list[int], *, start: int
) -> PreparedOutputs:
    """Build NUT-13 outputs for consecutive counters starting at ``start``."""
    outputs = PreparedOutputs(keyset_id=keyset_id)
    for offset, amount in enumerate(amounts):
        counter = start + offset
        secret = derive_secret(seed, keyset_id, counter)
        B_, r = blind_message(secret, derive_blinding_factor(seed, keyset_id, counter))
        outputs.messages.append(
            BlindedMessage(amount=amount, B_=B_.format(compressed=True).hex(), id=keyset_id)
        )
        outputs.secrets.append(secret)
        outputs.blinding_factors.append(r)
        outputs.counters.append(counter)
    return outputs


async def reserve_outputs(
    repositories: Repositories, seed: bytes, keyset: KeysetRecord, amounts: list[int]
) -> PreparedOutputs:
    """Reserve counters for ``amounts`` and build their outputs.

    The counter is advanced before any request reaches the mint, so a failed
    request never causes secrets to be reused.
    """
    start = await repositories.reserve_counter(keyset["id"], len(amounts))
    return deterministic_outputs(seed, keyset["id"], amounts, start=start)


def construct_proofs(
    signatures: list[BlindedSignature],
    outputs: PreparedOutputs,
    keys: dict[str, str],
    *,
    mint_url: str,
    unit: CurrencyUnit,
    indexes: list[int] | None = None,
) -> list[Proof]:
    """Unblind mint signatures into proofs.

    Args:
        signatures: Signatures returned by the mint
        outputs: The outputs the signatures answer
        keys: Mint keys (amount -> pubkey) of the signing keyset
        indexes: Position in ``outputs`` of each signature; defaults to
            positional matching

    Raises:
        MintError: If the mint signed an amount the keyset has no key for
    """
    if indexes is None:
        indexes = list(range(len(signatures)))

    proofs: list[Proof] = []
    for sig, index in zip(signatures, indexes):
        amount = sig["amount"]
        mint_pubkey = get_mint_pubkey_for_amount(keys, amount)
        if mint_pubkey is None:
            raise MintError(f"Could not find mint public key for amount {amount}")

        C_ = PublicKey(bytes.fromhex(sig["C_"]))
        C = unblind_signature(C_, outputs.blinding_factors[index], mint_pubkey)
        proofs.append(
            Proof(
                id=sig["id"],
                amount=amount,
                secret=outputs.secrets[index],
                C=C.format(compressed=True).hex(),
                mint=mint_url,
                unit=unit,
            )
        )
    return proofs
