"""Denomination and fee helpers for Cashu keysets."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

from .types import KeysetRecord, Proof

DEFAULT_DENOMINATIONS = [2**i for i in range(21)]


def keyset_denominations(keyset: KeysetRecord) -> list[int]:
    """Extract denominations from keyset keys.

    Returns:
        Sorted list of denominations (ascending order)
    """
    denominations = []
    for amount_str in keyset["keys"]:
        try:
            denominations.append(int(amount_str))
        except (ValueError, TypeError):
            continue
    return sorted(denominations)


def split_amount(amount: int, available_denominations: Iterable[int] | None = None) -> list[int]:
    """Split an amount into output amounts, largest first.

    Uses a greedy algorithm over the keyset denominations, falling back to
    powers of two when none are known.

    Raises:
        ValueError: If the amount cannot be represented exactly
    """
    if amount < 0:
        raise ValueError(f"Cannot split negative amount {amount}")

    denominations = sorted(available_denominations or DEFAULT_DENOMINATIONS, reverse=True)
    outputs: list[int] = []
    remaining = amount
    for denom in denominations:
        while remaining >= denom:
            outputs.append(denom)
            remaining -= denom

    if remaining:
        raise ValueError(f"Amount {amount} cannot be represented with denominations {denominations}")
    return outputs


def calculate_input_fees(proofs: Iterable[Proof], fee_ppk_by_keyset: Mapping[str, int]) -> int:
    """Input fee for spending proofs (NUT-02).

    Fees are summed in parts per thousand across inputs and rounded up, which
    matches what the mint charges.
    """
    total_ppk = sum(fee_ppk_by_keyset.get(proof["id"], 0) for proof in proofs)
    return (total_ppk + 999) // 1000


def blank_outputs_needed(fee_reserve: int) -> int:
    """Number of blank outputs to attach to a melt for fee return (NUT-08)."""
    if fee_reserve <= 0:
        return 0
    return max(math.ceil(math.log2(fee_reserve)), 1)


def select_proofs(proofs: list[Proof], amount: int) -> list[Proof]:
    """Select proofs covering at least ``amount``.

    Prefers a single exact proof, then takes the largest proofs first.
    Returns an empty list when the proofs cannot cover the amount.
    """
    for proof in proofs:
        if proof["amount"] == amount:
            return [proof]

    selected: list[Proof] = []
    total = 0
    for proof in sorted(proofs, key=lambda p: p["amount"], reverse=True):
        if total >= amount:
            break
        selected.append(proof)
        total += proof["amount"]

    if total < amount:
        return []
    return selected


def select_proofs_with_fees(
    proofs: list[Proof], amount: int, fee_ppk_by_keyset: Mapping[str, int]
) -> tuple[list[Proof], int]:
    """Select proofs whose value after input fees still covers ``amount``.

    Returns:
        Tuple of (selected_proofs, input_fees); empty selection when the
        proofs cannot cover the amount
    """
    needed = amount
    while True:
        selected = select_proofs(proofs, needed)
        if not selected:
            return [], 0
        total = sum(p["amount"] for p in selected)
        fees = calculate_input_fees(selected, fee_ppk_by_keyset)
        if total - fees >= amount:
            return selected, fees
        needed = amount + fees
