from __future__ import annotations

from typing import TYPE_CHECKING

from .crypto import compute_y
from .denominations import (
    calculate_input_fees,
    keyset_denominations,
    select_proofs,
    select_proofs_with_fees,
    split_amount,
)
from .mint import normalize_mint_url
from .outputs import construct_proofs, deterministic_outputs, reserve_outputs
from .token import Token, get_decoded_token
from .types import CurrencyUnit, Proof, UnknownMintError, WalletError

if TYPE_CHECKING:
    from .manager import Manager

# NUT-09 restore scans counters in batches and stops after this many batches
# come back without a single signature.
RESTORE_BATCH_SIZE = 50
RESTORE_EMPTY_BATCHES = 2


# ──────────────────────────────────────────────────────────────────────────────
# Wallet operations
# ──────────────────────────────────────────────────────────────────────────────


class WalletService:
    """Balances, sending, receiving and restoring proofs."""

    def __init__(self, manager: Manager) -> None:
        self._manager = manager

    @property
    def _repositories(self):
        return self._manager.repositories

    # ─────────────────────────────── Balance ──────────────────────────────────

    async def get_balances(self) -> dict[str, int]:
        """Spendable balance per mint URL."""
        balances: dict[str, int] = {}
        for proof in await self._repositories.get_proofs(state="ready"):
            balances[proof["mint"]] = balances.get(proof["mint"], 0) + proof["amount"]
        return balances

    def raise_if_insufficient_balance(self, balance: int, amount: int) -> None:
        if balance < amount:
            raise WalletError(
                f"Insufficient balance. Need at least {amount} sat, but have {balance} sat"
            )

    # ─────────────────────────────── Send ─────────────────────────────────────

    async def send(self, mint_url: str, amount: int, *, unit: CurrencyUnit = "sat") -> Token:
        """Create a token worth exactly ``amount`` from proofs of one mint.

        When no combination of stored proofs matches the amount, the selected
        proofs are swapped at the mint into a send part and a keep part.
        Sent proofs are kept as ``inflight`` and no longer count towards the
        balance.

        Raises:
            WalletError: If the amount is not positive or the balance at the
                mint is insufficient
        """
        if amount <= 0:
            raise WalletError(f"Amount must be positive, got {amount}")

        mint_url = normalize_mint_url(mint_url)
        await self._manager.mint.ensure_mint(mint_url)

        proofs = [
            p for p in await self._repositories.get_proofs(mint_url=mint_url) if p["unit"] == unit
        ]
        balance = sum(p["amount"] for p in proofs)
        self.raise_if_insufficient_balance(balance, amount)

        selected = select_proofs(proofs, amount)
        if sum(p["amount"] for p in selected) == amount:
            send_proofs = selected
        else:
            send_proofs = await self._split_for_send(mint_url, proofs, amount, unit)

        await self._repositories.set_proof_state([p["secret"] for p in send_proofs], "inflight")
        self._manager.logger.info("Prepared token of %d %s from %s", amount, unit, mint_url)
        return Token(mint=mint_url, proofs=send_proofs, unit=unit)

    async def _split_for_send(
        self, mint_url: str, proofs: list[Proof], amount: int, unit: CurrencyUnit
    ) -> list[Proof]:
        fee_map = await self._manager.mint.fee_map(mint_url)
        selected, input_fees = select_proofs_with_fees(proofs, amount, fee_map)
        if not selected:
            raise WalletError(
                f"Insufficient balance at mint {mint_url}: need {amount} plus fees"
            )

        keyset = await self._manager.mint.active_keyset(mint_url, unit)
        denominations = keyset_denominations(keyset)
        keep_amount = sum(p["amount"] for p in selected) - input_fees - amount
        send_amounts = split_amount(amount, denominations)
        keep_amounts = split_amount(keep_amount, denominations)

        outputs = await reserve_outputs(
            self._repositories, self._manager.seed(), keyset, send_amounts + keep_amounts
        )
        client = self._manager.get_mint_client(mint_url)
        swap_resp = await client.swap(inputs=selected, outputs=outputs.messages)
        new_proofs = construct_proofs(
            swap_resp["signatures"], outputs, keyset["keys"], mint_url=mint_url, unit=unit
        )

        await self._repositories.set_proof_state([p["secret"] for p in selected], "spent")
        await self._repositories.add_proofs(new_proofs, "ready")
        return new_proofs[: len(send_amounts)]

    # ─────────────────────────────── Receive ──────────────────────────────────

    async def receive(self, token: str | Token) -> int:
        """Redeem a token from a trusted mint into fresh proofs.

        Returns:
            Amount added to the wallet after input fees

        Raises:
            UnknownMintError: If the token's mint was never added
            TokenError: If the token cannot be decoded
        """
        if isinstance(token, str):
            token = get_decoded_token(token)

        mint_url = normalize_mint_url(token.mint)
        if not await self._manager.mint.is_trusted(mint_url):
            raise UnknownMintError(f"Mint {mint_url} is not trusted; add it before receiving")

        fee_map = await self._manager.mint.fee_map(mint_url)
        input_fees = calculate_input_fees(token.proofs, fee_map)
        amount = token.amount - input_fees
        if amount <= 0:
            raise WalletError(
                f"Token amount {token.amount} does not cover input fees of {input_fees}"
            )

        keyset = await self._manager.mint.active_keyset(mint_url, token.unit)
        outputs = await reserve_outputs(
            self._repositories,
            self._manager.seed(),
            keyset,
            split_amount(amount, keyset_denominations(keyset)),
        )
        client = self._manager.get_mint_client(mint_url)
        swap_resp = await client.swap(inputs=token.proofs, outputs=outputs.messages)
        new_proofs = construct_proofs(
            swap_resp["signatures"], outputs, keyset["keys"], mint_url=mint_url, unit=token.unit
        )
        await self._repositories.add_proofs(new_proofs, "ready")

        self._manager.logger.info("Received %d %s from %s", amount, token.unit, mint_url)
        return amount

    # ─────────────────────────────── Restore ──────────────────────────────────

    async def restore(self, mint_url: str) -> int:
        """Recover proofs previously issued to this seed by a mint (NUT-09).

        Every keyset of the mint is scanned with deterministic outputs. Unspent
        proofs are stored and each keyset counter is moved past the last used
        index so new outputs never collide with restored ones.

        Returns:
            Total amount restored
        """
        mint_url = normalize_mint_url(mint_url)
        await self._manager.mint.ensure_mint(mint_url)
        client = self._manager.get_mint_client(mint_url)
        seed = self._manager.seed()

        restored_total = 0
        for keyset in await self._repositories.get_keysets(mint_url):
            if not _is_hex(keyset["id"]):
                continue
            keys = await self._manager.mint.keyset_keys(mint_url, keyset["id"])

            counter = 0
            empty_batches = 0
            last_used = -1
            found: list[Proof] = []
            while empty_batches < RESTORE_EMPTY_BATCHES:
                outputs = deterministic_outputs(
                    seed, keyset["id"], [1] * RESTORE_BATCH_SIZE, start=counter
                )
                resp = await client.restore(outputs=outputs.messages)
                signatures = resp.get("signatures") or resp.get("promises") or []
                returned = resp.get("outputs") or []
                if not signatures or not returned:
                    empty_batches += 1
                else:
                    empty_batches = 0
                    indexes = [outputs.index_of(out["B_"]) for out in returned]
                    found.extend(
                        construct_proofs(
                            signatures,
                            outputs,
                            keys,
                            mint_url=mint_url,
                            unit=keyset["unit"],
                            indexes=indexes,
                        )
                    )
                    last_used = max(last_used, *(outputs.counters[i] for i in indexes))
                counter += RESTORE_BATCH_SIZE

            if last_used >= 0:
                await self._repositories.advance_counter(keyset["id"], last_used + 1)

            unspent = await self._filter_unspent(mint_url, found)
            fresh = [p for p in unspent if not await self._repositories.has_proof(p["secret"])]
            await self._repositories.add_proofs(fresh, "ready")
            restored_total += sum(p["amount"] for p in fresh)

        self._manager.logger.info("Restored %d from %s", restored_total, mint_url)
        return restored_total

    async def _filter_unspent(self, mint_url: str, proofs: list[Proof]) -> list[Proof]:
        if not proofs:
            return []
        client = self._manager.get_mint_client(mint_url)
        ys = [compute_y(p["secret"]) for p in proofs]
        resp = await client.check_state(Ys=ys)
        state_by_y = {entry["Y"]: entry["state"] for entry in resp["states"]}
        return [p for p, y in zip(proofs, ys) if state_by_y.get(y) == "UNSPENT"]


def _is_hex(value: str) -> bool:
    try:
        int(value, 16)
    except ValueError:
        return False
    return True
