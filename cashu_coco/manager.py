"""Wallet manager: one seed, one storage, many mints.

The manager groups the operations the workflow node exposes:

- ``manager.mint``: add mints and read their info
- ``manager.wallet``: balances, send, receive and restore
- ``manager.quotes``: mint and melt quote lifecycle
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .denominations import (
    blank_outputs_needed,
    keyset_denominations,
    select_proofs_with_fees,
    split_amount,
)
from .mint import Mint, normalize_mint_url
from .outputs import construct_proofs, reserve_outputs
from .seed import SeedProvider
from .storage import Repositories
from .types import (
    KeysetRecord,
    MintRecord,
    QuoteRecord,
    WalletError,
)
from .wallet import WalletService, _is_hex


class Manager:
    """Entry point to wallet, mint and quote operations for one identity."""

    def __init__(
        self,
        repositories: Repositories,
        seed_provider: SeedProvider,
        logger: logging.Logger | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.repositories = repositories
        self.seed_provider = seed_provider
        self.logger = logger or logging.getLogger(__name__)
        self._client = client
        self._mints: dict[str, Mint] = {}

        self.mint = MintService(self)
        self.wallet = WalletService(self)
        self.quotes = QuoteService(self)

    def seed(self) -> bytes:
        """Resolve the seed; errors surface here, not at construction."""
        return self.seed_provider.resolve_current_seed()

    def get_mint_client(self, mint_url: str) -> Mint:
        """Get or create mint instance for URL."""
        mint_url = normalize_mint_url(mint_url)
        if mint_url not in self._mints:
            self._mints[mint_url] = Mint(mint_url, client=self._client)
        return self._mints[mint_url]

    async def aclose(self) -> None:
        for mint in self._mints.values():
            await mint.aclose()
        self._mints.clear()
        await self.repositories.aclose()


# ──────────────────────────────────────────────────────────────────────────────
# Mint management
# ──────────────────────────────────────────────────────────────────────────────


class MintService:
    def __init__(self, manager: Manager) -> None:
        self._manager = manager

    @property
    def _repositories(self) -> Repositories:
        return self._manager.repositories

    async def add_mint(self, mint_url: str) -> dict[str, Any]:
        """Fetch a mint's info and keysets and trust it for receiving."""
        mint_url = normalize_mint_url(mint_url)
        client = self._manager.get_mint_client(mint_url)
        info = await client.get_info()
        keysets = await self._sync_keysets(mint_url)

        record = MintRecord(url=mint_url, info=dict(info), trusted=True)
        await self._repositories.upsert_mint(record)
        self._manager.logger.info("Added mint %s with %d keysets", mint_url, len(keysets))
        return {
            "mint": dict(record),
            "keysets": [
                {
                    "id": ks["id"],
                    "unit": ks["unit"],
                    "active": ks["active"],
                    "input_fee_ppk": ks["input_fee_ppk"],
                }
                for ks in keysets
            ],
        }

    async def get_mint_info(self, mint_url: str) -> dict[str, Any]:
        """Live mint info; refreshes the stored copy for known mints."""
        mint_url = normalize_mint_url(mint_url)
        info = dict(await self._manager.get_mint_client(mint_url).get_info())
        existing = await self._repositories.get_mint(mint_url)
        if existing is not None:
            await self._repositories.upsert_mint(
                MintRecord(url=mint_url, info=info, trusted=existing["trusted"])
            )
        return info

    async def is_trusted(self, mint_url: str) -> bool:
        record = await self._repositories.get_mint(normalize_mint_url(mint_url))
        return bool(record and record["trusted"])

    async def ensure_mint(self, mint_url: str) -> None:
        """Add the mint unless it is already known."""
        if await self._repositories.get_mint(normalize_mint_url(mint_url)) is None:
            await self.add_mint(mint_url)

    async def _sync_keysets(self, mint_url: str) -> list[KeysetRecord]:
        client = self._manager.get_mint_client(mint_url)
        keysets_info = await client.get_keysets_info()
        keys_by_id = {ks["id"]: ks["keys"] for ks in await client.get_keys()}

        records = [
            KeysetRecord(
                id=info["id"],
                mint_url=mint_url,
                unit=info["unit"],
                active=info.get("active", True),
                input_fee_ppk=info.get("input_fee_ppk", 0),
                keys=keys_by_id.get(info["id"], {}),
            )
            for info in keysets_info
        ]
        await self._repositories.upsert_keysets(records)
        return await self._repositories.get_keysets(mint_url)

    async def active_keyset(self, mint_url: str, unit: str = "sat") -> KeysetRecord:
        """Active keyset of a unit, with keys loaded.

        Raises:
            WalletError: If the mint has no active keyset for the unit
        """
        keysets = await self._repositories.get_keysets(mint_url)
        if not keysets:
            keysets = await self._sync_keysets(mint_url)

        candidates = [ks for ks in keysets if ks["active"] and ks["unit"] == unit and _is_hex(ks["id"])]
        if not candidates:
            raise WalletError(f"No active keyset found for unit '{unit}' on mint {mint_url}")

        keyset = candidates[0]
        if not keyset["keys"]:
            keyset = KeysetRecord(**{**keyset, "keys": await self.keyset_keys(mint_url, keyset["id"])})
        return keyset

    async def keyset_keys(self, mint_url: str, keyset_id: str) -> dict[str, str]:
        """Keys of a keyset, fetched from the mint when not stored yet."""
        known = None
        for keyset in await self._repositories.get_keysets(mint_url):
            if keyset["id"] == keyset_id:
                if keyset["keys"]:
                    return keyset["keys"]
                known = keyset

        fetched = await self._manager.get_mint_client(mint_url).get_keyset(keyset_id)
        await self._repositories.upsert_keysets(
            [
                KeysetRecord(
                    id=keyset_id,
                    mint_url=mint_url,
                    unit=fetched["unit"],
                    active=known["active"] if known else True,
                    input_fee_ppk=known["input_fee_ppk"] if known else 0,
                    keys=fetched["keys"],
                )
            ]
        )
        return fetched["keys"]

    async def fee_map(self, mint_url: str) -> dict[str, int]:
        """Input fee (ppk) per keyset ID of a mint."""
        return {
            ks["id"]: ks["input_fee_ppk"]
            for ks in await self._repositories.get_keysets(normalize_mint_url(mint_url))
        }


# ──────────────────────────────────────────────────────────────────────────────
# Quotes
# ──────────────────────────────────────────────────────────────────────────────


class QuoteService:
    def __init__(self, manager: Manager) -> None:
        self._manager = manager

    @property
    def _repositories(self) -> Repositories:
        return self._manager.repositories

    async def create_mint_quote(self, mint_url: str, amount: int) -> dict[str, Any]:
        """Request a Lightning invoice that mints ``amount`` once paid."""
        if amount <= 0:
            raise WalletError(f"Amount must be positive, got {amount}")
        mint_url = normalize_mint_url(mint_url)
        await self._manager.mint.ensure_mint(mint_url)

        quote = await self._manager.get_mint_client(mint_url).create_mint_quote(amount=amount)
        await self._repositories.save_mint_quote(
            QuoteRecord(
                quote=quote["quote"],
                mint_url=mint_url,
                amount=quote.get("amount", amount),
                unit=quote.get("unit", "sat"),
                request=quote["request"],
                state=quote.get("state", "UNPAID"),
                expiry=quote.get("expiry") or 0,
            )
        )
        return dict(quote)

    async def redeem_mint_quote(self, mint_url: str, quote_id: str) -> int:
        """Mint proofs for a paid quote.

        Returns:
            Amount minted

        Raises:
            WalletError: If the quote is not paid or was already issued
        """
        mint_url = normalize_mint_url(mint_url)
        await self._manager.mint.ensure_mint(mint_url)
        client = self._manager.get_mint_client(mint_url)

        status = await client.get_mint_quote(quote_id)
        record = await self._repositories.get_mint_quote(mint_url, quote_id) or QuoteRecord(
            quote=quote_id, mint_url=mint_url
        )
        state = status.get("state")
        if state == "ISSUED":
            raise WalletError(f"Mint quote {quote_id} was already issued")
        if state != "PAID":
            raise WalletError(f"Mint quote {quote_id} is not paid (state: {state})")

        amount = status.get("amount") or record.get("amount")
        if not amount:
            raise WalletError(f"Amount not available for mint quote {quote_id}")
        unit = status.get("unit") or record.get("unit") or "sat"

        keyset = await self._manager.mint.active_keyset(mint_url, unit)
        outputs = await reserve_outputs(
            self._repositories,
            self._manager.seed(),
            keyset,
            split_amount(amount, keyset_denominations(keyset)),
        )
        mint_resp = await client.mint(quote=quote_id, outputs=outputs.messages)
        proofs = construct_proofs(
            mint_resp["signatures"], outputs, keyset["keys"], mint_url=mint_url, unit=unit
        )
        await self._repositories.add_proofs(proofs, "ready")

        record.update(amount=amount, unit=unit, state="ISSUED")
        await self._repositories.save_mint_quote(record)
        self._manager.logger.info("Minted %d %s at %s", amount, unit, mint_url)
        return amount

    async def create_melt_quote(self, mint_url: str, invoice: str) -> dict[str, Any]:
        """Ask the mint what paying a BOLT11 invoice costs."""
        mint_url = normalize_mint_url(mint_url)
        await self._manager.mint.ensure_mint(mint_url)

        quote = await self._manager.get_mint_client(mint_url).create_melt_quote(invoice)
        await self._repositories.save_melt_quote(
            QuoteRecord(
                quote=quote["quote"],
                mint_url=mint_url,
                amount=quote["amount"],
                unit=quote.get("unit", "sat"),
                request=invoice,
                state=quote.get("state", "UNPAID"),
                expiry=quote.get("expiry") or 0,
                fee_reserve=quote.get("fee_reserve", 0),
            )
        )
        return dict(quote)

    async def pay_melt_quote(self, mint_url: str, quote_id: str) -> dict[str, Any]:
        """Pay a melt quote with stored proofs.

        Blank outputs are attached so the mint can return unused fee reserve
        and any overpaid amount as change (NUT-08).

        Returns:
            Dict with ``paid``, ``state``, ``payment_preimage`` and the
            ``change`` amount stored back into the wallet

        Raises:
            WalletError: If the balance is insufficient or the payment failed
        """
        mint_url = normalize_mint_url(mint_url)
        await self._manager.mint.ensure_mint(mint_url)
        client = self._manager.get_mint_client(mint_url)

        record = await self._repositories.get_melt_quote(mint_url, quote_id)
        if record is None:
            status = await client.get_melt_quote(quote_id)
            record = QuoteRecord(
                quote=quote_id,
                mint_url=mint_url,
                amount=status["amount"],
                unit=status.get("unit", "sat"),
                state=status.get("state", "UNPAID"),
                fee_reserve=status.get("fee_reserve", 0),
            )
        if record.get("state") == "PAID":
            raise WalletError(f"Melt quote {quote_id} was already paid")

        unit = record.get("unit", "sat")
        amount = record["amount"]
        needed = amount + record.get("fee_reserve", 0)

        proofs = [
            p for p in await self._repositories.get_proofs(mint_url=mint_url) if p["unit"] == unit
        ]
        fee_map = await self._manager.mint.fee_map(mint_url)
        selected, input_fees = select_proofs_with_fees(proofs, needed, fee_map)
        if not selected:
            balance = sum(p["amount"] for p in proofs)
            raise WalletError(
                f"Insufficient balance at mint {mint_url}: need {needed} plus fees, have {balance}"
            )

        overpaid = sum(p["amount"] for p in selected) - input_fees - amount
        keyset = await self._manager.mint.active_keyset(mint_url, unit)
        blank_count = blank_outputs_needed(overpaid)
        outputs = None
        if blank_count:
            outputs = await reserve_outputs(
                self._repositories, self._manager.seed(), keyset, [1] * blank_count
            )

        secrets = [p["secret"] for p in selected]
        await self._repositories.set_proof_state(secrets, "inflight")
        try:
            melt_resp = await client.melt(
                quote=quote_id,
                inputs=selected,
                outputs=outputs.messages if outputs else None,
            )
        except Exception:
            await self._repositories.set_proof_state(secrets, "ready")
            raise

        state = melt_resp.get("state") or ("PAID" if melt_resp.get("paid") else "UNPAID")
        if state == "PENDING":
            # Inputs stay inflight until the mint settles the payment
            record.update(state="PENDING")
            await self._repositories.save_melt_quote(record)
            return {"paid": False, "state": state, "quote": quote_id, "change": 0}
        if state != "PAID":
            await self._repositories.set_proof_state(secrets, "ready")
            raise WalletError(f"Lightning payment failed. State: {state}")

        await self._repositories.set_proof_state(secrets, "spent")
        change_amount = 0
        change_sigs = melt_resp.get("change") or []
        if change_sigs and outputs is not None:
            change = construct_proofs(
                change_sigs, outputs, keyset["keys"], mint_url=mint_url, unit=unit
            )
            await self._repositories.add_proofs(change, "ready")
            change_amount = sum(p["amount"] for p in change)

        record.update(state="PAID")
        await self._repositories.save_melt_quote(record)
        self._manager.logger.info(
            "Paid melt quote %s at %s (change %d)", quote_id, mint_url, change_amount
        )
        return {
            "paid": True,
            "state": state,
            "quote": quote_id,
            "payment_preimage": melt_resp.get("payment_preimage"),
            "change": change_amount,
        }
