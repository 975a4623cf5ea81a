"""Ephemeral in-memory repositories."""

from __future__ import annotations

from ..types import KeysetRecord, MintRecord, Proof, ProofState, QuoteRecord
from .base import Repositories


class MemoryRepositories(Repositories):
    """Keeps all wallet state in dicts; lost when the process exits.

    Pass ``counters`` to keep keyset counters in a store shared by every
    manager of the same seed.
    """

    def __init__(self, *, counters: Repositories | None = None) -> None:
        # counter store shared with the other managers of this seed, not owned
        self._shared_counters = counters
        self._mints: dict[str, MintRecord] = {}
        self._keysets: dict[str, KeysetRecord] = {}
        self._counters: dict[str, int] = {}
        # secret -> (proof, state)
        self._proofs: dict[str, tuple[Proof, ProofState]] = {}
        self._mint_quotes: dict[tuple[str, str], QuoteRecord] = {}
        self._melt_quotes: dict[tuple[str, str], QuoteRecord] = {}

    async def get_mint(self, url: str) -> MintRecord | None:
        return self._mints.get(url)

    async def upsert_mint(self, mint: MintRecord) -> None:
        self._mints[mint["url"]] = mint

    async def list_mints(self) -> list[MintRecord]:
        return list(self._mints.values())

    async def upsert_keysets(self, keysets: list[KeysetRecord]) -> None:
        for keyset in keysets:
            existing = self._keysets.get(keyset["id"])
            if existing and not keyset["keys"]:
                keyset = KeysetRecord(**{**keyset, "keys": existing["keys"]})
            self._keysets[keyset["id"]] = keyset

    async def get_keysets(self, mint_url: str) -> list[KeysetRecord]:
        return [ks for ks in self._keysets.values() if ks["mint_url"] == mint_url]

    async def get_counter(self, keyset_id: str) -> int:
        if self._shared_counters is not None:
            return await self._shared_counters.get_counter(keyset_id)
        return self._counters.get(keyset_id, 0)

    async def set_counter(self, keyset_id: str, value: int) -> None:
        if self._shared_counters is not None:
            await self._shared_counters.set_counter(keyset_id, value)
        else:
            self._counters[keyset_id] = value

    async def reserve_counter(self, keyset_id: str, count: int) -> int:
        if self._shared_counters is not None:
            return await self._shared_counters.reserve_counter(keyset_id, count)
        return await super().reserve_counter(keyset_id, count)

    async def advance_counter(self, keyset_id: str, value: int) -> None:
        if self._shared_counters is not None:
            await self._shared_counters.advance_counter(keyset_id, value)
        else:
            await super().advance_counter(keyset_id, value)

    async def add_proofs(self, proofs: list[Proof], state: ProofState = "ready") -> None:
        for proof in proofs:
            if proof["secret"] not in self._proofs:
                self._proofs[proof["secret"]] = (proof, state)

    async def get_proofs(
        self, *, mint_url: str | None = None, state: ProofState = "ready"
    ) -> list[Proof]:
        return [
            proof
            for proof, proof_state in self._proofs.values()
            if proof_state == state and (mint_url is None or proof["mint"] == mint_url)
        ]

    async def set_proof_state(self, secrets: list[str], state: ProofState) -> None:
        for secret in secrets:
            if secret in self._proofs:
                self._proofs[secret] = (self._proofs[secret][0], state)

    async def has_proof(self, secret: str) -> bool:
        return secret in self._proofs

    async def save_mint_quote(self, quote: QuoteRecord) -> None:
        self._mint_quotes[(quote["mint_url"], quote["quote"])] = quote

    async def get_mint_quote(self, mint_url: str, quote_id: str) -> QuoteRecord | None:
        return self._mint_quotes.get((mint_url, quote_id))

    async def save_melt_quote(self, quote: QuoteRecord) -> None:
        self._melt_quotes[(quote["mint_url"], quote["quote"])] = quote

    async def get_melt_quote(self, mint_url: str, quote_id: str) -> QuoteRecord | None:
        return self._melt_quotes.get((mint_url, quote_id))
