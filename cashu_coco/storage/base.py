"""Repository interface shared by the storage backends."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import KeysetRecord, MintRecord, Proof, ProofState, QuoteRecord


class Repositories(ABC):
    """Persistence for one wallet identity.

    A manager owns exactly one repositories instance for its lifetime.
    Keyset counters belong to the seed, not the wallet: every manager built
    from one seed must see the same counters or it will reuse secrets.
    """

    async def init(self) -> None:
        """Provision storage. Must be idempotent."""

    async def aclose(self) -> None:
        """Release any held connection."""

    # ───────────────────────── Mints & keysets ─────────────────────────────────

    @abstractmethod
    async def get_mint(self, url: str) -> MintRecord | None: ...

    @abstractmethod
    async def upsert_mint(self, mint: MintRecord) -> None: ...

    @abstractmethod
    async def list_mints(self) -> list[MintRecord]: ...

    @abstractmethod
    async def upsert_keysets(self, keysets: list[KeysetRecord]) -> None: ...

    @abstractmethod
    async def get_keysets(self, mint_url: str) -> list[KeysetRecord]: ...

    # ───────────────────────── Counters ─────────────────────────────────

    @abstractmethod
    async def get_counter(self, keyset_id: str) -> int: ...

    @abstractmethod
    async def set_counter(self, keyset_id: str, value: int) -> None: ...

    async def reserve_counter(self, keyset_id: str, count: int) -> int:
        """Advance the keyset counter by ``count`` and return where it was."""
        start = await self.get_counter(keyset_id)
        await self.set_counter(keyset_id, start + count)
        return start

    async def advance_counter(self, keyset_id: str, value: int) -> None:
        """Move the keyset counter up to ``value``. It never moves back."""
        if await self.get_counter(keyset_id) < value:
            await self.set_counter(keyset_id, value)

    # ───────────────────────── Proofs ─────────────────────────────────

    @abstractmethod
    async def add_proofs(self, proofs: list[Proof], state: ProofState = "ready") -> None:
        """Store proofs, ignoring secrets that are already known."""

    @abstractmethod
    async def get_proofs(
        self, *, mint_url: str | None = None, state: ProofState = "ready"
    ) -> list[Proof]: ...

    @abstractmethod
    async def set_proof_state(self, secrets: list[str], state: ProofState) -> None: ...

    @abstractmethod
    async def has_proof(self, secret: str) -> bool: ...

    # ───────────────────────── Quotes ─────────────────────────────────

    @abstractmethod
    async def save_mint_quote(self, quote: QuoteRecord) -> None: ...

    @abstractmethod
    async def get_mint_quote(self, mint_url: str, quote_id: str) -> QuoteRecord | None: ...

    @abstractmethod
    async def save_melt_quote(self, quote: QuoteRecord) -> None: ...

    @abstractmethod
    async def get_melt_quote(self, mint_url: str, quote_id: str) -> QuoteRecord | None: ...
