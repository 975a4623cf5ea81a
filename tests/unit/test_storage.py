"""Unit tests for the memory and sqlite repositories."""

import asyncio
import sqlite3

import pytest

from cashu_coco.storage import (
    MemoryRepositories,
    SqliteOptions,
    SqliteRepositories,
    build_counter_store,
    build_repositories,
)
from cashu_coco.types import Proof, StorageInitError

MINT = "https://fake.mint"
KEYSET = "009a1f293253e41e"


def make_proof(secret: str, amount: int = 1, mint: str = MINT) -> Proof:
    return Proof(
        id="009a1f293253e41e",
        amount=amount,
        secret=secret,
        C="02" + "00" * 32,
        mint=mint,
        unit="sat",
    )


@pytest.fixture(params=["memory", "sqlite"])
async def repositories(request, tmp_path):
    if request.param == "memory":
        repos = await build_repositories(None)
    else:
        repos = await build_repositories(SqliteOptions(path=str(tmp_path / "wallet.db")))
    yield repos
    await repos.aclose()


class TestRepositories:
    """Both backends behave the same."""

    async def test_mints(self, repositories):
        assert await repositories.get_mint(MINT) is None
        await repositories.upsert_mint({"url": MINT, "info": {"name": "Fake"}, "trusted": True})
        await repositories.upsert_mint({"url": MINT, "info": {"name": "Renamed"}, "trusted": True})

        mint = await repositories.get_mint(MINT)
        assert mint == {"url": MINT, "info": {"name": "Renamed"}, "trusted": True}
        assert len(await repositories.list_mints()) == 1

    async def test_keysets_keep_known_keys(self, repositories):
        keyset = {
            "id": "009a1f293253e41e",
            "mint_url": MINT,
            "unit": "sat",
            "active": True,
            "input_fee_ppk": 100,
            "keys": {"1": "02" + "11" * 32},
        }
        await repositories.upsert_keysets([keyset])
        await repositories.upsert_keysets([{**keyset, "active": False, "keys": {}}])

        (stored,) = await repositories.get_keysets(MINT)
        assert stored["active"] is False
        assert stored["input_fee_ppk"] == 100
        assert stored["keys"] == {"1": "02" + "11" * 32}

    async def test_counters(self, repositories):
        assert await repositories.get_counter("009a1f293253e41e") == 0
        await repositories.set_counter("009a1f293253e41e", 7)
        await repositories.set_counter("009a1f293253e41e", 9)
        assert await repositories.get_counter("009a1f293253e41e") == 9

    async def test_reserve_and_advance_counter(self, repositories):
        assert await repositories.reserve_counter(KEYSET, 3) == 0
        assert await repositories.reserve_counter(KEYSET, 2) == 3
        # Never moves back
        await repositories.advance_counter(KEYSET, 4)
        assert await repositories.get_counter(KEYSET) == 5
        await repositories.advance_counter(KEYSET, 9)
        assert await repositories.get_counter(KEYSET) == 9

    async def test_proof_states(self, repositories):
        await repositories.add_proofs([make_proof("a", 2), make_proof("b", 4)])
        await repositories.add_proofs([make_proof("c", 8, mint="https://other.mint")])
        # Known secrets are ignored
        await repositories.add_proofs([make_proof("a", 2)], "spent")

        ready = await repositories.get_proofs()
        assert sorted(p["secret"] for p in ready) == ["a", "b", "c"]
        assert [p["secret"] for p in await repositories.get_proofs(mint_url=MINT, state="ready")] in (
            ["a", "b"],
            ["b", "a"],
        )

        await repositories.set_proof_state(["a"], "inflight")
        await repositories.set_proof_state(["b"], "spent")
        assert [p["secret"] for p in await repositories.get_proofs(state="inflight")] == ["a"]
        assert [p["secret"] for p in await repositories.get_proofs(state="spent")] == ["b"]
        assert await repositories.has_proof("b")
        assert not await repositories.has_proof("zzz")

    async def test_quotes(self, repositories):
        quote = {"quote": "q1", "mint_url": MINT, "amount": 100, "state": "UNPAID"}
        await repositories.save_mint_quote(quote)
        await repositories.save_mint_quote({**quote, "state": "ISSUED"})
        assert (await repositories.get_mint_quote(MINT, "q1"))["state"] == "ISSUED"
        assert await repositories.get_melt_quote(MINT, "q1") is None

        await repositories.save_melt_quote({**quote, "fee_reserve": 2})
        assert (await repositories.get_melt_quote(MINT, "q1"))["fee_reserve"] == 2


class TestSqliteRepositories:
    def test_needs_path_or_connection(self):
        with pytest.raises(StorageInitError):
            SqliteRepositories(SqliteOptions())

    async def test_unopenable_path(self, tmp_path):
        with pytest.raises(StorageInitError):
            await build_repositories(SqliteOptions(path=str(tmp_path / "missing" / "x.db")))

    async def test_failed_schema_closes_owned_connection(self, tmp_path):
        path = tmp_path / "garbage.db"
        path.write_bytes(b"not a database" * 100)
        repos = SqliteRepositories(SqliteOptions(path=str(path)))

        with pytest.raises(StorageInitError, match="Could not initialise"):
            await repos.init()
        with pytest.raises(StorageInitError, match="before init"):
            repos.conn

    async def test_use_before_init(self, tmp_path):
        repos = SqliteRepositories(SqliteOptions(path=str(tmp_path / "x.db")))
        with pytest.raises(StorageInitError):
            await repos.get_mint(MINT)

    async def test_wallets_share_a_connection_without_sharing_state(self):
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        first = await build_repositories(SqliteOptions(database=conn), wallet_id="first")
        second = await build_repositories(SqliteOptions(database=conn), wallet_id="second")

        await first.add_proofs([make_proof("a")])
        await first.set_counter("009a1f293253e41e", 5)

        assert await second.get_proofs() == []
        assert await second.get_counter("009a1f293253e41e") == 0

        # Caller-owned connections stay open
        await first.aclose()
        conn.execute("SELECT 1")
        conn.close()

    async def test_state_survives_reopen(self, tmp_path):
        path = str(tmp_path / "wallet.db")
        repos = await build_repositories(SqliteOptions(path=path), wallet_id="w")
        await repos.add_proofs([make_proof("a", 16)])
        await repos.aclose()

        reopened = await build_repositories(SqliteOptions(path=path), wallet_id="w")
        assert [p["amount"] for p in await reopened.get_proofs()] == [16]
        await reopened.aclose()

    async def test_counters_follow_the_seed_scope(self, tmp_path):
        options = SqliteOptions(path=str(tmp_path / "wallet.db"))
        home = await build_repositories(options, wallet_id="home", counter_scope="seed")
        away = await build_repositories(options, wallet_id="away", counter_scope="seed")
        stranger = await build_repositories(options, wallet_id="stranger", counter_scope="other")

        await home.add_proofs([make_proof("a")])
        assert await home.reserve_counter(KEYSET, 4) == 0

        assert await away.reserve_counter(KEYSET, 1) == 4
        assert await away.get_proofs() == []
        assert await stranger.get_counter(KEYSET) == 0
        for repos in (home, away, stranger):
            await repos.aclose()

    async def test_concurrent_reservations_do_not_overlap(self, tmp_path):
        options = SqliteOptions(path=str(tmp_path / "wallet.db"))
        first = await build_repositories(options, wallet_id="first", counter_scope="seed")
        second = await build_repositories(options, wallet_id="second", counter_scope="seed")

        starts = await asyncio.gather(
            *(repos.reserve_counter(KEYSET, 2) for repos in (first, second) * 5)
        )

        assert sorted(starts) == list(range(0, 20, 2))
        await first.aclose()
        await second.aclose()


class TestMemoryRepositories:
    async def test_shared_counter_store(self):
        store = MemoryRepositories()
        first = MemoryRepositories(counters=store)
        second = MemoryRepositories(counters=store)

        assert await first.reserve_counter(KEYSET, 3) == 0
        assert await second.reserve_counter(KEYSET, 1) == 3
        await second.advance_counter(KEYSET, 10)
        assert await first.get_counter(KEYSET) == 10
        assert await store.get_counter(KEYSET) == 10

    async def test_counter_store_for_ephemeral_managers_persists(self, tmp_path):
        options = SqliteOptions(path=str(tmp_path / "wallet.db"))
        persistent = await build_repositories(options, wallet_id="home", counter_scope="seed")
        await persistent.reserve_counter(KEYSET, 6)

        store = await build_counter_store(options, scope="seed")
        ephemeral = await build_repositories(None, counters=store)
        assert await ephemeral.reserve_counter(KEYSET, 1) == 6
        assert await persistent.get_counter(KEYSET) == 7
        await store.aclose()
        await persistent.aclose()
