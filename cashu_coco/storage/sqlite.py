"""SQLite repositories.

All wallet rows carry a ``wallet_id`` so several wallet identities can share
one database file without seeing each other's proofs. Keyset counters are
scoped by seed instead: managers of one seed at different mints draw from
the same counters.

The ``sqlite3`` calls run in a worker thread through ``asyncio.to_thread``;
each repository serialises its own calls with a lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import Any, Callable, TypeVar, cast

from ..types import (
    KeysetRecord,
    MintRecord,
    Proof,
    ProofState,
    QuoteRecord,
    StorageInitError,
)
from .base import Repositories

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS mints (
    wallet_id TEXT NOT NULL,
    url TEXT NOT NULL,
    info TEXT NOT NULL,
    trusted INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (wallet_id, url)
);
CREATE TABLE IF NOT EXISTS keysets (
    wallet_id TEXT NOT NULL,
    id TEXT NOT NULL,
    mint_url TEXT NOT NULL,
    unit TEXT NOT NULL,
    active INTEGER NOT NULL,
    input_fee_ppk INTEGER NOT NULL DEFAULT 0,
    keys TEXT NOT NULL,
    PRIMARY KEY (wallet_id, id)
);
CREATE TABLE IF NOT EXISTS keyset_counters (
    scope TEXT NOT NULL,
    keyset_id TEXT NOT NULL,
    counter INTEGER NOT NULL,
    PRIMARY KEY (scope, keyset_id)
);
CREATE TABLE IF NOT EXISTS proofs (
    wallet_id TEXT NOT NULL,
    secret TEXT NOT NULL,
    id TEXT NOT NULL,
    amount INTEGER NOT NULL,
    C TEXT NOT NULL,
    mint_url TEXT NOT NULL,
    unit TEXT NOT NULL,
    state TEXT NOT NULL,
    PRIMARY KEY (wallet_id, secret)
);
CREATE INDEX IF NOT EXISTS idx_proofs_mint_state ON proofs (wallet_id, mint_url, state);
CREATE TABLE IF NOT EXISTS mint_quotes (
    wallet_id TEXT NOT NULL,
    mint_url TEXT NOT NULL,
    quote TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (wallet_id, mint_url, quote)
);
CREATE TABLE IF NOT EXISTS melt_quotes (
    wallet_id TEXT NOT NULL,
    mint_url TEXT NOT NULL,
    quote TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (wallet_id, mint_url, quote)
);
"""


@dataclass
class SqliteOptions:
    """Where a manager keeps its state.

    Either an open ``sqlite3.Connection`` (owned by the caller, opened with
    ``check_same_thread=False``) or a file path the repositories open and
    close themselves.
    """

    path: str | None = None
    database: sqlite3.Connection | None = None


class SqliteRepositories(Repositories):
    def __init__(
        self,
        options: SqliteOptions,
        *,
        wallet_id: str = "default",
        counter_scope: str | None = None,
    ) -> None:
        if options.database is None and not options.path:
            raise StorageInitError("SqliteOptions needs a database connection or a path")
        self._options = options
        self._wallet_id = wallet_id
        self._counter_scope = counter_scope or wallet_id
        self._conn: sqlite3.Connection | None = options.database
        self._lock = threading.Lock()

    async def init(self) -> None:
        """Open the database and create the schema if missing."""

        def _init() -> None:
            owned = self._conn is None
            try:
                if self._conn is None:
                    self._conn = sqlite3.connect(
                        cast(str, self._options.path), check_same_thread=False
                    )
                self._conn.executescript(SCHEMA)
                self._conn.commit()
            except sqlite3.Error as e:
                if owned and self._conn is not None:
                    self._conn.close()
                    self._conn = None
                raise StorageInitError(f"Could not initialise sqlite storage: {e}") from e

        await self._run(_init)
        logger.debug("sqlite schema ready for wallet %s", self._wallet_id[:8])

    async def aclose(self) -> None:
        # Connections passed in by the caller stay open
        if self._conn is not None and self._options.database is None:
            conn, self._conn = self._conn, None
            await self._run(conn.close)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageInitError("SqliteRepositories used before init()")
        return self._conn

    async def _run(self, fn: Callable[[], T]) -> T:
        def _locked() -> T:
            with self._lock:
                return fn()

        return await asyncio.to_thread(_locked)

    def _query(self, sql: str, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        return self.conn.execute(sql, (self._wallet_id, *params)).fetchall()

    # ───────────────────────── Mints & keysets ─────────────────────────────────

    async def get_mint(self, url: str) -> MintRecord | None:
        def _select() -> MintRecord | None:
            rows = self._query(
                "SELECT url, info, trusted FROM mints WHERE wallet_id = ? AND url = ?", (url,)
            )
            if not rows:
                return None
            url_, info, trusted = rows[0]
            return MintRecord(url=url_, info=json.loads(info), trusted=bool(trusted))

        return await self._run(_select)

    async def upsert_mint(self, mint: MintRecord) -> None:
        def _upsert() -> None:
            with self.conn:
                self.conn.execute(
                    "INSERT OR REPLACE INTO mints (wallet_id, url, info, trusted) VALUES (?, ?, ?, ?)",
                    (self._wallet_id, mint["url"], json.dumps(mint["info"]), int(mint["trusted"])),
                )

        await self._run(_upsert)

    async def list_mints(self) -> list[MintRecord]:
        def _select() -> list[MintRecord]:
            rows = self._query("SELECT url, info, trusted FROM mints WHERE wallet_id = ?", ())
            return [
                MintRecord(url=url, info=json.loads(info), trusted=bool(trusted))
                for url, info, trusted in rows
            ]

        return await self._run(_select)

    async def upsert_keysets(self, keysets: list[KeysetRecord]) -> None:
        def _upsert() -> None:
            with self.conn:
                for keyset in keysets:
                    keys = keyset["keys"]
                    if not keys:
                        # keep previously fetched keys when only the keyset info changed
                        rows = self._query(
                            "SELECT keys FROM keysets WHERE wallet_id = ? AND id = ?", (keyset["id"],)
                        )
                        if rows:
                            keys = json.loads(rows[0][0])
                    self.conn.execute(
                        "INSERT OR REPLACE INTO keysets "
                        "(wallet_id, id, mint_url, unit, active, input_fee_ppk, keys) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (
                            self._wallet_id,
                            keyset["id"],
                            keyset["mint_url"],
                            keyset["unit"],
                            int(keyset["active"]),
                            keyset["input_fee_ppk"],
                            json.dumps(keys),
                        ),
                    )

        await self._run(_upsert)

    async def get_keysets(self, mint_url: str) -> list[KeysetRecord]:
        def _select() -> list[KeysetRecord]:
            rows = self._query(
                "SELECT id, mint_url, unit, active, input_fee_ppk, keys FROM keysets "
                "WHERE wallet_id = ? AND mint_url = ?",
                (mint_url,),
            )
            return [
                KeysetRecord(
                    id=id_,
                    mint_url=url,
                    unit=unit,
                    active=bool(active),
                    input_fee_ppk=fee,
                    keys=json.loads(keys),
                )
                for id_, url, unit, active, fee, keys in rows
            ]

        return await self._run(_select)

    # ───────────────────────── Counters ─────────────────────────────────

    def _read_counter(self, keyset_id: str) -> int:
        row = self.conn.execute(
            "SELECT counter FROM keyset_counters WHERE scope = ? AND keyset_id = ?",
            (self._counter_scope, keyset_id),
        ).fetchone()
        return row[0] if row else 0

    async def get_counter(self, keyset_id: str) -> int:
        return await self._run(lambda: self._read_counter(keyset_id))

    async def set_counter(self, keyset_id: str, value: int) -> None:
        def _upsert() -> None:
            with self.conn:
                self.conn.execute(
                    "INSERT OR REPLACE INTO keyset_counters (scope, keyset_id, counter) VALUES (?, ?, ?)",
                    (self._counter_scope, keyset_id, value),
                )

        await self._run(_upsert)

    async def reserve_counter(self, keyset_id: str, count: int) -> int:
        # The increment takes the write lock, so other connections to the
        # same file cannot hand out the same range.
        def _reserve() -> int:
            with self.conn:
                self.conn.execute(
                    "INSERT INTO keyset_counters (scope, keyset_id, counter) VALUES (?, ?, ?) "
                    "ON CONFLICT (scope, keyset_id) DO UPDATE SET counter = counter + excluded.counter",
                    (self._counter_scope, keyset_id, count),
                )
                return self._read_counter(keyset_id) - count

        return await self._run(_reserve)

    async def advance_counter(self, keyset_id: str, value: int) -> None:
        def _advance() -> None:
            with self.conn:
                self.conn.execute(
                    "INSERT INTO keyset_counters (scope, keyset_id, counter) VALUES (?, ?, ?) "
                    "ON CONFLICT (scope, keyset_id) DO UPDATE SET counter = MAX(counter, excluded.counter)",
                    (self._counter_scope, keyset_id, value),
                )

        await self._run(_advance)

    # ───────────────────────── Proofs ─────────────────────────────────

    async def add_proofs(self, proofs: list[Proof], state: ProofState = "ready") -> None:
        def _insert() -> None:
            with self.conn:
                self.conn.executemany(
                    "INSERT OR IGNORE INTO proofs (wallet_id, secret, id, amount, C, mint_url, unit, state) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (self._wallet_id, p["secret"], p["id"], p["amount"], p["C"], p["mint"], p["unit"], state)
                        for p in proofs
                    ],
                )

        await self._run(_insert)

    async def get_proofs(
        self, *, mint_url: str | None = None, state: ProofState = "ready"
    ) -> list[Proof]:
        sql = "SELECT id, amount, secret, C, mint_url, unit FROM proofs WHERE wallet_id = ? AND state = ?"
        params: tuple[Any, ...] = (state,)
        if mint_url is not None:
            sql += " AND mint_url = ?"
            params += (mint_url,)

        def _select() -> list[Proof]:
            return [
                Proof(id=id_, amount=amount, secret=secret, C=C, mint=mint, unit=unit)
                for id_, amount, secret, C, mint, unit in self._query(sql, params)
            ]

        return await self._run(_select)

    async def set_proof_state(self, secrets: list[str], state: ProofState) -> None:
        def _update() -> None:
            with self.conn:
                self.conn.executemany(
                    "UPDATE proofs SET state = ? WHERE wallet_id = ? AND secret = ?",
                    [(state, self._wallet_id, secret) for secret in secrets],
                )

        await self._run(_update)

    async def has_proof(self, secret: str) -> bool:
        return await self._run(
            lambda: bool(
                self._query("SELECT 1 FROM proofs WHERE wallet_id = ? AND secret = ?", (secret,))
            )
        )

    # ───────────────────────── Quotes ─────────────────────────────────

    def _save_quote(self, table: str, quote: QuoteRecord) -> None:
        with self.conn:
            self.conn.execute(
                f"INSERT OR REPLACE INTO {table} (wallet_id, mint_url, quote, data) VALUES (?, ?, ?, ?)",
                (self._wallet_id, quote["mint_url"], quote["quote"], json.dumps(quote)),
            )

    def _load_quote(self, table: str, mint_url: str, quote_id: str) -> QuoteRecord | None:
        rows = self._query(
            f"SELECT data FROM {table} WHERE wallet_id = ? AND mint_url = ? AND quote = ?",
            (mint_url, quote_id),
        )
        return cast(QuoteRecord, json.loads(rows[0][0])) if rows else None

    async def save_mint_quote(self, quote: QuoteRecord) -> None:
        await self._run(lambda: self._save_quote("mint_quotes", quote))

    async def get_mint_quote(self, mint_url: str, quote_id: str) -> QuoteRecord | None:
        return await self._run(lambda: self._load_quote("mint_quotes", mint_url, quote_id))

    async def save_melt_quote(self, quote: QuoteRecord) -> None:
        await self._run(lambda: self._save_quote("melt_quotes", quote))

    async def get_melt_quote(self, mint_url: str, quote_id: str) -> QuoteRecord | None:
        return await self._run(lambda: self._load_quote("melt_quotes", mint_url, quote_id))
