"""Manager lifecycle cache.

One :class:`~cashu_coco.manager.Manager` (and one storage connection) per
mint/credential identity for the lifetime of the registry. Creating a manager
schedules a restore of its wallet state in the background; the task handle is
available through :meth:`ManagerRegistry.restore_task` for callers that need
to wait for it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import ClassVar

import httpx

from .manager import Manager
from .mint import normalize_mint_url
from .seed import SeedResolver, fingerprint
from .storage import Repositories, SqliteOptions, build_counter_store, build_repositories

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManagerKey:
    """Identity of a cached manager: a mint URL and a credential identifier."""

    SEPARATOR: ClassVar[str] = "|"

    mint_url: str
    identity: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "mint_url", normalize_mint_url(self.mint_url))

    def __str__(self) -> str:
        return f"{self.mint_url}{self.SEPARATOR}{self.identity}"

    @classmethod
    def for_seed(cls, mint_url: str, seed_secret: str) -> ManagerKey:
        return cls(mint_url, fingerprint(seed_secret))


@dataclass
class ManagerConfig:
    """How to build a manager on a cache miss; ignored on a hit.

    Without ``storage`` the manager keeps its wallet in memory. Its keyset
    counters still go to ``counter_storage`` when that is set, otherwise to
    an in-memory store shared by every entry of the same seed.
    """

    seed_secret: str
    storage: SqliteOptions | None = None
    counter_storage: SqliteOptions | None = None
    logger: logging.Logger | None = None
    client: httpx.AsyncClient | None = None


class ManagerRegistry:
    def __init__(self, *, restore_on_create: bool = True) -> None:
        self._restore_on_create = restore_on_create
        self._managers: dict[str, Manager] = {}
        self._keys: dict[str, ManagerKey] = {}
        self._pending: dict[str, asyncio.Future[Manager]] = {}
        self._restores: dict[str, asyncio.Task[int]] = {}
        # seed identity -> counters for entries without their own storage
        self._counter_stores: dict[str, Repositories] = {}

    def __contains__(self, key: object) -> bool:
        return str(key) in self._managers

    def __len__(self) -> int:
        return len(self._managers)

    def lookup(self, key: ManagerKey) -> Manager | None:
        return self._managers.get(str(key))

    def restore_task(self, key: ManagerKey) -> asyncio.Task[int] | None:
        """Background restore started when the manager for ``key`` was created."""
        return self._restores.get(str(key))

    async def get_or_create(self, key: ManagerKey, config: ManagerConfig) -> Manager:
        """Return the manager for ``key``, building it on first use.

        Overlapping calls for the same key share a single construction. If
        construction fails the error propagates to every waiter and nothing
        is cached, so a later call can retry.
        """
        cache_key = str(key)
        manager = self._managers.get(cache_key)
        if manager is not None:
            return manager

        pending = self._pending.get(cache_key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[Manager] = asyncio.get_running_loop().create_future()
        self._pending[cache_key] = future
        try:
            manager = await self._construct(key, config)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # mark retrieved; waiters (if any) still receive it
            future.exception()
            raise
        finally:
            del self._pending[cache_key]

        self._managers[cache_key] = manager
        self._keys[cache_key] = key
        future.set_result(manager)
        logger.debug("Created manager for %s", key.mint_url)

        if self._restore_on_create:
            self._start_restore(key, manager)
        return manager

    async def _construct(self, key: ManagerKey, config: ManagerConfig) -> Manager:
        counters = None
        if config.storage is None:
            counters = await self._counter_store(key.identity, config.counter_storage)
        repositories = await build_repositories(
            config.storage,
            wallet_id=str(key),
            counter_scope=key.identity,
            counters=counters,
        )
        return Manager(
            repositories,
            SeedResolver(config.seed_secret),
            config.logger,
            client=config.client,
        )

    async def _counter_store(self, identity: str, options: SqliteOptions | None) -> Repositories:
        store = self._counter_stores.get(identity)
        if store is not None:
            return store
        store = await build_counter_store(options, scope=identity)
        existing = self._counter_stores.setdefault(identity, store)
        if existing is not store:
            await store.aclose()
        return existing

    def _start_restore(self, key: ManagerKey, manager: Manager) -> None:
        task = asyncio.create_task(
            manager.wallet.restore(key.mint_url), name=f"restore:{key.mint_url}"
        )
        self._restores[str(key)] = task
        task.add_done_callback(partial(self._on_restore_done, key))

    @staticmethod
    def _on_restore_done(key: ManagerKey, task: asyncio.Task[int]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Restore for %s failed: %s", key.mint_url, exc)
        else:
            logger.debug("Restore for %s finished, %d restored", key.mint_url, task.result())

    async def evict(self, key: ManagerKey) -> None:
        """Drop a manager, cancelling its restore and closing its storage."""
        cache_key = str(key)
        manager = self._managers.pop(cache_key, None)
        self._keys.pop(cache_key, None)
        task = self._restores.pop(cache_key, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if manager is not None:
            await manager.aclose()

    async def aclose(self) -> None:
        """Shutdown hook: evict every manager."""
        for key in list(self._keys.values()):
            await self.evict(key)
        stores, self._counter_stores = list(self._counter_stores.values()), {}
        for store in stores:
            await store.aclose()
