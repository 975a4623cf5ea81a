"""Storage backends for wallet managers."""

from .base import Repositories
from .memory import MemoryRepositories
from .sqlite import SqliteOptions, SqliteRepositories


async def build_repositories(
    options: SqliteOptions | None,
    *,
    wallet_id: str = "default",
    counter_scope: str | None = None,
    counters: Repositories | None = None,
) -> Repositories:
    """Build repositories for a manager.

    With sqlite options the schema is created before returning and keyset
    counters are kept under ``counter_scope``. Without them an ephemeral
    in-memory store is used, drawing counters from ``counters`` when given.
    """
    if options is not None:
        repositories: Repositories = SqliteRepositories(
            options, wallet_id=wallet_id, counter_scope=counter_scope
        )
        await repositories.init()
        return repositories
    return MemoryRepositories(counters=counters)


async def build_counter_store(options: SqliteOptions | None, *, scope: str) -> Repositories:
    """Keyset counters for ephemeral managers of one seed.

    With sqlite options the counters live in the same rows the persistent
    managers of that seed use, so they survive the process.
    """
    if options is not None:
        return await build_repositories(options, wallet_id=scope, counter_scope=scope)
    return MemoryRepositories()


__all__ = [
    "Repositories",
    "MemoryRepositories",
    "SqliteOptions",
    "SqliteRepositories",
    "build_counter_store",
    "build_repositories",
]
