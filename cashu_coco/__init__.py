"""Cashu Coco - Cashu e-cash wallet operations as a workflow node.

Managers are cached per mint and seed identity; the node dispatches
mint, wallet and quote operations to them.
"""

from .manager import Manager
from .node import CashuCocoNode, test_credentials
from .registry import ManagerConfig, ManagerKey, ManagerRegistry
from .seed import SeedResolver, resolve_seed

__all__ = [
    # Node
    "CashuCocoNode",
    "test_credentials",
    # Manager cache
    "Manager",
    "ManagerConfig",
    "ManagerKey",
    "ManagerRegistry",
    # Seed
    "SeedResolver",
    "resolve_seed",
]
