"""Settings read from the environment or a ``.env`` file in the working directory."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

MINT_URL_ENV_VAR = "CASHU_MINT_URL"
SEED_ENV_VAR = "CASHU_SEED"
WS_URL_ENV_VAR = "CASHU_WS_URL"
DB_ENV_VAR = "CASHU_COCO_DB"
LOG_LEVEL_ENV_VAR = "CASHU_COCO_LOG_LEVEL"

DEFAULT_MINT_URL = "https://mint.minteer.cash"
DEFAULT_DB_PATH = "cashu.db"
DEFAULT_LOG_LEVEL = "WARNING"


def get_from_env(name: str) -> str | None:
    """Get a setting from the environment or the ``.env`` file.

    Priority order:
    1. Environment variable
    2. .env file in current working directory
    """
    value = os.getenv(name)
    if value:
        return value

    env_file = Path.cwd() / ".env"
    if not env_file.exists():
        return None

    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line.startswith(f"{name}="):
            # Remove quotes if present
            value = line.split("=", 1)[1].strip().strip("\"'")
            return value or None
    return None


@dataclass
class Settings:
    mint_url: str = DEFAULT_MINT_URL
    seed: str | None = None
    ws_url: str | None = None
    db_path: str = DEFAULT_DB_PATH
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            mint_url=get_from_env(MINT_URL_ENV_VAR) or DEFAULT_MINT_URL,
            seed=get_from_env(SEED_ENV_VAR),
            ws_url=get_from_env(WS_URL_ENV_VAR),
            db_path=get_from_env(DB_ENV_VAR) or DEFAULT_DB_PATH,
            log_level=(get_from_env(LOG_LEVEL_ENV_VAR) or DEFAULT_LOG_LEVEL).upper(),
        )

    def credentials(self) -> dict[str, str]:
        """Credential mapping in the shape the node expects."""
        return {
            "mintUrl": self.mint_url,
            "seed": self.seed or "",
            "wsUrl": self.ws_url or "",
        }


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
