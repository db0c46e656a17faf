"""Environment variable helpers.

Deployed processes get real environment variables; local development keeps them
in a `.env` file. Real variables always win over the file.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_env_file() -> bool:
    """Load `.env` into os.environ without overwriting existing variables.

    Returns:
        True when a .env file was found and read
    """
    loaded = load_dotenv(override=False)

    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")
    return loaded


def env_or_dotenv(name: str) -> Optional[str]:
    """Read `name` from the environment, falling back to `.env` once."""
    value = os.getenv(name)
    if not value:
        load_env_file()
        value = os.getenv(name)
    return value or None


def require_env(name: str) -> str:
    """Return a mandatory variable or raise RuntimeError.

    WHY: Fail fast at import time (engine creation, worker startup) instead of
    on the first query.
    """
    value = env_or_dotenv(name)
    if not value:
        raise RuntimeError(
            f"{name} is not set. "
            "Ensure .env is loaded or the env var is exported."
        )
    return value
