# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Idempotent .env loading for ``!env`` config values.

Two locations are read, in order:

1. ``~/.config/s3pump/.env`` (XDG config directory, next to
   ``s3pump.yaml``)
2. ``.env`` in the current working directory

Variables already present in the environment are never overwritten, so
the XDG file wins over the working-directory file and the real
environment wins over both.
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once(xdg_env: Path | None = None) -> None:
    """Load .env files once per process.

    Args:
        xdg_env: Override for the XDG ``.env`` path.  Defaults to
            :func:`s3pump.config.get_dotenv_path`.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    if xdg_env is None:
        from s3pump.config import get_dotenv_path

        xdg_env = get_dotenv_path()

    if xdg_env.exists():
        load_dotenv(xdg_env)
        logger.debug("Loaded .env from %s", xdg_env)

    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(cwd_env)
        logger.debug("Loaded .env from %s", cwd_env)

    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the dotenv loaded state. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False
