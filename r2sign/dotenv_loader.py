# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Idempotent ``.env`` loading for credentials.

Storage credentials and the link secret are usually kept out of the
YAML config and supplied through the environment.  The loader reads
two files, in order:

1. ``~/.config/r2sign/.env`` (XDG config directory, next to
   ``r2sign.yaml``)
2. ``.env`` in the current working directory

Variables set by the first file are **not** overwritten by the second
(``python-dotenv`` respects existing env vars by default), and neither
overrides variables already present in the process environment.
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once(xdg_env: Path | None = None) -> None:
    """Load .env files once, if not already loaded.

    Args:
        xdg_env: Override for the XDG ``.env`` location.  Defaults to
            ``r2sign.config.get_dotenv_path()``.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    if xdg_env is None:
        from r2sign.config import get_dotenv_path

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
