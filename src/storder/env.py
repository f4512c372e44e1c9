# src/storder/env.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_LOADED = False


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> bool:
    """Seed STORDER_* settings (algod token, wallet name, keystore path...) from a .env file.

    The CLI calls this before reading config, so a local .env can hold the
    node token without exporting it. Values already in the environment win.
    The file is STORDER_DOTENV_PATH when set, else ./.env; an explicit
    `dotenv_path` beats both. Only the first call per process reads anything.

    Returns True when a file was read.
    """
    global _LOADED
    if _LOADED:
        return False
    _LOADED = True

    source = dotenv_path or os.environ.get("STORDER_DOTENV_PATH") or ".env"
    env_file = Path(source).expanduser()
    if not env_file.is_file():
        return False
    load_dotenv(dotenv_path=env_file, override=False)
    return True
