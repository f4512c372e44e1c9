from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict, Optional

Json = Dict[str, Any]

# Field names that must never reach a log line, whatever the caller passes.
_REDACTED_FIELDS = frozenset({"secret_key", "seed", "private_key", "authorization", "credential"})


def _now_ms() -> int:
    return int(time.time() * 1000)


def _scrub(fields: Json) -> Json:
    out: Json = {}
    for k, v in fields.items():
        if k.lower() in _REDACTED_FIELDS:
            out[k] = "<redacted>"
        elif isinstance(v, (bytes, bytearray)):
            out[k] = f"<{len(v)} bytes>"
        else:
            out[k] = v
    return out


def configure_structured_logging(level: Optional[str] = None) -> None:
    """Send JSONL order events to stderr; stdout stays free for the CLI summary.

    Level: explicit argument, else STORDER_LOG_LEVEL, else INFO. Calling again
    only adjusts the level.
    """
    level_name = (level or os.environ.get("STORDER_LOG_LEVEL") or "INFO").strip().upper()
    lvl = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if getattr(root, "_storder_configured", False):  # type: ignore[attr-defined]
        root.setLevel(lvl)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers = [handler]
    root.setLevel(lvl)
    setattr(root, "_storder_configured", True)  # type: ignore[attr-defined]


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Emit one order event as a single JSON line.

    Secret-bearing field names are redacted and raw bytes are reduced to
    their length, so a careless caller cannot leak key material.
    """
    safe = _scrub(fields)
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(safe)
    try:
        logger.info(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    except (TypeError, ValueError):
        parts = [f"event={event}"] + [f"{k}={safe[k]!r}" for k in sorted(safe)]
        logger.info(" ".join(parts))
