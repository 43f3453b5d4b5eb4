"""Structured JSON log records for downstream analytics."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

_LOGGER = logging.getLogger("klse.engine")


def log_json(event: str, payload: Dict[str, Any], logger: Optional[logging.Logger] = None) -> None:
    """Emit ``{"event": ..., **payload}`` as one sorted-key JSON line."""

    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    (logger or _LOGGER).info(message)
