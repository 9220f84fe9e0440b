from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, Optional, TextIO

from .time import utc_iso_from_timestamp

_CONFIGURED: Dict[str, bool] = {}

# Correlation fields picked up from `extra={...}`; integers stay integers.
CORRELATION_KEYS = ("session_id", "job_seq", "query_seq", "path", "rule", "port")


class JsonlFormatter(logging.Formatter):
    """One JSON object per line.

    Correlation fields can be attached with `logger.*(..., extra={"session_id": ...})`.
    """

    def __init__(self, *, component: str):
        super().__init__()
        self._component = str(component or "").strip() or "ambient"

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": utc_iso_from_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "component": self._component,
            "msg": record.getMessage(),
        }
        for key in CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                payload[key] = value
            elif value is not None and str(value).strip():
                payload[key] = str(value).strip()
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _parse_level(level: str, default: int = logging.INFO) -> int:
    s = str(level or "").strip().upper()
    if not s:
        return default
    value = getattr(logging, s, default)
    return value if isinstance(value, int) else default


def default_level() -> str:
    return str(os.environ.get("AMBIENT_LOG_LEVEL") or "INFO")


def setup_root_json_logging(
    *,
    component: str,
    level: str = "",
    stream: Optional[TextIO] = None,
    force: bool = False,
) -> None:
    """Install the JSONL handler on the root logger once per component.

    `level` falls back to $AMBIENT_LOG_LEVEL, then INFO. `force=True` drops
    any existing handlers first.
    """
    key = f"root:{component}"
    if _CONFIGURED.get(key) and not force:
        return
    _CONFIGURED[key] = True

    lvl = _parse_level(level or default_level())
    root = logging.getLogger()
    root.setLevel(lvl)
    if force:
        for h in list(root.handlers):
            root.removeHandler(h)

    for h in root.handlers:
        if isinstance(h.formatter, JsonlFormatter):
            h.setLevel(lvl)
            return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(lvl)
    handler.setFormatter(JsonlFormatter(component=component))
    root.addHandler(handler)
