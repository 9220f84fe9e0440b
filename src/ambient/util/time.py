from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def utc_iso_from_timestamp(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def local_now_rfc2822() -> str:
    """Human-facing notice timestamp (local time, RFC 2822)."""
    return format_datetime(datetime.now().astimezone())


def stamp(text: str) -> str:
    return f"[{local_now_rfc2822()}] {text}"
