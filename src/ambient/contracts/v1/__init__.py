from __future__ import annotations

from .dispatch import DispatchResult, QueryCorrelation
from .event import (
    EVENT_KINDS,
    AmbientEvent,
    EventKind,
    MalformedEvent,
    QueryTag,
    analysis,
    decode_event,
    project_root,
    query_response,
    system,
    user_query,
)
from .rule import CONTENT_TOKEN, FILE_PATH_TOKEN, Rule

__all__ = [
    "AmbientEvent",
    "CONTENT_TOKEN",
    "DispatchResult",
    "EVENT_KINDS",
    "EventKind",
    "FILE_PATH_TOKEN",
    "MalformedEvent",
    "QueryCorrelation",
    "QueryTag",
    "Rule",
    "analysis",
    "decode_event",
    "project_root",
    "query_response",
    "system",
    "user_query",
]
