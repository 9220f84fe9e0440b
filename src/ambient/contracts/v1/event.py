"""Server -> client wire events.

Every message is a single-key JSON envelope naming its variant:

    {"ProjectRoot": "/path"}  {"System": "..."}  {"Analysis": "..."}
    {"UserQuery": "..."}      {"QueryResponse": "..."}

UserQuery and QueryResponse may carry one extra key, `query`, describing the
question they belong to from the recipient's point of view
(`{"seq": 3, "own": true}`). Clients that only read the variant key ignore it.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator


EventKind = Literal["ProjectRoot", "System", "Analysis", "UserQuery", "QueryResponse"]

EVENT_KINDS: tuple[str, ...] = ("ProjectRoot", "System", "Analysis", "UserQuery", "QueryResponse")

_TAGGABLE = ("UserQuery", "QueryResponse")


class MalformedEvent(ValueError):
    """Raised when a payload is not one of the five envelopes."""


class QueryTag(BaseModel):
    seq: int
    own: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)


class AmbientEvent(BaseModel):
    kind: EventKind
    text: str
    query: Optional[QueryTag] = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _only_queries_are_tagged(self) -> "AmbientEvent":
        if self.query is not None and self.kind not in _TAGGABLE:
            raise ValueError(f"{self.kind} events cannot carry a query tag")
        return self

    def tagged(self, tag: Optional[QueryTag]) -> "AmbientEvent":
        return self.model_copy(update={"query": tag})

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {self.kind: self.text}
        if self.query is not None:
            out["query"] = self.query.model_dump()
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)


def project_root(path: str) -> AmbientEvent:
    return AmbientEvent(kind="ProjectRoot", text=str(path))


def system(text: str) -> AmbientEvent:
    return AmbientEvent(kind="System", text=str(text))


def analysis(text: str) -> AmbientEvent:
    return AmbientEvent(kind="Analysis", text=str(text))


def user_query(text: str) -> AmbientEvent:
    return AmbientEvent(kind="UserQuery", text=str(text))


def query_response(text: str) -> AmbientEvent:
    return AmbientEvent(kind="QueryResponse", text=str(text))


def decode_event(raw: Union[str, bytes, Dict[str, Any]]) -> AmbientEvent:
    obj: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            obj = json.loads(raw)
        except ValueError as e:
            raise MalformedEvent(f"not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise MalformedEvent("event must be a JSON object")

    kinds = [k for k in obj if k in EVENT_KINDS]
    extra = [k for k in obj if k not in EVENT_KINDS and k != "query"]
    if len(kinds) != 1 or extra:
        raise MalformedEvent(f"expected exactly one of {', '.join(EVENT_KINDS)}; got keys {sorted(obj)}")
    kind = kinds[0]
    text = obj[kind]
    if not isinstance(text, str):
        raise MalformedEvent(f"{kind} payload must be a string")
    try:
        return AmbientEvent(kind=kind, text=text, query=obj.get("query"))
    except ValidationError as e:
        raise MalformedEvent(str(e)) from e
