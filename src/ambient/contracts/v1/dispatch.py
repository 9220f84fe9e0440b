from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from .event import AmbientEvent


class QueryCorrelation(BaseModel):
    """Binds a user question to its eventual answer."""

    session_id: str
    seq: int

    model_config = ConfigDict(extra="forbid", frozen=True)


class DispatchResult(BaseModel):
    event: AmbientEvent
    correlation: Optional[QueryCorrelation] = None

    model_config = ConfigDict(extra="forbid", frozen=True)
