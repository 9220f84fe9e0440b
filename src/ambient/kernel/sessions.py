"""Connected-client bookkeeping and fan-out.

The registry is the single owner of the session set. Membership changes
(register / unregister) and broadcast iteration all happen under one lock,
so a client connecting mid-broadcast either gets the whole message or none.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..contracts.v1 import AmbientEvent, DispatchResult, QueryCorrelation, QueryTag, user_query

logger = logging.getLogger("ambient.sessions")

DEFAULT_OUTBOX_SIZE = 256


class QueryRejected(Exception):
    pass


@dataclass
class Session:
    session_id: str
    outbox: "asyncio.Queue[Optional[str]]"
    query_counter: int = 0
    outstanding: Optional[int] = None  # seq of the unanswered question, if any
    closed: bool = False


@dataclass
class _Stats:
    delivered: int = 0
    dropped_unmatched: int = 0
    slow_consumers: int = 0


class SessionRegistry:
    def __init__(self, *, outbox_size: int = DEFAULT_OUTBOX_SIZE) -> None:
        self._lock = asyncio.Lock()
        self._sessions: Dict[str, Session] = {}
        self._next_id = 0
        self._outbox_size = int(outbox_size)
        self.stats = _Stats()

    async def register(self) -> Session:
        async with self._lock:
            self._next_id += 1
            session = Session(session_id=f"s{self._next_id}", outbox=asyncio.Queue(maxsize=self._outbox_size))
            self._sessions[session.session_id] = session
        logger.info(f"session connected: {session.session_id}", extra={"session_id": session.session_id})
        return session

    async def unregister(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None:
                self._close(session)
        if session is not None:
            logger.info(f"session disconnected: {session_id}", extra={"session_id": session_id})
        return session

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def session_ids(self) -> List[str]:
        async with self._lock:
            return list(self._sessions)

    async def begin_query(self, session_id: str) -> QueryCorrelation:
        """Allocate the next query number; one question per session at a time."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise QueryRejected(f"unknown session {session_id}")
            if session.outstanding is not None:
                raise QueryRejected("a question is already pending; wait for its answer")
            session.query_counter += 1
            session.outstanding = session.query_counter
            return QueryCorrelation(session_id=session_id, seq=session.query_counter)

    async def abandon_query(self, correlation: QueryCorrelation) -> None:
        """Release an outstanding query that never reached the model (e.g. queue full)."""
        async with self._lock:
            session = self._sessions.get(correlation.session_id)
            if session is not None and session.outstanding == correlation.seq:
                session.outstanding = None

    async def outstanding(self, session_id: str) -> Optional[int]:
        async with self._lock:
            session = self._sessions.get(session_id)
            return None if session is None else session.outstanding

    async def send_to(self, session_id: str, event: AmbientEvent) -> bool:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            return self._deliver(session, event.to_json())

    async def broadcast(self, event: AmbientEvent) -> int:
        async with self._lock:
            payload = event.to_json()
            return sum(1 for s in list(self._sessions.values()) if self._deliver(s, payload))

    async def forward_query(self, correlation: QueryCorrelation, text: str, *, echo: bool = False) -> int:
        """Show a question to the other sessions (and to its sender when `echo`)."""
        async with self._lock:
            delivered = 0
            for s in list(self._sessions.values()):
                own = s.session_id == correlation.session_id
                if own and not echo:
                    continue
                ev = user_query(text).tagged(QueryTag(seq=correlation.seq, own=own))
                if self._deliver(s, ev.to_json()):
                    delivered += 1
            return delivered

    async def publish(self, result: DispatchResult) -> int:
        if result.correlation is None:
            return await self.broadcast(result.event)
        return await self._publish_correlated(result.event, result.correlation)

    async def _publish_correlated(self, event: AmbientEvent, corr: QueryCorrelation) -> int:
        async with self._lock:
            origin = self._sessions.get(corr.session_id)
            if origin is None or origin.outstanding != corr.seq:
                self.stats.dropped_unmatched += 1
                logger.warning(
                    f"dropping {event.kind} for {corr.session_id}#{corr.seq}: no matching outstanding query",
                    extra={"session_id": corr.session_id, "query_seq": corr.seq},
                )
                return 0
            origin.outstanding = None
            delivered = 0
            for s in list(self._sessions.values()):
                ev = event
                if event.kind == "QueryResponse":
                    ev = event.tagged(QueryTag(seq=corr.seq, own=s.session_id == corr.session_id))
                if self._deliver(s, ev.to_json()):
                    delivered += 1
            return delivered

    def _deliver(self, session: Session, payload: str) -> bool:
        # Caller holds the lock.
        if session.closed:
            return False
        try:
            session.outbox.put_nowait(payload)
        except asyncio.QueueFull:
            # Slow consumer: drop it rather than stall every other client.
            self.stats.slow_consumers += 1
            logger.warning(f"closing slow consumer {session.session_id}", extra={"session_id": session.session_id})
            self._sessions.pop(session.session_id, None)
            self._close(session)
            return False
        self.stats.delivered += 1
        return True

    @staticmethod
    def _close(session: Session) -> None:
        if session.closed:
            return
        session.closed = True
        try:
            while True:
                session.outbox.get_nowait()
        except asyncio.QueueEmpty:
            pass
        session.outbox.put_nowait(None)
