"""Serialized dispatch of model requests.

A locally hosted model serves one request well and several badly, so every
review and every user question goes through one FIFO queue with exactly one
job in flight. Jobs from the watcher and from clients are merged in arrival
order; prioritization already happened when rules were matched.

Failures never stop the queue: a failed job becomes a System notice and the
worker moves straight on to the next job.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, List, Optional, Union

from ..contracts.v1 import DispatchResult, QueryCorrelation, Rule, analysis, query_response, system
from ..ports.model import ModelClient, ModelError
from ..util.time import stamp

logger = logging.getLogger("ambient.dispatch")

DEFAULT_MAX_DEPTH = 100
DEFAULT_TIMEOUT_SECONDS = 300.0


class QueueFull(Exception):
    pass


@dataclass
class ReviewJob:
    path: str
    rule: Rule
    prompt: str
    title: str
    seq: int = 0
    # Published after the result; set on the last review of a file.
    footer: str = ""

    @property
    def session_id(self) -> Optional[str]:
        return None

    @property
    def correlation(self) -> Optional[QueryCorrelation]:
        return None

    def describe(self) -> str:
        return f"review '{self.rule.name}' of {self.path}"


@dataclass
class QueryJob:
    question: str
    correlation: QueryCorrelation
    seq: int = 0

    @property
    def session_id(self) -> Optional[str]:
        return self.correlation.session_id

    @property
    def prompt(self) -> str:
        return self.question

    def describe(self) -> str:
        return f"question #{self.correlation.seq}"


DispatchJob = Union[ReviewJob, QueryJob]
Publisher = Callable[[DispatchResult], Awaitable[Any]]


class DispatchQueue:
    def __init__(
        self,
        model: ModelClient,
        publish: Publisher,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.model = model
        self._publish = publish
        self.max_depth = int(max_depth)
        self.timeout = float(timeout)
        self._pending: Deque[DispatchJob] = deque()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._seq = 0
        self._stopped = False
        self.in_flight: Optional[DispatchJob] = None
        self.completed = 0
        self.failed = 0

    @property
    def depth(self) -> int:
        return len(self._pending)

    def pending(self) -> List[DispatchJob]:
        return list(self._pending)

    def submit(self, job: DispatchJob) -> DispatchJob:
        """Enqueue `job` at the tail; raises QueueFull past `max_depth` pending jobs."""
        if len(self._pending) >= self.max_depth:
            raise QueueFull(f"dispatch queue is full ({self.max_depth} jobs pending); {job.describe()} rejected")
        self._seq += 1
        job.seq = self._seq
        self._pending.append(job)
        self._idle.clear()
        self._wakeup.set()
        logger.debug(f"queued #{job.seq}: {job.describe()}", extra={"job_seq": job.seq})
        return job

    def prune_session(self, session_id: str) -> int:
        """Drop not-yet-dispatched jobs of a session; the in-flight job is left alone."""
        before = len(self._pending)
        self._pending = deque(j for j in self._pending if j.session_id != session_id)
        pruned = before - len(self._pending)
        if pruned:
            logger.info(f"pruned {pruned} pending job(s) of {session_id}", extra={"session_id": session_id})
        self._update_idle()
        return pruned

    def _update_idle(self) -> None:
        if not self._pending and self.in_flight is None:
            self._idle.set()

    async def join(self) -> None:
        """Wait until nothing is pending or in flight."""
        await self._idle.wait()

    def stop(self) -> None:
        self._stopped = True
        self._wakeup.set()

    async def run(self) -> None:
        logger.info("dispatch worker started")
        while not self._stopped:
            if not self._pending:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            job = self._pending.popleft()
            self.in_flight = job
            try:
                await self._process(job)
            finally:
                self.in_flight = None
                self._update_idle()
        logger.info("dispatch worker stopped")

    async def _emit(self, result: DispatchResult) -> None:
        try:
            await self._publish(result)
        except Exception:
            logger.exception("publishing a dispatch result failed")

    async def _process(self, job: DispatchJob) -> None:
        corr = job.correlation
        log_extra = {"job_seq": job.seq, "session_id": job.session_id}
        if isinstance(job, ReviewJob):
            await self._emit(DispatchResult(event=analysis(job.title)))

        try:
            text = await asyncio.to_thread(self.model.complete, job.prompt, self.timeout)
        except ModelError as e:
            self.failed += 1
            logger.warning(f"#{job.seq} failed ({e.kind}): {e}", extra=log_extra)
            result = DispatchResult(event=system(stamp(f"{job.describe()} failed: {e}")), correlation=corr)
        except Exception as e:
            self.failed += 1
            logger.exception(f"#{job.seq} failed unexpectedly", extra=log_extra)
            result = DispatchResult(event=system(stamp(f"{job.describe()} failed: {e}")), correlation=corr)
        else:
            self.completed += 1
            if isinstance(job, QueryJob):
                result = DispatchResult(event=query_response(text), correlation=corr)
            else:
                result = DispatchResult(event=analysis(text))

        await self._emit(result)
        if isinstance(job, ReviewJob) and job.footer:
            await self._emit(DispatchResult(event=analysis(job.footer)))
