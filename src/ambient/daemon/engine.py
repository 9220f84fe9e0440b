"""The review pipeline: watcher -> rule matcher -> prompt builder -> dispatch queue.

The engine also owns the client-facing operations the web port calls
(connect, ask, disconnect), so every mutation of the session registry and the
dispatch queue goes through one object.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from ..contracts.v1 import AmbientEvent, Rule, analysis, project_root, system
from ..kernel.prompt import ContentUnavailable, FileReader, WorkingTreeReader, build_prompt
from ..kernel.rules import match_rules
from ..kernel.sessions import QueryRejected, Session, SessionRegistry
from ..kernel.settings import AmbientSettings, SettingsStore
from ..ports.model import ModelClient, OpenAICompatClient
from ..util.time import stamp
from .dispatch import DispatchQueue, QueryJob, QueueFull, ReviewJob
from .notifier import start_notifier, stop_notifier
from .watcher import ChangeWatcher, WatcherUnavailable

logger = logging.getLogger("ambient.engine")


def default_model_client(settings: AmbientSettings) -> OpenAICompatClient:
    return OpenAICompatClient(settings.ollama.base_url, settings.ollama.model, stream=settings.ollama.stream)


class AmbientEngine:
    def __init__(
        self,
        root: Path,
        *,
        settings: SettingsStore,
        model: Optional[ModelClient] = None,
        registry: Optional[SessionRegistry] = None,
        watcher: Optional[ChangeWatcher] = None,
        reader: Optional[FileReader] = None,
    ) -> None:
        self.root = root
        self.settings = settings
        snap = settings.snapshot()
        self.registry = registry or SessionRegistry()
        self.model = model or default_model_client(snap)
        self.queue = DispatchQueue(
            self.model,
            self.registry.publish,
            max_depth=snap.queue_max_depth,
            timeout=snap.ollama.timeout_secs,
        )
        self.watcher = watcher or ChangeWatcher(
            root,
            file_extensions=snap.file_extensions,
            exclude_patterns=snap.exclude_patterns,
        )
        self.reader: FileReader = reader or WorkingTreeReader(root, use_git=self.watcher.use_git)
        self.bound_port: Optional[int] = None
        self._reported_settings_error = ""
        # path -> names of the rules still to queue for it
        self._deferred: Dict[str, Tuple[str, ...]] = {}
        self._stop = asyncio.Event()

    # ------------------------------------------------------------------
    # notices
    # ------------------------------------------------------------------

    async def notice(self, text: str) -> int:
        return await self.registry.broadcast(system(stamp(text)))

    async def _broadcast(self, event: AmbientEvent) -> int:
        return await self.registry.broadcast(event)

    def announce_port(self, port: int, configured: int) -> str:
        self.bound_port = int(port)
        if port == configured:
            return f"Ambient Watcher listening on port {port}"
        return f"Ambient Watcher listening on port {port} (configured port {configured} is in use)"

    # ------------------------------------------------------------------
    # review pipeline
    # ------------------------------------------------------------------

    async def _settings_snapshot(self) -> AmbientSettings:
        snap = self.settings.snapshot()
        err = self.settings.last_error
        if err and err != self._reported_settings_error:
            await self.notice(f"Settings not reloaded, keeping the previous ones: {err}")
        self._reported_settings_error = err
        return snap

    async def tick(self) -> int:
        """Run one watch cycle; returns the number of review jobs queued.

        Reviews the queue cannot take are kept per file and offered again at
        the start of the next cycle, ahead of new changes.
        """
        snap = await self._settings_snapshot()
        if not snap.enabled:
            return 0
        self.watcher.configure(file_extensions=snap.file_extensions, exclude_patterns=snap.exclude_patterns)

        try:
            changes = await asyncio.to_thread(self.watcher.scan)
        except WatcherUnavailable as e:
            logger.warning(f"watch cycle skipped: {e}")
            await self.notice(f"Change detection unavailable, retrying next cycle: {e}")
            return 0

        for path in self.watcher.last_skipped:
            await self._broadcast(analysis(f"[skip] {path} matches an exclude pattern"))

        # A fresh change supersedes whatever was left over for that path.
        for change in changes:
            self._deferred.pop(change.path, None)
        retry = list(self._deferred.items())
        self._deferred = {}

        ruleset = snap.ruleset()
        queued = 0
        for path, names in retry:
            queued += await self._review_file(path, match_rules(path, ruleset), set(names))

        if changes:
            await self._broadcast(analysis(stamp(f"{len(changes)} changed file(s) found.")))
        for change in changes:
            rules = match_rules(change.path, ruleset)
            if not rules:
                continue
            if change.kind == "deleted":
                await self.notice(f"{change.path} was deleted; nothing to review")
                continue
            queued += await self._review_file(change.path, rules)

        if self._deferred:
            paths = ", ".join(self._deferred)
            logger.warning(f"queue full; deferred {len(self._deferred)} file(s)", extra={"path": paths})
            await self.notice(
                f"Dispatch queue is full ({self.queue.max_depth} jobs pending); "
                f"deferred to the next cycle: {paths}"
            )
        return queued

    async def _review_file(self, path: str, rules: List[Rule], wanted: Optional[Set[str]] = None) -> int:
        todo = [(i, rule) for i, rule in enumerate(rules, start=1) if wanted is None or rule.name in wanted]
        if not todo:
            return 0
        if self.queue.depth >= self.queue.max_depth:
            self._deferred[path] = tuple(rule.name for _, rule in todo)
            return 0
        try:
            content = await asyncio.to_thread(self.reader, path)
        except ContentUnavailable as e:
            await self.notice(f"Skipping {path}: {e.reason}")
            return 0

        await self._broadcast(analysis(f"--- Analyzing: {path} ---"))
        queued = 0
        for k, (i, rule) in enumerate(todo):
            prompt = build_prompt(rule, path, lambda _path: content)
            title = f"[{i}/{len(rules)}] {rule.name}"
            if rule.description:
                title += f": {rule.description}"
            footer = f"--- Analysis complete: {path} ---" if k == len(todo) - 1 else ""
            try:
                self.queue.submit(ReviewJob(path=path, rule=rule, prompt=prompt, title=title, footer=footer))
            except QueueFull:
                self._deferred[path] = tuple(r.name for _, r in todo[k:])
                break
            queued += 1
        return queued

    # ------------------------------------------------------------------
    # client operations
    # ------------------------------------------------------------------

    async def connect(self) -> Session:
        session = await self.registry.register()
        port = f" (port {self.bound_port})" if self.bound_port else ""
        await self.registry.send_to(session.session_id, system(f"Connected to Ambient Watcher{port}"))
        await self.registry.send_to(session.session_id, project_root(str(self.root)))
        return session

    async def disconnect(self, session_id: str) -> None:
        # Prune first so the worker cannot start a question nobody will receive.
        self.queue.prune_session(session_id)
        await self.registry.unregister(session_id)

    async def ask(self, session_id: str, text: str) -> Optional[QueryJob]:
        question = (text or "").strip()
        if not question:
            return None
        try:
            corr = await self.registry.begin_query(session_id)
        except QueryRejected as e:
            await self.registry.send_to(session_id, system(str(e)))
            return None

        job = QueryJob(question=question, correlation=corr)
        try:
            self.queue.submit(job)
        except QueueFull as e:
            await self.registry.abandon_query(corr)
            await self.registry.send_to(session_id, system(stamp(f"{e}; try again later")))
            return None

        await self.registry.forward_query(corr, question, echo=self.settings.snapshot().echo_queries)
        logger.info(f"question #{corr.seq} queued", extra={"session_id": session_id, "query_seq": corr.seq})
        return job

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run the dispatch worker and the watch timer until `stop()`."""
        worker = asyncio.create_task(self.queue.run())
        observer = start_notifier(self.watcher) if self.settings.snapshot().notify_events else None
        try:
            while not self._stop.is_set():
                try:
                    await self.tick()
                except Exception as e:
                    logger.exception("watch cycle failed")
                    await self.notice(f"Watch cycle failed: {e}")
                interval = self.settings.snapshot().check_interval_secs
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            stop_notifier(observer)
            self.queue.stop()
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)

    def stop(self) -> None:
        self._stop.set()

    @property
    def deferred(self) -> List[str]:
        return list(self._deferred)
