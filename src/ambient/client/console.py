"""Terminal client: prints the event stream and sends stdin lines as questions."""
from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import Any, Callable, List, Optional

import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, InvalidHandshake

from ..contracts.v1 import AmbientEvent, MalformedEvent, decode_event
from ..kernel.markdown import looks_like_markdown
from .reconnect import Action, Connect, Notice, ReconnectMachine, ScheduleReconnect, State

logger = logging.getLogger("ambient.console")

DEFAULT_URL = "ws://127.0.0.1:38080/ws"


def render_event(event: AmbientEvent) -> str:
    tag = event.query
    text = event.text
    if event.kind in ("Analysis", "QueryResponse") and looks_like_markdown(text):
        text = "\n" + text.strip() + "\n"

    if event.kind == "ProjectRoot":
        return f"Watching {text}"
    if event.kind == "System":
        return f"[system] {text}"
    if event.kind == "UserQuery":
        if tag is not None and tag.own:
            return f"You: {text}"
        return f"Another client asked: {text}"
    if event.kind == "QueryResponse":
        if tag is None or tag.own:
            return f"Answer: {text}"
        return f"Answer to another client: {text}"
    return text


def render_notice(notice: Notice) -> str:
    return f"[{notice.level}] {notice.text}"


class ConsoleClient:
    def __init__(
        self,
        url: str = DEFAULT_URL,
        *,
        machine: Optional[ReconnectMachine] = None,
        connect: Optional[Callable[[str], Any]] = None,
        out: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.url = url
        self.machine = machine or ReconnectMachine()
        self._connect = connect or websockets.connect
        self._out = out or print
        # Lines typed while disconnected wait here and go out after reconnecting.
        self._outgoing: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    def submit(self, line: Optional[str]) -> None:
        """Queue a question; None means end of input."""
        self._outgoing.put_nowait(line)

    def _show(self, actions: List[Action]) -> None:
        for action in actions:
            if isinstance(action, Notice):
                self._out(render_notice(action))

    async def run(self) -> int:
        actions = self.machine.start()
        while True:
            self._show(actions)
            if any(isinstance(a, ScheduleReconnect) for a in actions):
                delay = next(a.delay_ms for a in actions if isinstance(a, ScheduleReconnect))
                await asyncio.sleep(delay / 1000)
                actions = self.machine.retry_due()
                continue
            if not any(isinstance(a, Connect) for a in actions):
                return 0 if self.machine.state is State.CLOSED else 1
            clean = await self._connect_once()
            actions = self.machine.closed(clean)

    async def _connect_once(self) -> bool:
        try:
            async with self._connect(self.url) as ws:
                self._show(self.machine.opened())
                return await self._session(ws)
        except ConnectionClosedOK:
            return True
        except (ConnectionClosedError, InvalidHandshake, OSError, asyncio.TimeoutError) as e:
            logger.info(f"connection to {self.url} failed: {e}")
            return False

    async def _session(self, ws: Any) -> bool:
        recv_task = asyncio.create_task(self._receive(ws))
        send_task = asyncio.create_task(self._send(ws))
        done, pending = await asyncio.wait({recv_task, send_task}, return_when=asyncio.FIRST_COMPLETED)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for t in done:
            exc = t.exception()
            if exc is not None:
                raise exc
        if send_task in done:
            # End of input: leave cleanly.
            await ws.close()
        return True

    async def _receive(self, ws: Any) -> None:
        async for raw in ws:
            try:
                event = decode_event(raw)
            except MalformedEvent as e:
                self._show(self.machine.message_error(str(e)))
                continue
            self._out(render_event(event))

    async def _send(self, ws: Any) -> None:
        while True:
            line = await self._outgoing.get()
            if line is None:
                return
            question = line.strip()
            if not question:
                continue
            await ws.send(question)
            self._out(f"You: {question}")


def _read_stdin(loop: asyncio.AbstractEventLoop, client: ConsoleClient) -> None:
    for line in sys.stdin:
        loop.call_soon_threadsafe(client.submit, line)
    loop.call_soon_threadsafe(client.submit, None)


async def _main(url: str, max_attempts: int, delay_ms: int) -> int:
    client = ConsoleClient(url, machine=ReconnectMachine(max_attempts=max_attempts, delay_ms=delay_ms))
    reader = threading.Thread(target=_read_stdin, args=(asyncio.get_running_loop(), client), daemon=True)
    reader.start()
    return await client.run()


def run_console(url: str = DEFAULT_URL, *, max_attempts: int = 5, delay_ms: int = 3000) -> int:
    try:
        return asyncio.run(_main(url, max_attempts, delay_ms))
    except KeyboardInterrupt:
        return 0
