from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from ... import __version__
from ...daemon.engine import AmbientEngine

logger = logging.getLogger("ambient.web")

STATIC_DIR = Path(__file__).resolve().parent / "static"

# Close code for a session the server dropped because it could not keep up.
SLOW_CONSUMER_CLOSE_CODE = 1013


def create_app(engine: AmbientEngine) -> FastAPI:
    app = FastAPI(title="ambient watcher", version=__version__)
    app.state.engine = engine

    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    @app.get("/", response_model=None)
    async def index() -> Any:
        page = STATIC_DIR / "index.html"
        if not page.exists():
            return JSONResponse({"ok": False, "error": {"code": "client_missing", "message": "static client not packaged"}}, status_code=404)
        return FileResponse(str(page), media_type="text/html")

    @app.get("/api/v1/ping")
    async def ping() -> Dict[str, Any]:
        return {"ok": True, "result": {"version": __version__}}

    @app.get("/api/v1/status")
    async def status() -> Dict[str, Any]:
        in_flight = engine.queue.in_flight
        return {
            "ok": True,
            "result": {
                "root": str(engine.root),
                "port": engine.bound_port,
                "sessions": await engine.registry.count(),
                "queue_depth": engine.queue.depth,
                "in_flight": in_flight.describe() if in_flight is not None else None,
                "completed": engine.queue.completed,
                "failed": engine.queue.failed,
                "deferred": engine.deferred,
            },
        }

    @app.websocket("/ws")
    async def events(websocket: WebSocket) -> None:
        await websocket.accept()
        session = await engine.connect()
        sid = session.session_id

        async def _pump_out() -> bool:
            # True when the registry closed the session (slow consumer).
            while True:
                payload = await session.outbox.get()
                if payload is None:
                    return True
                await websocket.send_text(payload)

        async def _pump_in() -> None:
            while True:
                raw = await websocket.receive_text()
                await engine.ask(sid, raw)

        out_task = asyncio.create_task(_pump_out())
        in_task = asyncio.create_task(_pump_in())
        try:
            done, pending = await asyncio.wait({out_task, in_task}, return_when=asyncio.FIRST_COMPLETED)
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for t in done:
                exc = t.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning(f"websocket {sid} ended: {exc!r}", extra={"session_id": sid})
            if out_task in done and out_task.exception() is None and out_task.result():
                await websocket.close(code=SLOW_CONSUMER_CLOSE_CODE)
        except WebSocketDisconnect:
            pass
        finally:
            await engine.disconnect(sid)

    return app
