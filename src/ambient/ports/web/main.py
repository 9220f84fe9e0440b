from __future__ import annotations

import asyncio
import logging
import socket
from pathlib import Path
from typing import Optional, Tuple

import uvicorn

from ...daemon.engine import AmbientEngine
from ...kernel.settings import SettingsStore
from .app import create_app

logger = logging.getLogger("ambient.web")

DEFAULT_PORT_ATTEMPTS = 10


class PortBindExhausted(Exception):
    pass


def bind_with_fallback(host: str, port: int, attempts: int = DEFAULT_PORT_ATTEMPTS) -> Tuple[socket.socket, int]:
    """Bind the first free port in [port, port + attempts); returns the socket and the port."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    last_error: Optional[OSError] = None
    for candidate in range(int(port), int(port) + max(1, int(attempts))):
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, candidate))
        except OSError as e:
            sock.close()
            last_error = e
            logger.info(f"port {candidate} unavailable: {e}", extra={"port": candidate})
            continue
        bound = int(sock.getsockname()[1])
        return sock, bound
    raise PortBindExhausted(
        f"no free port in {port}..{int(port) + max(1, int(attempts)) - 1} on {host}: {last_error}"
    )


async def serve(engine: AmbientEngine, sock: socket.socket, *, log_level: str = "info") -> None:
    config = uvicorn.Config(create_app(engine), log_level=log_level.lower(), log_config=None)
    server = uvicorn.Server(config)
    engine_task = asyncio.create_task(engine.run())
    try:
        await server.serve(sockets=[sock])
    finally:
        engine.stop()
        await asyncio.gather(engine_task, return_exceptions=True)


def run_server(
    root: Path,
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    log_level: str = "info",
    global_path: Optional[Path] = None,
) -> int:
    store = SettingsStore(root, global_path=global_path)
    snap = store.snapshot()
    if store.last_error:
        logger.warning(f"settings: {store.last_error}")
    bind_host = host or snap.host
    configured = int(port if port is not None else snap.port)

    sock, bound = bind_with_fallback(bind_host, configured, snap.port_attempts)
    engine = AmbientEngine(root, settings=store)
    message = engine.announce_port(bound, configured)
    logger.info(message, extra={"port": bound})
    print(f"{message} -> http://{bind_host}:{bound}/")

    try:
        asyncio.run(serve(engine, sock, log_level=log_level))
    except KeyboardInterrupt:
        pass
    finally:
        sock.close()
    return 0
