"""Connection lifecycle of an event-stream client.

The machine is pure: every input returns the actions the caller must carry
out (open a socket, arm a timer, show a notice). Transport code stays in the
caller, so the same rules drive the terminal client and are mirrored by the
browser client.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple, Union

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RECONNECT_DELAY_MS = 3000


class State(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({State.CLOSED, State.FAILED})


@dataclass(frozen=True)
class Connect:
    pass


@dataclass(frozen=True)
class ScheduleReconnect:
    delay_ms: int


@dataclass(frozen=True)
class Notice:
    level: str  # info | warning | error
    text: str


Action = Union[Connect, ScheduleReconnect, Notice]

# (state, input) -> next state. An unclean close resolves to DISCONNECTED while
# retries remain and to FAILED once they are used up. Pairs not listed are
# ignored.
TRANSITIONS: Dict[Tuple[State, str], State] = {
    (State.DISCONNECTED, "start"): State.CONNECTING,
    (State.DISCONNECTED, "retry_due"): State.CONNECTING,
    (State.CONNECTING, "opened"): State.CONNECTED,
    (State.CONNECTING, "closed_clean"): State.CLOSED,
    (State.CONNECTING, "closed_unclean"): State.DISCONNECTED,
    (State.CONNECTED, "closed_clean"): State.CLOSED,
    (State.CONNECTED, "closed_unclean"): State.DISCONNECTED,
}


class ReconnectMachine:
    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delay_ms: int = DEFAULT_RECONNECT_DELAY_MS,
    ) -> None:
        self.max_attempts = int(max_attempts)
        self.delay_ms = int(delay_ms)
        self.state = State.DISCONNECTED
        self.retries = 0

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _move(self, symbol: str) -> bool:
        target = TRANSITIONS.get((self.state, symbol))
        if target is None:
            return False
        self.state = target
        return True

    def start(self) -> List[Action]:
        if not self._move("start"):
            return []
        return [Connect()]

    def retry_due(self) -> List[Action]:
        if not self._move("retry_due"):
            return []
        return [Connect()]

    def opened(self) -> List[Action]:
        if not self._move("opened"):
            return []
        self.retries = 0
        return [Notice("info", "Connected")]

    def closed(self, clean: bool) -> List[Action]:
        if clean:
            if not self._move("closed_clean"):
                return []
            return [Notice("info", "Connection closed")]

        if (self.state, "closed_unclean") not in TRANSITIONS:
            return []
        self.retries += 1
        if self.retries > self.max_attempts:
            self.state = State.FAILED
            return [Notice("error", f"Connection lost; gave up after {self.max_attempts} reconnect attempts")]
        self._move("closed_unclean")
        secs = self.delay_ms / 1000
        return [
            Notice("warning", f"Disconnected; reconnecting in {secs:g}s (attempt {self.retries}/{self.max_attempts})"),
            ScheduleReconnect(self.delay_ms),
        ]

    def message_error(self, detail: str) -> List[Action]:
        if self.terminal:
            return []
        return [Notice("warning", f"Ignored malformed message: {detail}")]
