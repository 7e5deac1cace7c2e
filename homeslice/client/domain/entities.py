"""Domain layer: Core entities of the gateway protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union


class ConnectionPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_CHALLENGE = "awaiting_challenge"
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSED = "closed"

    @property
    def in_progress(self) -> bool:
        return self in (
            ConnectionPhase.CONNECTING,
            ConnectionPhase.AWAITING_CHALLENGE,
            ConnectionPhase.HANDSHAKING,
        )


class CloseReason(str, Enum):
    ERROR = "error"
    REMOTE = "remote"


class RequestKind(str, Enum):
    CONNECT = "connect"
    CHAT_SEND = "chat-send"
    SUBSCRIBE = "subscribe"
    ALERT_INIT = "alert-init"
    ALERT_SEND = "alert-send"


@dataclass
class Challenge:
    """Server-issued nonce awaiting a signed connect request."""

    nonce: str
    issued_at_ms: int


@dataclass
class ChatResult:
    """One-shot outcome of a chat exchange: reply text or a failure."""

    text: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


ResultCallback = Callable[[ChatResult], None]


# Session keys


@dataclass(frozen=True)
class CompanionSessionKey:
    """Primary outbound chat channel, ``app:<companion>:main``."""

    companion: str

    def __str__(self) -> str:
        return f"app:{self.companion}:main"


@dataclass(frozen=True)
class AgentSessionKey:
    """Agent-level view of a companion channel, ``agent:main:app:<companion>:<suffix>``."""

    companion: str
    suffix: str

    def __str__(self) -> str:
        return f"agent:main:app:{self.companion}:{self.suffix}"


@dataclass(frozen=True)
class AlertSessionKey:
    """Externally subscribed feed, ``agent:main:<channel>:<id>``."""

    channel: str
    id: str

    def __str__(self) -> str:
        return f"agent:main:{self.channel}:{self.id}"


@dataclass(frozen=True)
class UnknownSessionKey:
    raw: str

    def __str__(self) -> str:
        return self.raw


SessionKey = Union[CompanionSessionKey, AgentSessionKey, AlertSessionKey, UnknownSessionKey]


def parse_session_key(raw: str) -> SessionKey:
    """Classify a raw session key string."""
    parts = raw.split(":")
    if len(parts) == 3 and parts[0] == "app" and parts[2] == "main" and parts[1]:
        return CompanionSessionKey(parts[1])
    if len(parts) >= 5 and parts[:3] == ["agent", "main", "app"] and parts[3]:
        return AgentSessionKey(parts[3], ":".join(parts[4:]))
    if len(parts) >= 4 and parts[:2] == ["agent", "main"] and parts[2] != "app":
        return AlertSessionKey(parts[2], ":".join(parts[3:]))
    return UnknownSessionKey(raw)


def companion_of(key: SessionKey) -> str | None:
    """Companion name for companion and agent-wrapped keys."""
    if isinstance(key, (CompanionSessionKey, AgentSessionKey)):
        return key.companion
    return None


@dataclass
class SessionExchange:
    """Streamed reply being assembled for one session.

    ``text_buffer`` holds the latest full snapshot, never a concatenation.
    ``run_id`` is the run the exchange is waiting on, when known, and
    ``completed_run_id`` the last run already delivered.
    """

    session_key: SessionKey
    text_buffer: str = ""
    completion: ResultCallback | None = None
    run_id: str | None = None
    completed_run_id: str | None = None

    def is_stale(self, run_id: str | None) -> bool:
        """True for events of a delivered run or of a run other than the awaited one."""
        if run_id is None:
            return False
        if run_id == self.completed_run_id:
            return True
        return self.run_id is not None and run_id != self.run_id

    def finish_run(self, run_id: str | None = None) -> None:
        finished = run_id or self.run_id
        if finished is not None:
            self.completed_run_id = finished
        self.run_id = None

    def replace_text(self, text: str) -> None:
        self.text_buffer = text

    def take_text(self) -> str:
        text, self.text_buffer = self.text_buffer, ""
        return text

    def take_completion(self) -> ResultCallback | None:
        completion, self.completion = self.completion, None
        return completion
