"""Live session bookkeeping for the HTTP transports.

``SessionTable`` maps a session token to the running server and transport
of one client session. It is only touched from coroutines on a single
event loop, and every mutation (``add``/``discard``) completes without an
``await`` in between, so lookups never observe a half-updated table and no
lock is needed. Serving the same table from several threads would require
one.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

logger = logging.getLogger("grocy-mcp")

STREAMABLE = "streamable"
SSE = "sse"


def new_session_token() -> str:
    """Unguessable session token (random UUID, 122 bits of entropy)."""
    return str(uuid.uuid4())


@dataclass
class LiveSession:
    """One client session: its protocol server and the transport feeding it."""

    token: str
    kind: str
    server: Any
    transport: Any
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def idle_for(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self.last_seen


class SessionTable:
    """Token -> :class:`LiveSession` map for one transport kind."""

    def __init__(self, kind: str):
        self.kind = kind
        self._sessions: dict[str, LiveSession] = {}

    def add(self, session: LiveSession) -> None:
        if session.token in self._sessions:
            raise KeyError(f"Session token already registered: {session.token}")
        self._sessions[session.token] = session
        logger.info(f"[{self.kind}] Session opened: {session.token} ({len(self._sessions)} active)")

    def get(self, token: Optional[str]) -> Optional[LiveSession]:
        if not token:
            return None
        return self._sessions.get(token)

    def discard(self, token: str) -> Optional[LiveSession]:
        session = self._sessions.pop(token, None)
        if session is not None:
            logger.info(f"[{self.kind}] Session closed: {token} ({len(self._sessions)} active)")
        return session

    def tokens(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, token: object) -> bool:
        return token in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[LiveSession]:
        return iter(list(self._sessions.values()))

    def idle(self, timeout: float, now: Optional[float] = None) -> list[LiveSession]:
        """Sessions that have seen no request for longer than ``timeout`` seconds."""
        return [s for s in self if s.idle_for(now) > timeout]
