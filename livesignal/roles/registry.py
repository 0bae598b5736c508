"""Code-keyed arena of live negotiation sessions."""

import asyncio
from typing import Iterator, Optional

import structlog

from livesignal.core.errors import ProtocolViolation
from livesignal.negotiation.engine import NegotiationEngine
from livesignal.signaling.messages import SignalingMessage, describe


logger = structlog.get_logger(__name__)


class SessionRegistry:
    """Maps rendezvous codes to the engines that own them.

    Registration and removal are exclusive. Routing is a plain lookup and never
    delivers a message to an engine other than the one registered under its
    code.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, NegotiationEngine] = {}
        self._lock = asyncio.Lock()

    async def register(self, code: str, engine: NegotiationEngine) -> None:
        """Register an engine under a code.

        Raises:
            ProtocolViolation: If the code is already registered
        """
        async with self._lock:
            if code in self._sessions:
                raise ProtocolViolation("Code already registered", {"code": code})
            self._sessions[code] = engine

        logger.info("Session registered", code=code, session=engine.session.session_id, active=len(self._sessions))

    async def unregister(self, code: str) -> Optional[NegotiationEngine]:
        async with self._lock:
            engine = self._sessions.pop(code, None)

        if engine is not None:
            logger.info("Session unregistered", code=code, active=len(self._sessions))
        return engine

    async def route(self, code: str, message: SignalingMessage) -> None:
        """Deliver a message to the engine registered under code.

        Raises:
            ProtocolViolation: If no engine holds the code
        """
        engine = self._sessions.get(code)
        if engine is None:
            raise ProtocolViolation("No session for code", {"code": code, "message": describe(message)})
        await engine.deliver(message)

    def get(self, code: str) -> Optional[NegotiationEngine]:
        return self._sessions.get(code)

    def codes(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, code: object) -> bool:
        return code in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
