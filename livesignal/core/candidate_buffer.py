"""Per-session FIFO for inbound connectivity candidates."""

from collections import deque
from typing import Awaitable, Callable, FrozenSet, Optional

import structlog

from livesignal.signaling.messages import IceCandidate


ApplyCandidate = Callable[[IceCandidate], Awaitable[None]]


class CandidateBuffer:
    """Hold remote candidates until a remote description exists, then replay.

    Before ``flush()`` every arrival is queued in order. ``flush()`` drains the
    queue through the apply callback and switches to immediate mode. The
    end-of-candidates marker (``None``) travels through the queue like any other
    entry but is never applied; it ends the current round, and candidates that
    arrive for an ended round are dropped as stale.
    """

    def __init__(self, apply: ApplyCandidate, session_id: str = "") -> None:
        """Initialize candidate buffer.

        Args:
            apply: Coroutine that installs one candidate on the media engine
            session_id: Session identifier for log fields
        """
        self._apply = apply
        self._queue: deque[Optional[IceCandidate]] = deque()
        self._applied: set[IceCandidate] = set()
        self._flush_started = False
        self._flushed = False
        self._ended = False

        self._logger = structlog.get_logger(__name__).bind(session=session_id)

    @property
    def pending(self) -> int:
        """Number of entries waiting for the remote description."""
        return len(self._queue)

    @property
    def applied(self) -> FrozenSet[IceCandidate]:
        """Candidates installed on the media engine so far."""
        return frozenset(self._applied)

    @property
    def flushed(self) -> bool:
        """True once the buffer is in immediate-apply mode."""
        return self._flushed

    @property
    def ended(self) -> bool:
        """True once the end-of-candidates marker was seen for this round."""
        return self._ended

    def begin_round(self) -> None:
        """Reset the end-of-candidates mark for a renegotiation round."""
        self._ended = False

    async def enqueue(self, candidate: Optional[IceCandidate]) -> None:
        """Queue or apply one inbound candidate.

        Args:
            candidate: Remote candidate, or None for end-of-candidates
        """
        if not self._flushed:
            self._queue.append(candidate)
            self._logger.debug("Candidate queued until remote description", pending=len(self._queue))
            return

        await self._deliver(candidate)

    async def flush(self) -> int:
        """Apply every queued candidate in arrival order.

        Only the first call drains; later calls are no-ops.

        Returns:
            Number of candidates applied by this call
        """
        if self._flush_started:
            return 0
        self._flush_started = True

        applied = 0
        # Arrivals during the drain are appended and picked up by this loop
        while self._queue:
            if await self._deliver(self._queue.popleft()):
                applied += 1

        self._flushed = True
        self._logger.debug("Candidate buffer flushed", applied=applied)
        return applied

    async def _deliver(self, candidate: Optional[IceCandidate]) -> bool:
        if candidate is None:
            self._ended = True
            self._logger.debug("End of remote candidates")
            return False

        if self._ended:
            self._logger.warning("Dropping stale candidate after end-of-candidates", candidate=candidate.candidate)
            return False

        if candidate in self._applied:
            self._logger.debug("Candidate already applied", candidate=candidate.candidate)
            return False

        try:
            await self._apply(candidate)
        except Exception as e:
            self._logger.warning("Media engine rejected candidate", candidate=candidate.candidate, error=str(e))
            return False

        self._applied.add(candidate)
        return True
