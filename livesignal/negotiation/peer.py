"""Contract for the media engine that negotiation drives."""

from abc import abstractmethod
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from livesignal.signaling.messages import IceCandidate, SessionDescription


# Receives each locally discovered candidate, then None when gathering completes
LocalCandidateCallback = Callable[[Optional[IceCandidate]], None]


@runtime_checkable
class PeerEngine(Protocol):
    """Real-time transport engine that produces and consumes descriptions.

    Implementations wrap a concrete WebRTC stack. The negotiation engine never
    inspects descriptions or candidates; it only sequences these calls.
    """

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        """Produce a local offer for the current media composition."""
        ...

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        """Produce a local answer to the installed remote offer."""
        ...

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """Install a local description.

        Args:
            description: Description returned by create_offer/create_answer

        Returns:
            The committed description to transmit (engines may augment it,
            e.g. with gathered candidates)
        """
        ...

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        """Install the remote peer's description.

        Raises:
            ValueError: If the engine rejects the description
        """
        ...

    @abstractmethod
    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        """Apply one remote connectivity candidate.

        Raises:
            ValueError: If the engine rejects the candidate
        """
        ...

    @abstractmethod
    async def add_track(self, track: Any) -> None:
        """Attach a local media track to be sent to the peer."""
        ...

    @abstractmethod
    def on_local_candidate(self, callback: LocalCandidateCallback) -> None:
        """Register the callback for locally discovered candidates."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Tear down the transport."""
        ...
