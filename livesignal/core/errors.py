"""Error taxonomy for signaling and negotiation failures.

Every error here is terminal for the session it is raised in. Nothing inside
the core retries; roles surface them to callers as outcome values.
"""

from typing import Any, Dict, Optional


class SignalingError(Exception):
    """Base class for all negotiation failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class ChannelUnavailable(SignalingError):
    """The signaling transport could not be opened or was lost."""


class ProtocolViolation(SignalingError):
    """Malformed message, message unexpected for the current state, or bad pairing code."""


class NegotiationCollision(SignalingError):
    """An offer arrived while a negotiation round was already in flight."""


class RendezvousExhausted(SignalingError):
    """The rendezvous service has no matching peer for this request."""


class HostAlreadyRegistered(RendezvousExhausted):
    """A host registration already holds the rendezvous slot."""


class MediaUnavailable(SignalingError):
    """Capture device missing or permission denied."""
