"""Offer/answer negotiation.

- session: Session data model and state set
- peer: PeerEngine contract for the media engine
- engine: NegotiationEngine state machine
"""

__all__ = [
    "NegotiationEngine",
    "NegotiationOutcome",
    "NegotiationState",
    "PeerEngine",
    "Role",
    "Session",
]

from livesignal.negotiation.session import NegotiationOutcome, NegotiationState, Role, Session
from livesignal.negotiation.peer import PeerEngine
from livesignal.negotiation.engine import NegotiationEngine
