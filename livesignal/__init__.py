"""WebRTC signaling and offer/answer negotiation over asyncio.

A host registers with a rendezvous service and answers every client that
pairs with it; a client offers (rendezvous transport) or answers (direct
websocket transport). Negotiation is driven by one NegotiationEngine per
session.
"""

__version__ = "0.1.0"
