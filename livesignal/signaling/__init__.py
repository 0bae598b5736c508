"""Signaling transports and the message schema.

- messages: wire schema, codecs
- channel: SignalingChannel contract
- websocket: persistent duplex channel
- rendezvous: rendezvous HTTP client and request/response channel
- multiplex: per-code view of a shared host channel
- memory: in-process channel pair
"""

__all__ = [
    "Answer",
    "Candidate",
    "Envelope",
    "IceCandidate",
    "MemoryChannel",
    "Offer",
    "RendezvousChannel",
    "RendezvousClient",
    "ScopedChannel",
    "SessionDescription",
    "SignalingChannel",
    "WebSocketChannel",
    "websocket_connector",
]

from livesignal.signaling.messages import Answer, Candidate, Envelope, IceCandidate, Offer, SessionDescription
from livesignal.signaling.channel import SignalingChannel
from livesignal.signaling.memory import MemoryChannel
from livesignal.signaling.multiplex import ScopedChannel
from livesignal.signaling.rendezvous import RendezvousChannel, RendezvousClient
from livesignal.signaling.websocket import WebSocketChannel, websocket_connector
