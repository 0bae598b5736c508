"""Media layer built on aiortc.

- source: MediaSource contract and ffmpeg-backed capture
- aiortc_engine: PeerEngine over RTCPeerConnection
"""

__all__ = [
    "AiortcPeerEngine",
    "MediaSource",
    "PlayerMediaSource",
    "StaticMediaSource",
]

from livesignal.media.source import MediaSource, PlayerMediaSource, StaticMediaSource
from livesignal.media.aiortc_engine import AiortcPeerEngine
