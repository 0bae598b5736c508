"""Lightweight SDP inspection for diagnostics.

Descriptions are opaque to negotiation; this only extracts enough structure
(media sections, bundled candidates) to make log lines useful.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class SDPMedia:
    """SDP media description (m= line)."""
    media_type: str  # "audio", "video" or "application"
    mid: Optional[str] = None
    direction: str = "sendrecv"
    candidates: int = 0


@dataclass
class SDPSummary:
    """Parsed outline of a session description."""
    origin_session_id: Optional[str] = None
    origin_version: Optional[str] = None
    media: list[SDPMedia] = field(default_factory=list)
    end_of_candidates: bool = False

    @property
    def candidate_count(self) -> int:
        return sum(m.candidates for m in self.media)

    def as_log_fields(self) -> dict:
        return {
            "media": [m.media_type for m in self.media],
            "candidates": self.candidate_count,
            "sdp_version": self.origin_version,
        }


_DIRECTIONS = {"sendrecv", "sendonly", "recvonly", "inactive"}


def summarize_sdp(sdp: str) -> SDPSummary:
    """Parse the outline of an SDP body.

    Args:
        sdp: SDP text content

    Returns:
        Summary of origin, media sections and candidate lines

    Example SDP:
        v=0
        o=- 4611731400430051336 2 IN IP4 127.0.0.1
        s=-
        t=0 0
        a=group:BUNDLE 0
        m=video 9 UDP/TLS/RTP/SAVPF 96
        a=mid:0
        a=recvonly
        a=candidate:1 1 udp 2130706431 192.168.1.10 50000 typ host
        a=end-of-candidates
    """
    summary = SDPSummary()
    current: Optional[SDPMedia] = None

    for line in sdp.strip().splitlines():
        line = line.strip()
        if len(line) < 2 or line[1] != "=":
            continue

        field_type = line[0]
        field_value = line[2:].strip()

        if field_type == "o":
            # o=<username> <sess-id> <sess-version> <nettype> <addrtype> <addr>
            parts = field_value.split()
            if len(parts) >= 3:
                summary.origin_session_id = parts[1]
                summary.origin_version = parts[2]

        elif field_type == "m":
            parts = field_value.split()
            if parts:
                current = SDPMedia(media_type=parts[0])
                summary.media.append(current)

        elif field_type == "a" and current is not None:
            if field_value.startswith("mid:"):
                current.mid = field_value[4:]
            elif field_value in _DIRECTIONS:
                current.direction = field_value
            elif field_value.startswith("candidate:"):
                current.candidates += 1
            elif field_value == "end-of-candidates":
                summary.end_of_candidates = True

    return summary
