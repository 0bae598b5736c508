"""Signaling message schema and codecs.

Plain messages (one JSON object per message):

    {"type": "offer", "sdp": "..."}
    {"type": "answer", "sdp": "..."}
    {"candidate": "candidate:..." | null, "sdpMid": "0", "sdpMLineIndex": 0}

A message without ``type`` is a candidate; a null candidate is the
end-of-candidates marker.

Host-multiplexed envelopes carry the rendezvous code and exactly one payload:

    {"code": "C1", "offer": {...}}
    {"code": "C1", "answer": {...}}
    {"code": "C1", "ice": {...} | null}

An optional ``"v"`` field names the schema version. Decoding accepts it when it
matches ``SignalingConstants.SCHEMA_VERSION``; encoding omits it so the wire
stays compatible with browser peers.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from livesignal.core.constants import SignalingConstants
from livesignal.core.errors import ProtocolViolation


@dataclass(frozen=True)
class SessionDescription:
    """Opaque session description blob."""

    type: str  # "offer" or "answer"
    sdp: str


@dataclass(frozen=True)
class IceCandidate:
    """Connectivity candidate as exchanged on the wire."""

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None
    username_fragment: Optional[str] = None


@dataclass(frozen=True)
class Offer:
    sdp: str

    @property
    def description(self) -> SessionDescription:
        return SessionDescription(SignalingConstants.TYPE_OFFER, self.sdp)


@dataclass(frozen=True)
class Answer:
    sdp: str

    @property
    def description(self) -> SessionDescription:
        return SessionDescription(SignalingConstants.TYPE_ANSWER, self.sdp)


@dataclass(frozen=True)
class Candidate:
    """Trickled candidate; ``candidate=None`` marks end-of-candidates."""

    candidate: Optional[IceCandidate] = None

    @property
    def end_of_candidates(self) -> bool:
        return self.candidate is None


SignalingMessage = Union[Offer, Answer, Candidate]


@dataclass(frozen=True)
class Envelope:
    """A message addressed to one pairing on a shared host channel."""

    code: str
    message: SignalingMessage


def describe(message: SignalingMessage) -> str:
    """Short message kind for log fields."""
    if isinstance(message, Offer):
        return "offer"
    if isinstance(message, Answer):
        return "answer"
    return "end-of-candidates" if message.end_of_candidates else "candidate"


def from_description(description: SessionDescription) -> SignalingMessage:
    """Wrap a session description in the matching message type.

    Raises:
        ValueError: If the description type is neither offer nor answer
    """
    if description.type == SignalingConstants.TYPE_OFFER:
        return Offer(description.sdp)
    if description.type == SignalingConstants.TYPE_ANSWER:
        return Answer(description.sdp)
    raise ValueError(f"Unsupported description type: {description.type}")


def _load(raw: Union[str, bytes]) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolViolation("Message is not valid JSON", {"error": str(e)})


def _check_object(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ProtocolViolation("Message must be a JSON object", {"received": type(data).__name__})

    version = data.get("v", SignalingConstants.SCHEMA_VERSION)
    # bool is an int subclass; true must not pass as version 1
    if type(version) is not int or version != SignalingConstants.SCHEMA_VERSION:
        raise ProtocolViolation("Unsupported schema version", {"version": version})

    return data


def _candidate_from_dict(data: Dict[str, Any]) -> Optional[IceCandidate]:
    value = data["candidate"]

    # Browsers also signal end-of-candidates with an empty candidate line
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ProtocolViolation("Candidate must be a string or null", {"received": type(value).__name__})

    sdp_mid = data.get("sdpMid")
    if sdp_mid is not None and not isinstance(sdp_mid, str):
        raise ProtocolViolation("sdpMid must be a string or null")

    mline_index = data.get("sdpMLineIndex")
    if mline_index is not None and (isinstance(mline_index, bool) or not isinstance(mline_index, int)):
        raise ProtocolViolation("sdpMLineIndex must be an integer or null")

    ufrag = data.get("usernameFragment")
    if ufrag is not None and not isinstance(ufrag, str):
        raise ProtocolViolation("usernameFragment must be a string or null")

    return IceCandidate(
        candidate=value,
        sdp_mid=sdp_mid,
        sdp_mline_index=mline_index,
        username_fragment=ufrag
    )


def message_from_dict(data: Any) -> SignalingMessage:
    """Validate and convert a decoded JSON object into a message.

    Raises:
        ProtocolViolation: If the object does not match the schema
    """
    data = _check_object(data)

    if "type" in data:
        kind = data["type"]
        sdp = data.get("sdp")
        if kind not in (SignalingConstants.TYPE_OFFER, SignalingConstants.TYPE_ANSWER):
            raise ProtocolViolation("Unknown message type", {"type": kind})
        if not isinstance(sdp, str) or not sdp:
            raise ProtocolViolation("Description is missing its sdp", {"type": kind})
        return Offer(sdp) if kind == SignalingConstants.TYPE_OFFER else Answer(sdp)

    if "candidate" not in data:
        raise ProtocolViolation("Message has neither type nor candidate", {"keys": sorted(data)})

    return Candidate(_candidate_from_dict(data))


def message_to_dict(message: SignalingMessage) -> Dict[str, Any]:
    """Convert a message into its JSON object shape."""
    if isinstance(message, Offer):
        return {"type": SignalingConstants.TYPE_OFFER, "sdp": message.sdp}
    if isinstance(message, Answer):
        return {"type": SignalingConstants.TYPE_ANSWER, "sdp": message.sdp}
    if isinstance(message, Candidate):
        ice = message.candidate
        if ice is None:
            return {"candidate": None, "sdpMid": None, "sdpMLineIndex": None}
        data: Dict[str, Any] = {
            "candidate": ice.candidate,
            "sdpMid": ice.sdp_mid,
            "sdpMLineIndex": ice.sdp_mline_index,
        }
        if ice.username_fragment is not None:
            data["usernameFragment"] = ice.username_fragment
        return data
    raise TypeError(f"Not a signaling message: {type(message).__name__}")


def encode_message(message: SignalingMessage) -> str:
    return json.dumps(message_to_dict(message))


def decode_message(raw: Union[str, bytes]) -> SignalingMessage:
    return message_from_dict(_load(raw))


_ENVELOPE_KEYS = (
    SignalingConstants.ENVELOPE_OFFER,
    SignalingConstants.ENVELOPE_ANSWER,
    SignalingConstants.ENVELOPE_ICE,
)


def envelope_to_dict(envelope: Envelope) -> Dict[str, Any]:
    """Convert an envelope into its JSON object shape."""
    message = envelope.message
    if isinstance(message, Offer):
        return {"code": envelope.code, SignalingConstants.ENVELOPE_OFFER: message_to_dict(message)}
    if isinstance(message, Answer):
        return {"code": envelope.code, SignalingConstants.ENVELOPE_ANSWER: message_to_dict(message)}
    payload = None if message.end_of_candidates else message_to_dict(message)
    return {"code": envelope.code, SignalingConstants.ENVELOPE_ICE: payload}


def envelope_from_dict(data: Any) -> Envelope:
    """Validate and convert a decoded JSON object into an envelope.

    Raises:
        ProtocolViolation: If the object does not match the envelope schema
    """
    data = _check_object(data)

    code = data.get("code")
    if not isinstance(code, str) or not code:
        raise ProtocolViolation("Envelope is missing its code")

    present = [key for key in _ENVELOPE_KEYS if key in data]
    if len(present) != 1:
        raise ProtocolViolation("Envelope must carry exactly one payload", {"code": code, "keys": present})

    key = present[0]
    payload = data[key]

    if key == SignalingConstants.ENVELOPE_ICE:
        if payload is None:
            return Envelope(code, Candidate(None))
        message = message_from_dict(payload)
        if not isinstance(message, Candidate):
            raise ProtocolViolation("Envelope ice payload is not a candidate", {"code": code})
        return Envelope(code, message)

    message = message_from_dict(payload)
    expected = Offer if key == SignalingConstants.ENVELOPE_OFFER else Answer
    if not isinstance(message, expected):
        raise ProtocolViolation("Envelope payload does not match its key", {"code": code, "key": key})
    return Envelope(code, message)


def encode_envelope(envelope: Envelope) -> str:
    return json.dumps(envelope_to_dict(envelope))


def decode_envelope(raw: Union[str, bytes]) -> Envelope:
    return envelope_from_dict(_load(raw))


@dataclass(frozen=True)
class Codec:
    """Encoder/decoder pair bound to a channel."""

    name: str
    encode: Callable[[Any], str]
    decode: Callable[[Union[str, bytes]], Any]


MESSAGE_CODEC = Codec("message", encode_message, decode_message)
ENVELOPE_CODEC = Codec("envelope", encode_envelope, decode_envelope)
