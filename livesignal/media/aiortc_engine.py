"""PeerEngine implementation on aiortc."""

from typing import Any, Callable, Optional, Sequence

import structlog
from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.exceptions import InvalidAccessError, InvalidStateError
from aiortc.sdp import candidate_from_sdp

from livesignal.negotiation.peer import LocalCandidateCallback
from livesignal.signaling.messages import IceCandidate, SessionDescription


_CANDIDATE_PREFIX = "candidate:"


class AiortcPeerEngine:
    """Media engine backed by one RTCPeerConnection.

    aiortc gathers all local candidates while installing the local description
    and embeds them in it, so the committed description already carries them
    and gathering completion is reported right after.
    """

    def __init__(
        self,
        ice_servers: Sequence[str] = (),
        receive_kinds: Sequence[str] = ("audio", "video"),
        on_track: Optional[Callable[[Any], None]] = None
    ) -> None:
        """Initialize aiortc peer engine.

        Args:
            ice_servers: STUN/TURN URLs
            receive_kinds: Kinds to receive when offering without local tracks
            on_track: Called with each remote track as it arrives
        """
        configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])
        self._pc = RTCPeerConnection(configuration=configuration)
        self._receive_kinds = tuple(receive_kinds)
        self._on_track = on_track
        self._local_candidate_callback: Optional[LocalCandidateCallback] = None
        self._remote_tracks: list[Any] = []
        self._logger = structlog.get_logger(__name__).bind(pc=id(self._pc))

        self._pc.add_listener("track", self._handle_track)
        self._pc.add_listener("connectionstatechange", self._handle_connection_state)

    @property
    def connection(self) -> RTCPeerConnection:
        return self._pc

    @property
    def remote_tracks(self) -> list[Any]:
        return list(self._remote_tracks)

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    async def create_offer(self) -> SessionDescription:
        if not self._pc.getTransceivers():
            for kind in self._receive_kinds:
                self._pc.addTransceiver(kind, direction="recvonly")

        offer = await self._pc.createOffer()
        return SessionDescription(offer.type, offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(answer.type, answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))

        committed = self._pc.localDescription
        self._logger.debug("Local description committed", type=committed.type, gathering=self._pc.iceGatheringState)

        if self._local_candidate_callback is not None:
            self._local_candidate_callback(None)

        return SessionDescription(committed.type, committed.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        try:
            await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))
        except (InvalidAccessError, InvalidStateError) as e:
            raise ValueError(f"Remote description rejected: {e}") from e

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        line = candidate.candidate
        if line.startswith(_CANDIDATE_PREFIX):
            line = line[len(_CANDIDATE_PREFIX):]

        parsed = candidate_from_sdp(line)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index

        await self._pc.addIceCandidate(parsed)

    async def add_track(self, track: Any) -> None:
        try:
            self._pc.addTrack(track)
        except InvalidAccessError as e:
            raise ValueError(f"Track rejected: {e}") from e
        self._logger.info("Local track added", kind=track.kind)

    def on_local_candidate(self, callback: LocalCandidateCallback) -> None:
        self._local_candidate_callback = callback

    async def close(self) -> None:
        await self._pc.close()
        self._logger.info("Peer connection closed")

    def _handle_track(self, track: Any) -> None:
        self._remote_tracks.append(track)
        self._logger.info("Remote track received", kind=track.kind)
        if self._on_track is not None:
            self._on_track(track)

    def _handle_connection_state(self) -> None:
        self._logger.info("Connection state changed", state=self._pc.connectionState)
