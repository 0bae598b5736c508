"""Client orchestrator: one session against a host."""

import asyncio
from typing import Any, Optional

import structlog

from livesignal.config import TRANSPORT_RENDEZVOUS, Config
from livesignal.core.errors import SignalingError
from livesignal.media.source import MediaSource
from livesignal.negotiation.engine import NegotiationEngine
from livesignal.negotiation.peer import PeerEngine
from livesignal.negotiation.session import NegotiationOutcome, NegotiationState, Role
from livesignal.signaling.channel import Connector, SignalingChannel
from livesignal.signaling.messages import MESSAGE_CODEC
from livesignal.signaling.rendezvous import RendezvousChannel, RendezvousClient
from livesignal.signaling.websocket import websocket_connector


class ClientRole:
    """Connects one peer to a host and negotiates until settled.

    With the rendezvous transport the client offers: its offer goes out over the
    pairing request and the host's answer comes back in the response. With the
    direct transport the client answers whatever offer the endpoint sends.
    """

    def __init__(
        self,
        config: Config,
        peer: PeerEngine,
        media: Optional[MediaSource] = None,
        rendezvous: Optional[RendezvousClient] = None,
        connector: Optional[Connector] = None
    ) -> None:
        """Initialize client role.

        Args:
            config: Configuration (transport, endpoints, negotiation policy)
            peer: Media engine for this session
            media: Local media; None receives only
            rendezvous: Rendezvous client (created from config if None)
            connector: Opens websocket channels (tests pass in-memory ones)
        """
        self._config = config
        self._peer = peer
        self._media = media
        self._rendezvous = rendezvous
        self._owns_rendezvous = rendezvous is None
        self._connector = connector or websocket_connector(
            open_timeout=config.signaling.open_timeout,
            subprotocol=config.signaling.subprotocol
        )

        self._channel: Optional[SignalingChannel] = None
        self._engine: Optional[NegotiationEngine] = None
        self._run_task: Optional[asyncio.Task[NegotiationState]] = None

        self._logger = structlog.get_logger(__name__).bind(role="client", transport=config.signaling.transport)

    @property
    def engine(self) -> Optional[NegotiationEngine]:
        return self._engine

    @property
    def code(self) -> Optional[str]:
        """Pairing code assigned by the rendezvous, if any."""
        if isinstance(self._channel, RendezvousChannel):
            return self._channel.code
        return None

    @property
    def state(self) -> NegotiationState:
        if self._engine is None:
            return NegotiationState.IDLE
        return self._engine.state

    async def connect(self) -> NegotiationOutcome:
        """Open the signaling channel and negotiate until settled.

        Returns:
            Outcome; failures are reported here rather than raised
        """
        if self._engine is not None:
            raise RuntimeError("Client already connected")

        try:
            self._channel, role = await self._open_channel()
        except SignalingError as e:
            self._logger.error("Failed to open signaling channel", error=str(e), kind=type(e).__name__)
            return NegotiationOutcome(state=NegotiationState.FAILED, error=e)

        media_up_front = self._config.negotiation.media_up_front
        acquire = self._media.acquire if self._media is not None and not media_up_front else None

        self._engine = NegotiationEngine(
            role,
            self._peer,
            self._channel,
            early_trickle=self._config.negotiation.early_trickle,
            acquire_media=acquire
        )

        if self._media is not None and media_up_front:
            try:
                tracks = await self._media.acquire()
            except SignalingError as e:
                self._logger.error("Failed to acquire media", error=str(e))
                await self._engine.close()
                return NegotiationOutcome(state=NegotiationState.FAILED, error=e)

            # Attached before the engine runs so the first offer carries them
            for track in tracks:
                await self._peer.add_track(track)

        self._run_task = asyncio.create_task(self._engine.run(), name="client-negotiation")
        await self._engine.negotiate()

        state = await self._engine.wait_settled()
        outcome = self._engine.outcome(self.code)
        self._logger.info("Client negotiation settled", state=state.value, code=outcome.code, round=outcome.round)
        return outcome

    async def add_track(self, track: Any) -> None:
        """Attach a local track after connecting (offerers renegotiate)."""
        if self._engine is None:
            raise RuntimeError("Client is not connected")
        await self._engine.add_track(track)

    async def close(self) -> NegotiationOutcome:
        """Close the session and release owned resources."""
        if self._engine is not None:
            await self._engine.close()
            if self._run_task is not None:
                await self._run_task
        elif self._channel is not None:
            await self._channel.close()

        if self._media is not None:
            await self._media.release()

        if self._owns_rendezvous and self._rendezvous is not None:
            await self._rendezvous.aclose()

        if self._engine is None:
            return NegotiationOutcome(state=NegotiationState.CLOSED)
        return self._engine.outcome(self.code)

    async def __aenter__(self) -> "ClientRole":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _open_channel(self) -> tuple[SignalingChannel, Role]:
        signaling = self._config.signaling

        if signaling.transport == TRANSPORT_RENDEZVOUS:
            if self._rendezvous is None:
                self._rendezvous = RendezvousClient(signaling.rendezvous_url, timeout=signaling.http_timeout)
            channel = RendezvousChannel(self._rendezvous, self._connector)
            await channel.open()
            self._logger.info("Using rendezvous signaling", rendezvous=self._rendezvous.base_url)
            return channel, Role.OFFERER

        channel = await self._connector(signaling.direct_url, MESSAGE_CODEC)
        self._logger.info("Using direct signaling", url=signaling.direct_url)
        return channel, Role.ANSWERER
