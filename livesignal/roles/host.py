"""Host orchestrator: many client sessions over one shared channel."""

import asyncio
from collections import deque
from typing import Any, Callable, Optional

import structlog

from livesignal.config import Config
from livesignal.core.constants import SignalingConstants
from livesignal.core.errors import HostAlreadyRegistered, ProtocolViolation, SignalingError
from livesignal.media.source import MediaSource
from livesignal.negotiation.engine import NegotiationEngine
from livesignal.negotiation.peer import PeerEngine
from livesignal.negotiation.session import NegotiationOutcome, NegotiationState, Role
from livesignal.roles.registry import SessionRegistry
from livesignal.signaling.channel import Connector, SignalingChannel
from livesignal.signaling.messages import ENVELOPE_CODEC, Envelope, Offer, describe
from livesignal.signaling.multiplex import ScopedChannel
from livesignal.signaling.rendezvous import ROLE_HOST, RendezvousClient
from livesignal.signaling.websocket import websocket_connector


PeerFactory = Callable[[], PeerEngine]


class HostRole:
    """Registers with the rendezvous and answers every client that pairs.

    Each pairing code gets its own answerer session on a scoped view of the
    shared host channel. A failure in one session never touches the others or
    the shared channel.
    """

    def __init__(
        self,
        config: Config,
        peer_factory: PeerFactory,
        rendezvous: Optional[RendezvousClient] = None,
        media: Optional[MediaSource] = None,
        connector: Optional[Connector] = None,
        outcome_history: int = SignalingConstants.OUTCOME_HISTORY
    ) -> None:
        """Initialize host role.

        Args:
            config: Configuration (rendezvous URL, negotiation policy)
            peer_factory: Creates one media engine per client session
            rendezvous: Rendezvous client (created from config if None)
            media: Local media offered to every client
            connector: Opens websocket channels (tests pass in-memory ones)
            outcome_history: Number of finished session outcomes to keep
        """
        self._config = config
        self._peer_factory = peer_factory
        self._rendezvous = rendezvous
        self._owns_rendezvous = rendezvous is None
        self._media = media
        self._connector = connector or websocket_connector(
            open_timeout=config.signaling.open_timeout,
            subprotocol=config.signaling.subprotocol
        )

        self._registry = SessionRegistry()
        self._outcomes: deque[NegotiationOutcome] = deque(maxlen=outcome_history)
        self._finished_sessions = 0
        self._channel: Optional[SignalingChannel] = None
        self._code: Optional[str] = None
        self._start_lock = asyncio.Lock()

        self._logger = structlog.get_logger(__name__).bind(role="host")

    @property
    def code(self) -> Optional[str]:
        return self._code

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def outcomes(self) -> list[NegotiationOutcome]:
        """Most recent finished-session outcomes, in completion order."""
        return list(self._outcomes)

    async def start(self) -> str:
        """Register with the rendezvous and open the host channel.

        Returns:
            Host pairing code

        Raises:
            HostAlreadyRegistered: If this host or another already holds the slot
            ChannelUnavailable: If the rendezvous or host channel is unreachable
        """
        async with self._start_lock:
            if self._code is not None:
                raise HostAlreadyRegistered("Host is already registered", {"code": self._code})

            if self._rendezvous is None:
                signaling = self._config.signaling
                self._rendezvous = RendezvousClient(signaling.rendezvous_url, timeout=signaling.http_timeout)

            code = await self._rendezvous.register_host()
            url = self._rendezvous.channel_url(ROLE_HOST, code)
            self._channel = await self._connector(url, ENVELOPE_CODEC)
            self._code = code

        self._logger = self._logger.bind(code=code)
        self._logger.info("Host registered", url=url)
        return code

    async def serve(self) -> NegotiationOutcome:
        """Answer clients until the host channel ends.

        Returns:
            Outcome of the host channel: CLOSED, or FAILED with the error that
            ended it
        """
        if self._channel is None:
            raise RuntimeError("Host is not started")

        error: Optional[SignalingError] = None

        try:
            async with asyncio.TaskGroup() as tg:
                async for envelope in self._channel.messages():
                    await self._dispatch(tg, envelope)

                self._logger.info("Host channel ended, closing sessions", active=len(self._registry))
                await self._close_sessions()

        except* SignalingError as eg:
            error = eg.exceptions[0]
            self._logger.error("Host channel failed", error=str(error), kind=type(error).__name__)

        state = NegotiationState.FAILED if error is not None else NegotiationState.CLOSED
        return NegotiationOutcome(state=state, code=self._code, error=error)

    async def stop(self) -> None:
        """Close the host channel; a running serve() then returns."""
        if self._channel is not None:
            await self._channel.close()
        await self._close_sessions()

        if self._media is not None:
            await self._media.release()

        if self._owns_rendezvous and self._rendezvous is not None:
            await self._rendezvous.aclose()
            self._rendezvous = None

        self._code = None
        self._logger.info("Host stopped", sessions=self._finished_sessions)

    async def _dispatch(self, tg: asyncio.TaskGroup, envelope: Envelope) -> None:
        code, message = envelope.code, envelope.message

        if code not in self._registry:
            if not isinstance(message, Offer):
                self._logger.warning("Dropping message for unknown code", client=code, message=describe(message))
                return

            engine = self._create_session(code)
            await self._registry.register(code, engine)
            tg.create_task(self._run_session(code, engine), name=f"host-session-{code}")

        try:
            await self._registry.route(code, message)
        except ProtocolViolation as e:
            # Session ended between lookup and delivery
            self._logger.warning("Dropping message", client=code, error=str(e))

    def _create_session(self, code: str) -> NegotiationEngine:
        acquire = self._media.acquire if self._media is not None else None
        return NegotiationEngine(
            Role.ANSWERER,
            self._peer_factory(),
            ScopedChannel(self._channel, code),
            early_trickle=self._config.negotiation.early_trickle,
            acquire_media=acquire,
            session_id=code
        )

    async def _run_session(self, code: str, engine: NegotiationEngine) -> None:
        try:
            await engine.run()
        finally:
            await self._registry.unregister(code)
            outcome = engine.outcome(code)
            self._outcomes.append(outcome)
            self._finished_sessions += 1
            self._logger.info(
                "Client session finished",
                client=code,
                state=outcome.state.value,
                round=outcome.round,
                error=str(outcome.error) if outcome.error else None
            )

    async def _close_sessions(self) -> None:
        for code in self._registry.codes():
            engine = self._registry.get(code)
            if engine is not None:
                await engine.channel.close()

    async def __aenter__(self) -> "HostRole":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
