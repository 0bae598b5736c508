"""Negotiation state machine.

One engine drives one Session over one SignalingChannel. Three tasks run under
a TaskGroup:

- reader: turns inbound channel messages into triggers
- processor: handles triggers strictly one at a time
- writer: sends outbound messages in the order they were queued

A produced local description is always installed on the media engine before
it is queued for transmission. Remote candidates go through the session's
CandidateBuffer, which holds them until a remote description exists.
"""

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from livesignal.core.candidate_buffer import CandidateBuffer
from livesignal.core.errors import ChannelUnavailable, NegotiationCollision, ProtocolViolation, SignalingError
from livesignal.negotiation.peer import PeerEngine
from livesignal.negotiation.session import (
    SETTLED_STATES,
    NegotiationOutcome,
    NegotiationState,
    Role,
    Session,
)
from livesignal.signaling.channel import SignalingChannel
from livesignal.signaling.messages import (
    Answer,
    Candidate,
    IceCandidate,
    Offer,
    SessionDescription,
    SignalingMessage,
    describe,
    from_description,
)
from livesignal.signaling.sdp import summarize_sdp


# Returns local tracks to attach once the first remote description is committed
AcquireMedia = Callable[[], Awaitable[Sequence[Any]]]


class TriggerKind(Enum):
    LOCAL_INTENT = "local_intent"
    REMOTE_OFFER = "remote_offer"
    REMOTE_ANSWER = "remote_answer"
    REMOTE_CANDIDATE = "remote_candidate"


@dataclass(frozen=True)
class Trigger:
    kind: TriggerKind
    message: Optional[SignalingMessage] = None
    tracks: tuple = ()


class _ChannelClosed(Exception):
    """Inbound stream ended; tears down the engine's task group."""


class NegotiationEngine:
    """Sequences description exchange and candidate flow for one session."""

    def __init__(
        self,
        role: Role,
        peer: PeerEngine,
        channel: SignalingChannel,
        early_trickle: bool = False,
        acquire_media: Optional[AcquireMedia] = None,
        session_id: Optional[str] = None
    ) -> None:
        """Initialize negotiation engine.

        Args:
            role: OFFERER initiates rounds, ANSWERER responds to them
            peer: Media engine producing and consuming descriptions
            channel: Opened signaling channel to the remote side
            early_trickle: Send local candidates on discovery instead of after
                this round's local description has been queued
            acquire_media: Called once after the first remote description is
                committed; returned tracks are attached to the peer
            session_id: Identifier for logs (random if None)
        """
        session_id = session_id or uuid.uuid4().hex[:8]

        self._peer = peer
        self._channel = channel
        self._early_trickle = early_trickle
        self._acquire_media = acquire_media
        self._session = Session(
            role=role,
            session_id=session_id,
            candidates=CandidateBuffer(peer.add_ice_candidate, session_id)
        )

        self._triggers: asyncio.Queue[Trigger] = asyncio.Queue()
        self._outbound: asyncio.Queue[SignalingMessage] = asyncio.Queue()
        self._held_candidates: list[Optional[IceCandidate]] = []
        self._local_committed = False
        self._renegotiation_pending = False
        self._media_acquired = False

        self._running = False
        self._error: Optional[SignalingError] = None
        self._last_settled: Optional[NegotiationState] = None
        self._settled = asyncio.Event()
        self._finished = asyncio.Event()

        self._logger = structlog.get_logger(__name__).bind(session=session_id, role=role.value)

        peer.on_local_candidate(self._on_local_candidate)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> NegotiationState:
        return self._session.state

    @property
    def role(self) -> Role:
        return self._session.role

    @property
    def peer(self) -> PeerEngine:
        return self._peer

    @property
    def channel(self) -> SignalingChannel:
        return self._channel

    @property
    def error(self) -> Optional[SignalingError]:
        """Error that moved the session to FAILED, if any."""
        return self._error

    async def negotiate(self) -> None:
        """Signal local intent to negotiate.

        Offerers start a round (or defer it until the current one settles);
        answerers start waiting for an offer.
        """
        self._triggers.put_nowait(Trigger(TriggerKind.LOCAL_INTENT))

    async def add_track(self, track: Any) -> None:
        """Attach a local track; offerers renegotiate to include it."""
        self._triggers.put_nowait(Trigger(TriggerKind.LOCAL_INTENT, tracks=(track,)))

    async def deliver(self, message: SignalingMessage) -> None:
        """Queue one inbound message as a trigger.

        Raises:
            ProtocolViolation: If the object is not a signaling message
        """
        if isinstance(message, Offer):
            kind = TriggerKind.REMOTE_OFFER
        elif isinstance(message, Answer):
            kind = TriggerKind.REMOTE_ANSWER
        elif isinstance(message, Candidate):
            kind = TriggerKind.REMOTE_CANDIDATE
        else:
            raise ProtocolViolation("Not a signaling message", {"received": type(message).__name__})

        self._triggers.put_nowait(Trigger(kind, message))

    async def run(self) -> NegotiationState:
        """Process triggers until the session fails or its channel closes.

        Returns:
            Terminal state (FAILED or CLOSED)
        """
        if self._running or self._session.terminal:
            raise RuntimeError(f"Negotiation session {self._session.session_id} already ran")
        self._running = True

        sid = self._session.session_id
        self._logger.info("Negotiation session started", early_trickle=self._early_trickle)

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._read_loop(), name=f"negotiation-{sid}-reader")
                tg.create_task(self._process_loop(), name=f"negotiation-{sid}-processor")
                tg.create_task(self._write_loop(), name=f"negotiation-{sid}-writer")

        except* _ChannelClosed:
            self._finish(NegotiationState.CLOSED)

        except* ChannelUnavailable as eg:
            # Losing the transport after the handshake completed is a closure
            if self._session.ever_connected:
                self._finish(NegotiationState.CLOSED)
            else:
                self._finish(NegotiationState.FAILED, eg.exceptions[0])

        except* SignalingError as eg:
            self._finish(NegotiationState.FAILED, eg.exceptions[0])

        except* Exception as eg:
            exc = eg.exceptions[0]
            self._logger.error("Negotiation aborted by unexpected error", error=str(exc), exc_info=exc)
            self._finish(
                NegotiationState.FAILED,
                SignalingError(f"Negotiation aborted: {exc}", {"exception": type(exc).__name__})
            )

        finally:
            await self._teardown()

        return self._session.state

    async def wait_settled(self) -> NegotiationState:
        """Wait until the session reaches CONNECTED, FAILED or CLOSED.

        Returns:
            The state the session settled in
        """
        await self._settled.wait()
        return self._last_settled or self._session.state

    async def wait_finished(self) -> NegotiationState:
        """Wait until the engine has torn down."""
        await self._finished.wait()
        return self._session.state

    async def close(self) -> NegotiationState:
        """Close the channel, driving the session to CLOSED.

        Returns:
            Terminal state
        """
        if not self._running:
            self._finish(NegotiationState.CLOSED)
            await self._teardown()
            return self._session.state

        await self._channel.close()
        return await self.wait_finished()

    def outcome(self, code: Optional[str] = None) -> NegotiationOutcome:
        state = self._session.state
        if state not in SETTLED_STATES and self._last_settled is not None:
            state = self._last_settled
        return NegotiationOutcome(state=state, round=self._session.round, code=code, error=self._error)

    # ---- task bodies -------------------------------------------------------

    async def _read_loop(self) -> None:
        async for message in self._channel.messages():
            self._logger.debug("Received message", message=describe(message))
            await self.deliver(message)

        self._logger.info("Signaling channel closed")
        raise _ChannelClosed()

    async def _process_loop(self) -> None:
        while True:
            trigger = await self._triggers.get()

            if trigger.kind is TriggerKind.LOCAL_INTENT:
                await self._on_local_intent(trigger.tracks)
            elif trigger.kind is TriggerKind.REMOTE_OFFER:
                await self._on_remote_offer(trigger.message)
            elif trigger.kind is TriggerKind.REMOTE_ANSWER:
                await self._on_remote_answer(trigger.message)
            else:
                await self._session.candidates.enqueue(trigger.message.candidate)

    async def _write_loop(self) -> None:
        while True:
            message = await self._outbound.get()
            await self._channel.send(message)
            self._logger.debug("Sent message", message=describe(message))

    # ---- trigger handlers --------------------------------------------------

    async def _on_local_intent(self, tracks: tuple) -> None:
        for track in tracks:
            await self._peer.add_track(track)

        state = self._session.state

        if self._session.role is Role.ANSWERER:
            if state is NegotiationState.IDLE:
                self._transition(NegotiationState.AWAITING_OFFER)
            elif tracks:
                self._logger.info("Answerer does not renegotiate; tracks join the next remote offer")
            return

        if state in (NegotiationState.IDLE, NegotiationState.CONNECTED):
            await self._offer()
        else:
            # Replayed once the current round reaches CONNECTED
            self._renegotiation_pending = True
            self._logger.debug("Renegotiation deferred until round settles", state=state.value)

    async def _on_remote_offer(self, offer: Offer) -> None:
        session = self._session
        state = session.state

        if session.role is Role.OFFERER:
            if session.in_flight:
                raise NegotiationCollision(
                    "Offer arrived while a round is in flight",
                    {"round": session.round, "state": state.value}
                )
            raise ProtocolViolation("Offerer does not accept offers", {"state": state.value})

        if session.in_flight:
            raise NegotiationCollision(
                "Offer arrived while a round is in flight",
                {"round": session.round, "state": state.value}
            )

        renegotiating = state is NegotiationState.CONNECTED
        self._begin_round()
        if renegotiating:
            self._transition(NegotiationState.RENEGOTIATING)
        elif state is NegotiationState.IDLE:
            self._transition(NegotiationState.AWAITING_OFFER)

        await self._install_remote(offer.description)
        self._transition(NegotiationState.OFFER_RECEIVED)

        await self._attach_media()

        self._transition(NegotiationState.CREATING_ANSWER)
        answer = await self._peer.create_answer()
        committed = await self._peer.set_local_description(answer)
        session.install_local(committed)
        self._transition(NegotiationState.ANSWER_SET)

        self._transmit(committed)
        self._transition(NegotiationState.CONNECTED)

    async def _on_remote_answer(self, answer: Answer) -> None:
        session = self._session

        if session.role is Role.ANSWERER:
            raise ProtocolViolation("Answerer does not accept answers", {"state": session.state.value})
        if session.state is not NegotiationState.AWAITING_ANSWER:
            raise ProtocolViolation("Unexpected answer", {"state": session.state.value, "round": session.round})

        await self._install_remote(answer.description)
        self._transition(NegotiationState.CONNECTED)

        if await self._attach_media():
            self._renegotiation_pending = True

        if self._renegotiation_pending:
            self._renegotiation_pending = False
            await self._offer()

    # ---- steps -------------------------------------------------------------

    async def _offer(self) -> None:
        renegotiating = self._session.state is NegotiationState.CONNECTED
        self._begin_round()
        if renegotiating:
            self._transition(NegotiationState.RENEGOTIATING)

        self._transition(NegotiationState.CREATING_OFFER)
        offer = await self._peer.create_offer()
        committed = await self._peer.set_local_description(offer)
        self._session.install_local(committed)
        self._transition(NegotiationState.OFFER_SET)

        self._transmit(committed)
        self._transition(NegotiationState.AWAITING_ANSWER)

    def _begin_round(self) -> None:
        round_number = self._session.begin_round()
        self._local_committed = False
        self._settled.clear()
        self._logger.info("Negotiation round started", round=round_number)

    async def _install_remote(self, description: SessionDescription) -> None:
        try:
            await self._peer.set_remote_description(description)
        except ValueError as e:
            raise ProtocolViolation(
                "Media engine rejected the remote description",
                {"type": description.type, "error": str(e)}
            )

        self._session.install_remote(description)
        self._logger.info(
            "Remote description installed",
            type=description.type,
            round=self._session.round,
            **summarize_sdp(description.sdp).as_log_fields()
        )

        applied = await self._session.candidates.flush()
        if applied:
            self._logger.info("Replayed buffered candidates", applied=applied)

    async def _attach_media(self) -> bool:
        if self._media_acquired or self._acquire_media is None:
            return False
        self._media_acquired = True

        tracks = await self._acquire_media()
        for track in tracks:
            await self._peer.add_track(track)

        self._logger.info("Local media attached", tracks=len(tracks))
        return bool(tracks)

    def _transmit(self, description: SessionDescription) -> None:
        self._outbound.put_nowait(from_description(description))
        self._logger.info(
            "Local description queued",
            type=description.type,
            round=self._session.round,
            **summarize_sdp(description.sdp).as_log_fields()
        )

        # This round's local half is committed; withheld candidates follow it
        self._local_committed = True
        held, self._held_candidates = self._held_candidates, []
        for candidate in held:
            self._outbound.put_nowait(Candidate(candidate))

    def _on_local_candidate(self, candidate: Optional[IceCandidate]) -> None:
        if self._session.terminal:
            return

        if self._early_trickle or self._local_committed:
            self._outbound.put_nowait(Candidate(candidate))
        else:
            self._held_candidates.append(candidate)

    def _transition(self, state: NegotiationState) -> None:
        previous = self._session.state
        self._session.transition(state)

        if state in SETTLED_STATES:
            self._last_settled = state
            self._settled.set()

        self._logger.info(
            "Negotiation state changed",
            previous=previous.value,
            state=state.value,
            round=self._session.round
        )

    def _finish(self, state: NegotiationState, error: Optional[SignalingError] = None) -> None:
        if self._session.terminal:
            return

        self._error = error
        self._transition(state)

        if error is not None:
            self._logger.error("Negotiation failed", error=str(error), kind=type(error).__name__)

    async def _teardown(self) -> None:
        if not self._session.terminal:
            self._finish(NegotiationState.CLOSED)

        await self._channel.close()
        try:
            await self._peer.close()
        except Exception as e:
            self._logger.warning("Media engine close failed", error=str(e))

        self._finished.set()
        self._logger.info("Negotiation session finished", state=self._session.state.value, round=self._session.round)
