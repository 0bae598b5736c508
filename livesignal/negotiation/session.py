"""Negotiation session data model."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from livesignal.core.candidate_buffer import CandidateBuffer
from livesignal.core.errors import NegotiationCollision, ProtocolViolation, SignalingError
from livesignal.signaling.messages import SessionDescription


class Role(Enum):
    OFFERER = "offerer"
    ANSWERER = "answerer"


class NegotiationState(Enum):
    """Session states.

    Offerer:  IDLE -> CREATING_OFFER -> OFFER_SET -> AWAITING_ANSWER -> CONNECTED
    Answerer: IDLE -> AWAITING_OFFER -> OFFER_RECEIVED -> CREATING_ANSWER -> ANSWER_SET -> CONNECTED
    CONNECTED -> RENEGOTIATING starts a fresh round on either path.
    Any state may move to FAILED or CLOSED.
    """

    IDLE = "idle"
    CREATING_OFFER = "creating_offer"
    OFFER_SET = "offer_set"
    AWAITING_ANSWER = "awaiting_answer"
    AWAITING_OFFER = "awaiting_offer"
    OFFER_RECEIVED = "offer_received"
    CREATING_ANSWER = "creating_answer"
    ANSWER_SET = "answer_set"
    CONNECTED = "connected"
    RENEGOTIATING = "renegotiating"
    FAILED = "failed"
    CLOSED = "closed"


TERMINAL_STATES = frozenset({NegotiationState.FAILED, NegotiationState.CLOSED})
SETTLED_STATES = frozenset({NegotiationState.CONNECTED}) | TERMINAL_STATES
ROUND_START_STATES = frozenset({
    NegotiationState.IDLE,
    NegotiationState.AWAITING_OFFER,
    NegotiationState.CONNECTED,
})
IN_FLIGHT_STATES = frozenset({
    NegotiationState.RENEGOTIATING,
    NegotiationState.CREATING_OFFER,
    NegotiationState.OFFER_SET,
    NegotiationState.AWAITING_ANSWER,
    NegotiationState.OFFER_RECEIVED,
    NegotiationState.CREATING_ANSWER,
    NegotiationState.ANSWER_SET,
})


@dataclass
class Session:
    """One negotiation instance, owned by the engine that created it.

    Each round holds at most one local and one remote description. A new round
    may only begin once the previous one reached CONNECTED.
    """

    role: Role
    session_id: str
    candidates: CandidateBuffer
    state: NegotiationState = NegotiationState.IDLE
    local_description: Optional[SessionDescription] = None
    remote_description: Optional[SessionDescription] = None
    round: int = 0
    ever_connected: bool = False
    history: list[NegotiationState] = field(default_factory=lambda: [NegotiationState.IDLE])
    _local_round: int = field(default=0, repr=False)
    _remote_round: int = field(default=0, repr=False)

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def settled(self) -> bool:
        return self.state in SETTLED_STATES

    @property
    def in_flight(self) -> bool:
        return self.state in IN_FLIGHT_STATES

    def transition(self, state: NegotiationState) -> None:
        """Move to a new state and record it.

        Raises:
            RuntimeError: If the session is already terminal
        """
        if self.terminal:
            raise RuntimeError(f"Session {self.session_id} is {self.state.value}; cannot move to {state.value}")

        self.state = state
        self.history.append(state)
        if state is NegotiationState.CONNECTED:
            self.ever_connected = True

    def begin_round(self) -> int:
        """Open the next negotiation round.

        Returns:
            The new round number

        Raises:
            NegotiationCollision: If the previous round has not settled
        """
        if self.state not in ROUND_START_STATES:
            raise NegotiationCollision(
                "Previous negotiation round has not settled",
                {"session": self.session_id, "round": self.round, "state": self.state.value}
            )

        self.round += 1
        return self.round

    def install_local(self, description: SessionDescription) -> None:
        """Record the committed local description for this round.

        Raises:
            ProtocolViolation: If this round already has a local description
        """
        if self._local_round == self.round:
            raise ProtocolViolation(
                "Local description already installed for this round",
                {"session": self.session_id, "round": self.round}
            )
        self.local_description = description
        self._local_round = self.round

    def install_remote(self, description: SessionDescription) -> None:
        """Record the remote description for this round.

        Clears the end-of-candidates mark: remote candidates that follow belong
        to this round.

        Raises:
            ProtocolViolation: If this round already has a remote description
        """
        if self._remote_round == self.round:
            raise ProtocolViolation(
                "Remote description already installed for this round",
                {"session": self.session_id, "round": self.round}
            )
        self.remote_description = description
        self._remote_round = self.round
        self.candidates.begin_round()


@dataclass(frozen=True)
class NegotiationOutcome:
    """Result surfaced to role callers instead of raised errors."""

    state: NegotiationState
    round: int = 0
    code: Optional[str] = None
    error: Optional[SignalingError] = None

    @property
    def ok(self) -> bool:
        return self.state is NegotiationState.CONNECTED
