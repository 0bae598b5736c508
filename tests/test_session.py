"""Tests for the session data model."""

import pytest

from livesignal.core.candidate_buffer import CandidateBuffer
from livesignal.core.errors import NegotiationCollision, ProtocolViolation
from livesignal.negotiation.session import NegotiationOutcome, NegotiationState, Role, Session
from livesignal.signaling.messages import SessionDescription


async def _noop(candidate: object) -> None:
    return None


def _session(role: Role = Role.OFFERER) -> Session:
    return Session(role=role, session_id="s1", candidates=CandidateBuffer(_noop))


class TestSession:
    """Test rounds, description slots and terminal states."""

    def test_initial_state(self) -> None:
        session = _session()
        assert session.state is NegotiationState.IDLE
        assert session.round == 0
        assert session.history == [NegotiationState.IDLE]
        assert not session.settled

    def test_round_requires_settled_previous(self) -> None:
        session = _session()
        assert session.begin_round() == 1

        session.transition(NegotiationState.CREATING_OFFER)
        with pytest.raises(NegotiationCollision):
            session.begin_round()

        session.transition(NegotiationState.OFFER_SET)
        session.transition(NegotiationState.AWAITING_ANSWER)
        session.transition(NegotiationState.CONNECTED)

        assert session.ever_connected
        assert session.begin_round() == 2

    def test_one_description_each_per_round(self) -> None:
        session = _session()
        session.begin_round()

        session.install_local(SessionDescription("offer", "o1"))
        session.install_remote(SessionDescription("answer", "a1"))

        with pytest.raises(ProtocolViolation):
            session.install_local(SessionDescription("offer", "o1b"))
        with pytest.raises(ProtocolViolation):
            session.install_remote(SessionDescription("answer", "a1b"))

        session.transition(NegotiationState.CONNECTED)
        session.begin_round()
        session.install_local(SessionDescription("offer", "o2"))

        assert session.local_description.sdp == "o2"
        assert session.remote_description.sdp == "a1"

    def test_remote_description_resets_end_of_candidates(self) -> None:
        session = _session(Role.ANSWERER)
        session.candidates._ended = True

        session.begin_round()
        assert session.candidates.ended

        session.install_remote(SessionDescription("offer", "o1"))
        assert not session.candidates.ended

    @pytest.mark.parametrize("terminal", [NegotiationState.FAILED, NegotiationState.CLOSED])
    def test_terminal_states_are_final(self, terminal: NegotiationState) -> None:
        session = _session()
        session.transition(terminal)

        assert session.terminal
        with pytest.raises(RuntimeError):
            session.transition(NegotiationState.IDLE)

    def test_outcome_ok(self) -> None:
        assert NegotiationOutcome(state=NegotiationState.CONNECTED).ok
        assert not NegotiationOutcome(state=NegotiationState.CLOSED).ok
