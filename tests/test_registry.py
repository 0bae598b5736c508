"""Tests for the session registry and per-code isolation."""

import asyncio

import pytest

from livesignal.core.errors import ProtocolViolation
from livesignal.negotiation.engine import NegotiationEngine
from livesignal.negotiation.session import NegotiationState, Role
from livesignal.roles.registry import SessionRegistry
from livesignal.signaling.memory import MemoryChannel
from livesignal.signaling.messages import ENVELOPE_CODEC, Answer, Candidate, Offer
from livesignal.signaling.multiplex import ScopedChannel
from tests.fake_peer import FakePeerEngine, make_candidate
from tests.helpers import eventually, receive


def _engine(shared: MemoryChannel, code: str, events: list) -> NegotiationEngine:
    peer = FakePeerEngine(name=f"host-{code}", events=events)
    return NegotiationEngine(Role.ANSWERER, peer, ScopedChannel(shared, code), session_id=code)


class TestSessionRegistry:
    """Test registration exclusivity and routing."""

    @pytest.mark.asyncio
    async def test_register_and_unregister(self, events: list) -> None:
        shared, _ = MemoryChannel.pair(ENVELOPE_CODEC)
        registry = SessionRegistry()
        engine = _engine(shared, "C1", events)

        await registry.register("C1", engine)

        assert "C1" in registry
        assert len(registry) == 1
        assert registry.get("C1") is engine
        assert registry.codes() == ["C1"]

        assert await registry.unregister("C1") is engine
        assert await registry.unregister("C1") is None
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_duplicate_code_rejected(self, events: list) -> None:
        shared, _ = MemoryChannel.pair(ENVELOPE_CODEC)
        registry = SessionRegistry()

        await registry.register("C1", _engine(shared, "C1", events))

        with pytest.raises(ProtocolViolation):
            await registry.register("C1", _engine(shared, "C1", events))

    @pytest.mark.asyncio
    async def test_concurrent_registration_is_exclusive(self, events: list) -> None:
        """Of many simultaneous registrations for one code, exactly one wins."""
        shared, _ = MemoryChannel.pair(ENVELOPE_CODEC)
        registry = SessionRegistry()
        engines = [_engine(shared, "C1", events) for _ in range(5)]

        results = await asyncio.gather(
            *(registry.register("C1", engine) for engine in engines),
            return_exceptions=True
        )

        assert sum(1 for r in results if r is None) == 1
        assert sum(1 for r in results if isinstance(r, ProtocolViolation)) == 4
        assert registry.get("C1") is engines[results.index(None)]

    @pytest.mark.asyncio
    async def test_route_unknown_code(self) -> None:
        registry = SessionRegistry()

        with pytest.raises(ProtocolViolation):
            await registry.route("C9", Candidate(make_candidate(1)))


class TestFanOutIsolation:
    """Test that sessions sharing a host channel never affect each other."""

    @pytest.mark.asyncio
    async def test_failure_is_contained(self, events: list) -> None:
        shared, service = MemoryChannel.pair(ENVELOPE_CODEC)
        registry = SessionRegistry()
        first = _engine(shared, "C1", events)
        second = _engine(shared, "C2", events)
        await registry.register("C1", first)
        await registry.register("C2", second)
        tasks = [asyncio.create_task(first.run()), asyncio.create_task(second.run())]

        await registry.route("C1", Offer("v=0 offer-1"))
        await registry.route("C2", Offer("v=0 offer-2"))

        received = await receive(service.messages(), count=4)
        answers = {envelope.code for envelope in received if isinstance(envelope.message, Answer)}
        assert answers == {"C1", "C2"}

        # An answer is illegal for an answerer; only C1 fails
        await registry.route("C1", Answer("v=0"))
        assert await tasks[0] is NegotiationState.FAILED

        assert second.state is NegotiationState.CONNECTED
        assert not shared.closed

        await registry.route("C2", Candidate(make_candidate(5)))
        await eventually(lambda: second.peer.applied == [make_candidate(5)])
        assert first.peer.applied == []

        await second.close()
        await tasks[1]

    @pytest.mark.asyncio
    async def test_messages_stay_with_their_code(self, events: list) -> None:
        shared, service = MemoryChannel.pair(ENVELOPE_CODEC)
        registry = SessionRegistry()
        first = _engine(shared, "C1", events)
        second = _engine(shared, "C2", events)
        await registry.register("C1", first)
        await registry.register("C2", second)
        tasks = [asyncio.create_task(first.run()), asyncio.create_task(second.run())]

        await registry.route("C1", Offer("v=0 offer-1"))
        await registry.route("C2", Offer("v=0 offer-2"))
        for n in (1, 2, 3):
            await registry.route("C1", Candidate(make_candidate(n)))
        await registry.route("C2", Candidate(make_candidate(4)))

        await eventually(lambda: len(first.peer.applied) == 3 and len(second.peer.applied) == 1)

        assert first.peer.applied == [make_candidate(1), make_candidate(2), make_candidate(3)]
        assert second.peer.applied == [make_candidate(4)]
        assert first.peer.remote_descriptions[0].sdp == "v=0 offer-1"
        assert second.peer.remote_descriptions[0].sdp == "v=0 offer-2"

        await first.close()
        await second.close()
        await asyncio.gather(*tasks)
