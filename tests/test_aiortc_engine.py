"""Loopback tests for the aiortc media engine."""

import asyncio

import pytest

pytest.importorskip("aiortc")

from livesignal.media.aiortc_engine import AiortcPeerEngine  # noqa: E402
from livesignal.negotiation.engine import NegotiationEngine  # noqa: E402
from livesignal.negotiation.session import NegotiationState, Role  # noqa: E402
from livesignal.signaling.memory import MemoryChannel  # noqa: E402
from livesignal.signaling.messages import IceCandidate, SessionDescription  # noqa: E402
from livesignal.signaling.sdp import summarize_sdp  # noqa: E402


class TestLoopback:
    """Test two real peer connections negotiating in-process."""

    @pytest.mark.asyncio
    async def test_offer_answer_over_memory_channel(self) -> None:
        offerer_peer = AiortcPeerEngine(ice_servers=(), receive_kinds=("audio",))
        answerer_peer = AiortcPeerEngine(ice_servers=())
        offerer_channel, answerer_channel = MemoryChannel.pair()

        offerer = NegotiationEngine(Role.OFFERER, offerer_peer, offerer_channel, session_id="offerer")
        answerer = NegotiationEngine(Role.ANSWERER, answerer_peer, answerer_channel, session_id="answerer")

        await answerer.negotiate()
        await offerer.negotiate()
        tasks = [asyncio.create_task(offerer.run()), asyncio.create_task(answerer.run())]

        async with asyncio.timeout(10.0):
            assert await offerer.wait_settled() is NegotiationState.CONNECTED
            assert await answerer.wait_settled() is NegotiationState.CONNECTED

        offer = summarize_sdp(offerer_peer.connection.localDescription.sdp)
        assert [media.media_type for media in offer.media] == ["audio"]
        assert offer.media[0].direction == "recvonly"
        assert offerer_peer.connection.signalingState == "stable"

        await offerer.close()
        await answerer.close()
        assert await asyncio.gather(*tasks) == [NegotiationState.CLOSED, NegotiationState.CLOSED]
        assert offerer_peer.connection_state == "closed"


class TestPeerEngine:
    """Test the adapter surface directly."""

    @pytest.mark.asyncio
    async def test_gathering_complete_reported_after_local_description(self) -> None:
        peer = AiortcPeerEngine(ice_servers=(), receive_kinds=("video",))
        announced = []
        peer.on_local_candidate(announced.append)

        offer = await peer.create_offer()
        committed = await peer.set_local_description(offer)

        assert committed.type == "offer"
        assert announced == [None]
        await peer.close()

    @pytest.mark.asyncio
    async def test_answer_in_stable_state_rejected(self) -> None:
        offering = AiortcPeerEngine(ice_servers=())
        offer = await offering.create_offer()

        fresh = AiortcPeerEngine(ice_servers=())
        with pytest.raises(ValueError):
            await fresh.set_remote_description(SessionDescription("answer", offer.sdp))

        await offering.close()
        await fresh.close()

    @pytest.mark.asyncio
    async def test_remote_candidate_with_prefix(self) -> None:
        offering = AiortcPeerEngine(ice_servers=(), receive_kinds=("audio",))
        answering = AiortcPeerEngine(ice_servers=())

        offer = await offering.set_local_description(await offering.create_offer())
        await answering.set_remote_description(offer)
        mid = answering.connection.getTransceivers()[0].mid

        await answering.add_ice_candidate(IceCandidate(
            candidate="candidate:1 1 udp 2130706431 127.0.0.1 50001 typ host",
            sdp_mid=mid,
            sdp_mline_index=0
        ))

        await offering.close()
        await answering.close()
