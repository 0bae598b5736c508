"""Tests for signaling channel implementations."""

import asyncio

import pytest
from websockets.asyncio.server import ServerConnection, serve

from livesignal.core.errors import ChannelUnavailable, ProtocolViolation, RendezvousExhausted
from livesignal.signaling.memory import MemoryChannel
from livesignal.signaling.messages import ENVELOPE_CODEC, Answer, Candidate, Envelope, Offer
from livesignal.signaling.multiplex import ScopedChannel
from livesignal.signaling.rendezvous import ROLE_HOST, RendezvousChannel, RendezvousClient
from livesignal.signaling.websocket import WebSocketChannel, websocket_connector
from tests.fake_peer import make_candidate
from tests.fake_rendezvous import FakeRendezvous
from tests.helpers import receive


async def _drain(channel: ScopedChannel) -> list:
    return [message async for message in channel.messages()]


class TestMemoryChannel:
    """Test the in-process channel pair."""

    @pytest.mark.asyncio
    async def test_messages_arrive_in_order(self) -> None:
        a, b = MemoryChannel.pair()

        await a.send(Offer("v=0"))
        await a.send(Candidate(make_candidate(1)))
        await a.send(Candidate(None))

        assert await receive(b.messages(), count=3) == [
            Offer("v=0"),
            Candidate(make_candidate(1)),
            Candidate(None),
        ]

    @pytest.mark.asyncio
    async def test_close_ends_both_streams(self) -> None:
        a, b = MemoryChannel.pair()
        await a.close()

        received = [message async for message in b.messages()]

        assert received == []
        assert a.closed
        with pytest.raises(ChannelUnavailable):
            await b.send(Offer("v=0"))
        with pytest.raises(ChannelUnavailable):
            await a.send(Offer("v=0"))

    @pytest.mark.asyncio
    async def test_malformed_frame_closes_channel(self) -> None:
        a, b = MemoryChannel.pair()
        await a.send_raw("{not json")

        with pytest.raises(ProtocolViolation):
            await receive(b.messages())
        assert b.closed


class TestScopedChannel:
    """Test the per-code view of a shared host channel."""

    @pytest.mark.asyncio
    async def test_send_wraps_in_envelope(self) -> None:
        shared, service = MemoryChannel.pair(ENVELOPE_CODEC)
        scoped = ScopedChannel(shared, "C1")

        await scoped.send(Answer("v=0"))
        await scoped.send(Candidate(None))

        assert await receive(service.messages(), count=2) == [
            Envelope("C1", Answer("v=0")),
            Envelope("C1", Candidate(None)),
        ]

    @pytest.mark.asyncio
    async def test_close_leaves_shared_open(self) -> None:
        shared, _ = MemoryChannel.pair(ENVELOPE_CODEC)
        scoped = ScopedChannel(shared, "C1")
        drained = asyncio.create_task(_drain(scoped))

        await scoped.close()

        assert await asyncio.wait_for(drained, 2.0) == []
        assert scoped.closed
        assert not shared.closed

    @pytest.mark.asyncio
    async def test_send_after_shared_closed(self) -> None:
        shared, _ = MemoryChannel.pair(ENVELOPE_CODEC)
        scoped = ScopedChannel(shared, "C1")
        await shared.close()

        with pytest.raises(ChannelUnavailable):
            await scoped.send(Candidate(None))


class TestRendezvousChannel:
    """Test the pair-then-trickle channel."""

    @pytest.mark.asyncio
    async def test_pairs_then_trickles(
        self, fake_rendezvous: FakeRendezvous, rendezvous_client: RendezvousClient
    ) -> None:
        code = await rendezvous_client.register_host()
        host = await fake_rendezvous.connect(rendezvous_client.channel_url(ROLE_HOST, code), ENVELOPE_CODEC)
        host_stream = host.messages()

        channel = RendezvousChannel(rendezvous_client, fake_rendezvous.connect)
        await channel.open()

        # Sent before pairing: held until the trickle channel exists
        await channel.send(Candidate(make_candidate(1)))
        pairing = asyncio.create_task(channel.send(Offer("v=0 client")))

        assert await receive(host_stream) == [Envelope("C1", Offer("v=0 client"))]
        await host.send(Envelope("C1", Answer("v=0 host")))
        await pairing

        assert channel.code == "C1"
        stream = channel.messages()
        assert await receive(stream) == [Answer("v=0 host")]
        assert await receive(host_stream) == [Envelope("C1", Candidate(make_candidate(1)))]

        await host.send(Envelope("C1", Candidate(make_candidate(2))))
        assert await receive(stream) == [Candidate(make_candidate(2))]

        await channel.send(Candidate(None))
        assert await receive(host_stream) == [Envelope("C1", Candidate(None))]

        await channel.close()
        assert channel.closed

    @pytest.mark.asyncio
    async def test_no_host_available(self, rendezvous_client: RendezvousClient) -> None:
        channel = RendezvousChannel(rendezvous_client, FakeRendezvous().connect)

        with pytest.raises(RendezvousExhausted):
            await channel.send(Offer("v=0"))

    @pytest.mark.asyncio
    async def test_closed_channel_rejects_send(self, rendezvous_client: RendezvousClient) -> None:
        channel = RendezvousChannel(rendezvous_client, FakeRendezvous().connect)
        await channel.close()

        with pytest.raises(ChannelUnavailable):
            await channel.send(Offer("v=0"))
        assert [message async for message in channel.messages()] == []


class TestWebSocketChannel:
    """Test the websocket channel against a local server."""

    @pytest.mark.asyncio
    async def test_round_trip_with_subprotocol(self) -> None:
        seen = {}

        async def echo(ws: ServerConnection) -> None:
            seen["subprotocol"] = ws.subprotocol
            seen["path"] = ws.request.path
            async for raw in ws:
                await ws.send(raw)

        async with serve(echo, "127.0.0.1", 0, subprotocols=["livestream"]) as server:
            port = server.sockets[0].getsockname()[1]
            connector = websocket_connector(open_timeout=2.0)

            channel = await connector(f"ws://127.0.0.1:{port}/ws/client?code=C1", ENVELOPE_CODEC)
            await channel.send(Envelope("C1", Candidate(make_candidate(1))))

            assert await receive(channel.messages()) == [Envelope("C1", Candidate(make_candidate(1)))]
            assert seen == {"subprotocol": "livestream", "path": "/ws/client?code=C1"}

            await channel.close()
            await channel.close()
            assert channel.closed

    @pytest.mark.asyncio
    async def test_initial_payload_sent_on_open(self) -> None:
        received = asyncio.get_running_loop().create_future()

        async def first_message(ws: ServerConnection) -> None:
            received.set_result(await ws.recv())

        async with serve(first_message, "127.0.0.1", 0, subprotocols=["livestream"]) as server:
            port = server.sockets[0].getsockname()[1]
            channel = WebSocketChannel(f"ws://127.0.0.1:{port}/", initial_payload=Offer("v=0"))
            await channel.open()

            assert await asyncio.wait_for(received, 2.0) == '{"type": "offer", "sdp": "v=0"}'
            await channel.close()

    @pytest.mark.asyncio
    async def test_binary_frame_is_violation(self) -> None:
        async def binary(ws: ServerConnection) -> None:
            await ws.send(b"\x00\x01")
            await ws.wait_closed()

        async with serve(binary, "127.0.0.1", 0, subprotocols=["livestream"]) as server:
            port = server.sockets[0].getsockname()[1]
            channel = WebSocketChannel(f"ws://127.0.0.1:{port}/")
            await channel.open()

            with pytest.raises(ProtocolViolation):
                await receive(channel.messages())
            assert channel.closed

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self) -> None:
        channel = WebSocketChannel("ws://127.0.0.1:1/", open_timeout=2.0)

        with pytest.raises(ChannelUnavailable):
            await channel.open()
        assert channel.closed

    @pytest.mark.asyncio
    async def test_send_before_open(self) -> None:
        channel = WebSocketChannel("ws://127.0.0.1:1/")

        with pytest.raises(ChannelUnavailable):
            await channel.send(Offer("v=0"))
