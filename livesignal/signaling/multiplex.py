"""Per-pairing view of a shared host channel."""

import asyncio
from typing import Any, AsyncIterator

from livesignal.core.errors import ChannelUnavailable
from livesignal.signaling.channel import ChannelBase, SignalingChannel
from livesignal.signaling.messages import MESSAGE_CODEC, Envelope


class ScopedChannel(ChannelBase):
    """Channel for one rendezvous code multiplexed over the host channel.

    Outbound messages are wrapped in an Envelope carrying the code. Inbound
    traffic is routed by the host through the SessionRegistry, so this stream
    only reports closure. Closing a scoped channel leaves the shared one open.
    """

    def __init__(self, shared: SignalingChannel, code: str) -> None:
        super().__init__(codec=MESSAGE_CODEC, name=f"scoped:{code}")
        self._shared = shared
        self._code = code
        self._closed_event = asyncio.Event()

    @property
    def code(self) -> str:
        return self._code

    async def send(self, message: Any) -> None:
        self._ensure_open()
        if self._shared.closed:
            raise ChannelUnavailable("Host channel is closed", {"code": self._code})
        await self._shared.send(Envelope(self._code, message))

    async def messages(self) -> AsyncIterator[Any]:
        await self._closed_event.wait()
        for message in ():
            yield message

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()
        self._logger.debug("Scoped channel closed")
