"""In-process signaling channel pair."""

import asyncio
from typing import Any, AsyncIterator, Optional

from livesignal.core.errors import ChannelUnavailable
from livesignal.signaling.channel import ChannelBase
from livesignal.signaling.messages import MESSAGE_CODEC, Codec


class MemoryChannel(ChannelBase):
    """One end of an in-process channel.

    Messages cross as encoded text so both codecs run exactly as they would on
    a socket. Closing either end ends the other end's inbound stream.
    """

    def __init__(self, codec: Codec = MESSAGE_CODEC, name: str = "memory") -> None:
        super().__init__(codec=codec, name=name)
        self._inbound: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._peer: Optional["MemoryChannel"] = None
        self._peer_closed = False

    @classmethod
    def pair(
        cls,
        codec_a: Codec = MESSAGE_CODEC,
        codec_b: Optional[Codec] = None,
        name: str = "memory"
    ) -> tuple["MemoryChannel", "MemoryChannel"]:
        """Create two connected endpoints.

        Args:
            codec_a: Codec for the first endpoint
            codec_b: Codec for the second endpoint (defaults to codec_a)
            name: Base name for log fields

        Returns:
            Tuple of (first, second) endpoints
        """
        a = cls(codec=codec_a, name=f"{name}-a")
        b = cls(codec=codec_b or codec_a, name=f"{name}-b")
        a._peer = b
        b._peer = a
        return a, b

    async def send(self, message: Any) -> None:
        await self.send_raw(self._codec.encode(message))

    async def send_raw(self, raw: str) -> None:
        """Deliver pre-encoded text to the peer (bypasses the codec)."""
        self._ensure_open()
        if self._peer_closed or self._peer is None:
            raise ChannelUnavailable("Peer end is closed", {"channel": self._name})
        self._peer._inbound.put_nowait(raw)

    async def messages(self) -> AsyncIterator[Any]:
        while True:
            raw = await self._inbound.get()
            if raw is None:
                return
            yield await self._decode(raw)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inbound.put_nowait(None)

        if self._peer is not None and not self._peer._peer_closed:
            self._peer._peer_closed = True
            self._peer._inbound.put_nowait(None)

        self._logger.debug("Memory channel closed")
