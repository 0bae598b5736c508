"""Signaling channel contract and shared channel behaviour."""

from abc import abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

import structlog

from livesignal.core.errors import ChannelUnavailable, ProtocolViolation
from livesignal.signaling.messages import MESSAGE_CODEC, Codec


@runtime_checkable
class SignalingChannel(Protocol):
    """Reliable, ordered, bidirectional message transport to a rendezvous peer."""

    @property
    def closed(self) -> bool:
        """True once the channel has been closed by either side."""
        ...

    @abstractmethod
    async def open(self) -> None:
        """Establish the connection.

        Raises:
            ChannelUnavailable: If the connection cannot be established
        """
        ...

    @abstractmethod
    async def send(self, message: Any) -> None:
        """Send one message; messages reach the peer in send order.

        Raises:
            ChannelUnavailable: If the channel is closed or the transport fails
        """
        ...

    @abstractmethod
    def messages(self) -> AsyncIterator[Any]:
        """Iterate over inbound messages in receipt order.

        The iterator ends when the channel closes.

        Raises:
            ProtocolViolation: If the peer sent a malformed message (the channel is closed)
            ChannelUnavailable: If the transport fails abruptly
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources. Safe to call more than once."""
        ...


# Opens a channel to a URL with the given codec
Connector = Callable[[str, Codec], Awaitable[SignalingChannel]]


class ChannelBase:
    """Common state for channel implementations."""

    def __init__(self, codec: Codec = MESSAGE_CODEC, name: str = "channel") -> None:
        """Initialize channel state.

        Args:
            codec: Encoder/decoder for this channel's message shape
            name: Channel name for log fields
        """
        self._codec = codec
        self._name = name
        self._closed = False
        self._logger = structlog.get_logger(__name__).bind(channel=name, codec=codec.name)

    @property
    def codec(self) -> Codec:
        return self._codec

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise ChannelUnavailable("Channel is closed", {"channel": self._name})

    async def _decode(self, raw: Union[str, bytes]) -> Any:
        """Decode one inbound frame, closing the channel on schema failure.

        Raises:
            ProtocolViolation: If the frame does not match the schema
        """
        try:
            return self._codec.decode(raw)
        except ProtocolViolation as e:
            self._logger.error("Malformed message, closing channel", error=str(e))
            await self.close()
            raise

    async def __aenter__(self) -> "ChannelBase":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Optional[type], exc: Optional[BaseException], tb: Any) -> None:
        await self.close()
