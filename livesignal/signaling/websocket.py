"""Persistent duplex signaling channel over a websocket."""

import asyncio
from typing import Any, AsyncIterator, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidHandshake, InvalidURI

from livesignal.core.constants import SignalingConstants
from livesignal.core.errors import ChannelUnavailable, ProtocolViolation
from livesignal.signaling.channel import ChannelBase, Connector, SignalingChannel
from livesignal.signaling.messages import MESSAGE_CODEC, Codec


class WebSocketChannel(ChannelBase):
    """Signaling channel backed by one websocket connection."""

    def __init__(
        self,
        url: str,
        codec: Codec = MESSAGE_CODEC,
        open_timeout: float = SignalingConstants.OPEN_TIMEOUT,
        subprotocol: Optional[str] = SignalingConstants.SUBPROTOCOL,
        initial_payload: Optional[Any] = None
    ) -> None:
        """Initialize websocket channel.

        Args:
            url: ws:// or wss:// endpoint
            codec: Message codec for this endpoint
            open_timeout: Seconds allowed for connect + handshake
            subprotocol: Websocket sub-protocol to offer (None to offer none)
            initial_payload: Message sent immediately after the connection opens
        """
        super().__init__(codec=codec, name=url)
        self._url = url
        self._open_timeout = open_timeout
        self._subprotocol = subprotocol
        self._initial_payload = initial_payload
        self._ws: Optional[ClientConnection] = None
        self._send_lock = asyncio.Lock()

    @property
    def url(self) -> str:
        return self._url

    async def open(self) -> None:
        """Connect to the endpoint.

        Raises:
            ChannelUnavailable: On timeout, refused connection or rejected handshake
        """
        if self._ws is not None:
            return
        self._ensure_open()

        subprotocols = [self._subprotocol] if self._subprotocol else None

        try:
            async with asyncio.timeout(self._open_timeout):
                self._ws = await connect(
                    self._url,
                    subprotocols=subprotocols,
                    open_timeout=self._open_timeout
                )
        except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as e:
            self._closed = True
            raise ChannelUnavailable(f"Failed to open signaling channel: {e}", {"url": self._url})

        self._logger.info("Signaling channel open", subprotocol=self._ws.subprotocol)

        if self._initial_payload is not None:
            await self.send(self._initial_payload)

    async def send(self, message: Any) -> None:
        self._ensure_open()
        if self._ws is None:
            raise ChannelUnavailable("Signaling channel is not open", {"url": self._url})

        raw = self._codec.encode(message)

        async with self._send_lock:
            try:
                await self._ws.send(raw)
            except ConnectionClosed as e:
                raise ChannelUnavailable(f"Signaling channel lost: {e}", {"url": self._url})

    async def messages(self) -> AsyncIterator[Any]:
        if self._ws is None:
            raise ChannelUnavailable("Signaling channel is not open", {"url": self._url})

        try:
            async for raw in self._ws:
                if not isinstance(raw, str):
                    await self.close()
                    raise ProtocolViolation("Binary frames are not part of the signaling schema")
                yield await self._decode(raw)
        except ConnectionClosedError as e:
            self._closed = True
            raise ChannelUnavailable(f"Signaling channel closed abruptly: {e}", {"url": self._url})

    async def close(self) -> None:
        if self._closed and (self._ws is None or self._ws.close_code is not None):
            return
        self._closed = True

        if self._ws is not None:
            await self._ws.close()
            self._logger.info("Signaling channel closed", close_code=self._ws.close_code)


def websocket_connector(
    open_timeout: float = SignalingConstants.OPEN_TIMEOUT,
    subprotocol: Optional[str] = SignalingConstants.SUBPROTOCOL
) -> Connector:
    """Build a connector that opens WebSocketChannel instances.

    Args:
        open_timeout: Seconds allowed for each connection
        subprotocol: Websocket sub-protocol to offer

    Returns:
        Coroutine function ``(url, codec) -> opened channel``
    """

    async def connect_channel(url: str, codec: Codec) -> SignalingChannel:
        channel = WebSocketChannel(url, codec, open_timeout=open_timeout, subprotocol=subprotocol)
        await channel.open()
        return channel

    return connect_channel
