"""Rendezvous service client and the request/response channel shape.

The rendezvous contract as consumed here:

    POST /api/host               -> 201 text pairing code | 401/409 host already registered
    POST /api/client  (offer)    -> 201 {"sdp": answer, "code": code} | 404 no host available
    /ws/host?code=...            persistent host channel (envelope messages)
    /ws/client?code=...          per-pairing client channel (plain messages)
"""

import asyncio
from typing import Any, AsyncIterator, Optional
from urllib.parse import urlencode

import httpx
import structlog

from livesignal.core.constants import SignalingConstants
from livesignal.core.errors import (
    ChannelUnavailable,
    HostAlreadyRegistered,
    ProtocolViolation,
    RendezvousExhausted,
    SignalingError,
)
from livesignal.signaling.channel import ChannelBase, Connector, SignalingChannel
from livesignal.signaling.messages import MESSAGE_CODEC, Answer, Offer, message_from_dict, message_to_dict


ROLE_HOST = "host"
ROLE_CLIENT = "client"


class RendezvousClient:
    """HTTP client for the rendezvous matching service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = SignalingConstants.HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        """Initialize rendezvous client.

        Args:
            base_url: http:// or https:// base URL of the service
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=timeout, transport=transport)
        self._logger = structlog.get_logger(__name__).bind(rendezvous=self._base_url)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def register_host(self) -> str:
        """Register as the host.

        Returns:
            Pairing code for the host channel

        Raises:
            HostAlreadyRegistered: If a host already holds the slot (401/409)
            ChannelUnavailable: If the service cannot be reached
            ProtocolViolation: On an unexpected response
        """
        response = await self._post(SignalingConstants.HOST_PATH)

        if response.status_code == SignalingConstants.STATUS_CREATED:
            code = response.text.strip()
            if not code:
                raise ProtocolViolation("Rendezvous returned an empty host code")
            self._logger.info("Registered as host", code=code)
            return code

        if response.status_code in (SignalingConstants.STATUS_UNAUTHORIZED, SignalingConstants.STATUS_CONFLICT):
            raise HostAlreadyRegistered("A host is already registered", {"status": response.status_code})

        raise ProtocolViolation(
            "Unexpected rendezvous status",
            {"path": SignalingConstants.HOST_PATH, "status": response.status_code}
        )

    async def request_pairing(self, offer: Offer) -> tuple[Answer, str]:
        """Submit a client offer and wait for the host's answer.

        Args:
            offer: Client session offer

        Returns:
            Tuple of (answer, pairing code)

        Raises:
            RendezvousExhausted: If no host is available (404)
            ChannelUnavailable: If the service cannot be reached
            ProtocolViolation: On an unexpected or malformed response
        """
        response = await self._post(SignalingConstants.CLIENT_PATH, json=message_to_dict(offer))

        if response.status_code == SignalingConstants.STATUS_NOT_FOUND:
            raise RendezvousExhausted("No host is available", {"status": response.status_code})

        if response.status_code != SignalingConstants.STATUS_CREATED:
            raise ProtocolViolation(
                "Unexpected rendezvous status",
                {"path": SignalingConstants.CLIENT_PATH, "status": response.status_code}
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolViolation("Pairing response is not valid JSON", {"error": str(e)})

        if not isinstance(data, dict):
            raise ProtocolViolation("Pairing response must be a JSON object")

        code = data.get("code")
        if not isinstance(code, str) or not code:
            raise ProtocolViolation("Pairing response is missing its code")

        answer = self._parse_answer(data.get("sdp"))
        self._logger.info("Paired with host", code=code)
        return answer, code

    def channel_url(self, role: str, code: str) -> str:
        """Websocket URL of the channel scoped to a pairing code.

        Args:
            role: "host" or "client"
            code: Pairing code

        Returns:
            ws:// or wss:// URL
        """
        if role == ROLE_HOST:
            path = SignalingConstants.HOST_CHANNEL_PATH
        elif role == ROLE_CLIENT:
            path = SignalingConstants.CLIENT_CHANNEL_PATH
        else:
            raise ValueError(f"Unknown rendezvous role: {role}")

        scheme, _, rest = self._base_url.partition("://")
        ws_scheme = "wss" if scheme == "https" else "ws"
        return f"{ws_scheme}://{rest}{path}?{urlencode({'code': code})}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RendezvousClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.post(path, **kwargs)
        except httpx.TransportError as e:
            raise ChannelUnavailable(f"Rendezvous service unreachable: {e}", {"path": path})

    @staticmethod
    def _parse_answer(sdp: Any) -> Answer:
        # The answer arrives either as a bare SDP string or as a description object
        if isinstance(sdp, str) and sdp:
            return Answer(sdp)
        if isinstance(sdp, dict):
            message = message_from_dict(sdp)
            if isinstance(message, Answer):
                return message
        raise ProtocolViolation("Pairing response does not carry an answer")


_CLOSED = object()


class RendezvousChannel(ChannelBase):
    """Request/response signaling: pair over HTTP, then trickle over a scoped channel.

    The first Offer sent performs the pairing request and the returned answer
    becomes the first inbound message. A client channel scoped to the returned
    code is then opened and carries all later traffic in both directions.
    Messages sent before that channel exists are held and flushed in send order.
    """

    def __init__(self, rendezvous: RendezvousClient, connector: Connector) -> None:
        super().__init__(codec=MESSAGE_CODEC, name="rendezvous")
        self._rendezvous = rendezvous
        self._connector = connector
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()
        self._held: list[Any] = []
        self._trickle: Optional[SignalingChannel] = None
        self._pump_task: Optional[asyncio.Task[None]] = None
        self._code: Optional[str] = None
        self._send_lock = asyncio.Lock()

    @property
    def code(self) -> Optional[str]:
        """Pairing code, once the rendezvous has matched this client."""
        return self._code

    async def open(self) -> None:
        # Nothing to connect until the first offer goes out
        self._ensure_open()

    async def send(self, message: Any) -> None:
        self._ensure_open()

        async with self._send_lock:
            if self._trickle is not None:
                await self._trickle.send(message)
            elif self._code is None and isinstance(message, Offer):
                await self._pair(message)
            else:
                self._held.append(message)

    async def messages(self) -> AsyncIterator[Any]:
        while True:
            item = await self._inbound.get()
            if item is _CLOSED:
                return
            if isinstance(item, SignalingError):
                raise item
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._trickle is not None:
            await self._trickle.close()

        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                self._logger.debug("Trickle pump cancelled")

        self._inbound.put_nowait(_CLOSED)

    async def _pair(self, offer: Offer) -> None:
        answer, code = await self._rendezvous.request_pairing(offer)
        self._code = code
        self._inbound.put_nowait(answer)

        url = self._rendezvous.channel_url(ROLE_CLIENT, code)
        self._trickle = await self._connector(url, MESSAGE_CODEC)
        self._pump_task = asyncio.create_task(self._pump(), name=f"rendezvous-pump-{code}")

        held, self._held = self._held, []
        for message in held:
            await self._trickle.send(message)

        self._logger.info("Trickle channel open", code=code, flushed=len(held))

    async def _pump(self) -> None:
        try:
            async for message in self._trickle.messages():
                self._inbound.put_nowait(message)
        except SignalingError as e:
            self._inbound.put_nowait(e)
        finally:
            self._inbound.put_nowait(_CLOSED)
