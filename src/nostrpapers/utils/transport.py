"""WebSocket transport to Nostr relays.

[open_relay_socket][nostrpapers.utils.transport.open_relay_socket] opens an
aiohttp WebSocket to a relay and wraps it in a
[RelaySocket][nostrpapers.utils.transport.RelaySocket] that exchanges NIP-01
messages as JSON arrays.

Note:
    ``wss://`` relays are first tried with full certificate verification.
    Only when that fails with a certificate error and ``allow_insecure=True``
    is a second attempt made with verification disabled. Overlay hosts
    (``.onion``, ``.i2p``, ``.loki``) are reached through the SOCKS proxy at
    ``proxy_url``; the overlay provides encryption, so no fallback is tried.

Examples:
    ```python
    socket = await open_relay_socket(Relay("wss://relay.example.com"), timeout=10.0)
    await socket.send(["REQ", "sub1", {"kinds": [30023], "limit": 10}])
    message = await socket.receive()
    await socket.close()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
from typing import Any, Final, Protocol

import aiohttp
from aiohttp_socks import ProxyConnector

from nostrpapers.models.relay import Relay  # noqa: TC001


DEFAULT_TIMEOUT: Final[float] = 10.0

_WS_HEARTBEAT = 30.0
_WS_CLOSE_TIMEOUT = 5.0
_TERMINAL_FRAMES = frozenset(
    {aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR}
)

logger = logging.getLogger("utils.transport")


class MessageSocket(Protocol):
    """The transport surface a relay connection depends on."""

    async def send(self, message: list[Any]) -> None: ...

    async def receive(self) -> list[Any] | None: ...

    async def close(self) -> None: ...


class SocketFactory(Protocol):
    async def __call__(
        self,
        relay: Relay,
        *,
        timeout: float,  # noqa: ASYNC109
        proxy_url: str | None,
        allow_insecure: bool,
    ) -> MessageSocket: ...


class RelaySocket:
    """An open WebSocket to one relay, speaking JSON-array frames.

    Owns both the WebSocket and the ``aiohttp.ClientSession`` that created
    it; [close()][nostrpapers.utils.transport.RelaySocket.close] releases both.
    """

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        session: aiohttp.ClientSession,
        url: str,
        close_timeout: float = _WS_CLOSE_TIMEOUT,
    ) -> None:
        self._ws = ws
        self._session = session
        self._url = url
        self._close_timeout = close_timeout

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, message: list[Any]) -> None:
        """Send one frame.

        Raises:
            ConnectionResetError: If the socket is closing or closed.
            aiohttp.ClientError: On transport failure.
        """
        await self._ws.send_str(json.dumps(message, separators=(",", ":"), ensure_ascii=False))

    async def receive(self) -> list[Any] | None:
        """Wait for the next JSON-array frame.

        Frames that are not valid JSON arrays are logged and skipped.

        Returns:
            The decoded frame, or ``None`` once the connection is closed or
            has failed.
        """
        while True:
            msg = await self._ws.receive()
            if msg.type in _TERMINAL_FRAMES:
                return None
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            try:
                frame = json.loads(msg.data)
            except ValueError:
                logger.debug("frame_not_json relay=%s", self._url)
                continue
            if isinstance(frame, list) and frame:
                return frame
            logger.debug("frame_not_array relay=%s", self._url)

    async def close(self) -> None:
        """Close the WebSocket and its session, bounded by the close timeout."""
        # Teardown of a dead connection can raise anything aiohttp surfaces.
        with contextlib.suppress(Exception):
            await asyncio.wait_for(self._ws.close(), timeout=self._close_timeout)
        with contextlib.suppress(Exception):
            await asyncio.wait_for(self._session.close(), timeout=self._close_timeout)


def _insecure_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


async def _connect(
    url: str,
    timeout: float,  # noqa: ASYNC109
    ssl_context: ssl.SSLContext | bool,  # noqa: FBT001
    proxy_url: str | None,
) -> RelaySocket:
    connector: aiohttp.BaseConnector
    if proxy_url:
        connector = ProxyConnector.from_url(proxy_url, ssl=ssl_context)
    else:
        connector = aiohttp.TCPConnector(ssl=ssl_context)
    session = aiohttp.ClientSession(connector=connector)

    try:
        async with asyncio.timeout(timeout):
            ws = await session.ws_connect(url, heartbeat=_WS_HEARTBEAT)
    except BaseException:
        await session.close()
        raise

    return RelaySocket(ws, session, url)


async def open_relay_socket(
    relay: Relay,
    *,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
    proxy_url: str | None = None,
    allow_insecure: bool = False,
) -> RelaySocket:
    """Open a WebSocket to ``relay``.

    Args:
        relay: Target relay.
        timeout: Seconds allowed for the opening handshake.
        proxy_url: SOCKS proxy URL, required for overlay hosts.
        allow_insecure: Retry ``wss://`` without certificate verification
            after a certificate error.

    Returns:
        A connected [RelaySocket][nostrpapers.utils.transport.RelaySocket].

    Raises:
        ValueError: If an overlay relay is requested without ``proxy_url``.
        TimeoutError: If the handshake exceeds ``timeout``.
        aiohttp.ClientError: If the connection or upgrade fails.
        OSError: On lower-level network failures.
    """
    if relay.is_overlay:
        if proxy_url is None:
            raise ValueError(f"proxy_url required for overlay relay: {relay.url}")
        logger.debug("proxy_connecting relay=%s", relay.url)
        return await _connect(relay.url, timeout, _insecure_context(), proxy_url)

    try:
        return await _connect(relay.url, timeout, True, None)
    except aiohttp.ClientConnectorCertificateError as e:
        if not allow_insecure:
            raise
        logger.debug("ssl_fallback_insecure relay=%s error=%s", relay.url, e)

    return await _connect(relay.url, timeout, _insecure_context(), None)
