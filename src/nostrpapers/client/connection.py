"""
One logical relay endpoint and its connection state machine.

A [RelayConnection][nostrpapers.client.connection.RelayConnection] owns a
single WebSocket to its relay. A background reader task decodes incoming
frames and routes them: ``OK`` frames resolve pending publishes by event
id; ``EVENT``, ``EOSE`` and ``CLOSED`` frames go to the subscription they
name. Publishes and subscriptions from concurrent callers share the socket.

State transitions:

```text
DISCONNECTED / ERROR --connect()--> CONNECTING
CONNECTING  --handshake ok-->     CONNECTED
CONNECTING  --handshake failed--> ERROR
CONNECTED   --disconnect()-->     DISCONNECTED
CONNECTED   --transport failure-> ERROR
```

Transitions are serialized by a per-connection ``asyncio.Lock``, so two
concurrent ``connect()`` calls on the same URL never race. Nothing leaves
``ERROR`` or ``DISCONNECTED`` on its own; reconnecting is an explicit new
``connect()``.

See Also:
    [RelayPool][nostrpapers.client.pool.RelayPool]: The only owner of
        connections; all state changes are driven through it.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import ClassVar

import aiohttp

from nostrpapers.core.exceptions import RelayTimeout, RelayUnreachable
from nostrpapers.core.logger import Logger
from nostrpapers.core.metrics import RELAY_STATE_TRANSITIONS
from nostrpapers.models.constants import ConnectionState
from nostrpapers.models.event import Filter, SignedEvent
from nostrpapers.models.relay import Relay
from nostrpapers.nips.nip01 import (
    RelayMessage,
    RelayMessageType,
    close_message,
    event_message,
    parse_relay_message,
    req_message,
)
from nostrpapers.nips.nip11 import RelayInfo  # noqa: TC001
from nostrpapers.utils.transport import (
    DEFAULT_TIMEOUT,
    MessageSocket,
    SocketFactory,
    open_relay_socket,
)


EventCallback = Callable[[SignedEvent], None]
EndCallback = Callable[[str], None]

_TRANSPORT_ERRORS = (OSError, aiohttp.ClientError)


@dataclass(slots=True)
class _Subscription:
    filters: tuple[Filter, ...]
    on_event: EventCallback
    on_end: EndCallback | None = None


class RelayConnection:
    """Connection state, pending publishes and subscriptions of one relay.

    Attributes:
        relay: The relay this connection talks to.
        server_info: NIP-11 document fetched after connecting, if any.
    """

    _ALLOWED: ClassVar[dict[ConnectionState, frozenset[ConnectionState]]] = {
        ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
        ConnectionState.ERROR: frozenset({ConnectionState.CONNECTING}),
        ConnectionState.CONNECTING: frozenset(
            {ConnectionState.CONNECTED, ConnectionState.ERROR}
        ),
        ConnectionState.CONNECTED: frozenset(
            {ConnectionState.DISCONNECTED, ConnectionState.ERROR}
        ),
    }

    def __init__(
        self,
        relay: Relay,
        *,
        socket_factory: SocketFactory = open_relay_socket,
        connect_timeout: float = DEFAULT_TIMEOUT,
        proxy_url: str | None = None,
        allow_insecure: bool = False,
        verify_events: bool = True,
    ) -> None:
        self.relay = relay
        self.server_info: RelayInfo | None = None

        self._socket_factory = socket_factory
        self._connect_timeout = connect_timeout
        self._proxy_url = proxy_url
        self._allow_insecure = allow_insecure
        self._verify_events = verify_events

        self._state = ConnectionState.DISCONNECTED
        self._last_error: str | None = None
        self._lock = asyncio.Lock()
        self._socket: MessageSocket | None = None
        self._reader: asyncio.Task[None] | None = None
        self._pending_ok: dict[str, list[asyncio.Future[tuple[bool, str]]]] = {}
        self._subscriptions: dict[str, _Subscription] = {}
        self._logger = Logger("relay").bind(url=relay.url)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self.relay.url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def last_error(self) -> str | None:
        """Reason for the most recent transition to ``ERROR``."""
        return self._last_error

    @property
    def subscriptions(self) -> Mapping[str, tuple[Filter, ...]]:
        """Active subscription ids and their filters (read-only view)."""
        return MappingProxyType({sid: sub.filters for sid, sub in self._subscriptions.items()})

    # -------------------------------------------------------------------------
    # State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, new: ConnectionState) -> None:
        if new not in self._ALLOWED[self._state]:
            raise RuntimeError(f"Illegal relay state transition {self._state} -> {new}")
        self._logger.debug("relay_state_changed", old=self._state, new=new)
        self._state = new
        RELAY_STATE_TRANSITIONS.labels(state=new).inc()

    async def connect(self) -> ConnectionState:
        """Open the socket; returns the resulting state (``CONNECTED`` or ``ERROR``).

        A no-op when already connected. Transport failures never raise; the
        reason is kept in [last_error][nostrpapers.client.connection.RelayConnection.last_error].
        """
        async with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return self._state

            self._set_state(ConnectionState.CONNECTING)
            try:
                socket = await self._socket_factory(
                    self.relay,
                    timeout=self._connect_timeout,
                    proxy_url=self._proxy_url,
                    allow_insecure=self._allow_insecure,
                )
            except asyncio.CancelledError:
                self._last_error = "cancelled"
                self._set_state(ConnectionState.ERROR)
                raise
            except (*_TRANSPORT_ERRORS, ValueError) as e:
                self._last_error = str(e) or type(e).__name__
                self._set_state(ConnectionState.ERROR)
                self._logger.warning("relay_connect_failed", error=self._last_error)
                return self._state

            self._socket = socket
            self._last_error = None
            self._set_state(ConnectionState.CONNECTED)
            self._reader = asyncio.create_task(
                self._read_loop(socket), name=f"relay-reader:{self.url}"
            )
            self._logger.info("relay_connected")
            return self._state

    async def disconnect(self) -> None:
        """Close the socket if connected. Idempotent."""
        async with self._lock:
            if self._state is not ConnectionState.CONNECTED:
                return
            self._set_state(ConnectionState.DISCONNECTED)
            await self._teardown("disconnected")
            self._logger.info("relay_disconnected")

    async def _fail(self, socket: MessageSocket, reason: str) -> None:
        """Move ``CONNECTED -> ERROR`` after a transport failure on ``socket``."""
        async with self._lock:
            if self._state is not ConnectionState.CONNECTED or self._socket is not socket:
                return
            self._last_error = reason
            self._set_state(ConnectionState.ERROR)
            await self._teardown(reason)
            self._logger.warning("relay_error", error=reason)

    async def _teardown(self, reason: str) -> None:
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

        for futures in self._pending_ok.values():
            for future in futures:
                if not future.done():
                    future.set_exception(RelayUnreachable(self.url, reason))
        self._pending_ok.clear()

        subscriptions, self._subscriptions = self._subscriptions, {}
        for sub in subscriptions.values():
            self._notify_end(sub, reason)

        socket, self._socket = self._socket, None
        if socket is not None:
            await socket.close()

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def _read_loop(self, socket: MessageSocket) -> None:
        try:
            while (frame := await socket.receive()) is not None:
                self._dispatch(frame)
            reason = "connection closed by relay"
        except _TRANSPORT_ERRORS as e:
            reason = str(e) or type(e).__name__
        except Exception as e:  # Intentionally broad: a dead reader must not stay CONNECTED
            reason = f"reader failed: {e!r}"
            self._logger.exception("relay_reader_failed", error=repr(e))
        await self._fail(socket, reason)

    def _dispatch(self, frame: list[object]) -> None:
        try:
            msg = parse_relay_message(frame)
        except ValueError as e:
            self._logger.debug("relay_frame_ignored", error=str(e))
            return

        match msg.type:
            case RelayMessageType.OK:
                self._on_ok(msg)
            case RelayMessageType.EVENT:
                self._on_event(msg)
            case RelayMessageType.EOSE:
                sub = self._subscriptions.get(msg.subscription_id or "")
                if sub is not None:
                    self._notify_end(sub, "eose")
            case RelayMessageType.CLOSED:
                sub = self._subscriptions.pop(msg.subscription_id or "", None)
                if sub is not None:
                    self._notify_end(sub, f"closed: {msg.message}")
            case RelayMessageType.NOTICE:
                self._logger.info("relay_notice", message=msg.message)
            case RelayMessageType.AUTH:
                self._logger.debug("relay_auth_ignored")

    def _on_ok(self, msg: RelayMessage) -> None:
        for future in self._pending_ok.get(msg.event_id or "", []):
            if not future.done():
                future.set_result((bool(msg.accepted), msg.message))

    def _on_event(self, msg: RelayMessage) -> None:
        sub = self._subscriptions.get(msg.subscription_id or "")
        if sub is None or msg.event is None:
            return
        if self._verify_events and not msg.event.verify():
            self._logger.debug("relay_event_invalid", id=msg.event.id)
            return
        try:
            sub.on_event(msg.event)
        except Exception:  # Intentionally broad: a caller's callback must not kill the reader
            self._logger.exception("subscription_callback_failed", subscription=msg.subscription_id)

    def _notify_end(self, sub: _Subscription, reason: str) -> None:
        if sub.on_end is None:
            return
        try:
            sub.on_end(reason)
        except Exception:  # Intentionally broad: a caller's callback must not kill the reader
            self._logger.exception("subscription_callback_failed", reason=reason)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def _send(self, message: list[object]) -> None:
        socket = self._socket
        if self._state is not ConnectionState.CONNECTED or socket is None:
            raise RelayUnreachable(self.url, f"not connected (state={self._state})")
        try:
            await socket.send(message)
        except _TRANSPORT_ERRORS as e:
            reason = str(e) or type(e).__name__
            await self._fail(socket, reason)
            raise RelayUnreachable(self.url, reason) from e

    async def send_event(self, event: SignedEvent, timeout: float) -> bool:  # noqa: ASYNC109
        """Publish ``event`` and wait for the relay's ``OK``.

        Returns:
            The relay's ``accepted`` flag.

        Raises:
            RelayUnreachable: If not connected or the send fails.
            RelayTimeout: If no ``OK`` arrives within ``timeout`` seconds.
        """
        future: asyncio.Future[tuple[bool, str]] = asyncio.get_running_loop().create_future()
        waiters = self._pending_ok.setdefault(event.id, [])
        waiters.append(future)
        try:
            await self._send(event_message(event))
            async with asyncio.timeout(timeout):
                accepted, message = await future
        except TimeoutError:
            raise RelayTimeout(self.url, f"no OK for {event.id} within {timeout}s") from None
        finally:
            if future.done() and not future.cancelled():
                future.exception()  # mark retrieved when a teardown failed it before the await
            if future in waiters:
                waiters.remove(future)
            if not waiters and self._pending_ok.get(event.id) is waiters:
                del self._pending_ok[event.id]

        if not accepted:
            self._logger.warning("relay_rejected_event", id=event.id, message=message)
        return accepted

    async def subscribe(
        self,
        subscription_id: str,
        filters: Iterable[Filter],
        on_event: EventCallback,
        on_end: EndCallback | None = None,
    ) -> None:
        """Register a subscription and send its ``REQ``.

        ``on_end`` is called with ``"eose"`` at end of stored events, with
        ``"closed: <message>"`` when the relay closes it, and with the
        failure reason if the connection goes away.

        Raises:
            RelayUnreachable: If not connected or the send fails.
        """
        sub = _Subscription(tuple(filters), on_event, on_end)
        self._subscriptions[subscription_id] = sub
        try:
            await self._send(req_message(subscription_id, sub.filters))
        except RelayUnreachable:
            self._subscriptions.pop(subscription_id, None)
            raise

    async def unsubscribe(self, subscription_id: str) -> bool:
        """Drop a subscription and send ``CLOSE`` on a best-effort basis.

        Returns:
            Whether the subscription was registered.
        """
        if self._subscriptions.pop(subscription_id, None) is None:
            return False
        if self._state is ConnectionState.CONNECTED:
            try:
                await self._send(close_message(subscription_id))
            except RelayUnreachable as e:
                self._logger.debug(
                    "relay_close_failed", subscription=subscription_id, error=e.reason
                )
        return True

    def __repr__(self) -> str:
        return f"RelayConnection(url={self.url!r}, state={self._state.value})"
