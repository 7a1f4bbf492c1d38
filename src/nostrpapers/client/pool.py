"""
Fan-out publish, query and subscribe across independent relays.

[RelayPool][nostrpapers.client.pool.RelayPool] owns one
[RelayConnection][nostrpapers.client.connection.RelayConnection] per relay
URL. Every operation runs against all target relays concurrently and joins
them all; one relay failing, hanging or disagreeing never fails or delays
the outcome for the others beyond its own timeout.

* ``publish`` returns ``{url: bool}`` for every requested URL.
* ``query`` merges what every relay returned into one list, deduplicated by
  event id (first occurrence wins) and ordered newest first.
* ``subscribe`` forwards each delivery as-is; the same event arriving from
  two relays reaches the callback twice.

Examples:
    ```python
    pool = RelayPool.from_yaml("config/client.yaml")

    async with pool:
        results = await pool.publish(paper)   # {'wss://a': True, 'wss://b': False}
        papers = await pool.query([Filter(kinds=(30023,), limit=20)])
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any, Final, TypeVar

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from nostrpapers.core.exceptions import ConnectivityError
from nostrpapers.core.logger import Logger
from nostrpapers.core.metrics import QUERY_DURATION_SECONDS, RELAY_OPERATIONS
from nostrpapers.core.yaml import load_yaml
from nostrpapers.models.constants import ConnectionState
from nostrpapers.models.event import Filter, SignedEvent
from nostrpapers.models.relay import Relay
from nostrpapers.nips.nip01 import new_subscription_id
from nostrpapers.nips.nip11 import RelayInfo, fetch_relay_info
from nostrpapers.utils.transport import SocketFactory, open_relay_socket

from .connection import EventCallback, RelayConnection


T = TypeVar("T")

DEFAULT_RELAYS: Final[tuple[str, ...]] = ("ws://localhost:8080", "wss://relay.example.com")

InfoFetcher = Callable[..., Awaitable[RelayInfo | None]]


# =============================================================================
# Configuration
# =============================================================================


class TimeoutsConfig(BaseModel):
    """Per-relay timeouts in seconds."""

    connect: float = Field(default=10.0, ge=0.1, le=120.0, description="WebSocket handshake")
    publish: float = Field(default=10.0, ge=0.1, le=120.0, description="Wait for OK after EVENT")
    query: float = Field(
        default=5.0,
        ge=0.1,
        le=300.0,
        description="Quiescence bound for a query when the relay sends no EOSE",
    )
    info: float = Field(default=10.0, ge=0.1, le=120.0, description="NIP-11 document fetch")


class RelayRetryConfig(BaseModel):
    """Connection attempts made by the pool for one relay.

    Each retry is a fresh ``ERROR -> CONNECTING`` attempt started by the pool;
    connections never reconnect on their own.
    """

    max_attempts: int = Field(default=1, ge=1, le=10, description="Connection attempts per relay")
    initial_delay: float = Field(default=1.0, ge=0.0, description="Delay before the first retry")
    max_delay: float = Field(default=10.0, ge=0.0, description="Maximum retry delay")
    exponential_backoff: bool = Field(default=True, description="Double the delay each retry")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        initial = info.data.get("initial_delay")
        if initial is not None and v < initial:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial})")
        return v


class RelayPoolConfig(BaseModel):
    """Relay list and transport settings for a [RelayPool][nostrpapers.client.pool.RelayPool]."""

    relays: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RELAYS),
        description="Relays connected by connect() when no URLs are given",
    )
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    retry: RelayRetryConfig = Field(default_factory=RelayRetryConfig)
    proxy_url: str | None = Field(default=None, description="SOCKS proxy for overlay relays")
    allow_insecure: bool = Field(
        default=False, description="Retry wss:// without certificate checks on SSL errors"
    )
    verify_events: bool = Field(default=True, description="Drop incoming events with bad id/sig")
    fetch_server_info: bool = Field(default=True, description="Fetch NIP-11 after connecting")

    @field_validator("relays")
    @classmethod
    def normalize_relays(cls, v: list[str]) -> list[str]:
        normalized: list[str] = []
        for url in v:
            relay_url = Relay(url).url
            if relay_url not in normalized:
                normalized.append(relay_url)
        return normalized


# =============================================================================
# Result Merging
# =============================================================================


def merge_events(batches: Iterable[Iterable[SignedEvent]]) -> list[SignedEvent]:
    """Concatenate per-relay results, drop repeated ids and sort newest first.

    The first occurrence of an id is kept. Ties on ``created_at`` keep their
    concatenation order.
    """
    seen: set[str] = set()
    unique: list[SignedEvent] = []
    for batch in batches:
        for event in batch:
            if event.id not in seen:
                seen.add(event.id)
                unique.append(event)
    unique.sort(key=lambda e: e.created_at, reverse=True)
    return unique


# =============================================================================
# Pool
# =============================================================================


class RelayPool:
    """The set of relay connections and the fan-out operations over them.

    Per-relay failures are converted into recorded outcomes here and never
    raise past the pool.

    Attributes:
        config: Pool configuration (read-only property).
    """

    def __init__(
        self,
        config: RelayPoolConfig | None = None,
        *,
        socket_factory: SocketFactory = open_relay_socket,
        info_fetcher: InfoFetcher = fetch_relay_info,
    ) -> None:
        self._config = config or RelayPoolConfig()
        self._socket_factory = socket_factory
        self._info_fetcher = info_fetcher
        self._connections: dict[str, RelayConnection] = {}
        self._info_fetches: dict[str, asyncio.Task[None]] = {}
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str, **kwargs: Any) -> RelayPool:
        """Create a pool from a YAML file holding a ``RelayPoolConfig`` mapping."""
        return cls.from_dict(load_yaml(config_path), **kwargs)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any], **kwargs: Any) -> RelayPool:
        return cls(config=RelayPoolConfig(**config_dict), **kwargs)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> RelayPoolConfig:
        return self._config

    @property
    def connections(self) -> Mapping[str, RelayConnection]:
        """Connections keyed by normalized URL (read-only view)."""
        return MappingProxyType(self._connections)

    def get(self, url: str) -> RelayConnection | None:
        try:
            return self._connections.get(Relay(url).url)
        except ValueError:
            return None

    def connected_urls(self) -> list[str]:
        return [url for url, conn in self._connections.items() if conn.is_connected]

    def _targets(self, urls: Iterable[str] | None) -> list[str]:
        return list(urls) if urls is not None else list(self._connections)

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    def _retry_delay(self, attempt: int) -> float:
        retry = self._config.retry
        if retry.exponential_backoff:
            delay = retry.initial_delay * (2**attempt)
        else:
            delay = retry.initial_delay * (attempt + 1)
        return float(min(delay, retry.max_delay))

    async def add_relay(self, url: str) -> RelayConnection:
        """Register ``url`` (if new) and connect it.

        A failed connection is still registered, in state ``ERROR``.

        Raises:
            ValueError: If ``url`` is not a valid relay URL.
        """
        relay = Relay(url)
        conn = self._connections.get(relay.url)
        if conn is None:
            conn = RelayConnection(
                relay,
                socket_factory=self._socket_factory,
                connect_timeout=self._config.timeouts.connect,
                proxy_url=self._config.proxy_url,
                allow_insecure=self._config.allow_insecure,
                verify_events=self._config.verify_events,
            )
            self._connections[relay.url] = conn

        await self._connect(conn)
        return conn

    async def _connect(self, conn: RelayConnection) -> None:
        attempts = self._config.retry.max_attempts
        for attempt in range(attempts):
            if await conn.connect() is ConnectionState.CONNECTED:
                break
            if attempt + 1 < attempts:
                delay = self._retry_delay(attempt)
                self._logger.warning(
                    "relay_connect_retry",
                    url=conn.url,
                    attempt=attempt + 1,
                    delay=delay,
                    error=conn.last_error,
                )
                await asyncio.sleep(delay)

        if conn.is_connected and self._config.fetch_server_info and conn.server_info is None:
            await self._ensure_server_info(conn)

    async def _ensure_server_info(self, conn: RelayConnection) -> None:
        """Fetch NIP-11 info for ``conn``, joining a fetch already in flight for its URL."""
        task = self._info_fetches.get(conn.url)
        if task is None:
            task = asyncio.create_task(self._fetch_server_info(conn))
            self._info_fetches[conn.url] = task
            task.add_done_callback(lambda _: self._info_fetches.pop(conn.url, None))
        await asyncio.shield(task)

    async def _fetch_server_info(self, conn: RelayConnection) -> None:
        try:
            info = await self._info_fetcher(
                conn.relay,
                timeout=self._config.timeouts.info,
                proxy_url=self._config.proxy_url,
                allow_insecure=self._config.allow_insecure,
            )
        except Exception as e:  # Intentionally broad: metadata never affects connection state
            self._logger.warning("relay_info_unavailable", url=conn.url, error=repr(e))
            return
        if info is None:
            self._logger.warning("relay_info_unavailable", url=conn.url)
            return
        conn.server_info = info

    async def connect(self, urls: Iterable[str] | None = None) -> dict[str, ConnectionState]:
        """Connect ``urls`` (default: the configured relay list) concurrently.

        Returns:
            The resulting state per URL; invalid URLs are reported as ``ERROR``.
        """
        targets = list(urls) if urls is not None else list(self._config.relays)
        outcomes = await self._fan_out(targets, self.add_relay, "connect")
        states = {
            url: conn.state if conn is not None else ConnectionState.ERROR
            for url, conn in outcomes
        }
        self._logger.info(
            "pool_connected",
            connected=sum(s is ConnectionState.CONNECTED for s in states.values()),
            total=len(states),
        )
        return states

    async def reconnect(self, url: str) -> ConnectionState:
        """Start a fresh connection attempt for a relay in ``ERROR`` or ``DISCONNECTED``."""
        return (await self.add_relay(url)).state

    async def remove_relay(self, url: str) -> bool:
        """Disconnect and forget ``url``. Returns whether it was registered."""
        conn = self.get(url)
        if conn is None:
            return False
        del self._connections[conn.url]
        await conn.disconnect()
        return True

    async def close(self) -> None:
        """Disconnect every relay and clear the pool. Idempotent."""
        connections = list(self._connections.values())
        self._connections.clear()
        if connections:
            await asyncio.gather(*(conn.disconnect() for conn in connections))
            self._logger.info("pool_closed", relays=len(connections))

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    async def _fan_out(
        self,
        targets: list[str],
        call: Callable[[str], Awaitable[T]],
        operation: str,
    ) -> list[tuple[str, T | None]]:
        """Run ``call`` for every target concurrently and join them all.

        An exception escaping one call is logged and recorded as ``None`` for
        that target; siblings keep running.
        """
        outcomes = await asyncio.gather(*(call(url) for url in targets), return_exceptions=True)
        results: list[tuple[str, T | None]] = []
        for url, outcome in zip(targets, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                self._logger.error(f"{operation}_failed", url=url, error=repr(outcome))
                RELAY_OPERATIONS.labels(operation=operation, outcome="error").inc()
                results.append((url, None))
            else:
                results.append((url, outcome))
        return results

    async def publish(
        self, event: SignedEvent, urls: Iterable[str] | None = None
    ) -> dict[str, bool]:
        """Send ``event`` to every target relay and wait for all of them.

        A relay that is unknown or not connected is recorded as ``False``
        without any I/O. A relay that fails, times out or rejects the event
        is recorded as ``False``.

        Returns:
            ``{url: accepted}`` covering every requested URL.
        """
        targets = self._targets(urls)
        outcomes = await self._fan_out(
            targets, lambda url: self._publish_one(url, event), "publish"
        )
        results = {url: bool(accepted) for url, accepted in outcomes}
        self._logger.info(
            "publish_completed",
            id=event.id,
            accepted=sum(results.values()),
            total=len(results),
        )
        return results

    async def _publish_one(self, url: str, event: SignedEvent) -> bool:
        conn = self.get(url)
        if conn is None or not conn.is_connected:
            RELAY_OPERATIONS.labels(operation="publish", outcome="skipped").inc()
            return False
        try:
            accepted = await conn.send_event(event, self._config.timeouts.publish)
        except ConnectivityError as e:
            self._logger.warning("publish_failed", url=url, error=e.reason)
            RELAY_OPERATIONS.labels(operation="publish", outcome="failed").inc()
            return False
        RELAY_OPERATIONS.labels(
            operation="publish", outcome="accepted" if accepted else "rejected"
        ).inc()
        return accepted

    async def query(
        self,
        filters: Iterable[Filter],
        urls: Iterable[str] | None = None,
        *,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[SignedEvent]:
        """Collect stored events matching ``filters`` from every target relay.

        Each relay's subscription ends at ``EOSE`` (or ``CLOSED``) or after
        the quiescence ``timeout`` (default ``timeouts.query``), whichever
        comes first, and is then closed.

        Returns:
            Events deduplicated by id and sorted by ``created_at`` descending.
        """
        filters = tuple(filters)
        quiescence = timeout if timeout is not None else self._config.timeouts.query
        targets = self._targets(urls)

        with QUERY_DURATION_SECONDS.time():
            outcomes = await self._fan_out(
                targets, lambda url: self._query_one(url, filters, quiescence), "query"
            )
        events = merge_events(batch for _, batch in outcomes if batch)
        self._logger.info("query_completed", relays=len(targets), events=len(events))
        return events

    async def _query_one(
        self,
        url: str,
        filters: tuple[Filter, ...],
        quiescence: float,
    ) -> list[SignedEvent]:
        conn = self.get(url)
        if conn is None or not conn.is_connected:
            RELAY_OPERATIONS.labels(operation="query", outcome="skipped").inc()
            return []

        received: list[SignedEvent] = []
        finished = asyncio.Event()
        subscription_id = new_subscription_id()
        try:
            await conn.subscribe(
                subscription_id, filters, received.append, lambda _reason: finished.set()
            )
        except ConnectivityError as e:
            self._logger.warning("query_failed", url=url, error=e.reason)
            RELAY_OPERATIONS.labels(operation="query", outcome="failed").inc()
            return []

        try:
            async with asyncio.timeout(quiescence):
                await finished.wait()
        except TimeoutError:
            self._logger.debug("query_quiescence_timeout", url=url, events=len(received))
        finally:
            await conn.unsubscribe(subscription_id)

        RELAY_OPERATIONS.labels(operation="query", outcome="completed").inc()
        return received

    async def subscribe(
        self,
        filters: Iterable[Filter],
        on_event: EventCallback,
        urls: Iterable[str] | None = None,
    ) -> str:
        """Open one live subscription across the target relays.

        ``on_event`` runs once per delivery per relay; duplicates across
        relays are not filtered. Relays that are not connected or fail to
        accept the ``REQ`` are skipped.

        Returns:
            The subscription id, shared by every relay.
        """
        filters = tuple(filters)
        subscription_id = new_subscription_id()
        targets = self._targets(urls)
        outcomes = await self._fan_out(
            targets,
            lambda url: self._subscribe_one(url, subscription_id, filters, on_event),
            "subscribe",
        )
        self._logger.info(
            "subscription_opened",
            subscription=subscription_id,
            relays=sum(bool(ok) for _, ok in outcomes),
            total=len(targets),
        )
        return subscription_id

    async def _subscribe_one(
        self,
        url: str,
        subscription_id: str,
        filters: tuple[Filter, ...],
        on_event: EventCallback,
    ) -> bool:
        conn = self.get(url)
        if conn is None or not conn.is_connected:
            RELAY_OPERATIONS.labels(operation="subscribe", outcome="skipped").inc()
            return False
        try:
            await conn.subscribe(subscription_id, filters, on_event)
        except ConnectivityError as e:
            self._logger.warning("subscribe_failed", url=url, error=e.reason)
            RELAY_OPERATIONS.labels(operation="subscribe", outcome="failed").inc()
            return False
        RELAY_OPERATIONS.labels(operation="subscribe", outcome="opened").inc()
        return True

    async def unsubscribe(self, subscription_id: str, urls: Iterable[str] | None = None) -> None:
        """Remove ``subscription_id`` from the target relays (best-effort ``CLOSE``)."""
        connections = [conn for url in self._targets(urls) if (conn := self.get(url)) is not None]
        await asyncio.gather(*(conn.unsubscribe(subscription_id) for conn in connections))
        self._logger.debug("subscription_closed", subscription=subscription_id)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> RelayPool:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"RelayPool(relays={len(self._connections)}, "
            f"connected={len(self.connected_urls())})"
        )
