"""
Pytest configuration and shared fixtures for nostrpapers tests.

Provides:
- A fake relay network that speaks NIP-01 over in-memory sockets
- Fixed local identities and a signed-event builder
- A fake external signer for delegated identities
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from nostrpapers.client.identity import Identity, import_local, sign
from nostrpapers.client.pool import RelayPool, RelayPoolConfig
from nostrpapers.models.event import SignedEvent, UnsignedEvent
from nostrpapers.models.relay import Relay


ALICE_KEY = "0" * 63 + "1"  # pragma: allowlist secret
BOB_KEY = "0" * 63 + "2"  # pragma: allowlist secret


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Fake Relay Network
# ============================================================================


def _matches(filter_dict: dict[str, Any], event: dict[str, Any]) -> bool:
    if "ids" in filter_dict and event["id"] not in filter_dict["ids"]:
        return False
    if "authors" in filter_dict and event["pubkey"] not in filter_dict["authors"]:
        return False
    if "kinds" in filter_dict and event["kind"] not in filter_dict["kinds"]:
        return False
    if "since" in filter_dict and event["created_at"] < filter_dict["since"]:
        return False
    if "until" in filter_dict and event["created_at"] > filter_dict["until"]:
        return False
    for key, values in filter_dict.items():
        if key.startswith("#"):
            tag_values = {t[1] for t in event["tags"] if len(t) > 1 and t[0] == key[1:]}
            if not tag_values.intersection(values):
                return False
    return True


class FakeSocket:
    """One client connection to a FakeRelay."""

    def __init__(self, relay: "FakeRelay") -> None:
        self.relay = relay
        self.closed = False
        self._inbox: asyncio.Queue[list[Any] | None] = asyncio.Queue()

    async def send(self, message: list[Any]) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.relay.handle(self, message)

    async def receive(self) -> list[Any] | None:
        return await self._inbox.get()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def push(self, frame: list[Any]) -> None:
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the relay closing the connection."""
        self._inbox.put_nowait(None)


class FakeRelay:
    """Stores events and answers EVENT/REQ/CLOSE like a NIP-01 relay.

    Attributes:
        accept: ``OK`` flag sent for published events.
        ack: Whether published events get an ``OK`` at all.
        eose: Whether stored results end with ``EOSE``.
        connect_error: Raised by the socket factory instead of connecting.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.stored: list[dict[str, Any]] = []
        self.received: list[list[Any]] = []
        self.sockets: list[FakeSocket] = []
        self.accept = True
        self.ack = True
        self.eose = True
        self.connect_error: Exception | None = None

    def store(self, *events: SignedEvent) -> None:
        self.stored.extend(e.to_dict() for e in events)

    def handle(self, socket: FakeSocket, message: list[Any]) -> None:
        self.received.append(message)
        match message[0]:
            case "EVENT":
                event = message[1]
                if self.accept:
                    self.stored.append(event)
                if self.ack:
                    socket.push(["OK", event["id"], self.accept, "" if self.accept else "blocked"])
            case "REQ":
                subscription_id, filters = message[1], message[2:]
                for event in self.stored:
                    if any(_matches(f, event) for f in filters):
                        socket.push(["EVENT", subscription_id, event])
                if self.eose:
                    socket.push(["EOSE", subscription_id])

    def broadcast(self, subscription_id: str, event: SignedEvent) -> None:
        for socket in self.sockets:
            if not socket.closed:
                socket.push(["EVENT", subscription_id, event.to_dict()])

    def frames(self, frame_type: str) -> list[list[Any]]:
        return [m for m in self.received if m[0] == frame_type]


class FakeNetwork:
    """Socket factory resolving relay URLs to FakeRelay instances."""

    def __init__(self) -> None:
        self.relays: dict[str, FakeRelay] = {}
        self.connect_calls: list[str] = []

    def add(self, url: str) -> FakeRelay:
        relay = FakeRelay(Relay(url).url)
        self.relays[relay.url] = relay
        return relay

    async def __call__(
        self,
        relay: Relay,
        *,
        timeout: float,  # noqa: ASYNC109
        proxy_url: str | None,
        allow_insecure: bool,
    ) -> FakeSocket:
        self.connect_calls.append(relay.url)
        fake = self.relays.get(relay.url)
        if fake is None:
            raise OSError(f"connection refused: {relay.url}")
        if fake.connect_error is not None:
            raise fake.connect_error
        socket = FakeSocket(fake)
        fake.sockets.append(socket)
        return socket


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def make_pool(network: FakeNetwork) -> Callable[..., RelayPool]:
    """Build a RelayPool on the fake network without NIP-11 fetches."""

    def _make(relays: list[str] | None = None, **config: Any) -> RelayPool:
        return RelayPool(
            RelayPoolConfig(relays=relays or [], **config),
            socket_factory=network,
            info_fetcher=AsyncMock(return_value=None),
        )

    return _make


@pytest.fixture
def wait_until() -> Callable[[Callable[[], bool]], Awaitable[None]]:
    """Poll a predicate on the event loop until it holds (1s cap)."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 1.0) -> None:  # noqa: ASYNC109
        async with asyncio.timeout(timeout):
            while not predicate():
                await asyncio.sleep(0.001)

    return _wait


# ============================================================================
# Identities and Events
# ============================================================================


@pytest.fixture
def alice() -> Identity:
    return import_local(ALICE_KEY)


@pytest.fixture
def bob() -> Identity:
    return import_local(BOB_KEY)


@pytest.fixture
def make_event(alice: Identity) -> Callable[..., Awaitable[SignedEvent]]:
    """Sign a kind-1 note by alice with the given timestamp and content."""

    async def _make(
        created_at: int = 1_700_000_000,
        content: str = "hello",
        kind: int = 1,
        tags: tuple[tuple[str, ...], ...] = (),
    ) -> SignedEvent:
        event = UnsignedEvent(
            pubkey=alice.public_key,
            created_at=created_at,
            kind=kind,
            tags=tags,
            content=content,
        )
        return await sign(event, alice)

    return _make


class FakeSigner:
    """External signer backed by a local key.

    Attributes:
        deny: Refuse every request.
        delay: Seconds to wait before answering.
        tamper: Return an event with altered content.
        requests: Every unsigned event received.
    """

    def __init__(self, identity: Identity) -> None:
        self.identity = identity
        self.deny = False
        self.delay = 0.0
        self.tamper = False
        self.requests: list[dict[str, Any]] = []

    async def get_public_key(self) -> str:
        if self.deny:
            raise PermissionError("user denied")
        return self.identity.public_key

    async def sign_event(self, event: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(event)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.deny:
            raise PermissionError("user denied")
        unsigned = UnsignedEvent(
            pubkey=event["pubkey"],
            created_at=event["created_at"],
            kind=event["kind"],
            tags=event["tags"],
            content=event["content"] + (" (edited)" if self.tamper else ""),
        )
        return (await sign(unsigned, self.identity)).to_dict()


@pytest.fixture
def fake_signer(alice: Identity) -> FakeSigner:
    return FakeSigner(alice)
