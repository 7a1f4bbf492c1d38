"""
Unit tests for client.pool module.

Tests:
- RelayPoolConfig validation and URL normalization
- merge_events() deduplication and ordering
- Connection management (connect, add/remove, close, context manager)
- NIP-11 fetch: stored, failure isolation, one fetch per URL
- publish(): per-relay isolation of failures, rejections and timeouts
- query(): merge across relays, quiescence without EOSE
- subscribe()/unsubscribe(): fan-out without deduplication
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

from nostrpapers.client.pool import (
    DEFAULT_RELAYS,
    RelayPool,
    RelayPoolConfig,
    RelayRetryConfig,
    TimeoutsConfig,
    merge_events,
)
from nostrpapers.models.constants import ConnectionState
from nostrpapers.models.event import Filter


GOOD = "wss://good.example.com"
BAD = "wss://bad.example.com"
SLOW = "wss://slow.example.com"


# =============================================================================
# Configuration
# =============================================================================


class TestRelayPoolConfig:
    """Pool configuration defaults and validation."""

    def test_defaults(self) -> None:
        config = RelayPoolConfig()
        assert config.relays == list(DEFAULT_RELAYS)
        assert config.timeouts.query == 5.0
        assert config.retry.max_attempts == 1
        assert config.verify_events is True

    def test_relays_normalized_and_deduplicated(self) -> None:
        config = RelayPoolConfig(
            relays=["wss://Relay.Example.com/", "wss://relay.example.com", "ws://localhost:8080"]
        )
        assert config.relays == ["wss://relay.example.com", "ws://localhost:8080"]

    def test_invalid_relay_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RelayPoolConfig(relays=["http://not-a-relay.com"])

    def test_timeout_bounds(self) -> None:
        with pytest.raises(ValidationError):
            TimeoutsConfig(query=0.0)

    def test_retry_max_delay_below_initial(self) -> None:
        with pytest.raises(ValidationError, match="max_delay"):
            RelayRetryConfig(initial_delay=5.0, max_delay=1.0)

    def test_from_dict(self) -> None:
        pool = RelayPool.from_dict({"relays": [GOOD], "timeouts": {"publish": 2.0}})
        assert pool.config.relays == [GOOD]
        assert pool.config.timeouts.publish == 2.0


# =============================================================================
# Result Merging
# =============================================================================


class TestMergeEvents:
    """Deduplication and ordering of per-relay results."""

    async def test_dedup_and_sort(self, make_event) -> None:
        e1 = await make_event(created_at=100, content="one")
        e2 = await make_event(created_at=300, content="two")
        e3 = await make_event(created_at=200, content="three")

        merged = merge_events([[e1, e2], [e2, e3]])

        assert merged == [e2, e3, e1]

    async def test_ties_keep_arrival_order(self, make_event) -> None:
        a = await make_event(created_at=100, content="a")
        b = await make_event(created_at=100, content="b")
        c = await make_event(created_at=100, content="c")
        assert merge_events([[b], [a, c]]) == [b, a, c]

    def test_empty(self) -> None:
        assert merge_events([]) == []
        assert merge_events([[], []]) == []


# =============================================================================
# Connection Management
# =============================================================================


class TestConnectionManagement:
    """connect(), add_relay(), remove_relay() and close()."""

    async def test_connect_reports_state_per_url(self, network, make_pool) -> None:
        network.add(GOOD)
        pool = make_pool([GOOD, BAD])

        states = await pool.connect()

        assert states == {GOOD: ConnectionState.CONNECTED, BAD: ConnectionState.ERROR}
        assert pool.connected_urls() == [GOOD]
        assert pool.get(BAD).last_error is not None
        await pool.close()

    async def test_connect_invalid_url(self, make_pool) -> None:
        pool = make_pool()
        states = await pool.connect(["not a url"])
        assert states == {"not a url": ConnectionState.ERROR}
        assert pool.connections == {}

    async def test_add_relay_invalid_url(self, make_pool) -> None:
        with pytest.raises(ValueError):
            await make_pool().add_relay("ftp://relay.example.com")

    async def test_add_relay_idempotent(self, network, make_pool) -> None:
        network.add(GOOD)
        pool = make_pool()
        first = await pool.add_relay(GOOD)
        second = await pool.add_relay(GOOD + "/")
        assert first is second
        assert network.connect_calls == [GOOD]
        await pool.close()

    async def test_concurrent_connect_same_relay(self, network, make_pool) -> None:
        network.add(GOOD)
        pool = make_pool()

        first, second = await asyncio.gather(pool.connect([GOOD]), pool.connect([GOOD]))

        assert first == second == {GOOD: ConnectionState.CONNECTED}
        assert network.connect_calls == [GOOD]
        assert len(pool.connections) == 1
        await pool.close()

    async def test_reconnect_after_error(self, network, make_pool) -> None:
        relay = network.add(GOOD)
        relay.connect_error = OSError("down")
        pool = make_pool([GOOD])
        await pool.connect()
        assert pool.get(GOOD).state is ConnectionState.ERROR

        relay.connect_error = None
        assert await pool.reconnect(GOOD) is ConnectionState.CONNECTED
        await pool.close()

    async def test_retry_attempts(self, network, make_pool) -> None:
        relay = network.add(GOOD)
        relay.connect_error = OSError("down")
        pool = make_pool([GOOD], retry={"max_attempts": 3, "initial_delay": 0.0, "max_delay": 0.0})

        await pool.connect()

        assert network.connect_calls == [GOOD, GOOD, GOOD]
        assert pool.get(GOOD).state is ConnectionState.ERROR

    def test_retry_delay(self, make_pool) -> None:
        pool = make_pool(retry={"initial_delay": 1.0, "max_delay": 3.0})
        assert [pool._retry_delay(n) for n in range(4)] == [1.0, 2.0, 3.0, 3.0]

        linear = make_pool(
            retry={"initial_delay": 1.0, "max_delay": 10.0, "exponential_backoff": False}
        )
        assert [linear._retry_delay(n) for n in range(3)] == [1.0, 2.0, 3.0]

    async def test_remove_relay(self, network, make_pool) -> None:
        relay = network.add(GOOD)
        pool = make_pool([GOOD])
        await pool.connect()

        assert await pool.remove_relay(GOOD) is True
        assert pool.get(GOOD) is None
        assert relay.sockets[0].closed is True
        assert await pool.remove_relay(GOOD) is False

    async def test_close_idempotent(self, network, make_pool) -> None:
        network.add(GOOD)
        pool = make_pool([GOOD])
        await pool.connect()
        conn = pool.get(GOOD)

        await pool.close()
        await pool.close()

        assert conn.state is ConnectionState.DISCONNECTED
        assert pool.connections == {}

    async def test_context_manager(self, network, make_pool) -> None:
        network.add(GOOD)
        async with make_pool([GOOD]) as pool:
            assert pool.connected_urls() == [GOOD]
            conn = pool.get(GOOD)
        assert conn.state is ConnectionState.DISCONNECTED

    def test_repr(self, make_pool) -> None:
        assert repr(make_pool()) == "RelayPool(relays=0, connected=0)"


class TestServerInfo:
    """NIP-11 fetch after connecting."""

    async def test_info_stored(self, network) -> None:
        network.add(GOOD)
        info = MagicMock()
        fetcher = AsyncMock(return_value=info)
        pool = RelayPool(
            RelayPoolConfig(relays=[GOOD]), socket_factory=network, info_fetcher=fetcher
        )

        await pool.connect()

        assert pool.get(GOOD).server_info is info
        assert fetcher.await_args.kwargs["timeout"] == pool.config.timeouts.info
        await pool.close()

    async def test_info_unavailable_logged(self, network) -> None:
        network.add(GOOD)
        pool = RelayPool(
            RelayPoolConfig(relays=[GOOD]),
            socket_factory=network,
            info_fetcher=AsyncMock(return_value=None),
        )

        with patch.object(pool._logger, "warning") as mock_warning:
            await pool.connect()

        mock_warning.assert_called_once_with("relay_info_unavailable", url=GOOD)
        assert pool.get(GOOD).is_connected
        await pool.close()

    async def test_info_fetch_error_keeps_connection(self, network) -> None:
        network.add(GOOD)
        pool = RelayPool(
            RelayPoolConfig(relays=[GOOD]),
            socket_factory=network,
            info_fetcher=AsyncMock(side_effect=RuntimeError("boom")),
        )

        with patch.object(pool._logger, "warning") as mock_warning:
            states = await pool.connect()

        assert states == {GOOD: ConnectionState.CONNECTED}
        assert pool.get(GOOD).server_info is None
        mock_warning.assert_called_once_with(
            "relay_info_unavailable", url=GOOD, error="RuntimeError('boom')"
        )
        await pool.close()

    async def test_concurrent_add_fetches_info_once(self, network) -> None:
        network.add(GOOD)
        info = MagicMock()
        fetcher = AsyncMock(return_value=info)
        pool = RelayPool(RelayPoolConfig(), socket_factory=network, info_fetcher=fetcher)

        first, second = await asyncio.gather(pool.add_relay(GOOD), pool.add_relay(GOOD))

        assert first is second
        assert first.server_info is info
        assert fetcher.await_count == 1
        assert network.connect_calls == [GOOD]
        await pool.close()

    async def test_info_disabled(self, network) -> None:
        network.add(GOOD)
        fetcher = AsyncMock(return_value=None)
        pool = RelayPool(
            RelayPoolConfig(relays=[GOOD], fetch_server_info=False),
            socket_factory=network,
            info_fetcher=fetcher,
        )
        await pool.connect()
        fetcher.assert_not_awaited()
        await pool.close()


# =============================================================================
# Publish
# =============================================================================


class TestPublish:
    """Fan-out publish with per-relay outcomes."""

    async def test_one_relay_unreachable(self, network, make_pool, make_event) -> None:
        relay = network.add(GOOD)
        pool = make_pool([GOOD, BAD])
        await pool.connect()
        event = await make_event()

        results = await pool.publish(event)

        assert results == {GOOD: True, BAD: False}
        assert relay.frames("EVENT") == [["EVENT", event.to_dict()]]
        await pool.close()

    async def test_rejected(self, network, make_pool, make_event) -> None:
        network.add(GOOD)
        network.add(SLOW).accept = False
        pool = make_pool([GOOD, SLOW])
        await pool.connect()

        results = await pool.publish(await make_event())

        assert results == {GOOD: True, SLOW: False}
        await pool.close()

    async def test_timeout_isolated(self, network, make_pool, make_event) -> None:
        network.add(GOOD)
        network.add(SLOW).ack = False
        pool = make_pool([GOOD, SLOW], timeouts={"publish": 0.1})
        await pool.connect()

        results = await pool.publish(await make_event())

        assert results == {GOOD: True, SLOW: False}
        await pool.close()

    async def test_unknown_url_no_io(self, network, make_pool, make_event) -> None:
        relay = network.add(GOOD)
        pool = make_pool([GOOD])
        await pool.connect()

        results = await pool.publish(await make_event(), urls=["wss://other.example.com"])

        assert results == {"wss://other.example.com": False}
        assert relay.frames("EVENT") == []
        await pool.close()

    async def test_no_relays(self, make_pool, make_event) -> None:
        assert await make_pool().publish(await make_event()) == {}

    async def test_unexpected_error_recorded_as_false(
        self, network, make_pool, make_event
    ) -> None:
        network.add(GOOD)
        pool = make_pool([GOOD])
        await pool.connect()

        with patch.object(
            pool.get(GOOD), "send_event", AsyncMock(side_effect=RuntimeError("boom"))
        ):
            results = await pool.publish(await make_event())

        assert results == {GOOD: False}
        await pool.close()

    async def test_error_on_one_relay_isolated(self, network, make_pool, make_event) -> None:
        network.add(GOOD)
        network.add(SLOW)
        pool = make_pool([GOOD, SLOW])
        await pool.connect()

        with patch.object(
            pool.get(SLOW), "send_event", AsyncMock(side_effect=RuntimeError("boom"))
        ):
            results = await pool.publish(await make_event())

        assert results == {GOOD: True, SLOW: False}
        await pool.close()

    async def test_partial_publish_visible_on_accepting_relay(
        self, network, make_pool, make_event
    ) -> None:
        network.add(GOOD)
        pool = make_pool([GOOD, BAD])
        await pool.connect()
        event = await make_event()

        assert await pool.publish(event, urls=[GOOD, BAD]) == {GOOD: True, BAD: False}
        assert await pool.query([Filter(ids=(event.id,))], urls=[GOOD]) == [event]
        await pool.close()

    async def test_cancellation_propagates(self, network, make_pool, make_event) -> None:
        network.add(GOOD)
        pool = make_pool([GOOD])
        await pool.connect()

        with (
            patch.object(
                pool.get(GOOD),
                "send_event",
                AsyncMock(side_effect=asyncio.CancelledError()),
            ),
            pytest.raises(asyncio.CancelledError),
        ):
            await pool.publish(await make_event())
        await pool.close()


# =============================================================================
# Query
# =============================================================================


class TestQuery:
    """Fan-out query with merge and quiescence."""

    async def test_merges_across_relays(self, network, make_pool, make_event) -> None:
        e1 = await make_event(created_at=100, content="one")
        e2 = await make_event(created_at=300, content="two")
        e3 = await make_event(created_at=200, content="three")
        network.add(GOOD).store(e1, e2)
        network.add(SLOW).store(e2, e3)
        pool = make_pool([GOOD, SLOW])
        await pool.connect()

        events = await pool.query([Filter(kinds=(1,))])

        assert events == [e2, e3, e1]
        await pool.close()

    async def test_subscription_closed_after_eose(self, network, make_pool) -> None:
        relay = network.add(GOOD)
        pool = make_pool([GOOD])
        await pool.connect()

        await pool.query([Filter()])

        (req,) = relay.frames("REQ")
        assert relay.frames("CLOSE") == [["CLOSE", req[1]]]
        assert pool.get(GOOD).subscriptions == {}
        await pool.close()

    async def test_quiescence_without_eose(self, network, make_pool, make_event) -> None:
        event = await make_event()
        network.add(GOOD).store(event)
        silent = network.add(SLOW)
        silent.eose = False
        silent.store(await make_event(created_at=1, content="old"))
        pool = make_pool([GOOD, SLOW])
        await pool.connect()

        events = await pool.query([Filter()], timeout=0.05)

        assert [e.content for e in events] == ["hello", "old"]
        assert len(silent.frames("CLOSE")) == 1
        await pool.close()

    async def test_closed_by_relay_ends_query(self, network, make_pool) -> None:
        relay = network.add(GOOD)
        relay.eose = False
        pool = make_pool([GOOD])
        await pool.connect()

        task = asyncio.create_task(pool.query([Filter()], timeout=5.0))
        await asyncio.sleep(0.01)
        (req,) = relay.frames("REQ")
        relay.sockets[0].push(["CLOSED", req[1], "auth-required: sign in"])

        assert await asyncio.wait_for(task, 1.0) == []
        await pool.close()

    async def test_unreachable_relay_contributes_nothing(
        self, network, make_pool, make_event
    ) -> None:
        event = await make_event()
        network.add(GOOD).store(event)
        pool = make_pool([GOOD, BAD])
        await pool.connect()

        assert await pool.query([Filter()]) == [event]
        await pool.close()

    async def test_relay_with_invalid_events(self, network, make_pool, make_event) -> None:
        event = await make_event()
        relay = network.add(GOOD)
        relay.stored.append({**event.to_dict(), "sig": "0" * 128})
        pool = make_pool([GOOD])
        await pool.connect()

        assert await pool.query([Filter()]) == []
        await pool.close()


# =============================================================================
# Subscribe
# =============================================================================


class TestSubscribe:
    """Live subscriptions across relays."""

    async def test_duplicates_not_filtered(
        self, network, make_pool, make_event, wait_until
    ) -> None:
        first, second = network.add(GOOD), network.add(SLOW)
        pool = make_pool([GOOD, SLOW])
        await pool.connect()
        received = []

        sub_id = await pool.subscribe([Filter(kinds=(1,))], received.append)
        event = await make_event()
        first.broadcast(sub_id, event)
        second.broadcast(sub_id, event)

        await wait_until(lambda: len(received) == 2)
        assert received == [event, event]
        await pool.close()

    async def test_same_id_on_every_relay(self, network, make_pool) -> None:
        first, second = network.add(GOOD), network.add(SLOW)
        pool = make_pool([GOOD, SLOW, BAD])
        await pool.connect()

        sub_id = await pool.subscribe([Filter()], lambda e: None)

        assert first.frames("REQ")[0][1] == sub_id
        assert second.frames("REQ")[0][1] == sub_id
        assert sub_id in pool.get(GOOD).subscriptions
        assert sub_id not in pool.get(BAD).subscriptions
        await pool.close()

    async def test_unsubscribe(self, network, make_pool, make_event) -> None:
        relay = network.add(GOOD)
        pool = make_pool([GOOD])
        await pool.connect()
        received = []
        sub_id = await pool.subscribe([Filter()], received.append)

        await pool.unsubscribe(sub_id)
        relay.broadcast(sub_id, await make_event())
        await asyncio.sleep(0.01)

        assert relay.frames("CLOSE") == [["CLOSE", sub_id]]
        assert received == []
        await pool.close()
