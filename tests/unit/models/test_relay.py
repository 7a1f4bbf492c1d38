"""
Unit tests for models.relay module.

Tests:
- URL normalization (case, default port, trailing and duplicate slashes)
- Scheme restriction to ws/wss
- Rejection of query strings, fragments and null bytes
- Local addresses accepted
- http_url mapping and overlay detection
"""

import pytest

from nostrpapers.models.relay import Relay


class TestNormalization:
    """Relay URLs normalize to a single identity string."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("wss://relay.example.com", "wss://relay.example.com"),
            ("wss://Relay.Example.COM/", "wss://relay.example.com"),
            ("wss://relay.example.com:443", "wss://relay.example.com"),
            ("ws://relay.example.com:80/", "ws://relay.example.com"),
            ("ws://localhost:8080", "ws://localhost:8080"),
            ("wss://relay.example.com//nostr//", "wss://relay.example.com/nostr"),
            ("  wss://relay.example.com  ", "wss://relay.example.com"),
        ],
    )
    def test_url(self, raw: str, expected: str) -> None:
        assert Relay(raw).url == expected

    def test_components(self) -> None:
        relay = Relay("ws://127.0.0.1:7777/inbox")
        assert relay.scheme == "ws"
        assert relay.host == "127.0.0.1"
        assert relay.port == 7777
        assert relay.path == "/inbox"

    def test_scheme_preserved(self) -> None:
        assert Relay("ws://relay.example.com").scheme == "ws"

    def test_ipv6(self) -> None:
        relay = Relay("ws://[::1]:8080")
        assert relay.host == "::1"
        assert relay.url == "ws://[::1]:8080"

    def test_equality_by_normalized_url(self) -> None:
        assert Relay("wss://relay.example.com/") == Relay("wss://RELAY.example.com")
        assert len({Relay("wss://relay.example.com/"), Relay("wss://RELAY.example.com")}) == 1


class TestRejection:
    """Invalid relay URLs raise ValueError."""

    @pytest.mark.parametrize(
        "raw",
        [
            "https://relay.example.com",
            "relay.example.com",
            "wss://relay.example.com/?auth=1",
            "wss://relay.example.com#top",
            "wss://relay\x00.example.com",
            "",
        ],
    )
    def test_invalid(self, raw: str) -> None:
        with pytest.raises(ValueError):
            Relay(raw)


class TestDerived:
    """http_url and is_overlay."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("ws://localhost:8080", "http://localhost:8080"),
            ("wss://relay.example.com", "https://relay.example.com"),
            ("wss://relay.example.com/nostr", "https://relay.example.com/nostr"),
        ],
    )
    def test_http_url(self, raw: str, expected: str) -> None:
        assert Relay(raw).http_url == expected

    def test_overlay(self) -> None:
        assert Relay("ws://abcdefghijklmnop.onion").is_overlay is True
        assert Relay("wss://relay.example.com").is_overlay is False
