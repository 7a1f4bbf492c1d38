"""
Validated Nostr relay URL.

Parses and normalizes WebSocket relay URLs (``ws://`` or ``wss://``) with
RFC 3986 validation. Unlike a crawler, a publishing client talks to relays
the user chose, so local and private addresses (``ws://localhost:8080``)
are accepted and the user's scheme is preserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from rfc3986 import uri_reference
from rfc3986.exceptions import UnpermittedComponentError, ValidationError
from rfc3986.validators import Validator


@dataclass(frozen=True, slots=True)
class Relay:
    """Immutable, normalized relay URL.

    Attributes:
        url: Normalized URL including scheme, used as the relay's identity.
        scheme: ``ws`` or ``wss``.
        host: Hostname or IP address (brackets stripped for IPv6).
        port: Explicit port number, or ``None`` when using the default.
        path: URL path component, or ``None``.

    Raises:
        ValueError: If the URL is malformed, uses a scheme other than
            ``ws``/``wss``, carries a query string or fragment, or contains
            null bytes.

    Examples:
        ```python
        Relay("wss://Relay.Example.com/").url   # 'wss://relay.example.com'
        Relay("ws://localhost:8080").http_url   # 'http://localhost:8080'
        Relay("ws://abc123.onion").is_overlay   # True
        ```
    """

    raw_url: str = field(repr=False, compare=False)

    url: str = field(init=False)
    scheme: str = field(init=False)
    host: str = field(init=False)
    port: int | None = field(init=False)
    path: str | None = field(init=False)

    _DEFAULT_PORTS: ClassVar[dict[str, int]] = {"ws": 80, "wss": 443}
    _OVERLAY_TLDS: ClassVar[tuple[str, ...]] = (".onion", ".i2p", ".loki")

    def __post_init__(self) -> None:
        if "\x00" in self.raw_url:
            raise ValueError("Relay URL contains null bytes")

        parsed = self._parse(self.raw_url)

        object.__setattr__(self, "url", parsed["url"])
        object.__setattr__(self, "scheme", parsed["scheme"])
        object.__setattr__(self, "host", parsed["host"])
        object.__setattr__(self, "port", parsed["port"])
        object.__setattr__(self, "path", parsed["path"])

    @staticmethod
    def _parse(raw: str) -> dict[str, Any]:
        """Validate ``raw`` and split it into normalized components.

        Collapses duplicate slashes, strips a trailing slash and drops the
        port when it is the scheme's default.
        """
        uri = uri_reference(raw.strip()).normalize()
        validator = (
            Validator()
            .require_presence_of("scheme", "host")
            .allow_schemes("ws", "wss")
            .check_validity_of("scheme", "host", "port", "path")
        )
        try:
            validator.validate(uri)
        except UnpermittedComponentError:
            raise ValueError("Invalid scheme: must be ws or wss") from None
        except ValidationError as e:
            raise ValueError(f"Invalid URL: {e}") from None

        if uri.query:
            raise ValueError(f"Relay URL must not contain a query string: ?{uri.query}")
        if uri.fragment:
            raise ValueError(f"Relay URL must not contain a fragment: #{uri.fragment}")

        scheme = uri.scheme
        host = uri.host.strip("[]")
        if not host:
            raise ValueError(f"Invalid host in relay URL: {raw!r}")
        port = int(uri.port) if uri.port else None
        if port == Relay._DEFAULT_PORTS[scheme]:
            port = None

        path = uri.path or ""
        while "//" in path:
            path = path.replace("//", "/")
        path = path.rstrip("/") or None

        formatted_host = f"[{host}]" if ":" in host else host
        port_suffix = f":{port}" if port else ""
        return {
            "url": f"{scheme}://{formatted_host}{port_suffix}{path or ''}",
            "scheme": scheme,
            "host": host,
            "port": port,
            "path": path,
        }

    @property
    def http_url(self) -> str:
        """The same endpoint over HTTP(S): ``ws`` maps to ``http``, ``wss`` to ``https``."""
        protocol = "https" if self.scheme == "wss" else "http"
        return protocol + self.url[len(self.scheme) :]

    @property
    def is_overlay(self) -> bool:
        """True for Tor, I2P and Lokinet hosts, which are only reachable through a proxy."""
        return self.host.lower().endswith(self._OVERLAY_TLDS)
