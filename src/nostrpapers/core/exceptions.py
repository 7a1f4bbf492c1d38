"""nostrpapers exception hierarchy.

Identity and signing failures propagate to the caller as distinct types so
that a UI can branch on them. Relay and HTTP failures are raised by the
per-relay layers and converted into recorded outcomes (``False`` or an
absent entry) at the [RelayPool][nostrpapers.client.pool.RelayPool] and
[MultiRelayPricingAggregator][nostrpapers.client.pricing.MultiRelayPricingAggregator]
boundary; they never escape an aggregate call.

Exception hierarchy:

```text
NostrPapersError (base -- never raised directly)
├── ConfigurationError       -- invalid YAML or config values
├── IdentityError            -- key and signing failures
│   ├── InvalidKeyFormat     -- imported key is not 64 hex characters
│   ├── NoIdentity           -- event creation before sign-in
│   └── SigningRejected      -- external signer declined, errored or timed out
├── ConnectivityError        -- per-relay transport failures
│   ├── RelayUnreachable     -- not connected, connect or send failed
│   └── RelayTimeout         -- no acknowledgement in time
└── MalformedServerResponse  -- pricing API returned non-OK or bad body
```
"""

from __future__ import annotations


class NostrPapersError(Exception):
    """Base exception for all nostrpapers errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(NostrPapersError):
    """Invalid or missing configuration (YAML, CLI flags)."""


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class IdentityError(NostrPapersError):
    """Base for key management and signing errors."""


class InvalidKeyFormat(IdentityError):  # noqa: N818
    """An imported key is malformed.

    User-correctable: surface the message next to the input field.
    """


class NoIdentity(IdentityError):  # noqa: N818
    """An event was built before any identity was signed in."""


class SigningRejected(IdentityError):  # noqa: N818
    """The delegated signer declined, failed, timed out or returned a bad event.

    The operation is aborted and not retried.
    """


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityError(NostrPapersError):
    """Base for per-relay transport failures.

    Attributes:
        url: The relay the failure belongs to.
    """

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class RelayUnreachable(ConnectivityError):  # noqa: N818
    """The relay is not connected, refused the connection, or the send failed."""


class RelayTimeout(ConnectivityError):  # noqa: N818
    """The relay did not answer within the configured timeout."""


# ---------------------------------------------------------------------------
# HTTP side-channel
# ---------------------------------------------------------------------------


class MalformedServerResponse(NostrPapersError):  # noqa: N818
    """The relay's pricing API returned a non-OK status or an unparseable body."""
