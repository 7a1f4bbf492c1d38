"""Shared constants for the models layer.

Defines the enumerations used across the models, nips and client layers.
Keeping them here avoids circular imports between
[nostrpapers.models.event][] and the client modules that consume it.

See Also:
    [nostrpapers.nips.event_builders][]: Stamps [EventKind][nostrpapers.models.constants.EventKind]
        values on every event it builds.
    [nostrpapers.client.connection][]: Drives the
        [ConnectionState][nostrpapers.models.constants.ConnectionState] machine.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class EventKind(IntEnum):
    """Nostr event kinds produced and consumed by the client.

    Kind values are the network's discriminant and must match the relays
    the client talks to byte-for-byte.

    Attributes:
        TEXT_NOTE: Kind 1 -- generic note, used for replies to highlights (NIP-01).
        REACTION: Kind 7 -- reaction to another event (NIP-25).
        COMMENT: Kind 1111 -- threaded comment on a document (NIP-22).
        HIGHLIGHT: Kind 9802 -- highlighted excerpt of a document (NIP-84).
        PAPER: Kind 30023 -- addressable long-form document (NIP-23).
    """

    TEXT_NOTE = 1
    REACTION = 7
    COMMENT = 1_111
    HIGHLIGHT = 9_802
    PAPER = 30_023


EVENT_KIND_MAX = 65_535


class SigningMode(StrEnum):
    """How an [Identity][nostrpapers.client.identity.Identity] produces signatures.

    Attributes:
        LOCAL: The private key is held in-process and signs directly.
        DELEGATED: An external signer (NIP-07 style) holds the key; the
            client only knows the public key.
    """

    LOCAL = "local"
    DELEGATED = "delegated"


class ConnectionState(StrEnum):
    """Lifecycle states of a single relay connection.

    Allowed transitions:

    ```text
    CONNECTING -> CONNECTED | ERROR
    CONNECTED  -> DISCONNECTED | ERROR
    ```

    ``ERROR`` and ``DISCONNECTED`` are terminal for a given attempt; the pool
    starts a fresh ``CONNECTING`` attempt to reconnect.
    """

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
