"""Frozen dataclasses for Nostr events, filters and relay URLs.

The models layer has no I/O. Every model validates itself in
``__post_init__`` so invalid instances never escape the constructor.

Attributes:
    UnsignedEvent: Author-controlled event fields, hashed to produce the id.
    SignedEvent: Content-addressed, Schnorr-signed event as sent on the wire.
    Filter: NIP-01 subscription filter.
    Relay: Normalized ``ws``/``wss`` relay URL with its HTTP counterpart.
    EventKind: Kind values for papers, highlights, comments and reactions.
    ConnectionState: Relay connection lifecycle states.
    SigningMode: Local key or delegated external signer.
"""

from .constants import EVENT_KIND_MAX, ConnectionState, EventKind, SigningMode
from .event import Filter, SignedEvent, UnsignedEvent, canonical_serialization
from .relay import Relay


__all__ = [
    "EVENT_KIND_MAX",
    "ConnectionState",
    "EventKind",
    "Filter",
    "Relay",
    "SignedEvent",
    "SigningMode",
    "UnsignedEvent",
    "canonical_serialization",
]
