"""Nostr protocol pieces: message framing, relay information, event layouts.

Attributes:
    nip01: Client/relay message encoding and decoding.
    nip07: External signer interface for delegated identities.
    nip11: Relay information document fetch (never raises).
    event_builders: Kind and tag layout of papers, highlights, comments and
        reactions.
"""

from .event_builders import (
    TextRange,
    build_highlight,
    build_highlight_comment,
    build_paper,
    build_reaction,
    build_thread_comment,
)
from .nip01 import (
    RelayMessage,
    RelayMessageType,
    close_message,
    event_message,
    new_subscription_id,
    parse_relay_message,
    req_message,
)
from .nip07 import ExternalSigner
from .nip11 import RelayInfo, RelayLimitation, RelayPricing, fetch_relay_info


__all__ = [
    "ExternalSigner",
    "RelayInfo",
    "RelayLimitation",
    "RelayMessage",
    "RelayMessageType",
    "RelayPricing",
    "TextRange",
    "build_highlight",
    "build_highlight_comment",
    "build_paper",
    "build_reaction",
    "build_thread_comment",
    "close_message",
    "event_message",
    "fetch_relay_info",
    "new_subscription_id",
    "parse_relay_message",
    "req_message",
]
