"""Key handling, bounded HTTP reads and relay WebSocket transport.

Depends only on [nostrpapers.models][] and third-party libraries.

Attributes:
    keys: Key validation, derivation, bech32 encoding and deterministic
        Schnorr signing.
    http: Size-capped response body reading.
    transport: aiohttp WebSocket sockets to relays with SSL fallback and
        SOCKS proxy support.
"""

from .http import read_bounded, read_bounded_json
from .keys import (
    ENV_PRIVATE_KEY,
    derive_public_key,
    generate_private_key,
    load_private_key_from_env,
    npub_encode,
    nsec_encode,
    parse_public_key,
    schnorr_sign,
    validate_private_key_hex,
)
from .transport import DEFAULT_TIMEOUT, MessageSocket, RelaySocket, SocketFactory, open_relay_socket


__all__ = [
    "DEFAULT_TIMEOUT",
    "ENV_PRIVATE_KEY",
    "MessageSocket",
    "RelaySocket",
    "SocketFactory",
    "derive_public_key",
    "generate_private_key",
    "load_private_key_from_env",
    "npub_encode",
    "nsec_encode",
    "open_relay_socket",
    "parse_public_key",
    "read_bounded",
    "read_bounded_json",
    "schnorr_sign",
    "validate_private_key_hex",
]
