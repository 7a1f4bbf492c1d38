"""Nostr key helpers.

Key parsing, derivation and bech32 encoding go through ``nostr_sdk``.
Event signing goes through ``coincurve``'s BIP-340 implementation with no
auxiliary randomness, so signing the same event id with the same key always
yields the same signature.

Warning:
    Private keys must never be logged. Prefer the persisted key store or an
    environment variable over configuration files.

Examples:
    ```python
    secret = generate_private_key()
    pubkey = derive_public_key(secret)
    sig = schnorr_sign(secret, event_id)
    ```
"""

from __future__ import annotations

import os
import re

from coincurve import PrivateKey
from nostr_sdk import Keys, NostrSdkError, PublicKey, SecretKey


ENV_PRIVATE_KEY = "NOSTR_PRIVATE_KEY"  # pragma: allowlist secret

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")


def validate_private_key_hex(value: str) -> str:
    """Check that ``value`` is a usable 64-character hex secret key.

    Returns:
        The key in lowercase hex.

    Raises:
        ValueError: If the value is not exactly 64 hex characters or is not
            a valid secp256k1 scalar.
    """
    if not isinstance(value, str) or not _HEX64.match(value):
        raise ValueError("Private key must be exactly 64 hex characters")
    try:
        Keys.parse(value)
    except NostrSdkError as e:
        raise ValueError(f"Private key is not a valid secp256k1 scalar: {e}") from None
    return value.lower()


def generate_private_key() -> str:
    """Fresh random secret key as lowercase hex."""
    return Keys.generate().secret_key().to_hex()


def derive_public_key(private_key_hex: str) -> str:
    """x-only public key (hex) for a validated secret key."""
    return Keys.parse(private_key_hex).public_key().to_hex()


def parse_public_key(value: str) -> str:
    """Normalize a hex or ``npub1`` public key to lowercase hex.

    Raises:
        ValueError: If the value is not a valid public key.
    """
    try:
        return PublicKey.parse(value.strip()).to_hex()
    except NostrSdkError as e:
        raise ValueError(f"Invalid public key: {e}") from None


def npub_encode(public_key_hex: str) -> str:
    return PublicKey.parse(public_key_hex).to_bech32()


def nsec_encode(private_key_hex: str) -> str:
    return SecretKey.parse(private_key_hex).to_bech32()


def schnorr_sign(private_key_hex: str, event_id_hex: str) -> str:
    """Deterministic BIP-340 signature of a 32-byte event id, as hex."""
    key = PrivateKey(bytes.fromhex(private_key_hex))
    return key.sign_schnorr(bytes.fromhex(event_id_hex), None).hex()


def load_private_key_from_env(env_var: str = ENV_PRIVATE_KEY) -> str | None:
    """Read a hex private key from ``env_var``; ``None`` when unset or empty."""
    value = os.getenv(env_var)
    return value.strip() if value else None
