"""
Signing identities.

An [Identity][nostrpapers.client.identity.Identity] is one of two closed
variants selected by [SigningMode][nostrpapers.models.constants.SigningMode]:

* ``LOCAL`` holds the private key and signs in-process.
* ``DELEGATED`` holds only the public key and forwards every signature
  request to an [ExternalSigner][nostrpapers.nips.nip07.ExternalSigner].

[sign()][nostrpapers.client.identity.sign] dispatches on the variant. Local
signatures are deterministic. Delegated signatures are checked before they
are accepted, and any refusal, error, timeout or tampered result surfaces
as [SigningRejected][nostrpapers.core.exceptions.SigningRejected].
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Final

from nostrpapers.core.exceptions import InvalidKeyFormat, SigningRejected
from nostrpapers.models.constants import SigningMode
from nostrpapers.models.event import SignedEvent, UnsignedEvent
from nostrpapers.nips.nip07 import ExternalSigner  # noqa: TC001
from nostrpapers.utils.keys import (
    derive_public_key,
    generate_private_key,
    npub_encode,
    nsec_encode,
    parse_public_key,
    schnorr_sign,
    validate_private_key_hex,
)


DEFAULT_SIGNER_TIMEOUT: Final[float] = 60.0


@dataclass(frozen=True, slots=True)
class Identity:
    """The signed-in user.

    Invariant: ``private_key`` is set if and only if ``mode`` is ``LOCAL``;
    ``signer`` is only ever set for ``DELEGATED``.

    Warning:
        ``private_key`` is excluded from ``repr()``; never log or serialize
        it outside the key store.
    """

    public_key: str
    mode: SigningMode
    private_key: str | None = field(default=None, repr=False)
    signer: ExternalSigner | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if (self.private_key is not None) != (self.mode is SigningMode.LOCAL):
            raise ValueError("private_key must be present exactly for local identities")
        if self.signer is not None and self.mode is not SigningMode.DELEGATED:
            raise ValueError("Only delegated identities carry an external signer")

    @property
    def npub(self) -> str:
        return npub_encode(self.public_key)

    @property
    def nsec(self) -> str | None:
        if self.private_key is None:
            return None
        return nsec_encode(self.private_key)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def generate() -> Identity:
    """Create a local identity from a fresh random key."""
    private_key = generate_private_key()
    return Identity(
        public_key=derive_public_key(private_key),
        mode=SigningMode.LOCAL,
        private_key=private_key,
    )


def import_local(private_key_hex: str) -> Identity:
    """Create a local identity from a 64-character hex private key.

    Raises:
        InvalidKeyFormat: If the key is not exactly 64 hex characters or is
            not a valid secp256k1 secret.
    """
    try:
        private_key = validate_private_key_hex(private_key_hex)
    except ValueError as e:
        raise InvalidKeyFormat(str(e)) from None
    return Identity(
        public_key=derive_public_key(private_key),
        mode=SigningMode.LOCAL,
        private_key=private_key,
    )


def import_delegated(public_key: str, signer: ExternalSigner | None = None) -> Identity:
    """Create a delegated identity; no secret is held.

    Args:
        public_key: Hex or ``npub1`` public key reported by the signer.
        signer: The capability that will sign. Without one every
            [sign()][nostrpapers.client.identity.sign] call is rejected.

    Raises:
        InvalidKeyFormat: If ``public_key`` is not a valid public key.
    """
    try:
        normalized = parse_public_key(public_key)
    except ValueError as e:
        raise InvalidKeyFormat(str(e)) from None
    return Identity(public_key=normalized, mode=SigningMode.DELEGATED, signer=signer)


async def connect_delegated(
    signer: ExternalSigner,
    *,
    timeout: float = DEFAULT_SIGNER_TIMEOUT,  # noqa: ASYNC109
) -> Identity:
    """Ask ``signer`` for its public key and build a delegated identity.

    Raises:
        SigningRejected: If the signer refuses, fails or times out.
        InvalidKeyFormat: If the signer reports a malformed public key.
    """
    try:
        async with asyncio.timeout(timeout):
            public_key = await signer.get_public_key()
    except TimeoutError:
        raise SigningRejected("External signer did not return a public key in time") from None
    except Exception as e:  # Intentionally broad: any signer failure is a refusal
        raise SigningRejected(f"External signer refused public key request: {e}") from e
    return import_delegated(public_key, signer)


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def _sign_local(event: UnsignedEvent, private_key: str) -> SignedEvent:
    event_id = event.compute_id()
    return SignedEvent(
        id=event_id,
        pubkey=event.pubkey,
        created_at=event.created_at,
        kind=event.kind,
        tags=event.tags,
        content=event.content,
        sig=schnorr_sign(private_key, event_id),
    )


async def _sign_delegated(
    event: UnsignedEvent,
    signer: ExternalSigner | None,
    timeout: float,  # noqa: ASYNC109
) -> SignedEvent:
    if signer is None:
        raise SigningRejected("No external signer available")

    try:
        async with asyncio.timeout(timeout):
            raw = await signer.sign_event(event.to_dict())
    except TimeoutError:
        raise SigningRejected("External signer timed out") from None
    except Exception as e:  # Intentionally broad: any signer failure is a refusal
        raise SigningRejected(f"External signer refused: {e}") from e

    try:
        signed = SignedEvent.from_dict(raw)
        altered = signed.unsigned != event
    except ValueError as e:
        raise SigningRejected(f"External signer returned a malformed event: {e}") from None
    if altered:
        raise SigningRejected("External signer altered the event")
    if not signed.verify():
        raise SigningRejected("External signer returned an invalid signature")
    return signed


async def sign(
    event: UnsignedEvent,
    identity: Identity,
    *,
    timeout: float = DEFAULT_SIGNER_TIMEOUT,  # noqa: ASYNC109
) -> SignedEvent:
    """Sign ``event`` with ``identity``.

    Args:
        event: Event whose ``pubkey`` is the identity's public key.
        identity: Local or delegated identity.
        timeout: Seconds to wait for a delegated signer.

    Raises:
        ValueError: If the event was built for another public key.
        SigningRejected: If a delegated signer refuses, fails, times out or
            returns an event that does not match the request.
    """
    if event.pubkey != identity.public_key:
        raise ValueError("Event pubkey does not match the signing identity")

    match identity.mode:
        case SigningMode.LOCAL:
            assert identity.private_key is not None  # noqa: S101  # Enforced in __post_init__
            return _sign_local(event, identity.private_key)
        case SigningMode.DELEGATED:
            return await _sign_delegated(event, identity.signer, timeout)
