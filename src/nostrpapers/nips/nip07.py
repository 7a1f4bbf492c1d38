"""NIP-07 style external signer interface.

A delegated identity never holds a private key. Signing is forwarded to an
object implementing [ExternalSigner][nostrpapers.nips.nip07.ExternalSigner],
typically a bridge to a browser extension, a hardware device or a remote
signing service. The signer may refuse, fail or hang; callers bound every
call with a timeout and treat any failure as a rejection.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ExternalSigner(Protocol):
    """Capability that holds a key outside this process."""

    async def get_public_key(self) -> str:
        """Return the signer's public key (hex)."""
        ...

    async def sign_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """Sign an unsigned event dict and return the complete signed event dict.

        The input carries ``pubkey``, ``created_at``, ``kind``, ``tags`` and
        ``content``; the output must add ``id`` and ``sig``.
        """
        ...
