"""Signed event construction for the signed-in identity."""

from __future__ import annotations

import time
from collections.abc import Callable

from nostrpapers.core.exceptions import NoIdentity
from nostrpapers.core.logger import Logger
from nostrpapers.models.event import SignedEvent, UnsignedEvent
from nostrpapers.nips.event_builders import (
    TextRange,
    build_highlight,
    build_highlight_comment,
    build_paper,
    build_reaction,
    build_thread_comment,
)

from .identity import DEFAULT_SIGNER_TIMEOUT, Identity, sign


class EventFactory:
    """Builds domain events for the current identity and signs them.

    Every builder stamps ``created_at`` with the current time, raises
    [NoIdentity][nostrpapers.core.exceptions.NoIdentity] when nobody is
    signed in, and propagates
    [SigningRejected][nostrpapers.core.exceptions.SigningRejected] from a
    delegated signer.

    Examples:
        ```python
        factory = EventFactory(identity)
        paper = await factory.paper("Title", "# Body", "Abstract", "paper-1")
        note = await factory.thread_comment("Nice result", paper.id)
        ```
    """

    def __init__(
        self,
        identity: Identity | None = None,
        *,
        signer_timeout: float = DEFAULT_SIGNER_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.identity = identity
        self._signer_timeout = signer_timeout
        self._clock = clock
        self._logger = Logger("factory")

    def _author(self) -> tuple[str, int]:
        if self.identity is None:
            raise NoIdentity("Sign in before creating events")
        return self.identity.public_key, int(self._clock())

    async def _sign(self, event: UnsignedEvent) -> SignedEvent:
        assert self.identity is not None  # noqa: S101  # Checked by _author()
        signed = await sign(event, self.identity, timeout=self._signer_timeout)
        self._logger.debug("event_signed", kind=signed.kind, id=signed.id)
        return signed

    async def paper(
        self, title: str, content: str, abstract: str, identifier: str
    ) -> SignedEvent:
        pubkey, now = self._author()
        return await self._sign(
            build_paper(
                pubkey, now, title=title, content=content, summary=abstract, identifier=identifier
            )
        )

    async def highlight(
        self,
        text: str,
        source_event_id: str,
        context: str | None = None,
        text_range: TextRange | tuple[int, int] | None = None,
    ) -> SignedEvent:
        """Highlight ``text`` in a source document.

        ``text_range`` holds the selection's character offsets in the source
        content.
        """
        pubkey, now = self._author()
        return await self._sign(
            build_highlight(
                pubkey,
                now,
                text=text,
                source_event_id=source_event_id,
                context=context,
                text_range=TextRange(*text_range) if text_range is not None else None,
            )
        )

    async def highlight_comment(self, content: str, highlight_event_id: str) -> SignedEvent:
        pubkey, now = self._author()
        return await self._sign(
            build_highlight_comment(
                pubkey, now, content=content, highlight_event_id=highlight_event_id
            )
        )

    async def thread_comment(
        self, content: str, root_event_id: str, parent_event_id: str | None = None
    ) -> SignedEvent:
        pubkey, now = self._author()
        return await self._sign(
            build_thread_comment(
                pubkey,
                now,
                content=content,
                root_event_id=root_event_id,
                parent_event_id=parent_event_id,
            )
        )

    async def reaction(self, target_event_id: str, content: str = "+") -> SignedEvent:
        pubkey, now = self._author()
        return await self._sign(
            build_reaction(pubkey, now, target_event_id=target_event_id, content=content)
        )
