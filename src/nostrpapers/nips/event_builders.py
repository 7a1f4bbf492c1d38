"""Unsigned event builders for papers, annotations and reactions.

Standalone functions that fix the kind and tag layout of every event the
client publishes. Tag layouts are a wire contract with the relays and with
other clients reading the same events, so each builder documents its
exact shape.

See Also:
    [EventFactory][nostrpapers.client.factory.EventFactory]: Supplies the
        author's public key and timestamp, then signs the result.
"""

from __future__ import annotations

from typing import NamedTuple

from nostrpapers.models.constants import EventKind
from nostrpapers.models.event import UnsignedEvent


# =============================================================================
# Types
# =============================================================================


class TextRange(NamedTuple):
    """Character offsets of a highlight inside its source document."""

    start: int
    end: int

    def to_tag_value(self) -> str:
        return f"{self.start}:{self.end}"

    @classmethod
    def parse(cls, value: str) -> TextRange:
        """Parse a ``"start:end"`` tag value.

        Raises:
            ValueError: If the value is not two non-negative decimal offsets
                with ``start <= end``.
        """
        start_text, sep, end_text = value.partition(":")
        if not sep or not start_text.isdigit() or not end_text.isdigit():
            raise ValueError(f"Invalid range: {value!r}")
        start, end = int(start_text), int(end_text)
        if start > end:
            raise ValueError(f"Range start after end: {value!r}")
        return cls(start, end)


# =============================================================================
# Kind 30023 (NIP-23)
# =============================================================================


def build_paper(
    pubkey: str,
    created_at: int,
    *,
    title: str,
    content: str,
    summary: str,
    identifier: str,
) -> UnsignedEvent:
    """Build a long-form paper.

    Tags: ``title``, ``summary``, ``d`` (identifier), ``published_at`` (the
    creation time as a decimal string).
    """
    return UnsignedEvent(
        pubkey=pubkey,
        created_at=created_at,
        kind=EventKind.PAPER,
        tags=(
            ("title", title),
            ("summary", summary),
            ("d", identifier),
            ("published_at", str(created_at)),
        ),
        content=content,
    )


# =============================================================================
# Kind 9802 (NIP-84)
# =============================================================================


def build_highlight(
    pubkey: str,
    created_at: int,
    *,
    text: str,
    source_event_id: str,
    context: str | None = None,
    text_range: TextRange | None = None,
) -> UnsignedEvent:
    """Build a highlight of ``text`` inside the source document.

    Tags: ``e`` (source), ``context`` (empty when not given), then ``range``
    as ``"start:end"`` when given.
    """
    tags: list[tuple[str, ...]] = [("e", source_event_id), ("context", context or "")]
    if text_range is not None:
        tags.append(("range", text_range.to_tag_value()))
    return UnsignedEvent(
        pubkey=pubkey,
        created_at=created_at,
        kind=EventKind.HIGHLIGHT,
        tags=tags,
        content=text,
    )


# =============================================================================
# Kind 1 reply to a highlight
# =============================================================================


def build_highlight_comment(
    pubkey: str,
    created_at: int,
    *,
    content: str,
    highlight_event_id: str,
) -> UnsignedEvent:
    """Build a note replying to a highlight.

    Tags: ``e`` (highlight id), ``k`` = ``"9802"``.
    """
    return UnsignedEvent(
        pubkey=pubkey,
        created_at=created_at,
        kind=EventKind.TEXT_NOTE,
        tags=(("e", highlight_event_id), ("k", str(int(EventKind.HIGHLIGHT)))),
        content=content,
    )


# =============================================================================
# Kind 1111 (NIP-22)
# =============================================================================


def build_thread_comment(
    pubkey: str,
    created_at: int,
    *,
    content: str,
    root_event_id: str,
    parent_event_id: str | None = None,
) -> UnsignedEvent:
    """Build a comment in the discussion thread of a paper.

    Tags: ``E`` (root paper), ``K`` = ``"30023"``, and ``e`` (parent comment)
    for nested replies.
    """
    tags: list[tuple[str, ...]] = [("E", root_event_id), ("K", str(int(EventKind.PAPER)))]
    if parent_event_id is not None:
        tags.append(("e", parent_event_id))
    return UnsignedEvent(
        pubkey=pubkey,
        created_at=created_at,
        kind=EventKind.COMMENT,
        tags=tags,
        content=content,
    )


# =============================================================================
# Kind 7 (NIP-25)
# =============================================================================


def build_reaction(
    pubkey: str,
    created_at: int,
    *,
    target_event_id: str,
    content: str = "+",
) -> UnsignedEvent:
    """Build a reaction to a comment.

    Tags: ``e`` (target), ``k`` = ``"1"``.
    """
    return UnsignedEvent(
        pubkey=pubkey,
        created_at=created_at,
        kind=EventKind.REACTION,
        tags=(("e", target_event_id), ("k", str(int(EventKind.TEXT_NOTE)))),
        content=content,
    )


__all__ = [
    "TextRange",
    "build_highlight",
    "build_highlight_comment",
    "build_paper",
    "build_reaction",
    "build_thread_comment",
]
