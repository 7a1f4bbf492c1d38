"""
Immutable Nostr events and subscription filters.

[UnsignedEvent][nostrpapers.models.event.UnsignedEvent] holds the fields an
author controls; [SignedEvent][nostrpapers.models.event.SignedEvent] adds the
content-addressed ``id`` and the Schnorr ``sig``. Both are frozen, so any
change to a signed event means building and signing a new one.

The event id is the SHA-256 of the NIP-01 canonical serialization:

```text
[0, pubkey, created_at, kind, tags, content]
```

encoded as compact UTF-8 JSON with no whitespace.

See Also:
    [nostrpapers.client.identity][]: Turns an ``UnsignedEvent`` into a
        ``SignedEvent``.
    [nostrpapers.nips.nip01][]: Frames events into relay protocol messages.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from nostr_sdk import Event as NostrEvent
from nostr_sdk import NostrSdkError

from .constants import EVENT_KIND_MAX


_HEX64 = re.compile(r"^[0-9a-f]{64}$")
_HEX128 = re.compile(r"^[0-9a-f]{128}$")

Tags = tuple[tuple[str, ...], ...]


def _freeze_tags(tags: Iterable[Iterable[str]]) -> Tags:
    frozen = tuple(tuple(tag) for tag in tags)
    for tag in frozen:
        if not tag or not all(isinstance(item, str) for item in tag):
            raise ValueError(f"Invalid tag: {list(tag)!r}")
    return frozen


def canonical_serialization(
    pubkey: str, created_at: int, kind: int, tags: Tags, content: str
) -> str:
    """Return the NIP-01 serialization that is hashed to produce the event id."""
    return json.dumps(
        [0, pubkey, created_at, kind, [list(tag) for tag in tags], content],
        separators=(",", ":"),
        ensure_ascii=False,
    )


@dataclass(frozen=True, slots=True)
class UnsignedEvent:
    """An event before signing.

    ``tags`` accepts any iterable of string sequences and is stored as a
    tuple of tuples so the instance stays hashable and immutable.

    Raises:
        ValueError: If ``pubkey`` is not 64 lowercase hex characters, ``kind``
            is out of range, ``created_at`` is negative, or a tag is empty
            or holds non-string items.
    """

    pubkey: str
    created_at: int
    kind: int
    tags: Tags = ()
    content: str = ""

    def __post_init__(self) -> None:
        if not _HEX64.match(self.pubkey):
            raise ValueError(f"Invalid pubkey: {self.pubkey!r}")
        if not 0 <= self.kind <= EVENT_KIND_MAX:
            raise ValueError(f"Kind out of range: {self.kind}")
        if self.created_at < 0:
            raise ValueError(f"Negative created_at: {self.created_at}")
        object.__setattr__(self, "tags", _freeze_tags(self.tags))

    def serialize(self) -> str:
        """Canonical JSON serialization of the event fields."""
        return canonical_serialization(
            self.pubkey, self.created_at, self.kind, self.tags, self.content
        )

    def compute_id(self) -> str:
        """SHA-256 of the canonical serialization, as lowercase hex."""
        return hashlib.sha256(self.serialize().encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
        }


@dataclass(frozen=True, slots=True)
class SignedEvent:
    """A signed, content-addressed Nostr event.

    Construction only checks the shape of ``id`` and ``sig``; call
    [verify()][nostrpapers.models.event.SignedEvent.verify] to check that
    they actually match the other fields.

    Examples:
        ```python
        event = SignedEvent.from_dict(raw)
        if event.verify():
            event.first_tag("title")   # 'My Paper'
        ```
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: Tags
    content: str
    sig: str

    def __post_init__(self) -> None:
        if not _HEX64.match(self.id):
            raise ValueError(f"Invalid event id: {self.id!r}")
        if not _HEX64.match(self.pubkey):
            raise ValueError(f"Invalid pubkey: {self.pubkey!r}")
        if not _HEX128.match(self.sig):
            raise ValueError(f"Invalid signature: {self.sig!r}")
        if isinstance(self.created_at, bool) or not isinstance(self.created_at, int):
            raise ValueError(f"Invalid created_at: {self.created_at!r}")
        if self.created_at < 0:
            raise ValueError(f"Negative created_at: {self.created_at}")
        if not 0 <= self.kind <= EVENT_KIND_MAX:
            raise ValueError(f"Kind out of range: {self.kind}")
        object.__setattr__(self, "tags", _freeze_tags(self.tags))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SignedEvent:
        """Build a signed event from its wire (JSON object) form.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        try:
            created_at = data["created_at"]
            kind = data["kind"]
            tags = data["tags"]
            content = data["content"]
            fields = {k: data[k] for k in ("id", "pubkey", "sig")}
        except (KeyError, TypeError) as e:
            raise ValueError(f"Missing event field: {e}") from None

        if not all(isinstance(v, str) for v in fields.values()):
            raise ValueError("Event id, pubkey and sig must be strings")
        if isinstance(created_at, bool) or not isinstance(created_at, int):
            raise ValueError(f"Invalid created_at: {created_at!r}")
        if isinstance(kind, bool) or not isinstance(kind, int):
            raise ValueError(f"Invalid kind: {kind!r}")
        if not isinstance(content, str):
            raise ValueError("Event content must be a string")
        if not isinstance(tags, list) or not all(isinstance(t, list) for t in tags):
            raise ValueError("Event tags must be a list of lists")

        return cls(
            created_at=created_at,
            kind=kind,
            tags=tags,
            content=content,
            **fields,
        )

    @property
    def unsigned(self) -> UnsignedEvent:
        return UnsignedEvent(
            pubkey=self.pubkey,
            created_at=self.created_at,
            kind=self.kind,
            tags=self.tags,
            content=self.content,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.unsigned.to_dict(), "sig": self.sig}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    def verify(self) -> bool:
        """Check the id against the canonical hash and the BIP-340 signature.

        Delegates to ``nostr_sdk.Event.verify()``; an event the SDK cannot
        even parse counts as invalid.
        """
        if self.unsigned.compute_id() != self.id:
            return False
        try:
            return NostrEvent.from_json(self.to_json()).verify()
        except NostrSdkError:
            return False

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag named ``name``, in order."""
        return [tag[1] for tag in self.tags if tag[0] == name and len(tag) > 1]

    def first_tag(self, name: str) -> str | None:
        values = self.tag_values(name)
        return values[0] if values else None


@dataclass(frozen=True, slots=True)
class Filter:
    """A NIP-01 subscription filter.

    Tag filters are keyed by the single-letter tag name without the ``#``
    prefix, e.g. ``Filter(kinds=(1111,), tags={"E": ("<paper id>",)})``.
    """

    ids: tuple[str, ...] | None = None
    authors: tuple[str, ...] | None = None
    kinds: tuple[int, ...] | None = None
    since: int | None = None
    until: int | None = None
    limit: int | None = None
    tags: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in self.tags:
            if len(name) != 1:
                raise ValueError(f"Tag filter names must be a single letter: {name!r}")
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"Negative limit: {self.limit}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Filter:
        tags = {k[1:]: tuple(v) for k, v in data.items() if k.startswith("#")}

        def _tuple(key: str) -> tuple[Any, ...] | None:
            value = data.get(key)
            return tuple(value) if value is not None else None

        return cls(
            ids=_tuple("ids"),
            authors=_tuple("authors"),
            kinds=_tuple("kinds"),
            since=data.get("since"),
            until=data.get("until"),
            limit=data.get("limit"),
            tags=tags,
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire form; unset fields are omitted."""
        result: dict[str, Any] = {}
        for key in ("ids", "authors", "kinds"):
            value = getattr(self, key)
            if value is not None:
                result[key] = list(value)
        for key in ("since", "until", "limit"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        for name, values in self.tags.items():
            result[f"#{name}"] = list(values)
        return result
