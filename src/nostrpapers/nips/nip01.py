"""
NIP-01 client/relay message framing.

Client to relay:

```text
["EVENT", <event>]
["REQ", <subscription id>, <filter>, ...]
["CLOSE", <subscription id>]
```

Relay to client:

```text
["EVENT", <subscription id>, <event>]
["OK", <event id>, <accepted>, <message>]
["EOSE", <subscription id>]
["CLOSED", <subscription id>, <message>]
["NOTICE", <message>]
```
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from nostrpapers.models.event import Filter, SignedEvent


class RelayMessageType(StrEnum):
    EVENT = "EVENT"
    OK = "OK"
    EOSE = "EOSE"
    CLOSED = "CLOSED"
    NOTICE = "NOTICE"
    AUTH = "AUTH"


@dataclass(frozen=True, slots=True)
class RelayMessage:
    """A decoded relay-to-client frame.

    Only the attributes relevant to ``type`` are set.
    """

    type: RelayMessageType
    subscription_id: str | None = None
    event: SignedEvent | None = None
    event_id: str | None = None
    accepted: bool | None = None
    message: str = ""


def new_subscription_id() -> str:
    return secrets.token_hex(8)


def event_message(event: SignedEvent) -> list[Any]:
    return ["EVENT", event.to_dict()]


def req_message(subscription_id: str, filters: Iterable[Filter]) -> list[Any]:
    return ["REQ", subscription_id, *(f.to_dict() for f in filters)]


def close_message(subscription_id: str) -> list[Any]:
    return ["CLOSE", subscription_id]


def _str(frame: list[Any], index: int) -> str:
    if len(frame) <= index or not isinstance(frame[index], str):
        raise ValueError(f"{frame[0]} frame missing string at position {index}")
    return frame[index]


def parse_relay_message(frame: list[Any]) -> RelayMessage:
    """Decode one relay frame.

    Raises:
        ValueError: If the frame type is unknown or its fields are malformed,
            including an ``EVENT`` payload that is not a well-formed event.
    """
    try:
        kind = RelayMessageType(frame[0])
    except (ValueError, IndexError, TypeError):
        raise ValueError(f"Unknown relay message: {frame[:1]!r}") from None

    match kind:
        case RelayMessageType.EVENT:
            if len(frame) < 3 or not isinstance(frame[2], dict):
                raise ValueError("EVENT frame missing event object")
            return RelayMessage(
                kind, subscription_id=_str(frame, 1), event=SignedEvent.from_dict(frame[2])
            )
        case RelayMessageType.OK:
            if len(frame) < 3 or not isinstance(frame[2], bool):
                raise ValueError("OK frame missing accepted flag")
            message = frame[3] if len(frame) > 3 and isinstance(frame[3], str) else ""
            return RelayMessage(
                kind, event_id=_str(frame, 1), accepted=frame[2], message=message
            )
        case RelayMessageType.EOSE:
            return RelayMessage(kind, subscription_id=_str(frame, 1))
        case RelayMessageType.CLOSED:
            message = frame[2] if len(frame) > 2 and isinstance(frame[2], str) else ""
            return RelayMessage(kind, subscription_id=_str(frame, 1), message=message)
        case RelayMessageType.NOTICE:
            return RelayMessage(kind, message=_str(frame, 1))
        case RelayMessageType.AUTH:
            message = frame[1] if len(frame) > 1 and isinstance(frame[1], str) else ""
            return RelayMessage(kind, message=message)
