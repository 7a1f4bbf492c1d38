"""Bounded HTTP body reading.

Relay metadata and pricing endpoints are operated by third parties, so
response bodies are read with a hard size cap before being parsed.

See Also:
    [fetch_relay_info][nostrpapers.nips.nip11.fetch_relay_info]: NIP-11
        documents, capped at 64 KB.
    [PricingApiClient][nostrpapers.client.pricing.PricingApiClient]: Pricing
        and invoice responses.
"""

from __future__ import annotations

import json
from typing import Any

import aiohttp


async def read_bounded(response: aiohttp.ClientResponse, max_size: int) -> bytes:
    """Read a whole response body, failing once it exceeds ``max_size`` bytes.

    Loops until EOF because a single ``content.read(n)`` on a chunked body
    may return fewer than ``n`` bytes while more are still coming.

    Raises:
        ValueError: If the body is larger than ``max_size``.
    """
    chunks: list[bytes] = []
    total = 0
    while chunk := await response.content.read(max_size + 1 - total):
        total += len(chunk)
        if total > max_size:
            raise ValueError(f"Response body too large: >{max_size} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


async def read_bounded_json(response: aiohttp.ClientResponse, max_size: int) -> Any:
    """Read a size-capped body and decode it as JSON.

    Raises:
        ValueError: If the body is too large or is not valid UTF-8 JSON
            (``json.JSONDecodeError`` is a ``ValueError``).
    """
    body = await read_bounded(response, max_size)
    try:
        return json.loads(body)
    except UnicodeDecodeError as e:
        raise ValueError(f"Response body is not UTF-8: {e}") from None
