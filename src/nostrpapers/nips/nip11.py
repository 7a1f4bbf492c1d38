"""
NIP-11 relay information document.

Relays serve a JSON description of themselves at their HTTP(S) URL when
asked with ``Accept: application/nostr+json``. The same document shape,
extended with a ``pricing`` section, is returned by the paper relays'
``GET /api/info`` endpoint.

[fetch_relay_info][nostrpapers.nips.nip11.fetch_relay_info] never raises:
the document is informational, so a failed fetch is logged and reported as
``None``.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from http import HTTPStatus
from typing import Any, Final

import aiohttp
from aiohttp_socks import ProxyConnector
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nostrpapers.models.relay import Relay  # noqa: TC001
from nostrpapers.utils.http import read_bounded_json


INFO_MAX_SIZE: Final[int] = 65_536
DEFAULT_TIMEOUT: Final[float] = 10.0

logger = logging.getLogger("nips.nip11")


class RelayLimitation(BaseModel):
    """Server-imposed limits; relays may omit any of them."""

    model_config = ConfigDict(extra="allow")

    max_message_length: int | None = None
    max_subscriptions: int | None = None
    max_filters: int | None = None
    max_limit: int | None = None
    max_subid_length: int | None = None
    max_event_tags: int | None = None
    max_content_length: int | None = None
    min_pow_difficulty: int | None = None
    auth_required: bool | None = None
    payment_required: bool | None = None
    restricted_writes: bool | None = None


class RelayPricing(BaseModel):
    """Storage pricing advertised by paper relays."""

    model_config = ConfigDict(extra="allow")

    price_per_mb_year: float | None = None
    price_per_comment_mb: float | None = None
    max_content_size: int | None = None
    storage_available_mb: float | None = None


class RelayInfo(BaseModel):
    """A relay's self-description. Unknown fields are preserved."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    description: str | None = None
    pubkey: str | None = None
    contact: str | None = None
    supported_nips: list[int] = Field(default_factory=list)
    software: str | None = None
    version: str | None = None
    limitation: RelayLimitation | None = None
    payments_url: str | None = None
    fees: dict[str, Any] | None = None
    pricing: RelayPricing | None = None


async def _get_document(
    url: str,
    timeout: float,  # noqa: ASYNC109
    max_size: int,
    ssl_context: ssl.SSLContext | bool,  # noqa: FBT001
    proxy_url: str | None,
) -> dict[str, Any]:
    connector: aiohttp.BaseConnector
    if proxy_url:
        connector = ProxyConnector.from_url(proxy_url, ssl=ssl_context)
    else:
        connector = aiohttp.TCPConnector(ssl=ssl_context)

    async with (
        aiohttp.ClientSession(connector=connector) as session,
        session.get(
            url,
            headers={"Accept": "application/nostr+json"},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp,
    ):
        if resp.status != HTTPStatus.OK:
            raise ValueError(f"HTTP {resp.status}")

        content_type = resp.headers.get("Content-Type", "").lower().split(";")[0].strip()
        if content_type not in ("application/nostr+json", "application/json"):
            raise ValueError(f"Invalid Content-Type: {content_type or 'missing'}")

        data = await read_bounded_json(resp, max_size)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        return data


async def fetch_relay_info(
    relay: Relay,
    *,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
    max_size: int = INFO_MAX_SIZE,
    proxy_url: str | None = None,
    allow_insecure: bool = False,
) -> RelayInfo | None:
    """Fetch and validate a relay's NIP-11 document.

    Args:
        relay: Relay whose ``http_url`` is queried.
        timeout: Request timeout in seconds.
        max_size: Maximum body size in bytes.
        proxy_url: SOCKS proxy, used for overlay hosts.
        allow_insecure: Retry HTTPS without certificate verification after a
            certificate error.

    Returns:
        The parsed document, or ``None`` when the fetch or validation failed.
    """
    proxy = proxy_url if relay.is_overlay else None
    try:
        try:
            data = await _get_document(relay.http_url, timeout, max_size, True, proxy)
        except aiohttp.ClientConnectorCertificateError:
            if not allow_insecure:
                raise
            insecure = ssl.create_default_context()
            insecure.check_hostname = False
            insecure.verify_mode = ssl.CERT_NONE
            data = await _get_document(relay.http_url, timeout, max_size, insecure, proxy)
        info = RelayInfo.model_validate(data)
    except asyncio.CancelledError:
        raise
    except (OSError, TimeoutError, aiohttp.ClientError, ValueError, ValidationError) as e:
        logger.debug("nip11_failed relay=%s error=%s", relay.url, str(e) or type(e).__name__)
        return None

    logger.debug("nip11_fetched relay=%s name=%s", relay.url, info.name)
    return info
