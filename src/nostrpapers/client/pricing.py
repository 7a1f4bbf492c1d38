"""
Per-relay pricing and invoice API.

Paper relays expose a plain JSON-over-HTTP API next to their WebSocket
endpoint (same host, ``ws`` -> ``http`` and ``wss`` -> ``https``).
[PricingApiClient][nostrpapers.client.pricing.PricingApiClient] wraps one
relay's API; [MultiRelayPricingAggregator][nostrpapers.client.pricing.MultiRelayPricingAggregator]
fans requests out to many relays with the same isolation rule as
[RelayPool][nostrpapers.client.pool.RelayPool]: one relay failing only
removes that relay from the result.

Endpoints:

* ``GET  /api/info``
* ``POST /api/pricing``          ``{size_bytes, duration_years}``
* ``POST /api/invoice``          ``{event_id, size_bytes, duration_years}``
* ``POST /api/comment-invoice``  ``{event_id, size_bytes}``
* ``GET  /api/payment/{hash}``
* ``GET  /api/papers?limit=N``
* ``GET  /api/papers/{event_id}/content``

Examples:
    ```python
    aggregator = MultiRelayPricingAggregator(relays=["wss://relay.example.com"])
    quotes = await aggregator.calculate_pricing_for_all_relays(len(content.encode()))
    invoices = await aggregator.create_invoices_for_selected_relays(
        paper.id, size_bytes, list(quotes)
    )
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime  # noqa: TC003
from http import HTTPStatus
from typing import Any, Final, Literal, TypeVar

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from nostrpapers.core.exceptions import (
    ConnectivityError,
    MalformedServerResponse,
    RelayTimeout,
    RelayUnreachable,
)
from nostrpapers.core.logger import Logger
from nostrpapers.core.metrics import PRICING_REQUESTS
from nostrpapers.models.relay import Relay
from nostrpapers.nips.nip11 import RelayInfo
from nostrpapers.utils.http import read_bounded_json


T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

DEFAULT_MAX_SIZE: Final[int] = 10_485_760


# =============================================================================
# Configuration
# =============================================================================


class PricingConfig(BaseModel):
    """Settings shared by every per-relay pricing client."""

    timeout: float = Field(default=10.0, ge=0.1, le=120.0, description="HTTP request timeout")
    duration_years: int = Field(default=1, ge=1, le=100, description="Default storage term")
    max_size: int = Field(
        default=DEFAULT_MAX_SIZE,
        ge=1024,
        description="Maximum response body size in bytes",
    )


# =============================================================================
# Response Models
# =============================================================================


class PricingInfo(BaseModel):
    """A storage quote."""

    model_config = ConfigDict(extra="allow")

    amount_sats: int
    size_mb: float
    duration_years: float
    description: str = ""


class LightningInvoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment_request: str
    payment_hash: str
    amount_sats: int
    expires_at: datetime
    description: str = ""
    paid: bool | None = None
    settled_at: datetime | None = None


class PaymentStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    paid: bool
    amount_sats: int
    expires_at: datetime
    settled_at: datetime | None = None


class ResearchPaper(BaseModel):
    """A paper as listed by a relay's ``/api/papers`` endpoint."""

    model_config = ConfigDict(extra="allow")

    id: str
    event_id: str
    title: str
    authors: list[str] = Field(default_factory=list)
    abstract: str = ""
    content: str | None = None
    status: Literal["submitted", "under_review", "accepted", "rejected", "published"]
    created_at: datetime
    published_at: datetime | None = None
    size_bytes: int
    payment_hash: str | None = None
    price_paid: int | None = None
    reviewer_notes: str | None = None


class PaperContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_id: str
    title: str
    authors: list[str] = Field(default_factory=list)
    abstract: str = ""
    content: str
    published_at: datetime


_PAPER_LIST: Final = TypeAdapter(list[ResearchPaper])


# =============================================================================
# Single-relay Client
# =============================================================================


class PricingApiClient:
    """Client for one relay's pricing API.

    Without an explicit ``session`` every request opens and closes its own
    ``aiohttp.ClientSession``; pass one to share a connection pool.

    Raises (from every request method):
        MalformedServerResponse: Non-200 status, oversized or non-JSON body,
            or a body that does not match the expected shape.
        RelayUnreachable: The HTTP request could not be completed.
        RelayTimeout: The request exceeded ``timeout``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,  # noqa: ASYNC109
        max_size: int = DEFAULT_MAX_SIZE,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_size = max_size
        self._session = session

    @classmethod
    def for_relay(cls, relay_url: str, **kwargs: Any) -> PricingApiClient:
        """Build a client for the HTTP side of a ``ws://``/``wss://`` relay URL."""
        return cls(Relay(relay_url).http_url, **kwargs)

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            if self._session is not None:
                return await self._send(self._session, method, url, payload)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, method, url, payload)
        except TimeoutError:
            raise RelayTimeout(self.base_url, f"{method} {endpoint} timed out") from None
        except (OSError, aiohttp.ClientError) as e:
            raise RelayUnreachable(
                self.base_url, f"{method} {endpoint}: {str(e) or type(e).__name__}"
            ) from e

    async def _send(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        payload: dict[str, Any] | None,
    ) -> Any:
        async with session.request(
            method,
            url,
            json=payload,
            headers={"Accept": "application/json"},
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        ) as resp:
            if resp.status != HTTPStatus.OK:
                raise MalformedServerResponse(f"{method} {url}: HTTP {resp.status}")
            try:
                return await read_bounded_json(resp, self._max_size)
            except ValueError as e:
                raise MalformedServerResponse(f"{method} {url}: {e}") from None

    @staticmethod
    def _parse(model: type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise MalformedServerResponse(
                f"Unexpected {model.__name__} response: {e.error_count()} errors"
            ) from None

    async def get_relay_info(self) -> RelayInfo:
        return self._parse(RelayInfo, await self._request("GET", "/api/info"))

    async def calculate_pricing(self, size_bytes: int, duration_years: int = 1) -> PricingInfo:
        data = await self._request(
            "POST",
            "/api/pricing",
            {"size_bytes": size_bytes, "duration_years": duration_years},
        )
        return self._parse(PricingInfo, data)

    async def create_invoice(
        self, event_id: str, size_bytes: int, duration_years: int = 1
    ) -> LightningInvoice:
        """Request a storage invoice for a published paper."""
        data = await self._request(
            "POST",
            "/api/invoice",
            {"event_id": event_id, "size_bytes": size_bytes, "duration_years": duration_years},
        )
        return self._parse(LightningInvoice, data)

    async def create_comment_invoice(self, event_id: str, size_bytes: int) -> LightningInvoice:
        data = await self._request(
            "POST",
            "/api/comment-invoice",
            {"event_id": event_id, "size_bytes": size_bytes},
        )
        return self._parse(LightningInvoice, data)

    async def check_payment(self, payment_hash: str) -> PaymentStatus:
        data = await self._request("GET", f"/api/payment/{payment_hash}")
        return self._parse(PaymentStatus, data)

    async def get_published_papers(self, limit: int = 50) -> list[ResearchPaper]:
        data = await self._request("GET", f"/api/papers?limit={limit}")
        try:
            return _PAPER_LIST.validate_python(data)
        except ValidationError as e:
            raise MalformedServerResponse(
                f"Unexpected paper list response: {e.error_count()} errors"
            ) from None

    async def get_paper_content(self, event_id: str) -> PaperContent:
        data = await self._request("GET", f"/api/papers/{event_id}/content")
        return self._parse(PaperContent, data)

    def __repr__(self) -> str:
        return f"PricingApiClient(base_url={self.base_url!r})"


# =============================================================================
# Aggregator
# =============================================================================


class MultiRelayPricingAggregator:
    """Fans pricing requests out to one pricing client per relay.

    Clients are keyed by normalized relay URL, the same namespace
    [RelayPool][nostrpapers.client.pool.RelayPool] uses. Failed relays are
    logged and left out of the returned mappings; they never abort the
    other requests.
    """

    def __init__(
        self,
        config: PricingConfig | None = None,
        *,
        relays: Iterable[str] = (),
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config or PricingConfig()
        self._session = session
        self._clients: dict[str, PricingApiClient] = {}
        self._logger = Logger("pricing")
        for url in relays:
            self.add_relay(url)

    @property
    def config(self) -> PricingConfig:
        return self._config

    @property
    def relay_urls(self) -> list[str]:
        return list(self._clients)

    def add_relay(self, url: str) -> PricingApiClient:
        """Register ``url``; an already registered relay keeps its client.

        Raises:
            ValueError: If ``url`` is not a valid relay URL.
        """
        key = Relay(url).url
        client = self._clients.get(key)
        if client is None:
            client = PricingApiClient.for_relay(
                key,
                timeout=self._config.timeout,
                max_size=self._config.max_size,
                session=self._session,
            )
            self._clients[key] = client
        return client

    def remove_relay(self, url: str) -> bool:
        return self._clients.pop(self._key(url), None) is not None

    def get_client(self, url: str) -> PricingApiClient | None:
        return self._clients.get(self._key(url))

    @staticmethod
    def _key(url: str) -> str:
        try:
            return Relay(url).url
        except ValueError:
            return url

    async def _fan_out(
        self,
        endpoint: str,
        calls: Mapping[str, Callable[[], Awaitable[T]]],
    ) -> dict[str, T]:
        """Run one request per relay concurrently, keeping only the successes."""
        urls = list(calls)
        outcomes = await asyncio.gather(*(calls[url]() for url in urls), return_exceptions=True)

        results: dict[str, T] = {}
        for url, outcome in zip(urls, outcomes, strict=True):
            if not isinstance(outcome, BaseException):
                results[url] = outcome
                PRICING_REQUESTS.labels(endpoint=endpoint, outcome="success").inc()
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            PRICING_REQUESTS.labels(endpoint=endpoint, outcome="failure").inc()
            if isinstance(outcome, ConnectivityError | MalformedServerResponse):
                self._logger.warning(f"{endpoint}_failed", url=url, error=str(outcome))
            else:
                self._logger.error(f"{endpoint}_failed", url=url, error=repr(outcome))
        return results

    async def get_relay_infos(self) -> dict[str, RelayInfo]:
        return await self._fan_out(
            "info", {url: client.get_relay_info for url, client in self._clients.items()}
        )

    async def calculate_pricing_for_all_relays(
        self, size_bytes: int, duration_years: int | None = None
    ) -> dict[str, PricingInfo]:
        """Request a quote from every registered relay.

        Returns:
            Quotes keyed by relay URL; relays whose pricing is unavailable
            are absent.
        """
        years = duration_years if duration_years is not None else self._config.duration_years
        return await self._fan_out(
            "pricing",
            {
                url: (lambda c=client: c.calculate_pricing(size_bytes, years))
                for url, client in self._clients.items()
            },
        )

    async def create_invoices_for_selected_relays(
        self,
        event_id: str,
        size_bytes: int,
        urls: Iterable[str],
        duration_years: int | None = None,
    ) -> dict[str, LightningInvoice]:
        """Create invoices on the chosen relays.

        Unregistered URLs are skipped; failed relays are absent from the
        result.
        """
        years = duration_years if duration_years is not None else self._config.duration_years
        calls: dict[str, Callable[[], Awaitable[LightningInvoice]]] = {}
        for url in urls:
            client = self.get_client(url)
            if client is None:
                self._logger.debug("invoice_skipped", url=url, reason="unknown relay")
                continue
            calls[url] = lambda c=client: c.create_invoice(event_id, size_bytes, years)
        return await self._fan_out("invoice", calls)

    async def check_payments_for_all_relays(
        self, payment_hashes: Mapping[str, str]
    ) -> dict[str, bool]:
        """Check each ``{relay_url: payment_hash}`` pair.

        Returns:
            ``{relay_url: paid}`` for every registered relay in the input; a
            failed check is recorded as ``False``.
        """
        calls: dict[str, Callable[[], Awaitable[PaymentStatus]]] = {}
        for url, payment_hash in payment_hashes.items():
            client = self.get_client(url)
            if client is None:
                self._logger.debug("payment_check_skipped", url=url, reason="unknown relay")
                continue
            calls[url] = lambda c=client, h=payment_hash: c.check_payment(h)

        statuses = await self._fan_out("payment", calls)
        return {url: url in statuses and statuses[url].paid for url in calls}

    def __repr__(self) -> str:
        return f"MultiRelayPricingAggregator(relays={len(self._clients)})"
