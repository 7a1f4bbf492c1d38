"""
Prometheus metrics for relay and pricing traffic.

Metric objects are module-level and shared by every pool and aggregator in
the process. ``MetricsServer`` exposes them over HTTP for scraping while a
long-running command (``python -m nostrpapers watch``) is active.

Metrics:
    RELAY_OPERATIONS: Per-relay outcomes of publish, query and subscribe
        (``operation`` x ``outcome``).
    RELAY_STATE_TRANSITIONS: Connection state changes by target state.
    QUERY_DURATION_SECONDS: Wall time of a fan-out query, quiescence included.
    PRICING_REQUESTS: Pricing API calls by endpoint and outcome.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    The endpoint is only started when ``enabled`` is True.
    """

    enabled: bool = Field(default=False, description="Expose /metrics while watching")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Relay Metrics
# ---------------------------------------------------------------------------

RELAY_OPERATIONS = Counter(
    "relay_operations_total",
    "Per-relay outcomes of pool operations",
    ["operation", "outcome"],
)

RELAY_STATE_TRANSITIONS = Counter(
    "relay_state_transitions_total",
    "Relay connection state transitions by target state",
    ["state"],
)

QUERY_DURATION_SECONDS = Histogram(
    "query_duration_seconds",
    "Duration of a fan-out query across relays",
    buckets=(0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)


# ---------------------------------------------------------------------------
# Pricing Metrics
# ---------------------------------------------------------------------------

PRICING_REQUESTS = Counter(
    "pricing_requests_total",
    "Pricing API requests by endpoint and outcome",
    ["endpoint", "outcome"],
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible endpoint."""

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Bind the endpoint; a no-op when metrics are disabled.

        Raises:
            OSError: If the port is already in use.
        """
        if not self._config.enabled or self._runner is not None:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner

    async def stop(self) -> None:
        """Release the port. Idempotent."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )
