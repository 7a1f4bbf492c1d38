"""Infrastructure shared by the client layer.

Attributes:
    Logger: Structured logger with key=value and JSON output.
        See [Logger][nostrpapers.core.logger.Logger].
    NostrPapersError: Root of the exception hierarchy.
        See [nostrpapers.core.exceptions][].
    load_yaml: Safe YAML loading for configuration files.
    MetricsServer: Prometheus ``/metrics`` endpoint.
"""

from .exceptions import (
    ConfigurationError,
    ConnectivityError,
    IdentityError,
    InvalidKeyFormat,
    MalformedServerResponse,
    NoIdentity,
    NostrPapersError,
    RelayTimeout,
    RelayUnreachable,
    SigningRejected,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    PRICING_REQUESTS,
    QUERY_DURATION_SECONDS,
    RELAY_OPERATIONS,
    RELAY_STATE_TRANSITIONS,
    MetricsConfig,
    MetricsServer,
)
from .yaml import load_yaml


__all__ = [
    "PRICING_REQUESTS",
    "QUERY_DURATION_SECONDS",
    "RELAY_OPERATIONS",
    "RELAY_STATE_TRANSITIONS",
    "ConfigurationError",
    "ConnectivityError",
    "IdentityError",
    "InvalidKeyFormat",
    "Logger",
    "MalformedServerResponse",
    "MetricsConfig",
    "MetricsServer",
    "NoIdentity",
    "NostrPapersError",
    "RelayTimeout",
    "RelayUnreachable",
    "SigningRejected",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
]
