"""Client layer: identities, event signing, relay fan-out and pricing.

Attributes:
    Identity: Local or delegated signing identity.
        See [nostrpapers.client.identity][].
    EventFactory: Builds and signs paper, highlight, comment and reaction
        events for the current identity.
    RelayConnection: One relay's WebSocket session and state machine.
    RelayPool: Concurrent publish/query/subscribe across relays.
    MultiRelayPricingAggregator: Pricing and invoice requests across relays.
    Session: Owns all of the above for one user.
"""

from .connection import EndCallback, EventCallback, RelayConnection
from .factory import EventFactory
from .identity import (
    DEFAULT_SIGNER_TIMEOUT,
    Identity,
    connect_delegated,
    generate,
    import_delegated,
    import_local,
    sign,
)
from .pool import (
    DEFAULT_RELAYS,
    RelayPool,
    RelayPoolConfig,
    RelayRetryConfig,
    TimeoutsConfig,
    merge_events,
)
from .pricing import (
    LightningInvoice,
    MultiRelayPricingAggregator,
    PaperContent,
    PaymentStatus,
    PricingApiClient,
    PricingConfig,
    PricingInfo,
    ResearchPaper,
)
from .session import ClientConfig, KeyStore, Session, SessionConfig


__all__ = [
    "DEFAULT_RELAYS",
    "DEFAULT_SIGNER_TIMEOUT",
    "ClientConfig",
    "EndCallback",
    "EventCallback",
    "EventFactory",
    "Identity",
    "KeyStore",
    "LightningInvoice",
    "MultiRelayPricingAggregator",
    "PaperContent",
    "PaymentStatus",
    "PricingApiClient",
    "PricingConfig",
    "PricingInfo",
    "RelayConnection",
    "RelayPool",
    "RelayPoolConfig",
    "RelayRetryConfig",
    "ResearchPaper",
    "Session",
    "SessionConfig",
    "TimeoutsConfig",
    "connect_delegated",
    "generate",
    "import_delegated",
    "import_local",
    "merge_events",
    "sign",
]
