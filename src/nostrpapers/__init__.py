r"""nostrpapers -- Multi-relay Nostr client for publishing and annotating papers.

Papers, highlights, threaded comments and reactions are signed Nostr events
published redundantly to independent relays. No relay is trusted or
required to be available: every operation fans out concurrently and
accounts for each relay separately.

Imports flow strictly downward:

```text
                client          Identity, signing, relay pool, pricing, session
             /   |    \
          core  nips  utils     Logging, errors, metrics, protocol, transport
             \   |    /
              models            Frozen dataclasses (zero I/O)
```

Note:
    Top-level imports (``from nostrpapers import Session``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("nostrpapers")

__all__ = [
    "ClientConfig",
    "ConnectionState",
    "EventFactory",
    "EventKind",
    "Filter",
    "Identity",
    "Logger",
    "MultiRelayPricingAggregator",
    "NostrPapersError",
    "PricingApiClient",
    "Relay",
    "RelayConnection",
    "RelayPool",
    "RelayPoolConfig",
    "Session",
    "SignedEvent",
    "SigningMode",
    "UnsignedEvent",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Logger": ("nostrpapers.core", "Logger"),
    "NostrPapersError": ("nostrpapers.core", "NostrPapersError"),
    "ConnectionState": ("nostrpapers.models", "ConnectionState"),
    "EventKind": ("nostrpapers.models", "EventKind"),
    "Filter": ("nostrpapers.models", "Filter"),
    "Relay": ("nostrpapers.models", "Relay"),
    "SignedEvent": ("nostrpapers.models", "SignedEvent"),
    "SigningMode": ("nostrpapers.models", "SigningMode"),
    "UnsignedEvent": ("nostrpapers.models", "UnsignedEvent"),
    "ClientConfig": ("nostrpapers.client", "ClientConfig"),
    "EventFactory": ("nostrpapers.client", "EventFactory"),
    "Identity": ("nostrpapers.client", "Identity"),
    "MultiRelayPricingAggregator": ("nostrpapers.client", "MultiRelayPricingAggregator"),
    "PricingApiClient": ("nostrpapers.client", "PricingApiClient"),
    "RelayConnection": ("nostrpapers.client", "RelayConnection"),
    "RelayPool": ("nostrpapers.client", "RelayPool"),
    "RelayPoolConfig": ("nostrpapers.client", "RelayPoolConfig"),
    "Session": ("nostrpapers.client", "Session"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'nostrpapers' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
