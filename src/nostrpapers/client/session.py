"""
Client session: identity, key store, relay pool and pricing in one place.

A [Session][nostrpapers.client.session.Session] is the explicit context
object passed to whatever drives the client (the CLI, a web handler, a
test). There are no module-level singletons; two sessions in one process
are fully independent.

Key persistence follows the identity mode:

* Local identities (generated or imported) store their private key in the
  [KeyStore][nostrpapers.client.session.KeyStore] and are restored by
  ``start()``.
* Delegated identities never store a secret.
* ``sign_out()`` forgets the identity and wipes the stored key.

Examples:
    ```python
    async with Session.from_yaml("config/client.yaml") as session:
        if not session.is_signed_in:
            session.sign_in_generate()
        paper = await session.factory.paper("Title", body, "Abstract", "paper-1")
        results = await session.pool.publish(paper)
    ```
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, Field, ValidationError

from nostrpapers.core.exceptions import ConfigurationError, InvalidKeyFormat
from nostrpapers.core.logger import Logger
from nostrpapers.core.metrics import MetricsConfig
from nostrpapers.core.yaml import load_yaml
from nostrpapers.nips.nip07 import ExternalSigner  # noqa: TC001
from nostrpapers.nips.nip11 import fetch_relay_info
from nostrpapers.utils.keys import ENV_PRIVATE_KEY, load_private_key_from_env
from nostrpapers.utils.transport import SocketFactory, open_relay_socket

from .factory import EventFactory
from .identity import (
    DEFAULT_SIGNER_TIMEOUT,
    Identity,
    connect_delegated,
    generate,
    import_local,
)
from .pool import InfoFetcher, RelayPool, RelayPoolConfig
from .pricing import MultiRelayPricingAggregator, PricingConfig


PRIVATE_KEY_ENTRY: Final[str] = "nostr-private-key"  # pragma: allowlist secret
DEFAULT_STORE_PATH: Final[str] = "~/.config/nostrpapers/session.json"


# =============================================================================
# Configuration
# =============================================================================


class SessionConfig(BaseModel):
    """Where the local key lives and how long a delegated signer may take."""

    store_path: str | None = Field(
        default=DEFAULT_STORE_PATH,
        description="JSON key store file; null keeps the key in memory only",
    )
    private_key_env: str = Field(
        default=ENV_PRIVATE_KEY,
        description="Environment variable checked before the key store",
    )
    signer_timeout: float = Field(
        default=DEFAULT_SIGNER_TIMEOUT,
        ge=1.0,
        le=600.0,
        description="Seconds to wait for a delegated signer",
    )


class ClientConfig(BaseModel):
    """Top-level client configuration (one YAML document)."""

    pool: RelayPoolConfig = Field(default_factory=RelayPoolConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @classmethod
    def from_yaml(cls, config_path: str) -> ClientConfig:
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> ClientConfig:
        """Validate a configuration mapping.

        Raises:
            ConfigurationError: If any section fails validation.
        """
        try:
            return cls(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid client configuration: {e}") from e


# =============================================================================
# Key Store
# =============================================================================


class KeyStore:
    """Persists the local private key under ``"nostr-private-key"``.

    The store is a small JSON object written with ``0600`` permissions. With
    ``path=None`` the key only lives as long as the object.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else None
        self._memory: dict[str, str] = {}
        self._logger = Logger("key_store")

    def _read(self) -> dict[str, Any]:
        if self.path is None:
            return dict(self._memory)
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self._logger.warning("key_store_unreadable", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        if self.path is None:
            self._memory = dict(data)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)

    def load(self) -> str | None:
        value = self._read().get(PRIVATE_KEY_ENTRY)
        return value if isinstance(value, str) else None

    def save(self, private_key: str) -> None:
        data = self._read()
        data[PRIVATE_KEY_ENTRY] = private_key
        self._write(data)

    def wipe(self) -> None:
        """Remove the stored key. Idempotent."""
        data = self._read()
        if PRIVATE_KEY_ENTRY not in data:
            return
        del data[PRIVATE_KEY_ENTRY]
        if self.path is not None and not data:
            self.path.unlink(missing_ok=True)
            return
        self._write(data)

    def __repr__(self) -> str:
        return f"KeyStore(path={str(self.path) if self.path else None!r})"


# =============================================================================
# Session
# =============================================================================


class Session:
    """Owns the identity, key store, relay pool, pricing aggregator and factory.

    Attributes:
        config: The validated client configuration.
        key_store: Where local private keys are persisted.
        factory: Event builder bound to the current identity.
        pool: Relay connections for publish/query/subscribe.
        pricing: Pricing clients for the same relay URLs.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        key_store: KeyStore | None = None,
        socket_factory: SocketFactory = open_relay_socket,
        info_fetcher: InfoFetcher = fetch_relay_info,
    ) -> None:
        self.config = config or ClientConfig()
        self.key_store = key_store or KeyStore(self.config.session.store_path)
        self.factory = EventFactory(signer_timeout=self.config.session.signer_timeout)
        self.pool = RelayPool(
            self.config.pool, socket_factory=socket_factory, info_fetcher=info_fetcher
        )
        self.pricing = MultiRelayPricingAggregator(
            self.config.pricing, relays=self.config.pool.relays
        )
        self._logger = Logger("session")

    @classmethod
    def from_yaml(cls, config_path: str, **kwargs: Any) -> Session:
        return cls(ClientConfig.from_yaml(config_path), **kwargs)

    @property
    def identity(self) -> Identity | None:
        return self.factory.identity

    @property
    def is_signed_in(self) -> bool:
        return self.factory.identity is not None

    def _set_identity(self, identity: Identity | None) -> None:
        self.factory.identity = identity
        if identity is not None:
            self._logger.info("signed_in", pubkey=identity.public_key, mode=identity.mode)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, *, connect: bool = True) -> None:
        """Restore a persisted identity and, by default, connect the configured relays."""
        self.restore()
        if connect:
            await self.pool.connect()

    def restore(self) -> Identity | None:
        """Sign in from the environment key, else from the key store.

        A malformed stored key is logged and ignored; the session stays
        signed out.
        """
        env_var = self.config.session.private_key_env
        env_key = load_private_key_from_env(env_var)
        stored = None if env_key else self.key_store.load()
        private_key = env_key or stored
        if private_key is None:
            return None

        try:
            identity = import_local(private_key)
        except InvalidKeyFormat as e:
            source = env_var if env_key else "key_store"
            self._logger.warning("restore_failed", source=source, error=str(e))
            return None
        self._set_identity(identity)
        return identity

    async def close(self) -> None:
        """Disconnect every relay. The identity and stored key are kept."""
        await self.pool.close()

    async def __aenter__(self) -> Session:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Sign-in / Sign-out
    # -------------------------------------------------------------------------

    def sign_in_generate(self) -> Identity:
        """Create a fresh local identity and persist its key."""
        identity = generate()
        assert identity.private_key is not None  # noqa: S101  # Local identity
        self.key_store.save(identity.private_key)
        self._set_identity(identity)
        return identity

    def sign_in_local(self, private_key_hex: str) -> Identity:
        """Import a hex private key and persist it.

        Raises:
            InvalidKeyFormat: If the key is not 64 hex characters.
        """
        identity = import_local(private_key_hex)
        assert identity.private_key is not None  # noqa: S101  # Local identity
        self.key_store.save(identity.private_key)
        self._set_identity(identity)
        return identity

    async def sign_in_delegated(self, signer: ExternalSigner) -> Identity:
        """Sign in through an external signer; any stored local key is wiped.

        Raises:
            SigningRejected: If the signer refuses or times out.
            InvalidKeyFormat: If the signer reports a malformed public key.
        """
        identity = await connect_delegated(signer, timeout=self.config.session.signer_timeout)
        self.key_store.wipe()
        self._set_identity(identity)
        return identity

    def sign_out(self) -> None:
        """Forget the identity and erase the stored private key."""
        was_signed_in = self.is_signed_in
        self._set_identity(None)
        self.key_store.wipe()
        if was_signed_in:
            self._logger.info("signed_out")

    # -------------------------------------------------------------------------
    # Relays
    # -------------------------------------------------------------------------

    async def add_relay(self, url: str) -> None:
        """Connect a user-added relay and register it for pricing.

        Raises:
            ValueError: If ``url`` is not a valid relay URL.
        """
        conn = await self.pool.add_relay(url)
        self.pricing.add_relay(conn.url)

    async def remove_relay(self, url: str) -> None:
        await self.pool.remove_relay(url)
        self.pricing.remove_relay(url)

    def __repr__(self) -> str:
        pubkey = self.identity.public_key[:8] if self.identity else None
        return f"Session(identity={pubkey!r}, pool={self.pool!r})"
