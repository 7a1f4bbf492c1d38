"""Command-line client.

Identity commands work offline; relay commands connect to the configured
relays (or the ``--relay`` overrides), run once and disconnect. ``watch``
keeps a live subscription open, with an optional Prometheus endpoint,
until SIGINT or SIGTERM.

Examples:
    ```bash
    python -m nostrpapers keygen
    python -m nostrpapers publish-paper --title "On Relays" --abstract "..." paper.md
    python -m nostrpapers query --kind 30023 --limit 20
    python -m nostrpapers pricing --size-bytes 120000 --relay wss://relay.example.com
    python -m nostrpapers watch --kind 1111 --tag E=<paper id> --log-level DEBUG
    ```
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from nostrpapers.client.session import ClientConfig, Session
from nostrpapers.core.exceptions import IdentityError, NostrPapersError
from nostrpapers.core.logger import Logger, StructuredFormatter
from nostrpapers.core.metrics import MetricsServer
from nostrpapers.core.yaml import load_yaml
from nostrpapers.models.event import Filter, SignedEvent


DEFAULT_CONFIG = Path("config") / "client.yaml"

logger = Logger("cli")


def _emit(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, default=str))  # noqa: T201


def _print_event(event: SignedEvent) -> None:
    _emit(event.to_dict())


# =============================================================================
# Identity Commands
# =============================================================================


async def cmd_keygen(session: Session, _args: argparse.Namespace) -> int:
    identity = session.sign_in_generate()
    _emit({"pubkey": identity.public_key, "npub": identity.npub})
    return 0


async def cmd_whoami(session: Session, _args: argparse.Namespace) -> int:
    identity = session.restore()
    if identity is None:
        logger.warning("not_signed_in")
        return 1
    _emit({"pubkey": identity.public_key, "npub": identity.npub, "mode": identity.mode})
    return 0


async def cmd_logout(session: Session, _args: argparse.Namespace) -> int:
    session.sign_out()
    return 0


# =============================================================================
# Relay Commands
# =============================================================================


def _build_filter(args: argparse.Namespace) -> Filter:
    tags: dict[str, list[str]] = {}
    for raw in args.tag or []:
        name, sep, value = raw.partition("=")
        if not sep:
            raise ValueError(f"Tag filter must be NAME=VALUE: {raw!r}")
        tags.setdefault(name, []).append(value)
    return Filter(
        authors=tuple(args.author) if args.author else None,
        kinds=tuple(args.kind) if args.kind else None,
        since=args.since,
        until=args.until,
        limit=args.limit,
        tags={name: tuple(values) for name, values in tags.items()},
    )


async def cmd_publish_paper(session: Session, args: argparse.Namespace) -> int:
    content = Path(args.file).read_text(encoding="utf-8")
    await session.start()
    if not session.is_signed_in:
        logger.error("not_signed_in")
        return 1

    identifier = args.identifier or Path(args.file).stem
    paper = await session.factory.paper(args.title, content, args.abstract, identifier)
    results = await session.pool.publish(paper)
    _emit({"id": paper.id, "relays": results})
    return 0 if any(results.values()) else 1


async def cmd_query(session: Session, args: argparse.Namespace) -> int:
    query_filter = _build_filter(args)
    await session.start()
    for event in await session.pool.query([query_filter], timeout=args.timeout):
        _print_event(event)
    return 0


async def cmd_pricing(session: Session, args: argparse.Namespace) -> int:
    quotes = await session.pricing.calculate_pricing_for_all_relays(args.size_bytes, args.years)
    _emit({url: quote.model_dump(mode="json") for url, quote in quotes.items()})
    return 0 if quotes else 1


async def cmd_watch(session: Session, args: argparse.Namespace) -> int:
    query_filter = _build_filter(args)
    metrics_config = session.config.metrics
    metrics_server = MetricsServer(metrics_config)
    await metrics_server.start()
    if metrics_server.running:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    stop = asyncio.Event()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        await session.start()
        subscription_id = await session.pool.subscribe([query_filter], _print_event)
        await stop.wait()
        await session.pool.unsubscribe(subscription_id)
        return 0
    finally:
        await metrics_server.stop()


COMMANDS: dict[str, Callable[[Session, argparse.Namespace], Awaitable[int]]] = {
    "keygen": cmd_keygen,
    "whoami": cmd_whoami,
    "logout": cmd_logout,
    "publish-paper": cmd_publish_paper,
    "query": cmd_query,
    "pricing": cmd_pricing,
    "watch": cmd_watch,
}


# =============================================================================
# Argument Parsing
# =============================================================================


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--kind", type=int, action="append", help="Event kind (repeatable)")
    parser.add_argument("--author", action="append", help="Author pubkey hex (repeatable)")
    parser.add_argument("--since", type=int, help="Unix timestamp lower bound")
    parser.add_argument("--until", type=int, help="Unix timestamp upper bound")
    parser.add_argument("--limit", type=int, help="Maximum events per relay")
    parser.add_argument("--tag", action="append", help="Tag filter NAME=VALUE (repeatable)")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="nostrpapers",
        description="Multi-relay Nostr client for research papers",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Client config path (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--relay",
        action="append",
        help="Relay URL overriding the configured list (repeatable)",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("keygen", help="Generate and store a new local identity")
    sub.add_parser("whoami", help="Show the stored identity")
    sub.add_parser("logout", help="Erase the stored identity")

    publish = sub.add_parser("publish-paper", help="Sign and publish a long-form paper")
    publish.add_argument("file", help="Markdown file with the paper body")
    publish.add_argument("--title", required=True)
    publish.add_argument("--abstract", required=True)
    publish.add_argument("--identifier", help="Paper identifier (default: file name stem)")

    query = sub.add_parser("query", help="Fetch stored events from all relays")
    _add_filter_args(query)
    query.add_argument("--timeout", type=float, help="Per-relay quiescence timeout (seconds)")

    pricing = sub.add_parser("pricing", help="Compare storage quotes across relays")
    pricing.add_argument("--size-bytes", type=int, required=True)
    pricing.add_argument("--years", type=int, help="Storage duration (default: from config)")

    watch = sub.add_parser("watch", help="Print live events until interrupted")
    _add_filter_args(watch)

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Install a ``StructuredFormatter`` on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def load_config(path: Path, relays: list[str] | None) -> ClientConfig:
    """Load the client config, falling back to defaults when the file is missing."""
    if path.exists():
        config_dict = load_yaml(path)
    else:
        logger.warning("config_not_found", path=str(path))
        config_dict = {}
    if relays:
        config_dict.setdefault("pool", {})["relays"] = relays
    return ClientConfig.from_dict(config_dict)


async def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args, build the session and run one command."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        session = Session(load_config(args.config, args.relay))
    except NostrPapersError as e:
        logger.error("config_invalid", error=str(e))
        return 1

    try:
        return await COMMANDS[args.command](session, args)
    except IdentityError as e:
        logger.error("identity_failed", error=str(e))
        return 1
    except (NostrPapersError, ValueError, OSError) as e:
        logger.error(f"{args.command.replace('-', '_')}_failed", error=str(e))
        return 1
    finally:
        await session.close()


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
