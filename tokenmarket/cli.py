"""Command line surface: one subcommand per marketplace operation."""

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import structlog

from tokenmarket.app import TokenMarket
from tokenmarket.commands.dispatcher import CommandDispatcher, CommandResult
from tokenmarket.commands.validation import parse_attributes
from tokenmarket.core.config import settings
from tokenmarket.core.logging import Logger
from tokenmarket.core.logging import configure as configure_logging
from tokenmarket.exceptions import (
    GatewayError,
    InvariantViolation,
    MarketError,
    UploadError,
    ValidationError,
)
from tokenmarket.ledger.transport import HTTPLedgerTransport
from tokenmarket.metadata.client import MetadataClient
from tokenmarket.registry.asset_registry import RegistryEvent
from tokenmarket.render import render_records
from tokenmarket.server.metadata_server import MetadataServer

logger: Logger = structlog.get_logger()

EXIT_OK = 0
EXIT_VALIDATION = 2
EXIT_INVARIANT = 3
EXIT_GATEWAY = 4
EXIT_UPLOAD = 5
EXIT_ERROR = 1

# Distinct prefix and exit code per error kind
ERROR_REPORTS: list[tuple[type[MarketError], str, int]] = [
    (ValidationError, "Invalid input", EXIT_VALIDATION),
    (InvariantViolation, "Not allowed", EXIT_INVARIANT),
    (GatewayError, "Ledger error", EXIT_GATEWAY),
    (UploadError, "Upload failed", EXIT_UPLOAD),
]

CommandRunner = Callable[[CommandDispatcher, argparse.Namespace], Awaitable[CommandResult]]


async def _create_asset(
    dispatcher: CommandDispatcher, args: argparse.Namespace
) -> CommandResult:
    attributes = parse_attributes(args.attributes) if args.attributes else ()
    image_path = Path(args.image)
    try:
        image = image_path.read_bytes()
    except OSError as e:
        raise ValidationError(f"Cannot read image {image_path}: {e}") from None

    return await dispatcher.create_asset_with_metadata(
        args.name,
        args.description,
        attributes,
        image,
        image_filename=image_path.name,
    )


COMMANDS: dict[str, tuple[str, list[tuple[str, str]], CommandRunner]] = {
    "set-sale-price": (
        "List a token for direct sale (price 0 unlists it)",
        [("token_id", "Token ID"), ("price", "Sale price in ETH")],
        lambda d, a: d.set_sale_price(a.token_id, a.price),
    ),
    "confirm-purchase": (
        "Buy a token listed for sale",
        [("token_id", "Token ID"), ("price", "Purchase price in ETH")],
        lambda d, a: d.confirm_purchase(a.token_id, a.price),
    ),
    "set-rental-price": (
        "Offer a token for rent",
        [("token_id", "Token ID"), ("price", "Rental price in ETH")],
        lambda d, a: d.set_rental_price(a.token_id, a.price),
    ),
    "set-rental-duration": (
        "Set the rental period of a token",
        [("token_id", "Token ID"), ("seconds", "Rental duration in seconds")],
        lambda d, a: d.set_rental_duration(a.token_id, a.seconds),
    ),
    "confirm-rent": (
        "Rent a token offered for rent",
        [("token_id", "Token ID"), ("amount", "Rental amount in ETH")],
        lambda d, a: d.confirm_rent(a.token_id, a.amount),
    ),
    "create-auction": (
        "Put a token up for auction",
        [("token_id", "Token ID"), ("seconds", "Auction duration in seconds")],
        lambda d, a: d.create_auction(a.token_id, a.seconds),
    ),
    "place-bid": (
        "Bid on an auctioned token",
        [("token_id", "Token ID"), ("amount", "Bid amount in ETH")],
        lambda d, a: d.place_bid(a.token_id, a.amount),
    ),
    "end-auction": (
        "Close an auction",
        [("token_id", "Token ID")],
        lambda d, a: d.end_auction(a.token_id),
    ),
    "transfer": (
        "Transfer a token to another account",
        [("token_id", "Token ID"), ("recipient", "Recipient address")],
        lambda d, a: d.transfer(a.token_id, a.recipient),
    ),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokenmarket",
        description="Manage tokenized assets for sale, rent and auction.",
    )
    parser.add_argument("--account", default=settings.ACCOUNT, help="Connected account")
    parser.add_argument("--ledger-url", default=settings.LEDGER_URL)
    parser.add_argument("--contract", default=settings.CONTRACT_ADDRESS)
    parser.add_argument("--metadata-url", default=settings.METADATA_URL)
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("assets", help="Refresh and list the account's assets")

    watch = sub.add_parser("watch", help="Live view with rental countdown")
    watch.add_argument(
        "--refresh-interval", type=float, default=settings.REFRESH_INTERVAL
    )
    watch.add_argument("--events-url", default=settings.LEDGER_EVENTS_URL)

    for name, (help_text, params, _) in COMMANDS.items():
        command = sub.add_parser(name, help=help_text)
        for dest, param_help in params:
            command.add_argument(dest, help=param_help)

    create = sub.add_parser("create-asset", help="Create an asset with metadata")
    create.add_argument("--name", required=True)
    create.add_argument("--description", required=True)
    create.add_argument("--image", required=True, help="Path to the image file")
    create.add_argument(
        "--attributes",
        default="",
        help='JSON: {"attributes": [{"traitType": "Size", "value": "100x100"}]}',
    )

    serve = sub.add_parser("serve-metadata", help="Run the local metadata store")
    serve.add_argument("--port", type=int, default=settings.METADATA_PORT)
    serve.add_argument("--storage-dir", default=settings.METADATA_STORAGE_DIR)

    return parser


def report_error(error: BaseException) -> int:
    for error_type, prefix, code in ERROR_REPORTS:
        if isinstance(error, error_type):
            print(f"{prefix}: {error}", file=sys.stderr)
            return code

    print(f"Error: {error}", file=sys.stderr)
    return EXIT_ERROR


def _build_market(args: argparse.Namespace, **overrides: Any) -> TokenMarket:
    return TokenMarket(
        account=args.account,
        transport=HTTPLedgerTransport(url=args.ledger_url, contract_address=args.contract),
        metadata=MetadataClient(base_url=args.metadata_url),
        **overrides,
    )


async def run_command(args: argparse.Namespace) -> int:
    market = _build_market(args, refresh_interval=0, events_url="")

    async with market:
        if args.command == "assets":
            await market.refresher.refresh()
        elif args.command == "create-asset":
            result = await _create_asset(market.dispatcher, args)
            print(f"Asset created: tx={result.tx_hash} metadata={result.metadata_uri}")
        else:
            _, _, runner = COMMANDS[args.command]
            result = await runner(market.dispatcher, args)
            print(f"{args.command} token {result.token_id} confirmed: tx={result.tx_hash}")

        print(render_records(market.registry.records()))

    return EXIT_OK


async def run_watch(args: argparse.Namespace) -> int:
    market = _build_market(
        args, refresh_interval=args.refresh_interval, events_url=args.events_url
    )

    async with market:
        registry = market.registry

        def redraw(event: RegistryEvent) -> None:
            if event == RegistryEvent.CLOSED:
                return
            print("\033[2J\033[H" + render_records(registry.records()), flush=True)

        registry.subscribe(redraw)
        redraw(RegistryEvent.REPLACED)

        # Runs until interrupted
        await asyncio.Event().wait()

    return EXIT_OK


async def run_metadata_server(args: argparse.Namespace) -> int:
    server = MetadataServer(storage_dir=args.storage_dir, port=args.port)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
    return EXIT_OK


async def dispatch(args: argparse.Namespace) -> int:
    if args.command == "serve-metadata":
        return await run_metadata_server(args)
    if args.command == "watch":
        return await run_watch(args)
    return await run_command(args)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        return asyncio.run(dispatch(args))
    except KeyboardInterrupt:
        return EXIT_OK
    except MarketError as e:
        return report_error(e)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
