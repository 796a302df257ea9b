"""Entry point for the Ronin address archiver."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Callable

import config
from archive.collector import CollectionReport, CollectorSettings, TransactionCollector
from archive.ronin_rest import RoninRestError
from utils.addressing import InvalidAddressError, parse_address
from utils.state_file import FileLockError

PROMPT = "Please enter your Ronin address: "

EXIT_OK = 0
EXIT_FAILED = 1


def configure_logging() -> None:
    os.makedirs(config.LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(config.APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def prompt_address(
    input_fn: Callable[[str], str] | None = None,
    print_fn: Callable[[str], None] | None = None,
) -> str:
    """Ask until the answer parses. EOFError propagates when stdin closes."""
    input_fn = input_fn or input
    print_fn = print_fn or print
    while True:
        raw = input_fn(PROMPT)
        try:
            return parse_address(raw.strip())
        except InvalidAddressError as exc:
            print_fn(str(exc))


async def run_collection(settings: CollectorSettings) -> CollectionReport:
    collector = TransactionCollector(settings)
    try:
        return await collector.run()
    finally:
        logger.info("HTTP_STATS %s", collector.runtime_stats())
        await collector.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ronin-archive",
        description="Download every transaction of a Ronin address with decoded input and receipt.",
    )
    parser.add_argument("--address", help="Ronin address (ronin:... or 0x...); prompts when omitted")
    parser.add_argument(
        "--localhost",
        action="store_true",
        help=f"Query {config.RONIN_REST_LOCALHOST_URL} instead of {config.RONIN_REST_URL}",
    )
    parser.add_argument("--output-dir", default=None, help="Directory for <address>.json (default: current dir)")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()

    if args.address is not None:
        try:
            address = parse_address(args.address)
        except InvalidAddressError as exc:
            parser.error(str(exc))
    else:
        try:
            address = prompt_address()
        except (EOFError, KeyboardInterrupt):
            logger.error("No address given on standard input")
            return EXIT_FAILED

    settings = CollectorSettings.from_config(address, localhost=args.localhost, output_dir=args.output_dir)
    logger.info(
        "COLLECT_START address=%s base_url=%s concurrency=%s max_retries=%s",
        settings.address,
        settings.base_url,
        settings.concurrency,
        settings.retry_policy.max_retries,
    )
    try:
        report = asyncio.run(run_collection(settings))
    except RoninRestError as exc:
        logger.error("COLLECT_FAILED address=%s code=%s error=%s", address, exc.code, exc)
        return EXIT_FAILED
    except (FileLockError, OSError) as exc:
        logger.error("COLLECT_WRITE_FAILED address=%s error=%s", address, exc)
        return EXIT_FAILED

    logger.info(
        "COLLECT_SUMMARY sent=%s received=%s unique=%s skipped_self=%s resumed=%s written=%s path=%s",
        report.sent,
        report.received,
        report.unique,
        report.skipped_self,
        report.resumed,
        report.written,
        report.output_path,
    )
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
