#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Entry point for mailbuzz when run as a module.

Usage:
    python -m mailbuzz [--config PATH] [--log-level LEVEL] [--no-notify]
    python -m mailbuzz --set-password USERNAME

This module handles application startup including:
- Logging to stderr (stdout carries the status stream)
- Loading accounts and connecting them concurrently
- One watcher thread per account and the aggregation loop
"""

import argparse
import getpass
import logging
import signal
import sys

from mailbuzz.aggregator import Aggregator, EventChannel
from mailbuzz.config import ACCOUNTS_PATH, ConfigError, load_accounts, store_password
from mailbuzz.notifications import DesktopNotifier, NullNotifier
from mailbuzz.status import StatusWriter, render_status
from mailbuzz.watcher import AccountWorker, preflight_accounts

logger = logging.getLogger("mailbuzz")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="mailbuzz",
        description="Watch IMAP inboxes and report new mail to the desktop and a status bar.",
    )
    parser.add_argument(
        "--config",
        default=ACCOUNTS_PATH,
        help=f"Accounts file (default: {ACCOUNTS_PATH})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for messages written to stderr",
    )
    parser.add_argument(
        "--no-notify",
        action="store_true",
        help="Only write the status stream; show no desktop notifications",
    )
    parser.add_argument(
        "--set-password",
        metavar="USERNAME",
        help="Store a password for USERNAME in the system keyring and exit",
    )
    return parser.parse_args(argv)


def _install_signal_handlers():
    # SIGTERM interrupts the aggregator the same way Ctrl-C does
    signal.signal(signal.SIGTERM, signal.default_int_handler)


def run(accounts, notify=True, present=None):
    """Watch accounts until every worker has stopped or we are interrupted.

    Args:
        accounts: Configured accounts; list position is the account index.
        notify: Whether to show desktop notifications.
        present: Callable receiving status records, defaults to stdout.

    Returns:
        int: Process exit status.
    """
    if not accounts:
        logger.info("No accounts in config; exiting...")
        return 0

    try:
        connected = preflight_accounts(accounts)
    except KeyboardInterrupt:
        logger.info("Interrupted while connecting; exiting")
        return 0
    if not connected:
        logger.info("No accounts in config worked; exiting...")
        return 0

    channel = EventChannel()
    aggregator = Aggregator(
        {index: account.name for index, account, _ in connected},
        render_status,
        present or StatusWriter(),
    )

    # Hold a sender slot so a worker that exits early cannot end the stream
    channel.register()
    for index, account, session in connected:
        notifier = DesktopNotifier() if notify else NullNotifier()
        AccountWorker(index, account, session, channel, notifier).start()
    channel.release()

    try:
        aggregator.run(channel)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        channel.close()
    return 0


def main(argv=None):
    """Main entry point for mailbuzz."""
    args = parse_args(argv)
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.set_password:
        password = getpass.getpass(f"Password for {args.set_password}: ")
        store_password(args.set_password, password)
        return 0

    try:
        accounts = load_accounts(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    _install_signal_handlers()
    return run(accounts, notify=not args.no_notify)


if __name__ == "__main__":
    sys.exit(main())
