#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Per-account mailbox watching for mailbuzz.

This module contains the WatchLoop, which notifies about unseen messages
newer than anything it has already notified about and then waits in IDLE,
and the AccountWorker thread, which runs a WatchLoop and reconnects with
capped exponential backoff when the connection breaks.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from mailbuzz import session as imap_session
from mailbuzz.headers import summarize_headers
from mailbuzz.notifications import (
    format_body,
    format_title,
    run_notification_command,
)
from mailbuzz.session import ProtocolError

logger = logging.getLogger(__name__)

MAX_CONNECT_ATTEMPTS = 5
BACKOFF_BASE = 2  # Sleeps 1, 2, 4, 8, 16 seconds


def advance_watermark(unseen, watermark):
    """Split the unseen set against the last notified id.

    Args:
        unseen: Set of unseen message ids.
        watermark: Highest id already notified about.

    Returns:
        tuple: (ids newer than the watermark, new watermark). The watermark
               never decreases.
    """
    delta = {msg_id for msg_id in unseen if msg_id > watermark}
    return delta, max(watermark, max(unseen, default=0))


class WatchLoop:
    """Watches one mailbox session and reports its unseen count.

    A WatchLoop lives for one session. Its watermark starts at 0, so a loop
    restarted after a reconnect may notify once more about messages that
    are still unseen.

    Attributes:
        index: Account index used as the aggregation key.
        account: Account being watched.
        channel: EventChannel receiving (index, unseen count) events.
        notifier: Object with show(title, lines) for desktop notifications.
        watermark: Highest message id already notified about.
    """

    def __init__(self, index, account, channel, notifier, run_command=None):
        self.index = index
        self.account = account
        self.channel = channel
        self.notifier = notifier
        self.run_command = run_command or run_notification_command
        self.watermark = 0

    def notify(self, session, new_ids, num_unseen):
        """Notify about newly arrived messages.

        Returns:
            list: The (date, subject) pairs that were notified, newest first.
        """
        headers = session.fetch_headers(new_ids)
        summaries = summarize_headers(headers, account_name=self.account.name)
        if not summaries:
            return summaries

        if self.account.notification_command:
            self.run_command(self.account.name, self.account.notification_command)

        subjects = [subject for _, subject in summaries]
        self.notifier.show(
            format_title(self.account.name, num_unseen), format_body(subjects)
        )
        return summaries

    def cycle(self, session):
        """Run one check-notify-report-wait cycle.

        Returns:
            bool: False when the channel is closed and the loop should stop.

        Raises:
            ProtocolError: If any mailbox operation fails.
        """
        unseen = session.search_unseen()
        num_unseen = len(unseen)

        new_ids, self.watermark = advance_watermark(unseen, self.watermark)
        if new_ids:
            logger.info(
                "%s: %d new message(s), %d unseen",
                self.account.name,
                len(new_ids),
                num_unseen,
            )
            self.notify(session, new_ids, num_unseen)

        if not self.channel.send(self.index, num_unseen):
            # we're exiting
            return False

        session.wait_for_change()
        return True

    def run(self, session):
        """Cycle until the channel closes or a ProtocolError propagates."""
        while self.cycle(session):
            pass


def connect_with_backoff(account, connect=None, sleep=time.sleep):
    """Connect an account, retrying transport failures with backoff.

    Sleeps 1, 2, 4, 8 and 16 seconds after consecutive transport failures.
    Protocol failures (authentication, missing IDLE) are not retried.

    Args:
        account: Account to connect.
        connect: Callable returning a session, defaults to session.connect.
        sleep: Callable used for the backoff delay.

    Returns:
        MailboxSession or None: The session, or None after giving up.
    """
    connect = connect or imap_session.connect

    for attempt in range(MAX_CONNECT_ATTEMPTS):
        try:
            return connect(account)
        except ProtocolError as e:
            if not e.retryable:
                logger.error("%s host produced bad IMAP tunnel: %s", account.name, e)
                return None

            wait = BACKOFF_BASE ** attempt
            logger.warning(
                "Failed to connect account %s: %s; retrying in %ss",
                account.name,
                e,
                wait,
            )
            sleep(wait)

    logger.error(
        "Giving up on %s after %d connection attempts",
        account.name,
        MAX_CONNECT_ATTEMPTS,
    )
    return None


def preflight_accounts(accounts, connect=None, sleep=time.sleep):
    """Connect all accounts concurrently before any worker starts.

    Args:
        accounts: Configured accounts, in index order.
        connect: Callable returning a session, defaults to session.connect.
        sleep: Callable used for the backoff delay.

    Returns:
        list: (index, account, session) for every account that connected.
              Indexes are positions in ``accounts``.
    """
    if not accounts:
        return []

    with ThreadPoolExecutor(max_workers=len(accounts)) as executor:
        futures = [
            executor.submit(connect_with_backoff, account, connect, sleep)
            for account in accounts
        ]
        sessions = []
        for account, future in zip(accounts, futures):
            try:
                sessions.append(future.result())
            except Exception:
                logger.exception("Dropping %s: connection check failed", account.name)
                sessions.append(None)

    return [
        (index, account, session)
        for index, (account, session) in enumerate(zip(accounts, sessions))
        if session is not None
    ]


class AccountWorker(threading.Thread):
    """Thread watching one account for the lifetime of the process.

    Runs a WatchLoop on the session it was given. When the loop fails, the
    session is dropped and a new one is opened with connect_with_backoff;
    each new session gets a fresh WatchLoop. The worker ends when the
    channel closes or reconnecting gives up.

    Attributes:
        index: Account index used as the aggregation key.
        account: Account being watched.
        loop: The current WatchLoop, or None before the first cycle.
    """

    def __init__(
        self,
        index,
        account,
        session,
        channel,
        notifier,
        connect=None,
        sleep=time.sleep,
        run_command=None,
    ):
        super().__init__(name=f"mailbuzz-{account.name}", daemon=True)
        self.index = index
        self.account = account
        self.session = session
        self.channel = channel
        self.notifier = notifier
        self.connect = connect
        self.sleep = sleep
        self.run_command = run_command
        self.loop = None

    def start(self):
        self.channel.register()
        super().start()

    def run(self):
        try:
            self.supervise()
        except Exception:
            logger.exception("%s: watcher stopped unexpectedly", self.account.name)
        finally:
            self.channel.release()

    def supervise(self):
        """Watch, and reconnect on failure, until stopped or out of retries.

        Returns:
            bool: True if the worker stopped because the channel closed,
                  False if it gave up reconnecting.
        """
        session = self.session
        while session is not None:
            self.loop = WatchLoop(
                self.index,
                self.account,
                self.channel,
                self.notifier,
                run_command=self.run_command,
            )
            try:
                self.loop.run(session)
            except ProtocolError as e:
                logger.warning("connection to %s failed: %s", self.account.name, e)
                session.logout()
                logger.info(
                    "connection to %s lost; trying to reconnect...", self.account.name
                )
                session = connect_with_backoff(self.account, self.connect, self.sleep)
                if session is not None:
                    logger.info("%s connection reestablished", self.account.name)
                continue

            session.logout()
            return True

        logger.error(
            "%s: no longer watched; its unseen count is frozen", self.account.name
        )
        return False
