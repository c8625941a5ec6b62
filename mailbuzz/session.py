#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""IMAP session adapter for mailbuzz.

This module wraps one authenticated IMAPClient connection to one account's
INBOX and exposes the few operations the watcher needs: unseen search,
header fetch, a blocking IDLE wait, and logout. Every failure is reported
as a ProtocolError tagged as either a transport or a protocol failure.
"""

import imaplib
import logging

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from mailbuzz.config import ConfigError

logger = logging.getLogger(__name__)

TRANSPORT = "transport"
PROTOCOL = "protocol"

CONNECT_TIMEOUT = 30  # Seconds
# Servers may drop IDLE after 30 minutes (RFC 2177), so re-check before that
IDLE_KEEPALIVE = 29 * 60  # Seconds
HEADER_ITEM = b"BODY[HEADER]"


class ProtocolError(Exception):
    """A mailbox operation failed.

    Attributes:
        kind: TRANSPORT for network-layer failures that a reconnect may fix,
              PROTOCOL for authentication, capability or response failures.
    """

    def __init__(self, message, kind=TRANSPORT):
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self):
        return self.kind == TRANSPORT


def _translate(e, action):
    """Map a library exception onto a ProtocolError."""
    # IMAP4.abort is an IMAP4.error but means the connection is gone
    if isinstance(e, (IMAPClientAbortError, imaplib.IMAP4.abort, OSError)):
        return ProtocolError(f"{action}: {e}", TRANSPORT)
    return ProtocolError(f"{action}: {e}", PROTOCOL)


class MailboxSession:
    """Operations the watcher requires from a live mailbox connection."""

    def search_unseen(self):
        raise NotImplementedError

    def fetch_headers(self, ids):
        raise NotImplementedError

    def wait_for_change(self):
        raise NotImplementedError

    def logout(self):
        raise NotImplementedError


class ImapSession(MailboxSession):
    """MailboxSession backed by an IMAPClient connection with INBOX selected.

    Message identifiers are UIDs, so they stay valid while the mailbox
    changes underneath the session.
    """

    def __init__(self, account, client):
        self.account = account
        self.client = client

    def search_unseen(self):
        """Return the set of UIDs of unseen INBOX messages."""
        try:
            return set(self.client.search(["UNSEEN"]))
        except (IMAPClientError, OSError) as e:
            raise _translate(e, "UNSEEN search failed") from e

    def fetch_headers(self, ids):
        """Fetch raw header blocks without marking messages as seen.

        Args:
            ids: Iterable of UIDs.

        Returns:
            dict: UID -> header bytes, or None when the server returned no
                  header data for that UID.
        """
        ids = sorted(ids)
        if not ids:
            return {}

        try:
            response = self.client.fetch(ids, ["BODY.PEEK[HEADER]"])
        except (IMAPClientError, OSError) as e:
            raise _translate(e, "Header fetch failed") from e

        headers = {}
        for uid in ids:
            data = response.get(uid)
            headers[uid] = data.get(HEADER_ITEM) if data else None
        return headers

    def wait_for_change(self):
        """Block in IDLE until the server reports a change or keepalive expires."""
        try:
            self.client.idle()
            responses = self.client.idle_check(timeout=IDLE_KEEPALIVE)
            self.client.idle_done()
        except (IMAPClientError, OSError) as e:
            raise _translate(e, "IDLE failed") from e

        if responses:
            logger.debug("%s: IDLE woke up with %s", self.account.name, responses)
        else:
            logger.debug("%s: IDLE keepalive expired", self.account.name)

    def logout(self):
        """Log out, ignoring any error from an already broken connection."""
        try:
            self.client.logout()
        except Exception as e:
            logger.debug("%s: logout failed: %s", self.account.name, e)


def connect(account):
    """Open an IMAP session for an account.

    Logs in, verifies the server supports IDLE, and selects INBOX.

    Args:
        account: Account to connect.

    Returns:
        ImapSession: Ready to use session.

    Raises:
        ProtocolError: TRANSPORT for network failures, PROTOCOL for
                       authentication, capability or password failures.
    """
    try:
        client = IMAPClient(
            account.host, port=account.port, ssl=True, timeout=CONNECT_TIMEOUT
        )
    except (IMAPClientError, OSError) as e:
        raise _translate(e, f"Could not connect to {account.host}") from e
    except ValueError as e:
        # Malformed host names fail IDNA encoding before any network I/O
        raise ProtocolError(f"Could not connect to {account.host}: {e}", PROTOCOL) from e

    try:
        client.login(account.username.strip(), account.get_password())

        if not client.has_capability("IDLE"):
            capabilities = ",".join(
                c.decode("ascii", "replace") for c in client.capabilities()
            )
            raise ProtocolError(
                f"{account.host} does not support IDLE (capabilities: {capabilities})",
                PROTOCOL,
            )

        client.select_folder("INBOX")
    except ConfigError as e:
        _close_quietly(client)
        raise ProtocolError(str(e), PROTOCOL) from e
    except ProtocolError:
        _close_quietly(client)
        raise
    except (IMAPClientError, OSError) as e:
        _close_quietly(client)
        raise _translate(e, f"Could not open INBOX on {account.host}") from e
    except ValueError as e:
        _close_quietly(client)
        raise ProtocolError(f"Could not open INBOX on {account.host}: {e}", PROTOCOL) from e

    return ImapSession(account, client)


def _close_quietly(client):
    try:
        client.logout()
    except Exception:
        pass
