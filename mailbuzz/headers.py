#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Header parsing utilities for mailbuzz.

This module turns raw RFC 822 header blocks into (date, subject) pairs and
builds the newest-first summary shown in a new mail notification.
"""

import email
import logging
from datetime import datetime
from email.header import decode_header
from email.utils import parsedate_to_datetime

logger = logging.getLogger(__name__)

NO_SUBJECT = "<no subject>"


class HeaderParseError(ValueError):
    """Raised when a header block contains no usable header fields."""


def decode_header_safely(header):
    """Decode a MIME encoded header, falling back through common charsets.

    Args:
        header: Raw header value.

    Returns:
        str: Decoded header text, or "[Unsupported encoding]" on failure.
    """
    if not header:
        return ""

    try:
        result = ""
        for decoded_text, charset in decode_header(header):
            if isinstance(decoded_text, bytes):
                try:
                    part = decoded_text.decode(charset or "utf-8")
                except (UnicodeDecodeError, LookupError):
                    # latin-1 always decodes
                    part = decoded_text.decode("latin-1")
            else:
                part = decoded_text
            result += part
        return result
    except Exception:
        return "[Unsupported encoding]"


def parse_date(value, now=None):
    """Parse a Date header into an aware local datetime.

    Args:
        value: Raw Date header value, or None.
        now: Fallback datetime, defaults to the current local time.

    Returns:
        datetime: Parsed date, or the fallback when missing or unparsable.
    """
    fallback = now if now is not None else datetime.now().astimezone()
    if not value:
        return fallback

    try:
        # Naive results (-0000) are taken as local time
        return parsedate_to_datetime(value).astimezone()
    except (TypeError, ValueError, IndexError, OverflowError) as e:
        logger.warning("Failed to parse message date %r: %s", value, e)
        return fallback


def parse_header_block(blob, now=None):
    """Extract the send date and subject from a raw header block.

    Args:
        blob: Header bytes as returned by the server.
        now: Fallback date for messages without a usable Date header.

    Returns:
        tuple: (datetime, subject).

    Raises:
        HeaderParseError: If the block is missing, empty or has no fields.
    """
    if not blob:
        raise HeaderParseError("empty header block")
    if isinstance(blob, str):
        blob = blob.encode("utf-8", "surrogateescape")

    msg = email.message_from_bytes(blob)
    if not msg.keys():
        defects = ", ".join(type(d).__name__ for d in msg.defects) or "no fields"
        raise HeaderParseError(f"no header fields found ({defects})")

    subject = decode_header_safely(msg["Subject"]).strip() or NO_SUBJECT
    return parse_date(msg["Date"], now=now), subject


def summarize_headers(headers, account_name="", now=None):
    """Build the notification payload for newly arrived messages.

    Messages whose header block cannot be parsed are logged and skipped.

    Args:
        headers: Mapping of message id -> raw header block.
        account_name: Used to label log lines.
        now: Fallback date for messages without a usable Date header.

    Returns:
        list: (datetime, subject) pairs, newest first.
    """
    if now is None:
        now = datetime.now().astimezone()

    summaries = []
    for msg_id, blob in headers.items():
        try:
            summaries.append(parse_header_block(blob, now=now))
        except HeaderParseError as e:
            logger.warning(
                "%s: failed to parse headers of message %s: %s",
                account_name,
                msg_id,
                e,
            )

    summaries.sort(key=lambda s: s[0], reverse=True)
    return summaries
