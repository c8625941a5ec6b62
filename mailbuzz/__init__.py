#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""mailbuzz - New mail notifications for IMAP inboxes.

This package watches one or more IMAP inboxes over IDLE and:
- Shows one desktop notification per account for newly arrived mail
- Writes a JSON status line per change for status bars such as waybar
- Reconnects with exponential backoff when a connection drops
- Reads passwords from a command, the config file, or the system keyring

Usage:
    # As a module
    python -m mailbuzz

    # Or import and call main()
    from mailbuzz import main
    main()
"""

from mailbuzz.__main__ import main

__version__ = "1.0.0"
__all__ = ["main"]
