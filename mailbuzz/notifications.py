#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Notification utilities for mailbuzz.

This module provides the desktop notification used for new mail, which is
created once per account and then replaced in place on later updates, and
the runner for an account's optional notification command.
"""

import html
import logging
import subprocess

logger = logging.getLogger(__name__)

APP_NAME = "mailbuzz"
ICON = "notification-message-email"
CATEGORY = "email.arrived"
NOTIFY_TIMEOUT = 15  # Seconds before notify-send is killed
COMMAND_TIMEOUT = 15  # Seconds before a notification command is killed


def format_title(account_name, num_unseen):
    return f"@{account_name} has new mail ({num_unseen} unseen)"


def format_body(subjects):
    """One quoted line per subject, in the order given."""
    return [f"> {subject}" for subject in subjects]


class DesktopNotifier:
    """A single persistent notification for one account's mail stream.

    The first call to show() creates the notification and remembers the id
    notify-send prints; later calls replace that notification so the
    desktop shows the latest state instead of a stack of duplicates.

    Attributes:
        notification_id: Id of the live notification, or None.
    """

    def __init__(self, app_name=APP_NAME, icon=ICON):
        self.app_name = app_name
        self.icon = icon
        self.notification_id = None

    def show(self, title, lines):
        """Create or update the notification.

        Args:
            title: Notification summary.
            lines: Body lines; HTML-escaped before display.

        Returns:
            bool: True if an existing notification was updated.
        """
        is_update = self.notification_id is not None
        body = html.escape("\n".join(lines).rstrip())

        cmd = [
            "notify-send",
            "-a",
            self.app_name,
            "-i",
            self.icon,
            "-c",
            CATEGORY,
            "--print-id",
        ]
        if is_update:
            cmd.extend(["--replace-id", str(self.notification_id)])
        cmd.extend([title, body])

        try:
            result = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=NOTIFY_TIMEOUT,
            )
        except subprocess.TimeoutExpired:
            logger.warning("notify-send timed out")
            return is_update
        except FileNotFoundError:
            logger.warning("notify-send is not installed; cannot show notification")
            return is_update
        except OSError as e:
            logger.warning("Could not run notify-send: %s", e)
            return is_update

        if result.returncode != 0:
            logger.warning(
                "notify-send exited with status %s: %s",
                result.returncode,
                result.stderr.strip(),
            )
            return is_update

        printed_id = result.stdout.strip()
        if printed_id.isdigit():
            self.notification_id = int(printed_id)
        return is_update


class NullNotifier:
    """Notifier used when desktop notifications are disabled."""

    def show(self, title, lines):
        return False


def run_notification_command(account_name, command):
    """Run an account's notification command through the shell.

    Failures are logged and never raised.

    Args:
        account_name: Used to label log lines.
        command: Shell command line.

    Returns:
        bool: True if the command exited successfully.
    """
    try:
        status = subprocess.run(
            ["sh", "-c", command],
            check=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            timeout=COMMAND_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        logger.warning(
            "Notification command for %s timed out after %ss",
            account_name,
            COMMAND_TIMEOUT,
        )
        return False
    except OSError as e:
        logger.warning(
            "Could not execute notification command for %s: %s", account_name, e
        )
        return False

    if status.returncode == 0:
        return True
    if status.returncode < 0:
        logger.warning(
            "Notification command for %s did not exit successfully. "
            "Process was terminated by signal %s.",
            account_name,
            -status.returncode,
        )
    else:
        logger.warning(
            "Notification command for %s did not exit successfully. Exit code: %s",
            account_name,
            status.returncode,
        )
    return False
