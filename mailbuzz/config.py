#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Configuration management for mailbuzz.

This module loads the ordered list of watched accounts from a JSON file
and resolves account passwords, either from a password command, a literal
value in the file, or the system keyring.
"""

import os
import json
import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional

import keyring
from keyring.errors import KeyringError

# Configuration paths
CONFIG_DIR = os.path.expanduser("~/.config/mailbuzz")
ACCOUNTS_PATH = os.path.join(CONFIG_DIR, "accounts.json")

KEYRING_SERVICE = "mailbuzz"
DEFAULT_IMAP_PORT = 993
PASSWORD_COMMAND_TIMEOUT = 60  # Seconds


class ConfigError(Exception):
    """Raised when the configuration or a password source is unusable."""


@dataclass(frozen=True)
class Account:
    """One watched mailbox.

    Attributes:
        name: Display name used in notifications, status and log lines.
        host: IMAP server host name.
        port: IMAP over TLS port.
        username: Login name.
        password: Literal password, if stored in the config file.
        password_command: Shell-style command printing the password.
        notification_command: Command run through ``sh -c`` on new mail.
    """

    name: str
    host: str
    username: str
    port: int = DEFAULT_IMAP_PORT
    password: Optional[str] = None
    password_command: Optional[str] = None
    notification_command: Optional[str] = None

    def get_password(self):
        """Resolve the password for this account.

        The password command wins over a literal password, which wins over
        the keyring entry for ``username``.

        Returns:
            str: The password with surrounding whitespace removed.

        Raises:
            ConfigError: If the source fails or no password is available.
        """
        if self.password_command:
            return _run_password_command(self.name, self.password_command)
        if self.password:
            return self.password.strip()

        try:
            password = keyring.get_password(KEYRING_SERVICE, self.username)
        except KeyringError as e:
            raise ConfigError(
                f"Could not retrieve password for {self.name} from keyring: {e}"
            ) from e
        if not password:
            raise ConfigError(f"No password configured for account {self.name}")
        return password.strip()


def _run_password_command(name, command):
    args = shlex.split(command)
    if not args:
        raise ConfigError(f"Password command for {name} is empty")

    try:
        result = subprocess.run(
            args,
            check=False,
            capture_output=True,
            text=True,
            timeout=PASSWORD_COMMAND_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ConfigError(f"Password command for {name} failed: {e}") from e

    if result.returncode != 0:
        raise ConfigError(
            f"Password command for {name} exited with status {result.returncode}"
        )
    return result.stdout.strip()


def parse_accounts(data):
    """Build accounts from decoded JSON data.

    Args:
        data: Either a dict with an ``accounts`` list or the list itself.

    Returns:
        list: Account instances in configuration order.

    Raises:
        ConfigError: On a malformed document or account entry.
    """
    if isinstance(data, dict):
        data = data.get("accounts", [])
    if not isinstance(data, list):
        raise ConfigError("Expected a list of accounts")

    accounts = []
    for position, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ConfigError(f"Account #{position} is not an object")

        missing = [key for key in ("name", "host", "username") if not entry.get(key)]
        if missing:
            raise ConfigError(
                f"Account #{position} is missing {', '.join(missing)}"
            )

        port = entry.get("port", DEFAULT_IMAP_PORT)
        if isinstance(port, bool) or not isinstance(port, int):
            raise ConfigError(f"Account #{position} has an invalid port: {port!r}")

        accounts.append(
            Account(
                name=str(entry["name"]),
                host=str(entry["host"]),
                port=port,
                username=str(entry["username"]),
                password=entry.get("password"),
                password_command=entry.get("password_command"),
                notification_command=entry.get("notification_command"),
            )
        )
    return accounts


def load_accounts(path=ACCOUNTS_PATH):
    """Load accounts from the configuration file.

    Args:
        path: Path to the JSON configuration file.

    Returns:
        list: Account instances; the list index is the account's stable
              aggregation index.

    Raises:
        ConfigError: If the file is missing, corrupted or malformed.
    """
    if not os.path.exists(path):
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path, "r") as f:
        try:
            data = json.load(f)
        except (json.JSONDecodeError, ValueError) as e:
            raise ConfigError(f"Configuration file corrupted: {e}") from e

    return parse_accounts(data)


def store_password(username, password):
    """Save a password to the system keyring.

    Args:
        username: Account login name, used as the keyring user.
        password: Password to store.
    """
    keyring.set_password(KEYRING_SERVICE, username, password)
