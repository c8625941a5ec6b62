from __future__ import annotations

from mailbuzz.config import Account
from mailbuzz.session import TRANSPORT, MailboxSession, ProtocolError


def make_account(name: str = "work", notification_command: str | None = None) -> Account:
    return Account(
        name=name,
        host="imap.example.test",
        username=f"{name}@example.test",
        password="app-password",
        notification_command=notification_command,
    )


def make_header(
    subject: str | None = "Test message",
    date: str | None = "Mon, 16 Feb 2026 10:00:00 -0500",
) -> bytes:
    lines = ["From: Sender <sender@example.test>"]
    if subject is not None:
        lines.append(f"Subject: {subject}")
    if date is not None:
        lines.append(f"Date: {date}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


class FakeSession(MailboxSession):
    """Replays scripted unseen sets, then fails like a dropped connection."""

    def __init__(self, unseen_sets, headers=None, on_wait=None, error=None) -> None:
        self.unseen_sets = [set(s) for s in unseen_sets]
        self.headers = headers or {}
        self.on_wait = on_wait
        self.error = error or ProtocolError("connection reset by peer", TRANSPORT)
        self.fetched: list[set[int]] = []
        self.waits = 0
        self.logged_out = False

    def search_unseen(self):
        if not self.unseen_sets:
            raise self.error
        return self.unseen_sets.pop(0)

    def fetch_headers(self, ids):
        ids = set(ids)
        self.fetched.append(ids)
        return {msg_id: self.headers.get(msg_id, make_header(f"Message {msg_id}")) for msg_id in ids}

    def wait_for_change(self):
        self.waits += 1
        if self.on_wait is not None:
            self.on_wait()

    def logout(self):
        self.logged_out = True


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []

    def show(self, title, lines):
        is_update = bool(self.calls)
        self.calls.append((title, list(lines)))
        return is_update


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds) -> None:
        self.delays.append(seconds)


class ScriptedConnect:
    """Connect stand-in that raises or returns scripted results in order."""

    def __init__(self, results) -> None:
        self.results = list(results)
        self.accounts: list[Account] = []

    def __call__(self, account):
        self.accounts.append(account)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def drain(channel) -> list[tuple[int, int]]:
    """Collect queued events from a channel no worker is sending on."""
    channel.register()
    channel.release()
    return list(channel)
