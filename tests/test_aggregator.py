from __future__ import annotations

import random
import threading

import pytest

from helpers import FakeSession, make_account
from mailbuzz import session as imap_session
from mailbuzz import __main__ as main_module
from mailbuzz.__main__ import run
from mailbuzz.aggregator import AggregateStatus, Aggregator, EventChannel
from mailbuzz.session import PROTOCOL, ProtocolError
from mailbuzz.status import render_status


def make_aggregator(names: dict[int, str]) -> tuple[Aggregator, list]:
    records: list = []
    return Aggregator(names, render_status, records.append), records


def test_status_starts_unknown_for_every_account() -> None:
    status = AggregateStatus({1: "home", 0: "work"})

    assert list(status.names) == [0, 1]
    assert status.counts == {0: None, 1: None}
    assert status.total == 0
    assert not status.has_unread


def test_each_event_emits_exactly_one_record() -> None:
    aggregator, records = make_aggregator({0: "work", 1: "home"})

    aggregator.handle(0, 2)
    aggregator.handle(1, 0)
    aggregator.handle(0, 2)

    assert len(records) == 3
    assert [r.css_class for r in records] == ["mail-unread"] * 3


def test_unknown_index_is_ignored() -> None:
    aggregator, records = make_aggregator({0: "work"})

    assert aggregator.handle(5, 3) is None
    assert records == []
    assert aggregator.status.counts == {0: None}


@pytest.mark.parametrize("seed", range(10))
def test_any_interleaving_ends_with_last_reported_counts(seed: int) -> None:
    rng = random.Random(seed)
    streams = {
        index: sorted(rng.randint(0, 20) for _ in range(rng.randint(1, 8)))
        for index in range(4)
    }
    pending = {index: list(counts) for index, counts in streams.items()}
    events = []
    while any(pending.values()):
        index = rng.choice([i for i, counts in pending.items() if counts])
        events.append((index, pending[index].pop(0)))

    aggregator, records = make_aggregator({i: f"acct{i}" for i in streams})
    for index, count in events:
        aggregator.handle(index, count)

    expected = {index: counts[-1] for index, counts in streams.items()}
    assert aggregator.status.counts == expected
    assert aggregator.status.total == sum(expected.values())
    assert len(records) == len(events)


def test_intermediate_and_final_status_for_two_active_accounts() -> None:
    # account index 2 was dropped before workers started, so it has no entry
    aggregator, records = make_aggregator({0: "one", 1: "two"})

    aggregator.handle(0, 0)
    aggregator.handle(1, 0)
    after_three = aggregator.handle(0, 3)
    aggregator.handle(1, 0)
    aggregator.handle(0, 0)
    final = aggregator.handle(1, 5)

    assert after_three.text == "3"
    assert after_three.css_class == "mail-unread"
    assert aggregator.status.counts == {0: 0, 1: 5}
    assert aggregator.status.total == 5
    assert final.css_class == "mail-unread"
    assert "three" not in final.tooltip


def test_channel_ends_when_last_sender_releases() -> None:
    channel = EventChannel()
    channel.register()
    channel.register()
    assert channel.send(0, 1)
    channel.release()
    assert channel.send(1, 2)
    channel.release()

    assert list(channel) == [(0, 1), (1, 2)]


def test_send_fails_after_receiver_closes() -> None:
    channel = EventChannel()
    channel.close()

    assert channel.closed
    assert channel.send(0, 1) is False
    assert list(channel) == []


def test_aggregator_run_consumes_until_end_of_stream() -> None:
    channel = EventChannel()
    channel.send(0, 4)
    channel.send(0, 0)
    aggregator, records = make_aggregator({0: "work"})

    channel.register()
    channel.release()
    aggregator.run(channel)

    assert [r.css_class for r in records] == ["mail-unread", "mail-read"]


def test_three_accounts_end_to_end(monkeypatch) -> None:
    accounts = [make_account("one"), make_account("two"), make_account("three")]
    scripts = {
        "one": [FakeSession([set(), {1, 2, 3}, set()])],
        "two": [FakeSession([set(), set(), {1, 2, 3, 4, 5}])],
        "three": [],
    }
    lock = threading.Lock()

    def fake_connect(account):
        with lock:
            if scripts[account.name]:
                return scripts[account.name].pop(0)
        raise ProtocolError("LOGIN failed", PROTOCOL)

    monkeypatch.setattr(imap_session, "connect", fake_connect)
    records: list = []

    assert run(accounts, notify=False, present=records.append) == 0

    assert len(records) == 6
    final = records[-1]
    assert final.text == "5"
    assert final.css_class == "mail-unread"
    assert final.tooltip.splitlines()[1:] == ["one: 0", "two: 5"]


def test_run_without_accounts_exits_cleanly() -> None:
    records: list = []

    assert run([], present=records.append) == 0
    assert records == []



def test_interrupt_while_connecting_exits_cleanly(monkeypatch) -> None:
    def interrupted(accounts):
        raise KeyboardInterrupt

    monkeypatch.setattr(main_module, "preflight_accounts", interrupted)
    records: list = []

    assert run([make_account()], present=records.append) == 0
    assert records == []
