#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Cross-account aggregation for mailbuzz.

Workers report ``(account index, unseen count)`` events over one shared
EventChannel. The Aggregator runs in the main thread, folds each event into
the AggregateStatus table and hands a freshly rendered status to the
presenter once per event.
"""

import logging
import queue
import threading

logger = logging.getLogger(__name__)


class EventChannel:
    """Multiple-producer, single-consumer channel of unseen count events.

    Producers register before they start and release when they exit. When
    the last producer is released, or the receiver calls close(), the
    consumer sees the end of the stream. After close(), every send fails.
    """

    def __init__(self):
        self._queue = queue.Queue()
        self._lock = threading.Lock()
        self._senders = 0
        self._closed = threading.Event()

    @property
    def closed(self):
        return self._closed.is_set()

    def register(self):
        with self._lock:
            self._senders += 1

    def release(self):
        with self._lock:
            self._senders -= 1
            last = self._senders == 0
        if last:
            self._queue.put(None)

    def send(self, index, count):
        """Queue an event.

        Returns:
            bool: False if the receiver is gone and the sender should stop.
        """
        if self._closed.is_set():
            return False
        self._queue.put((index, count))
        return True

    def close(self):
        """Drop the receiver: end iteration and make later sends fail."""
        self._closed.set()
        self._queue.put(None)

    def __iter__(self):
        while not self._closed.is_set():
            event = self._queue.get()
            if event is None:
                break
            yield event


class AggregateStatus:
    """Latest unseen count per account index.

    Counts start as None (unknown) until the account's first report.

    Attributes:
        names: Mapping of account index -> account name, in index order.
        counts: Mapping of account index -> unseen count or None.
    """

    def __init__(self, names):
        self.names = dict(sorted(names.items()))
        self.counts = {index: None for index in self.names}

    def update(self, index, count):
        if index not in self.counts:
            raise KeyError(index)
        self.counts[index] = count

    @property
    def total(self):
        return sum(count for count in self.counts.values() if count)

    @property
    def has_unread(self):
        return self.total > 0


class Aggregator:
    """Folds worker events into an AggregateStatus and drives the presenter.

    Args:
        names: Mapping of account index -> name for every running worker.
        render: Callable turning an AggregateStatus into a status record.
        present: Callable receiving each rendered record.
    """

    def __init__(self, names, render, present):
        self.status = AggregateStatus(names)
        self.render = render
        self.present = present

    def handle(self, index, count):
        try:
            self.status.update(index, count)
        except KeyError:
            logger.warning("Ignoring unseen count for unknown account index %s", index)
            return None

        record = self.render(self.status)
        self.present(record)
        return record

    def run(self, channel):
        """Consume events until the channel reports the end of the stream."""
        for index, count in channel:
            self.handle(index, count)
        logger.debug("Event channel closed; aggregator stopping")
