#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Status bar output for mailbuzz.

Renders the aggregate unseen state as the JSON object a waybar custom
module reads, one object per line on stdout.
"""

import json
import sys
from dataclasses import asdict, dataclass

READ_CLASS = "mail-read"
UNREAD_CLASS = "mail-unread"
READ_TOOLTIP = "You have reached inbox 0!"
UNREAD_TOOLTIP = "You have unread mail!"


@dataclass
class StatusRecord:
    text: str
    alt: str
    tooltip: str
    css_class: str
    percentage: float = 0.0

    def to_dict(self):
        data = asdict(self)
        data["class"] = data.pop("css_class")
        return data


def render_status(status):
    """Render an AggregateStatus as a StatusRecord.

    Args:
        status: AggregateStatus with names and counts.

    Returns:
        StatusRecord: "mail-unread" when any account has unseen mail,
                      "mail-read" otherwise.
    """
    total = status.total

    lines = [UNREAD_TOOLTIP if total else READ_TOOLTIP]
    for index, name in status.names.items():
        count = status.counts.get(index)
        lines.append(f"{name}: {'?' if count is None else count}")

    if total:
        return StatusRecord(
            text=str(total),
            alt="unread",
            tooltip="\n".join(lines),
            css_class=UNREAD_CLASS,
        )
    return StatusRecord(
        text="",
        alt="read",
        tooltip="\n".join(lines),
        css_class=READ_CLASS,
    )


class StatusWriter:
    """Writes each record as one JSON line and flushes immediately."""

    def __init__(self, stream=None):
        self.stream = stream if stream is not None else sys.stdout

    def __call__(self, record):
        self.stream.write(json.dumps(record.to_dict()))
        self.stream.write("\n")
        self.stream.flush()
