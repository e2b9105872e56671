# trigger.py
from __future__ import annotations

from fnmatch import fnmatch
from typing import Any

from .model import Event, Trigger, normalize_tag

DEFAULT_TRIGGER = Trigger()


def _matches_any(branch: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatch(branch, p) for p in patterns)


def should_run(event: Any, trigger: Trigger = DEFAULT_TRIGGER) -> bool:
    """
    Decide whether the pipeline runs for `event`.

    Malformed input (None, not an Event, missing tag) means "do not run";
    this never raises.
    """
    if not isinstance(event, Event):
        return False
    if not isinstance(event.tag, str) or not event.tag.strip():
        return False

    tag = normalize_tag(event.tag)
    events = {normalize_tag(k): v for k, v in trigger.events.items()}
    if tag not in events:
        return False

    patterns = events[tag]
    # no branch filter -> any branch
    if not patterns:
        return True
    if not event.branch:
        return False
    return _matches_any(event.branch, tuple(patterns))
