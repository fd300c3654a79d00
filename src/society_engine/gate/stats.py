"""Derived gate views: pure functions over a set of gate logs."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, tzinfo
from typing import Iterable

from pydantic import BaseModel, ConfigDict

from society_engine.core.clock import day_bounds
from society_engine.core.models import GateLog


class DailyGateStats(BaseModel):
    """Entries and exits are independent counters for one local day."""

    model_config = ConfigDict(frozen=True)

    day: date
    entries: int
    exits: int
    inside: int


def active_logs(logs: Iterable[GateLog]) -> list[GateLog]:
    return [log for log in logs if log.exit_time is None]


def group_by_house(logs: Iterable[GateLog]) -> dict[str, list[GateLog]]:
    """Group logs by associated house, sorted by house. Logs without a
    house are left out."""
    groups: dict[str, list[GateLog]] = defaultdict(list)
    for log in logs:
        if log.associated_house:
            groups[log.associated_house].append(log)
    return {house: groups[house] for house in sorted(groups)}


def daily_stats(logs: Iterable[GateLog], day: date, tz: tzinfo) -> DailyGateStats:
    """Counts for the local day ``[midnight, next midnight)`` in *tz*.

    A log that entered yesterday and exits today is one of today's exits
    but not one of today's entries. ``inside`` counts every active log
    regardless of when it entered.
    """
    start, end = day_bounds(day, tz)
    entries = exits = inside = 0
    for log in logs:
        if start <= log.entry_time < end:
            entries += 1
        if log.exit_time is None:
            inside += 1
        elif start <= log.exit_time < end:
            exits += 1
    return DailyGateStats(day=day, entries=entries, exits=exits, inside=inside)
