"""
KPI Metric Primitives

Pure, stateless calculations shared by every dashboard:
completion rate, elapsed days, hours logged and efficiency.

Usage:
    from opspilot.services.kpi_metrics import completion_rate, efficiency
    rate = completion_rate(project_tasks)        # 0..100, 2 decimals
    score = efficiency(completed=5, total_hours=0)  # 50.0
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable

from opspilot.models.task import COMPLETED_STATUSES

MS_PER_DAY = 1000 * 60 * 60 * 24
EFFICIENCY_HOURS_FLOOR = 1.0
EFFICIENCY_SCALE = 10


def round2(value: float) -> float:
    """Round to two decimals for payload display."""
    return round(float(value), 2)


def is_completed(status: str | None) -> bool:
    return status in COMPLETED_STATUSES


def completion_rate_from_counts(completed: int, total: int) -> float:
    """Zero-safe completion percentage."""
    if not total:
        return 0.0
    return round2(completed / total * 100)


def completion_rate(tasks: Iterable) -> float:
    """Percentage of *tasks* whose status is DONE or COMPLETED.

    Accepts any objects exposing a ``status`` attribute.
    Returns 0 for an empty collection.
    """
    total = 0
    completed = 0
    for task in tasks:
        total += 1
        if is_completed(task.status):
            completed += 1
    return completion_rate_from_counts(completed, total)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def duration_days(start: datetime, end: datetime) -> int:
    """Whole days from *start* to *end*, rounded up.

    ceil(elapsed_ms / 86_400_000). A negative value means *end* precedes
    *start* (clock skew or bad data) and is returned unchanged so callers
    can flag it.
    """
    elapsed_ms = (as_utc(end) - as_utc(start)).total_seconds() * 1000
    return math.ceil(elapsed_ms / MS_PER_DAY)


def hours_logged(time_logs: Iterable, external_logs: Iterable = (),
                 user_id: str | None = None) -> float:
    """Sum of ``hours`` across internal and external logs.

    Both sources are additive; a task billed from both counts both.
    Missing hours count as zero. With *user_id*, only logs owned by that
    user are counted.
    """
    total = 0.0
    for log in list(time_logs) + list(external_logs):
        if user_id is not None and log.user_id != user_id:
            continue
        total += log.hours or 0
    return total


def efficiency(completed: int, total_hours: float) -> float:
    """Tasks completed per 10 hours of logged effort.

    The denominator is floored at one hour, so zero-hour completions
    saturate at 10 per completed task instead of dividing by zero.
    """
    hours = max(total_hours or 0, EFFICIENCY_HOURS_FLOOR)
    return round2(completed / hours * EFFICIENCY_SCALE)


def mean(values: list[float]) -> float:
    """Arithmetic mean, 0 for an empty list."""
    if not values:
        return 0.0
    return sum(values) / len(values)
