"""
Cron expression support.

Builds APScheduler cron triggers from crontab-style expressions:

    minute hour day month day_of_week             (5 fields)
    second minute hour day month day_of_week      (6 fields)

Numeric weekdays follow crontab (0 and 7 are Sunday) and are translated to
names, since APScheduler counts weekdays from Monday.

When both day and day_of_week are restricted, a run fires only on dates
matching both fields. Classic cron fires when either one matches.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import List

from apscheduler.triggers.cron import CronTrigger

from ..exceptions import InvalidCronExpression

_WEEKDAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]
_RANGE_RE = re.compile(r"^(\d+)-(\d+)$")


def _crontab_day_of_week(expr: str) -> str:
    """Translate a crontab day-of-week field to APScheduler weekday names."""
    if expr in ("*", "?"):
        return "*"

    names: List[str] = []
    for token in expr.split(","):
        base, _, step = token.partition("/")
        range_match = _RANGE_RE.match(base)
        if base == "*":
            start, end = 0, 6
        elif range_match:
            start, end = int(range_match.group(1)), int(range_match.group(2))
        elif base.isdigit():
            start = int(base)
            end = 6 if step else start
        else:
            # Weekday names ("mon-fri") are understood as-is
            names.append(token)
            continue

        if step and not step.isdigit():
            raise InvalidCronExpression(f"Invalid day-of-week step: {token!r}")
        if end > 7 or start > end:
            raise InvalidCronExpression(f"Invalid day-of-week value: {token!r}")
        names.extend(
            _WEEKDAY_NAMES[day] for day in range(start, end + 1, int(step) if step else 1)
        )

    return ",".join(dict.fromkeys(names))


def build_trigger(expression: str, tz: str = "UTC") -> CronTrigger:
    """Build a CronTrigger, raising InvalidCronExpression if it is malformed."""
    if not expression or not expression.strip():
        raise InvalidCronExpression("Invalid cron expression: empty expression")

    fields = expression.split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
    else:
        raise InvalidCronExpression(
            f"Invalid cron expression: expected 5 or 6 fields, got {len(fields)} "
            f"in {expression!r}"
        )

    try:
        # day and day_of_week must both match
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day.replace("?", "*"),
            month=month,
            day_of_week=_crontab_day_of_week(day_of_week),
            timezone=tz,
        )
    except InvalidCronExpression:
        raise
    except (ValueError, TypeError) as e:
        raise InvalidCronExpression(f"Invalid cron expression {expression!r}: {e}") from e


def validate_cron(expression: str) -> None:
    """Raise InvalidCronExpression if ``expression`` is not a valid schedule."""
    build_trigger(expression)


def next_run_time(expression: str, after: datetime, tz: str = "UTC") -> datetime:
    """First fire time strictly after ``after``, in UTC."""
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)

    trigger = build_trigger(expression, tz)
    # get_next_fire_time() is inclusive; nudge past ``after``
    fire_time = trigger.get_next_fire_time(None, after + timedelta(microseconds=1))
    if fire_time is None:
        raise InvalidCronExpression(f"Cron expression {expression!r} never fires")
    return fire_time.astimezone(timezone.utc)


__all__ = ["build_trigger", "validate_cron", "next_run_time"]
