"""Recurrence rules: cron expressions and interval rules.

A task's ``schedule`` holds one of two representations:

- a 5-field cron string (``minute hour day-of-month month day-of-week``), or
- an interval rule object, stored as JSON::

      {"type": "interval", "unit": "day", "interval": 1,
       "startDate": "2025-06-01T09:00:00Z",
       "reminderAdvanceValue": 2, "reminderAdvanceUnit": "hour"}

``parse_rule`` turns either into a rule object, and ``is_due`` /
``next_occurrence`` evaluate it. Evaluation is pure: the answer depends only
on the rule, the last execution time and ``now``.
"""

from __future__ import annotations

import calendar
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

INTERVAL_UNITS = ("minute", "hour", "day", "week", "month")

_FIXED_UNITS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
}

DEFAULT_TOLERANCE = timedelta(minutes=1)


class RuleError(ValueError):
    """Raised for a malformed or unsatisfiable recurrence rule."""


# -- Cron ------------------------------------------------------------------------

# Crontab numbers weekdays from Sunday (0 or 7); APScheduler 3.x numbers them
# from Monday, so numeric weekday terms are rewritten as names.
_CRONTAB_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_WEEKDAY_TERM = re.compile(r"^(?P<first>\*|\d+)(?:-(?P<last>\d+))?(?:/(?P<step>\d+))?$")

# Widest DST gap a fire time may fall into.
_DST_LOOKBACK = timedelta(hours=1)

_MINUTE = timedelta(minutes=1)


def _weekday_names(expr: str) -> str:
    if expr == "*":
        return expr
    names: list[str] = []
    for term in expr.split(","):
        match = _WEEKDAY_TERM.match(term)
        if match is None:
            # Names ("mon-fri") and malformed terms go to APScheduler as-is.
            names.append(term)
            continue
        step = int(match["step"]) if match["step"] else 1
        if match["first"] == "*":
            first, last = 0, 6
        else:
            first = int(match["first"])
            last = int(match["last"]) if match["last"] else (6 if match["step"] else first)
        if step < 1 or first > last or last > 7:
            msg = f"Invalid day-of-week term {term!r}"
            raise RuleError(msg)
        names.extend(_CRONTAB_WEEKDAYS[day] for day in range(first, last + 1, step))
    return ",".join(dict.fromkeys(names))


def _floor_minute(moment: datetime) -> datetime:
    return _aware(moment).astimezone(UTC).replace(second=0, microsecond=0)


@dataclass(frozen=True)
class CronRule:
    """A 5-field cron expression backed by an APScheduler ``CronTrigger``.

    Fields are combined with AND: a minute matches only when every field does.
    Matching happens in *tz* (UTC when unset). Each wall-clock time fires once:
    a time skipped when clocks go forward fires at the instant of the jump, and
    the hour repeated when clocks go back does not fire again.
    """

    expression: str
    trigger: CronTrigger = field(repr=False, compare=False)
    tz: tzinfo | None = None

    @classmethod
    def parse(cls, expression: str, tz: tzinfo | None = None) -> CronRule:
        parts = expression.split()
        if len(parts) != 5:
            msg = f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}"
            raise RuleError(msg)
        minute, hour, day, month, weekday = parts
        try:
            trigger = CronTrigger(
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=_weekday_names(weekday),
                timezone=tz or UTC,
            )
        except ValueError as exc:
            msg = f"Invalid cron expression {expression!r}: {exc}"
            raise RuleError(msg) from None
        return cls(" ".join(parts), trigger, tz)

    @property
    def zone(self) -> tzinfo:
        return self.tz or UTC

    def _fire_from(self, start: datetime) -> datetime | None:
        fire = self.trigger.get_next_fire_time(None, start)
        return None if fire is None else fire.astimezone(UTC)

    def _first_fire(self, start: datetime) -> datetime | None:
        """First fire instant (UTC) at or after *start*.

        Fire times are walked forward from shortly before *start*, the way
        APScheduler steps from one fire to the next, so a time inside a DST
        gap that opened before *start* is still found.
        """
        fire = self._fire_from(start - _DST_LOOKBACK)
        while fire is not None and fire < start:
            fire = self._fire_from(fire + _MINUTE)
        return fire

    def matches(self, moment: datetime) -> bool:
        minute_start = _floor_minute(moment)
        return self._first_fire(minute_start) == minute_start

    def is_due(self, last_executed: datetime | None, now: datetime) -> bool:
        if not self.matches(now):
            return False
        if last_executed is None:
            return True
        return _aware(last_executed) < _floor_minute(now)

    def next_occurrence(self, now: datetime) -> datetime:
        """First matching minute strictly after *now*, in the rule's zone."""
        fire = self._first_fire(_floor_minute(now) + _MINUTE)
        if fire is None:
            msg = f"Cron expression never fires: {self.expression!r}"
            raise RuleError(msg)
        return fire.astimezone(self.zone)


# -- Interval --------------------------------------------------------------------


def _add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    total = moment.month - 1 + months
    year, month = moment.year + total // 12, total % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _shift(moment: datetime, unit: str, amount: int) -> datetime:
    if unit == "month":
        return _add_months(moment, amount)
    return moment + _FIXED_UNITS[unit] * amount


@dataclass(frozen=True)
class IntervalRule:
    """Fires every ``interval`` ``unit``s from ``start_date``.

    With a reminder advance it additionally fires once inside the window
    ``[occurrence - advance, occurrence)`` ahead of each upcoming occurrence.
    """

    unit: str
    interval: int
    start_date: datetime
    reminder_value: int | None = None
    reminder_unit: str = "day"
    tolerance: timedelta = DEFAULT_TOLERANCE

    def occurrence(self, index: int) -> datetime:
        return _shift(self.start_date, self.unit, index * self.interval)

    def _latest_index(self, now: datetime) -> int | None:
        if now < self.start_date:
            return None
        if self.unit == "month":
            elapsed = (now.year - self.start_date.year) * 12 + now.month - self.start_date.month
            index = max(elapsed // self.interval, 0)
        else:
            index = (now - self.start_date) // (_FIXED_UNITS[self.unit] * self.interval)
        # Month lengths vary, so settle the estimate against real occurrences.
        while index > 0 and self.occurrence(index) > now:
            index -= 1
        while self.occurrence(index + 1) <= now:
            index += 1
        return index

    def latest_occurrence(self, now: datetime) -> datetime | None:
        """The last occurrence at or before *now*, or None before the start."""
        index = self._latest_index(_aware(now))
        return None if index is None else self.occurrence(index)

    def next_occurrence(self, now: datetime) -> datetime:
        """First occurrence strictly after *now*."""
        index = self._latest_index(_aware(now))
        return self.start_date if index is None else self.occurrence(index + 1)

    def reminder_window_start(self, occurrence: datetime) -> datetime | None:
        if not self.reminder_value:
            return None
        return _shift(occurrence, self.reminder_unit, -self.reminder_value)

    def is_due(self, last_executed: datetime | None, now: datetime) -> bool:
        now = _aware(now)
        last = _aware(last_executed) if last_executed is not None else None

        if last is None and now >= self.start_date:
            return True

        latest = self.latest_occurrence(now)
        if latest is not None and now < latest + self.tolerance and (last is None or last < latest):
            return True

        upcoming = self.next_occurrence(now)
        window_start = self.reminder_window_start(upcoming)
        return (
            window_start is not None
            and window_start <= now < upcoming
            and (last is None or last < window_start)
        )


Rule = CronRule | IntervalRule


# -- Parsing ---------------------------------------------------------------------


def _aware(moment: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def resolve_timezone(tz: tzinfo | str | None) -> tzinfo | None:
    if tz is None or isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        msg = f"Unknown timezone: {tz!r}"
        raise RuleError(msg) from None


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int | str):
        msg = f"{label} must be a positive integer"
        raise RuleError(msg)
    try:
        number = int(value)
    except ValueError:
        msg = f"{label} must be a positive integer"
        raise RuleError(msg) from None
    if number < 1:
        msg = f"{label} must be a positive integer"
        raise RuleError(msg)
    return number


def _parse_start(value: Any, tz: tzinfo | None) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            msg = f"Invalid startDate: {value!r}"
            raise RuleError(msg) from None
    else:
        msg = "Interval rule requires a startDate"
        raise RuleError(msg)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz or UTC)
    return parsed


def _parse_interval(data: Mapping[str, Any], tz: tzinfo | None) -> IntervalRule:
    unit = _pick(data, "unit")
    if unit not in INTERVAL_UNITS:
        msg = f"Interval unit must be one of {', '.join(INTERVAL_UNITS)}, got {unit!r}"
        raise RuleError(msg)
    interval = _positive_int(_pick(data, "interval"), "interval")
    start = _parse_start(_pick(data, "startDate", "start_date"), tz)

    reminder_value = _pick(data, "reminderAdvanceValue", "reminder_advance_value")
    reminder_unit = _pick(data, "reminderAdvanceUnit", "reminder_advance_unit") or "day"
    if reminder_value is not None:
        reminder_value = _positive_int(reminder_value, "reminderAdvanceValue")
        if reminder_unit not in INTERVAL_UNITS:
            msg = f"Invalid reminderAdvanceUnit: {reminder_unit!r}"
            raise RuleError(msg)

    return IntervalRule(
        unit=unit,
        interval=interval,
        start_date=start,
        reminder_value=reminder_value,
        reminder_unit=reminder_unit,
    )


def parse_rule(schedule: str | Mapping[str, Any] | Rule, tz: tzinfo | str | None = None) -> Rule:
    """Parse a schedule into a CronRule or IntervalRule.

    *schedule* may be a cron string, a mapping, or a mapping encoded as JSON.
    Raises RuleError when the schedule is malformed.
    """
    if isinstance(schedule, CronRule | IntervalRule):
        return schedule
    zone = resolve_timezone(tz)

    if isinstance(schedule, str):
        text = schedule.strip()
        if not text:
            msg = "Schedule is empty"
            raise RuleError(msg)
        if not text.startswith("{"):
            return CronRule.parse(text, tz=zone)
        try:
            schedule = json.loads(text)
        except json.JSONDecodeError as exc:
            msg = f"Schedule is not valid JSON: {exc.msg}"
            raise RuleError(msg) from None

    if not isinstance(schedule, Mapping):
        msg = f"Unsupported schedule type: {type(schedule).__name__}"
        raise RuleError(msg)

    rule_type = schedule.get("type", "interval")
    if rule_type == "cron":
        expression = _pick(schedule, "expression", "cron")
        if not isinstance(expression, str):
            msg = "Cron rule requires an expression"
            raise RuleError(msg)
        return CronRule.parse(expression, tz=zone)
    if rule_type == "interval":
        return _parse_interval(schedule, zone)
    msg = f"Unknown rule type: {rule_type!r}"
    raise RuleError(msg)


def is_due(rule: Rule, last_executed: datetime | None, now: datetime) -> bool:
    """Whether *rule* should run at tick *now* given the last execution time."""
    return rule.is_due(last_executed, now)


def next_occurrence(rule: Rule, now: datetime) -> datetime:
    """The next time *rule* fires after *now*."""
    return rule.next_occurrence(now)


@dataclass(frozen=True)
class RuleCheck:
    """Outcome of evaluating a raw schedule at one tick."""

    due: bool
    next_run: datetime | None = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.error is None


def evaluate(
    schedule: str | Mapping[str, Any],
    last_executed: datetime | None,
    now: datetime,
    tz: tzinfo | str | None = None,
) -> RuleCheck:
    """Parse and evaluate *schedule*; a malformed rule is never due."""
    try:
        rule = parse_rule(schedule, tz=tz)
        return RuleCheck(
            due=rule.is_due(last_executed, now),
            next_run=rule.next_occurrence(now),
        )
    except RuleError as exc:
        return RuleCheck(due=False, error=str(exc))


def validate_rule(schedule: str | Mapping[str, Any], tz: tzinfo | str | None = None) -> str | None:
    """Return an error message for a malformed schedule, or None."""
    try:
        parse_rule(schedule, tz=tz)
    except RuleError as exc:
        return str(exc)
    return None
