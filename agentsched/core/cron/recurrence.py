"""Recurrence calculator — rule + reference instant → next trigger instant.

Pure functions. CRON rules use standard crontab semantics (day-of-week
0 or 7 = Sunday; day-of-month OR day-of-week when both are restricted),
translated onto APScheduler's ``CronTrigger`` and evaluated in the rule's
timezone. The second pass through a repeated wall-clock hour at a DST
fall-back is skipped, so a firing never happens twice. INTERVAL rules
are plain duration arithmetic in absolute time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from agentsched.core.cron.types import RecurrenceRule, ScheduleType
from agentsched.core.errors import ScheduleValidationError


def next_occurrence(rule: RecurrenceRule, from_: datetime) -> datetime | None:
    """Next instant strictly after ``from_``, or None when exhausted."""
    from_ = _as_utc(from_)

    if rule.type == ScheduleType.INTERVAL:
        return from_ + timedelta(minutes=rule.interval)

    if rule.type == ScheduleType.CRON:
        triggers = _cron_triggers(rule.cron_expression, rule.timezone)
        return _next_cron_fire(triggers, from_, rule.timezone)

    fixed = _localize(rule.fixed_time, rule.timezone)
    return fixed if from_ < fixed else None


def catch_up(rule: RecurrenceRule, fired_at: datetime, now: datetime) -> datetime | None:
    """Next firing after a claimed firing, skipping occurrences already missed.

    An overdue schedule fires once, then resumes its cadence after ``now``.
    Interval schedules keep their phase (fired_at + k * interval).
    """
    nxt = next_occurrence(rule, fired_at)
    now = _as_utc(now)
    if nxt is None or nxt > now:
        return nxt

    if rule.type == ScheduleType.INTERVAL:
        step = timedelta(minutes=rule.interval)
        missed = (now - nxt) // step + 1
        return nxt + missed * step
    return next_occurrence(rule, now)


def validate_rule(
    rule: RecurrenceRule, now: datetime, min_interval: int = 1
) -> RecurrenceRule:
    """Check the rule's shape against its type and return it normalized.

    Raises ScheduleValidationError; a rule that passes has at least one
    future occurrence. Naive ``fixed_time`` is read in the rule's timezone.
    """
    _zone(rule.timezone)

    if rule.type == ScheduleType.INTERVAL:
        _forbid(rule, "cron_expression", "fixed_time")
        if rule.interval is None:
            raise ScheduleValidationError("interval is required for INTERVAL schedules")
        if rule.interval < min_interval:
            raise ScheduleValidationError(
                f"interval must be at least {min_interval} minute(s), got {rule.interval}"
            )
        return rule

    if rule.type == ScheduleType.CRON:
        _forbid(rule, "interval", "fixed_time")
        expr = (rule.cron_expression or "").strip()
        if not expr:
            raise ScheduleValidationError("cronExpression is required for CRON schedules")
        if len(expr.split()) != 5:
            raise ScheduleValidationError(
                f"cronExpression must have five fields, got '{expr}'"
            )
        try:
            triggers = _cron_triggers(expr, rule.timezone)
        except (ValueError, TypeError) as e:
            raise ScheduleValidationError(f"Invalid cronExpression '{expr}': {e}") from e
        if _next_cron_fire(triggers, _as_utc(now), rule.timezone) is None:
            raise ScheduleValidationError(f"cronExpression '{expr}' never fires")
        return rule.model_copy(update={"cron_expression": expr})

    _forbid(rule, "interval", "cron_expression")
    if rule.fixed_time is None:
        raise ScheduleValidationError("fixedTime is required for FIXED schedules")
    fixed = _localize(rule.fixed_time, rule.timezone)
    if fixed <= _as_utc(now):
        raise ScheduleValidationError(f"fixedTime {fixed.isoformat()} is not in the future")
    return rule.model_copy(update={"fixed_time": fixed})


# ════════════════════════════════════════════════════════════
# CRON (crontab → APScheduler)
# ════════════════════════════════════════════════════════════

_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _cron_triggers(expr: str, tz_name: str) -> list[CronTrigger]:
    """Build APScheduler triggers for a five-field crontab expression.

    APScheduler numbers weekdays from Monday, so day-of-week is rewritten
    as names. When both day fields are restricted crontab fires on either
    one, which takes two triggers; the earlier fire time wins.
    """
    minute, hour, dom, month, dow = expr.split()
    common = dict(minute=minute, hour=hour, month=month, timezone=tz_name)
    if dom.startswith("*") or dow.startswith("*"):
        return [CronTrigger(day=dom, day_of_week=_dow_field(dow), **common)]
    return [
        CronTrigger(day=dom, day_of_week="*", **common),
        CronTrigger(day="*", day_of_week=_dow_field(dow), **common),
    ]


def _dow_field(field: str) -> str:
    """Crontab day-of-week (0-7, Sunday = 0 or 7) → comma-separated weekday names."""
    if field == "*":
        return "*"
    days: set[int] = set()
    for part in field.lower().split(","):
        base, _, step = part.partition("/")
        stride = int(step) if step else 1
        if stride < 1:
            raise ValueError(f"invalid day-of-week step in '{part}'")
        if base == "*":
            first, last = 0, 6
        elif "-" in base:
            low, high = base.split("-", 1)
            first, last = _dow_value(low), _dow_value(high)
            if last == 0 and first > 0:
                last = 7  # "fri-sun"
        else:
            first = _dow_value(base)
            last = 7 if step else first
        if first > last:
            raise ValueError(f"invalid day-of-week range '{part}'")
        days.update(d % 7 for d in range(first, last + 1, stride))
    return ",".join(_WEEKDAYS[d] for d in sorted(days))


def _dow_value(token: str) -> int:
    if token in _WEEKDAYS:
        return _WEEKDAYS.index(token)
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"day-of-week value {value} is outside 0-7")
    return value


def _next_cron_fire(
    triggers: list[CronTrigger], after: datetime, tz_name: str
) -> datetime | None:
    """Earliest fire time strictly after ``after`` across ``triggers``."""
    while True:
        fires = [f for f in (_fire_after(t, after) for t in triggers) if f is not None]
        if not fires:
            return None
        fire = min(fires)
        if not _repeated_wall_time(fire, tz_name):
            return fire
        after = fire


def _fire_after(trigger: CronTrigger, after: datetime) -> datetime | None:
    fire = trigger.get_next_fire_time(after, after + timedelta(microseconds=1))
    while fire is not None and _as_utc(fire) <= after:
        fire = trigger.get_next_fire_time(fire, fire + timedelta(seconds=1))
    return _as_utc(fire) if fire is not None else None


def _repeated_wall_time(instant: datetime, tz_name: str) -> bool:
    """True for the second pass through a wall-clock time at a DST fall-back."""
    local = instant.astimezone(_zone(tz_name))
    if not local.fold:
        return False
    return local.replace(fold=0).utcoffset() != local.utcoffset()


# ════════════════════════════════════════════════════════════
# HELPERS
# ════════════════════════════════════════════════════════════


def _forbid(rule: RecurrenceRule, *fields: str) -> None:
    for name in fields:
        if getattr(rule, name) is not None:
            raise ScheduleValidationError(
                f"{name} is not allowed for {rule.type.value} schedules"
            )


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleValidationError(f"Unknown timezone '{name}'") from e


def _localize(dt: datetime, tz_name: str) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_zone(tz_name))
    return dt.astimezone(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
