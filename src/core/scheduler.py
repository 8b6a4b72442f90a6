"""
Check Updates - Schedule Evaluator
Decides whether a scheduled run is due from a cron-like spec and the last run time.

A spec has four whitespace-separated fields: minute, hour, day of month and
month. Each field is ``*`` (keep the current value), ``*/N`` (round the
current value down to a multiple of N) or a fixed number.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from core.errors import ConfigurationError


ALIASES = {
    "@hourly": "0 * * *",
    "@daily": "0 0 * *",
    "@midnight": "0 0 * *",
    "@monthly": "0 0 1 *",
    "@annually": "0 0 1 1",
    "@yearly": "0 0 1 1",
}

# (minimum, maximum) per field, in spec order
FIELD_RANGES = {
    "minute": (0, 59),
    "hour": (0, 23),
    "day": (1, 31),
    "month": (1, 12),
}


class FieldKind(Enum):
    """How a schedule field maps the current time unit."""
    WILDCARD = "wildcard"
    VALUE = "value"
    STEP = "step"


@dataclass(frozen=True)
class ScheduleField:
    """One field of a schedule spec."""
    kind: FieldKind
    value: int = 0

    def floor(self, current: int, minimum: int = 0) -> int:
        """Map the current unit value onto this field's period boundary."""
        if self.kind is FieldKind.VALUE:
            return self.value
        if self.kind is FieldKind.STEP:
            return max(minimum, current - (current % self.value))
        return current


@dataclass(frozen=True)
class ScheduleSpec:
    """Parsed four-field schedule."""
    minute: ScheduleField
    hour: ScheduleField
    day: ScheduleField
    month: ScheduleField
    source: str = ""

    def __str__(self) -> str:
        return self.source


def _parse_field(text: str, name: str) -> ScheduleField:
    minimum, maximum = FIELD_RANGES[name]
    if text == "*":
        return ScheduleField(FieldKind.WILDCARD)
    if text.startswith("*/"):
        try:
            step = int(text[2:])
        except ValueError:
            raise ConfigurationError(f"Invalid step value in {name} field: {text!r}") from None
        if step <= 0:
            raise ConfigurationError(f"Step value must be positive in {name} field: {text!r}")
        return ScheduleField(FieldKind.STEP, step)
    try:
        value = int(text)
    except ValueError:
        raise ConfigurationError(f"Invalid numeric value in {name} field: {text!r}") from None
    if value < minimum or value > maximum:
        raise ConfigurationError(
            f"Value {value} out of range [{minimum}, {maximum}] in {name} field"
        )
    return ScheduleField(FieldKind.VALUE, value)


def parse_schedule(spec: str) -> ScheduleSpec:
    """
    Parse a schedule spec or one of the named aliases.

    Args:
        spec: e.g. "@daily", "*/15 * * *" or "30 2 1 *"

    Returns:
        The parsed ScheduleSpec.

    Raises:
        ConfigurationError: if the spec is malformed.
    """
    if not isinstance(spec, str):
        raise ConfigurationError(f"Invalid cron spec {spec!r}: expected a string")
    text = spec.strip()
    expanded = ALIASES.get(text, text)
    parts = expanded.split()
    if len(parts) != 4:
        raise ConfigurationError(
            f"Invalid cron spec {spec!r}: expected 4 fields (minute hour day month)"
        )
    return ScheduleSpec(
        minute=_parse_field(parts[0], "minute"),
        hour=_parse_field(parts[1], "hour"),
        day=_parse_field(parts[2], "day"),
        month=_parse_field(parts[3], "month"),
        source=text,
    )


def _days_in(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _maximum(index: int, values: list[int]) -> int:
    if index == 1:
        return 12
    if index == 2:
        return _days_in(values[0], values[1])
    if index == 3:
        return 23
    return 59


_MINIMUMS = (None, 1, 1, 0, 0)


def _step_back(fields: tuple, values: list[int], index: int) -> None:
    """Move the unit at ``index`` back one period, borrowing from larger units."""
    if index == 0:
        values[0] -= 1
        return
    field = fields[index]
    if field.kind is FieldKind.VALUE:
        _step_back(fields, values, index - 1)
        return
    minimum = _MINIMUMS[index]
    previous = values[index] - 1
    if previous < minimum:
        _step_back(fields, values, index - 1)
        values[index] = field.floor(_maximum(index, values), minimum)
    else:
        values[index] = field.floor(previous, minimum)


def _clamp_day(spec: ScheduleSpec, values: list[int]) -> None:
    if spec.day.kind is FieldKind.VALUE:
        values[2] = spec.day.value
    values[2] = min(values[2], _days_in(values[0], values[1]))


def last_boundary(spec: ScheduleSpec, now: datetime) -> datetime:
    """
    Return the most recent period boundary of ``spec`` that is not later than ``now``.

    Seconds are always zero. Day values are clamped to the length of the
    boundary's month.
    """
    # year, month, day, hour, minute (year always follows ``now``)
    fields = (None, spec.month, spec.day, spec.hour, spec.minute)
    actual = [now.year, now.month, now.day, now.hour, now.minute]
    values = [now.year]
    for index in range(1, 5):
        values.append(fields[index].floor(actual[index], _MINIMUMS[index]))
    _clamp_day(spec, values)

    for index in range(1, 5):
        if values[index] == actual[index]:
            continue
        if values[index] > actual[index]:
            _step_back(fields, values, index - 1)
            _clamp_day(spec, values)
        break

    return datetime(*values, tzinfo=now.tzinfo)


def should_run(
    spec: Union[ScheduleSpec, str],
    last_run: Optional[datetime],
    now: datetime,
) -> bool:
    """
    Check whether a run is due.

    Args:
        spec: Parsed spec or spec text.
        last_run: Time of the last executed run, None if there was none.
        now: Current time.

    Returns:
        True if the latest period boundary is strictly later than last_run.
    """
    if isinstance(spec, str):
        spec = parse_schedule(spec)
    if last_run is None:
        return True
    return last_boundary(spec, now) > last_run
