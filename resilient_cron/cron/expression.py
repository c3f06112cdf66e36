"""Five-field cron expressions: parsing, matching and next-run search.

Fields are ``minute hour day month weekday`` with weekday 0=Sunday..6=Saturday.
Each field accepts ``*``, ``*/n``, ``a-b``, ``a-b/n``, ``a,b,c`` or a single
integer. A timestamp matches when every field contains its component (day and
weekday are combined with AND, unlike classic Vixie cron).
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta

from resilient_cron.errors import ParseError, ScheduleExhaustedError

ONE_MINUTE = timedelta(minutes=1)

# One leap year of minutes, so yearly schedules are always found.
MAX_SEARCH_MINUTES = 366 * 24 * 60

_FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 6),
)


def floor_minute(t: datetime) -> datetime:
    """Truncate *t* to the start of its minute."""
    return t.replace(second=0, microsecond=0)


def ceil_minute(t: datetime) -> datetime:
    """Round *t* up to the next minute boundary (identity on a boundary)."""
    floored = floor_minute(t)
    return floored if floored == t else floored + ONE_MINUTE


def weekday0(t: datetime) -> int:
    """Day of week with 0=Sunday..6=Saturday."""
    return t.isoweekday() % 7


def _to_int(token: str, field_text: str) -> int:
    try:
        return int(token)
    except ValueError:
        msg = f"Invalid value {token!r} in cron field {field_text!r}"
        raise ParseError(msg) from None


def _check_bounds(value: int, low: int, high: int, field_text: str) -> int:
    if not low <= value <= high:
        msg = f"Value {value} out of range [{low}, {high}] in cron field {field_text!r}"
        raise ParseError(msg)
    return value


def _parse_range(text: str, low: int, high: int, field_text: str) -> tuple[int, int]:
    start_text, sep, end_text = text.partition("-")
    if not sep:
        msg = f"Expected a range 'a-b' in cron field {field_text!r}"
        raise ParseError(msg)
    start = _check_bounds(_to_int(start_text, field_text), low, high, field_text)
    end = _check_bounds(_to_int(end_text, field_text), low, high, field_text)
    if start > end:
        msg = f"Range start {start} is after end {end} in cron field {field_text!r}"
        raise ParseError(msg)
    return start, end


def parse_field(text: str, low: int, high: int) -> frozenset[int]:
    """Expand one cron field into the set of allowed values in ``[low, high]``.

    Forms are tried in a fixed order: ``*``, anything with ``/``, anything
    with ``-``, comma lists, then a single integer.
    """
    if text == "*":
        return frozenset(range(low, high + 1))

    if "/" in text:
        base, _, step_text = text.partition("/")
        step = _to_int(step_text, text)
        if step < 1:
            msg = f"Step must be positive in cron field {text!r}"
            raise ParseError(msg)
        start, end = (low, high) if base == "*" else _parse_range(base, low, high, text)
        return frozenset(range(start, end + 1, step))

    if "-" in text:
        start, end = _parse_range(text, low, high, text)
        return frozenset(range(start, end + 1))

    if "," in text:
        return frozenset(
            _check_bounds(_to_int(token, text), low, high, text) for token in text.split(",")
        )

    return frozenset({_check_bounds(_to_int(text, text), low, high, text)})


@dataclass(frozen=True, slots=True)
class CronExpression:
    """Parsed cron schedule. Build instances with :meth:`parse`."""

    expression: str
    minute: frozenset[int]
    hour: frozenset[int]
    day: frozenset[int]
    month: frozenset[int]
    weekday: frozenset[int]

    def __post_init__(self) -> None:
        for name, low, high in _FIELDS:
            values: frozenset[int] = getattr(self, name)
            if not values or min(values) < low or max(values) > high:
                msg = f"Cron field '{name}' must be a non-empty subset of [{low}, {high}]"
                raise ParseError(msg)

    @classmethod
    def parse(cls, text: str) -> CronExpression:
        """Parse ``minute hour day month weekday``. Raises `ParseError`."""
        fields = text.split()
        if len(fields) != len(_FIELDS):
            msg = f"Cron expression needs {len(_FIELDS)} fields, got {len(fields)}: {text!r}"
            raise ParseError(msg)
        values = {
            name: parse_field(field_text, low, high)
            for field_text, (name, low, high) in zip(fields, _FIELDS, strict=True)
        }
        return cls(expression=text, **values)

    def __str__(self) -> str:
        return self.expression

    def _date_matches(self, t: datetime) -> bool:
        return t.day in self.day and t.month in self.month and weekday0(t) in self.weekday

    def matches(self, t: datetime) -> bool:
        """True if the minute containing *t* is a fire time."""
        return t.minute in self.minute and t.hour in self.hour and self._date_matches(t)

    def next_run_after(self, start: datetime) -> datetime | None:
        """First matching minute at or after ``ceil_minute(start)``.

        Returns None when nothing matches within ``MAX_SEARCH_MINUTES``.
        Whole days and hours that cannot match are skipped, which yields the
        same result as stepping one minute at a time.
        """
        candidate = ceil_minute(start)
        horizon = candidate + timedelta(minutes=MAX_SEARCH_MINUTES)
        while candidate < horizon:
            if not self._date_matches(candidate):
                candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
            elif candidate.hour not in self.hour:
                candidate = candidate.replace(minute=0) + timedelta(hours=1)
            elif candidate.minute not in self.minute:
                candidate += ONE_MINUTE
            else:
                return candidate
        return None

    def require_next_run(self, start: datetime) -> datetime:
        """Like :meth:`next_run_after` but raises `ScheduleExhaustedError`."""
        result = self.next_run_after(start)
        if result is None:
            msg = f"Schedule {self.expression!r} has no run within a year of {start.isoformat()}"
            raise ScheduleExhaustedError(msg)
        return result

    def upcoming(self, start: datetime, count: int) -> Iterator[datetime]:
        """Yield up to *count* consecutive fire times after *start*."""
        current = start
        for _ in range(count):
            found = self.next_run_after(current)
            if found is None:
                return
            yield found
            current = found + ONE_MINUTE
