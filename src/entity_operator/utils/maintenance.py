"""
Maintenance time window evaluation.

Maintenance windows are Quartz-style cron expressions with six or seven
fields: seconds, minutes, hours, day of month, month, day of week and an
optional year. An instant is inside a window when every field matches it.
Expressions are evaluated in UTC.

Supported syntax per field: ``*``, ``?``, single values, lists (``1,5``),
ranges (``8-10``, wrapping ranges such as ``FRI-MON`` included), steps
(``0/15``, ``*/2``, ``1-20/5``) and month or weekday names.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

_MONTH_NAMES = {
    name: index
    for index, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN",
         "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"],
        start=1,
    )
}

# Quartz numbers weekdays from SUN=1 to SAT=7
_DAY_NAMES = {
    name: index
    for index, name in enumerate(
        ["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"], start=1
    )
}

# (field name, lowest value, highest value, symbolic names)
_FIELDS = (
    ("second", 0, 59, {}),
    ("minute", 0, 59, {}),
    ("hour", 0, 23, {}),
    ("day_of_month", 1, 31, {}),
    ("month", 1, 12, _MONTH_NAMES),
    ("day_of_week", 1, 7, _DAY_NAMES),
    ("year", 1970, 2099, {}),
)


def _parse_value(text: str, names: dict[str, int]) -> int:
    upper = text.upper()
    if upper in names:
        return names[upper]
    if not text.isdigit():
        raise ValueError(f"'{text}' is not a valid value")
    return int(text)


def _parse_field(
    text: str, low: int, high: int, names: dict[str, int]
) -> frozenset[int] | None:
    """Parse one cron field into the set of matching values, None meaning any."""
    if text in ("*", "?"):
        return None

    values: set[int] = set()
    for part in text.split(","):
        step = 1
        base = part
        if "/" in part:
            base, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) < 1:
                raise ValueError(f"'{part}' has an invalid increment")
            step = int(step_text)

        if base in ("*", "?"):
            start, end = low, high
        elif "-" in base:
            start_text, end_text = base.split("-", 1)
            start = _parse_value(start_text, names)
            end = _parse_value(end_text, names)
        else:
            start = _parse_value(base, names)
            end = high if "/" in part else start

        if not (low <= start <= high and low <= end <= high):
            raise ValueError(f"'{part}' is outside {low}-{high}")

        if start <= end:
            candidates: list[int] = list(range(start, end + 1))
        else:
            candidates = [*range(start, high + 1), *range(low, end + 1)]
        values.update(candidates[::step])

    return frozenset(values)


class CronExpression:
    """A parsed Quartz-style cron expression."""

    def __init__(self, expression: str):
        self.expression = expression
        parts = expression.split()
        if len(parts) not in (6, 7):
            raise ValueError(
                f"Cron expression '{expression}' must have 6 or 7 fields, got {len(parts)}"
            )
        if len(parts) == 6:
            parts.append("*")

        self._fields: dict[str, frozenset[int] | None] = {}
        for (name, low, high, names), text in zip(_FIELDS, parts, strict=True):
            try:
                self._fields[name] = _parse_field(text, low, high, names)
            except ValueError as e:
                raise ValueError(
                    f"Cron expression '{expression}' has an invalid {name} field: {e}"
                ) from e

    def is_satisfied_by(self, moment: datetime) -> bool:
        """Check whether the given instant matches every field."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        moment = moment.astimezone(UTC)

        # Python weekday() is Monday=0, Quartz is Sunday=1
        quartz_weekday = (moment.weekday() + 1) % 7 + 1
        actual = {
            "second": moment.second,
            "minute": moment.minute,
            "hour": moment.hour,
            "day_of_month": moment.day,
            "month": moment.month,
            "day_of_week": quartz_weekday,
            "year": moment.year,
        }
        return all(
            allowed is None or actual[name] in allowed
            for name, allowed in self._fields.items()
        )

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"


def is_maintenance_window_satisfied(
    windows: Iterable[str] | None, now: datetime
) -> bool:
    """
    Check whether ``now`` falls inside any of the maintenance windows.

    Args:
        windows: Cron expressions from ``spec.maintenanceTimeWindows``
        now: Instant to evaluate, naive datetimes are taken as UTC

    Returns:
        True when no windows are configured or at least one window matches.
        Expressions that fail to parse are logged and never match.
    """
    windows = list(windows or [])
    if not windows:
        return True

    for window in windows:
        try:
            cron = CronExpression(window)
        except ValueError as e:
            logger.warning(
                f"Ignoring invalid maintenance time window '{window}': {e}"
            )
            continue
        if cron.is_satisfied_by(now):
            logger.debug(f"Maintenance time window '{window}' is satisfied at {now}")
            return True

    return False
