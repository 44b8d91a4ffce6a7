"""Temporal quantifier resolution.

Turns user-facing time descriptors such as ``today``, ``months-ago=3`` or
``between=2019-01-01,2019-01-31`` into concrete :class:`Quantity` values
that map onto an aggregation range.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

DAY = "day"
MONTH = "month"
YEAR = "year"
BETWEEN = "between"

KINDS = (DAY, MONTH, YEAR, BETWEEN)

DAY_FORMAT = "%Y-%m-%d"
MONTH_FORMAT = "%Y-%m"
YEAR_FORMAT = "%Y"

EPOCH = date(1970, 1, 1)

_PATTERNS = {
    DAY: re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    MONTH: re.compile(r"^\d{4}-\d{2}$"),
    YEAR: re.compile(r"^\d{4}$"),
}
_FORMATS = {DAY: DAY_FORMAT, MONTH: MONTH_FORMAT, YEAR: YEAR_FORMAT}
_INTEGER = re.compile(r"^[+-]?\d+$")


class QuantifierError(ValueError):
    """Raised when a temporal descriptor cannot be resolved."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


def parse_date(value: str, kind: str = DAY) -> date:
    """Parse an operand under the strict calendar format of ``kind``.

    Args:
        value: Raw operand, e.g. ``2019-05`` for a month
        kind: One of ``day``, ``month`` or ``year``

    Returns:
        First calendar day covered by the operand

    Raises:
        QuantifierError: If the operand does not match the format
    """
    pattern = _PATTERNS[kind]
    if not pattern.match(value):
        raise QuantifierError(f"Invalid {kind}: '{value}'", raw=value)
    try:
        return datetime.strptime(value, _FORMATS[kind]).date()
    except ValueError as e:
        raise QuantifierError(f"Invalid {kind}: '{value}'", raw=value) from e


def parse_integer(value: str) -> int:
    """Parse a relative offset operand (may be negative)."""
    if not _INTEGER.match(value.strip()):
        raise QuantifierError(f"Invalid number: '{value}'", raw=value)
    return int(value.strip())


def _add_months(anchor: date, months: int) -> date:
    """Shift a first-of-month anchor by a number of months."""
    index = anchor.year * 12 + (anchor.month - 1) + months
    year, month = divmod(index, 12)
    return date(year, month + 1, 1)


@dataclass(frozen=True)
class Quantity:
    """A resolved, unambiguous date range.

    ``day``/``month``/``year`` carry one anchor formatted at their
    granularity. ``between`` carries two inclusive ISO dates.
    """

    kind: str
    operands: tuple[str, ...]

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise QuantifierError(f"Unknown quantity kind: '{self.kind}'", raw=self.kind)
        object.__setattr__(self, "operands", tuple(self.operands))
        expected = 2 if self.kind == BETWEEN else 1
        if len(self.operands) != expected:
            raise QuantifierError(
                f"'{self.kind}' takes {expected} operand(s), got {len(self.operands)}",
                raw=",".join(self.operands),
            )
        parse_kind = DAY if self.kind == BETWEEN else self.kind
        for operand in self.operands:
            parse_date(operand, parse_kind)

    @classmethod
    def day(cls, value: date) -> "Quantity":
        return cls(DAY, (value.isoformat(),))

    @classmethod
    def month(cls, value: date) -> "Quantity":
        return cls(MONTH, (f"{value.year:04d}-{value.month:02d}",))

    @classmethod
    def year(cls, value: date) -> "Quantity":
        return cls(YEAR, (f"{value.year:04d}",))

    @classmethod
    def between(cls, start: date, end: date) -> "Quantity":
        return cls(BETWEEN, (start.isoformat(), end.isoformat()))

    def bounds(self) -> tuple[datetime, datetime]:
        """Get the aggregation range of this quantity.

        Returns:
            Tuple of (inclusive start, exclusive end) at local midnight

        Raises:
            QuantifierError: If the range falls outside the supported calendar
        """
        try:
            if self.kind == BETWEEN:
                start = parse_date(self.operands[0])
                end = parse_date(self.operands[1]) + timedelta(days=1)
            else:
                start = parse_date(self.operands[0], self.kind)
                if self.kind == DAY:
                    end = start + timedelta(days=1)
                elif self.kind == MONTH:
                    end = _add_months(start, 1)
                else:
                    end = date(start.year + 1, 1, 1)
            bounds = (
                datetime.combine(start, datetime.min.time()),
                datetime.combine(end, datetime.min.time()),
            )
            # Both ends must map to local instants
            for value in bounds:
                value.timestamp()
        except (OverflowError, ValueError, OSError) as e:
            if isinstance(e, QuantifierError):
                raise
            raise QuantifierError(
                f"Date range out of bounds: {self.describe()}", raw=",".join(self.operands)
            ) from e
        return bounds

    def describe(self) -> str:
        """Human-readable form used in response headers."""
        return " ".join([self.kind, *self.operands])

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "operands": list(self.operands)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Quantity":
        try:
            return cls(data["kind"], tuple(data["operands"]))
        except (KeyError, TypeError) as e:
            raise QuantifierError(f"Malformed quantity: {data!r}", raw=str(data)) from e


def days_ago(now: date, days: int) -> Quantity:
    return Quantity.day(now - timedelta(days=days))


def months_ago(now: date, months: int) -> Quantity:
    # Anchor on the first so May 31 minus one month stays in April.
    return Quantity.month(_add_months(now.replace(day=1), -months))


def years_ago(now: date, years: int) -> Quantity:
    return Quantity.year(date(now.year - years, 1, 1))


def weeks_ago(now: date, weeks: int) -> Quantity:
    """Monday to Sunday window ``weeks`` weeks before the one containing ``now``.

    The end is clamped to ``now`` when the window has not finished yet.
    """
    start = now - timedelta(days=now.weekday() + 7 * weeks)
    end = start + timedelta(days=6)
    if start <= now < end:
        end = now
    return Quantity.between(start, end)


@dataclass(frozen=True)
class Parameter:
    """A recognized descriptor name and how to resolve it."""

    name: str
    arity: int
    resolve: Callable[..., Quantity]
    description: str
    usage: str = ""


def _date_param(kind: str) -> Callable[[date, str], Quantity]:
    def resolve_one(now: date, value: str) -> Quantity:
        return Quantity(kind, (value,))

    return resolve_one


def _relative_param(func: Callable[[date, int], Quantity]) -> Callable[[date, str], Quantity]:
    def resolve_one(now: date, value: str) -> Quantity:
        return func(now, parse_integer(value))

    return resolve_one


def _between(now: date, first: str, second: str) -> Quantity:
    return Quantity(BETWEEN, (first, second))


def _since(now: date, value: str) -> Quantity:
    return Quantity(BETWEEN, (value, now.isoformat()))


PARAMETERS: dict[str, Parameter] = {
    p.name: p
    for p in (
        Parameter("today", 0, lambda now: Quantity.day(now), "Today"),
        Parameter("yesterday", 0, lambda now: days_ago(now, 1), "Yesterday"),
        Parameter("this-week", 0, lambda now: weeks_ago(now, 0), "The current week"),
        Parameter("last-week", 0, lambda now: weeks_ago(now, 1), "The previous week"),
        Parameter("this-month", 0, lambda now: months_ago(now, 0), "The current month"),
        Parameter("last-month", 0, lambda now: months_ago(now, 1), "The previous month"),
        Parameter("this-year", 0, lambda now: years_ago(now, 0), "The current year"),
        Parameter("last-year", 0, lambda now: years_ago(now, 1), "The previous year"),
        Parameter("ever", 0, lambda now: Quantity.between(EPOCH, now), "All recorded time"),
        Parameter("day", 1, _date_param(DAY), "A specific day", "YYYY-MM-DD"),
        Parameter("month", 1, _date_param(MONTH), "A specific month", "YYYY-MM"),
        Parameter("year", 1, _date_param(YEAR), "A specific year", "YYYY"),
        Parameter("days-ago", 1, _relative_param(days_ago), "N days ago", "N"),
        Parameter("weeks-ago", 1, _relative_param(weeks_ago), "N weeks ago", "N"),
        Parameter("months-ago", 1, _relative_param(months_ago), "N months ago", "N"),
        Parameter("years-ago", 1, _relative_param(years_ago), "N years ago", "N"),
        Parameter("since", 1, _since, "From a day until today", "YYYY-MM-DD"),
        Parameter("between", 2, _between, "Between two days", "YYYY-MM-DD,YYYY-MM-DD"),
    )
}


def parameter_help() -> str:
    """List every parameter with its value form, one per line."""
    lines = []
    for param in PARAMETERS.values():
        label = f"{param.name}={param.usage}" if param.usage else param.name
        lines.append(f"  {label:<34}{param.description}")
    return "\n".join(lines)


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",")]


def resolve(name: str, operands: list[str], now: Optional[date] = None) -> list[Quantity]:
    """Resolve a named descriptor into quantities.

    Operands of list-accepting parameters expand to one quantity each.
    Paired parameters consume operands two at a time.

    Args:
        name: Descriptor name, e.g. ``months-ago``
        operands: Raw operand strings, already split on commas
        now: Reference day (defaults to today)

    Returns:
        Resolved quantities in operand order

    Raises:
        QuantifierError: On an unknown name, a malformed operand or a
            wrong operand count
    """
    if now is None:
        now = date.today()
    elif isinstance(now, datetime):
        now = now.date()

    param = PARAMETERS.get(name)
    if param is None:
        raise QuantifierError(f"Unknown parameter: '{name}'", raw=name)

    raw = ",".join(operands)
    if param.arity == 0:
        if operands:
            raise QuantifierError(f"'{name}' does not take a value", raw=raw)
        groups: list[list[str]] = [[]]
    else:
        if not operands or any(op == "" for op in operands):
            raise QuantifierError(f"'{name}' requires a value ({param.usage})", raw=raw)
        if len(operands) % param.arity:
            raise QuantifierError(
                f"'{name}' takes operands in groups of {param.arity}, got {len(operands)}",
                raw=raw,
            )
        groups = [
            operands[i : i + param.arity] for i in range(0, len(operands), param.arity)
        ]

    quantities = []
    for group in groups:
        try:
            quantities.append(param.resolve(now, *group))
        except QuantifierError:
            raise
        except (OverflowError, ValueError) as e:
            raise QuantifierError(f"Invalid value for '{name}': '{raw}'", raw=raw) from e
    return quantities


def resolve_argument(argument: str, now: Optional[date] = None) -> list[Quantity]:
    """Resolve a single ``--name=a,b`` / ``name=a`` / ``name`` argument."""
    name, sep, value = argument.lstrip("-").partition("=")
    return resolve(name, _split(value) if sep else [], now)


def parse_arguments(args: list[str], now: Optional[date] = None) -> list[Quantity]:
    """Resolve a command-line parameter list.

    Accepts ``name``, ``name=value``, ``--name``, ``--name=value`` and
    ``name value``. An empty list resolves to ``today``.

    Raises:
        QuantifierError: If any argument fails to resolve
    """
    quantities: list[Quantity] = []
    i = 0
    while i < len(args):
        argument = args[i]
        name = argument.lstrip("-").partition("=")[0]
        param = PARAMETERS.get(name)
        if (
            "=" not in argument
            and param is not None
            and param.arity > 0
            and i + 1 < len(args)
        ):
            quantities.extend(resolve(name, _split(args[i + 1]), now))
            i += 2
            continue
        quantities.extend(resolve_argument(argument, now))
        i += 1

    if not quantities:
        quantities = resolve("today", [], now)
    return quantities
