import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple


class ParseTimeFrameError(ValueError):
    """Base error for time frame literals"""


class EmptyTimeFrameError(ParseTimeFrameError):
    def __init__(self):
        super().__init__("cannot parse time frame from empty string")


class InvalidTimeFrameError(ParseTimeFrameError):
    def __init__(self, value: str):
        super().__init__(f"invalid time frame literal: {value!r}")
        self.value = value


class ParseIndicatorError(ValueError):
    """Base error for indicator literals"""


class EmptyIndicatorError(ParseIndicatorError):
    def __init__(self):
        super().__init__("cannot parse indicator from empty string")


class InvalidIndicatorError(ParseIndicatorError):
    def __init__(self, value: str):
        super().__init__(f"invalid indicator literal: {value!r}")
        self.value = value


class IndicatorParameterError(ParseIndicatorError):
    """A parameter of an otherwise well-formed indicator literal is not a valid integer"""
    def __init__(self, name: str, value: str, reason: str = "not an integer"):
        super().__init__(f"invalid indicator parameter {name}: {value!r} ({reason})")
        self.name = name
        self.value = value


def start_of_tomorrow(now: Optional[datetime] = None) -> datetime:
    """Midnight UTC following `now`, so the current day is always fully covered"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)


@dataclass(frozen=True)
class DateRange:
    """Half-open interval of instants [start, end)"""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"date range start {self.start} is after end {self.end}")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def shift(self, delta: timedelta) -> "DateRange":
        return DateRange(self.start + delta, self.end + delta)

    def __str__(self) -> str:
        return f"{self.start:%Y-%m-%d} .. {self.end:%Y-%m-%d}"


class TimeFrame(str, Enum):
    """Time frames for historical prices, in menu order"""
    FIVE_DAYS = "5D"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    YEAR_TO_DATE = "YTD"
    ONE_YEAR = "1Y"
    TWO_YEARS = "2Y"
    FIVE_YEARS = "5Y"
    TEN_YEARS = "10Y"
    MAX = "Max"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def default(cls) -> "TimeFrame":
        return cls.ONE_MONTH

    @classmethod
    def parse(cls, text: str) -> "TimeFrame":
        """Parse the long ("1mo") or short ("1M") token, case-insensitively"""
        if text == "":
            raise EmptyTimeFrameError()
        try:
            return _TIME_FRAME_TOKENS[text.strip().lower()]
        except KeyError:
            raise InvalidTimeFrameError(text) from None

    def duration(self) -> Optional[timedelta]:
        """Fixed span of the time frame; None for YTD and Max"""
        return _TIME_FRAME_DAYS.get(self)

    def interval(self) -> str:
        """Period code understood by the market data API"""
        return _TIME_FRAME_INTERVALS[self]

    def bar_interval(self) -> str:
        """Bar granularity requested for this time frame"""
        if self is TimeFrame.FIVE_DAYS:
            return "1h"
        if self in (TimeFrame.TWO_YEARS, TimeFrame.FIVE_YEARS, TimeFrame.TEN_YEARS, TimeFrame.MAX):
            return "1wk"
        return "1d"

    def now_date_range(self, now: Optional[datetime] = None) -> Optional[DateRange]:
        end = start_of_tomorrow(now)
        if self is TimeFrame.YEAR_TO_DATE:
            return DateRange(end.replace(month=1, day=1), end)
        duration = self.duration()
        if duration is None:
            return None
        return DateRange(end - duration, end)


_TIME_FRAME_DAYS = {
    TimeFrame.FIVE_DAYS: timedelta(days=5),
    TimeFrame.ONE_MONTH: timedelta(days=30),
    TimeFrame.THREE_MONTHS: timedelta(days=30 * 3),
    TimeFrame.SIX_MONTHS: timedelta(days=30 * 6),
    TimeFrame.ONE_YEAR: timedelta(days=30 * 12),
    TimeFrame.TWO_YEARS: timedelta(days=30 * 12 * 2),
    TimeFrame.FIVE_YEARS: timedelta(days=30 * 12 * 5),
    TimeFrame.TEN_YEARS: timedelta(days=30 * 12 * 10),
}

_TIME_FRAME_INTERVALS = {
    TimeFrame.FIVE_DAYS: "5d",
    TimeFrame.ONE_MONTH: "1mo",
    TimeFrame.THREE_MONTHS: "3mo",
    TimeFrame.SIX_MONTHS: "6mo",
    TimeFrame.YEAR_TO_DATE: "ytd",
    TimeFrame.ONE_YEAR: "1y",
    TimeFrame.TWO_YEARS: "2y",
    TimeFrame.FIVE_YEARS: "5y",
    TimeFrame.TEN_YEARS: "10y",
    TimeFrame.MAX: "max",
}

# short and long token per time frame, both lower-cased
_TIME_FRAME_TOKENS = {
    **{time_frame.value.lower(): time_frame for time_frame in TimeFrame},
    **{code: time_frame for time_frame, code in _TIME_FRAME_INTERVALS.items()},
}


@dataclass(frozen=True)
class BoundedParameter:
    """Integer indicator parameter restricted to [MIN, MAX]. Subclasses name its role."""
    value: int

    MIN = 0
    MAX = 0

    def __post_init__(self):
        if not isinstance(self.value, int) or isinstance(self.value, bool):
            raise TypeError(f"{type(self).__name__} must wrap an int, got {self.value!r}")
        if not self.MIN <= self.value <= self.MAX:
            raise ValueError(f"{type(self).__name__} must be between {self.MIN} and {self.MAX}, got {self.value}")

    @classmethod
    def parse(cls, text: str, name: str):
        """Parse a parameter literal, reporting failures under the parameter's name"""
        try:
            value = int(text)
        except ValueError:
            raise IndicatorParameterError(name, text) from None
        try:
            return cls(value)
        except ValueError:
            raise IndicatorParameterError(name, text, f"out of range {cls.MIN}..{cls.MAX}") from None

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Period(BoundedParameter):
    """Look-back window of an indicator, in bars"""
    MIN = 0
    MAX = 65535


@dataclass(frozen=True)
class StdDevMultiplier(BoundedParameter):
    """Number of standard deviations between a band and its moving average"""
    MIN = 0
    MAX = 255


class Indicator:
    """Technical indicator selection. Concrete variants are the subclasses below."""

    @classmethod
    def variants(cls) -> Tuple["Indicator", ...]:
        """Every variant with its default parameters, in menu order"""
        return (BollingerBands(), ExponentialMovingAverage(), SimpleMovingAverage())

    @classmethod
    def parse(cls, text: str) -> "Indicator":
        if text == "":
            raise EmptyIndicatorError()
        match = _BB_PATTERN.fullmatch(text)
        if match:
            return BollingerBands(
                Period.parse(match["n"], "n"),
                StdDevMultiplier.parse(match["k"], "k"),
            )
        match = _EMA_PATTERN.fullmatch(text)
        if match:
            return ExponentialMovingAverage(Period.parse(match["n"], "n"))
        match = _SMA_PATTERN.fullmatch(text)
        if match:
            return SimpleMovingAverage(Period.parse(match["n"], "n"))
        raise InvalidIndicatorError(text)

    def same_variant(self, other: Optional["Indicator"]) -> bool:
        return type(self) is type(other)


# parameters are captured loosely so a malformed number is reported by name
_PARAM = r"[^,()]*?"
_BB_PATTERN = re.compile(rf"\s*BB\s*\(\s*(?P<n>{_PARAM})\s*,\s*(?P<k>{_PARAM})\s*\)\s*")
_EMA_PATTERN = re.compile(rf"\s*EMA\s*\(\s*(?P<n>{_PARAM})\s*\)\s*")
_SMA_PATTERN = re.compile(rf"\s*SMA\s*\(\s*(?P<n>{_PARAM})\s*\)\s*")


@dataclass(frozen=True)
class BollingerBands(Indicator):
    period: Period = Period(20)
    multiplier: StdDevMultiplier = StdDevMultiplier(2)

    def __post_init__(self):
        _check_role(self.period, Period, "period")
        _check_role(self.multiplier, StdDevMultiplier, "multiplier")

    def __str__(self) -> str:
        return f"BB({self.period}, {self.multiplier})"


@dataclass(frozen=True)
class ExponentialMovingAverage(Indicator):
    period: Period = Period(50)

    def __post_init__(self):
        _check_role(self.period, Period, "period")

    def __str__(self) -> str:
        return f"EMA({self.period})"


@dataclass(frozen=True)
class SimpleMovingAverage(Indicator):
    period: Period = Period(50)

    def __post_init__(self):
        _check_role(self.period, Period, "period")

    def __str__(self) -> str:
        return f"SMA({self.period})"


def _check_role(value, expected: type, field: str):
    if not isinstance(value, expected):
        raise TypeError(f"{field} must be a {expected.__name__}, got {type(value).__name__}")
