import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional, Tuple

from .domain import DateRange, Indicator, TimeFrame
from .event import ChartEvent
from .reactive import Stream
from .widgets import Rect, SelectMenuState, TextFieldState

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UiTarget(str, Enum):
    """Interactive screen regions"""
    INDICATOR_BOX = "indicator_box"
    INDICATOR_MENU = "indicator_menu"
    STOCK_NAME_BUTTON = "stock_name_button"
    STOCK_SYMBOL_BUTTON = "stock_symbol_button"
    STOCK_SYMBOL_FIELD = "stock_symbol_field"
    TIME_FRAME_BOX = "time_frame_box"
    TIME_FRAME_MENU = "time_frame_menu"


@dataclass(frozen=True)
class TargetAreas:
    """Rectangles of the targets drawn by the last render, in drawing order"""
    areas: Tuple[Tuple[UiTarget, Rect], ...] = ()

    @classmethod
    def of(cls, pairs: Iterable[Tuple[UiTarget, Optional[Rect]]]) -> "TargetAreas":
        return cls(tuple((target, rect) for target, rect in pairs if rect is not None))

    def get(self, target: UiTarget) -> Optional[Rect]:
        for drawn, rect in self.areas:
            if drawn == target:
                return rect
        return None

    def hit_test(self, column: int, row: int) -> Optional[UiTarget]:
        """Topmost target under the cell; later draws cover earlier ones"""
        for target, rect in reversed(self.areas):
            if rect.contains(column, row):
                return target
        return None

    def __iter__(self) -> Iterator[Tuple[UiTarget, Rect]]:
        return iter(self.areas)

    def __len__(self) -> int:
        return len(self.areas)


class FrameRateCounter:
    """Average frame time over a rolling update interval"""

    def __init__(self, update_interval: timedelta, clock: Clock = utc_now):
        self.update_interval = update_interval
        self.clock = clock
        self.frames = 0
        self.last_interval = clock()
        self._frame_time: Optional[timedelta] = None

    def incr(self) -> Optional[timedelta]:
        """Count a frame. Returns the frame time when the update interval has elapsed."""
        self.frames += 1
        now = self.clock()
        if now < self.last_interval + self.update_interval:
            return None

        elapsed_ms = (now - self.last_interval) // timedelta(milliseconds=1)
        self._frame_time = timedelta(milliseconds=elapsed_ms // self.frames)
        self.frames = 0
        self.last_interval = now
        return self._frame_time

    def frame_time(self) -> Optional[timedelta]:
        return self._frame_time


@dataclass(frozen=True)
class UiState:
    """Snapshot handed to the renderer once per tick"""
    time_frame: TimeFrame
    time_frame_menu: SelectMenuState
    indicator_menu: SelectMenuState
    date_range: Optional[DateRange] = None
    debug_draw: bool = False
    frame_rate: Optional[timedelta] = None
    indicator: Optional[Indicator] = None
    symbol_field: TextFieldState = field(default_factory=TextFieldState)
    target_areas: TargetAreas = field(default_factory=TargetAreas)

    @classmethod
    def initial(cls, time_frame: TimeFrame, indicator: Optional[Indicator] = None, debug_draw: bool = False, now: Optional[datetime] = None) -> "UiState":
        return cls(
            time_frame=time_frame,
            time_frame_menu=SelectMenuState.of(list(TimeFrame), time_frame),
            indicator_menu=indicator_menu_state(indicator),
            date_range=time_frame.now_date_range(now),
            debug_draw=debug_draw,
            indicator=indicator,
        )

    @property
    def active_overlays(self) -> Tuple[UiTarget, ...]:
        active = []
        if self.symbol_field.active:
            active.append(UiTarget.STOCK_SYMBOL_FIELD)
        if self.time_frame_menu.active:
            active.append(UiTarget.TIME_FRAME_MENU)
        if self.indicator_menu.active:
            active.append(UiTarget.INDICATOR_MENU)
        return tuple(active)


def indicator_menu_state(indicator: Optional[Indicator]) -> SelectMenuState:
    """Indicator menu whose rows show `indicator` in place of its variant's default"""
    items = [indicator if indicator is not None and variant.same_variant(indicator) else variant
             for variant in Indicator.variants()]
    return SelectMenuState.of(items, indicator, allow_empty_selection=True)


def to_date_ranges(
    chart_events: Stream,
    stock_symbols: Stream,
    init_stock_symbol: str,
    time_frames: Stream,
    init_time_frame: TimeFrame,
    clock: Clock = utc_now,
) -> Stream:
    """Visible date range derived from pan/reset events and the symbol and time frame in view"""

    def step(acc, latest):
        date_range, symbol, time_frame = acc
        ev, new_symbol, new_time_frame = latest

        if new_symbol != symbol or new_time_frame != time_frame:
            return new_time_frame.now_date_range(clock()), new_symbol, new_time_frame

        duration = time_frame.duration()
        pannable = time_frame is not TimeFrame.YEAR_TO_DATE and duration is not None and date_range is not None
        if ev is ChartEvent.PAN_BACKWARD and pannable:
            return date_range.shift(-duration), symbol, time_frame
        if ev is ChartEvent.PAN_FORWARD and pannable:
            panned = date_range.shift(duration)
            now_range = time_frame.now_date_range(clock())
            if panned.end > now_range.end:
                panned = now_range
            return panned, symbol, time_frame
        if ev is ChartEvent.RESET:
            return time_frame.now_date_range(clock()), symbol, time_frame
        return acc

    return (
        chart_events
        .combine_latest(stock_symbols.distinct_until_changed(), lambda ev, symbol: (ev, symbol))
        .combine_latest(time_frames.distinct_until_changed(), lambda pair, time_frame: (*pair, time_frame))
        .fold((init_time_frame.now_date_range(clock()), init_stock_symbol, init_time_frame), step)
        .map(lambda acc: acc[0])
        .distinct_until_changed()
        .inspect(lambda date_range: logger.debug("date range: %s", date_range))
    )


def to_frame_rates(tick_events: Stream, counter: FrameRateCounter) -> Stream:
    """Latest frame time, re-emitted only when the counter reports a new value"""
    return (
        tick_events
        .map(lambda _: counter.incr())
        .filter(lambda frame_time: frame_time is not None)
        .distinct_until_changed()
    )
