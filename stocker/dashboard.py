"""Dataflow graph of the dashboard and the loop that drives it.

One loop step handles one input event:

1. overlay transitions queued during the previous step are applied,
2. completed market data fetches are sent into the graph,
3. the event itself is sent,
4. market data is requested for the symbol, time frame and date range now in view,
5. the target areas of a frame drawn during the step are sent for the next one.

Everything inside a step runs on the calling thread.
"""
import logging
from dataclasses import replace
from datetime import timedelta
from typing import Callable, Optional

from rich.live import Live

from .app import Clock, FrameRateCounter, TargetAreas, UiState, UiTarget, to_date_ranges, to_frame_rates, utc_now
from .config import RESERVED_KEYS, DashboardConfig
from .domain import Indicator, TimeFrame
from .event import (
    ChartEvent,
    HotkeyMap,
    InputEvent,
    InputRouter,
    KeyEvent,
    MouseAction,
    OverlayArbiter,
    SelectMenuMachine,
    TextFieldMachine,
    TickEvent,
    WidgetEventKind,
    to_chart_events,
    to_grouped_user_input_events,
    to_widget_events,
    to_widget_states,
)
from .reactive import Broadcast, Stream
from .stock import BarRequest, Stock, StockFetcher
from .terminal import EventSource, TerminalSession
from .ui import StockRenderer

logger = logging.getLogger(__name__)

OVERLAY_TARGETS = (UiTarget.STOCK_SYMBOL_FIELD, UiTarget.TIME_FRAME_MENU, UiTarget.INDICATOR_MENU)

# clickable target -> overlay whose widget handles the click
ASSOCIATED_OVERLAYS = {
    UiTarget.INDICATOR_BOX: UiTarget.INDICATOR_MENU,
    UiTarget.INDICATOR_MENU: UiTarget.INDICATOR_MENU,
    UiTarget.STOCK_NAME_BUTTON: UiTarget.STOCK_SYMBOL_FIELD,
    UiTarget.STOCK_SYMBOL_BUTTON: UiTarget.STOCK_SYMBOL_FIELD,
    UiTarget.STOCK_SYMBOL_FIELD: UiTarget.STOCK_SYMBOL_FIELD,
    UiTarget.TIME_FRAME_BOX: UiTarget.TIME_FRAME_MENU,
    UiTarget.TIME_FRAME_MENU: UiTarget.TIME_FRAME_MENU,
}

SYMBOL_FIELD_MOUSE_ACTIONS = {
    UiTarget.STOCK_SYMBOL_BUTTON: MouseAction.TOGGLE,
    UiTarget.STOCK_NAME_BUTTON: MouseAction.TOGGLE,
    None: MouseAction.DEACTIVATE,
}
TIME_FRAME_MENU_MOUSE_ACTIONS = {
    UiTarget.TIME_FRAME_BOX: MouseAction.TOGGLE,
    None: MouseAction.DEACTIVATE,
}
INDICATOR_MENU_MOUSE_ACTIONS = {
    UiTarget.INDICATOR_BOX: MouseAction.TOGGLE,
    None: MouseAction.DEACTIVATE,
}


def accepted_values(widget_events: Stream) -> Stream:
    """Values committed by a widget (Enter or a row pick)"""
    return (
        widget_events
        .map(lambda pair: pair[0])
        .filter(lambda ev: ev.kind is WidgetEventKind.ACCEPT)
        .map(lambda ev: ev.value)
    )


def to_stocks(stock_symbols: Stream, profiles: Stream, bar_sets: Stream, init_symbol: str) -> Stream:
    """Stock in view; profile and bars are cleared when the symbol changes"""
    def step(stock, update):
        kind, value = update
        if kind == "symbol":
            return stock if value == stock.symbol else Stock(value)
        if value is not None and value.symbol != stock.symbol:
            return stock
        if kind == "profile":
            return replace(stock, profile=value)
        return replace(stock, bar_set=value)

    return (
        stock_symbols.map(lambda symbol: ("symbol", symbol))
        .merge(profiles.map(lambda profile: ("profile", profile)))
        .merge(bar_sets.map(lambda bar_set: ("bars", bar_set)))
        .fold(Stock(init_symbol), step)
        .distinct_until_changed()
    )


class StockDashboard:
    def __init__(
        self,
        config: Optional[DashboardConfig] = None,
        symbol: Optional[str] = None,
        time_frame: Optional[TimeFrame] = None,
        indicator: Optional[Indicator] = None,
        debug_draw: bool = False,
        renderer: Optional[StockRenderer] = None,
        fetcher: Optional[StockFetcher] = None,
        clock: Clock = utc_now,
        bell: Optional[Callable[[], None]] = None,
    ):
        self.config = config or DashboardConfig()
        self.init_symbol = symbol or self.config.defaults.symbol
        self.init_time_frame = time_frame or TimeFrame.parse(self.config.defaults.time_frame)
        self.init_indicator = indicator
        self.renderer = renderer or StockRenderer()
        self.fetcher = fetcher or StockFetcher(max_workers=self.config.refresh_rates.fetch_workers)
        self.clock = clock
        self.bell = bell or (lambda: None)

        self.frame = None
        self.quit_requested = False
        self._last_areas: Optional[TargetAreas] = None
        self._pending_areas: Optional[TargetAreas] = None
        self.symbol = self.init_symbol
        self._bar_request: Optional[BarRequest] = None

        self.initial_state = UiState.initial(self.init_time_frame, self.init_indicator, debug_draw, now=clock())
        self._build_graph()

    def _build_graph(self):
        hotkeys = self.config.hotkeys
        initial = self.initial_state

        self.input_events: Broadcast = Broadcast()
        user_input_events = self.input_events.filter(lambda ev: not isinstance(ev, TickEvent))
        self.tick_events = self.input_events.filter(lambda ev: isinstance(ev, TickEvent)).broadcast()

        self.arbiter = OverlayArbiter()
        self.target_areas: Broadcast = Broadcast()
        self.router = InputRouter(
            hotkeys=HotkeyMap([
                (hotkeys.stock_symbol, UiTarget.STOCK_SYMBOL_FIELD),
                (hotkeys.time_frame, UiTarget.TIME_FRAME_MENU),
                (hotkeys.indicator, UiTarget.INDICATOR_MENU),
            ]),
            associated_overlays=ASSOCIATED_OVERLAYS,
            capturing_overlays=frozenset({UiTarget.STOCK_SYMBOL_FIELD}),
        )
        grouped = to_grouped_user_input_events(
            user_input_events, self.target_areas, self.arbiter.active_overlays, self.router,
        ).broadcast()

        def routed_to(target):
            return grouped.filter(lambda group: group.key == target).switch()

        def overlay_states_of(target):
            return self.arbiter.overlay_states.filter(lambda pair: pair[0] == target).map(lambda pair: pair[1])

        symbol_field = TextFieldMachine(
            UiTarget.STOCK_SYMBOL_FIELD, hotkeys.stock_symbol, SYMBOL_FIELD_MOUSE_ACTIONS, transform=str.upper,
        )
        time_frame_menu = SelectMenuMachine(UiTarget.TIME_FRAME_MENU, hotkeys.time_frame, TIME_FRAME_MENU_MOUSE_ACTIONS)
        indicator_menu = SelectMenuMachine(UiTarget.INDICATOR_MENU, hotkeys.indicator, INDICATOR_MENU_MOUSE_ACTIONS)

        self.symbol_field_events = to_widget_events(
            symbol_field, initial.symbol_field, routed_to(UiTarget.STOCK_SYMBOL_FIELD),
            self.target_areas, overlay_states_of(UiTarget.STOCK_SYMBOL_FIELD),
        ).broadcast()
        self.time_frame_menu_events = to_widget_events(
            time_frame_menu, initial.time_frame_menu, routed_to(UiTarget.TIME_FRAME_MENU),
            self.target_areas, overlay_states_of(UiTarget.TIME_FRAME_MENU),
        ).broadcast()
        self.indicator_menu_events = to_widget_events(
            indicator_menu, initial.indicator_menu, routed_to(UiTarget.INDICATOR_MENU),
            self.target_areas, overlay_states_of(UiTarget.INDICATOR_MENU),
        ).broadcast()

        overlay_events = (
            self.symbol_field_events.map(lambda pair: (UiTarget.STOCK_SYMBOL_FIELD, pair[0]))
            .merge(self.time_frame_menu_events.map(lambda pair: (UiTarget.TIME_FRAME_MENU, pair[0])))
            .merge(self.indicator_menu_events.map(lambda pair: (UiTarget.INDICATOR_MENU, pair[0])))
            .inspect(lambda pair: logger.debug("overlay event: %s", pair))
        )
        self.arbiter.queue_for_next_step(overlay_events)

        # startup values are sent into these by start()
        self.stock_symbol_inputs: Broadcast = Broadcast()
        self.time_frame_inputs: Broadcast = Broadcast()
        self.indicator_inputs: Broadcast = Broadcast()
        self.chart_event_inputs: Broadcast = Broadcast()

        self.stock_symbols = (
            self.stock_symbol_inputs
            .merge(accepted_values(self.symbol_field_events).map(str.strip).filter(bool))
            .distinct_until_changed()
            .inspect(lambda symbol: logger.info("stock symbol: %s", symbol))
            .broadcast()
        )
        self.time_frames = (
            self.time_frame_inputs
            .merge(accepted_values(self.time_frame_menu_events))
            .distinct_until_changed()
            .inspect(lambda time_frame: logger.info("selected time frame: %s", time_frame))
            .broadcast()
        )
        self.indicators = (
            self.indicator_inputs
            .merge(accepted_values(self.indicator_menu_events))
            .distinct_until_changed()
            .inspect(lambda indicator: logger.info("selected indicator: %s", indicator))
            .broadcast()
        )

        main_view_events = routed_to(None)
        main_view_events.subscribe(self._on_main_view_event)
        self.chart_events = self.chart_event_inputs.merge(to_chart_events(main_view_events)).broadcast()

        self.date_ranges = to_date_ranges(
            self.chart_events, self.stock_symbols, self.init_symbol,
            self.time_frames, self.init_time_frame, self.clock,
        ).broadcast()
        counter = FrameRateCounter(timedelta(milliseconds=self.config.refresh_rates.frame_rate_interval_ms), self.clock)
        self.frame_rates = to_frame_rates(self.tick_events, counter).broadcast()

        self.stock_symbols.subscribe(self._set_symbol)
        (
            self.stock_symbols
            .combine_latest(self.time_frames, lambda symbol, time_frame: (symbol, time_frame))
            .combine_latest(self.date_ranges, lambda pair, date_range: BarRequest(*pair, date_range))
            .subscribe(self._set_bar_request)
        )
        self.stocks = to_stocks(self.stock_symbols, self.fetcher.profiles, self.fetcher.bar_sets, self.init_symbol).broadcast()

        updates = (
            self.time_frames.map(lambda value: {"time_frame": value})
            .merge(to_widget_states(self.time_frame_menu_events).map(lambda value: {"time_frame_menu": value}))
            .merge(to_widget_states(self.indicator_menu_events).map(lambda value: {"indicator_menu": value}))
            .merge(to_widget_states(self.symbol_field_events).map(lambda value: {"symbol_field": value}))
            .merge(self.date_ranges.map(lambda value: {"date_range": value}))
            .merge(self.frame_rates.map(lambda value: {"frame_rate": value}))
            .merge(self.indicators.map(lambda value: {"indicator": value}))
            .merge(self.target_areas.map(lambda value: {"target_areas": value}))
        )
        self.ui_states = (
            updates
            .fold(initial, lambda state, changes: replace(state, **changes))
            .distinct_until_changed()
            .broadcast()
        )

        # wired last so every other reaction to a tick has happened before drawing
        (
            self.tick_events
            .with_latest_from(self.stocks, lambda _, stock: stock)
            .with_latest_from(self.ui_states, lambda stock, ui_state: (stock, ui_state))
            .subscribe(self._draw)
        )

    def _set_bar_request(self, request: BarRequest):
        self._bar_request = request

    def _on_main_view_event(self, ev: InputEvent):
        if not isinstance(ev, KeyEvent) or not ev.is_plain_char:
            return
        if ev.char == "q":
            logger.info("quit requested")
            self.quit_requested = True
        elif ev.char not in RESERVED_KEYS:
            self.bell()

    def _draw(self, snapshot):
        stock, ui_state = snapshot
        self.frame, self._pending_areas = self.renderer.render(stock, ui_state)

    def _set_symbol(self, symbol: str):
        self.symbol = symbol

    def _request_market_data(self):
        self.fetcher.request_profile(self.symbol)
        if self._bar_request is not None:
            self.fetcher.request_bars(self._bar_request)

    def start(self):
        """Open the overlay groups and send the startup values into the graph"""
        self.arbiter.start(OVERLAY_TARGETS)
        self._send_target_areas(TargetAreas())
        self.time_frame_inputs.send(self.init_time_frame)
        self.indicator_inputs.send(self.init_indicator)
        self.stock_symbol_inputs.send(self.init_symbol)
        self.chart_event_inputs.send(ChartEvent.RESET)
        self._request_market_data()

    def _send_target_areas(self, areas: TargetAreas):
        if areas != self._last_areas:
            self._last_areas = areas
            self.target_areas.send(areas)

    def step(self, ev: InputEvent) -> bool:
        """Handle one input event. Returns False once quitting was requested."""
        self.arbiter.flush()
        self.fetcher.drain()
        self.input_events.send(ev)
        self._request_market_data()
        if self._pending_areas is not None:
            areas, self._pending_areas = self._pending_areas, None
            self._send_target_areas(areas)
        return not self.quit_requested

    def run(self):
        """Take over the terminal and run until quit"""
        tick_rate = self.config.refresh_rates.tick_rate_ms / 1000
        with TerminalSession() as session:
            self.bell = session.bell
            self.start()
            source = EventSource(tick_rate).start()
            try:
                with Live(console=self.renderer.console, screen=True, auto_refresh=False, transient=True) as live:
                    while self.step(source.next()):
                        if self.frame is not None:
                            live.update(self.frame, refresh=True)
                            self.frame = None
            finally:
                source.stop()
                self.fetcher.shutdown()
