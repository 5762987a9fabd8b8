import pytest

from stocker.app import TargetAreas, UiTarget
from stocker.domain import TimeFrame
from stocker.event import (
    ChartEvent,
    HotkeyMap,
    InputRouter,
    KeyCode,
    KeyEvent,
    Modifier,
    MouseAction,
    MouseButton,
    MouseEvent,
    MouseKind,
    OverlayArbiter,
    OverlayState,
    SelectMenuEvent,
    SelectMenuMachine,
    TextFieldEvent,
    TextFieldMachine,
    WidgetEventKind,
    to_chart_events,
)
from stocker.reactive import Broadcast
from stocker.widgets import Rect, SelectMenuState, TextFieldState

AREAS = TargetAreas.of([
    (UiTarget.STOCK_SYMBOL_BUTTON, Rect(0, 0, 10, 3)),
    (UiTarget.TIME_FRAME_BOX, Rect(75, 0, 9, 3)),
    (UiTarget.TIME_FRAME_MENU, Rect(0, 3, 9, 12)),
])


def click(column, row):
    return MouseEvent(MouseKind.DOWN, column, row, MouseButton.LEFT)


def test_hotkey_map_is_bidirectional():
    hotkeys = HotkeyMap([("s", UiTarget.STOCK_SYMBOL_FIELD), ("t", UiTarget.TIME_FRAME_MENU)])
    assert hotkeys.target_for(KeyEvent.of_char("t")) is UiTarget.TIME_FRAME_MENU
    assert hotkeys.target_for(KeyEvent.of_char("t", Modifier.CTRL)) is None
    assert hotkeys.target_for(KeyEvent(KeyCode.ENTER)) is None
    with pytest.raises(ValueError):
        hotkeys.insert("t", UiTarget.INDICATOR_MENU)
    with pytest.raises(ValueError):
        hotkeys.insert("x", UiTarget.TIME_FRAME_MENU)


@pytest.fixture()
def router():
    return InputRouter(
        hotkeys=HotkeyMap([("s", UiTarget.STOCK_SYMBOL_FIELD), ("t", UiTarget.TIME_FRAME_MENU)]),
        associated_overlays={
            UiTarget.STOCK_SYMBOL_BUTTON: UiTarget.STOCK_SYMBOL_FIELD,
            UiTarget.TIME_FRAME_BOX: UiTarget.TIME_FRAME_MENU,
            UiTarget.TIME_FRAME_MENU: UiTarget.TIME_FRAME_MENU,
        },
        capturing_overlays=frozenset({UiTarget.STOCK_SYMBOL_FIELD}),
    )


def test_router_keys(router):
    assert router.route(KeyEvent.of_char("t"), AREAS, None) is UiTarget.TIME_FRAME_MENU
    assert router.route(KeyEvent.of_char("x"), AREAS, None) is None
    assert router.route(KeyEvent.of_char("x"), AREAS, UiTarget.TIME_FRAME_MENU) is UiTarget.TIME_FRAME_MENU
    assert router.route(KeyEvent.of_char("s"), AREAS, UiTarget.TIME_FRAME_MENU) is UiTarget.STOCK_SYMBOL_FIELD
    # a capturing overlay keeps hotkeys for itself
    assert router.route(KeyEvent.of_char("t"), AREAS, UiTarget.STOCK_SYMBOL_FIELD) is UiTarget.STOCK_SYMBOL_FIELD


def test_router_mouse(router):
    assert router.route(click(78, 1), AREAS, None) is UiTarget.TIME_FRAME_MENU
    assert router.route(click(2, 1), AREAS, UiTarget.TIME_FRAME_MENU) is UiTarget.STOCK_SYMBOL_FIELD
    assert router.route(click(50, 20), AREAS, UiTarget.TIME_FRAME_MENU) is UiTarget.TIME_FRAME_MENU
    assert router.route(click(50, 20), AREAS, None) is None
    moved = MouseEvent(MouseKind.MOVED, 78, 1)
    assert router.route(moved, AREAS, None) is None


def test_arbiter_defers_requests_to_the_next_flush(collected):
    arbiter = OverlayArbiter()
    states = collected(arbiter.overlay_states)
    arbiter.start(["a", "b"])
    assert states == [("a", OverlayState.INACTIVE), ("b", OverlayState.INACTIVE)]

    arbiter.request("a", OverlayState.ACTIVE)
    assert arbiter.active is None
    assert arbiter.pending == (("a", OverlayState.ACTIVE),)
    arbiter.flush()
    assert arbiter.active == "a"
    assert arbiter.pending == ()


def test_arbiter_activating_deactivates_previous(collected):
    arbiter = OverlayArbiter()
    arbiter.start(["a", "b"])
    active = collected(arbiter.active_overlays)
    states = collected(arbiter.overlay_states)

    arbiter.request("a", OverlayState.ACTIVE)
    arbiter.flush()
    arbiter.request("b", OverlayState.ACTIVE)
    arbiter.flush()
    assert states[-2:] == [("a", OverlayState.INACTIVE), ("b", OverlayState.ACTIVE)]
    assert active == ["a", None, "b"]

    # closing an overlay that is no longer active changes nothing
    arbiter.request("a", OverlayState.INACTIVE)
    arbiter.flush()
    assert arbiter.active == "b"
    assert len(states) == 3


def test_arbiter_queues_what_widget_events_ask_for():
    arbiter = OverlayArbiter()
    arbiter.start(["field"])
    events = Broadcast()
    arbiter.queue_for_next_step(events)

    events.send(("field", TextFieldEvent(WidgetEventKind.OPEN)))
    events.send(("field", TextFieldEvent(WidgetEventKind.INPUT, "A")))
    assert arbiter.pending == ()
    events.send(("field", TextFieldEvent(WidgetEventKind.ACTIVATE)))
    events.send(("field", TextFieldEvent(WidgetEventKind.ACCEPT, "A")))
    assert arbiter.pending == (("field", OverlayState.ACTIVE), ("field", OverlayState.INACTIVE))


@pytest.fixture()
def text_field():
    return TextFieldMachine(
        UiTarget.STOCK_SYMBOL_FIELD,
        "s",
        {UiTarget.STOCK_SYMBOL_BUTTON: MouseAction.TOGGLE, None: MouseAction.DEACTIVATE},
        transform=str.upper,
    )


def type_keys(machine, state, keys, areas=AREAS):
    events = []
    for key in keys:
        ev = KeyEvent.of_char(key) if isinstance(key, str) else key
        event, state = machine.on_input(state, ev, areas)
        events.append(event)
    return events, state


def test_text_field_hotkey_only_requests_activation(text_field):
    event, state = text_field.on_input(TextFieldState(), KeyEvent.of_char("s"), AREAS)
    assert event == TextFieldEvent(WidgetEventKind.ACTIVATE)
    assert not state.active
    event, state = text_field.on_overlay_state(state, OverlayState.ACTIVE)
    assert event == TextFieldEvent(WidgetEventKind.OPEN)
    assert state.active


def test_text_field_edit_and_accept(text_field):
    state = TextFieldState().activate()
    events, state = type_keys(text_field, state, ["a", "s", "x", KeyEvent(KeyCode.BACKSPACE)])
    assert [event.value for event in events] == ["A", "AS", "ASX", "AS"]
    event, state = text_field.on_input(state, KeyEvent(KeyCode.ENTER), AREAS)
    assert event == TextFieldEvent(WidgetEventKind.ACCEPT, "AS")
    assert state == TextFieldState()


def test_text_field_escape_discards(text_field):
    _, state = type_keys(text_field, TextFieldState().activate(), ["a", "b"])
    event, state = text_field.on_input(state, KeyEvent(KeyCode.ESC), AREAS)
    assert event.kind is WidgetEventKind.CANCEL
    assert state == TextFieldState()
    _, state = text_field.on_overlay_state(state, OverlayState.ACTIVE)
    assert state.value == ""


def test_text_field_mouse(text_field):
    event, _ = text_field.on_input(TextFieldState(), click(2, 1), AREAS)
    assert event.kind is WidgetEventKind.ACTIVATE
    event, state = text_field.on_input(TextFieldState(active=True, value="A", cursor=1), click(2, 1), AREAS)
    assert event.kind is WidgetEventKind.DEACTIVATE
    assert not state.active
    event, _ = text_field.on_input(TextFieldState().activate(), click(50, 20), AREAS)
    assert event.kind is WidgetEventKind.DEACTIVATE
    event, _ = text_field.on_input(TextFieldState(), click(50, 20), AREAS)
    assert event is None


def test_text_field_external_deactivate(text_field):
    event, state = text_field.on_overlay_state(TextFieldState(True, "AB", 2), OverlayState.INACTIVE)
    assert event.kind is WidgetEventKind.DEACTIVATE
    assert state == TextFieldState()
    assert text_field.on_overlay_state(state, OverlayState.INACTIVE) == (None, state)


@pytest.fixture()
def menu_machine():
    return SelectMenuMachine(
        UiTarget.TIME_FRAME_MENU,
        "t",
        {UiTarget.TIME_FRAME_BOX: MouseAction.TOGGLE, None: MouseAction.DEACTIVATE},
    )


@pytest.fixture()
def open_menu():
    return SelectMenuState.of(list(TimeFrame), TimeFrame.ONE_MONTH).activate()


def test_menu_navigation_and_accept(menu_machine, open_menu):
    events, state = type_keys(menu_machine, open_menu, [KeyEvent(KeyCode.DOWN), KeyEvent(KeyCode.DOWN)])
    assert events[-1] == SelectMenuEvent(WidgetEventKind.INPUT, TimeFrame.SIX_MONTHS)
    event, state = menu_machine.on_input(state, KeyEvent(KeyCode.ENTER), AREAS)
    assert event == SelectMenuEvent(WidgetEventKind.ACCEPT, TimeFrame.SIX_MONTHS)
    assert not state.active


def test_menu_stops_at_the_top(menu_machine, open_menu):
    events, state = type_keys(menu_machine, open_menu, [KeyEvent(KeyCode.UP), KeyEvent(KeyCode.UP)])
    assert events == [SelectMenuEvent(WidgetEventKind.INPUT, TimeFrame.FIVE_DAYS), None]


def test_menu_escape_reverts(menu_machine, open_menu):
    _, state = type_keys(menu_machine, open_menu, [KeyEvent(KeyCode.DOWN)])
    event, state = menu_machine.on_input(state, KeyEvent(KeyCode.ESC), AREAS)
    assert event.kind is WidgetEventKind.CANCEL
    assert state.selection is TimeFrame.ONE_MONTH


def test_menu_hotkey_toggles(menu_machine, open_menu):
    closed = open_menu.cancel()
    event, _ = menu_machine.on_input(closed, KeyEvent.of_char("t"), AREAS)
    assert event.kind is WidgetEventKind.ACTIVATE
    event, state = menu_machine.on_input(open_menu, KeyEvent.of_char("t"), AREAS)
    assert event.kind is WidgetEventKind.DEACTIVATE
    assert not state.active


def test_menu_row_pick(menu_machine, open_menu):
    # rows start one line below the menu's top border at y=3
    event, state = menu_machine.on_input(open_menu, click(2, 8), AREAS)
    assert event == SelectMenuEvent(WidgetEventKind.ACCEPT, TimeFrame.YEAR_TO_DATE)
    assert not state.active
    event, _ = menu_machine.on_input(open_menu, click(2, 3), AREAS)
    assert event is None


def test_menu_mouse_actions(menu_machine, open_menu):
    event, _ = menu_machine.on_input(open_menu.cancel(), click(78, 1), AREAS)
    assert event.kind is WidgetEventKind.ACTIVATE
    event, _ = menu_machine.on_input(open_menu, click(78, 1), AREAS)
    assert event.kind is WidgetEventKind.DEACTIVATE
    event, _ = menu_machine.on_input(open_menu, click(50, 20), AREAS)
    assert event.kind is WidgetEventKind.DEACTIVATE


def test_menu_scroll(menu_machine, open_menu):
    event, _ = menu_machine.on_input(open_menu, MouseEvent(MouseKind.SCROLL_DOWN, 2, 5), AREAS)
    assert event == SelectMenuEvent(WidgetEventKind.INPUT, TimeFrame.THREE_MONTHS)
    event, _ = menu_machine.on_input(open_menu.cancel(), MouseEvent(MouseKind.SCROLL_DOWN, 2, 5), AREAS)
    assert event is None


def test_chart_events(collected):
    main_view = Broadcast()
    events = collected(to_chart_events(main_view))
    main_view.feed([
        KeyEvent(KeyCode.LEFT),
        KeyEvent.of_char("l"),
        KeyEvent.of_char("0"),
        KeyEvent.of_char("x"),
        KeyEvent(KeyCode.HOME),
        KeyEvent.of_char("h"),
        click(1, 1),
    ])
    assert events == [ChartEvent.PAN_BACKWARD, ChartEvent.PAN_FORWARD, ChartEvent.RESET, ChartEvent.RESET, ChartEvent.PAN_BACKWARD]
