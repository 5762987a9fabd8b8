"""Input events and the state machines that consume them.

Overlay arbitration works in two phases. Widgets never activate themselves:
a hotkey or a click only produces an ACTIVATE request, which is queued by the
`OverlayArbiter` and applied at the start of the next step, after the frame
that used the previous target areas has been drawn. Applying a request sends
per-target overlay states, deactivating the previous overlay before
activating the new one, so at most one overlay is ever active.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, FrozenSet, Hashable, Iterable, Mapping, Optional, Tuple, Union

from .reactive import Broadcast, Stream
from .widgets import SelectMenuState, TextFieldState

logger = logging.getLogger(__name__)


class KeyCode(str, Enum):
    CHAR = "char"
    ENTER = "enter"
    ESC = "esc"
    BACKSPACE = "backspace"
    DELETE = "delete"
    TAB = "tab"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    HOME = "home"
    END = "end"


class Modifier(str, Enum):
    SHIFT = "shift"
    CTRL = "ctrl"
    ALT = "alt"


@dataclass(frozen=True)
class KeyEvent:
    code: KeyCode
    char: Optional[str] = None
    modifiers: FrozenSet[Modifier] = frozenset()

    @classmethod
    def of_char(cls, char: str, *modifiers: Modifier) -> "KeyEvent":
        return cls(KeyCode.CHAR, char, frozenset(modifiers))

    @property
    def is_plain_char(self) -> bool:
        return self.code is KeyCode.CHAR and not (self.modifiers & {Modifier.CTRL, Modifier.ALT})


class MouseKind(str, Enum):
    DOWN = "down"
    UP = "up"
    DRAG = "drag"
    MOVED = "moved"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"


class MouseButton(str, Enum):
    LEFT = "left"
    MIDDLE = "middle"
    RIGHT = "right"


@dataclass(frozen=True)
class MouseEvent:
    """Mouse report; column and row are zero-based cell coordinates"""
    kind: MouseKind
    column: int
    row: int
    button: Optional[MouseButton] = None
    modifiers: FrozenSet[Modifier] = frozenset()


@dataclass(frozen=True)
class TickEvent:
    pass


TICK = TickEvent()

InputEvent = Union[KeyEvent, MouseEvent, TickEvent]


class ChartEvent(str, Enum):
    PAN_BACKWARD = "pan_backward"
    PAN_FORWARD = "pan_forward"
    RESET = "reset"


class OverlayState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class MouseAction(str, Enum):
    """What a click on a given target does to an overlay"""
    TOGGLE = "toggle"
    DEACTIVATE = "deactivate"


class WidgetEventKind(str, Enum):
    ACTIVATE = "activate"      # request, applied on the next step
    OPEN = "open"              # the arbiter made the widget active
    INPUT = "input"            # text edited or menu cursor moved
    ACCEPT = "accept"
    CANCEL = "cancel"
    DEACTIVATE = "deactivate"

    @property
    def requested_overlay_state(self) -> Optional[OverlayState]:
        if self is WidgetEventKind.ACTIVATE:
            return OverlayState.ACTIVE
        if self in (WidgetEventKind.ACCEPT, WidgetEventKind.CANCEL, WidgetEventKind.DEACTIVATE):
            return OverlayState.INACTIVE
        return None


@dataclass(frozen=True)
class TextFieldEvent:
    kind: WidgetEventKind
    value: Optional[str] = None


@dataclass(frozen=True)
class SelectMenuEvent:
    kind: WidgetEventKind
    value: object = None


class HotkeyMap:
    """Bidirectional mapping between hotkey characters and overlay targets"""

    def __init__(self, pairs: Iterable[Tuple[str, Hashable]] = ()):
        self._targets: Dict[str, Hashable] = {}
        self._keys: Dict[Hashable, str] = {}
        for key, target in pairs:
            self.insert(key, target)

    def insert(self, key: str, target: Hashable):
        if key in self._targets or target in self._keys:
            raise ValueError(f"hotkey {key!r} or target {target!r} is already bound")
        self._targets[key] = target
        self._keys[target] = key

    def target_for(self, ev: KeyEvent) -> Optional[Hashable]:
        if not ev.is_plain_char:
            return None
        return self._targets.get(ev.char)

    def __len__(self) -> int:
        return len(self._targets)


def to_active_overlays(overlay_states: Stream) -> Stream:
    """The single active overlay target, or None"""
    def step(active, pair):
        target, state = pair
        if state is OverlayState.ACTIVE:
            return target
        return None if active == target else active
    return overlay_states.fold(None, step).distinct_until_changed()


class OverlayArbiter:
    """Owns overlay states and the queue of transitions waiting for the next step"""

    def __init__(self):
        self.overlay_states: Broadcast = Broadcast()
        self.active_overlays: Broadcast = to_active_overlays(self.overlay_states).broadcast()
        self.active: Optional[Hashable] = None
        self.active_overlays.subscribe(self._track)
        self._pending: Deque[Tuple[Hashable, OverlayState]] = deque()

    def _track(self, active):
        self.active = active

    def start(self, targets: Iterable[Hashable]):
        """Open one overlay state group per target, all inactive"""
        self.overlay_states.feed((target, OverlayState.INACTIVE) for target in targets)
        self.active_overlays.send(None)

    def request(self, target: Hashable, state: OverlayState):
        logger.debug("queueing overlay state for next step: %s", (target, state))
        self._pending.append((target, state))

    def queue_for_next_step(self, overlay_events: Stream):
        """Queue the overlay state each widget event asks for"""
        def on_event(pair):
            target, ev = pair
            state = ev.kind.requested_overlay_state
            if state is not None:
                self.request(target, state)
        return overlay_events.subscribe(on_event)

    @property
    def pending(self) -> Tuple[Tuple[Hashable, OverlayState], ...]:
        return tuple(self._pending)

    def flush(self):
        """Apply transitions queued during the previous step. New requests wait for the next flush."""
        pending = list(self._pending)
        self._pending.clear()
        for target, state in pending:
            logger.debug("sending previously queued overlay state: %s", (target, state))
            self.apply(target, state)

    def apply(self, target: Hashable, state: OverlayState):
        if state is OverlayState.ACTIVE:
            if self.active == target:
                return
            if self.active is not None:
                self.overlay_states.send((self.active, OverlayState.INACTIVE))
            self.overlay_states.send((target, OverlayState.ACTIVE))
        elif self.active == target:
            self.overlay_states.send((target, OverlayState.INACTIVE))


@dataclass(frozen=True)
class InputRouter:
    """Decides which overlay, if any, an input event belongs to.

    `associated_overlays` maps a clickable target to the overlay it controls;
    `capturing_overlays` are overlays that take every key while active.
    """
    hotkeys: HotkeyMap
    associated_overlays: Mapping[Hashable, Hashable]
    capturing_overlays: FrozenSet[Hashable] = field(default_factory=frozenset)

    def route(self, ev: InputEvent, target_areas, active: Optional[Hashable]) -> Optional[Hashable]:
        if isinstance(ev, KeyEvent):
            if active is not None and active in self.capturing_overlays:
                return active
            hotkey_target = self.hotkeys.target_for(ev)
            if hotkey_target is not None:
                return hotkey_target
            return active
        if isinstance(ev, MouseEvent) and ev.kind is MouseKind.DOWN:
            hit = target_areas.hit_test(ev.column, ev.row)
            overlay = self.associated_overlays.get(hit)
            if overlay is not None:
                return overlay
        return active


def to_grouped_user_input_events(user_input_events: Stream, target_areas: Stream, active_overlays: Stream, router: InputRouter) -> Stream:
    """Group user input by the overlay it is routed to; None groups the main view"""
    return (
        user_input_events
        .with_latest_from(target_areas, lambda ev, areas: (ev, areas))
        .with_latest_from(active_overlays, lambda pair, active: (pair[0], pair[1], active))
        .group_by(lambda routed: router.route(*routed), lambda routed: routed[0])
    )


class TextFieldMachine:
    """Single-line text entry that lives in an overlay"""

    def __init__(self, target: Hashable, hotkey: Optional[str], mouse_actions: Mapping[Optional[Hashable], MouseAction], transform: Callable[[str], str] = lambda text: text):
        self.target = target
        self.hotkey = hotkey
        self.mouse_actions = mouse_actions
        self.transform = transform

    def on_input(self, state: TextFieldState, ev: InputEvent, target_areas) -> Tuple[Optional[TextFieldEvent], TextFieldState]:
        if isinstance(ev, KeyEvent):
            return self._on_key(state, ev)
        if isinstance(ev, MouseEvent) and ev.kind is MouseKind.DOWN:
            hit = target_areas.hit_test(ev.column, ev.row)
            if hit == self.target:
                return None, state
            return self._on_mouse_action(state, self.mouse_actions.get(hit))
        return None, state

    def _on_key(self, state, ev):
        if not state.active:
            if ev.is_plain_char and ev.char == self.hotkey:
                return TextFieldEvent(WidgetEventKind.ACTIVATE), state
            return None, state
        if ev.code is KeyCode.ENTER:
            return TextFieldEvent(WidgetEventKind.ACCEPT, state.value), state.deactivate()
        if ev.code is KeyCode.ESC:
            return TextFieldEvent(WidgetEventKind.CANCEL), state.deactivate()
        if ev.code is KeyCode.BACKSPACE:
            state = state.pop()
            return TextFieldEvent(WidgetEventKind.INPUT, state.value), state
        if ev.is_plain_char and ev.char.isprintable():
            state = state.push(self.transform(ev.char))
            return TextFieldEvent(WidgetEventKind.INPUT, state.value), state
        return None, state

    def _on_mouse_action(self, state, action):
        if action is MouseAction.TOGGLE:
            if state.active:
                return TextFieldEvent(WidgetEventKind.DEACTIVATE), state.deactivate()
            return TextFieldEvent(WidgetEventKind.ACTIVATE), state
        if action is MouseAction.DEACTIVATE and state.active:
            return TextFieldEvent(WidgetEventKind.DEACTIVATE), state.deactivate()
        return None, state

    def on_overlay_state(self, state: TextFieldState, overlay_state: OverlayState) -> Tuple[Optional[TextFieldEvent], TextFieldState]:
        if overlay_state is OverlayState.ACTIVE and not state.active:
            return TextFieldEvent(WidgetEventKind.OPEN), state.activate()
        if overlay_state is OverlayState.INACTIVE and state.active:
            return TextFieldEvent(WidgetEventKind.DEACTIVATE), state.deactivate()
        return None, state


class SelectMenuMachine:
    """List of candidates shown in an overlay; the cursor is committed with Enter or a click"""

    def __init__(self, target: Hashable, hotkey: Optional[str], mouse_actions: Mapping[Optional[Hashable], MouseAction]):
        self.target = target
        self.hotkey = hotkey
        self.mouse_actions = mouse_actions

    def on_input(self, state: SelectMenuState, ev: InputEvent, target_areas) -> Tuple[Optional[SelectMenuEvent], SelectMenuState]:
        if isinstance(ev, KeyEvent):
            return self._on_key(state, ev)
        if not isinstance(ev, MouseEvent):
            return None, state
        if ev.kind is MouseKind.DOWN:
            hit = target_areas.hit_test(ev.column, ev.row)
            if hit == self.target:
                return self._on_row_pick(state, ev, target_areas.get(self.target))
            return self._on_mouse_action(state, self.mouse_actions.get(hit))
        if state.active and ev.kind is MouseKind.SCROLL_UP:
            return self._moved(state, state.select_prev())
        if state.active and ev.kind is MouseKind.SCROLL_DOWN:
            return self._moved(state, state.select_next())
        return None, state

    def _on_key(self, state, ev):
        is_hotkey = ev.is_plain_char and ev.char == self.hotkey
        if not state.active:
            if is_hotkey:
                return SelectMenuEvent(WidgetEventKind.ACTIVATE), state
            return None, state
        if is_hotkey:
            return SelectMenuEvent(WidgetEventKind.DEACTIVATE), state.cancel()
        if ev.code is KeyCode.UP:
            return self._moved(state, state.select_prev())
        if ev.code is KeyCode.DOWN:
            return self._moved(state, state.select_next())
        if ev.code is KeyCode.ENTER:
            state = state.accept()
            return SelectMenuEvent(WidgetEventKind.ACCEPT, state.selection), state
        if ev.code is KeyCode.ESC:
            return SelectMenuEvent(WidgetEventKind.CANCEL), state.cancel()
        return None, state

    def _moved(self, state, moved):
        if moved == state:
            return None, state
        return SelectMenuEvent(WidgetEventKind.INPUT, moved.selection), moved

    def _on_row_pick(self, state, ev, rect):
        if not state.active or rect is None:
            return None, state
        # first row sits below the top border
        row = ev.row - rect.y - 1
        if not 0 <= row < len(state.rows):
            return None, state
        state = state.select_row(row).accept()
        return SelectMenuEvent(WidgetEventKind.ACCEPT, state.selection), state

    def _on_mouse_action(self, state, action):
        if action is MouseAction.TOGGLE:
            if state.active:
                return SelectMenuEvent(WidgetEventKind.DEACTIVATE), state.cancel()
            return SelectMenuEvent(WidgetEventKind.ACTIVATE), state
        if action is MouseAction.DEACTIVATE and state.active:
            return SelectMenuEvent(WidgetEventKind.DEACTIVATE), state.cancel()
        return None, state

    def on_overlay_state(self, state: SelectMenuState, overlay_state: OverlayState) -> Tuple[Optional[SelectMenuEvent], SelectMenuState]:
        if overlay_state is OverlayState.ACTIVE and not state.active:
            return SelectMenuEvent(WidgetEventKind.OPEN), state.activate()
        if overlay_state is OverlayState.INACTIVE and state.active:
            return SelectMenuEvent(WidgetEventKind.DEACTIVATE), state.cancel()
        return None, state


def to_widget_events(machine, init_state, input_events: Stream, target_areas: Stream, overlay_states: Stream) -> Stream:
    """Run a widget machine over its routed input and its overlay states.

    Emits (event, state) pairs; steps that change nothing are dropped.
    """
    inputs = (
        input_events
        .with_latest_from(target_areas, lambda ev, areas: (machine.on_input, ev, areas))
        .merge(overlay_states.map(lambda overlay_state: (machine.on_overlay_state, overlay_state)))
    )

    def step(acc, item):
        _, state = acc
        handler, *args = item
        return handler(state, *args)

    return inputs.fold((None, init_state), step).filter(lambda pair: pair[0] is not None)


def to_widget_states(widget_events: Stream) -> Stream:
    return widget_events.map(lambda pair: pair[1]).distinct_until_changed()


def to_chart_events(main_view_events: Stream) -> Stream:
    """Pan and reset commands from keys pressed outside any overlay"""
    def to_chart_event(ev) -> Optional[ChartEvent]:
        if not isinstance(ev, KeyEvent):
            return None
        if ev.code is KeyCode.LEFT or (ev.is_plain_char and ev.char == "h"):
            return ChartEvent.PAN_BACKWARD
        if ev.code is KeyCode.RIGHT or (ev.is_plain_char and ev.char == "l"):
            return ChartEvent.PAN_FORWARD
        if ev.code is KeyCode.HOME or (ev.is_plain_char and ev.char == "0"):
            return ChartEvent.RESET
        return None
    return main_view_events.map(to_chart_event).filter(lambda ev: ev is not None)
