import pytest

from stocker.domain import BollingerBands, Indicator, TimeFrame
from stocker.widgets import Rect, SelectMenuError, SelectMenuState, TextFieldState


def test_rect_contains_is_half_open():
    rect = Rect(2, 3, 4, 2)
    assert rect.contains(2, 3)
    assert rect.contains(5, 4)
    assert not rect.contains(6, 4)
    assert not rect.contains(2, 5)


def test_text_field_editing():
    state = TextFieldState().activate().push("A").push("B")
    assert state.value == "AB"
    assert state.cursor == 2
    state = state.pop()
    assert state.value == "A"
    assert state.pop().pop().value == ""


def test_text_field_activation_starts_empty():
    state = TextFieldState(active=False, value="stale", cursor=5)
    assert state.activate() == TextFieldState(active=True)
    assert TextFieldState(active=True, value="X", cursor=1).deactivate() == TextFieldState()


def time_frame_menu():
    return SelectMenuState.of(list(TimeFrame), TimeFrame.ONE_MONTH)


def test_select_menu_moves_without_wrapping():
    menu = time_frame_menu().activate()
    assert menu.select_prev().selection is TimeFrame.FIVE_DAYS
    assert menu.select_prev().select_prev().selection is TimeFrame.FIVE_DAYS

    last = menu
    for _ in range(20):
        last = last.select_next()
    assert last.selection is TimeFrame.MAX


def test_select_menu_accept_commits():
    menu = time_frame_menu().activate().select_next().accept()
    assert menu.selection is TimeFrame.THREE_MONTHS
    assert not menu.active
    reopened = menu.activate().select_next().cancel()
    assert reopened.selection is TimeFrame.THREE_MONTHS


def test_select_menu_cancel_reverts_navigation():
    menu = time_frame_menu().activate().select_next().select_next()
    assert menu.selection is TimeFrame.SIX_MONTHS
    cancelled = menu.cancel()
    assert cancelled.selection is TimeFrame.ONE_MONTH
    assert not cancelled.active


def test_select_row():
    menu = time_frame_menu().select_row(4)
    assert menu.selection is TimeFrame.YEAR_TO_DATE
    assert menu.select_row(99) == menu


def test_empty_selection_row():
    menu = SelectMenuState.of(Indicator.variants(), None, allow_empty_selection=True)
    assert menu.rows[0] is None
    assert len(menu.rows) == 4
    assert menu.cursor_row == 0
    assert menu.select_next().selection == BollingerBands()
    assert menu.select_next().select_prev().selection is None
    assert menu.activate().accept().selection is None


def test_select_menu_invariant_violations():
    with pytest.raises(SelectMenuError):
        time_frame_menu().select(None)
    with pytest.raises(SelectMenuError):
        time_frame_menu().select("2W")
    with pytest.raises(SelectMenuError):
        SelectMenuState.of([]).activate().accept()
