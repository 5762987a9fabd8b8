from dataclasses import dataclass, field, replace
from typing import Generic, Iterable, Optional, Tuple, TypeVar

T = TypeVar("T")


class SelectMenuError(RuntimeError):
    """Programming error in the use of a select menu"""


@dataclass(frozen=True)
class Rect:
    """Screen rectangle in terminal cells, origin at the top-left corner"""
    x: int
    y: int
    width: int
    height: int

    def contains(self, column: int, row: int) -> bool:
        return self.x <= column < self.x + self.width and self.y <= row < self.y + self.height

    def __str__(self) -> str:
        return f"{self.width}x{self.height}+{self.x}+{self.y}"


@dataclass(frozen=True)
class TextFieldState:
    active: bool = False
    value: str = ""
    cursor: int = 0

    def activate(self) -> "TextFieldState":
        return TextFieldState(active=True)

    def deactivate(self) -> "TextFieldState":
        return TextFieldState()

    def push(self, text: str) -> "TextFieldState":
        value = self.value[:self.cursor] + text + self.value[self.cursor:]
        return replace(self, value=value, cursor=self.cursor + len(text))

    def pop(self) -> "TextFieldState":
        if self.cursor == 0:
            return self
        value = self.value[:self.cursor - 1] + self.value[self.cursor:]
        return replace(self, value=value, cursor=self.cursor - 1)


@dataclass(frozen=True)
class SelectMenuState(Generic[T]):
    """Candidates, a cursor over them and the selection committed when the menu opened.

    With `allow_empty_selection` the menu shows a leading "none" row and
    `selected` may be None.
    """
    items: Tuple[T, ...]
    selected: Optional[int] = None
    allow_empty_selection: bool = False
    active: bool = False
    committed: Optional[int] = field(default=None, compare=False)

    @classmethod
    def of(cls, items: Iterable[T], selection: Optional[T] = None, allow_empty_selection: bool = False) -> "SelectMenuState[T]":
        state = cls(tuple(items), allow_empty_selection=allow_empty_selection)
        return state.select(selection)

    @property
    def selection(self) -> Optional[T]:
        if self.selected is None:
            return None
        return self.items[self.selected]

    @property
    def rows(self) -> Tuple[Optional[T], ...]:
        """Displayed rows, top to bottom"""
        if self.allow_empty_selection:
            return (None,) + self.items
        return self.items

    @property
    def cursor_row(self) -> Optional[int]:
        if self.selected is None:
            return 0 if self.allow_empty_selection else None
        return self.selected + 1 if self.allow_empty_selection else self.selected

    def index_of(self, value: T) -> int:
        try:
            return self.items.index(value)
        except ValueError:
            raise SelectMenuError(f"{value!r} is not one of the menu items") from None

    def select(self, value: Optional[T]) -> "SelectMenuState[T]":
        if value is None:
            if not self.allow_empty_selection and self.items:
                raise SelectMenuError("menu does not allow an empty selection")
            return replace(self, selected=None, committed=None)
        index = self.index_of(value)
        return replace(self, selected=index, committed=index)

    def select_row(self, row: int) -> "SelectMenuState[T]":
        """Move the cursor to a displayed row; out-of-range rows are ignored"""
        if not 0 <= row < len(self.rows):
            return self
        if self.allow_empty_selection:
            return replace(self, selected=None if row == 0 else row - 1)
        return replace(self, selected=row)

    def select_prev(self) -> "SelectMenuState[T]":
        row = self.cursor_row
        if row is None:
            return self
        return self.select_row(max(row - 1, 0))

    def select_next(self) -> "SelectMenuState[T]":
        row = self.cursor_row
        if row is None:
            return self.select_row(0)
        return self.select_row(min(row + 1, len(self.rows) - 1))

    def activate(self) -> "SelectMenuState[T]":
        return replace(self, active=True, committed=self.selected)

    def accept(self) -> "SelectMenuState[T]":
        """Commit the cursor position and close the menu"""
        if not self.items:
            raise SelectMenuError("cannot commit a selection in a menu without items")
        if self.selected is None and not self.allow_empty_selection:
            raise SelectMenuError("cannot commit an empty selection")
        return replace(self, active=False, committed=self.selected)

    def cancel(self) -> "SelectMenuState[T]":
        """Close the menu, reverting the cursor to the selection it was opened with"""
        return replace(self, active=False, selected=self.committed)
