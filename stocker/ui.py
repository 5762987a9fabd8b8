from typing import Optional, Sequence, Tuple

import numpy as np
from rich import box
from rich.console import Console, ConsoleOptions, RenderResult
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .app import TargetAreas, UiState, UiTarget
from .stock import Stock
from .widgets import Rect, SelectMenuState

ACCENT = "orange3"
MENU_WIDTH = {
    UiTarget.TIME_FRAME_MENU: 9,
    UiTarget.INDICATOR_MENU: 16,
}
PRICE_LABEL_WIDTH = 9


def draw_line_chart(closes: Sequence[float], labels: Sequence[str], width: int, height: int) -> str:
    """Plot closing prices as an ASCII line chart with price ticks on the left and date ticks below"""
    width = max(width, PRICE_LABEL_WIDTH + 4)
    height = max(height, 6)
    prices = np.asarray(closes, dtype=float)
    grid = [[' ' for _ in range(width)] for _ in range(height)]

    left = PRICE_LABEL_WIDTH - 1
    top, bottom = 0, height - 3
    for y in range(top, bottom + 1):
        grid[y][left] = '│'
        grid[y][width - 1] = '│'
    for x in range(left, width):
        grid[top][x] = '─'
        grid[bottom][x] = '─'
    grid[top][left], grid[top][width - 1] = '┌', '┐'
    grid[bottom][left], grid[bottom][width - 1] = '└', '┘'

    if len(prices) == 0 or np.all(np.isnan(prices)):
        return '\n'.join(''.join(row) for row in grid)

    low = float(np.nanmin(prices))
    high = float(np.nanmax(prices))
    span = high - low
    if not span or np.isnan(span):
        mid = float(np.nanmean(prices)) or 100.0
        low, high = mid * 0.99, mid * 1.01
        span = high - low

    plot_height = bottom - top - 1
    plot_width = width - left - 2
    levels = np.round((prices - low) / span * (plot_height - 1)).clip(0, plot_height - 1)
    levels = np.nan_to_num(levels, nan=plot_height // 2).astype(np.int32)

    # price ticks
    ticks = min(5, plot_height)
    for i in range(ticks):
        fraction = i / max(ticks - 1, 1)
        y = bottom - 1 - int(round(fraction * (plot_height - 1)))
        label = f"{low + span * fraction:,.2f}"[:PRICE_LABEL_WIDTH - 2]
        grid[y][left] = '┤'
        for j, char in enumerate(label.rjust(PRICE_LABEL_WIDTH - 2)):
            grid[y][j] = char

    def cell(index: int) -> Tuple[int, int]:
        x_scale = (plot_width - 1) / max(len(levels) - 1, 1)
        return left + 1 + int(index * x_scale), bottom - 1 - int(levels[index])

    for i in range(len(levels) - 1):
        (x1, y1), (x2, y2) = cell(i), cell(i + 1)
        if x2 > x1:
            for x in range(x1, x2):
                y = int(round(y1 + (y2 - y1) * (x - x1) / (x2 - x1)))
                grid[y][x] = '─' if y1 == y2 else ('/' if y2 < y1 else '\\')
        for y in range(min(y1, y2) + 1, max(y1, y2)):
            grid[y][x2] = '│'
    for i in range(len(levels)):
        x, y = cell(i)
        if len(levels) <= plot_width // 2:
            grid[y][x] = '●'

    # date ticks below the chart
    if labels:
        count = min(5, len(labels), max(plot_width // 12, 1))
        for index in np.linspace(0, len(labels) - 1, count).astype(int):
            x, _ = cell(int(index))
            grid[bottom][x] = '┬'
            label = labels[index]
            start = min(max(x - len(label) // 2, left), width - len(label))
            for j, char in enumerate(label):
                grid[bottom + 1][start + j] = char

    return '\n'.join(''.join(row) for row in grid)


class PriceChart:
    """Renderable line chart sized to whatever space the layout gives it"""

    def __init__(self, stock: Stock):
        self.stock = stock

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        width = options.max_width
        height = options.height or options.size.height
        bars = self.stock.bars
        if not bars:
            yield Text("No data", style=f"bold {ACCENT}")
            return
        date_format = "%m-%d %H:%M" if len(bars) > 1 and (bars[-1].timestamp - bars[0].timestamp).days < 7 else "%Y-%m-%d"
        labels = [bar.timestamp.strftime(date_format) for bar in bars]
        yield Text(draw_line_chart(self.stock.bar_set.closes, labels, width, height), style=ACCENT)


class StockRenderer:
    """Builds the dashboard layout for a snapshot and reports where each target landed"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def render(self, stock: Stock, ui_state: UiState) -> Tuple[Layout, TargetAreas]:
        layout = self.generate_layout(stock, ui_state)
        return layout, self.target_areas(layout)

    def target_areas(self, layout: Layout) -> TargetAreas:
        width, height = self.console.size
        render_map = layout.render(self.console, self.console.options.update_dimensions(width, height))
        names = {target.value: target for target in UiTarget}
        pairs = []
        for region_layout, layout_render in render_map.items():
            target = names.get(region_layout.name)
            if target is None or not region_layout.visible:
                continue
            region = layout_render.region
            pairs.append((target, Rect(region.x, region.y, region.width, region.height)))
        return TargetAreas.of(pairs)

    def generate_layout(self, stock: Stock, ui_state: UiState) -> Layout:
        base_layout = Layout(name="root")
        rows = [Layout(name="header", size=3)]
        if ui_state.symbol_field.active:
            rows.append(Layout(name=UiTarget.STOCK_SYMBOL_FIELD.value, size=3))
        footer_size = 3 + (len(ui_state.target_areas) if ui_state.debug_draw else 0)
        rows += [Layout(name="body", ratio=1), Layout(name="footer", size=footer_size)]
        base_layout.split_column(*rows)

        symbol_width = max(len(stock.symbol), 6) + 4
        base_layout["header"].split_row(
            Layout(name=UiTarget.STOCK_SYMBOL_BUTTON.value, size=symbol_width),
            Layout(name=UiTarget.STOCK_NAME_BUTTON.value, ratio=1),
            Layout(name=UiTarget.TIME_FRAME_BOX.value, size=MENU_WIDTH[UiTarget.TIME_FRAME_MENU]),
            Layout(name=UiTarget.INDICATOR_BOX.value, size=MENU_WIDTH[UiTarget.INDICATOR_MENU]),
        )
        base_layout[UiTarget.STOCK_SYMBOL_BUTTON.value].update(
            Panel(Text(stock.symbol, style="bold"), border_style=ACCENT, box=box.ROUNDED))
        base_layout[UiTarget.STOCK_NAME_BUTTON.value].update(
            Panel(Text(stock.name or "", overflow="ellipsis", no_wrap=True), border_style=ACCENT, box=box.ROUNDED))
        base_layout[UiTarget.TIME_FRAME_BOX.value].update(
            self.box_panel(str(ui_state.time_frame), ui_state.time_frame_menu.active))
        base_layout[UiTarget.INDICATOR_BOX.value].update(
            self.box_panel(str(ui_state.indicator) if ui_state.indicator else "Indicator", ui_state.indicator_menu.active))

        if ui_state.symbol_field.active:
            field = ui_state.symbol_field
            value = Text(field.value[:field.cursor], style="bold")
            value.append("▏", style="blink")
            value.append(field.value[field.cursor:], style="bold")
            base_layout[UiTarget.STOCK_SYMBOL_FIELD.value].update(
                Panel(value, title="Symbol", title_align="left", border_style="bold yellow"))

        body = []
        for target, menu in ((UiTarget.TIME_FRAME_MENU, ui_state.time_frame_menu),
                             (UiTarget.INDICATOR_MENU, ui_state.indicator_menu)):
            if menu.active:
                column = Layout(name=f"{target.value}_column", size=MENU_WIDTH[target])
                column.split_column(
                    Layout(self.menu_panel(menu), name=target.value, size=len(menu.rows) + 2),
                    Layout(Text(""), name=f"{target.value}_spacer", ratio=1),
                )
                body.append(column)
        body.append(Layout(name="chart", ratio=1))
        base_layout["body"].split_row(*body)
        base_layout["chart"].update(Panel(PriceChart(stock), title=self.chart_title(stock, ui_state), border_style=ACCENT))

        base_layout["footer"].update(Panel(self.status_text(ui_state), border_style=ACCENT))
        return base_layout

    def box_panel(self, label: str, active: bool) -> Panel:
        style = "bold yellow" if active else ACCENT
        return Panel(Text(label, overflow="ellipsis", no_wrap=True), border_style=style, box=box.ROUNDED)

    def menu_panel(self, menu: SelectMenuState) -> Panel:
        table = Table.grid(padding=0)
        table.add_column(no_wrap=True)
        for row, value in enumerate(menu.rows):
            label = "None" if value is None else str(value)
            style = "reverse bold" if row == menu.cursor_row else ""
            table.add_row(Text(label, style=style))
        return Panel(table, border_style="bold yellow", padding=0)

    def chart_title(self, stock: Stock, ui_state: UiState) -> str:
        title = f"{stock.symbol} {ui_state.time_frame}"
        if ui_state.date_range is not None:
            title += f" | {ui_state.date_range}"
        if ui_state.indicator is not None:
            title += f" | {ui_state.indicator}"
        change_pct = stock.bar_set.change_pct if stock.bar_set else None
        if change_pct is not None:
            title += f" | {change_pct:+.2f}%"
        return title

    def status_text(self, ui_state: UiState) -> Text:
        status = Text(style=ACCENT)
        status.append("Commands: (S)ymbol (T)ime frame (I)ndicator  ←/→ Pan  0 Reset  (Q)uit")
        if ui_state.frame_rate is not None:
            status.append(f" | {ui_state.frame_rate.total_seconds() * 1000:.0f} ms/frame")
        if ui_state.debug_draw:
            for target, rect in ui_state.target_areas:
                status.append(f"\n{target.value}={rect}", style="dim")
        return status
