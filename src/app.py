from __future__ import annotations

import logging
import os
import sys

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, HorizontalScroll
from textual.geometry import Region
from textual.logging import TextualHandler
from textual.message import Message
from textual.strip import Strip
from textual.widget import Widget
from textual.widgets import Button, Footer, Header, Input, Static

from backend import (
    DEFAULT_SOURCE,
    MA_PERIOD,
    LoadError,
    MovingAveragePoint,
    ParseError,
    QuoteRecord,
    QuoteSeries,
    compute_moving_average,
    load_series,
)
from canvas import DOTS_X, DOTS_Y, BrailleSurface
from chart import InteractionController, ViewportState, ZoomState, format_ohlc

logger = logging.getLogger(__name__)


def cell_to_pixel(col: int, row: int) -> tuple[int, int]:
    """Centre dot of a terminal cell."""
    return col * DOTS_X + DOTS_X // 2, row * DOTS_Y + DOTS_Y // 2


class ChartView(Widget):
    """Mountain chart drawn on a base surface with a crosshair overlay on top."""

    DEFAULT_CSS = """
    ChartView {
        height: 100%;
        width: 100%;
    }
    """

    can_focus = True

    class Hovered(Message):
        """Posted when the pointer moves over the chart."""

        def __init__(self, record: QuoteRecord | None) -> None:
            super().__init__()
            self.record = record

    class Zoomed(Message):
        """Posted after the zoom level changed."""

        def __init__(self, zoom: float) -> None:
            super().__init__()
            self.zoom = zoom

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.base = BrailleSurface()
        self.overlay = BrailleSurface()
        self.controller: InteractionController | None = None
        self._strips: list[Strip] = []
        self._overlay_rows: set[int] = set()

    def show(
        self,
        series: QuoteSeries,
        average: list[MovingAveragePoint],
        cols: int,
        rows: int,
    ) -> None:
        """Replace the plotted data. The zoom level carries over between loads."""
        zoom = self.controller.zoom if self.controller is not None else ZoomState()
        viewport = ViewportState(pixel_width=cols * DOTS_X, pixel_height=rows * DOTS_Y)
        self.controller = InteractionController(
            series, average, self.base, self.overlay, viewport, zoom=zoom
        )
        self.controller.redraw()
        self._sync_width()

    def fit(self, cols: int, rows: int) -> None:
        if self.controller is None:
            return
        self.controller.resize(cols * DOTS_X, rows * DOTS_Y)
        self._sync_width()

    def zoom(self, delta_y: float) -> bool:
        if self.controller is None or not self.controller.wheel(delta_y):
            return False
        self._after_zoom()
        return True

    def reset_zoom(self) -> bool:
        if self.controller is None or not self.controller.reset_zoom():
            return False
        self._after_zoom()
        return True

    def _after_zoom(self) -> None:
        self._sync_width()
        self.post_message(self.Zoomed(self.controller.zoom.value))

    def _sync_width(self) -> None:
        self.styles.width = max(1, self.base.cols)
        self._rebuild_strips()
        self.refresh()

    def _to_strip(self, line: Text) -> Strip:
        return Strip(list(line.render(self.app.console)), line.cell_len)

    def _rebuild_strips(self) -> None:
        """Re-render every row after the base surface was redrawn."""
        self._strips = [self._to_strip(line) for line in self.base.render_lines(self.overlay)]
        self._overlay_rows = set(self.overlay.touched_spans())

    def _refresh_overlay(self) -> None:
        """Re-render only the rows the crosshair left or now covers."""
        rows = set(self.overlay.touched_spans())
        dirty = sorted((rows | self._overlay_rows) & set(range(len(self._strips))))
        self._overlay_rows = rows
        if not dirty:
            return
        lines = self.base.render_lines(self.overlay)
        width = max(1, self.base.cols)
        for r in dirty:
            self._strips[r] = self._to_strip(lines[r])
        self.refresh(*(Region(0, r, width, 1) for r in dirty))

    def render_line(self, y: int) -> Strip:
        width = self.size.width
        if self.controller is None:
            if y == 0:
                return self._to_strip(Text("No data loaded", style="dim")).adjust_cell_length(width)
            return Strip.blank(width)
        if y >= len(self._strips):
            return Strip.blank(width)
        return self._strips[y].adjust_cell_length(width)

    def on_mouse_move(self, event: events.MouseMove) -> None:
        if self.controller is None:
            return
        offset = event.get_content_offset(self)
        if offset is None:
            return
        x, y = cell_to_pixel(offset.x, offset.y)
        index = self.controller.pointer_move(x, y)
        record = self.controller.series[index] if index is not None else None
        self.post_message(self.Hovered(record))
        self._refresh_overlay()

    def on_leave(self, event: events.Leave) -> None:
        if self.controller is None:
            return
        self.controller.pointer_leave()
        self.post_message(self.Hovered(None))
        self._refresh_overlay()

    def on_mouse_scroll_up(self, event: events.MouseScrollUp) -> None:
        # The wheel zooms instead of scrolling the container
        event.prevent_default()
        event.stop()
        self.zoom(-1)

    def on_mouse_scroll_down(self, event: events.MouseScrollDown) -> None:
        event.prevent_default()
        event.stop()
        self.zoom(1)


class ChartApp(App):
    CSS = """
    Screen {
        layout: vertical;
    }

    #controls {
        height: auto;
        margin: 1 2;
        padding: 1;
    }

    #controls Horizontal {
        height: auto;
        width: 100%;
    }

    #chart_container {
        height: 1fr;
        margin: 0 2 1 2;
        border: solid blue;
    }

    #status {
        height: 3;
        margin: 0 2 1 2;
    }

    Input {
        width: 40;
    }

    #zoom_label {
        width: auto;
        text-align: center;
        padding: 0 1;
        margin-top: 1;
    }

    Button {
        min-width: 6;
        margin-left: 1;
    }
    """

    TITLE = "Yama"

    BINDINGS = [
        ("plus,equals_sign", "zoom_in", "Zoom +"),
        ("minus", "zoom_out", "Zoom -"),
        ("0", "reset_zoom", "Reset zoom"),
        ("r", "reload", "Reload"),
    ]

    def __init__(self, source: str = DEFAULT_SOURCE) -> None:
        super().__init__()
        self.source = source
        self.status_message = "Ready"
        self.series = QuoteSeries()
        self.average: list[MovingAveragePoint] = []

    def compose(self) -> ComposeResult:
        yield Header()
        with Container(id="controls"):
            with Horizontal():
                yield Input(
                    value=self.source,
                    placeholder="chart.csv, https://host/quotes.csv or AAPL",
                    id="source_input",
                )
                yield Button("Load", id="load_button")
                yield Static("Zoom: 1.00x", id="zoom_label")
        with HorizontalScroll(id="chart_container"):
            yield ChartView(id="chart")
        yield Static("Ready", id="status")
        yield Footer()

    def on_mount(self) -> None:
        self.call_after_refresh(self.refresh_data)

    def on_resize(self, event: events.Resize) -> None:
        self.call_after_refresh(self.fit_chart)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "load_button":
            self.handle_load()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "source_input":
            self.handle_load()

    def handle_load(self) -> None:
        source = self.query_one("#source_input", Input).value.strip()
        if not source:
            self.set_status("Enter a file, URL or ticker symbol.")
            return
        self.source = source
        self.refresh_data()

    def chart_size(self) -> tuple[int, int]:
        size = self.query_one("#chart_container", HorizontalScroll).size
        return size.width, size.height

    def fit_chart(self) -> None:
        self.query_one("#chart", ChartView).fit(*self.chart_size())

    def set_status(self, message: str) -> None:
        self.status_message = message
        self.query_one("#status", Static).update(message)

    def update_zoom_label(self, zoom: float) -> None:
        self.query_one("#zoom_label", Static).update(f"Zoom: {zoom:.2f}x")

    def on_chart_view_zoomed(self, event: ChartView.Zoomed) -> None:
        self.update_zoom_label(event.zoom)

    def on_chart_view_hovered(self, event: ChartView.Hovered) -> None:
        if event.record is not None:
            self.set_status(format_ohlc(event.record))

    def action_zoom_in(self) -> None:
        self.query_one("#chart", ChartView).zoom(-1)

    def action_zoom_out(self) -> None:
        self.query_one("#chart", ChartView).zoom(1)

    def action_reset_zoom(self) -> None:
        self.query_one("#chart", ChartView).reset_zoom()

    def action_reload(self) -> None:
        self.refresh_data()

    def refresh_data(self) -> None:
        """Load the current source. On failure the previous chart stays on screen."""
        self.set_status(f"Loading {self.source}...")
        try:
            series = load_series(self.source)
        except (LoadError, ParseError) as exc:
            logger.error("Could not chart %s: %s", self.source, exc)
            self.set_status(f"Error: {exc}")
            return

        self.series = series
        self.average = compute_moving_average(series, MA_PERIOD)
        self.query_one("#chart", ChartView).show(self.series, self.average, *self.chart_size())
        self.set_status(
            f"Loaded {len(self.series)} quotes from {self.source} "
            f"({MA_PERIOD}-day average over {len(self.average)} points)."
        )


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("YAMA_LOG_LEVEL", "INFO").upper(),
        handlers=[TextualHandler()],
    )
    source = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_SOURCE
    ChartApp(source).run()


if __name__ == "__main__":
    main()
