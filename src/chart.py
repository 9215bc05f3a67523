"""
Chart geometry for Yama: scale mapping, rendering and pointer interaction.

Coordinates are in surface pixels with the origin at the top-left corner.
All drawing goes through the DrawingSurface protocol so the same renderer
works for the terminal canvas and for recording surfaces in tests.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from backend import MovingAveragePoint, QuoteRecord, QuoteSeries

logger = logging.getLogger(__name__)

PADDING = 20
ZOOM_FACTOR = 1.1
MIN_ZOOM = 0.1
MAX_ZOOM = 50.0
GRID_LINES = 5
X_LABEL_COUNT = 10
LABEL_GAP = 2
DATE_LABEL_OFFSET = 6
READOUT_OFFSET = 4

GRID_COLOR = "grey35"
LABEL_COLOR = "grey70"
PRICE_STROKE = "bold blue"
PRICE_FILL = "blue"
AVERAGE_COLOR = "red"
CROSSHAIR_COLOR = "grey50"
READOUT_COLOR = "bold white"

Point = tuple[float, float]


class DrawingSurface(Protocol):
    """Minimal set of drawing primitives the chart needs."""

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...

    def resize(self, width: int, height: int) -> None: ...

    def clear(self) -> None: ...

    def draw_polyline(self, points: Sequence[Point], color: str) -> None: ...

    def fill_polygon(self, points: Sequence[Point], fill: str, stroke: str | None = None) -> None: ...

    def draw_text(self, x: float, y: float, text: str, color: str, align: str = "left") -> None: ...


# =============================================================================
# View State
# =============================================================================

@dataclass
class ViewportState:
    """Unzoomed surface size in pixels plus the padding around the content area."""
    pixel_width: int
    pixel_height: int
    padding: int = PADDING


@dataclass
class ZoomState:
    """Horizontal zoom multiplier applied to the viewport width."""
    value: float = 1.0
    factor: float = field(default=ZOOM_FACTOR, repr=False)

    def _set(self, value: float) -> bool:
        clamped = min(max(value, MIN_ZOOM), MAX_ZOOM)
        if clamped == self.value:
            return False
        self.value = clamped
        return True

    def zoom_in(self) -> bool:
        return self._set(self.value * self.factor)

    def zoom_out(self) -> bool:
        return self._set(self.value / self.factor)

    def reset(self) -> bool:
        return self._set(1.0)

    def apply_wheel(self, delta_y: float) -> bool:
        """Wheel up (negative delta) zooms in, wheel down zooms out."""
        if delta_y < 0:
            return self.zoom_in()
        if delta_y > 0:
            return self.zoom_out()
        return False


# =============================================================================
# Scale Mapping
# =============================================================================

class ScaleMapper:
    """
    Affine mapping between data space (series index, price) and pixels.

    The price range comes from closing prices only. Degenerate inputs (an empty
    series or a flat price range) fall back to a denominator of 1 so every
    scale stays finite.
    """

    def __init__(self, series: QuoteSeries, viewport: ViewportState, zoom: ZoomState):
        self.count = len(series)
        self.padding = viewport.padding
        self.min_price = series.min_close
        self.max_price = series.max_close
        self.surface_width = viewport.pixel_width * zoom.value
        self.surface_height = viewport.pixel_height
        self.content_width = max(0.0, self.surface_width - 2 * self.padding)
        self.content_height = max(0.0, viewport.pixel_height - 2 * self.padding)

        price_range = self.max_price - self.min_price
        self.x_scale = self.content_width / (self.count or 1)
        self.y_scale = self.content_height / (price_range if price_range > 0 else 1)

    @property
    def left(self) -> float:
        return self.padding

    @property
    def right(self) -> float:
        return self.padding + self.content_width

    @property
    def top(self) -> float:
        return self.padding

    @property
    def bottom(self) -> float:
        return self.padding + self.content_height

    def index_to_x(self, index: float) -> float:
        return self.padding + index * self.x_scale

    def price_to_y(self, price: float) -> float:
        return self.padding + self.content_height - (price - self.min_price) * self.y_scale

    def x_to_index(self, x: float) -> int | None:
        """Series index under pixel column x, or None when no point is there."""
        if self.x_scale <= 0:
            return None
        index = math.floor((x - self.padding) / self.x_scale)
        if 0 <= index < self.count:
            return index
        return None

    def y_to_price(self, y: float) -> float:
        if self.y_scale <= 0:
            return self.min_price
        return self.min_price + (self.padding + self.content_height - y) / self.y_scale


# =============================================================================
# Rendering
# =============================================================================

def format_ohlc(record: QuoteRecord) -> str:
    return (
        f"{record.date} O: {record.open:.2f} H: {record.high:.2f} "
        f"L: {record.low:.2f} C: {record.close:.2f}"
    )


def date_label_indices(count: int, label_count: int = X_LABEL_COUNT) -> list[int]:
    """Every (count // label_count)-th index; none when the step would be zero."""
    step = count // label_count
    if step == 0:
        return []
    return list(range(0, count, step))


class ChartRenderer:
    """Draws grid, axis labels, the mountain area and the moving average."""

    def __init__(self, grid_lines: int = GRID_LINES):
        self.grid_lines = grid_lines

    def draw(
        self,
        surface: DrawingSurface,
        series: QuoteSeries,
        average: Sequence[MovingAveragePoint],
        mapper: ScaleMapper,
    ) -> None:
        surface.clear()
        self.draw_grid(surface, mapper)
        self.draw_axis_labels(surface, series, mapper)
        self.draw_price_area(surface, series, mapper)
        self.draw_average(surface, series, average, mapper)

    def draw_grid(self, surface: DrawingSurface, mapper: ScaleMapper) -> None:
        step = mapper.content_height / self.grid_lines
        for i in range(self.grid_lines + 1):
            y = mapper.top + i * step
            surface.draw_polyline([(mapper.left, y), (mapper.right, y)], GRID_COLOR)

    def draw_axis_labels(self, surface: DrawingSurface, series: QuoteSeries, mapper: ScaleMapper) -> None:
        step = mapper.content_height / self.grid_lines
        price_step = (mapper.max_price - mapper.min_price) / self.grid_lines
        for i in range(self.grid_lines + 1):
            y = mapper.top + i * step
            price = mapper.max_price - i * price_step
            surface.draw_text(mapper.left - LABEL_GAP, y, f"{price:.2f}", LABEL_COLOR, align="right")

        label_y = mapper.bottom + DATE_LABEL_OFFSET
        for i in date_label_indices(len(series)):
            surface.draw_text(mapper.index_to_x(i), label_y, series[i].date, LABEL_COLOR, align="center")

    def draw_price_area(self, surface: DrawingSurface, series: QuoteSeries, mapper: ScaleMapper) -> None:
        if not series:
            return
        baseline = mapper.bottom
        line = [(mapper.index_to_x(i), mapper.price_to_y(record.close)) for i, record in enumerate(series)]
        polygon = [(line[0][0], baseline), *line, (line[-1][0], baseline)]
        surface.fill_polygon(polygon, PRICE_FILL, stroke=PRICE_STROKE)

    def draw_average(
        self,
        surface: DrawingSurface,
        series: QuoteSeries,
        average: Sequence[MovingAveragePoint],
        mapper: ScaleMapper,
    ) -> None:
        if not average:
            return
        # An average over `period` closes has len(series) - period + 1 points
        period = len(series) - len(average) + 1
        if period < 1:
            raise ValueError(
                f"Average has {len(average)} points but the series only {len(series)}"
            )
        # Plotted at the source index so the line sits under its window's last close
        points = [
            (mapper.index_to_x(MovingAveragePoint.source_index(j, period)), mapper.price_to_y(point.value))
            for j, point in enumerate(average)
        ]
        surface.draw_polyline(points, AVERAGE_COLOR)

    def draw_crosshair(
        self,
        surface: DrawingSurface,
        mapper: ScaleMapper,
        x: float,
        y: float,
        record: QuoteRecord | None,
    ) -> None:
        surface.clear()
        surface.draw_polyline([(x, mapper.top), (x, mapper.bottom)], CROSSHAIR_COLOR)
        surface.draw_polyline([(mapper.left, y), (mapper.right, y)], CROSSHAIR_COLOR)

        if mapper.top <= y <= mapper.bottom and mapper.count:
            price = mapper.y_to_price(y)
            surface.draw_text(mapper.left - LABEL_GAP, y, f"{price:.2f}", READOUT_COLOR, align="right")

        if record is not None:
            # Flip the readout to the left of the pointer on the right half
            if x > mapper.left + mapper.content_width / 2:
                surface.draw_text(x - READOUT_OFFSET, y - READOUT_OFFSET, format_ohlc(record), READOUT_COLOR, align="right")
            else:
                surface.draw_text(x + READOUT_OFFSET, y - READOUT_OFFSET, format_ohlc(record), READOUT_COLOR)


# =============================================================================
# Interaction
# =============================================================================

class InteractionController:
    """
    Owns the viewport and zoom state for one loaded series.

    Pointer moves redraw only the overlay surface. Wheel events change the zoom
    and redraw the base surface.
    """

    def __init__(
        self,
        series: QuoteSeries,
        average: Sequence[MovingAveragePoint],
        base: DrawingSurface,
        overlay: DrawingSurface,
        viewport: ViewportState,
        zoom: ZoomState | None = None,
        renderer: ChartRenderer | None = None,
    ) -> None:
        self.series = series
        self.average = list(average)
        self.base = base
        self.overlay = overlay
        self.viewport = viewport
        self.zoom = zoom if zoom is not None else ZoomState()
        self.renderer = renderer if renderer is not None else ChartRenderer()
        self.mapper = ScaleMapper(series, viewport, self.zoom)

    def redraw(self) -> None:
        self.mapper = ScaleMapper(self.series, self.viewport, self.zoom)
        width = round(self.mapper.surface_width)
        for surface in (self.base, self.overlay):
            surface.resize(width, self.viewport.pixel_height)
        self.renderer.draw(self.base, self.series, self.average, self.mapper)
        self.overlay.clear()

    def resize(self, pixel_width: int, pixel_height: int) -> None:
        self.viewport.pixel_width = pixel_width
        self.viewport.pixel_height = pixel_height
        self.redraw()

    def pointer_move(self, x: float, y: float) -> int | None:
        """Redraw the crosshair at (x, y). Returns the series index under the pointer."""
        index = self.mapper.x_to_index(x)
        record = self.series[index] if index is not None else None
        self.renderer.draw_crosshair(self.overlay, self.mapper, x, y, record)
        return index

    def pointer_leave(self) -> None:
        self.overlay.clear()

    def wheel(self, delta_y: float) -> bool:
        """Apply one wheel step. Returns True when the zoom changed and the chart was redrawn."""
        if not self.zoom.apply_wheel(delta_y):
            return False
        logger.debug("Zoom %.3f", self.zoom.value)
        self.redraw()
        return True

    def reset_zoom(self) -> bool:
        if not self.zoom.reset():
            return False
        self.redraw()
        return True
