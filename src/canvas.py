"""
Braille canvas: a pixel surface drawn with Unicode braille characters.

Each terminal cell holds a 2x4 grid of dots, so a surface of W x H pixels
occupies ceil(W/2) columns and ceil(H/4) rows. Colour is tracked per cell;
the last primitive that touches a cell decides its style.
"""
from __future__ import annotations

import math
from itertools import groupby
from operator import itemgetter
from typing import Sequence

import numpy as np
from rich.text import Text

DOTS_X = 2
DOTS_Y = 4
BRAILLE_BASE = 0x2800

# Bit for each dot position, indexed [row][column] within a cell
DOT_BITS = np.array(
    [
        [0x01, 0x08],
        [0x02, 0x10],
        [0x04, 0x20],
        [0x40, 0x80],
    ],
    dtype=np.int32,
)


class BrailleSurface:
    """Implements the chart DrawingSurface primitives on a braille dot grid."""

    def __init__(self, width: int = 0, height: int = 0) -> None:
        self.resize(width, height)

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def cols(self) -> int:
        return math.ceil(self._width / DOTS_X)

    @property
    def rows(self) -> int:
        return math.ceil(self._height / DOTS_Y)

    def resize(self, width: int, height: int) -> None:
        self._width = max(0, int(width))
        self._height = max(0, int(height))
        self.clear()

    def clear(self) -> None:
        self.dots = np.zeros((self.rows * DOTS_Y, self.cols * DOTS_X), dtype=bool)
        self.styles = np.full((self.rows, self.cols), "", dtype=object)
        self.chars = np.full((self.rows, self.cols), "", dtype=object)
        self.char_styles = np.full((self.rows, self.cols), "", dtype=object)
        self._bits: np.ndarray | None = None
        self._lines: list[Text] | None = None

    # -------------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------------

    def set_dot(self, x: int, y: int, style: str) -> None:
        if 0 <= x < self._width and 0 <= y < self._height:
            self.dots[y, x] = True
            self.styles[y // DOTS_Y, x // DOTS_X] = style
            self._bits = self._lines = None

    def draw_line(self, x0: float, y0: float, x1: float, y1: float, style: str) -> None:
        """Bresenham line between two pixel positions, rounded to the dot grid."""
        x0, y0, x1, y1 = (int(round(v)) for v in (x0, y0, x1, y1))
        dx = abs(x1 - x0)
        dy = -abs(y1 - y0)
        sx = 1 if x0 < x1 else -1
        sy = 1 if y0 < y1 else -1
        err = dx + dy
        while True:
            self.set_dot(x0, y0, style)
            if x0 == x1 and y0 == y1:
                break
            e2 = 2 * err
            if e2 >= dy:
                err += dy
                x0 += sx
            if e2 <= dx:
                err += dx
                y0 += sy

    def draw_polyline(self, points: Sequence[tuple[float, float]], color: str) -> None:
        if len(points) == 1:
            x, y = points[0]
            self.set_dot(int(round(x)), int(round(y)), color)
        for (x0, y0), (x1, y1) in zip(points, points[1:]):
            self.draw_line(x0, y0, x1, y1, color)

    def fill_polygon(
        self,
        points: Sequence[tuple[float, float]],
        fill: str,
        stroke: str | None = None,
    ) -> None:
        """
        Even-odd scanline fill sampled at dot centres.

        Only every other dot of the interior is set, in a checkered pattern, so
        whatever was drawn underneath stays visible through the fill.
        """
        if len(points) < 3:
            if stroke:
                self.draw_polyline(points, stroke)
            return

        edges = list(zip(points, [*points[1:], points[0]]))
        top = max(0, int(math.floor(min(y for _, y in points))))
        bottom = min(self._height - 1, int(math.ceil(max(y for _, y in points))))
        for row in range(top, bottom + 1):
            sample_y = row + 0.5
            crossings = []
            for (x0, y0), (x1, y1) in edges:
                if (y0 <= sample_y < y1) or (y1 <= sample_y < y0):
                    crossings.append(x0 + (sample_y - y0) * (x1 - x0) / (y1 - y0))
            crossings.sort()
            for start, end in zip(crossings[::2], crossings[1::2]):
                first = max(0, int(math.ceil(start - 0.5)))
                last = min(self._width - 1, int(math.floor(end - 0.5)))
                for x in range(first, last + 1):
                    if (x + row) % 2 == 0:
                        self.set_dot(x, row, fill)

        if stroke:
            self.draw_polyline([*points, points[0]], stroke)

    def draw_text(self, x: float, y: float, text: str, color: str, align: str = "left") -> None:
        """Write text into the cell row containing y, anchored at x."""
        row = int(math.floor(y)) // DOTS_Y
        if not 0 <= row < self.rows:
            return
        col = int(math.floor(x)) // DOTS_X
        if align == "right":
            col -= len(text)
        elif align == "center":
            col -= len(text) // 2
        for offset, char in enumerate(text):
            c = col + offset
            if 0 <= c < self.cols:
                self.chars[row, c] = char
                self.char_styles[row, c] = color
                self._lines = None

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def cell_bits(self) -> np.ndarray:
        """Braille bit pattern per cell as a (rows, cols) integer array."""
        if self._bits is None:
            blocks = self.dots.reshape(self.rows, DOTS_Y, self.cols, DOTS_X)
            self._bits = np.einsum("rycx,yx->rc", blocks.astype(np.int32), DOT_BITS)
        return self._bits

    def touched_spans(self) -> dict[int, tuple[int, int]]:
        """Map each cell row holding dots or text to its [first, last + 1) column span."""
        mask = (self.cell_bits() != 0) | (self.chars != "")
        spans = {}
        for r in np.flatnonzero(mask.any(axis=1)):
            cols = np.flatnonzero(mask[r])
            spans[int(r)] = (int(cols[0]), int(cols[-1]) + 1)
        return spans

    def lines(self) -> list[Text]:
        """One Text per cell row. Built once per drawing and reused until the next change."""
        if self._lines is None:
            self._lines = [self._row_text(r, 0, self.cols) for r in range(self.rows)]
        return self._lines

    def render_lines(self, overlay: BrailleSurface | None = None) -> list[Text]:
        """
        Rows of this surface with an overlay of the same size merged on top.

        Only the span of each row the overlay touched is rebuilt; every other
        row is the cached line object itself.
        """
        lines = self.lines()
        if overlay is None:
            return list(lines)
        if (overlay.width, overlay.height) != (self.width, self.height):
            raise ValueError(
                f"Overlay size {overlay.width}x{overlay.height} does not match "
                f"{self.width}x{self.height}"
            )

        merged = list(lines)
        for r, (start, stop) in overlay.touched_spans().items():
            left, _, right = lines[r].divide([start, stop])
            line = left.copy()
            line.append_text(self._row_text(r, start, stop, overlay))
            line.append_text(right)
            merged[r] = line
        return merged

    def render(self, overlay: BrailleSurface | None = None) -> Text:
        """
        Render the surface as rich Text, one line per cell row.

        When an overlay of the same size is given, its dots are merged with ours
        and its text and styles win wherever it drew something.
        """
        return Text("\n", no_wrap=True, overflow="crop").join(self.render_lines(overlay))

    def _row_text(self, r: int, start: int, stop: int, overlay: BrailleSurface | None = None) -> Text:
        bits = self.cell_bits()
        overlay_bits = overlay.cell_bits() if overlay is not None else None
        cells = []
        for c in range(start, stop):
            char, style = self._cell(r, c, bits)
            if overlay is not None:
                if overlay.chars[r, c]:
                    char, style = overlay.chars[r, c], overlay.char_styles[r, c]
                elif overlay_bits[r, c]:
                    merged = overlay_bits[r, c] if self.chars[r, c] else bits[r, c] | overlay_bits[r, c]
                    char, style = chr(BRAILLE_BASE + int(merged)), overlay.styles[r, c]
            cells.append((char, style))
        text = Text(no_wrap=True, overflow="crop")
        for style, run in groupby(cells, key=itemgetter(1)):
            text.append("".join(char for char, _ in run), style=style or None)
        return text

    def _cell(self, r: int, c: int, bits: np.ndarray) -> tuple[str, str]:
        if self.chars[r, c]:
            return self.chars[r, c], self.char_styles[r, c]
        if bits[r, c]:
            return chr(BRAILLE_BASE + int(bits[r, c])), self.styles[r, c]
        return " ", ""
