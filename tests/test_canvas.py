"""Tests for the braille drawing surface."""

from __future__ import annotations

import pytest

from backend import compute_moving_average
from canvas import BRAILLE_BASE, BrailleSurface
from chart import ChartRenderer, InteractionController, ScaleMapper, ViewportState, ZoomState


def braille(bits: int) -> str:
    return chr(BRAILLE_BASE + bits)


# =============================================================================
# Geometry
# =============================================================================

class TestSurfaceSize:
    def test_cells_round_up(self):
        surface = BrailleSurface(5, 5)
        assert (surface.cols, surface.rows) == (3, 2)
        assert surface.dots.shape == (8, 6)

    def test_resize_clears(self):
        surface = BrailleSurface(4, 4)
        surface.set_dot(1, 1, "red")
        surface.draw_text(0, 0, "x", "red")
        surface.resize(4, 4)
        assert not surface.dots.any()
        assert surface.render().plain == "  "

    def test_empty_surface(self):
        surface = BrailleSurface()
        assert surface.render().plain == ""


class TestDots:
    def test_single_dot(self):
        surface = BrailleSurface(2, 4)
        surface.set_dot(0, 0, "red")
        assert surface.render().plain == braille(0x01)

    def test_bottom_right_dot(self):
        surface = BrailleSurface(2, 4)
        surface.set_dot(1, 3, "red")
        assert surface.render().plain == braille(0x80)

    def test_out_of_bounds_ignored(self):
        surface = BrailleSurface(2, 4)
        for x, y in [(-1, 0), (2, 0), (0, -1), (0, 4)]:
            surface.set_dot(x, y, "red")
        assert surface.render().plain == " "

    def test_horizontal_line(self):
        surface = BrailleSurface(4, 4)
        surface.draw_line(0, 0, 3, 0, "red")
        assert surface.render().plain == braille(0x09) * 2

    def test_vertical_line(self):
        surface = BrailleSurface(2, 4)
        surface.draw_polyline([(0, 3), (0, 0)], "red")
        assert surface.render().plain == braille(0x47)

    def test_diagonal_line_hits_endpoints(self):
        surface = BrailleSurface(10, 10)
        surface.draw_line(0.2, 0.4, 8.6, 6.1, "red")
        assert surface.dots[0, 0]
        assert surface.dots[6, 9]

    def test_single_point_polyline(self):
        surface = BrailleSurface(2, 4)
        surface.draw_polyline([(1, 2)], "red")
        assert surface.dots[2, 1]

    def test_cell_style_follows_last_draw(self):
        surface = BrailleSurface(2, 4)
        surface.set_dot(0, 0, "red")
        surface.set_dot(1, 1, "blue")
        assert surface.styles[0, 0] == "blue"


class TestFillPolygon:
    SQUARE = [(0, 0), (8, 0), (8, 8), (0, 8)]

    def test_checkered_interior(self):
        surface = BrailleSurface(8, 8)
        surface.fill_polygon(self.SQUARE, "blue")
        assert surface.dots[3, 3]
        assert not surface.dots[3, 4]
        assert surface.dots.sum() == 32

    def test_stroke_drawn_over_fill(self):
        surface = BrailleSurface(8, 8)
        surface.fill_polygon(self.SQUARE, "blue", stroke="bold blue")
        assert surface.dots[0, :].all()
        assert surface.dots[:, 0].all()
        assert surface.styles[0, 1] == "bold blue"
        assert surface.styles[1, 2] == "blue"

    def test_triangle_stays_inside(self):
        surface = BrailleSurface(20, 20)
        surface.fill_polygon([(0, 19), (10, 0), (19, 19)], "blue")
        assert not surface.dots[1, 0]
        assert not surface.dots[1, 19]
        assert surface.dots[18, 10]

    def test_degenerate_polygon_strokes_only(self):
        surface = BrailleSurface(4, 4)
        surface.fill_polygon([(0, 0), (3, 0)], "blue", stroke="red")
        assert surface.dots[0, :].all()
        assert surface.styles[0, 0] == "red"


class TestText:
    def test_left_aligned(self):
        surface = BrailleSurface(20, 4)
        surface.draw_text(4, 0, "ab", "red")
        assert surface.render().plain == "  ab      "

    def test_right_aligned(self):
        surface = BrailleSurface(20, 4)
        surface.draw_text(8, 0, "ab", "red", align="right")
        assert surface.render().plain == "  ab      "

    def test_centered(self):
        surface = BrailleSurface(20, 4)
        surface.draw_text(10, 0, "abc", "red", align="center")
        assert surface.render().plain == "    abc   "

    def test_clipped_at_right_edge(self):
        surface = BrailleSurface(20, 4)
        surface.draw_text(16, 0, "hello", "red")
        assert surface.render().plain == "        he"

    def test_fully_outside(self):
        surface = BrailleSurface(20, 4)
        surface.draw_text(0, 0, "hello", "red", align="right")
        surface.draw_text(0, 100, "hello", "red")
        assert surface.render().plain == " " * 10

    def test_text_row_from_y(self):
        surface = BrailleSurface(4, 8)
        surface.draw_text(0, 5, "x", "red")
        assert surface.render().plain.split("\n") == ["  ", "x "]

    def test_text_hides_dots(self):
        surface = BrailleSurface(2, 4)
        surface.set_dot(0, 0, "blue")
        surface.draw_text(0, 0, "x", "red")
        assert surface.render().plain == "x"


# =============================================================================
# Compositing
# =============================================================================

class TestOverlay:
    def test_dots_merge(self):
        base = BrailleSurface(2, 4)
        overlay = BrailleSurface(2, 4)
        base.draw_line(0, 0, 1, 0, "blue")
        overlay.draw_line(0, 0, 0, 3, "grey50")
        text = base.render(overlay=overlay)
        assert text.plain == braille(0x09 | 0x47)
        assert text.spans[0].style == "grey50"

    def test_overlay_text_wins(self):
        base = BrailleSurface(4, 4)
        overlay = BrailleSurface(4, 4)
        base.draw_text(0, 0, "ab", "red")
        overlay.draw_text(2, 0, "z", "white")
        assert base.render(overlay=overlay).plain == "az"

    def test_overlay_line_over_base_text(self):
        base = BrailleSurface(2, 4)
        overlay = BrailleSurface(2, 4)
        base.draw_text(0, 0, "a", "red")
        overlay.set_dot(0, 0, "grey50")
        assert base.render(overlay=overlay).plain == braille(0x01)

    def test_empty_overlay_is_transparent(self):
        base = BrailleSurface(4, 4)
        base.draw_line(0, 0, 3, 0, "blue")
        assert base.render(overlay=BrailleSurface(4, 4)).plain == base.render().plain

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            BrailleSurface(4, 4).render(overlay=BrailleSurface(6, 4))

    def test_touched_spans(self):
        surface = BrailleSurface(20, 12)
        surface.draw_line(4, 0, 4, 11, "grey50")
        surface.draw_line(0, 5, 19, 5, "grey50")
        surface.draw_text(16, 8, "ab", "white")
        assert surface.touched_spans() == {0: (2, 3), 1: (0, 10), 2: (2, 10)}

    def test_untouched_rows_reuse_cached_lines(self):
        base = BrailleSurface(20, 12)
        overlay = BrailleSurface(20, 12)
        base.draw_line(0, 11, 19, 11, "blue")
        cached = base.lines()
        overlay.draw_text(2, 4, "x", "white")
        merged = base.render_lines(overlay)
        assert merged[0] is cached[0]
        assert merged[2] is cached[2]
        assert merged[1] is not cached[1]
        assert merged[1].plain == " x" + " " * 8
        assert base.lines() is cached

    def test_drawing_invalidates_cached_lines(self):
        surface = BrailleSurface(4, 4)
        before = surface.lines()
        surface.set_dot(0, 0, "blue")
        assert surface.lines() is not before
        assert surface.lines()[0].plain == braille(0x01) + " "
        surface.clear()
        assert surface.lines()[0].plain == "  "

    def test_wide_surface_merge_matches_full_render(self, sample_series):
        base, overlay = BrailleSurface(), BrailleSurface()
        controller = InteractionController(
            sample_series, compute_moving_average(sample_series), base, overlay, ViewportState(400, 100)
        )
        controller.redraw()
        controller.pointer_move(300, 50)
        merged = base.render(overlay=overlay)
        full = []
        bits, overlay_bits = base.cell_bits(), overlay.cell_bits()
        for r in range(base.rows):
            row = []
            for c in range(base.cols):
                if overlay.chars[r, c]:
                    row.append(overlay.chars[r, c])
                elif overlay_bits[r, c]:
                    merged_bits = overlay_bits[r, c] if base.chars[r, c] else bits[r, c] | overlay_bits[r, c]
                    row.append(braille(int(merged_bits)))
                else:
                    row.append(base._cell(r, c, bits)[0])
            full.append("".join(row))
        assert merged.plain == "\n".join(full)


# =============================================================================
# Chart on the braille surface
# =============================================================================

class TestChartOnBraille:
    def test_renders_labels_and_lines(self, sample_series):
        surface = BrailleSurface(120, 60)
        mapper = ScaleMapper(sample_series, ViewportState(120, 60), ZoomState())
        ChartRenderer().draw(surface, sample_series, compute_moving_average(sample_series), mapper)
        text = surface.render()
        lines = text.plain.split("\n")
        assert len(lines) == 15
        assert "114.00" in lines[5]
        assert "90.00" in lines[10]
        assert sample_series[0].date[:5] in lines[11]
        assert any(span.style == "red" for span in text.spans)

    def test_interaction_on_braille(self, sample_series):
        base, overlay = BrailleSurface(), BrailleSurface()
        controller = InteractionController(
            sample_series,
            compute_moving_average(sample_series),
            base,
            overlay,
            ViewportState(200, 80),
        )
        controller.redraw()
        assert (base.width, overlay.width) == (200, 200)
        controller.pointer_move(60, 40)
        assert "O: " in base.render(overlay=overlay).plain
        controller.pointer_leave()
        assert not overlay.dots.any()
        controller.wheel(-1)
        assert base.width == 220
        assert base.render(overlay=overlay).plain.count("\n") == 19
