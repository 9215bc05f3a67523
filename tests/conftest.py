"""Shared test fixtures."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

import backend
from backend import QuoteRecord, QuoteSeries


class RecordingSurface:
    """DrawingSurface that records every primitive instead of drawing it."""

    def __init__(self, width: int = 0, height: int = 0):
        self.width = width
        self.height = height
        self.calls: list[tuple] = []
        self.clears = 0

    def resize(self, width, height):
        self.width = width
        self.height = height
        self.calls = []

    def clear(self):
        self.calls = []
        self.clears += 1

    def draw_polyline(self, points, color):
        self.calls.append(("polyline", list(points), color))

    def fill_polygon(self, points, fill, stroke=None):
        self.calls.append(("polygon", list(points), fill, stroke))

    def draw_text(self, x, y, text, color, align="left"):
        self.calls.append(("text", x, y, text, color, align))

    def of(self, kind):
        return [call for call in self.calls if call[0] == kind]

    def texts(self):
        return [call[3] for call in self.of("text")]


@pytest.fixture(autouse=True)
def clear_symbol_cache():
    """Clear the downloaded symbol cache before each test to avoid cross-test pollution."""
    backend._symbol_cache.clear()


@pytest.fixture
def make_surface():
    return RecordingSurface


def make_series(closes: list[float]) -> QuoteSeries:
    return QuoteSeries(
        QuoteRecord(
            date=f"2024-01-{i + 1:02d}" if i < 31 else f"d{i + 1}",
            open=close - 0.5,
            high=close + 1.0,
            low=close - 1.0,
            close=close,
        )
        for i, close in enumerate(closes)
    )


@pytest.fixture
def sample_series() -> QuoteSeries:
    """25 days of closes with a known minimum (90) and maximum (114)."""
    closes = [100 + (i % 7) * 2 - (i % 3) for i in range(24)] + [90.0]
    closes[10] = 114.0
    return make_series(closes)


@pytest.fixture
def series_factory():
    return make_series


@pytest.fixture
def sample_csv() -> str:
    return (
        "date,open,high,low,close\n"
        "2024-01-02,10.0,11.0,9.5,10.0\n"
        "2024-01-03,10.1,12.5,10.0,12.0\n"
        "2024-01-04,12.0,12.2,10.8,11.0\n"
    )
