"""
Backend module for Yama - mountain chart of daily stock quotes.
Contains pure data loading and processing functions separated from UI.
"""
from __future__ import annotations

import datetime as dt
import logging
import math
import os
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import pandas as pd
import yfinance as yf

logger = logging.getLogger(__name__)

# Use absolute path based on this file's location
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.environ.get("YAMA_DATA_DIR", PROJECT_ROOT / "data"))
DEFAULT_SOURCE = os.environ.get("YAMA_SOURCE", "chart.csv")
MA_PERIOD = 20
LOAD_TIMEOUT = 30
DELIMITER = ","
HEADER = "date,open,high,low,close"
FIELD_COUNT = 5

# In-memory cache of downloaded symbol text to avoid repeated downloads.
_symbol_cache: dict[str, str] = {}


# =============================================================================
# Errors
# =============================================================================

class LoadError(Exception):
    """Raised when the quote source cannot be retrieved."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Could not load {source}: {reason}")
        self.source = source
        self.reason = reason


class ParseError(ValueError):
    """Raised when a quote row is malformed. Carries the 1-based line number."""

    def __init__(self, line_number: int, line: str, reason: str):
        super().__init__(f"Line {line_number}: {reason}: {line!r}")
        self.line_number = line_number
        self.line = line
        self.reason = reason


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class QuoteRecord:
    """One trading day. The date is an opaque label, never parsed."""
    date: str
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class MovingAveragePoint:
    """Average of the closing window ending at the record with the same date."""
    date: str
    value: float

    @staticmethod
    def source_index(j: int, period: int) -> int:
        """Index into the QuoteSeries for element j of a moving-average sequence."""
        return j + period - 1


class QuoteSeries(Sequence[QuoteRecord]):
    """Ordered, immutable sequence of quote records in input order."""

    def __init__(self, records: Iterable[QuoteRecord] = ()):
        self._records: tuple[QuoteRecord, ...] = tuple(records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index):
        return self._records[index]

    def __iter__(self) -> Iterator[QuoteRecord]:
        return iter(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QuoteSeries):
            return NotImplemented
        return self._records == other._records

    def __hash__(self) -> int:
        return hash(self._records)

    def __repr__(self) -> str:
        return f"QuoteSeries({len(self._records)} records)"

    @property
    def closes(self) -> list[float]:
        return [record.close for record in self._records]

    @property
    def min_close(self) -> float:
        """Lowest close, 0.0 for an empty series."""
        if not self._records:
            return 0.0
        return min(record.close for record in self._records)

    @property
    def max_close(self) -> float:
        """Highest close, 0.0 for an empty series."""
        if not self._records:
            return 0.0
        return max(record.close for record in self._records)


# =============================================================================
# Parsing
# =============================================================================

def _parse_price(value: str, line_number: int, line: str, name: str) -> float:
    try:
        price = float(value.strip())
    except ValueError:
        raise ParseError(line_number, line, f"{name} is not a number") from None
    if not math.isfinite(price):
        raise ParseError(line_number, line, f"{name} is not finite")
    return price


def parse_quotes(text: str, delimiter: str = DELIMITER) -> QuoteSeries:
    """
    Parse delimited quote text into a QuoteSeries.

    The first line is a header and is discarded. Every following non-blank line
    must hold exactly date, open, high, low, close. The whole load is rejected
    with ParseError on the first malformed row; rows are never re-sorted.
    """
    if len(delimiter) != 1:
        raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")

    lines = text.strip().split("\n")
    records = []
    # Line numbers are 1-based and count the header as line 1
    for line_number, raw in enumerate(lines[1:], start=2):
        line = raw.rstrip("\r")
        if not line.strip():
            continue
        fields = line.split(delimiter)
        if len(fields) != FIELD_COUNT:
            raise ParseError(
                line_number, line, f"expected {FIELD_COUNT} fields, got {len(fields)}"
            )
        date = fields[0]
        open_, high, low, close = (
            _parse_price(value, line_number, line, name)
            for value, name in zip(fields[1:], ("open", "high", "low", "close"))
        )
        records.append(QuoteRecord(date=date, open=open_, high=high, low=low, close=close))

    return QuoteSeries(records)


# =============================================================================
# Moving Average
# =============================================================================

def compute_moving_average(
    series: QuoteSeries, period: int = MA_PERIOD
) -> list[MovingAveragePoint]:
    """
    Simple moving average of closing prices.

    Element j averages closes at source indices [j, j + period - 1] and carries
    the date of source index j + period - 1. Returns an empty list when the
    series is shorter than the period.
    """
    if isinstance(period, bool) or not isinstance(period, int) or period < 1:
        raise ValueError(f"Period must be a positive integer, got {period!r}")

    closes = series.closes
    if len(closes) < period:
        return []

    points = []
    window_sum = sum(closes[:period - 1])
    for i in range(period - 1, len(closes)):
        window_sum += closes[i]
        points.append(MovingAveragePoint(date=series[i].date, value=window_sum / period))
        window_sum -= closes[i - period + 1]
    return points


# =============================================================================
# Data Loading Functions
# =============================================================================

def sanitize_symbol(symbol: str) -> str:
    return symbol.replace("/", "-").replace(" ", "").replace(":", "-")


def ensure_dirs() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)


def is_url(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def load_quote_text(source: str, timeout: float = LOAD_TIMEOUT) -> str:
    """Read quote text from a local path or fetch it once from an http(s) URL."""
    if is_url(source):
        req = urllib.request.Request(source, headers={"Accept": "text/csv, text/plain"})
        try:
            with urllib.request.urlopen(req, timeout=timeout) as response:
                return response.read().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise LoadError(source, str(e)) from e

    try:
        return Path(source).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise LoadError(source, str(e)) from e


def _normalize_df(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    df = df.copy()
    # Handle multi-level columns from yfinance (Price, Ticker)
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)
    # Normalize index to timezone-naive datetime
    idx = pd.to_datetime(df.index, errors="coerce")
    if idx.tz is not None:
        idx = idx.tz_localize(None)
    df.index = idx
    # Drop rows with NaT in the index (from unparseable dates)
    df = df[df.index.notna()]
    df = df.rename(columns=str.title)
    required = ["Open", "High", "Low", "Close"]
    missing = [col for col in required if col not in df.columns]
    if missing:
        return pd.DataFrame()
    return df[required].dropna().sort_index()


def frame_to_quote_text(df: pd.DataFrame) -> str:
    """Render a normalized OHLC frame as date,open,high,low,close text."""
    lines = [HEADER]
    for idx, row in df.iterrows():
        prices = (repr(float(row[col])) for col in ("Open", "High", "Low", "Close"))
        lines.append(",".join([idx.strftime("%Y-%m-%d"), *prices]))
    return "\n".join(lines) + "\n"


def _download_symbol(symbol: str, start: dt.date | None = None) -> pd.DataFrame:
    kwargs: dict[str, object] = {"progress": False, "auto_adjust": False}
    if start:
        kwargs["start"] = start
    else:
        kwargs["period"] = "max"
    try:
        df = yf.download(symbol, **kwargs)
    except Exception as e:
        raise LoadError(symbol, str(e)) from e
    return _normalize_df(df)


def _read_cached_frame(cache_path: Path) -> pd.DataFrame:
    if not cache_path.exists():
        return pd.DataFrame()
    try:
        cached = pd.read_csv(cache_path, index_col=0, parse_dates=True)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable cache %s: %s", cache_path, e)
        return pd.DataFrame()
    return _normalize_df(cached)


def _write_cached_frame(df: pd.DataFrame, cache_path: Path) -> None:
    try:
        ensure_dirs()
        df.to_csv(cache_path)
    except OSError as e:
        logger.warning("Could not write cache %s: %s", cache_path, e)


def download_quote_text(symbol: str) -> str:
    """
    Daily history for a ticker, downloaded via yfinance.

    The normalized frame is cached as CSV under DATA_DIR. A cache that ends
    before yesterday is topped up with an incremental download; an unreadable
    or unwritable cache is logged and skipped. The quote text is also kept in
    memory for the rest of the session.
    """
    symbol_key = sanitize_symbol(symbol.upper())
    if symbol_key in _symbol_cache:
        return _symbol_cache[symbol_key]

    cache_path = DATA_DIR / f"{symbol_key}.csv"
    cached = _read_cached_frame(cache_path)

    yesterday = pd.Timestamp.now().normalize() - pd.Timedelta(days=1)
    if cached.empty:
        updated = _download_symbol(symbol)
    else:
        last_date = cached.index.max().normalize()
        if last_date < yesterday:
            start_date = (last_date + pd.Timedelta(days=1)).date()
            try:
                incremental = _download_symbol(symbol, start=start_date)
            except LoadError as e:
                logger.warning("Using cached quotes for %s: %s", symbol, e)
                incremental = pd.DataFrame()
            if incremental.empty:
                updated = cached
            else:
                updated = pd.concat([cached, incremental])
                updated = updated[~updated.index.duplicated(keep="last")]
        else:
            updated = cached

    if updated.empty:
        raise LoadError(symbol, "no quotes returned")

    updated = updated.sort_index()
    if updated is not cached:
        _write_cached_frame(updated, cache_path)
    text = frame_to_quote_text(updated)
    _symbol_cache[symbol_key] = text
    logger.info("Loaded %d quotes for %s", len(updated), symbol)
    return text


def _is_local_file(source: str) -> bool:
    try:
        return Path(source).exists()
    except (OSError, ValueError) as e:
        raise LoadError(source[:80], str(e)) from e


def load_series(source: str, delimiter: str = DELIMITER, timeout: float = LOAD_TIMEOUT) -> QuoteSeries:
    """
    Load and parse a quote source.

    A source that is a URL or an existing file is read directly; anything else
    is treated as a ticker symbol and downloaded.
    """
    source = source.strip()
    if not source:
        raise LoadError(source, "no source given")

    if is_url(source) or _is_local_file(source):
        text = load_quote_text(source, timeout=timeout)
    else:
        text = download_quote_text(source)

    series = parse_quotes(text, delimiter=delimiter)
    logger.info("Loaded %d quotes from %s", len(series), source)
    return series
