import logging
import queue
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

import pandas as pd
import yfinance as yf

from .domain import DateRange, TimeFrame
from .reactive import Broadcast

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockProfile:
    symbol: str
    name: str
    currency: Optional[str] = None
    exchange: Optional[str] = None


@dataclass(frozen=True)
class Bar:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int


@dataclass(frozen=True)
class BarSet:
    """Price bars for one (symbol, time frame, date range) request"""
    symbol: str
    time_frame: TimeFrame
    date_range: Optional[DateRange]
    bars: Tuple[Bar, ...] = ()

    @property
    def closes(self) -> Tuple[float, ...]:
        return tuple(bar.close for bar in self.bars)

    @property
    def change(self) -> Optional[float]:
        if len(self.bars) < 2:
            return None
        return self.bars[-1].close - self.bars[0].close

    @property
    def change_pct(self) -> Optional[float]:
        change = self.change
        if change is None or not self.bars[0].close:
            return None
        return change / self.bars[0].close * 100


@dataclass(frozen=True)
class Stock:
    symbol: str
    profile: Optional[StockProfile] = None
    bar_set: Optional[BarSet] = None

    @property
    def name(self) -> Optional[str]:
        return self.profile.name if self.profile else None

    @property
    def bars(self) -> Tuple[Bar, ...]:
        return self.bar_set.bars if self.bar_set else ()


@dataclass(frozen=True)
class BarRequest:
    symbol: str
    time_frame: TimeFrame
    date_range: Optional[DateRange]


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch; `value` is None when nothing is available yet or the fetch failed"""
    kind: str
    key: Hashable
    value: Any = None
    error: Optional[str] = None


def fetch_profile(symbol: str) -> StockProfile:
    info = yf.Ticker(symbol).info or {}
    name = info.get("longName") or info.get("shortName")
    if not name:
        raise ValueError(f"No profile available for {symbol}")
    return StockProfile(
        symbol=symbol,
        name=name,
        currency=info.get("currency"),
        exchange=info.get("exchange"),
    )


def fetch_bars(request: BarRequest) -> BarSet:
    ticker = yf.Ticker(request.symbol)
    interval = request.time_frame.bar_interval()
    if request.date_range is None:
        hist = ticker.history(period=request.time_frame.interval(), interval=interval)
    else:
        hist = ticker.history(start=request.date_range.start, end=request.date_range.end, interval=interval)

    if hist.empty:
        raise ValueError("No data available for this period")
    return BarSet(request.symbol, request.time_frame, request.date_range, bars_from_history(hist))


def bars_from_history(hist: pd.DataFrame) -> Tuple[Bar, ...]:
    """Convert a price history frame (Open/High/Low/Close/Volume columns) to bars"""
    hist = hist.dropna(subset=["Close"])
    bars = []
    for timestamp, row in hist.iterrows():
        bars.append(Bar(
            timestamp=pd.Timestamp(timestamp).to_pydatetime(),
            open=float(row["Open"]),
            high=float(row["High"]),
            low=float(row["Low"]),
            close=float(row["Close"]),
            volume=int(row["Volume"]) if pd.notna(row["Volume"]) else 0,
        ))
    return tuple(bars)


class StockFetcher:
    """Runs market data requests on a worker pool and hands results back to the dataflow graph.

    Results are only injected by `drain()`, which the main loop calls at the
    start of each step. A result whose key is no longer the latest request of
    its kind is dropped.
    """

    def __init__(
        self,
        max_workers: int = 2,
        profile_loader: Callable[[str], StockProfile] = fetch_profile,
        bar_loader: Callable[[BarRequest], BarSet] = fetch_bars,
    ):
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stocker-fetch")
        self.results: "queue.Queue[FetchResult]" = queue.Queue()
        self.profile_loader = profile_loader
        self.bar_loader = bar_loader
        self.profiles: Broadcast = Broadcast()
        self.bar_sets: Broadcast = Broadcast()
        self._latest: Dict[str, Hashable] = {}

    def request_profile(self, symbol: str):
        self._submit("profile", symbol, self.profile_loader, symbol)

    def request_bars(self, request: BarRequest):
        self._submit("bars", request, self.bar_loader, request)

    def _submit(self, kind: str, key: Hashable, loader, *args):
        if self._latest.get(kind) == key:
            return
        self._latest[kind] = key
        logger.debug("requesting %s: %s", kind, key)
        # clear what is shown for the previous key until the new result arrives
        self.results.put(FetchResult(kind, key))
        future = self.executor.submit(loader, *args)
        future.add_done_callback(lambda f: self._handle_completion(kind, key, f))

    def _handle_completion(self, kind: str, key: Hashable, future: Future):
        """Callback when a fetch completes - puts result in queue"""
        try:
            self.results.put(FetchResult(kind, key, future.result()))
        except Exception as e:
            logger.warning("fetching %s for %s failed: %s", kind, key, e)
            self.results.put(FetchResult(kind, key, error=str(e)))

    def drain(self) -> int:
        """Send every completed result into the graph. Returns how many were delivered."""
        delivered = 0
        while True:
            try:
                result = self.results.get_nowait()
            except queue.Empty:
                return delivered
            if self._latest.get(result.kind) != result.key:
                logger.debug("ignoring stale %s result for %s", result.kind, result.key)
                continue
            target = self.profiles if result.kind == "profile" else self.bar_sets
            target.send(result.value)
            delivered += 1

    def shutdown(self):
        self.executor.shutdown(wait=False, cancel_futures=True)
