import argparse
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from rich.traceback import install

from .config import load_config
from .dashboard import StockDashboard
from .domain import Indicator, ParseIndicatorError, ParseTimeFrameError, TimeFrame

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("stocker")


def symbol_arg(text: str) -> str:
    symbol = text.strip().upper()
    if not symbol:
        raise argparse.ArgumentTypeError("symbol must not be empty")
    return symbol


def time_frame_arg(text: str) -> TimeFrame:
    try:
        return TimeFrame.parse(text)
    except ParseTimeFrameError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def indicator_arg(text: str) -> Indicator:
    try:
        return Indicator.parse(text)
    except ParseIndicatorError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stocker", description="Terminal stock price dashboard")
    parser.add_argument('-s', '--symbol', type=symbol_arg, help='Stock symbol (default: TSLA)')
    parser.add_argument('-t', '--time-frame', type=time_frame_arg,
                        help='Time frame: 5D, 1M, 3M, 6M, YTD, 1Y, 2Y, 5Y, 10Y or Max (default: 1M)')
    parser.add_argument('-i', '--indicator', type=indicator_arg,
                        help='Indicator: BB(n, k), EMA(n) or SMA(n)')
    parser.add_argument('--debug-draw', action='store_true', help='Show target rectangles in the footer')
    parser.add_argument('--log-file', type=Path, help='Write debug logs to this file')
    parser.add_argument('--config', type=Path, help='Path to config file (default: ./config.yaml if present)')
    return parser


def configure_logging(log_file: Optional[Path] = None, level: int = logging.DEBUG) -> logging.Logger:
    """Send package logs to a file, or nowhere. The terminal belongs to the dashboard."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    if log_file is None:
        logger.addHandler(logging.NullHandler())
        return logger

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    file_handler.setLevel(level)
    logger.addHandler(file_handler)
    logger.setLevel(level)
    return logger


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        time_frame = args.time_frame or TimeFrame.parse(config.defaults.time_frame)
        indicator = args.indicator
        if indicator is None and config.defaults.indicator:
            indicator = Indicator.parse(config.defaults.indicator)
    except (OSError, ValueError, yaml.YAMLError) as e:
        parser.error(f"invalid config: {e}")

    configure_logging(args.log_file)
    install(show_locals=False)
    logger.info("starting with symbol=%s time_frame=%s indicator=%s",
                args.symbol or config.defaults.symbol, time_frame, indicator)

    dashboard = StockDashboard(
        config=config,
        symbol=args.symbol,
        time_frame=time_frame,
        indicator=indicator,
        debug_draw=args.debug_draw,
    )
    dashboard.run()
    return 0
