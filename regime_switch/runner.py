"""Command line entry point.

Usage:
    python -m regime_switch.runner analyze bars.csv [--config regime.yml] [--output summary.json]
    python -m regime_switch.runner check-config regime.yml

The CSV needs timestamp, open, high, low and close columns; volume and
symbol are optional. Timestamps are ISO 8601; naive values are read as UTC.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from regime_switch.config import RegimeSwitchConfig, Settings
from regime_switch.contracts import Bar
from regime_switch.regime import RegimeConfig, analyze_history
from regime_switch.utils.yaml_loader import YAMLLoader, YAMLLoadError

logger = logging.getLogger("regime_switch.runner")

REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close")


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def load_bars(csv_path: Path, symbol: str | None = None) -> list[Bar]:
    """Load bars from a CSV file, sorted ascending by timestamp.

    Raises:
        ValueError: If required columns are missing or a row cannot be parsed.
    """
    bars: list[Bar] = []
    with open(csv_path, newline="") as csvfile:
        reader = csv.DictReader(csvfile)
        missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"{csv_path}: missing columns {', '.join(missing)}")

        for line, row in enumerate(reader, start=2):
            if symbol is not None and row.get("symbol") not in (None, "", symbol):
                continue
            try:
                timestamp = datetime.fromisoformat(row["timestamp"])
                if timestamp.tzinfo is None:
                    timestamp = timestamp.replace(tzinfo=timezone.utc)
                bars.append(
                    Bar(
                        timestamp=timestamp,
                        open=float(row["open"]),
                        high=float(row["high"]),
                        low=float(row["low"]),
                        close=float(row["close"]),
                        volume=float(row.get("volume") or 0.0),
                    )
                )
            except (TypeError, ValueError) as e:
                raise ValueError(f"{csv_path}:{line}: {e}") from e

    bars.sort(key=lambda b: b.timestamp)
    return bars


def _regime_config(path: Path | None) -> RegimeConfig:
    if path is None:
        return RegimeConfig()
    return YAMLLoader().load_file(path, RegimeSwitchConfig).regime


def run_analyze(args: argparse.Namespace) -> int:
    try:
        config = _regime_config(args.config)
        bars = load_bars(args.csv, args.symbol)
    except (FileNotFoundError, ValueError, YAMLLoadError) as e:
        logger.error(str(e))
        return 1

    if len(bars) < config.minimum_bars:
        logger.error(f"Need at least {config.minimum_bars} bars, got {len(bars)}")
        return 1

    analysis = analyze_history(
        bars, config, warmup=args.warmup, bars_per_hour=args.bars_per_hour
    )
    result = {"source": str(args.csv), "summary": analysis.summary.to_dict()}
    if args.rows:
        result["rows"] = [
            {
                "timestamp": row.timestamp.isoformat(),
                "price": row.price,
                "regime": row.regime.value,
                "confidence": row.confidence,
                "trend_strength": row.trend_strength,
                "volatility": row.volatility,
                "noise_level": row.noise_level,
                "transition": row.transition,
            }
            for row in analysis.rows
        ]

    text = json.dumps(result, indent=2)
    if args.output is not None:
        args.output.write_text(text + "\n", encoding="utf-8")
        logger.info(f"Wrote analysis to {args.output}")
    else:
        print(text)
    return 0


def run_check_config(args: argparse.Namespace) -> int:
    errors = YAMLLoader().validate_yaml(args.config, RegimeSwitchConfig)
    for error in errors:
        print(error)
    if not errors:
        print(f"{args.config}: OK")
    return 1 if errors else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="regime-switch",
        description="Market regime detection tools",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Run the detector over a CSV of bars")
    analyze.add_argument("csv", type=Path, help="OHLCV CSV file")
    analyze.add_argument("--config", type=Path, help="YAML configuration file")
    analyze.add_argument("--symbol", help="Only use rows of this symbol")
    analyze.add_argument("--warmup", type=int, help="Bars skipped before the first detection")
    analyze.add_argument("--bars-per-hour", type=int, default=12, help="Bar frequency")
    analyze.add_argument("--rows", action="store_true", help="Include per-bar rows")
    analyze.add_argument("--output", type=Path, help="Write JSON here instead of stdout")
    analyze.set_defaults(handler=run_analyze)

    check = subparsers.add_parser("check-config", help="Validate a YAML configuration file")
    check.add_argument("config", type=Path)
    check.set_defaults(handler=run_check_config)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, Settings().log_level)
    try:
        return args.handler(args)
    except ValueError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
