"""
Command-line entry point for the Quote Aggregator.
Builds the service from settings, fetches the requested symbols and prints JSON.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from .core.config import get_settings
from .core.logging_config import create_logger, setup_logging
from .services.market_data_service import MarketDataService

logger = create_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quote-aggregator",
        description="Fetch quotes through the provider fallback chain",
    )
    parser.add_argument("symbols", nargs="*", help="Ticker symbols to quote")
    parser.add_argument("--history", metavar="PERIOD", help="Also fetch price history, e.g. 1mo")
    parser.add_argument("--health", action="store_true", help="Run the health probe")
    parser.add_argument("--metrics", action="store_true", help="Print service metrics")
    return parser


async def collect_report(
    service: MarketDataService,
    symbols: List[str],
    history_period: Optional[str] = None,
    include_health: bool = False,
    include_metrics: bool = False,
) -> Dict[str, Any]:
    """Run the requested operations against a connected service."""
    report: Dict[str, Any] = {}

    if len(symbols) == 1:
        result = await service.get_quote(symbols[0])
        report["quotes"] = {result.quote.symbol: result.model_dump(mode="json")} if result.ok else {}
        if not result.ok:
            report["error"] = result.error
    elif symbols:
        quotes = await service.get_batch_quotes(symbols)
        report["quotes"] = {s: q.model_dump(mode="json") for s, q in quotes.items()}
        missing = [s for s in (sym.strip().upper() for sym in symbols) if s not in quotes]
        if missing:
            report["missing"] = missing

    if history_period:
        report["history"] = {
            symbol: [bar.model_dump(mode="json") for bar in await service.get_historical_data(symbol, history_period)]
            for symbol in symbols
        }

    if include_health:
        report["health"] = (await service.check_service_health()).model_dump(mode="json")

    if include_metrics:
        report["metrics"] = service.get_metrics().model_dump(mode="json")

    return report


async def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings)

    if not args.symbols and not args.health and not args.metrics:
        build_parser().print_usage(sys.stderr)
        return 2

    async with MarketDataService.from_settings(settings) as service:
        report = await collect_report(
            service,
            args.symbols,
            history_period=args.history,
            include_health=args.health,
            include_metrics=args.metrics,
        )

    logger.info("Report complete", extra={
        "symbols": args.symbols,
        "quotes": len(report.get("quotes", {})),
    })
    json.dump(report, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 1 if report.get("error") or report.get("missing") else 0


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
