"""
Command-line runner for the scanner client.

Usage:
    scanner-client status
    scanner-client scan --top-n 20            # start a job, wait for the poller to load results
    scanner-client scan --stream              # follow the push stream instead
    scanner-client scan --multi               # multi-timeframe scan
    scanner-client demo
    scanner-client db                         # database-backed read path
    scanner-client details BTC
    scanner-client prices --seconds 30
    scanner-client cache [--clear]
    scanner-client serve --port 8000
"""

import argparse
import asyncio
import json
import logging
from typing import List, Optional

from .app import Dashboard
from .config import configure_logging, load_settings
from .core.models import StrategicSummary

logger = logging.getLogger(__name__)


def print_summary(dashboard: Dashboard) -> None:
    header = dashboard.pipeline.header()
    print(f"Scanned {header['scanned']}  above {header['above']}  below {header['below']}")
    strategic: StrategicSummary = dashboard.pipeline.strategic
    sections = (
        ("LONG TERM", strategic.coins_to_evaluate_long_term),
        ("TRADE NOW", strategic.coins_to_trade_now_short_term),
        ("AVOID", strategic.coins_to_avoid),
    )
    for title, assets in sections:
        print(f"\n{title} ({len(assets)})")
        for a in assets:
            pct = f"{a.pct_from_ema50:+.2f}%" if a.pct_from_ema50 is not None else "n/a"
            print(
                f"  {a.symbol:<8} {pct:>9}  {a.alignment.primary_trend:<8}"
                f" align {a.alignment.alignment_score:.0f}%"
            )


async def wait_for_results(dashboard: Dashboard, timeout: float) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        status = dashboard.poller.status
        if status and status.running:
            print(f"\rScanning {status.progress}/{status.total} {status.current_coin or ''}", end="", flush=True)
        if dashboard.poller.loads_triggered:
            print()
            return True
        await asyncio.sleep(0.5)
    print()
    return False


async def run_command(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    dashboard = Dashboard(settings)
    await dashboard.start(live_prices=args.command == "prices")
    try:
        if args.command == "status":
            status = await dashboard.poller.poll_once()
            print(json.dumps(status.model_dump() if status else None, indent=2))
            return 0 if status else 1

        if args.command == "scan":
            if args.stream:
                ok = await dashboard.stream_scan(args.top_n)
            else:
                if args.multi:
                    ok = await dashboard.multi_scan(args.top_n)
                else:
                    ok = await dashboard.start_scan(args.top_n, use_cache=not args.no_cache)
                ok = ok and await wait_for_results(dashboard, args.timeout)
                if not ok and not dashboard.last_error:
                    dashboard.last_error = f"No results after {args.timeout:.0f}s"
            if not ok:
                print(f"Error: {dashboard.last_error}")
                return 1
            print_summary(dashboard)
            return 0

        if args.command in ("demo", "db"):
            ok = await (dashboard.demo() if args.command == "demo" else dashboard.load_from_database())
            if not ok:
                print(f"Error: {dashboard.last_error}")
                return 1
            print_summary(dashboard)
            return 0

        if args.command == "details":
            details = await dashboard.coin_details(args.symbol)
            if details is None:
                print(f"Error: {dashboard.last_error}")
                return 1
            print(json.dumps(details.model_dump(), indent=2, default=str))
            return 0

        if args.command == "prices":
            dashboard.prices.on_tick(lambda t: print(f"{t.symbol:<8} {t.price:>14,.6f}"))
            await asyncio.sleep(args.seconds)
            return 0

        if args.command == "cache":
            if args.clear:
                await dashboard.clear_cache()
                print("Cache cleared")
                return 0
            age = await dashboard.cache.age_minutes()
            if age is None or not dashboard.pipeline.has_results:
                print("No cached results")
                return 1
            print(f"Cached results from {age}m ago")
            print_summary(dashboard)
            return 0
    finally:
        await dashboard.stop()
    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scanner-client", description="EMA scanner dashboard client")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default from settings)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Print the current scan job status")

    scan = sub.add_parser("scan", help="Run a scan and print the strategic buckets")
    scan.add_argument("--top-n", type=int, default=None, help="Number of coins to scan (5-200)")
    scan.add_argument("--stream", action="store_true", help="Follow the push stream")
    scan.add_argument("--multi", action="store_true", help="Multi-timeframe scan")
    scan.add_argument("--no-cache", action="store_true", help="Ask the server not to reuse cached data")
    scan.add_argument("--timeout", type=float, default=600.0, help="Seconds to wait for results when polling")

    sub.add_parser("demo", help="Load demo results")
    sub.add_parser("db", help="Load results from the database-backed API")

    details = sub.add_parser("details", help="Show details for one coin")
    details.add_argument("symbol", type=str)

    prices = sub.add_parser("prices", help="Print live price ticks")
    prices.add_argument("--seconds", type=float, default=30.0)

    cache = sub.add_parser("cache", help="Show or clear the local result cache")
    cache.add_argument("--clear", action="store_true")

    serve = sub.add_parser("serve", help="Run the control API")
    serve.add_argument("--host", type=str, default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(args.log_level or settings.log_level)

    if args.command == "serve":
        import uvicorn
        from .api.server import create_app

        uvicorn.run(create_app(Dashboard(settings)), host=args.host, port=args.port)
        return 0

    try:
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
