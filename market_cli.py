#!/usr/bin/env python3
"""
Synthetic Market Feed - CLI

Thin shell over the engine and the HTTP API:
- serve     run the HTTP/WebSocket server (engine on the wall clock)
- simulate  back-fill candles offline on a simulated clock
- status    show the running server's system status
- history   print candles from the running server
- manual    create or cancel a manual control on the running server

Examples:
  python market_cli.py serve --port 8765
  python market_cli.py simulate --count 1440 --seed 7
  python market_cli.py status
  python market_cli.py history --resolution 5 --limit 20
  python market_cli.py manual up --speed 0.02 --intensity 1.5 --duration 60
  python market_cli.py manual --cancel
"""

import argparse
import json
import sys
import time
import urllib.error
import urllib.request
from datetime import datetime, timezone

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from synthmarket.config.config import get_config
from synthmarket.utils.logger import setup_logger

console = Console()


# ==================== HTTP helpers ====================

def _server_url(args) -> str:
    config = get_config()
    host = args.host or config.server.host
    port = args.port or config.server.port
    return f"http://{host}:{port}/api/tradingview"


def _request(method: str, url: str, body: dict = None) -> dict:
    """Send a JSON request and decode the JSON reply (error replies included)."""
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers={"Content-Type": "application/json"},
    )
    try:
        with urllib.request.urlopen(req, timeout=10) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        return json.loads(e.read().decode("utf-8") or "{}")


def _fmt_ts(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _print_candles(candles, title: str):
    table = Table(title=title)
    table.add_column("Time (UTC)", style="dim")
    table.add_column("Open", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Low", justify="right")
    table.add_column("Close", justify="right")
    table.add_column("Volume", justify="right")
    table.add_column("Mode")

    for c in candles:
        color = "green" if c["close"] >= c["open"] else "red"
        table.add_row(
            _fmt_ts(c["timestamp"]),
            f"{c['open']:.2f}",
            f"{c['high']:.2f}",
            f"{c['low']:.2f}",
            f"[{color}]{c['close']:.2f}[/]",
            f"{c['volume']:.2f}",
            c.get("mode", "auto"),
        )
    console.print(table)


# ==================== Handlers ====================

def handle_serve(args) -> int:
    from synthmarket.api.server import run_server
    run_server(host=args.host, port=args.port, reload=args.reload)
    return 0


def handle_simulate(args) -> int:
    from synthmarket.core.application import Application
    from synthmarket.engine.scheduler import SimulatedScheduler

    config = get_config()
    if args.seed is not None:
        config.market.seed = args.seed

    app = Application(config, scheduler=SimulatedScheduler(start_ms=int(time.time() * 1000)), use_store=not args.no_persist)
    if not app.initialize():
        console.print(f"\n[bold red]Application initialization failed:[/] {app.get_status().error}")
        return 1

    try:
        candles = app.engine.backfill(args.count, persist=not args.no_persist)
    finally:
        app.stop()

    if not candles:
        console.print("[yellow]No candles generated[/]")
        return 0

    first, last = candles[0], candles[-1]
    manual = sum(1 for c in candles if c.mode.value == "manual")
    console.print(Panel(
        f"[bold]{len(candles)}[/] candles  {_fmt_ts(first.timestamp)} -> {_fmt_ts(last.timestamp)}\n"
        f"open {first.open:.2f}  close {last.close:.2f}  "
        f"high {max(c.high for c in candles):.2f}  low {min(c.low for c in candles):.2f}\n"
        f"manual candles: {manual}  persisted: {'no' if args.no_persist else 'yes'}",
        title=f"Simulated {config.market.symbol}",
        border_style="cyan",
    ))
    _print_candles([c.to_dict() for c in candles[-args.show:]], f"Last {min(args.show, len(candles))} candles")
    return 0


def handle_status(args) -> int:
    try:
        reply = _request("GET", f"{_server_url(args)}/status")
    except (urllib.error.URLError, OSError) as e:
        console.print(f"[bold red]Server unreachable:[/] {e}")
        return 1
    if not reply.get("success"):
        console.print(f"[bold red]FAIL {reply.get('error')}[/]")
        return 1

    status = reply["data"]
    table = Table(title="System Status", show_header=False, box=None)
    table.add_column("Key", style="dim", width=22)
    table.add_column("Value", style="bold")
    table.add_row("Running", "[green]yes[/]" if status["isRunning"] else "[red]no[/]")
    table.add_row("Mode", status["mode"])
    table.add_row("Regime", status["regime"])
    table.add_row("Price", f"{status['currentPrice']:.4f}")
    table.add_row("Last candle", _fmt_ts(status["lastCandleTime"]) if status["lastCandleTime"] else "-")
    table.add_row("Candles (session)", str(status["totalCandles"]))
    table.add_row("Uptime", f"{status['uptime']}s")
    control = status.get("activeManualControl")
    if control:
        table.add_row(
            "Manual control",
            f"#{control['id']} {control['direction']} speed={control['speed']} "
            f"intensity={control['intensity']} until {_fmt_ts(control['expires_at'])}",
        )
    console.print(table)
    return 0


def handle_history(args) -> int:
    to_s = int(time.time())
    from_s = to_s - args.lookback * 60
    url = (
        f"{_server_url(args)}/history?resolution={args.resolution}"
        f"&from={from_s}&to={to_s}&countback={args.limit}"
    )
    try:
        reply = _request("GET", url)
    except (urllib.error.URLError, OSError) as e:
        console.print(f"[bold red]Server unreachable:[/] {e}")
        return 1

    if reply.get("s") == "no_data":
        console.print("[yellow]No data in range[/]")
        return 0
    if reply.get("s") != "ok":
        console.print(f"[bold red]FAIL {reply.get('error')}[/]")
        return 1

    candles = [
        {"timestamp": t * 1000, "open": o, "high": h, "low": l, "close": c, "volume": v}
        for t, o, h, l, c, v in zip(reply["t"], reply["o"], reply["h"], reply["l"], reply["c"], reply["v"])
    ]
    _print_candles(candles, f"History ({args.resolution})")
    return 0


def handle_manual(args) -> int:
    url = f"{_server_url(args)}/manual-control"
    try:
        if args.cancel:
            reply = _request("DELETE", url)
        else:
            if not args.direction:
                console.print("[yellow]Usage: market_cli.py manual {up|down|neutral} [--speed S] ... or --cancel[/]")
                return 1
            body = {"direction": args.direction, "speed": args.speed, "intensity": args.intensity}
            if args.duration is not None:
                body["duration_seconds"] = args.duration
            reply = _request("POST", url, body)
    except (urllib.error.URLError, OSError) as e:
        console.print(f"[bold red]Server unreachable:[/] {e}")
        return 1

    if not reply.get("success"):
        console.print(f"[bold red]FAIL {reply.get('error')}[/]")
        return 1
    console.print(f"[green]OK[/] {reply.get('message', '')}")
    if reply.get("data"):
        console.print_json(data=reply["data"])
    return 0


# ==================== Argument parsing ====================

def parse_cli_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Synthetic Market Feed CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if "Examples:" in __doc__ else None,
    )
    server = argparse.ArgumentParser(add_help=False)
    server.add_argument("--host", default=None, help="Server host (defaults to SERVER_HOST)")
    server.add_argument("--port", type=int, default=None, help="Server port (defaults to SERVER_PORT)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", parents=[server], help="Run the HTTP/WebSocket server")
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    simulate_parser = subparsers.add_parser("simulate", help="Back-fill candles on a simulated clock")
    simulate_parser.add_argument("--count", type=int, default=60, help="Number of candles")
    simulate_parser.add_argument("--seed", type=int, default=None, help="RNG seed")
    simulate_parser.add_argument("--no-persist", action="store_true", help="Do not write to the store")
    simulate_parser.add_argument("--show", type=int, default=10, help="Candles to print")

    subparsers.add_parser("status", parents=[server], help="Show the running server's status")

    history_parser = subparsers.add_parser("history", parents=[server], help="Print recent candles")
    history_parser.add_argument("--resolution", default="1", help="1, 5, 15, 60 or 1D")
    history_parser.add_argument("--limit", type=int, default=20, help="Max candles")
    history_parser.add_argument("--lookback", type=int, default=24 * 60, help="Minutes to look back")

    manual_parser = subparsers.add_parser("manual", parents=[server], help="Create or cancel a manual control")
    manual_parser.add_argument("direction", nargs="?", choices=["up", "down", "neutral"])
    manual_parser.add_argument("--speed", type=float, default=0.01)
    manual_parser.add_argument("--intensity", type=float, default=1.0)
    manual_parser.add_argument("--duration", type=int, default=None, help="Seconds")
    manual_parser.add_argument("--cancel", action="store_true", help="Cancel the active control")

    return parser.parse_args(argv)


HANDLERS = {
    "serve": handle_serve,
    "simulate": handle_simulate,
    "status": handle_status,
    "history": handle_history,
    "manual": handle_manual,
}


def main():
    """Main entry point."""
    args = parse_cli_args()

    config = get_config()
    setup_logger(config.log.log_dir, config.log.level)

    handler = HANDLERS.get(args.command)
    if handler is None:
        console.print("[yellow]Usage: market_cli.py {serve|simulate|status|history|manual} --help[/]")
        sys.exit(1)

    try:
        sys.exit(handler(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
