#!/usr/bin/env python3
"""
Speedtest exporter -- network speed and latency metrics for Prometheus.

Usage::

    python exporter.py                          # serve on 0.0.0.0:9090
    python exporter.py -c exporter.toml         # load a config file
    python exporter.py --port 9100              # override the listen port
    python exporter.py --log-level DEBUG        # per-chunk detail
    python exporter.py --print-default-config   # dump the defaults as JSON

Scrape ``/ping`` and ``/speedtest``; each request runs a fresh measurement.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from aiohttp import web
from rich.console import Console
from rich.panel import Panel

from measure.config import Config, default_config_dict, load_config
from measure.errors import ConfigError
from web.app import create_app
from web.logging_setup import configure_logging

logger = logging.getLogger("exporter")

console = Console()


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------

def print_startup_banner(config: Config) -> None:
    host = config.server.address
    base = f"http://{host}:{config.server.port}"
    directions = ", ".join(config.speedtest.directions)
    console.print(
        Panel.fit(
            "[bold cyan]Speedtest Exporter[/bold cyan]\n"
            f"[dim]Listening on[/dim] {base}\n"
            f"[dim]Latency[/dim]    {base}/ping   "
            f"[dim]({len(config.ping.targets)} targets)[/dim]\n"
            f"[dim]Throughput[/dim] {base}/speedtest   [dim]({directions})[/dim]",
            border_style="cyan",
        )
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Speedtest exporter -- network speed and latency metrics for Prometheus",
    )
    parser.add_argument("--config", "-c", type=str, metavar="FILE", help="TOML or JSON configuration file")
    parser.add_argument("--address", type=str, metavar="ADDR", help="Listen address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, metavar="PORT", help="Listen port (default: 9090)")
    parser.add_argument(
        "--log-level",
        type=str,
        metavar="LEVEL",
        help="DEBUG, INFO, WARNING, ERROR or CRITICAL (default: from config, else INFO)",
    )
    parser.add_argument(
        "--print-default-config",
        action="store_true",
        help="Print the default configuration as JSON and exit",
    )
    return parser


def resolve_config(args: argparse.Namespace) -> Config:
    """Load the config file (or defaults) and apply command-line overrides."""
    config = load_config(args.config)
    if args.address is not None:
        config.server.address = args.address
    if args.port is not None:
        config.server.port = args.port
    if args.log_level is not None:
        config.logging.level = args.log_level
    return config.validate()


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    if args.print_default_config:
        print(json.dumps(default_config_dict(), indent=2))
        return

    try:
        config = resolve_config(args)
    except ConfigError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    configure_logging(config.logging.level)
    print_startup_banner(config)

    app = create_app(config)
    try:
        web.run_app(
            app,
            host=config.server.address,
            port=config.server.port,
            handler_cancellation=True,
            access_log=None,
            print=None,
        )
    except OSError as exc:
        console.print(f"[red]Error: cannot listen on {config.server.address}:{config.server.port}: {exc}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
