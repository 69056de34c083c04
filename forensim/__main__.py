#!/usr/bin/env python
"""Forensim CLI entry point.

Run with: python -m forensim
Or after installation: forensim

Usage:
    forensim serve [--host H] [--port P] [--metrics]   Start the SSH console
    forensim play --user U [--scenario S]              Local console session
    forensim scenarios list                            List scenarios
    forensim leaderboard [--limit N]                   Show top learners
    forensim reset --user U [--scenario S]             Reset a learner

Options:
    --log-level LEVEL   Logging level (default: INFO)
    --db PATH           SQLite database (default: FORENSIM_DB_PATH)
    --scenarios PATH    Scenario JSON file (default: bundled scenarios)
    --version           Show version and exit
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from colorama import Fore, Style, init as colorama_init

from . import __version__
from .config import Config, get_config
from .errors import ForensimError
from .events import EventSink, JsonlEventSink

LOGGER = logging.getLogger("forensim")


def setup_logging(level: str, config: Optional[Config] = None) -> None:
    """Configure logging for the application."""
    logging_config = (config or get_config()).logging
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    handlers: list = [logging.StreamHandler(sys.stderr)]
    if logging_config.file is not None:
        logging_config.file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(logging_config.file, encoding="utf-8"))
    logging.basicConfig(level=numeric_level, format=logging_config.format, handlers=handlers)
    # Paramiko is chatty at DEBUG
    logging.getLogger("paramiko").setLevel(max(numeric_level, logging.WARNING))


def print_banner() -> None:
    """Print the Forensim startup banner."""
    banner = r"""
    _____                          _
   |  ___|__  _ __ ___ _ __  ___(_)_ __ ___
   | |_ / _ \| '__/ _ \ '_ \/ __| | '_ ` _ \
   |  _| (_) | | |  __/ | | \__ \ | | | | | |
   |_|  \___/|_|  \___|_| |_|___/_|_| |_| |_|
    Forensic Investigation Training Console v{}
    """.format(__version__)
    print(Fore.CYAN + banner + Style.RESET_ALL)


def build_engine(config: Config):
    """Wire store, catalog, events and metrics into a TrainingEngine."""
    from .engine import TrainingEngine
    from .scenarios import ScenarioCatalog
    from .store import Store

    store = Store(config.storage.db_path)
    catalog = ScenarioCatalog(path=config.storage.scenarios_path)
    events_path = config.storage.events_path
    sink = JsonlEventSink(events_path) if events_path is not None else EventSink()
    return TrainingEngine(store, catalog, config=config, event_sink=sink)


# =============================================================================
# CLI Commands
# =============================================================================


def cmd_serve(args: argparse.Namespace, config: Config) -> int:
    """Run the SSH learner console."""
    from .metrics import start_metrics_server
    from .server import TrainingServer

    print_banner()
    engine = build_engine(config)
    if args.metrics or config.metrics.enabled:
        start_metrics_server(port=config.metrics.port, host=config.metrics.host)

    server = TrainingServer(engine, host=args.host, port=args.port, config=config)
    shown_host = server.host if server.host != "0.0.0.0" else "127.0.0.1"
    print(Fore.GREEN + f"[+] Forensim listening on {server.host}:{server.port}" + Style.RESET_ALL)
    print(f"Connect with: ssh <your-name>@{shown_host} -p {server.port}")
    print("Press Ctrl+C to stop\n")

    try:
        server.run()
    except OSError:
        return 1
    except KeyboardInterrupt:
        LOGGER.info("Received interrupt signal, shutting down...")
        server.shutdown()
    finally:
        engine.store.close()
    return 0


def cmd_play(args: argparse.Namespace, config: Config) -> int:
    """Run a console session in this terminal."""
    from .console import ConsoleSession

    engine = build_engine(config)
    try:
        console = ConsoleSession(engine, args.user, args.scenario)
        print(console.banner())
    except ForensimError as exc:
        print(Fore.RED + str(exc) + Style.RESET_ALL)
        engine.store.close()
        return 1

    engine.metrics.record_session_start("local")
    started = time.time()
    try:
        while not console.closed:
            try:
                line = input(console.prompt())
            except EOFError:
                print()
                break
            except KeyboardInterrupt:
                print("^C")
                continue
            if line.strip() == "clear":
                print("\033[2J\033[H", end="")
                continue
            output = console.handle_line(line)
            if output:
                print(output)
    finally:
        engine.metrics.record_session_end(time.time() - started)
        engine.store.close()
    return 0


def cmd_scenarios_list(args: argparse.Namespace, config: Config) -> int:
    """List the scenarios in the catalog."""
    from .scenarios import load_scenarios

    try:
        scenarios = load_scenarios(config.storage.scenarios_path)
    except (OSError, ValueError) as exc:
        print(f"Error loading scenarios from {config.storage.scenarios_path}: {exc}")
        return 1

    print()
    print(f"{'ID':<24} {'TASKS':<6} {'POINTS':<7} {'BADGE':<22} TITLE")
    print("-" * 90)
    for scenario in scenarios.values():
        points = sum(task.points for task in scenario.tasks)
        print(
            f"{scenario.id:<24} {len(scenario.tasks):<6} {points:<7} "
            f"{scenario.badge or '-':<22} {scenario.title}"
        )
    print()
    print(f"Total: {len(scenarios)} scenario(s)")
    return 0


def cmd_leaderboard(args: argparse.Namespace, config: Config) -> int:
    """Print the leaderboard."""
    engine = build_engine(config)
    try:
        entries = engine.leaderboard(args.limit)
    finally:
        engine.store.close()

    if not entries:
        print("No scores yet.")
        return 0
    print()
    print(f"{'RANK':<6} {'USER':<24} {'SCORE':<8} TASKS")
    print("-" * 50)
    for rank, entry in enumerate(entries, start=1):
        print(f"{rank:<6} {entry.user_id:<24} {entry.total_score:<8} {entry.tasks_completed}")
    print()
    return 0


def cmd_reset(args: argparse.Namespace, config: Config) -> int:
    """Reset one scenario session, or all progress of a learner."""
    engine = build_engine(config)
    try:
        if args.scenario:
            engine.reset_session(args.user, args.scenario)
            print(f"Session of {args.user} in {args.scenario} reset.")
        else:
            engine.reset_user(args.user)
            for scenario_id in engine.catalog.ids():
                engine.reset_session(args.user, scenario_id)
            print(f"All progress of {args.user} deleted.")
    except ForensimError as exc:
        print(Fore.RED + f"Error: {exc}" + Style.RESET_ALL)
        return 1
    finally:
        engine.store.close()
    return 0


# =============================================================================
# Main CLI
# =============================================================================


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    colorama_init(autoreset=True)

    parser = argparse.ArgumentParser(
        prog="forensim",
        description="Forensim - Forensic Investigation Training Console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    forensim serve                         Start the SSH console on port 2222
    forensim play --user alice             Play the default scenario locally
    forensim scenarios list                List available scenarios
    forensim leaderboard --limit 10        Show the top 10 learners

Environment variables:
    FORENSIM_DB_PATH          SQLite database file
    FORENSIM_SCENARIOS_PATH   Scenario definitions (JSON)
    FORENSIM_SSH_PORT         SSH port
    FORENSIM_LOG_LEVEL        Logging level
        """,
    )
    parser.add_argument(
        "--log-level",
        "-l",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO, or FORENSIM_LOG_LEVEL)",
    )
    parser.add_argument("--db", default=None, help="SQLite database path")
    parser.add_argument("--scenarios", default=None, help="Scenario JSON file")
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"Forensim {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the SSH learner console")
    serve_parser.add_argument("--host", default=None, help="SSH bind address")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="SSH port")
    serve_parser.add_argument(
        "--metrics", action="store_true", help="Expose Prometheus metrics"
    )
    serve_parser.set_defaults(func=cmd_serve)

    play_parser = subparsers.add_parser("play", help="Play in this terminal")
    play_parser.add_argument("--user", "-u", required=True, help="Learner id")
    play_parser.add_argument("--scenario", "-s", default=None, help="Scenario id")
    play_parser.set_defaults(func=cmd_play)

    scenarios_parser = subparsers.add_parser("scenarios", help="Inspect scenarios")
    scenarios_subparsers = scenarios_parser.add_subparsers(
        dest="scenarios_command", help="Scenario commands"
    )
    list_parser = scenarios_subparsers.add_parser("list", help="List scenarios")
    list_parser.set_defaults(func=cmd_scenarios_list)

    leaderboard_parser = subparsers.add_parser("leaderboard", help="Show the leaderboard")
    leaderboard_parser.add_argument("--limit", "-n", type=int, default=10)
    leaderboard_parser.set_defaults(func=cmd_leaderboard)

    reset_parser = subparsers.add_parser("reset", help="Reset learner progress")
    reset_parser.add_argument("--user", "-u", required=True, help="Learner id")
    reset_parser.add_argument("--scenario", "-s", default=None, help="Only this scenario's session")
    reset_parser.set_defaults(func=cmd_reset)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "scenarios" and args.scenarios_command is None:
        scenarios_parser.print_help()
        return 0

    config = get_config()
    if args.db:
        config.storage.db_path = Path(args.db)
    if args.scenarios:
        config.storage.scenarios_path = Path(args.scenarios)

    setup_logging(args.log_level or config.logging.level, config)
    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
