#!/usr/bin/env python3
"""
WalkSim - Simulated pedestrian walk along a fixed route

Usage:
    python -m walksim ROUTE [options]
    python -m walksim --resume [options]

ROUTE is a GPX file (track or route points) or a JSON list of [lat, lon] pairs.

Options:
    --speed KMH         Walking speed in km/h (default: 5.0)
    --interval MS       Milliseconds between position fixes (default: 1000)
    --resume            Resume the walk saved by an interrupted run
    --status            Show the saved walk and exit
    --clear             Drop the saved walk and exit
    --steps             Show today's step total from the ledger and exit
    --map FILE          Render the saved walk to an HTML map and exit
    --html FILE         Render the walk to an HTML map when it ends
    --record FILE       Record every emitted fix to a JSON trace file
    --log FILE          Log file path
    --ledger-url URL    Sync steps to an HTTP ledger instead of the local database
    --state-db PATH     Progress store database (default: walksim_state.db)
    --ledger-db PATH    Local step ledger database (default: walksim_ledger.db)
    -v, --verbose       Echo log lines to the console

Ctrl+C interrupts the walk but keeps it saved, so --resume picks it up again.
"""

import argparse
import sys
from pathlib import Path

from .config import CONFIG
from .errors import InvalidRoute, InvalidSpeed, PersistenceFailure
from .geo import bearing_to_compass
from .ledger import HttpStepLedger, SQLiteStepLedger
from .logger import Logger
from .models import LocationUpdate
from .recorder import PathRecorder
from .remaining import follow_path, format_estimated_time
from .route import Route, load_route
from .service import WalkSession
from .state import ProgressStore
from .viewer import create_walk_map


def _print_saved_walk(store: ProgressStore):
    saved = store.restore()
    if saved is None:
        print("No saved walk.")
        return
    route = Route(saved.route)
    current = saved.path_history[-1] if saved.path_history else route[0]
    remaining = max(0.0, route.total_distance - follow_path(route, saved.path_history))
    print("Saved walk:")
    print(f"  Route: {len(route)} points, {route.total_distance:.0f}m")
    print(f"  Speed: {saved.speed_kmh:.1f} km/h")
    print(f"  Walked path: {len(saved.path_history)} points")
    print(f"  Position: {current.lat:.6f}, {current.lon:.6f}")
    print(f"  Remaining: {remaining:.0f}m ({format_estimated_time(saved.speed_kmh, remaining)} left)")


def _save_map(path: str, route: Route, path_history, speed_kmh: float):
    m = create_walk_map(route, path_history, speed_kmh=speed_kmh)
    m.save(path)
    print(f"Map saved to: {path}")
    print(f"Open in browser: file://{Path(path).absolute()}")


def main():
    parser = argparse.ArgumentParser(
        description="WalkSim - Simulated pedestrian walk along a fixed route"
    )
    parser.add_argument("route", nargs="?", metavar="ROUTE",
                        help="Route file (.gpx or .json)")
    parser.add_argument("--speed", type=float, default=CONFIG["default_speed_kmh"],
                        help=f"Walking speed in km/h (default: {CONFIG['default_speed_kmh']})")
    parser.add_argument("--interval", type=float, metavar="MS",
                        help=f"Milliseconds between fixes (default: {CONFIG['tick_interval_ms']})")
    parser.add_argument("--resume", action="store_true",
                        help="Resume the saved walk")
    parser.add_argument("--status", action="store_true",
                        help="Show the saved walk and exit")
    parser.add_argument("--clear", action="store_true",
                        help="Drop the saved walk and exit")
    parser.add_argument("--steps", action="store_true",
                        help="Show today's step total from the ledger and exit")
    parser.add_argument("--map", metavar="FILE",
                        help="Render the saved walk to an HTML map and exit")
    parser.add_argument("--html", metavar="FILE",
                        help="Render the walk to an HTML map when it ends")
    parser.add_argument("--record", metavar="FILE",
                        help="Record emitted fixes to a JSON trace file")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path")
    parser.add_argument("--ledger-url", metavar="URL",
                        help="HTTP step ledger base URL")
    parser.add_argument("--state-db", default=CONFIG["state_db_path"],
                        help=f"Progress store database (default: {CONFIG['state_db_path']})")
    parser.add_argument("--ledger-db", default=CONFIG["ledger_db_path"],
                        help=f"Local step ledger database (default: {CONFIG['ledger_db_path']})")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Echo log lines to the console")

    args = parser.parse_args()

    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be positive")

    try:
        store = ProgressStore(args.state_db)
    except PersistenceFailure as e:
        print(f"Error: {e}")
        return 1

    # Store-only commands: early exit
    if args.clear:
        store.clear()
        print("Saved walk cleared.")
        store.close()
        return 0

    if args.status:
        _print_saved_walk(store)
        store.close()
        return 0

    if args.map:
        saved = store.restore()
        store.close()
        if saved is None:
            print("No saved walk to render.")
            return 1
        _save_map(args.map, Route(saved.route), saved.path_history, saved.speed_kmh)
        return 0

    if args.ledger_url:
        ledger = HttpStepLedger(args.ledger_url)
    else:
        ledger = SQLiteStepLedger(args.ledger_db)

    logger = Logger(args.log, echo=args.verbose)
    session = WalkSession(store, ledger, logger=logger, tick_interval_ms=args.interval)

    if args.steps:
        print(f"Steps today: {session.steps_today():,}")
        ledger.close()
        store.close()
        logger.close()
        return 0

    if not args.route and not args.resume:
        parser.error("a ROUTE file is required unless --resume is given")

    def print_fix(update: LocationUpdate):
        status = session.status()
        marker = f" [vertex {update.vertex_index}]" if update.vertex_index is not None else ""
        print(f"{update.point.lat:.6f}, {update.point.lon:.6f}  "
              f"heading {bearing_to_compass(update.bearing)} ({update.bearing:.0f}°)  "
              f"{status['remaining_distance']:.0f}m / {status['remaining_time']} left  "
              f"steps {status['walk_steps']:,}{marker}")

    session.add_sink(print_fix)
    recorder = PathRecorder(args.record) if args.record else None
    if recorder:
        session.add_sink(recorder)

    started = False
    try:
        if args.resume:
            started = session.resume()
            if not started:
                print("No saved walk to resume.")
            else:
                print(f"\n=== WalkSim: resuming at {session.speed_kmh:.1f} km/h ===")
        else:
            route = load_route(args.route)
            print(f"\n=== WalkSim: {route.total_distance:.0f}m at {args.speed:.1f} km/h ===")
            session.start(route, args.speed)
            started = True
    except (InvalidRoute, InvalidSpeed, PersistenceFailure, OSError) as e:
        print(f"Error: {e}")

    if not started:
        ledger.close()
        store.close()
        logger.close()
        return 1

    print("Press Ctrl+C to stop (the walk stays saved for --resume)")
    print()

    try:
        while not session.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("\nWalk interrupted")
        session.stop(clear_state=False)
    finally:
        if recorder:
            recorder.save()
        if args.html and session.route:
            _save_map(args.html, session.route, list(session.path_history), session.speed_kmh)

        status = session.status()
        print("\nWalk summary:")
        print(f"  Phase: {status['phase']}")
        print(f"  Distance: {session.steps.stats.total_distance:.0f}m")
        print(f"  Steps: {status['walk_steps']:,}")
        print(f"  Remaining: {status['remaining_distance']:.0f}m")
        if status["durability_degraded"]:
            print("  Warning: progress could not be saved during the walk")

        ledger.close()
        store.close()
        logger.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
