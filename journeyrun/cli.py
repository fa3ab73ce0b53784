"""CLI tools for journeyrun.

Commands:
- init: Initialize a new database
- load-graph: Load a journey graph from JSON
- journeys: List stored journeys
- runs: List runs
- state: Print the session view for a run
- states: List block states for a run
- restart: Restart a run from its start block
- export: Export a run to JSONL
- serve: Start the API server
- doctor: Run health checks on the database
"""

import argparse
import logging
import os
import sys
from multiprocessing import freeze_support
from pathlib import Path

from journeyrun.engine.orchestrator import JourneyOrchestrator
from journeyrun.errors import GraphIntegrityError, JourneyError
from journeyrun.models.records import JourneyStatus
from journeyrun.store.json_io import export_run_jsonl, import_journey_file
from journeyrun.store.sqlite_store import JourneyStore


DEFAULT_DB = os.environ.get("JOURNEYRUN_DB", "journeyrun.db")
DEFAULT_LOG_LEVEL = os.environ.get("JOURNEYRUN_LOG_LEVEL", "WARNING")


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize a new database."""
    db_path = Path(args.db)

    if db_path.exists() and not args.force:
        print(f"Database already exists: {db_path}")
        print("Use --force to overwrite.")
        return 1

    if db_path.exists():
        db_path.unlink()

    store = JourneyStore(db_path)
    store.close()
    print(f"Initialized database: {db_path}")
    return 0


def cmd_load_graph(args: argparse.Namespace) -> int:
    """Load a journey graph from a JSON file."""
    input_path = Path(args.input)

    if not input_path.exists():
        print(f"Input file not found: {input_path}")
        return 1

    store = JourneyStore(args.db)
    try:
        record = import_journey_file(
            store,
            input_path,
            journey_id=args.journey_id,
            module_id=args.module_id,
            status=JourneyStatus(args.status),
            version=args.version,
        )
        print(
            f"Loaded journey {record.journey_id} "
            f"({len(record.graph.blocks)} blocks, {len(record.graph.edges)} edges)"
        )
        return 0
    except GraphIntegrityError as e:
        print("Graph rejected:")
        for problem in e.problems:
            print(f"  {problem}")
        return 1
    except ValueError as e:
        print(f"Load error: {e}")
        return 1
    finally:
        store.close()


def cmd_journeys(args: argparse.Namespace) -> int:
    """List stored journeys."""
    store = JourneyStore(args.db)
    try:
        journeys = store.list_journeys()

        if not journeys:
            print("No journeys found.")
            return 0

        for record in journeys:
            print(f"{record.journey_id}")
            print(f"  Module: {record.module_id or '(none)'}")
            print(f"  Version: {record.version} ({record.status.value})")
            print(f"  Blocks: {len(record.graph.blocks)}")
            print()

        return 0
    finally:
        store.close()


def cmd_runs(args: argparse.Namespace) -> int:
    """List runs, optionally filtered by user or journey."""
    store = JourneyStore(args.db)
    try:
        runs = store.list_runs(user_id=args.user, journey_id=args.journey)

        if not runs:
            print("No runs found.")
            return 0

        for run in runs:
            print(f"{run.id}")
            print(f"  User: {run.user_id}")
            print(f"  Journey: {run.journey_id}")
            print(f"  Status: {run.status.value}")
            print(f"  Current block: {run.current_block_id}")
            print()

        return 0
    finally:
        store.close()


def cmd_state(args: argparse.Namespace) -> int:
    """Print the session view for a run."""
    store = JourneyStore(args.db)
    try:
        orchestrator = JourneyOrchestrator(store)
        try:
            orchestrator.open(args.run_id)
        except JourneyError as e:
            print(f"Cannot load run: {e}")
            return 1

        view = orchestrator.view()
        if args.json:
            print(view.model_dump_json(indent=2))
        else:
            _print_view_summary(view)

        return 0
    finally:
        store.close()


def _print_view_summary(view) -> None:
    """Print a human-readable session summary."""
    run = view.run
    print(f"Run: {run.id}")
    print(f"User: {run.user_id}")
    print(f"Journey: {run.journey_id}")
    print(f"Status: {run.status.value}")
    print(f"Progress: {view.progress.completed}/{view.progress.total} blocks")
    print()

    if view.block is not None:
        block = view.block
        print("=== Current block ===")
        print(f"  {block.block_id} ({block.type})")
        if block.title:
            print(f"  Title: {block.title}")
        print(f"  Completed before: {block.is_completed}")
        if block.fallback_message:
            print(f"  Note: {block.fallback_message}")
        if block.remediation and block.remediation.weak_topics:
            print(f"  Weak topics: {', '.join(block.remediation.weak_topics)}")
        print()

    if view.stats is not None:
        s = view.stats
        print("=== Completed ===")
        print(f"  Blocks completed: {s.blocks_completed}")
        print(f"  Average score: {s.average_score}")
        print(f"  Total time: {s.total_time_seconds}s")
        if view.next_module is not None:
            print(f"  Next module: {view.next_module.title} ({view.next_module.version_id})")


def cmd_states(args: argparse.Namespace) -> int:
    """List block states for a run."""
    store = JourneyStore(args.db)
    try:
        if store.get_run(args.run_id) is None:
            print(f"Run not found: {args.run_id}")
            return 1

        states = store.list_block_states(args.run_id)
        if not states:
            print("No block states recorded.")
            return 0

        for state in states:
            score = "-" if state.score is None else f"{state.score:g}"
            print(
                f"{state.block_id}: {state.status.value} "
                f"attempts={state.attempts_count} score={score} "
                f"time={state.time_spent_seconds}s"
            )

        return 0
    finally:
        store.close()


def cmd_restart(args: argparse.Namespace) -> int:
    """Restart a run from its journey's start block."""
    store = JourneyStore(args.db)
    try:
        orchestrator = JourneyOrchestrator(store)
        try:
            orchestrator.open(args.run_id)
            orchestrator.restart()
        except JourneyError as e:
            print(f"Restart failed: {e}")
            return 1

        print(f"Restarted run {args.run_id} at {orchestrator.graph.start_block_id}")
        return 0
    finally:
        store.close()


def cmd_export(args: argparse.Namespace) -> int:
    """Export a run and its block states to JSONL."""
    output_path = Path(args.output)

    store = JourneyStore(args.db)
    try:
        if store.get_run(args.run_id) is None:
            print(f"Run not found: {args.run_id}")
            return 1

        count = export_run_jsonl(store, args.run_id, output_path)
        print(f"Exported {count} records to {output_path}")
        return 0
    finally:
        store.close()


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn
        from journeyrun.api.main import create_app
    except ImportError:
        print("uvicorn not installed. Run: pip install uvicorn")
        return 1

    app = create_app(args.db)
    print(f"Starting journeyrun API server on http://{args.host}:{args.port}")
    print(f"Database: {args.db}")

    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    """Run health checks on the database.

    Checks:
    1. Graph integrity for every stored journey
    2. Run pointers (journey exists, current block exists in the graph)
    3. Block states whose run is gone
    """
    db_path = Path(args.db)

    if not db_path.exists():
        print(f"ERROR: Database not found: {db_path}")
        return 1

    print(f"Checking database: {db_path}")
    print("=" * 50)

    issues = []
    warnings = []

    store = JourneyStore(db_path)
    try:
        journeys = {record.journey_id: record for record in store.list_journeys()}
        print(f"Journeys found: {len(journeys)}")

        # Check 1: Graph integrity
        for journey_id, record in journeys.items():
            for problem in record.graph.integrity_problems():
                issues.append(f"[{journey_id}] {problem}")

        # Check 2: Run pointers
        runs = store.list_runs()
        print(f"Runs found: {len(runs)}")
        for run in runs:
            record = journeys.get(run.journey_id)
            if record is None:
                issues.append(f"[{run.id}] Journey not found: {run.journey_id}")
                continue
            if record.graph.get_block(run.current_block_id) is None:
                issues.append(
                    f"[{run.id}] Dangling current_block_id: {run.current_block_id}"
                )
            for state in store.list_block_states(run.id):
                if record.graph.get_block(state.block_id) is None:
                    warnings.append(
                        f"[{run.id}] Block state for unknown block: {state.block_id}"
                    )

        # Check 3: Orphan block states
        orphans = store.list_orphan_block_states()
        for state in orphans:
            issues.append(f"[{state.run_id}] Orphan block state {state.id} ({state.block_id})")

        print("=" * 50)

        if warnings:
            print(f"\nWarnings ({len(warnings)}):")
            for w in warnings:
                print(f"  [WARN] {w}")

        if issues:
            print(f"\nIssues ({len(issues)}):")
            for issue in issues:
                print(f"  [FAIL] {issue}")
            print("\nDiagnosis: UNHEALTHY")
            return 1
        else:
            print("\n[OK] All checks passed")
            print("Diagnosis: HEALTHY")
            return 0

    finally:
        store.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="journeyrun CLI - branching learning-journey engine",
        prog="journeyrun",
    )
    parser.add_argument(
        "--db",
        default=DEFAULT_DB,
        help=f"Database path (default: {DEFAULT_DB})",
    )
    parser.add_argument(
        "--log-level",
        default=DEFAULT_LOG_LEVEL,
        help=f"Logging level (default: {DEFAULT_LOG_LEVEL})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    init_parser = subparsers.add_parser("init", help="Initialize database")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing")

    # load-graph
    load_parser = subparsers.add_parser("load-graph", help="Load a journey graph from JSON")
    load_parser.add_argument("input", help="Input JSON file")
    load_parser.add_argument("--journey-id", help="Journey id (default: file stem)")
    load_parser.add_argument("--module-id", help="Owning module id")
    load_parser.add_argument(
        "--status",
        default=JourneyStatus.PUBLISHED.value,
        choices=[s.value for s in JourneyStatus],
        help="Publication status (default: published)",
    )
    load_parser.add_argument("--version", type=int, default=1, help="Version number")

    # journeys
    subparsers.add_parser("journeys", help="List journeys")

    # runs
    runs_parser = subparsers.add_parser("runs", help="List runs")
    runs_parser.add_argument("--user", help="Filter by user id")
    runs_parser.add_argument("--journey", help="Filter by journey id")

    # state
    state_parser = subparsers.add_parser("state", help="Print session view for a run")
    state_parser.add_argument("run_id", help="Run to show")
    state_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # states
    states_parser = subparsers.add_parser("states", help="List block states for a run")
    states_parser.add_argument("run_id", help="Run to show")

    # restart
    restart_parser = subparsers.add_parser("restart", help="Restart a run")
    restart_parser.add_argument("run_id", help="Run to restart")

    # export
    export_parser = subparsers.add_parser("export", help="Export a run to JSONL")
    export_parser.add_argument("run_id", help="Run to export")
    export_parser.add_argument("--output", "-o", required=True, help="Output file")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    # doctor
    subparsers.add_parser("doctor", help="Run health checks on database")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "load-graph": cmd_load_graph,
        "journeys": cmd_journeys,
        "runs": cmd_runs,
        "state": cmd_state,
        "states": cmd_states,
        "restart": cmd_restart,
        "export": cmd_export,
        "serve": cmd_serve,
        "doctor": cmd_doctor,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    freeze_support()
    sys.exit(main())
