#!/usr/bin/env python3
"""
Run the recurring order scheduler against a database.

Loads the engine configuration, configures structured logging at the
configured level, creates missing tables and then either runs a single tick
(--once) or ticks on a background thread until interrupted.

Collaborators are supplied by a factory named as ``module:function``; the
function takes no arguments and returns a ``Collaborators`` bundle.

Usage:
  python3 scripts/run_scheduler.py --adapters myapp.adapters:build [--once]
      [--db-url sqlite:///recurring.db] [--config config/recurring_orders.yaml]
"""

import argparse
import importlib
import json
import os
import sys
import time
from dataclasses import asdict
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = os.environ.get("RECURRING_ORDERS_DB_URL", "sqlite:///recurring_orders.db")
DEFAULT_CONFIG = ROOT / "config" / "recurring_orders.yaml"


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the recurring order scheduler")
    p.add_argument(
        "--adapters",
        required=True,
        help="Collaborator factory as module:function",
    )
    p.add_argument(
        "--db-url",
        default=DB_URL,
        help=f"Database URL (default: {DB_URL!r}, or RECURRING_ORDERS_DB_URL)",
    )
    p.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG),
        help="Engine configuration YAML",
    )
    p.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick, print its summary and exit",
    )
    return p.parse_args()


def _load_factory(spec: str):
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(f"--adapters must look like module:function, got {spec!r}")
    return getattr(importlib.import_module(module_name), attr)


def main() -> int:
    args = _parse_args()

    import recurring_orders.models  # noqa: F401
    from procurement_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from procurement_kernel.exceptions import EngineConfigError
    from procurement_kernel.logging_config import configure_logging
    from recurring_orders.config import load_engine_config
    from recurring_orders.orchestrator import RecurringOrderOrchestrator

    try:
        config = load_engine_config(args.config)
        collaborators = _load_factory(args.adapters)()
    except (EngineConfigError, ImportError, AttributeError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    configure_logging(level=config.log_level)

    create_tables(init_engine_from_url(args.db_url))
    session_factory = get_session_factory()

    session = session_factory()
    try:
        scheduler = RecurringOrderOrchestrator.from_session(
            session, collaborators, config=config,
        ).create_scheduler(session_factory)

        if args.once:
            print(json.dumps(asdict(scheduler.tick())))
            return 0

        scheduler.start()
        try:
            while scheduler.is_running:
                time.sleep(1.0)
        except KeyboardInterrupt:
            pass
        finally:
            scheduler.stop()
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
