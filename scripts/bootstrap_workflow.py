#!/usr/bin/env python3
"""
One-time workflow setup: create tables, seed the configured workflow stages,
and validate the purchase order transition table against them.

Existing stages are left untouched, so the script is safe to re-run.

Usage:
  python3 scripts/bootstrap_workflow.py [--config PATH] [--db-url URL]

Environment:
  PROCUREMENT_DATABASE_URL and the other PROCUREMENT_* overrides apply.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed workflow stages and validate the purchase order workflow")
    p.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file (default: bundled defaults.yaml)",
    )
    p.add_argument(
        "--db-url",
        default=None,
        help="Database URL (default: from configuration / PROCUREMENT_DATABASE_URL)",
    )
    p.add_argument(
        "--echo",
        action="store_true",
        help="Log SQL statements",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from procurement_config import get_active_config
    from procurement_kernel.db.engine import get_session, init_engine_from_url
    from procurement_kernel.exceptions import WorkflowConfigurationError
    from procurement_modules._orm_registry import create_all_tables
    from procurement_modules.purchase_orders.stages import bootstrap_workflow

    config = get_active_config(args.config)
    db_url = args.db_url or config.database_url

    print()
    print("  [1/3] Connecting to database...")
    try:
        init_engine_from_url(db_url, echo=args.echo)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print("  [2/3] Creating tables...")
    create_all_tables()

    print("  [3/3] Seeding stages and validating workflow...")
    session = get_session()
    try:
        stages = bootstrap_workflow(session, config.stages)
        session.commit()
    except WorkflowConfigurationError as exc:
        session.rollback()
        print(f"  ERROR: {exc}", file=sys.stderr)
        for problem in exc.problems:
            print(f"    - {problem}", file=sys.stderr)
        return 2
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    print()
    for stage in stages:
        actions = ", ".join(sorted(stage.allowed_actions)) or "-"
        print(f"  {stage.sequence:>3}  {stage.code:<18} {stage.name:<24} [{actions}]")
    print()
    print(f"  OK: {len(stages)} stages registered")
    return 0


if __name__ == "__main__":
    sys.exit(main())
