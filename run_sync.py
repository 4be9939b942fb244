"""
Manual channel sync for one property.

Usage:
    python run_sync.py <property_id> [inventory|rates|availability|all]

Example:
    python run_sync.py 3f2a... all
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from channel_sync.config import settings
from channel_sync.database import SessionLocal, create_tables
from channel_sync.services.registry import close_default_registry
from channel_sync.services.sync_orchestrator import SyncPreconditionError, build_orchestrator
from channel_sync.utils.logging_config import setup_logging

SYNC_TYPES = ("inventory", "rates", "availability", "all")


def print_results(sync_type, results):
    print(f"\n{sync_type}:")
    if not results:
        print("  (no channels attempted)")
    for result in results:
        marker = "OK  " if result.success else "FAIL"
        print(f"  [{marker}] channel {result.channel_id}: {result.message}")
        for error in result.errors:
            print(f"         error: {error}")
        for warning in result.warnings:
            print(f"         warning: {warning}")


def main() -> int:
    if len(sys.argv) < 2 or (len(sys.argv) > 2 and sys.argv[2] not in SYNC_TYPES):
        print(__doc__)
        return 2

    property_id = sys.argv[1]
    sync_type = sys.argv[2] if len(sys.argv) > 2 else "all"

    setup_logging(level=settings.log_level, json_format=False, include_uvicorn=False)
    create_tables()

    db = SessionLocal()
    try:
        orchestrator = build_orchestrator(db)

        print("=" * 50)
        print(f"Syncing {sync_type} for property {property_id}")
        print("=" * 50)

        if sync_type == "all":
            for name, results in orchestrator.sync_all(property_id).items():
                print_results(name, results)
        elif sync_type == "inventory":
            print_results(sync_type, orchestrator.sync_inventory(property_id))
        elif sync_type == "rates":
            print_results(sync_type, orchestrator.sync_rates(property_id))
        else:
            print_results(sync_type, orchestrator.sync_availability(property_id))

    except SyncPreconditionError as e:
        print(f"Cannot sync: {e}")
        return 1
    finally:
        db.close()
        close_default_registry()

    return 0


if __name__ == "__main__":
    sys.exit(main())
