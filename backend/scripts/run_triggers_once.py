#!/usr/bin/env python3
"""
Run one pass of the trigger engine without the API server.

  cd backend && python scripts/run_triggers_once.py                      # periodic pass
  cd backend && python scripts/run_triggers_once.py --triggers-only      # skip due notifications
  cd backend && python scripts/run_triggers_once.py --notification-id ID # deliver one notification
"""
import argparse
import json
import logging
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from portal.db.session import SessionLocal  # noqa: E402
from portal.services.push.registry import get_gateway  # noqa: E402
from portal.services.triggers.runner import TriggerRunner  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--notification-id", help="Deliver this pending notification only")
    parser.add_argument("--triggers-only", action="store_true", help="Evaluate triggers even if notifications are due")
    parser.add_argument("--provider", help="Override PUSH_PROVIDER (expo, apns)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    runner = TriggerRunner(get_gateway(args.provider))
    db = SessionLocal()
    try:
        if args.notification_id:
            summary = runner.process_notification_by_id(db, args.notification_id)
        elif args.triggers_only:
            summary = runner.run_triggers(db)
        else:
            summary = runner.run_periodic(db)
    finally:
        db.close()
    print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.success and not summary.errors else 1


if __name__ == "__main__":
    sys.exit(main())
