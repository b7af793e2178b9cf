#!/usr/bin/env python3
"""
Quick checks so the backend can start. Run from repo root or backend/:
  cd backend && python scripts/check_backend.py
"""
import os
import sys
from pathlib import Path

# Run from backend/
backend_dir = Path(__file__).resolve().parent.parent
os.chdir(backend_dir)
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


def main():
    errors = []

    # 1) .env
    env_file = backend_dir / ".env"
    if not env_file.exists():
        errors.append("backend/.env missing. Create it and set DATABASE_URL, PUSH_PROVIDER, etc.")
    else:
        print("OK  .env exists")

    # 2) DB connection and migrated tables
    try:
        from sqlalchemy import inspect, text

        from portal.db.session import engine
        from portal.db.tables import ALL_TABLE_NAMES

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("OK  Database connection (DATABASE_URL)")
        missing = sorted(set(ALL_TABLE_NAMES) - set(inspect(engine).get_table_names()))
        if missing:
            errors.append(f"Missing tables {missing}. Run: cd backend && alembic upgrade head")
            print("FAIL Missing tables:", ", ".join(missing))
        else:
            print("OK  All tables present")
    except Exception as e:
        errors.append(f"Database: {e}")
        print("FAIL Database:", e)

    # 3) Delivery gateway config
    try:
        from portal.config import settings
        from portal.services.push.registry import get_gateway

        get_gateway()
        if settings.push_provider == "apns" and not (settings.apns_key_id and settings.apns_team_id and settings.apns_bundle_id):
            errors.append("PUSH_PROVIDER=apns but APNS_KEY_ID / APNS_TEAM_ID / APNS_BUNDLE_ID are not all set")
            print("FAIL APNs credentials incomplete")
        else:
            print(f"OK  Push provider ({settings.push_provider})")
    except Exception as e:
        errors.append(f"Push provider: {e}")
        print("FAIL Push provider:", e)

    # 4) App import (catches missing deps, bad imports)
    try:
        from portal.main import app  # noqa: F401
        print("OK  App import (portal.main)")
    except Exception as e:
        errors.append(f"App import: {e}")
        print("FAIL App import:", e)
        print("\nFix the above, then run:")
        print("  cd backend && uvicorn portal.main:app --reload --host 0.0.0.0 --port 8000")
        return 1

    if errors:
        print("\n---")
        for e in errors:
            print("•", e)
        return 1

    print("\nAll checks passed. Start with: cd backend && uvicorn portal.main:app --reload")
    return 0


if __name__ == "__main__":
    sys.exit(main())
