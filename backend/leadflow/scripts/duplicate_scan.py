from __future__ import annotations

import argparse
import json

from leadflow.db.session import SessionLocal
from leadflow.services.alerts import bulk_duplicate_scan


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Scan every lead for shared MBIs and raise missing duplicate alerts."
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report duplicate groups without keeping the alerts.",
    )
    args = parser.parse_args()

    session = SessionLocal()
    try:
        result = bulk_duplicate_scan(session)
        if args.dry_run:
            session.rollback()
        else:
            session.commit()
    finally:
        session.close()

    print(json.dumps(result.as_dict(), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
