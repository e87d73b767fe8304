from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from leadflow.db.session import SessionLocal
from leadflow.models.batch_job import UploadKind
from leadflow.services.reconciliation.pipeline import run_pipeline
from leadflow.services.reconciliation.source import read_rows_from_path
from leadflow.services.side_effects import SideEffects


def _print_summary(payload: dict[str, object], *, file=None) -> None:
    file = file or sys.stderr
    print(f"Reconciliation ({payload.get('kind')})", file=file)
    for key in ("total_rows", "processed", "created", "updated", "unchanged", "error_count"):
        print(f"  {key}: {payload.get(key)}", file=file)
    counts = payload.get("counts") or {}
    for key, value in sorted(counts.items()):
        print(f"  {key}: {value}", file=file)
    for error in payload.get("errors") or []:
        print(f"  row {error['row']}: {error['error']}", file=file)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Apply a lab, carrier or vendor CSV/TSV export to the lead book."
    )
    parser.add_argument("kind", choices=[kind.value for kind in UploadKind], help="Upload kind.")
    parser.add_argument("path", help="CSV or TSV file to reconcile.")
    parser.add_argument("--actor", default="cli", help="Actor id recorded in the audit log.")
    parser.add_argument(
        "--error-cap", type=int, default=None, help="Maximum row errors to report."
    )
    parser.add_argument(
        "--output-json",
        default=None,
        help="Write the full JSON result to PATH (default: stdout).",
    )
    parser.add_argument(
        "--skip-notifications",
        action="store_true",
        help="Discard queued notifications instead of sending them.",
    )
    args = parser.parse_args()

    rows = read_rows_from_path(args.path)
    side_effects = SideEffects()
    session = SessionLocal()
    try:
        result = run_pipeline(
            session,
            args.kind,
            rows,
            actor_id=args.actor,
            side_effects=side_effects,
            error_cap=args.error_cap,
        )
    finally:
        session.close()

    if args.skip_notifications:
        side_effects.discard()
    else:
        side_effects.run()

    payload = result.as_dict()
    _print_summary(payload)
    text = json.dumps(payload, indent=2, sort_keys=True)
    if args.output_json:
        output_path = Path(args.output_json)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text + "\n", encoding="utf-8")
    else:
        print(text)
    return 1 if result.error_count and not result.processed else 0


if __name__ == "__main__":
    raise SystemExit(main())
