import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))  # repo root on sys.path

import json, argparse, logging

from src.assignment_runner import run_monthly_assignment
from src.database import SessionLocal, init_db
from src.run_lock import RunLockManager


def main():
    ap = argparse.ArgumentParser(description="Run the monthly staff assignment for one clinic")
    ap.add_argument("--clinic", dest="clinic_id", required=True)
    ap.add_argument("--year", type=int, required=True)
    ap.add_argument("--month", type=int, required=True)
    ap.add_argument("--mode", choices=["smart", "full"], default="smart")
    ap.add_argument("--force-redeploy", action="store_true")
    ap.add_argument("--rules", dest="rules_file", default=None, help="JSON file with an engine rule list")
    ap.add_argument("--out", dest="outfile", default=None, help="Write the summary here instead of stdout")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    rules = None
    if args.rules_file:
        with open(args.rules_file, 'r', encoding='utf-8') as f:
            rules = json.load(f)

    init_db()
    session = SessionLocal()
    try:
        summary = run_monthly_assignment(
            session,
            RunLockManager(),
            args.clinic_id,
            args.year,
            args.month,
            mode=args.mode,
            force_redeploy=args.force_redeploy,
            rules=rules,
            log_prefix="[CLI]",
        )
    finally:
        session.close()

    output = json.dumps(summary, indent=2, ensure_ascii=False)
    if args.outfile:
        pathlib.Path(args.outfile).write_text(output, encoding='utf-8')
        print(f"[CLI] Summary written to {args.outfile}")
    else:
        print(output)

    print(f"[CLI] success={summary['success']} filled={summary['successCount']} "
          f"short={summary['failedCount']} warnings={len(summary['warnings'])}", file=sys.stderr)
    return 0 if summary['success'] else 1


if __name__ == "__main__":
    sys.exit(main())
