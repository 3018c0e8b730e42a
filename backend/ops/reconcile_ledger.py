"""Offline ledger check for cron or a release hook.

Exit status is 0 when every wallet matches its ledger and 2 when drift was
found, so the script can gate a deploy.
"""
from __future__ import annotations

import argparse
import json
import sys

EXIT_DRIFT = 2


def _bootstrap_app():
    from tryon import create_app

    app = create_app()
    app.app_context().push()
    return app


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compare stored wallet balances with the transaction ledger.")
    parser.add_argument("--persist", action="store_true", help="Store the result in reconciliation_reports.")
    parser.add_argument("--tolerance", default="0.00", help="Drift at or below this amount is not reported.")
    return parser


def main(argv=None) -> int:
    args = _parser().parse_args(argv)
    _bootstrap_app()

    from tryon.services.reconciliation_service import persist_report, recompute_wallet_balances

    summary = recompute_wallet_balances(tolerance=args.tolerance)
    if args.persist:
        summary["report_id"] = int(persist_report(summary).id)
    print(json.dumps(summary, indent=2, sort_keys=True))
    return EXIT_DRIFT if summary["drift_count"] else 0


if __name__ == "__main__":
    sys.exit(main())
