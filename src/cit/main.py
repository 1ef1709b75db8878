from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from cit.application.container import build_container
from cit.config import get_app_paths, get_settings
from cit.domain.errors import AppError
from cit.logging_config import setup_logging

log = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cit", description="Camisolas inventory maintenance")
    p.add_argument("--db", help="Path to the SQLite database (defaults to the app data dir)")
    p.add_argument("--actor", required=True, help="Username performing the operation")
    sub = p.add_subparsers(dest="command", required=True)

    reset = sub.add_parser("reset", help="Zero every balance and clear the movement log")
    reset.add_argument("--yes", action="store_true", help="Confirm the irreversible reset")

    clear = sub.add_parser("clear-log", help="Delete every movement record")
    clear.add_argument("--yes", action="store_true", help="Confirm the irreversible purge")

    sync = sub.add_parser("sync-catalog", help="Refresh the catalog from a remote JSON endpoint")
    sync.add_argument("--url", help="Catalog URL (defaults to CIT_CATALOG_URL)")

    export = sub.add_parser("export", help="Export balances and movements to an .xlsx file")
    export.add_argument("--out", help="Target .xlsx path")
    return p


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    paths = get_app_paths()
    settings = get_settings()
    setup_logging(paths.logs_dir, level=logging.INFO)

    container = build_container(args.db or paths.db_path, bootstrap_admin=settings.bootstrap_admin)

    try:
        actor = container.auth.get_actor(args.actor)

        if args.command in ("reset", "clear-log"):
            if not args.yes:
                print("Refusing to run without --yes: this affects every row and can not be undone.")
                return 2
            if args.command == "reset":
                result = container.ledger.reset_all(actor)
            else:
                result = container.ledger.clear_log(actor)
            if not result.success:
                print(f"Error: {result.error}")
                return 1
            print("Done.")
            return 0

        if args.command == "sync-catalog":
            url = args.url or settings.catalog_url
            if not url:
                print("No catalog URL given (use --url or CIT_CATALOG_URL).")
                return 2
            count = container.catalog.sync_from_url(url)
            print(f"Catalog synced: {count} model(s).")
            return 0

        if args.command == "export":
            out = Path(args.out) if args.out else paths.exports_dir / f"inventory_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
            container.reporting.export_inventory_excel(str(out), actor=actor)
            print(f"Report written to {out}")
            return 0
    except AppError as e:
        log.warning("maintenance_failed command=%s error=%s", args.command, e)
        print(f"Error: {e}")
        return 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
