from __future__ import annotations

import argparse
import asyncio
import json
import sys

from signal_ledger.analysis.forecast import projected_balance
from signal_ledger.analysis.operations import operations_summary
from signal_ledger.backup.client import BackupClient, push_store, restore_store
from signal_ledger.ledger.snapshot import dumps_snapshot
from signal_ledger.ledger.store import LedgerStore
from signal_ledger.persistence.adapters import SqliteAdapter
from signal_ledger.utils.config import get_settings
from signal_ledger.utils.exceptions import LedgerError
from signal_ledger.utils.logger import bind_command, get_logger, setup_logging

logger = get_logger(__name__)


def _open_store() -> tuple[LedgerStore, SqliteAdapter]:
    adapter = SqliteAdapter(get_settings().ledger_db_path)
    return LedgerStore().init(adapter), adapter


def _summary(store: LedgerStore, args: argparse.Namespace) -> int:
    summary = operations_summary(store.days(), args.month)
    window = store.window
    print(json.dumps({
        "balance": store.current_balance(),
        "days": len(store.day_keys()),
        "window": {**window.to_dict(), "remaining": store.remaining_window_days()},
        "projected": projected_balance(store),
        "operations": summary.to_dict(),
    }, indent=2))
    return 0


def _export(store: LedgerStore, args: argparse.Namespace) -> int:
    text = dumps_snapshot(store.export_snapshot())
    with open(args.path, "w", encoding="utf-8") as fh:
        fh.write(text)
    logger.info("snapshot_exported", path=args.path, days=len(store.day_keys()))
    return 0


def _import(store: LedgerStore, args: argparse.Namespace) -> int:
    with open(args.path, encoding="utf-8") as fh:
        count = store.import_snapshot(fh.read())
    logger.info("snapshot_imported", path=args.path, days=count)
    return 0


def _tick(store: LedgerStore, args: argparse.Namespace) -> int:
    expired = store.tick_window_expiry()
    print("window expired" if expired else f"window remaining: {store.remaining_window_days()}")
    return 0


async def _backup(store: LedgerStore, args: argparse.Namespace) -> int:
    async with BackupClient() as client:
        if args.command == "backup-push":
            result = await push_store(store, client)
            print(json.dumps(result))
        else:
            count = await restore_store(store, client, args.key)
            print(f"restored {count} days" if count else "no backup found")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="signal-ledger")
    parser.add_argument("--log-level", default=None, help="Override LEDGER_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)
    p_summary = sub.add_parser("summary")
    p_summary.add_argument("--month", default=None, help="YYYY-MM filter for the operations KPIs")
    sub.add_parser("export").add_argument("path")
    sub.add_parser("import").add_argument("path")
    sub.add_parser("tick")
    sub.add_parser("backup-push")
    sub.add_parser("backup-pull").add_argument("--key", default=None)
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level)
    bind_command(args.command)

    handlers = {"summary": _summary, "export": _export, "import": _import, "tick": _tick}
    store, adapter = _open_store()
    try:
        if args.command in handlers:
            return handlers[args.command](store, args)
        return asyncio.run(_backup(store, args))
    except (LedgerError, OSError) as e:
        logger.error("command_failed", error=str(e))
        print(str(e), file=sys.stderr)
        return 1
    finally:
        store.dispose()
        adapter.close()


if __name__ == "__main__":
    sys.exit(main())
