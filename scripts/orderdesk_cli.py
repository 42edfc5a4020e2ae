#!/usr/bin/env python3
"""Operator CLI for ledger inspection, admin credit adjustments, top-up review and the scan worker."""

from __future__ import annotations

import argparse
from decimal import Decimal, InvalidOperation
import importlib
import json
import os
from pathlib import Path
import signal
import sys
import threading
from typing import Any, Callable
from uuid import UUID

# Ensure repository root is importable when script is executed by path.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from orderdesk.admin import AdminCreditService
from orderdesk.config import configure_logging, load_orderdesk_config
from orderdesk.database import PsycopgDatabase, connect_database
from orderdesk.errors import OrderDeskError, public_error
from orderdesk.ledger import BalanceLedger
from orderdesk.orders import OrderStore
from orderdesk.scan_queue import RedisScanQueue, ScanWorker
from orderdesk.sessions import SessionService
from orderdesk.statements import export_ledger_statement
from orderdesk.token_guard import TokenRotationGuard
from orderdesk.topups import CreditTopupService


def _parse_amount(value: str) -> Decimal:
    try:
        amount = Decimal(value.strip())
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: {value}") from exc
    if not amount.is_finite() or amount <= 0:
        raise argparse.ArgumentTypeError("Amount must be a positive number.")
    return amount


def _parse_handler(value: str) -> Callable[..., Any]:
    module_name, sep, attr = value.partition(":")
    if not sep or not module_name or not attr:
        raise argparse.ArgumentTypeError("Handler must look like 'package.module:function'.")
    try:
        handler = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise argparse.ArgumentTypeError(f"Cannot load handler {value}: {exc}") from exc
    if not callable(handler):
        raise argparse.ArgumentTypeError(f"Handler is not callable: {value}")
    return handler


def _resolve_dsn(args: argparse.Namespace) -> str:
    if args.dsn:
        return args.dsn
    env_dsn = os.getenv("DATABASE_URL")
    if env_dsn:
        return env_dsn

    host = args.host or os.getenv("DB_HOST")
    port = args.port or os.getenv("DB_PORT")
    dbname = args.dbname or os.getenv("DB_NAME")
    user = args.user or os.getenv("DB_USER")
    password = args.password or os.getenv("DB_PASSWORD")

    missing = [
        key
        for key, value in (
            ("host", host),
            ("port", port),
            ("dbname", dbname),
            ("user", user),
            ("password", password),
        )
        if not value
    ]
    if missing:
        raise SystemExit(
            "Missing DB connection args. Provide --dsn, set DATABASE_URL, or set "
            f"--host/--port/--dbname/--user/--password (missing: {', '.join(missing)})."
        )
    return f"host={host} port={port} dbname={dbname} user={user} password={password}"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Order-desk operator CLI")
    parser.add_argument("--dsn", help="PostgreSQL DSN (optional, falls back to DATABASE_URL)")
    parser.add_argument("--host", help="DB host")
    parser.add_argument("--port", help="DB port")
    parser.add_argument("--dbname", help="DB name")
    parser.add_argument("--user", help="DB user")
    parser.add_argument("--password", help="DB password")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    balance_cmd = subparsers.add_parser("balance", help="Show current credit balance")
    balance_cmd.add_argument("--account-id", required=True, type=UUID)

    for name, help_text in (("credit", "Admin credit adjustment"), ("debit", "Admin debit adjustment")):
        adjust_cmd = subparsers.add_parser(name, help=help_text)
        adjust_cmd.add_argument("--account-id", required=True, type=UUID)
        adjust_cmd.add_argument("--admin-id", required=True, type=UUID)
        adjust_cmd.add_argument("--amount", required=True, type=_parse_amount)
        adjust_cmd.add_argument("--reason", default=None)
        adjust_cmd.add_argument("--note", default=None)

    history_cmd = subparsers.add_parser("history", help="List recent ledger entries")
    history_cmd.add_argument("--account-id", required=True, type=UUID)
    history_cmd.add_argument("--limit", type=int, default=20)

    verify_cmd = subparsers.add_parser("verify-ledger", help="Replay ledger entries against the stored balance")
    verify_cmd.add_argument("--account-id", required=True, type=UUID)

    export_cmd = subparsers.add_parser("export-statement", help="Write ledger statement CSV")
    export_cmd.add_argument("--account-id", required=True, type=UUID)
    export_cmd.add_argument("--output", required=True, type=Path)
    export_cmd.add_argument("--limit", type=int, default=500)

    revoke_cmd = subparsers.add_parser("revoke-sessions", help="Revoke every live refresh token of an account")
    revoke_cmd.add_argument("--account-id", required=True, type=UUID)

    topups_cmd = subparsers.add_parser("list-topups", help="List manual top-up requests, newest first")
    topups_cmd.add_argument("--status", choices=("pending", "approved", "rejected"), default=None)
    topups_cmd.add_argument("--limit", type=int, default=50)

    approve_cmd = subparsers.add_parser("approve-topup", help="Approve a pending top-up and credit the account")
    approve_cmd.add_argument("--topup-id", required=True, type=UUID)
    approve_cmd.add_argument("--admin-id", required=True, type=UUID)

    reject_cmd = subparsers.add_parser("reject-topup", help="Reject a pending top-up")
    reject_cmd.add_argument("--topup-id", required=True, type=UUID)
    reject_cmd.add_argument("--admin-id", required=True, type=UUID)
    reject_cmd.add_argument("--note", required=True)

    worker_cmd = subparsers.add_parser("scan-worker", help="Run the scan-label queue worker")
    worker_cmd.add_argument("--handler", required=True, type=_parse_handler)

    return parser


def _run_command(args: argparse.Namespace, db: PsycopgDatabase) -> int:
    ledger = BalanceLedger(db)

    if args.command == "balance":
        payload: dict[str, Any] = {
            "account_id": str(args.account_id),
            "balance": str(ledger.get_balance(args.account_id)),
        }
        print(json.dumps(payload, sort_keys=True))
        return 0

    if args.command in {"credit", "debit"}:
        new_balance = AdminCreditService(ledger).adjust_account_credit(
            args.account_id,
            args.amount,
            args.command,
            admin_id=args.admin_id,
            reason=args.reason,
            note=args.note,
        )
        payload = {"account_id": str(args.account_id), "balance": str(new_balance)}
        print(json.dumps(payload, sort_keys=True))
        return 0

    if args.command == "history":
        entries = ledger.list_entries(args.account_id, limit=args.limit)
        payload = {
            "account_id": str(args.account_id),
            "entries": [
                {
                    "entry_seq": entry.entry_seq,
                    "amount": str(entry.amount),
                    "direction": entry.direction,
                    "balance_after": str(entry.balance_after),
                    "reason": entry.reason,
                    "reference": entry.reference,
                    "created_at_utc": entry.created_at_utc.isoformat(),
                }
                for entry in entries
            ],
        }
        print(json.dumps(payload, sort_keys=True))
        return 0

    if args.command == "verify-ledger":
        report = ledger.verify_replay(args.account_id)
        payload = {
            "status": "LEDGER REPLAY: TRUE" if report.is_consistent else "LEDGER REPLAY: FALSE",
            "account_id": str(report.account_id),
            "credit_balance": str(report.credit_balance),
            "ledger_sum": str(report.ledger_sum),
            "entry_count": report.entry_count,
            "chain_breaks": report.chain_breaks,
            "first_break_seq": report.first_break_seq,
        }
        print(json.dumps(payload, sort_keys=True))
        return 0 if report.is_consistent else 2

    if args.command == "export-statement":
        output = export_ledger_statement(ledger, args.account_id, args.output, limit=args.limit)
        print(json.dumps({"output": str(output)}, sort_keys=True))
        return 0

    if args.command == "revoke-sessions":
        revoked = SessionService(TokenRotationGuard(db)).logout_everywhere(args.account_id)
        print(json.dumps({"account_id": str(args.account_id), "revoked": revoked}, sort_keys=True))
        return 0

    if args.command == "list-topups":
        records = CreditTopupService(ledger).list_topups(status=args.status, limit=args.limit)
        payload = {
            "topups": [
                {
                    "topup_id": str(record.topup_id),
                    "account_id": str(record.account_id),
                    "amount": str(record.amount),
                    "credit_amount": str(record.credit_amount),
                    "transfer_note": record.transfer_note,
                    "payment_tx_id": record.payment_tx_id,
                    "status": record.status,
                    "created_at_utc": record.created_at_utc.isoformat(),
                }
                for record in records
            ],
        }
        print(json.dumps(payload, sort_keys=True))
        return 0

    if args.command == "approve-topup":
        new_balance = CreditTopupService(ledger).approve_topup(args.topup_id, args.admin_id)
        print(json.dumps({"topup_id": str(args.topup_id), "balance": str(new_balance)}, sort_keys=True))
        return 0

    if args.command == "reject-topup":
        record = CreditTopupService(ledger).reject_topup(args.topup_id, args.admin_id, args.note)
        print(json.dumps({"topup_id": str(record.topup_id), "status": record.status}, sort_keys=True))
        return 0

    config = load_orderdesk_config()
    worker = ScanWorker(
        queue=RedisScanQueue.from_url(config.redis_url, key=config.scan_queue_key),
        handler=args.handler,
        ledger=ledger,
        orders=OrderStore(db),
        max_attempts=config.scan_max_attempts,
        dequeue_timeout_seconds=config.scan_dequeue_timeout_seconds,
    )
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: stop.set())
    signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())
    worker.run_forever(stop)
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    configure_logging(args.log_level)

    db = connect_database(_resolve_dsn(args))
    try:
        return _run_command(args, db)
    except OrderDeskError as exc:
        error = public_error(exc)
        print(json.dumps({"status": error.status, "code": exc.code, "message": str(exc)}, sort_keys=True))
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
