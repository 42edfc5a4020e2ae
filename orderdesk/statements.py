"""Ledger statement export for admin review."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Union
from uuid import UUID

from orderdesk.ledger import BalanceLedger

STATEMENT_COLUMNS: tuple[str, ...] = (
    "entry_seq",
    "created_at_utc",
    "direction",
    "amount",
    "balance_after",
    "reason",
    "reference",
    "order_id",
    "acting_admin_id",
    "entry_id",
)


def ledger_statement_frame(ledger: BalanceLedger, account_id: Union[UUID, str], limit: int = 500) -> Any:
    """Return the most recent ``limit`` entries as a DataFrame in creation order."""
    try:
        import pandas as pd
    except ImportError as exc:
        raise RuntimeError("pandas is required for ledger statement export") from exc

    entries = ledger.list_entries(account_id, limit=limit)
    rows = [
        {
            "entry_seq": entry.entry_seq,
            "created_at_utc": entry.created_at_utc,
            "direction": entry.direction,
            "amount": entry.amount,
            "balance_after": entry.balance_after,
            "reason": entry.reason,
            "reference": entry.reference,
            "order_id": None if entry.order_id is None else str(entry.order_id),
            "acting_admin_id": None if entry.acting_admin_id is None else str(entry.acting_admin_id),
            "entry_id": str(entry.entry_id),
        }
        for entry in reversed(entries)
    ]
    frame = pd.DataFrame(rows, columns=list(STATEMENT_COLUMNS))
    if not frame.empty:
        frame["created_at_utc"] = pd.to_datetime(frame["created_at_utc"], utc=True)
    return frame.reset_index(drop=True)


def export_ledger_statement(
    ledger: BalanceLedger,
    account_id: Union[UUID, str],
    path: Union[str, Path],
    limit: int = 500,
) -> Path:
    frame = ledger_statement_frame(ledger, account_id, limit=limit)
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output, index=False)
    return output
