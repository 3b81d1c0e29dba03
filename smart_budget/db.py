from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple

import pandas as pd
import structlog

from .config import DB_PATH
from .models import ApprovalStatus, Pattern, TransactionRecord, normalize_description

logger = structlog.get_logger()

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    transaction_ref TEXT NOT NULL,
    transaction_date TEXT NOT NULL,
    description TEXT,
    normalized_description TEXT,
    amount REAL NOT NULL,
    category_id TEXT,
    sub_category_id TEXT,
    exclude_from_budget INTEGER NOT NULL DEFAULT 0,
    imported_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_txn_dedup
ON transactions (user_id, transaction_ref);

CREATE INDEX IF NOT EXISTS ix_txn_user_date ON transactions (user_id, transaction_date);

CREATE TABLE IF NOT EXISTS transaction_patterns (
    pattern_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    description TEXT NOT NULL,
    normalized_description TEXT NOT NULL,
    category_id TEXT NOT NULL,
    sub_category_id TEXT,
    sub_category_key TEXT NOT NULL DEFAULT '',
    amount_min REAL NOT NULL,
    amount_max REAL NOT NULL,
    recurrence_type TEXT NOT NULL,
    scheduled_months TEXT NOT NULL,
    average_amount REAL NOT NULL,
    confidence REAL NOT NULL,
    approval_status TEXT NOT NULL DEFAULT 'pending',
    analysis_months INTEGER,
    last_detected TEXT,
    sample_transactions TEXT,
    approved_at TEXT,
    notes TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_pattern_identity
ON transaction_patterns (user_id, normalized_description, category_id, sub_category_key);

CREATE INDEX IF NOT EXISTS ix_pattern_status ON transaction_patterns (user_id, approval_status);
"""

PATTERN_COLUMNS = (
    "pattern_id, user_id, description, normalized_description, category_id, sub_category_id, "
    "sub_category_key, amount_min, amount_max, recurrence_type, scheduled_months, average_amount, "
    "confidence, approval_status, analysis_months, last_detected, sample_transactions, approved_at, notes"
)

# Re-detection refreshes statistics only; the approval decision is never touched here
UPSERT_PATTERN_SQL = (
    f"INSERT INTO transaction_patterns ({PATTERN_COLUMNS}) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT (user_id, normalized_description, category_id, sub_category_key) DO UPDATE SET "
    "average_amount = excluded.average_amount, "
    "scheduled_months = excluded.scheduled_months, "
    "confidence = excluded.confidence, "
    "analysis_months = excluded.analysis_months, "
    "last_detected = excluded.last_detected, "
    "sample_transactions = excluded.sample_transactions"
)


def _resolve(db_path: Optional[Path | str]) -> Path:
    path = Path(db_path) if db_path is not None else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


@contextmanager
def connect(db_path: Optional[Path | str] = None) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(str(_resolve(db_path)))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[Path | str] = None) -> None:
    with connect(db_path) as conn:
        conn.executescript(SCHEMA_SQL)
        conn.commit()


def _to_iso_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    ts = pd.to_datetime(value, errors='coerce')
    if pd.isna(ts):
        return None
    return ts.date().isoformat()


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    if pd.isna(value):
        return None
    return value


def upsert_transactions(
    df: pd.DataFrame,
    user_id: str,
    db_path: Optional[Path | str] = None,
) -> Tuple[int, int]:
    """Insert categorized transactions, ignoring ones already stored.

    Expected columns are ``Transaction Date``, ``Description``, ``Amount``,
    ``Category`` and optionally ``Sub-Category``, ``Transaction ID`` and
    ``Exclude From Budget``.  Returns (inserted_count, skipped_count).
    """
    if df.empty:
        return (0, 0)

    records: List[Tuple] = []
    imported_at = datetime.now().isoformat()
    skipped_invalid = 0
    for idx, row in df.iterrows():
        td = _to_iso_date(row.get('Transaction Date'))
        amount = pd.to_numeric(row.get('Amount'), errors='coerce')
        if td is None or pd.isna(amount):
            skipped_invalid += 1
            continue
        description = _clean(row.get('Description')) or f"Unknown Transaction #{idx + 1}"
        ref = _clean(row.get('Transaction ID'))
        if ref is None:
            ref = f"{td}|{normalize_description(description)}|{float(amount):.2f}|{idx}"
        records.append((
            user_id,
            str(ref),
            td,
            description,
            normalize_description(description),
            float(amount),
            _clean(row.get('Category')),
            _clean(row.get('Sub-Category')),
            1 if _clean(row.get('Exclude From Budget')) in (True, 1) else 0,
            imported_at,
        ))

    if not records:
        return (0, skipped_invalid)

    insert_sql = (
        "INSERT OR IGNORE INTO transactions (user_id, transaction_ref, transaction_date, description, "
        "normalized_description, amount, category_id, sub_category_id, exclude_from_budget, imported_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
    )
    with connect(db_path) as conn:
        before_changes = conn.total_changes
        conn.executemany(insert_sql, records)
        conn.commit()
        inserted = conn.total_changes - before_changes

    skipped = skipped_invalid + (len(records) - inserted)
    logger.info("transactions_imported", user_id=user_id, inserted=inserted, skipped=skipped)
    return inserted, skipped


def fetch_transactions(
    user_id: str,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    expenses_only: bool = False,
    db_path: Optional[Path | str] = None,
) -> pd.DataFrame:
    where: List[str] = ["user_id = ?"]
    params: List[Any] = [user_id]
    if start_date:
        where.append("transaction_date >= ?")
        params.append(start_date)
    if end_date:
        where.append("transaction_date <= ?")
        params.append(end_date)
    if expenses_only:
        where.append("amount < 0")

    sql = (
        "SELECT transaction_ref AS 'Transaction ID', transaction_date AS 'Transaction Date', "
        "description AS 'Description', amount AS 'Amount', category_id AS 'Category', "
        "sub_category_id AS 'Sub-Category', exclude_from_budget AS 'Exclude From Budget' "
        "FROM transactions WHERE " + " AND ".join(where) +
        " ORDER BY transaction_date ASC, id ASC"
    )
    with connect(db_path) as conn:
        df = pd.read_sql_query(sql, conn, params=params)
    if not df.empty:
        df['Transaction Date'] = pd.to_datetime(df['Transaction Date'])
        df['Exclude From Budget'] = df['Exclude From Budget'].astype(bool)
    return df


def records_from_frame(df: pd.DataFrame) -> List[TransactionRecord]:
    """Convert a frame shaped like :func:`fetch_transactions` output into records."""
    records: List[TransactionRecord] = []
    for fields in df.to_dict('records'):
        records.append(TransactionRecord(
            transaction_id=str(fields['Transaction ID']),
            date=fields['Transaction Date'],
            amount=float(fields['Amount']),
            category_id=_clean(fields.get('Category')),
            sub_category_id=_clean(fields.get('Sub-Category')),
            description=_clean(fields.get('Description')) or '',
            exclude_from_budget=bool(fields.get('Exclude From Budget', False)),
        ))
    return records


def set_budget_exclusion(
    user_id: str,
    transaction_id: str,
    excluded: bool = True,
    db_path: Optional[Path | str] = None,
) -> bool:
    """Flag a transaction so budget calculations ignore it.  Returns True if a row changed."""
    with connect(db_path) as conn:
        cursor = conn.execute(
            "UPDATE transactions SET exclude_from_budget = ? WHERE user_id = ? AND transaction_ref = ?",
            (1 if excluded else 0, user_id, transaction_id),
        )
        conn.commit()
        return cursor.rowcount > 0


class SqliteTransactionSource:
    def __init__(self, db_path: Optional[Path | str] = None):
        self.db_path = db_path
        init_db(db_path)

    def find_expenses(self, user_id: str, start: date, end: date) -> List[TransactionRecord]:
        df = fetch_transactions(
            user_id,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            expenses_only=True,
            db_path=self.db_path,
        )
        return records_from_frame(df)


def _pattern_params(pattern: Pattern) -> Tuple:
    payload = pattern.to_dict()
    return (
        payload['pattern_id'],
        payload['user_id'],
        payload['description'],
        normalize_description(payload['description']),
        payload['category_id'],
        payload['sub_category_id'],
        payload['sub_category_id'] or '',
        payload['amount_min'],
        payload['amount_max'],
        payload['recurrence_type'],
        json.dumps(payload['scheduled_months']),
        payload['average_amount'],
        payload['confidence'],
        payload['approval_status'],
        payload['analysis_months'],
        payload['last_detected'],
        json.dumps(payload['sample_transactions']),
        payload['approved_at'],
        payload['notes'],
    )


def _row_to_pattern(row: sqlite3.Row) -> Pattern:
    payload = dict(row)
    payload['scheduled_months'] = json.loads(payload['scheduled_months'] or '[]')
    payload['sample_transactions'] = json.loads(payload['sample_transactions'] or '[]')
    return Pattern.from_dict(payload)


class SqlitePatternStore:
    """Pattern store backed by the ``transaction_patterns`` table."""

    def __init__(self, db_path: Optional[Path | str] = None):
        self.db_path = db_path
        init_db(db_path)

    def _query(self, sql: str, params: Tuple) -> List[Pattern]:
        with connect(self.db_path) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_pattern(row) for row in rows]

    def _by_status(self, user_id: str, status: ApprovalStatus) -> List[Pattern]:
        return self._query(
            f"SELECT {PATTERN_COLUMNS} FROM transaction_patterns WHERE user_id = ? AND approval_status = ? "
            "ORDER BY normalized_description, category_id, sub_category_key",
            (user_id, status.value),
        )

    def find_pending(self, user_id: str) -> List[Pattern]:
        return self._by_status(user_id, ApprovalStatus.PENDING)

    def find_approved(self, user_id: str) -> List[Pattern]:
        return self._by_status(user_id, ApprovalStatus.APPROVED)

    def find_all(self, user_id: str) -> List[Pattern]:
        return self._query(
            f"SELECT {PATTERN_COLUMNS} FROM transaction_patterns WHERE user_id = ? "
            "ORDER BY normalized_description, category_id, sub_category_key",
            (user_id,),
        )

    def get(self, user_id: str, pattern_id: str) -> Optional[Pattern]:
        found = self._query(
            f"SELECT {PATTERN_COLUMNS} FROM transaction_patterns WHERE user_id = ? AND pattern_id = ?",
            (user_id, pattern_id),
        )
        return found[0] if found else None

    def upsert_by_identifier(self, pattern: Pattern) -> Pattern:
        key = pattern.key
        with connect(self.db_path) as conn:
            conn.isolation_level = None
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(UPSERT_PATTERN_SQL, _pattern_params(pattern))
                row = conn.execute(
                    f"SELECT {PATTERN_COLUMNS} FROM transaction_patterns WHERE user_id = ? "
                    "AND normalized_description = ? AND category_id = ? AND sub_category_key = ?",
                    key,
                ).fetchone()
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        return _row_to_pattern(row)

    def save(self, pattern: Pattern) -> Pattern:
        payload = pattern.to_dict()
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE transaction_patterns SET approval_status = ?, approved_at = ?, notes = ? "
                "WHERE user_id = ? AND pattern_id = ?",
                (
                    payload['approval_status'],
                    payload['approved_at'],
                    payload['notes'],
                    payload['user_id'],
                    payload['pattern_id'],
                ),
            )
            conn.commit()
            if cursor.rowcount == 0:
                conn.execute(
                    f"INSERT INTO transaction_patterns ({PATTERN_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    _pattern_params(pattern),
                )
                conn.commit()
        return pattern
