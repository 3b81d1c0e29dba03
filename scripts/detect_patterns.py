#!/usr/bin/env python3
"""Import categorized transactions, detect recurring patterns and print a budget."""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path

import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from smart_budget import db
from smart_budget.budget_storage import JsonBudgetSink
from smart_budget.config import DB_PATH, DEFAULT_ANALYSIS_MONTHS, ensure_data_directories
from smart_budget.logging_setup import configure_logging
from smart_budget.workflow import STEP_BUDGET_CALCULATED, SmartBudgetWorkflow


def main(
    user_id: str,
    year: int,
    month: int,
    analysis_months: int = DEFAULT_ANALYSIS_MONTHS,
    csv_path: Path | None = None,
    db_path: Path = DB_PATH,
    approve_all: bool = False,
) -> int:
    if csv_path is not None:
        inserted, skipped = db.upsert_transactions(pd.read_csv(csv_path), user_id, db_path=db_path)
        print(f"Imported {inserted} transactions ({skipped} skipped)")

    workflow = SmartBudgetWorkflow(
        transactions=db.SqliteTransactionSource(db_path),
        patterns=db.SqlitePatternStore(db_path),
        sink=JsonBudgetSink(),
    )
    detection = workflow.detect_patterns(user_id, analysis_months)
    print(f"Analyzed {detection.transactions_analyzed} expenses, {len(detection.patterns)} recurring pattern(s)")

    if approve_all:
        for pattern in workflow.check_pending(user_id).patterns:
            workflow.approve_pattern(user_id, pattern.pattern_id, notes='approved from command line')

    outcome = workflow.execute(user_id, year, month, analysis_months)
    print(outcome.message)
    if outcome.step != STEP_BUDGET_CALCULATED:
        for pattern in outcome.pending_patterns:
            print(f"  pending: {pattern.display_name} [{pattern.recurrence_type.value}] "
                  f"~{pattern.average_amount:.2f} ({pattern.confidence:.0%})")
        return 1

    print(outcome.budget.to_frame().to_string(index=False))
    return 0


if __name__ == '__main__':
    today = date.today()
    parser = argparse.ArgumentParser(description='Detect recurring expenses and calculate a monthly budget.')
    parser.add_argument('--user', default='default', help='User whose transactions to analyze')
    parser.add_argument('--year', type=int, default=today.year, help='Budget year')
    parser.add_argument('--month', type=int, default=today.month, help='Budget month (1-12)')
    parser.add_argument('--months', type=int, default=DEFAULT_ANALYSIS_MONTHS, help='Months of history to analyze')
    parser.add_argument('--csv', type=Path, help='CSV of categorized transactions to import first')
    parser.add_argument('--db', type=Path, default=DB_PATH, help='SQLite database path')
    parser.add_argument('--approve-all', action='store_true', help='Approve every pending pattern')
    parser.add_argument('--log-level', default=None, help='Log level (defaults to SMART_BUDGET_LOG_LEVEL)')
    args = parser.parse_args()
    configure_logging(args.log_level)
    ensure_data_directories()
    sys.exit(main(args.user, args.year, args.month, args.months, args.csv, args.db, args.approve_all))
