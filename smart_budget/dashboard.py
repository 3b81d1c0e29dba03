"""Smart Budget page - review detected recurring patterns and calculate a budget."""

from __future__ import annotations

from datetime import date
from pathlib import Path
import sys
from typing import List, Optional

import pandas as pd
import streamlit as st

# Ensure package imports resolve when run with ``streamlit run``
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from smart_budget import db
from smart_budget.budget_storage import JsonBudgetSink
from smart_budget.config import DB_PATH, DEFAULT_ANALYSIS_MONTHS, ensure_data_directories
from smart_budget.exceptions import ApprovalRequiredError
from smart_budget.logging_setup import configure_logging
from smart_budget.models import BudgetResult, Pattern
from smart_budget.synthesis import annual_reserve_schedule
from smart_budget.visualization import (
    create_budget_breakdown_chart,
    create_pattern_calendar,
    create_yearly_budget_chart,
)
from smart_budget.workflow import SmartBudgetWorkflow

DEFAULT_STATE = {
    'user_id': 'default',
    'analysis_months': DEFAULT_ANALYSIS_MONTHS,
}


def main() -> None:
    configure_logging()
    ensure_data_directories()
    st.set_page_config(page_title="Smart Budget", page_icon="🔁", layout="wide")
    _ensure_state()

    with st.sidebar:
        st.session_state['user_id'] = st.text_input("User", value=st.session_state['user_id'])
        st.session_state['analysis_months'] = int(
            st.number_input("Months of history", min_value=1, max_value=36, value=st.session_state['analysis_months'])
        )
        today = date.today()
        year = int(st.number_input("Budget year", min_value=2000, max_value=2100, value=today.year))
        month = int(st.selectbox("Budget month", list(range(1, 13)), index=today.month - 1))

    user_id = st.session_state['user_id']
    analysis_months = st.session_state['analysis_months']
    workflow = _build_workflow()

    st.header("🔁 Smart Budget")
    if st.button("Detect recurring patterns"):
        detection = workflow.detect_patterns(user_id, analysis_months)
        if detection.insufficient_data:
            st.info("Not enough categorized expenses to look for recurring patterns yet.")
        else:
            st.success(f"Found {len(detection.patterns)} recurring pattern(s).")

    pending = workflow.check_pending(user_id)
    if pending.has_pending:
        _render_pending(workflow, user_id, pending.patterns)

    approved = workflow.patterns.find_approved(user_id)
    if approved:
        _render_approved(approved)

    result = _calculate(workflow, user_id, year, month, analysis_months)
    if result is not None:
        _render_budget(result)
        with st.expander("📅 Year at a glance"):
            breakdown = workflow.calculate_yearly_breakdown(user_id, year, analysis_months)
            st.plotly_chart(create_yearly_budget_chart(breakdown), use_container_width=True)
        if st.button("Save budget"):
            workflow.sink.save_budget(result)
            st.success("Budget saved.")


def _build_workflow(db_path: Optional[Path] = None) -> SmartBudgetWorkflow:
    path = db_path or DB_PATH
    return SmartBudgetWorkflow(
        transactions=db.SqliteTransactionSource(path),
        patterns=db.SqlitePatternStore(path),
        sink=JsonBudgetSink(),
    )


def _ensure_state() -> None:
    for key, value in DEFAULT_STATE.items():
        if key not in st.session_state:
            st.session_state[key] = value


def _pattern_rows(patterns: List[Pattern]) -> pd.DataFrame:
    columns = ['Pattern', 'Cadence', 'Months', 'Average', 'Confidence', 'Status']
    rows = [
        {
            'Pattern': p.display_name,
            'Cadence': p.recurrence_type.value,
            'Months': ', '.join(str(m) for m in p.scheduled_months),
            'Average': round(p.average_amount, 2),
            'Confidence': f"{p.confidence:.0%}",
            'Status': p.approval_status.value,
        }
        for p in patterns
    ]
    return pd.DataFrame(rows, columns=columns)


def _render_pending(workflow: SmartBudgetWorkflow, user_id: str, patterns: List[Pattern]) -> None:
    st.subheader("⏳ Patterns awaiting review")
    st.caption("Approve the charges you expect to keep paying; rejected patterns are treated as ordinary spending.")
    for pattern in patterns:
        cols = st.columns([4, 1, 1])
        cols[0].markdown(
            f"**{pattern.display_name}** · {pattern.recurrence_type.value} · "
            f"~{pattern.average_amount:,.2f} · {pattern.confidence:.0%}"
        )
        if cols[1].button("Approve", key=f"approve_{pattern.pattern_id}"):
            workflow.approve_pattern(user_id, pattern.pattern_id)
            _rerun()
        if cols[2].button("Reject", key=f"reject_{pattern.pattern_id}"):
            workflow.reject_pattern(user_id, pattern.pattern_id)
            _rerun()


def _render_approved(patterns: List[Pattern]) -> None:
    with st.expander(f"✅ Approved patterns ({len(patterns)})"):
        st.dataframe(_pattern_rows(patterns), use_container_width=True, hide_index=True)
        st.plotly_chart(create_pattern_calendar(patterns), use_container_width=True)
        reserves = annual_reserve_schedule(patterns)
        if reserves:
            st.caption(f"Set aside {sum(r[0] for r in reserves.values()):,} per month to cover these charges evenly.")


def _calculate(
    workflow: SmartBudgetWorkflow,
    user_id: str,
    year: int,
    month: int,
    analysis_months: int,
) -> Optional[BudgetResult]:
    try:
        return workflow.calculate_budget(user_id, year, month, analysis_months)
    except ApprovalRequiredError as exc:
        st.warning(f"Review {len(exc.pending_patterns)} pending pattern(s) before calculating the budget.")
        return None


def _render_budget(result: BudgetResult) -> None:
    st.subheader(f"📋 Budget for {result.year}-{result.month:02d}")
    st.metric("Total budgeted expenses", f"{result.total_budgeted_expenses:,}")
    st.dataframe(result.to_frame(), use_container_width=True, hide_index=True)
    st.plotly_chart(create_budget_breakdown_chart(result), use_container_width=True)
    for issue in result.issues:
        st.warning(issue)
    st.caption(result.notes)


def _rerun() -> None:
    rerun_fn = getattr(st, 'rerun', None) or getattr(st, 'experimental_rerun', None)
    if rerun_fn:
        rerun_fn()


if __name__ == '__main__':
    main()
