"""Plotly figures for budgets and recurring patterns.

Each function accepts objects produced by :mod:`smart_budget.synthesis`
or :mod:`smart_budget.workflow` and returns a
``plotly.graph_objects.Figure`` that Streamlit can render via
``st.plotly_chart``.  Empty inputs produce an empty figure titled
"No data to display" rather than raising.
"""

from __future__ import annotations

from typing import Dict, Sequence

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .models import BudgetResult, Pattern


def _empty_figure() -> go.Figure:
    fig = go.Figure()
    fig.update_layout(title="No data to display")
    return fig


def create_budget_breakdown_chart(result: BudgetResult, title: str | None = None) -> go.Figure:
    """Stacked bars of average and recurring amounts per budget line.

    Parameters
    ----------
    result : BudgetResult
        Output of a budget calculation.
    title : str, optional
        Chart title.  Defaults to the budget period.

    Returns
    -------
    plotly.graph_objects.Figure
        Horizontal stacked bar chart with one bar per category line.
    """
    frame = result.to_frame()
    if frame.empty:
        return _empty_figure()
    frame['Label'] = frame.apply(
        lambda row: f"{row['Category']} / {row['Sub-Category']}" if row['Sub-Category'] else row['Category'],
        axis=1,
    )
    melted = frame.melt(
        id_vars=['Label'],
        value_vars=['Average', 'Recurring'],
        var_name='Component',
        value_name='Amount',
    )
    fig = px.bar(melted, x='Amount', y='Label', color='Component', orientation='h')
    fig.update_layout(
        title=title or f"Budget for {result.year}-{result.month:02d}",
        barmode='stack',
        xaxis_title='Amount',
        yaxis_title='',
    )
    return fig


def create_yearly_budget_chart(breakdown: Dict[int, BudgetResult], title: str | None = None) -> go.Figure:
    """Line chart of total budgeted expenses for each month of a yearly breakdown."""
    if not breakdown:
        return _empty_figure()
    df = pd.DataFrame(
        {
            'Month': list(breakdown.keys()),
            'Total': [result.total_budgeted_expenses for result in breakdown.values()],
        }
    ).sort_values('Month')
    fig = px.line(df, x='Month', y='Total', markers=True)
    fig.update_layout(title=title or "Budgeted expenses by month", xaxis=dict(dtick=1))
    return fig


def create_pattern_calendar(patterns: Sequence[Pattern]) -> go.Figure:
    """Heatmap of the months each pattern is scheduled in."""
    if not patterns:
        return _empty_figure()
    months = list(range(1, 13))
    z = [[1 if m in p.scheduled_months else 0 for m in months] for p in patterns]
    fig = go.Figure(
        data=go.Heatmap(
            z=z,
            x=[str(m) for m in months],
            y=[p.display_name for p in patterns],
            colorscale='Blues',
            showscale=False,
        )
    )
    fig.update_layout(title="Scheduled months", xaxis_title='Month')
    return fig
