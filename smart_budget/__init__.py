"""Top‑level package for Smart Budget.

Smart Budget looks at a user's categorized expense history, finds the
spending that recurs on a bi-monthly, quarterly or yearly cadence, and
turns that knowledge into a monthly budget.  The primary modules are:

* ``grouping`` – clusters similar transactions
* ``recurring`` – classifies a cluster's cadence and confidence
* ``projection`` – decides whether a pattern fires in a given month
* ``averaging`` – denominator strategies and even distribution helpers
* ``synthesis`` – merges averages with recurring contributions
* ``workflow`` – detection, approval gate and budget calculation
* ``dashboard`` – a Streamlit page for reviewing patterns and budgets

To run the dashboard from the command line you can execute:

```bash
streamlit run smart_budget/dashboard.py
```

or use ``run_budget_dashboard.py`` at the project root.
"""

from . import grouping  # noqa: F401  # re-exported for convenience
from . import recurring  # noqa: F401  # re-exported for convenience
from . import synthesis  # noqa: F401  # re-exported for convenience
from . import workflow  # noqa: F401  # re-exported for convenience

__all__ = ["grouping", "recurring", "synthesis", "workflow"]
