"""Configuration management for Smart Budget.

This module centralizes all configuration values including paths,
defaults, and environment variable overrides.
"""

from __future__ import annotations

import os
from pathlib import Path

# Base project root - assumes this file is in smart_budget/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("SMART_BUDGET_DATA_DIR", _PROJECT_ROOT / "data"))
BUDGETS_DIR = Path(os.getenv("SMART_BUDGET_BUDGETS_DIR", DATA_DIR / "budgets"))

# Database
DB_PATH = Path(
    os.getenv("SMART_BUDGET_DB_PATH", DATA_DIR / "smart_budget.db")
).resolve()

# How many full months of history feed detection and averaging
DEFAULT_ANALYSIS_MONTHS = int(os.getenv("SMART_BUDGET_ANALYSIS_MONTHS", "6"))

LOG_LEVEL = os.getenv("SMART_BUDGET_LOG_LEVEL", "INFO")


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, BUDGETS_DIR]:
        directory.mkdir(parents=True, exist_ok=True)
