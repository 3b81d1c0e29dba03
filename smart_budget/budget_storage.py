"""Persistence helpers for calculated budgets."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

import structlog

from .config import BUDGETS_DIR
from .models import BudgetResult

logger = structlog.get_logger()


def budget_path(user_id: str, year: int, month: int, directory: Path | None = None) -> Path:
    target_dir = directory or BUDGETS_DIR
    safe_user = ''.join(ch if ch.isalnum() or ch in '-_' else '_' for ch in str(user_id))
    return target_dir / safe_user / f"{year:04d}-{month:02d}.json"


def save_budget(result: BudgetResult, directory: Path | None = None) -> Path:
    target = budget_path(result.user_id, result.year, result.month, directory)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open('w', encoding='utf-8') as handle:
        json.dump(result.to_dict(), handle, indent=2, sort_keys=True)
    logger.info("budget_saved", user_id=result.user_id, path=str(target))
    return target


def load_budget(user_id: str, year: int, month: int, directory: Path | None = None) -> Dict[str, object] | None:
    target = budget_path(user_id, year, month, directory)
    if not target.exists():
        return None
    try:
        with target.open('r', encoding='utf-8') as handle:
            data = json.load(handle)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("budget_load_failed", path=str(target), error=str(exc))
        return None
    if not isinstance(data, dict) or not isinstance(data.get('lines'), list):
        return None
    return data


def list_saved_budgets(user_id: str, directory: Path | None = None) -> List[str]:
    """Periods (``YYYY-MM``) with a saved budget for ``user_id``, oldest first."""
    folder = budget_path(user_id, 2000, 1, directory).parent
    if not folder.exists():
        return []
    return sorted(path.stem for path in folder.glob('*.json'))


class JsonBudgetSink:
    """Budget sink writing one JSON document per user and month."""

    def __init__(self, directory: Path | None = None):
        self.directory = directory

    def save_budget(self, result: BudgetResult) -> None:
        save_budget(result, self.directory)
