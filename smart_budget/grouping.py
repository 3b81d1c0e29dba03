"""Cluster expense transactions that look like repeats of the same charge."""

from __future__ import annotations

from typing import Iterable, List

import structlog

from .models import TransactionGroup, TransactionRecord, normalize_description

logger = structlog.get_logger()

# Relative distance from a group's running average that still counts as the same charge
AMOUNT_TOLERANCE = 0.10
# Share of the shorter description's words that must appear in the other one
WORD_OVERLAP_THRESHOLD = 0.5
# Words this short ("to", "of", "#1") carry no signal
MIN_WORD_LENGTH = 3
MIN_GROUP_SIZE = 2


def _significant_words(text: str) -> List[str]:
    return [word for word in text.split(' ') if len(word) >= MIN_WORD_LENGTH]


def is_description_similar(first: str, second: str) -> bool:
    """Return True when two descriptions plausibly name the same payee."""
    a = normalize_description(first)
    b = normalize_description(second)
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True

    words_a = _significant_words(a)
    words_b = _significant_words(b)
    if not words_a or not words_b:
        return False
    smaller, larger = (words_a, words_b) if len(words_a) <= len(words_b) else (words_b, words_a)
    larger_set = set(larger)
    common = [word for word in smaller if word in larger_set]
    return len(common) / len(smaller) >= WORD_OVERLAP_THRESHOLD


def is_amount_similar(amount: float, average: float) -> bool:
    if average <= 0:
        return amount == average
    return abs(amount - average) / average <= AMOUNT_TOLERANCE


def _find_group(groups: List[TransactionGroup], transaction: TransactionRecord) -> TransactionGroup | None:
    for group in groups:
        if group.category_id != transaction.category_id:
            continue
        if group.sub_category_id != transaction.sub_category_id:
            continue
        if not is_amount_similar(transaction.expense_amount, group.average_amount):
            continue
        if is_description_similar(transaction.description, group.common_description):
            return group
    return None


def group_similar_transactions(transactions: Iterable[TransactionRecord]) -> List[TransactionGroup]:
    """Group transactions by category, amount and description similarity.

    Transactions are visited in date order and each one joins the first
    existing group it is compatible with; otherwise it anchors a new group.
    Membership is judged against the running average, so a slowly drifting
    amount can stay in one group.  Only groups with at least two members
    are returned.
    """
    ordered = sorted(
        (t for t in transactions if t.category_id is not None),
        key=lambda t: (t.date, str(t.transaction_id)),
    )
    groups: List[TransactionGroup] = []
    for transaction in ordered:
        group = _find_group(groups, transaction)
        if group is None:
            group = TransactionGroup(
                common_description=normalize_description(transaction.description),
                category_id=transaction.category_id,
                sub_category_id=transaction.sub_category_id,
            )
            groups.append(group)
        group.add(transaction)

    result = [group for group in groups if group.size >= MIN_GROUP_SIZE]
    logger.debug(
        "transactions_grouped",
        transactions=len(ordered),
        groups=len(groups),
        candidate_groups=len(result),
    )
    return result
