"""Weighted category distribution with an exact-total guarantee."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from funnel_studio.orchestrator.errors import InvalidInputError


@dataclass(slots=True, frozen=True)
class CategoryCount:
    """Planned number of items for one category."""

    category: str
    count: int


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (not banker's rounding)."""

    return math.floor(value + 0.5)


def validate_weights(weights: Sequence[tuple[str, float]]) -> None:
    """Reject empty, non-positive, or repeated category weights."""

    if not weights:
        raise InvalidInputError("At least one weighted category is required.")

    seen: set[str] = set()
    for category, weight in weights:
        if weight <= 0:
            raise InvalidInputError(
                f"Category weight must be positive: {category!r} -> {weight!r}",
            )
        if category in seen:
            raise InvalidInputError(f"Duplicate category in distribution: {category!r}")
        seen.add(category)


def plan_distribution(
    total: int,
    weights: Sequence[tuple[str, float]],
) -> list[CategoryCount]:
    """Split `total` items across weighted categories.

    Every category except the last gets its rounded share, clamped to what is
    still unassigned; the last category absorbs the remainder so the counts
    always sum to `total`. Input order is significant and is never re-sorted.
    Categories that end up with zero items are omitted.
    """

    if total < 0:
        raise InvalidInputError(f"Total item count must be >= 0, got {total}.")
    validate_weights(weights)

    weight_sum = float(sum(weight for _, weight in weights))
    remaining = total
    counts: list[CategoryCount] = []
    last_index = len(weights) - 1
    for index, (category, weight) in enumerate(weights):
        if index == last_index:
            count = remaining
        else:
            count = min(round_half_up(weight / weight_sum * total), remaining)
        remaining -= count
        if count > 0:
            counts.append(CategoryCount(category=category, count=count))
    return counts
