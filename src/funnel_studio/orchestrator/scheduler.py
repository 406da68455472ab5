"""Round-robin interleaving of category quotas with rotating variation tags."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from funnel_studio.orchestrator.distribution import CategoryCount

VARIATION_CYCLE = 5


@dataclass(slots=True)
class CategoryQuota:
    """Target/used count and variation cursor for one category."""

    category: str
    target: int
    used: int = 0
    cursor: int = 1

    @property
    def remaining(self) -> int:
        return self.target - self.used

    def take(self) -> int:
        """Consume one unit of quota and return the variation assigned to it."""

        variation = self.cursor
        self.used += 1
        self.cursor = (self.cursor % VARIATION_CYCLE) + 1
        return variation


@dataclass(slots=True, frozen=True)
class ScheduledItem:
    category: str
    variation: int


def interleave(counts: Sequence[CategoryCount]) -> list[ScheduledItem]:
    """Order items so no category repeats back-to-back while others still have quota.

    Sweeps the categories in their original order, emitting one item per
    category that still has quota. Once a single category is left its
    remaining items come out consecutively.
    """

    quotas = [CategoryQuota(category=entry.category, target=entry.count) for entry in counts]
    items: list[ScheduledItem] = []
    while any(quota.remaining > 0 for quota in quotas):
        for quota in quotas:
            if quota.remaining <= 0:
                continue
            items.append(ScheduledItem(category=quota.category, variation=quota.take()))
    return items
