from __future__ import annotations

import random
from collections import Counter, defaultdict

import allure

from funnel_studio.orchestrator.distribution import CategoryCount, plan_distribution
from funnel_studio.orchestrator.scheduler import CategoryQuota, ScheduledItem, interleave

pytestmark = [
    allure.epic("Job Planning"),
    allure.feature("Interleaving Scheduler"),
]


def _assert_no_adjacent_repeats_while_alternatives_remain(items: list[ScheduledItem]) -> None:
    for index in range(1, len(items)):
        if items[index].category != items[index - 1].category:
            continue
        remaining = {item.category for item in items[index:]}
        assert remaining == {items[index].category}, f"repeat at {index} with {remaining}"


def test_default_pin_plan_never_repeats_category_back_to_back() -> None:
    counts = plan_distribution(
        32,
        [
            ("quote", 27),
            ("lifestyle", 26),
            ("desk", 16),
            ("mood", 14),
            ("planner_hands", 10),
            ("flatlay", 8),
        ],
    )

    items = interleave(counts)

    assert len(items) == 32
    assert [item.category for item in items[:6]] == [
        "quote",
        "lifestyle",
        "desk",
        "mood",
        "planner_hands",
        "flatlay",
    ]
    _assert_no_adjacent_repeats_while_alternatives_remain(items)


def test_single_category_left_repeats_consecutively() -> None:
    items = interleave(
        [CategoryCount(category="a", count=3), CategoryCount(category="b", count=1)],
    )

    assert [item.category for item in items] == ["a", "b", "a", "a"]
    _assert_no_adjacent_repeats_while_alternatives_remain(items)


def test_variation_cursor_cycles_one_to_five() -> None:
    items = interleave(
        [CategoryCount(category="a", count=12), CategoryCount(category="b", count=7)],
    )

    variations: dict[str, list[int]] = defaultdict(list)
    for item in items:
        variations[item.category].append(item.variation)

    assert variations["a"] == [1, 2, 3, 4, 5, 1, 2, 3, 4, 5, 1, 2]
    assert variations["b"] == [1, 2, 3, 4, 5, 1, 2]
    assert all(1 <= item.variation <= 5 for item in items)


def test_quota_take_tracks_usage() -> None:
    quota = CategoryQuota(category="quote", target=2)

    assert quota.take() == 1
    assert quota.take() == 2
    assert quota.used == 2
    assert quota.remaining == 0
    assert quota.cursor == 3


def test_empty_plan_yields_no_items() -> None:
    assert interleave([]) == []


def test_random_plans_never_repeat_category_while_alternatives_remain() -> None:
    rng = random.Random(20261019)

    for _ in range(300):
        counts = [
            CategoryCount(category=f"c{index}", count=rng.randint(1, 12))
            for index in range(rng.randint(1, 7))
        ]

        items = interleave(counts)

        assert len(items) == sum(entry.count for entry in counts)
        assert Counter(item.category for item in items) == {
            entry.category: entry.count for entry in counts
        }
        _assert_no_adjacent_repeats_while_alternatives_remain(items)
