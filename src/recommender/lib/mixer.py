"""Merge per-type ranked lists into one interleaved list.

Each list gets a share of the output proportional to its score mass (the
sum of its scores), so a type whose items score uniformly higher is not
diluted to an even split. Slots are handed out with a largest-deficit rule:
at every step the list furthest behind its share emits its next item. When a
list runs dry the others keep filling. Nothing here is random, so the same
input always yields the same order.
"""

import math
from collections.abc import Mapping, Sequence

from ..models import RecommendationScore


def split_limit(total: int, weights: Mapping[str, float]) -> dict[str, int]:
    """Distribute *total* slots across *weights* proportionally.

    Uses largest-remainder allocation to avoid rounding errors; leftover
    slots go to the largest fractional parts, earlier keys first on ties.
    """
    names = list(weights)
    weight_sum = sum(weights.values())
    if weight_sum <= 0:
        raise ValueError("weights must have a positive sum")
    raw = [(weights[name] / weight_sum) * total for name in names]
    floors = [math.floor(r) for r in raw]
    remainders = [r - f for r, f in zip(raw, floors)]
    leftover = total - sum(floors)
    for idx in sorted(range(len(names)), key=lambda i: -remainders[i]):
        if leftover <= 0:
            break
        floors[idx] += 1
        leftover -= 1
    return dict(zip(names, floors))


def _shares(lists_by_type: Mapping[str, Sequence[RecommendationScore]]) -> dict[str, float]:
    mass = {name: sum(item.score for item in items) for name, items in lists_by_type.items()}
    total = sum(mass.values())
    if total <= 0:
        return {name: 1.0 / len(mass) for name in mass}
    return {name: value / total for name, value in mass.items()}


def mix(
    lists_by_type: Mapping[str, Sequence[RecommendationScore]],
    total_limit: int,
) -> list[RecommendationScore]:
    """Interleave *lists_by_type* by score mass, de-duplicated and truncated.

    Each input list keeps its internal order. Duplicate ``(item_type,
    item_id)`` pairs are dropped, first occurrence wins.
    """
    if total_limit <= 0 or not lists_by_type:
        return []

    names = sorted(lists_by_type)
    shares = _shares(lists_by_type)
    cursors = {name: 0 for name in names}
    taken = {name: 0 for name in names}
    seen: set[tuple[str, str]] = set()
    mixed: list[RecommendationScore] = []

    def _skip_seen(name: str) -> None:
        items = lists_by_type[name]
        while cursors[name] < len(items):
            head = items[cursors[name]]
            if (head.item_type, head.item_id) not in seen:
                return
            cursors[name] += 1

    while len(mixed) < total_limit:
        for name in names:
            _skip_seen(name)
        live = [name for name in names if cursors[name] < len(lists_by_type[name])]
        if not live:
            break

        # max() keeps the first of equal keys, so full ties go to the earlier name
        emitted = len(mixed) + 1
        chosen = max(
            live,
            key=lambda name: (
                shares[name] * emitted - taken[name],
                lists_by_type[name][cursors[name]].score,
            ),
        )

        item = lists_by_type[chosen][cursors[chosen]]
        cursors[chosen] += 1
        taken[chosen] += 1
        seen.add((item.item_type, item.item_id))
        mixed.append(item)

    return mixed
