"""
Splitting one bulk contribution across the unfunded items of a wishlist.

Strategies:
    equal         every unfunded item gets floor(amount / n)
    proportional  each item gets floor(amount * needed / total needed)
    priority      items are filled in priority order until the money runs out

Allocations of zero are dropped, so the result may cover fewer items than
were passed in.
"""

from dataclasses import dataclass
import math
from typing import Iterable

from wishfund.models.models import AllocationStrategyEnum

MISSING_PRIORITY = 999


@dataclass(frozen=True)
class ItemNeed:
    item_id: int
    name: str
    price: float
    total_contributed: float
    priority: int | None = None

    @property
    def needed(self) -> float:
        return round(self.price - self.total_contributed, 2)


@dataclass(frozen=True)
class Allocation:
    item_id: int
    item_name: str
    amount: float


def unfunded(items: Iterable[ItemNeed]) -> list[ItemNeed]:
    return [item for item in items if item.total_contributed < item.price]


def platform_fee(amount: float, percent: float) -> float:
    if percent <= 0:
        return 0.0
    return float(math.floor(amount * percent / 100))


def _equal(items: list[ItemNeed], amount: float) -> list[tuple[ItemNeed, float]]:
    share = math.floor(amount / len(items))
    return [(item, float(share)) for item in items]


def _proportional(items: list[ItemNeed], amount: float) -> list[tuple[ItemNeed, float]]:
    total_needed = sum(item.needed for item in items)
    if total_needed <= 0:
        return []
    return [(item, float(math.floor(amount * item.needed / total_needed))) for item in items]


def _priority(items: list[ItemNeed], amount: float) -> list[tuple[ItemNeed, float]]:
    ordered = sorted(
        items,
        key=lambda item: item.priority if item.priority is not None else MISSING_PRIORITY,
    )
    remaining = amount
    shares: list[tuple[ItemNeed, float]] = []
    for item in ordered:
        if remaining <= 0:
            break
        share = round(min(item.needed, remaining), 2)
        shares.append((item, share))
        remaining = round(remaining - share, 2)
    return shares


_STRATEGIES = {
    AllocationStrategyEnum.EQUAL: _equal,
    AllocationStrategyEnum.PROPORTIONAL: _proportional,
    AllocationStrategyEnum.PRIORITY: _priority,
}


def allocate(
    items: Iterable[ItemNeed],
    amount: float,
    strategy: AllocationStrategyEnum | str = AllocationStrategyEnum.PRIORITY,
) -> list[Allocation]:
    """Allocate ``amount`` across the unfunded ``items`` using ``strategy``."""
    candidates = unfunded(items)
    if not candidates or amount <= 0:
        return []
    split = _STRATEGIES.get(AllocationStrategyEnum(strategy), _priority)
    return [
        Allocation(item_id=item.item_id, item_name=item.name, amount=share)
        for item, share in split(candidates, amount)
        if share > 0
    ]
