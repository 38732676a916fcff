"""Filtering, merging, sorting and grouping of normalized inventory items."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from .normalize import RARITIES, NormalizedItem, rarity_rank

logger = logging.getLogger(__name__)

SORT_KEYS = ('name', 'tier', 'rarity', 'count')
GROUP_MODES = ('none', 'tier', 'rarity', 'player', 'tag')


@dataclass
class ItemFilters:
    """Active filters; None (or an empty search) disables a filter."""
    tier: Optional[int] = None
    rarity: Optional[str] = None
    tag: Optional[str] = None
    search: str = ''

    def matches(self, item: NormalizedItem) -> bool:
        if self.tier is not None and item.tier != self.tier:
            return False
        if self.rarity is not None and item.rarity != self.rarity:
            return False
        if self.tag is not None and item.tag != self.tag:
            return False
        needle = self.search.strip().lower()
        if needle and needle not in item.name.lower():
            return False
        return True


@dataclass
class AggregatedItem:
    """One merged row of the inventory view."""
    name: str
    tier: int
    rarity: str
    count: int
    base_item: str
    tag: str
    player_id: str
    location: str
    from_package: bool
    player_name: str
    player_quantities: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_item(cls, item: NormalizedItem) -> 'AggregatedItem':
        return cls(
            name=item.name,
            tier=item.tier,
            rarity=item.rarity,
            count=item.count,
            base_item=item.base_item,
            tag=item.tag,
            player_id=item.player_id,
            location=item.location,
            from_package=item.from_package,
            player_name=item.player_name,
            player_quantities={item.player_name: item.count},
        )

    def merge(self, item: NormalizedItem):
        self.count += item.count
        self.player_quantities[item.player_name] = self.player_quantities.get(item.player_name, 0) + item.count


@dataclass
class InventorySection:
    """A titled block of rows for grouped display."""
    title: str
    items: List[AggregatedItem]

    @property
    def total_count(self) -> int:
        return sum(item.count for item in self.items)


@dataclass
class InventoryStats:
    players: int
    unique_items: int
    total_count: int


def filter_items(items: Iterable[NormalizedItem], filters: Optional[ItemFilters] = None) -> List[NormalizedItem]:
    """Apply filters to a flat item list."""
    if filters is None:
        return list(items)
    return [item for item in items if filters.matches(item)]


class InventoryAggregator:
    """Builds the aggregated inventory view from normalized items."""

    def group_key(self, item: NormalizedItem, group_by_player: bool) -> Tuple[Any, ...]:
        if group_by_player:
            return (item.name, item.tier, item.rarity, item.player_name)
        return (item.name, item.tier, item.rarity)

    def aggregate(self, items: Iterable[NormalizedItem], group_by_player: bool = False,
                  filters: Optional[ItemFilters] = None) -> List[AggregatedItem]:
        """Filter then merge items that share a group key.

        Per-player quantities are keyed by display name, so two player ids
        with the same name are summed together.
        """
        merged: Dict[Tuple[Any, ...], AggregatedItem] = {}
        for item in filter_items(items, filters):
            key = self.group_key(item, group_by_player)
            existing = merged.get(key)
            if existing is None:
                merged[key] = AggregatedItem.from_item(item)
            else:
                existing.merge(item)
        return list(merged.values())

    def sort_items(self, items: List[AggregatedItem], key: str = 'name', descending: bool = False) -> List[AggregatedItem]:
        """Sort aggregated rows by one key, with name as the tiebreaker."""
        if key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key '{key}', expected one of {SORT_KEYS}")

        # Stable sorts: tiebreaker first, then the primary key.
        result = sorted(items, key=_name_key)
        if key == 'name':
            if descending:
                result.reverse()
            return result
        if key == 'tier':
            primary = lambda item: item.tier
        elif key == 'rarity':
            primary = lambda item: rarity_rank(item.rarity)
        else:
            primary = lambda item: item.count
        return sorted(result, key=primary, reverse=descending)

    def group_sections(self, items: List[AggregatedItem], mode: str) -> List[InventorySection]:
        """Split rows into display sections for a grouping mode.

        Tiers are ordered highest first, rarities rarest first, players and
        tags alphabetically. Mode 'none' yields a single untitled section.
        """
        if mode not in GROUP_MODES:
            raise ValueError(f"Unknown group mode '{mode}', expected one of {GROUP_MODES}")
        if mode == 'none':
            return [InventorySection(title='', items=list(items))] if items else []

        groups: Dict[Any, List[AggregatedItem]] = {}
        for item in items:
            if mode == 'tier':
                group = item.tier
            elif mode == 'rarity':
                group = item.rarity
            elif mode == 'player':
                group = item.player_name
            else:
                group = item.tag
            groups.setdefault(group, []).append(item)

        if mode == 'tier':
            ordered = sorted(groups, reverse=True)
            return [InventorySection(title=f"Tier {tier}", items=groups[tier]) for tier in ordered]
        if mode == 'rarity':
            ordered = sorted(groups, key=lambda rarity: (-rarity_rank(rarity), rarity))
        else:
            ordered = sorted(groups, key=lambda name: (name.lower(), name))
        return [InventorySection(title=group, items=groups[group]) for group in ordered]

    def stats(self, items: List[NormalizedItem], players: int, group_by_player: bool = False,
              filters: Optional[ItemFilters] = None) -> InventoryStats:
        """Player count, unique merged rows and total count of the filtered set."""
        filtered = filter_items(items, filters)
        aggregated = self.aggregate(filtered, group_by_player=group_by_player)
        return InventoryStats(
            players=players,
            unique_items=len(aggregated),
            total_count=sum(item.count for item in filtered),
        )


def _name_key(item: AggregatedItem) -> Tuple[str, str]:
    return (item.name.lower(), item.name)


def known_rarities(items: Iterable[NormalizedItem]) -> List[str]:
    """Rarities present in a list, canonical ones first in severity order."""
    present = {item.rarity for item in items}
    canonical = [rarity for rarity in RARITIES if rarity in present]
    extra = sorted(present - set(RARITIES))
    return canonical + extra
