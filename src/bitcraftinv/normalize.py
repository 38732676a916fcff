"""Item normalization: tier, rarity, base name and tag heuristics."""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

from .decode import UNDEFINED

logger = logging.getLogger(__name__)

UNKNOWN_TIER = None
MIN_TIER = -1
MAX_TIER = 8

RARITIES = ['Common', 'Uncommon', 'Rare', 'Epic', 'Legendary', 'Mythic']
DEFAULT_RARITY = 'Common'
DEFAULT_TAG = 'Other'


@dataclass
class RawItemRecord:
    """Loosely typed item record as recovered from an upstream payload."""
    name: Any = None
    tier: Any = None
    rarity: Any = None
    tag: Any = None
    quantity: Any = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], quantity: Any = None) -> 'RawItemRecord':
        """Build a record from an item details mapping.

        ``quantity`` overrides the mapping's own quantity/count, which is how
        pocket contents attach a stack size to shared item details.
        """
        if quantity is None:
            quantity = data.get('quantity')
            if quantity is None or quantity is UNDEFINED:
                quantity = data.get('count')
        return cls(
            name=data.get('name') or data.get('itemName'),
            tier=data.get('tier'),
            rarity=data.get('rarityStr') or data.get('rarity'),
            tag=data.get('tag'),
            quantity=quantity,
        )


@dataclass(frozen=True)
class NormalizedItem:
    """Canonical inventory record for one pocket stack."""
    name: str
    tier: int
    rarity: str
    count: int
    base_item: str
    tag: str = DEFAULT_TAG
    player_id: str = ''
    location: str = 'Unknown'
    from_package: bool = False
    player_name: str = ''


class ItemNormalizer:
    """Normalizes raw item records to NormalizedItem."""

    # Leading words that mark skills, ranks and collectibles rather than items
    SKIP_PREFIXES = [
        'Professional',
        'Collectible',
        'Adept',
        'Apprentice',
        'Novice',
        'Expert',
        'Master',
        'Grandmaster',
        'Legendary',
        'Mythical',
    ]

    # Matched case-insensitively as substrings of a string tier value
    TIER_NAMES: List[Tuple[str, int]] = [
        ('Primitive', 0),
        ('Basic', 1),
        ('Improved', 2),
        ('Quality', 3),
        ('Fine', 4),
        ('Superior', 5),
        ('Ornate', 6),
        ('Aurumite', 7),
        ('Celestium', 8),
        ('Currency', -1),
        ('Special', -1),
    ]

    # Leading words of item names and the tier they imply
    TIER_PREFIXES: List[Tuple[str, int]] = [
        ('Rough', 0),
        ('Primitive', 0),
        ('Basic', 1),
        ('Simple', 2),
        ('Improved', 2),
        ('Sturdy', 3),
        ('Quality', 3),
        ('Infused', 3),
        ('Fine', 4),
        ('Essential', 4),
        ('Superior', 5),
        ('Exquisite', 5),
        ('Succulent', 5),
        ('Peerless', 6),
        ('Ornate', 7),
        ('Ambrosial', 6),
        ('Flavorful', 7),
        ('Aurumite', 7),
        ('Pristine', 8),
        ('Celestium', 8),
        ('Luminite', 5),
        ('Rathium', 6),
        ('Zesty', 3),
        ('Plain', 0),
        ('Novice', 2),
    ]

    SPECIAL_ITEM_MARKERS = ['Hex Coin', 'Ancient Metal']

    _INT_PATTERN = re.compile(r'-?\d+')

    def normalize(self, raw: RawItemRecord, player_id: str = '', location: str = 'Unknown',
                  player_name: str = '') -> Optional[NormalizedItem]:
        """Normalize a raw record, or return None when it should be skipped."""
        name = raw.name
        if not isinstance(name, str) or not name:
            logger.debug(f"Skipping record without a usable name: {raw!r}")
            return None

        if self.should_skip(name):
            logger.debug(f"Skipping non-inventory entry '{name}'")
            return None

        tier = self.resolve_tier(raw.tier, name)
        rarity = self.normalize_rarity(raw.rarity)
        base_item = self.base_item_name(name)
        tag = raw.tag if isinstance(raw.tag, str) and raw.tag else DEFAULT_TAG

        count = self.parse_quantity(raw.quantity)
        if count is None:
            logger.debug(f"Skipping '{name}' with invalid quantity {raw.quantity!r}")
            return None

        return NormalizedItem(
            name=name,
            tier=tier,
            rarity=rarity,
            count=count,
            base_item=base_item,
            tag=tag,
            player_id=player_id,
            location=location,
            player_name=player_name,
        )

    def should_skip(self, name: str) -> bool:
        """Check whether a name belongs to a skill, rank or collectible."""
        return any(name.startswith(prefix + ' ') for prefix in self.SKIP_PREFIXES)

    def resolve_tier(self, raw_tier: Any, name: str) -> int:
        """Resolve the tier from the raw value, falling back to the item name."""
        tier = self.parse_tier_value(raw_tier)
        if tier is UNKNOWN_TIER:
            return self.derive_tier_from_name(name)
        return tier

    def parse_tier_value(self, raw_tier: Any) -> Optional[int]:
        """Interpret a raw tier field; None means the value is unusable."""
        if isinstance(raw_tier, bool):
            return UNKNOWN_TIER

        if isinstance(raw_tier, str):
            lowered = raw_tier.lower()
            for tier_name, tier in self.TIER_NAMES:
                if tier_name.lower() in lowered:
                    return tier
            match = self._INT_PATTERN.search(raw_tier)
            if match:
                tier = int(match.group())
                if MIN_TIER <= tier <= MAX_TIER:
                    return tier
            return UNKNOWN_TIER

        if isinstance(raw_tier, int):
            return raw_tier if MIN_TIER <= raw_tier <= MAX_TIER else UNKNOWN_TIER

        if isinstance(raw_tier, float) and raw_tier.is_integer():
            tier = int(raw_tier)
            return tier if MIN_TIER <= tier <= MAX_TIER else UNKNOWN_TIER

        return UNKNOWN_TIER

    def derive_tier_from_name(self, name: str) -> int:
        """Derive the tier from a name's prefix word."""
        for prefix, tier in self.TIER_PREFIXES:
            if name.startswith(prefix + ' '):
                return tier

        for marker in self.SPECIAL_ITEM_MARKERS:
            if marker in name:
                return -1

        return 0

    def normalize_rarity(self, rarity: Any) -> str:
        """Map a raw rarity onto the canonical names.

        Strings that contain none of the canonical names are passed through
        trimmed.
        """
        if not rarity or not isinstance(rarity, str):
            return DEFAULT_RARITY
        text = rarity.strip()
        for canonical in RARITIES:
            if canonical in text:
                return canonical
        return text

    def base_item_name(self, name: str) -> str:
        """Strip a leading tier-prefix word from a name."""
        for prefix, _tier in self.TIER_PREFIXES:
            if name.startswith(prefix + ' '):
                return name[len(prefix) + 1:]
        return name

    def parse_quantity(self, quantity: Any) -> Optional[int]:
        """Return a positive integer quantity, or None."""
        if isinstance(quantity, bool):
            return None
        if isinstance(quantity, int):
            return quantity if quantity > 0 else None
        if isinstance(quantity, float) and quantity.is_integer():
            return int(quantity) if quantity > 0 else None
        if isinstance(quantity, str) and quantity.isdigit():
            # isdigit() admits non-ASCII digits that int() rejects
            try:
                value = int(quantity)
            except ValueError:
                return None
            return value if value > 0 else None
        return None

    def normalize_many(self, records: List[Tuple[RawItemRecord, str]], player_id: str = '',
                       player_name: str = '') -> List[NormalizedItem]:
        """Normalize (record, location) pairs, dropping skipped records."""
        items = []
        skipped = 0
        for raw, location in records:
            item = self.normalize(raw, player_id=player_id, location=location, player_name=player_name)
            if item is None:
                skipped += 1
                continue
            items.append(item)
        if skipped:
            logger.debug(f"Skipped {skipped} of {len(records)} records for player {player_id or '?'}")
        return items


def rarity_rank(rarity: str) -> int:
    """Severity of a rarity; names outside the canonical set rank lowest."""
    try:
        return RARITIES.index(rarity)
    except ValueError:
        return -1


def tier_map() -> Dict[str, int]:
    """The tier-name table as a dict, for display and config validation."""
    return dict(ItemNormalizer.TIER_NAMES)
