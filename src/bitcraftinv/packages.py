"""Expansion of package meta-items into their base resource quantities."""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from .normalize import DEFAULT_TAG, ItemNormalizer, NormalizedItem

logger = logging.getLogger(__name__)

PACKAGE_SUFFIX = ' Package'

# Known package name tails and the number of base items one package holds
PACKAGE_CONTENTS: Dict[str, int] = {
    'Clay Lump Package': 500,
    'Ingot Package': 100,
    'Plank Package': 100,
    'Brick Package': 100,
    'Cloth Package': 100,
    'Leather Package': 100,
    'Rope Package': 100,
    'Filament Package': 100,
    'Pebbles Package': 500,
    'Sand Package': 500,
    'Plant Fiber Package': 500,
    'Wood Log Package': 100,
    'Stripped Wood Package': 100,
    'Bark Package': 500,
    'Ore Chunk Package': 100,
    'Ore Concentrate Package': 100,
    'Stone Chunk Package': 100,
    'Pelt Package': 100,
    'Glass Vial Package': 100,
    'Salt Package': 500,
    'Flower Package': 500,
    'Seeds Package': 500,
}

# Lowercase name fragments and the tag they imply, checked in order
TAG_INFERENCE: List[Tuple[str, str]] = [
    ('ingot', 'Smithing'),
    ('ore concentrate', 'Smithing'),
    ('vial', 'Alchemy'),
    ('plank', 'Carpentry'),
    ('stripped wood', 'Carpentry'),
    ('wood log', 'Forestry'),
    ('bark', 'Forestry'),
    ('clay', 'Masonry'),
    ('brick', 'Masonry'),
    ('pebble', 'Masonry'),
    ('stone', 'Masonry'),
    ('sand', 'Masonry'),
    ('cloth', 'Tailoring'),
    ('rope', 'Tailoring'),
    ('filament', 'Tailoring'),
    ('fiber', 'Farming'),
    ('seed', 'Farming'),
    ('leather', 'Leatherworking'),
    ('pelt', 'Hunting'),
    ('salt', 'Cooking'),
    ('flower', 'Foraging'),
    ('ore chunk', 'Mining'),
]


def infer_tag(base_name: str) -> Optional[str]:
    """Guess a tag from the base item name, or None."""
    lowered = base_name.lower()
    for fragment, tag in TAG_INFERENCE:
        if fragment in lowered:
            return tag
    return None


def is_package_name(name: str) -> bool:
    return name.endswith(PACKAGE_SUFFIX)


class PackageExpander:
    """Turns package items into synthetic stacks of their contents."""

    def __init__(self, normalizer: Optional[ItemNormalizer] = None):
        self.normalizer = normalizer or ItemNormalizer()
        # Longest suffix first so 'Ore Chunk Package' beats shorter tails
        self._suffixes = sorted(PACKAGE_CONTENTS.items(), key=lambda kv: len(kv[0]), reverse=True)

    def package_quantity(self, name: str) -> Optional[int]:
        """Return how many base items one package of this name holds."""
        if not is_package_name(name):
            return None
        for suffix, quantity in self._suffixes:
            if name.endswith(suffix):
                return quantity
        return None

    def expand(self, item: NormalizedItem, observed_tags: Optional[Dict[str, str]] = None) -> Optional[NormalizedItem]:
        """Expand a package item, or return None if it is not a known package."""
        per_package = self.package_quantity(item.name)
        if per_package is None:
            return None

        base_name = item.name[:-len(PACKAGE_SUFFIX)]
        tag = (observed_tags or {}).get(base_name) or infer_tag(base_name) or item.tag

        return replace(
            item,
            name=base_name,
            count=item.count * per_package,
            base_item=self.normalizer.base_item_name(base_name),
            tag=tag,
            from_package=True,
        )

    def observed_tags(self, items: Iterable[NormalizedItem]) -> Dict[str, str]:
        """Collect name -> tag for non-package items that carry a real tag."""
        tags: Dict[str, str] = {}
        for item in items:
            if item.from_package or is_package_name(item.name) or item.tag == DEFAULT_TAG:
                continue
            tags.setdefault(item.name, item.tag)
        return tags

    def expand_batch(self, items: List[NormalizedItem]) -> List[NormalizedItem]:
        """Replace every recognized package in a batch with its expansion.

        Names ending in " Package" that match no known suffix stay as they are.
        """
        tags = self.observed_tags(items)
        result = []
        expanded = 0
        for item in items:
            synthetic = self.expand(item, tags)
            if synthetic is None:
                result.append(item)
            else:
                result.append(synthetic)
                expanded += 1
        if expanded:
            logger.debug(f"Expanded {expanded} package stacks")
        return result
