"""Application configuration and URL-encoded view settings."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qs, urlencode
import logging

import yaml

from .aggregate import GROUP_MODES, SORT_KEYS, ItemFilters
from .normalize import MAX_TIER, MIN_TIER, tier_map

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://bitjita.com'
ENV_BASE_URL = 'BITCRAFTINV_BASE_URL'
ENV_TIMEOUT = 'BITCRAFTINV_TIMEOUT'


@dataclass
class AppConfig:
    """Connection and batching settings."""
    base_url: str = DEFAULT_BASE_URL  # upstream host, or a proxy mirroring its paths
    timeout: float = 30.0
    max_retries: int = 3
    rate_limit: float = 0.0  # minimum seconds between requests, 0 disables
    price_batch_size: int = 10
    user_agent: str = 'BitcraftInventoryViewer/1.0'

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.price_batch_size < 1:
            raise ValueError("price_batch_size must be at least 1")
        self.base_url = self.base_url.rstrip('/')


def load_config(path: Optional[Union[str, Path]] = None, **overrides: Any) -> AppConfig:
    """Load AppConfig from an optional YAML file, the environment and overrides.

    Later sources win: file, then environment, then keyword overrides that
    are not None.
    """
    values: Dict[str, Any] = {}
    known = {f.name for f in fields(AppConfig)}

    if path is not None:
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
        else:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {path} must contain a mapping")
            for key, value in data.items():
                if key in known:
                    values[key] = value
                else:
                    logger.warning(f"Ignoring unknown config key '{key}' in {path}")
            logger.info(f"Loaded config from {path}")

    if os.environ.get(ENV_BASE_URL):
        values['base_url'] = os.environ[ENV_BASE_URL]
    if os.environ.get(ENV_TIMEOUT):
        values['timeout'] = float(os.environ[ENV_TIMEOUT])

    for key, value in overrides.items():
        if value is not None and key in known:
            values[key] = value

    return AppConfig(**values)


def parse_tier(value: Any) -> Optional[int]:
    """Parse a tier filter value: an integer, a tier name, or 'all'."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == 'all':
        return None
    try:
        tier = int(text)
    except ValueError:
        for name, tier in tier_map().items():
            if name.lower() == text.lower():
                return tier
        return None
    return tier if MIN_TIER <= tier <= MAX_TIER else None


@dataclass
class ViewSettings:
    """Everything the inventory view needs besides the data itself.

    Round-trips through a URL query string so a view can be bookmarked.
    """
    player_ids: List[str] = field(default_factory=list)
    group_by: str = 'none'
    tier: Optional[int] = None
    rarity: Optional[str] = None
    tag: Optional[str] = None
    search: str = ''
    sort_key: str = 'name'
    descending: bool = False
    expand_packages: bool = False

    @property
    def filters(self) -> ItemFilters:
        return ItemFilters(tier=self.tier, rarity=self.rarity, tag=self.tag, search=self.search)

    @property
    def group_by_player(self) -> bool:
        return self.group_by == 'player'

    def to_query(self) -> str:
        """Encode non-default settings as a query string."""
        params = []
        if self.player_ids:
            params.append(('players', ','.join(self.player_ids)))
        if self.group_by != 'none':
            params.append(('group', self.group_by))
        if self.tier is not None:
            params.append(('tier', str(self.tier)))
        if self.rarity:
            params.append(('rarity', self.rarity))
        if self.tag:
            params.append(('tag', self.tag))
        if self.search:
            params.append(('q', self.search))
        if self.sort_key != 'name':
            params.append(('sort', self.sort_key))
        if self.descending:
            params.append(('dir', 'desc'))
        if self.expand_packages:
            params.append(('packages', '1'))
        return urlencode(params)

    @classmethod
    def from_query(cls, query: str) -> 'ViewSettings':
        """Decode a query string; missing or invalid values fall back to defaults."""
        params = parse_qs(query.lstrip('?'), keep_blank_values=False)

        def first(key: str) -> Optional[str]:
            values = params.get(key)
            return values[0].strip() if values else None

        settings = cls()
        players = first('players')
        if players:
            settings.player_ids = list(dict.fromkeys(p.strip() for p in players.split(',') if p.strip()))

        group = first('group')
        if group in GROUP_MODES:
            settings.group_by = group
        elif group:
            logger.debug(f"Ignoring unknown group mode '{group}'")

        settings.tier = parse_tier(first('tier'))

        rarity = first('rarity')
        if rarity and rarity.lower() != 'all':
            settings.rarity = rarity
        tag = first('tag')
        if tag and tag.lower() != 'all':
            settings.tag = tag

        settings.search = first('q') or ''

        sort = first('sort')
        if sort in SORT_KEYS:
            settings.sort_key = sort
        settings.descending = (first('dir') or '').lower() == 'desc'
        settings.expand_packages = (first('packages') or '').lower() in ('1', 'true', 'yes', 'on')
        return settings
