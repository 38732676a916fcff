"""Inventory and market viewer components.

Both components are built once with a client and a render sink. They keep a
generation counter so that a response arriving after the player set (or the
listing query) has changed is dropped instead of being applied.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

from .aggregate import AggregatedItem, InventoryAggregator, InventorySection, InventoryStats, known_rarities
from .client import BitjitaClient, ClientError, fetch_in_batches
from .market import (
    MarketListing, OrderBook, PlayerOrderBook, PriceSummary, filter_listings, mark_cheapest,
    parse_market_listings, parse_order_book, parse_player_orders,
)
from .normalize import ItemNormalizer, NormalizedItem
from .packages import PackageExpander
from .payloads import SHAPE_UNRECOGNIZED, InventoryParser, PlayerRef
from .settings import ViewSettings

logger = logging.getLogger(__name__)


@dataclass
class Notice:
    """A non-blocking message for the user, scoped to one player or item."""
    level: str  # "info" | "warning" | "error"
    message: str
    subject: Optional[str] = None


class RenderSink:
    """Receives finished views and notices. Subclass to draw them somewhere."""

    def render(self, view: 'InventoryView'):
        pass

    def render_market(self, view: 'MarketView'):
        pass

    def notify(self, notice: Notice):
        pass


class LoggingSink(RenderSink):
    """Sink that only logs; the default when no renderer is attached."""

    def render(self, view: 'InventoryView'):
        logger.info(f"Inventory view: {view.stats.unique_items} rows, {view.stats.total_count} items "
                    f"across {view.stats.players} players")

    def render_market(self, view: 'MarketView'):
        logger.info(f"Market view: {len(view.listings)} listings")

    def notify(self, notice: Notice):
        level = getattr(logging, notice.level.upper(), logging.INFO)
        logger.log(level, notice.message)


@dataclass
class PlayerInventory:
    player_id: str
    username: str
    items: List[NormalizedItem] = field(default_factory=list)
    shape: str = SHAPE_UNRECOGNIZED


@dataclass
class InventoryView:
    """One render pass worth of aggregated data."""
    settings: ViewSettings
    players: List[PlayerInventory]
    items: List[AggregatedItem]
    sections: List[InventorySection]
    stats: InventoryStats
    rarities: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    @property
    def show_player_column(self) -> bool:
        return len(self.players) > 1 and not self.settings.group_by_player


class InventoryViewer:
    """Tracks a set of players and turns their inventories into views."""

    def __init__(self, client: BitjitaClient, sink: Optional[RenderSink] = None,
                 settings: Optional[ViewSettings] = None, normalizer: Optional[ItemNormalizer] = None):
        self.client = client
        self.sink = sink or LoggingSink()
        self.settings = settings or ViewSettings()
        self.normalizer = normalizer or ItemNormalizer()
        self.expander = PackageExpander(self.normalizer)
        self.aggregator = InventoryAggregator()
        self.players: Dict[str, PlayerInventory] = {}
        self.generation = 0

    def _bump_generation(self):
        self.generation += 1

    async def search_players(self, query: str) -> List[PlayerRef]:
        """Find players by name fragment; failures become a notice and an empty list."""
        query = query.strip()
        if not query:
            return []
        try:
            players = await self.client.search_players(query)
        except ClientError as e:
            logger.error(f"Search error for '{query}': {e}")
            self.sink.notify(Notice('error', f"Error searching for '{query}'. Try again.", query))
            return []
        if not players:
            self.sink.notify(Notice('info', f"No players found for '{query}'.", query))
        return players

    async def fetch_player_inventory(self, player_id: str, username: str = '') -> PlayerInventory:
        """Fetch and normalize one player's inventory.

        The graph page is tried first and the plain JSON route second. A payload
        neither can read gives an empty inventory. Network failures raise
        ClientError.
        """
        parser = InventoryParser(await self._catalog())

        envelope = await self.client.get_player_page(player_id)
        payload = parser.parse(envelope.value) if envelope.recognized else None
        if payload is None or payload.shape == SHAPE_UNRECOGNIZED:
            logger.info(f"Player page for {player_id} had no inventory, trying plain inventories route")
            envelope = await self.client.get_player_inventories(player_id)
            fallback = parser.parse(envelope.value) if envelope.recognized else None
            if fallback is not None:
                if payload is not None and fallback.player is None:
                    fallback.player = payload.player
                payload = fallback

        if payload is None or payload.shape == SHAPE_UNRECOGNIZED:
            logger.warning(f"Could not decode inventory for player {player_id}")
            return PlayerInventory(player_id=player_id, username=username or player_id)

        if not username and payload.player is not None:
            username = payload.player.username
        username = username or player_id

        items = self.normalizer.normalize_many(payload.records, player_id=player_id, player_name=username)
        logger.info(f"Loaded {len(items)} items for {username} ({payload.shape} payload)")
        return PlayerInventory(player_id=player_id, username=username, items=items, shape=payload.shape)

    async def _catalog(self) -> Dict[str, Dict]:
        """Item catalog for id lookups; an unreachable catalog is just empty."""
        try:
            return await self.client.get_item_catalog()
        except ClientError as e:
            logger.warning(f"Item catalog unavailable: {e}")
            return {}

    async def add_player(self, player_id: str, username: str = '') -> bool:
        """Fetch a player and add them. Returns False if nothing was added."""
        if player_id in self.players:
            self.sink.notify(Notice('info', f"{self.players[player_id].username} is already added.", player_id))
            return False

        generation = self.generation
        try:
            inventory = await self.fetch_player_inventory(player_id, username)
        except ClientError as e:
            logger.error(f"Error fetching inventory for {username or player_id}: {e}")
            self.sink.notify(Notice('error', f"Error loading inventory for {username or player_id}.", player_id))
            return False

        if generation != self.generation or player_id in self.players:
            logger.info(f"Discarding stale inventory for {inventory.username}")
            return False

        self.players[player_id] = inventory
        if player_id not in self.settings.player_ids:
            self.settings.player_ids.append(player_id)
        self.render()
        return True

    async def load_players(self, player_ids: List[str]) -> int:
        """Add several players one at a time; returns how many were added."""
        added = 0
        for player_id in player_ids:
            if await self.add_player(player_id):
                added += 1
        return added

    def remove_player(self, player_id: str):
        """Drop a player; a fetch still in flight for the old player set is discarded."""
        self.players.pop(player_id, None)
        self._bump_generation()
        if player_id in self.settings.player_ids:
            self.settings.player_ids.remove(player_id)
        self.render()

    def clear(self):
        self.players.clear()
        self.settings.player_ids.clear()
        self._bump_generation()
        self.render()

    async def refresh_all(self) -> int:
        """Re-fetch every player in turn. Returns the number refreshed.

        A failing player keeps their previous items and gets a notice; the
        remaining players are still refreshed.
        """
        refreshed = 0
        for player_id in list(self.players):
            current = self.players.get(player_id)
            if current is None:
                continue
            generation = self.generation
            try:
                inventory = await self.fetch_player_inventory(player_id, current.username)
            except ClientError as e:
                logger.error(f"Error refreshing {current.username}: {e}")
                self.sink.notify(Notice('warning', f"Could not refresh {current.username}.", player_id))
                continue
            if generation != self.generation or player_id not in self.players:
                logger.info(f"Discarding stale refresh for {current.username}")
                continue
            self.players[player_id] = inventory
            refreshed += 1
        self.render()
        return refreshed

    def all_items(self) -> List[NormalizedItem]:
        """Every player's items, with packages expanded when enabled."""
        items: List[NormalizedItem] = []
        for inventory in self.players.values():
            if self.settings.expand_packages:
                items.extend(self.expander.expand_batch(inventory.items))
            else:
                items.extend(inventory.items)
        return items

    def build_view(self) -> InventoryView:
        settings = self.settings
        items = self.all_items()
        aggregated = self.aggregator.aggregate(items, group_by_player=settings.group_by_player,
                                               filters=settings.filters)
        aggregated = self.aggregator.sort_items(aggregated, settings.sort_key, settings.descending)
        return InventoryView(
            settings=settings,
            players=list(self.players.values()),
            items=aggregated,
            sections=self.aggregator.group_sections(aggregated, settings.group_by),
            stats=self.aggregator.stats(items, len(self.players), settings.group_by_player, settings.filters),
            rarities=known_rarities(items),
            tags=sorted({item.tag for item in items}),
        )

    def render(self) -> InventoryView:
        view = self.build_view()
        self.sink.render(view)
        return view


@dataclass
class MarketView:
    settings: ViewSettings
    listings: List[MarketListing]
    prices: Dict[str, PriceSummary] = field(default_factory=dict)


class MarketBrowser:
    """Market overview, visible-item prices and per-player order books."""

    def __init__(self, client: BitjitaClient, sink: Optional[RenderSink] = None,
                 settings: Optional[ViewSettings] = None, normalizer: Optional[ItemNormalizer] = None):
        self.client = client
        self.sink = sink or LoggingSink()
        self.settings = settings or ViewSettings()
        self.normalizer = normalizer or ItemNormalizer()
        self.listings: List[MarketListing] = []
        self.prices: Dict[str, PriceSummary] = {}
        self.generation = 0

    @property
    def batch_size(self) -> int:
        return self.client.config.price_batch_size

    async def load_listings(self, has_sell_orders: Optional[bool] = None,
                            has_buy_orders: Optional[bool] = None) -> List[MarketListing]:
        """Replace the listing set; an older load still in flight is discarded."""
        self.generation += 1
        generation = self.generation
        try:
            envelope = await self.client.get_market(has_sell_orders, has_buy_orders)
        except ClientError as e:
            logger.error(f"Error loading market: {e}")
            self.sink.notify(Notice('error', "Error loading market listings."))
            return self.listings

        if generation != self.generation:
            logger.info("Discarding stale market listing response")
            return self.listings

        self.listings = parse_market_listings(envelope.value, self.normalizer) if envelope.recognized else []
        self.prices = {}
        return self.listings

    def visible_listings(self, limit: Optional[int] = None) -> List[MarketListing]:
        listings = filter_listings(self.listings, self.settings.filters)
        listings.sort(key=lambda listing: (listing.name.lower(), listing.name))
        return listings[:limit] if limit is not None else listings

    async def fetch_order_books(self, item_ids: List[str]) -> Dict[str, OrderBook]:
        """Order books for several items, fetched in bounded waves.

        Items whose request fails are left out and reported as notices.
        """
        async def fetch(item_id: str) -> OrderBook:
            envelope = await self.client.get_market_item(item_id)
            return parse_order_book(item_id, envelope.value)

        outcomes = await fetch_in_batches(item_ids, fetch, self.batch_size)
        books: Dict[str, OrderBook] = {}
        for item_id, outcome in outcomes.items():
            if isinstance(outcome, ClientError):
                logger.warning(f"Order book for item {item_id} unavailable: {outcome}")
                self.sink.notify(Notice('warning', f"Could not load prices for item {item_id}.", item_id))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                books[item_id] = outcome
        return books

    async def fetch_prices(self, item_ids: List[str]) -> Dict[str, PriceSummary]:
        """Price summaries for the given items, merged into ``self.prices``."""
        generation = self.generation
        books = await self.fetch_order_books(item_ids)
        summaries = {item_id: book.summary() for item_id, book in books.items()}
        if generation == self.generation:
            self.prices.update(summaries)
        else:
            logger.info("Discarding prices fetched for a previous listing set")
        return summaries

    async def load_player_orders(self, player_id: str) -> PlayerOrderBook:
        """A player's orders with sell orders flagged when they are the cheapest."""
        try:
            envelope = await self.client.get_player_market(player_id)
        except ClientError as e:
            logger.error(f"Error loading market orders for {player_id}: {e}")
            self.sink.notify(Notice('error', f"Error loading market orders for {player_id}.", player_id))
            return PlayerOrderBook()

        book = parse_player_orders(envelope.value) if envelope.recognized else PlayerOrderBook()
        books = await self.fetch_order_books(book.sold_item_ids())
        mark_cheapest(book.sell_orders, books)
        return book

    async def render(self, limit: Optional[int] = None, with_prices: bool = True) -> MarketView:
        """Render the visible listings, fetching prices for those not yet priced."""
        visible = self.visible_listings(limit)
        if with_prices:
            missing = [listing.item_id for listing in visible if listing.item_id not in self.prices]
            if missing:
                await self.fetch_prices(missing)
        view = MarketView(
            settings=self.settings,
            listings=visible,
            prices={listing.item_id: self.prices[listing.item_id]
                    for listing in visible if listing.item_id in self.prices},
        )
        self.sink.render_market(view)
        return view
