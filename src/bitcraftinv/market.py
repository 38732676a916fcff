"""Marketplace listings, player order books and cheapest-seller detection."""

from dataclasses import dataclass, field
import math
from typing import Any, Dict, Iterable, List, Optional
import logging

from .aggregate import ItemFilters
from .normalize import DEFAULT_TAG, ItemNormalizer
from .payloads import first_present, id_text

logger = logging.getLogger(__name__)

SELL = 'sell'
BUY = 'buy'


@dataclass
class MarketListing:
    """One item on the market overview."""
    item_id: str
    name: str
    tier: int
    rarity: str
    tag: str
    sell_orders: int = 0
    buy_orders: int = 0


@dataclass
class PlayerOrder:
    """A single sell or buy order owned by a player."""
    item_id: str
    item_name: str
    side: str  # "sell" | "buy"
    price: float
    quantity: int
    location: str = 'Unknown'
    cheapest: Optional[bool] = None  # None until the item's order book is known


@dataclass
class PlayerOrderBook:
    sell_orders: List[PlayerOrder] = field(default_factory=list)
    buy_orders: List[PlayerOrder] = field(default_factory=list)

    def sold_item_ids(self) -> List[str]:
        """Distinct item ids among the sell orders, in first-seen order."""
        return list(dict.fromkeys(order.item_id for order in self.sell_orders))


@dataclass
class OrderBook:
    """All listed prices for one item."""
    item_id: str
    sell_prices: List[float] = field(default_factory=list)
    buy_prices: List[float] = field(default_factory=list)

    def lowest_sell(self) -> Optional[float]:
        return min(self.sell_prices) if self.sell_prices else None

    def highest_buy(self) -> Optional[float]:
        return max(self.buy_prices) if self.buy_prices else None

    def summary(self) -> 'PriceSummary':
        return PriceSummary(
            item_id=self.item_id,
            lowest_sell=self.lowest_sell(),
            highest_buy=self.highest_buy(),
            sell_count=len(self.sell_prices),
            buy_count=len(self.buy_prices),
        )


@dataclass
class PriceSummary:
    item_id: str
    lowest_sell: Optional[float]
    highest_buy: Optional[float]
    sell_count: int
    buy_count: int


def _number(value: Any) -> Optional[float]:
    """Read a price or count that may arrive as a number or numeric string.

    Non-finite values (nan, inf, "Infinity") are unusable and give None.
    """
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _count(value: Any) -> int:
    if isinstance(value, list):
        return len(value)
    number = _number(value)
    return int(number) if number is not None and number > 0 else 0


def _list_at(payload: Any, *paths: str) -> List[Any]:
    """Return the first list found at one of the dotted paths."""
    for path in paths:
        node = payload
        for part in path.split('.'):
            node = node.get(part) if isinstance(node, dict) else None
        if isinstance(node, list):
            return node
    return []


def parse_market_listings(payload: Any, normalizer: Optional[ItemNormalizer] = None) -> List[MarketListing]:
    """Flatten a market overview payload into listings."""
    normalizer = normalizer or ItemNormalizer()
    if isinstance(payload, list):
        entries = payload
    else:
        entries = _list_at(payload, 'items', 'data.items', 'marketItems', 'data')

    listings = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        item_id = id_text(first_present(entry, 'id', 'itemId'))
        name = entry.get('name') or entry.get('itemName')
        if item_id is None or not isinstance(name, str) or not name:
            continue
        tag = entry.get('tag')
        listings.append(MarketListing(
            item_id=item_id,
            name=name,
            tier=normalizer.resolve_tier(entry.get('tier'), name),
            rarity=normalizer.normalize_rarity(entry.get('rarityStr') or entry.get('rarity')),
            tag=tag if isinstance(tag, str) and tag else DEFAULT_TAG,
            sell_orders=_count(entry.get('sellOrders')),
            buy_orders=_count(entry.get('buyOrders')),
        ))
    logger.debug(f"Parsed {len(listings)} market listings")
    return listings


def _order_price(entry: Dict[str, Any]) -> Optional[float]:
    price = _number(entry.get('priceThreshold'))
    if price is None:
        price = _number(entry.get('price'))
    return price


def _parse_order(entry: Any, side: str) -> Optional[PlayerOrder]:
    if not isinstance(entry, dict):
        return None
    item_id = id_text(first_present(entry, 'itemId', 'item_id'))
    price = _order_price(entry)
    if item_id is None or price is None:
        return None
    quantity = _number(entry.get('quantity'))
    location = entry.get('claimName') or entry.get('regionName') or 'Unknown'
    return PlayerOrder(
        item_id=item_id,
        item_name=entry.get('itemName') or entry.get('name') or f"Item {item_id}",
        side=side,
        price=price,
        quantity=int(quantity) if quantity is not None else 0,
        location=str(location),
    )


def parse_player_orders(payload: Any) -> PlayerOrderBook:
    """Sell and buy orders from a per-player market payload."""
    book = PlayerOrderBook()
    for entry in _list_at(payload, 'sellOrders', 'data.sellOrders'):
        order = _parse_order(entry, SELL)
        if order:
            book.sell_orders.append(order)
    for entry in _list_at(payload, 'buyOrders', 'data.buyOrders'):
        order = _parse_order(entry, BUY)
        if order:
            book.buy_orders.append(order)
    logger.debug(f"Parsed {len(book.sell_orders)} sell and {len(book.buy_orders)} buy orders")
    return book


def parse_order_book(item_id: str, payload: Any) -> OrderBook:
    """All sellers' and buyers' prices for one item."""
    book = OrderBook(item_id=item_id)
    for entry in _list_at(payload, 'sellOrders', 'data.sellOrders'):
        if isinstance(entry, dict):
            price = _order_price(entry)
            if price is not None:
                book.sell_prices.append(price)
    for entry in _list_at(payload, 'buyOrders', 'data.buyOrders'):
        if isinstance(entry, dict):
            price = _order_price(entry)
            if price is not None:
                book.buy_prices.append(price)
    return book


def mark_cheapest(orders: Iterable[PlayerOrder], books: Dict[str, OrderBook]):
    """Flag every order priced at its item's lowest sell price.

    Ties are all cheapest. Orders whose book is missing or empty stay None.
    """
    for order in orders:
        book = books.get(order.item_id)
        lowest = book.lowest_sell() if book else None
        order.cheapest = None if lowest is None else order.price == lowest


def filter_listings(listings: Iterable[MarketListing], filters: Optional[ItemFilters] = None) -> List[MarketListing]:
    """Apply tier, rarity, tag and name filters to market listings."""
    if filters is None:
        return list(listings)
    needle = filters.search.strip().lower()
    result = []
    for listing in listings:
        if filters.tier is not None and listing.tier != filters.tier:
            continue
        if filters.rarity is not None and listing.rarity != filters.rarity:
            continue
        if filters.tag is not None and listing.tag != filters.tag:
            continue
        if needle and needle not in listing.name.lower():
            continue
        result.append(listing)
    return result
