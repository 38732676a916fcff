"""Command line entry point for BitcraftInv."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .aggregate import GROUP_MODES, SORT_KEYS
from .client import BitjitaClient
from .export import CatalogExporter
from .market import PlayerOrder
from .settings import ViewSettings, load_config, parse_tier
from .viewer import InventoryView, InventoryViewer, MarketBrowser, MarketView, Notice, RenderSink

logger = logging.getLogger(__name__)


class ConsoleSink(RenderSink):
    """Prints views as plain-text tables."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.last_view: Optional[InventoryView] = None

    def _print(self, text: str = ''):
        print(text, file=self.stream)

    def render(self, view: InventoryView):
        # Intermediate renders while players load are not printed
        self.last_view = view

    def print_inventory(self, view: InventoryView):
        if not view.players:
            self._print("No players added yet.")
            return
        if not view.items:
            self._print("No items match your filters.")
            return

        show_player = view.show_player_column
        for section in view.sections:
            if section.title:
                self._print(f"== {section.title}: {len(section.items)} items ({section.total_count:,} total)")
            for item in section.items:
                line = f"  {item.name:<40} T{item.tier:<3} {item.rarity:<10} {item.count:>10,}"
                if show_player:
                    line += "  " + ", ".join(f"{name} ({qty:,})" for name, qty in item.player_quantities.items())
                self._print(line)
        stats = view.stats
        self._print()
        self._print(f"Players: {stats.players}  Unique: {stats.unique_items}  Total: {stats.total_count:,}")

    def render_market(self, view: MarketView):
        for listing in view.listings:
            price = view.prices.get(listing.item_id)
            lowest = f"{price.lowest_sell:,.0f}" if price and price.lowest_sell is not None else "--"
            highest = f"{price.highest_buy:,.0f}" if price and price.highest_buy is not None else "--"
            self._print(f"  {listing.name:<40} T{listing.tier:<3} {listing.rarity:<10} "
                        f"sell {listing.sell_orders:>4} (low {lowest:>8})  buy {listing.buy_orders:>4} (high {highest:>8})")
        if not view.listings:
            self._print("No market listings match your filters.")

    def notify(self, notice: Notice):
        print(f"[{notice.level}] {notice.message}", file=sys.stderr)


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # httpx logs every request at INFO
    logging.getLogger('httpx').setLevel(logging.DEBUG if verbose else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='bitcraftinv',
        description='Aggregate BitCraft inventories and market data from bitjita.com'
    )
    parser.add_argument('--config', '-c', help='YAML config file')
    parser.add_argument('--base-url', help='Upstream host or proxy base URL (default: https://bitjita.com)')
    parser.add_argument('--timeout', type=float, help='Request timeout in seconds')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    search = subparsers.add_parser('search', help='Search players by name')
    search.add_argument('query', help='Name fragment')

    inventory = subparsers.add_parser('inventory', help='Show the aggregated inventory of one or more players')
    inventory.add_argument('player_ids', nargs='*', help='Player entity ids')
    inventory.add_argument('--view', default='', help='View settings as a query string (players=1,2&group=tier...)')
    inventory.add_argument('--group-by', choices=GROUP_MODES, help='Grouping mode')
    inventory.add_argument('--tier', help='Only this tier (number or tier name)')
    inventory.add_argument('--rarity', help='Only this rarity')
    inventory.add_argument('--tag', help='Only this tag')
    inventory.add_argument('--search', help='Case-insensitive name filter')
    inventory.add_argument('--sort', choices=SORT_KEYS, help='Sort key')
    inventory.add_argument('--desc', action='store_true', help='Sort descending')
    inventory.add_argument('--expand-packages', action='store_true', help='Count package contents instead of packages')
    inventory.add_argument('--csv', help='Write the rows to this CSV file')
    inventory.add_argument('--catalog', help='Write catalog.yml to this path')
    inventory.add_argument('--metrics', help='Write metrics.yml to this path')

    market = subparsers.add_parser('market', help='Browse market listings')
    market.add_argument('--has-sell-orders', action='store_true', help='Only items with sell orders')
    market.add_argument('--has-buy-orders', action='store_true', help='Only items with buy orders')
    market.add_argument('--search', help='Case-insensitive name filter')
    market.add_argument('--tier', help='Only this tier')
    market.add_argument('--rarity', help='Only this rarity')
    market.add_argument('--tag', help='Only this tag')
    market.add_argument('--limit', type=int, default=50, help='Number of listings to show (default: %(default)s)')
    market.add_argument('--no-prices', action='store_true', help='Skip the per-item price look-ups')

    orders = subparsers.add_parser('orders', help="Show a player's market orders")
    orders.add_argument('player_id', help='Player entity id')

    return parser


def view_settings_from_args(args: argparse.Namespace) -> ViewSettings:
    """Start from --view, then apply explicit flags on top."""
    settings = ViewSettings.from_query(getattr(args, 'view', '') or '')
    for player_id in getattr(args, 'player_ids', []) or []:
        if player_id not in settings.player_ids:
            settings.player_ids.append(player_id)
    if getattr(args, 'group_by', None):
        settings.group_by = args.group_by
    if args.tier is not None:
        settings.tier = parse_tier(args.tier)
    if args.rarity:
        settings.rarity = args.rarity
    if args.tag:
        settings.tag = args.tag
    if args.search:
        settings.search = args.search
    if getattr(args, 'sort', None):
        settings.sort_key = args.sort
    if getattr(args, 'desc', False):
        settings.descending = True
    if getattr(args, 'expand_packages', False):
        settings.expand_packages = True
    return settings


async def run_search(client: BitjitaClient, sink: ConsoleSink, query: str) -> bool:
    viewer = InventoryViewer(client, sink)
    players = await viewer.search_players(query)
    for player in players:
        print(f"{player.entity_id}\t{player.username}")
    return bool(players)


async def run_inventory(client: BitjitaClient, sink: ConsoleSink, args: argparse.Namespace) -> bool:
    settings = view_settings_from_args(args)
    if not settings.player_ids:
        print("No player ids given (pass ids or --view players=...)", file=sys.stderr)
        return False

    viewer = InventoryViewer(client, sink, settings=ViewSettings(
        group_by=settings.group_by, tier=settings.tier, rarity=settings.rarity, tag=settings.tag,
        search=settings.search, sort_key=settings.sort_key, descending=settings.descending,
        expand_packages=settings.expand_packages,
    ))
    added = await viewer.load_players(settings.player_ids)
    view = viewer.render()
    sink.print_inventory(view)
    print(f"\nView: ?{viewer.settings.to_query()}")

    exporter = CatalogExporter()
    success = added > 0
    if args.csv:
        success = exporter.export_csv(view.items, args.csv, include_player=len(view.players) > 1) and success
    if args.catalog:
        success = exporter.export_catalog(view.items, args.catalog) and success
    if args.metrics:
        success = exporter.export_metrics(view.items, args.metrics) and success
    return success


async def run_market(client: BitjitaClient, sink: ConsoleSink, args: argparse.Namespace) -> bool:
    settings = ViewSettings(tier=parse_tier(args.tier), rarity=args.rarity, tag=args.tag, search=args.search or '')
    browser = MarketBrowser(client, sink, settings=settings)
    listings = await browser.load_listings(
        has_sell_orders=True if args.has_sell_orders else None,
        has_buy_orders=True if args.has_buy_orders else None,
    )
    await browser.render(limit=args.limit, with_prices=not args.no_prices)
    return bool(listings)


def _format_order(order: PlayerOrder) -> str:
    flag = {True: 'cheapest', False: '', None: '?'}[order.cheapest] if order.side == 'sell' else ''
    return f"  {order.item_name:<40} {order.price:>10,.0f} x {order.quantity:<6} {order.location:<24} {flag}"


async def run_orders(client: BitjitaClient, sink: ConsoleSink, player_id: str) -> bool:
    browser = MarketBrowser(client, sink)
    book = await browser.load_player_orders(player_id)
    print(f"Sell orders ({len(book.sell_orders)}):")
    for order in book.sell_orders:
        print(_format_order(order))
    print(f"Buy orders ({len(book.buy_orders)}):")
    for order in book.buy_orders:
        print(_format_order(order))
    return True


async def run(args: argparse.Namespace) -> bool:
    config = load_config(args.config, base_url=args.base_url, timeout=args.timeout)
    sink = ConsoleSink()
    async with BitjitaClient(config) as client:
        if args.command == 'search':
            return await run_search(client, sink, args.query)
        if args.command == 'inventory':
            return await run_inventory(client, sink, args)
        if args.command == 'market':
            return await run_market(client, sink, args)
        if args.command == 'orders':
            return await run_orders(client, sink, args.player_id)
    return False


def main(argv: Optional[List[str]] = None):
    """Main entry point with command line interface."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    try:
        success = asyncio.run(run(args))
    except KeyboardInterrupt:
        sys.exit(130)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
