"""Tests for the inventory viewer and market browser components."""

import asyncio

import httpx

from bitcraftinv.payloads import Envelope, unwrap_payload
from bitcraftinv.settings import AppConfig, ViewSettings
from bitcraftinv.viewer import InventoryViewer, MarketBrowser
from conftest import encode_graph, plain_inventory, pocket


def nested_page(username, entity_id, stacks):
    """A player profile graph whose inventories inline their item details."""
    return encode_graph({
        'player': {'entityId': entity_id, 'username': username},
        'inventories': {'inventories': [{
            'inventoryName': 'Bank',
            'pockets': [
                {'contents': {'itemId': {'name': name, 'tier': tier, 'rarity': 'Common'}, 'quantity': quantity}}
                for name, tier, quantity in stacks
            ],
        }]},
    })


def serve_player(routes, player_id, username, stacks):
    routes.add(f"/players/{player_id}/__data.json", nested_page(username, player_id, stacks))


class GatedClient:
    """Stands in for BitjitaClient; player pages wait until the gate opens."""

    def __init__(self, page):
        self.config = AppConfig()
        self.page = page
        self.gate = asyncio.Event()

    async def get_item_catalog(self, refresh=False):
        return {}

    async def get_player_page(self, player_id):
        await self.gate.wait()
        return unwrap_payload(self.page)

    async def get_player_inventories(self, player_id):
        return Envelope('unrecognized')


class TestInventoryViewer:
    def test_two_players_are_merged(self, routes, sink):
        serve_player(routes, '1', 'Alice', [('Basic Ingot', 1, 5), ('Rough Plank', 0, 2)])
        serve_player(routes, '2', 'Bob', [('Basic Ingot', 1, 7)])

        async def scenario():
            async with routes.client() as client:
                viewer = InventoryViewer(client, sink)
                added = await viewer.load_players(['1', '2'])
                return added, viewer.render()

        added, view = asyncio.run(scenario())
        assert added == 2
        ingot = next(item for item in view.items if item.name == 'Basic Ingot')
        assert ingot.count == 12
        assert ingot.player_quantities == {'Alice': 5, 'Bob': 7}
        assert view.show_player_column
        assert view.stats.players == 2
        assert view.settings.player_ids == ['1', '2']
        assert len(sink.views) == 3

    def test_falls_back_to_plain_route(self, routes, sink):
        routes.add('/players/3/__data.json', encode_graph({'player': {'entityId': '3', 'username': 'Carol'}}))
        payload = plain_inventory('unused', [pocket(1, 4)], {'1': {'name': 'Simple Rope', 'tier': None}})
        del payload['player']
        routes.add('/api/players/3/inventories', payload)

        async def scenario():
            async with routes.client() as client:
                return await InventoryViewer(client, sink).fetch_player_inventory('3')

        inventory = asyncio.run(scenario())
        assert inventory.username == 'Carol'
        assert inventory.shape == 'flat'
        assert [(item.name, item.tier, item.count) for item in inventory.items] == [('Simple Rope', 2, 4)]

    def test_undecodable_inventory_is_empty(self, routes, sink):
        routes.add('/players/4/__data.json', {'nodes': []})
        routes.add('/api/players/4/inventories', {'status': 'ok'})

        async def scenario():
            async with routes.client() as client:
                viewer = InventoryViewer(client, sink)
                await viewer.add_player('4', 'Dan')
                return viewer

        viewer = asyncio.run(scenario())
        assert viewer.players['4'].items == []
        assert viewer.players['4'].username == 'Dan'

    def test_duplicate_and_failed_adds_notify(self, routes, sink):
        serve_player(routes, '1', 'Alice', [('Basic Ingot', 1, 5)])
        routes.add('/players/9/__data.json', {'error': 'boom'}, status=500)

        async def scenario():
            async with routes.client() as client:
                viewer = InventoryViewer(client, sink)
                results = [await viewer.add_player('1'), await viewer.add_player('1'), await viewer.add_player('9')]
                return viewer, results

        viewer, results = asyncio.run(scenario())
        assert results == [True, False, False]
        assert list(viewer.players) == ['1']
        assert [notice.level for notice in sink.notices] == ['info', 'error']
        assert sink.notices[1].subject == '9'

    def test_stale_fetch_is_discarded(self, sink):
        page = nested_page('Alice', '1', [('Basic Ingot', 1, 5)])

        async def scenario():
            client = GatedClient(page)
            viewer = InventoryViewer(client, sink)
            task = asyncio.create_task(viewer.add_player('1'))
            await asyncio.sleep(0)
            viewer.clear()
            client.gate.set()
            return viewer, await task

        viewer, added = asyncio.run(scenario())
        assert added is False
        assert viewer.players == {}

    def test_refresh_keeps_failing_player(self, routes, sink):
        serve_player(routes, '1', 'Alice', [('Basic Ingot', 1, 5)])
        serve_player(routes, '2', 'Bob', [('Basic Ingot', 1, 7)])

        async def scenario():
            async with routes.client() as client:
                viewer = InventoryViewer(client, sink)
                await viewer.load_players(['1', '2'])
                serve_player(routes, '1', 'Alice', [('Basic Ingot', 1, 50)])
                routes.add('/players/2/__data.json', {'error': 'gone'}, status=500)
                refreshed = await viewer.refresh_all()
                return viewer, refreshed

        viewer, refreshed = asyncio.run(scenario())
        assert refreshed == 1
        assert viewer.players['1'].items[0].count == 50
        assert viewer.players['2'].items[0].count == 7
        assert sink.notices[-1].level == 'warning'

    def test_package_expansion_and_grouping(self, routes, sink):
        serve_player(routes, '1', 'Alice', [('Simple Clay Lump Package', 2, 3), ('Simple Clay Lump', 2, 10)])
        settings = ViewSettings(expand_packages=True, group_by='tier')

        async def scenario():
            async with routes.client() as client:
                viewer = InventoryViewer(client, sink, settings=settings)
                await viewer.add_player('1')
                return viewer.render()

        view = asyncio.run(scenario())
        assert [(item.name, item.count) for item in view.items] == [('Simple Clay Lump', 1510)]
        assert [section.title for section in view.sections] == ['Tier 2']
        assert not view.show_player_column

    def test_remove_player(self, routes, sink):
        serve_player(routes, '1', 'Alice', [('Basic Ingot', 1, 5)])

        async def scenario():
            async with routes.client() as client:
                viewer = InventoryViewer(client, sink)
                await viewer.add_player('1')
                viewer.remove_player('1')
                return viewer

        viewer = asyncio.run(scenario())
        assert viewer.players == {}
        assert viewer.settings.player_ids == []
        assert sink.views[-1].items == []

    def test_search_players_empty_result(self, routes, sink):
        routes.add('/players/__data.json', encode_graph({'players': []}))

        async def scenario():
            async with routes.client() as client:
                viewer = InventoryViewer(client, sink)
                return await viewer.search_players('zz'), await viewer.search_players('  ')

        found, blank = asyncio.run(scenario())
        assert found == [] and blank == []
        assert len(sink.notices) == 1
        assert len(routes.requests) == 1


def market_routes(routes):
    routes.add('/api/market', {'items': [
        {'id': 1, 'name': 'Basic Ingot', 'tier': 1, 'sellOrders': 2},
        {'id': 2, 'name': 'Basic Plank', 'tier': 1, 'sellOrders': 1},
        {'id': 3, 'name': 'Fine Rope', 'tier': 4, 'buyOrders': 1},
    ]})
    routes.add('/api/market/item/1', {'sellOrders': [{'priceThreshold': 10}, {'priceThreshold': 12}],
                                      'buyOrders': [{'priceThreshold': 8}]})
    routes.add('/api/market/item/2', {'error': 'upstream down'}, status=502)
    routes.add('/api/market/item/3', {'sellOrders': [], 'buyOrders': [{'priceThreshold': 30}]})


class TestMarketBrowser:
    def test_render_fetches_visible_prices(self, routes, sink):
        market_routes(routes)

        async def scenario():
            async with routes.client() as client:
                browser = MarketBrowser(client, sink, settings=ViewSettings(tier=1))
                await browser.load_listings()
                return await browser.render()

        view = asyncio.run(scenario())
        assert [listing.name for listing in view.listings] == ['Basic Ingot', 'Basic Plank']
        assert view.prices['1'].lowest_sell == 10
        assert view.prices['1'].highest_buy == 8
        assert '2' not in view.prices
        assert sink.notices[0].subject == '2'
        assert '/api/market/item/3' not in routes.paths()

    def test_prices_are_not_refetched(self, routes, sink):
        market_routes(routes)

        async def scenario():
            async with routes.client() as client:
                browser = MarketBrowser(client, sink)
                await browser.load_listings()
                await browser.render(limit=1)
                await browser.render(limit=1)

        asyncio.run(scenario())
        assert routes.paths().count('/api/market/item/1') == 1

    def test_player_orders_mark_cheapest(self, routes, sink):
        market_routes(routes)
        routes.add('/api/market/player/7', {'sellOrders': [
            {'itemId': 1, 'itemName': 'Basic Ingot', 'priceThreshold': 10, 'quantity': 5},
            {'itemId': 1, 'itemName': 'Basic Ingot', 'priceThreshold': 10, 'quantity': 1},
            {'itemId': 1, 'itemName': 'Basic Ingot', 'priceThreshold': 12, 'quantity': 1},
            {'itemId': 2, 'itemName': 'Basic Plank', 'priceThreshold': 3, 'quantity': 1},
        ], 'buyOrders': [{'itemId': 3, 'priceThreshold': 30, 'quantity': 2}]})

        async def scenario():
            async with routes.client() as client:
                return await MarketBrowser(client, sink).load_player_orders('7')

        book = asyncio.run(scenario())
        assert [order.cheapest for order in book.sell_orders] == [True, True, False, None]
        assert book.buy_orders[0].cheapest is None

    def test_player_orders_failure(self, routes, sink):
        routes.add('/api/market/player/7', {'error': 'nope'}, status=500)

        async def scenario():
            async with routes.client() as client:
                return await MarketBrowser(client, sink).load_player_orders('7')

        book = asyncio.run(scenario())
        assert book.sell_orders == [] and book.buy_orders == []
        assert sink.notices[0].level == 'error'

    def test_batch_size_from_config(self, routes, sink):
        async def scenario():
            async with routes.client(price_batch_size=3) as client:
                return MarketBrowser(client, sink).batch_size

        assert asyncio.run(scenario()) == 3

    def test_stale_listing_load_is_discarded(self, sink):
        class SlowMarketClient:
            config = AppConfig()

            def __init__(self):
                self.calls = 0
                self.gate = asyncio.Event()

            async def get_market(self, has_sell_orders=None, has_buy_orders=None):
                self.calls += 1
                if self.calls == 1:
                    await self.gate.wait()
                    return Envelope('plain', {'items': [{'id': 1, 'name': 'Old'}]})
                return Envelope('plain', {'items': [{'id': 2, 'name': 'New'}]})

        async def scenario():
            client = SlowMarketClient()
            browser = MarketBrowser(client, sink)
            first = asyncio.create_task(browser.load_listings())
            await asyncio.sleep(0)
            await browser.load_listings(has_sell_orders=True)
            client.gate.set()
            await first
            return browser

        browser = asyncio.run(scenario())
        assert [listing.name for listing in browser.listings] == ['New']
