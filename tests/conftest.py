"""
Shared pytest fixtures for the BitcraftInv tests.

Provides:
  - A route table that serves canned JSON through httpx.MockTransport
  - Graph document builders for ``__data.json`` payloads
  - Helpers for building normalized items
"""

from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from bitcraftinv.client import BitjitaClient
from bitcraftinv.normalize import ItemNormalizer, NormalizedItem
from bitcraftinv.settings import AppConfig


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def graph_document(slots: List[Any]) -> Dict[str, Any]:
    """Wrap a slot arena the way SvelteKit serves it (layout node first)."""
    return {
        'type': 'data',
        'nodes': [
            {'type': 'skip'},
            {'type': 'data', 'data': slots, 'uses': {}},
        ],
    }


def make_item(name: str, tier: int = 1, rarity: str = 'Common', count: int = 1, player: str = 'Alice',
              tag: str = 'Other', from_package: bool = False, location: str = 'Bank') -> NormalizedItem:
    return NormalizedItem(
        name=name,
        tier=tier,
        rarity=rarity,
        count=count,
        base_item=name,
        tag=tag,
        player_id=player.lower(),
        location=location,
        from_package=from_package,
        player_name=player,
    )


def plain_inventory(username: str, pockets: List[Dict[str, Any]], items: Dict[str, Any],
                    container: str = 'Bank') -> Dict[str, Any]:
    """A flat ``/api/players/{id}/inventories`` response."""
    return {
        'player': {'entityId': '1', 'username': username},
        'inventories': [{'inventoryName': container, 'pockets': pockets}],
        'items': items,
        'cargos': {},
    }


def pocket(item_id: Any, quantity: Any) -> Dict[str, Any]:
    return {'contents': {'itemId': item_id, 'quantity': quantity}}


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------

class RouteTable:
    """Serves canned responses by URL path and records every request."""

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, path: str, body: Any = None, status: int = 200,
            handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.routes[path] = handler or (lambda request: httpx.Response(status, json=body))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={'error': 'not found'})
        return handler(request)

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]

    def client(self, **config: Any) -> BitjitaClient:
        config.setdefault('max_retries', 1)
        return BitjitaClient(AppConfig(**config), transport=httpx.MockTransport(self))


@pytest.fixture()
def routes() -> RouteTable:
    return RouteTable()


@pytest.fixture()
def normalizer() -> ItemNormalizer:
    return ItemNormalizer()


def encode_graph(value: Any) -> Dict[str, Any]:
    """Flatten a JSON value into a graph document, one slot per value."""
    slots: List[Any] = []

    def add(node: Any) -> int:
        index = len(slots)
        slots.append(None)
        if isinstance(node, dict):
            slots[index] = {key: add(child) for key, child in node.items()}
        elif isinstance(node, list):
            slots[index] = [add(child) for child in node]
        else:
            slots[index] = node
        return index

    add(value)
    return graph_document(slots)


class RecordingSink:
    """Render sink that keeps everything it is given."""

    def __init__(self):
        self.views = []
        self.market_views = []
        self.notices = []

    def render(self, view):
        self.views.append(view)

    def render_market(self, view):
        self.market_views.append(view)

    def notify(self, notice):
        self.notices.append(notice)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()
