"""Recognition of the upstream response shapes.

bitjita.com serves the same data in two envelopes: the SvelteKit
``__data.json`` graph and plain JSON from the ``/api`` routes. Inventory
payloads additionally come in several historical layouts. Each layout is a
named variant tried in a fixed order; anything else is reported as
unrecognized rather than guessed at.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
import logging

from .decode import UNDEFINED, GraphDecodeError, decode
from .normalize import RawItemRecord

logger = logging.getLogger(__name__)

ENVELOPE_GRAPH = 'graph'
ENVELOPE_PLAIN = 'plain'
ENVELOPE_UNRECOGNIZED = 'unrecognized'

SHAPE_NESTED = 'nested'
SHAPE_FLAT = 'flat'
SHAPE_LEGACY = 'legacy'
SHAPE_UNRECOGNIZED = 'unrecognized'

# Equipped containers that are not storage
SKIP_CONTAINERS = {'Wallet', 'Toolbelt'}


@dataclass
class Envelope:
    kind: str
    value: Any = None

    @property
    def recognized(self) -> bool:
        return self.kind != ENVELOPE_UNRECOGNIZED


@dataclass
class PlayerRef:
    entity_id: str
    username: str


@dataclass
class InventoryPayload:
    """Raw item records found in an inventory payload, with their locations."""
    shape: str
    records: List[Tuple[RawItemRecord, str]] = field(default_factory=list)
    player: Optional[PlayerRef] = None


def unwrap_payload(document: Any) -> Envelope:
    """Identify the envelope of a response body and return its content."""
    if isinstance(document, dict) and isinstance(document.get('nodes'), list):
        try:
            value = decode(document)
        except GraphDecodeError as e:
            logger.warning(f"Malformed graph payload: {e}")
            return Envelope(ENVELOPE_UNRECOGNIZED)
        if value is None:
            logger.warning("Graph payload has no data node")
            return Envelope(ENVELOPE_UNRECOGNIZED)
        return Envelope(ENVELOPE_GRAPH, value)

    if isinstance(document, (dict, list)):
        return Envelope(ENVELOPE_PLAIN, document)

    return Envelope(ENVELOPE_UNRECOGNIZED)


def id_text(value: Any) -> Optional[str]:
    """Item and entity ids arrive as numbers or strings; use the text form."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, str)) and str(value):
        return str(value)
    return None


def first_present(data: Mapping[str, Any], *keys: str) -> Any:
    """Value of the first key that is present and not None."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def parse_player(data: Any) -> Optional[PlayerRef]:
    """Read a player entry; requires an id and a username."""
    if not isinstance(data, dict):
        return None
    entity_id = id_text(first_present(data, 'entityId', 'entity_id', 'id'))
    username = data.get('username') or data.get('userName')
    if entity_id is None or not isinstance(username, str) or not username:
        return None
    return PlayerRef(entity_id=entity_id, username=username)


def parse_player_search(payload: Any) -> List[PlayerRef]:
    """Players from a search response (graph root or plain JSON)."""
    if not isinstance(payload, dict):
        return []
    players = payload.get('players')
    if not isinstance(players, list):
        return []
    result = []
    for entry in players:
        player = parse_player(entry)
        if player:
            result.append(player)
    return result


def parse_item_catalog(payload: Any) -> Dict[str, Dict[str, Any]]:
    """Item details keyed by item id text, from the ``/api/items`` response."""
    if isinstance(payload, dict):
        entries = payload.get('items')
        if isinstance(entries, dict):
            return {str(key): value for key, value in entries.items() if isinstance(value, dict)}
    else:
        entries = payload
    catalog: Dict[str, Dict[str, Any]] = {}
    if isinstance(entries, list):
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            item_id = id_text(entry.get('id'))
            if item_id is not None:
                catalog[item_id] = entry
    return catalog


class InventoryParser:
    """Extracts raw item records from decoded inventory payloads."""

    def __init__(self, catalog: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self.catalog = catalog or {}

    def parse(self, payload: Any) -> InventoryPayload:
        """Try each known layout in priority order."""
        if not isinstance(payload, dict):
            return InventoryPayload(SHAPE_UNRECOGNIZED)

        player = parse_player(payload.get('player'))
        inventories = payload.get('inventories')

        if isinstance(inventories, dict) and isinstance(inventories.get('inventories'), list):
            records = self._from_containers(inventories['inventories'], inventories)
            return InventoryPayload(SHAPE_NESTED, records, player)

        if isinstance(inventories, list):
            records = self._from_containers(inventories, payload)
            return InventoryPayload(SHAPE_FLAT, records, player)

        records = self._scan_legacy(payload)
        if records:
            return InventoryPayload(SHAPE_LEGACY, records, player)

        logger.warning(f"Unrecognized inventory payload with keys {sorted(payload.keys())[:10]}")
        return InventoryPayload(SHAPE_UNRECOGNIZED, player=player)

    def _from_containers(self, containers: List[Any], lookups: Mapping[str, Any]) -> List[Tuple[RawItemRecord, str]]:
        items_lookup = lookups.get('items') if isinstance(lookups.get('items'), dict) else {}
        cargos_lookup = lookups.get('cargos') if isinstance(lookups.get('cargos'), dict) else {}

        records = []
        for container in containers:
            if not isinstance(container, dict):
                continue
            location = container.get('inventoryName') or container.get('name') or 'Unknown'
            if location in SKIP_CONTAINERS:
                continue
            pockets = container.get('pockets')
            if not isinstance(pockets, list):
                continue
            for pocket in pockets:
                record = self._from_pocket(pocket, items_lookup, cargos_lookup)
                if record is not None:
                    records.append((record, str(location)))
        return records

    def _from_pocket(self, pocket: Any, items_lookup: Mapping[str, Any],
                     cargos_lookup: Mapping[str, Any]) -> Optional[RawItemRecord]:
        if not isinstance(pocket, dict):
            return None
        contents = pocket.get('contents')
        if not isinstance(contents, dict):
            return None

        item_ref = contents.get('itemId')
        if item_ref is None:
            item_ref = contents.get('item_id')

        # Graph payloads usually inline the details; plain ones reference them by id
        if isinstance(item_ref, dict):
            details = item_ref
        else:
            key = id_text(item_ref)
            if key is None:
                return None
            details = items_lookup.get(key) or cargos_lookup.get(key) or self.catalog.get(key)
            if not isinstance(details, dict):
                logger.debug(f"No details for item id {key}")
                return None

        return RawItemRecord.from_mapping(details, quantity=contents.get('quantity'))

    def _scan_legacy(self, payload: Any) -> List[Tuple[RawItemRecord, str]]:
        """Collect item-like objects anywhere in an older payload."""
        records = []
        for obj in _walk(payload):
            if _looks_like_item(obj):
                records.append((self._legacy_record(obj), 'Unknown'))
                continue
            contents = obj.get('contents')
            # Contents with a tier are picked up by the walk itself
            if isinstance(contents, dict) and contents.get('name') and contents.get('rarity') and 'tier' not in contents:
                records.append((self._legacy_record(contents), 'Unknown'))
        return records

    def _legacy_record(self, data: Mapping[str, Any]) -> RawItemRecord:
        record = RawItemRecord.from_mapping(data)
        if record.quantity is None or record.quantity is UNDEFINED:
            # Older payloads omit the stack size for single items
            record.quantity = 1
        return record


def _looks_like_item(obj: Mapping[str, Any]) -> bool:
    return bool(obj.get('name')) and 'tier' in obj and bool(obj.get('rarity'))


def _walk(root: Any) -> Iterator[Dict[str, Any]]:
    """Yield every dict reachable from root once; tolerates cycles.

    Item-like dicts are yielded but not descended into.
    """
    seen = set()
    stack = [root]
    while stack:
        obj = stack.pop()
        if not isinstance(obj, (dict, list)) or id(obj) in seen:
            continue
        seen.add(id(obj))
        if isinstance(obj, list):
            stack.extend(reversed(obj))
            continue
        yield obj
        if _looks_like_item(obj):
            continue
        stack.extend(reversed(list(obj.values())))
