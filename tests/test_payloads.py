"""Tests for envelope and inventory shape recognition."""

from bitcraftinv.payloads import (
    ENVELOPE_GRAPH, ENVELOPE_PLAIN, ENVELOPE_UNRECOGNIZED, SHAPE_FLAT, SHAPE_LEGACY, SHAPE_NESTED,
    SHAPE_UNRECOGNIZED, InventoryParser, id_text, parse_item_catalog, parse_player_search, unwrap_payload,
)
from conftest import graph_document, plain_inventory, pocket


class TestUnwrap:
    def test_graph(self):
        envelope = unwrap_payload(graph_document([{'players': 1}, [2], {'entityId': 3, 'username': 4}, 101, 'Alice']))
        assert envelope.kind == ENVELOPE_GRAPH
        assert envelope.value == {'players': [{'entityId': 101, 'username': 'Alice'}]}

    def test_plain(self):
        envelope = unwrap_payload({'players': []})
        assert envelope.kind == ENVELOPE_PLAIN
        assert envelope.recognized

    def test_malformed_graph_is_unrecognized(self):
        assert unwrap_payload(graph_document([[99]])).kind == ENVELOPE_UNRECOGNIZED
        assert unwrap_payload({'nodes': [{'type': 'skip'}]}).kind == ENVELOPE_UNRECOGNIZED

    def test_scalars(self):
        assert not unwrap_payload(None).recognized
        assert not unwrap_payload('<html>').recognized


class TestPlayers:
    def test_search(self):
        payload = {'players': [
            {'entityId': 101, 'username': 'Alice'},
            {'entityId': '202', 'username': 'Bob'},
            {'entityId': 303},
            'junk',
        ]}
        players = parse_player_search(payload)
        assert [(p.entity_id, p.username) for p in players] == [('101', 'Alice'), ('202', 'Bob')]

    def test_player_id_zero(self):
        players = parse_player_search({'players': [{'entityId': 0, 'username': 'Zero'}]})
        assert [(p.entity_id, p.username) for p in players] == [('0', 'Zero')]

    def test_search_without_players(self):
        assert parse_player_search({'error': 'nope'}) == []
        assert parse_player_search(None) == []

    def test_id_text(self):
        assert id_text(5) == '5'
        assert id_text('abc') == 'abc'
        assert id_text('') is None
        assert id_text(True) is None
        assert id_text(1.5) is None


class TestCatalog:
    def test_list(self):
        catalog = parse_item_catalog([{'id': 1, 'name': 'Ingot'}, {'name': 'no id'}])
        assert list(catalog) == ['1']

    def test_keyed(self):
        catalog = parse_item_catalog({'items': {'7': {'name': 'Plank'}, '8': 'bad'}})
        assert catalog == {'7': {'name': 'Plank'}}


class TestInventoryParser:
    def test_flat_payload_uses_lookups(self):
        payload = plain_inventory('Alice', [pocket(1, 5), pocket(2, 3), pocket(3, 1)], {
            '1': {'name': 'Basic Ingot', 'tier': 1, 'rarityStr': 'Common', 'tag': 'Metal'},
            '2': {'name': 'Rough Plank', 'tier': 0, 'rarity': 'Common'},
        })
        result = InventoryParser().parse(payload)

        assert result.shape == SHAPE_FLAT
        assert result.player.username == 'Alice'
        assert [(r.name, r.quantity, loc) for r, loc in result.records] == [
            ('Basic Ingot', 5, 'Bank'),
            ('Rough Plank', 3, 'Bank'),
        ]

    def test_catalog_fills_missing_details(self):
        payload = plain_inventory('Alice', [pocket(9, 2)], {})
        result = InventoryParser({'9': {'name': 'Fine Rope', 'tier': 4}}).parse(payload)
        assert [r.name for r, _ in result.records] == ['Fine Rope']

    def test_cargo_lookup(self):
        payload = plain_inventory('Alice', [pocket(4, 1)], {})
        payload['cargos'] = {'4': {'name': 'Crate', 'tier': 2}}
        result = InventoryParser().parse(payload)
        assert [r.name for r, _ in result.records] == ['Crate']

    def test_nested_graph_payload(self):
        slots = [
            {'player': 1, 'inventories': 4},
            {'entityId': 2, 'username': 3},
            '55',
            'Carol',
            {'inventories': 5},
            [6, 13],
            {'inventoryName': 7, 'pockets': 8},
            'Storage Chest',
            [9],
            {'contents': 10},
            {'itemId': 11, 'quantity': 12},
            {'name': 14, 'tier': 15, 'rarity': 16},
            4,
            {'inventoryName': 17, 'pockets': 8},
            'Basic Rope',
            1,
            'Common',
            'Wallet',
        ]
        envelope = unwrap_payload(graph_document(slots))
        result = InventoryParser().parse(envelope.value)

        assert result.shape == SHAPE_NESTED
        assert result.player.entity_id == '55'
        # The wallet shares the pocket list but is skipped
        assert [(r.name, r.quantity, loc) for r, loc in result.records] == [('Basic Rope', 4, 'Storage Chest')]

    def test_legacy_scan(self):
        payload = {'data': {'stuff': [
            {'name': 'Old Sword', 'tier': 2, 'rarity': 'Rare', 'quantity': 1},
            {'contents': {'name': 'Old Shield', 'rarity': 'Common', 'quantity': 3}},
            {'name': 'Old Boots', 'tier': 1, 'rarity': 'Common'},
        ]}}
        result = InventoryParser().parse(payload)
        assert result.shape == SHAPE_LEGACY
        assert sorted((r.name, r.quantity) for r, _ in result.records) == [
            ('Old Boots', 1), ('Old Shield', 3), ('Old Sword', 1),
        ]

    def test_legacy_zero_quantity_is_not_defaulted(self, normalizer):
        payload = {'stuff': [
            {'name': 'Basic Plank', 'tier': 1, 'rarity': 'Common', 'quantity': 0},
            {'name': 'Basic Rope', 'tier': 1, 'rarity': 'Common', 'count': 0},
        ]}
        result = InventoryParser().parse(payload)
        assert sorted(r.quantity for r, _ in result.records) == [0, 0]
        assert normalizer.normalize_many(result.records) == []

    def test_legacy_scan_tolerates_cycles(self):
        payload = {'name': 'x'}
        payload['self'] = payload
        payload['list'] = [{'name': 'Gem', 'tier': 3, 'rarity': 'Epic', 'quantity': 2}]
        result = InventoryParser().parse(payload)
        assert [(r.name, r.quantity) for r, _ in result.records] == [('Gem', 2)]

    def test_unrecognized(self):
        assert InventoryParser().parse({'message': 'hello'}).shape == SHAPE_UNRECOGNIZED
        assert InventoryParser().parse(['a', 'b']).shape == SHAPE_UNRECOGNIZED
