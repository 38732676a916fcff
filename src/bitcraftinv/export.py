"""Export of aggregated inventory views to CSV, catalog.yml and metrics.yml."""

import csv
import io
import yaml
from collections import Counter
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from .aggregate import AggregatedItem
from .normalize import RARITIES

logger = logging.getLogger(__name__)

CSV_HEADERS = ['Name', 'Tier', 'Rarity', 'Count']


def default_csv_name(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"bitcraft-inventory-{today.isoformat()}.csv"


class CatalogExporter:
    """Exports aggregated inventory rows."""

    def player_label(self, item: AggregatedItem) -> str:
        """Contributors of a row, largest quantity first."""
        contributors = sorted(item.player_quantities.items(), key=lambda kv: (-kv[1], kv[0]))
        return '; '.join(name for name, _ in contributors)

    def to_csv(self, items: List[AggregatedItem], include_player: bool = False) -> str:
        """Render rows as CSV text: Name,Tier,Rarity,Count[,Player].

        Text fields are quoted, tier and count are written as bare numbers.
        """
        headers = CSV_HEADERS + (['Player'] if include_player else [])
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator='\n').writerow(headers)
        writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator='\n')
        for item in items:
            row = [item.name, int(item.tier), item.rarity, int(item.count)]
            if include_player:
                row.append(self.player_label(item))
            writer.writerow(row)
        return buffer.getvalue()

    def export_csv(self, items: List[AggregatedItem], output_path: str, include_player: bool = False) -> bool:
        """Write rows to a CSV file."""
        if not items:
            logger.warning("No items to export")
            return False
        try:
            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)

            with open(output_path, 'w', encoding='utf-8', newline='') as f:
                f.write(self.to_csv(items, include_player=include_player))

            logger.info(f"Exported {len(items)} rows to {output_path}")
            return True

        except OSError as e:
            logger.error(f"Error exporting CSV to {output_path}: {e}")
            return False

    def export_catalog(self, items: List[AggregatedItem], output_path: str = 'catalog.yml') -> bool:
        """Export rows with their per-player breakdown to catalog.yml."""
        try:
            catalog_data = {
                'items': [self._item_to_dict(item) for item in items]
            }

            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)

            with open(output_path, 'w', encoding='utf-8') as f:
                yaml.dump(catalog_data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

            logger.info(f"Exported catalog with {len(items)} items to {output_path}")
            return True

        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error exporting catalog to {output_path}: {e}")
            return False

    def export_metrics(self, items: List[AggregatedItem], output_path: str = 'metrics.yml') -> bool:
        """Export summary counts to metrics.yml."""
        try:
            metrics_data = self.generate_metrics(items)

            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)

            with open(output_path, 'w', encoding='utf-8') as f:
                yaml.dump(metrics_data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

            logger.info(f"Exported metrics to {output_path}")
            return True

        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error exporting metrics to {output_path}: {e}")
            return False

    def generate_metrics(self, items: List[AggregatedItem]) -> Dict[str, Any]:
        """Totals by tier, rarity, tag, location and player."""
        by_tier: Counter = Counter()
        by_rarity: Counter = Counter()
        by_tag: Counter = Counter()
        by_player: Counter = Counter()
        from_packages = 0

        for item in items:
            by_tier[item.tier] += item.count
            by_rarity[item.rarity] += item.count
            by_tag[item.tag] += item.count
            for player, quantity in item.player_quantities.items():
                by_player[player] += quantity
            if item.from_package:
                from_packages += item.count

        rarity_order = {rarity: index for index, rarity in enumerate(RARITIES)}

        return {
            'summary': {
                'rows_total': len(items),
                'items_total': sum(item.count for item in items),
                'players_total': len(by_player),
                'items_from_packages': from_packages,
            },
            'by_tier': [
                {'tier': tier, 'count': by_tier[tier]}
                for tier in sorted(by_tier, reverse=True)
            ],
            'by_rarity': [
                {'rarity': rarity, 'count': by_rarity[rarity]}
                for rarity in sorted(by_rarity, key=lambda r: (rarity_order.get(r, -1), r), reverse=True)
            ],
            'by_tag': [
                {'tag': tag, 'count': count}
                for tag, count in by_tag.most_common()
            ],
            'by_player': [
                {'player': player, 'count': count}
                for player, count in by_player.most_common()
            ],
            'top_items': [
                {'name': item.name, 'tier': item.tier, 'count': item.count}
                for item in sorted(items, key=lambda i: i.count, reverse=True)[:20]
            ],
        }

    def _item_to_dict(self, item: AggregatedItem) -> Dict[str, Any]:
        return {
            'name': item.name,
            'base_item': item.base_item,
            'tier': item.tier,
            'rarity': item.rarity,
            'tag': item.tag,
            'count': item.count,
            'from_package': item.from_package,
            'players': dict(item.player_quantities),
        }
