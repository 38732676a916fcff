"""BitcraftInv - BitCraft inventory and market aggregator.

Fetches player inventories and market data from bitjita.com, normalizes
item records, expands packages and merges everything into sortable,
groupable views that can be exported to CSV and YAML.
"""

__version__ = "0.1.0"
__author__ = "BitcraftInv Team"
