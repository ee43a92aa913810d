"""Price snapshot sources."""

from .base import SnapshotSource
from .coingecko import CoinGeckoSnapshotSource
from .csv_data import CsvSnapshotSource

__all__ = ["SnapshotSource", "CoinGeckoSnapshotSource", "CsvSnapshotSource"]
