"""Price snapshot source contract."""

from __future__ import annotations

from typing import Protocol

from athwatch.domain.models import AssetQuote


class SnapshotSource(Protocol):
    """Interface for ranked market snapshot retrieval."""

    def get_ranked_quotes(self) -> list[AssetQuote]:
        """Return current quotes for the tracked ranked assets."""
