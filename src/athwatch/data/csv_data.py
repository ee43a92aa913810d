"""CSV-backed snapshot source for offline runs and replays."""

from __future__ import annotations

import math
from datetime import datetime
from pathlib import Path

import pandas as pd

from athwatch.domain.models import AssetQuote
from athwatch.errors import SnapshotError


class CsvSnapshotSource:
    """Load ranked quotes from a local CSV file.

    Without a ``snapshot`` column every call returns the whole file. With one,
    rows are grouped by that column and each call walks forward one group,
    repeating the last group once the file is exhausted.
    """

    required_columns = ("id", "current_price")
    column_aliases = {
        "asset_id": "id",
        "price": "current_price",
        "currentprice": "current_price",
        "athdate": "ath_date",
        "rank": "market_cap_rank",
    }

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._snapshots: list[pd.DataFrame] | None = None
        self._cursor = 0

    def get_ranked_quotes(self) -> list[AssetQuote]:
        snapshots = self._load_snapshots()
        index = min(self._cursor, len(snapshots) - 1)
        if self._cursor < len(snapshots):
            self._cursor += 1
        return [self._row_to_quote(row) for row in snapshots[index].to_dict("records")]

    def _load_snapshots(self) -> list[pd.DataFrame]:
        if self._snapshots is not None:
            return self._snapshots
        if not self.path.exists():
            raise SnapshotError(f"Quotes CSV not found: {self.path}")
        try:
            frame = pd.read_csv(self.path)
        except (OSError, ValueError) as exc:
            raise SnapshotError(f"Cannot read quotes CSV {self.path}: {exc}") from exc
        frame = self._normalize_csv(frame)
        if "snapshot" in frame.columns:
            snapshots = [group for _, group in frame.groupby("snapshot", sort=True)]
        else:
            snapshots = [frame]
        if not snapshots or all(group.empty for group in snapshots):
            raise SnapshotError(f"Quotes CSV {self.path} has no rows")
        self._snapshots = snapshots
        return snapshots

    def _normalize_csv(self, frame: pd.DataFrame) -> pd.DataFrame:
        normalized = frame.rename(
            columns=lambda column: self.column_aliases.get(
                str(column).strip().lower(), str(column).strip().lower()
            )
        )
        missing = [column for column in self.required_columns if column not in normalized]
        if missing:
            raise SnapshotError(f"Quotes CSV {self.path} missing columns: {', '.join(missing)}")
        normalized = normalized.dropna(subset=["id"])
        normalized["current_price"] = pd.to_numeric(normalized["current_price"], errors="coerce")
        if "ath" in normalized.columns:
            normalized["ath"] = pd.to_numeric(normalized["ath"], errors="coerce")
        for column in ("ath_date", "last_updated"):
            if column in normalized.columns:
                normalized[column] = pd.to_datetime(normalized[column], utc=True, errors="coerce")
        return normalized

    @staticmethod
    def _row_to_quote(row: dict) -> AssetQuote:
        asset_id = str(row["id"]).strip()
        ath = row.get("ath")
        rank = row.get("market_cap_rank")
        return AssetQuote(
            asset_id=asset_id,
            symbol=_to_text(row.get("symbol"), asset_id).upper(),
            name=_to_text(row.get("name"), asset_id),
            current_price=float(row["current_price"]),
            ath=float(ath) if ath is not None and not math.isnan(float(ath)) else None,
            ath_date=_to_datetime(row.get("ath_date")),
            market_cap_rank=int(rank) if rank is not None and not pd.isna(rank) else None,
            last_updated=_to_datetime(row.get("last_updated")),
        )


def _to_text(value: object, fallback: str) -> str:
    if value is None or pd.isna(value) or not str(value).strip():
        return fallback
    return str(value).strip()


def _to_datetime(value: object) -> datetime | None:
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).to_pydatetime()
