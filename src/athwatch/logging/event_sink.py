"""JSONL event sink and per-run Plotly report generator."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from athwatch.domain.events import JobEvent

REPORT_COLUMNS = ("ts", "event_type", "symbol", "new_ath", "sent")


class JsonlEventSink:
    """Append-only JSONL writer shared by the scheduler and dispatch threads."""

    def __init__(self, path: str) -> None:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.path = output_path
        self._lock = threading.Lock()

    def emit(self, event: JobEvent) -> None:
        line = json.dumps(event.to_record(), sort_keys=True, default=str)
        with self._lock, self.path.open("a", encoding="utf-8") as handle:
            handle.write(f"{line}\n")


def load_events(path: str | Path) -> list[dict[str, Any]]:
    """Parse a run's JSONL file; a run that never emitted has no file."""
    input_path = Path(path)
    if not input_path.is_file():
        return []
    text = input_path.read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def events_frame(records: list[dict[str, Any]]) -> pd.DataFrame:
    """Flatten JobEvent records into one row per event with payload fields promoted."""
    if not records:
        return pd.DataFrame(columns=list(REPORT_COLUMNS))
    frame = pd.json_normalize(records, sep=".")
    frame.columns = [column.removeprefix("payload.") for column in frame.columns]
    for column in REPORT_COLUMNS:
        if column not in frame.columns:
            frame[column] = None
    frame["ts"] = pd.to_datetime(frame["ts"], utc=True, errors="coerce")
    frame["symbol"] = frame["symbol"].fillna("")
    frame["new_ath"] = pd.to_numeric(frame["new_ath"], errors="coerce")
    frame["sent"] = pd.to_numeric(frame["sent"], errors="coerce").fillna(0).astype(int)
    return frame


def generate_plotly_report(events_jsonl_path: str, output_html_path: str) -> None:
    """Render detected highs and cycle outcomes for one run as a standalone HTML page."""
    frame = events_frame(load_events(events_jsonl_path))
    output = Path(output_html_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    if frame.empty:
        figure = go.Figure()
        figure.add_annotation(
            text="No events recorded for this run",
            showarrow=False,
            x=0.5,
            y=0.5,
            xref="paper",
            yref="paper",
        )
        figure.update_layout(title="athwatch run report")
        figure.write_html(str(output), include_plotlyjs="cdn")
        return

    counts = frame.groupby("event_type").size().reset_index(name="count")
    figures = [
        px.scatter(
            frame,
            x="ts",
            y="event_type",
            color="symbol",
            title="Run Events Timeline",
            hover_data=["new_ath", "sent"],
        ),
        px.bar(counts, x="event_type", y="count", title="Run Event Counts"),
    ]
    highs = frame.loc[frame["event_type"].eq("ath_detected")].dropna(subset=["new_ath"])
    if not highs.empty:
        figures.append(
            px.line(
                highs.sort_values("ts"),
                x="ts",
                y="new_ath",
                color="symbol",
                markers=True,
                title="Detected All-Time Highs",
            )
        )
    body = "".join(
        figure.to_html(full_html=False, include_plotlyjs="cdn" if index == 0 else False)
        for index, figure in enumerate(figures)
    )
    output.write_text(
        "<html><head><meta charset='utf-8'><title>athwatch run report</title></head>"
        f"<body>{body}</body></html>",
        encoding="utf-8",
    )
