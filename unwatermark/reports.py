"""Batch report sinks."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from .models import BatchState

REPORT_FILENAME = "batch_report.csv"


def batch_rows(state: BatchState) -> List[Dict[str, Union[str, float, None]]]:
    rows: List[Dict[str, Union[str, float, None]]] = []
    for position, job in enumerate(state.jobs):
        row: Dict[str, Union[str, float, None]] = {
            "position": float(position),
            "job_id": float(job.id),
            "name": job.name,
            "kind": job.kind.value,
            "status": job.status.value,
            "progress": float(job.progress_percent),
            "mime_type": job.output.mime_type if job.output else None,
            "output_bytes": float(job.output.size) if job.output else None,
            "error_kind": job.error.kind if job.error else None,
            "error": job.error.message if job.error else None,
        }
        if job.watermark is not None:
            row.update(
                {
                    "width": float(job.watermark.width),
                    "height": float(job.watermark.height),
                    "watermark_size": float(job.watermark.size),
                    "watermark_x": float(job.watermark.position.x),
                    "watermark_y": float(job.watermark.position.y),
                }
            )
        rows.append(row)
    return rows


def write_batch_report(state: BatchState, out_dir: Path) -> Optional[Path]:
    """Write one CSV row per job; nothing is written for an empty batch."""

    rows = batch_rows(state)
    if not rows:
        return None
    out_dir.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(rows)
    df.sort_values(by=["position"], inplace=True)
    path = out_dir / REPORT_FILENAME
    df.to_csv(path, index=False)
    return path


def summarize(state: BatchState) -> Dict[str, float]:
    """Aggregate counts and output volume over completed jobs only."""

    df = pd.DataFrame(batch_rows(state), columns=["status", "output_bytes"])
    completed = df[df["status"] == "completed"]
    return {
        "total": float(state.total_count),
        "processed": float(state.processed_count),
        "completed": float(len(completed)),
        "failed": float((df["status"] == "failed").sum()),
        "output_bytes": float(completed["output_bytes"].fillna(0).sum()),
    }
