from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from .batch import BatchSummary
from .results import OutputArtifact


@dataclass(frozen=True)
class FileReport:
    file_name: str
    location: str
    path: Optional[str]
    size_bytes: int
    best_effort: bool
    actual_format: str


@dataclass(frozen=True)
class BatchReport:
    created_utc: str
    target_size: int
    summary: dict
    files: List[FileReport]


def build_report(artifacts: Sequence[OutputArtifact], summary: BatchSummary, target_size: int = 0) -> BatchReport:
    created_utc = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    files = [
        FileReport(
            file_name=a.file_name,
            location=a.location,
            path=str(a.path) if a.path else None,
            size_bytes=a.size_bytes,
            best_effort=a.best_effort,
            actual_format=a.actual_format,
        )
        for a in artifacts
    ]

    summary_dict = {
        "total_inputs": summary.total_inputs,
        "artifacts": summary.artifacts,
        "best_effort": summary.best_effort,
        "total_src_bytes": summary.total_src_bytes,
        "total_out_bytes": summary.total_out_bytes,
        "saved_bytes": summary.saved_bytes,
        "saved_percent": round(summary.saved_percent, 2),
    }

    return BatchReport(created_utc=created_utc, target_size=target_size, summary=summary_dict, files=files)


def save_report_json(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(report), f, indent=2, ensure_ascii=False)


def save_report_csv(report: BatchReport, path: Path) -> None:
    """One row per written file; the summary lives in the JSON report only."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    columns = [f.name for f in fields(FileReport)]
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns)
        writer.writeheader()
        for row in report.files:
            writer.writerow(asdict(row))
