"""
Utility functions for artifact report generation and reading.

This module provides functions to:
- Write the NDJSON artifact record stream (the source of truth)
- Rebuild the CSV summary from the NDJSON stream
- Read both formats back into ArtifactRecord objects
- Save JSON reports (migration summaries)
- Format discovery summaries as tables
"""
import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from tabulate import tabulate

from utils.artifact_record import CSV_COLUMNS, ArtifactRecord
from utils.logging_utils import get_logger

logger = get_logger(__name__)


# ============================================================================
# Formatting Utilities
# ============================================================================

def sizeof_fmt(num: float, suffix: str = "B") -> str:
    """Format bytes into human-readable size.

    Args:
        num: Number of bytes
        suffix: Suffix to append (default: "B")

    Returns:
        Formatted string like "1.5GiB", "500MiB", etc.
    """
    for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
        if abs(num) < 1024.0:
            return f"{num:3.1f}{unit}{suffix}"
        num /= 1024.0
    return f"{num:.1f}Yi{suffix}"


def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def add_timestamp_to_path(path: str, timestamp: Optional[str] = None) -> str:
    """
    Add a timestamp to a file path before the extension.

    Args:
        path: Original file path (e.g., 'reports/migration-report.json')
        timestamp: Optional timestamp string (defaults to current time)

    Returns:
        Path with timestamp inserted (e.g., 'reports/migration-report-2026-01-15-14-30-00.json')
    """
    if timestamp is None:
        timestamp = get_timestamp_suffix()

    p = Path(path)
    return str(p.parent / f"{p.stem}-{timestamp}{p.suffix}")


def format_discovery_table(records: Iterable[ArtifactRecord]) -> str:
    """Summarize records per repository as a grid table."""
    per_repo: Dict[str, Dict[str, Any]] = {}
    for record in records:
        row = per_repo.setdefault(record.repository, {"artifacts": 0, "tags": 0, "multi_arch": 0, "size": 0})
        row["artifacts"] += 1
        row["tags"] += len(record.tags)
        row["multi_arch"] += 1 if record.is_multi_arch else 0
        row["size"] += record.size

    rows = [
        [repo, stats["artifacts"], stats["tags"], stats["multi_arch"], sizeof_fmt(stats["size"])]
        for repo, stats in per_repo.items()
    ]
    headers = ["Repository", "Artifacts", "Tags", "Multi-arch", "Size"]
    return tabulate(rows, headers=headers, tablefmt="grid")


# ============================================================================
# Artifact Report Paths
# ============================================================================

def get_artifact_report_paths(out_dir: str, project: str) -> Tuple[Path, Path]:
    """Return (ndjson_path, csv_path) for a project's discovery reports."""
    base = Path(out_dir)
    return base / f"harbor_artifacts_{project}.ndjson", base / f"harbor_artifacts_{project}.csv"


# ============================================================================
# Report Writing Functions
# ============================================================================

def write_ndjson(path: Path, records: Iterable[ArtifactRecord]) -> int:
    """Truncate path and write one compact JSON object per record.

    Returns:
        Number of records written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record.to_dict(), separators=(",", ":"), ensure_ascii=False))
            f.write("\n")
            count += 1
    return count


def rebuild_csv(ndjson_path: Path, csv_path: Path) -> int:
    """Regenerate the CSV summary from the NDJSON stream.

    The CSV is always written from scratch; any previous file is overwritten.
    Every field is quoted, so the output is byte-identical for the same input.

    Returns:
        Number of data rows written
    """
    csv_path = Path(csv_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(csv_path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for record in read_ndjson_records(ndjson_path):
            writer.writerow(record.to_csv_row())
            count += 1
    return count


def write_artifact_reports(records: Iterable[ArtifactRecord], out_dir: str, project: str) -> Tuple[Path, Path]:
    """Persist a discovery run: NDJSON first, then the CSV derived from it.

    Args:
        records: Records in collection order
        out_dir: Output directory (created if missing)
        project: Harbor project, used in the file names

    Returns:
        Tuple of (ndjson_path, csv_path)
    """
    ndjson_path, csv_path = get_artifact_report_paths(out_dir, project)
    written = write_ndjson(ndjson_path, records)
    rows = rebuild_csv(ndjson_path, csv_path)
    logger.debug(f"Wrote {written} NDJSON records and {rows} CSV rows")
    return ndjson_path, csv_path


# ============================================================================
# Report Reading Functions
# ============================================================================

def read_ndjson_records(path: Path) -> Iterator[ArtifactRecord]:
    """Yield records from an NDJSON file, skipping blank lines."""
    with open(path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except ValueError as e:
                raise ValueError(f"{path}:{line_num}: invalid JSON record: {e}") from e
            yield ArtifactRecord.from_dict(data)


def iter_csv_rows(path: Path) -> Iterator[Tuple[int, Dict[str, str]]]:
    """Yield (line_number, row) pairs from a discovery CSV, header excluded."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        missing = [c for c in ("project", "repository", "digest", "tags") if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"{path}: CSV header is missing columns: {', '.join(missing)}")
        for row in reader:
            yield reader.line_num, row


def read_csv_records(path: Path) -> List[ArtifactRecord]:
    """Parse every data row of a discovery CSV into ArtifactRecords."""
    return [ArtifactRecord.from_csv_row(row) for _, row in iter_csv_rows(path)]


def save_json(path: str, data: Any, timestamp: bool = False) -> str:
    """
    Write JSON data to a file with indentation.

    Sets are written as sorted lists and datetimes as ISO strings.

    Args:
        path: Path to save the JSON file
        data: Data to save
        timestamp: If True, add timestamp to filename (default: False)

    Returns:
        Path to the saved file
    """
    def normalize(value):
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, (set, frozenset)):
            return [normalize(item) for item in sorted(value)]
        if isinstance(value, dict):
            return {k: normalize(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [normalize(item) for item in value]
        return value

    p = Path(path)
    if timestamp:
        p = Path(add_timestamp_to_path(str(p)))

    p.parent.mkdir(parents=True, exist_ok=True)

    with open(p, "w") as f:
        json.dump(normalize(data), f, indent=2)
    logger.info(f"Saved JSON to {p}")
    return str(p)
