"""
Resume support for migration runs.

A checkpoint lists the destinations a run has copied, skipped or failed to
copy. Resuming drops copied and skipped destinations from the plan; failed
ones are attempted again.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from utils.logging_utils import get_logger

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class Checkpoint:
    """Progress of one migration run."""

    operation_type: str
    started_at: str
    last_updated: str
    total_items: int = 0
    completed_items: List[str] = field(default_factory=list)
    failed_items: List[str] = field(default_factory=list)
    skipped_items: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def start(cls, operation_type: str, metadata: Optional[Dict[str, Any]] = None) -> "Checkpoint":
        stamp = _now()
        return cls(operation_type=operation_type, started_at=stamp, last_updated=stamp, metadata=dict(metadata or {}))

    def record(
        self,
        completed: Iterable[str] = (),
        failed: Iterable[str] = (),
        skipped: Iterable[str] = (),
        total_items: Optional[int] = None,
    ) -> None:
        """Merge new outcomes; a destination copied now is no longer failed."""
        done = set(self.completed_items) | set(completed)
        self.completed_items = sorted(done)
        self.skipped_items = sorted(set(self.skipped_items) | set(skipped))
        self.failed_items = sorted((set(self.failed_items) | set(failed)) - done)
        if total_items is not None:
            self.total_items = total_items
        self.last_updated = _now()

    def remaining(self, items: Iterable[str]) -> List[str]:
        """Items still to attempt, in their given order."""
        done = set(self.completed_items) | set(self.skipped_items)
        return [item for item in items if item not in done]


class CheckpointManager:
    """Reads and writes checkpoint files in one directory, created on first save."""

    def __init__(self, checkpoint_dir: Path):
        self.checkpoint_dir = Path(checkpoint_dir)

    def path_for(self, operation_type: str, operation_id: Optional[str] = None) -> Path:
        """<dir>/<operation_type>[-<operation_id>].checkpoint.json"""
        stem = f"{operation_type}-{operation_id}" if operation_id else operation_type
        return self.checkpoint_dir / f"{stem}.checkpoint.json"

    def load(self, operation_type: str, operation_id: Optional[str] = None) -> Optional[Checkpoint]:
        """The stored checkpoint, or None if there is none or it cannot be read."""
        path = self.path_for(operation_type, operation_id)
        if not path.exists():
            return None
        try:
            return Checkpoint(**json.loads(path.read_text()))
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Ignoring unreadable checkpoint {path}: {e}")
            return None

    def load_or_start(
        self, operation_type: str, operation_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None
    ) -> Checkpoint:
        checkpoint = self.load(operation_type, operation_id)
        if checkpoint is None:
            return Checkpoint.start(operation_type, metadata)
        logger.info(
            f"Resuming from checkpoint started {checkpoint.started_at}: "
            f"{len(checkpoint.completed_items)} copied, {len(checkpoint.failed_items)} to retry"
        )
        checkpoint.metadata.update(metadata or {})
        return checkpoint

    def save(self, checkpoint: Checkpoint, operation_id: Optional[str] = None) -> Path:
        """Write the checkpoint atomically and return its path."""
        path = self.path_for(checkpoint.operation_type, operation_id)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(json.dumps(asdict(checkpoint), indent=2))
        os.replace(tmp_path, path)
        logger.debug(f"Checkpoint saved: {path}")
        return path

    def delete(self, operation_type: str, operation_id: Optional[str] = None) -> bool:
        """Remove the checkpoint; False when there was nothing to remove."""
        path = self.path_for(operation_type, operation_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted checkpoint: {path}")
        return True
