"""Frontier checkpoints so a cooled-down job resumes where it was blocked."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional

import orjson


@dataclass(slots=True)
class FrontierCheckpoint:
    """Serializable crawl frontier for a single job."""

    job_id: int
    pending: List[str] = field(default_factory=list)
    visited: List[str] = field(default_factory=list)
    recipes_found: int = 0


def checkpoint_path(root: Path, job_id: int) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    return root / f"job-{job_id}.json"


def load_checkpoint(root: Path, job_id: int) -> Optional[FrontierCheckpoint]:
    path = checkpoint_path(root, job_id)
    if not path.exists():
        return None
    try:
        payload = orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError:
        return None
    if payload.get("job_id") != job_id:
        return None
    return FrontierCheckpoint(**payload)


def save_checkpoint(root: Path, checkpoint: FrontierCheckpoint) -> Path:
    path = checkpoint_path(root, checkpoint.job_id)
    tmp = path.with_suffix(".tmp")
    tmp.write_bytes(orjson.dumps(asdict(checkpoint)))
    tmp.replace(path)
    return path


def clear_checkpoint(root: Path, job_id: int) -> None:
    path = checkpoint_path(root, job_id)
    if path.exists():
        path.unlink()
