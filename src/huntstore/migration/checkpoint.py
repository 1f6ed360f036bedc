"""Durable migration progress.

The checkpoint is a small JSON document::

    {
      "version": 1,
      "runStartedAt": "2026-01-05T09:00:00+00:00",
      "updatedAt": "2026-01-05T09:00:04+00:00",
      "registryCopied": true,
      "completed": ["acme", "globex"]
    }

``completed`` is append-only. Fields this version does not know about are
kept and written back unchanged, so older engines can resume runs started
by newer ones and vice versa.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Optional, Union

from huntstore.db.blob import write_json_atomic
from huntstore.models.errors import RecordValidationError

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1
_KNOWN_FIELDS = {"version", "runStartedAt", "updatedAt", "registryCopied", "completed"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Checkpoint:
    """
    Append-only record of organizations migrated by a run.

    All mutation goes through one lock and every change rewrites the whole
    file atomically (temp file plus rename), so a crash leaves either the
    previous or the new document on disk, never a torn one.
    """

    def __init__(
        self,
        path: Union[Path, str],
        *,
        completed: Optional[list[str]] = None,
        run_started_at: Optional[str] = None,
        registry_copied: bool = False,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        self.path = Path(path)
        self.run_started_at = run_started_at or _now()
        self.registry_copied = registry_copied
        self._completed: list[str] = list(completed or [])
        self._done = set(self._completed)
        self._extra = dict(extra or {})
        self._lock = Lock()

    @classmethod
    def load(cls, path: Union[Path, str]) -> Checkpoint:
        """Read a checkpoint, or start an empty one if the file does not exist.

        Raises:
            RecordValidationError: The file exists but is not a checkpoint.
        """
        path = Path(path)
        if not path.exists():
            logger.info(f"No checkpoint at {path}, starting fresh")
            return cls(path)

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise RecordValidationError(str(path), [f"invalid JSON: {e}"], "checkpoint") from e
        if not isinstance(data, dict) or not isinstance(data.get("completed", []), list):
            raise RecordValidationError(str(path), ["not a checkpoint document"], "checkpoint")

        checkpoint = cls(
            path,
            completed=[str(slug) for slug in data.get("completed", [])],
            run_started_at=data.get("runStartedAt"),
            registry_copied=bool(data.get("registryCopied", False)),
            extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
        )
        logger.info(f"Loaded checkpoint {path}: {len(checkpoint)} organization(s) done")
        return checkpoint

    @classmethod
    def fresh(cls, path: Union[Path, str]) -> Checkpoint:
        """A new, empty checkpoint that replaces any previous file on first save."""
        return cls(path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._completed)

    def __contains__(self, slug: object) -> bool:
        with self._lock:
            return slug in self._done

    @property
    def completed(self) -> list[str]:
        with self._lock:
            return list(self._completed)

    def mark_done(self, slug: str) -> None:
        """Append *slug* and persist."""
        with self._lock:
            if slug in self._done:
                return
            self._completed.append(slug)
            self._done.add(slug)
            self._save_locked()

    def mark_registry_copied(self) -> None:
        with self._lock:
            self.registry_copied = True
            self._save_locked()

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return self._document()

    def _document(self) -> dict[str, Any]:
        return {
            **self._extra,
            "version": CHECKPOINT_VERSION,
            "runStartedAt": self.run_started_at,
            "updatedAt": _now(),
            "registryCopied": self.registry_copied,
            "completed": list(self._completed),
        }

    def _save_locked(self) -> None:
        write_json_atomic(self.path, self._document())
