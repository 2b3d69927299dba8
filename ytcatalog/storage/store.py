"""
JSON file persistence for collections, channels and stored videos.

Design decisions:
- Single JSON document, loaded whole and edited in memory
- Atomic replace on save so a crash never leaves a truncated file
- Legacy top-level channel lists migrate into a "Default" collection
"""

import json
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ytcatalog.logging_config import get_logger
from ytcatalog.models import CatalogSnapshot, Collection

logger = get_logger("store")


class CatalogStore(Protocol):
    """Protocol that all persistence backends must implement."""

    def load(self) -> CatalogSnapshot:
        """Load a snapshot of all collections."""
        ...

    def save(self, snapshot: CatalogSnapshot) -> None:
        """Persist a snapshot."""
        ...


def migrate_legacy_snapshot(snapshot: CatalogSnapshot) -> bool:
    """Fold a legacy top-level channel list into a default collection."""
    if snapshot.channels is None:
        return False
    if not snapshot.collections:
        snapshot.collections.append(
            Collection(id=str(uuid.uuid4()), name="Default", channels=snapshot.channels)
        )
    snapshot.channels = None
    return True


class JsonCatalogStore:
    """Catalog store backed by a single JSON file."""

    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()

    def load(self) -> CatalogSnapshot:
        """Load the store. Returns an empty snapshot if the file is missing or corrupt."""
        if not self.path.exists():
            return CatalogSnapshot()

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            snapshot = CatalogSnapshot.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.error(f"Error loading store {self.path}: {exc}")
            return CatalogSnapshot()

        if migrate_legacy_snapshot(snapshot):
            logger.info("Migrated legacy channel list into a default collection")
            self.save(snapshot)
        return snapshot

    def save(self, snapshot: CatalogSnapshot) -> None:
        """Write the snapshot atomically."""
        payload = snapshot.model_dump_json(indent=2, exclude_none=True)
        with self._write_lock:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as file_handle:
                    file_handle.write(payload)
                os.replace(tmp_name, self.path)
            except Exception:
                Path(tmp_name).unlink(missing_ok=True)
                raise


class InMemoryCatalogStore:
    """Catalog store kept in process memory."""

    def __init__(self, snapshot: CatalogSnapshot | None = None):
        self._snapshot = snapshot or CatalogSnapshot()
        self.save_count = 0

    def load(self) -> CatalogSnapshot:
        migrate_legacy_snapshot(self._snapshot)
        return self._snapshot

    def save(self, snapshot: CatalogSnapshot) -> None:
        self._snapshot = snapshot
        self.save_count += 1
