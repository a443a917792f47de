"""Filesystem-backed key/value storage for exported association blobs."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class JsonFileStore:
    """One JSON file per key under a root directory."""

    def __init__(self, root: Optional[Path] = None):
        base_dir = Path(root) if root else Path(__file__).resolve().parent / "storage"
        base_dir.mkdir(parents=True, exist_ok=True)
        self.root = base_dir

    def get(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read stored blob %s: %s", key, exc)
            return None

    def set(self, key: str, blob: Any):
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(blob, handle, indent=2)
        tmp_path.replace(path)

    def _path_for(self, key: str) -> Path:
        stem = key.strip().strip("/").replace("/", "__")
        if not stem:
            raise ValueError("Storage key must not be empty")
        return self.root / f"{stem}.json"
