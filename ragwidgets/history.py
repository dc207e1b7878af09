"""Bounded, file-backed history of finished answers."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, cast

from .types import HistoryEntry

logger = logging.getLogger(__name__)

HISTORY_KEY = "ragwidgets-search-history"


class SearchHistory:
    """Most-recent-first list of past searches kept in one JSON file.

    The file holds a single namespaced key so it can be shared with other
    state. Read and write failures are logged and never raised; the in-memory
    list is always updated.
    """

    def __init__(self, path: Path, max_results: int = 10, key: str = HISTORY_KEY) -> None:
        self.path = Path(path)
        self.max_results = max(0, max_results)
        self.key = key
        self._results: List[HistoryEntry] = self._load()

    @property
    def results(self) -> List[HistoryEntry]:
        return list(self._results)

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                raw_data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load search history from %s: %s", self.path, exc)
            return {}
        if not isinstance(raw_data, dict):
            return {}
        return raw_data

    def _load(self) -> List[HistoryEntry]:
        section = self._read_document().get(self.key)
        if not isinstance(section, dict):
            return []
        results = section.get("results")
        if not isinstance(results, list):
            return []
        return [cast(HistoryEntry, item) for item in results if isinstance(item, dict)]

    def _write(self, results: List[HistoryEntry]) -> None:
        document = self._read_document()
        if results:
            document[self.key] = {"results": results}
        else:
            document.pop(self.key, None)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as fh:
                json.dump(document, fh, ensure_ascii=False, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to save search history to %s: %s", self.path, exc)

    def save(self, entry: HistoryEntry) -> None:
        """Prepend ``entry`` and keep at most ``max_results`` items."""
        if self.max_results == 0:
            return
        self._results = [entry, *self._results][: self.max_results]
        self._write(self._results)

    def clear(self) -> None:
        """Forget every saved search."""
        self._results = []
        self._write([])
