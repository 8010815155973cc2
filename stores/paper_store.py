from __future__ import annotations

import dataclasses
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from core.models import Paper
from core.utils import read_json, write_json


class PaperStore(ABC):
    """Abstract base for paper stores."""

    @abstractmethod
    def get(self, paper_id: str) -> Optional[Paper]:
        pass

    @abstractmethod
    def list(self) -> List[Paper]:
        pass

    @abstractmethod
    def update(self, paper_id: str, fields: Dict[str, Any]) -> Paper:
        """Replace ``fields`` on the stored paper and return the new record.

        Raises ``KeyError`` for an unknown id.
        """
        pass

    @abstractmethod
    def bulk_get(self, paper_ids: Iterable[str]) -> List[Paper]:
        """Papers for the known ids, in request order."""
        pass


def apply_update(paper: Paper, fields: Dict[str, Any]) -> Paper:
    """Return a copy of ``paper`` with ``fields`` replaced; unknown names raise ``TypeError``."""
    return dataclasses.replace(paper, **fields)


class InMemoryPaperStore(PaperStore):
    def __init__(self, papers: Iterable[Paper] = ()) -> None:
        self._papers: Dict[str, Paper] = {p.id: p for p in papers}
        self._lock = threading.Lock()

    def get(self, paper_id: str) -> Optional[Paper]:
        return self._papers.get(paper_id)

    def list(self) -> List[Paper]:
        return list(self._papers.values())

    def bulk_get(self, paper_ids: Iterable[str]) -> List[Paper]:
        return [self._papers[pid] for pid in paper_ids if pid in self._papers]

    def update(self, paper_id: str, fields: Dict[str, Any]) -> Paper:
        with self._lock:
            if paper_id not in self._papers:
                raise KeyError(f"Unknown paper id: {paper_id}")
            updated = apply_update(self._papers[paper_id], fields)
            self._papers[paper_id] = updated
            return updated


class JsonPaperStore(InMemoryPaperStore):
    """Papers kept in one JSON document: ``{"papers": [...]}``.

    Every update rewrites the file atomically.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        papers: List[Paper] = []
        if self.path.exists():
            data = read_json(self.path)
            papers = [Paper.from_dict(item) for item in data.get("papers", [])]
        super().__init__(papers)

    def update(self, paper_id: str, fields: Dict[str, Any]) -> Paper:
        updated = super().update(paper_id, fields)
        self.save()
        return updated

    def save(self) -> None:
        with self._lock:
            payload = {"papers": [p.to_dict() for p in self._papers.values()]}
            write_json(self.path, payload)
