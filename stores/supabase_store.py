from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

from core.models import Paper

from .paper_store import PaperStore, apply_update

logger = logging.getLogger(__name__)

PAGE_SIZE = 500


class SupabasePaperStore(PaperStore):
    """Paper records stored one per row in a Supabase table.

    Column names follow ``Paper.to_dict()``.
    """

    def __init__(self, client: Client, table: str = "papers", page_size: int = PAGE_SIZE) -> None:
        self.client = client
        self.table = table
        self.page_size = page_size

    def _query(self):
        return self.client.table(self.table)

    def get(self, paper_id: str) -> Optional[Paper]:
        res = self._query().select("*").eq("id", paper_id).limit(1).execute()
        rows = res.data or []
        return Paper.from_dict(rows[0]) if rows else None

    def list(self) -> List[Paper]:
        papers: List[Paper] = []
        start = 0
        while True:
            res = (
                self._query()
                .select("*")
                .order("id", desc=False)
                .range(start, start + self.page_size - 1)
                .execute()
            )
            rows = res.data or []
            papers.extend(Paper.from_dict(row) for row in rows)
            if len(rows) < self.page_size:
                return papers
            start += self.page_size

    def bulk_get(self, paper_ids: Iterable[str]) -> List[Paper]:
        ids = list(dict.fromkeys(paper_ids))
        if not ids:
            return []
        res = self._query().select("*").in_("id", ids).execute()
        by_id: Dict[str, Paper] = {}
        for row in res.data or []:
            paper = Paper.from_dict(row)
            by_id[paper.id] = paper
        return [by_id[pid] for pid in ids if pid in by_id]

    def update(self, paper_id: str, fields: Dict[str, Any]) -> Paper:
        current = self.get(paper_id)
        if current is None:
            raise KeyError(f"Unknown paper id: {paper_id}")
        updated = apply_update(current, fields)
        row = updated.to_dict()
        self._query().update({name: row[name] for name in fields}).eq("id", paper_id).execute()
        logger.debug("[store] updated %s: %s", paper_id, ", ".join(fields))
        return updated
