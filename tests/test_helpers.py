"""
Shared test helpers: fakes for the content service, the clock and the store.

This module can be explicitly imported by test files.
For pytest fixtures, see conftest.py.

Usage:
    from tests.test_helpers import FakeClock, FakeStatusSource, InMemoryDocumentStore
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from src.archivist.document_store import CREATE, CommitResult, DocumentStore, WriteOp
from src.archivist.models import Convocatoria
from src.common.errors import CommitFailure, StoreReadError


# =============================================================================
# Time
# =============================================================================
class FakeClock:
    """Monotonic clock (seconds) that only moves when sleep() is awaited."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Content service
# =============================================================================
class FakeStatusSource:
    """Status endpoint returning scripted answers; the last one repeats.

    Items may be dicts (returned) or exceptions (raised). call_cost advances
    the fake clock on every call to simulate network latency.
    """

    def __init__(self, responses: List[Any], clock: Optional[FakeClock] = None, call_cost: float = 0.0):
        self._responses = responses
        self._clock = clock
        self._call_cost = call_cost
        self.calls: List[Dict[str, Any]] = []

    async def get_status(self, status_url: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        at = self._clock() if self._clock else None
        self.calls.append({"url": status_url, "timeout": timeout, "at": at})
        if self._clock:
            self._clock.now += self._call_cost
        item = self._responses[min(len(self.calls) - 1, len(self._responses) - 1)]
        if isinstance(item, Exception):
            raise item
        return item


def page(url: str, markdown: Optional[str] = "# Convocatoria", **metadata) -> Dict[str, Any]:
    """Raw page as the content service returns it."""
    return {"url": url, "markdown": markdown, "metadata": metadata}


# =============================================================================
# Document store
# =============================================================================
class InMemoryDocumentStore(DocumentStore):
    """DocumentStore keeping documents in a dict, with call counters.

    Each commit gets a timestamp one second later than the previous one so
    tests can see updated_at advance.
    """

    def __init__(self, fail_read: bool = False, fail_commit: bool = False):
        self.docs: Dict[int, Convocatoria] = {}
        self.fail_read = fail_read
        self.fail_commit = fail_commit
        self.batch_get_calls: List[List[str]] = []
        self.batch_write_calls: List[List[WriteOp]] = []
        self._next_id = 1
        self._clock = datetime(2025, 1, 1, 12, 0, 0)

    def _by_key(self, key: str) -> Optional[Convocatoria]:
        for doc in self.docs.values():
            if doc.dedup_key == key:
                return doc
        return None

    async def batch_get(self, keys: Sequence[str]) -> List[Optional[Convocatoria]]:
        self.batch_get_calls.append(list(keys))
        if self.fail_read:
            raise StoreReadError("connection refused")
        return [self._by_key(key) for key in keys]

    async def batch_write(self, ops: Sequence[WriteOp]) -> CommitResult:
        self.batch_write_calls.append(list(ops))
        if self.fail_commit:
            raise CommitFailure("commit rejected", staged=len(ops))

        self._clock += timedelta(seconds=1)
        now = self._clock
        created = updated = 0
        for op in ops:
            if op.kind == CREATE:
                doc = Convocatoria(
                    id=self._next_id, dedup_key=op.key, created_at=now, updated_at=now, **op.fields
                )
                self.docs[self._next_id] = doc
                self._next_id += 1
                created += 1
            else:
                doc = self.docs[op.doc_id]
                for name, value in op.fields.items():
                    setattr(doc, name, value)
                doc.updated_at = now
                updated += 1
        return CommitResult(created=created, updated=updated, committed_at=now)

    async def list_documents(self, estado: Optional[str] = None, limit: int = 100) -> List[Convocatoria]:
        docs = sorted(self.docs.values(), key=lambda d: (d.created_at, d.id), reverse=True)
        if estado:
            docs = [d for d in docs if d.estado == estado]
        return docs[:limit]

    def snapshot(self) -> Dict[int, Dict[str, Any]]:
        """Stored documents without updated_at, for idempotence checks."""
        return {
            doc_id: {k: v for k, v in doc.model_dump().items() if k != "updated_at"}
            for doc_id, doc in self.docs.items()
        }
