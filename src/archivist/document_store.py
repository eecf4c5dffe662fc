"""
Document store interface and its SQL implementation.

The upsert pipeline needs exactly two calls from the store:
- batch_get(keys): one existence read for all keys, order-aligned with keys
- batch_write(ops): one atomic commit of all staged creates and updates

Timestamps are assigned here, at write time, one value per commit.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from .database import Database
from .models import Convocatoria, utc_now_naive
from ..common.errors import CommitFailure, StoreReadError

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"

# asyncpg raises plain OSError when the server cannot be reached
STORE_ERRORS = (SQLAlchemyError, OSError)


@dataclass
class WriteOp:
    """One staged write. Updates target an existing document by id."""
    kind: str
    fields: Dict[str, Any]
    key: Optional[str] = None
    doc_id: Optional[int] = None

    @classmethod
    def create(cls, fields: Dict[str, Any], key: Optional[str] = None) -> "WriteOp":
        return cls(kind=CREATE, fields=dict(fields), key=key)

    @classmethod
    def update(cls, doc_id: int, fields: Dict[str, Any], key: Optional[str] = None) -> "WriteOp":
        return cls(kind=UPDATE, fields=dict(fields), key=key, doc_id=doc_id)


@dataclass
class CommitResult:
    created: int = 0
    updated: int = 0
    committed_at: datetime = field(default_factory=utc_now_naive)


class DocumentStore(ABC):
    """Storage backend for listings."""

    @abstractmethod
    async def batch_get(self, keys: Sequence[str]) -> List[Optional[Convocatoria]]:
        """Return the stored document for each key (None when absent), aligned with keys."""

    @abstractmethod
    async def batch_write(self, ops: Sequence[WriteOp]) -> CommitResult:
        """Apply all ops atomically. Raises CommitFailure with zero effect on error."""

    @abstractmethod
    async def list_documents(self, estado: Optional[str] = None, limit: int = 100) -> List[Convocatoria]:
        """Newest documents first, optionally filtered by estado."""


class SqlDocumentStore(DocumentStore):
    """DocumentStore backed by the convocatorias table."""

    def __init__(self, database: Database):
        self.database = database

    async def batch_get(self, keys: Sequence[str]) -> List[Optional[Convocatoria]]:
        if not keys:
            return []

        try:
            async with self.database.session() as session:
                stmt = select(Convocatoria).where(Convocatoria.dedup_key.in_(set(keys)))
                result = await session.execute(stmt)
                found = {doc.dedup_key: doc for doc in result.scalars().all()}
        except STORE_ERRORS as e:
            raise StoreReadError(f"Existence read failed for {len(keys)} keys: {e}") from e

        return [found.get(key) for key in keys]

    async def batch_write(self, ops: Sequence[WriteOp]) -> CommitResult:
        now = utc_now_naive()
        creates = [op for op in ops if op.kind == CREATE]
        updates = [op for op in ops if op.kind == UPDATE]

        try:
            async with self.database.session() as session:
                session.add_all([
                    Convocatoria(dedup_key=op.key, created_at=now, updated_at=now, **op.fields)
                    for op in creates
                ])
                for op in updates:
                    # created_at is never touched by an update
                    await session.execute(
                        update(Convocatoria)
                        .where(Convocatoria.id == op.doc_id)
                        .values(**op.fields, updated_at=now)
                    )
                await session.commit()
        except STORE_ERRORS as e:
            logger.error(f"Batch commit failed ({len(creates)} creates, {len(updates)} updates): {e}")
            raise CommitFailure(f"Batch commit failed: {e}", staged=len(ops)) from e

        return CommitResult(created=len(creates), updated=len(updates), committed_at=now)

    async def list_documents(self, estado: Optional[str] = None, limit: int = 100) -> List[Convocatoria]:
        stmt = select(Convocatoria)
        if estado:
            stmt = stmt.where(Convocatoria.estado == estado)
        stmt = stmt.order_by(Convocatoria.created_at.desc()).limit(limit)
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except STORE_ERRORS as e:
            raise StoreReadError(f"Listing query failed: {e}") from e
