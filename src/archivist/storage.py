"""
Storage pipeline for persisting extracted listings with deduplication.

upsert_listings() runs a two-phase protocol against a DocumentStore:

1. Pair every record with its dedup key (or None) in one pass.
2. ONE batched existence read for all keys.
3. Stage a create or a field-merge update per record.
4. ONE atomic batch commit.

The number of store round trips is constant regardless of batch size.
Nothing is locked between the read and the commit, so a concurrent writer
touching the same keys in that gap wins or loses on commit order.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .document_store import DocumentStore, WriteOp
from .identity import KeyResolver, get_resolver
from .models import Convocatoria, ListingRecord, ESTADOS
from ..common.errors import InvalidInputError
from ..config.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    """Per-call counters.

    new:      documents created (including unkeyed ones)
    updated:  records merged into an existing or already-staged document
    skipped:  records dropped because the active policy could not key them
    unkeyed:  subset of new, created without a dedup key
    total:    records processed
    """
    new: int = 0
    updated: int = 0
    skipped: int = 0
    unkeyed: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def coerce_records(records: Any) -> List[ListingRecord]:
    """Validate raw input into ListingRecords, or raise InvalidInputError."""
    if not isinstance(records, (list, tuple)):
        raise InvalidInputError("Invalid data format: expected a list of convocatorias")

    coerced = []
    for index, item in enumerate(records):
        if isinstance(item, ListingRecord):
            coerced.append(item)
            continue
        if not isinstance(item, dict):
            raise InvalidInputError(f"Record {index} is not an object")
        try:
            coerced.append(ListingRecord.model_validate(item))
        except ValidationError as e:
            raise InvalidInputError(f"Record {index} is invalid: {e}") from e
    return coerced


def partition_records(records: Any) -> Tuple[List[ListingRecord], int]:
    """
    Validate extracted items one by one.

    Invalid items are logged and dropped so the rest of the batch survives.

    Returns:
        (valid records, number of dropped items)
    """
    if not isinstance(records, (list, tuple)):
        raise InvalidInputError("Invalid data format: expected a list of convocatorias")

    valid = []
    dropped = 0
    for index, item in enumerate(records):
        try:
            valid.extend(coerce_records([item]))
        except InvalidInputError as e:
            dropped += 1
            logger.warning(f"Dropping extracted record {index}: {e}")
    return valid, dropped


def pair_with_keys(
    records: Iterable[ListingRecord],
    resolver: KeyResolver,
) -> List[Tuple[ListingRecord, Optional[str]]]:
    """(record, key-or-None) for every record, in input order."""
    return [(record, resolver.resolve(record)) for record in records]


async def upsert_listings(
    store: DocumentStore,
    records: Any,
    resolver: Optional[KeyResolver] = None,
) -> UpsertResult:
    """
    Upsert a batch of listings with identity-based deduplication.

    Args:
        store: Document store (one batch_get + one batch_write per call)
        records: ListingRecords or raw dicts from the extraction stage
        resolver: Dedup policy (default: the one configured in settings)

    Returns:
        UpsertResult with new/updated/skipped/unkeyed/total counts

    Raises:
        InvalidInputError: malformed records (before any store call)
        StoreReadError: the existence read failed (nothing written)
        CommitFailure: the commit was rejected (nothing written)
    """
    records = coerce_records(records)
    resolver = resolver or get_resolver()
    result = UpsertResult(total=len(records))
    if not records:
        return result

    pairs = pair_with_keys(records, resolver)

    # Unique keys in first-seen order
    keys = list(dict.fromkeys(key for _, key in pairs if key is not None))
    existing = await store.batch_get(keys) if keys else []
    existing_by_key = {key: doc for key, doc in zip(keys, existing) if doc is not None}

    ops: List[WriteOp] = []
    staged: Dict[str, WriteOp] = {}

    for record, key in pairs:
        fields = record.business_fields()

        if key is None:
            if resolver.skip_unresolvable:
                result.skipped += 1
                continue
            # Cannot assert uniqueness, always a fresh document
            ops.append(WriteOp.create(fields))
            result.new += 1
            result.unkeyed += 1
            continue

        if key in staged:
            # Same key earlier in this batch: later values win
            staged[key].fields.update(fields)
            result.updated += 1
            continue

        doc = existing_by_key.get(key)
        if doc is not None:
            op = WriteOp.update(doc.id, fields, key=key)
            result.updated += 1
        else:
            op = WriteOp.create(fields, key=key)
            result.new += 1
        staged[key] = op
        ops.append(op)

    if ops:
        await store.batch_write(ops)

    logger.info(
        f"Upsert ({resolver.strategy}): total={result.total}, new={result.new}, "
        f"updated={result.updated}, skipped={result.skipped}, unkeyed={result.unkeyed}"
    )
    return result


async def list_listings(
    store: DocumentStore,
    estado: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Convocatoria]:
    """Newest listings first, optionally filtered by estado ("abierta" / "cerrada")."""
    if estado is not None and estado not in ESTADOS:
        raise InvalidInputError(f"Invalid estado {estado!r}, expected one of {ESTADOS}")
    if limit is None:
        limit = settings.listings_default_limit
    if limit < 1:
        raise InvalidInputError("limit must be a positive integer")
    limit = min(limit, settings.listings_max_limit)
    return await store.list_documents(estado=estado, limit=limit)
