"""Database models and storage utilities."""

from .models import Convocatoria, ListingRecord, BUSINESS_FIELDS, ESTADOS, utc_now_naive
from .database import Database, create_engine
from .document_store import DocumentStore, SqlDocumentStore, WriteOp, CommitResult, CREATE, UPDATE
from .identity import KeyResolver, TitleKeyResolver, LinkKeyResolver, encode_link, get_resolver
from .storage import UpsertResult, upsert_listings, list_listings, coerce_records, partition_records, pair_with_keys

__all__ = [
    "Convocatoria",
    "ListingRecord",
    "BUSINESS_FIELDS",
    "ESTADOS",
    "utc_now_naive",
    "Database",
    "create_engine",
    "DocumentStore",
    "SqlDocumentStore",
    "WriteOp",
    "CommitResult",
    "CREATE",
    "UPDATE",
    "KeyResolver",
    "TitleKeyResolver",
    "LinkKeyResolver",
    "encode_link",
    "get_resolver",
    "UpsertResult",
    "upsert_listings",
    "list_listings",
    "coerce_records",
    "partition_records",
    "pair_with_keys",
]
