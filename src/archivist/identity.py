"""
Identity resolution for listing deduplication.

Two mutually exclusive policies, chosen once per deployment through
settings.dedup_strategy:

- "titulo": the key is the trimmed title, exact match (no case folding,
  no fuzzy matching). Titles longer than the key bound keep a prefix
  plus a digest of the full title. Records without a usable title are
  unresolvable and are always inserted as new documents.
- "enlace": the key is a URL-safe base64 encoding of the full link,
  bounded in length. Records without a link are skipped by the store.

Running both policies against the same table would produce divergent
document sets for the same listing, so a store is bound to one resolver.
"""

import base64
import hashlib
import logging
from typing import Optional

from .models import DEDUP_KEY_COLUMN_LENGTH, ListingRecord
from ..common.errors import InvalidInputError
from ..config.settings import settings, DEDUP_STRATEGIES

logger = logging.getLogger(__name__)

# Keys shorter than this cannot hold a useful prefix plus the digest suffix
MIN_KEY_LENGTH = 32
DIGEST_LENGTH = 16
# Outside the base64url alphabet, so truncated keys never equal a full encoding
TRUNCATION_MARK = "."


def _usable(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _check_max_length(max_length: int) -> None:
    if not MIN_KEY_LENGTH <= max_length <= DEDUP_KEY_COLUMN_LENGTH:
        raise ValueError(f"max_length must be between {MIN_KEY_LENGTH} and {DEDUP_KEY_COLUMN_LENGTH}")


def bound_key(key: str, source: str, max_length: int) -> str:
    """key itself when it fits, else a prefix of key plus a SHA-256 digest of source."""
    if len(key) <= max_length:
        return key
    digest = hashlib.sha256(source.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]
    prefix_length = max_length - DIGEST_LENGTH - len(TRUNCATION_MARK)
    return f"{key[:prefix_length]}{TRUNCATION_MARK}{digest}"


def encode_link(enlace: str, max_length: int = 128) -> str:
    """
    Encode a link into a storage-safe key.

    The full link is base64url-encoded (alphabet A-Z a-z 0-9 - _, no
    padding). Encodings longer than max_length keep a prefix and append a
    SHA-256 digest of the full link, so two long links sharing a prefix
    still get different keys.
    """
    _check_max_length(max_length)
    encoded = base64.urlsafe_b64encode(enlace.encode("utf-8")).decode("ascii").rstrip("=")
    return bound_key(encoded, enlace, max_length)


class KeyResolver:
    """Base class: resolve(record) returns the dedup key or None (unresolvable)."""

    strategy: str = ""

    # True when unresolvable records are dropped instead of inserted unkeyed
    skip_unresolvable: bool = False

    def __init__(self, max_length: Optional[int] = None):
        self.max_length = max_length or settings.dedup_key_max_length
        try:
            _check_max_length(self.max_length)
        except ValueError as e:
            raise InvalidInputError(f"Invalid dedup key max length: {e}") from e

    def resolve(self, record: ListingRecord) -> Optional[str]:
        raise NotImplementedError


class TitleKeyResolver(KeyResolver):
    strategy = "titulo"
    skip_unresolvable = False

    def resolve(self, record: ListingRecord) -> Optional[str]:
        titulo = _usable(record.titulo)
        if titulo is None:
            return None
        return bound_key(titulo, titulo, self.max_length)


class LinkKeyResolver(KeyResolver):
    strategy = "enlace"
    skip_unresolvable = True

    def resolve(self, record: ListingRecord) -> Optional[str]:
        enlace = _usable(record.enlace)
        if enlace is None:
            return None
        return encode_link(enlace, self.max_length)


def get_resolver(strategy: Optional[str] = None, max_length: Optional[int] = None) -> KeyResolver:
    """Build the resolver for strategy (default: settings.dedup_strategy)."""
    strategy = (strategy or settings.dedup_strategy).strip().lower()
    if strategy == "titulo":
        return TitleKeyResolver(max_length=max_length)
    if strategy == "enlace":
        return LinkKeyResolver(max_length=max_length)
    raise InvalidInputError(f"Unknown dedup strategy {strategy!r}, expected one of {DEDUP_STRATEGIES}")
