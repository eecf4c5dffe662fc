"""
Tests for the deduplicating upsert pipeline.

Runs against InMemoryDocumentStore, which counts batch_get / batch_write
calls so the constant round-trip bound can be asserted directly.
"""

import pytest

from src.archivist.identity import LinkKeyResolver, TitleKeyResolver
from src.archivist.storage import coerce_records, list_listings, partition_records, upsert_listings
from src.common.errors import CommitFailure, InvalidInputError, StoreReadError
from tests.test_helpers import InMemoryDocumentStore


def listing(titulo=None, enlace=None, **extra):
    data = {"titulo": titulo, "enlace": enlace}
    data.update(extra)
    return data


class TestUpsertCounts:
    """new / updated / skipped accounting."""

    @pytest.mark.asyncio
    async def test_new_then_updated(self, memory_store):
        """Stored {titulo:"Beca X"}; upsert Beca X + Beca Y -> new 1, updated 1."""
        resolver = TitleKeyResolver()
        await upsert_listings(memory_store, [listing("Beca X", monto="100")], resolver)

        result = await upsert_listings(
            memory_store,
            [listing("Beca X", monto="200"), listing("Beca Y")],
            resolver,
        )

        assert (result.new, result.updated, result.skipped) == (1, 1, 0)
        assert result.total == 2
        assert len(memory_store.docs) == 2
        beca_x = next(d for d in memory_store.docs.values() if d.titulo == "Beca X")
        assert beca_x.monto == "200"

    @pytest.mark.asyncio
    async def test_counts_add_up(self, memory_store):
        resolver = LinkKeyResolver()
        records = [
            listing("A", "https://a.example"),
            listing("B", None),
            listing("C", "https://c.example"),
            listing("A again", "https://a.example"),
        ]

        result = await upsert_listings(memory_store, records, resolver)

        assert result.new + result.updated + result.skipped == result.total == 4
        assert (result.new, result.updated, result.skipped) == (2, 1, 1)

    @pytest.mark.asyncio
    async def test_empty_batch_touches_nothing(self, memory_store):
        result = await upsert_listings(memory_store, [], TitleKeyResolver())

        assert result.total == 0
        assert memory_store.batch_get_calls == []
        assert memory_store.batch_write_calls == []


class TestUpsertIdempotence:
    """Re-running the same batch changes nothing but updated_at."""

    @pytest.mark.asyncio
    async def test_second_run_is_all_updates(self, memory_store, sample_listing_data):
        resolver = TitleKeyResolver()
        records = [sample_listing_data, listing("Otra convocatoria", "https://b.example")]

        await upsert_listings(memory_store, records, resolver)
        before = memory_store.snapshot()
        updated_at_before = {i: d.updated_at for i, d in memory_store.docs.items()}

        result = await upsert_listings(memory_store, records, resolver)

        assert (result.new, result.updated) == (0, 2)
        assert memory_store.snapshot() == before
        for doc_id, doc in memory_store.docs.items():
            assert doc.updated_at > updated_at_before[doc_id]
            assert doc.created_at < doc.updated_at

    @pytest.mark.asyncio
    async def test_no_duplicate_keys_after_repeated_upserts(self, memory_store):
        resolver = LinkKeyResolver()
        records = [listing(f"Beca {i}", f"https://example.gov/{i}") for i in range(10)]

        for _ in range(3):
            await upsert_listings(memory_store, records, resolver)

        keys = [d.dedup_key for d in memory_store.docs.values()]
        assert len(keys) == len(set(keys)) == 10


class TestUpsertInBatchDuplicates:
    """Two records with the same key in one batch become one document."""

    @pytest.mark.asyncio
    async def test_duplicates_merge_and_later_values_win(self, memory_store):
        result = await upsert_listings(
            memory_store,
            [listing("Beca X", monto="100"), listing("Beca X", monto="300")],
            TitleKeyResolver(),
        )

        assert (result.new, result.updated) == (1, 1)
        assert len(memory_store.docs) == 1
        assert next(iter(memory_store.docs.values())).monto == "300"

    @pytest.mark.asyncio
    async def test_same_title_different_links_merge_into_one(self, memory_store):
        """[Beca X / https://a, Beca X / https://b] under titulo -> new 1, updated 1, enlace https://b."""
        result = await upsert_listings(
            memory_store,
            [listing("Beca X", "https://a"), listing("Beca X", "https://b")],
            TitleKeyResolver(),
        )

        assert (result.new, result.updated, result.skipped) == (1, 1, 0)
        assert len(memory_store.docs) == 1
        doc = next(iter(memory_store.docs.values()))
        assert doc.dedup_key == "Beca X"
        assert doc.enlace == "https://b"
        assert len(memory_store.batch_write_calls) == 1
        assert len(memory_store.batch_write_calls[0]) == 1

    @pytest.mark.asyncio
    async def test_duplicate_keys_read_once(self, memory_store):
        await upsert_listings(
            memory_store,
            [listing("Beca X"), listing("Beca X"), listing("Beca Y")],
            TitleKeyResolver(),
        )

        assert memory_store.batch_get_calls == [["Beca X", "Beca Y"]]


class TestUpsertUnresolvable:
    """Records the active policy cannot key."""

    @pytest.mark.asyncio
    async def test_title_policy_inserts_unkeyed_every_time(self, memory_store):
        resolver = TitleKeyResolver()
        records = [listing(None, "https://a.example"), listing("   ")]

        first = await upsert_listings(memory_store, records, resolver)
        second = await upsert_listings(memory_store, records, resolver)

        assert (first.new, first.unkeyed, first.skipped) == (2, 2, 0)
        assert (second.new, second.unkeyed) == (2, 2)
        assert len(memory_store.docs) == 4
        assert all(d.dedup_key is None for d in memory_store.docs.values())

    @pytest.mark.asyncio
    async def test_all_unkeyed_skips_the_read(self, memory_store):
        await upsert_listings(memory_store, [listing(None)], TitleKeyResolver())

        assert memory_store.batch_get_calls == []
        assert len(memory_store.batch_write_calls) == 1

    @pytest.mark.asyncio
    async def test_link_policy_skips_records_without_link(self, memory_store):
        result = await upsert_listings(
            memory_store,
            [listing("Sin enlace"), listing("Con enlace", "https://a.example")],
            LinkKeyResolver(),
        )

        assert (result.new, result.skipped) == (1, 1)
        assert [d.titulo for d in memory_store.docs.values()] == ["Con enlace"]

    @pytest.mark.asyncio
    async def test_only_skipped_records_write_nothing(self, memory_store):
        result = await upsert_listings(memory_store, [listing("Sin enlace")], LinkKeyResolver())

        assert result.skipped == 1
        assert memory_store.batch_write_calls == []


class TestUpsertRoundTrips:
    """Exactly one existence read and one commit per call."""

    @pytest.mark.asyncio
    async def test_one_read_one_write_for_large_batch(self, memory_store):
        records = [listing(f"Beca {i}") for i in range(250)]

        await upsert_listings(memory_store, records, TitleKeyResolver())
        await upsert_listings(memory_store, records + [listing("Beca nueva")], TitleKeyResolver())

        assert len(memory_store.batch_get_calls) == 2
        assert len(memory_store.batch_write_calls) == 2
        assert len(memory_store.docs) == 251

    @pytest.mark.asyncio
    async def test_read_failure_writes_nothing(self):
        store = InMemoryDocumentStore(fail_read=True)

        with pytest.raises(StoreReadError):
            await upsert_listings(store, [listing("Beca X")], TitleKeyResolver())

        assert store.batch_write_calls == []
        assert store.docs == {}

    @pytest.mark.asyncio
    async def test_commit_failure_leaves_store_unchanged(self, memory_store):
        resolver = TitleKeyResolver()
        await upsert_listings(memory_store, [listing("Beca X", monto="100")], resolver)
        before = memory_store.snapshot()
        memory_store.fail_commit = True

        with pytest.raises(CommitFailure) as exc_info:
            await upsert_listings(memory_store, [listing("Beca X", monto="999"), listing("Beca Y")], resolver)

        assert exc_info.value.staged == 2
        assert memory_store.snapshot() == before


class TestRecordValidation:
    """Malformed input is rejected before any store call."""

    @pytest.mark.asyncio
    async def test_non_list_payload(self, memory_store):
        with pytest.raises(InvalidInputError):
            await upsert_listings(memory_store, {"titulo": "Beca"}, TitleKeyResolver())

        assert memory_store.batch_get_calls == []

    def test_non_object_item(self):
        with pytest.raises(InvalidInputError):
            coerce_records([{"titulo": "ok"}, "bad"])

    def test_wrong_typed_field(self):
        with pytest.raises(InvalidInputError):
            coerce_records([{"titulo": {"nested": "object"}}])

    def test_list_valued_text_fields_become_text(self):
        records = coerce_records([
            {"titulo": "Beca A", "requisitos": "Maestria"},
            {"titulo": "Beca B", "requisitos": ["Maestria", "Ingles B2"]},
        ])

        assert [r.requisitos for r in records] == ["Maestria", "Maestria; Ingles B2"]

    def test_camel_case_dates_are_accepted(self, sample_listing_data):
        record = coerce_records([sample_listing_data])[0]

        assert record.fecha_cierre.isoformat() == "2025-03-31"


class TestPartitionRecords:
    """Extracted items are validated one at a time."""

    def test_invalid_items_are_dropped_not_fatal(self):
        valid, dropped = partition_records([
            {"titulo": "Beca A"},
            "not an object",
            {"titulo": {"nested": "object"}},
            {"titulo": "Beca B", "requisitos": ["Maestria"]},
        ])

        assert [r.titulo for r in valid] == ["Beca A", "Beca B"]
        assert dropped == 2

    def test_non_list_payload_still_rejected(self):
        with pytest.raises(InvalidInputError):
            partition_records({"titulo": "Beca"})


class TestListListings:
    """Query of stored listings."""

    @pytest.mark.asyncio
    async def test_newest_first_with_estado_filter(self, memory_store):
        resolver = TitleKeyResolver()
        await upsert_listings(memory_store, [listing("Vieja", estado="cerrada")], resolver)
        await upsert_listings(memory_store, [listing("Nueva", estado="abierta")], resolver)
        await upsert_listings(memory_store, [listing("Reciente", estado="vigente")], resolver)

        all_docs = await list_listings(memory_store)
        open_docs = await list_listings(memory_store, estado="abierta")

        assert [d.titulo for d in all_docs] == ["Reciente", "Nueva", "Vieja"]
        assert [d.titulo for d in open_docs] == ["Reciente", "Nueva"]

    @pytest.mark.asyncio
    async def test_limit(self, memory_store):
        await upsert_listings(memory_store, [listing(f"Beca {i}") for i in range(5)], TitleKeyResolver())

        assert len(await list_listings(memory_store, limit=2)) == 2

    @pytest.mark.asyncio
    async def test_invalid_estado(self, memory_store):
        with pytest.raises(InvalidInputError):
            await list_listings(memory_store, estado="pendiente")

    @pytest.mark.asyncio
    async def test_invalid_limit(self, memory_store):
        with pytest.raises(InvalidInputError):
            await list_listings(memory_store, limit=0)
