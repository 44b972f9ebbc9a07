"""Tests for the document ingestion pipeline."""

import asyncio

import pytest

from conftest import ConceptEmbeddingService, add_plan_with_document, decode_text, make_plan
from policyrag.errors import Err, FailureKind
from policyrag.models import EmbeddedChunk
from policyrag.rag.indexer import PolicyIndexer

POLICY_TEXT = " ".join(
    f"Paragraf {i}: Diebstahl und Wasserschaden sind bis {i}00 Euro versichert."
    for i in range(1, 13)
)


@pytest.mark.asyncio
async def test_ingest_document_stores_all_chunks(store, file_storage, indexer, embedder):
    plan, document = await add_plan_with_document(store, file_storage, POLICY_TEXT)

    result = await indexer.ingest_document(document.id)

    assert result.ok
    report = result.value
    chunks = await store.find_chunks_for_plan(plan.id)
    assert report.chunks_created == len(chunks) > 2
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert all(len(c.embedding) == ConceptEmbeddingService.dimensions for c in chunks)
    # Batches of two, embedded in order
    assert all(len(batch) <= 2 for batch in embedder.batch_calls)
    assert report.batches == len(embedder.batch_calls)
    assert (await store.get_document(document.id)).is_processed


@pytest.mark.asyncio
async def test_concurrent_ingestion_of_one_plan(store, file_storage, indexer):
    plan, first = await add_plan_with_document(store, file_storage, POLICY_TEXT, file_name="avb.pdf")
    _, second = await add_plan_with_document(store, file_storage, POLICY_TEXT, plan=plan, file_name="ipid.pdf")

    results = await asyncio.gather(indexer.ingest_document(first.id), indexer.ingest_document(second.id))

    assert all(result.ok for result in results)
    assert await store.count_chunks(plan.id) == sum(r.value.chunks_created for r in results)
    assert (await store.get_document(first.id)).is_processed
    assert (await store.get_document(second.id)).is_processed


@pytest.mark.asyncio
async def test_ingest_unknown_document(indexer):
    result = await indexer.ingest_document("missing")

    assert isinstance(result, Err)
    assert result.kind == FailureKind.DOCUMENT_NOT_FOUND


@pytest.mark.asyncio
async def test_ingest_processed_document_is_rejected(store, file_storage, indexer):
    _, document = await add_plan_with_document(store, file_storage, POLICY_TEXT)
    await indexer.ingest_document(document.id)

    result = await indexer.ingest_document(document.id)

    assert isinstance(result, Err)
    assert result.kind == FailureKind.ALREADY_PROCESSED


@pytest.mark.asyncio
async def test_ingest_empty_document(store, file_storage, indexer):
    _, document = await add_plan_with_document(store, file_storage, "  \n\n ")

    result = await indexer.ingest_document(document.id)

    assert isinstance(result, Err)
    assert result.kind == FailureKind.EMPTY_DOCUMENT
    assert not (await store.get_document(document.id)).is_processed


@pytest.mark.asyncio
async def test_provider_failure_leaves_document_retryable(store, file_storage, rag_settings):
    plan, document = await add_plan_with_document(store, file_storage, POLICY_TEXT)
    failing = PolicyIndexer(
        store,
        ConceptEmbeddingService(fail_on_batch=2),
        file_storage,
        rag_settings,
        text_extractor=decode_text,
    )

    result = await failing.ingest_document(document.id)

    assert isinstance(result, Err)
    assert result.kind == FailureKind.PROVIDER_ERROR
    assert not (await store.get_document(document.id)).is_processed
    assert await store.count_chunks(plan.id) == 0

    healthy = PolicyIndexer(store, ConceptEmbeddingService(), file_storage, rag_settings, text_extractor=decode_text)
    retry = await healthy.ingest_document(document.id)

    assert retry.ok
    assert await store.count_chunks(plan.id) == retry.value.chunks_created


@pytest.mark.asyncio
async def test_leftover_chunks_are_purged_before_ingestion(store, file_storage, indexer):
    plan, document = await add_plan_with_document(store, file_storage, POLICY_TEXT)
    await store.insert_chunks(document.id, [EmbeddedChunk(0, "stale", [1.0] * 8)])

    result = await indexer.ingest_document(document.id)

    assert result.ok
    chunks = await store.find_chunks_for_plan(plan.id)
    assert "stale" not in [c.chunk_text for c in chunks]
    assert len(chunks) == result.value.chunks_created


@pytest.mark.asyncio
async def test_reingest_plan_rebuilds_every_document(store, file_storage, indexer):
    plan, first = await add_plan_with_document(store, file_storage, POLICY_TEXT)
    _, second = await add_plan_with_document(store, file_storage, "Feuer und Brand sind versichert.", plan=plan, file_name="anhang.pdf")
    await indexer.ingest_document(first.id)
    await indexer.ingest_document(second.id)
    before = await store.count_chunks(plan.id)

    result = await indexer.reingest_plan(plan.id)

    assert result.ok
    assert [r.document_id for r in result.value] == [first.id, second.id]
    assert await store.count_chunks(plan.id) == before
    assert all(d.is_processed for d in await store.list_documents(plan.id))


@pytest.mark.asyncio
async def test_reingest_plan_stops_at_first_failure(store, file_storage, indexer):
    plan, first = await add_plan_with_document(store, file_storage, "   ")
    _, second = await add_plan_with_document(store, file_storage, POLICY_TEXT, plan=plan, file_name="anhang.pdf")

    result = await indexer.reingest_plan(plan.id)

    assert isinstance(result, Err)
    assert result.kind == FailureKind.EMPTY_DOCUMENT
    assert not (await store.get_document(second.id)).is_processed


@pytest.mark.asyncio
async def test_reingest_plan_without_documents(store, indexer):
    plan = await store.create_plan(make_plan())

    result = await indexer.reingest_plan(plan.id)

    assert isinstance(result, Err)
    assert result.kind == FailureKind.NO_DOCUMENTS


@pytest.mark.asyncio
async def test_reingest_unknown_plan(indexer):
    result = await indexer.reingest_plan("missing")

    assert isinstance(result, Err)
    assert result.kind == FailureKind.PLAN_NOT_FOUND
