"""
Policy Indexer - Orchestrates the document ingestion pipeline.

Pipeline: Fetch file → Extract text → Chunk → Embed (batched) → Store

A document is marked processed only after every batch is stored. Any
failure removes the chunks written so far and leaves the flag cleared, so
the document can simply be ingested again.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable

from policyrag.config import RAGSettings
from policyrag.errors import Err, FailureKind, Ok, PolicyRAGError, Result
from policyrag.models import EmbeddedChunk, PolicyDocument
from policyrag.pdf_text import extract_pdf_text
from policyrag.rag.chunker import TextChunk, chunk_text, normalize_text
from policyrag.rag.embeddings import EmbeddingService
from policyrag.rag.repository import PolicyStore
from policyrag.storage import PolicyFileStorage
from policyrag.utils import setup_logging

logger = setup_logging()


@dataclass
class IngestionReport:
    """Outcome of ingesting one document."""

    document_id: str
    plan_id: str
    chunks_created: int
    batches: int
    total_time_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "plan_id": self.plan_id,
            "chunks_created": self.chunks_created,
            "batches": self.batches,
            "total_time_seconds": self.total_time_seconds,
        }


class PolicyIndexer:
    """
    Orchestrates the policy ingestion pipeline.

    Steps:
    1. Load the document's file from blob storage
    2. Extract text from the PDF
    3. Chunk the text into overlapping segments
    4. Embed chunks in sequential batches
    5. Append each batch to the policy store, then mark the document processed
    """

    def __init__(
        self,
        store: PolicyStore,
        embedding_service: EmbeddingService,
        file_storage: PolicyFileStorage,
        rag_settings: RAGSettings | None = None,
        text_extractor: Callable[[bytes], str] = extract_pdf_text,
    ):
        """
        Initialize the indexer.

        Args:
            store: Policy store receiving the chunks
            embedding_service: Embedding provider gateway
            file_storage: Blob storage holding uploaded policy files
            rag_settings: Chunking and batch configuration
            text_extractor: Turns file bytes into plain text
        """
        self.store = store
        self.embedding_service = embedding_service
        self.file_storage = file_storage
        self.rag_settings = rag_settings or RAGSettings()
        self.text_extractor = text_extractor

    async def ingest_document(self, document_id: str) -> Result[IngestionReport]:
        """
        Ingest one uploaded policy document.

        Returns:
            Ok(IngestionReport) or Err with DOCUMENT_NOT_FOUND, ALREADY_PROCESSED,
            INVALID_DOCUMENT, EMPTY_DOCUMENT, PROVIDER_ERROR or STORAGE_ERROR
        """
        start_time = time.time()

        try:
            document = await self.store.get_document(document_id)
        except PolicyRAGError as e:
            return e.to_err()

        if document is None:
            return Err(FailureKind.DOCUMENT_NOT_FOUND, f"Document {document_id} not found")
        if document.is_processed:
            return Err(FailureKind.ALREADY_PROCESSED, f"Document {document_id} is already processed")

        logger.info(f"Ingesting document {document.file_name} ({document_id}) for plan {document.plan_id}")

        try:
            chunks = await self._load_chunks(document)
        except PolicyRAGError as e:
            logger.error(f"Failed to read document {document_id}: {e}")
            return e.to_err()

        if chunks is None:
            return Err(FailureKind.EMPTY_DOCUMENT, f"No text could be extracted from {document.file_name}")

        try:
            # Leftovers from an interrupted run would collide with fresh indices
            await self.store.reset_document(document_id)
            batches = await self._embed_and_store(document_id, chunks)
            await self.store.mark_document_processed(document_id)
        except PolicyRAGError as e:
            logger.error(f"Ingestion of document {document_id} failed: {e}")
            await self._discard_partial(document_id)
            return e.to_err()

        total_time = time.time() - start_time
        logger.info(
            f"Ingested document {document_id}: {len(chunks)} chunks in "
            f"{batches} batches ({total_time:.1f}s)"
        )
        return Ok(IngestionReport(
            document_id=document_id,
            plan_id=document.plan_id,
            chunks_created=len(chunks),
            batches=batches,
            total_time_seconds=round(total_time, 2),
        ))

    async def reingest_plan(self, plan_id: str) -> Result[list[IngestionReport]]:
        """
        Rebuild the index of every document of a plan.

        All documents are reset first, then ingested one after another. The
        first failure stops the run; documents not yet ingested stay
        unprocessed and can be retried individually.
        """
        try:
            plan = await self.store.get_plan(plan_id)
            if plan is None:
                return Err(FailureKind.PLAN_NOT_FOUND, f"Plan {plan_id} not found")

            documents = await self.store.list_documents(plan_id)
            if not documents:
                return Err(FailureKind.NO_DOCUMENTS, f"Plan {plan_id} has no policy documents")

            logger.info(f"Reprocessing {len(documents)} documents for plan {plan.plan_name}")
            for document in documents:
                await self.store.reset_document(document.id)
        except PolicyRAGError as e:
            return e.to_err()

        reports: list[IngestionReport] = []
        for document in documents:
            result = await self.ingest_document(document.id)
            if isinstance(result, Err):
                logger.error(
                    f"Reprocessing plan {plan_id} stopped at {document.file_name}: {result}"
                )
                return Err(result.kind, f"{document.file_name}: {result.message}")
            reports.append(result.value)

        return Ok(reports)

    async def get_index_stats(self, plan_id: str | None = None) -> dict[str, Any]:
        """Chunk and document counts, overall or for one plan."""
        stats: dict[str, Any] = {"total_chunks": await self.store.count_chunks(plan_id)}

        if plan_id:
            documents = await self.store.list_documents(plan_id)
            stats["documents"] = len(documents)
            stats["processed_documents"] = sum(1 for d in documents if d.is_processed)
        else:
            stats["active_plans"] = len(await self.store.list_active_plans())

        return stats

    async def _load_chunks(self, document: PolicyDocument) -> list[TextChunk] | None:
        data = await asyncio.to_thread(
            self.file_storage.fetch, document.storage_url, document.storage_key
        )
        text = await asyncio.to_thread(self.text_extractor, data)

        if not normalize_text(text):
            return None

        chunks = chunk_text(
            text,
            max_chunk_size=self.rag_settings.chunk_size,
            overlap=self.rag_settings.chunk_overlap,
        )
        logger.info(f"Split {document.file_name} into {len(chunks)} chunks")
        return chunks

    async def _embed_and_store(self, document_id: str, chunks: list[TextChunk]) -> int:
        batch_size = self.rag_settings.embedding_batch_size
        batches = 0

        for start in range(0, len(chunks), batch_size):
            batch = chunks[start:start + batch_size]
            vectors = await asyncio.to_thread(
                self.embedding_service.generate_batch, [chunk.text for chunk in batch]
            )
            await self.store.insert_chunks(
                document_id,
                [
                    EmbeddedChunk(index=chunk.index, text=chunk.text, embedding=vector)
                    for chunk, vector in zip(batch, vectors)
                ],
            )
            batches += 1
            logger.debug(f"Stored batch {batches} ({len(batch)} chunks) for document {document_id}")

        return batches

    async def _discard_partial(self, document_id: str) -> None:
        try:
            await self.store.reset_document(document_id)
        except PolicyRAGError as e:
            # The next ingestion attempt purges leftovers before embedding
            logger.error(f"Could not remove partial chunks of document {document_id}: {e}")
