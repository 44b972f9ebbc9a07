"""
Explicit construction of the retrieval engine's collaborators.

Callers (API server, CLI scripts) build one ``Services`` container at startup
and close it on shutdown.
"""

from __future__ import annotations

from dataclasses import dataclass

from policyrag.config import Settings, load_settings
from policyrag.llm_client import TextGenerationClient
from policyrag.rag.context import RAGContextBuilder
from policyrag.rag.embeddings import EmbeddingService
from policyrag.rag.indexer import PolicyIndexer
from policyrag.rag.repository import PolicyStore, create_policy_store
from policyrag.rag.search import PolicySearchService
from policyrag.rag.service import RAGService
from policyrag.rag.vocabulary import RetrievalVocabulary
from policyrag.recommendations import RecommendationService
from policyrag.storage import PolicyFileStorage
from policyrag.utils import setup_logging

logger = setup_logging()


@dataclass
class Services:
    settings: Settings
    store: PolicyStore
    file_storage: PolicyFileStorage
    indexer: PolicyIndexer
    search: PolicySearchService
    rag: RAGService
    recommendations: RecommendationService

    async def close(self) -> None:
        await self.store.close()


async def build_services(settings: Settings | None = None) -> Services:
    settings = settings or load_settings()

    store = await create_policy_store(settings.database)
    vocabulary = RetrievalVocabulary.load(settings.rag.vocabulary_path)
    embedding_service = EmbeddingService(settings.openai, settings.rag)
    file_storage = PolicyFileStorage(
        settings.app.storage_root,
        public_base_url=settings.app.public_files_base_url,
        timeout=settings.openai.request_timeout,
    )
    search = PolicySearchService(store, vocabulary, settings.rag)

    services = Services(
        settings=settings,
        store=store,
        file_storage=file_storage,
        indexer=PolicyIndexer(store, embedding_service, file_storage, settings.rag),
        search=search,
        rag=RAGService(
            store,
            search,
            embedding_service,
            TextGenerationClient(settings.openai),
            vocabulary,
            RAGContextBuilder(max_tokens=settings.rag.max_context_tokens, model=settings.openai.model_name),
            settings.rag,
        ),
        recommendations=RecommendationService(store),
    )
    logger.info(f"Services ready (store backend: {settings.database.backend})")
    return services
