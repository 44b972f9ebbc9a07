"""
RAG (Retrieval-Augmented Generation) package for insurance policy documents.

This package provides:
- chunk_text: Splits extracted policy text into overlapping chunks
- EmbeddingService: Generates vector embeddings via Azure OpenAI
- PolicyStore: Plans, documents and chunks (PostgreSQL or JSON file)
- PolicyIndexer: Orchestrates the ingestion pipeline
- PolicySearchService: Similarity and hybrid search over a plan's chunks
- RetrievalVocabulary: Keyword list and query synonyms
- RAGContextBuilder: Assembles search results into LLM context
- RAGService: Question answering and summaries
"""

from policyrag.rag.chunker import TextChunk, chunk_text
from policyrag.rag.embeddings import EmbeddingService
from policyrag.rag.repository import JsonPolicyStore, PolicyStore, PostgresPolicyStore, create_policy_store
from policyrag.rag.indexer import IngestionReport, PolicyIndexer
from policyrag.rag.search import PolicySearchService, SearchResult, cosine_similarity
from policyrag.rag.vocabulary import RetrievalVocabulary
from policyrag.rag.context import RAGContext, RAGContextBuilder
from policyrag.rag.service import ChatMessage, QuestionAnswer, RAGService

__all__ = [
    "TextChunk",
    "chunk_text",
    "EmbeddingService",
    "PolicyStore",
    "JsonPolicyStore",
    "PostgresPolicyStore",
    "create_policy_store",
    "PolicyIndexer",
    "IngestionReport",
    "PolicySearchService",
    "SearchResult",
    "cosine_similarity",
    "RetrievalVocabulary",
    "RAGContext",
    "RAGContextBuilder",
    "RAGService",
    "ChatMessage",
    "QuestionAnswer",
]
