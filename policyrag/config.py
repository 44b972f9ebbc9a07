from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from policyrag.database.settings import DatabaseSettings

load_dotenv()


DEFAULT_VOCABULARY_PATH = Path(__file__).parent / "data" / "retrieval_vocabulary.json"


@dataclass
class OpenAISettings:
    endpoint: str
    api_key: str
    deployment_name: str
    api_version: str = "2024-10-21"
    model_name: str = "gpt-4.1"
    temperature: float = 0.7
    max_tokens: int = 1000
    # Caller-imposed timeout for every provider call, in seconds
    request_timeout: float = 60.0


@dataclass
class RAGSettings:
    embedding_deployment: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 20

    chunk_size: int = 2000
    chunk_overlap: int = 200

    top_k: int = 10
    similarity_threshold: float = 0.6
    keyword_score_floor: float = 0.8

    # Question answering / summaries
    question_top_k: int = 5
    summary_max_chunks: int = 15
    max_context_tokens: int = 4000

    vocabulary_path: Path = field(default_factory=lambda: DEFAULT_VOCABULARY_PATH)


@dataclass
class AppSettings:
    storage_root: str = "data"
    public_files_base_url: Optional[str] = None


@dataclass
class Settings:
    openai: OpenAISettings
    rag: RAGSettings
    app: AppSettings
    database: DatabaseSettings


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def load_settings() -> Settings:
    """Load configuration from environment variables."""

    oa = OpenAISettings(
        endpoint=os.getenv("AZURE_OPENAI_ENDPOINT", "").rstrip("/"),
        api_key=os.getenv("AZURE_OPENAI_API_KEY", ""),
        deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT_NAME", ""),
        api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-10-21"),
        model_name=os.getenv("AZURE_OPENAI_MODEL_NAME", "gpt-4.1"),
        temperature=_env_float("AZURE_OPENAI_TEMPERATURE", 0.7),
        max_tokens=_env_int("AZURE_OPENAI_MAX_TOKENS", 1000),
        request_timeout=_env_float("PROVIDER_TIMEOUT_SECONDS", 60.0),
    )

    rag = RAGSettings(
        embedding_deployment=os.getenv("EMBEDDING_DEPLOYMENT") or None,
        embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", 1536),
        embedding_batch_size=_env_int("EMBEDDING_BATCH_SIZE", 20),
        chunk_size=_env_int("RAG_CHUNK_SIZE", 2000),
        chunk_overlap=_env_int("RAG_CHUNK_OVERLAP", 200),
        top_k=_env_int("RAG_TOP_K", 10),
        similarity_threshold=_env_float("RAG_SIMILARITY_THRESHOLD", 0.6),
        keyword_score_floor=_env_float("RAG_KEYWORD_SCORE_FLOOR", 0.8),
        question_top_k=_env_int("RAG_QUESTION_TOP_K", 5),
        summary_max_chunks=_env_int("RAG_SUMMARY_MAX_CHUNKS", 15),
        max_context_tokens=_env_int("RAG_MAX_CONTEXT_TOKENS", 4000),
        vocabulary_path=Path(os.getenv("RAG_VOCABULARY_PATH") or DEFAULT_VOCABULARY_PATH),
    )

    app = AppSettings(
        storage_root=os.getenv("POLICY_STORAGE_ROOT", "data"),
        public_files_base_url=os.getenv("PUBLIC_FILES_BASE_URL") or None,
    )

    return Settings(openai=oa, rag=rag, app=app, database=DatabaseSettings.from_env())


def validate_settings(settings: Settings) -> List[str]:
    """Validate configuration and return a list of human-readable error messages."""
    errors: List[str] = []

    # OpenAI
    if not settings.openai.endpoint:
        errors.append("AZURE_OPENAI_ENDPOINT is not set.")
    if not settings.openai.api_key:
        errors.append("AZURE_OPENAI_API_KEY is not set.")
    if not settings.openai.deployment_name:
        errors.append("AZURE_OPENAI_DEPLOYMENT_NAME is not set.")

    # RAG
    if not settings.rag.embedding_deployment:
        errors.append("EMBEDDING_DEPLOYMENT is not set.")
    if settings.rag.embedding_dimensions <= 0:
        errors.append("EMBEDDING_DIMENSIONS must be positive.")
    if not 0 <= settings.rag.chunk_overlap < settings.rag.chunk_size:
        errors.append("RAG_CHUNK_OVERLAP must be at least 0 and smaller than RAG_CHUNK_SIZE.")
    if not settings.rag.vocabulary_path.exists():
        errors.append(f"Retrieval vocabulary not found: {settings.rag.vocabulary_path}")

    # Database
    if settings.database.backend == "postgresql":
        if not settings.database.host:
            errors.append("POSTGRESQL_HOST is not set.")
        if not settings.database.database:
            errors.append("POSTGRESQL_DATABASE is not set.")
    elif settings.database.backend != "json":
        errors.append(f"Unknown DATABASE_BACKEND '{settings.database.backend}'.")

    # App
    if not settings.app.storage_root:
        errors.append("POLICY_STORAGE_ROOT is not set or empty.")

    return errors
