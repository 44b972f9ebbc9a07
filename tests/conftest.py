"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from policyrag.config import AppSettings, OpenAISettings, RAGSettings, Settings
from policyrag.database.settings import DatabaseSettings
from policyrag.errors import EmbeddingError
from policyrag.models import InsurancePlan, PolicyDocument
from policyrag.rag.context import RAGContextBuilder
from policyrag.rag.indexer import PolicyIndexer
from policyrag.rag.repository import JsonPolicyStore
from policyrag.rag.search import PolicySearchService
from policyrag.rag.service import RAGService
from policyrag.rag.vocabulary import RetrievalVocabulary
from policyrag.recommendations import RecommendationService
from policyrag.storage import PolicyFileStorage

# Each concept is one embedding dimension; a text's vector counts stem hits.
# "gestohlen" is intentionally absent so only query expansion can reach theft.
CONCEPTS = {
    "theft": ("diebstahl", "raub", "theft", "geklaut", "entwendet"),
    "water": ("wasser", "flüssigkeit", "nass"),
    "screen": ("display", "bildschirm", "glas"),
    "battery": ("akku", "batterie"),
    "fire": ("brand", "feuer"),
    "loss": ("verlust", "verloren"),
    "price": ("prämie", "beitrag", "preis"),
    "withdrawal": ("widerruf", "kündigung"),
}


class ConceptEmbeddingService:
    """Deterministic bag-of-concepts embedder standing in for the provider."""

    dimensions = len(CONCEPTS)

    def __init__(self, fail_on_batch: int | None = None):
        self.fail_on_batch = fail_on_batch
        self.batch_calls: list[list[str]] = []
        self.queries: list[str] = []

    @staticmethod
    def embed(text: str) -> list[float]:
        lowered = text.lower()
        return [float(sum(lowered.count(stem) for stem in stems)) for stems in CONCEPTS.values()]

    def generate(self, text: str) -> list[float]:
        self.queries.append(text)
        return self.embed(text)

    def generate_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        if self.fail_on_batch is not None and len(self.batch_calls) == self.fail_on_batch:
            raise EmbeddingError("Embedding API error 503: unavailable")
        return [self.embed(text) for text in texts]


class FakeTextGenerationClient:
    def __init__(self, response: str = ""):
        self.response = response
        self.prompts: list[str] = []

    def generate(self, prompt: str, system_prompt: str | None = None) -> str:
        self.prompts.append(prompt)
        return self.response


class WordEncoding:
    """Whitespace tokenizer with the encode/decode surface of a tiktoken encoding."""

    def __init__(self):
        self._ids: dict[str, int] = {}
        self._words: list[str] = []

    def encode(self, text: str) -> list[int]:
        tokens = []
        for word in text.split():
            if word not in self._ids:
                self._ids[word] = len(self._words)
                self._words.append(word)
            tokens.append(self._ids[word])
        return tokens

    def decode(self, tokens: list[int]) -> str:
        return " ".join(self._words[t] for t in tokens)


class InMemoryFileStorage(PolicyFileStorage):
    """File storage serving fixed bytes per storage URL."""

    def __init__(self, files: dict[str, bytes] | None = None):
        super().__init__(storage_root="unused")
        self.files = dict(files or {})

    def fetch(self, storage_url: str, storage_key: str | None = None) -> bytes:
        return self.files[storage_url]


def decode_text(data: bytes) -> str:
    return data.decode("utf-8")


PLAN_SUMMARY_RESPONSE = """SUMMARY: Die Versicherung schützt Ihr Gerät gegen Diebstahl und Wasserschaden.
TOP_REASONS:
- Schutz bei Diebstahl
- Schutz bei Displaybruch
- Geringe Selbstbeteiligung
- Ein vierter Grund"""


@pytest.fixture
def rag_settings() -> RAGSettings:
    return RAGSettings(
        embedding_dimensions=ConceptEmbeddingService.dimensions,
        embedding_batch_size=2,
        chunk_size=120,
        chunk_overlap=20,
    )


@pytest.fixture
def store(tmp_path: Path) -> JsonPolicyStore:
    return JsonPolicyStore(tmp_path / "policy_store.json")


@pytest.fixture
def vocabulary() -> RetrievalVocabulary:
    return RetrievalVocabulary.load()


@pytest.fixture
def embedder() -> ConceptEmbeddingService:
    return ConceptEmbeddingService()


@pytest.fixture
def llm() -> FakeTextGenerationClient:
    return FakeTextGenerationClient(PLAN_SUMMARY_RESPONSE)


@pytest.fixture
def file_storage() -> InMemoryFileStorage:
    return InMemoryFileStorage()


@pytest.fixture
def search_service(store, vocabulary, rag_settings) -> PolicySearchService:
    return PolicySearchService(store, vocabulary, rag_settings)


@pytest.fixture
def indexer(store, embedder, file_storage, rag_settings) -> PolicyIndexer:
    return PolicyIndexer(store, embedder, file_storage, rag_settings, text_extractor=decode_text)


@pytest.fixture
def rag_service(store, search_service, embedder, llm, vocabulary, rag_settings) -> RAGService:
    return RAGService(
        store,
        search_service,
        embedder,
        llm,
        vocabulary,
        RAGContextBuilder(max_tokens=500, encoding=WordEncoding()),
        rag_settings,
    )


@pytest.fixture
def test_settings(tmp_path: Path, rag_settings: RAGSettings) -> Settings:
    return Settings(
        openai=OpenAISettings(endpoint="", api_key="", deployment_name=""),
        rag=rag_settings,
        app=AppSettings(storage_root=str(tmp_path / "files")),
        database=DatabaseSettings(json_path=str(tmp_path / "policy_store.json")),
    )


@pytest.fixture
def recommendation_service(store) -> RecommendationService:
    return RecommendationService(store)


def make_plan(**overrides) -> InsurancePlan:
    values = {
        "id": "",
        "company_name": "Sicher AG",
        "plan_name": "Handyschutz Plus",
        "description": "Schutz für Smartphones",
        "categories": ["Smartphones"],
        "yearly_price_in_cents": 6000,
        "coverage_percentage": 80,
        "deductible_in_cents": 5000,
    }
    values.update(overrides)
    return InsurancePlan(**values)


async def add_plan_with_document(
    store: JsonPolicyStore,
    file_storage: InMemoryFileStorage,
    text: str,
    plan: InsurancePlan | None = None,
    file_name: str = "bedingungen.pdf",
) -> tuple[InsurancePlan, PolicyDocument]:
    plan = plan or await store.create_plan(make_plan())
    url = f"file:///policies/{plan.id}/{file_name}"
    file_storage.files[url] = text.encode("utf-8")
    document = await store.add_document(PolicyDocument(
        id="",
        plan_id=plan.id,
        file_name=file_name,
        storage_key=f"policy-files/{plan.id}/{file_name}",
        storage_url=url,
        file_size_in_bytes=len(text),
    ))
    return plan, document
