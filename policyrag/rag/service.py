"""
RAG Service - Question answering and summaries over retrieved policy text.

Provides a single entry point for:
- Query expansion and embedding
- Hybrid search over a plan's policy chunks
- Context assembly for LLM prompts
- Grounded answers, product-fit summaries and persisted plan summaries
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any

from policyrag.config import RAGSettings
from policyrag.errors import Err, FailureKind, Ok, PolicyRAGError, Result
from policyrag.llm_client import TextGenerationClient
from policyrag.models import InsurancePlan
from policyrag.rag.context import CHUNK_SEPARATOR, RAGContextBuilder
from policyrag.rag.embeddings import EmbeddingService
from policyrag.rag.repository import PolicyStore
from policyrag.rag.search import PolicySearchService, SearchResult
from policyrag.rag.vocabulary import RetrievalVocabulary
from policyrag.utils import setup_logging

logger = setup_logging()

INSUFFICIENT_INFORMATION_ANSWER = (
    "I could not find information about this in the policy documents. "
    "Please contact the insurer's customer service for details."
)

QUESTION_PROMPT = """You are a knowledgeable insurance assistant for {company_name}'s "{plan_name}" policy.
Your role is to help customers understand their coverage options.

IMPORTANT RULES:
1. Only answer based on the policy context provided below
2. If information is not in the context, clearly state that you cannot find that specific information in the policy documents
3. Be concise but thorough
4. Use simple language, avoid jargon
5. If asked about claims or specific procedures, mention that they should contact customer service for detailed assistance

Policy Context:
{context}

{history}User question: {question}

Provide a helpful, accurate response:"""

PRODUCT_SUMMARY_PROMPT = """Given the following policy excerpts for "{plan_name}" from {company_name}:

{context}

Generate a concise summary (2-3 sentences) explaining why this insurance is a good fit for a {product_name} ({category}). Focus on the key coverage benefits that are most relevant for this type of device.

Also provide exactly 3 key coverage highlights as short bullet points.

Response format (use exactly this structure):
SUMMARY: [your 2-3 sentence summary here]
HIGHLIGHTS:
- [highlight 1]
- [highlight 2]
- [highlight 3]"""

PLAN_SUMMARY_PROMPT = """Given the following insurance policy excerpts:

{context}

Analyze these policy documents and provide:

1. A comprehensive summary (2-3 sentences) explaining what this insurance covers and its key benefits
2. The top 3 most important reasons why someone should choose this insurance

IMPORTANT: Provide your response in German (auf Deutsch).

Response format (use exactly this structure):
SUMMARY: [your 2-3 sentence summary here in German]
TOP_REASONS:
- [reason 1 in German]
- [reason 2 in German]
- [reason 3 in German]"""

MAX_TOP_REASONS = 3


def parse_sectioned_response(text: str, list_label: str) -> tuple[str, list[str]]:
    """
    Split a ``SUMMARY: ... <LABEL>: - item`` response.

    Missing sections come back empty rather than failing.
    """
    summary_match = re.search(rf"SUMMARY:\s*(.+?)(?={list_label}:|$)", text, re.DOTALL)
    items_match = re.search(rf"{list_label}:\s*(.+)", text, re.DOTALL)

    summary = summary_match.group(1).strip() if summary_match else ""
    items_text = items_match.group(1).strip() if items_match else ""
    items = [
        line.strip().lstrip("-").strip()
        for line in items_text.split("\n")
    ]
    return summary, [item for item in items if item]


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass
class QuestionAnswer:
    answer: str
    sources: list[SearchResult] = field(default_factory=list)
    grounded: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "grounded": self.grounded,
            "sources": [s.to_dict() for s in self.sources],
        }


@dataclass
class ProductSummary:
    plan_id: str
    summary: str
    highlights: list[str] = field(default_factory=list)


@dataclass
class PlanSummary:
    plan_id: str
    summary: str
    top_reasons: list[str] = field(default_factory=list)


def format_chat_history(chat_history: list[ChatMessage]) -> str:
    return "\n".join(
        f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}"
        for message in chat_history
    )


class RAGService:
    """
    Unified RAG service for policy questions and summaries.

    Orchestrates:
    1. Query expansion with the synonym table
    2. Hybrid search for relevant policy chunks
    3. Context assembly with token budgets
    4. Prompting the text-generation provider
    """

    def __init__(
        self,
        store: PolicyStore,
        search_service: PolicySearchService,
        embedding_service: EmbeddingService,
        llm_client: TextGenerationClient,
        vocabulary: RetrievalVocabulary,
        context_builder: RAGContextBuilder | None = None,
        rag_settings: RAGSettings | None = None,
    ):
        self.store = store
        self.search_service = search_service
        self.embedding_service = embedding_service
        self.llm_client = llm_client
        self.vocabulary = vocabulary
        self.rag_settings = rag_settings or RAGSettings()
        self.context_builder = context_builder or RAGContextBuilder(
            max_tokens=self.rag_settings.max_context_tokens,
        )

    async def _embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self.embedding_service.generate, text)

    async def _generate(self, prompt: str) -> str:
        return await asyncio.to_thread(self.llm_client.generate, prompt)

    async def _get_plan(self, plan_id: str) -> Result[InsurancePlan]:
        try:
            plan = await self.store.get_plan(plan_id)
        except PolicyRAGError as e:
            return e.to_err()
        if plan is None:
            return Err(FailureKind.PLAN_NOT_FOUND, f"Plan {plan_id} not found")
        return Ok(plan)

    async def retrieve(
        self,
        plan_id: str,
        query: str,
        top_k: int | None = None,
    ) -> Result[list[SearchResult]]:
        """
        Expand, embed and hybrid-search a query within one plan.

        The expanded query is only used for the embedding; keyword matching
        runs against the query as typed.
        """
        if not query.strip():
            return Err(FailureKind.INVALID_INPUT, "Query must not be empty")

        start_time = time.time()
        expanded = self.vocabulary.expand_query(query)
        if expanded != query:
            logger.debug(f"Expanded query '{query}' to '{expanded}'")

        try:
            query_vector = await self._embed(expanded)
        except PolicyRAGError as e:
            logger.error(f"Query embedding failed: {e}")
            return e.to_err()

        result = await self.search_service.hybrid_search(
            query_vector,
            query,
            plan_id,
            top_k=top_k,
        )
        if isinstance(result, Ok):
            logger.info(
                f"Retrieved {len(result.value)} chunks for plan {plan_id} "
                f"in {(time.time() - start_time) * 1000:.0f}ms"
            )
        return result

    async def ask_question(
        self,
        plan_id: str,
        question: str,
        chat_history: list[ChatMessage] | None = None,
    ) -> Result[QuestionAnswer]:
        """
        Answer a customer question from the plan's policy documents.

        When retrieval finds nothing, the insufficient-information answer is
        returned without calling the text-generation provider.
        """
        plan_result = await self._get_plan(plan_id)
        if isinstance(plan_result, Err):
            return plan_result
        plan = plan_result.value

        retrieved = await self.retrieve(plan_id, question, top_k=self.rag_settings.question_top_k)
        if isinstance(retrieved, Err):
            return retrieved

        results = retrieved.value
        if not results:
            logger.info(f"No policy passages found for question on plan {plan_id}")
            return Ok(QuestionAnswer(answer=INSUFFICIENT_INFORMATION_ANSWER, grounded=False))

        context = self.context_builder.assemble_context(results)
        history = format_chat_history(chat_history or [])
        prompt = QUESTION_PROMPT.format(
            company_name=plan.company_name,
            plan_name=plan.plan_name,
            context=context.context_text,
            history=f"Previous conversation:\n{history}\n\n" if history else "",
            question=question,
        )

        try:
            answer = await self._generate(prompt)
        except PolicyRAGError as e:
            logger.error(f"Answer generation failed for plan {plan_id}: {e}")
            return e.to_err()

        return Ok(QuestionAnswer(answer=answer.strip(), sources=results[:context.chunks_included]))

    async def summarize_for_product(
        self,
        plan_id: str,
        category: str,
        product_name: str,
    ) -> Result[ProductSummary]:
        """Explain why a plan fits a product, with up to 3 highlights."""
        plan_result = await self._get_plan(plan_id)
        if isinstance(plan_result, Err):
            return plan_result
        plan = plan_result.value

        try:
            query_vector = await self._embed(f"coverage benefits protection {category}")
        except PolicyRAGError as e:
            return e.to_err()

        found = await self.search_service.search(
            query_vector, plan_id, top_k=self.rag_settings.question_top_k
        )
        if isinstance(found, Err):
            return found
        if not found.value:
            logger.info(f"No policy passages to summarize for plan {plan_id}")
            return Ok(ProductSummary(plan_id=plan_id, summary=""))

        prompt = PRODUCT_SUMMARY_PROMPT.format(
            plan_name=plan.plan_name,
            company_name=plan.company_name,
            context=CHUNK_SEPARATOR.join(r.chunk_text for r in found.value),
            product_name=product_name,
            category=category,
        )

        try:
            response = await self._generate(prompt)
        except PolicyRAGError as e:
            return e.to_err()

        summary, highlights = parse_sectioned_response(response, "HIGHLIGHTS")
        return Ok(ProductSummary(plan_id=plan_id, summary=summary, highlights=highlights))

    async def generate_plan_summary(self, plan_id: str) -> Result[PlanSummary]:
        """
        Summarize a plan from its first policy chunks and persist the result.

        Requires at least one processed document.
        """
        plan_result = await self._get_plan(plan_id)
        if isinstance(plan_result, Err):
            return plan_result

        try:
            documents = await self.store.list_documents(plan_id)
            if not any(d.is_processed for d in documents):
                return Err(
                    FailureKind.NO_PROCESSED_DOCUMENTS,
                    f"Plan {plan_id} has no processed policy documents",
                )
            chunks = await self.store.find_chunks_for_plan(plan_id)
        except PolicyRAGError as e:
            return e.to_err()

        chunks = chunks[: self.rag_settings.summary_max_chunks]
        if not chunks:
            return Err(FailureKind.NO_PROCESSED_DOCUMENTS, f"Plan {plan_id} has no indexed chunks")

        prompt = PLAN_SUMMARY_PROMPT.format(
            context=CHUNK_SEPARATOR.join(chunk.chunk_text for chunk in chunks),
        )

        try:
            response = await self._generate(prompt)
            summary, reasons = parse_sectioned_response(response, "TOP_REASONS")
            reasons = reasons[:MAX_TOP_REASONS]
            await self.store.update_plan_summary(plan_id, summary, reasons)
        except PolicyRAGError as e:
            logger.error(f"Plan summary for {plan_id} failed: {e}")
            return e.to_err()

        logger.info(f"Generated summary for plan {plan_id} from {len(chunks)} chunks")
        return Ok(PlanSummary(plan_id=plan_id, summary=summary, top_reasons=reasons))
