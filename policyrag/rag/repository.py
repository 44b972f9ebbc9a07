"""
Policy Store - Durable storage for plans, policy documents and embedded chunks.

Two backends share one interface:
- PostgresPolicyStore: asyncpg + pgvector, foreign-key cascades
- JsonPolicyStore: a single JSON file, rewritten atomically

Neither backend caches: every call reads the durable store.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable

import asyncpg

from policyrag.database.client import DatabaseClient
from policyrag.database.settings import DatabaseSettings
from policyrag.errors import StorageError
from policyrag.models import (
    EDITABLE_PLAN_FIELDS,
    REQUIRED_PLAN_FIELDS,
    EmbeddedChunk,
    InsurancePlan,
    PolicyChunk,
    PolicyDocument,
)
from policyrag.utils import setup_logging

logger = setup_logging()


def new_id() -> str:
    return str(uuid.uuid4())


def is_valid_id(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class PolicyStore(ABC):
    """Storage interface used by the indexer, search and recommendation services."""

    # Plans

    @abstractmethod
    async def create_plan(self, plan: InsurancePlan) -> InsurancePlan: ...

    @abstractmethod
    async def get_plan(self, plan_id: str) -> InsurancePlan | None: ...

    @abstractmethod
    async def list_plans(self) -> list[InsurancePlan]:
        """Every plan, active or not, in creation order."""

    @abstractmethod
    async def list_active_plans(self) -> list[InsurancePlan]: ...

    @abstractmethod
    async def update_plan(self, plan_id: str, changes: dict[str, Any]) -> InsurancePlan | None: ...

    @abstractmethod
    async def update_plan_summary(self, plan_id: str, summary: str, top_reasons: list[str]) -> None: ...

    @abstractmethod
    async def delete_plan(self, plan_id: str) -> bool:
        """Delete a plan with its documents and chunks. Returns False if unknown."""

    # Documents

    @abstractmethod
    async def add_document(self, document: PolicyDocument) -> PolicyDocument: ...

    @abstractmethod
    async def get_document(self, document_id: str) -> PolicyDocument | None: ...

    @abstractmethod
    async def list_documents(self, plan_id: str) -> list[PolicyDocument]:
        """Documents of a plan in upload order."""

    @abstractmethod
    async def mark_document_processed(self, document_id: str) -> None: ...

    @abstractmethod
    async def reset_document(self, document_id: str) -> int:
        """Delete all chunks of a document and clear its processed flag."""

    # Chunks

    @abstractmethod
    async def insert_chunks(self, document_id: str, chunks: list[EmbeddedChunk]) -> int:
        """Append chunks for a document. Each call is atomic."""

    @abstractmethod
    async def find_chunks_for_plan(self, plan_id: str) -> list[PolicyChunk]:
        """All chunks of all documents of a plan, in document then chunk order."""

    @abstractmethod
    async def find_chunks_for_plan_containing(
        self, plan_id: str, keywords: list[str]
    ) -> list[PolicyChunk]:
        """Plan chunks whose text contains any keyword (case-insensitive)."""

    @abstractmethod
    async def count_chunks(self, plan_id: str | None = None) -> int: ...

    async def close(self) -> None:
        return None


def _validate_plan_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - EDITABLE_PLAN_FIELDS
    if unknown:
        raise ValueError(f"Cannot update plan fields: {', '.join(sorted(unknown))}")
    cleared = {name for name, value in changes.items() if value is None} & REQUIRED_PLAN_FIELDS
    if cleared:
        raise ValueError(f"Plan fields cannot be null: {', '.join(sorted(cleared))}")


def _escape_like(keyword: str) -> str:
    return keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresPolicyStore(PolicyStore):
    """
    PolicyStore backed by PostgreSQL with pgvector.

    Chunk identity is scoped by document, so concurrent ingestion of two
    documents of the same plan never conflicts.
    """

    PLAN_COLUMNS = """
        id, company_name, plan_name, description, categories,
        yearly_price_in_cents, two_yearly_price_in_cents,
        coverage_percentage, deductible_in_cents, is_active,
        coverage_description, right_of_withdrawal,
        generated_summary, top_reasons
    """

    DOCUMENT_COLUMNS = """
        id, plan_id, file_name, storage_key, storage_url,
        file_size_in_bytes, mime_type, is_processed
    """

    def __init__(self, client: DatabaseClient, schema: str = "policyrag"):
        """
        Initialize repository.

        Args:
            client: Connected database client
            schema: PostgreSQL schema name
        """
        self.client = client
        self.schema = schema
        self.plans_table = f"{schema}.insurance_plans"
        self.documents_table = f"{schema}.policy_documents"
        self.chunks_table = f"{schema}.policy_chunks"

    async def _run(self, coro):
        try:
            return await coro
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Policy store query failed: {e}")
            raise StorageError(f"Policy store query failed: {e}") from e

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def create_plan(self, plan: InsurancePlan) -> InsurancePlan:
        query = f"""
            INSERT INTO {self.plans_table} (
                id, company_name, plan_name, description, categories,
                yearly_price_in_cents, two_yearly_price_in_cents,
                coverage_percentage, deductible_in_cents, is_active,
                coverage_description, right_of_withdrawal,
                generated_summary, top_reasons
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
            RETURNING {self.PLAN_COLUMNS}
        """
        row = await self._run(self.client.fetchrow(
            query,
            plan.id or new_id(),
            plan.company_name,
            plan.plan_name,
            plan.description,
            plan.categories,
            plan.yearly_price_in_cents,
            plan.two_yearly_price_in_cents,
            plan.coverage_percentage,
            plan.deductible_in_cents,
            plan.is_active,
            plan.coverage_description,
            plan.right_of_withdrawal,
            plan.generated_summary,
            plan.top_reasons,
        ))
        return self._row_to_plan(row)

    async def get_plan(self, plan_id: str) -> InsurancePlan | None:
        if not is_valid_id(plan_id):
            return None
        query = f"SELECT {self.PLAN_COLUMNS} FROM {self.plans_table} WHERE id = $1"
        row = await self._run(self.client.fetchrow(query, plan_id))
        return self._row_to_plan(row) if row else None

    async def list_plans(self) -> list[InsurancePlan]:
        query = f"SELECT {self.PLAN_COLUMNS} FROM {self.plans_table} ORDER BY created_at, id"
        rows = await self._run(self.client.fetch(query))
        return [self._row_to_plan(row) for row in rows]

    async def list_active_plans(self) -> list[InsurancePlan]:
        query = f"""
            SELECT {self.PLAN_COLUMNS} FROM {self.plans_table}
            WHERE is_active
            ORDER BY created_at, id
        """
        rows = await self._run(self.client.fetch(query))
        return [self._row_to_plan(row) for row in rows]

    async def update_plan(self, plan_id: str, changes: dict[str, Any]) -> InsurancePlan | None:
        _validate_plan_changes(changes)
        if not is_valid_id(plan_id):
            return None
        if not changes:
            return await self.get_plan(plan_id)

        columns = sorted(changes)
        assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(columns, start=2))
        query = f"""
            UPDATE {self.plans_table} SET {assignments}
            WHERE id = $1
            RETURNING {self.PLAN_COLUMNS}
        """
        row = await self._run(self.client.fetchrow(query, plan_id, *[changes[c] for c in columns]))
        return self._row_to_plan(row) if row else None

    async def update_plan_summary(self, plan_id: str, summary: str, top_reasons: list[str]) -> None:
        if not is_valid_id(plan_id):
            return
        query = f"UPDATE {self.plans_table} SET generated_summary = $2, top_reasons = $3 WHERE id = $1"
        await self._run(self.client.execute(query, plan_id, summary, top_reasons))

    async def delete_plan(self, plan_id: str) -> bool:
        if not is_valid_id(plan_id):
            return False
        # Documents and chunks go with the plan via ON DELETE CASCADE
        result = await self._run(
            self.client.execute(f"DELETE FROM {self.plans_table} WHERE id = $1", plan_id)
        )
        deleted = int(result.split()[-1]) if result else 0
        logger.info(f"Deleted plan {plan_id}" if deleted else f"Plan {plan_id} not found")
        return deleted > 0

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def add_document(self, document: PolicyDocument) -> PolicyDocument:
        query = f"""
            INSERT INTO {self.documents_table} (
                id, plan_id, file_name, storage_key, storage_url,
                file_size_in_bytes, mime_type, is_processed
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING {self.DOCUMENT_COLUMNS}
        """
        row = await self._run(self.client.fetchrow(
            query,
            document.id or new_id(),
            document.plan_id,
            document.file_name,
            document.storage_key,
            document.storage_url,
            document.file_size_in_bytes,
            document.mime_type,
            document.is_processed,
        ))
        return self._row_to_document(row)

    async def get_document(self, document_id: str) -> PolicyDocument | None:
        if not is_valid_id(document_id):
            return None
        query = f"SELECT {self.DOCUMENT_COLUMNS} FROM {self.documents_table} WHERE id = $1"
        row = await self._run(self.client.fetchrow(query, document_id))
        return self._row_to_document(row) if row else None

    async def list_documents(self, plan_id: str) -> list[PolicyDocument]:
        if not is_valid_id(plan_id):
            return []
        query = f"""
            SELECT {self.DOCUMENT_COLUMNS} FROM {self.documents_table}
            WHERE plan_id = $1
            ORDER BY created_at, id
        """
        rows = await self._run(self.client.fetch(query, plan_id))
        return [self._row_to_document(row) for row in rows]

    async def mark_document_processed(self, document_id: str) -> None:
        if not is_valid_id(document_id):
            return
        query = f"UPDATE {self.documents_table} SET is_processed = TRUE WHERE id = $1"
        await self._run(self.client.execute(query, document_id))

    async def reset_document(self, document_id: str) -> int:
        if not is_valid_id(document_id):
            return 0

        async def _reset() -> int:
            async with self.client.transaction() as conn:
                result = await conn.execute(
                    f"DELETE FROM {self.chunks_table} WHERE document_id = $1", document_id
                )
                await conn.execute(
                    f"UPDATE {self.documents_table} SET is_processed = FALSE WHERE id = $1",
                    document_id,
                )
            # Parse 'DELETE N' result
            return int(result.split()[-1]) if result else 0

        deleted = await self._run(_reset())
        logger.info(f"Reset document {document_id}: deleted {deleted} chunks")
        return deleted

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def insert_chunks(self, document_id: str, chunks: list[EmbeddedChunk]) -> int:
        if not chunks:
            return 0

        query = f"""
            INSERT INTO {self.chunks_table} (document_id, chunk_index, chunk_text, embedding)
            VALUES ($1, $2, $3, $4)
        """
        records = [
            (document_id, chunk.index, chunk.text, chunk.embedding)  # codec handles the vector
            for chunk in chunks
        ]

        async def _insert() -> None:
            async with self.client.transaction() as conn:
                await conn.executemany(query, records)

        await self._run(_insert())
        logger.debug(f"Inserted {len(records)} chunks for document {document_id}")
        return len(records)

    def _plan_chunks_query(self, extra_condition: str = "") -> str:
        return f"""
            SELECT c.id, c.document_id, c.chunk_index, c.chunk_text, c.embedding
            FROM {self.chunks_table} c
            JOIN {self.documents_table} d ON d.id = c.document_id
            WHERE d.plan_id = $1 {extra_condition}
            ORDER BY d.created_at, d.id, c.chunk_index
        """

    async def find_chunks_for_plan(self, plan_id: str) -> list[PolicyChunk]:
        if not is_valid_id(plan_id):
            return []
        rows = await self._run(self.client.fetch(self._plan_chunks_query(), plan_id))
        return [self._row_to_chunk(row) for row in rows]

    async def find_chunks_for_plan_containing(
        self, plan_id: str, keywords: list[str]
    ) -> list[PolicyChunk]:
        if not keywords or not is_valid_id(plan_id):
            return []
        patterns = [f"%{_escape_like(keyword)}%" for keyword in keywords]
        query = self._plan_chunks_query("AND c.chunk_text ILIKE ANY($2::text[])")
        rows = await self._run(self.client.fetch(query, plan_id, patterns))
        return [self._row_to_chunk(row) for row in rows]

    async def count_chunks(self, plan_id: str | None = None) -> int:
        if plan_id:
            if not is_valid_id(plan_id):
                return 0
            query = f"""
                SELECT COUNT(*) FROM {self.chunks_table} c
                JOIN {self.documents_table} d ON d.id = c.document_id
                WHERE d.plan_id = $1
            """
            return await self._run(self.client.fetchval(query, plan_id))
        return await self._run(self.client.fetchval(f"SELECT COUNT(*) FROM {self.chunks_table}"))

    async def close(self) -> None:
        await self.client.close()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_plan(self, row: Any) -> InsurancePlan:
        return InsurancePlan(
            id=str(row["id"]),
            company_name=row["company_name"],
            plan_name=row["plan_name"],
            description=row["description"] or "",
            categories=list(row["categories"] or []),
            yearly_price_in_cents=row["yearly_price_in_cents"],
            two_yearly_price_in_cents=row["two_yearly_price_in_cents"],
            coverage_percentage=row["coverage_percentage"],
            deductible_in_cents=row["deductible_in_cents"],
            is_active=row["is_active"],
            coverage_description=row["coverage_description"],
            right_of_withdrawal=row["right_of_withdrawal"],
            generated_summary=row["generated_summary"],
            top_reasons=list(row["top_reasons"] or []),
        )

    def _row_to_document(self, row: Any) -> PolicyDocument:
        return PolicyDocument(
            id=str(row["id"]),
            plan_id=str(row["plan_id"]),
            file_name=row["file_name"],
            storage_key=row["storage_key"],
            storage_url=row["storage_url"],
            file_size_in_bytes=row["file_size_in_bytes"],
            mime_type=row["mime_type"],
            is_processed=row["is_processed"],
        )

    def _row_to_chunk(self, row: Any) -> PolicyChunk:
        embedding = row["embedding"]
        if isinstance(embedding, str):
            embedding = json.loads(embedding)

        return PolicyChunk(
            id=str(row["id"]),
            document_id=str(row["document_id"]),
            chunk_index=row["chunk_index"],
            chunk_text=row["chunk_text"],
            embedding=list(embedding),
        )


class JsonPolicyStore(PolicyStore):
    """
    PolicyStore backed by a single JSON file.

    Every operation re-reads the file; writes go to a temporary file that
    replaces the original, under a lock shared by all writers of this store.
    File I/O runs in a worker thread.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_file(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"plans": {}, "documents": {}, "chunks": {}}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read policy store {self.path}: {e}") from e

    def _write_file(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write policy store {self.path}: {e}") from e

    async def _read(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._read_file)

    async def _write(self, data: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_file, data)

    # Plans

    async def create_plan(self, plan: InsurancePlan) -> InsurancePlan:
        async with self._lock:
            data = await self._read()
            record = plan.to_dict()
            record["id"] = plan.id or new_id()
            data["plans"][record["id"]] = record
            await self._write(data)
        return InsurancePlan(**record)

    async def get_plan(self, plan_id: str) -> InsurancePlan | None:
        record = (await self._read())["plans"].get(plan_id)
        return InsurancePlan(**record) if record else None

    async def list_plans(self) -> list[InsurancePlan]:
        return [InsurancePlan(**record) for record in (await self._read())["plans"].values()]

    async def list_active_plans(self) -> list[InsurancePlan]:
        return [
            InsurancePlan(**record)
            for record in (await self._read())["plans"].values()
            if record["is_active"]
        ]

    async def update_plan(self, plan_id: str, changes: dict[str, Any]) -> InsurancePlan | None:
        _validate_plan_changes(changes)
        async with self._lock:
            data = await self._read()
            record = data["plans"].get(plan_id)
            if record is None:
                return None
            record.update(changes)
            await self._write(data)
        return InsurancePlan(**record)

    async def update_plan_summary(self, plan_id: str, summary: str, top_reasons: list[str]) -> None:
        async with self._lock:
            data = await self._read()
            record = data["plans"].get(plan_id)
            if record is None:
                return
            record["generated_summary"] = summary
            record["top_reasons"] = list(top_reasons)
            await self._write(data)

    async def delete_plan(self, plan_id: str) -> bool:
        async with self._lock:
            data = await self._read()
            if data["plans"].pop(plan_id, None) is None:
                return False
            document_ids = [
                doc_id for doc_id, doc in data["documents"].items() if doc["plan_id"] == plan_id
            ]
            for doc_id in document_ids:
                del data["documents"][doc_id]
                data["chunks"].pop(doc_id, None)
            await self._write(data)
        logger.info(f"Deleted plan {plan_id} with {len(document_ids)} documents")
        return True

    # Documents

    async def add_document(self, document: PolicyDocument) -> PolicyDocument:
        async with self._lock:
            data = await self._read()
            if document.plan_id not in data["plans"]:
                raise StorageError(f"Plan {document.plan_id} does not exist")
            record = document.to_dict()
            record["id"] = document.id or new_id()
            data["documents"][record["id"]] = record
            await self._write(data)
        return PolicyDocument(**record)

    async def get_document(self, document_id: str) -> PolicyDocument | None:
        record = (await self._read())["documents"].get(document_id)
        return PolicyDocument(**record) if record else None

    async def list_documents(self, plan_id: str) -> list[PolicyDocument]:
        return [
            PolicyDocument(**record)
            for record in (await self._read())["documents"].values()
            if record["plan_id"] == plan_id
        ]

    async def mark_document_processed(self, document_id: str) -> None:
        async with self._lock:
            data = await self._read()
            record = data["documents"].get(document_id)
            if record is not None and not record["is_processed"]:
                record["is_processed"] = True
                await self._write(data)

    async def reset_document(self, document_id: str) -> int:
        async with self._lock:
            data = await self._read()
            deleted = len(data["chunks"].pop(document_id, []))
            record = data["documents"].get(document_id)
            if record is not None:
                record["is_processed"] = False
            await self._write(data)
        logger.info(f"Reset document {document_id}: deleted {deleted} chunks")
        return deleted

    # Chunks

    async def insert_chunks(self, document_id: str, chunks: list[EmbeddedChunk]) -> int:
        if not chunks:
            return 0
        async with self._lock:
            data = await self._read()
            if document_id not in data["documents"]:
                raise StorageError(f"Document {document_id} does not exist")
            stored = data["chunks"].setdefault(document_id, [])
            existing = {record["chunk_index"] for record in stored}
            for chunk in chunks:
                if chunk.index in existing:
                    raise StorageError(
                        f"Chunk {chunk.index} already stored for document {document_id}"
                    )
                existing.add(chunk.index)
            stored.extend(
                {
                    "id": new_id(),
                    "chunk_index": chunk.index,
                    "chunk_text": chunk.text,
                    "embedding": list(chunk.embedding),
                }
                for chunk in chunks
            )
            await self._write(data)
        return len(chunks)

    @staticmethod
    def _plan_chunks(data: dict[str, Any], plan_id: str) -> Iterable[PolicyChunk]:
        for doc_id, document in data["documents"].items():
            if document["plan_id"] != plan_id:
                continue
            records = sorted(data["chunks"].get(doc_id, []), key=lambda r: r["chunk_index"])
            for record in records:
                yield PolicyChunk(
                    id=record["id"],
                    document_id=doc_id,
                    chunk_index=record["chunk_index"],
                    chunk_text=record["chunk_text"],
                    embedding=record["embedding"],
                )

    async def find_chunks_for_plan(self, plan_id: str) -> list[PolicyChunk]:
        return list(self._plan_chunks(await self._read(), plan_id))

    async def find_chunks_for_plan_containing(
        self, plan_id: str, keywords: list[str]
    ) -> list[PolicyChunk]:
        lowered = [keyword.lower() for keyword in keywords]
        if not lowered:
            return []
        data = await self._read()
        return [
            chunk
            for chunk in self._plan_chunks(data, plan_id)
            if any(keyword in chunk.chunk_text.lower() for keyword in lowered)
        ]

    async def count_chunks(self, plan_id: str | None = None) -> int:
        data = await self._read()
        if plan_id:
            return sum(1 for _ in self._plan_chunks(data, plan_id))
        return sum(len(records) for records in data["chunks"].values())


async def create_policy_store(settings: DatabaseSettings) -> PolicyStore:
    """Build the store selected by ``DATABASE_BACKEND``."""
    if settings.backend == "postgresql":
        client = DatabaseClient(settings)
        await client.connect()
        return PostgresPolicyStore(client, schema=settings.schema or "policyrag")
    if settings.backend == "json":
        return JsonPolicyStore(settings.json_path)
    raise ValueError(f"Unknown database backend: {settings.backend}")
