"""
FastAPI backend server for the insurance policy retrieval engine.
This provides REST API endpoints for the storefront and the admin console.
"""

from __future__ import annotations

import os
from typing import List, NoReturn, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from policyrag.bootstrap import Services, build_services
from policyrag.config import load_settings, validate_settings
from policyrag.errors import Err, FailureKind, PolicyRAGError
from policyrag.models import REQUIRED_PLAN_FIELDS, InsurancePlan, PolicyDocument
from policyrag.rag.service import ChatMessage as ServiceChatMessage
from policyrag.utils import setup_logging

# Setup logging
logger = setup_logging()

# Initialize FastAPI app
app = FastAPI(
    title="Policy RAG API",
    description="REST API for insurance plan recommendations and policy questions",
    version="0.1.0",
)

# Configure CORS for frontend access
allowed_origins = [
    "http://localhost:3000",  # Next.js dev server
    "http://127.0.0.1:3000",
]

frontend_url = os.getenv("FRONTEND_URL")
if frontend_url:
    allowed_origins.append(frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Build the retrieval engine's services."""
    app.state.services = await build_services()
    logger.info("Policy RAG services initialized")


@app.on_event("shutdown")
async def shutdown_event():
    services = getattr(app.state, "services", None)
    if services is not None:
        await services.close()


def get_services(request: Request) -> Services:
    return request.app.state.services


STATUS_BY_KIND = {
    FailureKind.PLAN_NOT_FOUND: 404,
    FailureKind.DOCUMENT_NOT_FOUND: 404,
    FailureKind.NO_DOCUMENTS: 409,
    FailureKind.NO_PROCESSED_DOCUMENTS: 409,
    FailureKind.ALREADY_PROCESSED: 409,
    FailureKind.EMPTY_DOCUMENT: 422,
    FailureKind.INVALID_DOCUMENT: 422,
    FailureKind.INVALID_INPUT: 400,
    FailureKind.PROVIDER_ERROR: 502,
    FailureKind.STORAGE_ERROR: 503,
}


def raise_for_err(err: Err) -> NoReturn:
    raise HTTPException(
        status_code=STATUS_BY_KIND.get(err.kind, 500),
        detail={"kind": err.kind.value, "message": err.message},
    )


# Pydantic models for API requests
class PlanUpdateRequest(BaseModel):
    company_name: Optional[str] = None
    plan_name: Optional[str] = None
    description: Optional[str] = None
    categories: Optional[List[str]] = None
    yearly_price_in_cents: Optional[int] = Field(default=None, ge=0)
    two_yearly_price_in_cents: Optional[int] = Field(default=None, ge=0)
    coverage_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    deductible_in_cents: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    coverage_description: Optional[str] = None
    right_of_withdrawal: Optional[str] = None

    @field_validator(*sorted(REQUIRED_PLAN_FIELDS))
    @classmethod
    def reject_null(cls, value):
        # Required plan fields may be omitted but never cleared
        if value is None:
            raise ValueError("must not be null")
        return value


class SearchRequest(BaseModel):
    query: str
    top_k: Optional[int] = None


class ChatMessage(BaseModel):
    role: str  # 'user' or 'assistant'
    content: str


class QuestionRequest(BaseModel):
    question: str
    history: Optional[List[ChatMessage]] = None


class ProductSummaryRequest(BaseModel):
    category: str
    product_name: str


def plan_to_dict(plan: InsurancePlan, documents: Optional[List[PolicyDocument]] = None) -> dict:
    data = plan.to_dict()
    if documents is not None:
        data["documents"] = [d.to_dict() for d in documents]
    return data


async def _summarize_after_ingestion(services: Services, plan_id: str) -> Optional[dict]:
    """Refresh the plan summary; a failure here never fails ingestion."""
    result = await services.rag.generate_plan_summary(plan_id)
    if isinstance(result, Err):
        logger.warning("Plan summary for %s not generated: %s", plan_id, result)
        return None
    return {"summary": result.value.summary, "top_reasons": result.value.top_reasons}


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "version": "0.1.0", "name": "Policy RAG"}


@app.get("/api/config/status")
async def config_status():
    """Check configuration status."""
    errors = validate_settings(load_settings())
    return {
        "valid": len(errors) == 0,
        "errors": errors,
    }


# ============================================================================
# Plan onboarding and admin APIs
# ============================================================================

@app.post("/api/plans")
async def create_plan(
    company_name: str = Form(...),
    plan_name: str = Form(...),
    coverage_percentage: int = Form(...),
    deductible_in_cents: int = Form(0),
    categories: str = Form(""),
    description: str = Form(""),
    yearly_price_in_cents: Optional[int] = Form(None),
    two_yearly_price_in_cents: Optional[int] = Form(None),
    coverage_description: Optional[str] = Form(None),
    right_of_withdrawal: Optional[str] = Form(None),
    process_documents: bool = Form(True),
    files: List[UploadFile] = File(...),
    services: Services = Depends(get_services),
):
    """Create a plan with its uploaded policy PDFs and index them."""
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    if not 0 <= coverage_percentage <= 100:
        raise HTTPException(status_code=400, detail="coverage_percentage must be between 0 and 100")

    try:
        plan = await services.store.create_plan(InsurancePlan(
            id="",
            company_name=company_name,
            plan_name=plan_name,
            description=description,
            categories=[c.strip() for c in categories.split(",") if c.strip()],
            yearly_price_in_cents=yearly_price_in_cents,
            two_yearly_price_in_cents=two_yearly_price_in_cents,
            coverage_percentage=coverage_percentage,
            deductible_in_cents=deductible_in_cents,
            coverage_description=coverage_description,
            right_of_withdrawal=right_of_withdrawal,
        ))

        documents = []
        for f in files:
            content = await f.read()
            stored = services.file_storage.save(plan.id, f.filename or "policy.pdf", content)
            documents.append(await services.store.add_document(PolicyDocument(
                id="",
                plan_id=plan.id,
                file_name=f.filename or "policy.pdf",
                storage_key=stored.storage_key,
                storage_url=stored.storage_url,
                file_size_in_bytes=stored.size_in_bytes,
                mime_type=f.content_type or "application/pdf",
            )))
    except PolicyRAGError as e:
        raise_for_err(e.to_err())

    logger.info("Created plan %s with %d files", plan.id, len(documents))

    ingestion = []
    if process_documents:
        for document in documents:
            result = await services.indexer.ingest_document(document.id)
            if isinstance(result, Err):
                ingestion.append({"document_id": document.id, "error": result.message, "kind": result.kind.value})
            else:
                ingestion.append(result.value.to_dict())

    summary = None
    if ingestion and all("error" not in item for item in ingestion):
        summary = await _summarize_after_ingestion(services, plan.id)

    return {
        **plan_to_dict(plan, await services.store.list_documents(plan.id)),
        "ingestion": ingestion,
        "generated": summary,
    }


@app.get("/api/plans")
async def list_plans(services: Services = Depends(get_services)):
    try:
        plans = await services.store.list_plans()
    except PolicyRAGError as e:
        raise_for_err(e.to_err())
    return [plan_to_dict(plan) for plan in plans]


@app.get("/api/plans/{plan_id}")
async def get_plan(plan_id: str, services: Services = Depends(get_services)):
    try:
        plan = await services.store.get_plan(plan_id)
        if plan is None:
            raise HTTPException(status_code=404, detail="Plan not found")
        documents = await services.store.list_documents(plan_id)
    except PolicyRAGError as e:
        raise_for_err(e.to_err())
    return plan_to_dict(plan, documents)


@app.put("/api/plans/{plan_id}")
async def update_plan(
    plan_id: str,
    request: PlanUpdateRequest,
    services: Services = Depends(get_services),
):
    changes = request.model_dump(exclude_unset=True)
    try:
        plan = await services.store.update_plan(plan_id, changes)
    except PolicyRAGError as e:
        raise_for_err(e.to_err())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if plan is None:
        raise HTTPException(status_code=404, detail="Plan not found")

    logger.info("Updated plan %s: %s", plan_id, sorted(changes))
    return plan_to_dict(plan)


@app.delete("/api/plans/{plan_id}")
async def delete_plan(plan_id: str, services: Services = Depends(get_services)):
    try:
        deleted = await services.store.delete_plan(plan_id)
    except PolicyRAGError as e:
        raise_for_err(e.to_err())
    if not deleted:
        raise HTTPException(status_code=404, detail="Plan not found")
    return {"deleted": True, "plan_id": plan_id}


# ============================================================================
# Ingestion APIs
# ============================================================================

@app.post("/api/documents/{document_id}/ingest")
async def ingest_document(document_id: str, services: Services = Depends(get_services)):
    result = await services.indexer.ingest_document(document_id)
    if isinstance(result, Err):
        raise_for_err(result)

    report = result.value
    return {
        **report.to_dict(),
        "generated": await _summarize_after_ingestion(services, report.plan_id),
    }


@app.post("/api/plans/{plan_id}/reingest")
async def reingest_plan(plan_id: str, services: Services = Depends(get_services)):
    result = await services.indexer.reingest_plan(plan_id)
    if isinstance(result, Err):
        raise_for_err(result)

    return {
        "plan_id": plan_id,
        "documents": [report.to_dict() for report in result.value],
        "generated": await _summarize_after_ingestion(services, plan_id),
    }


@app.post("/api/plans/{plan_id}/summary")
async def regenerate_summary(plan_id: str, services: Services = Depends(get_services)):
    result = await services.rag.generate_plan_summary(plan_id)
    if isinstance(result, Err):
        raise_for_err(result)
    return {"plan_id": plan_id, "summary": result.value.summary, "top_reasons": result.value.top_reasons}


# ============================================================================
# Retrieval APIs
# ============================================================================

@app.post("/api/plans/{plan_id}/search")
async def search_plan(
    plan_id: str,
    request: SearchRequest,
    services: Services = Depends(get_services),
):
    result = await services.rag.retrieve(plan_id, request.query, top_k=request.top_k)
    if isinstance(result, Err):
        raise_for_err(result)
    return {"query": request.query, "results": [r.to_dict() for r in result.value]}


@app.post("/api/plans/{plan_id}/questions")
async def ask_question(
    plan_id: str,
    request: QuestionRequest,
    services: Services = Depends(get_services),
):
    history = [ServiceChatMessage(role=m.role, content=m.content) for m in request.history or []]
    result = await services.rag.ask_question(plan_id, request.question, history)
    if isinstance(result, Err):
        raise_for_err(result)
    return result.value.to_dict()


@app.post("/api/plans/{plan_id}/product-summary")
async def product_summary(
    plan_id: str,
    request: ProductSummaryRequest,
    services: Services = Depends(get_services),
):
    result = await services.rag.summarize_for_product(plan_id, request.category, request.product_name)
    if isinstance(result, Err):
        raise_for_err(result)
    return {
        "plan_id": plan_id,
        "summary": result.value.summary,
        "highlights": result.value.highlights,
    }


@app.get("/api/recommendations")
async def get_recommendations(
    category: str,
    price_in_cents: int,
    services: Services = Depends(get_services),
):
    result = await services.recommendations.recommend(category, price_in_cents)
    if isinstance(result, Err):
        raise_for_err(result)
    return [r.to_dict() for r in result.value]


# Entry point for running with uvicorn directly
def main():
    """Entry point for the API server."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
