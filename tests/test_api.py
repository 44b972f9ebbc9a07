"""Tests for the REST API."""

import pytest
from fastapi.testclient import TestClient

from api_server import app, get_services
from conftest import decode_text
from policyrag.bootstrap import Services
from policyrag.rag.indexer import PolicyIndexer
from policyrag.storage import PolicyFileStorage

POLICY_FILE = ("avb.pdf", "Diebstahl des Geräts ist versichert.".encode("utf-8"), "application/pdf")

PLAN_FORM = {
    "company_name": "Sicher AG",
    "plan_name": "Handyschutz Plus",
    "coverage_percentage": "80",
    "deductible_in_cents": "5000",
    "yearly_price_in_cents": "6000",
    "categories": "Smartphones, Tablets",
}


@pytest.fixture
def services(tmp_path, test_settings, store, embedder, search_service, rag_service, recommendation_service, rag_settings):
    file_storage = PolicyFileStorage(tmp_path / "files")
    return Services(
        settings=test_settings,
        store=store,
        file_storage=file_storage,
        indexer=PolicyIndexer(store, embedder, file_storage, rag_settings, text_extractor=decode_text),
        search=search_service,
        rag=rag_service,
        recommendations=recommendation_service,
    )


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def _create_plan(client, **form):
    response = client.post("/api/plans", data={**PLAN_FORM, **form}, files=[("files", POLICY_FILE)])
    assert response.status_code == 200, response.text
    return response.json()


def test_root(client):
    assert client.get("/").json()["status"] == "ok"


def test_create_plan_ingests_and_summarizes(client, store):
    body = _create_plan(client)

    assert body["categories"] == ["Smartphones", "Tablets"]
    assert body["ingestion"][0]["chunks_created"] == 1
    assert body["documents"][0]["is_processed"] is True
    assert body["documents"][0]["storage_key"].startswith(f"policy-files/{body['id']}/")
    assert len(body["generated"]["top_reasons"]) == 3


def test_create_plan_without_processing(client):
    body = _create_plan(client, process_documents="false")

    assert body["ingestion"] == []
    assert body["generated"] is None
    assert body["documents"][0]["is_processed"] is False


def test_create_plan_rejects_invalid_coverage(client):
    response = client.post("/api/plans", data={**PLAN_FORM, "coverage_percentage": "120"}, files=[("files", POLICY_FILE)])

    assert response.status_code == 400


def test_get_update_and_delete_plan(client):
    plan_id = _create_plan(client, process_documents="false")["id"]

    assert client.get(f"/api/plans/{plan_id}").json()["plan_name"] == "Handyschutz Plus"

    updated = client.put(f"/api/plans/{plan_id}", json={"plan_name": "Handyschutz Max"})
    assert updated.json()["plan_name"] == "Handyschutz Max"
    assert updated.json()["coverage_percentage"] == 80

    assert client.put(f"/api/plans/{plan_id}", json={"coverage_percentage": 101}).status_code == 422

    assert client.delete(f"/api/plans/{plan_id}").status_code == 200
    assert client.get(f"/api/plans/{plan_id}").status_code == 404
    assert client.delete(f"/api/plans/{plan_id}").status_code == 404


def test_update_plan_rejects_null_fields(client):
    plan_id = _create_plan(client, process_documents="false")["id"]

    for field in ("categories", "coverage_percentage", "company_name", "is_active"):
        response = client.put(f"/api/plans/{plan_id}", json={field: None})
        assert response.status_code == 422, field

    plan = client.get(f"/api/plans/{plan_id}").json()
    assert plan["categories"] == ["Smartphones", "Tablets"]
    assert plan["coverage_percentage"] == 80

    cleared = client.put(f"/api/plans/{plan_id}", json={"coverage_description": None})
    assert cleared.status_code == 200

    ranked = client.get("/api/recommendations", params={"category": "Smartphones", "price_in_cents": 80000})
    assert ranked.status_code == 200
    assert ranked.json()[0]["id"] == plan_id


def test_list_plans_includes_inactive(client):
    active = _create_plan(client, process_documents="false")["id"]
    inactive = _create_plan(client, process_documents="false")["id"]
    client.put(f"/api/plans/{inactive}", json={"is_active": False})

    plans = client.get("/api/plans").json()

    assert [p["id"] for p in plans] == [active, inactive]
    assert [p["is_active"] for p in plans] == [True, False]

    ranked = client.get("/api/recommendations", params={"category": "Smartphones", "price_in_cents": 80000})
    assert [r["id"] for r in ranked.json()] == [active]


def test_ingest_document_twice_conflicts(client):
    body = _create_plan(client, process_documents="false")
    document_id = body["documents"][0]["id"]

    first = client.post(f"/api/documents/{document_id}/ingest")
    second = client.post(f"/api/documents/{document_id}/ingest")

    assert first.status_code == 200
    assert first.json()["plan_id"] == body["id"]
    assert second.status_code == 409
    assert second.json()["detail"]["kind"] == "already_processed"


def test_ingest_unknown_document(client):
    response = client.post("/api/documents/missing/ingest")

    assert response.status_code == 404
    assert response.json()["detail"]["kind"] == "document_not_found"


def test_reingest_plan(client):
    plan_id = _create_plan(client)["id"]

    response = client.post(f"/api/plans/{plan_id}/reingest")

    assert response.status_code == 200
    assert len(response.json()["documents"]) == 1


def test_search_and_question(client, llm):
    plan_id = _create_plan(client)["id"]
    llm.response = "Ja, Diebstahl ist versichert."

    search = client.post(f"/api/plans/{plan_id}/search", json={"query": "Mein Handy wurde gestohlen"})
    answer = client.post(
        f"/api/plans/{plan_id}/questions",
        json={"question": "Ist Diebstahl versichert?", "history": [{"role": "user", "content": "Hallo"}]},
    )

    assert search.status_code == 200
    assert search.json()["results"][0]["chunk_text"] == "Diebstahl des Geräts ist versichert."
    assert answer.json()["answer"] == "Ja, Diebstahl ist versichert."
    assert answer.json()["grounded"] is True


def test_search_unknown_plan(client):
    response = client.post("/api/plans/missing/search", json={"query": "Diebstahl"})

    assert response.status_code == 404
    assert response.json()["detail"]["kind"] == "plan_not_found"


def test_summary_requires_processed_documents(client):
    plan_id = _create_plan(client, process_documents="false")["id"]

    response = client.post(f"/api/plans/{plan_id}/summary")

    assert response.status_code == 409


def test_recommendations(client):
    plan_id = _create_plan(client, process_documents="false")["id"]

    response = client.get("/api/recommendations", params={"category": "smartphones", "price_in_cents": 80000})

    assert response.status_code == 200
    ranked = response.json()
    assert ranked[0]["id"] == plan_id
    assert ranked[0]["value_score"] == pytest.approx(59000 / 6000, abs=1e-4)
    assert ranked[0]["is_recommended"] is True


def test_recommendations_reject_negative_price(client):
    response = client.get("/api/recommendations", params={"category": "Smartphones", "price_in_cents": -5})

    assert response.status_code == 400
