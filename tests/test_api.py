from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from conftest import FakeLLM, FakeRankData, ranked_item
from sellerdesk.app import create_app
from sellerdesk.cache import Cache, MemoryCacheBackend
from sellerdesk.config import Settings
from sellerdesk.llm import LLMError
from sellerdesk.templates import TemplateRegistry


def _client(llm=None, *, settings: Settings | None = None, rank_data=None) -> TestClient:
    settings = settings or Settings(listing_templates_path=None, observability_metrics_enabled=False)
    app = create_app(
        settings=settings,
        cache=Cache(MemoryCacheBackend()),
        llm=llm,
        rank_data=rank_data or FakeRankData({"B0A": [ranked_item("yoga mat", 5000, 2)]}),
        templates=TemplateRegistry(),
    )
    return TestClient(app)


@pytest.fixture()
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture()
def client(llm: FakeLLM) -> TestClient:
    return _client(llm)


def test_health_reports_backends(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "chatBackend": "openai", "cacheBackend": "memory"}


def test_generate_keywords_endpoint(client: TestClient, llm: FakeLLM) -> None:
    llm.replies.append("cork yoga mat\nyoga mat bag")

    response = client.post(
        "/api/keywords/generate",
        json={"marketplace": "us", "asin_list": ["B0A"], "seeds": ["yoga mat"], "category": "Sports"},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    terms = {keyword["term"]: keyword for keyword in body["keywords"]}
    assert set(terms) == {"yoga mat", "cork yoga mat", "yoga mat bag"}
    assert terms["yoga mat"]["source"] == "competitor"
    assert {"term", "score", "cluster_id", "class", "source"} <= set(terms["yoga mat"])
    assert body["clusters"][0]["primaryTerm"] == "yoga mat"
    assert body["stats"]["competitor"] == 1


def test_generate_keywords_requires_some_input(client: TestClient) -> None:
    response = client.post("/api/keywords/generate", json={"marketplace": "US"})

    assert response.status_code == 400
    assert response.json() == {"error": "Provide asin_list, seeds or text"}


def test_generate_keywords_rejects_too_many_asins(client: TestClient) -> None:
    response = client.post(
        "/api/keywords/generate", json={"asin_list": [f"B0{index}" for index in range(11)]}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Maximum 10 ASINs allowed"


def test_generate_keywords_rejects_non_object_body(client: TestClient) -> None:
    response = client.post("/api/keywords/generate", json=["yoga mat"])

    assert response.status_code == 400


def test_expand_keywords_endpoint_falls_back_to_seeds(client: TestClient, llm: FakeLLM) -> None:
    llm.replies.append(LLMError("timeout"))

    response = client.post("/api/keywords/expand", json={"seeds": ["yoga mat"], "category": "Sports"})

    assert response.status_code == 200
    assert response.json() == {"keywords": ["yoga mat"]}


def test_expand_keywords_requires_seeds(client: TestClient) -> None:
    response = client.post("/api/keywords/expand", json={"seeds": []})

    assert response.status_code == 400


def test_extract_keywords_endpoint(client: TestClient) -> None:
    response = client.post("/api/keywords/extract", json={"text": "Cork mat"})

    assert response.status_code == 200
    assert set(response.json()["keywords"]) == {"cork", "mat", "cork mat"}
    assert client.post("/api/keywords/extract", json={}).status_code == 400


def test_generate_listing_endpoint(client: TestClient, llm: FakeLLM) -> None:
    llm.replies.append(
        json.dumps(
            {
                "title": "acme cork yoga mat",
                "bullets": ["Grippy cork"],
                "description": "Soft.",
                "backendTerms": "travel mat",
            }
        )
    )

    response = client.post(
        "/api/listing/generate",
        json={
            "productName": "Cork Yoga Mat",
            "category": "Sports",
            "brand": "Acme",
            "keywords": [{"phrase": "cork yoga mat", "searchVolume": 900, "selected": True}],
        },
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["title"] == "Acme Cork Yoga Mat"
    assert body["backendTerms"] == "travel mat"
    assert body["keywordUsage"]["title"] == 1
    assert body["warnings"]


def test_generate_listing_validates_params(client: TestClient) -> None:
    response = client.post("/api/listing/generate", json={"productName": "Mat"})

    assert response.status_code == 400
    assert response.json()["error"] == "productName and category are required"


def test_generate_listing_maps_model_failure_to_502(client: TestClient, llm: FakeLLM) -> None:
    llm.replies.append("definitely not json")

    response = client.post(
        "/api/listing/generate", json={"productName": "Mat", "category": "Sports"}
    )

    assert response.status_code == 502
    assert "Invalid response format from AI" in response.json()["error"]


def test_listing_endpoints_unavailable_without_llm() -> None:
    client = _client(
        settings=Settings(
            chat_backend="disabled",
            listing_templates_path=None,
            observability_metrics_enabled=False,
        )
    )

    response = client.post("/api/listing/generate", json={"productName": "Mat", "category": "Sports"})

    assert response.status_code == 503
    assert client.post("/api/listing/draft", json={"brand": "Acme"}).status_code == 503


def test_listing_draft_endpoint_returns_draft_and_issues(client: TestClient, llm: FakeLLM) -> None:
    llm.replies.append(
        json.dumps(
            {
                "title": "Acme Cork Yoga Mat",
                "bullets": ["Cures back pain"],
                "description": "Calm practice.",
            }
        )
    )

    response = client.post(
        "/api/listing/draft",
        json={
            "request": {
                "brand": "Acme",
                "product_type": "Yoga Mat",
                "keywords": {"primary": ["yoga mat"], "secondary": []},
                "disallowed": ["cures"],
            }
        },
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["draft"]["title"] == "Acme Cork Yoga Mat"
    assert {issue["message"] for issue in body["issues"]} == {'Prohibited term found: "cures"'}


def test_validate_endpoint_with_auto_fix(client: TestClient) -> None:
    response = client.post(
        "/api/listing/validate",
        json={
            "draft": {"title": "yoga " * 50, "bullets": ["Grippy cork"], "description": "Soft."},
            "request": {"brand": "Acme", "product_type": "Mat", "limits": {"title": 200}},
            "autoFix": True,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert body["issues"][0]["message"] == "Title exceeds 200 characters (250)"
    assert len(body["fixed"]["title"]) <= 200


def test_validate_endpoint_requires_draft_and_request(client: TestClient) -> None:
    response = client.post("/api/listing/validate", json={"draft": {"title": "x"}})

    assert response.status_code == 400
    assert response.json() == {"error": "Draft and request parameters are required"}


def test_validate_endpoint_rejects_negative_limits(client: TestClient) -> None:
    response = client.post(
        "/api/listing/validate",
        json={
            "draft": {"title": "Cork yoga mat"},
            "request": {"brand": "Acme", "product_type": "Mat", "limits": {"title": -5}},
        },
    )

    assert response.status_code == 400
    assert response.json() == {"error": "limits must be positive integers"}


def test_template_endpoints(client: TestClient) -> None:
    listed = client.get("/api/listing/templates").json()["templates"]
    assert len(listed) == 6

    created = client.post("/api/listing/templates", json={"name": "Gift Guide", "tone": "warm"})
    assert created.status_code == 200
    assert created.json()["template"]["id"] == "gift-guide"
    assert created.json()["template"]["isSystem"] is False
    assert len(client.get("/api/listing/templates").json()["templates"]) == 7

    reserved = client.post("/api/listing/templates", json={"id": "storytelling", "name": "Mine"})
    assert reserved.status_code == 400


def test_metrics_endpoint_disabled_by_default(client: TestClient) -> None:
    assert client.get("/metrics").status_code == 404


def test_metrics_endpoint_exposes_prometheus_series(llm: FakeLLM) -> None:
    settings = Settings(
        listing_templates_path=None,
        observability_metrics_enabled=True,
        observability_prometheus_enabled=True,
    )
    client = _client(llm, settings=settings)
    llm.replies.append("cork yoga mat")

    client.post("/api/keywords/generate", json={"seeds": ["yoga mat"]})
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "sellerdesk_keyword_generate_duration" in response.text
