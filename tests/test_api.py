"""
API endpoint tests
"""

from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from brandtrust.ratelimit import TokenBucketLimiter
from conftest import NOW


def _event(event_id, *urls, title="Acme fined for unpaid overtime at warehouses", **extra):
    payload = {
        "event_id": event_id,
        "brand_id": "acme",
        "category": "labor",
        "title": title,
        "occurred_at": NOW.isoformat(),
        "impacts": {"labor": -10},
        "sources": [{"source_id": f"{event_id}-s{i}", "url": url} for i, url in enumerate(urls)],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def client():
    """Create test client with the app lifespan running"""
    with TestClient(main.app) as test_client:
        yield test_client


def test_root_endpoint(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == main.TITLE
    assert data["rate_limiter"] == "memory"


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["components"]["ownership_records"] > 0
    assert data["components"]["official_domains"] >= 4


def test_deduplicate_endpoint(client):
    events = [
        _event("e1", "https://www.reuters.com/a"),
        _event("e2", "https://apnews.com/b", title="Acme fined for unpaid overtime at warehouse"),
        _event("e3", "https://apnews.com/c", title="Acme pledges net zero by 2030"),
    ]
    response = client.post("/events/deduplicate", json={"events": events})
    assert response.status_code == 200
    data = response.json()
    assert data["input_count"] == 3
    assert data["cluster_count"] == 2
    assert data["clusters"][0]["duplicates"][0]["event_id"] == "e2"
    assert data["clusters"][0]["duplicates"][0]["source_name"] == "Apnews"


def test_verify_endpoint(client):
    events = [
        _event("e1", "https://www.reuters.com/a", "https://apnews.com/b"),
        _event("e2", "https://www.osha.gov/news/acme"),
        _event("e3", "https://www.reuters.com/a"),
    ]
    response = client.post("/events/verify", json={"events": events})
    assert response.status_code == 200
    data = response.json()
    levels = {e["event_id"]: e["verification"] for e in data["events"]}
    assert levels == {"e1": "corroborated", "e2": "official", "e3": "unverified"}
    assert len(data["audit"]) == 2
    assert data["summary"]["processed"] == 3
    enriched = data["events"][0]["sources"][0]
    assert enriched["registrable_domain"] == "reuters.com"
    assert enriched["domain_owner"] == "Thomson Reuters"


def test_invalid_event_payload(client):
    response = client.post("/events/verify", json={"events": [{"event_id": "x"}]})
    assert response.status_code == 422


@pytest.mark.parametrize("bad", [None, [1], {"amount": 3}, "lots"])
def test_malformed_impacts_return_422(client, bad):
    event = _event("e1", "https://www.reuters.com/a", impacts={"labor": bad})
    response = client.post("/events/verify", json={"events": [event]})
    assert response.status_code == 422


def test_non_finite_impact_returns_422(client):
    body = (
        '{"events": [{"event_id": "e1", "brand_id": "acme", "category": "labor", '
        '"occurred_at": "2026-03-10T12:00:00Z", "impacts": {"labor": NaN}}]}'
    )
    response = client.post(
        "/events/verify", content=body, headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 422


def test_verification_sweep_endpoint(client):
    story = "Acme warehouse workers report unpaid overtime"
    events = [
        _event("e1", "https://www.reuters.com/a", title=story),
        _event("e2", "https://local-news.example.com/b", title=story),
        _event("e3", "https://www.reuters.com/c", title=story),
        _event("e4", "https://blog.example.net/d", title="Acme opens new distribution center"),
    ]
    now = (NOW + timedelta(days=1)).isoformat()
    response = client.post("/jobs/verification-sweep", json={"events": events, "now": now})
    assert response.status_code == 200
    data = response.json()
    assert data["summary"]["details"]["upgraded"] == 3
    levels = {e["event_id"]: e["verification"] for e in data["events"]}
    assert levels["e4"] == "unverified"
    assert {levels["e1"], levels["e2"], levels["e3"]} == {"corroborated"}


def test_recompute_endpoint_gates_empty_categories(client):
    events = [_event("e1", "https://www.osha.gov/x", verification="official")]
    response = client.post(
        "/jobs/recompute-scores",
        json={"events": events, "baselines": {"acme": {"labor": 70}}},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["summary"]["succeeded"] == 1
    views = {v["category"]: v for v in data["brands"][0]["categories"]}
    assert views["labor"]["status"] == "scored"
    assert views["labor"]["score"] == 60.0
    assert views["politics"]["status"] == "monitoring"
    assert views["politics"]["score"] is None
    assert views["politics"]["confidence"]["level"] == "none"


def test_job_endpoints_are_rate_limited(client):
    main.app.state.rate_limiter = TokenBucketLimiter(capacity=1, refill_per_second=0.001)
    headers = {"X-Client-Id": "batch-runner"}

    first = client.post("/jobs/recompute-scores", json={"events": []}, headers=headers)
    second = client.post("/jobs/recompute-scores", json={"events": []}, headers=headers)
    other = client.post("/jobs/verification-sweep", json={"events": []}, headers={"X-Client-Id": "someone-else"})

    assert first.status_code == 200
    assert second.status_code == 429
    assert "Rate limit exceeded" in second.json()["detail"]
    assert other.status_code == 200


def test_personalized_endpoint(client):
    response = client.post(
        "/scores/personalized",
        json={
            "scores": {"labor": 30, "environment": 80, "politics": 50, "social": 70},
            "preferences": {"weights": {"labor": 0, "environment": 0}},
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["label"] == "baseline"
    assert data["overall"] == 57.5


def test_personalized_endpoint_with_dealbreaker(client):
    response = client.post(
        "/scores/personalized",
        json={
            "scores": {"Labor Rights": 30, "environment": 80, "politics": None, "social": 70},
            "preferences": {"weights": {"labor": 3, "environment": 1}, "dealbreakers": {"labor": 50}},
        },
    )
    data = response.json()
    assert data["label"] == "personalized"
    assert data["dealbreakers"][0]["category"] == "labor"
    assert data["excluded_categories"] == ["politics"]


def test_personalized_rejects_out_of_range_scores(client):
    response = client.post("/scores/personalized", json={"scores": {"labor": 150}})
    assert response.status_code == 422


@pytest.mark.parametrize(
    "payload",
    [
        {"scores": {"labor": [50]}},
        {"scores": {"labor": 50}, "preferences": {"weights": {"labor": [1]}}},
        {"scores": {"labor": 50}, "preferences": {"dealbreakers": {"labor": {"min": 40}}}},
    ],
)
def test_personalized_malformed_values_return_422(client, payload):
    response = client.post("/scores/personalized", json=payload)
    assert response.status_code == 422


def test_community_outlook_endpoint(client):
    response = client.post(
        "/community/outlook",
        json={"brand_id": "acme", "ratings": [{"category": "labor", "score": 5}] * 12},
    )
    assert response.status_code == 200
    data = response.json()
    assert [c["category"] for c in data["categories"]] == ["labor", "environment", "politics", "social"]
    labor = data["categories"][0]
    assert labor["n"] == 12
    assert labor["confidence"] == "low"
    assert labor["display_score"] == round((5 * 12 + 3 * 20) / 32, 2)


def test_community_outlook_rejects_bad_rating(client):
    response = client.post(
        "/community/outlook",
        json={"brand_id": "acme", "ratings": [{"category": "labor", "score": 7}]},
    )
    assert response.status_code == 422


def test_admin_credibility_round_trip(client):
    response = client.get("/admin/credibility/reuters.com")
    assert response.status_code == 200
    assert response.json()["effective"] >= 0.8

    assert client.get("/admin/credibility/unknown-outlet.example").status_code == 404

    response = client.put("/admin/credibility/unknown-outlet.example", json={"base": 0.9, "dynamic": -0.2})
    assert response.status_code == 200
    assert response.json()["effective"] == pytest.approx(0.7)
    assert client.get("/admin/credibility/unknown-outlet.example").status_code == 200


def test_admin_credibility_rejects_out_of_range(client):
    response = client.put("/admin/credibility/reuters.com", json={"base": 1.4})
    assert response.status_code == 422
    assert client.get("/admin/credibility/reuters.com").json()["base"] == 0.95


@pytest.mark.asyncio
async def test_verify_over_asgi_transport():
    async with main.lifespan(main.app):
        transport = httpx.ASGITransport(app=main.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            response = await http.post(
                "/events/verify",
                json={"events": [_event("e1", "https://www.cnn.com/a", "https://www.foxnews.com/b")]},
            )
    assert response.status_code == 200
    assert response.json()["events"][0]["verification"] == "corroborated"
