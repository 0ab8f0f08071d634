"""
Quick API smoke test against a running service
"""

import asyncio
from datetime import datetime, timezone

import httpx


def _event(event_id: str, url: str) -> dict:
    return {
        "event_id": event_id,
        "brand_id": "acme",
        "category": "labor",
        "title": "Acme fined for unpaid overtime at warehouses",
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "impacts": {"labor": -10},
        "sources": [{"source_id": f"{event_id}-s1", "url": url}],
    }


async def smoke_api():
    """Exercise the main endpoints once"""

    base_url = "http://localhost:8001"
    events = [
        _event("e1", "https://www.reuters.com/business/acme-overtime"),
        _event("e2", "https://apnews.com/article/acme-overtime"),
    ]

    print("Testing Brand Trust API...")
    print("=" * 50)

    async with httpx.AsyncClient(timeout=30.0) as client:
        print("\n1. Health check...")
        response = await client.get(f"{base_url}/health")
        print(f"Status: {response.status_code}")
        print(f"Response: {response.json()}")

        print("\n2. Verification sweep...")
        response = await client.post(f"{base_url}/jobs/verification-sweep", json={"events": events})
        print(f"Status: {response.status_code}")
        data = response.json()
        print(f"Summary: {data.get('summary')}")

        print("\n3. Recompute scores...")
        response = await client.post(
            f"{base_url}/jobs/recompute-scores",
            json={"events": data.get("events", events)},
        )
        print(f"Status: {response.status_code}")
        for brand in response.json().get("brands", []):
            for view in brand["categories"]:
                print(f"  {brand['brand_id']} {view['category']}: {view['status']} {view['score']}")

        print("\n4. Personalized score...")
        response = await client.post(
            f"{base_url}/scores/personalized",
            json={
                "scores": {"labor": 42.5, "environment": 70, "politics": 55, "social": None},
                "preferences": {"weights": {"labor": 80, "environment": 20}, "dealbreakers": {"labor": 50}},
            },
        )
        print(f"Status: {response.status_code}")
        print(f"Response: {response.json()}")

    print("\n" + "=" * 50)
    print("Smoke test completed")


if __name__ == "__main__":
    asyncio.run(smoke_api())
