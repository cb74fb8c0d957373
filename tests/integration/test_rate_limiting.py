"""Rate limiting through the HTTP API, with an in-memory limiter on app.state."""

import time
import uuid
from collections import Counter
from typing import Optional

import pytest

from gatekeeper.api.middleware import RateLimiter
from gatekeeper.core.config import Settings

from tests.factories import auth_headers


pytestmark = pytest.mark.integration


class CountingRateLimiter(RateLimiter):
    """Counts requests in memory; the window never slides."""

    def __init__(self, **limits):
        super().__init__(Settings(rate_limit_enabled=True, **limits))
        self.counts: Counter = Counter()

    async def is_allowed(self, identifier: str, category: str = "default", limit: Optional[int] = None):
        limit = limit or self.limits[category]
        seen = self.counts[(identifier, category)]
        self.counts[(identifier, category)] += 1
        reset_time = int(time.time()) + self.window
        if seen >= limit:
            return False, 0, limit, reset_time
        return True, limit - seen - 1, limit, reset_time


@pytest.fixture
def limiter(app, monkeypatch) -> CountingRateLimiter:
    limiter = CountingRateLimiter(rate_limit_submit=1, rate_limit_bulk=2, rate_limit_default=3)
    monkeypatch.setattr(app.state, "rate_limiter", limiter)
    return limiter


def _bulk(client, headers):
    return client.post(
        "/api/subjects/bulk-decision",
        json={"subject_ids": [str(uuid.uuid4())], "status": "approved"},
        headers=headers,
    )


class TestRateLimiting:

    def test_disabled_limiter_adds_no_headers(self, client):
        response = client.get("/health")
        assert "X-RateLimit-Limit" not in response.headers

    def test_bulk_decisions_have_their_own_stricter_limit(self, client, limiter, admin_headers):
        assert _bulk(client, admin_headers).status_code == 200
        assert _bulk(client, admin_headers).status_code == 200

        refused = _bulk(client, admin_headers)
        assert refused.status_code == 429
        assert int(refused.headers["Retry-After"]) >= 1
        assert refused.headers["X-RateLimit-Remaining"] == "0"

        # Single decisions draw on a separate budget
        response = client.post(
            f"/api/subjects/{uuid.uuid4()}/decision",
            json={"status": "approved"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_limits_are_per_actor(self, client, limiter):
        alice = auth_headers("alice", ["subjects:create"])
        bob = auth_headers("bob", ["subjects:create"])

        def submit(headers, ref):
            return client.post(
                "/api/subjects", json={"kind": "vehicle_listing", "payload_ref": ref}, headers=headers
            )

        assert submit(alice, "cars/1").status_code == 201
        assert submit(alice, "cars/2").status_code == 429
        assert submit(bob, "cars/3").status_code == 201

    def test_allowed_response_carries_headers(self, client, limiter, admin_headers):
        response = client.get("/api/subjects", headers=admin_headers)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == str(limiter.limits["auth"])
        assert "X-RateLimit-Remaining" in response.headers

    def test_unauthenticated_requests_are_limited_by_ip(self, client, limiter):
        for _ in range(3):
            assert client.get("/api/subjects/mine").status_code == 401
        assert client.get("/api/subjects/mine").status_code == 429
        assert all(identifier.startswith("ip:") for identifier, _ in limiter.counts)

    def test_health_excluded_from_rate_limit(self, client, limiter):
        for _ in range(10):
            assert client.get("/health").status_code == 200
        assert not limiter.counts
