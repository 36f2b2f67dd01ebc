"""Response cache behaviour through the full middleware stack."""

SUPPLIERS = "/api/v1/suppliers"


def test_second_get_is_served_from_cache(client, calls):
    first = client.get(SUPPLIERS, params={"status": "active"})
    second = client.get(SUPPLIERS, params={"status": "active"})

    assert first.status_code == 200
    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert second.headers["X-Cache-Key"] == 'suppliers:/api/v1/suppliers:{"status":"active"}'
    assert second.headers["X-Cache-TTL"] == "300"
    assert second.json() == first.json()
    assert calls["suppliers"] == 1


def test_query_order_does_not_change_key(client, calls):
    client.get(f"{SUPPLIERS}?status=active&page=1")
    response = client.get(f"{SUPPLIERS}?page=1&status=active")

    assert response.headers["X-Cache"] == "HIT"
    assert calls["suppliers"] == 1


def test_successful_write_invalidates_supplier_entries(client, calls):
    client.get(SUPPLIERS)
    assert client.get(SUPPLIERS).headers["X-Cache"] == "HIT"

    created = client.post(SUPPLIERS, json={"name": "Sea Cruises", "status": "active"})
    assert created.status_code == 201

    after = client.get(SUPPLIERS)
    assert after.headers["X-Cache"] == "MISS"
    assert calls["suppliers"] == 2
    assert any(s["name"] == "Sea Cruises" for s in after.json()["data"])


def test_failed_write_keeps_cache(client, calls):
    client.get(SUPPLIERS)
    # Body is not a JSON object, the route rejects it with 422
    response = client.post(SUPPLIERS, json=["not", "a", "dict"])
    assert response.status_code == 422

    assert client.get(SUPPLIERS).headers["X-Cache"] == "HIT"
    assert calls["suppliers"] == 1


def test_entry_expires_after_ttl(client, calls, clock):
    client.get(SUPPLIERS)
    clock.advance(300)

    response = client.get(SUPPLIERS)
    assert response.headers["X-Cache"] == "MISS"
    assert calls["suppliers"] == 2


def test_error_responses_are_not_cached(client, calls):
    first = client.get(f"{SUPPLIERS}/unavailable")
    second = client.get(f"{SUPPLIERS}/unavailable")

    assert first.status_code == 503
    assert second.status_code == 503
    assert "X-Cache" not in second.headers
    assert calls["unavailable"] == 2


def test_realtime_dashboard_bypasses_cache(client, calls):
    client.get("/api/v1/dashboard", params={"realtime": "true"})
    response = client.get("/api/v1/dashboard", params={"realtime": "true"})

    assert "X-Cache" not in response.headers
    assert calls["dashboard"] == 2

    client.get("/api/v1/dashboard")
    cached = client.get("/api/v1/dashboard")
    assert cached.headers["X-Cache"] == "HIT"
    assert cached.headers["X-Cache-TTL"] == "120"
    assert calls["dashboard"] == 3


def test_authorized_requests_are_not_cached(client, calls):
    headers = {"Authorization": "Bearer abc"}
    client.get(SUPPLIERS, headers=headers)
    response = client.get(SUPPLIERS, headers=headers)

    assert "X-Cache" not in response.headers
    assert calls["suppliers"] == 2


def test_explicit_invalidation_through_dependency(client, calls):
    client.get(SUPPLIERS)
    client.get(SUPPLIERS, params={"status": "inactive"})

    response = client.delete("/api/v1/cache/suppliers")
    assert response.json()["data"]["removed"] == 2

    assert client.get(SUPPLIERS).headers["X-Cache"] == "MISS"


def test_cache_stats_endpoint(client):
    client.get(SUPPLIERS)
    client.get(SUPPLIERS)

    response = client.get("/api/v1/monitoring/cache-stats")
    assert response.status_code == 200
    stats = response.json()["data"]
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["sets"] == 1
    assert stats["hit_rate"] == 50.0
