"""Tests for per-IP rate limiting on the /api routes."""

from ekrixi_backend.rate_limit import RATE_LIMIT_MESSAGE

PROMPT = {"prompt": "Say hi"}


def test_101st_request_is_throttled(client, stub_upstream):
    """Test that the default cap is 100 requests per window per client."""
    for _ in range(100):
        response = client.post("/api/generate-text", json=PROMPT)
        assert response.status_code == 200

    response = client.post("/api/generate-text", json=PROMPT)

    assert response.status_code == 429
    assert response.text == RATE_LIMIT_MESSAGE
    assert response.headers["content-type"].startswith("text/plain")
    # The throttled request never reached the upstream
    assert len(stub_upstream.text_calls) == 100


def test_limit_is_shared_across_api_routes(make_client, stub_upstream):
    """Test that both generation routes draw from one counter per client."""
    client = make_client(rate_limit="3/15 minutes")

    assert client.post("/api/generate-text", json=PROMPT).status_code == 200
    assert client.post("/api/generate-content", json={"contents": []}).status_code == 200
    assert client.post("/api/generate-text", json=PROMPT).status_code == 200

    response = client.post("/api/generate-content", json={"contents": []})

    assert response.status_code == 429
    assert stub_upstream.call_count == 3


def test_other_client_is_not_throttled(make_client):
    """Test that counters are kept per client address."""
    client = make_client(rate_limit="100/15 minutes", trust_proxy=True)
    first_ip = {"X-Forwarded-For": "203.0.113.7"}
    second_ip = {"X-Forwarded-For": "198.51.100.23, 10.0.0.1"}

    for _ in range(100):
        client.post("/api/generate-text", json=PROMPT, headers=first_ip)

    throttled = client.post("/api/generate-text", json=PROMPT, headers=first_ip)
    other = client.post("/api/generate-text", json=PROMPT, headers=second_ip)

    assert throttled.status_code == 429
    assert other.status_code == 200
    assert other.json() == {"text": "Hello world"}


def test_forwarded_header_ignored_without_trust_proxy(make_client):
    """Test that clients cannot dodge the limit by spoofing X-Forwarded-For."""
    client = make_client(rate_limit="2/15 minutes")

    client.post("/api/generate-text", json=PROMPT, headers={"X-Forwarded-For": "1.1.1.1"})
    client.post("/api/generate-text", json=PROMPT, headers={"X-Forwarded-For": "2.2.2.2"})
    response = client.post(
        "/api/generate-text", json=PROMPT, headers={"X-Forwarded-For": "3.3.3.3"}
    )

    assert response.status_code == 429


def test_health_is_not_rate_limited(make_client):
    """Test that /health stays outside the limited prefix."""
    client = make_client(rate_limit="1/15 minutes")

    client.post("/api/generate-text", json=PROMPT)
    assert client.post("/api/generate-text", json=PROMPT).status_code == 429

    for _ in range(5):
        assert client.get("/health").status_code == 200


def test_validation_errors_count_towards_limit(make_client, stub_upstream):
    """Test that rejected requests are still counted, like any /api hit."""
    client = make_client(rate_limit="2/15 minutes")

    assert client.post("/api/generate-text", json={}).status_code == 400
    assert client.post("/api/generate-text", json={}).status_code == 400
    assert client.post("/api/generate-text", json=PROMPT).status_code == 429
    assert stub_upstream.call_count == 0


def test_each_app_has_its_own_counters(make_client):
    """Test that limiter state is not shared between app instances."""
    first = make_client(rate_limit="1/15 minutes")
    second = make_client(rate_limit="1/15 minutes")

    assert first.post("/api/generate-text", json=PROMPT).status_code == 200
    assert first.post("/api/generate-text", json=PROMPT).status_code == 429
    assert second.post("/api/generate-text", json=PROMPT).status_code == 200


def test_limit_applies_to_every_request_under_api(make_client, stub_upstream):
    """Test that the cap is enforced from the first request past the limit."""
    client = make_client(rate_limit="2/15 minutes")

    codes = [
        client.post("/api/generate-text", json=PROMPT).status_code for _ in range(4)
    ]

    assert codes == [200, 200, 429, 429]
    assert stub_upstream.call_count == 2


def test_unknown_api_paths_are_counted(make_client, stub_upstream):
    """Test that /api paths with no route still draw from the counter."""
    client = make_client(rate_limit="2/15 minutes")

    assert client.get("/api/does-not-exist").status_code == 404
    assert client.post("/api/generate-text", json=PROMPT).status_code == 200

    response = client.post("/api/generate-text", json=PROMPT)

    assert response.status_code == 429
    assert stub_upstream.call_count == 1


def test_paths_outside_api_are_never_counted(make_client):
    """Test that unknown paths outside /api do not use up the limit."""
    client = make_client(rate_limit="1/15 minutes")

    for _ in range(3):
        assert client.get("/does-not-exist").status_code == 404

    assert client.post("/api/generate-text", json=PROMPT).status_code == 200
