import pytest

from driveschool.ratelimit import config as rl_config
from driveschool.ratelimit.config import RateLimitPolicy

BASE = "/api/v1/content"


def _save(client, headers, key="hero", value="Learn to drive", expected=None, content_type="text"):
    body = {"value": value, "type": content_type}
    if expected is not None:
        body["expected_version"] = expected
    return client.put(f"{BASE}/home/{key}", json=body, headers=headers)


def test_editor_saves_and_public_reads(client, auth_headers):
    res = _save(client, auth_headers(), expected=0)

    assert res.status_code == 200
    assert res.json() == {"success": True, "version": 1}
    assert res.headers["X-RateLimit-Limit"] == "30"

    page = client.get(f"{BASE}/home")
    assert page.status_code == 200
    body = page.json()
    assert body["count"] == 1
    assert body["items"][0]["key"] == "hero"
    assert body["items"][0]["version"] == 1
    assert body["items"][0]["value"] == {"type": "text", "text": "Learn to drive"}


def test_empty_page_is_not_an_error(client):
    res = client.get(f"{BASE}/unknown-page")

    assert res.status_code == 200
    assert res.json() == {"page": "unknown-page", "items": [], "count": 0}


def test_stale_save_returns_conflict_envelope(client, auth_headers):
    _save(client, auth_headers("editor-a"), value="v1")
    _save(client, auth_headers("editor-a"), value="v2", expected=1)

    res = _save(client, auth_headers("editor-b"), value="stale", expected=1)

    assert res.status_code == 409
    body = res.json()
    assert body["success"] is False
    assert body["kind"] == "conflict"
    assert body["conflict"] is True
    assert body["retryable"] is False
    assert body["details"]["current_version"] == 2


def test_anonymous_save_is_unauthenticated(client):
    res = _save(client, {})

    assert res.status_code == 401
    assert res.json()["kind"] == "unauthenticated"
    assert res.headers["WWW-Authenticate"] == "Bearer"


def test_garbage_token_is_treated_as_anonymous(client):
    res = _save(client, {"Authorization": "Bearer not-a-jwt"})

    assert res.status_code == 401


def test_non_editor_is_forbidden(client, auth_headers):
    res = _save(client, auth_headers("student-1", role="student"))

    assert res.status_code == 403
    assert res.json()["kind"] == "forbidden"


@pytest.mark.parametrize(
    "body",
    [
        {"value": "x", "type": "video"},
        {"value": "x", "type": "text", "expected_version": -1},
        {"value": "x", "type": "text", "extra": True},
        {"value": 42, "type": "text"},
    ],
)
def test_invalid_body_is_validation_error(client, auth_headers, body):
    res = client.put(f"{BASE}/home/hero", json=body, headers=auth_headers())

    assert res.status_code == 400
    assert res.json()["kind"] == "validation_error"


def test_invalid_page_slug_is_validation_error(client):
    res = client.get(f"{BASE}/-bad")

    assert res.status_code == 400


def test_rate_limited_save(client, auth_headers, monkeypatch):
    monkeypatch.setitem(rl_config.ROUTE_POLICIES, "content.save", RateLimitPolicy(limit=2, window_s=60))
    headers = auth_headers()

    assert _save(client, headers, value="a").status_code == 200
    assert _save(client, headers, value="b").status_code == 200
    res = _save(client, headers, value="c")

    assert res.status_code == 429
    body = res.json()
    assert body["kind"] == "rate_limited"
    assert body["retryable"] is False
    assert 1 <= body["retry_after"] <= 60
    assert 1 <= int(res.headers["Retry-After"]) <= 60
    assert res.headers["X-RateLimit-Remaining"] == "0"
    # Another editor has their own window
    assert _save(client, auth_headers("editor-2"), value="d").status_code == 200


def test_history_and_restore(client, auth_headers):
    headers = auth_headers()
    _save(client, headers, value="first")
    _save(client, headers, value="second", expected=1)

    history = client.get(f"{BASE}/home/hero/history", params={"limit": 5}, headers=headers)
    assert history.status_code == 200
    assert [v["version"] for v in history.json()["items"]] == [2, 1]

    restored = client.post(
        f"{BASE}/home/hero/restore", json={"version": 1, "expected_version": 2}, headers=headers
    )
    assert restored.status_code == 200
    assert restored.json()["version"] == 3

    items = client.get(f"{BASE}/home").json()["items"]
    assert items[0]["value"]["text"] == "first"


def test_restore_unknown_version(client, auth_headers):
    headers = auth_headers()
    _save(client, headers, value="first")

    res = client.post(f"{BASE}/home/hero/restore", json={"version": 7}, headers=headers)

    assert res.status_code == 400
    assert res.json()["details"]["version"] == 7


def test_history_requires_editor(client, auth_headers):
    assert client.get(f"{BASE}/home/hero/history").status_code == 401
    res = client.get(f"{BASE}/home/hero/history", headers=auth_headers("s", role="student"))
    assert res.status_code == 403
