import json

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from blocklist_source import CACHE_KEY, SOURCE_URL, USER_AGENT, build_http_client
from cache_store import MemoryCacheStore

LIST_TEXT = "b.com\n\na.com\nb.com\n"


class Upstream:
    """Fake publisher of the list, counts hits."""

    def __init__(self, text=LIST_TEXT, status=200):
        self.text = text
        self.status = status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, text=self.text)


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def store():
    return MemoryCacheStore()


@pytest.fixture
def client(upstream, store):
    async def http_client():
        async with build_http_client(transport=httpx.MockTransport(upstream)) as c:
            yield c

    main.app.dependency_overrides[main.get_http_client] = http_client
    main.app.dependency_overrides[main.get_cache_store] = lambda: store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def assert_cors(r):
    assert r.headers["access-control-allow-origin"] == "*"
    assert r.headers["access-control-allow-methods"] == "GET, OPTIONS"
    assert r.headers["access-control-allow-headers"] == "Content-Type"


def test_single_domain_blocked(client):
    r = client.get("/", params={"domain": "a.com"})
    assert r.status_code == 200
    assert r.text == "a.com: Blocked!\n"
    assert r.headers["content-type"].startswith("text/plain")
    assert_cors(r)


def test_single_domain_not_blocked_json(client):
    r = client.get("/", params={"domain": " c.com ", "json": "true"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/json")
    assert r.json() == {"c.com": {"blocked": False}}
    assert_cors(r)


def test_lookup_is_case_sensitive(client):
    r = client.get("/", params={"domain": "A.com", "json": "true"})
    assert r.json() == {"A.com": {"blocked": False}}


def test_multiple_domains(client):
    r = client.get("/", params={"domains": "a.com, x.org ,b.com,a.com"})
    assert r.text == "a.com: Blocked!\nx.org: Not Blocked!\nb.com: Blocked!\n"

    r = client.get("/", params={"domains": "b.com,a.com,b.com", "json": "true"})
    assert json.loads(r.text) == {"b.com": {"blocked": True}, "a.com": {"blocked": True}}


def test_repeated_params_use_first_value(client):
    r = client.get("/?domain=a.com&domain=zzz.com")
    assert r.text == "a.com: Blocked!\n"

    r = client.get("/?domain=a.com&json=true&json=false")
    assert r.json() == {"a.com": {"blocked": True}}


def test_json_other_value_is_plain_text(client):
    r = client.get("/", params={"domain": "a.com", "json": "yes"})
    assert r.text == "a.com: Blocked!\n"


def test_both_params_rejected(client, upstream):
    r = client.get("/", params={"domain": "a.com", "domains": "b.com"})
    assert r.status_code == 400
    assert r.text == main.BOTH_PARAMS_MESSAGE
    assert upstream.requests == []


@pytest.mark.parametrize("params", [{}, {"domain": ""}, {"json": "true"}])
def test_missing_params_rejected(client, params):
    r = client.get("/", params=params)
    assert r.status_code == 400
    assert r.text == main.USAGE_MESSAGE


def test_options_is_side_effect_free(client, upstream, store):
    r = client.options("/")
    assert r.status_code == 200
    assert r.content == b""
    assert_cors(r)
    assert upstream.requests == []
    assert store.match(CACHE_KEY) is None


def test_cold_cache_fetches_every_time_without_backfill(client, upstream, store):
    client.get("/", params={"domain": "a.com"})
    client.get("/", params={"domain": "a.com"})
    assert len(upstream.requests) == 2
    assert str(upstream.requests[0].url) == SOURCE_URL
    assert upstream.requests[0].headers["user-agent"] == USER_AGENT
    assert store.match(CACHE_KEY) is None


def test_refresh_populates_cache(client, upstream, store):
    r = client.get("/", params={"refresh": "true"})
    assert r.status_code == 200
    assert r.text == "Cache Refreshed!"
    assert json.loads(store.match(CACHE_KEY)) == {"domainList": ["b.com", "a.com", "b.com"]}

    upstream.text = "other.com\n"
    r = client.get("/", params={"domain": "a.com"})
    assert r.text == "a.com: Blocked!\n"
    assert len(upstream.requests) == 1


def test_corrupt_cache_falls_back_to_upstream(client, upstream, store):
    store.put(CACHE_KEY, "not json", 3600)
    r = client.get("/", params={"domain": "a.com"})
    assert r.text == "a.com: Blocked!\n"
    assert len(upstream.requests) == 1
    assert store.match(CACHE_KEY) == "not json"


def test_upstream_failure_is_500(client, upstream):
    upstream.status = 503
    r = client.get("/", params={"domain": "a.com"})
    assert r.status_code == 500
    assert r.text.startswith("Error fetching blocklist: Failed to fetch domain list: 503")


def test_refresh_upstream_failure_is_500(client, upstream, store):
    upstream.status = 404
    r = client.get("/", params={"refresh": "true"})
    assert r.status_code == 500
    assert "404" in r.text
    assert store.match(CACHE_KEY) is None


def test_refresh_succeeds_when_cache_write_fails(client, store, monkeypatch):
    def broken_put(key, body, ttl):
        raise OSError("disk full")

    monkeypatch.setattr(store, "put", broken_put)
    r = client.get("/", params={"refresh": "true"})
    assert r.status_code == 200
    assert r.text == "Cache Refreshed!"


def test_post_not_allowed(client):
    assert client.post("/").status_code == 405


def test_http_client_shared_for_app_lifetime(monkeypatch):
    monkeypatch.setattr(main, "_http_client", None)
    first = main.get_http_client()
    assert main.get_http_client() is first
    assert first.headers["user-agent"] == USER_AGENT

    with TestClient(main.app):
        pass

    assert first.is_closed
    assert main._http_client is None
