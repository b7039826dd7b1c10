import pytest

from fakes import FakeProvider, make_page, make_settings
from placegrid.core import paginator
from placegrid.core.errors import UpstreamError
from placegrid.etl import export
from placegrid.jobs import server
from placegrid.vendors import google_places

BOUNDS = {"north": "32.1", "south": "32.0", "east": "34.9", "west": "34.8"}


@pytest.fixture
def settings(monkeypatch):
    current = make_settings(cell_meters=50_000)
    monkeypatch.setattr(server, "get_settings", lambda: current)
    monkeypatch.setattr(paginator.time, "sleep", lambda _: None)
    return current


@pytest.fixture
def provider(monkeypatch):
    fake = FakeProvider({None: make_page("p1", 20, token="t1"), "t1": make_page("p2", 5)})
    monkeypatch.setattr(google_places, "text_search", fake)
    return fake


@pytest.fixture
def submitted(monkeypatch):
    jobs = []

    class DummyExecutor:
        def submit(self, fn, *args):
            jobs.append((fn, args))

    monkeypatch.setattr(server, "_executor", DummyExecutor())
    return jobs


@pytest.fixture
def client():
    return server.app.test_client()


def test_health_endpoint(client, settings):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"
    assert response.get_json()["api_key_configured"] is True


def test_preview_returns_first_page_and_token(client, settings, provider):
    response = client.get("/api/places", query_string={"query": "bakery", **BOUNDS})

    body = response.get_json()
    assert response.status_code == 200
    assert body["count"] == 20
    assert body["next_page_token"] == "t1"
    assert body["results"][0]["location"] == {"lat": 32.05, "lng": 34.85}
    assert len(provider.calls) == 1
    assert provider.calls[0]["language"] == "he"
    assert provider.calls[0]["region"] == "IL"


def test_preview_load_more_with_pagetoken(client, settings, provider):
    response = client.get(
        "/api/places", query_string={"query": "bakery", "pagetoken": "t1", "language": "en", **BOUNDS}
    )

    body = response.get_json()
    assert response.status_code == 200
    assert body["count"] == 5
    assert body["next_page_token"] is None
    assert provider.calls[0]["page_token"] == "t1"
    assert provider.calls[0]["language"] == "en"
    assert provider.calls[0]["query"] == "bakery"


def test_preview_invalid_language_falls_back(client, settings, provider):
    client.get("/api/places", query_string={"query": "bakery", "language": "klingon", **BOUNDS})

    assert provider.calls[0]["language"] == "he"


def test_preview_validates_input(client, settings, provider):
    assert client.get("/api/places", query_string=BOUNDS).status_code == 400
    assert client.get("/api/places", query_string={"pagetoken": "t1", **BOUNDS}).status_code == 400
    assert client.get("/api/places", query_string={"query": "bakery"}).status_code == 400
    assert client.get("/api/places", query_string={"query": "bakery", **BOUNDS, "cap": "x"}).status_code == 400
    assert provider.calls == []


def test_preview_reports_upstream_error(client, settings, monkeypatch):
    error = UpstreamError("Places API returned HTTP 403", status_code=403, body="PERMISSION_DENIED")
    monkeypatch.setattr(google_places, "text_search", FakeProvider({}, errors={None: error}))

    response = client.get("/api/places", query_string={"query": "bakery", **BOUNDS})

    body = response.get_json()
    assert response.status_code == 502
    assert body["upstream_status"] == 403
    assert body["upstream_body"] == "PERMISSION_DENIED"
    assert body["results"] == []


def test_missing_api_key_is_a_configuration_error(client, monkeypatch, provider):
    monkeypatch.setattr(server, "get_settings", lambda: make_settings(google_api_key=""))

    response = client.get("/api/places", query_string={"query": "bakery", **BOUNDS})

    assert response.status_code == 500
    assert provider.calls == []


def test_export_returns_csv_attachment(client, settings, provider, submitted):
    response = client.post("/api/export", json={"query": "bakery", "viewport": BOUNDS})

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert response.headers["Content-Disposition"].startswith('attachment; filename="places_')
    assert response.headers["X-Result-Count"] == "25"
    text = response.get_data(as_text=True)
    assert text.startswith(export.BOM)
    assert len(text.splitlines()) == 26
    assert submitted == []


def test_export_reports_upstream_failure_unless_partial_allowed(client, settings, monkeypatch, submitted):
    error = UpstreamError("Places API returned HTTP 500", status_code=500, body="boom")
    fake = FakeProvider({None: make_page("p1", 20, token="t1")}, errors={"t1": error})
    monkeypatch.setattr(google_places, "text_search", fake)

    failed = client.post("/api/export", json={"query": "bakery", "viewport": BOUNDS})
    partial = client.post("/api/export", json={"query": "bakery", "viewport": BOUNDS, "allow_partial": True})

    assert failed.status_code == 502
    assert failed.get_json()["upstream_status"] == 500
    assert failed.get_json()["count"] == 20
    assert partial.status_code == 200
    assert partial.headers["X-Partial-Results"] == "true"
    assert len(partial.get_data(as_text=True).splitlines()) == 21


def test_export_queues_notification(client, settings, provider, submitted):
    response = client.post("/api/export", json={"query": "bakery", "viewport": BOUNDS, "notify": True})

    assert response.status_code == 200
    assert len(submitted) == 1
    fn, (search_request, result) = submitted[0]
    assert fn is server._notify_safe
    assert search_request.query == "bakery"
    assert result.row_count == 25


def test_export_validates_payload(client, settings, provider, submitted):
    assert client.post("/api/export", json={}).status_code == 400
    assert client.post("/api/export", json={"query": "bakery"}).status_code == 400
    assert client.post(
        "/api/export", json={"query": "bakery", "viewport": BOUNDS, "cell_meters": "wide"}
    ).status_code == 400
    assert client.post("/api/export", json={"query": "bakery", "viewport": BOUNDS, "cap": -5}).status_code == 400
    assert client.post("/api/export", json=[1]).status_code == 400
    assert client.post(
        "/api/export", json={"query": "bakery", "viewport": BOUNDS, "cell_meters": 1}
    ).status_code == 400
    assert provider.calls == []


def test_notify_safe_swallows_failures(monkeypatch, caplog):
    def boom(*args, **kwargs):
        raise RuntimeError("webhook exploded")

    monkeypatch.setattr(server, "summarize_export", boom)

    server._notify_safe(object(), object())

    assert "Notification job failed" in " ".join(caplog.messages)
