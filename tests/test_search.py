import threading
from datetime import datetime, timezone

import pytest

from fakes import FakeProvider, make_page, make_settings, place
from placegrid.core import paginator, search
from placegrid.core.errors import ConfigurationError, InvalidInput, UpstreamError
from placegrid.core.geo import Viewport
from placegrid.etl import export

VIEWPORT = Viewport(north=32.1, south=32.0, east=34.9, west=34.8)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(paginator.time, "sleep", sleeps.append)
    return sleeps


def _request(**kwargs):
    kwargs.setdefault("query", "bakery")
    kwargs.setdefault("viewport", VIEWPORT)
    kwargs.setdefault("language", "he")
    return search.build_request(settings=make_settings(), **kwargs)


def test_two_pages_aggregate_and_export(no_sleep):
    provider = FakeProvider({None: make_page("p1", 20, token="t1"), "t1": make_page("p2", 5)})

    result = search.run_export(_request(), settings=make_settings(), fetch=provider)

    assert result.outcome.ok
    assert len(result.outcome.records) == 25
    assert result.outcome.pages == 2
    assert not result.outcome.has_more
    assert len(result.text.splitlines()) == 26
    assert len(no_sleep) == 1 and no_sleep[0] >= 2.0


def test_shared_record_between_pages_is_kept_once():
    page2 = make_page("p2", 4)
    page2["places"].append(place("p1-7", name="Later copy"))
    provider = FakeProvider({None: make_page("p1", 20, token="t1"), "t1": page2})

    outcome = search.run_search(_request(), settings=make_settings(), fetch=provider)

    assert len(outcome.records) == 24
    kept = [r for r in outcome.records if r.id == "p1-7"]
    assert len(kept) == 1
    assert kept[0].name == "Bakery p1-7"


def test_upstream_500_on_second_page_keeps_first_page():
    error = UpstreamError("Places API returned HTTP 500", status_code=500, body='{"error": "internal"}')
    provider = FakeProvider({None: make_page("p1", 20, token="t1")}, errors={"t1": error})

    outcome = search.run_search(_request(), settings=make_settings(), fetch=provider)

    assert not outcome.ok
    assert outcome.error.status_code == 500
    assert outcome.error.body == '{"error": "internal"}'
    assert len(outcome.records) == 20


def test_preview_cap_stops_requesting_pages():
    provider = FakeProvider(
        {None: make_page("p1", 20, token="t1"), "t1": make_page("p2", 20, token="t2"), "t2": make_page("p3", 5)}
    )

    outcome = search.run_search(_request(page_cap=20), settings=make_settings(), fetch=provider)

    assert len(outcome.records) == 20
    assert len(provider.calls) == 1
    assert outcome.next_page_token == "t1"
    assert outcome.has_more


def test_continuing_with_page_token_resends_query():
    provider = FakeProvider({"t1": make_page("p2", 5)})

    outcome = search.run_search(_request(page_token="t1", page_cap=20), settings=make_settings(), fetch=provider)

    assert len(outcome.records) == 5
    assert provider.calls[0]["page_token"] == "t1"
    assert provider.calls[0]["query"] == "bakery"
    assert outcome.next_page_token is None


def test_tiles_are_deduplicated_across_cells():
    # Every tile returns the same straddling place plus one of its own.
    class PerTileProvider:
        def __init__(self):
            self.calls = []

        def __call__(self, query, viewport, language, api_key, **kwargs):
            self.calls.append(viewport)
            index = len(self.calls)
            return {"places": [place("boundary"), place(f"own-{index}")]}

    provider = PerTileProvider()
    request = _request(cell_meters=5000)

    outcome = search.run_search(request, settings=make_settings(), fetch=provider)

    assert outcome.tiles == len(provider.calls) > 1
    ids = [r.id for r in outcome.records]
    assert ids.count("boundary") == 1
    assert len(ids) == outcome.tiles + 1
    assert outcome.next_page_token is None


def test_concurrent_tiles_keep_ids_unique():
    class PerTileProvider:
        def __init__(self):
            self.lock = threading.Lock()
            self.count = 0

        def __call__(self, query, viewport, language, api_key, **kwargs):
            with self.lock:
                self.count += 1
                index = self.count
            return {"places": [place("boundary"), place(f"own-{index}")]}

    provider = PerTileProvider()
    settings = make_settings(tile_workers=4)

    outcome = search.run_search(
        search.build_request(query="bakery", viewport=VIEWPORT, cell_meters=2000, settings=settings),
        settings=settings,
        fetch=provider,
    )

    ids = [r.id for r in outcome.records]
    assert len(ids) == len(set(ids))
    assert len(ids) == provider.count + 1


def test_failing_tile_does_not_discard_other_tiles():
    class FlakyProvider:
        def __init__(self):
            self.calls = 0

        def __call__(self, query, viewport, language, api_key, **kwargs):
            self.calls += 1
            if self.calls == 2:
                raise UpstreamError("quota", status_code=429, body="RESOURCE_EXHAUSTED")
            return {"places": [place(f"tile-{self.calls}")]}

    provider = FlakyProvider()

    outcome = search.run_search(_request(cell_meters=5000), settings=make_settings(), fetch=provider)

    assert len(outcome.errors) == 1
    assert outcome.errors[0].tile_index == 1
    assert outcome.error.status_code == 429
    assert len(outcome.records) == outcome.tiles - 1


def test_cancelled_search_issues_no_requests():
    provider = FakeProvider({None: make_page("p1", 20)})
    cancel = threading.Event()
    cancel.set()

    outcome = search.run_search(_request(), settings=make_settings(), fetch=provider, cancel_event=cancel)

    assert outcome.cancelled
    assert outcome.records == []
    assert provider.calls == []


def test_on_page_callback_streams_progress():
    provider = FakeProvider({None: make_page("p1", 3, token="t1"), "t1": make_page("p1", 3)})
    seen = []

    search.run_search(
        _request(), settings=make_settings(), fetch=provider, on_page=lambda i, page, added: seen.append((i, added))
    )

    assert seen == [(0, 3), (0, 0)]


def test_missing_api_key_fails_before_any_request():
    provider = FakeProvider({None: make_page("p1", 1)})

    with pytest.raises(ConfigurationError):
        search.run_search(_request(), settings=make_settings(google_api_key=""), fetch=provider)
    assert provider.calls == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"query": "  "},
        {"query": None},
        {"query": "", "page_token": "t1"},
        {"page_cap": 0},
        {"cell_meters": -1},
        {"page_token": "t1", "cell_meters": 1000},
        {"viewport": {"north": 1}},
    ],
)
def test_build_request_rejects_invalid_input(kwargs):
    with pytest.raises(InvalidInput):
        _request(**kwargs)


@pytest.mark.parametrize(
    "raw, expected",
    [("en", "en"), ("EN", "en"), ("en-us", "en-US"), ("pt_BR", "pt-BR"), ("english", "he"), ("", "he"), (None, "he")],
)
def test_language_falls_back_to_default(raw, expected):
    assert search.resolve_language(raw, "he") == expected


def test_region_falls_back_to_default():
    assert search.resolve_region("us", "IL") == "US"
    assert search.resolve_region("USA", "IL") == "IL"


def test_export_in_view_filters_records():
    outside = place("far", lat=31.0, lng=34.85)
    nowhere = place("nowhere")
    nowhere.pop("location")
    provider = FakeProvider({None: {"places": [place("near"), outside, nowhere]}})
    view = Viewport(north=32.06, south=32.04, east=34.86, west=34.84)

    result = search.run_export(
        _request(),
        settings=make_settings(),
        fetch=provider,
        in_view=view,
        now=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )

    rows = export.parse(result.text)
    assert [row["id"] for row in rows] == ["near"]
    assert result.row_count == 1
    assert len(result.outcome.records) == 3
    assert result.filename == "places_2024-01-02T03-04-05.csv"


def test_oversized_grid_is_rejected_before_any_request():
    provider = FakeProvider({None: make_page("p1", 1)})
    settings = make_settings(max_tiles=10)

    with pytest.raises(InvalidInput):
        search.run_search(_request(cell_meters=1000), settings=settings, fetch=provider)
    assert provider.calls == []
