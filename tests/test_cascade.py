import json

import pytest

from jobflare.core.errors import HTTPStatusError
from jobflare.core.models import Job, JobSource, ParsingMethod
from jobflare.detection import cascade as cascade_module
from jobflare.detection.caches import DetectionCache, SchemaCache
from jobflare.detection.cascade import DetectionCascade, slug_candidates
from jobflare.detection.schema_fetcher import ApiSchema, SchemaFetcher
from jobflare.detection.status import AIExtraction, AIJobExtractor
from jobflare.fetchers import greenhouse
from jobflare.fetchers.base import FilterParams, JobFetcher
from jobflare.fetchers.registry import build_fetchers

from conftest import FakeResponse


class RecordingFetcher(JobFetcher):
    def __init__(self, ctx, source, jobs=None):
        super().__init__(ctx)
        self.source = source
        self.jobs = jobs or []
        self.urls = []

    def fetch(self, url, params):
        self.urls.append(url)
        return list(self.jobs)


class RecordingExtractor(AIJobExtractor):
    def __init__(self, jobs=None, schema=None):
        self.jobs = jobs or []
        self.schema = schema
        self.calls = []

    def parse_jobs(self, url, title_filter, location_filter, progress):
        self.calls.append(url)
        progress("reading page")
        return AIExtraction(list(self.jobs), self.schema)


def _schema_page(count):
    postings = [
        {
            "@context": "https://schema.org",
            "@type": "JobPosting",
            "title": f"Engineer {i}",
            "url": f"/co/jobs/{i}",
            "datePosted": "2026-03-01",
            "hiringOrganization": {"name": "Example Co"},
            "jobLocation": {"address": {"addressLocality": "Denver", "addressRegion": "CO", "addressCountry": "US"}},
        }
        for i in range(count)
    ]
    return f'<html><head><script type="application/ld+json">{json.dumps(postings)}</script></head><body></body></html>'


def _cascade(ctx, http, fetchers=None, **kwargs):
    return DetectionCascade(
        fetchers or build_fetchers(ctx),
        http,
        kwargs.pop("detection_cache", DetectionCache()),
        kwargs.pop("schema_cache", SchemaCache()),
        **kwargs,
    )


def test_slug_candidates_skip_noise_labels():
    assert slug_candidates("https://careers.acme.com/") == ["acme"]
    assert slug_candidates("https://www.initech.io/jobs") == ["initech"]
    assert slug_candidates("https://boards.example.com/co") == ["example", "co"]


def test_cached_domain_goes_straight_to_cached_fetcher(ctx, http, session, make_job):
    cache = DetectionCache()
    cache.record("careers.acme.com", "greenhouse", "https://boards.greenhouse.io/acme")
    gh = RecordingFetcher(ctx, JobSource.GREENHOUSE, [make_job("gh-1")])
    fetchers = build_fetchers(ctx)
    fetchers[JobSource.GREENHOUSE] = gh

    result = _cascade(ctx, http, fetchers, detection_cache=cache).detect_and_fetch(
        "https://careers.acme.com/open-roles", FilterParams()
    )

    assert result.method is ParsingMethod.CACHED
    assert [j.id for j in result.jobs] == ["gh-1"]
    assert gh.urls == ["https://boards.greenhouse.io/acme"]
    assert session.calls == []


def test_schema_org_page_stops_at_structured_data(ctx, http, session, monkeypatch):
    url = "https://boards.example.com/co"
    session.add("GET", url, FakeResponse(200, text=_schema_page(5), url=url))

    def link_scan_must_not_run(*args, **kwargs):
        raise AssertionError("anchor scan should not run")

    monkeypatch.setattr(cascade_module, "extract_html_link_jobs", link_scan_must_not_run)
    ai = RecordingExtractor()
    schema_cache = SchemaCache()

    result = _cascade(ctx, http, schema_cache=schema_cache, ai_extractor=ai, ai_enabled=True).detect_and_fetch(
        url, FilterParams(), company_name="Example Co"
    )

    assert result.method is ParsingMethod.SCHEMA_ORG
    assert len(result.jobs) == 5
    assert all(j.id.startswith("schema-") for j in result.jobs)
    assert result.jobs[0].location == "Denver, CO, US"
    assert result.jobs[0].url == "https://boards.example.com/co/jobs/0"
    assert ai.calls == []
    assert schema_cache.get("boards.example.com").html_extraction_works


def test_schema_org_below_threshold_falls_through_to_links(ctx, http, session):
    url = "https://careers.initech.com/"
    page = _schema_page(2).replace(
        "<body></body>",
        '<body><a href="/jobs/42">Senior Platform Engineer</a><a href="/jobs?page=2">Next page</a></body>',
    )
    session.add("GET", url, FakeResponse(200, text=page, url=url))

    result = _cascade(ctx, http).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.HTML_PATTERN
    assert [j.title for j in result.jobs] == ["Senior Platform Engineer"]
    assert result.jobs[0].url == "https://careers.initech.com/jobs/42"


def test_link_scan_skips_navigation_but_keeps_similar_titles(ctx, http, session):
    url = "https://careers.initech.com/"
    page = (
        "<html><body>"
        '<a href="/jobs/1">Next.js Engineer</a>'
        '<a href="/jobs/2">Pages Platform Lead</a>'
        '<a href="/jobs?page=2">Next</a>'
        '<a href="/jobs/3/apply">Apply now</a>'
        '<a href="/jobs/all">View all jobs</a>'
        "</body></html>"
    )
    session.add("GET", url, FakeResponse(200, text=page, url=url))

    result = _cascade(ctx, http).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.HTML_PATTERN
    assert [j.title for j in result.jobs] == ["Next.js Engineer", "Pages Platform Lead"]


def test_direct_ats_url_uses_dedicated_fetcher(ctx, http, session, make_job):
    lever = RecordingFetcher(ctx, JobSource.LEVER, [make_job("lever-1")])
    fetchers = build_fetchers(ctx)
    fetchers[JobSource.LEVER] = lever

    result = _cascade(ctx, http, fetchers).detect_and_fetch("https://jobs.lever.co/acme", FilterParams())

    assert result.method is ParsingMethod.DIRECT_ATS
    assert result.detected_ats_type == "lever"
    assert lever.urls == ["https://jobs.lever.co/acme"]
    assert session.calls == []


def test_ats_markers_pick_the_board_and_cache_it(ctx, http, session):
    url = "https://careers.acme.com/"
    page = '<html><body><div id="grnhse_app"></div><script>Grnhse.Iframe.load()</script></body></html>'
    session.add("GET", url, FakeResponse(200, text=page, url=url))
    session.add(
        "GET",
        greenhouse.API_URL.format(slug="acme"),
        {"jobs": [{"id": 7, "title": "Engineer", "absolute_url": "https://boards.greenhouse.io/acme/jobs/7"}]},
    )
    cache = DetectionCache()

    result = _cascade(ctx, http, detection_cache=cache).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.API_PROBE
    assert result.detected_ats_url == "https://boards.greenhouse.io/acme"
    assert [j.id for j in result.jobs] == ["gh-7"]
    assert cache.get("careers.acme.com").ats_type == "greenhouse"


def test_page_evidence_beats_unrelated_board_with_matching_slug(ctx, http, session):
    url = "https://boards.example.com/co"
    session.add("GET", url, FakeResponse(200, text=_schema_page(5), url=url))
    session.add(
        "GET",
        greenhouse.API_URL.format(slug="example"),
        {"jobs": [{"id": 1, "title": "Barista", "absolute_url": "https://boards.greenhouse.io/example/jobs/1"}]},
    )
    cache = DetectionCache()

    result = _cascade(ctx, http, detection_cache=cache).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.SCHEMA_ORG
    assert "Barista" not in [j.title for j in result.jobs]
    assert len(cache) == 0
    assert greenhouse.API_URL.format(slug="example") not in session.urls()


def test_guessed_board_on_careers_page_is_used_but_not_cached(ctx, http, session):
    url = "https://careers.acme.com/"
    session.add("GET", url, FakeResponse(200, text="<html><body><h1>We're hiring!</h1></body></html>", url=url))
    session.add(
        "GET",
        greenhouse.API_URL.format(slug="acme"),
        {"jobs": [{"id": 7, "title": "Engineer", "absolute_url": "https://boards.greenhouse.io/acme/jobs/7"}]},
    )
    cache = DetectionCache()

    result = _cascade(ctx, http, detection_cache=cache).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.API_PROBE
    assert [j.id for j in result.jobs] == ["gh-7"]
    assert result.detected_ats_url is None
    assert result.detected_ats_type is None
    assert len(cache) == 0
    assert any("not cached" in e["message"] for e in result.events)


def test_plain_page_without_careers_signals_gets_no_guessed_board(ctx, http, session):
    url = "https://www.acme.com/about"
    session.add("GET", url, FakeResponse(200, text="<html><body>About us</body></html>", url=url))

    result = _cascade(ctx, http).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.NONE
    assert not any("greenhouse" in u or "lever" in u or "ashbyhq" in u for u in session.urls())


def test_embedded_link_is_followed_and_cached(ctx, http, session):
    url = "https://careers.initech.com/"
    session.add("GET", url, FakeResponse(200, text='<a href="https://boards.greenhouse.io/acme-corp">Open roles</a>', url=url))
    session.add(
        "GET",
        greenhouse.API_URL.format(slug="acme-corp"),
        {"jobs": [{"id": 9, "title": "Analyst", "absolute_url": "https://boards.greenhouse.io/acme-corp/jobs/9"}]},
    )
    cache = DetectionCache()

    result = _cascade(ctx, http, detection_cache=cache).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.EMBEDDED_ATS
    assert result.detected_ats_url == "https://boards.greenhouse.io/acme-corp"
    assert cache.get("careers.initech.com").ats_url == "https://boards.greenhouse.io/acme-corp"


def test_ai_failure_is_negatively_cached(ctx, http, session):
    url = "https://careers.initech.com/"
    session.add("GET", url, FakeResponse(200, text="<html><body>Nothing here</body></html>", url=url))
    ai = RecordingExtractor()
    schema_cache = SchemaCache()
    cascade = _cascade(ctx, http, schema_cache=schema_cache, ai_extractor=ai, ai_enabled=True)

    first = cascade.detect_and_fetch(url, FilterParams())
    second = cascade.detect_and_fetch(url, FilterParams())

    assert first.method is ParsingMethod.NONE and first.jobs == []
    assert second.method is ParsingMethod.NONE
    assert ai.calls == [url]
    assert schema_cache.get("careers.initech.com").failed


def test_ai_success_is_tagged(ctx, http, session, make_job):
    url = "https://careers.initech.com/"
    session.add("GET", url, FakeResponse(200, text="<html></html>", url=url))
    ai = RecordingExtractor([make_job("ai-1", source=JobSource.UNKNOWN)])

    result = _cascade(ctx, http, ai_extractor=ai, ai_enabled=True).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.AI_EXTRACTION
    assert any(e["step"] == "ai" and e["message"] == "reading page" for e in result.events)


def test_ai_step_is_skipped_when_disabled(ctx, http, session):
    url = "https://careers.initech.com/"
    session.add("GET", url, FakeResponse(200, text="<html></html>", url=url))
    ai = RecordingExtractor()

    result = _cascade(ctx, http, ai_extractor=ai, ai_enabled=False).detect_and_fetch(url, FilterParams())

    assert result.method is ParsingMethod.NONE
    assert ai.calls == []


def test_broken_listener_does_not_change_the_result(ctx, http, session):
    url = "https://boards.example.com/co"
    session.add("GET", url, FakeResponse(200, text=_schema_page(4), url=url))
    seen = []

    def listener(event):
        seen.append(event.step)
        raise RuntimeError("ui went away")

    quiet = _cascade(ctx, http).detect_and_fetch(url, FilterParams())
    noisy = _cascade(ctx, http).detect_and_fetch(url, FilterParams(), listener=listener)

    assert noisy.method is quiet.method is ParsingMethod.SCHEMA_ORG
    assert len(noisy.jobs) == len(quiet.jobs) == 4
    assert "schema" in seen


def test_unreachable_page_raises(ctx, http):
    with pytest.raises(HTTPStatusError):
        _cascade(ctx, http).detect_and_fetch("https://careers.initech.com/", FilterParams())


def test_keyword_filters_apply_to_extracted_jobs(ctx, http, session):
    url = "https://boards.example.com/co"
    session.add("GET", url, FakeResponse(200, text=_schema_page(5).replace("Engineer 3", "Designer 3"), url=url))

    result = _cascade(ctx, http).detect_and_fetch(url, FilterParams(title="designer"))

    assert [j.title for j in result.jobs] == ["Designer 3"]
    assert isinstance(result.jobs[0], Job)


def _search_schema(**overrides):
    fields = dict(
        endpoint="https://careers.initech.com/api/search",
        jobs_path="data.results",
        title_field="name",
        location_field="city",
        url_field="slug",
        url_template="https://careers.initech.com/jobs/{slug}",
    )
    fields.update(overrides)
    return ApiSchema(**fields)


def test_schema_learned_by_ai_is_replayed_on_the_next_run(ctx, http, session, make_job):
    url = "https://careers.initech.com/"
    session.add("GET", url, FakeResponse(200, text="<html></html>", url=url))
    session.add(
        "GET",
        "https://careers.initech.com/api/search",
        {"data": {"results": [
            {"name": "Data Engineer", "city": "Remote", "slug": "data-eng"},
            {"name": "Product Designer", "city": "Austin, TX", "slug": 17},
            {"name": "", "city": "Nowhere"},
        ]}},
    )
    ai = RecordingExtractor([make_job("ai-1", source=JobSource.UNKNOWN)], schema=_search_schema())
    schema_cache = SchemaCache()
    cascade = _cascade(
        ctx, http, schema_cache=schema_cache, ai_extractor=ai, ai_enabled=True, schema_fetcher=SchemaFetcher(ctx)
    )

    first = cascade.detect_and_fetch(url, FilterParams())
    second = cascade.detect_and_fetch(url, FilterParams())
    filtered = cascade.detect_and_fetch(url, FilterParams(title="designer"))

    assert first.method is ParsingMethod.AI_EXTRACTION
    assert schema_cache.cached_schema("careers.initech.com").domain == "careers.initech.com"
    assert second.method is ParsingMethod.CACHED_SCHEMA
    assert [j.url for j in second.jobs] == [
        "https://careers.initech.com/jobs/data-eng",
        "https://careers.initech.com/jobs/17",
    ]
    assert all(j.id.startswith("api-") for j in second.jobs)
    assert second.detected_ats_url is None
    assert [j.title for j in filtered.jobs] == ["Product Designer"]
    assert ai.calls == [url]


def test_broken_cached_schema_is_dropped(ctx, http, session):
    url = "https://careers.initech.com/"
    session.add("GET", url, FakeResponse(200, text="<html></html>", url=url))
    schema_cache = SchemaCache()
    schema_cache.record_ai_success("careers.initech.com", _search_schema())

    result = _cascade(ctx, http, schema_cache=schema_cache, schema_fetcher=SchemaFetcher(ctx)).detect_and_fetch(
        url, FilterParams()
    )

    assert result.method is ParsingMethod.NONE
    assert schema_cache.cached_schema("careers.initech.com") is None
    assert any(e["step"] == "schema-cache" and "failed" in e["message"] for e in result.events)


def test_cached_schema_covers_an_unreachable_page(ctx, http, session):
    session.add("GET", "https://careers.initech.com/api/search", {"data": {"results": [{"name": "Analyst", "slug": "a1"}]}})
    schema_cache = SchemaCache()
    schema_cache.record_ai_success("careers.initech.com", _search_schema())

    result = _cascade(ctx, http, schema_cache=schema_cache, schema_fetcher=SchemaFetcher(ctx)).detect_and_fetch(
        "https://careers.initech.com/", FilterParams()
    )

    assert result.method is ParsingMethod.CACHED_SCHEMA
    assert [(j.title, j.location) for j in result.jobs] == [("Analyst", "Location not specified")]
