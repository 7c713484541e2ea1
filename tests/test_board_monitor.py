import pytest

from jobflare.core.errors import HTTPStatusError
from jobflare.core.models import JobSource, ParsingMethod
from jobflare.detection.caches import DetectionCache, SchemaCache
from jobflare.detection.cascade import DetectionResult
from jobflare.fetchers.base import FilterParams
from jobflare.services.board_monitor import BoardError, BoardMonitor


class ScriptedCascade:
    """Answers detect_and_fetch from a url -> result-or-exception table."""

    def __init__(self, script=None):
        self.script = dict(script or {})
        self.calls = []

    def detect_and_fetch(self, url, params=None, listener=None, company_name=None):
        self.calls.append(url)
        outcome = self.script[url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def caches():
    return DetectionCache(), SchemaCache()


@pytest.fixture
def monitor_factory(persistence, caches):
    def _make(cascade=None):
        detection, schema = caches
        return BoardMonitor(persistence, cascade or ScriptedCascade(), detection, schema, board_delay_s=0, sleep=lambda s: None)

    return _make


def test_import_adds_valid_lines_and_reports_failures(monitor_factory):
    monitor = monitor_factory()

    result = monitor.import_boards("https://jobs.lever.co/acme | Acme | enabled\nnot-a-url")

    assert len(result.added) == 1
    board = result.added[0]
    assert board.source is JobSource.LEVER
    assert board.name == "Acme"
    assert board.is_enabled
    assert result.failed == ["not-a-url"]
    assert result.skipped_duplicates == 0


def test_import_skips_duplicates_and_reads_status(monitor_factory):
    monitor = monitor_factory()
    monitor.add_board("Acme", "https://jobs.lever.co/acme")

    result = monitor.import_boards(
        "\n".join(
            [
                "https://jobs.lever.co/acme/ | Acme again | enabled",
                "https://boards.greenhouse.io/initech | Initech | disabled",
                "https://careers.globex.com | Globex",
                "ftp://files.example.com | Files | enabled",
                "",
            ]
        )
    )

    assert result.skipped_duplicates == 1
    assert [b.name for b in result.added] == ["Initech", "Globex"]
    assert [b.is_enabled for b in result.added] == [False, True]
    assert result.failed == ["ftp://files.example.com | Files | enabled"]


def test_export_round_trips_through_import(monitor_factory, persistence, caches):
    monitor = monitor_factory()
    monitor.add_board("Acme", "https://jobs.lever.co/acme")
    monitor.add_board("Initech", "https://boards.greenhouse.io/initech", is_enabled=False)

    text = monitor.export_boards()
    assert text.splitlines() == [
        "https://jobs.lever.co/acme | Acme | enabled",
        "https://boards.greenhouse.io/initech | Initech | disabled",
    ]

    persistence.save_board_configs([])
    fresh = monitor_factory()
    result = fresh.import_boards(text)
    assert [(b.url, b.is_enabled) for b in result.added] == [
        ("https://jobs.lever.co/acme", True),
        ("https://boards.greenhouse.io/initech", False),
    ]


def test_add_rejects_invalid_and_duplicate_urls(monitor_factory):
    monitor = monitor_factory()
    monitor.add_board("Acme", "https://careers.acme.com")

    with pytest.raises(BoardError):
        monitor.add_board("Bad", "careers")
    with pytest.raises(BoardError):
        monitor.add_board("Acme", "https://careers.acme.com/")


def test_boards_persist_across_instances(monitor_factory):
    first = monitor_factory()
    board = first.add_board("Acme", "https://careers.acme.com")
    first.update_board(board.id, name="Acme Corp", is_enabled=False)

    second = monitor_factory()
    assert [(b.id, b.name, b.is_enabled) for b in second.boards] == [(board.id, "Acme Corp", False)]


def test_remove_clears_domain_caches(monitor_factory, caches):
    detection, schema = caches
    monitor = monitor_factory()
    board = monitor.add_board("Acme", "https://careers.acme.com/jobs")
    detection.record("careers.acme.com", "greenhouse", "https://boards.greenhouse.io/acme")
    schema.record_failure("careers.acme.com")

    assert monitor.remove_board(board.id)

    assert detection.get("careers.acme.com") is None
    assert schema.get("careers.acme.com") is None
    assert monitor.boards == []
    assert not monitor.remove_board(board.id)


def test_fetch_all_keeps_last_good_result_for_failing_board(monitor_factory, make_job):
    cascade = ScriptedCascade()
    monitor = monitor_factory(cascade)
    acme = monitor.add_board("Acme", "https://careers.acme.com")
    initech = monitor.add_board("Initech", "https://jobs.lever.co/initech")
    monitor.add_board("Off", "https://careers.off.com", is_enabled=False)

    cascade.script = {
        acme.url: DetectionResult(
            [make_job("gh-1", source=JobSource.GREENHOUSE)],
            ParsingMethod.EMBEDDED_ATS,
            "https://boards.greenhouse.io/acme",
            "greenhouse",
        ),
        initech.url: DetectionResult([make_job("lever-1", source=JobSource.LEVER)], ParsingMethod.DIRECT_ATS),
    }
    first = monitor.fetch_all_boards(FilterParams())
    assert [j.id for j in first.jobs] == ["gh-1", "lever-1"]
    assert first.error_message is None
    assert "https://careers.off.com" not in cascade.calls

    cascade.script["https://boards.greenhouse.io/acme"] = HTTPStatusError(503)
    second = monitor.fetch_all_boards(FilterParams())

    assert [j.id for j in second.jobs] == ["gh-1", "lever-1"]
    assert second.error_message == "Acme: HTTP error 503"


def test_same_named_boards_report_separate_errors(monitor_factory):
    cascade = ScriptedCascade()
    monitor = monitor_factory(cascade)
    us = monitor.add_board("Acme", "https://careers.acme.com")
    eu = monitor.add_board("Acme", "https://careers.acme.eu")
    cascade.script = {us.url: HTTPStatusError(503), eu.url: HTTPStatusError(404)}

    report = monitor.fetch_all_boards(FilterParams())

    assert report.errors == {us.id: "Acme: HTTP error 503", eu.id: "Acme: HTTP error 404"}
    assert report.error_message == "Acme: HTTP error 503 | Acme: HTTP error 404"


def test_fetch_records_detection_on_the_board(monitor_factory, make_job, persistence):
    cascade = ScriptedCascade()
    monitor = monitor_factory(cascade)
    board = monitor.add_board("Acme", "https://careers.acme.com")
    cascade.script[board.url] = DetectionResult(
        [make_job("gh-1")], ParsingMethod.EMBEDDED_ATS, "https://boards.greenhouse.io/acme", "greenhouse"
    )

    monitor.fetch_all_boards(FilterParams())

    saved = persistence.load_board_configs()[0]
    assert saved.detected_ats_url == "https://boards.greenhouse.io/acme"
    assert saved.detected_ats_type == "greenhouse"
    assert saved.parsing_method is ParsingMethod.EMBEDDED_ATS
    assert saved.last_fetched is not None
    # Later cycles go straight to the discovered board.
    assert monitor.boards[0].effective_url == "https://boards.greenhouse.io/acme"
