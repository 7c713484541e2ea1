from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from jobflare.core.config import load_runtime_config
from jobflare.fetchers import greenhouse
from jobflare.main import create_app

ACME_BOARD = "https://boards.greenhouse.io/acme"


@pytest.fixture
def client(tmp_path, http, session):
    session.add(
        "GET",
        greenhouse.API_URL.format(slug="acme"),
        {
            "jobs": [
                {"id": 7, "title": "Platform Engineer", "location": {"name": "Remote"},
                 "absolute_url": "https://boards.greenhouse.io/acme/jobs/7"},
                {"id": 8, "title": "Product Designer", "location": {"name": "Austin, TX"},
                 "absolute_url": "https://boards.greenhouse.io/acme/jobs/8"},
            ]
        },
    )
    cfg = replace(load_runtime_config(), scheduler_mode="off", page_delay_ms=0, board_delay_ms=0)
    app = create_app(config=cfg, data_dir=str(tmp_path), http=http)
    client = TestClient(app)
    # Boards only; the built-in search API is not routed in these tests.
    client.put("/api/settings", json={"enabled_sources": []})
    return client


def _add_acme(client):
    r = client.post("/api/boards", json={"name": "Acme", "url": ACME_BOARD})
    assert r.status_code == 200
    return r.json()


def test_board_crud(client):
    board = _add_acme(client)
    assert board["source"] == "greenhouse"

    assert client.post("/api/boards", json={"name": "Acme", "url": ACME_BOARD + "/"}).status_code == 400
    assert client.post("/api/boards", json={"name": "Bad", "url": "careers"}).status_code == 400

    r = client.patch(f"/api/boards/{board['id']}", json={"is_enabled": False})
    assert r.status_code == 200
    assert r.json()["is_enabled"] is False
    assert client.patch("/api/boards/missing", json={"name": "x"}).status_code == 404

    assert [b["name"] for b in client.get("/api/boards").json()] == ["Acme"]
    assert client.delete(f"/api/boards/{board['id']}").status_code == 200
    assert client.delete(f"/api/boards/{board['id']}").status_code == 404
    assert client.get("/api/boards").json() == []


def test_board_import_and_export(client):
    r = client.post(
        "/api/boards/import",
        json={"text": f"{ACME_BOARD} | Acme | enabled\nhttps://jobs.lever.co/initech | Initech | disabled\nbogus"},
    )
    body = r.json()
    assert [b["name"] for b in body["added"]] == ["Acme", "Initech"]
    assert body["failed"] == ["bogus"]

    exported = client.get("/api/boards/export")
    assert exported.headers["content-type"].startswith("text/plain")
    assert exported.text.splitlines() == [
        f"{ACME_BOARD} | Acme | enabled",
        "https://jobs.lever.co/initech | Initech | disabled",
    ]


def test_detect_reports_method_and_jobs(client):
    r = client.post("/api/boards/detect", json={"url": ACME_BOARD, "include_jobs": True, "title": "designer"})

    body = r.json()
    assert body["method"] == "directATS"
    assert body["detected_ats_type"] == "greenhouse"
    assert [j["id"] for j in body["jobs"]] == ["gh-8"]
    assert client.get("/api/boards").json() == []


def test_detect_unreachable_page_is_bad_gateway(client):
    r = client.post("/api/boards/detect", json={"url": "https://careers.nowhere-at-all.com"})
    assert r.status_code == 502


def test_run_then_filter_and_flag_jobs(client):
    _add_acme(client)

    r = client.post("/api/run")
    assert r.status_code == 200
    assert r.json()["total"] == 2
    assert r.json()["succeeded"] == ["boards"]

    jobs = client.get("/api/jobs").json()
    assert jobs["total"] == 2
    assert client.get("/api/jobs", params={"title": "designer"}).json()["total"] == 1
    assert client.get("/api/jobs", params={"location": "austin"}).json()["items"][0]["id"] == "gh-8"
    assert client.get("/api/jobs", params={"sources": "lever"}).json()["total"] == 0

    assert client.post("/api/jobs/gh-8/star").json() == {"ok": True, "id": "gh-8", "starred": True}
    assert client.post("/api/jobs/gh-7/applied").status_code == 200
    assert client.post("/api/jobs/gh-404/star").status_code == 404

    starred = client.get("/api/jobs", params={"starred_only": 1}).json()
    assert [j["id"] for j in starred["items"]] == ["gh-8"]
    assert starred["items"][0]["starred"] is True

    assert client.delete("/api/jobs/gh-8/star").status_code == 200
    assert client.get("/api/jobs", params={"starred_only": 1}).json()["total"] == 0


def test_saved_filters_apply_when_query_is_silent(client):
    _add_acme(client)
    client.post("/api/run")

    client.put("/api/settings", json={"title_filter": "platform"})

    body = client.get("/api/jobs").json()
    assert body["title"] == "platform"
    assert [j["id"] for j in body["items"]] == ["gh-7"]
    assert client.get("/api/jobs", params={"title": ""}).json()["total"] == 2


def test_run_single_source(client):
    _add_acme(client)

    assert client.post("/api/run/boards").json()["ok"] is True
    assert client.post("/api/run/nope").status_code == 404
    assert client.post("/api/run/microsoft").json()["skipped"] is True


def test_settings_are_normalized(client):
    r = client.put("/api/settings", json={"enabled_sources": [" Microsoft ", ""], "max_pages": 99})

    assert r.json()["enabled_sources"] == ["microsoft"]
    assert r.json()["max_pages"] == 20
    assert client.get("/api/settings").json()["max_pages"] == 20


def test_status_and_cleanup(client):
    _add_acme(client)
    client.post("/api/run")

    status = client.get("/api/status").json()
    assert status["scheduler"]["mode"] == "off"
    assert status["boards"] == 1
    assert status["job_count"] == 2
    assert status["error_message"] is None
    assert {s["source"] for s in status["sources"]} >= {"microsoft", "boards"}

    assert client.post("/api/cleanup").json() == {"ok": True, "removed": 0}
    assert client.post("/api/wake").json()["ok"] is True
    assert client.get("/api/status").json()["scheduler"]["wake_count"] == 1
