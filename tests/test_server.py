import json

import pytest
from fastapi.testclient import TestClient

from news_desk.config import Settings
from news_desk.errors import GitHubPublishError
from news_desk.models import GeneratedReport
from news_desk.publish import CredentialStore, PublishWorkflow
from news_desk.server import app, get_session
from news_desk.session import DashboardSession

from fakes import FakeClient, make_image_response, make_response


ITEMS = json.dumps(
    [
        {
            "date": "2025-03-01",
            "company": "NatureWorks",
            "title": "New PLA plant",
            "source": "Bioplastics News",
            "url": "https://example.com/pla",
        },
        {"date": "2025-03-02", "company": "Novamont", "title": "Acquisition", "url": None},
    ]
)


class FakeWriter:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []

    async def upsert(self, config, file_name, content):
        self.calls.append((config.owner, config.repository, config.base_path, file_name))
        if file_name in self.fail:
            raise GitHubPublishError("Bad credentials", status_code=401)


@pytest.fixture
def build(tmp_path):
    def _build(responses=(), images=(), writer=None):
        session = DashboardSession(
            FakeClient(responses=responses, images=images),
            settings=Settings(_env_file=None),
            workflow=PublishWorkflow(CredentialStore(tmp_path / "credentials.json")),
            writer=writer or FakeWriter(),
        )
        app.dependency_overrides[get_session] = lambda: session
        return TestClient(app), session

    yield _build
    app.dependency_overrides.clear()


def test_health():
    client = TestClient(app)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_cors_wildcard_disables_credentials():
    cors = next(m for m in app.user_middleware if m.cls.__name__ == "CORSMiddleware")
    assert cors.kwargs["allow_origins"] == ["*"]
    assert cors.kwargs["allow_credentials"] is False


def test_discover_and_list(build):
    client, session = build(responses=[make_response(ITEMS)])

    resp = client.post("/news/discover", json={"query": "PLA", "days": 14})

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert [item["title"] for item in body["items"]] == ["New PLA plant", "Acquisition"]
    assert body["items"][0]["display_url"] == "https://example.com/pla"
    assert body["items"][0]["busy"] == []
    assert body["cost_total"] == pytest.approx(0.0317025)

    listed = client.get("/news").json()
    assert [item["id"] for item in listed["items"]] == [item["id"] for item in body["items"]]

    state = client.get("/session").json()
    assert state["records"] == 2
    assert state["currency"] == "CHF"
    assert state["billable_calls"] == 1


def test_discover_rejects_bad_input(build):
    client, _ = build()

    assert client.post("/news/discover", json={"days": 0}).status_code == 422
    assert client.post("/news/discover", json={"category": "Gossip"}).status_code == 400


def test_patch_user_url(build):
    client, session = build(responses=[make_response(ITEMS)])
    record_id = client.post("/news/discover", json={}).json()["items"][1]["id"]

    resp = client.patch(f"/news/{record_id}", json={"user_url": "https://mine.example"})

    assert resp.status_code == 200
    assert resp.json()["display_url"] == "https://mine.example"
    assert client.patch("/news/missing", json={"user_url": "x"}).status_code == 404


def test_image_generation_and_download(build):
    client, _ = build(responses=[make_response(ITEMS)], images=[make_image_response("aGVsbG8=")])
    record_id = client.post("/news/discover", json={}).json()["items"][0]["id"]

    assert client.get(f"/news/{record_id}/image").status_code == 404

    resp = client.post(f"/news/{record_id}/image")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["record"]["generated_image"] == "data:image/png;base64,aGVsbG8="

    download = client.get(f"/news/{record_id}/image")
    assert download.status_code == 200
    assert download.content == b"hello"
    assert download.headers["content-type"] == "image/png"
    assert "2025-03-01-new-pla-plant.png" in download.headers["content-disposition"]


def test_enrich_unknown_record_and_kind(build):
    client, _ = build()

    assert client.post("/news/missing/report").status_code == 404
    assert client.post("/news/missing/poem").status_code == 422


def test_enrich_busy_returns_conflict(build):
    client, session = build(responses=[make_response(ITEMS)])
    record_id = client.post("/news/discover", json={}).json()["items"][0]["id"]
    session.registry.begin(record_id, "contacts")

    resp = client.post(f"/news/{record_id}/contacts")

    assert resp.status_code == 409


def test_from_url_report_flow(build):
    extracted = json.dumps({"date": "2025-04-01", "company": "Danimer", "title": "PHA expansion"})
    report = json.dumps({"category": "R&D News", "tags": ["PHA"], "summary": "S", "body": "Body"})
    client, session = build(
        responses=[make_response(ITEMS), make_response(extracted), make_response(report)]
    )
    client.post("/news/discover", json={})

    resp = client.post("/news/from-url", json={"url": "https://news.example/pha"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["kind"] == "report"
    assert body["report"]["file_name"] == "2025-04-01-pha-expansion.md"
    assert body["record"]["user_url"] == "https://news.example/pha"
    assert [r.title for r in session.store.all()][0] == "PHA expansion"

    reports = client.get("/reports").json()
    assert reports["open"] is True
    assert reports["has_saved_credential"] is False
    assert reports["defaults"]["repository"] == "bioplastic-website"
    assert reports["defaults"]["base_path"] == "content/news"

    download = client.get("/reports/0/download")
    assert download.status_code == 200
    assert download.text.startswith("---\ntitle: \"PHA expansion\"")


def test_from_url_failure_is_unprocessable(build):
    client, session = build(responses=[make_response("Not a news page.")])

    resp = client.post("/news/from-url", json={"url": "https://x.example", "action": "research"})

    assert resp.status_code == 422
    assert len(session.store) == 0


def _stage_reports(session, names):
    session.workflow.stage(
        GeneratedReport(title=name, file_name=f"{name}.md", content=f"# {name}\n") for name in names
    )


def test_edit_and_discard_reports(build):
    client, session = build()
    _stage_reports(session, ["a", "b"])

    resp = client.patch("/reports/0", json={"file_name": "renamed.md", "content": "new"})
    assert resp.status_code == 200
    assert resp.json()["file_name"] == "renamed.md"
    assert client.patch("/reports/0", json={"file_name": " "}).status_code == 409
    assert client.patch("/reports/9", json={"content": "x"}).status_code == 404

    resp = client.delete("/reports/1")
    assert resp.status_code == 200
    assert [r["file_name"] for r in resp.json()["reports"]] == ["renamed.md"]


def test_approve_reports_partial_failure(build):
    writer = FakeWriter(fail={"b.md"})
    client, session = build(writer=writer)
    _stage_reports(session, ["a", "b", "c"])

    resp = client.post(
        "/reports/approve",
        json={"credential": "ghp", "owner": "acme", "repository": "site", "base_path": "news"},
    )

    assert resp.status_code == 207
    body = resp.json()
    assert body["counts"] == {"success": 2, "error": 1}
    assert [r["status"] for r in body["reports"]] == ["success", "error", "success"]
    assert body["reports"][1]["error_message"] == "Bad credentials"
    assert writer.calls[0] == ("acme", "site", "news", "a.md")
    assert client.get("/reports").json()["has_saved_credential"] is True


def test_approve_requires_credential_and_reports(build):
    client, session = build()

    no_credential = client.post("/reports/approve", json={"owner": "acme"})
    assert no_credential.status_code == 400
    no_owner = client.post("/reports/approve", json={"credential": "ghp"})
    assert no_owner.status_code == 400
    no_reports = client.post("/reports/approve", json={"credential": "ghp", "owner": "acme"})
    assert no_reports.status_code == 409

    _stage_reports(session, ["a"])
    ok = client.post("/reports/approve", json={"owner": "acme"})
    assert ok.status_code == 200


def test_reset_session(build):
    client, session = build(responses=[make_response(ITEMS)])
    client.post("/news/discover", json={})

    state = client.post("/session/reset").json()

    assert state["records"] == 0
    assert state["cost_total"] == 0


@pytest.mark.parametrize(
    "file_name,fallback,encoded",
    [
        ("bericht-größe.md", "bericht-gr__e.md", "bericht-gr%C3%B6%C3%9Fe.md"),
        ('say "hi".md', "say _hi_.md", "say%20%22hi%22.md"),
    ],
)
def test_report_download_with_unusual_file_name(build, file_name, fallback, encoded):
    client, session = build()
    _stage_reports(session, ["a"])
    assert client.patch("/reports/0", json={"file_name": file_name}).status_code == 200

    resp = client.get("/reports/0/download")

    assert resp.status_code == 200
    disposition = resp.headers["content-disposition"]
    assert f'filename="{fallback}"' in disposition
    assert f"filename*=UTF-8''{encoded}" in disposition
    assert resp.text == "# a\n"


def test_failed_discovery_keeps_listed_records(build):
    client, _ = build(responses=[make_response(ITEMS)])
    client.post("/news/discover", json={})

    rejected = client.post("/news/discover", json={"category": "Gossip"})

    assert rejected.status_code == 400
    assert len(client.get("/news").json()["items"]) == 2
