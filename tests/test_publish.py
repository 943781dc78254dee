import asyncio
import json

import pytest

from news_desk.errors import GitHubPublishError, MissingCredential, PublishStateError
from news_desk.models import GeneratedReport, PublishConfig, ReportStatus
from news_desk.publish import CredentialStore, PublishWorkflow, publish_reports


def _report(name, content="# Report\n"):
    return GeneratedReport(title=name, file_name=f"{name}.md", content=content)


class FakeWriter:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []

    async def upsert(self, config, file_name, content):
        self.calls.append((config.credential, file_name, content))
        if file_name in self.fail:
            raise GitHubPublishError("Bad credentials", status_code=401)


@pytest.fixture
def credentials(tmp_path):
    return CredentialStore(tmp_path / "creds" / "credentials.json")


def _config(credential="ghp_token"):
    return PublishConfig(credential=credential, owner="acme", repository="site", base_path="content/news")


def test_publish_continues_after_a_failure():
    reports = [_report("a"), _report("b"), _report("c")]
    updates = []

    async def upload(report):
        if report.file_name == "b.md":
            raise RuntimeError("Bad credentials")

    batch = asyncio.run(
        publish_reports(reports, upload, lambda idx, r: updates.append((idx, r.status)))
    )

    assert [r.status for r in reports] == [
        ReportStatus.SUCCESS,
        ReportStatus.ERROR,
        ReportStatus.SUCCESS,
    ]
    assert reports[1].error_message == "Bad credentials"
    assert [item.index for item in batch.failures] == [1]
    assert len(batch.successes) == 2
    assert updates == [
        (0, ReportStatus.UPLOADING),
        (0, ReportStatus.SUCCESS),
        (1, ReportStatus.UPLOADING),
        (1, ReportStatus.ERROR),
        (2, ReportStatus.UPLOADING),
        (2, ReportStatus.SUCCESS),
    ]


def test_publish_runs_one_upload_at_a_time():
    reports = [_report(str(i)) for i in range(4)]
    active = []
    peak = []

    async def upload(report):
        active.append(report)
        peak.append(len(active))
        await asyncio.sleep(0)
        active.remove(report)

    asyncio.run(publish_reports(reports, upload))

    assert max(peak) == 1


def test_approve_caches_credential_and_retries_only_unsent(credentials):
    workflow = PublishWorkflow(credentials)
    workflow.stage([_report("a"), _report("b"), _report("c")])
    writer = FakeWriter(fail={"b.md"})

    first = asyncio.run(workflow.approve(_config(), writer))

    assert [item.index for item in first.failures] == [1]
    assert credentials.load() == "ghp_token"
    assert json.loads(credentials.path.read_text())["github_token"] == "ghp_token"

    writer.fail.clear()
    second = asyncio.run(workflow.approve(_config(credential=""), writer))

    assert [item.index for item in second.items] == [1]
    assert [r.status for r in workflow.reports] == [ReportStatus.SUCCESS] * 3
    assert writer.calls[-1] == ("ghp_token", "b.md", "# Report\n")


def test_approve_without_any_credential(credentials):
    workflow = PublishWorkflow(credentials)
    workflow.stage([_report("a")])

    with pytest.raises(MissingCredential):
        asyncio.run(workflow.approve(_config(credential="  "), FakeWriter()))


def test_approve_with_nothing_staged(credentials):
    workflow = PublishWorkflow(credentials)

    with pytest.raises(PublishStateError):
        asyncio.run(workflow.approve(_config(), FakeWriter()))


def test_edit_only_pending_reports(credentials):
    workflow = PublishWorkflow(credentials)
    workflow.stage([_report("a"), _report("b")])

    workflow.edit(0, "file_name", "renamed.md")
    workflow.edit(1, "content", "new body")
    assert [r.file_name for r in workflow.reports] == ["renamed.md", "b.md"]
    assert workflow.reports[1].content == "new body"

    with pytest.raises(PublishStateError):
        workflow.edit(0, "file_name", "   ")
    with pytest.raises(PublishStateError):
        workflow.edit(0, "status", "success")
    with pytest.raises(PublishStateError):
        workflow.edit(5, "content", "x")

    asyncio.run(workflow.approve(_config(), FakeWriter()))

    with pytest.raises(PublishStateError):
        workflow.edit(0, "content", "too late")


def test_discard_and_close(credentials):
    workflow = PublishWorkflow(credentials)
    workflow.stage([_report("a"), _report("b")])
    assert workflow.is_open

    removed = workflow.discard(0)
    assert removed.file_name == "a.md"
    assert [r.file_name for r in workflow.reports] == ["b.md"]

    workflow.discard(0)
    assert not workflow.is_open

    workflow.stage([_report("c")])
    workflow.close()
    assert workflow.reports == []
    assert not workflow.is_open


def test_uploading_reports_block_discard_and_close(credentials):
    workflow = PublishWorkflow(credentials)
    workflow.stage([_report("a")])
    workflow._reports[0].status = ReportStatus.UPLOADING

    with pytest.raises(PublishStateError):
        workflow.discard(0)
    with pytest.raises(PublishStateError):
        workflow.close()


def test_credential_store_round_trip(credentials):
    assert credentials.load() is None

    credentials.save("ghp_1")
    assert CredentialStore(credentials.path).load() == "ghp_1"

    credentials.clear()
    assert credentials.load() is None


def test_credential_store_ignores_corrupt_file(credentials):
    credentials.path.parent.mkdir(parents=True)
    credentials.path.write_text("{not json", encoding="utf-8")

    assert credentials.load() is None
    credentials.save("ghp_2")
    assert credentials.load() == "ghp_2"


def test_queue_is_frozen_while_a_batch_runs(credentials):
    workflow = PublishWorkflow(credentials)
    workflow.stage([_report("a"), _report("b")])
    refused = []

    class MidBatchWriter(FakeWriter):
        async def upsert(self, config, file_name, content):
            if file_name == "a.md":
                for action in (
                    lambda: workflow.discard(1),
                    lambda: workflow.edit(1, "content", "changed"),
                    workflow.close,
                ):
                    try:
                        action()
                    except PublishStateError as exc:
                        refused.append(str(exc))
            await super().upsert(config, file_name, content)

    writer = MidBatchWriter()
    asyncio.run(workflow.approve(_config(), writer))

    assert len(refused) == 3
    assert [name for _, name, _ in writer.calls] == ["a.md", "b.md"]
    assert [r.file_name for r in workflow.reports] == ["a.md", "b.md"]
    assert workflow.reports[1].content == "# Report\n"

    workflow.discard(1)
    assert [r.file_name for r in workflow.reports] == ["a.md"]
