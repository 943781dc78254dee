"""Review queue for generated reports and the sequential publish driver."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from .config import get_settings
from .errors import MissingCredential, PublishStateError
from .file_lock import locked_path
from .github import GitHubContentWriter
from .models import GeneratedReport, PublishConfig, ReportStatus

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "github_token"
EDITABLE_FIELDS = frozenset({"file_name", "content"})

Uploader = Callable[[GeneratedReport], Awaitable[None]]
UpdateCallback = Callable[[int, GeneratedReport], None]


# --- Credential cache ------------------------------------------------------


class CredentialStore:
    """The publish credential, persisted across sessions in a small JSON file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path or get_settings().credentials_path).expanduser()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable credential file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> Optional[str]:
        with locked_path(self.path):
            token = self._read().get(CREDENTIAL_KEY)
        return token if isinstance(token, str) and token else None

    def save(self, token: str) -> None:
        with locked_path(self.path):
            data = self._read()
            data[CREDENTIAL_KEY] = token
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data), encoding="utf-8")
            os.chmod(self.path, 0o600)

    def clear(self) -> None:
        with locked_path(self.path):
            data = self._read()
            if data.pop(CREDENTIAL_KEY, None) is not None:
                self.path.write_text(json.dumps(data), encoding="utf-8")


# --- Sequential driver -----------------------------------------------------


@dataclass
class PublishItemResult:
    index: int
    report: GeneratedReport
    error: str | None


@dataclass
class PublishBatchResult:
    items: list[PublishItemResult]

    @property
    def successes(self) -> list[PublishItemResult]:
        return [item for item in self.items if item.error is None]

    @property
    def failures(self) -> list[PublishItemResult]:
        return [item for item in self.items if item.error is not None]


async def publish_reports(
    reports: list[GeneratedReport],
    upload: Uploader,
    on_update: UpdateCallback | None = None,
    *,
    indices: Iterable[int] | None = None,
) -> PublishBatchResult:
    """
    Upload reports one at a time, in order.

    Each report moves to ``uploading`` before its call and to ``success`` or
    ``error`` after it; ``on_update`` fires after every transition. A failed item
    records its message and the loop moves on; nothing is retried.
    """
    targets = list(indices) if indices is not None else list(range(len(reports)))
    items: list[PublishItemResult] = []

    def _notify(idx: int, report: GeneratedReport) -> None:
        if on_update is not None:
            on_update(idx, report)

    for idx in targets:
        report = reports[idx]
        report.status = ReportStatus.UPLOADING
        report.error_message = None
        _notify(idx, report)
        try:
            await upload(report)
        except Exception as exc:
            report.status = ReportStatus.ERROR
            report.error_message = str(exc) or type(exc).__name__
            logger.warning("Publishing %s failed: %s", report.file_name, report.error_message)
        else:
            report.status = ReportStatus.SUCCESS
        _notify(idx, report)
        items.append(
            PublishItemResult(index=idx, report=report, error=report.error_message)
        )

    return PublishBatchResult(items=items)


# --- Review queue ----------------------------------------------------------


class PublishWorkflow:
    """Staged reports awaiting human approval before they are pushed to GitHub."""

    def __init__(self, credentials: CredentialStore | None = None) -> None:
        self.credentials = credentials or CredentialStore()
        self._reports: list[GeneratedReport] = []
        self._open = False
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def reports(self) -> list[GeneratedReport]:
        return list(self._reports)

    @property
    def is_uploading(self) -> bool:
        return any(r.status == ReportStatus.UPLOADING for r in self._reports)

    def saved_credential(self) -> Optional[str]:
        return self.credentials.load()

    def _ensure_idle(self, action: str) -> None:
        # approve() uploads from a snapshot of the queue.
        if self._lock.locked():
            raise PublishStateError(f"Reports cannot be {action} while a publish batch is running.")

    def _report_at(self, index: int) -> GeneratedReport:
        if not 0 <= index < len(self._reports):
            raise PublishStateError(f"No staged report at position {index}.")
        return self._reports[index]

    def stage(self, reports: Iterable[GeneratedReport]) -> None:
        """Add reports to the review queue and open it."""
        added = list(reports)
        if not added:
            return
        self._reports.extend(added)
        self._open = True

    def edit(self, index: int, field: str, value: str) -> GeneratedReport:
        """Change the file name or content of a report that has not been published yet."""
        self._ensure_idle("edited")
        if field not in EDITABLE_FIELDS:
            raise PublishStateError(f"Field {field!r} cannot be edited.")
        report = self._report_at(index)
        if report.status != ReportStatus.PENDING:
            raise PublishStateError(
                f"Report {report.file_name} is {report.status.value}; only pending reports can be edited."
            )
        if field == "file_name" and not value.strip():
            raise PublishStateError("File name cannot be empty.")
        setattr(report, field, value)
        return report

    def discard(self, index: int) -> GeneratedReport:
        self._ensure_idle("discarded")
        report = self._report_at(index)
        if report.status == ReportStatus.UPLOADING:
            raise PublishStateError(f"Report {report.file_name} is uploading.")
        self._reports.pop(index)
        if not self._reports:
            self._open = False
        return report

    def close(self) -> None:
        """End the publish session and drop every staged report."""
        if self.is_uploading or self._lock.locked():
            raise PublishStateError("Cannot close while reports are uploading.")
        self._reports = []
        self._open = False

    async def approve(
        self,
        config: PublishConfig,
        writer: GitHubContentWriter,
        on_update: UpdateCallback | None = None,
    ) -> PublishBatchResult:
        """
        Publish every staged report that has not succeeded yet.

        Requires a credential (given, or cached from an earlier session); the
        credential is cached before any upload starts.
        """
        credential = config.credential.strip() or (self.saved_credential() or "")
        if not credential:
            raise MissingCredential("A GitHub personal access token is required to publish.")
        self.credentials.save(credential)
        active_config = config.model_copy(update={"credential": credential})

        async with self._lock:
            if not self._reports:
                raise PublishStateError("No reports are staged for publishing.")
            reports = list(self._reports)
            targets = [
                idx for idx, report in enumerate(reports) if report.status != ReportStatus.SUCCESS
            ]

            async def _upload(report: GeneratedReport) -> None:
                await writer.upsert(active_config, report.file_name, report.content)

            return await publish_reports(reports, _upload, on_update, indices=targets)
