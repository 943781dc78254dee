"""One dashboard session: records, in-flight tasks, running cost, and the publish queue.

Every user action follows the same path: external call -> normalizer -> cost
ledger -> record store update (by record id) -> task release. A successful
discovery replaces the store and bumps its generation; results of calls issued
under an older generation are priced but never applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Literal, Optional

from openai import AsyncOpenAI

from .config import Settings, get_settings, require_api_key
from .enrichment import (
    EnrichmentResult,
    build_client,
    discover_news,
    discovery_window,
    extract_from_url,
    find_contacts,
    generate_image,
    generate_report,
)
from .errors import EnrichmentError
from .export import report_file_name
from .github import GitHubContentWriter
from .ledger import CostLedger
from .models import GeneratedReport, GroundingSource, NewsRecord, PublishConfig
from .publish import PublishBatchResult, PublishWorkflow, UpdateCallback
from .store import RecordStore
from .tasks import TaskKind, TaskRegistry

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Intelligence engine busy. Please try again."
EXTRACTION_FAILED = "Could not extract news details from this URL."

OutcomeStatus = Literal["ok", "empty", "busy", "stale", "error"]
UrlAction = Literal["report", "research"]


@dataclass
class TaskOutcome:
    record_id: Optional[str]
    kind: TaskKind
    status: OutcomeStatus
    cost: float = 0.0
    error: Optional[str] = None
    report: Optional[GeneratedReport] = None


@dataclass
class DiscoveryOutcome:
    status: OutcomeStatus
    records: List[NewsRecord] = field(default_factory=list)
    sources: List[GroundingSource] = field(default_factory=list)
    raw_text: Optional[str] = None
    cost: float = 0.0
    error: Optional[str] = None


class DashboardSession:
    """In-memory state behind the dashboard; safe to share across concurrent requests."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        *,
        settings: Settings | None = None,
        workflow: PublishWorkflow | None = None,
        writer: GitHubContentWriter | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._writer = writer
        self.store = RecordStore()
        self.registry = TaskRegistry()
        self.ledger = CostLedger()
        self.workflow = workflow or PublishWorkflow()
        self.sources: List[GroundingSource] = []
        self.raw_response: Optional[str] = None
        self.last_error: Optional[str] = None
        self._url_jobs = 0
        self._discovery_seq = 0

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = build_client(require_api_key(self.settings))
        return self._client

    @property
    def writer(self) -> GitHubContentWriter:
        if self._writer is None:
            self._writer = GitHubContentWriter()
        return self._writer

    @property
    def is_processing_url(self) -> bool:
        return self._url_jobs > 0

    # --- Discovery ---------------------------------------------------------

    async def discover(
        self,
        query: Optional[str] = None,
        *,
        category: Optional[str] = None,
        days: Optional[int] = None,
    ) -> DiscoveryOutcome:
        """
        Replace the record set with a fresh discovery.

        Filters and the client are checked before anything changes. The store is
        replaced only when the call succeeds and no newer discovery (or reset) was
        issued meanwhile; replacing it makes earlier in-flight enrichments stale.
        A failed call leaves the current records in place.
        """
        discovery_window(category, days, self.settings)
        client = self.client
        self._discovery_seq += 1
        ticket = self._discovery_seq
        generation = self.store.generation

        def _superseded() -> bool:
            return ticket != self._discovery_seq or not self.store.is_current(generation)

        try:
            result = await discover_news(
                query, client, category=category, days=days, settings=self.settings
            )
        except EnrichmentError as exc:
            logger.warning("Discovery failed: %s", exc)
            self._charge(exc.cost)
            if not _superseded():
                self.last_error = GENERIC_ERROR
            return DiscoveryOutcome(status="error", cost=exc.cost, error=GENERIC_ERROR)

        self.ledger.accumulate(result.cost)
        if _superseded():
            logger.info("Discarding superseded discovery #%d", ticket)
            return DiscoveryOutcome(status="stale", cost=result.cost)

        payload = result.payload
        self.store.reset(payload.records)
        self.registry.clear()
        self.sources = payload.sources
        self.raw_response = payload.raw_text
        self.last_error = None
        return DiscoveryOutcome(
            status="ok" if payload.records else "empty",
            records=self.store.all(),
            sources=payload.sources,
            raw_text=payload.raw_text,
            cost=result.cost,
        )

    def _charge(self, cost: float) -> None:
        # Failed calls that were still billed.
        if cost:
            self.ledger.accumulate(cost)

    # --- User edits --------------------------------------------------------

    def set_user_url(self, record_id: str, url: Optional[str]) -> NewsRecord:
        cleaned = url.strip() if url else ""
        return self.store.update(record_id, user_url=cleaned or None)

    # --- Enrichment --------------------------------------------------------

    async def _run(
        self,
        record_id: str,
        kind: TaskKind,
        operation: Callable[[NewsRecord], Awaitable[EnrichmentResult]],
        apply: Callable[[str, EnrichmentResult], TaskOutcome],
    ) -> TaskOutcome:
        record = self.store.get(record_id)
        if not self.registry.begin(record_id, kind):
            return TaskOutcome(record_id=record_id, kind=kind, status="busy")
        generation = self.store.generation
        try:
            result = await operation(record)
            self.ledger.accumulate(result.cost)
            if not self.store.is_current(generation) or record_id not in self.store:
                logger.info("Discarding stale %s result for %s", kind.value, record_id)
                return TaskOutcome(record_id=record_id, kind=kind, status="stale", cost=result.cost)
            return apply(record_id, result)
        except EnrichmentError as exc:
            logger.warning("%s enrichment failed for %s: %s", kind.value, record_id, exc)
            self._charge(exc.cost)
            return TaskOutcome(
                record_id=record_id, kind=kind, status="error", cost=exc.cost, error=GENERIC_ERROR
            )
        finally:
            self.registry.end(record_id, kind)

    async def generate_image(self, record_id: str) -> TaskOutcome:
        def _apply(rid: str, result: EnrichmentResult) -> TaskOutcome:
            if result.payload is None:
                return TaskOutcome(record_id=rid, kind=TaskKind.IMAGE, status="empty", cost=result.cost)
            self.store.update(rid, generated_image=result.payload)
            return TaskOutcome(record_id=rid, kind=TaskKind.IMAGE, status="ok", cost=result.cost)

        return await self._run(
            record_id,
            TaskKind.IMAGE,
            lambda record: generate_image(record, self.client, settings=self.settings),
            _apply,
        )

    async def generate_report(self, record_id: str) -> TaskOutcome:
        def _apply(rid: str, result: EnrichmentResult) -> TaskOutcome:
            record = self.store.get(rid)
            report = GeneratedReport(
                title=record.title,
                file_name=report_file_name(record),
                content=result.payload,
                record_id=rid,
            )
            self.workflow.stage([report])
            return TaskOutcome(
                record_id=rid, kind=TaskKind.REPORT, status="ok", cost=result.cost, report=report
            )

        return await self._run(
            record_id,
            TaskKind.REPORT,
            lambda record: generate_report(
                record, self.client, contacts=record.contacts, settings=self.settings
            ),
            _apply,
        )

    async def find_contacts(self, record_id: str) -> TaskOutcome:
        def _apply(rid: str, result: EnrichmentResult) -> TaskOutcome:
            if not result.payload:
                return TaskOutcome(record_id=rid, kind=TaskKind.CONTACTS, status="empty", cost=result.cost)
            self.store.update(rid, contacts=result.payload)
            return TaskOutcome(record_id=rid, kind=TaskKind.CONTACTS, status="ok", cost=result.cost)

        return await self._run(
            record_id,
            TaskKind.CONTACTS,
            lambda record: find_contacts(record, self.client, settings=self.settings),
            _apply,
        )

    async def enrich(self, record_id: str, kind: TaskKind | str) -> TaskOutcome:
        handlers = {
            TaskKind.IMAGE: self.generate_image,
            TaskKind.REPORT: self.generate_report,
            TaskKind.CONTACTS: self.find_contacts,
        }
        return await handlers[TaskKind(kind)](record_id)

    async def ingest_url(self, url: str, action: UrlAction = "report") -> TaskOutcome:
        """Extract a story from ``url``, insert it at the front, then report on or research it."""
        if action not in ("report", "research"):
            raise ValueError("action must be 'report' or 'research'.")
        kind = TaskKind.REPORT if action == "report" else TaskKind.CONTACTS
        generation = self.store.generation

        self._url_jobs += 1
        try:
            try:
                result = await extract_from_url(url, self.client, settings=self.settings)
            except EnrichmentError as exc:
                logger.warning("URL extraction failed for %s: %s", url, exc)
                self._charge(exc.cost)
                return TaskOutcome(
                    record_id=None, kind=kind, status="error", cost=exc.cost, error=GENERIC_ERROR
                )
            self.ledger.accumulate(result.cost)

            if result.payload is None or not result.payload.title:
                return TaskOutcome(
                    record_id=None, kind=kind, status="error", cost=result.cost, error=EXTRACTION_FAILED
                )
            if not self.store.is_current(generation):
                return TaskOutcome(record_id=None, kind=kind, status="stale", cost=result.cost)

            record = result.payload.model_copy(update={"user_url": url.strip()})
            record_id = self.store.append(record, at_front=True)
            outcome = await self.enrich(record_id, kind)
            outcome.cost += result.cost
            return outcome
        finally:
            self._url_jobs -= 1

    # --- Publishing --------------------------------------------------------

    async def approve(
        self, config: PublishConfig, on_update: UpdateCallback | None = None
    ) -> PublishBatchResult:
        return await self.workflow.approve(config, self.writer, on_update)

    # --- Session boundary --------------------------------------------------

    def reset(self) -> None:
        """Start a new session: drop records, tasks, cost, and staged reports."""
        self.workflow.close()
        self.store.reset()
        self.registry.clear()
        self.ledger.reset()
        self.sources = []
        self.raw_response = None
        self.last_error = None
