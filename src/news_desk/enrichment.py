"""External AI calls that discover and enrich news records.

Each operation is a pure request/response wrapper: it calls the model, runs the
response through the normalizer where structured output is expected, prices the
call, and returns ``EnrichmentResult(payload, cost)``. None of them touch the
record store; applying results is the session's job.

Defaults call the OpenAI API and therefore need `OPENAI_API_KEY`, but every
operation accepts an injected client so tests can run offline.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Generic, List, Optional, TypeVar

from openai import AsyncOpenAI, OpenAIError

from .config import Settings, get_settings
from .errors import EnrichmentError
from .ledger import PriceTable, estimate_cost, usage_from_response
from .models import Contact, GroundingSource, NewsRecord
from .normalizer import as_list, first_object, normalize_response
from .schema import validate_news_item

logger = logging.getLogger(__name__)

T = TypeVar("T")

CATEGORIES: tuple[str, ...] = (
    "All News",
    "M&A",
    "Annual / Quarterly Report",
    "Partnerships",
    "Plant Announcements",
    "R&D News",
    "Start-ups",
    "Funding Rounds",
    "Regulatory & Policy",
    "Bio-based Feedstocks",
    "Marine Bioplastics",
    "Packaging Innovation",
    "Circular Economy",
)
DEFAULT_CATEGORY = "All News"

# Personal profiles only (linkedin.com/in/<handle>); company pages and search
# links are rejected.
PROFILE_LINK_PATTERN = re.compile(
    r"^https?://(?:www\.|[a-z]{2,3}\.)?linkedin\.com/in/[A-Za-z0-9_%.\-]+/?(?:[?#]\S*)?$",
    re.IGNORECASE,
)


# --- Data containers -------------------------------------------------------


@dataclass
class EnrichmentResult(Generic[T]):
    payload: T
    cost: float


@dataclass
class DiscoveryPayload:
    records: List[NewsRecord] = field(default_factory=list)
    sources: List[GroundingSource] = field(default_factory=list)
    raw_text: Optional[str] = None


# --- Helpers --------------------------------------------------------------


def build_client(api_key: Optional[str] = None) -> AsyncOpenAI:
    """Create an async OpenAI client; separated for easier testing."""
    return AsyncOpenAI(api_key=api_key)


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _price(response: object, settings: Settings, *, search_used: bool = False) -> float:
    return estimate_cost(
        usage_from_response(response),
        search_used=search_used,
        prices=PriceTable.from_settings(settings),
    )


def _response_text_or_raise(response: object, *, step: str, cost: float = 0.0) -> str:
    """Return the response text ("" when the model said nothing); raise on failed runs.

    A failed run may still have been billed, so ``cost`` travels on the error.
    """
    status = _field(response, "status")
    if status == "incomplete":
        details = _field(response, "incomplete_details")
        reason = _field(details, "reason") if details else None
        raise EnrichmentError(f"{step} response incomplete (reason={reason}).", cost=cost)

    err = _field(response, "error")
    if err:
        raise EnrichmentError(f"{step} response error: {err}", cost=cost)

    text = _field(response, "output_text")
    return text if isinstance(text, str) else ""


def _grounding_sources(response: object) -> List[GroundingSource]:
    """Collect url_citation annotations from a Responses API result, deduplicated by uri."""
    sources: List[GroundingSource] = []
    seen: set[str] = set()
    for item in _field(response, "output") or []:
        if _field(item, "type") != "message":
            continue
        for part in _field(item, "content") or []:
            for annotation in _field(part, "annotations") or []:
                if _field(annotation, "type") != "url_citation":
                    continue
                uri = _field(annotation, "url")
                if not uri or uri in seen:
                    continue
                seen.add(uri)
                sources.append(GroundingSource(uri=uri, title=_field(annotation, "title") or ""))
    return sources


async def _guarded(step: str, call: Awaitable[T]) -> T:
    """Await an SDK call, converting transport/service failures to EnrichmentError."""
    try:
        return await call
    except OpenAIError as exc:
        logger.warning("%s call failed: %s", step, exc)
        raise EnrichmentError(f"{step} failed: {exc}") from exc


def _text_or_blank(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _optional_url(value: Any) -> Optional[str]:
    text = _text_or_blank(value)
    return text or None


def record_from_item(item: Any) -> NewsRecord:
    """Validate one model item against the schema and convert it to a NewsRecord."""
    data = validate_news_item(item)
    return NewsRecord(
        date=_text_or_blank(data.get("date")),
        company=_text_or_blank(data.get("company")),
        title=_text_or_blank(data.get("title")),
        description=_text_or_blank(data.get("description")),
        source=_text_or_blank(data.get("source")),
        canonical_url=_optional_url(data.get("url")),
        verification_url=_optional_url(
            data.get("verificationUrl") or data.get("verification_url")
        ),
    )


def records_from_payload(data: Any) -> List[NewsRecord]:
    """Convert every valid item; invalid ones are logged and skipped."""
    records: List[NewsRecord] = []
    for position, item in enumerate(as_list(data)):
        try:
            records.append(record_from_item(item))
        except ValueError as exc:
            logger.info("Dropping news item %d: %s", position, exc)
    return records


def is_profile_link(link: Any) -> bool:
    return isinstance(link, str) and bool(PROFILE_LINK_PATTERN.match(link.strip()))


def validate_contacts(items: Any) -> List[Contact]:
    """Keep only named contacts whose link has the personal-profile URL shape."""
    contacts: List[Contact] = []
    for item in as_list(items):
        if not isinstance(item, dict):
            continue
        name = _text_or_blank(item.get("name"))
        link = item.get("linkedin") or item.get("profile_link") or item.get("profileLink")
        if not name or not is_profile_link(link):
            continue
        title = _text_or_blank(item.get("title")) or None
        contacts.append(Contact(name=name, title=title, profile_link=link.strip()))
    return contacts


def _record_context(record: NewsRecord) -> str:
    return (
        f"Title: {record.title}\n"
        f"Company: {record.company}\n"
        f"Date: {record.date or 'unknown'}\n"
        f"Source: {record.source or 'unknown'}\n"
        f"URL: {record.display_url or 'unknown'}\n"
        f"Summary: {record.description}"
    )


# --- Prompts --------------------------------------------------------------


def build_discovery_prompt(
    industry: str, query: Optional[str], category: Optional[str], days: int
) -> str:
    lines = [
        f"Find the latest corporate news for the {industry} industry from the last {days} days.",
    ]
    if query and query.strip():
        lines.append(f"Focus specifically on: {query.strip()}")
    if category and category != DEFAULT_CATEGORY:
        lines.append(f"Only include news in the category: {category}.")
    lines.extend(
        [
            "Return 6-10 items.",
            "",
            "STRICT EXCLUSION: No market research reports or CAGR forecasts. Only company "
            "actions like M&A, plant openings, or R&D breakthroughs.",
            "",
            'Format as JSON: [{ "date": "YYYY-MM-DD", "company": "Name", "title": "Headline", '
            '"description": "Short summary", "source": "Site", "url": "Link" }]',
        ]
    )
    return "\n".join(lines)


_EXTRACT_PROMPT = (
    "Open the article at {url} and extract the news it reports.\n"
    'Format as a single JSON object: {{ "date": "YYYY-MM-DD", "company": "Name", '
    '"title": "Headline", "description": "Short summary", "source": "Site" }}\n'
    "If the page is not a news story, return {{}}."
)

_REPORT_PROMPT = (
    "Write a 200-word deep dive report on this {industry} news.\n\n{context}\n\n"
    'Respond with one JSON object: {{ "category": "One of: {categories}", '
    '"tags": ["keyword", ...], "summary": "One sentence", "body": "Markdown report body" }}'
)

_CONTACTS_PROMPT = (
    "Identify up to three people (executives, spokespersons or project leads) connected "
    "to this news.\n\n{context}\n\n"
    "Only include people for whom you found a personal LinkedIn profile URL of the form "
    "https://www.linkedin.com/in/<handle>.\n"
    'Format as JSON: [{{ "name": "Full name", "title": "Role", "linkedin": "Profile URL" }}]'
)

_IMAGE_PROMPT = (
    "A professional industrial illustration for: {title}. Company: {company}. "
    "No text or logos."
)


# --- Operations -----------------------------------------------------------


def discovery_window(
    category: Optional[str], days: Optional[int], settings: Settings | None = None
) -> int:
    """Check discovery filters and return the recency window in days."""
    settings = settings or get_settings()
    window = days if days is not None else settings.time_range_days
    if window < 1:
        raise ValueError("days must be >= 1.")
    if category and category not in CATEGORIES:
        raise ValueError(f"Unknown category {category!r}.")
    return window


async def discover_news(
    query: Optional[str],
    client: AsyncOpenAI,
    *,
    category: Optional[str] = None,
    days: Optional[int] = None,
    settings: Settings | None = None,
) -> EnrichmentResult[DiscoveryPayload]:
    """Search for recent industry news and return structured candidates plus citations."""
    settings = settings or get_settings()
    window = discovery_window(category, days, settings)

    prompt = build_discovery_prompt(settings.industry, query, category, window)
    response = await _guarded(
        "Discovery",
        client.responses.create(
            model=settings.search_model,
            input=prompt,
            tools=[{"type": settings.search_tool}],
        ),
    )
    cost = _price(response, settings, search_used=True)
    text = _response_text_or_raise(response, step="Discovery", cost=cost)
    normalized = normalize_response(text, "array")
    records = records_from_payload(normalized.data) if normalized.structured else []
    payload = DiscoveryPayload(
        records=records,
        sources=_grounding_sources(response),
        raw_text=text if not records and text.strip() else None,
    )
    logger.info("Discovery returned %d record(s), %d source(s)", len(records), len(payload.sources))
    return EnrichmentResult(payload=payload, cost=cost)


async def extract_from_url(
    url: str,
    client: AsyncOpenAI,
    *,
    settings: Settings | None = None,
) -> EnrichmentResult[Optional[NewsRecord]]:
    """Extract zero or one record from a single article URL."""
    settings = settings or get_settings()
    url = url.strip()
    if not url:
        raise ValueError("url is required.")

    response = await _guarded(
        "URL extraction",
        client.responses.create(
            model=settings.report_model,
            input=_EXTRACT_PROMPT.format(url=url),
            tools=[{"type": settings.search_tool}],
        ),
    )
    cost = _price(response, settings, search_used=True)
    text = _response_text_or_raise(response, step="URL extraction", cost=cost)

    item = first_object(normalize_response(text, "object").data)
    record: Optional[NewsRecord] = None
    if item:
        try:
            record = record_from_item({**item, "url": url})
        except ValueError as exc:
            logger.info("URL extraction produced no usable record for %s: %s", url, exc)
    return EnrichmentResult(payload=record, cost=cost)


def _yaml_value(value: Any) -> str:
    # JSON scalars and flow sequences are valid YAML.
    return json.dumps(value, ensure_ascii=False)


def render_report(
    record: NewsRecord,
    *,
    body: str,
    category: str = "General",
    tags: Optional[List[str]] = None,
    summary: str = "",
    contacts: Optional[List[Contact]] = None,
) -> str:
    """Render a report with the fixed front matter, the body, and a source footer."""
    url = record.display_url or ""
    lines = [
        "---",
        f"title: {_yaml_value(record.title)}",
        f"date: {_yaml_value(record.date)}",
        f"company: {_yaml_value(record.company)}",
        f"category: {_yaml_value(category)}",
        f"tags: {_yaml_value(list(tags or []))}",
        f"summary: {_yaml_value(summary)}",
        f"source: {_yaml_value(record.source)}",
        f"url: {_yaml_value(url)}",
    ]
    if contacts:
        lines.append("contacts:")
        for contact in contacts:
            lines.append(f"  - name: {_yaml_value(contact.name)}")
            if contact.title:
                lines.append(f"    title: {_yaml_value(contact.title)}")
            if contact.profile_link:
                lines.append(f"    linkedin: {_yaml_value(contact.profile_link)}")
    else:
        lines.append("contacts: []")
    lines.extend(["---", "", body.strip(), ""])
    if url:
        lines.append(f"Source: [{record.source or url}]({url})")
    return "\n".join(lines).rstrip("\n") + "\n"


async def generate_report(
    record: NewsRecord,
    client: AsyncOpenAI,
    *,
    contacts: Optional[List[Contact]] = None,
    settings: Settings | None = None,
) -> EnrichmentResult[str]:
    """Write a deep-dive markdown report for one record."""
    settings = settings or get_settings()
    prompt = _REPORT_PROMPT.format(
        industry=settings.industry,
        context=_record_context(record),
        categories=", ".join(c for c in CATEGORIES if c != DEFAULT_CATEGORY),
    )
    response = await _guarded(
        "Report",
        client.responses.create(model=settings.report_model, input=prompt),
    )
    cost = _price(response, settings)
    text = _response_text_or_raise(response, step="Report", cost=cost)

    data = first_object(normalize_response(text, "object").data) or {}
    body = data.get("body") if isinstance(data.get("body"), str) else None
    if body and body.strip():
        tags = [str(tag) for tag in data.get("tags") or [] if str(tag).strip()]
        content = render_report(
            record,
            body=body,
            category=_text_or_blank(data.get("category")) or "General",
            tags=tags,
            summary=_text_or_blank(data.get("summary")),
            contacts=contacts if contacts is not None else record.contacts,
        )
    else:
        content = render_report(
            record,
            body=text,
            contacts=contacts if contacts is not None else record.contacts,
        )
    return EnrichmentResult(payload=content, cost=cost)


async def generate_image(
    record: NewsRecord,
    client: AsyncOpenAI,
    *,
    settings: Settings | None = None,
) -> EnrichmentResult[Optional[str]]:
    """Generate an illustration; the payload is a PNG data URL or None when no asset came back."""
    settings = settings or get_settings()
    response = await _guarded(
        "Image",
        client.images.generate(
            model=settings.image_model,
            prompt=_IMAGE_PROMPT.format(title=record.title, company=record.company),
            size="1024x1024",
            n=1,
        ),
    )
    cost = _price(response, settings)
    encoded = next(
        (_field(item, "b64_json") for item in _field(response, "data") or [] if _field(item, "b64_json")),
        None,
    )
    if not encoded:
        logger.info("Image generation returned no asset for %s", record.id)
        return EnrichmentResult(payload=None, cost=cost)
    return EnrichmentResult(payload=f"data:image/png;base64,{encoded}", cost=cost)


async def find_contacts(
    record: NewsRecord,
    client: AsyncOpenAI,
    *,
    settings: Settings | None = None,
) -> EnrichmentResult[List[Contact]]:
    """Research people behind a story; only contacts with a personal profile link survive."""
    settings = settings or get_settings()
    response = await _guarded(
        "Contact research",
        client.responses.create(
            model=settings.search_model,
            input=_CONTACTS_PROMPT.format(context=_record_context(record)),
            tools=[{"type": settings.search_tool}],
        ),
    )
    cost = _price(response, settings, search_used=True)
    text = _response_text_or_raise(response, step="Contact research", cost=cost)
    contacts = validate_contacts(normalize_response(text, "array").data)
    return EnrichmentResult(payload=contacts, cost=cost)
