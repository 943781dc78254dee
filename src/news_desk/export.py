"""Deterministic file names and download artifacts for generated content."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from pathlib import Path

from .file_lock import locked_path
from .models import NewsRecord

SLUG_MAX_LENGTH = 60
_NON_SLUG = re.compile(r"[^a-z0-9]")
_NON_DATE = re.compile(r"[^0-9A-Za-z-]")
_DATA_URL = re.compile(r"^data:(?P<media>[\w.+/-]+)?;base64,(?P<data>.*)$", re.DOTALL)


@dataclass(frozen=True)
class ExportArtifact:
    file_name: str
    media_type: str
    body: bytes


def slugify_title(title: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Lowercase the title and replace every non [a-z0-9] character with '-'."""
    return _NON_SLUG.sub("-", title.lower())[:max_length]


def export_basename(record: NewsRecord) -> str:
    date_part = _NON_DATE.sub("-", record.date.strip()) or "undated"
    return f"{date_part}-{slugify_title(record.title)}"


def report_file_name(record: NewsRecord) -> str:
    return f"{export_basename(record)}.md"


def image_file_name(record: NewsRecord) -> str:
    return f"{export_basename(record)}.png"


def decode_data_url(data_url: str) -> bytes:
    """Decode a base64 data URL (or bare base64 text) into bytes."""
    match = _DATA_URL.match(data_url.strip())
    encoded = match.group("data") if match else data_url.strip()
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Image data is not valid base64.") from exc


def report_artifact(
    content: str, *, record: NewsRecord | None = None, file_name: str | None = None
) -> ExportArtifact:
    """Markdown download; named by ``file_name`` or, failing that, by the record."""
    if file_name is None:
        if record is None:
            raise ValueError("A record or file name is required.")
        file_name = report_file_name(record)
    return ExportArtifact(
        file_name=file_name,
        media_type="text/markdown",
        body=content.encode("utf-8"),
    )


def image_artifact(record: NewsRecord) -> ExportArtifact:
    if not record.generated_image:
        raise ValueError("Record has no generated image.")
    return ExportArtifact(
        file_name=image_file_name(record),
        media_type="image/png",
        body=decode_data_url(record.generated_image),
    )


def write_artifact(artifact: ExportArtifact, directory: Path) -> Path:
    """Write the artifact under ``directory`` (created if missing) and return its path."""
    target = directory.expanduser() / artifact.file_name
    target.parent.mkdir(parents=True, exist_ok=True)
    with locked_path(target):
        target.write_bytes(artifact.body)
    return target
