"""Command-line entry points for the news desk pipeline."""

import asyncio
import dataclasses
import json
import logging
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import typer
from pydantic import BaseModel
from rich import print as rprint
from rich.logging import RichHandler
from rich.table import Table

from .config import get_settings
from .enrichment import CATEGORIES
from .errors import MissingCredential, PublishStateError
from .export import report_artifact, write_artifact
from .models import GeneratedReport, PublishConfig, ReportStatus
from .publish import PublishWorkflow
from .session import DashboardSession

app = typer.Typer(
    help="Discover industry news, enrich stories, and publish reports to GitHub."
)

_STATUS_STYLE = {
    ReportStatus.PENDING: "white",
    ReportStatus.UPLOADING: "cyan",
    ReportStatus.SUCCESS: "green",
    ReportStatus.ERROR: "red",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _to_plain(value: Any) -> Any:
    """
    Convert dataclasses, pydantic models, enums, Paths, and dates into JSON-serializable
    primitives. Sets are returned as lists to avoid JSON serialization errors.
    """
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value):
        return _to_plain(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_plain(item) for item in value]
    return value


def _collect_report_paths(inputs: List[Path]) -> List[Path]:
    paths: List[Path] = []
    for path in inputs:
        if path.is_dir():
            paths.extend(sorted(p for p in path.iterdir() if p.suffix.lower() == ".md"))
        else:
            paths.append(path)
    return paths


def _load_report(path: Path) -> GeneratedReport:
    content = path.read_text(encoding="utf-8")
    title = path.stem
    for line in content.splitlines():
        if line.startswith("title:"):
            raw = line.split(":", 1)[1].strip()
            try:
                title = json.loads(raw)
            except json.JSONDecodeError:
                title = raw.strip("\"'")
            break
    return GeneratedReport(title=title, file_name=path.name, content=content)


def _print_status(index: int, report: GeneratedReport) -> None:
    style = _STATUS_STYLE[report.status]
    suffix = f": {report.error_message}" if report.error_message else ""
    rprint(f"[{style}]{index + 1}. {report.file_name} {report.status.value}{suffix}[/{style}]")


def _records_table(records) -> Table:
    table = Table(show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Date")
    table.add_column("Company")
    table.add_column("Title")
    table.add_column("URL", overflow="fold")
    for idx, record in enumerate(records, start=1):
        table.add_row(str(idx), record.date, record.company, record.title, record.display_url or "")
    return table


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
):
    _configure_logging(verbose)


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8000, help="Port to listen on."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
):
    """Run the dashboard API with uvicorn."""
    import uvicorn

    uvicorn.run("news_desk.server:app", host=host, port=port, reload=reload)


@app.command("discover")
def discover_command(
    query: Optional[str] = typer.Argument(None, help="Optional company or topic focus."),
    category: str = typer.Option(
        "All News", "--category", "-c", help=f"One of: {', '.join(CATEGORIES)}."
    ),
    days: Optional[int] = typer.Option(
        None, "--days", "-d", help="Recency window in days (default from settings)."
    ),
    out: Optional[Path] = typer.Option(
        None, "--out", "-o", help="Optional path to write the results as JSON."
    ),
):
    """Search for recent industry news and print the structured records."""
    if category not in CATEGORIES:
        raise typer.BadParameter(f"category must be one of: {', '.join(CATEGORIES)}.")
    if days is not None and days < 1:
        raise typer.BadParameter("days must be >= 1.")

    session = DashboardSession()
    outcome = asyncio.run(session.discover(query, category=category, days=days))

    if outcome.status == "error":
        rprint(f"[red]{outcome.error}[/red]")
        raise typer.Exit(code=1)

    if outcome.records:
        rprint(_records_table(outcome.records))
    elif outcome.raw_text:
        rprint("[yellow]No structured items; raw response follows.[/yellow]")
        rprint(outcome.raw_text)
    for source in outcome.sources:
        rprint(f"[cyan]Source:[/cyan] {source.title or source.uri} ({source.uri})")
    rprint(
        f"[cyan]Estimated cost: {session.ledger.total:.4f} {session.settings.currency}[/cyan]"
    )

    if out:
        out.write_text(
            json.dumps(_to_plain(outcome), ensure_ascii=False, indent=2), encoding="utf-8"
        )
        rprint(f"[cyan]Wrote output to {out}[/cyan]")


@app.command("extract")
def extract_command(
    url: str = typer.Argument(..., help="Article URL to analyse."),
    action: str = typer.Option(
        "report",
        "--action",
        "-a",
        help="What to do with the extracted story: 'report' or 'research'.",
        case_sensitive=False,
    ),
    outdir: Path = typer.Option(
        Path("."), "--outdir", "-o", help="Directory for the downloaded report."
    ),
):
    """Extract a story from a URL, then write a report or research its contacts."""
    action_normalized = action.lower()
    if action_normalized not in {"report", "research"}:
        raise typer.BadParameter("action must be 'report' or 'research'.")

    session = DashboardSession()
    outcome = asyncio.run(session.ingest_url(url, action_normalized))
    if outcome.status == "error":
        rprint(f"[red]{outcome.error}[/red]")
        raise typer.Exit(code=1)

    record = session.store.get(outcome.record_id)
    rprint(_records_table([record]))
    if outcome.report is not None:
        artifact = report_artifact(outcome.report.content, file_name=outcome.report.file_name)
        path = write_artifact(artifact, outdir)
        rprint(f"[green]Wrote report to {path}[/green]")
    elif record.contacts:
        for contact in record.contacts:
            rprint(f"[green]{contact.name}[/green] {contact.title or ''} {contact.profile_link}")
    else:
        rprint("[yellow]No contacts with a verified profile link were found.[/yellow]")
    rprint(
        f"[cyan]Estimated cost: {session.ledger.total:.4f} {session.settings.currency}[/cyan]"
    )


@app.command("publish")
def publish_command(
    reports: List[Path] = typer.Argument(
        ..., help="Markdown report files or directories containing them."
    ),
    owner: Optional[str] = typer.Option(None, "--owner", help="Repository owner."),
    repository: Optional[str] = typer.Option(None, "--repo", help="Repository name."),
    base_path: Optional[str] = typer.Option(None, "--path", help="Folder inside the repository."),
    token: str = typer.Option(
        "", "--token", envvar="GITHUB_TOKEN", help="GitHub token (cached for later runs)."
    ),
):
    """Upload markdown reports to GitHub one at a time, reporting each result."""
    settings = get_settings()
    paths = _collect_report_paths(reports)
    if not paths:
        raise typer.BadParameter("No markdown report files found.")

    try:
        config = PublishConfig(
            credential=token,
            owner=owner or settings.github_owner,
            repository=repository or settings.github_repository,
            base_path=base_path if base_path is not None else settings.github_base_path,
        )
    except ValueError:
        raise typer.BadParameter("--owner and --repo are required.")

    workflow = PublishWorkflow()
    workflow.stage(_load_report(path) for path in paths)
    session = DashboardSession(workflow=workflow)

    try:
        batch = asyncio.run(session.approve(config, on_update=_print_status))
    except MissingCredential as exc:
        raise typer.BadParameter(str(exc))
    except PublishStateError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    rprint(
        f"[cyan]Publish complete: {len(batch.successes)} succeeded, "
        f"{len(batch.failures)} failed.[/cyan]"
    )
    if batch.failures:
        raise typer.Exit(code=1)


def main():
    app()


if __name__ == "__main__":
    main()
