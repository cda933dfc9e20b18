"""CLI interface for autowriter."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import pydantic
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from autowriter.config import AutowriterConfig, load_config, merge_cli_overrides
from autowriter.errors import AutowriterError, ValidationError
from autowriter.generation.engine import JobEngine, JobSpec
from autowriter.generation.models import JobStatus, TargetMetadata
from autowriter.generation.templates import TemplateLibrary
from autowriter.providers.manager import ProviderManager
from autowriter.publishers import create_publisher
from autowriter.runner import Runner
from autowriter.scheduling.models import (
    Frequency,
    PostDefaults,
    ScheduleSpec,
    TopicSource,
    TopicSourceKind,
)
from autowriter.scheduling.scheduler import Scheduler
from autowriter.scheduling.store import ScheduleStore
from autowriter.scheduling.topics import TopicResolver
from autowriter.scheduling.triggers import TriggerStore

app = typer.Typer(
    name="autowriter",
    help="Generate articles with AI providers, one bounded step at a time.",
)
job_app = typer.Typer(help="Create, advance and inspect generation jobs.")
schedule_app = typer.Typer(help="Manage recurring schedules.")
provider_app = typer.Typer(help="Inspect and test AI providers.")
template_app = typer.Typer(help="List, export, import and delete article templates.")
app.add_typer(job_app, name="job")
app.add_typer(schedule_app, name="schedule")
app.add_typer(provider_app, name="provider")
app.add_typer(template_app, name="template")

console = Console()


@dataclass
class Services:
    """Everything a command needs, wired from one config."""

    config: AutowriterConfig
    providers: ProviderManager
    engine: JobEngine
    scheduler: Scheduler
    runner: Runner


def build_services(config: AutowriterConfig) -> Services:
    state_dir = config.storage.path
    providers = ProviderManager(config, state_dir)
    publisher = create_publisher(config.publisher.platform, config)
    engine = JobEngine.from_config(config, publisher, providers=providers)
    scheduler = Scheduler(
        ScheduleStore(state_dir),
        TriggerStore(state_dir),
        engine,
        topics=TopicResolver(recent_entries=config.scheduling.rss_recent_entries),
    )
    return Services(config, providers, engine, scheduler, Runner(engine, scheduler))


def _services(ctx: typer.Context) -> Services:
    obj = ctx.ensure_object(dict)
    if "services" not in obj:
        try:
            obj["services"] = build_services(obj["config"])
        except (ValueError, AutowriterError) as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(1) from exc
    return obj["services"]


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(1)


def _split(values: list[str] | None) -> list[str]:
    parts: list[str] = []
    for value in values or []:
        parts.extend(p.strip() for p in value.split(","))
    return [p for p in parts if p]


def _parse_when(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        _fail(f"Invalid date: {value} (use ISO format, e.g. 2024-01-15T09:00:00+00:00)")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from autowriter import __version__

        console.print(f"autowriter {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a TOML config file."),
    ] = None,
    state_dir: Annotated[
        Optional[Path],
        typer.Option("--state-dir", help="Directory for jobs, schedules and locks."),
    ] = None,
    provider: Annotated[
        Optional[str],
        typer.Option("--provider", help="AI provider (anthropic, openai, local)."),
    ] = None,
    publisher: Annotated[
        Optional[str],
        typer.Option("--publisher", help="Publishing platform (markdown, ghost, wordpress)."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log at DEBUG level."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Autowriter - AI article generation with jobs and schedules."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    try:
        config = merge_cli_overrides(
            load_config(config_path),
            state_dir=str(state_dir) if state_dir else None,
            provider=provider,
            publisher=publisher,
        )
    except pydantic.ValidationError as exc:
        console.print(f"[red]Error:[/red] Invalid configuration: {exc}")
        raise typer.Exit(1) from exc
    ctx.ensure_object(dict)["config"] = config


# ── Jobs ─────────────────────────────────────────────────────────


@job_app.command("create")
def job_create(
    ctx: typer.Context,
    topics: Annotated[list[str], typer.Argument(help="One topic per article.")],
    include: Annotated[
        Optional[list[str]], typer.Option("--include", "-i", help="Keywords to include.")
    ] = None,
    exclude: Annotated[
        Optional[list[str]], typer.Option("--exclude", "-x", help="Keywords to avoid.")
    ] = None,
    headings: Annotated[Optional[int], typer.Option("--headings", help="Number of sections.")] = None,
    template: Annotated[Optional[str], typer.Option("--template", "-t", help="Template id.")] = None,
    model: Annotated[Optional[str], typer.Option("--model", help="Model override.")] = None,
    author: Annotated[str, typer.Option("--author")] = "",
    category: Annotated[str, typer.Option("--category")] = "",
    tags: Annotated[Optional[list[str]], typer.Option("--tag")] = None,
    publish_at: Annotated[
        Optional[str], typer.Option("--publish-at", help="Future publish time (ISO).")
    ] = None,
    status: Annotated[str, typer.Option("--status", help="Post status override.")] = "",
) -> None:
    """Create a single or bulk job."""
    services = _services(ctx)
    spec = JobSpec(
        topics=topics,
        include_keywords=include or [],
        exclude_keywords=exclude or [],
        heading_count=headings,
        template_id=template,
        model=model,
        target=TargetMetadata(
            author=author,
            category=category,
            tags=_split(tags),
            publish_at=_parse_when(publish_at),
            post_status=status,
        ),
    )
    try:
        job = services.engine.create_job(spec)
    except AutowriterError as exc:
        _fail(str(exc))
    console.print(f"[green]Created {job.kind} job {job.id}[/green] with {job.total_items} item(s)")
    console.print(f"  Estimated: {job.estimated_tokens} tokens (${job.estimated_cost:.4f})")


@job_app.command("advance")
def job_advance(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job to advance.")],
) -> None:
    """Do the next unit of work on a job."""
    services = _services(ctx)
    result = services.engine.advance(job_id)
    color = {"advanced": "green", "busy": "yellow", "idle": "yellow"}.get(result.outcome, "red")
    console.print(f"[{color}]{result.outcome}[/{color}] {result.message}")
    if result.job_status is not None:
        console.print(f"  Job {result.job_status}: {result.progress:.0f}% complete")
    if result.job_finished:
        services.scheduler.record_finished_jobs()
    if result.outcome in ("not_found", "error"):
        raise typer.Exit(1)


@job_app.command("cancel")
def job_cancel(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument()],
    item_id: Annotated[Optional[str], typer.Option("--item", help="Cancel one item only.")] = None,
) -> None:
    """Cancel a pending or processing job (or one of its items)."""
    services = _services(ctx)
    if not services.engine.cancel(job_id, item_id):
        _fail(f"Nothing to cancel for {item_id or job_id}")
    services.scheduler.record_finished_jobs()
    console.print(f"[green]Cancelled {'item ' + item_id if item_id else 'job ' + job_id}[/green]")


@job_app.command("show")
def job_show(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument()],
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw record.")] = False,
) -> None:
    """Show one job and its items."""
    job = _services(ctx).engine.get_job(job_id)
    if job is None:
        _fail(f"No such job: {job_id}")
    if as_json:
        console.print_json(job.model_dump_json())
        return

    console.print(f"[bold]Job {job.id}[/bold] ({job.kind}) {job.status}, {job.progress:.0f}%")
    console.print(
        f"  Items: {job.completed_items} completed, {job.failed_items} failed, {job.total_items} total"
    )
    console.print(
        f"  Tokens: {job.actual_tokens} used / {job.estimated_tokens} estimated"
        f"  Cost: ${job.actual_cost:.4f} / ${job.estimated_cost:.4f}"
    )
    for item in sorted(job.items, key=lambda i: i.position):
        line = f"  - [{item.status}] {item.topic} (stage: {item.stage})"
        if item.content_id:
            line += f" -> {item.content_id}"
        console.print(line)
    for err in job.error_log:
        console.print(f"  [red]! {err.topic} at {err.stage}: {err.error}[/red]")


@job_app.command("list")
def job_list(
    ctx: typer.Context,
    status: Annotated[Optional[JobStatus], typer.Option("--status", help="Filter by status.")] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows.")] = 20,
) -> None:
    """List jobs, newest first."""
    jobs = _services(ctx).engine.list_jobs(status, limit=limit)
    if not jobs:
        console.print("[yellow]No jobs found.[/yellow]")
        return
    table = Table("ID", "Kind", "Status", "Progress", "Items", "Tokens", "Created")
    for job in jobs:
        table.add_row(
            job.id,
            str(job.kind),
            str(job.status),
            f"{job.progress:.0f}%",
            f"{job.completed_items}/{job.total_items}",
            str(job.actual_tokens),
            job.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@job_app.command("delete")
def job_delete(ctx: typer.Context, job_id: Annotated[str, typer.Argument()]) -> None:
    """Delete a job and its items."""
    if not _services(ctx).engine.delete_job(job_id):
        _fail(f"Could not delete {job_id} (missing, or an advance is running)")
    console.print(f"[green]Deleted job {job_id}[/green]")


@job_app.command("stats")
def job_stats(ctx: typer.Context) -> None:
    """Aggregate job statistics."""
    console.print(json.dumps(_services(ctx).engine.statistics().model_dump(), indent=2))


# ── Schedules ────────────────────────────────────────────────────


def _schedule_spec(
    *,
    name: str | None,
    frequency: Frequency | None,
    interval: int | None,
    cron: str | None,
    source: TopicSourceKind | None,
    topics: list[str] | None,
    keywords: list[str] | None,
    feeds: list[str] | None,
    template: str | None,
    title_prefix: str | None,
    status: str | None,
    category: str | None,
    tags: list[str] | None,
) -> ScheduleSpec:
    topic_source = None
    if source is not None or topics or keywords or feeds:
        topic_source = TopicSource(
            kind=source or TopicSourceKind.MANUAL,
            topics=_split(topics),
            keywords=_split(keywords),
            feeds=_split(feeds),
        )
    post_defaults = None
    if title_prefix is not None or status is not None or category is not None or tags:
        post_defaults = PostDefaults(
            title_prefix=title_prefix or "",
            post_status=status or "",
            category=category or "",
            tags=_split(tags),
        )
    return ScheduleSpec(
        name=name,
        frequency=frequency,
        interval_minutes=interval,
        cron_expression=cron,
        topic_source=topic_source,
        template_id=template,
        post_defaults=post_defaults,
    )


@schedule_app.command("create")
def schedule_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Schedule name.")],
    frequency: Annotated[Frequency, typer.Option("--frequency", "-f")] = Frequency.DAILY,
    interval: Annotated[Optional[int], typer.Option("--interval", help="Minutes, for 'interval'.")] = None,
    cron: Annotated[Optional[str], typer.Option("--cron", help="Expression, for 'custom_cron'.")] = None,
    source: Annotated[TopicSourceKind, typer.Option("--source")] = TopicSourceKind.MANUAL,
    topics: Annotated[Optional[list[str]], typer.Option("--topic")] = None,
    keywords: Annotated[Optional[list[str]], typer.Option("--keyword")] = None,
    feeds: Annotated[Optional[list[str]], typer.Option("--feed")] = None,
    template: Annotated[Optional[str], typer.Option("--template", "-t")] = None,
    title_prefix: Annotated[Optional[str], typer.Option("--title-prefix")] = None,
    status: Annotated[Optional[str], typer.Option("--status")] = None,
    category: Annotated[Optional[str], typer.Option("--category")] = None,
    tags: Annotated[Optional[list[str]], typer.Option("--tag")] = None,
    inactive: Annotated[bool, typer.Option("--inactive", help="Create without arming.")] = False,
) -> None:
    """Create a recurring schedule."""
    spec = _schedule_spec(
        name=name,
        frequency=frequency,
        interval=interval,
        cron=cron,
        source=source,
        topics=topics,
        keywords=keywords,
        feeds=feeds,
        template=template,
        title_prefix=title_prefix,
        status=status,
        category=category,
        tags=tags,
    )
    spec.is_active = not inactive
    try:
        schedule = _services(ctx).scheduler.create_schedule(spec)
    except AutowriterError as exc:
        _fail(str(exc))
    console.print(f"[green]Created schedule {schedule.id}[/green] ({schedule.name})")
    if schedule.next_run:
        console.print(f"  Next run: {schedule.next_run.isoformat()}")


@schedule_app.command("update")
def schedule_update(
    ctx: typer.Context,
    schedule_id: Annotated[str, typer.Argument()],
    name: Annotated[Optional[str], typer.Option("--name")] = None,
    frequency: Annotated[Optional[Frequency], typer.Option("--frequency", "-f")] = None,
    interval: Annotated[Optional[int], typer.Option("--interval")] = None,
    cron: Annotated[Optional[str], typer.Option("--cron")] = None,
    source: Annotated[Optional[TopicSourceKind], typer.Option("--source")] = None,
    topics: Annotated[Optional[list[str]], typer.Option("--topic")] = None,
    keywords: Annotated[Optional[list[str]], typer.Option("--keyword")] = None,
    feeds: Annotated[Optional[list[str]], typer.Option("--feed")] = None,
    template: Annotated[Optional[str], typer.Option("--template", "-t")] = None,
    title_prefix: Annotated[Optional[str], typer.Option("--title-prefix")] = None,
    status: Annotated[Optional[str], typer.Option("--status")] = None,
    category: Annotated[Optional[str], typer.Option("--category")] = None,
    tags: Annotated[Optional[list[str]], typer.Option("--tag")] = None,
) -> None:
    """Change fields of an existing schedule."""
    spec = _schedule_spec(
        name=name,
        frequency=frequency,
        interval=interval,
        cron=cron,
        source=source,
        topics=topics,
        keywords=keywords,
        feeds=feeds,
        template=template,
        title_prefix=title_prefix,
        status=status,
        category=category,
        tags=tags,
    )
    try:
        updated = _services(ctx).scheduler.update_schedule(schedule_id, spec)
    except ValidationError as exc:
        _fail(str(exc))
    if not updated:
        _fail(f"No such schedule: {schedule_id}")
    console.print(f"[green]Updated schedule {schedule_id}[/green]")


@schedule_app.command("toggle")
def schedule_toggle(
    ctx: typer.Context,
    schedule_id: Annotated[str, typer.Argument()],
    active: Annotated[bool, typer.Option("--on/--off", help="Activate or deactivate.")] = True,
) -> None:
    """Activate or deactivate a schedule."""
    if not _services(ctx).scheduler.toggle(schedule_id, active):
        _fail(f"No such schedule: {schedule_id}")
    console.print(f"Schedule {schedule_id} {'activated' if active else 'deactivated'}")


@schedule_app.command("fire")
def schedule_fire(ctx: typer.Context, schedule_id: Annotated[str, typer.Argument()]) -> None:
    """Fire a schedule now, creating its job."""
    result = _services(ctx).scheduler.fire(schedule_id)
    color = {"created": "green", "skipped": "yellow"}.get(result.status, "red")
    console.print(f"[{color}]{result.status}[/{color}] {result.message}")
    if result.next_run:
        console.print(f"  Next run: {result.next_run.isoformat()}")
    if result.status == "failed":
        raise typer.Exit(1)


@schedule_app.command("list")
def schedule_list(
    ctx: typer.Context,
    active_only: Annotated[bool, typer.Option("--active", help="Only active schedules.")] = False,
) -> None:
    """List schedules."""
    schedules = _services(ctx).scheduler.list_schedules(True if active_only else None)
    if not schedules:
        console.print("[yellow]No schedules found.[/yellow]")
        return
    table = Table("ID", "Name", "Frequency", "Active", "Runs", "Success", "Next run")
    for s in schedules:
        table.add_row(
            s.id,
            s.name,
            str(s.frequency),
            "yes" if s.is_active else "no",
            str(s.run_count),
            f"{s.success_rate:.0f}%",
            s.next_run.strftime("%Y-%m-%d %H:%M") if s.next_run else "-",
        )
    console.print(table)


@schedule_app.command("delete")
def schedule_delete(ctx: typer.Context, schedule_id: Annotated[str, typer.Argument()]) -> None:
    """Delete a schedule. Jobs it created are kept."""
    if not _services(ctx).scheduler.delete_schedule(schedule_id):
        _fail(f"No such schedule: {schedule_id}")
    console.print(f"[green]Deleted schedule {schedule_id}[/green]")


@schedule_app.command("cleanup")
def schedule_cleanup(
    ctx: typer.Context,
    days: Annotated[Optional[int], typer.Option("--days", help="Age threshold in days.")] = None,
) -> None:
    """Remove inactive schedules not touched for a while."""
    services = _services(ctx)
    removed = services.scheduler.cleanup_inactive(days or services.config.scheduling.cleanup_days)
    console.print(f"Removed {removed} inactive schedule(s)")


# ── Providers ────────────────────────────────────────────────────


@provider_app.command("test")
def provider_test(
    ctx: typer.Context,
    name: Annotated[Optional[str], typer.Argument(help="Provider (default: active).")] = None,
) -> None:
    """Send a tiny request to check credentials and connectivity."""
    try:
        result = _services(ctx).providers.test_provider(name)
    except ValidationError as exc:
        _fail(str(exc))
    if not result.ok:
        _fail(result.message)
    console.print(f"[green]OK[/green] {result.message}")


@provider_app.command("models")
def provider_models(
    ctx: typer.Context,
    name: Annotated[Optional[str], typer.Argument(help="Provider (default: active).")] = None,
) -> None:
    """List models and their cost per 1K tokens."""
    try:
        backend = _services(ctx).providers.get(name)
    except ValidationError as exc:
        _fail(str(exc))
    table = Table("Model", "Name", "Max tokens", "$/1K")
    for info in backend.available_models():
        table.add_row(info.id, info.name, str(info.max_tokens), f"{info.cost_per_1k_tokens:.5f}")
    console.print(table)


@provider_app.command("usage")
def provider_usage(ctx: typer.Context) -> None:
    """Request, token and cost counters per provider."""
    stats = _services(ctx).providers.usage_statistics()
    table = Table("Provider", "Active", "Configured", "Today", "This month", "Tokens", "Cost")
    for s in stats:
        table.add_row(
            s.name,
            "*" if s.active else "",
            "yes" if s.configured else "no",
            str(s.requests_today),
            str(s.requests_this_month),
            str(s.tokens_used),
            f"${s.estimated_cost:.4f}",
        )
    console.print(table)


@provider_app.command("suggest")
def provider_suggest(
    ctx: typer.Context,
    subject: Annotated[str, typer.Argument(help="Subject to brainstorm titles for.")],
    count: Annotated[int, typer.Option("--count", "-n")] = 5,
) -> None:
    """Ask the active provider for article title ideas."""
    try:
        titles = _services(ctx).providers.content_suggestions(subject, count)
    except AutowriterError as exc:
        _fail(str(exc))
    for title in titles:
        console.print(f"  - {title}")


# ── Templates ────────────────────────────────────────────────────


def _library(ctx: typer.Context) -> TemplateLibrary:
    return TemplateLibrary(ctx.ensure_object(dict)["config"].storage.path)


@template_app.command("list")
def template_list(
    ctx: typer.Context,
    category: Annotated[Optional[str], typer.Option("--category", help="Only this category.")] = None,
) -> None:
    """List built-in and custom article templates."""
    templates = _library(ctx).all(category)
    if not templates:
        console.print("[yellow]No templates found.[/yellow]")
        return
    table = Table("ID", "Name", "Category", "Tokens", "Used", "Built-in")
    for template in templates:
        table.add_row(
            template.id,
            template.name,
            template.category,
            str(template.token_budget),
            str(template.usage_count),
            "yes" if template.builtin else "",
        )
    console.print(table)


@template_app.command("categories")
def template_categories(ctx: typer.Context) -> None:
    """Template count per category."""
    for category, count in _library(ctx).categories().items():
        console.print(f"  {category}: {count}")


@template_app.command("show")
def template_show(ctx: typer.Context, template_id: Annotated[str, typer.Argument()]) -> None:
    """Show a template's sections and settings."""
    template = _library(ctx).get(template_id)
    if template is None:
        _fail(f"No such template: {template_id}")
    console.print(f"[bold]{template.name}[/bold] ({template.id}, {template.category})")
    if template.description:
        console.print(f"  {template.description}")
    for section in template.sections:
        console.print(
            f"  - {section.key} ({section.stage}, {section.max_tokens} tokens) "
            f"{escape(section.prompt)}"
        )


@template_app.command("export")
def template_export(
    ctx: typer.Context,
    template_id: Annotated[str, typer.Argument()],
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write to a file.")] = None,
) -> None:
    """Export a template as JSON."""
    from autowriter import __version__

    exported = _library(ctx).export(template_id, version=__version__)
    if exported is None:
        _fail(f"No such template: {template_id}")
    text = json.dumps(exported, indent=2)
    if output is None:
        console.print_json(text)
        return
    output.write_text(text, encoding="utf-8")
    console.print(f"[green]Exported {template_id} to {output}[/green]")


@template_app.command("import")
def template_import(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="JSON file from 'template export'.")],
) -> None:
    """Import a template as a new custom template."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _fail(f"Cannot read {path}: {exc}")
    try:
        template = _library(ctx).import_template(raw)
    except AutowriterError as exc:
        _fail(str(exc))
    console.print(f"[green]Imported template {template.id}[/green] ({template.name})")


@template_app.command("delete")
def template_delete(ctx: typer.Context, template_id: Annotated[str, typer.Argument()]) -> None:
    """Delete a custom template. Built-in templates cannot be deleted."""
    if not _library(ctx).delete(template_id):
        _fail(f"Could not delete {template_id} (missing or built-in)")
    console.print(f"[green]Deleted template {template_id}[/green]")


# ── Driving ──────────────────────────────────────────────────────


@app.command()
def tick(ctx: typer.Context) -> None:
    """Fire due schedules and advance the oldest open job once."""
    report = _services(ctx).runner.tick()
    for fired in report.fired:
        console.print(f"Fired {fired.schedule_id}: {fired.status} {fired.message}")
    if report.advanced is None:
        console.print("No open jobs.")
    else:
        console.print(
            f"Job {report.advanced.job_id}: {report.advanced.outcome} {report.advanced.message}"
        )


@app.command()
def worker(
    ctx: typer.Context,
    interval: Annotated[
        Optional[float], typer.Option("--interval", help="Seconds between ticks.")
    ] = None,
) -> None:
    """Run ticks in a loop until interrupted."""
    services = _services(ctx)
    services.runner.run_forever(interval or float(services.config.scheduling.tick_interval))


