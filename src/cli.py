"""CLI for the household ledger: trigger and inspect recurring transactions."""

import asyncio
import sys
from datetime import date, datetime
from typing import Optional

import click

from src import __version__
from src.audit import AuditLogger, configure_logging
from src.config import get_settings, validate_all_settings
from src.models.recurring import Frequency, ProcessingOutcome
from src.orchestrator import RecurringScheduler, create_app_components
from src.scheduling import BatchAbortedError, compute_next_due_date, is_due
from src.services.storage import NotFoundError, PersistenceError
from src.services.storage.memory import InMemoryLedgerStorage, InMemoryTemplateStorage

DATE_TYPE = click.DateTime(formats=["%Y-%m-%d"])


def _as_date(value: Optional[datetime]) -> Optional[date]:
    return value.date() if value else None


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
def cli(verbose: bool) -> None:
    """Household ledger: materialize recurring transactions."""
    app = get_settings().app
    configure_logging("DEBUG" if verbose else app.log_level, app.log_format)


def _live_scheduler() -> RecurringScheduler:
    """The Sheets-backed scheduler; raises when storage is not configured."""
    return create_app_components(fallback_to_memory=False)


async def _dry_run_scheduler() -> RecurringScheduler:
    """Copy the configured templates into memory so a batch writes nothing."""
    source = create_app_components()
    templates = await source.list_templates(refresh=True)
    return RecurringScheduler(
        InMemoryTemplateStorage(templates),
        InMemoryLedgerStorage(),
        audit_logger=AuditLogger(),
    )


async def _run(run_date: Optional[date], memory: bool):
    scheduler = await _dry_run_scheduler() if memory else _live_scheduler()
    return await scheduler.process_all_due(run_date)


@cli.command()
@click.option("--date", "run_date", type=DATE_TYPE, help="Process as of this day (YYYY-MM-DD)")
@click.option("--memory", is_flag=True, help="Dry run: write entries to memory only")
def run(run_date: Optional[datetime], memory: bool) -> None:
    """Process every due recurring template."""
    try:
        report = asyncio.run(_run(_as_date(run_date), memory))
    except BatchAbortedError as exc:
        report = exc.report
        click.echo(f"Batch aborted: {exc.cause}")
    except PersistenceError as exc:
        click.echo(f"Storage error: {exc}")
        sys.exit(1)

    for result in report.results:
        line = f"  {result.outcome.value:<12} {result.template_id or '-':<16} {result.description}"
        if result.outcome == ProcessingOutcome.MATERIALIZED and result.next_due:
            line += f" (next due {result.next_due.isoformat()})"
        elif result.error_message:
            line += f" ({result.error_message})"
        click.echo(line)

    click.echo(report.summary())
    if report.has_failures or report.finished_at is None:
        sys.exit(1)


@cli.command("list")
@click.option("--date", "as_of", type=DATE_TYPE, help="Evaluate due-ness as of this day")
def list_cmd(as_of: Optional[datetime]) -> None:
    """List recurring templates with their next due date."""
    today = _as_date(as_of) or date.today()
    try:
        templates = asyncio.run(_live_scheduler().list_templates(refresh=True))
    except PersistenceError as exc:
        click.echo(f"Storage error: {exc}")
        sys.exit(1)

    if not templates:
        click.echo("No recurring templates found")
        return

    click.echo(f"{'ID':<16} {'Frequency':<10} {'Next due':<12} {'Status':<9} {'Description'}")
    click.echo("-" * 80)
    for template in templates:
        if template.frequency:
            frequency = template.frequency.value
        else:
            frequency = template.frequency_text or "?"
        next_due = template.next_due.isoformat() if template.next_due else "-"
        if not template.active:
            status = "inactive"
        elif is_due(template, today):
            status = "DUE"
        else:
            status = "active"
        click.echo(
            f"{template.id:<16} {frequency:<10} {next_due:<12} {status:<9} {template.description}"
        )


def _set_active(template_id: str, active: bool) -> None:
    try:
        asyncio.run(_live_scheduler().set_active(template_id, active))
    except NotFoundError as exc:
        click.echo(str(exc))
        sys.exit(1)
    except PersistenceError as exc:
        click.echo(f"Storage error: {exc}")
        sys.exit(1)
    click.echo(f"{template_id} is now {'active' if active else 'inactive'}")


@cli.command()
@click.argument("template_id")
def activate(template_id: str) -> None:
    """Mark a template active."""
    _set_active(template_id, True)


@cli.command()
@click.argument("template_id")
def deactivate(template_id: str) -> None:
    """Mark a template inactive; its schedule is kept."""
    _set_active(template_id, False)


@cli.command("next-due")
@click.option(
    "--frequency",
    required=True,
    type=click.Choice([f.value for f in Frequency], case_sensitive=False),
)
@click.option("--start", "start_date", required=True, type=DATE_TYPE)
@click.option("--day-of-month", type=int, help="1-31")
@click.option("--day-of-week", type=int, help="0-6, 0 = Sunday")
@click.option("--last", "last_processed", type=DATE_TYPE, help="Last processed day")
@click.option("--today", type=DATE_TYPE, help="Reference day (default: today)")
def next_due(
    frequency: str,
    start_date: datetime,
    day_of_month: Optional[int],
    day_of_week: Optional[int],
    last_processed: Optional[datetime],
    today: Optional[datetime],
) -> None:
    """Preview the next due date of a schedule."""
    result = compute_next_due_date(
        frequency,
        _as_date(start_date),
        day_of_month=day_of_month,
        day_of_week=day_of_week,
        last_processed=_as_date(last_processed),
        today=_as_date(today),
    )
    if result is None:
        click.echo("Cannot schedule: a required day of month / day of week is missing or invalid")
        sys.exit(1)
    click.echo(result.isoformat())


@cli.command("check-config")
def check_config() -> None:
    """Validate configuration from the environment and .env."""
    results = validate_all_settings()
    ok = True
    for name in ("google_sheets", "scheduler", "app"):
        if results.get(name):
            click.echo(f"  ok      {name}")
        else:
            ok = False
            click.echo(f"  invalid {name}: {results.get(f'{name}_error', 'unknown error')}")
    if not ok:
        sys.exit(1)
