"""Lead import CLI commands.

Runs the same preview → validate → commit pipeline as the API against a local
CSV or XLSX file, and inspects existing import jobs.
"""

import asyncio
import uuid
from pathlib import Path
from typing import NoReturn

import typer

import_app = typer.Typer()


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _echo_summary(job) -> None:  # noqa: ANN001
    typer.echo(f"Job {job.id} [{job.status}] {job.source} {job.filename or ''}".rstrip())
    typer.echo(f"  Rows:     {job.preview_count}")
    typer.echo(f"  Valid:    {job.valid_count}")
    typer.echo(f"  Invalid:  {job.invalid_count}")
    typer.echo(f"  Created:  {job.created_count}")
    typer.echo(f"  Skipped:  {job.skipped_count}")


@import_app.command("leads")
def import_leads(
    file: Path = typer.Argument(  # noqa: B008
        ..., help="Path to a .csv or .xlsx lead file", exists=True, dir_okay=False
    ),
    name_column: str | None = typer.Option(None, "--name-column", help="Header holding the lead name"),
    phone_column: str | None = typer.Option(None, "--phone-column", help="Header holding the phone number"),
    email_column: str | None = typer.Option(None, "--email-column", help="Header holding the email address"),
    centre_column: str | None = typer.Option(None, "--centre-column", help="Header holding the preferred centre"),
    programme_column: str | None = typer.Option(
        None, "--programme-column", help="Header holding the programme interest"
    ),
    validate: bool = typer.Option(False, "--validate", help="Validate rows after creating the preview"),
    commit: bool = typer.Option(False, "--commit", help="Validate and commit valid rows as leads"),
) -> None:
    """Create a lead import job from a spreadsheet, optionally validating and committing it."""
    overrides = {
        "primary_name": name_column,
        "phone": phone_column,
        "email": email_column,
        "preferred_centre": centre_column,
        "programme_interest": programme_column,
    }
    asyncio.run(_import_leads(file, overrides, validate or commit, commit))


async def _import_leads(file_path: Path, overrides: dict[str, str | None], validate: bool, commit: bool) -> None:
    """Async implementation of lead import."""
    from academy_crm.core.config import get_settings
    from academy_crm.core.database import dispose_engine, init_engine, session_scope
    from academy_crm.lib.importer import LeadImportError, decode, detect_source, headers_of, propose_mapping
    from academy_crm.services.import_service import commit_job, create_preview, validate_job

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        async with session_scope() as session:
            try:
                source = detect_source(file_path.name)
                rows = decode(file_path.read_bytes(), source)
                mapping = propose_mapping(headers_of(rows)).merged(overrides)
                preview = await create_preview(
                    session,
                    source=source,
                    filename=file_path.name,
                    rows=rows,
                    mapping=mapping,
                    max_rows=settings.import_max_rows,
                    preview_size=settings.import_preview_size,
                )
                job = preview.job
                typer.echo(f"Import job created: {job.id}")
                for warning in preview.warnings:
                    typer.echo(f"  Warning [{warning['code']}]: {warning['message']}")

                if validate:
                    result = await validate_job(session, job.id, claim_ttl=settings.import_commit_claim_ttl)
                    job = result.job
                    typer.echo(f"Validated: {result.valid_count} valid, {result.invalid_count} invalid")

                if commit:
                    committed = await commit_job(
                        session,
                        job.id,
                        batch_size=settings.import_commit_batch_size,
                        claim_ttl=settings.import_commit_claim_ttl,
                    )
                    job = committed.job
                    typer.echo(f"Committed: {committed.created_count} created, {committed.skipped_count} skipped")
            except LeadImportError as exc:
                _fail(exc.message)

            typer.echo("")
            _echo_summary(job)
    finally:
        await dispose_engine()


@import_app.command("jobs")
def list_jobs(
    status: str | None = typer.Option(None, "--status", help="Filter by job status"),
    limit: int = typer.Option(20, "--limit", help="Number of jobs to show (max 50)"),
) -> None:
    """List recent lead import jobs, newest first."""
    asyncio.run(_list_jobs(status, limit))


async def _list_jobs(status: str | None, limit: int) -> None:
    """Async implementation of job listing."""
    from academy_crm.core.config import get_settings
    from academy_crm.core.database import dispose_engine, init_engine, session_scope
    from academy_crm.services.import_service import list_import_jobs

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        async with session_scope() as session:
            jobs, total = await list_import_jobs(
                session,
                status=status.upper() if status else None,
                page_size=min(limit, settings.import_list_max_page_size),
            )
            if not jobs:
                typer.echo("No import jobs found.")
                return
            for job in jobs:
                typer.echo(
                    f"{job.id}  {job.created_at:%Y-%m-%d %H:%M}  {job.status:<9}  "
                    f"{job.preview_count:>5} rows  {job.filename or job.source}"
                )
            typer.echo(f"\nShowing {len(jobs)} of {total} jobs")
    finally:
        await dispose_engine()


@import_app.command("show")
def show_job(
    job_id: str = typer.Argument(..., help="Import job ID"),
    errors: bool = typer.Option(False, "--errors", help="List invalid and skipped rows"),
) -> None:
    """Show the summary of a lead import job."""
    try:
        parsed = uuid.UUID(job_id)
    except ValueError:
        _fail(f"Invalid job ID: {job_id}")
    asyncio.run(_show_job(parsed, errors))


async def _show_job(job_id: uuid.UUID, errors: bool) -> None:
    """Async implementation of job display."""
    from academy_crm.core.config import get_settings
    from academy_crm.core.database import dispose_engine, init_engine, session_scope
    from academy_crm.lib.importer import RowState
    from academy_crm.services.import_service import get_import_job, list_import_rows

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        async with session_scope() as session:
            job = await get_import_job(session, job_id)
            if job is None:
                _fail(f"Import job {job_id} not found")
            _echo_summary(job)

            if errors:
                invalid, _ = await list_import_rows(
                    session, job_id, state=RowState.INVALID, page_size=settings.import_max_rows
                )
                for row in invalid:
                    typer.echo(f"  Row {row.row_number}: {', '.join(row.validation_errors or [])}")
                for entry in job.error_log or []:
                    typer.echo(f"  Row {entry['row_number']}: {entry['reason']}")
    finally:
        await dispose_engine()
