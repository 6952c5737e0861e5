"""mailtidy CLI: Typer app with all subcommands."""

from __future__ import annotations

import asyncio
from typing import NoReturn, Optional

import typer

app = typer.Typer(
    name="mailtidy",
    help="Sync Gmail metadata locally and find what is safe to clean up.",
    no_args_is_help=True,
)

# --- Database commands ---

db_app = typer.Typer(help="Database management commands.")
app.add_typer(db_app, name="db")

reports_app = typer.Typer(help="Saved analysis reports.", no_args_is_help=True)
app.add_typer(reports_app, name="reports")


def _context():
    from mailtidy.context import AppContext

    return AppContext()


_REAUTH_HINT = "Re-authenticate by deleting the token file and running again."


def _fail(action: str, error: Exception) -> NoReturn:
    from mailtidy.errors import is_auth_error

    typer.echo(f"{action} failed: {error}", err=True)
    if is_auth_error(error):
        typer.echo(_REAUTH_HINT, err=True)
    raise typer.Exit(1)


def _resolve_user(ctx, user: str | None) -> str:
    from googleapiclient.errors import HttpError

    from mailtidy.errors import MailtidyError

    if user:
        return user
    try:
        return asyncio.run(ctx.user_email())
    except (MailtidyError, HttpError, OSError) as e:
        _fail("Looking up the Gmail account", e)


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


@db_app.callback(invoke_without_command=True)
def db_callback(
    ctx: typer.Context,
    reset: bool = typer.Option(False, "--reset", help="Wipe and recreate the database."),
    stats: bool = typer.Option(False, "--stats", help="Show row counts for all tables."),
    migrate: bool = typer.Option(False, "--migrate", help="Run pending schema migrations."),
):
    """Database management."""
    from mailtidy.config import load_config
    from mailtidy.database import db_stats, get_db, init_db, migrate_db, reset_db

    config = load_config()

    if reset:
        conn = reset_db(config)
        typer.echo("Database reset and initialized.")
        conn.close()
        return

    if stats:
        conn = get_db(config)
        init_db(conn)
        s = db_stats(conn)
        typer.echo("Table row counts:")
        for table, count in s.items():
            status = f"{count}" if count >= 0 else "missing"
            typer.echo(f"  {table:30s} {status}")
        conn.close()
        return

    if migrate:
        conn = get_db(config)
        actions = migrate_db(conn)
        init_db(conn)
        for action in actions:
            typer.echo(f"  {action}")
        typer.echo(f"Schema migrations applied ({len(actions)} changes).")
        conn.close()
        return

    typer.echo(ctx.get_help())


# --- Sync commands ---

@app.command()
def sync(
    time_range: str = typer.Option("30d", "--range", "-r", help="7d, 30d, 3m, 6m, 1y or all."),
    include_spam: bool = typer.Option(False, "--include-spam", help="Also sync spam."),
    include_trash: bool = typer.Option(False, "--include-trash", help="Also sync trash."),
    max_size: int = typer.Option(0, "--max-size", help="Skip emails larger than this many MB (0 = no limit)."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner. Default: the authenticated account."),
):
    """Mirror Gmail message metadata into the local database."""
    from googleapiclient.errors import HttpError

    from mailtidy.errors import MailtidyError
    from mailtidy.models import SyncOptions, TimeRange

    try:
        options = SyncOptions(
            time_range=TimeRange(time_range),
            exclude_spam=not include_spam,
            exclude_trash=not include_trash,
            max_email_size_mb=max_size,
        )
    except ValueError:
        typer.echo(f"Unknown range: {time_range}. Use: 7d, 30d, 3m, 6m, 1y, all", err=True)
        raise typer.Exit(1)

    ctx = _context()
    try:
        user_email = _resolve_user(ctx, user)
        typer.echo(f"Syncing {user_email} ({options.time_range.value})...")
        result = asyncio.run(ctx.sync_engine().sync(user_email, options))
    except (MailtidyError, HttpError) as e:
        _fail("Sync", e)
    finally:
        ctx.close()

    typer.echo(
        f"Sync complete: {result.total_emails} emails processed, "
        f"{result.new_emails} new, {result.deleted_emails} removed."
    )


@app.command()
def status(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner."),
):
    """Show the sync status and local email count."""
    from mailtidy.gmail.sync import get_sync_status

    ctx = _context()
    try:
        user_email = _resolve_user(ctx, user)
        s = get_sync_status(ctx.db, user_email, ctx.config.sync.stuck_after_minutes)
    finally:
        ctx.close()

    typer.echo(f"User:          {user_email}")
    typer.echo(f"In progress:   {'yes' if s.in_progress else 'no'}")
    typer.echo(f"Last sync:     {s.last_sync or 'never'}")
    typer.echo(f"Local emails:  {s.total_emails}")
    if s.error_message:
        typer.echo(f"Last error:    {s.error_message}")


@app.command("reset-sync")
def reset_sync(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner."),
):
    """Clear a sync that is stuck in progress."""
    from mailtidy.gmail.sync import reset_sync_status

    ctx = _context()
    try:
        reset_sync_status(ctx.db, _resolve_user(ctx, user))
    finally:
        ctx.close()
    typer.echo("Sync status reset.")


# --- Analysis ---

@app.command()
def analyze(
    query: str = typer.Option("newer_than:30d", "--query", "-q", help="Gmail search query."),
    description: str = typer.Option("", "--description", "-d", help="Label for the report."),
    limit: int = typer.Option(100, "--limit", "-n", help="Maximum emails to analyze."),
    mode: str = typer.Option("auto", "--mode", "-m", help="fast, full or auto."),
    sender_frequency: bool = typer.Option(False, "--senders", help="Sender frequency report instead of cleanup."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner."),
):
    """Classify emails and save a cleanup report."""
    from googleapiclient.errors import HttpError

    from mailtidy.costs import format_cost
    from mailtidy.errors import MailtidyError
    from mailtidy.models import AnalysisMode, AnalysisRequest, AnalysisType

    try:
        request = AnalysisRequest(
            query=query,
            description=description,
            limit=limit,
            mode=AnalysisMode(mode),
            analysis_type=AnalysisType.SENDER_FREQUENCY if sender_frequency else AnalysisType.CLEANUP,
        )
    except ValueError:
        typer.echo(f"Unknown mode: {mode}. Use: fast, full, auto", err=True)
        raise typer.Exit(1)

    ctx = _context()
    try:
        user_email = _resolve_user(ctx, user)
        report = asyncio.run(ctx.analysis_engine().analyze(user_email, request))
    except (MailtidyError, HttpError) as e:
        _fail("Analysis", e)
    finally:
        ctx.close()

    typer.echo(f"Report {report.id}: {report.total_emails} emails analyzed")
    if request.analysis_type == AnalysisType.SENDER_FREQUENCY:
        for d in report.domains[:10]:
            typer.echo(
                f"  {d.domain}: {d.total_count} emails ({d.percentage:.1f}%), "
                f"{d.unique_senders} senders"
            )
            for s in d.senders[:5]:
                typer.echo(f"    {s.count:5d}  {s.percentage:5.1f}%  {s.sender_email}")
        return

    typer.echo(f"  Delete: {len(report.deletion_candidates)}  Keep: {len(report.keep_candidates)}")
    typer.echo(f"  Potential savings: {_format_size(report.potential_savings)}")
    typer.echo(
        f"  Tokens: {report.token_usage.total_tokens} in {report.token_usage.ai_request_count} "
        f"requests, est. cost {format_cost(report.estimated_cost)}"
    )


# --- Reports ---

@reports_app.command("list")
def reports_list(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner."),
):
    """List saved reports, newest first."""
    from mailtidy import store

    ctx = _context()
    try:
        rows = store.list_reports(ctx.db, _resolve_user(ctx, user))
    finally:
        ctx.close()

    if not rows:
        typer.echo("No reports yet.")
        return
    for r in rows:
        typer.echo(
            f"{r['id']}  {r['created_at']}  {r['analysis_type']:16s} "
            f"{r['total_emails']:5d} emails  {r['deletion_candidates']:5d} to delete"
        )


@reports_app.command("show")
def reports_show(
    report_id: str = typer.Argument(..., help="Report ID."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner."),
):
    """Show one report's candidates."""
    from mailtidy import store
    from mailtidy.errors import ReportNotFoundError

    ctx = _context()
    try:
        report = store.get_report(ctx.db, _resolve_user(ctx, user), report_id)
    except ReportNotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    finally:
        ctx.close()

    typer.echo(f"Report {report['id']} ({report['analysis_type']}), {report['total_emails']} emails")
    for label, key in (("DELETE", "deletion_candidates_list"), ("KEEP", "keep_candidates_list")):
        candidates = report[key]
        if not candidates:
            continue
        typer.echo(f"{label} ({len(candidates)}):")
        for c in candidates:
            typer.echo(f"  {c['gmail_id']}  [{c['category']}] {c['subject'][:60]}  <{c['sender_email']}>")
    if report["senders"]:
        typer.echo("Senders:")
        for s in report["senders"][:20]:
            typer.echo(f"  {s['count']:5d}  {s['sender_email']}")


@reports_app.command("delete")
def reports_delete(
    report_id: str = typer.Argument(..., help="Report ID."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner."),
):
    """Delete a report with its candidates and senders."""
    from mailtidy import store
    from mailtidy.errors import ReportNotFoundError

    ctx = _context()
    try:
        store.delete_report(ctx.db, _resolve_user(ctx, user), report_id)
    except ReportNotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    finally:
        ctx.close()
    typer.echo(f"Deleted report {report_id}.")


@app.command()
def move(
    report_id: str = typer.Argument(..., help="Report ID."),
    email_id: str = typer.Argument(..., help="Gmail message ID."),
    to: str = typer.Option(..., "--to", help="keep or delete."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner."),
):
    """Move a candidate between the delete and keep lists."""
    from mailtidy import store
    from mailtidy.errors import MailtidyError
    from mailtidy.models import Recommendation

    if to not in ("keep", "delete"):
        typer.echo("--to must be keep or delete", err=True)
        raise typer.Exit(1)

    ctx = _context()
    try:
        counts = store.move_candidate(
            ctx.db, _resolve_user(ctx, user), report_id, email_id, Recommendation(to)
        )
    except MailtidyError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    finally:
        ctx.close()
    typer.echo(
        f"Moved {email_id} to {to}. Delete: {counts['deletion_candidates']}, "
        f"keep: {counts['keep_candidates']}."
    )


@app.command()
def delete(
    email_ids: Optional[list[str]] = typer.Argument(None, help="Gmail message IDs."),
    report_id: Optional[str] = typer.Option(None, "--report", help="Delete every deletion candidate of this report."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Mailbox owner."),
):
    """Permanently delete emails from Gmail."""
    from googleapiclient.errors import HttpError

    from mailtidy import store
    from mailtidy.errors import MailtidyError, ReportNotFoundError

    ctx = _context()
    try:
        user_email = _resolve_user(ctx, user)
        ids = list(email_ids or [])
        if report_id:
            try:
                report = store.get_report(ctx.db, user_email, report_id)
            except ReportNotFoundError as e:
                typer.echo(str(e), err=True)
                raise typer.Exit(1)
            ids.extend(c["gmail_id"] for c in report["deletion_candidates_list"])

        if not ids:
            typer.echo("Nothing to delete.")
            return
        if not yes:
            typer.confirm(f"Permanently delete {len(ids)} emails?", abort=True)

        try:
            result = asyncio.run(ctx.cleaner().delete_messages(user_email, ids))
        except (MailtidyError, HttpError) as e:
            _fail("Deletion", e)
    finally:
        ctx.close()

    typer.echo(result.summary)
    for failure in result.failed[:20]:
        typer.echo(f"  {failure['id']}: {failure['error']}", err=True)
    if result.requires_reauth:
        typer.echo(_REAUTH_HINT, err=True)
        raise typer.Exit(1)


# --- Web ---

@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address."),
    port: int = typer.Option(8000, "--port", "-p", help="Port."),
):
    """Serve the JSON API."""
    import uvicorn

    from mailtidy.web.app import create_app

    uvicorn.run(create_app(), host=host, port=port)
