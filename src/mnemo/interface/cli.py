"""mnemo CLI: queue management, orphan resolution and interactive review sessions."""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import typer

from mnemo.application.config import resolve_config
from mnemo.application.factory import Services, build_services
from mnemo.consts import VERSION
from mnemo.domain.errors import MnemoError, NotFoundError
from mnemo.domain.models import (
    FolderCriteria,
    Queue,
    QueueOrderStrategy,
    Rating,
    SelectionCriteria,
    TagCriteria,
)

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="mnemo: spaced-repetition review queues for Markdown vaults.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Subgroups
# ---------------------------------------------------------------------------

queue_app = typer.Typer(help="Create, sync and inspect review queues.", no_args_is_help=True)
app.add_typer(queue_app, name="queue")

orphans_app = typer.Typer(help="Resolve cards whose notes were deleted.", no_args_is_help=True)
app.add_typer(orphans_app, name="orphans")

config_app = typer.Typer(help="Manage mnemo configuration.")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Global callback and helpers
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    vault: Annotated[
        Path | None,
        typer.Option("--vault", help="Vault root. Defaults to 'vault_root' in config, or CWD."),
    ] = None,
    data_file: Annotated[
        Path | None, typer.Option("--data-file", help="Scheduling data file override.")
    ] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for mnemo."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {"vault_root": vault, "data_file": data_file}
    ctx.obj["verbose"] = verbose

    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.getLogger().setLevel(level)


@contextmanager
def _services(ctx: typer.Context) -> Iterator[Services]:
    """Build services for this invocation, flush on exit, and render domain errors."""
    obj = ctx.obj or {}
    config = resolve_config(obj.get("overrides"))
    services = None
    try:
        services = build_services(config)
        yield services
    except MnemoError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1)
    finally:
        if services is not None:
            services.close()


def _find_queue(services: Services, id_or_name: str) -> Queue:
    queue = services.queues.find_queue(id_or_name)
    if queue is None:
        raise NotFoundError(f"No queue with id or name '{id_or_name}'")
    return queue


def _criteria(folders: list[str] | None, tags: list[str] | None) -> SelectionCriteria:
    if folders and tags:
        raise typer.BadParameter("Use either --folder or --tag, not both.")
    if tags:
        return TagCriteria(tags=tags)
    if folders:
        return FolderCriteria(folders=folders)
    # No selection given: the whole vault.
    return FolderCriteria(folders=[""])


@app.command()
def version():
    """Show the installed mnemo version."""
    typer.echo(f"mnemo {VERSION}")


# ---------------------------------------------------------------------------
# Queue subgroup
# ---------------------------------------------------------------------------


@queue_app.command("list")
def queue_list(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List queues with their current counts."""
    with _services(ctx) as s:
        queues = s.queues.get_all_queues()
        rows = []
        for q in queues:
            stats = s.queues.get_queue_stats(q.id)
            rows.append((q, stats))

        if json_output:
            typer.echo(
                json.dumps(
                    [
                        {
                            "id": q.id,
                            "name": q.name,
                            "criteria": q.criteria.model_dump(mode="json", by_alias=True),
                            "stats": st.model_dump(mode="json", by_alias=True),
                        }
                        for q, st in rows
                    ],
                    indent=2,
                )
            )
            return

        if not rows:
            typer.secho("No queues yet. Create one with 'mnemo queue create'.", fg="yellow")
            return
        for q, st in rows:
            typer.echo(
                f"{q.name} ({q.id}): {st.total_notes} notes, {st.new_notes} new, "
                f"{st.due_notes} due, {st.overdue_notes} overdue"
            )


@queue_app.command("create")
def queue_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Display name of the queue.")],
    folder: Annotated[
        list[str] | None, typer.Option("--folder", "-f", help="Folder to include (repeatable).")
    ] = None,
    tag: Annotated[
        list[str] | None, typer.Option("--tag", "-t", help="Tag to include (repeatable).")
    ] = None,
):
    """Create a queue and pull in every matching note."""
    criteria = _criteria(folder, tag)
    with _services(ctx) as s:
        queue = s.queues.create_queue(name, criteria)
        result = s.queues.sync_queue(queue.id)
        typer.secho(
            f"Created queue '{queue.name}' ({queue.id}) with {len(result.added)} notes.",
            fg="green",
        )


@queue_app.command("delete")
def queue_delete(
    ctx: typer.Context,
    queue: Annotated[str, typer.Argument(help="Queue id or name.")],
    remove_data: Annotated[
        bool,
        typer.Option("--remove-data", help="Also drop this queue's scheduling data now."),
    ] = False,
    force: Annotated[
        bool, typer.Option("--force", help="Bypass confirmation.")
    ] = False,
):
    """Delete a queue."""
    with _services(ctx) as s:
        target = _find_queue(s, queue)
        if not force and not typer.confirm(f"Delete queue '{target.name}'?"):
            raise typer.Exit(1)
        s.queues.delete_queue(target.id, remove_schedule_data=remove_data)
        typer.secho(f"Deleted queue '{target.name}'.", fg="green")


@queue_app.command("sync")
def queue_sync(
    ctx: typer.Context,
    queue: Annotated[
        str | None, typer.Argument(help="Queue id or name. Syncs every queue when omitted.")
    ] = None,
):
    """Reconcile queues with the notes currently in the vault."""
    with _services(ctx) as s:
        targets = [_find_queue(s, queue)] if queue else s.queues.get_all_queues()
        for q in targets:
            result = s.queues.sync_queue(q.id)
            typer.echo(
                f"{q.name}: +{len(result.added)} -{len(result.removed)} ={result.unchanged}"
            )
        pending = s.orphans.get_orphan_count()
        if pending:
            typer.secho(
                f"{pending} orphaned card(s) await resolution. See 'mnemo orphans list'.",
                fg="yellow",
            )


@queue_app.command("stats")
def queue_stats(
    ctx: typer.Context,
    queue: Annotated[str, typer.Argument(help="Queue id or name.")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show live statistics for a queue."""
    with _services(ctx) as s:
        target = _find_queue(s, queue)
        stats = s.queues.get_queue_stats(target.id)
        if json_output:
            typer.echo(json.dumps(stats.model_dump(mode="json", by_alias=True), indent=2))
            return
        typer.echo(f"Queue:          {target.name}")
        typer.echo(f"Total notes:    {stats.total_notes}")
        typer.echo(f"New:            {stats.new_notes}")
        typer.echo(f"Due today:      {stats.due_notes}")
        typer.echo(f"Overdue:        {stats.overdue_notes}")
        typer.echo(f"Reviewed today: {stats.reviewed_today}")


@queue_app.command("due")
def queue_due(
    ctx: typer.Context,
    queue: Annotated[str, typer.Argument(help="Queue id or name.")],
    order: Annotated[
        QueueOrderStrategy | None, typer.Option("--order", help="Ordering strategy.")
    ] = None,
    limit: Annotated[int | None, typer.Option(help="Show at most this many notes.")] = None,
):
    """List due notes in review order."""
    with _services(ctx) as s:
        target = _find_queue(s, queue)
        due = s.queues.get_due_notes(target.id, order)
        if limit is not None:
            due = due[:limit]
        if not due:
            typer.secho("Nothing due.", fg="green")
            return
        for card in due:
            schedule = card.schedules[target.id]
            typer.echo(f"{card.item_path}\t{schedule.state.label}\t{schedule.due.isoformat()}")


# ---------------------------------------------------------------------------
# Review session
# ---------------------------------------------------------------------------

REVIEW_KEYS = {
    "1": Rating.AGAIN,
    "2": Rating.HARD,
    "3": Rating.GOOD,
    "4": Rating.EASY,
}


def _show_current(s: Services, show_intervals: bool) -> None:
    sessions = s.sessions
    path = sessions.current_item_path
    progress = sessions.progress
    typer.echo("")
    typer.secho(f"[{progress.current + 1}/{progress.total}] {path}", bold=True)
    retrievability = sessions.current_retrievability()
    if retrievability is not None:
        typer.echo(f"Recall probability: {retrievability:.0%}")
    if show_intervals:
        preview = sessions.current_scheduling_preview()
        typer.echo(
            "  ".join(f"{r.value}) {r.label} {p.interval_text}" for r, p in preview.items())
        )
    typer.echo("s) skip  b) back  u) undo  q) quit")


@app.command()
def review(
    ctx: typer.Context,
    queue: Annotated[str, typer.Argument(help="Queue id or name.")],
):
    """Run an interactive review session."""
    with _services(ctx) as s:
        target = _find_queue(s, queue)
        sessions = s.sessions
        sessions.start_session(target.id)
        show_intervals = s.store.get_settings().show_predicted_intervals

        while sessions.is_active:
            # The terminal is the host view: whatever we print is what is open.
            sessions.set_active_item(sessions.current_item_path)
            _show_current(s, show_intervals)
            choice = typer.prompt("Rating").strip().lower()

            try:
                if choice in REVIEW_KEYS:
                    if sessions.rate(REVIEW_KEYS[choice]) is None:
                        typer.secho("Note no longer exists; skipped.", fg="yellow")
                elif choice == "s":
                    sessions.skip()
                elif choice == "b":
                    sessions.go_back()
                elif choice == "u":
                    entry = sessions.undo_last_rating()
                    typer.echo(f"Undid {entry.review_log.rating.label} on {entry.item_path}")
                elif choice == "q":
                    sessions.end_session()
                else:
                    typer.secho("Unknown choice.", fg="yellow")
            except MnemoError as e:
                typer.secho(str(e), fg="yellow")

        summary = sessions.last_summary
        if summary is not None:
            counts = ", ".join(f"{r.label}: {n}" for r, n in summary.ratings.items())
            state = "complete" if summary.completed else "ended"
            typer.secho(
                f"Session {state}: {summary.reviewed}/{summary.total} reviewed, "
                f"{summary.skipped} skipped ({counts})",
                fg="green",
            )


# ---------------------------------------------------------------------------
# Orphans subgroup
# ---------------------------------------------------------------------------


@orphans_app.command("list")
def orphans_list(
    ctx: typer.Context,
    detect: Annotated[
        bool, typer.Option("--detect", help="Scan for cards whose notes are gone first.")
    ] = False,
):
    """List pending orphans."""
    with _services(ctx) as s:
        if detect:
            s.orphans.detect_orphans()
        pending = s.orphans.get_pending_orphans()
        if not pending:
            typer.secho("No pending orphans.", fg="green")
            return
        for orphan in pending:
            queues = ", ".join(sorted(orphan.card_data.schedules))
            typer.echo(
                f"{orphan.id}\t{orphan.original_path}\t{orphan.detected_at.isoformat()}\t{queues}"
            )


@orphans_app.command("matches")
def orphans_matches(
    ctx: typer.Context,
    orphan_id: Annotated[str, typer.Argument(help="Orphan id.")],
):
    """Suggest notes an orphan could be relinked to."""
    with _services(ctx) as s:
        matches = s.orphans.find_potential_matches(orphan_id)
        if not matches:
            typer.secho("No likely matches.", fg="yellow")
            return
        for m in matches:
            typer.echo(f"{m.confidence:.2f}\t{m.item.path}\t{m.reason}")


@orphans_app.command("relink")
def orphans_relink(
    ctx: typer.Context,
    orphan_id: Annotated[str, typer.Argument(help="Orphan id.")],
    path: Annotated[str, typer.Argument(help="Vault-relative path of the note to relink to.")],
):
    """Restore an orphan's scheduling data onto another note."""
    with _services(ctx) as s:
        card = s.orphans.relink_orphan(orphan_id, path)
        typer.secho(f"Relinked to {card.item_path}.", fg="green")


@orphans_app.command("remove")
def orphans_remove(
    ctx: typer.Context,
    orphan_id: Annotated[str, typer.Argument(help="Orphan id.")],
):
    """Discard an orphan. Review history is kept."""
    with _services(ctx) as s:
        orphan = s.orphans.remove_orphan(orphan_id)
        typer.secho(f"Removed orphan {orphan.original_path}.", fg="green")


@orphans_app.command("cleanup")
def orphans_cleanup(ctx: typer.Context):
    """Forget orphans that were already relinked or removed."""
    with _services(ctx) as s:
        removed = s.orphans.cleanup_resolved_orphans()
        typer.echo(f"Cleaned up {removed} resolved orphan(s).")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = resolve_config((ctx.obj or {}).get("overrides"))
    d: dict[str, Any] = {
        k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()
    }
    typer.echo(json.dumps(d, indent=2))
