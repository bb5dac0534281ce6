import logging
import sys

import click

from tubechat.config import get_settings
from tubechat.db import get_session_factory, init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

_user_option = click.option(
    "--user", "user_email", envvar="TUBECHAT_USER", required=True,
    help="Email of the acting user (or set TUBECHAT_USER).",
)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """tubechat - browse YouTube catalogs and transcribe videos within a quota"""
    ctx.ensure_object(dict)
    settings = get_settings()
    ctx.obj["settings"] = settings
    init_db(settings.database_url)
    ctx.obj["session_factory"] = get_session_factory(settings.database_url)


def _open_catalog(settings, channel: str | None, playlist: str | None, pages: int):
    """Bootstrap a paginator and walk forward through ``pages`` pages."""
    from tubechat.core.paginator import CatalogPaginator
    from tubechat.services.youtube_service import YouTubeClient

    if bool(channel) == bool(playlist):
        raise click.UsageError("Pass exactly one of --channel or --playlist.")

    paginator = CatalogPaginator(YouTubeClient(settings), page_size=settings.catalog_page_size)
    if channel:
        paginator.get_uploads_metadata(channel)
    else:
        paginator.open_playlist(playlist)

    loaded = [paginator.get_page(1)]
    for number in range(2, pages + 1):
        if not paginator.arena.token_for(number):
            break
        loaded.append(paginator.get_page(number))
    return paginator, loaded


@cli.command()
@click.option("--channel", type=str, default=None, help="Channel handle, e.g. @somechannel.")
@click.option("--playlist", type=str, default=None, help="Playlist ID.")
@click.option("--pages", type=int, default=1, help="Number of pages to list.")
@click.pass_context
def browse(ctx: click.Context, channel: str | None, playlist: str | None, pages: int) -> None:
    """List catalog videos of a channel's uploads or a playlist."""
    from tubechat.errors import CatalogError

    settings = ctx.obj["settings"]
    try:
        paginator, loaded = _open_catalog(settings, channel, playlist, pages)
    except CatalogError as e:
        click.echo(f"[FAIL] {e}", err=True)
        sys.exit(1)

    click.echo(
        f"=== {paginator.playlist_title or paginator.playlist_id}: "
        f"{paginator.total_count} videos, {paginator.total_pages} pages ==="
    )
    for page in loaded:
        click.echo(f"--- Page {page.page_number} ---")
        for item in page.items:
            click.echo(f"  {item.youtube_id}  {item.duration_in_minutes:>4} min  {item.title[:60]}")


@cli.command()
@_user_option
@click.option("--set-hours", type=int, default=None, help="Overwrite remaining video-hours.")
@click.option("--set-messages", type=int, default=None, help="Overwrite remaining messages.")
@click.option("--reset-messages", is_flag=True, help="Restore the default message allowance.")
@click.pass_context
def quota(
    ctx: click.Context,
    user_email: str,
    set_hours: int | None,
    set_messages: int | None,
    reset_messages: bool,
) -> None:
    """Show (or overwrite) a user's remaining quota."""
    from tubechat.core.quota import QuotaLedger

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        ledger = QuotaLedger(session, settings)
        fields = {}
        if set_hours is not None:
            fields["video_hours_left"] = set_hours
        if set_messages is not None:
            fields["messages_left"] = set_messages
        try:
            if reset_messages:
                ledger.reset_messages(user_email)
            q = ledger.set(user_email, **fields) if fields else ledger.get(user_email)
        except ValueError as e:
            click.echo(f"[FAIL] {e}", err=True)
            sys.exit(1)
        click.echo(f"=== Quota: {user_email} ===")
        click.echo(f"  Video hours left: {q.video_hours_left}")
        click.echo(f"  Messages left:    {q.messages_left}")
        click.echo(f"  Resets at:        {q.reset_at:%Y-%m-%d}")
    finally:
        session.close()


@cli.command()
@_user_option
@click.option("--channel", type=str, default=None, help="Channel handle to select from.")
@click.option("--playlist", type=str, default=None, help="Playlist ID to select from.")
@click.option("--pages", type=int, default=1, help="Number of pages to select from.")
@click.option(
    "--video-id", "video_ids", multiple=True,
    help="YouTube ID(s) to transcribe (repeatable). If omitted, selects all that fit.",
)
@click.option("--batch-size", type=int, default=None, help="Videos per transcription batch.")
@click.pass_context
def transcribe(
    ctx: click.Context,
    user_email: str,
    channel: str | None,
    playlist: str | None,
    pages: int,
    video_ids: tuple[str, ...],
    batch_size: int | None,
) -> None:
    """Select catalog videos within quota and transcribe them."""
    from tubechat import api
    from tubechat.core.quota import QuotaLedger, select_all
    from tubechat.errors import CatalogError

    settings = ctx.obj["settings"]
    try:
        _, loaded = _open_catalog(settings, channel, playlist, pages)
    except CatalogError as e:
        click.echo(f"[FAIL] {e}", err=True)
        sys.exit(1)

    candidates = [item for page in loaded for item in page.items]
    if video_ids:
        wanted = set(video_ids)
        candidates = [item for item in candidates if item.youtube_id in wanted]
        missing = wanted - {item.youtube_id for item in candidates}
        for vid in sorted(missing):
            click.echo(f"[SKIP] {vid}: not in the listed pages", err=True)

    session = ctx.obj["session_factory"]()
    try:
        selection = select_all(candidates, QuotaLedger(session, settings).get(user_email))
        for item in selection.skipped:
            click.echo(f"[SKIP] {item.youtube_id}: over quota ({item.duration_in_minutes} min)")
        if not selection.selected:
            click.echo("Nothing selected.")
            return

        click.echo(
            f"Selected {len(selection.selected)}/{selection.requested} videos "
            f"({selection.total_minutes} min, {selection.hours_needed} h)"
        )
        result = api.transcribe_videos(
            session, selection.selected, user_email,
            batch_size=batch_size, settings=settings,
        )
        for r in result["results"]:
            tag = "OK" if r["status"] == "COMPLETED" else r["status"]
            line = f"[{tag}] {r['youtube_id']}"
            if r["error"]:
                line += f": {r['error']}"
            click.echo(line)
        click.echo(
            f"Attempted: {result['total_attempts']}  "
            f"Transcribed: {result['total_transcribed']}  "
            f"Embedded: {result['total_embedded']}"
        )
        if result["quota_exceeded"]:
            click.echo("[FAIL] Quota exceeded", err=True)
            sys.exit(1)
    finally:
        session.close()


@cli.command()
@_user_option
@click.option(
    "--video-id", "video_ids", multiple=True, required=True,
    help="Video ID(s) to retry (repeatable).",
)
@click.pass_context
def retry(ctx: click.Context, user_email: str, video_ids: tuple[str, ...]) -> None:
    """Retry the failed step of videos in an error state."""
    from tubechat import api

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        has_failure = False
        for vid in video_ids:
            result = api.retry_video(session, vid, user_email, settings=settings)
            if result["success"]:
                click.echo(f"[OK] {vid}: {result['action']} succeeded")
            else:
                click.echo(f"[FAIL] {vid}: {result['error']}", err=True)
                has_failure = True

        if has_failure:
            sys.exit(1)
    finally:
        session.close()


@cli.command()
@_user_option
@click.option(
    "--video-id", "video_ids", multiple=True, required=True,
    help="Video ID(s) to delete (repeatable). Several IDs are deleted all-or-nothing.",
)
@click.pass_context
def delete(ctx: click.Context, user_email: str, video_ids: tuple[str, ...]) -> None:
    """Delete stored videos, restoring quota for completed ones."""
    from tubechat import api
    from tubechat.errors import VideoNotFoundError

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        try:
            if len(video_ids) == 1:
                result = api.delete_stored_video(session, video_ids[0], user_email, settings)
                deleted = 1
            else:
                result = api.bulk_delete_stored_videos(
                    session, list(video_ids), user_email, settings,
                )
                deleted = result["deleted_count"]
        except VideoNotFoundError as e:
            click.echo(f"[FAIL] {e}", err=True)
            sys.exit(1)
        click.echo(f"Deleted: {deleted}  Video hours restored: {result['quota_restored']}")
    finally:
        session.close()


@cli.command()
@_user_option
@click.pass_context
def status(ctx: click.Context, user_email: str) -> None:
    """Show a user's stored videos: counts by status + the videos."""
    from collections import Counter

    from tubechat.core.lifecycle import VideoLifecycle

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        videos = VideoLifecycle(session, settings).list_for_user(user_email)
        counts = Counter(v.status.value for v in videos)
        click.echo(f"=== Videos: {len(videos)} ===")
        for s, c in sorted(counts.items()):
            click.echo(f"  {s:<17} {c}")

        click.echo("")
        if not videos:
            click.echo("  (none)")
        for v in videos:
            err = ""
            if v.error_message:
                err = f"  !! {v.error_message[:40]}"
            click.echo(
                f"  [{v.status.value:<16}] {v.id}  {v.youtube_id}  "
                f"{v.duration_in_minutes:>4} min  {v.title[:50]}{err}"
            )
    finally:
        session.close()


@cli.command(name="init-db")
@click.pass_context
def init_db_cmd(ctx: click.Context) -> None:
    """Initialize the database (create tables)."""
    click.echo("Database initialized successfully.")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind.")
@click.option("--port", type=int, default=5000, help="Port to listen on.")
@click.pass_context
def web(ctx: click.Context, host: str, port: int) -> None:
    """Serve the JSON API."""
    from tubechat.web.app import create_app

    app = create_app(ctx.obj["settings"])
    app.run(host=host, port=port)
