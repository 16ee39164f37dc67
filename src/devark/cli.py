"""CLI entry point for devark."""

import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

import click
import uvicorn

from .config import get_hook_queue_path
from .core import SOURCE_CLAUDE, SOURCE_CURSOR, utcnow
from .detection.hooks import ClaudeHookInstaller, CursorHookInstaller, append_hook_payload
from .errors import InvalidInputError

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Capture, score and sync prompts from Cursor and Claude Code."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the local API that the UI talks to."""
    click.echo(f"Starting devark on http://{host}:{port}")
    uvicorn.run("devark.server:app", host=host, port=port, reload=False)


@main.command()
@click.option("--hook-trigger", "trigger", default="UserPromptSubmit", help="Hook event that fired.")
@click.option(
    "--source",
    type=click.Choice([SOURCE_CLAUDE, SOURCE_CURSOR]),
    default=SOURCE_CLAUDE,
    help="Tool that invoked the hook.",
)
def hook(trigger: str, source: str):
    """Append the hook payload on stdin to the prompt queue.

    Always exits 0 so a failure here never blocks the calling tool.
    """
    try:
        raw = sys.stdin.read()
        payload = json.loads(raw) if raw.strip() else {}
        if not isinstance(payload, dict):
            payload = {}
        append_hook_payload(get_hook_queue_path(), trigger, payload, source)
    except (OSError, ValueError) as e:
        logger.warning("Hook %s dropped: %s", trigger, e)


@main.command("install-hooks")
@click.argument("project", type=click.Path(file_okay=False, path_type=Path), default=".")
@click.option("--cursor", is_flag=True, help="Also install Cursor hooks.")
def install_hooks(project: Path, cursor: bool):
    """Install devark hooks into a project's tool settings."""
    results = [ClaudeHookInstaller(project.resolve()).install()]
    if cursor:
        results.append(CursorHookInstaller(project.resolve()).install())
    _report(results)


@main.command("uninstall-hooks")
@click.argument("project", type=click.Path(file_okay=False, path_type=Path), default=".")
@click.option("--cursor", is_flag=True, help="Also remove Cursor hooks.")
def uninstall_hooks(project: Path, cursor: bool):
    """Remove devark hooks, leaving other hooks untouched."""
    results = [ClaudeHookInstaller(project.resolve()).uninstall()]
    if cursor:
        results.append(CursorHookInstaller(project.resolve()).uninstall())
    _report(results)


@main.command()
@click.option("--source", type=click.Choice([SOURCE_CLAUDE, SOURCE_CURSOR]), default=None)
@click.option("--days", type=int, default=None, help="Only sessions active in the last N days.")
@click.option("--limit", default=20, show_default=True)
def sessions(source: str | None, days: int | None, limit: int):
    """List recent sessions across tools."""
    from .aggregator import SessionAggregator
    from .backends import get_available_readers

    since = utcnow() - timedelta(days=days) if days else None
    aggregator = SessionAggregator(get_available_readers())
    for session in aggregator.list_sessions(source=source, since=since)[:limit]:
        click.echo(
            f"{session.last_activity:%Y-%m-%d %H:%M}  {session.source:<7} "
            f"{session.prompt_count:>4} prompts  {session.workspace_name}  {session.session_id}"
        )


@main.command()
@click.option("--project", "projects", multiple=True, help="Limit to these project names.")
@click.option("--since", type=click.DateTime(), default=None)
@click.option("--force", is_flag=True, help="Upload even sessions the server already has.")
@click.option("--dry-run", is_flag=True, help="Show what would be uploaded.")
def sync(projects: tuple[str, ...], since: datetime | None, force: bool, dry_run: bool):
    """Upload local sessions to the devark cloud."""
    from .services import Services

    services = Services.create(with_adapters=False)
    since_utc = since.astimezone() if since else None
    if dry_run:
        for item in services.sync.preview(list(projects) or None, since_utc):
            click.echo(json.dumps(item))
        return

    def progress(current: int, total: int, detail: dict) -> None:
        click.echo(f"[{current}/{total}] {detail.get('sessionId')}")

    result = asyncio.run(services.sync.sync(list(projects) or None, since_utc, force=force, on_progress=progress))
    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        raise SystemExit(1)


@main.command()
@click.option("--token", prompt=True, hide_input=True, help="API token from the devark dashboard.")
def login(token: str):
    """Store an API token, encrypted at rest."""
    from .storage import TokenStore

    try:
        TokenStore().store_token(token.strip())
    except InvalidInputError as e:
        raise click.BadParameter(str(e), param_hint="--token")
    click.echo("Token saved.")


@main.command()
def logout():
    """Remove the stored API token."""
    from .storage import TokenStore

    TokenStore().clear_token()
    click.echo("Signed out.")


def _report(results) -> None:
    failed = False
    for result in results:
        click.echo(result.message)
        failed = failed or not result.success
    if failed:
        raise SystemExit(1)
