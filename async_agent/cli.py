"""Command line interface for async-agent."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click
from rich.markdown import Markdown
from rich.table import Table

from . import __version__
from .client import HttpSessionClient
from .console import console
from .errors import RemoteCallError
from .manager import SESSION_TITLE_PREFIX
from .rules import system_prompt_sections
from .settings import Settings


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="async-agent")
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Settings file (default: ~/.config/async-agent/settings.yaml)",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, settings_path: Path | None, debug: bool):
    """Inspect background delegations."""
    settings = Settings.load(settings_path)
    if debug:
        settings.debug = True
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    ctx.obj = settings

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()


async def _fetch_children(settings: Settings, parent_id: str):
    async with HttpSessionClient(settings.server_url, timeout=settings.request_timeout) as client:
        return await client.children(parent_id)


@cli.command("sessions")
@click.argument("parent_id")
@click.pass_obj
def sessions(settings: Settings, parent_id: str):
    """List delegation sessions created under PARENT_ID."""
    try:
        children = asyncio.run(_fetch_children(settings, parent_id))
    except RemoteCallError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1) from e

    delegations = [s for s in children if (s.title or "").startswith(SESSION_TITLE_PREFIX.strip())]
    if not delegations:
        console.print("[dim]No delegations found for this session.[/dim]")
        return

    table = Table(title=f"Delegations of {parent_id}")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Agent", style="green")
    table.add_column("Created")
    for s in delegations:
        created = s.created_at.isoformat() if s.created_at else "—"
        table.add_row(s.id, (s.title or "").replace(SESSION_TITLE_PREFIX, ""), created)
    console.print(table)


@cli.command("audit")
@click.option("--limit", "-n", default=20, show_default=True, help="Most recent records to show")
@click.pass_obj
def audit(settings: Settings, limit: int):
    """List AI analysis audit records."""
    audit_dir = settings.audit_dir
    files = sorted(audit_dir.glob("analysis-*.json"), reverse=True) if audit_dir.exists() else []
    if not files:
        console.print(f"[dim]No audit records in {audit_dir}[/dim]")
        return

    table = Table(title=f"Analysis audit ({audit_dir})")
    table.add_column("Timestamp", no_wrap=True)
    table.add_column("Delegation", style="cyan")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("ms", justify="right")

    for path in files[:limit]:
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[yellow]Skipping {path.name}: {e}[/yellow]")
            continue
        status = record.get("status", "?")
        style = "green" if status == "success" else "red"
        table.add_row(
            str(record.get("timestamp", "")),
            str(record.get("delegationId", "")),
            str(record.get("model", "")),
            f"[{style}]{status}[/{style}]",
            str(record.get("durationMs", "")),
        )
    console.print(table)


@cli.command("rules")
@click.pass_obj
def rules(settings: Settings):
    """Print the instructions injected into the calling agent's system prompt."""
    for section in system_prompt_sections(settings.config_doc_path):
        console.print(Markdown(section))
        console.print()


def main():
    cli()


if __name__ == "__main__":
    main()
