"""confmunge CLI: inspect and maintain a platform's plugin state.

Commands:
    confmunge init [PLATFORM]       create confmunge.toml
    confmunge status                installed / dependent plugins, munge totals
    confmunge munge [--file F]      dump recorded contributions with counts
    confmunge migrate               rewrite <platform>.json in the current munge shape
    confmunge metadata [--write]    print (or write) the runtime module manifest

Installing and uninstalling plugins is driven by the host tooling through
MungeSession, not from here.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from confmunge.config import ConfmungeConfig, init_config, load_config
from confmunge.errors import ConfmungeError
from confmunge.state import PluginStateStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg(platform: str | None) -> ConfmungeConfig:
    try:
        return load_config(platform=platform)
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _load_state(cfg: ConfmungeConfig) -> PluginStateStore:
    try:
        return PluginStateStore.load(cfg.plugins_dir, cfg.platform)
    except (ConfmungeError, ValueError) as exc:
        msg = f"{cfg.state_path}: {exc}"
        raise click.ClickException(msg) from exc


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="confmunge")
@click.option("--platform", default=None, help="Platform id (overrides confmunge.toml)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, platform: str | None, verbose: bool) -> None:
    """confmunge — reference-counted plugin config edits."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["platform"] = platform


# ---------------------------------------------------------------------------
# confmunge init
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("platform", required=False)
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
def init(platform: str | None, root: str) -> None:
    """Create confmunge.toml in the current project."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, platform=platform)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("confmunge.toml already exists — skipping init")

    cfg = load_config(root_path)
    click.echo(f"Platform  : {cfg.platform}")
    click.echo(f"State file: {cfg.state_path}")


# ---------------------------------------------------------------------------
# confmunge status / munge
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show installed plugins and config munge totals."""
    cfg = _load_cfg(ctx.obj["platform"])
    state = _load_state(cfg)

    click.echo(f"Platform : {cfg.platform}  ({cfg.state_path})")
    click.echo(f"Top-level: {', '.join(sorted(state.installed_plugins)) or '-'}")
    click.echo(f"Dependent: {', '.join(sorted(state.dependent_plugins)) or '-'}")
    cs = state.change_set
    click.echo(f"Munge    : {len(cs)} contribution(s) across {len(cs.files())} file(s)")
    queue = state.prepare_queue
    click.echo(f"Queue    : {len(queue.installed)} install, {len(queue.uninstalled)} uninstall pending")


@cli.command()
@click.option("--file", "file_filter", default=None, help="Only this file tag")
@click.pass_context
def munge(ctx: click.Context, file_filter: str | None) -> None:
    """List recorded contributions with their counts."""
    cfg = _load_cfg(ctx.obj["platform"])
    cs = _load_state(cfg).change_set
    if cs.is_empty:
        click.echo("No config changes recorded.")
        return

    current = None
    for file, selector, c in cs.items(file_filter):
        if file != current:
            click.echo(file)
            current = file
        click.echo(f"  {selector}  [{c.mode.value}] x{c.count}  {c.xml}")


# ---------------------------------------------------------------------------
# confmunge migrate / metadata
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def migrate(ctx: click.Context) -> None:
    """Load <platform>.json (upgrading a legacy munge) and write it back."""
    cfg = _load_cfg(ctx.obj["platform"])
    if not cfg.state_path.exists():
        click.echo(f"No state file at {cfg.state_path} — nothing to migrate")
        return
    state = _load_state(cfg)
    state.save()
    click.echo(f"Wrote {cfg.state_path} ({len(state.change_set)} contribution(s))")


@cli.command()
@click.option("--write", "write", is_flag=True, help="Write to [metadata].destination")
@click.option("--out", "out", type=click.Path(path_type=Path), default=None, help="Write to this path")
@click.pass_context
def metadata(ctx: click.Context, write: bool, out: Path | None) -> None:
    """Print or write the runtime module manifest."""
    cfg = _load_cfg(ctx.obj["platform"])
    state = _load_state(cfg)

    destination = out
    if destination is None and write:
        destination = cfg.metadata.destination
        if destination is None:
            msg = "[metadata].destination is not set in confmunge.toml (use --out)"
            raise click.ClickException(msg)
    if destination is None:
        click.echo(state.generate_metadata())
        return
    state.generate_and_save_metadata(destination)
    click.echo(f"Wrote {destination}")


def main() -> None:
    cli(obj={})
