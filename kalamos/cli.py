"""Command-line interface for Kalamos.

This module defines the CLI commands using the Click framework.

Commands:
- new: Scaffold a new Kalamos project.
- build: Build the site, incrementally unless --full is given.
- serve: Run the development server with incremental rebuilds.
- post: Create a new post interactively.
"""

from __future__ import annotations

import logging
import shutil
from datetime import date
from pathlib import Path

import click
import questionary
import yaml

from . import __version__
from .config import CONFIG_FILENAME, load_config
from .errors import ConfigError
from .report import BuildReport
from .utils import slugify

# Path to the project skeleton copied by `kalamos new`
_SCAFFOLD_DIR = Path(__file__).parent / "scaffold"


@click.group()
@click.version_option(version=__version__, prog_name="kalamos")
@click.option("-v", "--verbose", is_flag=True, help="Log every rendered output")
def cli(verbose: bool):
    """Kalamos static site generator."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new Kalamos project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Kalamos site created at {target}")


@cli.command()
@click.option("--full", is_flag=True, help="Render everything, ignoring the build cache")
@click.option("--workers", type=click.IntRange(min=0), help="Render threads (0 = one per CPU)")
def build(full: bool, workers: int | None):
    """Build the site into the output directory."""
    from .build import build_site

    try:
        report = build_site(Path.cwd(), full=full, workers=workers)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_report(report)
    if not report.ok:
        raise SystemExit(1)


@cli.command()
@click.option(
    "--port",
    type=int,
    required=False,
    help=f"Port to run the dev server (overrides {CONFIG_FILENAME})",
)
def serve(port: int | None):
    """Run the dev server, rebuilding on every change."""
    from .server import DevServer

    try:
        server = DevServer(Path.cwd(), http_port=port)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Serving {server.output_dir} at http://localhost:{server.http_port}")
    server.start()


@cli.command()
def post():
    """Create a new post interactively."""
    project_root = Path.cwd()
    try:
        config = load_config(project_root)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    title = title.strip()

    tags = questionary.text(
        "Tags (comma separated, optional):",
        style=_questionary_style(),
    ).ask()
    if tags is None:
        raise click.Abort()

    slug = slugify(title)
    if not slug:
        raise click.ClickException(f"Cannot derive a file name from title {title!r}")

    posts_dir = config.posts_dir
    existing = [p for p in posts_dir.glob("*.md") if slugify(p.stem) == slug]
    if existing:
        raise click.ClickException(
            f"A post with slug '{slug}' already exists: {existing[0].name}"
        )

    today = date.today()
    target_path = posts_dir / f"{today:%Y-%m-%d}-{slug}.md"
    front_matter = {"title": title, "date": today}
    tag_list = [t.strip() for t in tags.split(",") if t.strip()]
    if tag_list:
        front_matter["tags"] = tag_list

    posts_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(
        "---\n"
        + yaml.safe_dump(front_matter, sort_keys=False, allow_unicode=True)
        + "---\n\n"
        + "Write your post here.\n",
        encoding="utf-8",
    )
    click.echo(f"Created {target_path.relative_to(config.project_root)}")


def _echo_report(report: BuildReport) -> None:
    for ident, message in report.errors():
        click.echo(click.style(f"  {ident}: ", fg="yellow") + message, err=True)
    color = "green" if report.ok else "red"
    click.echo(click.style(report.summary(), fg=color, bold=not report.ok))


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Copy the project skeleton into root.

    Args:
        root: Root directory for the new project.
    """
    for src_path in _SCAFFOLD_DIR.rglob("*"):
        if src_path.is_dir() or "__pycache__" in src_path.parts:
            continue
        dest_path = root / src_path.relative_to(_SCAFFOLD_DIR)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)
