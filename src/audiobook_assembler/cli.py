"""CLI entry point for the audiobook assembler."""

import os
from pathlib import Path

import click
from loguru import logger

from .config import AssemblerConfig
from .errors import ConfigError
from .runner import AssemblerRunner
from .tools import MAGICK_FALLBACKS, locate

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _load_env_file(env_file: Path) -> None:
    """Load a shell-style .env file into os.environ (without overriding)."""
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        # Strip quotes
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]
        # Skip bash variable expansions like ${VAR:-default}
        if "${" in value:
            continue
        # Don't override existing env vars (CLI > env > file)
        if key not in os.environ:
            os.environ[key] = value


def _make_config(config_file: str | None, **overrides) -> AssemblerConfig:
    """Load .env, then build config with CLI flags as kwargs (no env pollution)."""
    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file and env_file.is_file():
        _load_env_file(env_file)
        log.debug(f"Loaded env from {env_file}")
    else:
        log.debug("No .env found")

    # None means "not given on the command line" -- leave env/.env in charge
    kwargs = {k: v for k, v in overrides.items() if v is not None}
    if kwargs.get("verbose"):
        kwargs["log_level"] = "DEBUG"

    config = AssemblerConfig(**kwargs)  # type: ignore[arg-type]
    config.setup_logging()
    return config


_config_option = click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to .env file.",
)
_metadata_dir_option = click.option(
    "-m",
    "--metadata-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory tree of per-book YAML records and cover images.",
)
_dry_run_option = click.option(
    "--dry-run", is_flag=True, help="Show what would happen without doing it."
)
_verbose_option = click.option(
    "-v", "--verbose", is_flag=True, help="Enable debug logging."
)


@click.group()
def main() -> None:
    """Assemble chaptered, tagged M4B audiobooks from per-chapter tracks."""


@main.command()
@click.argument(
    "source_path", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Root directory for finished books.",
)
@click.option(
    "-t",
    "--template",
    "output_template",
    default=None,
    help="Output path template; placeholders {author}, {series}, {book}.",
)
@_metadata_dir_option
@click.option(
    "--no-cleanup",
    is_flag=True,
    help="Keep intermediate files (concat list, audio, chapters, cover).",
)
@click.option("--force", is_flag=True, help="Overwrite existing output files.")
@_dry_run_option
@_verbose_option
@_config_option
def build(
    source_path: Path,
    output_dir: Path | None,
    output_template: str | None,
    metadata_dir: Path | None,
    no_cleanup: bool,
    force: bool,
    dry_run: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Build one M4B per book directory under SOURCE_PATH."""
    config = _make_config(
        config_file,
        output_dir=output_dir,
        output_template=output_template,
        metadata_dir=metadata_dir,
        cleanup=False if no_cleanup else None,
        force=force or None,
        dry_run=dry_run or None,
        verbose=verbose or None,
    )
    source = source_path.resolve()
    log.info(f"Starting build: source={source} output={config.output_dir}")

    result = AssemblerRunner(config).build(source)
    click.echo(
        f"Done: {result.completed} built, {result.failed} failed, "
        f"{result.skipped} skipped"
    )


@main.command()
@click.argument("m4b_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_metadata_dir_option
@_dry_run_option
@_verbose_option
@_config_option
def export(
    m4b_file: Path,
    metadata_dir: Path | None,
    dry_run: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Save a tagged M4B's metadata and cover into the metadata store."""
    config = _make_config(
        config_file,
        metadata_dir=metadata_dir,
        dry_run=dry_run or None,
        verbose=verbose or None,
    )
    try:
        AssemblerRunner(config).export(m4b_file.resolve())
    except ConfigError as e:
        raise click.UsageError(str(e))


@main.command()
@click.argument("m4b_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_metadata_dir_option
@click.option("--no-cleanup", is_flag=True, help="Keep the resized cover.")
@_dry_run_option
@_verbose_option
@_config_option
def retag(
    m4b_file: Path,
    metadata_dir: Path | None,
    no_cleanup: bool,
    dry_run: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Rewrite an M4B's tags and cover from its metadata store record."""
    config = _make_config(
        config_file,
        metadata_dir=metadata_dir,
        cleanup=False if no_cleanup else None,
        dry_run=dry_run or None,
        verbose=verbose or None,
    )
    try:
        AssemblerRunner(config).retag(m4b_file.resolve())
    except ConfigError as e:
        raise click.UsageError(str(e))


@main.command()
@_config_option
def doctor(config_file: str | None) -> None:
    """Report which external tools can be found."""
    config = _make_config(config_file)
    checks = [
        ("ffmpeg", locate(config.ffmpeg_bin)),
        ("MP4Box", locate(config.mp4box_bin)),
        (
            "ImageMagick",
            locate(
                config.magick_bin,
                tuple(f for f in MAGICK_FALLBACKS if f != config.magick_bin),
            ),
        ),
    ]
    for name, found in checks:
        click.echo(f"{name}: {found or 'not found'}")
    missing = sum(1 for _, found in checks if found is None)
    if missing:
        click.echo(f"{missing} tool(s) missing")
