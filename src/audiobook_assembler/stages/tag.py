"""Tag stage -- write metadata and cover art into the container with ffmpeg.

Uses ffmpeg -c copy (no re-encode) with -map_chapters 0 so the chapters
written by the mux stage survive. Reads the muxed container from work_dir
(build) or the output file itself (retag), writes a temp file next to the
output and atomically replaces it, so output_file only ever holds a tagged
container.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click
from loguru import logger

from ..errors import ExternalToolError, StageError
from ..tools import run_tool

if TYPE_CHECKING:
    from ..config import AssemblerConfig
    from ..job import BookJob

log = logger.bind(stage="tag")


def build_tag_command(
    ffmpeg: str,
    filepath: Path,
    temp_file: Path,
    tags: dict[str, str],
    cover_path: Path | None = None,
    language: str | None = None,
) -> list[str]:
    """Build the ffmpeg command that rewrites filepath's tags into temp_file."""
    cmd = [ffmpeg, "-hide_banner", "-y", "-i", str(filepath)]

    if cover_path is not None:
        cmd.extend(["-i", str(cover_path)])
        # Audio from the container, picture from the cover (drops any old cover)
        cmd.extend(["-map", "0:a", "-map", "1"])
        cmd.extend(["-c", "copy"])
        cmd.extend(["-disposition:v:0", "attached_pic"])
    else:
        cmd.extend(["-c", "copy"])

    cmd.extend(["-map_chapters", "0"])

    for key, value in tags.items():
        cmd.extend(["-metadata", f"{key}={value}"])

    if language:
        cmd.extend(["-metadata:s:a:0", f"language={language}"])

    # ffmpeg can't guess the format from a .tmp extension
    cmd.extend(["-f", "ipod"])
    cmd.append(str(temp_file))
    return cmd


def run(
    job: BookJob,
    config: AssemblerConfig,
    dry_run: bool = False,
    **kwargs,
) -> None:
    filepath = job.output_file
    source = job.muxed_file or filepath
    tags = job.metadata.as_tags()
    temp_file = filepath.with_suffix(".m4b.tmp")

    cover_path = job.cover_file

    cmd = build_tag_command(
        job.tools.ffmpeg,
        source,
        temp_file,
        tags,
        cover_path=cover_path,
        language=job.metadata.language,
    )

    if dry_run:
        click.echo(f"  [DRY-RUN] Would tag {filepath.name}:")
        for k, v in tags.items():
            click.echo(f"    {k}={v}")
        if cover_path:
            click.echo(f"    cover={cover_path}")
        return

    if not source.is_file():
        raise StageError(f"Nothing to tag: {source}", stage="tag")

    filepath.parent.mkdir(parents=True, exist_ok=True)
    try:
        run_tool(cmd, "ffmpeg")
    except ExternalToolError:
        temp_file.unlink(missing_ok=True)
        raise

    try:
        temp_file.replace(filepath)
    except OSError as e:
        temp_file.unlink(missing_ok=True)
        raise StageError(f"Failed to replace {filepath.name}: {e}", stage="tag")

    cover_note = " +cover" if cover_path else ""
    click.echo(f"  TAG: {filepath.name} ({job.metadata.book_in_series!r}{cover_note})")
