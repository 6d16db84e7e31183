"""Encode stage -- concatenate all tracks into one AAC stream with ffmpeg."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click
from loguru import logger

from ..errors import StageError
from ..tools import run_tool

if TYPE_CHECKING:
    from ..config import AssemblerConfig
    from ..job import BookJob

log = logger.bind(stage="encode")


def _concat_line(path) -> str:
    # concat demuxer quoting: close the quote, escaped quote, reopen
    escaped = str(path.resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


def run(
    job: BookJob,
    config: AssemblerConfig,
    dry_run: bool = False,
    **kwargs,
) -> None:
    """Write files.txt and encode the tracks into work_dir/audio.m4a."""
    if not job.tracks:
        raise StageError(f"No tracks to encode for {job.book_id}", stage="encode")

    audio_file = job.work_dir / "audio.m4a"
    cmd = [
        job.tools.ffmpeg,
        "-hide_banner",
        "-y",
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        str(job.concat_list),
        "-vn",
        "-map",
        "0:a",
        "-c:a",
        config.codec,
        "-b:a",
        f"{config.bitrate}k",
        "-ac",
        str(config.channels),
        "-ar",
        str(config.sample_rate),
        str(audio_file),
    ]
    job.audio_file = audio_file

    if dry_run:
        log.info(f"[DRY-RUN] Would encode: {' '.join(cmd)}")
        return

    job.work_dir.mkdir(parents=True, exist_ok=True)
    job.concat_list.write_text(
        "\n".join(_concat_line(t.path) for t in job.tracks) + "\n",
        encoding="utf-8",
    )
    log.debug(f"Wrote {len(job.tracks)} entries to {job.concat_list}")

    log.info(f"Encoding {len(job.tracks)} tracks for {job.book_id}")
    run_tool(cmd, "ffmpeg")

    if not audio_file.is_file() or audio_file.stat().st_size == 0:
        raise StageError(f"ffmpeg produced no audio: {audio_file}", stage="encode")

    click.echo(
        f"  ENCODE: {len(job.tracks)} tracks -> {audio_file.name} "
        f"({config.bitrate}k {config.codec})"
    )
