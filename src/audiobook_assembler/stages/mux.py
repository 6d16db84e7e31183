"""Mux stage -- wrap the encoded audio and chapter file into an M4B with MP4Box.

The untagged container is written to work_dir/muxed.m4b. Only the tag stage
moves a finished container to the output path.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click
from loguru import logger

from ..errors import StageError
from ..tools import run_tool

if TYPE_CHECKING:
    from ..config import AssemblerConfig
    from ..job import BookJob

log = logger.bind(stage="mux")


def run(
    job: BookJob,
    config: AssemblerConfig,
    dry_run: bool = False,
    **kwargs,
) -> None:
    if job.audio_file is None or job.chapters_file is None:
        raise StageError("Mux needs encoded audio and a chapter file", stage="mux")
    if job.tools.mp4box is None:
        raise StageError("MP4Box was not resolved", stage="mux")

    muxed_file = job.work_dir / "muxed.m4b"
    cmd = [
        job.tools.mp4box,
        "-add",
        f"{job.audio_file}#audio",
        "-chap",
        str(job.chapters_file),
        "-new",
        str(muxed_file),
    ]
    job.muxed_file = muxed_file

    if dry_run:
        log.info(f"[DRY-RUN] Would mux: {' '.join(cmd)}")
        return

    job.work_dir.mkdir(parents=True, exist_ok=True)
    run_tool(cmd, "MP4Box")

    if not muxed_file.is_file():
        raise StageError(f"MP4Box produced no output: {muxed_file}", stage="mux")

    click.echo(f"  MUX: {muxed_file.name}")
