"""Chapters stage -- write the chapter marker file from track durations."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click
from loguru import logger

from ..chapters import plan, write_chapter_file

if TYPE_CHECKING:
    from ..config import AssemblerConfig
    from ..job import BookJob

log = logger.bind(stage="chapters")


def run(
    job: BookJob,
    config: AssemblerConfig,
    dry_run: bool = False,
    **kwargs,
) -> None:
    """Plan one chapter per track and write work_dir/chapters.txt."""
    chapters = plan(t.duration for t in job.tracks)
    chapters_file = job.work_dir / "chapters.txt"

    if dry_run:
        job.chapters_file = chapters_file
        for ch in chapters:
            log.info(f"[DRY-RUN] {ch.label} at {ch.start}")
        click.echo(f"  [DRY-RUN] Would write {len(chapters)} chapters")
        return

    job.chapters_file = write_chapter_file(chapters_file, chapters)
    click.echo(f"  CHAPTERS: {len(chapters)} chapters")
