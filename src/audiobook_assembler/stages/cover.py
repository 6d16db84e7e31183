"""Cover stage -- resize the book's cover image with ImageMagick."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..errors import StageError
from ..tools import run_tool

if TYPE_CHECKING:
    from ..config import AssemblerConfig
    from ..job import BookJob

log = logger.bind(stage="cover")


def run(
    job: BookJob,
    config: AssemblerConfig,
    dry_run: bool = False,
    **kwargs,
) -> None:
    """Resize metadata.image into work_dir/cover.jpg.

    The ``>`` geometry flag only shrinks, so small covers keep their size.
    """
    source = job.metadata.image
    if source is None:
        log.debug(f"No cover image for {job.book_id}")
        return
    if not source.is_file():
        log.warning(f"Cover image missing on disk, skipping: {source}")
        return
    if job.tools.magick is None:
        raise StageError("ImageMagick was not resolved", stage="cover")

    cover_file = job.work_dir / "cover.jpg"
    size = config.cover_size
    cmd = [
        job.tools.magick,
        str(source),
        "-resize",
        f"{size}x{size}>",
        "-quality",
        str(config.cover_quality),
        str(cover_file),
    ]
    job.cover_file = cover_file

    if dry_run:
        log.info(f"[DRY-RUN] Would resize cover: {' '.join(cmd)}")
        return

    job.work_dir.mkdir(parents=True, exist_ok=True)
    run_tool(cmd, "magick")
    log.debug(f"Resized cover {source.name} -> {cover_file}")
