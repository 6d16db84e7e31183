"""Cleanup stage -- best-effort removal of intermediate files."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from ..config import AssemblerConfig
    from ..job import BookJob

log = logger.bind(stage="cleanup")


def run(
    job: BookJob,
    config: AssemblerConfig,
    dry_run: bool = False,
    **kwargs,
) -> None:
    """Delete the job's temp files and, if then empty, its work directory.

    Nothing here fails the run: a file that cannot be removed is left behind.
    """
    if not config.cleanup:
        log.debug(f"Cleanup disabled, keeping {job.work_dir}")
        return

    if dry_run:
        for path in job.temp_files:
            log.info(f"[DRY-RUN] Would remove: {path}")
        return

    for path in job.temp_files:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            log.debug(f"Could not remove {path}: {e}")

    try:
        job.work_dir.rmdir()
    except OSError:
        log.debug(f"Work dir not removed: {job.work_dir}")
