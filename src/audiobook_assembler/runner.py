"""Assembler runner -- sequences probing, metadata resolution and stages."""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path

import click
from loguru import logger

from . import store
from .config import AssemblerConfig
from .errors import (
    ConfigError,
    ExternalToolError,
    MissingDependencyError,
    StageError,
)
from .job import BookJob
from .metadata import BookMetadata
from .models import (
    AUDIO_EXTENSIONS,
    STAGE_ORDER,
    BatchResult,
    Command,
    Stage,
    TrackInfo,
)
from .probe import probe_container, probe_track
from .sanitize import render_output_path, sanitize_filename
from .stages import get_stage_runner
from .tools import require, resolve_toolchain, run_tool

log = logger.bind(stage="runner")


def _natural_sort_key(p: Path) -> list:
    """Extract numeric/text parts for natural sorting of paths."""
    return [int(c) if c.isdigit() else c.lower() for c in re.split(r"(\d+)", str(p))]


def discover_tracks(book_dir: Path) -> list[Path]:
    """Audio files under book_dir in natural filename order.

    Sorting is on the path relative to book_dir, so CD1/… sorts before
    CD2/…. Embedded track numbers are not consulted.
    """
    tracks = [
        f
        for f in book_dir.rglob("*")
        if f.is_file() and f.suffix.lower() in AUDIO_EXTENSIONS
    ]
    tracks.sort(key=lambda f: _natural_sort_key(f.relative_to(book_dir)))
    return tracks


def find_book_directories(root: Path) -> list[Path]:
    """Find book root directories that contain audio files.

    A "book directory" is the first directory in a subtree that contains
    audio files. Once found, its children are pruned (not descended into)
    so multi-disc structures like CD1/CD2 are treated as one book.
    """
    book_dirs: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        has_audio = any(Path(f).suffix.lower() in AUDIO_EXTENSIONS for f in filenames)
        if has_audio:
            book_dirs.append(Path(dirpath))
            dirnames.clear()
        else:
            dirnames.sort()
    return sorted(book_dirs)


class AssemblerRunner:
    """Runs build, export and retag operations for one or more books."""

    def __init__(self, config: AssemblerConfig) -> None:
        self.config = config

    # -- build --

    def build(self, source: Path) -> BatchResult:
        """Build one M4B per book directory found under source."""
        book_dirs = find_book_directories(source)
        result = BatchResult(total=len(book_dirs))

        if not book_dirs:
            log.warning(f"No audio files found under {source}")
            return result

        if len(book_dirs) > 1:
            click.echo(f"Batch build: {len(book_dirs)} books in {source}")
        if self.config.dry_run:
            click.echo("[DRY-RUN] No changes will be made")
        else:
            self.config.ensure_dirs()

        for book_dir in book_dirs:
            try:
                outcome = self.build_book(book_dir)
            except Exception as e:
                log.exception(f"Unexpected error building {book_dir.name!r}")
                click.echo(f"  ERROR: {book_dir.name}: {e}")
                outcome = False
            if outcome is None:
                result.skipped += 1
            elif outcome:
                result.completed += 1
            else:
                result.failed += 1

        if result.failed:
            log.warning(f"Build had {result.failed} failures out of {result.total}")
        return result

    def build_book(self, book_dir: Path) -> bool | None:
        """Build a single book. Returns True/False for success/failure, None if skipped."""
        book_id = book_dir.name
        click.echo(f"{book_id}")

        try:
            ffmpeg = require(self.config.ffmpeg_bin)
        except MissingDependencyError as e:
            log.error(str(e))
            return False

        track_paths = discover_tracks(book_dir)
        if not track_paths:
            log.error(f"No audio files found in {book_dir}")
            return False

        tracks: list[TrackInfo] = []
        for path in track_paths:
            info = probe_track(ffmpeg, path)
            if info is None:
                log.error(f"Cannot read track {path.name}, skipping book {book_id!r}")
                return False
            tracks.append(info)
        log.debug(f"Probed {len(tracks)} tracks for {book_id!r}")

        metadata = self.resolve_metadata(book_id, tracks[0])

        try:
            output_file = render_output_path(
                self.config.output_dir, self.config.output_template, metadata, book_id
            )
        except ConfigError as e:
            log.error(str(e))
            return False

        if output_file.exists() and not self.config.force:
            log.error(f"Output exists, not overwriting (use --force): {output_file}")
            return None

        try:
            tools = resolve_toolchain(
                self.config, need_mp4box=True, need_magick=metadata.image is not None
            )
        except MissingDependencyError as e:
            log.error(str(e))
            return False

        job = BookJob(
            book_id=book_id,
            source=book_dir,
            work_dir=self._work_dir_for(book_id),
            output_file=output_file,
            metadata=metadata,
            tools=tools,
            tracks=tracks,
        )
        return self._run_stages(Command.BUILD, job)

    def resolve_metadata(self, book_id: str, first_track: TrackInfo) -> BookMetadata:
        """Store record if there is exactly one, else synthesized from tags."""
        if self.config.metadata_dir is not None:
            found = store.load(self.config.metadata_dir, book_id)
            if found:
                return found.value
            log.info(
                f"Using track tags for {book_id!r} ({found.status.value}: {found.reason})"
            )

        metadata = BookMetadata.from_track(first_track, book_id)
        metadata.language = self.config.language
        return metadata

    # -- export --

    def export(self, container: Path) -> Path | None:
        """Read a tagged container's metadata and cover into the store."""
        store_dir = self._require_store()
        book_id = container.stem

        try:
            tools = resolve_toolchain(self.config, need_mp4box=True)
        except MissingDependencyError as e:
            log.error(str(e))
            return None

        metadata = probe_container(tools.mp4box, container)
        if metadata is None:
            log.warning(f"No metadata recovered from {container.name}, nothing exported")
            return None
        metadata.language = self.config.language

        if self.config.dry_run:
            click.echo(f"  [DRY-RUN] Would export {container.name} -> {store_dir}:")
            click.echo(f"    {metadata.book_in_series!r} by {metadata.author!r}")
            return None

        work_dir = self._work_dir_for(book_id)
        cover = self._extract_cover(tools.ffmpeg, container, work_dir)
        metadata.image = cover
        try:
            record = store.save(store_dir, book_id, metadata)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        cover_note = " +cover" if cover else ""
        click.echo(f"  EXPORT: {container.name} -> {record}{cover_note}")
        return record

    def _extract_cover(self, ffmpeg: str, container: Path, work_dir: Path) -> Path | None:
        """Pull the attached picture out as JPEG. None if there is none."""
        work_dir.mkdir(parents=True, exist_ok=True)
        cover = work_dir / "cover.jpg"
        cmd = [
            ffmpeg,
            "-hide_banner",
            "-y",
            "-i",
            str(container),
            "-map",
            "0:v:0",
            "-frames:v",
            "1",
            str(cover),
        ]
        try:
            run_tool(cmd, "ffmpeg")
        except ExternalToolError as e:
            log.warning(f"No cover extracted from {container.name}: {e.stderr[-200:]}")
            return None
        return cover if cover.is_file() else None

    # -- retag --

    def retag(self, container: Path) -> bool:
        """Rewrite a container's tags and cover from its store record."""
        store_dir = self._require_store()
        book_id = container.stem

        found = store.load(store_dir, book_id)
        if not found:
            log.error(f"Cannot retag {container.name}: {found.reason}")
            return False
        metadata: BookMetadata = found.value

        try:
            tools = resolve_toolchain(
                self.config, need_mp4box=False, need_magick=metadata.image is not None
            )
        except MissingDependencyError as e:
            log.error(str(e))
            return False

        job = BookJob(
            book_id=book_id,
            source=container,
            work_dir=self._work_dir_for(book_id),
            output_file=container,
            metadata=metadata,
            tools=tools,
        )
        return self._run_stages(Command.RETAG, job)

    # -- helpers --

    def _require_store(self) -> Path:
        if self.config.metadata_dir is None:
            raise ConfigError("A metadata directory is required (--metadata-dir)")
        return self.config.metadata_dir

    def _work_dir_for(self, book_id: str) -> Path:
        return self.config.work_dir / (sanitize_filename(book_id) or "book")

    def _run_stages(self, command: Command, job: BookJob) -> bool:
        dry_run = self.config.dry_run
        for stage in STAGE_ORDER[command]:
            run_stage = get_stage_runner(stage)
            try:
                run_stage(job, self.config, dry_run=dry_run)
            except (StageError, ExternalToolError, OSError) as e:
                log.error(f"{stage.value} failed for {job.book_id!r}: {e}")
                click.echo(f"  FAILED at {stage.value}: {job.book_id}")
                get_stage_runner(Stage.CLEANUP)(job, self.config, dry_run=dry_run)
                return False
        return True
