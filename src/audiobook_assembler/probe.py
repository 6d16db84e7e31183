"""Inspection dumps from ffmpeg and MP4Box, parsed into tracks and metadata.

Per-track info comes from ``ffmpeg -hide_banner -i <file>``. ffmpeg exits 1
here ("At least one output file must be specified") -- the report on stderr
is all we want, so the exit code is ignored and the report's shape is
checked instead.

Container tags come from ``MP4Box -info <file>``, whose ``iTunes Info:``
block lists the tags written by the tag stage.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from .metadata import BookMetadata, split_narrator, split_series_label
from .models import TrackInfo
from .tags import (
    extract_multiline,
    extract_scalar,
    isolate_block,
    parse_timestamp,
)
from .tools import run_tool

log = logger.bind(stage="probe")

# ffmpeg: the first input's header, up to its chapter or stream listing
_FFMPEG_INPUT_START = r"^Input #0"
_FFMPEG_INPUT_END = r"^\s+(Chapters?:|Stream #0)"

# MP4Box: the iTunes tag block ends at the next unindented line
_MP4BOX_ITUNES_START = r"^\s*iTunes Info:"
_MP4BOX_ITUNES_END = r"^\S|^$"


def parse_track_dump(path: Path, dump: str) -> TrackInfo | None:
    """Parse an ``ffmpeg -i`` report into TrackInfo.

    Returns None (after logging the raw report) if the input header or its
    Duration line is missing or unparseable.
    """
    section = isolate_block(dump, _FFMPEG_INPUT_START, _FFMPEG_INPUT_END)
    if section is None:
        log.warning(f"Unexpected ffmpeg output for {path.name}:\n{dump}")
        return None

    raw_duration = extract_scalar(section, "Duration")
    duration = (
        parse_timestamp(raw_duration.split(",", 1)[0]) if raw_duration else None
    )
    if duration is None:
        log.warning(f"No usable Duration for {path.name}: {raw_duration!r}")
        return None

    def tag(name: str) -> str | None:
        return extract_scalar(section, name) or None

    return TrackInfo(
        path=path,
        artist=tag("album_artist") or tag("artist"),
        album=tag("album"),
        name=tag("title"),
        year=tag("date") or tag("year"),
        genre=tag("genre"),
        comment=extract_multiline(section, "comment") or None,
        duration=duration,
    )


def probe_track(ffmpeg: str, path: Path) -> TrackInfo | None:
    result = run_tool([ffmpeg, "-hide_banner", "-i", str(path)], "ffmpeg", check=False)
    return parse_track_dump(path, result.stderr)


def parse_container_dump(dump: str) -> BookMetadata | None:
    """Parse the ``iTunes Info:`` block of an ``MP4Box -info`` report.

    The Name tag is split back into series/number/title and the Comment tag
    into narrator/description where they have the shapes the tag stage
    writes. Returns None (after logging the raw report) if the block is
    missing.
    """
    block = isolate_block(dump, _MP4BOX_ITUNES_START, _MP4BOX_ITUNES_END)
    if block is None:
        log.warning(f"No iTunes Info block in MP4Box output:\n{dump}")
        return None

    meta = BookMetadata(
        title=extract_scalar(block, "Name") or extract_scalar(block, "Album") or None,
        author=extract_scalar(block, "Artist") or None,
        year=extract_scalar(block, "Created") or None,
    )

    if meta.title:
        parts = split_series_label(meta.title)
        if parts:
            meta.series, meta.series_number, meta.title = parts

    comment = extract_multiline(block, "Comment")
    if comment:
        narrated = split_narrator(comment)
        if narrated:
            meta.narrator, meta.description = narrated
        else:
            meta.description = comment

    if not meta.narrator:
        meta.narrator = extract_scalar(block, "Composer") or None

    return meta


def probe_container(mp4box: str, path: Path) -> BookMetadata | None:
    result = run_tool([mp4box, "-info", str(path)], "MP4Box", check=False)
    # MP4Box prints the report on stderr in some builds, stdout in others
    return parse_container_dump(result.stdout + "\n" + result.stderr)
