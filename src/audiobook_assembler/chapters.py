"""Chapter planning -- one chapter per source track, in track order.

The chapter file is the simple OGM-style format MP4Box reads with ``-chap``::

    CHAPTER01=00:00:00.000
    CHAPTER01NAME=Chapter 1
    CHAPTER02=00:31:07.200
    CHAPTER02NAME=Chapter 2

Lines are CRLF-separated.
"""

from collections.abc import Iterable, Sequence
from datetime import timedelta
from pathlib import Path

from loguru import logger

from .models import Chapter

log = logger.bind(stage="chapters")

LINE_SEPARATOR = "\r\n"


def plan(durations: Iterable[timedelta]) -> list[Chapter]:
    """Turn ordered track durations into chapters with cumulative start offsets.

    Chapter 1 starts at zero; chapter i starts at the sum of the first i-1
    durations. Order is taken as given -- tracks are never re-sorted here.
    """
    chapters: list[Chapter] = []
    offset = timedelta(0)
    for index, duration in enumerate(durations, start=1):
        chapters.append(Chapter(index=index, start=offset))
        offset += duration
    return chapters


def format_offset(offset: timedelta) -> str:
    """Format a timedelta as HH:MM:SS.mmm (milliseconds truncated)."""
    total_ms = offset // timedelta(milliseconds=1)
    h = total_ms // 3_600_000
    m = (total_ms % 3_600_000) // 60_000
    s = (total_ms % 60_000) // 1000
    ms = total_ms % 1000
    return f"{h:02d}:{m:02d}:{s:02d}.{ms:03d}"


def render(chapters: Sequence[Chapter]) -> str:
    lines: list[str] = []
    for chapter in chapters:
        key = f"CHAPTER{chapter.index:02d}"
        lines.append(f"{key}={format_offset(chapter.start)}")
        lines.append(f"{key}NAME={chapter.label}")
    return LINE_SEPARATOR.join(lines)


def write_chapter_file(path: Path, chapters: Sequence[Chapter]) -> Path:
    """Write rendered chapters as UTF-8 (no BOM), keeping CRLF untranslated."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render(chapters), encoding="utf-8", newline="")
    log.debug(f"Wrote {len(chapters)} chapters to {path}")
    return path
