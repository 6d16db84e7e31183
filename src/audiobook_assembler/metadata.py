"""Canonical book metadata and the label/description parsers that invert it.

A book's title is written into the container as a combined label
("Discworld 1: The Colour of Magic") and its narrator as a first line of the
description ("Read by Nigel Planer."). split_series_label() and
split_narrator() recover the separate fields when metadata is read back out
of a previously tagged file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from .models import TrackInfo

log = logger.bind(stage="metadata")

DEFAULT_LANGUAGE = "en"

# Word characters and spaces only -- "Ender's Game" or "Mr. Mercedes" will
# not split. Known limit, not worked around.
_SERIES_LABEL_RE = re.compile(r"^([\w ]+) (\d+): ([\w ]+)$")

# One trailing period is sentence punctuation, not part of the name
_NARRATOR_LINE_RE = re.compile(r"^Read by (.+?)\.?[ \t]*$", re.MULTILINE)


@dataclass
class BookMetadata:
    title: str | None = None
    author: str | None = None
    series: str | None = None
    series_number: int | None = None
    narrator: str | None = None
    year: str | None = None
    language: str = DEFAULT_LANGUAGE
    description: str | None = None
    image: Path | None = None

    @property
    def book_in_series(self) -> str:
        """Title prefixed with "{series} {number}: " when both are known."""
        title = self.title or ""
        if self.series and self.series_number is not None:
            return f"{self.series} {self.series_number}: {title}"
        return title

    @property
    def full_description(self) -> str:
        """Description with a "Read by {narrator}." paragraph in front."""
        description = self.description or ""
        if self.narrator:
            prefix = f"Read by {self.narrator}."
            return f"{prefix}\n\n{description}" if description else prefix
        return description

    @classmethod
    def from_track(cls, track: TrackInfo, book_id: str) -> BookMetadata:
        """Synthesize metadata from the first track's tags.

        Used when the store has no record for the book. The album tag is
        taken as the book title (split into series parts when it has the
        combined-label shape); the comment is scanned for a narrator line.
        """
        meta = cls(
            title=track.album or book_id,
            author=track.artist or None,
            year=track.year or None,
        )

        if track.album:
            parts = split_series_label(track.album)
            if parts:
                meta.series, meta.series_number, meta.title = parts

        if track.comment:
            narrated = split_narrator(track.comment)
            if narrated:
                meta.narrator, meta.description = narrated
            else:
                meta.description = track.comment

        log.debug(f"Synthesized metadata for {book_id!r} from {track.path.name}")
        return meta

    def as_tags(self) -> dict[str, str]:
        """Container tag key/values, skipping anything empty."""
        label = self.book_in_series
        description = self.full_description

        tags: dict[str, str] = {
            "title": label,
            "album": label,
            "genre": "Audiobook",
            "media_type": "2",
        }
        if self.author:
            tags["artist"] = self.author
            tags["album_artist"] = self.author
        if self.narrator:
            tags["composer"] = self.narrator
        if self.year:
            tags["date"] = self.year
        if description:
            tags["comment"] = description
            tags["description"] = description
        if self.series:
            tags["show"] = self.series
            tags["grouping"] = self.series
        return {k: v for k, v in tags.items() if v}


def split_series_label(label: str) -> tuple[str, int, str] | None:
    """Split "Series N: Title" into (series, N, title).

    Examples:
        "Discworld 1: The Colour of Magic" -> ("Discworld", 1, "The Colour of Magic")
        "Standalone Title"                 -> None
    """
    m = _SERIES_LABEL_RE.match(label)
    if not m:
        return None
    series, number, title = m.groups()
    return series.strip(), int(number), title.strip()


def split_narrator(text: str) -> tuple[str, str] | None:
    """Find a "Read by <name>" line and return (name, text without that line).

    The line must be a whole line on its own. A single trailing period is
    dropped from the name, so "Read by Jane Doe." gives "Jane Doe".
    CRLF and CR line breaks are normalized first. Returns None when no
    such line exists.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    m = _NARRATOR_LINE_RE.search(text)
    if not m:
        return None
    narrator = m.group(1).strip()
    remainder = (text[: m.start()] + text[m.end():]).strip()
    return narrator, remainder
