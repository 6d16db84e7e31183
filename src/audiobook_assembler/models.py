"""Core enums, constants, and record types for the audiobook assembler.

Enums:
    Command       -- Top-level operation (build, export, retag).
    Stage         -- Individual pipeline stage (encode through cleanup).
    LookupStatus  -- Outcome of a metadata store lookup (found, not found,
                     ambiguous, malformed).

Records:
    TrackInfo     -- Tags and duration read from one source track.
    Chapter       -- One chapter marker (1-based index, start offset, label).
    LookupResult  -- Value-or-reason wrapper returned by store lookups.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any


class Command(StrEnum):
    BUILD = "build"
    EXPORT = "export"
    RETAG = "retag"


class Stage(StrEnum):
    ENCODE = "encode"
    CHAPTERS = "chapters"
    MUX = "mux"
    COVER = "cover"
    TAG = "tag"
    CLEANUP = "cleanup"


class LookupStatus(StrEnum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    MALFORMED = "malformed"


# Which stages run for each command (export has no stages, it only reads)
STAGE_ORDER: dict[Command, list[Stage]] = {
    Command.BUILD: [
        Stage.ENCODE,
        Stage.CHAPTERS,
        Stage.MUX,
        Stage.COVER,
        Stage.TAG,
        Stage.CLEANUP,
    ],
    Command.RETAG: [
        Stage.COVER,
        Stage.TAG,
        Stage.CLEANUP,
    ],
}

AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp3",
        ".m4a",
        ".flac",
        ".ogg",
        ".wma",
        ".wav",
    }
)

IMAGE_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png"})

# First entry is what save() writes
RECORD_EXTENSIONS: tuple[str, ...] = (".yaml", ".yml")


@dataclass(frozen=True)
class TrackInfo:
    """Tags and duration parsed from one source track's inspection dump."""

    path: Path
    artist: str | None = None
    album: str | None = None
    name: str | None = None
    year: str | None = None
    genre: str | None = None
    comment: str | None = None
    duration: timedelta = timedelta(0)


@dataclass(frozen=True)
class Chapter:
    index: int
    start: timedelta
    label: str = ""

    def __post_init__(self) -> None:
        if not self.label:
            object.__setattr__(self, "label", f"Chapter {self.index}")


@dataclass
class LookupResult:
    """Either a looked-up value or the reason there is none.

    Truthy only when status is FOUND, so callers can write
    ``if result: use(result.value)``.
    """

    status: LookupStatus
    value: Any = None
    reason: str = ""
    candidates: list[Path] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.status == LookupStatus.FOUND

    @classmethod
    def found(cls, value: Any, candidates: list[Path] | None = None) -> "LookupResult":
        return cls(LookupStatus.FOUND, value=value, candidates=candidates or [])


@dataclass
class BatchResult:
    """Result summary from a multi-book run."""

    completed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
