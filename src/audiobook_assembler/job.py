"""Per-book working state passed from stage to stage.

A BookJob lives for one run of one book and is never persisted. Everything
it creates lives in work_dir until the tag stage publishes output_file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .metadata import BookMetadata
from .models import TrackInfo
from .tools import Toolchain


@dataclass
class BookJob:
    book_id: str
    source: Path
    work_dir: Path
    output_file: Path
    metadata: BookMetadata
    tools: Toolchain
    tracks: list[TrackInfo] = field(default_factory=list)

    # Set by the stages that create them
    audio_file: Path | None = None
    chapters_file: Path | None = None
    muxed_file: Path | None = None
    cover_file: Path | None = None

    @property
    def concat_list(self) -> Path:
        return self.work_dir / "files.txt"

    @property
    def temp_files(self) -> list[Path]:
        """Intermediate files safe to delete once the container is tagged."""
        candidates = [
            self.concat_list,
            self.audio_file,
            self.chapters_file,
            self.muxed_file,
            self.cover_file,
        ]
        return [p for p in candidates if p is not None]
