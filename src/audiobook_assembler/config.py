"""Assembler configuration via pydantic-settings (.env + env vars)."""

import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict


class AssemblerConfig(BaseSettings):
    """All assembler configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Directories --
    output_dir: Path = Path(".")
    metadata_dir: Path | None = None
    work_dir: Path = Path(".audiobook-work")
    log_dir: Path = Path.home() / ".local" / "state" / "audiobook-assembler"

    # Placeholders: {author}, {series}, {book}. Segments that render empty
    # are dropped, so standalone books skip the series folder.
    output_template: str = "{author}/{series}/{book}.m4b"

    # -- External tools --
    ffmpeg_bin: str = "ffmpeg"
    mp4box_bin: str = "MP4Box"
    magick_bin: str = "magick"

    # -- Encoding --
    bitrate: int = 64
    channels: int = 1
    sample_rate: int = 44100
    codec: str = "aac"

    # -- Cover art --
    cover_size: int = 600
    cover_quality: int = 90

    # -- Behavior --
    cleanup: bool = True
    force: bool = False
    dry_run: bool = False
    verbose: bool = False
    log_level: str = "INFO"
    language: str = "en"

    def ensure_dirs(self) -> None:
        """Create output and work directories if they don't exist."""
        for d in (self.output_dir, self.work_dir):
            d.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure loguru for the assembler."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<10} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "assembler.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
