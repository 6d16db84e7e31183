"""External tool discovery and subprocess wrapper.

Tools are resolved once per book, before anything is written, so a missing
binary aborts the operation without leaving partial output behind.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from .errors import ExternalToolError, MissingDependencyError

if TYPE_CHECKING:
    from .config import AssemblerConfig

log = logger.bind(stage="tools")

# ImageMagick 6 ships "convert"; 7 ships "magick"
MAGICK_FALLBACKS = ("magick", "convert")


def locate(name: str, fallbacks: tuple[str, ...] = ()) -> str | None:
    """Return the full path of the first of name/fallbacks found on PATH."""
    for candidate in (name, *fallbacks):
        found = shutil.which(candidate)
        if found:
            return found
    return None


def require(name: str, fallbacks: tuple[str, ...] = ()) -> str:
    """Like locate(), but raise MissingDependencyError when nothing is found."""
    found = locate(name, fallbacks)
    if found is None:
        raise MissingDependencyError(name)
    log.debug(f"Using {name}: {found}")
    return found


@dataclass(frozen=True)
class Toolchain:
    ffmpeg: str
    mp4box: str | None = None
    magick: str | None = None


def resolve_toolchain(
    config: AssemblerConfig,
    need_mp4box: bool = True,
    need_magick: bool = False,
) -> Toolchain:
    """Resolve every binary the operation will call, or raise up front."""
    ffmpeg = require(config.ffmpeg_bin)
    mp4box = require(config.mp4box_bin) if need_mp4box else None
    magick = None
    if need_magick:
        fallbacks = tuple(f for f in MAGICK_FALLBACKS if f != config.magick_bin)
        magick = require(config.magick_bin, fallbacks)
    return Toolchain(ffmpeg=ffmpeg, mp4box=mp4box, magick=magick)


def run_tool(
    cmd: list[str],
    tool: str,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run an external tool, capturing text output.

    With check=True a non-zero exit raises ExternalToolError carrying the
    tail of stderr. No timeout: an encoder run on a long book can take hours.
    """
    log.debug(f"{tool} command: {' '.join(cmd)}")
    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    if check and result.returncode != 0:
        raise ExternalToolError(tool, result.returncode, result.stderr[-500:])
    return result
