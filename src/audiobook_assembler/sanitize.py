"""Filename sanitization and output path templating."""

import re
from pathlib import Path

from loguru import logger

from .errors import ConfigError
from .metadata import BookMetadata

log = logger.bind(stage="sanitize")

TEMPLATE_FIELDS = ("author", "series", "book")


def sanitize_filename(filename: str) -> str:
    """Sanitize a filename component (not a full path).

    Replaces unsafe chars with underscores, removes leading dots,
    collapses repeated underscores, truncates to 255 bytes preserving extension.
    """
    # Replace unsafe characters
    sanitized = re.sub(r'[/\\:"*?<>|;]+', '_', filename)
    # Remove leading/trailing dots, underscores and spaces
    sanitized = re.sub(r'^[._ ]+', '', sanitized)
    sanitized = re.sub(r'[._ ]+$', '', sanitized)
    # Collapse repeated underscores
    sanitized = re.sub(r'__+', '_', sanitized)

    # Truncate to 255 bytes preserving extension
    original_len = len(sanitized.encode('utf-8'))
    if original_len > 255:
        p = Path(sanitized)
        ext = p.suffix
        stem = p.stem
        if ext:
            while len((stem + ext).encode('utf-8')) > 255 and stem:
                stem = stem[:-1]
            sanitized = stem + ext
        else:
            while len(sanitized.encode('utf-8')) > 255 and sanitized:
                sanitized = sanitized[:-1]
        log.debug(f"Truncated filename from {original_len} to {len(sanitized.encode('utf-8'))} bytes: '{sanitized}'")

    return sanitized


def render_output_path(
    output_dir: Path,
    template: str,
    meta: BookMetadata,
    book_id: str,
) -> Path:
    """Expand an output template like "{author}/{series}/{book}.m4b".

    Each "/"-separated segment is formatted and sanitized on its own.
    Segments that come out empty (a standalone book has no series) are
    dropped. The final segment always ends in .m4b.

    Examples:
        author="Terry Pratchett", series="Discworld", book="The Colour of Magic"
            -> output_dir/Terry Pratchett/Discworld/The Colour of Magic.m4b
        author="", series="", book="Notes"
            -> output_dir/Notes.m4b
    """
    values = {
        "author": sanitize_filename(meta.author or ""),
        "series": sanitize_filename(meta.series or ""),
        "book": sanitize_filename(book_id),
    }

    segments: list[str] = []
    for raw in template.split("/"):
        try:
            rendered = raw.format_map(values)
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigError(
                f"Bad output template {template!r}: {e} "
                f"(placeholders: {', '.join(TEMPLATE_FIELDS)})"
            ) from e
        rendered = rendered.strip()
        if rendered.lower().endswith(".m4b"):
            rendered = rendered[:-4]
        cleaned = sanitize_filename(rendered)
        if cleaned:
            segments.append(cleaned)

    if not segments:
        segments.append(sanitize_filename(book_id) or "audiobook")
    segments[-1] += ".m4b"

    path = output_dir.joinpath(*segments)
    log.debug(f"Output path for {book_id!r}: {path}")
    return path
