"""Tag extraction from the text dumps of external inspection tools.

ffmpeg (``ffmpeg -i``) and MP4Box (``MP4Box -info``) both print embedded tags
as indented ``key : value`` lines inside a larger report. Wrapped values
continue on following lines that start with a bare colon::

    Metadata:
      title           : The Colour of Magic
      comment         : Read by Nigel Planer.
                      :
                      : The first Discworld novel.
    Duration: 07:45:12.34, start: 0.000000, bitrate: 64 kb/s

Callers bound the region first with isolate_block() so that keys from
unrelated sections (stream metadata, chapter titles, file dates) are not
picked up, then pull individual values out with extract_scalar() or
extract_multiline().
"""

import re
from datetime import timedelta

from loguru import logger

log = logger.bind(stage="tags")

_CONTINUATION_RE = re.compile(r"^\s*:[ \t]?(.*)$")
_TIMESTAMP_RE = re.compile(r"^(\d+):([0-5]?\d):([0-5]?\d)(?:\.(\d+))?$")


def _tag_line_re(tag: str) -> re.Pattern:
    # [ \t] rather than \s after the colon: an empty value must not swallow
    # the following line
    return re.compile(rf"^\s*{re.escape(tag)}\s*:[ \t]*(.*?)[ \t]*$")


def isolate_block(text: str, start: str, end: str | None) -> str | None:
    """Return the lines between a start-marker line and an end-marker line.

    Both markers are regexes matched against individual lines. The start line
    is excluded; scanning for ``end`` begins on the line after it and the end
    line is excluded too. With ``end=None`` the block runs to the end of text.

    Returns None if either marker is not found -- the dump does not have the
    expected shape and nothing in it should be trusted.
    """
    start_re = re.compile(start)
    end_re = re.compile(end) if end is not None else None

    lines = text.splitlines()
    for i, line in enumerate(lines):
        if start_re.search(line):
            body = lines[i + 1:]
            break
    else:
        log.debug(f"Start marker {start!r} not found")
        return None

    if end_re is None:
        return "\n".join(body)

    for j, line in enumerate(body):
        if end_re.search(line):
            return "\n".join(body[:j])

    log.debug(f"End marker {end!r} not found after {start!r}")
    return None


def extract_scalar(text: str, tag: str) -> str | None:
    """Return the trimmed value of the first ``tag: value`` line, or None.

    The tag name is case-sensitive; leading indentation and spacing around
    the colon are ignored. A tag line with nothing after the colon yields an
    empty string, which is distinct from the tag being absent.
    """
    pattern = _tag_line_re(tag)
    for line in text.splitlines():
        m = pattern.match(line)
        if m:
            return m.group(1).strip()
    return None


def extract_multiline(text: str, tag: str) -> str | None:
    """Return a tag value including its colon-prefixed continuation lines.

    Runs a two-state scan over the lines: *seeking* until the first line that
    introduces ``tag:``, then *collecting* every following continuation line
    until the first line that is not one. Segments are joined with newlines
    and the result is trimmed.
    """
    pattern = _tag_line_re(tag)
    segments: list[str] = []
    collecting = False

    for line in text.splitlines():
        if not collecting:
            m = pattern.match(line)
            if m:
                segments.append(m.group(1))
                collecting = True
            continue

        m = _CONTINUATION_RE.match(line)
        if not m:
            break
        segments.append(m.group(1).rstrip())

    if not collecting:
        return None
    return "\n".join(segments).strip()


def parse_timestamp(value: str) -> timedelta | None:
    """Parse ``HH:MM:SS[.fraction]`` into a timedelta.

    Returns None for anything else (including ffmpeg's ``N/A``).
    """
    m = _TIMESTAMP_RE.match(value.strip())
    if not m:
        return None
    hours, minutes, seconds, fraction = m.groups()
    micros = int((fraction or "0").ljust(6, "0")[:6])
    return timedelta(
        hours=int(hours),
        minutes=int(minutes),
        seconds=int(seconds),
        microseconds=micros,
    )
