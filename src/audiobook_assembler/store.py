"""Metadata store -- one YAML record (plus optional cover image) per book.

Records live anywhere under the store directory and are found by book
identifier. The filename may carry a prefix the identifier lacks (for
example "Discworld 01 - The Colour of Magic.yaml" for the identifier
"The Colour of Magic"), so lookup matches on the filename *ending* with the
identifier. A cover image sits in the same tree with the same base name as
its record.

Lookup is two-phase: find_records()/find_images() enumerate candidates,
then load() applies the zero/one/many policy. Nothing here raises for a
missing or ambiguous record -- callers get a LookupResult and decide.

Record format (keys in this order, empty fields omitted)::

    title: The Colour of Magic
    author: Terry Pratchett
    series: Discworld
    seriesNumber: 1
    year: '1983'
    narrator: Nigel Planer
    description: |-
      First paragraph.

      Second paragraph.
"""

from __future__ import annotations

import glob
import shutil
from pathlib import Path

import yaml
from loguru import logger
from rapidfuzz import fuzz, process

from .metadata import DEFAULT_LANGUAGE, BookMetadata
from .models import IMAGE_EXTENSIONS, RECORD_EXTENSIONS, LookupResult, LookupStatus

log = logger.bind(stage="store")

# Wide enough that PyYAML never folds a long single-line value
_YAML_WIDTH = 1 << 16


class _RecordDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, value: str) -> yaml.ScalarNode:
    style = "|" if "\n" in value else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", value, style=style)


_RecordDumper.add_representer(str, _represent_str)


def find_records(store_dir: Path, book_id: str) -> list[Path]:
    """All record files under store_dir whose name ends with book_id."""
    if not store_dir.is_dir():
        log.debug(f"Store dir does not exist: {store_dir}")
        return []

    escaped = glob.escape(book_id)
    found: set[Path] = set()
    for ext in RECORD_EXTENSIONS:
        found.update(p for p in store_dir.rglob(f"*{escaped}{ext}") if p.is_file())
    return sorted(found)


def find_images(store_dir: Path, stem: str) -> list[Path]:
    """All image files under store_dir whose base name is exactly stem."""
    if not store_dir.is_dir():
        return []
    return sorted(
        p
        for p in store_dir.rglob("*")
        if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS and p.stem == stem
    )


def _closest_records(store_dir: Path, book_id: str) -> list[str]:
    """Record names that look like book_id, for the not-found warning."""
    stems = sorted(
        {
            p.stem
            for ext in RECORD_EXTENSIONS
            for p in store_dir.rglob(f"*{ext}")
            if p.is_file()
        }
    )
    matches = process.extract(
        book_id, stems, scorer=fuzz.token_sort_ratio, limit=3, score_cutoff=60
    )
    return [name for name, _score, _idx in matches]


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _as_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_record(path: Path) -> BookMetadata:
    """Read one record file. Raises ValueError/yaml.YAMLError if it is unusable."""
    # utf-8-sig: hand-edited files sometimes arrive with a BOM
    raw = yaml.safe_load(path.read_text(encoding="utf-8-sig"))
    if not isinstance(raw, dict):
        raise ValueError(f"expected a mapping, got {type(raw).__name__}")

    series_number = raw.get("seriesNumber")
    if series_number is not None and str(series_number).strip():
        try:
            series_number = int(str(series_number).strip())
        except ValueError:
            raise ValueError(f"seriesNumber is not an integer: {series_number!r}")
    else:
        series_number = None

    description = _as_text(raw.get("description"))
    if description is not None:
        description = _normalize_newlines(description).strip()

    return BookMetadata(
        title=_as_text(raw.get("title")),
        author=_as_text(raw.get("author")),
        series=_as_text(raw.get("series")),
        series_number=series_number,
        narrator=_as_text(raw.get("narrator")),
        year=_as_text(raw.get("year")),
        language=_as_text(raw.get("language")) or DEFAULT_LANGUAGE,
        description=description,
    )


def load(store_dir: Path, book_id: str) -> LookupResult:
    """Look up a book's record (and cover image) by identifier.

    Returns LookupResult with status:
      FOUND     -- exactly one record; value is a BookMetadata
      NOT_FOUND -- no record matches
      AMBIGUOUS -- more than one record matches (candidates listed)
      MALFORMED -- the one matching record could not be parsed

    A missing or ambiguous cover image only logs a warning; the metadata is
    still returned, with image=None.
    """
    candidates = find_records(store_dir, book_id)

    if not candidates:
        reason = f"No metadata record for {book_id!r} in {store_dir}"
        close = _closest_records(store_dir, book_id) if store_dir.is_dir() else []
        if close:
            log.warning(f"{reason} (closest: {', '.join(close)})")
        else:
            log.warning(reason)
        return LookupResult(LookupStatus.NOT_FOUND, reason=reason)

    if len(candidates) > 1:
        reason = f"{len(candidates)} metadata records match {book_id!r}"
        log.warning(f"{reason}: {', '.join(str(c) for c in candidates)}")
        return LookupResult(
            LookupStatus.AMBIGUOUS, reason=reason, candidates=candidates
        )

    record = candidates[0]
    try:
        meta = _parse_record(record)
    except (yaml.YAMLError, ValueError, OSError) as e:
        reason = f"Cannot parse {record}: {e}"
        log.warning(reason)
        return LookupResult(
            LookupStatus.MALFORMED, reason=reason, candidates=candidates
        )

    images = find_images(store_dir, record.stem)
    if not images:
        log.warning(f"No cover image for {record.stem!r}, continuing without one")
    elif len(images) > 1:
        log.warning(
            f"{len(images)} cover images match {record.stem!r}, "
            f"continuing without one: {', '.join(str(i) for i in images)}"
        )
    else:
        meta.image = images[0]

    log.debug(f"Loaded metadata for {book_id!r} from {record}")
    return LookupResult.found(meta, candidates=candidates)


def _record_fields(meta: BookMetadata) -> dict[str, object]:
    fields: dict[str, object] = {
        "title": meta.title,
        "author": meta.author,
        "series": meta.series,
        "seriesNumber": meta.series_number,
        "year": meta.year,
        "narrator": meta.narrator,
        "description": (
            _normalize_newlines(meta.description).strip() if meta.description else None
        ),
    }
    if meta.language and meta.language != DEFAULT_LANGUAGE:
        fields["language"] = meta.language
    return {k: v for k, v in fields.items() if v is not None and v != ""}


def save(store_dir: Path, book_id: str, meta: BookMetadata) -> Path:
    """Write a book's record to store_dir/<book_id>.yaml and copy its cover.

    Creates store_dir if needed. Empty fields are left out. The cover (if
    meta.image points at an existing file) is copied alongside the record
    under the same base name, replacing covers with other extensions.
    """
    store_dir.mkdir(parents=True, exist_ok=True)
    record = store_dir / f"{book_id}{RECORD_EXTENSIONS[0]}"

    text = yaml.dump(
        _record_fields(meta),
        Dumper=_RecordDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=_YAML_WIDTH,
    )
    record.write_text(text, encoding="utf-8")
    log.debug(f"Wrote metadata record {record}")

    if meta.image and meta.image.is_file():
        source = meta.image.resolve()
        if source.parent == store_dir.resolve() and source.stem == book_id:
            # Already the store's cover, whatever the case of its extension
            dest = source
        else:
            dest = store_dir / f"{book_id}{meta.image.suffix.lower()}"
            shutil.copy2(meta.image, dest)
            log.debug(f"Copied cover {meta.image} -> {dest}")
        for old in store_dir.iterdir():
            if (
                old.stem == book_id
                and old.suffix.lower() in IMAGE_EXTENSIONS
                and old.name != dest.name
                and old.resolve() != source
            ):
                old.unlink()

    return record
