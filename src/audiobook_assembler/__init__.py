"""Audiobook Assembler -- build chaptered, tagged M4B files from per-chapter tracks.

Core modules:
    tags      -- Tag extraction from ffmpeg / MP4Box inspection dumps: block
                 isolation, single-line values, colon-continued multi-line
                 values, HH:MM:SS timestamps.
    metadata  -- BookMetadata with derived "Series N: Title" label and
                 "Read by ..." description, plus the parsers that invert them.
    store     -- YAML metadata store: one record (+ cover image) per book,
                 looked up by book identifier. Returns LookupResult instead of
                 raising for missing/ambiguous/malformed records.
    chapters  -- One chapter per track; renders the CRLF CHAPTERxx= file MP4Box reads.
    probe     -- Runs ffmpeg -i / MP4Box -info and feeds the dumps to tags.
    tools     -- External binary discovery (fails before anything is written)
                 and the subprocess wrapper.
    config    -- Configuration via pydantic-settings (.env + env vars + CLI kwargs)
                 and loguru setup.
    cli       -- Click CLI: build, export, retag, doctor.
    runner    -- Per-book orchestration and stage sequencing.
    sanitize  -- Filename sanitization and output path templating.
    job       -- BookJob, the per-book state handed from stage to stage.
    models    -- Enums (Command, Stage, LookupStatus), stage order, record types.
    errors    -- Exception hierarchy rooted at AssemblerError.

Subpackages:
    stages    -- encode, chapters, mux, cover, tag, cleanup
"""
