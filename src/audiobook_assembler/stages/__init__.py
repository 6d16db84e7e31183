"""Stage registry -- maps Stage enum values to run functions.

Build order: encode -> chapters -> mux -> cover -> tag -> cleanup
Retag order: cover -> tag -> cleanup

Every stage has the signature ``run(job, config, dry_run=False, **kwargs)``
and raises StageError or ExternalToolError on failure; the runner catches
those per book.

Stages:
    encode   -- Writes files.txt (ffmpeg concat demuxer list, single quotes
                escaped) and runs ffmpeg once to concatenate and encode all
                tracks into a single AAC stream (work_dir/audio.m4a).
    chapters -- Plans one chapter per track from the probed durations and
                writes the CRLF chapter marker file MP4Box reads (-chap).
    mux      -- MP4Box -add audio -chap chapters -new work_dir/muxed.m4b.
                Nothing is written to the output path yet.
    cover    -- Resizes the store's cover image with ImageMagick to fit a
                square box (aspect kept, never enlarged). No-op without an
                image.
    tag      -- ffmpeg -c copy -map_chapters 0 with -metadata key=value for
                every tag from BookMetadata.as_tags(), stream language, and
                the resized cover as attached_pic. Reads the muxed container
                (or, for retag, the output itself), writes a temp file next
                to the output and atomically replaces it.
    cleanup  -- Best-effort removal of intermediate files when enabled.
                Failures are ignored.
"""

from ..models import Stage


def get_stage_runner(stage: Stage):
    """Return the run function for a given stage."""
    if stage == Stage.ENCODE:
        from .encode import run as encode_run

        return encode_run

    if stage == Stage.CHAPTERS:
        from .chapters import run as chapters_run

        return chapters_run

    if stage == Stage.MUX:
        from .mux import run as mux_run

        return mux_run

    if stage == Stage.COVER:
        from .cover import run as cover_run

        return cover_run

    if stage == Stage.TAG:
        from .tag import run as tag_run

        return tag_run

    if stage == Stage.CLEANUP:
        from .cleanup import run as cleanup_run

        return cleanup_run

    raise NotImplementedError(f"Stage '{stage.value}' has no runner.")
