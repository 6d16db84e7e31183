"""Tests for runner.py -- discovery, metadata resolution, and orchestration."""

from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from audiobook_assembler import store
from audiobook_assembler.config import AssemblerConfig
from audiobook_assembler.errors import (
    ConfigError,
    ExternalToolError,
    MissingDependencyError,
    StageError,
)
from audiobook_assembler.metadata import BookMetadata
from audiobook_assembler.models import Command, Stage, TrackInfo
from audiobook_assembler.runner import (
    AssemblerRunner,
    discover_tracks,
    find_book_directories,
)
from audiobook_assembler.tools import Toolchain

TOOLS = Toolchain(ffmpeg="ffmpeg", mp4box="MP4Box", magick="magick")


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    return path


def _make_config(tmp_path, **kwargs):
    return AssemblerConfig(
        _env_file=None,
        output_dir=tmp_path / "out",
        work_dir=tmp_path / "work",
        log_dir=tmp_path / "logs",
        **kwargs,
    )


def _fake_probe(ffmpeg, path):
    return TrackInfo(
        path=path,
        artist="Terry Pratchett",
        album="Discworld 1: The Colour of Magic",
        comment="Read by Nigel Planer.",
        duration=timedelta(minutes=30),
    )


def _write_last_arg(cmd, tool, check=True):
    Path(cmd[-1]).write_bytes(b"\x00")

class TestDiscoverTracks:
    def test_natural_order(self, tmp_path):
        for name in ["Chapter 10.mp3", "Chapter 2.mp3", "chapter 1.MP3", "cover.jpg"]:
            _touch(tmp_path / name)
        names = [p.name for p in discover_tracks(tmp_path)]
        assert names == ["chapter 1.MP3", "Chapter 2.mp3", "Chapter 10.mp3"]

    def test_disc_folders(self, tmp_path):
        _touch(tmp_path / "CD2" / "01.mp3")
        _touch(tmp_path / "CD10" / "01.mp3")
        _touch(tmp_path / "CD1" / "02.mp3")
        _touch(tmp_path / "CD1" / "01.mp3")
        rel = [p.relative_to(tmp_path).as_posix() for p in discover_tracks(tmp_path)]
        assert rel == ["CD1/01.mp3", "CD1/02.mp3", "CD2/01.mp3", "CD10/01.mp3"]

    def test_empty(self, tmp_path):
        assert discover_tracks(tmp_path) == []


class TestFindBookDirectories:
    def test_finds_each_book(self, tmp_path):
        _touch(tmp_path / "Pratchett" / "Mort" / "01.mp3")
        _touch(tmp_path / "Good Omens" / "01.m4a")
        (tmp_path / "Empty").mkdir()
        found = find_book_directories(tmp_path)
        assert found == [tmp_path / "Good Omens", tmp_path / "Pratchett" / "Mort"]

    def test_subfolders_of_book_pruned(self, tmp_path):
        _touch(tmp_path / "Book" / "01.mp3")
        _touch(tmp_path / "Book" / "Bonus" / "01.mp3")
        assert find_book_directories(tmp_path) == [tmp_path / "Book"]

    def test_source_is_book(self, tmp_path):
        _touch(tmp_path / "01.mp3")
        assert find_book_directories(tmp_path) == [tmp_path]


class TestResolveMetadata:
    def test_no_store_uses_track_tags(self, tmp_path):
        runner = AssemblerRunner(_make_config(tmp_path, language="fr"))
        meta = runner.resolve_metadata("The Colour of Magic", _fake_probe("", Path("01.mp3")))
        assert meta.series == "Discworld"
        assert meta.title == "The Colour of Magic"
        assert meta.narrator == "Nigel Planer"
        assert meta.language == "fr"

    def test_store_record_wins(self, tmp_path):
        store_dir = tmp_path / "store"
        store.save(store_dir, "Mort", BookMetadata(title="Mort", author="Pratchett"))
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir))
        meta = runner.resolve_metadata("Mort", _fake_probe("", Path("01.mp3")))
        assert meta.title == "Mort"
        assert meta.author == "Pratchett"
        assert meta.series is None

    def test_missing_record_falls_back(self, tmp_path):
        store_dir = tmp_path / "store"
        store_dir.mkdir()
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir))
        meta = runner.resolve_metadata("Mort", _fake_probe("", Path("01.mp3")))
        assert meta.author == "Terry Pratchett"


@patch("audiobook_assembler.runner.resolve_toolchain", return_value=TOOLS)
@patch("audiobook_assembler.runner.probe_track", side_effect=_fake_probe)
@patch("audiobook_assembler.runner.require", return_value="ffmpeg")
class TestBuildBook:
    def _book(self, tmp_path):
        book = tmp_path / "src" / "The Colour of Magic"
        _touch(book / "01.mp3")
        _touch(book / "02.mp3")
        return book

    def test_runs_build_stages(self, mock_require, mock_probe, mock_tools, tmp_path):
        runner = AssemblerRunner(_make_config(tmp_path))
        with patch.object(AssemblerRunner, "_run_stages", return_value=True) as mock_stages:
            assert runner.build_book(self._book(tmp_path)) is True

        command, job = mock_stages.call_args[0]
        assert command == Command.BUILD
        assert len(job.tracks) == 2
        assert job.output_file == (
            tmp_path / "out" / "Terry Pratchett" / "Discworld" / "The Colour of Magic.m4b"
        )
        assert job.work_dir == tmp_path / "work" / "The Colour of Magic"

    def test_existing_output_skipped(self, mock_require, mock_probe, mock_tools, tmp_path):
        _touch(tmp_path / "out" / "Terry Pratchett" / "Discworld" / "The Colour of Magic.m4b")
        runner = AssemblerRunner(_make_config(tmp_path))
        with patch.object(AssemblerRunner, "_run_stages") as mock_stages:
            assert runner.build_book(self._book(tmp_path)) is None
        mock_stages.assert_not_called()

    def test_force_overwrites(self, mock_require, mock_probe, mock_tools, tmp_path):
        _touch(tmp_path / "out" / "Terry Pratchett" / "Discworld" / "The Colour of Magic.m4b")
        runner = AssemblerRunner(_make_config(tmp_path, force=True))
        with patch.object(AssemblerRunner, "_run_stages", return_value=True):
            assert runner.build_book(self._book(tmp_path)) is True

    def test_unreadable_track_fails_book(self, mock_require, mock_probe, mock_tools, tmp_path):
        mock_probe.side_effect = None
        mock_probe.return_value = None
        runner = AssemblerRunner(_make_config(tmp_path))
        assert runner.build_book(self._book(tmp_path)) is False

    def test_missing_tool_fails_book(self, mock_require, mock_probe, mock_tools, tmp_path):
        mock_tools.side_effect = MissingDependencyError("MP4Box")
        runner = AssemblerRunner(_make_config(tmp_path))
        with patch.object(AssemblerRunner, "_run_stages") as mock_stages:
            assert runner.build_book(self._book(tmp_path)) is False
        mock_stages.assert_not_called()

    def test_cover_requires_imagemagick(self, mock_require, mock_probe, mock_tools, tmp_path):
        store_dir = tmp_path / "store"
        cover = _touch(tmp_path / "cover.jpg")
        store.save(store_dir, "The Colour of Magic", BookMetadata(title="T", image=cover))
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir))
        with patch.object(AssemblerRunner, "_run_stages", return_value=True):
            runner.build_book(self._book(tmp_path))
        assert mock_tools.call_args.kwargs["need_magick"] is True


    @patch(
        "audiobook_assembler.stages.tag.run_tool",
        side_effect=ExternalToolError("ffmpeg", 1, "Invalid argument"),
    )
    @patch("audiobook_assembler.stages.mux.run_tool", side_effect=_write_last_arg)
    @patch("audiobook_assembler.stages.encode.run_tool", side_effect=_write_last_arg)
    def test_failed_tag_leaves_no_output(
        self, mock_encode, mock_mux, mock_tag, mock_require, mock_probe, mock_tools, tmp_path
    ):
        runner = AssemblerRunner(_make_config(tmp_path))
        book = self._book(tmp_path)
        assert runner.build_book(book) is False
        assert list((tmp_path / "out").rglob("*.m4b*")) == []

        # Not mistaken for a finished book on the next run
        assert runner.build_book(book) is False
        assert mock_mux.call_count == 2

class TestBuild:
    def test_counts_outcomes(self, tmp_path):
        for name in ("A", "B", "C"):
            _touch(tmp_path / "src" / name / "01.mp3")
        runner = AssemblerRunner(_make_config(tmp_path))
        with patch.object(AssemblerRunner, "build_book", side_effect=[True, False, None]):
            result = runner.build(tmp_path / "src")
        assert (result.total, result.completed, result.failed, result.skipped) == (3, 1, 1, 1)

    def test_unexpected_error_does_not_stop_batch(self, tmp_path):
        for name in ("A", "B"):
            _touch(tmp_path / "src" / name / "01.mp3")
        runner = AssemblerRunner(_make_config(tmp_path))
        with patch.object(
            AssemblerRunner, "build_book", side_effect=[RuntimeError("boom"), True]
        ) as mock_build:
            result = runner.build(tmp_path / "src")
        assert mock_build.call_count == 2
        assert (result.completed, result.failed) == (1, 1)

    @patch("audiobook_assembler.runner.resolve_toolchain", return_value=TOOLS)
    @patch("audiobook_assembler.runner.probe_track", side_effect=_fake_probe)
    @patch("audiobook_assembler.runner.require", return_value="ffmpeg")
    def test_unwritable_work_dir_fails_only_that_book(
        self, mock_require, mock_probe, mock_tools, tmp_path
    ):
        for name in ("A", "B"):
            _touch(tmp_path / "src" / name / "01.mp3")
        runners = {s: MagicMock() for s in Stage}
        runners[Stage.ENCODE].side_effect = [PermissionError("denied"), None]
        runner = AssemblerRunner(_make_config(tmp_path))
        with patch("audiobook_assembler.runner.get_stage_runner", side_effect=runners.get):
            result = runner.build(tmp_path / "src")
        assert (result.completed, result.failed) == (1, 1)
        assert runners[Stage.CLEANUP].call_count == 2

    def test_nothing_to_build(self, tmp_path):
        result = AssemblerRunner(_make_config(tmp_path)).build(tmp_path)
        assert result.total == 0


class TestRunStages:
    def _job(self, tmp_path):
        from audiobook_assembler.job import BookJob

        return BookJob(
            book_id="book",
            source=tmp_path,
            work_dir=tmp_path / "work",
            output_file=tmp_path / "book.m4b",
            metadata=BookMetadata(title="Book"),
            tools=TOOLS,
        )

    def test_runs_in_order(self, tmp_path):
        calls = []
        runners = {s: MagicMock(side_effect=lambda *a, s=s, **k: calls.append(s)) for s in Stage}
        with patch("audiobook_assembler.runner.get_stage_runner", side_effect=runners.get):
            ok = AssemblerRunner(_make_config(tmp_path))._run_stages(
                Command.RETAG, self._job(tmp_path)
            )
        assert ok is True
        assert calls == [Stage.COVER, Stage.TAG, Stage.CLEANUP]

    @pytest.mark.parametrize(
        "error",
        [
            StageError("bad", stage="mux"),
            ExternalToolError("MP4Box", 1, "bad"),
            PermissionError("denied"),
        ],
    )
    def test_failure_stops_and_cleans_up(self, tmp_path, error):
        runners = {s: MagicMock() for s in Stage}
        runners[Stage.MUX].side_effect = error
        with patch("audiobook_assembler.runner.get_stage_runner", side_effect=runners.get):
            ok = AssemblerRunner(_make_config(tmp_path))._run_stages(
                Command.BUILD, self._job(tmp_path)
            )
        assert ok is False
        runners[Stage.COVER].assert_not_called()
        runners[Stage.TAG].assert_not_called()
        runners[Stage.CLEANUP].assert_called_once()


MP4BOX_INFO = """\
iTunes Info:
\tName: Discworld 4: Mort
\tArtist: Terry Pratchett
\tCreated: 1987
\tComment: Read by Nigel Planer.
1 UDTA types: chpl (1)
"""


class TestExport:
    def test_requires_store(self, tmp_path):
        with pytest.raises(ConfigError):
            AssemblerRunner(_make_config(tmp_path)).export(tmp_path / "Mort.m4b")

    @patch("audiobook_assembler.runner.resolve_toolchain", return_value=TOOLS)
    @patch("audiobook_assembler.probe.run_tool")
    @patch("audiobook_assembler.runner.run_tool")
    def test_saves_record_and_cover(self, mock_ffmpeg, mock_mp4box, mock_tools, tmp_path):
        import subprocess

        mock_mp4box.return_value = subprocess.CompletedProcess(
            args=[], returncode=0, stdout=MP4BOX_INFO, stderr=""
        )
        mock_ffmpeg.side_effect = lambda cmd, tool, check=True: Path(cmd[-1]).write_bytes(b"jpg")

        store_dir = tmp_path / "store"
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir))
        record = runner.export(tmp_path / "Mort.m4b")

        assert record == store_dir / "Mort.yaml"
        loaded = store.load(store_dir, "Mort").value
        assert loaded.series == "Discworld"
        assert loaded.series_number == 4
        assert loaded.title == "Mort"
        assert loaded.narrator == "Nigel Planer"
        assert loaded.image == store_dir / "Mort.jpg"
        assert not (tmp_path / "work" / "Mort").exists()

    @patch("audiobook_assembler.runner.resolve_toolchain", return_value=TOOLS)
    @patch("audiobook_assembler.probe.run_tool")
    @patch(
        "audiobook_assembler.runner.run_tool",
        side_effect=ExternalToolError("ffmpeg", 1, "Stream map '0:v:0' matches no streams"),
    )
    def test_no_cover(self, mock_ffmpeg, mock_mp4box, mock_tools, tmp_path):
        import subprocess

        mock_mp4box.return_value = subprocess.CompletedProcess(
            args=[], returncode=0, stdout=MP4BOX_INFO, stderr=""
        )
        store_dir = tmp_path / "store"
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir))
        assert runner.export(tmp_path / "Mort.m4b") == store_dir / "Mort.yaml"
        assert store.find_images(store_dir, "Mort") == []

    @patch("audiobook_assembler.runner.resolve_toolchain", return_value=TOOLS)
    @patch("audiobook_assembler.runner.probe_container", return_value=BookMetadata(title="Mort"))
    def test_dry_run(self, mock_probe, mock_tools, tmp_path):
        store_dir = tmp_path / "store"
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir, dry_run=True))
        assert runner.export(tmp_path / "Mort.m4b") is None
        assert not store_dir.exists()

    @patch("audiobook_assembler.runner.resolve_toolchain", return_value=TOOLS)
    @patch("audiobook_assembler.runner.probe_container", return_value=None)
    def test_unreadable_container(self, mock_probe, mock_tools, tmp_path):
        store_dir = tmp_path / "store"
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir))
        assert runner.export(tmp_path / "Mort.m4b") is None
        assert not store_dir.exists()


class TestRetag:
    def test_requires_store(self, tmp_path):
        with pytest.raises(ConfigError):
            AssemblerRunner(_make_config(tmp_path)).retag(tmp_path / "Mort.m4b")

    def test_no_record(self, tmp_path):
        store_dir = tmp_path / "store"
        store_dir.mkdir()
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir))
        with patch.object(AssemblerRunner, "_run_stages") as mock_stages:
            assert runner.retag(tmp_path / "Mort.m4b") is False
        mock_stages.assert_not_called()

    @patch("audiobook_assembler.runner.resolve_toolchain", return_value=TOOLS)
    def test_runs_retag_stages(self, mock_tools, tmp_path):
        store_dir = tmp_path / "store"
        store.save(store_dir, "Mort", BookMetadata(title="Mort"))
        container = _touch(tmp_path / "library" / "Mort.m4b")
        runner = AssemblerRunner(_make_config(tmp_path, metadata_dir=store_dir))
        with patch.object(AssemblerRunner, "_run_stages", return_value=True) as mock_stages:
            assert runner.retag(container) is True

        command, job = mock_stages.call_args[0]
        assert command == Command.RETAG
        assert job.output_file == container
        assert job.metadata.title == "Mort"
        assert mock_tools.call_args.kwargs["need_mp4box"] is False
