import logging
import time
from pathlib import Path
from types import SimpleNamespace

import pytest
from pydub import AudioSegment

from narration_pipeline.merger import (
    FfmpegConcatenator,
    MergeError,
    PydubConcatenator,
    merge_artifacts,
)
from narration_pipeline.synthesis import SynthesisArtifact


def _write_artifacts(directory: Path, durations):
    directory.mkdir(parents=True, exist_ok=True)
    artifacts = []
    for index, duration in enumerate(durations):
        segment = AudioSegment.silent(duration=duration, frame_rate=24000)
        file_path = directory / f"chunk_{index:03d}.wav"
        segment.export(file_path, format="wav")
        artifacts.append(SynthesisArtifact(index=index, file_path=file_path, text=f"chunk-{index}"))
    return artifacts


class RecordingConcatenator:
    def __init__(self, payload=b"merged-audio", error=None):
        self.calls = []
        self.payload = payload
        self.error = error

    def __call__(self, paths, output_path):
        self.calls.append(list(paths))
        if self.error is not None:
            raise self.error
        output_path.write_bytes(self.payload)
        return output_path


def test_single_chunk_is_copied_without_concatenation(tmp_path):
    artifacts = _write_artifacts(tmp_path / "chunks", [500])
    original = artifacts[0].file_path.read_bytes()
    concatenate = RecordingConcatenator()
    output_path = tmp_path / "output.wav"

    result = merge_artifacts(artifacts, output_path, started_at=time.time() - 5, concatenate=concatenate)

    assert concatenate.calls == []
    assert output_path.read_bytes() == original
    assert result.chunk_count == 1
    assert result.size_bytes == len(original)
    assert not artifacts[0].file_path.exists()


def test_multiple_chunks_are_concatenated_in_index_order(tmp_path):
    durations = [1000, 1500, 800]
    artifacts = _write_artifacts(tmp_path / "chunks", durations)
    output_path = tmp_path / "out" / "merged.wav"

    result = merge_artifacts(
        list(reversed(artifacts)),
        output_path,
        started_at=time.time() - 5,
        concatenate=PydubConcatenator(),
    )

    merged = AudioSegment.from_file(output_path, format="wav")
    assert abs(len(merged) - sum(durations)) <= 50
    assert result.chunk_count == 3
    assert result.stale is False
    assert all(not artifact.file_path.exists() for artifact in artifacts)


def test_concatenator_receives_paths_in_order(tmp_path):
    artifacts = _write_artifacts(tmp_path / "chunks", [100, 100, 100])
    concatenate = RecordingConcatenator()

    merge_artifacts(artifacts, tmp_path / "output.wav", started_at=time.time() - 5, concatenate=concatenate)

    assert concatenate.calls == [[artifact.file_path for artifact in artifacts]]


def test_concatenation_failure_preserves_chunks(tmp_path):
    artifacts = _write_artifacts(tmp_path / "chunks", [100, 100])
    concatenate = RecordingConcatenator(error=OSError("disk on fire"))
    output_path = tmp_path / "output.wav"

    with pytest.raises(MergeError) as excinfo:
        merge_artifacts(artifacts, output_path, started_at=time.time() - 5, concatenate=concatenate)

    assert isinstance(excinfo.value.__cause__, OSError)
    assert all(artifact.file_path.exists() for artifact in artifacts)
    assert not output_path.exists()


def test_empty_output_is_rejected_and_removed(tmp_path):
    artifacts = _write_artifacts(tmp_path / "chunks", [100, 100])
    output_path = tmp_path / "output.wav"

    with pytest.raises(MergeError):
        merge_artifacts(
            artifacts,
            output_path,
            started_at=time.time(),
            concatenate=RecordingConcatenator(payload=b""),
        )

    assert all(artifact.file_path.exists() for artifact in artifacts)
    assert not output_path.exists()
    assert sorted(path.name for path in tmp_path.iterdir()) == ["chunks"]


def test_failed_merge_leaves_previous_output_alone(tmp_path):
    artifacts = _write_artifacts(tmp_path / "chunks", [100, 100])
    output_path = tmp_path / "output.wav"
    output_path.write_bytes(b"previous-run")

    with pytest.raises(MergeError):
        merge_artifacts(
            artifacts,
            output_path,
            started_at=time.time(),
            concatenate=RecordingConcatenator(payload=b""),
        )

    assert output_path.read_bytes() == b"previous-run"
    assert all(artifact.file_path.exists() for artifact in artifacts)


def test_fresh_output_is_not_reported_stale(tmp_path):
    artifacts = _write_artifacts(tmp_path / "chunks", [100, 100])
    output_path = tmp_path / "output.wav"
    output_path.write_bytes(b"previous-run")

    result = merge_artifacts(
        artifacts,
        output_path,
        started_at=time.time(),
        concatenate=RecordingConcatenator(),
    )

    assert result.stale is False
    assert output_path.read_bytes() == b"merged-audio"
    assert sorted(path.name for path in tmp_path.iterdir()) == ["chunks", "output.wav"]


def test_missing_chunk_file_fails_before_concatenation(tmp_path):
    artifacts = _write_artifacts(tmp_path / "chunks", [100, 100])
    artifacts[1].file_path.unlink()
    concatenate = RecordingConcatenator()

    with pytest.raises(MergeError, match="Missing chunk files"):
        merge_artifacts(artifacts, tmp_path / "output.wav", started_at=time.time() - 5, concatenate=concatenate)

    assert concatenate.calls == []
    assert artifacts[0].file_path.exists()


def test_no_artifacts_is_an_error(tmp_path):
    with pytest.raises(MergeError):
        merge_artifacts([], tmp_path / "output.wav", started_at=time.time())


def test_output_older_than_run_start_is_only_a_warning(tmp_path, caplog):
    artifacts = _write_artifacts(tmp_path / "chunks", [100, 100])
    output_path = tmp_path / "output.wav"

    with caplog.at_level(logging.WARNING, logger="narration_pipeline.merger"):
        result = merge_artifacts(
            artifacts,
            output_path,
            started_at=time.time() + 3600,
            concatenate=RecordingConcatenator(),
        )

    assert result.stale is True
    assert output_path.exists()
    assert "older than this run" in caplog.text
    assert all(not artifact.file_path.exists() for artifact in artifacts)


def test_ffmpeg_concatenator_uses_stream_copy(tmp_path):
    paths = [tmp_path / "chunk_000.wav", tmp_path / "chunk_001.wav"]
    output_path = tmp_path / "output.wav"
    seen = {}

    def fake_run(args, **kwargs):
        list_file = Path(args[args.index("-i") + 1])
        seen["args"] = args
        seen["list"] = list_file.read_text(encoding="utf-8")
        output_path.write_bytes(b"merged")
        return SimpleNamespace(returncode=0, stdout="", stderr="")

    FfmpegConcatenator(run=fake_run)(paths, output_path)

    assert seen["args"][0] == "ffmpeg"
    assert seen["args"][-3:] == ["-c", "copy", str(output_path)]
    assert seen["list"].splitlines() == [f"file '{path.resolve()}'" for path in paths]
    assert not (tmp_path / "output.wav.files.txt").exists()


def test_ffmpeg_concatenator_reports_nonzero_exit(tmp_path):
    def fake_run(args, **kwargs):
        return SimpleNamespace(returncode=1, stdout="", stderr="Invalid data found")

    with pytest.raises(MergeError, match="Invalid data found"):
        FfmpegConcatenator(run=fake_run)([tmp_path / "a.wav"], tmp_path / "out.wav")


def test_ffmpeg_concatenator_reports_missing_binary(tmp_path):
    def fake_run(args, **kwargs):
        raise FileNotFoundError(args[0])

    with pytest.raises(MergeError, match="not found"):
        FfmpegConcatenator(binary="no-such-ffmpeg", run=fake_run)([tmp_path / "a.wav"], tmp_path / "out.wav")
