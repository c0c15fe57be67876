from __future__ import annotations

import logging
import os
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from pydub import AudioSegment

from .synthesis import SynthesisArtifact

logger = logging.getLogger(__name__)

__all__ = [
    "FfmpegConcatenator",
    "MergeError",
    "MergeResult",
    "PydubConcatenator",
    "merge_artifacts",
]

ConcatenateFn = Callable[[Sequence[Path], Path], Path]

# coarse filesystem timestamps can trail time.time() taken just before a write
MTIME_SLACK_SEC = 2.0


class MergeError(RuntimeError):
    """The final file could not be produced; chunk files are kept."""


@dataclass(frozen=True)
class MergeResult:
    output_path: Path
    size_bytes: int
    chunk_count: int
    stale: bool = False


class FfmpegConcatenator:
    """
    Stream-copies same-format inputs into one file with ffmpeg's concat demuxer.
    """

    def __init__(self, binary: str = "ffmpeg", run: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> None:
        self.binary = binary
        self._run = run

    def __call__(self, paths: Sequence[Path], output_path: Path) -> Path:
        list_file = output_path.with_name(f"{output_path.name}.files.txt")
        list_file.write_text(
            "".join(f"file '{_escape_concat_path(path)}'\n" for path in paths),
            encoding="utf-8",
        )
        args = [
            self.binary,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(list_file),
            "-c",
            "copy",
            str(output_path),
        ]
        logger.debug("Running %s", " ".join(args))
        try:
            proc = self._run(args, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise MergeError(f"{self.binary} not found on PATH") from exc
        finally:
            list_file.unlink(missing_ok=True)

        if proc.returncode != 0:
            raise MergeError(
                f"{self.binary} exited with status {proc.returncode}: {(proc.stderr or '').strip()}"
            )
        return output_path


class PydubConcatenator:
    """
    Decodes each input with pydub, appends them and exports one file.
    """

    def __init__(self, output_format: str = "wav") -> None:
        self.output_format = output_format

    def __call__(self, paths: Sequence[Path], output_path: Path) -> Path:
        merged: Optional[AudioSegment] = None
        for path in paths:
            segment = AudioSegment.from_file(path, format=path.suffix.lstrip(".").lower() or None)
            merged = segment if merged is None else merged + segment
        if merged is None:
            raise MergeError("No inputs to concatenate.")
        merged.export(output_path, format=self.output_format)
        return output_path


def merge_artifacts(
    artifacts: Sequence[SynthesisArtifact],
    output_path: Path,
    *,
    started_at: float,
    concatenate: Optional[ConcatenateFn] = None,
) -> MergeResult:
    """
    Produce the final file from the ordered chunk files and remove them afterwards.

    A single chunk is copied byte for byte. Several chunks go through
    ``concatenate`` (ffmpeg stream copy by default). The result is written to a
    sibling partial file and moved onto ``output_path`` only once it exists and is
    non-empty, so a failed merge never touches ``output_path``. Chunk files are
    deleted only after that move; on any failure they stay on disk.
    ``started_at`` is the run's start (``time.time()``); an output older than
    that, beyond the filesystem clock slack, is reported as possibly stale but
    still accepted.
    """
    if not artifacts:
        raise MergeError("No chunk files to merge.")

    paths = [artifact.file_path for artifact in sorted(artifacts, key=lambda a: a.index)]
    output_path.parent.mkdir(parents=True, exist_ok=True)
    partial_path = _partial_path(output_path)

    try:
        missing = [str(path) for path in paths if not path.exists()]
        if missing:
            raise MergeError(f"Missing chunk files: {', '.join(missing)}")

        partial_path.unlink(missing_ok=True)
        if len(paths) == 1:
            shutil.copyfile(paths[0], partial_path)
            logger.info("Single chunk copied to %s", output_path)
        else:
            logger.info("Merging %d chunk files into %s", len(paths), output_path)
            (concatenate or FfmpegConcatenator())(paths, partial_path)

        if not partial_path.exists():
            raise MergeError(f"Merged output was not created: {output_path}")
        if partial_path.stat().st_size == 0:
            raise MergeError(f"Merged output is empty: {output_path}")
        os.replace(partial_path, output_path)
    except Exception as exc:
        logger.error("Merge failed; keeping %d chunk files in place.", len(paths))
        _discard_partial_output(partial_path)
        if isinstance(exc, MergeError):
            raise
        raise MergeError(f"Merge failed: {exc}") from exc

    stat = output_path.stat()
    stale = stat.st_mtime < started_at - MTIME_SLACK_SEC
    if stale:
        logger.warning(
            "Output %s is older than this run; it may be a leftover from a previous run.",
            output_path,
        )

    logger.info("Output file size: %s", _readable_size(stat.st_size))
    _cleanup_chunks(paths)
    return MergeResult(
        output_path=output_path,
        size_bytes=stat.st_size,
        chunk_count=len(paths),
        stale=stale,
    )


def _cleanup_chunks(paths: Sequence[Path]) -> None:
    def _delete(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete chunk %s: %s", path, exc)

    with ThreadPoolExecutor(max_workers=min(8, len(paths))) as pool:
        list(pool.map(_delete, paths))
    logger.info("Cleaned up %d temporary files", len(paths))


def _partial_path(output_path: Path) -> Path:
    # keep the suffix so ffmpeg and pydub still infer the container
    return output_path.with_name(f".{output_path.stem}.partial{output_path.suffix}")


def _discard_partial_output(partial_path: Path) -> None:
    try:
        partial_path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove partial output %s: %s", partial_path, exc)


def _escape_concat_path(path: Path) -> str:
    return str(path.resolve()).replace("'", "'\\''")


def _readable_size(size: int) -> str:
    if size > 1024 * 1024:
        return f"{size / (1024 * 1024):.2f} MB"
    return f"{size / 1024:.2f} KB"
