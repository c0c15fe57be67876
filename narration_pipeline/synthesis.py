from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Sequence

logger = logging.getLogger(__name__)

__all__ = [
    "ChunkSynthesisError",
    "SynthesisArtifact",
    "SynthesisConfig",
    "SynthesisPipeline",
]

SynthesizeFn = Callable[[str, str], bytes]


@dataclass
class SynthesisConfig:
    """
    Where and under which names per-chunk audio files are written.
    """

    chunk_directory: Path = Path("output/chunks")
    chunk_prefix: str = "chunk_"
    chunk_extension: str = ".wav"

    def ensure_directories(self) -> None:
        self.chunk_directory.mkdir(parents=True, exist_ok=True)

    def artifact_path(self, index: int) -> Path:
        return self.chunk_directory / f"{self.chunk_prefix}{index:03d}{self.chunk_extension}"


@dataclass(frozen=True)
class SynthesisArtifact:
    index: int
    file_path: Path
    text: str
    elapsed_sec: float = 0.0


class ChunkSynthesisError(RuntimeError):
    """Synthesis failed for one chunk; earlier chunk files are left on disk."""

    def __init__(self, index: int, cause: BaseException) -> None:
        super().__init__(f"Synthesis failed for chunk {index}: {cause}")
        self.index = index
        self.cause = cause


class SynthesisPipeline:
    """
    Synthesizes chunks one at a time, in index order, writing one file per chunk.

    ``artifacts`` holds the files produced so far and is the merge order. A
    failed chunk stops the run; nothing already written is removed.
    """

    def __init__(self, synthesize: SynthesizeFn, config: SynthesisConfig) -> None:
        self.synthesize = synthesize
        self.config = config
        self.artifacts: List[SynthesisArtifact] = []

    def run(self, chunks: Sequence[str], voice: str) -> List[SynthesisArtifact]:
        self.artifacts = []
        if not chunks:
            return []

        self.config.ensure_directories()
        total = len(chunks)
        for index, text in enumerate(chunks):
            started = time.perf_counter()
            logger.info("Processing chunk %d/%d (%d chars)", index + 1, total, len(text))
            path = self.config.artifact_path(index)
            partial = path.with_name(f"{path.name}.part")
            try:
                audio = self.synthesize(text, voice)
                if not audio:
                    raise RuntimeError("engine returned no audio")
                partial.write_bytes(audio)
                os.replace(partial, path)
            except Exception as exc:
                logger.error(
                    "Chunk %d failed; keeping %d earlier chunk files for inspection.",
                    index,
                    len(self.artifacts),
                )
                partial.unlink(missing_ok=True)
                raise ChunkSynthesisError(index, exc) from exc

            elapsed = time.perf_counter() - started
            self.artifacts.append(
                SynthesisArtifact(index=index, file_path=path, text=text, elapsed_sec=elapsed)
            )
            logger.info("Chunk %d/%d done in %.2fs", index + 1, total, elapsed)

        return list(self.artifacts)
