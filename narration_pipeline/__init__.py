"""
Long-form text to single audio file pipeline.

This package exposes the main building blocks used by the CLI entry point:

- Footnote inlining (`footnotes`).
- Sentence segmentation into engine-sized chunks (`segmenter`).
- Engine abstractions and concrete implementations (`tts_engine`).
- Sequential per-chunk synthesis (`synthesis`).
- Final file assembly and cleanup (`merger`).
- Run report helpers (`metadata`).
"""

from .footnotes import InlinedText, extract_footnotes, inline_footnotes, parse_footnotes
from .segmenter import (
    DEFAULT_MAX_CHARS,
    DEFAULT_MAX_TOKENS,
    SplitStrategy,
    segment_text,
    split_into_sentences,
    split_oversized_unit,
)
from .tts_engine import KokoroTtsEngine, MockTtsEngine, PollyTtsEngine, TtsEngine
from .synthesis import ChunkSynthesisError, SynthesisArtifact, SynthesisConfig, SynthesisPipeline
from .merger import FfmpegConcatenator, MergeError, MergeResult, PydubConcatenator, merge_artifacts
from .metadata import MetadataBuilder

__all__ = [
    "inline_footnotes",
    "extract_footnotes",
    "parse_footnotes",
    "InlinedText",
    "segment_text",
    "split_into_sentences",
    "split_oversized_unit",
    "SplitStrategy",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MAX_CHARS",
    "TtsEngine",
    "KokoroTtsEngine",
    "PollyTtsEngine",
    "MockTtsEngine",
    "SynthesisConfig",
    "SynthesisPipeline",
    "SynthesisArtifact",
    "ChunkSynthesisError",
    "FfmpegConcatenator",
    "PydubConcatenator",
    "MergeError",
    "MergeResult",
    "merge_artifacts",
    "MetadataBuilder",
]
