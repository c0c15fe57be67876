#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Sequence

from narration_pipeline.footnotes import extract_footnotes
from narration_pipeline.merger import FfmpegConcatenator, PydubConcatenator, merge_artifacts
from narration_pipeline.metadata import MetadataBuilder
from narration_pipeline.segmenter import DEFAULT_MAX_CHARS, DEFAULT_MAX_TOKENS, segment_text
from narration_pipeline.synthesis import SynthesisConfig, SynthesisPipeline
from narration_pipeline.tts_engine import (
    KokoroTtsEngine,
    MockTtsEngine,
    PollyTtsEngine,
    TtsEngine,
)

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Turn a long text document into a single audio file.")
    parser.add_argument("--input", default="input.txt", help="Input text file path.")
    parser.add_argument("--input-encoding", default="utf-8", help="Encoding used for input file.")
    parser.add_argument("--output", default="output.wav", help="Path for the final audio file.")
    parser.add_argument("--chunk-dir", default="./output/chunks", help="Directory to store per-chunk audio files.")
    parser.add_argument("--engine", default="kokoro", help="TTS engine to use (kokoro, polly, mock).")
    parser.add_argument("--voice", help="Voice identifier (engine specific).")
    parser.add_argument("--list-voices", action="store_true", help="List the engine's voices and exit.")
    parser.add_argument("--dry-run", action="store_true", help="Print the inlined text and chunks without synthesizing.")
    parser.add_argument("--max-tokens", type=int, default=DEFAULT_MAX_TOKENS, help="Approximate token target per chunk.")
    parser.add_argument("--max-chars", type=int, default=DEFAULT_MAX_CHARS, help="Hard character limit per chunk.")
    parser.add_argument("--merger", default="ffmpeg", choices=["ffmpeg", "pydub"], help="How chunk files are concatenated.")
    parser.add_argument("--ffmpeg-binary", default="ffmpeg", help="ffmpeg executable used by the ffmpeg merger.")
    parser.add_argument("--metadata-output", help="Optional path for a JSON run report.")
    parser.add_argument("--kokoro-model", default="hexgrad/Kokoro-82M", help="Kokoro model repository id.")
    parser.add_argument("--speed", type=float, default=1.0, help="Speech speed for the Kokoro engine.")
    parser.add_argument("--polly-region", help="AWS region for the Polly engine.")
    parser.add_argument("--language-code", help="Language code hint for Polly.")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def load_input_text(path: Path, encoding: str) -> str:
    if not path.exists():
        raise FileNotFoundError(f"Input file does not exist: {path}")
    return path.read_text(encoding=encoding)


def create_engine(args: argparse.Namespace) -> TtsEngine:
    engine_name = (args.engine or "").lower()
    if engine_name in {"mock", "dummy"}:
        return MockTtsEngine()

    if engine_name == "kokoro":
        return KokoroTtsEngine(repo_id=args.kokoro_model, speed=args.speed)

    if engine_name in {"polly", "aws_polly"}:
        return PollyTtsEngine(language_code=args.language_code, region_name=args.polly_region)

    raise ValueError(f"Unsupported engine: {args.engine}")


def print_preview(text: str, chunks: Sequence[str], replaced: int) -> None:
    print(f"=== Text ({len(text)} chars, {replaced} footnote markers inlined) ===")
    print(text)
    print(f"=== Chunks ({len(chunks)}) ===")
    for index, chunk in enumerate(chunks):
        print(f"[{index}] ({len(chunk)} chars) {chunk}")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.debug)
    started_at = time.time()

    if args.list_voices:
        engine = create_engine(args)
        for voice in engine.list_voices():
            print(voice)
        return 0

    input_path = Path(args.input)
    raw_text = load_input_text(input_path, args.input_encoding)
    inlined = extract_footnotes(raw_text)
    chunks = segment_text(inlined.text, max_tokens=args.max_tokens, max_chars=args.max_chars)

    if args.dry_run:
        print_preview(inlined.text, chunks, inlined.replaced)
        return 0

    if not chunks:
        logger.warning("No text found in input. Nothing to synthesize.")
        return 0
    logger.info("Split into %d chunks", len(chunks))

    engine = create_engine(args)
    voice = args.voice or engine.default_voice
    pipeline = SynthesisPipeline(engine.synthesize, SynthesisConfig(chunk_directory=Path(args.chunk_dir)))
    artifacts = pipeline.run(chunks, voice)

    output_path = Path(args.output)
    if args.merger == "pydub":
        concatenate = PydubConcatenator(output_format=output_path.suffix.lstrip(".").lower() or "wav")
    else:
        concatenate = FfmpegConcatenator(binary=args.ffmpeg_binary)
    merge_result = merge_artifacts(artifacts, output_path, started_at=started_at, concatenate=concatenate)

    if args.metadata_output:
        metadata_builder = MetadataBuilder(engine=engine, output_path=Path(args.metadata_output))
        metadata = metadata_builder.build_metadata(
            artifacts=artifacts,
            merge_result=merge_result,
            inlined=inlined,
            options={
                "input_path": input_path,
                "voice": voice,
                "max_tokens": args.max_tokens,
                "max_chars": args.max_chars,
            },
        )
        metadata_builder.write_metadata(metadata)
        logger.info("Metadata written to %s", metadata_builder.output_path)

    total_seconds = time.time() - started_at
    logger.info(
        "Audio file generated at %s. Total processing time: %dm %ds",
        merge_result.output_path,
        int(total_seconds // 60),
        int(total_seconds % 60),
    )
    return 0


def entrypoint() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.error("Interrupted by user.")
        sys.exit(1)
    except Exception as exc:
        logger.exception("Fatal error: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    entrypoint()
