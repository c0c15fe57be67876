from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Sequence

from .footnotes import InlinedText
from .merger import MergeResult
from .synthesis import SynthesisArtifact
from .tts_engine import TtsEngine

__all__ = ["MetadataBuilder"]


@dataclass
class MetadataBuilder:
    engine: TtsEngine
    output_path: Path

    def build_metadata(
        self,
        *,
        artifacts: Sequence[SynthesisArtifact],
        merge_result: MergeResult,
        inlined: InlinedText,
        options: Dict[str, object],
    ) -> Dict[str, object]:
        return {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "engine": self.engine.descriptor(),
            "voice": options.get("voice"),
            "sample_rate": self.engine.expected_sample_rate,
            "channels": self.engine.expected_channels,
            "sample_width": self.engine.expected_sample_width,
            "format": self.engine.audio_format,
            "max_tokens": options.get("max_tokens"),
            "max_chars": options.get("max_chars"),
            "input_path": str(options.get("input_path")) if options.get("input_path") else None,
            "footnotes_parsed": len(inlined.footnotes),
            "footnotes_inlined": inlined.replaced,
            "chunks": [
                {
                    "index": artifact.index,
                    "file": artifact.file_path.name,
                    "chars": len(artifact.text),
                    "text": artifact.text,
                    "elapsed_sec": round(artifact.elapsed_sec, 3),
                }
                for artifact in artifacts
            ],
            "final_output": str(merge_result.output_path),
            "final_bytes": merge_result.size_bytes,
            "stale_output_warning": merge_result.stale,
        }

    def write_metadata(self, metadata: Dict[str, object]) -> None:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        with self.output_path.open("w", encoding="utf-8") as f:
            json.dump(metadata, f, ensure_ascii=False, indent=2)
