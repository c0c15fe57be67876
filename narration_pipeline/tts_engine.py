from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from pydub import AudioSegment

logger = logging.getLogger(__name__)

__all__ = [
    "KOKORO_VOICES",
    "KokoroTtsEngine",
    "MockTtsEngine",
    "PollyTtsEngine",
    "TtsEngine",
]

KOKORO_VOICES = (
    "af_heart",
    "af_alloy",
    "af_aoede",
    "af_bella",
    "af_jessica",
    "af_kore",
    "af_nicole",
    "af_nova",
    "af_river",
    "af_sarah",
    "af_sky",
    "am_adam",
    "am_echo",
    "am_eric",
    "am_fenrir",
    "am_liam",
    "am_michael",
    "am_onyx",
    "am_puck",
    "bf_alice",
    "bf_emma",
    "bf_isabella",
    "bf_lily",
    "bm_daniel",
    "bm_fable",
    "bm_george",
    "bm_lewis",
)


class TtsEngine(ABC):
    """
    Thin abstraction over a text-to-speech engine that returns encoded audio bytes.

    One engine instance serves one run, and every chunk it produces must share the
    same sample format so the chunk files can be stream-concatenated.
    """

    default_voice: str = ""

    def __init__(
        self,
        *,
        expected_sample_rate: Optional[int] = None,
        expected_channels: Optional[int] = None,
        expected_sample_width: Optional[int] = None,
        audio_format: str = "wav",
    ) -> None:
        self.expected_sample_rate = expected_sample_rate
        self.expected_channels = expected_channels
        self.expected_sample_width = expected_sample_width
        self.audio_format = audio_format

    @abstractmethod
    def synthesize(self, text: str, voice: str) -> bytes:
        """
        Convert ``text`` into encoded audio (``audio_format``) spoken by ``voice``.
        """

    @abstractmethod
    def list_voices(self) -> List[str]:
        """Return the voice identifiers this engine accepts."""

    def descriptor(self) -> str:
        return self.__class__.__name__

    def _validate_segment(self, segment: AudioSegment) -> AudioSegment:
        """
        Ensures the returning AudioSegment sticks to the expected format.

        The first call establishes the reference format unless the engine was initialised
        with explicit expectations. Subsequent calls must match.
        """
        if self.expected_sample_rate is None:
            self.expected_sample_rate = segment.frame_rate
        elif segment.frame_rate != self.expected_sample_rate:
            raise ValueError(
                f"Engine {self.descriptor()} returned frame rate {segment.frame_rate}, "
                f"expected {self.expected_sample_rate}"
            )

        if self.expected_channels is None:
            self.expected_channels = segment.channels
        elif segment.channels != self.expected_channels:
            raise ValueError(
                f"Engine {self.descriptor()} returned channels {segment.channels}, "
                f"expected {self.expected_channels}"
            )

        if self.expected_sample_width is None:
            self.expected_sample_width = segment.sample_width
        elif segment.sample_width != self.expected_sample_width:
            raise ValueError(
                f"Engine {self.descriptor()} returned sample width {segment.sample_width}, "
                f"expected {self.expected_sample_width}"
            )

        return segment

    def _encode(self, segment: AudioSegment) -> bytes:
        buffer = io.BytesIO()
        self._validate_segment(segment).export(buffer, format=self.audio_format)
        return buffer.getvalue()


class MockTtsEngine(TtsEngine):
    """
    Lightweight mock for tests and dry runs. Generates silent WAV audio of predictable length.
    """

    default_voice = "mock"

    def __init__(
        self,
        durations_ms: Optional[Dict[str, int]] = None,
        *,
        voices: Sequence[str] = ("mock", "mock_alt"),
        base_duration_ms: int = 200,
        per_char_ms: int = 10,
        sample_rate: int = 24000,
        channels: int = 1,
        sample_width: int = 2,
    ) -> None:
        super().__init__(
            expected_sample_rate=sample_rate,
            expected_channels=channels,
            expected_sample_width=sample_width,
            audio_format="wav",
        )
        self._durations_ms = durations_ms or {}
        self._voices = list(voices)
        self._base_duration_ms = base_duration_ms
        self._per_char_ms = per_char_ms

    def list_voices(self) -> List[str]:
        return list(self._voices)

    def synthesize(self, text: str, voice: str) -> bytes:
        if voice not in self._voices:
            raise ValueError(f"Unknown voice {voice!r} for {self.descriptor()}")
        duration = self._durations_ms.get(
            text, self._base_duration_ms + max(0, len(text)) * self._per_char_ms
        )
        segment = AudioSegment.silent(duration=duration, frame_rate=self.expected_sample_rate)  # type: ignore[arg-type]
        segment = segment.set_channels(self.expected_channels or 1)
        segment = segment.set_sample_width(self.expected_sample_width or 2)
        return self._encode(segment)


class KokoroTtsEngine(TtsEngine):
    """
    Local Kokoro-82M synthesis through ``kokoro.KPipeline``.

    The pipeline language is taken from the first letter of the voice id
    (``a`` American English, ``b`` British English) and cached per language.
    """

    default_voice = "af_heart"
    SAMPLE_RATE = 24000

    def __init__(
        self,
        *,
        repo_id: str = "hexgrad/Kokoro-82M",
        speed: float = 1.0,
        device: Optional[str] = None,
    ) -> None:
        try:
            import numpy  # type: ignore
            import soundfile  # type: ignore
            from kokoro import KPipeline  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "kokoro, numpy and soundfile are required for KokoroTtsEngine but are not installed."
            ) from exc

        super().__init__(
            expected_sample_rate=self.SAMPLE_RATE,
            expected_channels=1,
            expected_sample_width=2,
            audio_format="wav",
        )
        self._np = numpy
        self._sf = soundfile
        self._pipeline_cls = KPipeline
        self._pipelines: Dict[str, object] = {}
        self._repo_id = repo_id
        self._speed = speed
        self._device = device

    def list_voices(self) -> List[str]:
        return list(KOKORO_VOICES)

    def _pipeline(self, voice: str):
        lang_code = voice[:1]
        if lang_code not in self._pipelines:
            logger.info("Initializing Kokoro pipeline for language code %r", lang_code)
            self._pipelines[lang_code] = self._pipeline_cls(
                lang_code=lang_code, repo_id=self._repo_id, device=self._device
            )
        return self._pipelines[lang_code]

    def synthesize(self, text: str, voice: str) -> bytes:
        if voice not in KOKORO_VOICES:
            raise ValueError(f"Unknown Kokoro voice: {voice}")

        pipeline = self._pipeline(voice)
        pieces = []
        for result in pipeline(text, voice=voice, speed=self._speed):  # type: ignore[operator]
            audio = result.audio if hasattr(result, "audio") else result[2]
            if audio is None:
                continue
            if hasattr(audio, "detach"):
                audio = audio.detach().cpu().numpy()
            pieces.append(self._np.asarray(audio, dtype=self._np.float32))

        if not pieces:
            raise RuntimeError("Kokoro returned no audio data.")

        buffer = io.BytesIO()
        self._sf.write(
            buffer,
            self._np.concatenate(pieces),
            self.SAMPLE_RATE,
            format="WAV",
            subtype="PCM_16",
        )
        segment = AudioSegment.from_file(io.BytesIO(buffer.getvalue()), format="wav")
        self._validate_segment(segment)
        return buffer.getvalue()


class PollyTtsEngine(TtsEngine):
    """
    Amazon Polly implementation. PCM responses are wrapped into WAV containers.
    """

    default_voice = "Joanna"

    def __init__(
        self,
        *,
        engine: str = "neural",
        language_code: Optional[str] = None,
        sample_rate: int = 16000,
        region_name: Optional[str] = None,
        boto3_client: Optional[object] = None,
    ) -> None:
        super().__init__(
            expected_sample_rate=sample_rate,
            expected_channels=1,
            expected_sample_width=2,
            audio_format="wav",
        )
        if boto3_client is None:
            try:
                import boto3  # type: ignore
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise RuntimeError(
                    "boto3 is required for PollyTtsEngine but is not installed."
                ) from exc
            boto3_client = boto3.client("polly", region_name=region_name)

        self._client = boto3_client
        self._engine = engine
        self._language_code = language_code
        self._sample_rate = sample_rate

    def list_voices(self) -> List[str]:
        params = {"Engine": self._engine}
        if self._language_code:
            params["LanguageCode"] = self._language_code
        voices: List[str] = []
        while True:
            response = self._client.describe_voices(**params)  # type: ignore[attr-defined]
            voices.extend(voice["Id"] for voice in response.get("Voices", []))
            token = response.get("NextToken")
            if not token:
                return voices
            params["NextToken"] = token

    def synthesize(self, text: str, voice: str) -> bytes:
        params = {
            "Engine": self._engine,
            "VoiceId": voice,
            "OutputFormat": "pcm",
            "SampleRate": str(self._sample_rate),
            "Text": text,
            "TextType": "text",
        }
        if self._language_code:
            params["LanguageCode"] = self._language_code

        logger.debug("Polly request params: %s", {k: v for k, v in params.items() if k != "Text"})
        response = self._client.synthesize_speech(**params)  # type: ignore[attr-defined]
        stream = response.get("AudioStream")
        if stream is None:
            raise RuntimeError("Polly response did not include AudioStream.")

        audio_bytes = stream.read() if hasattr(stream, "read") else stream
        if not audio_bytes:
            raise RuntimeError("Polly returned empty audio stream.")

        segment = AudioSegment(
            data=audio_bytes,
            sample_width=self.expected_sample_width or 2,
            frame_rate=self.expected_sample_rate or self._sample_rate,
            channels=self.expected_channels or 1,
        )
        return self._encode(segment)
