from __future__ import annotations

import base64
import io
import logging
import mimetypes
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError, CouldntEncodeError

from .errors import EngineError

logger = logging.getLogger(__name__)

__all__ = [
    "TtsEngine",
    "TranslateTtsEngine",
    "PollyTtsEngine",
    "GoogleGenAITtsEngine",
    "MockTtsEngine",
    "TRANSLATE_TTS_URL",
]

TRANSLATE_TTS_URL = "https://translate.google.com/translate_tts"


class TtsEngine(ABC):
    """
    Thin abstraction over a speech-synthesis service that returns encoded audio bytes.

    Every clip an engine returns is encoded as ``audio_format`` so that clips can be
    joined at stream level without transcoding.
    """

    def __init__(
        self,
        *,
        audio_format: str = "mp3",
        expected_sample_rate: Optional[int] = None,
        expected_channels: Optional[int] = None,
        expected_sample_width: Optional[int] = None,
    ) -> None:
        self.audio_format = audio_format
        self.expected_sample_rate = expected_sample_rate
        self.expected_channels = expected_channels
        self.expected_sample_width = expected_sample_width

    @abstractmethod
    def fetch_audio(self, text: str) -> bytes:
        """
        Synthesize ``text`` and return the encoded audio payload.
        """

    def descriptor(self) -> str:
        return self.__class__.__name__

    @property
    def file_extension(self) -> str:
        return f".{self.audio_format.lstrip('.').lower()}"

    def _validate_segment(self, segment: AudioSegment) -> AudioSegment:
        """
        Ensures decoded audio sticks to one frame rate, channel count and sample width.

        The first call establishes the reference format unless the engine was initialised
        with explicit expectations. Mixed formats would break a stream-level merge later.
        """
        for attr, actual in (
            ("expected_sample_rate", segment.frame_rate),
            ("expected_channels", segment.channels),
            ("expected_sample_width", segment.sample_width),
        ):
            expected = getattr(self, attr)
            if expected is None:
                setattr(self, attr, actual)
            elif actual != expected:
                raise EngineError(
                    f"Engine {self.descriptor()} returned {attr[len('expected_'):]} "
                    f"{actual}, expected {expected}"
                )
        return segment

    def _export(self, segment: AudioSegment) -> bytes:
        buffer = io.BytesIO()
        segment.export(buffer, format=self.audio_format)
        return buffer.getvalue()


class TranslateTtsEngine(TtsEngine):
    """
    Google Translate speech endpoint. Keyless, mp3 only, short inputs (~200 chars).
    """

    def __init__(
        self,
        *,
        language: str = "en",
        timeout_sec: float = 30.0,
        session: Optional[requests.Session] = None,
        url: str = TRANSLATE_TTS_URL,
        user_agent: str = "Mozilla/5.0",
    ) -> None:
        super().__init__(audio_format="mp3")
        self._language = language
        self._timeout = timeout_sec
        self._session = session or requests.Session()
        self._url = url
        self._headers = {"User-Agent": user_agent}

    def fetch_audio(self, text: str) -> bytes:
        params = {"ie": "UTF-8", "q": text, "tl": self._language, "client": "tw-ob"}
        logger.debug("Translate TTS request: %d chars, language %s", len(text), self._language)
        try:
            response = self._session.get(
                self._url,
                params=params,
                headers=self._headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as exc:
            raise EngineError(f"Translate TTS request timed out after {self._timeout}s") from exc
        except requests.RequestException as exc:
            status = getattr(getattr(exc, "response", None), "status_code", None)
            raise EngineError(f"Translate TTS request failed: {exc}", status_code=status) from exc

        content_type = response.headers.get("content-type", "")
        if content_type and "audio" not in content_type.lower():
            logger.warning("Unexpected content-type from Translate TTS: %s", content_type)
        return response.content


class MockTtsEngine(TtsEngine):
    """
    Lightweight mock for tests. Generates silent clips of predictable lengths.
    """

    def __init__(
        self,
        durations_ms: Optional[Dict[str, int]] = None,
        *,
        base_duration_ms: int = 200,
        per_char_ms: int = 5,
        sample_rate: int = 22050,
        channels: int = 1,
        sample_width: int = 2,
        audio_format: str = "wav",
    ) -> None:
        super().__init__(
            audio_format=audio_format,
            expected_sample_rate=sample_rate,
            expected_channels=channels,
            expected_sample_width=sample_width,
        )
        self._durations_ms = durations_ms or {}
        self._base_duration_ms = base_duration_ms
        self._per_char_ms = per_char_ms
        self.requests: List[str] = []

    def fetch_audio(self, text: str) -> bytes:
        self.requests.append(text)
        duration = self._durations_ms.get(
            text, self._base_duration_ms + max(0, len(text)) * self._per_char_ms
        )
        segment = AudioSegment.silent(duration=duration, frame_rate=self.expected_sample_rate)  # type: ignore[arg-type]
        segment = segment.set_channels(self.expected_channels or 1)
        segment = segment.set_sample_width(self.expected_sample_width or 2)
        return self._export(self._validate_segment(segment))


class PollyTtsEngine(TtsEngine):
    """
    Amazon Polly implementation. mp3 is returned as-is, pcm is wrapped into WAV.
    """

    def __init__(
        self,
        *,
        voice_id: str,
        engine: str = "neural",
        language_code: Optional[str] = None,
        sample_rate: int = 22050,
        output_format: str = "mp3",
        boto3_client: Optional[object] = None,
    ) -> None:
        fmt = output_format.lower()
        super().__init__(
            audio_format="wav" if fmt == "pcm" else fmt,
            expected_sample_rate=sample_rate,
            expected_channels=1,
            expected_sample_width=2,
        )
        if boto3_client is None:
            try:
                import boto3  # type: ignore
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise RuntimeError(
                    "boto3 is required for PollyTtsEngine but is not installed."
                ) from exc
            boto3_client = boto3.client("polly")

        self._client = boto3_client
        self._voice_id = voice_id
        self._engine = engine
        self._language_code = language_code
        self._sample_rate = sample_rate
        self._output_format = fmt

    def fetch_audio(self, text: str) -> bytes:
        params = {
            "Engine": self._engine,
            "VoiceId": self._voice_id,
            "OutputFormat": self._output_format,
            "SampleRate": str(self._sample_rate),
            "Text": text,
            "TextType": "text",
        }
        if self._language_code:
            params["LanguageCode"] = self._language_code

        logger.debug("Polly request params: %s", {k: v for k, v in params.items() if k != "Text"})
        try:
            response = self._client.synthesize_speech(**params)  # type: ignore[attr-defined]
        except Exception as exc:
            raise EngineError(f"Polly request failed: {exc}") from exc

        stream = response.get("AudioStream")
        if stream is None:
            raise EngineError("Polly response did not include AudioStream.")
        audio_bytes = stream.read() if hasattr(stream, "read") else stream
        if not audio_bytes or self._output_format != "pcm":
            return audio_bytes or b""

        segment = AudioSegment(
            data=audio_bytes,
            sample_width=self.expected_sample_width or 2,
            frame_rate=self.expected_sample_rate or self._sample_rate,
            channels=self.expected_channels or 1,
        )
        return self._export(self._validate_segment(segment))


class GoogleGenAITtsEngine(TtsEngine):
    """
    Google Generative AI TTS implementation using the ``google-genai`` client.

    The service streams raw PCM, so each clip is decoded and re-exported as
    ``audio_format``.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-flash-preview-tts",
        voice_name: Optional[str] = None,
        sample_rate: int = 24000,
        language_code: Optional[str] = None,
        audio_format: str = "mp3",
        client: Optional[Any] = None,
    ) -> None:
        try:
            from google import genai  # type: ignore
            from google.genai import types  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "google-genai is required for GoogleGenAITtsEngine but is not installed."
            ) from exc

        super().__init__(
            audio_format=audio_format,
            expected_sample_rate=sample_rate,
            expected_channels=1,
            expected_sample_width=2,
        )
        if client is None:
            if not api_key:
                raise ValueError("GoogleGenAITtsEngine requires an API key.")
            client = genai.Client(api_key=api_key)
        self._client = client
        self._types = types
        self._model = model
        self._voice_name = voice_name
        self._language_code = language_code

    def fetch_audio(self, text: str) -> bytes:
        types = self._types
        voice_config = None
        if self._voice_name:
            voice_config = types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self._voice_name)
            )
        generate_config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                language_code=self._language_code,
                voice_config=voice_config,
            ),
        )

        audio_chunks = []
        mime_type: Optional[str] = None
        try:
            stream = self._client.models.generate_content_stream(
                model=self._model,
                contents=text,
                config=generate_config,
            )
            for chunk in stream:
                candidate = (chunk.candidates or [None])[0]
                if not candidate or not candidate.content or not candidate.content.parts:
                    continue
                for response_part in candidate.content.parts:
                    inline = getattr(response_part, "inline_data", None)
                    if inline and inline.data:
                        mime_type = inline.mime_type or mime_type
                        data = inline.data
                        if isinstance(data, str):
                            data = base64.b64decode(data)
                        audio_chunks.append(data)
        except Exception as exc:
            raise EngineError(f"Google GenAI request failed: {exc}") from exc

        if not audio_chunks:
            return b""

        try:
            segment = _audio_bytes_to_segment(
                b"".join(audio_chunks),
                mime_type or "audio/L16;rate=24000",
                default_rate=self.expected_sample_rate or 24000,
            )
            return self._export(self._validate_segment(segment))
        except (CouldntDecodeError, CouldntEncodeError, OSError) as exc:
            raise EngineError(f"Google GenAI returned undecodable audio ({mime_type}): {exc}") from exc


def _audio_bytes_to_segment(data: bytes, mime_type: str, *, default_rate: int) -> AudioSegment:
    if mime_type.lower().startswith("audio/l"):
        params = _parse_linear_pcm_mime(mime_type, default_rate=default_rate)
        return AudioSegment(
            data=data,
            sample_width=params["sample_width"],
            frame_rate=params["rate"],
            channels=params["channels"],
        )

    guessed = (mimetypes.guess_extension(mime_type) or "").lstrip(".")
    fmt = guessed or mime_type.split("/")[-1]
    return AudioSegment.from_file(io.BytesIO(data), format=fmt)


def _parse_linear_pcm_mime(mime_type: str, *, default_rate: int = 24000) -> Dict[str, int]:
    params: Dict[str, int] = {"rate": default_rate, "sample_width": 2, "channels": 1}
    for fragment in (fragment.strip() for fragment in mime_type.split(";")):
        lowered = fragment.lower()
        try:
            if lowered.startswith("rate="):
                params["rate"] = int(fragment.split("=", 1)[1])
            elif lowered.startswith("channels="):
                params["channels"] = int(fragment.split("=", 1)[1])
            elif lowered.startswith("audio/l"):
                params["sample_width"] = max(1, int(lowered.split("l", 1)[1]) // 8)
        except ValueError:
            logger.warning("Unable to parse %r from mime type %s", fragment, mime_type)
    return params
