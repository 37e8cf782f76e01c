from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import requests
from pydub.exceptions import CouldntDecodeError

from .chunker import Chunk
from .errors import EngineError, PipelineCancelled, SynthesisFailed
from .tts_engine import TtsEngine

logger = logging.getLogger(__name__)

__all__ = ["AudioClip", "FetcherConfig", "SpeechFetcher"]


@dataclass
class FetcherConfig:
    """
    Settings for turning one chunk into one clip.

    ``max_attempts`` counts engine calls; the default of 1 means a failed call is
    reported immediately.
    """

    max_attempts: int = 1
    initial_retry_delay: float = 0.5
    retry_backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")


@dataclass
class AudioClip:
    chunk_index: int
    path: Path
    size_bytes: int
    attempts: int = 1


class SpeechFetcher:
    """
    Resolves chunks to temporary clip files named after the run and chunk index.

    Every path is announced through ``on_created`` before anything is written so the
    owner can clean it up no matter where synthesis stops.
    """

    def __init__(
        self,
        engine: TtsEngine,
        work_dir: Path,
        *,
        config: Optional[FetcherConfig] = None,
        run_id: Optional[str] = None,
        on_created: Optional[Callable[[Path], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.engine = engine
        self.work_dir = Path(work_dir)
        self.config = config or FetcherConfig()
        self.run_id = run_id or uuid.uuid4().hex
        self._on_created = on_created
        self._cancel_event = cancel_event

    def clip_path(self, chunk_index: int) -> Path:
        return self.work_dir / f"{self.run_id}_clip_{chunk_index:04d}{self.engine.file_extension}"

    def synthesize(self, chunk: Chunk) -> AudioClip:
        path = self.clip_path(chunk.index)
        if self._on_created is not None:
            self._on_created(path)

        audio_bytes, attempts = self._fetch_with_retry(chunk)
        self._raise_if_cancelled()
        try:
            path.write_bytes(audio_bytes)
        except OSError as exc:
            raise SynthesisFailed(chunk.index, exc) from exc

        logger.debug("Wrote clip %s (%d bytes, %d attempt(s))", path.name, len(audio_bytes), attempts)
        return AudioClip(
            chunk_index=chunk.index,
            path=path,
            size_bytes=len(audio_bytes),
            attempts=attempts,
        )

    def _fetch_with_retry(self, chunk: Chunk) -> tuple[bytes, int]:
        delay = self.config.initial_retry_delay
        attempt = 0
        while True:
            self._raise_if_cancelled()
            attempt += 1
            try:
                audio_bytes = self.engine.fetch_audio(chunk.text)
                if not audio_bytes:
                    raise EngineError(f"{self.engine.descriptor()} returned empty audio.")
                return audio_bytes, attempt
            except (EngineError, CouldntDecodeError, requests.RequestException, OSError) as exc:
                if attempt >= self.config.max_attempts:
                    logger.error(
                        "Synthesis of chunk %d permanently failed after %d attempt(s): %s",
                        chunk.index,
                        attempt,
                        exc,
                    )
                    raise SynthesisFailed(chunk.index, exc) from exc
                logger.warning(
                    "Synthesis of chunk %d failed (attempt %d/%d). Retrying in %.2fs.",
                    chunk.index,
                    attempt,
                    self.config.max_attempts,
                    delay,
                )
                if self._cancel_event is None:
                    time.sleep(delay)
                elif self._cancel_event.wait(delay):
                    raise PipelineCancelled() from exc
                delay *= self.config.retry_backoff_factor
            except Exception as exc:
                # Unknown engine faults are not retried.
                logger.error("Synthesis of chunk %d raised %s: %s", chunk.index, type(exc).__name__, exc)
                raise SynthesisFailed(chunk.index, exc) from exc

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise PipelineCancelled()
