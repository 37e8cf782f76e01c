from __future__ import annotations

import logging
import shutil
import subprocess
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from .errors import InvalidClipSequence, MergeFailed
from .fetcher import AudioClip

logger = logging.getLogger(__name__)

__all__ = [
    "AudioArtifact",
    "AudioMerger",
    "FfmpegConcatMerger",
    "PydubMerger",
    "concatenate",
    "validate_clip_sequence",
]


@dataclass
class AudioArtifact:
    path: Path
    created_at: datetime
    size_bytes: int
    clip_count: int

    @property
    def ref(self) -> str:
        return str(self.path)


class AudioMerger(ABC):
    """
    Joins ordered audio files into one output file.
    """

    @abstractmethod
    def merge(
        self,
        ordered_paths: Sequence[Path],
        output_path: Path,
        *,
        on_created: Optional[Callable[[Path], None]] = None,
    ) -> Path:
        """
        Write the concatenation of ``ordered_paths`` to ``output_path``.

        Any helper file the merger creates is announced through ``on_created``.
        """


class FfmpegConcatMerger(AudioMerger):
    """
    Stream-level concatenation with the ffmpeg concat demuxer (``-c copy``, no re-encode).
    """

    def __init__(self, *, ffmpeg_binary: str = "ffmpeg", timeout_sec: float = 300.0) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.timeout_sec = timeout_sec

    def merge(
        self,
        ordered_paths: Sequence[Path],
        output_path: Path,
        *,
        on_created: Optional[Callable[[Path], None]] = None,
    ) -> Path:
        list_path = output_path.parent / f".{output_path.stem}_{uuid.uuid4().hex[:8]}_concat.txt"
        if on_created is not None:
            on_created(list_path)

        try:
            list_path.write_text(
                "".join(f"file '{_escape_concat_path(path)}'\n" for path in ordered_paths),
                encoding="utf-8",
            )
            cmd = [
                self.ffmpeg_binary,
                "-hide_banner",
                "-loglevel", "error",
                "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", str(list_path),
                "-c", "copy",
                str(output_path),
            ]
            logger.debug("Running %s", " ".join(cmd))
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
            )
        except FileNotFoundError as exc:
            raise MergeFailed(f"ffmpeg binary not found: {self.ffmpeg_binary}") from exc
        except subprocess.TimeoutExpired as exc:
            raise MergeFailed(f"ffmpeg timed out after {self.timeout_sec}s") from exc
        except OSError as exc:
            raise MergeFailed(exc) from exc
        finally:
            list_path.unlink(missing_ok=True)

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            logger.error("ffmpeg concatenation failed: %s", stderr)
            raise MergeFailed(f"ffmpeg exited with {result.returncode}: {stderr}")
        return output_path


class PydubMerger(AudioMerger):
    """
    Decodes every clip with pydub and exports the joined audio.

    Lossless for PCM/WAV clips; compressed formats are re-encoded.
    """

    def __init__(self, *, output_format: Optional[str] = None) -> None:
        self.output_format = output_format

    def merge(
        self,
        ordered_paths: Sequence[Path],
        output_path: Path,
        *,
        on_created: Optional[Callable[[Path], None]] = None,
    ) -> Path:
        merged: AudioSegment | None = None
        try:
            for path in ordered_paths:
                segment = AudioSegment.from_file(path, format=Path(path).suffix.lstrip(".").lower() or None)
                if merged is not None and (
                    segment.frame_rate != merged.frame_rate
                    or segment.channels != merged.channels
                    or segment.sample_width != merged.sample_width
                ):
                    raise MergeFailed(
                        f"Format mismatch in {path.name}: "
                        f"{segment.frame_rate}Hz/{segment.channels}ch/{segment.sample_width}B vs "
                        f"{merged.frame_rate}Hz/{merged.channels}ch/{merged.sample_width}B"
                    )
                merged = segment if merged is None else merged + segment

            if merged is None:
                raise MergeFailed("No clips to merge.")
            output_format = self.output_format or output_path.suffix.lstrip(".").lower() or "wav"
            merged.export(output_path, format=output_format)
        except (CouldntDecodeError, OSError) as exc:
            raise MergeFailed(exc) from exc
        return output_path


def validate_clip_sequence(clips: Sequence[AudioClip]) -> None:
    if not clips:
        raise InvalidClipSequence("No clips provided for merging.")
    for position, clip in enumerate(clips):
        if clip.chunk_index != position:
            raise InvalidClipSequence(
                f"Clip at position {position} has chunk index {clip.chunk_index}; "
                "clips must be ordered 0..N-1 without gaps."
            )


def concatenate(
    clips: Sequence[AudioClip],
    merger: AudioMerger,
    output_path: Path,
    *,
    on_created: Optional[Callable[[Path], None]] = None,
) -> AudioArtifact:
    """
    Merge ``clips`` in chunk order into ``output_path`` and describe the result.
    """
    validate_clip_sequence(clips)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        if len(clips) == 1:
            shutil.copyfile(clips[0].path, output_path)
        else:
            merger.merge([clip.path for clip in clips], output_path, on_created=on_created)
    except OSError as exc:
        output_path.unlink(missing_ok=True)
        raise MergeFailed(exc) from exc
    except MergeFailed:
        # A failed merge must not leave a partial artifact behind.
        output_path.unlink(missing_ok=True)
        raise

    if not output_path.exists() or output_path.stat().st_size == 0:
        output_path.unlink(missing_ok=True)
        raise MergeFailed(f"Merged output missing or empty: {output_path}")

    artifact = AudioArtifact(
        path=output_path,
        created_at=datetime.now(timezone.utc),
        size_bytes=output_path.stat().st_size,
        clip_count=len(clips),
    )
    logger.info("Merged %d clips into %s (%d bytes)", len(clips), output_path, artifact.size_bytes)
    return artifact


def _escape_concat_path(path: Path) -> str:
    return str(Path(path).resolve()).replace("'", "'\\''")
