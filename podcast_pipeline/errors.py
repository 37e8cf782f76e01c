from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

__all__ = [
    "PipelineError",
    "EmptyScript",
    "SynthesisFailed",
    "MergeFailed",
    "InvalidClipSequence",
    "PipelineCancelled",
    "GenerationError",
    "EngineError",
    "CleanupWarning",
]


class PipelineError(Exception):
    """
    Base class for fatal pipeline failures.

    ``kind`` is a stable identifier handed to the persistence layer.
    """

    kind = "pipeline_error"


class EmptyScript(PipelineError):
    kind = "empty_script"

    def __init__(self, message: str = "Script contains no text to synthesize.") -> None:
        super().__init__(message)


class SynthesisFailed(PipelineError):
    kind = "synthesis_failed"

    def __init__(self, chunk_index: int, cause: BaseException | str) -> None:
        self.chunk_index = chunk_index
        self.cause = cause
        super().__init__(f"Synthesis failed for chunk {chunk_index}: {cause}")


class MergeFailed(PipelineError):
    kind = "merge_failed"

    def __init__(self, cause: BaseException | str) -> None:
        self.cause = cause
        super().__init__(f"Audio merge failed: {cause}")


class InvalidClipSequence(PipelineError):
    kind = "invalid_clip_sequence"


class PipelineCancelled(PipelineError):
    kind = "cancelled"

    def __init__(self, message: str = "Pipeline run was cancelled.") -> None:
        super().__init__(message)


class GenerationError(PipelineError):
    kind = "generation_failed"


class EngineError(RuntimeError):
    """
    Raised by a TTS engine when the external service gives no usable audio.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class CleanupWarning:
    """Non-fatal record of a temporary resource that could not be removed."""

    resource: Path
    cause: str

    def __str__(self) -> str:
        return f"{self.resource}: {self.cause}"
