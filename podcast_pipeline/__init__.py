"""
Podcast audio pipeline.

This package exposes the building blocks used by the CLI entry point:

- Script chunking at sentence boundaries (`chunker`).
- Speech-synthesis engines (`tts_engine`) and the per-chunk clip fetcher (`fetcher`).
- Lossless clip concatenation (`merger`).
- The all-or-nothing run orchestrator (`pipeline`).
- Topic-to-script generation (`generation`) and the persisted record (`metadata`).
"""

from .errors import (
    CleanupWarning,
    EmptyScript,
    EngineError,
    GenerationError,
    InvalidClipSequence,
    MergeFailed,
    PipelineCancelled,
    PipelineError,
    SynthesisFailed,
)
from .chunker import Chunk, ChunkingConfig, chunk_script
from .tts_engine import (
    GoogleGenAITtsEngine,
    MockTtsEngine,
    PollyTtsEngine,
    TranslateTtsEngine,
    TtsEngine,
)
from .fetcher import AudioClip, FetcherConfig, SpeechFetcher
from .merger import (
    AudioArtifact,
    AudioMerger,
    FfmpegConcatMerger,
    PydubMerger,
    concatenate,
)
from .pipeline import (
    PipelineConfig,
    PipelineOutcome,
    PipelineRun,
    PodcastPipeline,
    RunState,
)
from .generation import PodcastDraft, ScriptGenerator, parse_title_and_bullets
from .metadata import PodcastRecordBuilder

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
    "Chunk",
    "ChunkingConfig",
    "chunk_script",
    "TtsEngine",
    "TranslateTtsEngine",
    "PollyTtsEngine",
    "GoogleGenAITtsEngine",
    "MockTtsEngine",
    "AudioClip",
    "FetcherConfig",
    "SpeechFetcher",
    "AudioArtifact",
    "AudioMerger",
    "FfmpegConcatMerger",
    "PydubMerger",
    "concatenate",
    "PipelineConfig",
    "PipelineOutcome",
    "PipelineRun",
    "PodcastPipeline",
    "RunState",
    "PodcastDraft",
    "ScriptGenerator",
    "parse_title_and_bullets",
    "PodcastRecordBuilder",
]
