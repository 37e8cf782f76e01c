from __future__ import annotations

import enum
import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from .chunker import Chunk, ChunkingConfig, chunk_script
from .errors import CleanupWarning, EmptyScript, PipelineCancelled, PipelineError
from .fetcher import AudioClip, FetcherConfig, SpeechFetcher
from .merger import AudioArtifact, AudioMerger, FfmpegConcatMerger, concatenate
from .tts_engine import TtsEngine

logger = logging.getLogger(__name__)

__all__ = [
    "RunState",
    "PipelineConfig",
    "PipelineRun",
    "PipelineOutcome",
    "PodcastPipeline",
]

_POLL_INTERVAL_SEC = 0.1


class RunState(str, enum.Enum):
    PENDING = "pending"
    CHUNKING = "chunking"
    SYNTHESIZING = "synthesizing"
    MERGING = "merging"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineConfig:
    """
    Configuration for one script-to-audio pipeline.
    """

    work_dir: Path = Path("output/tmp")
    output_dir: Path = Path("output/public")
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    fetcher: FetcherConfig = field(default_factory=FetcherConfig)
    concurrency: int = 1
    output_prefix: str = "podcast_"
    output_extension: Optional[str] = None
    public_prefix: Optional[str] = "/public"
    deadline_sec: Optional[float] = None

    def __post_init__(self) -> None:
        self.work_dir = Path(self.work_dir)
        self.output_dir = Path(self.output_dir)
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1.")

    def ensure_directories(self) -> None:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)


@dataclass
class PipelineRun:
    """
    State of one pipeline invocation and the manifest of temporaries it owns.
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RunState = RunState.PENDING
    chunks: List[Chunk] = field(default_factory=list)
    clips: List[AudioClip] = field(default_factory=list)
    temporaries: List[Path] = field(default_factory=list)
    cleanup_warnings: List[CleanupWarning] = field(default_factory=list)
    artifact: Optional[AudioArtifact] = None
    error: Optional[BaseException] = None
    abort_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def register(self, path: Path) -> None:
        with self._lock:
            if path not in self.temporaries:
                self.temporaries.append(path)

    def cleanup(self) -> List[CleanupWarning]:
        """
        Best-effort removal of every registered temporary. Safe to call repeatedly.
        """
        with self._lock:
            temporaries = list(self.temporaries)

        warnings: List[CleanupWarning] = []
        for path in temporaries:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                warning = CleanupWarning(resource=path, cause=str(exc))
                logger.warning("Cleanup warning for run %s: %s", self.run_id, warning)
                warnings.append(warning)
        self.cleanup_warnings.extend(warnings)
        return warnings

    def leftover_temporaries(self) -> List[Path]:
        with self._lock:
            return [path for path in self.temporaries if path.exists()]


@dataclass
class PipelineOutcome:
    """
    What the persistence layer receives: a locator on success, an error kind otherwise.
    """

    success: bool
    audio_ref: Optional[str] = None
    error: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {"audioRef": self.audio_ref, "success": self.success}
        if self.error:
            data["error"] = self.error
            data["errorMessage"] = self.error_message
        return data


class PodcastPipeline:
    """
    Chunk a script, synthesize every chunk, merge the clips and release temporaries.

    A run either returns a complete artifact or raises a ``PipelineError``; clips
    fetched before a failure are always deleted.
    """

    def __init__(
        self,
        engine: TtsEngine,
        merger: Optional[AudioMerger] = None,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self.engine = engine
        self.merger = merger or FfmpegConcatMerger()
        self.config = config or PipelineConfig()
        self.config.ensure_directories()

    def run(
        self,
        script: str,
        *,
        cancel_event: Optional[threading.Event] = None,
        run: Optional[PipelineRun] = None,
    ) -> AudioArtifact:
        run = run or PipelineRun()
        if run.state is not RunState.PENDING:
            raise ValueError(f"PipelineRun {run.run_id} has already been used; pass a fresh run.")
        cancel_event = cancel_event or threading.Event()
        timer = self._start_deadline(run)
        watcher = self._forward_cancellation(run, cancel_event)
        succeeded = False
        logger.info("Starting pipeline run %s", run.run_id)

        try:
            self._transition(run, RunState.CHUNKING)
            run.chunks = chunk_script(
                script,
                max_len=self.config.chunking.max_len,
                min_boundary_offset=self.config.chunking.min_boundary_offset,
            )
            if not run.chunks:
                raise EmptyScript()
            logger.info("Split script into %d chunks.", len(run.chunks))

            self._transition(run, RunState.SYNTHESIZING)
            fetcher = SpeechFetcher(
                self.engine,
                self.config.work_dir,
                config=self.config.fetcher,
                run_id=run.run_id,
                on_created=run.register,
                cancel_event=run.abort_event,
            )
            if self.config.concurrency > 1 and len(run.chunks) > 1:
                clips = self._synthesize_parallel(run, fetcher, cancel_event)
            else:
                clips = self._synthesize_sequential(run, fetcher, cancel_event)
            run.clips = sorted(clips, key=lambda clip: clip.chunk_index)

            self._transition(run, RunState.MERGING)
            self._raise_if_cancelled(run, cancel_event)
            artifact = concatenate(
                run.clips,
                self.merger,
                self._output_path(run),
                on_created=run.register,
            )
            if cancel_event.is_set() or run.abort_event.is_set():
                artifact.path.unlink(missing_ok=True)
                raise PipelineCancelled()
            run.artifact = artifact
            succeeded = True
            return artifact
        except PipelineError as exc:
            run.error = exc
            logger.error("Pipeline run %s failed: %s", run.run_id, exc)
            raise
        finally:
            if timer is not None:
                timer.cancel()
            run.abort_event.set()
            watcher.join()
            self._transition(run, RunState.CLEANING_UP)
            run.cleanup()
            self._transition(run, RunState.DONE if succeeded else RunState.FAILED)

    def run_safely(
        self,
        script: str,
        *,
        cancel_event: Optional[threading.Event] = None,
        run: Optional[PipelineRun] = None,
    ) -> PipelineOutcome:
        try:
            artifact = self.run(script, cancel_event=cancel_event, run=run)
        except PipelineError as exc:
            return PipelineOutcome(success=False, error=exc.kind, error_message=str(exc))
        return PipelineOutcome(success=True, audio_ref=self.audio_ref(artifact))

    def audio_ref(self, artifact: AudioArtifact) -> str:
        if self.config.public_prefix:
            return f"{self.config.public_prefix.rstrip('/')}/{artifact.path.name}"
        return artifact.ref

    def _synthesize_sequential(
        self,
        run: PipelineRun,
        fetcher: SpeechFetcher,
        cancel_event: threading.Event,
    ) -> List[AudioClip]:
        clips: List[AudioClip] = []
        for chunk in run.chunks:
            self._raise_if_cancelled(run, cancel_event)
            clip = fetcher.synthesize(chunk)
            clips.append(clip)
            logger.info(
                "Synthesized chunk %d/%d (%d bytes)", chunk.index + 1, len(run.chunks), clip.size_bytes
            )
        return clips

    def _synthesize_parallel(
        self,
        run: PipelineRun,
        fetcher: SpeechFetcher,
        cancel_event: threading.Event,
    ) -> List[AudioClip]:
        clips: List[AudioClip] = []
        executor = ThreadPoolExecutor(
            max_workers=self.config.concurrency,
            thread_name_prefix=f"tts-{run.run_id[:8]}",
        )
        try:
            pending: Set[Future] = {executor.submit(fetcher.synthesize, chunk) for chunk in run.chunks}
            while pending:
                self._raise_if_cancelled(run, cancel_event)
                done, pending = wait(pending, timeout=_POLL_INTERVAL_SEC, return_when=FIRST_COMPLETED)
                failures = [future.exception() for future in done if future.exception() is not None]
                if failures:
                    raise failures[0]
                for future in done:
                    clip = future.result()
                    clips.append(clip)
                    logger.info(
                        "Synthesized chunk %d/%d (%d bytes)",
                        clip.chunk_index + 1,
                        len(run.chunks),
                        clip.size_bytes,
                    )
        except BaseException:
            run.abort_event.set()
            raise
        finally:
            # In-flight requests finish before cleanup so no clip is written afterwards.
            executor.shutdown(wait=True, cancel_futures=True)
        return clips

    def _raise_if_cancelled(self, run: PipelineRun, cancel_event: threading.Event) -> None:
        if cancel_event.is_set() or run.abort_event.is_set():
            run.abort_event.set()
            logger.warning("Pipeline run %s cancelled during %s.", run.run_id, run.state.value)
            raise PipelineCancelled()

    def _output_path(self, run: PipelineRun) -> Path:
        extension = self.config.output_extension or self.engine.file_extension
        if not extension.startswith("."):
            extension = f".{extension}"
        name = f"{self.config.output_prefix}{int(time.time() * 1000)}_{run.run_id[:8]}{extension}"
        return self.config.output_dir / name

    def _forward_cancellation(self, run: PipelineRun, cancel_event: threading.Event) -> threading.Thread:
        """
        Mirror the caller's event onto ``run.abort_event`` until the run ends.
        """

        def watch() -> None:
            while not run.abort_event.wait(_POLL_INTERVAL_SEC):
                if cancel_event.is_set():
                    run.abort_event.set()

        watcher = threading.Thread(target=watch, name=f"cancel-{run.run_id[:8]}", daemon=True)
        watcher.start()
        return watcher

    def _start_deadline(self, run: PipelineRun) -> Optional[threading.Timer]:
        if not self.config.deadline_sec:
            return None
        timer = threading.Timer(self.config.deadline_sec, run.abort_event.set)
        timer.daemon = True
        timer.start()
        return timer

    @staticmethod
    def _transition(run: PipelineRun, state: RunState) -> None:
        logger.debug("Run %s: %s -> %s", run.run_id, run.state.value, state.value)
        run.state = state
