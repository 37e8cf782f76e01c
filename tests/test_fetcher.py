import threading

import pytest
from pydub.exceptions import CouldntDecodeError

from podcast_pipeline.chunker import Chunk
from podcast_pipeline.errors import EngineError, PipelineCancelled, SynthesisFailed
from podcast_pipeline.fetcher import FetcherConfig, SpeechFetcher
from podcast_pipeline.tts_engine import TtsEngine


class ScriptedEngine(TtsEngine):
    """Returns queued results in order; exceptions in the queue are raised."""

    def __init__(self, results):
        super().__init__(audio_format="mp3")
        self.results = list(results)
        self.calls = 0

    def fetch_audio(self, text):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_clip_is_written_under_run_scoped_name(tmp_path):
    created = []
    fetcher = SpeechFetcher(
        ScriptedEngine([b"audio"]),
        tmp_path,
        run_id="abc123",
        on_created=created.append,
    )

    clip = fetcher.synthesize(Chunk(index=7, text="hello"))

    assert clip.chunk_index == 7
    assert clip.path == tmp_path / "abc123_clip_0007.mp3"
    assert clip.path.read_bytes() == b"audio"
    assert clip.size_bytes == 5
    assert clip.attempts == 1
    assert created == [clip.path]


def test_two_runs_never_share_clip_paths(tmp_path):
    first = SpeechFetcher(ScriptedEngine([]), tmp_path)
    second = SpeechFetcher(ScriptedEngine([]), tmp_path)

    assert first.clip_path(0) != second.clip_path(0)


def test_engine_failure_is_reported_without_retry_by_default(tmp_path):
    engine = ScriptedEngine([EngineError("boom"), b"never"])
    created = []
    fetcher = SpeechFetcher(engine, tmp_path, on_created=created.append)

    with pytest.raises(SynthesisFailed) as excinfo:
        fetcher.synthesize(Chunk(index=3, text="hello"))

    assert excinfo.value.chunk_index == 3
    assert isinstance(excinfo.value.cause, EngineError)
    assert engine.calls == 1
    # The path was announced for cleanup even though nothing was written.
    assert len(created) == 1
    assert not created[0].exists()


def test_empty_audio_counts_as_failure(tmp_path):
    fetcher = SpeechFetcher(ScriptedEngine([b""]), tmp_path)

    with pytest.raises(SynthesisFailed, match="empty audio"):
        fetcher.synthesize(Chunk(index=0, text="hello"))
    assert list(tmp_path.iterdir()) == []


def test_bounded_retry_recovers_from_transient_errors(tmp_path):
    engine = ScriptedEngine([EngineError("503"), EngineError("503"), b"audio"])
    config = FetcherConfig(max_attempts=3, initial_retry_delay=0.0)
    fetcher = SpeechFetcher(engine, tmp_path, config=config)

    clip = fetcher.synthesize(Chunk(index=0, text="hello"))

    assert clip.attempts == 3
    assert engine.calls == 3


def test_retries_stop_after_max_attempts(tmp_path):
    engine = ScriptedEngine([EngineError("a"), EngineError("b"), b"late"])
    config = FetcherConfig(max_attempts=2, initial_retry_delay=0.0)
    fetcher = SpeechFetcher(engine, tmp_path, config=config)

    with pytest.raises(SynthesisFailed) as excinfo:
        fetcher.synthesize(Chunk(index=0, text="hello"))
    assert str(excinfo.value.cause) == "b"
    assert engine.calls == 2


def test_cancelled_fetcher_does_not_call_engine(tmp_path):
    cancel = threading.Event()
    cancel.set()
    engine = ScriptedEngine([b"audio"])
    fetcher = SpeechFetcher(engine, tmp_path, cancel_event=cancel)

    with pytest.raises(PipelineCancelled):
        fetcher.synthesize(Chunk(index=0, text="hello"))
    assert engine.calls == 0


def test_invalid_attempt_count_is_rejected():
    with pytest.raises(ValueError):
        FetcherConfig(max_attempts=0)


def test_undecodable_audio_is_retried_like_engine_errors(tmp_path):
    engine = ScriptedEngine([CouldntDecodeError("Decoding failed"), b"audio"])
    fetcher = SpeechFetcher(
        engine,
        tmp_path,
        config=FetcherConfig(max_attempts=2, initial_retry_delay=0.0),
    )

    clip = fetcher.synthesize(Chunk(index=0, text="hello"))

    assert clip.attempts == 2
    assert clip.path.read_bytes() == b"audio"


def test_unknown_engine_fault_is_not_retried(tmp_path):
    engine = ScriptedEngine([KeyError("audioContent"), b"audio"])
    fetcher = SpeechFetcher(
        engine,
        tmp_path,
        config=FetcherConfig(max_attempts=3, initial_retry_delay=0.0),
    )

    with pytest.raises(SynthesisFailed) as excinfo:
        fetcher.synthesize(Chunk(index=3, text="hello"))
    assert excinfo.value.chunk_index == 3
    assert engine.calls == 1
