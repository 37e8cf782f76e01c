import subprocess
from pathlib import Path

import pytest
from pydub import AudioSegment

from podcast_pipeline.errors import InvalidClipSequence, MergeFailed
from podcast_pipeline.fetcher import AudioClip
from podcast_pipeline.merger import FfmpegConcatMerger, PydubMerger, concatenate


def _write_clips(directory, durations, frame_rate=22050):
    directory.mkdir(exist_ok=True)
    clips = []
    for index, duration in enumerate(durations):
        segment = AudioSegment.silent(duration=duration, frame_rate=frame_rate)
        path = directory / f"run_clip_{index:04d}.wav"
        segment.export(path, format="wav")
        clips.append(AudioClip(chunk_index=index, path=path, size_bytes=path.stat().st_size))
    return clips


def test_pydub_merger_joins_clips_without_gaps(tmp_path):
    durations = [1000, 1500, 800]
    clips = _write_clips(tmp_path / "clips", durations)
    output_path = tmp_path / "out" / "podcast.wav"

    artifact = concatenate(clips, PydubMerger(), output_path)

    merged = AudioSegment.from_file(output_path, format="wav")
    assert artifact.path == output_path
    assert artifact.clip_count == 3
    assert artifact.size_bytes == output_path.stat().st_size
    assert abs(len(merged) - sum(durations)) <= 10


def test_pydub_merger_rejects_mixed_formats(tmp_path):
    clips = _write_clips(tmp_path / "a", [300])
    clips += [
        AudioClip(chunk_index=1, path=c.path, size_bytes=c.size_bytes)
        for c in _write_clips(tmp_path / "b", [300], frame_rate=16000)
    ]
    output_path = tmp_path / "podcast.wav"

    with pytest.raises(MergeFailed, match="Format mismatch"):
        concatenate(clips, PydubMerger(), output_path)
    assert not output_path.exists()


@pytest.mark.parametrize("order", [[1, 0, 2], [0, 2], [1, 2]])
def test_out_of_order_or_gapped_clips_are_rejected(tmp_path, order):
    clips = _write_clips(tmp_path / "clips", [100, 100, 100])

    with pytest.raises(InvalidClipSequence):
        concatenate([clips[i] for i in order], PydubMerger(), tmp_path / "podcast.wav")


def test_empty_clip_list_is_rejected(tmp_path):
    with pytest.raises(InvalidClipSequence):
        concatenate([], PydubMerger(), tmp_path / "podcast.wav")


def test_single_clip_is_copied(tmp_path):
    clips = _write_clips(tmp_path / "clips", [400])

    artifact = concatenate(clips, FfmpegConcatMerger(ffmpeg_binary="missing-ffmpeg"), tmp_path / "podcast.wav")

    assert artifact.path.read_bytes() == clips[0].path.read_bytes()


def test_ffmpeg_merger_uses_concat_demuxer_with_stream_copy(tmp_path, monkeypatch):
    clips = _write_clips(tmp_path / "clips", [100, 100, 100])
    output_path = tmp_path / "public" / "podcast.wav"
    seen = {}

    def fake_run(cmd, **kwargs):
        list_path = cmd[cmd.index("-i") + 1]
        seen["cmd"] = cmd
        seen["listing"] = Path(list_path).read_text(encoding="utf-8")
        Path(cmd[-1]).write_bytes(b"merged")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr("podcast_pipeline.merger.subprocess.run", fake_run)
    created = []

    artifact = concatenate(clips, FfmpegConcatMerger(), output_path, on_created=created.append)

    assert artifact.path.read_bytes() == b"merged"
    assert seen["cmd"][seen["cmd"].index("-c") + 1] == "copy"
    assert seen["listing"].splitlines() == [f"file '{clip.path.resolve()}'" for clip in clips]
    assert len(created) == 1
    assert not created[0].exists()


def test_ffmpeg_failure_becomes_merge_failed(tmp_path, monkeypatch):
    clips = _write_clips(tmp_path / "clips", [100, 100])
    output_path = tmp_path / "podcast.wav"

    def fake_run(cmd, **kwargs):
        Path(cmd[-1]).write_bytes(b"partial")
        return subprocess.CompletedProcess(cmd, 1, "", "Invalid data found")

    monkeypatch.setattr("podcast_pipeline.merger.subprocess.run", fake_run)

    with pytest.raises(MergeFailed, match="Invalid data found"):
        concatenate(clips, FfmpegConcatMerger(), output_path)
    assert not output_path.exists()


def test_missing_ffmpeg_binary_becomes_merge_failed(tmp_path):
    clips = _write_clips(tmp_path / "clips", [100, 100])

    with pytest.raises(MergeFailed, match="not found"):
        concatenate(clips, FfmpegConcatMerger(ffmpeg_binary="definitely-not-ffmpeg"), tmp_path / "podcast.mp3")
    assert [p.name for p in tmp_path.iterdir()] == ["clips"]
