import re

import pytest

from podcast_pipeline.chunker import ChunkingConfig, chunk_script

SCENARIO = (
    "Sentence one is short. Sentence two is also fairly short here. "
    "Sentence three runs a bit longer to test chunk splitting behavior near the boundary threshold."
)


def _squash(text):
    return re.sub(r"\s+", "", text)


def _long_script():
    sentences = [
        "The ocean covers most of the planet and shapes the weather everywhere.",
        "Currents move heat from the tropics toward the poles!",
        "Why does that matter for farmers thousands of miles inland?",
        "Because rainfall patterns follow those currents closely, season after season.",
        "Scientists track them with floating buoys and satellites",
    ]
    return " ".join(sentences * 6)


def test_scenario_splits_on_sentence_end_and_hard_cuts_long_sentence():
    chunks = chunk_script(SCENARIO, max_len=80)

    assert 2 <= len(chunks) <= 3
    assert chunks[0].text == "Sentence one is short. Sentence two is also fairly short here."
    assert chunks[-1].text.endswith("threshold.")
    # Sentence three alone is longer than 80 characters, so one hard cut is unavoidable.
    assert [len(chunk.text) for chunk in chunks[1:]] == [80, 14]
    assert _squash("".join(chunk.text for chunk in chunks)) == _squash(SCENARIO)


def test_chunks_cover_script_without_loss_or_duplication():
    script = _long_script()

    for max_len in (60, 120, 200, 500):
        chunks = chunk_script(script, max_len=max_len)
        assert _squash("".join(chunk.text for chunk in chunks)) == _squash(script)


def test_chunks_respect_length_limit():
    chunks = chunk_script(_long_script(), max_len=120)

    assert chunks
    assert all(1 <= len(chunk.text) <= 120 for chunk in chunks)


def test_boundaries_prefer_sentence_terminals():
    chunks = chunk_script(_long_script(), max_len=200)

    for chunk in chunks[:-1]:
        assert chunk.text[-1] in ".!?"


def test_indices_are_ordered_and_only_last_is_final():
    chunks = chunk_script(_long_script(), max_len=100)

    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert [chunk.is_final for chunk in chunks] == [False] * (len(chunks) - 1) + [True]


@pytest.mark.parametrize("script", ["", "   ", "\n\t ", None])
def test_empty_script_yields_no_chunks(script):
    assert chunk_script(script) == []


def test_unpunctuated_text_falls_back_to_hard_cut():
    chunks = chunk_script("a" * 450, max_len=200)

    assert [len(chunk.text) for chunk in chunks] == [200, 200, 50]


def test_trailing_text_without_punctuation_is_emitted():
    script = "This opening sentence is long enough to pass the threshold easily. and then it trails off"
    chunks = chunk_script(script, max_len=80)

    assert chunks[-1].text == "and then it trails off"
    assert chunks[-1].is_final


def test_minimum_boundary_offset_is_configurable():
    script = "Hi. " + "x" * 300

    default_chunks = chunk_script(script, max_len=200)
    eager_chunks = chunk_script(script, max_len=200, min_boundary_offset=0)

    assert len(default_chunks[0].text) == 200
    assert eager_chunks[0].text == "Hi."


def test_invalid_limits_are_rejected():
    with pytest.raises(ValueError):
        chunk_script("text", max_len=0)
    with pytest.raises(ValueError):
        ChunkingConfig(max_len=-5)
