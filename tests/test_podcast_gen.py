import json

import podcast_gen


def _cli_args(tmp_path, script_path, *extra):
    return [
        "--script-file", str(script_path),
        "--title", "Ocean Currents",
        "--engine", "mock",
        "--merger", "pydub",
        "--max-chunk-chars", "90",
        "--work-dir", str(tmp_path / "tmp"),
        "--output-dir", str(tmp_path / "public"),
        "--record-output", str(tmp_path / "podcast.json"),
        *extra,
    ]


def test_cli_writes_audio_and_record(tmp_path):
    script_path = tmp_path / "script.txt"
    script_path.write_text(
        "Ocean currents carry heat around the globe. They shape rainfall far inland. "
        "Sailors have used them for centuries to cross oceans faster.",
        encoding="utf-8",
    )

    exit_code = podcast_gen.main(_cli_args(tmp_path, script_path, "--concurrency", "2"))

    record = json.loads((tmp_path / "podcast.json").read_text(encoding="utf-8"))
    assert exit_code == 0
    assert record["success"] is True
    assert record["title"] == "Ocean Currents"
    assert record["run"]["state"] == "done"
    assert record["run"]["chunks"] == len(record["run"]["clips"]) >= 2
    assert record["audioRef"].startswith("/public/podcast_")
    assert [p.name for p in (tmp_path / "public").iterdir()] == [record["audioRef"].rsplit("/", 1)[1]]
    assert list((tmp_path / "tmp").iterdir()) == []


def test_cli_reports_empty_script(tmp_path):
    script_path = tmp_path / "script.txt"
    script_path.write_text("   \n", encoding="utf-8")

    exit_code = podcast_gen.main(_cli_args(tmp_path, script_path))

    record = json.loads((tmp_path / "podcast.json").read_text(encoding="utf-8"))
    assert exit_code == 1
    assert record["success"] is False
    assert record["error"] == "empty_script"
    assert record["audioRef"] is None
