from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from .generation import PodcastDraft
from .pipeline import PipelineOutcome, PipelineRun
from .tts_engine import TtsEngine

__all__ = ["PodcastRecordBuilder"]


@dataclass
class PodcastRecordBuilder:
    engine: TtsEngine
    output_path: Path

    def build_record(
        self,
        *,
        draft: PodcastDraft,
        outcome: PipelineOutcome,
        run: Optional[PipelineRun] = None,
    ) -> Dict[str, object]:
        record: Dict[str, object] = {
            "title": draft.title,
            "topic": draft.topic,
            "script": draft.script,
            "bulletPoints": list(draft.bullet_points),
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "engine": self.engine.descriptor(),
            "format": self.engine.audio_format,
            **outcome.to_dict(),
        }
        if run is not None:
            record["run"] = {
                "id": run.run_id,
                "state": run.state.value,
                "chunks": len(run.chunks),
                "clips": [
                    {"index": clip.chunk_index, "bytes": clip.size_bytes, "attempts": clip.attempts}
                    for clip in run.clips
                ],
                "artifactBytes": run.artifact.size_bytes if run.artifact else None,
                "cleanupWarnings": [str(warning) for warning in run.cleanup_warnings],
            }
        return record

    def write_record(self, record: Dict[str, object]) -> None:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        with self.output_path.open("w", encoding="utf-8") as f:
            json.dump(record, f, ensure_ascii=False, indent=2)
