#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

from podcast_pipeline.chunker import ChunkingConfig
from podcast_pipeline.errors import GenerationError
from podcast_pipeline.fetcher import FetcherConfig
from podcast_pipeline.generation import PodcastDraft, ScriptGenerator
from podcast_pipeline.merger import AudioMerger, FfmpegConcatMerger, PydubMerger
from podcast_pipeline.metadata import PodcastRecordBuilder
from podcast_pipeline.pipeline import PipelineConfig, PipelineRun, PodcastPipeline
from podcast_pipeline.tts_engine import (
    GoogleGenAITtsEngine,
    MockTtsEngine,
    PollyTtsEngine,
    TranslateTtsEngine,
    TtsEngine,
)

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a narrated podcast from a topic.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--topic", help="Topic to generate a script for.")
    source.add_argument("--script-file", help="Use an existing script instead of generating one.")
    parser.add_argument("--title", help="Title to record when --script-file is used.")
    parser.add_argument("--input-encoding", default="utf-8", help="Encoding used for the script file.")
    parser.add_argument("--engine", default="translate", help="TTS engine to use (translate, polly, google_genai, mock).")
    parser.add_argument("--merger", default="ffmpeg", help="Clip merger to use (ffmpeg, pydub).")
    parser.add_argument("--api-key", help="API key for Google GenAI (script generation and TTS).")
    parser.add_argument("--text-model", default="gemini-2.5-flash", help="Google GenAI model for script generation.")
    parser.add_argument("--tts-model", default="gemini-2.5-flash-preview-tts", help="Google GenAI TTS model name.")
    parser.add_argument("--voice-id", help="Voice identifier (engine specific).")
    parser.add_argument("--language", default="en", help="Target language for speech synthesis.")
    parser.add_argument("--max-chunk-chars", type=int, default=200, help="Maximum characters per TTS request.")
    parser.add_argument("--min-boundary-offset", type=int, default=50, help="Ignore sentence ends this close to a chunk start.")
    parser.add_argument("--concurrency", type=int, default=1, help="Concurrent synthesis requests per run.")
    parser.add_argument("--max-attempts", type=int, default=1, help="Engine calls per chunk before giving up.")
    parser.add_argument("--retry-initial-delay", type=float, default=0.5, help="Initial retry delay in seconds.")
    parser.add_argument("--retry-backoff", type=float, default=2.0, help="Multiplier for retry backoff.")
    parser.add_argument("--request-timeout", type=float, default=30.0, help="Timeout per TTS request in seconds.")
    parser.add_argument("--deadline", type=float, help="Cancel the run after this many seconds.")
    parser.add_argument("--work-dir", default="./output/tmp", help="Directory for temporary clip files.")
    parser.add_argument("--output-dir", default="./output/public", help="Directory for merged podcast audio.")
    parser.add_argument("--record-output", default="./output/podcast.json", help="Path for the podcast record JSON.")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def resolve_api_key(args: argparse.Namespace) -> str | None:
    return args.api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_GENAI_API_KEY")


def create_engine(args: argparse.Namespace) -> TtsEngine:
    engine_name = (args.engine or "").lower()
    if engine_name in {"mock", "dummy"}:
        return MockTtsEngine()

    if engine_name in {"translate", "google_translate"}:
        return TranslateTtsEngine(language=args.language, timeout_sec=args.request_timeout)

    if engine_name in {"polly", "aws_polly"}:
        if not args.voice_id:
            raise ValueError("--voice-id is required when using the Polly engine.")
        return PollyTtsEngine(voice_id=args.voice_id, language_code=args.language)

    if engine_name in {"google_genai", "gemini"}:
        api_key = resolve_api_key(args)
        if not api_key:
            raise ValueError("Google GenAI engine requires an API key (use --api-key or GEMINI_API_KEY env var).")
        return GoogleGenAITtsEngine(
            api_key=api_key,
            model=args.tts_model,
            voice_name=args.voice_id,
            language_code=args.language,
        )

    raise ValueError(f"Unsupported engine: {args.engine}")


def create_merger(args: argparse.Namespace) -> AudioMerger:
    merger_name = (args.merger or "").lower()
    if merger_name == "ffmpeg":
        return FfmpegConcatMerger()
    if merger_name == "pydub":
        return PydubMerger()
    raise ValueError(f"Unsupported merger: {args.merger}")


def load_draft(args: argparse.Namespace) -> PodcastDraft:
    if args.script_file:
        path = Path(args.script_file)
        if not path.exists():
            raise FileNotFoundError(f"Script file does not exist: {path}")
        script = path.read_text(encoding=args.input_encoding)
        return PodcastDraft(title=args.title or path.stem, topic=args.title or path.stem, script=script)

    generator = ScriptGenerator(api_key=resolve_api_key(args), model=args.text_model)
    return generator.generate(args.topic)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        work_dir=Path(args.work_dir),
        output_dir=Path(args.output_dir),
        chunking=ChunkingConfig(
            max_len=args.max_chunk_chars,
            min_boundary_offset=args.min_boundary_offset,
        ),
        fetcher=FetcherConfig(
            max_attempts=args.max_attempts,
            initial_retry_delay=args.retry_initial_delay,
            retry_backoff_factor=args.retry_backoff,
        ),
        concurrency=args.concurrency,
        deadline_sec=args.deadline,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.debug)

    try:
        draft = load_draft(args)
    except GenerationError as exc:
        logger.error("Script generation failed: %s", exc)
        return 1

    engine = create_engine(args)
    pipeline = PodcastPipeline(engine, create_merger(args), build_config(args))
    run = PipelineRun()
    outcome = pipeline.run_safely(draft.script, run=run)

    record_builder = PodcastRecordBuilder(engine=engine, output_path=Path(args.record_output))
    record_builder.write_record(record_builder.build_record(draft=draft, outcome=outcome, run=run))
    logger.info("Podcast record written to %s", record_builder.output_path)

    if not outcome.success:
        logger.error("Podcast generation failed (%s): %s", outcome.error, outcome.error_message)
        return 1

    logger.info("Podcast %r ready at %s", draft.title, run.artifact.path if run.artifact else outcome.audio_ref)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.error("Interrupted by user.")
        sys.exit(1)
    except Exception as exc:
        logger.exception("Fatal error: %s", exc)
        sys.exit(1)
