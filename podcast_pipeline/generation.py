from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from .errors import GenerationError

logger = logging.getLogger(__name__)

__all__ = [
    "PodcastDraft",
    "ScriptGenerator",
    "get_shared_client",
    "parse_title_and_bullets",
    "looks_truncated",
]

DEFAULT_TITLE = "Untitled Podcast"
MISSING_BULLET = "Missing bullet point. Please regenerate."
BULLET_COUNT = 3
_BULLET_PREFIX = re.compile(r"^(-|bullet\s*\d+:)\s*", re.IGNORECASE)

SCRIPT_PROMPT = """\
Write a friendly podcast script about: "{topic}".
- Do not pretend to be the person or use first-person narration.
- Write in third person about the topic.
- Use natural, spoken English with contractions.
- Don't include bullet points, titles, markdown, or a closing summary.
- Keep it under 1000 words.
- No guest dialogue or host names.
- If you do not know real facts about the topic, say so or keep the script general. Do not make up details.
- Do not include introductory phrases or placeholders like [name]. Start directly with the content.

Start the script now:
"""

TITLE_PROMPT = """\
You are a podcast editor.

Generate a short, catchy podcast title and 3 factual, third-person bullet points about the topic: "{topic}".

Rules:
- Title must be the first line (do NOT write "Title here")
- Bullet points must start with "- "
- Each bullet must be a key fact, idea, or takeaway
- Do not use first person or roleplay
- Do not include introductory phrases or explanations. Only output the title and bullet points.
- If you do not know real facts about the topic, keep the bullet points general. Do not make up details.

Format:
Your title
- Bullet 1
- Bullet 2
- Bullet 3
"""

_shared_client: Any = None
_shared_client_lock = threading.Lock()


def get_shared_client(api_key: Optional[str] = None) -> Any:
    """
    Process-wide ``google-genai`` client, created once on first use and never reloaded.
    """
    global _shared_client
    if _shared_client is not None:
        return _shared_client

    with _shared_client_lock:
        if _shared_client is None:
            try:
                from google import genai  # type: ignore
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise RuntimeError(
                    "google-genai is required for script generation but is not installed."
                ) from exc

            key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_GENAI_API_KEY")
            if not key:
                raise GenerationError(
                    "Script generation requires an API key (use --api-key or GEMINI_API_KEY env var)."
                )
            logger.info("Initialising shared Google GenAI client.")
            _shared_client = genai.Client(api_key=key)
    return _shared_client


@dataclass
class PodcastDraft:
    title: str
    topic: str
    script: str
    bullet_points: List[str] = field(default_factory=list)


def parse_title_and_bullets(text: str) -> Tuple[str, List[str]]:
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        return DEFAULT_TITLE, [MISSING_BULLET] * BULLET_COUNT

    if "title here" in lines[0].lower():
        title = lines[1] if len(lines) > 1 else DEFAULT_TITLE
    else:
        title = lines[0]

    bullets = [
        _BULLET_PREFIX.sub("", line).strip()
        for line in lines[1:]
        if _BULLET_PREFIX.match(line)
    ][:BULLET_COUNT]
    while len(bullets) < BULLET_COUNT:
        bullets.append(MISSING_BULLET)
    return title, bullets


def looks_truncated(script: str) -> bool:
    script = script.strip()
    return len(script) > 50 and not script.endswith((".", "!", "?"))


class ScriptGenerator:
    """
    Produces a title, three bullet points and a spoken script for a topic.
    """

    def __init__(
        self,
        *,
        client: Any = None,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-flash",
        script_max_tokens: int = 1024,
        script_temperature: float = 0.7,
        title_max_tokens: int = 300,
        title_temperature: float = 0.6,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self.model = model
        self.script_max_tokens = script_max_tokens
        self.script_temperature = script_temperature
        self.title_max_tokens = title_max_tokens
        self.title_temperature = title_temperature

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_shared_client(self._api_key)
        return self._client

    def generate(self, topic: str) -> PodcastDraft:
        topic = (topic or "").strip()
        if not topic:
            raise GenerationError("Topic is required.")

        script = self.generate_script(topic)
        title, bullets = self.generate_title_and_bullets(topic)
        logger.info("Generated draft %r (%d script characters).", title, len(script))
        return PodcastDraft(title=title, topic=topic, script=script, bullet_points=bullets)

    def generate_script(self, topic: str) -> str:
        script = self._complete(
            SCRIPT_PROMPT.format(topic=topic),
            max_tokens=self.script_max_tokens,
            temperature=self.script_temperature,
        )
        if looks_truncated(script):
            logger.warning("Script may have been cut off due to token limits.")
        return script

    def generate_title_and_bullets(self, topic: str) -> Tuple[str, List[str]]:
        text = self._complete(
            TITLE_PROMPT.format(topic=topic),
            max_tokens=self.title_max_tokens,
            temperature=self.title_temperature,
        )
        return parse_title_and_bullets(text)

    def _complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=prompt,
                config={"max_output_tokens": max_tokens, "temperature": temperature},
            )
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"Text generation failed: {exc}") from exc

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise GenerationError("Model returned an empty response.")
        return text
