from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

logger = logging.getLogger(__name__)

__all__ = ["Chunk", "ChunkingConfig", "chunk_script", "SENTENCE_TERMINALS"]

SENTENCE_TERMINALS = ".!?"


@dataclass
class ChunkingConfig:
    """
    Configuration describing how a script is cut into speakable chunks.

    ``min_boundary_offset`` keeps the splitter from accepting a sentence end that
    sits so early in the window that it would produce a tiny chunk.
    """

    max_len: int = 200
    min_boundary_offset: int = 50

    def __post_init__(self) -> None:
        if self.max_len <= 0:
            raise ValueError("max_len must be positive.")
        if self.min_boundary_offset < 0:
            raise ValueError("min_boundary_offset must not be negative.")


@dataclass(frozen=True)
class Chunk:
    index: int
    text: str
    is_final: bool = False


def chunk_script(
    script: str,
    max_len: int = 200,
    min_boundary_offset: int = 50,
) -> List[Chunk]:
    """
    Split ``script`` into ordered chunks of at most ``max_len`` characters.

    Each window is cut after its last ``.``, ``!`` or ``?`` when that mark lies
    beyond ``min_boundary_offset``; otherwise the window is hard cut at ``max_len``.
    """
    if max_len <= 0:
        raise ValueError("max_len must be positive.")

    remaining = (script or "").strip()
    texts: List[str] = []
    while remaining:
        window = remaining[:max_len]
        cut = len(window)
        boundary = _last_terminal(window)
        if boundary > min_boundary_offset:
            cut = boundary + 1

        piece = window[:cut].strip()
        if piece:
            texts.append(piece)
        remaining = remaining[cut:].lstrip()

    chunks = [
        Chunk(index=index, text=text, is_final=index == len(texts) - 1)
        for index, text in enumerate(texts)
    ]
    logger.debug("Chunked %d characters into %d chunks (max_len=%d).", len(script or ""), len(chunks), max_len)
    return chunks


def _last_terminal(window: str) -> int:
    return max(window.rfind(mark) for mark in SENTENCE_TERMINALS)
