"""
Token window chunking.

Text is cut into windows of ``chunk_size`` tokens, each window starting
``chunk_size - chunk_overlap`` tokens after the previous one. A chunk's
content is always the exact slice of the source text its tokens cover, so
chunks can be mapped back to pages and sections by offset.
"""

from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog

from voxe_kb.core.exceptions import InvalidChunkConfig
from voxe_kb.services.tokenizer import BaseTokenizer, build_tokenizer

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ChunkConfig:
    chunk_size: int
    chunk_overlap: int

    def validate(self) -> "ChunkConfig":
        if self.chunk_size <= 0:
            raise InvalidChunkConfig(
                "chunk_size must be positive", {"chunk_size": self.chunk_size}
            )
        if self.chunk_overlap < 0:
            raise InvalidChunkConfig(
                "chunk_overlap must not be negative", {"chunk_overlap": self.chunk_overlap}
            )
        if self.chunk_overlap >= self.chunk_size:
            raise InvalidChunkConfig(
                "chunk_overlap must be smaller than chunk_size",
                {"chunk_size": self.chunk_size, "chunk_overlap": self.chunk_overlap},
            )
        return self


@dataclass
class TextChunk:
    sequence_index: int
    content: str
    token_count: int
    char_start: int
    char_end: int
    page_number: Optional[int] = None
    section: Optional[str] = None


def _page_for(offset: int, page_offsets: Sequence[int]) -> Optional[int]:
    if not page_offsets:
        return None
    return max(bisect_right(page_offsets, offset), 1)


def _section_for(offset: int, sections: Sequence[Tuple[int, str]]) -> Optional[str]:
    if not sections:
        return None
    idx = bisect_right([pos for pos, _ in sections], offset)
    if idx == 0:
        return None
    return sections[idx - 1][1][:255]


class ChunkingService:
    """Chunker bound to one tokenizer, used for both windows and token counts."""

    def __init__(self, tokenizer: Optional[BaseTokenizer] = None):
        self._tokenizer = tokenizer

    @property
    def tokenizer(self) -> BaseTokenizer:
        # built lazily, tiktoken loads its encoding on first use
        if self._tokenizer is None:
            self._tokenizer = build_tokenizer()
        return self._tokenizer

    def count_tokens(self, text: str) -> int:
        return self.tokenizer.count(text)

    def chunk_text(
        self,
        text: str,
        config: ChunkConfig,
        page_offsets: Optional[Sequence[int]] = None,
        sections: Optional[Sequence[Tuple[int, str]]] = None,
    ) -> List[TextChunk]:
        """
        Split ``text`` into overlapping token windows.

        Args:
            text: extracted document text
            config: window size and overlap in tokens
            page_offsets: sorted start offsets of each page (1-based numbering)
            sections: sorted (offset, heading) hints

        Returns:
            chunks in order, ``sequence_index`` counting from 0
        """
        config.validate()
        if not text or not text.strip():
            return []

        spans = self.tokenizer.spans(text)
        total = len(spans)
        if total == 0:
            return []

        step = config.chunk_size - config.chunk_overlap
        chunks: List[TextChunk] = []
        start = 0
        while True:
            end = min(start + config.chunk_size, total)
            char_start = spans[start][0]
            char_end = spans[end - 1][1]
            chunks.append(
                TextChunk(
                    sequence_index=len(chunks),
                    content=text[char_start:char_end],
                    token_count=end - start,
                    char_start=char_start,
                    char_end=char_end,
                    page_number=_page_for(char_start, page_offsets or []),
                    section=_section_for(char_start, sections or []),
                )
            )
            if end >= total:
                break
            start += step

        logger.debug(
            "Chunked text",
            tokens=total,
            chunks=len(chunks),
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
        )
        return chunks


chunking_service = ChunkingService()
