"""
Tokenizers used for chunking and token accounting.

A tokenizer maps text to character spans, one per token. Spans are ordered
and cover the text without gaps, so a run of tokens always corresponds to
one contiguous slice of the original text.
"""

import re
from abc import ABC, abstractmethod
from typing import List, Tuple

import structlog
import tiktoken

from voxe_kb.core.config import settings

logger = structlog.get_logger(__name__)

Span = Tuple[int, int]


class BaseTokenizer(ABC):
    name: str = ""

    @abstractmethod
    def spans(self, text: str) -> List[Span]:
        """Character spans of every token in ``text``."""

    def count(self, text: str) -> int:
        return len(self.spans(text))


class WordTokenizer(BaseTokenizer):
    """Whitespace-delimited words. Each word owns the whitespace after it."""

    name = "word"
    _token_re = re.compile(r"\S+\s*")

    def spans(self, text: str) -> List[Span]:
        spans = [m.span() for m in self._token_re.finditer(text)]
        if spans and spans[0][0] > 0:
            # leading whitespace belongs to the first word
            spans[0] = (0, spans[0][1])
        return spans


class TiktokenTokenizer(BaseTokenizer):
    """BPE tokens of the embedding model's encoding."""

    name = "tiktoken"

    def __init__(self, encoding_name: str = "cl100k_base"):
        self.encoding_name = encoding_name
        self.encoding = tiktoken.get_encoding(encoding_name)

    def _encode(self, text: str) -> List[int]:
        # special token strings in user documents are plain text here
        return self.encoding.encode(text, disallowed_special=())

    def spans(self, text: str) -> List[Span]:
        tokens = self._encode(text)
        if not tokens:
            return []
        decoded, offsets = self.encoding.decode_with_offsets(tokens)
        if decoded != text:
            # lone surrogates do not survive the round trip
            logger.warning("Tokenizer round trip changed text, using proportional offsets")
            step = len(text) / len(tokens)
            offsets = [int(i * step) for i in range(len(tokens))]

        spans: List[Span] = []
        for i, start in enumerate(offsets):
            end = offsets[i + 1] if i + 1 < len(offsets) else len(text)
            spans.append((start, max(start, end)))
        return spans

    def count(self, text: str) -> int:
        return len(self._encode(text))


def build_tokenizer(name: str = None) -> BaseTokenizer:
    name = (name or settings.TOKENIZER or "tiktoken").strip().lower()
    if name == WordTokenizer.name:
        return WordTokenizer()
    if name == TiktokenTokenizer.name:
        return TiktokenTokenizer(settings.TIKTOKEN_ENCODING)
    raise ValueError(f"Unknown tokenizer: {name}")
