"""
Parser Service
Extracts plain text (plus page and section hints) from uploaded files.

Every supported file type has an extractor class registered in
``EXTRACTORS``; ``extract`` picks one by file type and turns any failure
into ``ExtractionFailed``. Nothing is returned on partial success.
"""

from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, List, Tuple, Type

import docx
import fitz  # PyMuPDF
import markdown as md
import structlog
from bs4 import BeautifulSoup

from voxe_kb.core.exceptions import ExtractionFailed

logger = structlog.get_logger(__name__)

PAGE_SEPARATOR = "\n\n"
BLOCK_SEPARATOR = "\n\n"


@dataclass
class ExtractedText:
    text: str
    page_count: int = 1
    # character offset where each page starts, empty when the format has no pages
    page_offsets: List[int] = field(default_factory=list)
    # (character offset, heading text)
    sections: List[Tuple[int, str]] = field(default_factory=list)
    word_count: int = 0

    def __post_init__(self):
        if not self.word_count:
            self.word_count = len(self.text.split())


class BaseExtractor:
    file_type: str = ""

    def extract(self, content: bytes) -> ExtractedText:
        raise NotImplementedError


class PdfExtractor(BaseExtractor):
    file_type = "pdf"

    def extract(self, content: bytes) -> ExtractedText:
        pages: List[str] = []
        with fitz.open(stream=content, filetype="pdf") as doc:
            for page in doc:
                pages.append(page.get_text().strip())

        offsets: List[int] = []
        position = 0
        for i, page_text in enumerate(pages):
            if i:
                position += len(PAGE_SEPARATOR)
            offsets.append(position)
            position += len(page_text)

        return ExtractedText(
            text=PAGE_SEPARATOR.join(pages),
            page_count=len(pages),
            page_offsets=offsets,
        )


class DocxExtractor(BaseExtractor):
    """Paragraphs and table cells. ``Heading N`` paragraphs become section hints."""

    file_type = "docx"

    def extract(self, content: bytes) -> ExtractedText:
        document = docx.Document(BytesIO(content))
        lines: List[str] = []
        sections: List[Tuple[int, str]] = []
        position = 0

        def append(line: str):
            nonlocal position
            if lines:
                position += 1  # newline
            lines.append(line)
            position += len(line)

        for para in document.paragraphs:
            text = para.text.strip()
            if not text:
                continue
            style_name = para.style.name if para.style is not None else ""
            if style_name.startswith("Heading") or style_name == "Title":
                sections.append((position + (1 if lines else 0), text))
            append(text)

        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    append("\t".join(cells))

        return ExtractedText(text="\n".join(lines), sections=sections)


class TxtExtractor(BaseExtractor):
    file_type = "txt"

    def extract(self, content: bytes) -> ExtractedText:
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.warning("Failed to decode TXT file with UTF-8, trying with gbk")
            text = content.decode("gbk")
        return ExtractedText(text=text)


class MarkdownExtractor(BaseExtractor):
    """Render to HTML and flatten block by block so h1-h3 offsets are known."""

    file_type = "md"
    heading_tags = {"h1", "h2", "h3"}

    def extract(self, content: bytes) -> ExtractedText:
        source = content.decode("utf-8-sig")
        html = md.markdown(source, extensions=["tables", "fenced_code"])
        soup = BeautifulSoup(html, "html.parser")

        blocks: List[str] = []
        sections: List[Tuple[int, str]] = []
        position = 0
        for node in soup.children:
            if getattr(node, "name", None) is None:
                text = str(node).strip()
            else:
                text = node.get_text().strip()
            if not text:
                continue
            if blocks:
                position += len(BLOCK_SEPARATOR)
            if getattr(node, "name", None) in self.heading_tags:
                sections.append((position, text))
            blocks.append(text)
            position += len(text)

        return ExtractedText(text=BLOCK_SEPARATOR.join(blocks), sections=sections)


EXTRACTORS: Dict[str, Type[BaseExtractor]] = {
    cls.file_type: cls
    for cls in (PdfExtractor, DocxExtractor, TxtExtractor, MarkdownExtractor)
}


def get_supported_formats() -> List[str]:
    return sorted(EXTRACTORS)


def extract(content: bytes, file_type: str) -> ExtractedText:
    """
    Extract text from a stored file.

    Args:
        content: raw file bytes
        file_type: one of the registered extensions (pdf, docx, txt, md)

    Raises:
        ExtractionFailed: unknown type or any error inside the extractor
    """
    extractor_cls = EXTRACTORS.get((file_type or "").lower())
    if extractor_cls is None:
        raise ExtractionFailed(f"No extractor for file type '{file_type}'")

    try:
        result = extractor_cls().extract(content)
    except Exception as e:
        logger.error("Text extraction failed", file_type=file_type, error=str(e), exc_info=True)
        raise ExtractionFailed(f"Failed to extract text from {file_type} file: {e}") from e

    logger.info(
        "Extracted text",
        file_type=file_type,
        pages=result.page_count,
        words=result.word_count,
        characters=len(result.text),
        sections=len(result.sections),
    )
    return result
