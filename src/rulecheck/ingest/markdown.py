"""Markdown section chunker for knowledge documents.

H1 headings set both the chunk title and section; H2 headings set the
section. Every heading closes the previous chunk. Headings inside fenced code
blocks are treated as content. Chunks above ``max_chunk_chars`` are split on
paragraph boundaries (then sentences); chunks of ``min_chunk_chars`` or
fewer characters are dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from rulecheck.db.models import DOCUMENT_TYPES

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


@dataclass
class DocumentChunk:
    title: str
    content: str
    document_type: str = "rule"
    section: str | None = None
    metadata: dict = field(default_factory=dict)


def _split_sentences(paragraph: str, max_length: int) -> list[str]:
    pieces = paragraph.split(". ")
    sentences = [p + (". " if i < len(pieces) - 1 else "") for i, p in enumerate(pieces)]
    out: list[str] = []
    for sentence in sentences:
        # A single sentence longer than the budget is cut into fixed windows.
        while len(sentence) > max_length:
            out.append(sentence[:max_length])
            sentence = sentence[max_length:]
        if sentence:
            out.append(sentence)
    return out


def chunk_long_content(content: str, max_length: int = 2000) -> list[str]:
    """Split *content* into pieces of at most *max_length* characters.

    Paragraphs (blank-line separated) are kept whole where they fit; a
    paragraph longer than *max_length* is split into sentences.
    """
    if max_length < 1:
        raise ValueError("max_length must be >= 1")
    if len(content) <= max_length:
        return [content]

    chunks: list[str] = []
    current = ""
    for paragraph in content.split("\n\n"):
        joined = len(current) + len(paragraph) + (2 if current else 0)
        if joined <= max_length:
            current += ("\n\n" if current else "") + paragraph
            continue
        if current.strip():
            chunks.append(current.strip())
        current = ""
        if len(paragraph) <= max_length:
            current = paragraph
            continue
        for sentence in _split_sentences(paragraph, max_length):
            if current and len(current) + len(sentence) > max_length:
                chunks.append(current.strip())
                current = ""
            current += sentence

    if current.strip():
        chunks.append(current.strip())
    return chunks


class MarkdownSectionChunker:
    """Split Markdown on headings into DocumentChunks.

    Args:
        max_chunk_chars: Chunks longer than this are split further.
        min_chunk_chars: Chunks of this many characters or fewer are dropped.
    """

    def __init__(self, max_chunk_chars: int = 2000, min_chunk_chars: int = 50) -> None:
        if max_chunk_chars < 1:
            raise ValueError("max_chunk_chars must be >= 1")
        if min_chunk_chars < 0:
            raise ValueError("min_chunk_chars must be >= 0")
        self.max_chunk_chars = max_chunk_chars
        self.min_chunk_chars = min_chunk_chars

    def chunk(self, content: str, document_type: str = "rule") -> list[DocumentChunk]:
        if document_type not in DOCUMENT_TYPES:
            raise ValueError(
                f"document_type must be one of {DOCUMENT_TYPES}, got '{document_type}'"
            )
        if not content.strip():
            return []

        chunks: list[DocumentChunk] = []
        title = ""
        section = ""
        heading_level = 0
        blocks: list[str] = []
        paragraph: list[str] = []
        in_fence = False

        def end_paragraph() -> None:
            text = "\n".join(paragraph).strip()
            if text:
                blocks.append(text)
            paragraph.clear()

        def flush(fallback_title: str) -> None:
            end_paragraph()
            if not blocks:
                return
            body = "\n\n".join(blocks).strip()
            chunk_title = title or section or fallback_title
            chunks.extend(
                self._finish(body, chunk_title, section, heading_level, document_type)
            )
            blocks.clear()

        for line in content.splitlines():
            if _FENCE_RE.match(line):
                in_fence = not in_fence
                paragraph.append(line)
                continue
            if in_fence:
                paragraph.append(line)
                continue

            match = _HEADING_RE.match(line)
            if match:
                flush("Introduction")
                depth = len(match.group(1))
                text = match.group(2).strip()
                if depth == 1:
                    title = text
                    section = text
                elif depth == 2:
                    section = text
                heading_level = depth
                blocks.append(f"{'#' * depth} {text}")
            elif not line.strip():
                end_paragraph()
            else:
                paragraph.append(line)

        flush("Final Section")
        return chunks

    def _finish(
        self, body: str, title: str, section: str, heading_level: int, document_type: str
    ) -> list[DocumentChunk]:
        parts = chunk_long_content(body, self.max_chunk_chars)
        out: list[DocumentChunk] = []
        for i, part in enumerate(parts):
            if len(part) <= self.min_chunk_chars:
                continue
            metadata: dict = {"heading_level": heading_level, "word_count": len(part.split())}
            if len(parts) > 1:
                metadata["part"] = i + 1
                metadata["parts"] = len(parts)
            out.append(
                DocumentChunk(
                    title=title,
                    content=part,
                    section=section or None,
                    document_type=document_type,
                    metadata=metadata,
                )
            )
        return out
