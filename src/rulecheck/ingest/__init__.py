"""Rulecheck ingest pipeline — Markdown section chunker and knowledge writer."""

from rulecheck.ingest.markdown import DocumentChunk, MarkdownSectionChunker, chunk_long_content
from rulecheck.ingest.writer import KnowledgeWriter

__all__ = [
    "DocumentChunk",
    "KnowledgeWriter",
    "MarkdownSectionChunker",
    "chunk_long_content",
]
