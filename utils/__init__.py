"""Utility modules for extraction, fetching and report generation."""

from .extractors import PageExtractor
from .markdown_generator import MarkdownGenerator

__all__ = [
    "PageExtractor",
    "MarkdownGenerator",
]
