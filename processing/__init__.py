"""
Processing Module
Document text extraction and page splitting.
"""
from .extractor import BaseTextExtractor, DocumentTextExtractor, split_into_units

__all__ = [
    "BaseTextExtractor",
    "DocumentTextExtractor",
    "split_into_units",
]
