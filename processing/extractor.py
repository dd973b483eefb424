"""
Text Extractor
Turns an uploaded document into ordered page-sized text units.
"""
from abc import ABC, abstractmethod
import logging
from pathlib import Path
import re
from typing import List

from utils.exceptions import InputError


logger = logging.getLogger(__name__)

WHITESPACE = re.compile(r"\s+")


def split_into_units(text: str, words_per_unit: int = 450) -> List[str]:
    """
    Split text into consecutive chunks of `words_per_unit` words.

    Whitespace is normalized; the last chunk may be shorter.
    """
    size = max(1, int(words_per_unit))
    words = WHITESPACE.split(str(text or "").strip())
    words = [word for word in words if word]
    return [" ".join(words[i:i + size]) for i in range(0, len(words), size)]


class BaseTextExtractor(ABC):
    """Document reference in, ordered page texts out (ordinal = index + 1)."""

    @abstractmethod
    def extract(self, path: str) -> List[str]:
        ...


class DocumentTextExtractor(BaseTextExtractor):
    """
    PDF (via pypdf) and plain text/markdown extractor.

    Blocking; the pipeline calls it through `asyncio.to_thread`.
    """

    TEXT_SUFFIXES = {".txt", ".md", ".markdown"}

    def __init__(self, words_per_unit: int = 450):
        self.words_per_unit = words_per_unit

    def extract(self, path: str) -> List[str]:
        source = Path(path)
        if not source.is_file():
            raise InputError("Book Not Uploaded", {"path": str(source)})

        suffix = source.suffix.lower()
        if suffix == ".pdf":
            text = self._read_pdf(source)
        elif suffix in self.TEXT_SUFFIXES:
            text = self._read_text(source)
        else:
            raise InputError(f"Unsupported document type: {suffix or 'none'}", {"path": str(source)})

        units = split_into_units(text, self.words_per_unit)
        logger.info("extracted path=%s chars=%s units=%s", source.name, len(text), len(units))
        return units

    @staticmethod
    def _read_text(source: Path) -> str:
        try:
            return source.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise InputError(f"Failed to read document: {exc}", {"path": str(source)}) from exc

    @staticmethod
    def _read_pdf(source: Path) -> str:
        from pypdf import PdfReader
        from pypdf.errors import PdfReadError

        try:
            reader = PdfReader(str(source))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PdfReadError, OSError, ValueError) as exc:
            raise InputError(f"Failed to parse PDF: {exc}", {"path": str(source)}) from exc
        return "\n".join(pages)
