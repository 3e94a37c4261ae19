# quotedoc/services/errors.py
from __future__ import annotations
from typing import List, Optional


class QuoteDocError(Exception):
    """Base class for every error raised by the document engine."""


class TemplateLoadError(QuoteDocError):
    """
    The uploaded bytes are not a usable DOCX container.

    Raised for empty input, HTML error pages, a missing ZIP signature, an
    unreadable archive, or an archive without word/document.xml.
    """


class TemplateRenderError(QuoteDocError):
    """
    Token substitution failed. `errors` holds every sub-error found, not just
    the first one, so a template author can fix them in one go.
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors: List[str] = list(errors or [])

    def __str__(self) -> str:
        base = super().__str__()
        if not self.errors:
            return base
        return f"{base}: " + "; ".join(self.errors)


class SerializationError(QuoteDocError):
    """The repacked DOCX is empty or is not a ZIP archive."""
