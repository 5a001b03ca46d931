"""
Transformer Errors
==================

Exception taxonomy for the XForm transformation pipeline. Every error is
fatal for the ``transform()`` call that raised it; nothing is retried.
"""

from enum import Enum
from typing import Optional


class DocumentRole(str, Enum):
    """Which text failed to parse."""

    SOURCE = "source"
    STYLESHEET = "stylesheet"
    MARKUP = "markup"


class XFormTransformerError(Exception):
    """Base class for all transformer errors."""


class MalformedDocument(XFormTransformerError):
    """Raised when an XForm, a stylesheet or generated markup fails to parse."""

    def __init__(self, role: DocumentRole, message: str,
                 line: Optional[int] = None):
        self.role = DocumentRole(role)
        self.line = line
        location = f" (line {line})" if line else ""
        super().__init__(f"Malformed {self.role.value} document{location}: {message}")


class TransformationFailed(XFormTransformerError):
    """Raised when a stylesheet fails to compile, apply, or yields nothing."""

    def __init__(self, stylesheet: str, message: str):
        self.stylesheet = stylesheet
        super().__init__(f"Stylesheet '{stylesheet}' failed: {message}")


class MissingModelRoot(XFormTransformerError):
    """Raised when the model output lacks a model element or instance root."""


class UnsupportedPreprocessing(XFormTransformerError):
    """Raised when legacy preprocessing is requested without the native engine."""
