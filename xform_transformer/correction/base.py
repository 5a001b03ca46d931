"""
Base Correction Classes
=======================

Abstract base class for correction passes and the containers they share.

A correction pass repairs one known defect in a document produced by (or
fed to) a stylesheet. Passes run in a fixed order; later passes assume the
earlier ones already ran.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence
import logging

from xform_transformer.dom import DOMBackend
from xform_transformer.language import Language

logger = logging.getLogger(__name__)


@dataclass
class CorrectionResult:
    """
    Container for correction results.

    Attributes:
        passes_run: Number of passes applied
        total_changes: Total number of individual changes
        changes_by_pass: Count of changes by pass name
        descriptions: Descriptions of the changes, in order
    """
    passes_run: int = 0
    total_changes: int = 0
    changes_by_pass: Dict[str, int] = field(default_factory=dict)
    descriptions: List[str] = field(default_factory=list)

    def add_change(self, pass_name: str, description: str = "") -> None:
        """Record one change made by a pass."""
        self.total_changes += 1
        self.changes_by_pass[pass_name] = self.changes_by_pass.get(pass_name, 0) + 1
        if description:
            self.descriptions.append(description)

    def merge(self, other: 'CorrectionResult') -> None:
        """Merge another result into this one."""
        self.passes_run += other.passes_run
        self.total_changes += other.total_changes
        self.descriptions.extend(other.descriptions)

        for pass_name, count in other.changes_by_pass.items():
            self.changes_by_pass[pass_name] = self.changes_by_pass.get(pass_name, 0) + count

    def summary(self) -> str:
        """Generate a text summary of correction results."""
        lines = [
            f"Passes run: {self.passes_run}",
            f"Total changes: {self.total_changes}",
        ]

        if self.changes_by_pass:
            lines.append("\nChanges by pass:")
            for pass_name, count in sorted(self.changes_by_pass.items(), key=lambda x: -x[1]):
                lines.append(f"  {pass_name}: {count}")

        return "\n".join(lines)


@dataclass
class CorrectionContext:
    """
    Inputs a pass may read, and the outputs the language pass reports.

    Passes never mutate anything here except ``language_map``,
    ``languages`` and ``result``.
    """
    backend: DOMBackend
    media: Dict[str, str] = field(default_factory=dict)
    theme: str = ""
    markdown: bool = True
    source: Any = None
    model_stylesheet: Any = None
    language_map: Dict[str, str] = field(default_factory=dict)
    languages: List[Language] = field(default_factory=list)
    result: CorrectionResult = field(default_factory=CorrectionResult)


class Correction(ABC):
    """
    Abstract base class for correction passes.

    Example:
        class DropComments(Correction):
            name = "drop-comments"
            target = "form"

            def apply(self, document, context) -> int:
                dom = context.backend
                comments = dom.evaluate(document, "//comment()")
                for comment in comments:
                    dom.remove(comment)
                return len(comments)
    """

    name: str = "correction"

    # Which document the pass receives: source, stylesheet, form or model
    target: str = "form"

    @abstractmethod
    def apply(self, document: Any, context: CorrectionContext) -> int:
        """
        Correct ``document`` in place.

        Args:
            document: Document to correct
            context: Shared inputs

        Returns:
            Number of changes made
        """
        pass

    def record(self, context: CorrectionContext, description: str = "") -> None:
        context.result.add_change(self.name, description)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


def run_corrections(corrections: Sequence[Correction],
                    document: Any,
                    context: CorrectionContext) -> CorrectionResult:
    """
    Run passes in order against one document.

    Returns:
        Result of this run; it is also merged into ``context.result``
    """
    run = CorrectionResult()
    outer, context.result = context.result, run
    try:
        for correction in corrections:
            changes = correction.apply(document, context)
            run.passes_run += 1
            logger.debug(f"{correction.name}: {changes or 0} change(s)")
    finally:
        context.result = outer
        outer.merge(run)
    return run
