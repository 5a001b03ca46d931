"""
Correction Framework
====================

Ordered correction passes for the XForm pipeline.

Components:
- Correction: Abstract base class for all passes
- CorrectionContext: Inputs shared by the passes of one transform
- CorrectionResult: Container for correction results
- SOURCE_CORRECTIONS: binary defaults, on the parsed XForm
- STYLESHEET_CORRECTIONS: itemset label templates, on the form stylesheet
- FORM_CORRECTIONS: actions, appearances, theme, media, languages, Markdown
- MODEL_CORRECTIONS: namespaces, media, instanceID
"""

from xform_transformer.correction.base import (
    Correction,
    CorrectionContext,
    CorrectionResult,
    run_corrections,
)
from xform_transformer.correction.form import FORM_CORRECTIONS
from xform_transformer.correction.model import MODEL_CORRECTIONS
from xform_transformer.correction.source import (
    SOURCE_CORRECTIONS,
    STYLESHEET_CORRECTIONS,
)

__all__ = [
    "Correction",
    "CorrectionContext",
    "CorrectionResult",
    "run_corrections",
    "SOURCE_CORRECTIONS",
    "STYLESHEET_CORRECTIONS",
    "FORM_CORRECTIONS",
    "MODEL_CORRECTIONS",
]
