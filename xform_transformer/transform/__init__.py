"""
Transformation Framework
========================

Stylesheet application for the XForm pipeline.

Components:
- apply: Apply a stylesheet and adopt the result under the anchor root
- sheets: The two stylesheet texts (form, model)
- reload_sheets: Re-read stylesheets after a configuration change
- transformer_version: Hash identifying stylesheets plus package version
"""

from xform_transformer.transform.xslt import (
    FORM_STYLESHEET,
    MODEL_STYLESHEET,
    apply,
    reload_sheets,
    sheets,
    transformer_version,
)

__all__ = [
    "FORM_STYLESHEET",
    "MODEL_STYLESHEET",
    "apply",
    "reload_sheets",
    "sheets",
    "transformer_version",
]
