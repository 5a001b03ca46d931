"""
XForm Transformer
=================

Turns ODK XForms into the HTML form and XML model a web form engine
renders:

- XSLT transformation of the XForm into form HTML and model XML
- Correction passes for what the stylesheets cannot express (actions,
  appearances, theme, media, language tags, Markdown, namespaces, instanceID)
- Two interchangeable document backends over lxml

Architecture
------------

    xform_transformer/
    ├── dom/           - Document backends (native wrappers, host lxml)
    ├── transform/     - Stylesheets and their application
    ├── correction/    - Correction pass framework and passes
    ├── xml/           - XML processing utilities
    ├── config/        - Configuration management
    ├── language.py    - Language label parsing and directionality
    ├── markdown.py    - Markdown subset rendering
    ├── media.py       - Media map escaping and lookup
    └── transformer.py - The transform pipeline

Usage
-----

    from xform_transformer import Survey, transform

    result = transform(Survey(xform=text, media={"logo.png": "/media/logo.png"}))
    result.form   # HTML form
    result.model  # XML model
"""

__version__ = "1.0.0"
__author__ = "XForm Transformer Team"

from xform_transformer.errors import (
    DocumentRole,
    MalformedDocument,
    MissingModelRoot,
    TransformationFailed,
    UnsupportedPreprocessing,
    XFormTransformerError,
)

from xform_transformer.dom import (
    NAMESPACES,
    DOMBackend,
    HostBackend,
    NativeBackend,
    get_backend,
)

from xform_transformer.media import escape_url_path

from xform_transformer.transform import sheets, transformer_version

from xform_transformer.transformer import (
    Survey,
    TransformedSurvey,
    transform,
    transform_xform,
)

__all__ = [
    # Version
    "__version__",
    "transformer_version",
    # Pipeline
    "Survey",
    "TransformedSurvey",
    "transform",
    "transform_xform",
    "sheets",
    "escape_url_path",
    # Backends
    "NAMESPACES",
    "DOMBackend",
    "HostBackend",
    "NativeBackend",
    "get_backend",
    # Errors
    "DocumentRole",
    "XFormTransformerError",
    "MalformedDocument",
    "TransformationFailed",
    "MissingModelRoot",
    "UnsupportedPreprocessing",
]
