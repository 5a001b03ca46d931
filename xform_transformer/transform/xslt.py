"""
Stylesheet Application
======================

Applies one of the two XForm stylesheets to a parsed XForm and adopts the
result into a fresh document rooted at a synthetic ``{xforms}root`` anchor,
so that every correction pass can address output as ``/xf:root/...``.

Stylesheets are compiled per call. The bundled stylesheet texts are read
once per process.
"""

import copy
import hashlib
import logging
import threading
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from lxml import etree

from xform_transformer.config import get_config
from xform_transformer.dom import ANCHOR_NAME, XFORMS_NS, DOMBackend, get_backend
from xform_transformer.dom.base import parse_engine_xml
from xform_transformer.errors import DocumentRole, TransformationFailed

logger = logging.getLogger(__name__)

XSL_DIR = Path(__file__).parent / "xsl"

FORM_STYLESHEET = "openrosa2html5form.xsl"
MODEL_STYLESHEET = "openrosa2xmlmodel.xsl"

_sheets: Optional[Dict[str, str]] = None
_sheets_lock = threading.Lock()


def _read_stylesheet(override: str, bundled: str) -> str:
    path = Path(override) if override else XSL_DIR / bundled
    logger.info(f"Loading XSLT stylesheet: {path}")
    return path.read_text(encoding="utf-8")


def sheets() -> Dict[str, str]:
    """
    Stylesheet texts keyed ``xsl_form`` and ``xsl_model``.

    Paths configured under ``stylesheets`` replace the bundled files.
    """
    global _sheets
    with _sheets_lock:
        if _sheets is None:
            overrides = get_config().stylesheets
            _sheets = {
                "xsl_form": _read_stylesheet(overrides.form_xsl, FORM_STYLESHEET),
                "xsl_model": _read_stylesheet(overrides.model_xsl, MODEL_STYLESHEET),
            }
        return _sheets


def reload_sheets() -> None:
    """Forget the cached stylesheet texts and version (after a config change)."""
    global _sheets
    with _sheets_lock:
        _sheets = None
    transformer_version.cache_clear()


@lru_cache(maxsize=None)
def transformer_version() -> str:
    """md5 of both stylesheets plus the package version, computed once."""
    from xform_transformer import __version__

    texts = sheets()
    message = texts["xsl_form"] + texts["xsl_model"] + __version__
    return hashlib.md5(message.encode("utf-8")).hexdigest()


def _xslt_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Quote strings; pass numbers (and booleans, as 0/1) as XPath numbers."""
    converted = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            converted[key] = str(int(value))
        elif isinstance(value, (int, float)):
            converted[key] = repr(value)
        else:
            converted[key] = etree.XSLT.strparam(str(value))
    return converted


def apply(stylesheet: Union[str, Any],
          source_document: Any,
          params: Optional[Mapping[str, Any]] = None,
          name: str = "inline",
          backend: Optional[DOMBackend] = None) -> Any:
    """
    Apply a stylesheet to a document.

    Args:
        stylesheet: XSLT text, or a stylesheet document from ``backend``
        source_document: Document to transform
        params: Global stylesheet parameters
        name: Stylesheet name used in logs and errors
        backend: Document backend (defaults to the configured one)

    Returns:
        New document whose root anchor holds the stylesheet output

    Raises:
        MalformedDocument: If the stylesheet text does not parse
        TransformationFailed: If the stylesheet does not compile, fails to
            apply, logs errors, or produces nothing
    """
    backend = backend or get_backend()

    if isinstance(stylesheet, (str, bytes)):
        stylesheet_tree = parse_engine_xml(stylesheet, DocumentRole.STYLESHEET)
    else:
        stylesheet_tree = backend.engine_tree(stylesheet)

    try:
        transform = etree.XSLT(stylesheet_tree)
    except etree.XSLTParseError as e:
        raise TransformationFailed(name, str(e)) from e

    logger.debug(f"Applying stylesheet: {name}")
    try:
        result = transform(backend.engine_tree(source_document), **_xslt_params(params))
    except etree.XSLTApplyError as e:
        raise TransformationFailed(name, str(e)) from e

    errors = [entry for entry in transform.error_log
              if entry.level >= etree.ErrorLevels.ERROR]
    if errors:
        raise TransformationFailed(name, "; ".join(entry.message for entry in errors))

    if transform.error_log:
        logger.warning(f"Stylesheet '{name}' completed with warnings:")
        for entry in transform.error_log:
            logger.warning(f"  {entry}")

    root = result.getroot()
    if root is None:
        raise TransformationFailed(name, "stylesheet produced no output")

    anchor = etree.Element(f"{{{XFORMS_NS}}}{ANCHOR_NAME}", nsmap={None: XFORMS_NS})
    top_level = list(reversed(list(root.itersiblings(preceding=True))))
    top_level.append(root)
    top_level.extend(root.itersiblings())
    for node in top_level:
        adopted = copy.deepcopy(node)
        adopted.tail = None
        anchor.append(adopted)

    return backend.adopt(etree.ElementTree(anchor))
