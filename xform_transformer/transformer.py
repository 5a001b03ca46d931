"""
XForm Transformer
=================

Turns an XForm into an HTML form and an XML model.

Pipeline for one call:

1. parse the XForm (after the optional text preprocessing hook), then run
   the optional engine-tree preprocessing hook
2. source corrections, then itemset label templates on the form stylesheet
3. form stylesheet, then form corrections
4. model stylesheet, then model corrections
5. serialize both documents

Each call builds its own documents; the only shared state is the native
backend's identity cache, which is released when the last call finishes.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from xform_transformer.config import get_config
from xform_transformer.correction import (
    FORM_CORRECTIONS,
    MODEL_CORRECTIONS,
    SOURCE_CORRECTIONS,
    STYLESHEET_CORRECTIONS,
    CorrectionContext,
    run_corrections,
)
from xform_transformer.dom import DOMBackend, NodeType, get_backend
from xform_transformer.errors import DocumentRole, UnsupportedPreprocessing
from xform_transformer.media import escape_media_map
from xform_transformer.transform import (
    FORM_STYLESHEET,
    MODEL_STYLESHEET,
    apply,
    sheets,
    transformer_version,
)

logger = logging.getLogger(__name__)

_MODEL_DEFAULT_NAMESPACE = re.compile(
    r'^(<model\b[^>]*?)\s+xmlns="http://www\.w3\.org/2002/xforms"'
)


@dataclass
class Survey:
    """
    Input of one transform.

    Attributes:
        xform: XForm XML text
        markdown: Render Markdown in labels and hints (None = configured default)
        media: Media file name -> delivery path
        openclinica: Emit OpenClinica attributes (bool or 0/1)
        theme: Theme name replacing the form's ``theme-*`` class
        preprocess: Hook receiving and returning the parsed lxml tree
            (native backend only)
        preprocess_xform: Hook receiving and returning the XForm text
    """
    xform: Optional[str] = None
    markdown: Optional[bool] = None
    media: Optional[Dict[str, str]] = None
    openclinica: Union[bool, int, None] = False
    theme: Optional[str] = None
    preprocess: Optional[Callable[[Any], Any]] = None
    preprocess_xform: Optional[Callable[[str], str]] = None

    def clear_transformable(self) -> None:
        """Drop the fields a transform consumed."""
        self.xform = None
        self.media = None
        self.preprocess = None
        self.preprocess_xform = None
        self.markdown = None
        self.openclinica = None


@dataclass
class TransformedSurvey:
    """Result of one transform."""
    form: str
    model: str
    language_map: Dict[str, str] = field(default_factory=dict)
    transformer_version: str = ""

    def to_dict(self) -> dict:
        """Wire representation."""
        return {
            'form': self.form,
            'model': self.model,
            'languageMap': dict(self.language_map),
            'transformerVersion': self.transformer_version,
        }


def _serialize_anchor(dom: DOMBackend, document: Any, method: str) -> str:
    """
    Serialize the anchor's children.

    A namespaced child is serialized in place and picks up the anchor's
    default declaration. Anything else is detached first so that the
    declaration stays off it.
    """
    anchor = dom.document_element(document)
    parts = []
    for child in dom.child_nodes(anchor):
        if dom.node_type(child) != NodeType.ELEMENT or not dom.namespace_uri(child):
            dom.remove(child)
        parts.append(dom.serialize(child, method))
    return "".join(parts)


def strip_model_namespace(model: str) -> str:
    """Remove the default XForms declaration from the ``<model>`` start tag."""
    return _MODEL_DEFAULT_NAMESPACE.sub(r"\1", model, count=1)


def _parse_source(dom: DOMBackend, survey: Survey) -> Any:
    xform = survey.xform or ""
    if survey.preprocess_xform is not None:
        xform = survey.preprocess_xform(xform)

    source = dom.parse_xml(xform, DocumentRole.SOURCE)

    if survey.preprocess is not None:
        tree = dom.engine_tree(source)
        preprocessed = survey.preprocess(tree)
        if preprocessed is not None and preprocessed is not tree:
            source = dom.adopt(preprocessed)
    return source


def transform(survey: Survey, backend: Optional[DOMBackend] = None) -> TransformedSurvey:
    """
    Transform an XForm into form HTML and model XML.

    Args:
        survey: Input; its transformable fields are cleared afterwards
        backend: Document backend (defaults to the configured one)

    Returns:
        TransformedSurvey

    Raises:
        MalformedDocument: If the XForm or a stylesheet does not parse
        TransformationFailed: If a stylesheet fails
        MissingModelRoot: If the model has no model element or instance root
        UnsupportedPreprocessing: If ``preprocess`` is given to a backend
            that cannot hand out engine trees
    """
    dom = backend or get_backend()

    with dom.transform_scope():
        if survey.preprocess is not None and not dom.supports_preprocessing:
            raise UnsupportedPreprocessing(
                f"Legacy preprocessing requires the native backend, not '{dom.name}'"
            )

        logger.info(f"Transforming XForm with {dom.name} backend")
        source = _parse_source(dom, survey)

        texts = sheets()
        form_stylesheet = dom.parse_xml(texts["xsl_form"], DocumentRole.STYLESHEET)
        model_stylesheet = dom.parse_xml(texts["xsl_model"], DocumentRole.STYLESHEET)

        markdown = survey.markdown
        if markdown is None:
            markdown = get_config().markdown

        context = CorrectionContext(
            backend=dom,
            media=escape_media_map(survey.media),
            theme=survey.theme or "",
            markdown=markdown is not False,
            source=source,
            model_stylesheet=model_stylesheet,
        )

        run_corrections(SOURCE_CORRECTIONS, source, context)
        run_corrections(STYLESHEET_CORRECTIONS, form_stylesheet, context)

        params = {"openclinica": 1} if survey.openclinica else {}
        html_document = apply(form_stylesheet, source, params, name=FORM_STYLESHEET, backend=dom)
        run_corrections(FORM_CORRECTIONS, html_document, context)

        xml_document = apply(model_stylesheet, source, name=MODEL_STYLESHEET, backend=dom)
        run_corrections(MODEL_CORRECTIONS, xml_document, context)

        form = _serialize_anchor(dom, html_document, "html")
        model = strip_model_namespace(_serialize_anchor(dom, xml_document, "xml"))

        logger.debug(context.result.summary())
        logger.info("Transformation completed successfully")

        survey.clear_transformable()
        return TransformedSurvey(
            form=form,
            model=model,
            language_map=dict(context.language_map),
            transformer_version=transformer_version(),
        )


def transform_xform(xform: str, backend: Optional[DOMBackend] = None,
                    **options) -> TransformedSurvey:
    """
    Transform XForm text directly.

    Example:
        result = transform_xform(text, theme="grid", media={"a.png": "/m/a.png"})
    """
    return transform(Survey(xform=xform, **options), backend=backend)
