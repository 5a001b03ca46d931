"""
Model Corrections
=================

Passes that repair the XML model after the model stylesheet ran.
"""

import logging
from typing import Any, Dict, Optional

from xform_transformer.correction.base import Correction, CorrectionContext
from xform_transformer.correction.form import MediaSources
from xform_transformer.errors import MissingModelRoot
from xform_transformer.xml.utils import split_tag

logger = logging.getLogger(__name__)

MODEL = "/xf:root/xf:model"
INSTANCE_ROOT = f"{MODEL}/xf:instance[1]/*"


class NamespaceReconciliation(Correction):
    """
    Copy the XForm root's namespace declarations onto the instance root.

    The model stylesheet rebuilds instance content element by element, which
    loses declarations that submitted records still need. Skipped are
    declarations the stylesheet root already makes, namespaces the model
    element's attributes already bring in, and prefixes the instance root
    declares itself.
    """

    name = "namespaces"
    target = "model"

    def apply(self, document: Any, context: CorrectionContext) -> int:
        dom = context.backend

        model = dom.first(document, MODEL)
        if model is None:
            raise MissingModelRoot("Model stylesheet output has no <model> element")
        instance_root = dom.first(document, INSTANCE_ROOT)
        if instance_root is None:
            raise MissingModelRoot("Model has no primary instance root")

        source_declarations = dom.namespace_declarations(dom.document_element(context.source))
        stylesheet_declarations: Dict[Optional[str], str] = {}
        if context.model_stylesheet is not None:
            stylesheet_declarations = dom.namespace_declarations(
                dom.document_element(context.model_stylesheet)
            )
        attribute_namespaces = {
            split_tag(name)[0] for name in dom.attribute_names(model)
        }
        instance_declarations = dom.namespace_declarations(instance_root)
        in_scope = dom.namespaces_in_scope(instance_root)

        additions = {}
        for prefix, uri in source_declarations.items():
            if stylesheet_declarations.get(prefix) == uri:
                continue
            if uri in attribute_namespaces:
                continue
            if prefix in instance_declarations:
                continue
            # already inherited from the model element, nothing to add
            if in_scope.get(prefix) == uri:
                continue
            additions[prefix] = uri

        if additions:
            dom.declare_namespaces(instance_root, additions)
            self.record(context, f"declared {sorted(p or '' for p in additions)}")
        return len(additions)


class InstanceIDInsertion(Correction):
    """Make sure the primary instance has a ``meta/instanceID``."""

    name = "instance-id"
    target = "model"

    EXISTING = (
        f"{INSTANCE_ROOT}/xf:meta/xf:instanceID | "
        f"{INSTANCE_ROOT}/orx:meta/orx:instanceID"
    )

    def apply(self, document: Any, context: CorrectionContext) -> int:
        dom = context.backend

        if dom.first(document, self.EXISTING) is not None:
            return 0

        instance_root = dom.first(document, INSTANCE_ROOT)
        if instance_root is None:
            raise MissingModelRoot("Model has no primary instance root")

        namespace = dom.namespace_uri(instance_root)
        meta = None
        for child in dom.children(instance_root):
            if dom.local_name(child) == "meta" and dom.namespace_uri(child) == namespace:
                meta = child
                break
        if meta is None:
            meta = dom.create_element(document, "meta", namespace)
            dom.append_child(instance_root, meta)

        dom.append_child(meta, dom.create_element(document, "instanceID", namespace))
        self.record(context, "added meta/instanceID")
        return 1


class ModelMediaSources(MediaSources):
    name = "model-media-sources"
    target = "model"


MODEL_CORRECTIONS = [
    NamespaceReconciliation(),
    ModelMediaSources(),
    InstanceIDInsertion(),
]
