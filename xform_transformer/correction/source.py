"""
Source Corrections
==================

Passes that run before the form stylesheet is applied: one on the parsed
XForm, one on the form stylesheet itself.
"""

import logging
import re
from typing import Any, List, Optional

from xform_transformer.correction.base import Correction, CorrectionContext
from xform_transformer.dom import NAMESPACES
from xform_transformer.media import escape_url_path, get_media_path
from xform_transformer.xml.utils import xpath_literal

logger = logging.getLogger(__name__)

# Very crude, but only jr:// URLs are expected here
URL_PATTERN = re.compile(r"^[a-zA-Z]+://")

MODEL_PATH = "/h:html/h:head/xf:model"
PRIMARY_INSTANCE = f"{MODEL_PATH}/xf:instance[1]"

ITEMSET_MODE = "itemset-labels"

_RANDOMIZE = re.compile(r"^randomize\s*\((.*)\)$", re.DOTALL)
_INSTANCE = re.compile(r"""^instance\s*\(\s*(['"])(.*?)\1\s*\)(.*)$""", re.DOTALL)
_TEMPLATE_NAME_UNSAFE = re.compile(r"[^\w.\-]")


def _instance_path(nodeset: str) -> str:
    """XPath to the node ``nodeset`` binds, inside any instance."""
    steps = [
        step if ":" in step else f"xf:{step}"
        for step in nodeset.split("/") if step
    ]
    return f"{MODEL_PATH}/xf:instance/" + "/".join(steps)


class BinaryDefaults(Correction):
    """
    Resolve default values of binary (media) questions.

    A default like ``jr://images/x.jpg`` gets a ``src`` attribute with the
    path the media map resolves it to; the text becomes the escaped URL.
    """

    name = "binary-defaults"
    target = "source"

    def apply(self, document: Any, context: CorrectionContext) -> int:
        dom = context.backend
        changes = 0

        for bind in dom.evaluate(document, f'{MODEL_PATH}/xf:bind[@type="binary"]'):
            nodeset = dom.get_attribute(bind, "nodeset")
            if not nodeset:
                continue

            data_node = dom.first(document, _instance_path(nodeset))
            if data_node is None:
                continue

            text = dom.text_content(data_node)
            if URL_PATTERN.match(text):
                escaped = escape_url_path(text)
                src = get_media_path(context.media, text) or escaped
            elif text.strip():
                src = escaped = escape_url_path(text)
            else:
                continue

            dom.set_attribute(data_node, "src", src)
            dom.set_text_content(data_node, escaped)
            self.record(context, f"{nodeset} -> {src}")
            changes += 1

        return changes


def strip_predicates(expression: str) -> str:
    """Remove every ``[...]`` filter, respecting nesting and string literals."""
    result = []
    depth = 0
    quote = None
    for char in expression:
        if quote:
            if char == quote:
                quote = None
            if depth == 0:
                result.append(char)
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "[":
            depth += 1
            continue
        elif char == "]":
            depth = max(depth - 1, 0)
            continue
        if depth == 0:
            result.append(char)
    return "".join(result)


def _first_argument(arguments: str) -> str:
    depth = 0
    for index, char in enumerate(arguments):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == "," and depth == 0:
            return arguments[:index]
    return arguments


def itemset_lookup_path(nodeset: str) -> Optional[str]:
    """
    Static path to the items an itemset nodeset selects.

    Predicates are dropped and a ``randomize()`` wrapper is unwrapped.
    ``instance('x')`` addresses that secondary instance, an absolute path the
    primary instance.

    Returns:
        XPath usable in the form stylesheet, or None for relative nodesets
        and steps that cannot be mapped
    """
    expression = strip_predicates(nodeset or "").strip()

    randomized = _RANDOMIZE.match(expression)
    if randomized:
        expression = _first_argument(randomized.group(1)).strip()

    instance = _INSTANCE.match(expression)
    if instance:
        base = f"{MODEL_PATH}/xf:instance[@id={xpath_literal(instance.group(2))}]"
        rest = instance.group(3).strip()
    elif expression.startswith("/"):
        base = PRIMARY_INSTANCE
        rest = expression
    else:
        return None

    steps = [step.strip() for step in rest.split("/") if step.strip()]
    if not steps:
        return None
    for step in steps:
        if step in (".", "..") or ":" in step or "(" in step or step.startswith("@"):
            return None
    return base + "".join(f"/xf:{step}" if step != "*" else "/*" for step in steps)


class ItemsetLabels(Correction):
    """
    Add one static label template per itemset to the form stylesheet.

    XSLT 1.0 cannot evaluate the nodeset expression an itemset carries, so
    each itemset gets a generated template in mode ``itemset-labels`` that
    calls the shared ``itemset-labels`` template with a precomputed path.
    Runs on the stylesheet document; reads itemsets from the source.
    """

    name = "itemset-labels"
    target = "stylesheet"

    def apply(self, document: Any, context: CorrectionContext) -> int:
        dom = context.backend
        source = context.source
        stylesheet_root = dom.document_element(document)
        itemsets = dom.evaluate(source, "//xf:itemset")
        names: List[str] = [ITEMSET_MODE]

        for index, itemset in enumerate(itemsets):
            nodeset = dom.get_attribute(itemset, "nodeset") or ""
            path = itemset_lookup_path(nodeset)
            if path is None:
                logger.debug(f"No label template for relative itemset '{nodeset}'")
                continue

            itemset_id = dom.get_attribute(itemset, "id")
            if itemset_id:
                match = f"xf:itemset[@id={xpath_literal(itemset_id)}]"
                name = "itemset-" + _TEMPLATE_NAME_UNSAFE.sub("_", itemset_id)
            else:
                match = f"xf:itemset[count(preceding::xf:itemset) = {index}]"
                name = f"itemset-{index + 1}"
            if name in names:
                name = f"{name}-{index + 1}"
            names.append(name)

            value = dom.first(source, "xf:value", itemset)
            label = dom.first(source, "xf:label", itemset)
            value_ref = dom.get_attribute(value, "ref") if value is not None else ""
            label_ref = dom.get_attribute(label, "ref") if label is not None else ""

            template = self._element(dom, document, "template", {
                "match": match,
                "name": name,
                "mode": ITEMSET_MODE,
            })
            call = self._element(dom, document, "call-template", {"name": ITEMSET_MODE})
            for param, select in (
                ("items", path),
                ("value-ref", xpath_literal(value_ref or "")),
                ("label-ref", xpath_literal(label_ref or "")),
            ):
                dom.append_child(call, self._element(dom, document, "with-param", {
                    "name": param,
                    "select": select,
                }))
            dom.append_child(template, call)
            dom.append_child(stylesheet_root, template)

            self.record(context, f"{name}: {path}")

        return len(names) - 1

    @staticmethod
    def _element(dom, document, local_name: str, attributes: dict) -> Any:
        element = dom.create_element(document, f"xsl:{local_name}", NAMESPACES["xsl"])
        for name, value in attributes.items():
            dom.set_attribute(element, name, value)
        return element


SOURCE_CORRECTIONS = [BinaryDefaults()]
STYLESHEET_CORRECTIONS = [ItemsetLabels()]
