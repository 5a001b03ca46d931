"""
Form Corrections
================

Passes that repair the HTML form after the form stylesheet ran. Each pass
corrects one thing the stylesheet cannot express; they run in the order of
``FORM_CORRECTIONS``.
"""

import logging
import re
from typing import Any, List, Optional

from xform_transformer.correction.base import Correction, CorrectionContext
from xform_transformer.dom import DOMBackend, NodeType
from xform_transformer.language import parse_language
from xform_transformer.markdown import markdown_to_html
from xform_transformer.media import get_media_path
from xform_transformer.xml.utils import class_tokens, join_tokens, xpath_literal

logger = logging.getLogger(__name__)

FORM = "/xf:root/form"

APPEARANCE_PLACEHOLDER = "__appearances__"

_COMPACT_N = re.compile(r"^compact-(.+)$")
_THEME_CLASS = re.compile(r"^theme-[^\"'\s]+$")

FORM_LOGO = "form_logo.png"

# Private use characters never occur in XForm text
MARKER_OPEN = "\ue000"
MARKER_CLOSE = "\ue001"


class ActionCorrection(Correction):
    """
    Clean up the inputs the stylesheet emits for setvalue/setgeopoint.

    An action nested in a question ends up as ``label > input`` inside the
    question's own label; the inner label is dropped. An action that sets a
    default for a visible question with the same name is merged into that
    question's first control.
    """

    target = "form"

    def __init__(self, action: str):
        self.action = action
        self.name = f"correct-{action}"

    def apply(self, document: Any, context: CorrectionContext) -> int:
        dom = context.backend
        attribute = f"data-{self.action}"
        changes = 0

        nested = dom.evaluate(
            document, f'//*[contains(@class, "question")]//label/input[@{attribute}]'
        )
        for action_input in nested:
            dom.replace_with(dom.parent(action_input), action_input)
            changes += 1

        synthetic = dom.evaluate(
            document, f'//label[contains(@class, "{self.action}")]/input[@{attribute}]'
        )
        for action_input in synthetic:
            name = dom.get_attribute(action_input, "name")
            if name is None:
                continue
            question = dom.first(
                document,
                f"//*[@name={xpath_literal(name)} and "
                f"(contains(../@class, 'question') or contains(../../@class, 'option-wrapper')) "
                f"and not(@type='hidden')]",
            )
            if question is None:
                continue
            # radio buttons and checkboxes: only the first control gets these
            for copied in (attribute, "data-event"):
                value = dom.get_attribute(action_input, copied)
                dom.set_attribute(question, copied, copied if value is None else value)
            dom.remove(dom.parent(action_input))
            self.record(context, f"merged {self.action} into {name}")
            changes += 1

        return changes


def appearance_classes(token: str) -> List[str]:
    """CSS classes for one appearance token, legacy equivalents included."""
    classes = [f"or-appearance-{token}"]
    if token == "horizontal":
        classes.append("or-appearance-columns")
    elif token == "horizontal-compact":
        classes.append("or-appearance-columns-pack")
    elif token == "compact":
        classes += ["or-appearance-columns-pack", "or-appearance-no-buttons"]
    else:
        compact = _COMPACT_N.match(token)
        if compact:
            classes += [f"or-appearance-columns-{compact.group(1)}", "or-appearance-no-buttons"]
    return classes


class AppearanceExpansion(Correction):
    """Turn ``data-appearances`` tokens into ``or-appearance-*`` classes."""

    name = "appearances"
    target = "form"

    def apply(self, document: Any, context: CorrectionContext) -> int:
        dom = context.backend
        changes = 0

        for element in dom.evaluate(document, "//*[@data-appearances]"):
            added: List[str] = []
            for token in class_tokens(dom.get_attribute(element, "data-appearances")):
                added.extend(appearance_classes(token))

            tokens = class_tokens(dom.get_attribute(element, "class"))
            if APPEARANCE_PLACEHOLDER in tokens:
                position = tokens.index(APPEARANCE_PLACEHOLDER)
                tokens[position:position + 1] = added
            else:
                tokens.extend(added)

            dom.set_attribute(element, "class", join_tokens(
                token for token in tokens if token != APPEARANCE_PLACEHOLDER
            ))
            dom.remove_attribute(element, "data-appearances")
            changes += 1

        leftovers = dom.evaluate(
            document, f"//*[contains(concat(' ', @class, ' '), ' {APPEARANCE_PLACEHOLDER} ')]"
        )
        for element in leftovers:
            tokens = class_tokens(dom.get_attribute(element, "class"))
            dom.set_attribute(element, "class", join_tokens(
                token for token in tokens if token != APPEARANCE_PLACEHOLDER
            ))

        return changes


class ThemeInjection(Correction):
    """Swap the form's ``theme-*`` class for the requested theme."""

    name = "theme"
    target = "form"

    def apply(self, document: Any, context: CorrectionContext) -> int:
        if not context.theme:
            return 0

        dom = context.backend
        form = dom.first(document, FORM)
        if form is None:
            return 0

        theme_class = f"theme-{context.theme}"
        tokens = class_tokens(dom.get_attribute(form, "class"))
        for index, token in enumerate(tokens):
            if _THEME_CLASS.match(token):
                tokens[index] = theme_class
                break
        else:
            tokens.append(theme_class)

        dom.set_attribute(form, "class", join_tokens(tokens))
        self.record(context, theme_class)
        return 1


def replace_media_sources(dom: DOMBackend, document: Any, media: dict,
                          root: Optional[Any] = None) -> int:
    """
    Rewrite ``src`` (and ``a/@href``) through the media map.

    Also adds the form logo when the map has one and ``root`` contains a
    ``form-logo`` placeholder.

    Args:
        root: Element to search below (inclusive); the document element
            by default

    Returns:
        Number of attributes rewritten plus logos added
    """
    if not media:
        return 0

    if root is None:
        root = dom.document_element(document)
    changes = 0

    elements = dom.evaluate(
        document, "descendant-or-self::*[@src] | descendant-or-self::a[@href]", root
    )
    for element in elements:
        attribute = "href" if dom.local_name(element).lower() == "a" else "src"
        source = dom.get_attribute(element, attribute)
        if source is None:
            continue
        replacement = get_media_path(media, source)
        if replacement:
            dom.set_attribute(element, attribute, replacement)
            changes += 1

    form_logo = media.get(FORM_LOGO)
    logo_placeholder = dom.first(document, 'descendant-or-self::*[@class="form-logo"]', root)
    if form_logo and logo_placeholder is not None:
        img = dom.create_element(document, "img")
        dom.set_attribute(img, "src", form_logo)
        dom.set_attribute(img, "alt", "form logo")
        dom.append_child(logo_placeholder, img)
        changes += 1

    return changes


class MediaSources(Correction):
    """Resolve media references in the form (or model) through the media map."""

    name = "media-sources"
    target = "form"

    def apply(self, document: Any, context: CorrectionContext) -> int:
        changes = replace_media_sources(context.backend, document, context.media)
        if changes:
            self.record(context, f"{changes} media reference(s)")
        return changes


def language_sample_text(dom: DOMBackend, document: Any, language: str) -> str:
    """Some non-empty text in ``language``, hints preferred."""
    lang = xpath_literal(language)
    text_filter = "normalize-space() and not(./text() = '-')"
    sample = dom.first(
        document, f'{FORM}//span[contains(@class, "or-hint") and @lang={lang} and {text_filter}]'
    )
    if sample is None:
        sample = dom.first(document, f"{FORM}//span[@lang={lang} and {text_filter}]")
    if sample is None:
        return "nothing"
    return dom.text_content(sample).strip() or "nothing"


class LanguageTags(Correction):
    """
    Normalize language labels into language tags.

    Options of the language selector get the tag as value, the description
    as text and a ``data-dir``; every ``lang`` attribute follows. Changed
    option values end up in the language map.
    """

    name = "language-tags"
    target = "form"

    def apply(self, document: Any, context: CorrectionContext) -> int:
        dom = context.backend
        changes = 0

        options = dom.evaluate(document, f'{FORM}/select[@id="form-languages"]/option')
        languages = []
        for option in options:
            label = dom.text_content(option)
            languages.append(parse_language(label, language_sample_text(dom, document, label)))

        # forms without translations still need directionality
        if not languages:
            languages.append(parse_language("", language_sample_text(dom, document, "")))

        for option, language in zip(options, languages):
            value = dom.get_attribute(option, "value")
            if value and value != language.tag:
                context.language_map[value] = language.tag
            dom.set_attribute(option, "data-dir", language.directionality)
            dom.set_attribute(option, "value", language.tag)
            dom.set_text_content(option, language.description)

        for language in languages:
            if language.source_language == language.tag:
                continue
            tagged = dom.evaluate(
                document, f"{FORM}//*[@lang={xpath_literal(language.source_language)}]"
            )
            for element in tagged:
                dom.set_attribute(element, "lang", language.tag)
                changes += 1

        selector = dom.first(document, f"{FORM}/*[@data-default-lang]")
        if selector is not None:
            default = dom.get_attribute(selector, "data-default-lang")
            for language in languages:
                if language.source_language == default:
                    dom.set_attribute(selector, "data-default-lang", language.tag)
                    break

        context.languages = languages
        if context.language_map:
            self.record(context, f"language map: {context.language_map}")
        return changes


def escape_markdown_text(text: str) -> str:
    """Escape text the way the Markdown renderer escapes plain text."""
    return (text.replace("&", "&amp;").replace("<", "&lt;")
            .replace(">", "&gt;").replace('"', "&quot;"))


def _marker(index: int) -> str:
    return f"{MARKER_OPEN}{index}{MARKER_CLOSE}"


def _is_output(dom: DOMBackend, node: Any) -> bool:
    return (dom.node_type(node) == NodeType.ELEMENT
            and "or-output" in class_tokens(dom.get_attribute(node, "class")))


class MarkdownRendering(Correction):
    """
    Render the Markdown subset in labels and hints.

    Output placeholders are swapped for markers while the text is rendered
    and put back afterwards, so Markdown around them still works.
    """

    name = "markdown"
    target = "form"

    LABELS = f'{FORM}//span[contains(@class, "question-label") or contains(@class, "or-hint")]'

    def apply(self, document: Any, context: CorrectionContext) -> int:
        if not context.markdown:
            return 0

        dom = context.backend
        changes = 0

        for span in dom.evaluate(document, self.LABELS):
            outputs: List[Any] = []
            text = self._marked_text(dom, span, outputs)
            rendered = markdown_to_html(text)
            if rendered == escape_markdown_text(text.strip()):
                continue

            # a marker Markdown rewrote (e.g. as a link target) cannot be restored
            if not all(_marker(index) in rendered for index in range(len(outputs))):
                logger.debug(f"Output inside Markdown construct, left as is: {text!r}")
                continue

            for index, output in enumerate(outputs):
                dom.remove(output)
                rendered = rendered.replace(_marker(index), dom.serialize(output, "html"), 1)

            container = dom.parse_html_fragment(rendered)
            replace_media_sources(dom, dom.owner_document(container), context.media, container)
            dom.replace_children(span, dom.child_nodes(container))
            changes += 1

        if changes:
            self.record(context, f"{changes} label(s) rendered")
        return changes

    def _marked_text(self, dom: DOMBackend, node: Any, outputs: List[Any]) -> str:
        parts = []
        for child in dom.child_nodes(node):
            kind = dom.node_type(child)
            if kind == NodeType.TEXT:
                parts.append(dom.text_content(child))
            elif _is_output(dom, child):
                parts.append(_marker(len(outputs)))
                outputs.append(child)
            elif kind == NodeType.ELEMENT:
                parts.append(self._marked_text(dom, child, outputs))
        return "".join(parts)


FORM_CORRECTIONS = [
    ActionCorrection("setgeopoint"),
    ActionCorrection("setvalue"),
    AppearanceExpansion(),
    ThemeInjection(),
    MediaSources(),
    LanguageTags(),
    MarkdownRendering(),
]
