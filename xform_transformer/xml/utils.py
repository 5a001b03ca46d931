"""
XML Utility Functions
=====================

Small helpers shared by both document backends and the correction passes.
Tag helpers work on lxml elements and Clark-notation names; the token and
XPath helpers are plain string functions.
"""

import re
from typing import Any, Iterable, List, Optional, Tuple

from lxml import etree


# Prefix-qualified name inside an XPath expression (not an axis like child::)
_QNAME_PREFIX = re.compile(r"(?<![\w.\-:$])([A-Za-z_][\w.\-]*):(?=[A-Za-z_*])")

# String literals in XPath 1.0 cannot contain their own delimiter
_XPATH_STRING = re.compile(r"\"[^\"]*\"|'[^']*'")


def local_name(element: Any) -> str:
    """
    Extract local name from element tag, stripping any namespace.

    Args:
        element: lxml element

    Returns:
        Local tag name without namespace, "" for comments and PIs
    """
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    return split_tag(tag)[1]


def split_tag(tag: str) -> Tuple[Optional[str], str]:
    """Split a Clark-notation name into ``(namespace, local)``."""
    if tag.startswith("{"):
        namespace, local = tag[1:].split("}", 1)
        return namespace, local
    return None, tag


def clark_name(name: str, namespace_uri: Optional[str] = None) -> str:
    """Build a Clark-notation name, dropping any prefix from ``name``."""
    if ":" in name and not name.startswith("{"):
        name = name.split(":", 1)[1]
    if namespace_uri:
        return f"{{{namespace_uri}}}{name}"
    return name


def local_declarations(element: Any) -> dict:
    """
    Namespace declarations made on ``element`` itself.

    lxml only exposes the in-scope map, so declarations inherited unchanged
    from the parent are subtracted.
    """
    nsmap = dict(element.nsmap)
    parent = element.getparent()
    if parent is None:
        return nsmap
    inherited = parent.nsmap
    return {
        prefix: uri for prefix, uri in nsmap.items()
        if inherited.get(prefix) != uri
    }


def rebuild_with_namespaces(element: Any, declarations: dict) -> Any:
    """
    Return a copy of ``element`` carrying extra namespace declarations.

    lxml cannot add declarations to an existing node, so the element is
    recreated with the merged map and its content moved across. When the
    element has a parent, the copy takes its place.
    """
    nsmap = dict(element.nsmap)
    nsmap.update(declarations)
    rebuilt = etree.Element(element.tag, nsmap=nsmap)
    for name, value in element.attrib.items():
        rebuilt.set(name, value)
    rebuilt.text = element.text
    for child in list(element):
        rebuilt.append(child)
    rebuilt.tail = element.tail

    parent = element.getparent()
    if parent is not None:
        parent.replace(element, rebuilt)
    return rebuilt


def class_tokens(value: Optional[str]) -> List[str]:
    """Split a class attribute into tokens, keeping order."""
    if not value:
        return []
    return value.split()


def join_tokens(tokens: Iterable[str]) -> str:
    """Join tokens, dropping empties and duplicates while keeping order."""
    seen = set()
    result = []
    for token in tokens:
        if token and token not in seen:
            seen.add(token)
            result.append(token)
    return " ".join(result)


def xpath_literal(value: str) -> str:
    """
    Quote a string for use as an XPath 1.0 literal.

    XPath 1.0 has no escape sequences, so strings containing both quote
    characters are built with ``concat()``.
    """
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{part}"' for part in parts) + ")"


def expression_prefixes(expression: str) -> List[str]:
    """
    Namespace prefixes used by name tests in an XPath expression.

    String literals are ignored so that ``@class="a:b"`` does not register
    a prefix ``a``.
    """
    stripped = _XPATH_STRING.sub('""', expression)
    prefixes = []
    for match in _QNAME_PREFIX.finditer(stripped):
        prefix = match.group(1)
        if prefix not in prefixes:
            prefixes.append(prefix)
    return prefixes


# lxml keeps character data in the ``text`` and ``tail`` slots of elements
# rather than in separate nodes. The helpers below give those slots DOM
# semantics: moving or removing an element never drags the text that
# follows it along.

TEXT = "text"
TAIL = "tail"


def read_slot(element: Any, slot: str) -> str:
    return getattr(element, slot) or ""


def write_slot(element: Any, slot: str, value: Optional[str]) -> None:
    setattr(element, slot, value or None)


def preceding_slot(element: Any) -> Tuple[Any, str]:
    """The text slot directly before ``element`` in document order."""
    previous = element.getprevious()
    if previous is not None:
        return previous, TAIL
    return element.getparent(), TEXT


def last_slot(parent: Any) -> Tuple[Any, str]:
    """The text slot at the end of ``parent``'s content."""
    if len(parent):
        return parent[-1], TAIL
    return parent, TEXT


def unlink(element: Any) -> Any:
    """Detach ``element`` from its parent, leaving its tail text in place."""
    parent = element.getparent()
    if parent is None:
        return element
    tail = element.tail
    element.tail = None
    if tail:
        owner, slot = preceding_slot(element)
        write_slot(owner, slot, read_slot(owner, slot) + tail)
    parent.remove(element)
    return element


def insert_text_before(reference: Any, text: str) -> Tuple[Any, str]:
    """Insert ``text`` right before element ``reference``; returns the slot used."""
    owner, slot = preceding_slot(reference)
    write_slot(owner, slot, read_slot(owner, slot) + text)
    return owner, slot


def append_text(parent: Any, text: str) -> Tuple[Any, str]:
    """Append ``text`` at the end of ``parent``; returns the slot used."""
    owner, slot = last_slot(parent)
    write_slot(owner, slot, read_slot(owner, slot) + text)
    return owner, slot


def insert_element_at_slot(element: Any, owner: Any, slot: str) -> None:
    """
    Insert ``element`` in front of the text held by ``owner.slot``.

    The slot's text ends up as the tail of ``element``.
    """
    unlink(element)
    text = getattr(owner, slot)
    setattr(owner, slot, None)
    if slot == TEXT:
        owner.insert(0, element)
    else:
        owner.addnext(element)
    element.tail = text


def clear_children(element: Any) -> None:
    """Drop all content of ``element`` but keep its attributes and tail."""
    element.text = None
    for child in list(element):
        element.remove(child)


def string_value(node: Any) -> str:
    """XPath string-value of an element: descendant text without comments."""
    if not isinstance(node.tag, str):
        return node.text or ""
    return node.xpath("string()")
