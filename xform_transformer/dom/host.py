"""
Host Backend
============

Uses lxml's own object model directly: documents are ``_ElementTree``
objects, elements and comments are lxml proxies, text and attribute query
results are lxml "smart strings" that remember their owner element.

lxml keeps a node's proxy alive as long as something references it, so
holding on to a query result is enough for ``is`` comparisons to work.
"""

import copy
import logging
import threading
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from lxml import etree

from xform_transformer.dom.base import (
    DOMBackend,
    NamespaceResolver,
    NodeType,
    TransformScope,
    parse_engine_html_fragment,
    parse_engine_xml,
    serialize_engine_node,
)
from xform_transformer.errors import DocumentRole
from xform_transformer.xml.utils import (
    TAIL,
    TEXT,
    append_text,
    clark_name,
    clear_children,
    insert_element_at_slot,
    insert_text_before,
    local_declarations,
    local_name,
    read_slot,
    rebuild_with_namespaces,
    split_tag,
    string_value,
    unlink,
    write_slot,
)

logger = logging.getLogger(__name__)


def _is_element(node: Any) -> bool:
    return isinstance(node, etree._Element)


def _text_slot(node: Any):
    """``(owner, slot)`` of a text smart string, or None."""
    owner = getattr(node, "getparent", lambda: None)()
    if owner is None:
        return None
    if getattr(node, "is_tail", False):
        return owner, TAIL
    if getattr(node, "is_text", False):
        return owner, TEXT
    return None


class HostBackend(DOMBackend):
    """Direct lxml object model."""

    name = "host"
    supports_preprocessing = False

    def __init__(self):
        self._lock = threading.Lock()
        self._resolvers: Dict[Any, NamespaceResolver] = {}
        self.scope = TransformScope(on_idle=self._clear_resolvers)

    def transform_scope(self):
        return self.scope()

    def _clear_resolvers(self) -> None:
        with self._lock:
            self._resolvers.clear()

    def _resolver(self, root: Any) -> NamespaceResolver:
        with self._lock:
            resolver = self._resolvers.get(root)
            if resolver is None:
                resolver = NamespaceResolver(root)
                self._resolvers[root] = resolver
            return resolver

    # -- parse ---------------------------------------------------------------

    def parse_xml(self, text: str, role: DocumentRole = DocumentRole.SOURCE) -> Any:
        return parse_engine_xml(text, role)

    def parse_html_fragment(self, markup: str) -> Any:
        return parse_engine_html_fragment(markup)

    def create_document(self, root_name: str, namespace_uri: Optional[str] = None) -> Any:
        nsmap = {None: namespace_uri} if namespace_uri else None
        return etree.ElementTree(etree.Element(clark_name(root_name, namespace_uri), nsmap=nsmap))

    def adopt(self, tree: Any) -> Any:
        return tree

    def engine_tree(self, document: Any) -> Any:
        return document

    # -- serialize -----------------------------------------------------------

    def serialize(self, node: Any, method: str = "xml") -> str:
        if isinstance(node, etree._ElementTree):
            return serialize_engine_node(node.getroot(), method)
        if _is_element(node):
            return serialize_engine_node(node, method)
        return escape(str(node))

    # -- query ---------------------------------------------------------------

    def evaluate(self, document: Any, expression: str, context: Any = None) -> List[Any]:
        root = document.getroot()
        if context is None or isinstance(context, etree._ElementTree):
            context = root
        namespaces = self._resolver(root).namespaces_for(expression)
        result = context.xpath(expression, namespaces=namespaces)
        if not isinstance(result, list):
            return [result]
        return result

    # -- read ----------------------------------------------------------------

    def node_type(self, node: Any) -> NodeType:
        if isinstance(node, etree._ElementTree):
            return NodeType.DOCUMENT
        if _is_element(node):
            if isinstance(node.tag, str):
                return NodeType.ELEMENT
            if node.tag is etree.Comment:
                return NodeType.COMMENT
            if node.tag is etree.ProcessingInstruction:
                return NodeType.PROCESSING_INSTRUCTION
            return NodeType.OTHER
        if getattr(node, "is_attribute", False):
            return NodeType.ATTRIBUTE
        if isinstance(node, str):
            return NodeType.TEXT
        return NodeType.OTHER

    def local_name(self, node: Any) -> str:
        if _is_element(node):
            return local_name(node)
        if getattr(node, "is_attribute", False):
            return split_tag(node.attrname)[1]
        return ""

    def namespace_uri(self, node: Any) -> Optional[str]:
        if _is_element(node) and isinstance(node.tag, str):
            return split_tag(node.tag)[0]
        if getattr(node, "is_attribute", False):
            return split_tag(node.attrname)[0]
        return None

    def document_element(self, document: Any) -> Any:
        return document.getroot()

    def owner_document(self, node: Any) -> Any:
        if isinstance(node, etree._ElementTree):
            return node
        if _is_element(node):
            return node.getroottree()
        owner = getattr(node, "getparent", lambda: None)()
        return owner.getroottree() if owner is not None else None

    def parent(self, node: Any) -> Any:
        if _is_element(node):
            return node.getparent()
        slot = _text_slot(node)
        if slot is None:
            return None
        owner, kind = slot
        return owner if kind == TEXT else owner.getparent()

    def children(self, element: Any) -> List[Any]:
        return [child for child in element if isinstance(child.tag, str)]

    def child_nodes(self, element: Any) -> List[Any]:
        return element.xpath("node()")

    def text_content(self, node: Any) -> str:
        if isinstance(node, etree._ElementTree):
            return string_value(node.getroot())
        if _is_element(node):
            return string_value(node)
        slot = _text_slot(node)
        if slot is not None:
            return read_slot(*slot)
        return str(node)

    def get_attribute(self, element: Any, name: str) -> Optional[str]:
        return element.get(name)

    def has_attribute(self, element: Any, name: str) -> bool:
        return name in element.attrib

    def attribute_names(self, element: Any) -> List[str]:
        return list(element.attrib.keys())

    def namespaces_in_scope(self, element: Any) -> Dict[Optional[str], str]:
        return dict(element.nsmap)

    def namespace_declarations(self, element: Any) -> Dict[Optional[str], str]:
        return local_declarations(element)

    # -- mutate --------------------------------------------------------------

    def set_attribute(self, element: Any, name: str, value: str) -> None:
        element.set(name, value)

    def remove_attribute(self, element: Any, name: str) -> None:
        element.attrib.pop(name, None)

    def declare_namespaces(self, element: Any, declarations: Dict[Optional[str], str]) -> Any:
        return rebuild_with_namespaces(element, declarations)

    def set_text_content(self, node: Any, text: str) -> None:
        if _is_element(node):
            if isinstance(node.tag, str):
                clear_children(node)
            node.text = text or None
            return
        if getattr(node, "is_attribute", False):
            node.getparent().set(node.attrname, text)
            return
        slot = _text_slot(node)
        if slot is None:
            raise TypeError("detached text cannot be changed in place")
        write_slot(*slot, text)

    def create_element(self, document: Any, name: str,
                       namespace_uri: Optional[str] = None) -> Any:
        return etree.Element(clark_name(name, namespace_uri))

    def create_text(self, document: Any, text: str) -> str:
        return str(text)

    def append_child(self, parent: Any, node: Any) -> Any:
        if _is_element(node):
            unlink(node)
            parent.append(node)
        else:
            text = self._take_text(node)
            append_text(parent, text)
        return node

    def insert_before(self, node: Any, reference: Any) -> Any:
        slot = None if _is_element(reference) else _text_slot(reference)
        if _is_element(node):
            if slot is not None:
                insert_element_at_slot(node, *slot)
            else:
                unlink(node)
                reference.addprevious(node)
            return node
        text = self._take_text(node)
        if slot is not None:
            write_slot(*slot, text + read_slot(*slot))
        else:
            insert_text_before(reference, text)
        return node

    def _take_text(self, node: Any) -> str:
        """Character data of ``node``, detaching it if it is in a tree."""
        text = str(node)
        slot = _text_slot(node)
        if slot is not None:
            write_slot(*slot, None)
        return text

    def remove(self, node: Any) -> None:
        if _is_element(node):
            unlink(node)
        elif getattr(node, "is_attribute", False):
            node.getparent().attrib.pop(node.attrname, None)
        else:
            self._take_text(node)

    def replace_children(self, element: Any, nodes: List[Any]) -> None:
        nodes = [node if _is_element(node) else str(node) for node in nodes]
        clear_children(element)
        for node in nodes:
            self.append_child(element, node)

    def clone(self, node: Any, deep: bool = True) -> Any:
        if not _is_element(node):
            return str(node)
        if deep or not isinstance(node.tag, str):
            copied = copy.deepcopy(node)
            copied.tail = None
            return copied
        copied = etree.Element(node.tag, nsmap=node.nsmap)
        for name, value in node.attrib.items():
            copied.set(name, value)
        return copied
