"""
Native Backend
==============

Wraps lxml (libxml2/libxslt) nodes in DOM-style wrapper objects.

lxml creates a fresh Python proxy for a node whenever nobody holds the old
one, and it has no objects at all for text nodes or attributes. Correction
passes compare nodes with ``is`` ("is this the element the other query
found?"), so wrappers are handed out through an ``IdentityCache``: the same
underlying node always maps to the same wrapper while a transform is in
flight. The cache is process-wide and is cleared only when the last
in-flight transform finishes.

Handles used as cache keys:

- elements and comments: the lxml proxy itself
- text:       ``(owner element, "text" | "tail")``
- attributes: ``(owner element, "@" + Clark name)``
"""

import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional
from xml.sax.saxutils import escape

from lxml import etree

from xform_transformer.dom.base import (
    DOMBackend,
    NamespaceResolver,
    NodeType,
    TransformScope,
    parse_engine_html_fragment,
    parse_engine_xml,
    selects_attribute,
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
    preceding_slot,
    read_slot,
    rebuild_with_namespaces,
    split_tag,
    string_value,
    unlink,
    write_slot,
)

logger = logging.getLogger(__name__)


class IdentityCache:
    """Side tables mapping engine handles to wrappers and owner documents."""

    def __init__(self):
        self._lock = threading.RLock()
        self._wrappers: Dict[Any, "Node"] = {}
        self._documents: Dict[Any, "Document"] = {}

    def wrapper(self, handle: Any, factory: Callable[[], "Node"]) -> "Node":
        """Return the wrapper for ``handle``, creating it if absent."""
        with self._lock:
            wrapper = self._wrappers.get(handle)
            if wrapper is None:
                wrapper = factory()
                self._wrappers[handle] = wrapper
            return wrapper

    def get(self, handle: Any) -> Optional["Node"]:
        with self._lock:
            return self._wrappers.get(handle)

    def bind(self, handle: Any, wrapper: "Node") -> None:
        with self._lock:
            self._wrappers[handle] = wrapper

    def unbind(self, handle: Any) -> None:
        with self._lock:
            self._wrappers.pop(handle, None)

    def document(self, root: Any, factory: Callable[[], "Document"]) -> "Document":
        """Return the document wrapper owning ``root``, creating it if absent."""
        with self._lock:
            document = self._documents.get(root)
            if document is None:
                document = factory()
                self._documents[root] = document
            return document

    def clear(self) -> None:
        with self._lock:
            count = len(self._wrappers)
            self._wrappers.clear()
            self._documents.clear()
        logger.debug(f"Cleared identity cache ({count} wrappers)")

    def __len__(self) -> int:
        return len(self._wrappers)


class Node:
    """Base wrapper. Also used as-is for results with no better type."""

    node_type = NodeType.OTHER

    def __init__(self, cache: IdentityCache, handle: Any):
        self._cache = cache
        self._handle = handle

    def _wrap(self, raw: Any) -> Any:
        return wrap(self._cache, raw)

    @property
    def engine_node(self) -> Any:
        return self._handle

    @property
    def local_name(self) -> str:
        return ""

    @property
    def namespace_uri(self) -> Optional[str]:
        return None

    @property
    def parent(self) -> Optional["Element"]:
        return None

    @property
    def owner_document(self) -> Optional["Document"]:
        return None

    @property
    def text_content(self) -> str:
        return str(self._handle)

    def set_text_content(self, text: str) -> None:
        raise TypeError(f"{type(self).__name__} nodes are read-only")

    def clone(self, deep: bool = True) -> "Node":
        return type(self)(self._cache, self._handle)

    def serialize(self, method: str = "xml") -> str:
        return self.text_content

    # Tree moves. Each concrete node type knows how to put itself somewhere.

    def _detach(self) -> None:
        raise TypeError(f"{type(self).__name__} nodes cannot be moved")

    def _append_to(self, parent: Any) -> None:
        raise TypeError(f"{type(self).__name__} nodes cannot be inserted")

    def _insert_before_node(self, reference: Any) -> None:
        raise TypeError(f"{type(self).__name__} nodes cannot be inserted")

    def _insert_at_slot(self, owner: Any, slot: str) -> None:
        raise TypeError(f"{type(self).__name__} nodes cannot be inserted")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.local_name or self.text_content!r}>"


class _TreeNode(Node):
    """Element or comment: an lxml proxy that lives in the tree."""

    @property
    def parent(self) -> Optional["Element"]:
        parent = self._handle.getparent()
        if parent is None:
            return None
        return self._wrap(parent)

    @property
    def owner_document(self) -> "Document":
        tree = self._handle.getroottree()
        return document_for(self._cache, tree)

    def remove(self) -> None:
        self._detach()

    def serialize(self, method: str = "xml") -> str:
        return serialize_engine_node(self._handle, method)

    def _detach(self) -> None:
        node = self._handle
        if node.getparent() is None:
            return
        tail = self._cache.get((node, TAIL))
        target, merged = None, False
        if node.tail:
            target = preceding_slot(node)
            merged = bool(read_slot(*target))
        unlink(node)
        if tail is not None:
            self._cache.unbind((node, TAIL))
            # the tail text stays behind in the preceding slot
            if target is not None and not merged:
                tail._rebind(*target)

    def _append_to(self, parent: Any) -> None:
        self._detach()
        parent.append(self._handle)

    def _insert_before_node(self, reference: Any) -> None:
        self._detach()
        reference.addprevious(self._handle)

    def _insert_at_slot(self, owner: Any, slot: str) -> None:
        self._detach()
        displaced = self._cache.get((owner, slot))
        insert_element_at_slot(self._handle, owner, slot)
        self._cache.unbind((owner, slot))
        if displaced is not None:
            displaced._rebind(self._handle, TAIL)


class Element(_TreeNode):
    """Wrapper around an lxml element."""

    node_type = NodeType.ELEMENT

    @property
    def tag(self) -> str:
        return self._handle.tag

    @property
    def local_name(self) -> str:
        return split_tag(self._handle.tag)[1]

    @property
    def namespace_uri(self) -> Optional[str]:
        return split_tag(self._handle.tag)[0]

    @property
    def text_content(self) -> str:
        return string_value(self._handle)

    def set_text_content(self, text: str) -> None:
        self.replace_children([])
        self._handle.text = text or None

    # -- attributes ----------------------------------------------------------

    def get_attribute(self, name: str) -> Optional[str]:
        return self._handle.get(name)

    def has_attribute(self, name: str) -> bool:
        return name in self._handle.attrib

    def set_attribute(self, name: str, value: str) -> None:
        self._handle.set(name, value)

    def remove_attribute(self, name: str) -> None:
        self._handle.attrib.pop(name, None)
        self._cache.unbind((self._handle, "@" + name))

    @property
    def attribute_names(self) -> List[str]:
        return list(self._handle.attrib.keys())

    @property
    def nsmap(self) -> Dict[Optional[str], str]:
        return dict(self._handle.nsmap)

    @property
    def namespace_declarations(self) -> Dict[Optional[str], str]:
        return local_declarations(self._handle)

    def declare_namespaces(self, declarations: Dict[Optional[str], str]) -> "Element":
        """Add declarations in place; this wrapper keeps standing for the element."""
        old = self._handle
        rebuilt = rebuild_with_namespaces(old, declarations)
        self._cache.unbind(old)
        self._handle = rebuilt
        self._cache.bind(rebuilt, self)
        return self

    # -- children ------------------------------------------------------------

    @property
    def children(self) -> List["Element"]:
        return [self._wrap(child) for child in self._handle if isinstance(child.tag, str)]

    @property
    def child_nodes(self) -> List[Node]:
        nodes: List[Node] = []
        if self._handle.text:
            nodes.append(text_for(self._cache, self._handle, TEXT))
        for child in self._handle:
            nodes.append(self._wrap(child))
            if child.tail:
                nodes.append(text_for(self._cache, child, TAIL))
        return nodes

    def append_child(self, node: Node) -> Node:
        node._append_to(self._handle)
        return node

    def insert_before(self, node: Node, reference: Node) -> Node:
        if isinstance(reference, Text):
            node._insert_at_slot(*reference.slot)
        else:
            node._insert_before_node(reference.engine_node)
        return node

    def replace_children(self, nodes: List[Node]) -> None:
        for child in self.child_nodes:
            if isinstance(child, Text):
                self._cache.unbind(child.slot)
        clear_children(self._handle)
        for node in nodes:
            self.append_child(node)

    def clone(self, deep: bool = True) -> "Element":
        if deep:
            copied = copy.deepcopy(self._handle)
            copied.tail = None
        else:
            copied = etree.Element(self._handle.tag, nsmap=self._handle.nsmap)
            for name, value in self._handle.attrib.items():
                copied.set(name, value)
        return self._wrap(copied)


class Comment(_TreeNode):
    node_type = NodeType.COMMENT

    @property
    def text_content(self) -> str:
        return self._handle.text or ""

    def set_text_content(self, text: str) -> None:
        self._handle.text = text

    def clone(self, deep: bool = True) -> "Comment":
        return self._wrap(etree.Comment(self._handle.text))


class Text(Node):
    """
    A run of character data.

    Attached text lives in an lxml ``text``/``tail`` slot; detached text
    (fresh from ``create_text`` or removed from the tree) carries its data.
    """

    node_type = NodeType.TEXT

    def __init__(self, cache: IdentityCache, owner: Any = None,
                 slot: Optional[str] = None, data: str = ""):
        super().__init__(cache, (owner, slot) if owner is not None else None)
        self._data = data

    @property
    def slot(self):
        return self._handle

    @property
    def attached(self) -> bool:
        return self._handle is not None

    @property
    def data(self) -> str:
        if self.attached:
            return read_slot(*self._handle)
        return self._data

    @property
    def text_content(self) -> str:
        return self.data

    def set_text_content(self, text: str) -> None:
        if self.attached:
            write_slot(*self._handle, text)
        else:
            self._data = text

    @property
    def parent(self) -> Optional["Element"]:
        if not self.attached:
            return None
        owner, slot = self._handle
        return self._wrap(owner if slot == TEXT else owner.getparent())

    @property
    def owner_document(self) -> Optional["Document"]:
        if not self.attached:
            return None
        return document_for(self._cache, self._handle[0].getroottree())

    def remove(self) -> None:
        self._detach()

    def clone(self, deep: bool = True) -> "Text":
        return Text(self._cache, data=self.data)

    def serialize(self, method: str = "xml") -> str:
        return escape(self.data)

    def _rebind(self, owner: Any, slot: str) -> None:
        if self.attached:
            self._cache.unbind(self._handle)
        self._handle = (owner, slot)
        self._cache.bind(self._handle, self)

    def _detach(self) -> None:
        if not self.attached:
            return
        self._data = read_slot(*self._handle)
        write_slot(*self._handle, None)
        self._cache.unbind(self._handle)
        self._handle = None

    def _append_to(self, parent: Any) -> None:
        self._detach()
        self._rebind(*append_text(parent, self._data))

    def _insert_before_node(self, reference: Any) -> None:
        self._detach()
        self._rebind(*insert_text_before(reference, self._data))

    def _insert_at_slot(self, owner: Any, slot: str) -> None:
        self._detach()
        write_slot(owner, slot, self._data + read_slot(owner, slot))
        self._rebind(owner, slot)


class Attr(Node):
    """Attribute node, created when a query's last step selects attributes."""

    node_type = NodeType.ATTRIBUTE

    def __init__(self, cache: IdentityCache, owner: Any, name: str):
        super().__init__(cache, (owner, "@" + name))
        self._owner = owner
        self.name = name

    @property
    def local_name(self) -> str:
        return split_tag(self.name)[1]

    @property
    def namespace_uri(self) -> Optional[str]:
        return split_tag(self.name)[0]

    @property
    def value(self) -> str:
        return self._owner.get(self.name, "")

    @property
    def text_content(self) -> str:
        return self.value

    def set_text_content(self, text: str) -> None:
        self._owner.set(self.name, text)

    @property
    def owner_document(self) -> "Document":
        return document_for(self._cache, self._owner.getroottree())

    def remove(self) -> None:
        self._owner.attrib.pop(self.name, None)
        self._cache.unbind(self._handle)


class Document(Node):
    """Wrapper around an lxml ``_ElementTree``."""

    node_type = NodeType.DOCUMENT

    def __init__(self, cache: IdentityCache, tree: Any):
        super().__init__(cache, tree)
        self.tree = tree
        self.resolver = NamespaceResolver(tree.getroot())

    @property
    def owner_document(self) -> "Document":
        return self

    @property
    def document_element(self) -> Element:
        return self._wrap(self.tree.getroot())

    @property
    def text_content(self) -> str:
        return self.document_element.text_content

    def evaluate(self, expression: str, context: Optional[Node] = None) -> List[Node]:
        context_node = self.tree.getroot() if context is None else context.engine_node
        if isinstance(context, Document):
            context_node = context.tree.getroot()
        raw = context_node.xpath(expression, namespaces=self.resolver.namespaces_for(expression))
        return XPathResult(self._cache, expression, raw).nodes

    def serialize(self, method: str = "xml") -> str:
        return serialize_engine_node(self.tree.getroot(), method)


class XPathResult:
    """
    Ordered snapshot of a query's results as wrappers.

    lxml returns attribute values as strings. When the final step of the
    expression selects attributes those strings become ``Attr`` wrappers;
    this happens once, here.
    """

    def __init__(self, cache: IdentityCache, expression: str, raw: Any):
        if not isinstance(raw, list):
            raw = [raw]
        as_attributes = selects_attribute(expression)
        self.nodes: List[Any] = []
        for item in raw:
            if as_attributes and getattr(item, "is_attribute", False):
                owner, name = item.getparent(), item.attrname
                self.nodes.append(cache.wrapper(
                    (owner, "@" + name), lambda: Attr(cache, owner, name)))
            else:
                self.nodes.append(wrap(cache, item))


def text_for(cache: IdentityCache, owner: Any, slot: str) -> Text:
    return cache.wrapper((owner, slot), lambda: Text(cache, owner, slot))


def document_for(cache: IdentityCache, tree: Any) -> Document:
    return cache.document(tree.getroot(), lambda: Document(cache, tree))


def wrap(cache: IdentityCache, raw: Any) -> Any:
    """Map an lxml result to its wrapper; other values pass through."""
    if isinstance(raw, etree._Element):
        if isinstance(raw.tag, str):
            return cache.wrapper(raw, lambda: Element(cache, raw))
        if raw.tag is etree.Comment:
            return cache.wrapper(raw, lambda: Comment(cache, raw))
        return cache.wrapper(raw, lambda: Node(cache, raw))
    if getattr(raw, "is_text", False) or getattr(raw, "is_tail", False):
        owner = raw.getparent()
        if owner is not None:
            return text_for(cache, owner, TAIL if raw.is_tail else TEXT)
    if isinstance(raw, str) and hasattr(raw, "getparent"):
        return Node(cache, raw)
    return raw


class NativeBackend(DOMBackend):
    """DOM-style wrappers over lxml, with identity-preserving caches."""

    name = "native"
    supports_preprocessing = True

    def __init__(self):
        self.cache = IdentityCache()
        self.scope = TransformScope(on_idle=self.cache.clear)

    def transform_scope(self):
        return self.scope()

    def clean_caches(self) -> None:
        """Drop cached wrappers unless a transform is still in flight."""
        if self.scope.active == 0:
            self.cache.clear()

    # -- parse ---------------------------------------------------------------

    def parse_xml(self, text: str, role: DocumentRole = DocumentRole.SOURCE) -> Document:
        return self.adopt(parse_engine_xml(text, role))

    def parse_html_fragment(self, markup: str) -> Element:
        return wrap(self.cache, parse_engine_html_fragment(markup))

    def create_document(self, root_name: str, namespace_uri: Optional[str] = None) -> Document:
        nsmap = {None: namespace_uri} if namespace_uri else None
        root = etree.Element(clark_name(root_name, namespace_uri), nsmap=nsmap)
        return self.adopt(etree.ElementTree(root))

    def adopt(self, tree: Any) -> Document:
        return document_for(self.cache, tree)

    def engine_tree(self, document: Document) -> Any:
        return document.tree

    # -- serialize -----------------------------------------------------------

    def serialize(self, node: Node, method: str = "xml") -> str:
        return node.serialize(method)

    # -- query ---------------------------------------------------------------

    def evaluate(self, document: Document, expression: str, context: Any = None) -> List[Any]:
        return document.evaluate(expression, context)

    # -- read ----------------------------------------------------------------

    def node_type(self, node: Node) -> NodeType:
        return node.node_type

    def local_name(self, node: Node) -> str:
        return node.local_name

    def namespace_uri(self, node: Node) -> Optional[str]:
        return node.namespace_uri

    def document_element(self, document: Document) -> Element:
        return document.document_element

    def owner_document(self, node: Node) -> Optional[Document]:
        return node.owner_document

    def parent(self, node: Node) -> Optional[Element]:
        return node.parent

    def children(self, element: Element) -> List[Element]:
        return element.children

    def child_nodes(self, element: Element) -> List[Node]:
        return element.child_nodes

    def text_content(self, node: Node) -> str:
        return node.text_content

    def get_attribute(self, element: Element, name: str) -> Optional[str]:
        return element.get_attribute(name)

    def has_attribute(self, element: Element, name: str) -> bool:
        return element.has_attribute(name)

    def attribute_names(self, element: Element) -> List[str]:
        return element.attribute_names

    def namespaces_in_scope(self, element: Element) -> Dict[Optional[str], str]:
        return element.nsmap

    def namespace_declarations(self, element: Element) -> Dict[Optional[str], str]:
        return element.namespace_declarations

    # -- mutate --------------------------------------------------------------

    def set_attribute(self, element: Element, name: str, value: str) -> None:
        element.set_attribute(name, value)

    def remove_attribute(self, element: Element, name: str) -> None:
        element.remove_attribute(name)

    def declare_namespaces(self, element: Element,
                           declarations: Dict[Optional[str], str]) -> Element:
        return element.declare_namespaces(declarations)

    def set_text_content(self, node: Node, text: str) -> None:
        node.set_text_content(text)

    def create_element(self, document: Document, name: str,
                       namespace_uri: Optional[str] = None) -> Element:
        return wrap(self.cache, etree.Element(clark_name(name, namespace_uri)))

    def create_text(self, document: Document, text: str) -> Text:
        return Text(self.cache, data=text)

    def append_child(self, parent: Element, node: Node) -> Node:
        return parent.append_child(node)

    def insert_before(self, node: Node, reference: Node) -> Node:
        parent = reference.parent
        if parent is None:
            raise ValueError("reference node has no parent")
        return parent.insert_before(node, reference)

    def remove(self, node: Node) -> None:
        node.remove()

    def replace_children(self, element: Element, nodes: List[Node]) -> None:
        element.replace_children(list(nodes))

    def clone(self, node: Node, deep: bool = True) -> Node:
        return node.clone(deep)
