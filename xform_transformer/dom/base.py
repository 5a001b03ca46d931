"""
Document Abstraction Contract
=============================

One interface, two implementations. Correction passes only talk to a
``DOMBackend``; which backend is in use is decided once per process
(see ``xform_transformer.dom.get_backend``).

Capabilities:

- parse:     parse_xml, parse_html_fragment, create_document
- serialize: serialize
- query:     evaluate (ordered node snapshot)
- mutate:    attribute, text and tree operations

Node handles are opaque to callers. The only guarantees are the ones listed
on each method; in particular two queries that find the same underlying node
return objects that compare identical with ``is``.
"""

import logging
import re
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import IntEnum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from lxml import etree

from xform_transformer.errors import DocumentRole, MalformedDocument
from xform_transformer.xml.utils import expression_prefixes

logger = logging.getLogger(__name__)


NAMESPACES: Dict[str, str] = {
    "xf": "http://www.w3.org/2002/xforms",
    "orx": "http://openrosa.org/xforms",
    "h": "http://www.w3.org/1999/xhtml",
    "xsl": "http://www.w3.org/1999/XSL/Transform",
    "xmlns": "http://www.w3.org/2000/xmlns/",
}

XFORMS_NS = NAMESPACES["xf"]

# Name of the synthetic root every stylesheet result is adopted into
ANCHOR_NAME = "root"

# Prefixes nobody declared are bound here so that they match nothing
UNRESOLVED_NAMESPACE = "urn:x-xform-transformer:unresolved:"

# Final location step selects an attribute, e.g. //input/@name
ATTRIBUTE_STEP = re.compile(r"/@[^,/ ']+$")


class NodeType(IntEnum):
    """DOM node type codes."""

    ELEMENT = 1
    ATTRIBUTE = 2
    TEXT = 3
    PROCESSING_INSTRUCTION = 7
    COMMENT = 8
    DOCUMENT = 9
    OTHER = 0


def selects_attribute(expression: str) -> bool:
    """Whether the last step of ``expression`` is an attribute step."""
    return bool(ATTRIBUTE_STEP.search(expression.strip()))


class NamespaceResolver:
    """
    Prefix to URI lookup for one document.

    Declarations found in the document win; the static ``NAMESPACES`` table
    fills the gaps. The table of declared namespaces is collected on first use
    and kept for the lifetime of the document.
    """

    def __init__(self, root: Any):
        self._root = root
        self._declared: Optional[Dict[str, str]] = None

    @property
    def declared(self) -> Dict[str, str]:
        if self._declared is None:
            declared: Dict[str, str] = {}
            for prefix, uri in self._root.xpath("//namespace::*"):
                if prefix and prefix != "xml":
                    declared.setdefault(prefix, uri)
            self._declared = declared
        return self._declared

    def resolve(self, prefix: str) -> Optional[str]:
        return self.declared.get(prefix) or NAMESPACES.get(prefix)

    def namespaces_for(self, expression: str) -> Dict[str, str]:
        """Bindings for every prefix ``expression`` uses."""
        namespaces = {}
        for prefix in expression_prefixes(expression):
            if prefix == "xml":
                continue
            namespaces[prefix] = self.resolve(prefix) or UNRESOLVED_NAMESPACE + prefix
        return namespaces


class TransformScope:
    """
    Reference count of transforms in flight.

    ``on_idle`` runs whenever the count drops back to zero, never while a
    transform is still running.
    """

    def __init__(self, on_idle: Callable[[], None]):
        self._lock = threading.Lock()
        self._active = 0
        self._on_idle = on_idle

    @property
    def active(self) -> int:
        return self._active

    def acquire(self) -> None:
        with self._lock:
            self._active += 1

    def release(self) -> None:
        with self._lock:
            if self._active == 0:
                raise RuntimeError("transform scope released more often than acquired")
            self._active -= 1
            if self._active == 0:
                self._on_idle()

    @contextmanager
    def __call__(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()


def parse_engine_xml(text: str, role: DocumentRole) -> Any:
    """Parse XML text into an lxml tree, mapping parser errors."""
    if isinstance(text, str):
        data = text.encode("utf-8")
    else:
        data = text
    parser = etree.XMLParser(remove_blank_text=False, resolve_entities=False)
    try:
        return etree.ElementTree(etree.fromstring(data, parser))
    except etree.XMLSyntaxError as e:
        raise MalformedDocument(role, str(e), line=getattr(e, "lineno", None)) from e


def parse_engine_html_fragment(markup: str) -> Any:
    """Parse HTML markup into a detached ``div`` container."""
    from lxml import html as lxml_html

    if not markup.strip():
        return etree.Element("div")
    try:
        return lxml_html.fragment_fromstring(markup, create_parent="div")
    except (etree.ParserError, etree.XMLSyntaxError) as e:
        raise MalformedDocument(DocumentRole.MARKUP, str(e)) from e


def serialize_engine_node(node: Any, method: str = "xml") -> str:
    """Serialize one lxml node without its tail."""
    return etree.tostring(node, method=method, encoding="unicode", with_tail=False)


class DOMBackend(ABC):
    """
    Capability set every document backend provides.

    ``document`` arguments are the backend's document objects, ``node``
    arguments anything a query or tree operation returned.
    """

    name: str = "abstract"

    # Whether legacy preprocessing hooks can receive the engine tree
    supports_preprocessing: bool = False

    # -- parse ---------------------------------------------------------------

    @abstractmethod
    def parse_xml(self, text: str, role: DocumentRole = DocumentRole.SOURCE) -> Any:
        """Parse XML text into a document. Raises MalformedDocument."""

    @abstractmethod
    def parse_html_fragment(self, markup: str) -> Any:
        """Parse HTML markup; returns a container element holding the nodes."""

    @abstractmethod
    def create_document(self, root_name: str, namespace_uri: Optional[str] = None) -> Any:
        """Create an empty document with one root element."""

    @abstractmethod
    def adopt(self, tree: Any) -> Any:
        """Wrap an lxml tree (e.g. a stylesheet result) as a document."""

    @abstractmethod
    def engine_tree(self, document: Any) -> Any:
        """The lxml ``_ElementTree`` behind ``document``."""

    # -- serialize -----------------------------------------------------------

    @abstractmethod
    def serialize(self, node: Any, method: str = "xml") -> str:
        """Serialize ``node`` (without trailing sibling text)."""

    # -- query ---------------------------------------------------------------

    @abstractmethod
    def evaluate(self, document: Any, expression: str, context: Any = None) -> List[Any]:
        """Evaluate XPath; returns nodes in document order."""

    def first(self, document: Any, expression: str, context: Any = None) -> Any:
        """First node ``expression`` selects, or None."""
        results = self.evaluate(document, expression, context)
        return results[0] if results else None

    # -- read ----------------------------------------------------------------

    @abstractmethod
    def node_type(self, node: Any) -> NodeType:
        ...

    @abstractmethod
    def local_name(self, node: Any) -> str:
        ...

    @abstractmethod
    def namespace_uri(self, node: Any) -> Optional[str]:
        ...

    @abstractmethod
    def document_element(self, document: Any) -> Any:
        ...

    @abstractmethod
    def owner_document(self, node: Any) -> Any:
        ...

    @abstractmethod
    def parent(self, node: Any) -> Any:
        """Parent element, or None for detached nodes and document roots."""

    @abstractmethod
    def children(self, element: Any) -> List[Any]:
        """Element children only."""

    @abstractmethod
    def child_nodes(self, element: Any) -> List[Any]:
        """Element, comment and text children in document order."""

    @abstractmethod
    def text_content(self, node: Any) -> str:
        ...

    @abstractmethod
    def get_attribute(self, element: Any, name: str) -> Optional[str]:
        ...

    def has_attribute(self, element: Any, name: str) -> bool:
        return self.get_attribute(element, name) is not None

    @abstractmethod
    def attribute_names(self, element: Any) -> List[str]:
        """Attribute names in Clark notation."""

    @abstractmethod
    def namespaces_in_scope(self, element: Any) -> Dict[Optional[str], str]:
        ...

    @abstractmethod
    def namespace_declarations(self, element: Any) -> Dict[Optional[str], str]:
        """Declarations made on ``element`` itself."""

    # -- mutate --------------------------------------------------------------

    @abstractmethod
    def set_attribute(self, element: Any, name: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_attribute(self, element: Any, name: str) -> None:
        ...

    @abstractmethod
    def declare_namespaces(self, element: Any, declarations: Dict[Optional[str], str]) -> Any:
        """
        Add namespace declarations to ``element``.

        Returns the node now standing in the element's place; callers must
        use the return value from here on.
        """

    @abstractmethod
    def set_text_content(self, node: Any, text: str) -> None:
        ...

    @abstractmethod
    def create_element(self, document: Any, name: str,
                       namespace_uri: Optional[str] = None) -> Any:
        ...

    @abstractmethod
    def create_text(self, document: Any, text: str) -> Any:
        ...

    @abstractmethod
    def append_child(self, parent: Any, node: Any) -> Any:
        ...

    @abstractmethod
    def insert_before(self, node: Any, reference: Any) -> Any:
        """Insert ``node`` as the preceding sibling of ``reference``."""

    @abstractmethod
    def remove(self, node: Any) -> None:
        ...

    def replace_with(self, node: Any, *replacements: Any) -> None:
        """Put ``replacements`` where ``node`` is and remove ``node``."""
        for replacement in replacements:
            self.insert_before(replacement, node)
        self.remove(node)

    def replace_children(self, element: Any, nodes: Sequence[Any]) -> None:
        """Remove every child of ``element`` and append ``nodes``."""
        for child in self.child_nodes(element):
            self.remove(child)
        for node in nodes:
            self.append_child(element, node)

    @abstractmethod
    def clone(self, node: Any, deep: bool = True) -> Any:
        ...

    # -- scope ---------------------------------------------------------------

    @abstractmethod
    def transform_scope(self) -> Any:
        """Context manager marking one transform in flight."""
