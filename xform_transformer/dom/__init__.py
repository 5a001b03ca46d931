"""
Document Abstraction
====================

One ``DOMBackend`` interface, two implementations over lxml:

- NativeBackend: DOM-style wrappers with identity-preserving caches
- HostBackend: lxml's object model used directly

``get_backend()`` returns the configured backend; the choice is made once
per process. Passing a name gets that backend explicitly.
"""

import threading
from typing import Dict, Optional

from xform_transformer.config import get_config
from xform_transformer.dom.base import (
    ANCHOR_NAME,
    NAMESPACES,
    XFORMS_NS,
    DOMBackend,
    NamespaceResolver,
    NodeType,
    TransformScope,
)
from xform_transformer.dom.host import HostBackend
from xform_transformer.dom.native import NativeBackend

_BACKEND_TYPES = {
    NativeBackend.name: NativeBackend,
    HostBackend.name: HostBackend,
}

_backends: Dict[str, DOMBackend] = {}
_lock = threading.Lock()


def get_backend(name: Optional[str] = None) -> DOMBackend:
    """
    Get the shared backend instance.

    Args:
        name: "native" or "host"; defaults to the configured backend

    Raises:
        ValueError: If the name is unknown
    """
    name = name or get_config().backend
    if name not in _BACKEND_TYPES:
        raise ValueError(f"Unknown backend: {name}")
    with _lock:
        backend = _backends.get(name)
        if backend is None:
            backend = _BACKEND_TYPES[name]()
            _backends[name] = backend
        return backend


__all__ = [
    "ANCHOR_NAME",
    "NAMESPACES",
    "XFORMS_NS",
    "DOMBackend",
    "HostBackend",
    "NamespaceResolver",
    "NativeBackend",
    "NodeType",
    "TransformScope",
    "get_backend",
]
