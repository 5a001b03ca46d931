"""
XML Processing Utilities
========================

Name, token and text-slot helpers shared by the document backends.
"""

from xform_transformer.xml.utils import (
    local_name,
    split_tag,
    clark_name,
    local_declarations,
    rebuild_with_namespaces,
    class_tokens,
    join_tokens,
    xpath_literal,
    expression_prefixes,
    string_value,
)

__all__ = [
    "local_name",
    "split_tag",
    "clark_name",
    "local_declarations",
    "rebuild_with_namespaces",
    "class_tokens",
    "join_tokens",
    "xpath_literal",
    "expression_prefixes",
    "string_value",
]
