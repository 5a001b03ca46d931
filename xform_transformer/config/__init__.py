"""
Configuration Management
========================

Configuration utilities for the XForm transformer.
"""

from xform_transformer.config.settings import (
    TransformerConfig,
    StylesheetConfig,
    get_config,
    set_config,
    load_config,
    save_config,
)

__all__ = [
    "TransformerConfig",
    "StylesheetConfig",
    "get_config",
    "set_config",
    "load_config",
    "save_config",
]
