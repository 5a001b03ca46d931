"""
Configuration Settings
======================

Configuration dataclasses for the XForm transformer.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import json
import logging
import os
import threading

try:
    import yaml
    YAML_AVAILABLE = True
except ImportError:
    YAML_AVAILABLE = False

logger = logging.getLogger(__name__)

CONFIG_ENV = "XFORM_TRANSFORMER_CONFIG"
BACKEND_ENV = "XFORM_TRANSFORMER_BACKEND"

BACKENDS = ("native", "host")


@dataclass
class StylesheetConfig:
    """Optional replacements for the bundled stylesheets (empty = bundled)."""

    form_xsl: str = ""
    model_xsl: str = ""


@dataclass
class TransformerConfig:
    """
    Complete transformer configuration.

    - backend: document backend, "native" (wrapped lxml) or "host" (plain lxml)
    - log_level: level the CLI configures logging with
    - markdown: default for surveys that do not say
    - stylesheets: stylesheet overrides

    Example:
        config = TransformerConfig(backend="host")
        config.stylesheets.form_xsl = "custom/form.xsl"
        save_config(config, Path("transformer.yaml"))
    """

    backend: str = "native"
    log_level: str = "INFO"
    markdown: bool = True
    stylesheets: StylesheetConfig = field(default_factory=StylesheetConfig)

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(
                f"Unknown backend '{self.backend}', expected one of {', '.join(BACKENDS)}"
            )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'backend': self.backend,
            'log_level': self.log_level,
            'markdown': self.markdown,
            'stylesheets': asdict(self.stylesheets),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TransformerConfig':
        """Create from dictionary."""
        data = data or {}
        config = cls(backend=data.get('backend', 'native'))

        if 'log_level' in data:
            config.log_level = data['log_level']
        if 'markdown' in data:
            config.markdown = bool(data['markdown'])
        if 'stylesheets' in data:
            config.stylesheets = StylesheetConfig(**(data['stylesheets'] or {}))

        return config


def load_config(config_path: Path) -> TransformerConfig:
    """
    Load configuration from file.

    Supports JSON and YAML formats based on file extension.

    Args:
        config_path: Path to config file

    Returns:
        TransformerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is not supported
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    with open(config_path, 'r', encoding='utf-8') as f:
        if suffix in ['.yaml', '.yml']:
            if not YAML_AVAILABLE:
                raise ImportError("PyYAML is required for YAML config files")
            data = yaml.safe_load(f)
        elif suffix == '.json':
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

    logger.info(f"Loaded configuration from {config_path}")
    return TransformerConfig.from_dict(data)


def save_config(config: TransformerConfig, config_path: Path) -> None:
    """
    Save configuration to file.

    Supports JSON and YAML formats based on file extension.

    Raises:
        ValueError: If file format is not supported
    """
    config_path = Path(config_path)
    suffix = config_path.suffix.lower()
    data = config.to_dict()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w', encoding='utf-8') as f:
        if suffix in ['.yaml', '.yml']:
            if not YAML_AVAILABLE:
                raise ImportError("PyYAML is required for YAML config files")
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        elif suffix == '.json':
            json.dump(data, f, indent=2)
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

    logger.info(f"Saved configuration to {config_path}")


def get_default_config() -> TransformerConfig:
    """Get default configuration."""
    return TransformerConfig()


_config: Optional[TransformerConfig] = None
_config_lock = threading.Lock()


def config_from_environment() -> TransformerConfig:
    """Build configuration from the config file and backend variables, if set."""
    path = os.environ.get(CONFIG_ENV)
    config = load_config(Path(path)) if path else get_default_config()

    backend = os.environ.get(BACKEND_ENV)
    if backend:
        config = TransformerConfig.from_dict({**config.to_dict(), 'backend': backend})
    return config


def get_config() -> TransformerConfig:
    """Process-wide configuration, read from the environment on first use."""
    global _config
    with _config_lock:
        if _config is None:
            _config = config_from_environment()
            logger.debug(f"Using {_config.backend} backend")
        return _config


def set_config(config: Optional[TransformerConfig]) -> None:
    """Replace the process-wide configuration (None re-reads the environment)."""
    global _config
    with _config_lock:
        _config = config
