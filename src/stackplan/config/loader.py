"""
Stack document loading.

Search order:
1. Explicit path (-c/--config flag)
2. STACKPLAN_DEFAULT_CONFIG (``stack.yaml``) in the current directory
3. .stackplan/stack.yaml in the current directory
"""

from __future__ import annotations

from pathlib import Path

import structlog
import yaml

from stackplan.config.document import StackDocument, parse_document
from stackplan.config.settings import get_settings
from stackplan.core.errors import ConfigurationError

logger = structlog.get_logger()


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the stack document to use.

    Returns:
        Path to the document or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        return None

    default = Path.cwd() / get_settings().default_config
    if default.exists():
        return default

    hidden = Path.cwd() / ".stackplan" / "stack.yaml"
    if hidden.exists():
        return hidden

    return None


class ConfigLoader:
    """Loads and validates a stack document from YAML."""

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path

    def load(self) -> StackDocument:
        if self.config_path is None or not self.config_path.exists():
            raise ConfigurationError(
                f"Stack document not found: {self.config_path or get_settings().default_config}"
            )

        try:
            with open(self.config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        document = parse_document(
            data,
            base_dir=self.config_path.resolve().parent,
            name=self.config_path.stem,
        )
        document.path = self.config_path
        logger.debug(
            "loaded_document",
            path=str(self.config_path),
            resources=len(document.definitions),
        )
        return document


def load_document(path: str | Path | None = None) -> StackDocument:
    """
    Convenience function to load a stack document.

    Args:
        path: Optional explicit document path

    Returns:
        StackDocument instance
    """
    config_path = get_config_path(path)
    if config_path is None and path:
        raise ConfigurationError(f"Stack document not found: {path}")
    return ConfigLoader(config_path).load()
