"""
stackplan configuration.

Provides:
- Pydantic-based settings (environment variables, .env files)
- Stack document parsing (resources, providers, state backend)
- Document discovery and loading
"""

from stackplan.config.document import (
    BackendConfig,
    ProviderConfig,
    StackDocument,
    parse_document,
)
from stackplan.config.loader import ConfigLoader, get_config_path, load_document
from stackplan.config.settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Document
    "BackendConfig",
    "ProviderConfig",
    "StackDocument",
    "parse_document",
    # Loader
    "ConfigLoader",
    "get_config_path",
    "load_document",
]
