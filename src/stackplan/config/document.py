"""
Declarative stack document: resources, providers and the state backend.

The ``backend`` section is the reserved resource describing where state
lives and which lock guards it.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from stackplan.config.settings import Settings
from stackplan.core.errors import ConfigurationError
from stackplan.graph.expressions import parse_value
from stackplan.graph.models import ResourceDefinition
from stackplan.providers.registry import ProviderRegistry
from stackplan.state.store import LocalStateStore, StateStore

BACKEND_TYPES = ("local", "redis")
DEFAULT_STATE_PATH = ".stackplan/state.json"


@dataclass
class BackendConfig:
    """Where state is stored and how it is locked."""

    type: str = "local"
    key: str = "default"
    path: Path = Path(DEFAULT_STATE_PATH)
    lock_name: str = "stackplan-locks"
    lock_path: Path | None = None
    redis_url: str | None = None

    def build_store(self, settings: Settings) -> StateStore:
        if self.type == "redis":
            from stackplan.state.redis import RedisStateStore

            return RedisStateStore(
                self.redis_url or settings.redis_url,
                key=self.key,
                lock_name=self.lock_name,
                lock_timeout=settings.lock_timeout,
                poll_interval=settings.lock_poll_interval,
            )
        return LocalStateStore(
            self.path,
            lock_path=self.lock_path,
            lock_timeout=settings.lock_timeout,
            poll_interval=settings.lock_poll_interval,
        )


@dataclass
class ProviderConfig:
    """One configured provider instance."""

    name: str
    source: str
    kinds: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StackDocument:
    """Parsed document, ready for graph building."""

    definitions: List[ResourceDefinition]
    backend: BackendConfig
    providers: List[ProviderConfig] = field(default_factory=list)
    path: Path | None = None

    def configure_providers(self, registry: ProviderRegistry) -> ProviderRegistry:
        for provider in self.providers:
            registry.configure(
                provider.name,
                provider.source,
                kinds=provider.kinds,
                **provider.options,
            )
        return registry


def parse_document(data: Any, *, base_dir: Path | None = None, name: str = "default") -> StackDocument:
    """Validate raw YAML data and build a StackDocument."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("Stack document must be a mapping")

    base = base_dir or Path.cwd()
    unknown = set(data) - {"backend", "providers", "resources"}
    if unknown:
        raise ConfigurationError(f"Unknown top-level section(s): {', '.join(sorted(unknown))}")

    return StackDocument(
        definitions=_parse_resources(data.get("resources") or []),
        backend=_parse_backend(data.get("backend") or {}, base, name),
        providers=_parse_providers(data.get("providers") or {}, base),
    )


def _parse_resources(raw: Any) -> List[ResourceDefinition]:
    if not isinstance(raw, list):
        raise ConfigurationError("'resources' must be a list")

    definitions = []
    for position, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Resource #{position} must be a mapping")
        kind = entry.get("kind")
        name = entry.get("name")
        if not kind or not isinstance(kind, str):
            raise ConfigurationError(f"Resource #{position} is missing 'kind'")
        if not name or not isinstance(name, str):
            raise ConfigurationError(f"Resource #{position} ({kind}) is missing 'name'")

        attributes = entry.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise ConfigurationError(f"'{kind}.{name}': 'attributes' must be a mapping")

        depends_on = entry.get("depends_on") or []
        if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
            raise ConfigurationError(f"'{kind}.{name}': 'depends_on' must be a list of addresses")

        definitions.append(
            ResourceDefinition(
                kind=kind,
                name=name,
                attributes=parse_value(_normalize(attributes, f"{kind}.{name}")),
                count=entry.get("count"),
                depends_on=tuple(depends_on),
                position=position,
            )
        )
    return definitions


def _parse_backend(raw: Any, base: Path, name: str) -> BackendConfig:
    if not isinstance(raw, dict):
        raise ConfigurationError("'backend' must be a mapping")
    backend_type = raw.get("type", "local")
    if backend_type not in BACKEND_TYPES:
        raise ConfigurationError(
            f"Unknown backend type '{backend_type}' (expected one of {', '.join(BACKEND_TYPES)})"
        )
    lock_path = raw.get("lock_path")
    return BackendConfig(
        type=backend_type,
        key=str(raw.get("key", name)),
        path=_resolve_path(raw.get("path", DEFAULT_STATE_PATH), base),
        lock_name=str(raw.get("lock_name", "stackplan-locks")),
        lock_path=_resolve_path(lock_path, base) if lock_path else None,
        redis_url=raw.get("redis_url"),
    )


def _parse_providers(raw: Any, base: Path) -> List[ProviderConfig]:
    if not isinstance(raw, dict):
        raise ConfigurationError("'providers' must be a mapping of name to settings")

    providers = []
    for provider_name, settings in raw.items():
        settings = dict(settings or {})
        source = settings.pop("source", provider_name)
        kinds = settings.pop("kinds", [])
        if "path" in settings:
            settings["path"] = _resolve_path(settings["path"], base)
        providers.append(
            ProviderConfig(name=provider_name, source=source, kinds=list(kinds), options=settings)
        )
    return providers


def _resolve_path(value: str | Path, base: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


def _normalize(value: Any, where: str) -> Any:
    """Coerce YAML scalars into JSON-representable values.

    Timestamps become ISO-8601 strings; anything else JSON cannot hold
    (binary, sets, custom tags) is rejected.
    """
    if isinstance(value, dict):
        normalized = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ConfigurationError(f"'{where}': attribute keys must be strings, got {key!r}")
            normalized[key] = _normalize(item, f"{where}.{key}")
        return normalized
    if isinstance(value, list):
        return [_normalize(item, where) for item in value]
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    raise ConfigurationError(
        f"'{where}': unsupported value of type {type(value).__name__}",
        details={"value": repr(value)},
    )
