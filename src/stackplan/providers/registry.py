from __future__ import annotations

from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, List

import structlog

from stackplan.core.errors import ConfigurationError
from stackplan.providers.base import Provider, ResourceSchema

logger = structlog.get_logger()

ProviderFactory = Callable[..., Provider]

ENTRY_POINT_GROUP = "stackplan.providers"


@dataclass(frozen=True)
class ProviderSpec:
    """Metadata describing a registered provider."""

    name: str
    factory: ProviderFactory
    version: str | None = None
    description: str | None = None


class ProviderRegistry:
    """Registry of provider factories and the instances configured for a run.

    Factories are registered by source name (``memory``, plugin names).
    A document's ``providers:`` block configures named instances from those
    sources; a resource kind resolves to an instance by explicit binding,
    then by its prefix (``aws_vpc`` -> ``aws``).
    """

    def __init__(self) -> None:
        self._providers: Dict[str, ProviderSpec] = {}
        self._instances: Dict[str, Provider] = {}
        self._bindings: Dict[str, str] = {}

    def register(
        self,
        name: str,
        factory: ProviderFactory,
        *,
        version: str | None = None,
        description: str | None = None,
    ) -> None:
        if not name:
            raise ValueError("Provider name is required")
        spec = ProviderSpec(
            name=name,
            factory=factory,
            version=version,
            description=description,
        )
        self._providers[name] = spec

    def create(self, source: str, **kwargs: Any) -> Provider:
        spec = self._providers.get(source)
        if spec is None:
            raise ConfigurationError(f"Provider source '{source}' is not registered")
        return spec.factory(**kwargs)

    def list(self) -> List[ProviderSpec]:
        return list(self._providers.values())

    def discover(self) -> None:
        """Register provider plugins exposed through package entry points."""
        for entry_point in entry_points(group=ENTRY_POINT_GROUP):
            if entry_point.name in self._providers:
                continue
            factory = entry_point.load()
            version = entry_point.dist.version if entry_point.dist else None
            self.register(entry_point.name, factory, version=version)
            logger.debug("provider_discovered", name=entry_point.name, version=version)

    # ------------------------------------------------------------------
    # Configured instances

    def configure(
        self,
        local_name: str,
        source: str,
        *,
        kinds: List[str] | None = None,
        **options: Any,
    ) -> Provider:
        """Instantiate ``source`` under ``local_name`` and bind optional kinds."""
        options.setdefault("name", local_name)
        provider = self.create(source, **options)
        self._instances[local_name] = provider
        for kind in kinds or []:
            self._bindings[kind] = local_name
        logger.debug("provider_configured", name=local_name, source=source)
        return provider

    def add(self, local_name: str, provider: Provider, *, kinds: List[str] | None = None) -> None:
        """Add an already-built provider instance."""
        self._instances[local_name] = provider
        for kind in kinds or []:
            self._bindings[kind] = local_name

    def provider_name_for(self, kind: str) -> str:
        if kind in self._bindings:
            return self._bindings[kind]
        if kind in self._instances:
            return kind
        prefix = kind.split("_", 1)[0]
        if prefix in self._instances:
            return prefix
        raise ConfigurationError(
            f"No provider configured for resource kind '{kind}'",
            details={"kind": kind},
        )

    def resolve(self, kind: str) -> Provider:
        return self._instances[self.provider_name_for(kind)]

    def get(self, local_name: str) -> Provider | None:
        return self._instances.get(local_name)

    def instances(self) -> Dict[str, Provider]:
        return dict(self._instances)

    def schema(self, kind: str) -> ResourceSchema:
        return self.resolve(kind).schema(kind)

    def computed_attributes(self, kind: str) -> frozenset[str]:
        return self.schema(kind).computed_attributes

    def immutable_attributes(self, kind: str) -> frozenset[str]:
        return self.schema(kind).immutable_attributes


def default_registry(discover: bool = True) -> ProviderRegistry:
    """Registry with the built-in providers and any installed plugins."""
    from stackplan.providers.memory import PROVIDER_VERSION, InMemoryProvider

    registry = ProviderRegistry()
    registry.register(
        "memory",
        InMemoryProvider,
        version=PROVIDER_VERSION,
        description="In-process simulated provider",
    )
    if discover:
        registry.discover()
    return registry
