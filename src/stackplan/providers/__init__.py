from stackplan.providers.base import Provider, ResourceSchema
from stackplan.providers.memory import InMemoryProvider
from stackplan.providers.registry import ProviderRegistry, ProviderSpec, default_registry

__all__ = [
    "InMemoryProvider",
    "Provider",
    "ProviderRegistry",
    "ProviderSpec",
    "ResourceSchema",
    "default_registry",
]
