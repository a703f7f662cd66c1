"""Resource definitions, expressions and the dependency graph."""

from stackplan.graph.builder import ID_ATTRIBUTE, GraphBuilder
from stackplan.graph.expressions import UNKNOWN, Reference, parse_value
from stackplan.graph.models import (
    Edge,
    ResourceAddress,
    ResourceDefinition,
    ResourceGraph,
    ResourceNode,
    ResourceStatus,
)

__all__ = [
    "Edge",
    "GraphBuilder",
    "ID_ATTRIBUTE",
    "Reference",
    "ResourceAddress",
    "ResourceDefinition",
    "ResourceGraph",
    "ResourceNode",
    "ResourceStatus",
    "UNKNOWN",
    "parse_value",
]
