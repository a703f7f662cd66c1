"""
Attribute expressions: literals, references and index-based selection.

Values in a document are parsed into plain Python data where the leaves may
be expression objects:

- ``"${aws_vpc.main.id}"``: a Reference (whole-string, keeps the value type)
- ``"${aws_subnet.public[0].id}"`` / ``[count.index]`` / ``[*]`` indexed forms
- ``"${count.index}"``: the replica index of a repeated resource
- ``"eks-${aws_vpc.main.id}"``: an Interpolation, always renders a string
- ``{"$element": {"list": [...], "index": ...}}``: pick one item by index
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping

from stackplan.core.errors import ConfigurationError, IndexOutOfRangeError, UnresolvedReferenceError
from stackplan.graph.models import ResourceAddress

COUNT_INDEX = "count.index"
SPLAT = "*"
ELEMENT_KEY = "$element"

_INTERPOLATION_RE = re.compile(r"\$\{([^}]*)\}")
_REFERENCE_RE = re.compile(
    r"^(?P<kind>[A-Za-z_][\w-]*)\.(?P<name>[A-Za-z_][\w-]*)"
    r"(?:\[(?P<index>\d+|\*|count\.index)\])?"
    r"\.(?P<attribute>[A-Za-z_][\w-]*)$"
)


class _Unknown:
    """Marker for values only known after apply."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __str__(self) -> str:
        return "(known after apply)"


UNKNOWN = _Unknown()


@dataclass(frozen=True)
class Reference:
    """Reference to an attribute of another resource."""

    kind: str
    name: str
    attribute: str
    index: int | str | None = None

    @property
    def base(self) -> str:
        return f"{self.kind}.{self.name}"

    @property
    def target(self) -> ResourceAddress:
        if not (self.index is None or isinstance(self.index, int)):
            raise ValueError(f"Reference {self} has no concrete target")
        return ResourceAddress(self.kind, self.name, self.index)

    def __str__(self) -> str:
        if self.index is None:
            return f"{self.kind}.{self.name}.{self.attribute}"
        return f"{self.kind}.{self.name}[{self.index}].{self.attribute}"


@dataclass(frozen=True)
class CountIndex:
    """Placeholder for the replica index of a repeated resource."""

    def __str__(self) -> str:
        return COUNT_INDEX


@dataclass(frozen=True)
class Interpolation:
    """String template mixing literal text and expressions."""

    parts: tuple[Any, ...]


@dataclass(frozen=True)
class ElementSelect:
    """Select one item of a fixed list by index."""

    items: tuple[Any, ...]
    index: Any


@dataclass(frozen=True)
class Splat:
    """All replicas of a repeated resource, expanded to concrete references."""

    references: tuple[Reference, ...]


def parse_value(value: Any) -> Any:
    """Parse raw document data into data with expression leaves."""
    if isinstance(value, str):
        return _parse_string(value)
    if isinstance(value, dict):
        if ELEMENT_KEY in value:
            return _parse_element(value)
        return {key: parse_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [parse_value(item) for item in value]
    return value


def _parse_string(value: str) -> Any:
    matches = list(_INTERPOLATION_RE.finditer(value))
    if not matches:
        return value
    if len(matches) == 1 and matches[0].span() == (0, len(value)):
        return parse_reference(matches[0].group(1))

    parts: list[Any] = []
    cursor = 0
    for match in matches:
        if match.start() > cursor:
            parts.append(value[cursor : match.start()])
        parts.append(parse_reference(match.group(1)))
        cursor = match.end()
    if cursor < len(value):
        parts.append(value[cursor:])
    return Interpolation(tuple(parts))


def _parse_element(value: dict[str, Any]) -> ElementSelect:
    if len(value) != 1:
        raise ConfigurationError(f"'{ELEMENT_KEY}' must be the only key of its mapping")
    body = value[ELEMENT_KEY]
    if not isinstance(body, dict) or "list" not in body or "index" not in body:
        raise ConfigurationError(f"'{ELEMENT_KEY}' requires 'list' and 'index' keys")
    items = body["list"]
    if not isinstance(items, list):
        raise ConfigurationError(f"'{ELEMENT_KEY}.list' must be a list")
    return ElementSelect(
        items=tuple(parse_value(item) for item in items),
        index=parse_value(body["index"]),
    )


def parse_reference(expression: str) -> Reference | CountIndex:
    """Parse the inside of ``${...}``."""
    text = expression.strip()
    if text == COUNT_INDEX:
        return CountIndex()
    match = _REFERENCE_RE.match(text)
    if match is None:
        raise ConfigurationError(f"Invalid expression '${{{expression}}}'")
    index: int | str | None = match.group("index")
    if index is not None and index not in (SPLAT, COUNT_INDEX):
        index = int(index)
    return Reference(
        kind=match.group("kind"),
        name=match.group("name"),
        attribute=match.group("attribute"),
        index=index,
    )


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every Reference found in a parsed value."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Splat):
        yield from value.references
    elif isinstance(value, Interpolation):
        for part in value.parts:
            yield from iter_references(part)
    elif isinstance(value, ElementSelect):
        for item in value.items:
            yield from iter_references(item)
        yield from iter_references(value.index)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def expand(value: Any, index: int | None, counts: Mapping[str, int | None], source: str = "") -> Any:
    """Instantiate a parsed value for one replica.

    Substitutes ``count.index``, evaluates element selections and turns
    splat references into concrete per-replica references. Attribute
    references to other resources are left for lazy resolution.
    """
    if isinstance(value, CountIndex):
        if index is None:
            raise ConfigurationError(f"'{COUNT_INDEX}' used in {source}, which has no count")
        return index
    if isinstance(value, Reference):
        if value.index == COUNT_INDEX:
            if index is None:
                raise ConfigurationError(f"'{COUNT_INDEX}' used in {source}, which has no count")
            return Reference(value.kind, value.name, value.attribute, index)
        if value.index == SPLAT:
            count = counts.get(value.base) or 0
            return Splat(
                tuple(Reference(value.kind, value.name, value.attribute, i) for i in range(count))
            )
        return value
    if isinstance(value, Interpolation):
        parts = tuple(expand(part, index, counts, source) for part in value.parts)
        if any(_is_expression(part) for part in parts):
            return Interpolation(parts)
        return "".join(str(part) for part in parts)
    if isinstance(value, ElementSelect):
        position = expand(value.index, index, counts, source)
        if isinstance(position, bool) or not isinstance(position, int):
            raise ConfigurationError(
                f"'{ELEMENT_KEY}' index in {source} must be an integer, got {position!r}"
            )
        if position < 0 or position >= len(value.items):
            raise IndexOutOfRangeError(
                f"'{ELEMENT_KEY}' index {position} is out of range for a list of "
                f"{len(value.items)} item(s) in {source}",
                details={"index": position, "length": len(value.items)},
            )
        return expand(value.items[position], index, counts, source)
    if isinstance(value, dict):
        return {key: expand(item, index, counts, source) for key, item in value.items()}
    if isinstance(value, list):
        return [expand(item, index, counts, source) for item in value]
    return value


def resolve(value: Any, lookup: Callable[[Reference], Any], source: str = "") -> Any:
    """Replace references with concrete values using ``lookup``.

    ``lookup`` may return ``UNKNOWN``; interpolations containing an unknown
    part become ``UNKNOWN`` as a whole.
    """
    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, Splat):
        return [lookup(reference) for reference in value.references]
    if isinstance(value, Interpolation):
        rendered = [resolve(part, lookup, source) for part in value.parts]
        if any(part is UNKNOWN for part in rendered):
            return UNKNOWN
        return "".join(str(part) for part in rendered)
    if isinstance(value, (CountIndex, ElementSelect)):
        raise ConfigurationError(f"Unexpanded expression {value!r} in {source}")
    if isinstance(value, dict):
        return {key: resolve(item, lookup, source) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve(item, lookup, source) for item in value]
    return value


def attribute_lookup(
    values: Mapping[ResourceAddress, Mapping[str, Any]], source: str = ""
) -> Callable[[Reference], Any]:
    """Build a lookup over realized attribute maps keyed by address."""

    def lookup(reference: Reference) -> Any:
        attributes = values.get(reference.target)
        if attributes is None or reference.attribute not in attributes:
            raise UnresolvedReferenceError(
                str(reference), source=source, reason="value is not available"
            )
        return attributes[reference.attribute]

    return lookup


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(item) for item in value.values())
    if isinstance(value, list):
        return any(contains_unknown(item) for item in value)
    return False


def render(value: Any) -> Any:
    """JSON-friendly rendering of a (possibly unresolved) value."""
    if value is UNKNOWN:
        return str(UNKNOWN)
    if isinstance(value, Reference):
        return f"${{{value}}}"
    if isinstance(value, Splat):
        return [render(reference) for reference in value.references]
    if isinstance(value, Interpolation):
        return "".join(
            f"${{{part}}}" if _is_expression(part) else str(part) for part in value.parts
        )
    if isinstance(value, dict):
        return {key: render(item) for key, item in value.items()}
    if isinstance(value, list):
        return [render(item) for item in value]
    return value


def _is_expression(value: Any) -> bool:
    return isinstance(value, (Reference, CountIndex, Interpolation, ElementSelect, Splat))
