"""Serializable stage entry conditions and the named predicate registry."""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from journey_service.logging_config import get_logger

logger = get_logger(__name__)

_MISSING = object()


class ConditionError(ValueError):
    """Raised when a condition definition cannot be built."""
    pass


def resolve_field(payload: Any, path: str) -> Tuple[bool, Any]:
    """
    Resolve a dotted field path against an event payload.

    Never raises for shape mismatches: a missing key or a non-mapping
    intermediate value resolves to (False, None).

    Example:
        resolve_field({"details": {"page": "recharge"}}, "details.page")
        -> (True, "recharge")
    """
    current = payload
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return False, None
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return False, None
    return True, current


@dataclass
class PredicateDefinition:
    """A named predicate for logic the typed conditions cannot express."""

    name: str
    description: str
    function: Callable[[Dict[str, Any]], bool]


class PredicateRegistry:
    """Registry for named predicates, populated at startup."""

    def __init__(self):
        self._predicates: Dict[str, PredicateDefinition] = {}

    def register(self, name: str, description: str = "") -> Callable:
        """
        Decorator to register a function as a named predicate.

        Example:
            @predicate_registry.register(
                name="large_recharge",
                description="Recharge transaction above 500",
            )
            def large_recharge(payload: dict) -> bool:
                ...
        """

        def decorator(func: Callable) -> Callable:
            if not callable(func):
                raise ValueError(f"Predicate {name} must be callable")

            self._predicates[name] = PredicateDefinition(
                name=name,
                description=description,
                function=func,
            )
            logger.info("Predicate registered", name=name)
            return func

        return decorator

    def get(self, name: str) -> Optional[PredicateDefinition]:
        """Get predicate definition by name."""
        return self._predicates.get(name)

    def get_all(self) -> Dict[str, PredicateDefinition]:
        """Get all registered predicates."""
        return self._predicates.copy()

    def exists(self, name: str) -> bool:
        """Check if predicate exists."""
        return name in self._predicates

    def unregister(self, name: str) -> bool:
        """Unregister a predicate."""
        if name in self._predicates:
            del self._predicates[name]
            logger.info("Predicate unregistered", name=name)
            return True
        return False


# Global registry instance
predicate_registry = PredicateRegistry()


class Condition:
    """Base class for typed conditions. Instances are callable predicates."""

    def __call__(self, payload: Dict[str, Any]) -> bool:
        return self.evaluate(payload)

    def evaluate(self, payload: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class Equals(Condition):
    """True when the field exists and equals the value."""

    field: str
    value: Any

    def evaluate(self, payload: Dict[str, Any]) -> bool:
        found, actual = resolve_field(payload, self.field)
        return found and actual == self.value

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "equals", "field": self.field, "value": self.value}


@dataclass(frozen=True)
class Exists(Condition):
    """True when the field is present and not null."""

    field: str

    def evaluate(self, payload: Dict[str, Any]) -> bool:
        found, actual = resolve_field(payload, self.field)
        return found and actual is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "exists", "field": self.field}


@dataclass(frozen=True)
class AllOf(Condition):
    conditions: Tuple[Condition, ...] = field(default_factory=tuple)

    def evaluate(self, payload: Dict[str, Any]) -> bool:
        return all(c.evaluate(payload) for c in self.conditions)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "all", "conditions": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class AnyOf(Condition):
    conditions: Tuple[Condition, ...] = field(default_factory=tuple)

    def evaluate(self, payload: Dict[str, Any]) -> bool:
        return any(c.evaluate(payload) for c in self.conditions)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "any", "conditions": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class Predicate(Condition):
    """Delegates to a function registered by name in a PredicateRegistry."""

    name: str
    registry: PredicateRegistry = field(
        default=predicate_registry, compare=False, repr=False
    )

    def __post_init__(self) -> None:
        if not self.registry.exists(self.name):
            raise ConditionError(f"Unknown predicate: {self.name}")

    def evaluate(self, payload: Dict[str, Any]) -> bool:
        definition = self.registry.get(self.name)
        if definition is None:
            logger.warning("Predicate no longer registered", name=self.name)
            return False
        return bool(definition.function(payload))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "predicate", "name": self.name}


def _require_field(data: Mapping[str, Any], key: str, kind: str) -> Any:
    if key not in data:
        raise ConditionError(f"'{kind}' condition missing required field: {key}")
    return data[key]


def _parse_children(data: Mapping[str, Any], kind: str, registry: PredicateRegistry) -> List[Condition]:
    children = _require_field(data, "conditions", kind)
    if not isinstance(children, list) or not children:
        raise ConditionError(f"'{kind}' condition requires a non-empty 'conditions' list")
    return [parse_condition(child, registry) for child in children]


def parse_condition(
    data: Mapping[str, Any],
    registry: PredicateRegistry = predicate_registry,
) -> Condition:
    """
    Build a condition from its declarative form.

    Supported forms:
        {"type": "equals", "field": "event", "value": "login"}
        {"type": "exists", "field": "details.page"}
        {"type": "all", "conditions": [...]}
        {"type": "any", "conditions": [...]}
        {"type": "predicate", "name": "large_recharge"}

    Raises:
        ConditionError: If the definition is malformed or names an
            unregistered predicate
    """
    if not isinstance(data, Mapping):
        raise ConditionError("Condition must be a mapping")

    kind = data.get("type")

    if kind == "equals":
        field_path = _require_field(data, "field", kind)
        if not isinstance(field_path, str) or not field_path.strip():
            raise ConditionError("'equals' condition field must be a non-empty string")
        return Equals(field=field_path, value=_require_field(data, "value", kind))

    if kind == "exists":
        field_path = _require_field(data, "field", kind)
        if not isinstance(field_path, str) or not field_path.strip():
            raise ConditionError("'exists' condition field must be a non-empty string")
        return Exists(field=field_path)

    if kind == "all":
        return AllOf(conditions=tuple(_parse_children(data, kind, registry)))

    if kind == "any":
        return AnyOf(conditions=tuple(_parse_children(data, kind, registry)))

    if kind == "predicate":
        name = _require_field(data, "name", kind)
        if not isinstance(name, str) or not name.strip():
            raise ConditionError("'predicate' condition name must be a non-empty string")
        return Predicate(name=name, registry=registry)

    raise ConditionError(f"Unknown condition type: {kind!r}")
