"""Policy element base class and registries.

Conditions and actions are both *policy elements*: stateless singletons
with a stable class id, a display name, and a params model that every
policy's params must satisfy before the element is invoked.  Params models
are pydantic models, so the JSON schema shown to policy authors and the
validator that enforces it can never drift apart.
"""

from __future__ import annotations

from abc import ABC
from typing import Any, ClassVar, Generic, Iterator, TypeVar

from pydantic import BaseModel, ValidationError

from contentward.engine.models import ElementType, ValidationResult


class ElementValidationError(Exception):
    """Raised when an element is invoked with params that fail validation.

    Policies are validated when they are loaded, so reaching this at
    evaluation time means a caller bypassed the loader.

    Attributes:
        class_id: The element class id.
        error: The validation error message.
    """

    def __init__(self, class_id: str, error: str) -> None:
        self.class_id = class_id
        self.error = error
        super().__init__(f"Invalid configuration for policy element '{class_id}': {error}")


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def _validate_model(model: type[BaseModel], data: Any) -> ValidationResult:
    if not isinstance(data, dict):
        return ValidationResult.fail(f"Expected a mapping, got {type(data).__name__}")
    try:
        model.model_validate(data)
    except ValidationError as e:
        return ValidationResult.fail(_format_validation_error(e))
    return ValidationResult.ok()


class PolicyElement(ABC):
    """Common identity and configuration contract for conditions and actions.

    Subclasses set the class attributes and a ``params_model``.  Element-level
    config (shared by every policy using the element) is optional and
    described by ``config_model``.
    """

    element_type: ClassVar[ElementType]
    class_id: ClassVar[str]
    name: ClassVar[str]
    description: ClassVar[str]
    params_model: ClassVar[type[BaseModel]]
    config_model: ClassVar[type[BaseModel] | None] = None

    @property
    def params_schema(self) -> dict[str, Any]:
        """JSON schema for per-policy params."""
        return self.params_model.model_json_schema()

    @property
    def config_schema(self) -> dict[str, Any] | None:
        """JSON schema for element-level config, or None if not configurable."""
        if self.config_model is None:
            return None
        return self.config_model.model_json_schema()

    def validate_params(self, params: Any) -> ValidationResult:
        """Validate per-policy params without raising."""
        return _validate_model(self.params_model, params)

    def validate_config(self, config: Any) -> ValidationResult:
        """Validate element-level config without raising.

        Elements with no config model accept only an empty/absent config.
        """
        if self.config_model is None:
            if config:
                return ValidationResult.fail(f"Element '{self.class_id}' takes no config")
            return ValidationResult.ok()
        return _validate_model(self.config_model, config or {})

    def parse_params(self, params: Any) -> Any:
        """Return params as a validated ``params_model`` instance.

        Raises:
            ElementValidationError: If the params are invalid.
        """
        result = self.validate_params(params)
        if not result.is_valid:
            raise ElementValidationError(self.class_id, result.error or "invalid params")
        return self.params_model.model_validate(params)

    def describe(self) -> dict[str, Any]:
        """Metadata for listing available elements."""
        return {
            "element_type": self.element_type.value,
            "class_id": self.class_id,
            "name": self.name,
            "description": self.description,
            "params_schema": self.params_schema,
            "config_schema": self.config_schema,
        }


E = TypeVar("E", bound=PolicyElement)


class ElementRegistry(Generic[E]):
    """Append-only map from class id to element singleton.

    Registries are populated at import time and only read afterwards.
    Lookups of unknown ids return None so callers can skip references to
    elements that no longer exist.
    """

    def __init__(self, element_type: ElementType) -> None:
        self._element_type = element_type
        self._elements: dict[str, E] = {}

    def register(self, element: E) -> E:
        """Add an element.

        Raises:
            ValueError: If the element is of the wrong type or its class id
                is already registered.
        """
        if element.element_type != self._element_type:
            msg = (
                f"Cannot register {element.element_type.value} '{element.class_id}' "
                f"in the {self._element_type.value} registry"
            )
            raise ValueError(msg)
        if element.class_id in self._elements:
            raise ValueError(f"Policy element '{element.class_id}' is already registered")
        self._elements[element.class_id] = element
        return element

    def get(self, class_id: str) -> E | None:
        return self._elements.get(class_id)

    def available(self) -> list[E]:
        """All registered elements, in registration order."""
        return list(self._elements.values())

    def __contains__(self, class_id: object) -> bool:
        return class_id in self._elements

    def __iter__(self) -> Iterator[E]:
        return iter(self._elements.values())

    def __len__(self) -> int:
        return len(self._elements)
