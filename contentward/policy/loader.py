"""YAML policy loading and validation.

Loads contentward.yaml files, validates them against the pydantic schema
and against the params/config contract of every referenced condition and
action, and returns structured policy objects.  Errors are always
actionable.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from contentward.engine.actions import ACTIONS, Action
from contentward.engine.conditions import CONDITIONS, Condition
from contentward.engine.elements import ElementRegistry
from contentward.policy.schema import PolicySet


class PolicyValidationError(Exception):
    """Raised when a policy YAML file is malformed or fails validation.

    Attributes:
        path: The path to the policy file that failed validation.
        details: Structured error details.
    """

    def __init__(self, path: Path, details: list[dict[str, Any]], message: str) -> None:
        self.path = path
        self.details = details
        super().__init__(message)


def load_policies(
    path: Path,
    conditions: ElementRegistry[Condition] = CONDITIONS,
    actions: ElementRegistry[Action] = ACTIONS,
) -> PolicySet:
    """Load and validate a ContentWard policy file.

    Args:
        path: Path to the contentward.yaml policy file.
        conditions: Registry that condition class ids must resolve in.
        actions: Registry that action class ids must resolve in.

    Returns:
        A validated PolicySet.

    Raises:
        FileNotFoundError: If the policy file doesn't exist (with actionable message).
        PolicyValidationError: If the YAML is malformed, fails schema
            validation, or references unknown or misconfigured elements.
    """
    if not path.exists():
        raise FileNotFoundError(
            f"Policy file not found at {path}. "
            f"Create one (see `contentward elements` for the available conditions and actions) "
            f"or specify a different path."
        )

    raw_text = path.read_text(encoding="utf-8")

    try:
        raw_data = yaml.safe_load(raw_text)
    except yaml.YAMLError as e:
        raise PolicyValidationError(
            path=path,
            details=[{"type": "yaml_parse_error", "msg": str(e)}],
            message=f"Failed to parse YAML in {path}: {e}",
        ) from e

    if raw_data is None:
        raise PolicyValidationError(
            path=path,
            details=[{"type": "empty_file"}],
            message=f"Policy file {path} is empty. It must contain at least a 'version' field.",
        )

    if not isinstance(raw_data, dict):
        raise PolicyValidationError(
            path=path,
            details=[{"type": "not_a_mapping", "got": type(raw_data).__name__}],
            message=(
                f"Policy file {path} must contain a YAML mapping (key-value pairs) "
                f"at the top level, got {type(raw_data).__name__}."
            ),
        )

    try:
        policy_set = PolicySet.model_validate(raw_data)
    except ValidationError as e:
        error_details = e.errors()
        error_lines = []
        for err in error_details:
            loc = " → ".join(str(part) for part in err["loc"])
            error_lines.append(f"  - {loc}: {err['msg']}")

        summary = "\n".join(error_lines)
        raise PolicyValidationError(
            path=path,
            details=error_details,
            message=f"Policy validation failed for {path}:\n{summary}",
        ) from e

    element_errors = validate_elements(policy_set, conditions, actions)
    if element_errors:
        summary = "\n".join(f"  - {err['loc']}: {err['msg']}" for err in element_errors)
        raise PolicyValidationError(
            path=path,
            details=element_errors,
            message=f"Policy validation failed for {path}:\n{summary}",
        )

    return policy_set


def validate_elements(
    policy_set: PolicySet,
    conditions: ElementRegistry[Condition] = CONDITIONS,
    actions: ElementRegistry[Action] = ACTIONS,
) -> list[dict[str, Any]]:
    """Check every element reference against its registry.

    Returns:
        One ``{"type", "loc", "msg"}`` entry per problem; empty if the
        policy set is valid.
    """
    errors: list[dict[str, Any]] = []

    for class_id, config in policy_set.element_configs.items():
        element = conditions.get(class_id) or actions.get(class_id)
        loc = f"element_configs → {class_id}"
        if element is None:
            errors.append({"type": "unknown_element", "loc": loc, "msg": f"Unknown element '{class_id}'"})
            continue
        result = element.validate_config(config)
        if not result.is_valid:
            errors.append({"type": "invalid_config", "loc": loc, "msg": result.error})

    for p_index, policy in enumerate(policy_set.policies):
        refs: list[tuple[str, Any, ElementRegistry[Any]]] = [
            ("conditions", ref, conditions) for ref in policy.conditions
        ]
        refs.extend(("actions", ref, actions) for ref in policy.actions)
        for kind, ref, registry in refs:
            loc = f"policies → {p_index} → {kind} → {ref.instance_id}"
            element = registry.get(ref.class_id)
            if element is None:
                known = ", ".join(e.class_id for e in registry.available())
                errors.append(
                    {
                        "type": "unknown_element",
                        "loc": loc,
                        "msg": f"Unknown {kind[:-1]} '{ref.class_id}' (available: {known})",
                    }
                )
                continue
            result = element.validate_params(ref.params)
            if not result.is_valid:
                errors.append({"type": "invalid_params", "loc": loc, "msg": result.error})

    return errors
