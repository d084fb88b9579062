"""Pydantic v2 models for ContentWard policy YAML.

Defines the schema for contentward.yaml: a versioned list of policies, each
with origin/method filters, an ordered list of condition references and the
action(s) to run when any condition fires.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from contentward.protocol import Message


class PolicyOrigin(str, Enum):
    """Which message direction a policy applies to."""

    CLIENT = "client"
    SERVER = "server"
    EITHER = "either"


class ConditionRef(BaseModel):
    """A condition instance within a policy.

    ``instance_id`` is stable for the life of the policy and is recorded on
    every finding so alerts can be traced back to the exact condition that
    fired, even after the policy is edited.
    """

    class_id: str
    instance_id: str
    name: str = ""
    notes: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)


class ActionRef(BaseModel):
    """An action instance within a policy."""

    class_id: str
    instance_id: str
    params: dict[str, Any] = Field(default_factory=dict)


class Policy(BaseModel):
    """A single detection + remediation policy.

    Lower ``severity`` numbers are higher priority when two policies both
    want to replace the same message.
    """

    policy_id: int | str
    name: str
    description: str | None = None
    enabled: bool = True
    severity: int = 5
    origin: PolicyOrigin = PolicyOrigin.EITHER
    methods: list[str] = Field(
        default_factory=list,
        description="JSON-RPC methods this policy applies to. Empty means all methods.",
    )
    conditions: list[ConditionRef] = Field(default_factory=list)
    actions: list[ActionRef] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_instance_ids(self) -> "Policy":
        """Condition and action instance ids must be unique within a policy."""
        seen: set[str] = set()
        for ref in [*self.conditions, *self.actions]:
            if ref.instance_id in seen:
                msg = f"Duplicate instance_id '{ref.instance_id}' in policy '{self.name}'"
                raise ValueError(msg)
            seen.add(ref.instance_id)
        return self

    def applies_to(self, message: Message, method: str | None = None) -> bool:
        """Check the enabled, origin and method filters against a message.

        Args:
            message: The message being filtered.
            method: The method to match against ``methods``.  Responses carry
                    no method of their own, so callers pass the method of the
                    request the response answers.  Defaults to
                    ``message.method``.

        Returns:
            True if the policy should be evaluated for this message.
        """
        if not self.enabled:
            return False
        if self.origin != PolicyOrigin.EITHER and self.origin.value != message.origin.value:
            return False
        if self.methods:
            effective = method if method is not None else message.method
            if effective not in self.methods:
                return False
        return True


class PolicySet(BaseModel):
    """Top-level model for contentward.yaml.

    ``element_configs`` holds element-level configuration keyed by element
    class id.  It is shared by every policy that references that element.
    """

    version: str
    element_configs: dict[str, dict[str, Any]] = Field(default_factory=dict)
    policies: list[Policy] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_policy_ids(self) -> "PolicySet":
        """Policy ids must be unique across the file."""
        seen: set[str] = set()
        for policy in self.policies:
            key = str(policy.policy_id)
            if key in seen:
                msg = f"Duplicate policy_id '{policy.policy_id}'"
                raise ValueError(msg)
            seen.add(key)
        return self

    @property
    def enabled_policies(self) -> list[Policy]:
        return [p for p in self.policies if p.enabled]
