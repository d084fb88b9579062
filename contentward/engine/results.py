"""Result types returned by the policy engine.

Findings are grouped by policy and then by condition instance; action
events are grouped by policy and then by action instance.  Each group
records a snapshot of the condition/action reference as it was when the
message was evaluated, since the policy may be edited later.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from contentward.engine.models import (
    ActionEvent,
    AppliedFieldModification,
    AppliedMessageReplacement,
    Finding,
)
from contentward.policy.schema import ActionRef, ConditionRef, Policy
from contentward.protocol import Message


@dataclass(frozen=True)
class ConditionInstance:
    """Snapshot of the condition reference that produced findings."""

    class_id: str
    instance_id: str
    name: str
    params: dict[str, Any]

    @classmethod
    def from_ref(cls, ref: ConditionRef) -> ConditionInstance:
        return cls(
            class_id=ref.class_id,
            instance_id=ref.instance_id,
            name=ref.name or ref.class_id,
            params=dict(ref.params),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "class_id": self.class_id,
            "instance_id": self.instance_id,
            "name": self.name,
            "params": self.params,
        }


@dataclass(frozen=True)
class ActionInstance:
    """Snapshot of the action reference that produced events."""

    class_id: str
    instance_id: str
    params: dict[str, Any]

    @classmethod
    def from_ref(cls, ref: ActionRef) -> ActionInstance:
        return cls(class_id=ref.class_id, instance_id=ref.instance_id, params=dict(ref.params))

    def to_dict(self) -> dict[str, Any]:
        return {"class_id": self.class_id, "instance_id": self.instance_id, "params": self.params}


@dataclass
class ConditionFindings:
    """Findings produced by one condition instance."""

    condition: ConditionInstance
    findings: list[Finding] = field(default_factory=list)


@dataclass
class PolicyFindings:
    """All findings for one policy."""

    policy: Policy
    condition_findings: list[ConditionFindings] = field(default_factory=list)

    @property
    def finding_count(self) -> int:
        return sum(len(cf.findings) for cf in self.condition_findings)


@dataclass
class ActionResults:
    """Events produced by one action instance."""

    action: ActionInstance
    action_events: list[ActionEvent] = field(default_factory=list)


@dataclass
class PolicyActions:
    """All action results for one policy."""

    policy: Policy
    action_results: list[ActionResults] = field(default_factory=list)

    @property
    def severity(self) -> int:
        return self.policy.severity


@dataclass
class EngineResult:
    """Outcome of running a set of policies over one message.

    Attributes:
        modified_message: The message to forward (the original message if
            nothing changed).
        policy_findings: Findings per policy, in policy order.
        policy_actions: Action events per policy, in policy order.
        applied_modifications: Field modifications applied during
            reconciliation, with their audit offsets.
        applied_replacement: The message replacement that won
            reconciliation, if any.
    """

    modified_message: Message
    policy_findings: list[PolicyFindings] = field(default_factory=list)
    policy_actions: list[PolicyActions] = field(default_factory=list)
    applied_modifications: list[AppliedFieldModification] = field(default_factory=list)
    applied_replacement: AppliedMessageReplacement | None = None

    @property
    def has_findings(self) -> bool:
        return bool(self.policy_findings)

    @property
    def is_modified(self) -> bool:
        return self.applied_replacement is not None or any(
            m.applied for m in self.applied_modifications
        )
