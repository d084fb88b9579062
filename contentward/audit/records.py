"""Audit records derived from policy engine results.

Two record kinds are persisted for every filtered message:

  - AlertRecord: one per condition instance that produced findings.
  - MessageActionRecord: one per action instance that ran, carrying its
    action events.  Events that came from a specific condition instance
    are linked to that condition's alert by ``alert_id``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from contentward.engine.models import FieldModification, Finding
from contentward.engine.results import ActionInstance, ConditionInstance, EngineResult
from contentward.protocol import MessageOrigin


@dataclass
class AlertRecord:
    """Findings from one condition instance for one message."""

    message_id: str
    policy_id: int | str
    origin: MessageOrigin
    condition: ConditionInstance
    findings: list[Finding]
    timestamp: str
    alert_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "message_id": self.message_id,
            "policy_id": self.policy_id,
            "origin": self.origin.value,
            "condition": self.condition.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
            "timestamp": self.timestamp,
        }


@dataclass
class MessageActionRecord:
    """What one action instance did to one message.

    Attributes:
        action_events: Serialized action events.  Each carries ``alert_id``
            when it can be traced to a condition instance, and field
            modifications carry their applied audit offsets.
        applied_replacement: Set on the record of the action whose message
            replacement won reconciliation.
    """

    message_id: str
    policy_id: int | str
    origin: MessageOrigin
    severity: int
    action: ActionInstance
    action_events: list[dict[str, Any]]
    timestamp: str
    applied_replacement: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "policy_id": self.policy_id,
            "origin": self.origin.value,
            "severity": self.severity,
            "action": self.action.to_dict(),
            "action_events": self.action_events,
            "applied_replacement": self.applied_replacement,
            "timestamp": self.timestamp,
        }


def build_alert_records(
    result: EngineResult,
    message_id: str,
    origin: MessageOrigin,
    timestamp: str | None = None,
) -> list[AlertRecord]:
    """Create one alert per condition instance with findings."""
    timestamp = timestamp or now_iso()
    alerts: list[AlertRecord] = []
    for policy_findings in result.policy_findings:
        for condition_findings in policy_findings.condition_findings:
            if not condition_findings.findings:
                continue
            alerts.append(
                AlertRecord(
                    message_id=message_id,
                    policy_id=policy_findings.policy.policy_id,
                    origin=origin,
                    condition=condition_findings.condition,
                    findings=list(condition_findings.findings),
                    timestamp=timestamp,
                )
            )
    return alerts


def build_message_action_records(
    result: EngineResult,
    message_id: str,
    origin: MessageOrigin,
    alerts: list[AlertRecord],
    timestamp: str | None = None,
) -> list[MessageActionRecord]:
    """Create one record per action instance, linking events to alerts.

    Field modification events are annotated with the outcome of
    reconciliation (``applied`` and the audit offsets).
    """
    timestamp = timestamp or now_iso()
    alert_ids = {
        (str(alert.policy_id), alert.condition.instance_id): alert.alert_id for alert in alerts
    }

    # Reconciliation reports field modifications in event order
    applied_iter = iter(result.applied_modifications)
    winner = result.applied_replacement

    records: list[MessageActionRecord] = []
    for policy_actions in result.policy_actions:
        policy = policy_actions.policy
        for action_result in policy_actions.action_results:
            events: list[dict[str, Any]] = []
            replacement: dict[str, Any] | None = None
            for event in action_result.action_events:
                data = event.to_dict()
                if event.condition_instance_id is not None:
                    data["alert_id"] = alert_ids.get((str(policy.policy_id), event.condition_instance_id))
                if isinstance(event.content_modification, FieldModification):
                    applied = next(applied_iter, None) if winner is None else None
                    if applied is not None:
                        data["content_modification"] = applied.to_dict()
                    else:
                        data["content_modification"]["applied"] = False
                if winner is not None and winner.event is event:
                    replacement = winner.to_dict()
                events.append(data)
            records.append(
                MessageActionRecord(
                    message_id=message_id,
                    policy_id=policy.policy_id,
                    origin=origin,
                    severity=policy.severity,
                    action=action_result.action,
                    action_events=events,
                    timestamp=timestamp,
                    applied_replacement=replacement,
                )
            )
    return records


def now_iso() -> str:
    """Return the current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()
