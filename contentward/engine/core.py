"""Policy evaluation engine.

Runs a list of policies over one message in three phases:

  1. Detection: each policy's conditions are evaluated in order and their
     findings collected.
  2. Remediation: every policy with findings hands the union of its
     findings to each of its actions, which emit action events.
  3. Reconciliation: the events of all policies are merged into at most
     one net change to the message.

Reconciliation rules:
  - If any event carries a MessageReplacement, the one from the policy
    with the lowest severity wins.  On a severity tie an ``error`` action
    beats any other action; after that the first one encountered wins.
    Field modifications are discarded.
  - Otherwise all field modifications are applied together to the
    pretty-printed payload by the field modification engine.
  - Otherwise the message passes through unchanged.
"""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.markup import escape

from contentward.engine.actions import ACTIONS, Action
from contentward.engine.conditions import CONDITIONS, Condition
from contentward.engine.elements import ElementRegistry, ElementValidationError, PolicyElement
from contentward.engine.models import (
    AppliedFieldModification,
    AppliedMessageReplacement,
    FieldModification,
    MessageReplacement,
    PolicyContext,
)
from contentward.engine.results import (
    ActionInstance,
    ActionResults,
    ConditionFindings,
    ConditionInstance,
    EngineResult,
    PolicyActions,
    PolicyFindings,
)
from contentward.modify.fields import apply_field_modifications
from contentward.policy.schema import Policy
from contentward.protocol import Message

_console = Console(stderr=True)

# Action class whose replacements win severity ties
ERROR_ACTION_CLASS_ID = "error"


def payload_document(message: Message) -> str:
    """Render the payload content policies read as the text field edits run against."""
    return json.dumps(message.content, indent=2, ensure_ascii=False)


class PolicyEngine:
    """Evaluates messages against content policies.

    The engine holds no per-message state; one instance can process any
    number of messages concurrently.

    Args:
        conditions: Registry used to resolve condition class ids.
        actions: Registry used to resolve action class ids.
        element_configs: Element-level config keyed by class id.
    """

    def __init__(
        self,
        conditions: ElementRegistry[Condition] = CONDITIONS,
        actions: ElementRegistry[Action] = ACTIONS,
        element_configs: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self._conditions = conditions
        self._actions = actions
        self._element_configs = dict(element_configs or {})

    async def process(
        self,
        message: Message,
        policies: list[Policy],
        context: PolicyContext | None = None,
    ) -> EngineResult:
        """Run ``policies`` over ``message``.

        Callers pre-filter policies by origin and method; the engine only
        skips disabled ones.

        Args:
            message: The message to evaluate.  Never mutated.
            policies: Policies to run, in priority-independent order.
            context: Routing identifiers passed through to conditions.

        Returns:
            The findings, action events and the reconciled message.

        Raises:
            ElementValidationError: If a policy references an element with
                params or config that fail validation.
            PayloadParseError: If field modifications cannot be applied.
        """
        policy_findings = await self.detect(message, policies, context)
        policy_actions = await self.remediate(message, policy_findings)
        result = self.reconcile(message, policy_actions)
        result.policy_findings = policy_findings
        return result

    async def detect(
        self,
        message: Message,
        policies: list[Policy],
        context: PolicyContext | None = None,
    ) -> list[PolicyFindings]:
        """Evaluate every enabled policy's conditions.

        Conditions and policies with no findings are left out.
        """
        results: list[PolicyFindings] = []
        for policy in policies:
            if not policy.enabled:
                continue
            condition_findings: list[ConditionFindings] = []
            for ref in policy.conditions:
                condition = self._conditions.get(ref.class_id)
                if condition is None:
                    _warn_unknown("condition", ref.class_id, policy)
                    continue
                config = self._checked_config(condition)
                _check_params(condition, ref.params)
                findings = await condition.evaluate(message, config, ref.params, context)
                if findings:
                    condition_findings.append(
                        ConditionFindings(ConditionInstance.from_ref(ref), list(findings))
                    )
            if condition_findings:
                results.append(PolicyFindings(policy, condition_findings))
        return results

    async def remediate(
        self,
        message: Message,
        policy_findings: list[PolicyFindings],
    ) -> list[PolicyActions]:
        """Invoke each policy's actions with that policy's findings."""
        results: list[PolicyActions] = []
        for findings in policy_findings:
            policy = findings.policy
            if not policy.actions:
                continue
            action_results: list[ActionResults] = []
            for ref in policy.actions:
                action = self._actions.get(ref.class_id)
                if action is None:
                    _warn_unknown("action", ref.class_id, policy)
                    continue
                config = self._checked_config(action)
                _check_params(action, ref.params)
                events = await action.apply(message, findings.condition_findings, config, ref.params)
                action_results.append(ActionResults(ActionInstance.from_ref(ref), list(events)))
            if action_results:
                results.append(PolicyActions(policy, action_results))
        return results

    def reconcile(self, message: Message, policy_actions: list[PolicyActions]) -> EngineResult:
        """Merge the events of every policy into one net change.

        Returns:
            An EngineResult with ``policy_actions``, the modified message and
            the applied replacement or field modifications filled in.
        """
        replacement = select_replacement(policy_actions)
        if replacement is not None:
            return EngineResult(
                modified_message=message.with_replacement(replacement.payload),
                policy_actions=policy_actions,
                applied_replacement=replacement,
            )

        modifications: list[FieldModification] = []
        owners: list[tuple[Policy, ActionInstance, str | None]] = []
        for actions in policy_actions:
            for action_result in actions.action_results:
                for event in action_result.action_events:
                    if isinstance(event.content_modification, FieldModification):
                        modifications.append(event.content_modification)
                        owners.append(
                            (actions.policy, action_result.action, event.condition_instance_id)
                        )

        if not modifications:
            return EngineResult(modified_message=message, policy_actions=policy_actions)

        document = payload_document(message)
        outcome = apply_field_modifications(document, modifications)
        applied: list[AppliedFieldModification] = outcome.applied_modifications
        for mod, (policy, action, condition_instance_id) in zip(applied, owners):
            mod.policy_id = policy.policy_id
            mod.action_instance_id = action.instance_id
            mod.condition_instance_id = condition_instance_id

        modified = message
        if outcome.result_text != document:
            modified = message.with_payload(message.content_key, json.loads(outcome.result_text))
        return EngineResult(
            modified_message=modified,
            policy_actions=policy_actions,
            applied_modifications=applied,
        )

    def _checked_config(self, element: PolicyElement) -> dict[str, Any] | None:
        config = self._element_configs.get(element.class_id)
        result = element.validate_config(config)
        if not result.is_valid:
            raise ElementValidationError(element.class_id, result.error or "invalid config")
        return config


def select_replacement(policy_actions: list[PolicyActions]) -> AppliedMessageReplacement | None:
    """Pick the winning message replacement, if any event carries one."""
    best: AppliedMessageReplacement | None = None
    for actions in policy_actions:
        for action_result in actions.action_results:
            for event in action_result.action_events:
                if not isinstance(event.content_modification, MessageReplacement):
                    continue
                candidate = AppliedMessageReplacement(
                    event=event,
                    policy_id=actions.policy.policy_id,
                    action_class_id=action_result.action.class_id,
                    action_instance_id=action_result.action.instance_id,
                    severity=actions.severity,
                )
                if best is None or _outranks(candidate, best):
                    best = candidate
    return best


def _outranks(candidate: AppliedMessageReplacement, best: AppliedMessageReplacement) -> bool:
    if candidate.severity != best.severity:
        return candidate.severity < best.severity
    return (
        candidate.action_class_id == ERROR_ACTION_CLASS_ID
        and best.action_class_id != ERROR_ACTION_CLASS_ID
    )


def _check_params(element: PolicyElement, params: dict[str, Any]) -> None:
    result = element.validate_params(params)
    if not result.is_valid:
        raise ElementValidationError(element.class_id, result.error or "invalid params")


def _warn_unknown(kind: str, class_id: str, policy: Policy) -> None:
    _console.print(
        f"[#ffcc00]Warning:[/#ffcc00] unknown {kind} '{escape(class_id)}' in policy "
        f"'{escape(policy.name)}'; skipping",
        highlight=False,
    )
