"""Actions: turn condition findings into content modifications.

An action never edits the message itself.  It emits ``ActionEvent`` objects
describing the edit it wants (a field modification or a full message
replacement) and the policy engine reconciles the events of every policy
into a single change.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any

from pydantic import BaseModel, Field, StrictInt, StrictStr, field_validator, model_validator

from contentward.engine.elements import ElementRegistry, PolicyElement
from contentward.engine.models import (
    ActionEvent,
    ElementType,
    FieldModification,
    MessageReplacement,
    ModificationOperation,
)
from contentward.engine.results import ConditionFindings
from contentward.protocol import Message


class Action(PolicyElement):
    """Base class for actions."""

    element_type = ElementType.ACTION

    @abstractmethod
    async def apply(
        self,
        message: Message,
        condition_findings: list[ConditionFindings],
        config: dict[str, Any] | None,
        params: dict[str, Any],
    ) -> list[ActionEvent]:
        """Produce action events for the findings of one policy."""


class RewriteParams(BaseModel):
    """Params for the rewrite action."""

    operation: ModificationOperation = Field(description="Type of modification to apply")
    replacement_text: str | None = Field(
        default=None,
        description="Replacement text, or the redaction pattern for redactWithPattern "
        "(1 character, or 3 characters: start, fill, end)",
    )

    @field_validator("operation", mode="before")
    @classmethod
    def redact_pattern_alias(cls, value: Any) -> Any:
        if value == "redactPattern":
            return ModificationOperation.REDACT_WITH_PATTERN.value
        return value

    @model_validator(mode="after")
    def replacement_text_required(self) -> "RewriteParams":
        if self.operation in (ModificationOperation.REPLACE, ModificationOperation.REDACT_WITH_PATTERN):
            if not self.replacement_text:
                msg = f"replacement_text is required for the {self.operation.value} operation"
                raise ValueError(msg)
        if self.operation == ModificationOperation.REDACT_WITH_PATTERN:
            assert self.replacement_text is not None
            if len(self.replacement_text) not in (1, 3):
                msg = (
                    "Redaction pattern must be 1 character (uniform fill) "
                    "or 3 characters (start, fill, end)"
                )
                raise ValueError(msg)
        return self


class RewriteAction(Action):
    """Redact, remove or replace the text located by findings."""

    class_id = "rewrite"
    name = "Message Modification"
    description = "Replace, redact, or remove matched text"
    params_model = RewriteParams

    async def apply(
        self,
        message: Message,
        condition_findings: list[ConditionFindings],
        config: dict[str, Any] | None,
        params: dict[str, Any],
    ) -> list[ActionEvent]:
        parsed: RewriteParams = self.parse_params(params)

        events: list[ActionEvent] = []
        for condition_finding in condition_findings:
            condition = condition_finding.condition
            for finding in condition_finding.findings:
                # Structural findings have nothing to rewrite
                if finding.location is None:
                    continue
                location = finding.location
                events.append(
                    ActionEvent(
                        details=f"Applied {parsed.operation.value} to {condition.name}: {finding.details}",
                        metadata=finding.metadata,
                        content_modification=FieldModification(
                            field_path=location.field_path,
                            start=location.start,
                            end=location.end,
                            operation=parsed.operation,
                            replacement_text=parsed.replacement_text,
                        ),
                        condition_instance_id=condition.instance_id,
                    )
                )
        return events


class ErrorParams(BaseModel):
    """Params for the error action."""

    code: StrictInt = Field(description="JSON-RPC error code, e.g. -32000")
    message: StrictStr = Field(min_length=1, description="Error message to return")


class ErrorAction(Action):
    """Replace the whole message with a JSON-RPC error response."""

    class_id = "error"
    name = "Return Error"
    description = "Return an MCP error response"
    params_model = ErrorParams

    async def apply(
        self,
        message: Message,
        condition_findings: list[ConditionFindings],
        config: dict[str, Any] | None,
        params: dict[str, Any],
    ) -> list[ActionEvent]:
        parsed: ErrorParams = self.parse_params(params)
        finding_count = sum(len(cf.findings) for cf in condition_findings)
        return [
            ActionEvent(
                details=f"Policy error: {parsed.message}",
                metadata={"finding_count": finding_count},
                content_modification=MessageReplacement(
                    payload={"error": {"code": parsed.code, "message": parsed.message}},
                ),
            )
        ]


ACTIONS: ElementRegistry[Action] = ElementRegistry(ElementType.ACTION)
ACTIONS.register(RewriteAction())
ACTIONS.register(ErrorAction())
