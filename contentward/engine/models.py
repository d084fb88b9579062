"""Value types shared by conditions, actions and the policy engine.

Pure data structures.  Findings, action events and content modifications
are created per evaluation and never shared between messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ElementType(str, Enum):
    """Kind of pluggable policy element."""

    CONDITION = "condition"
    ACTION = "action"


class ModificationOperation(str, Enum):
    """Text edit applied to a located span of a string field.

    REDACT:              overwrite with ``X`` (same length).
    REDACT_WITH_PATTERN: overwrite using a 1-char or 3-char pattern (same length).
    REMOVE:              delete the span.
    REPLACE:             substitute the span with replacement text.
    """

    REMOVE = "remove"
    REDACT = "redact"
    REDACT_WITH_PATTERN = "redactWithPattern"
    REPLACE = "replace"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating element params or config."""

    is_valid: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(is_valid=True)

    @classmethod
    def fail(cls, error: str) -> ValidationResult:
        return cls(is_valid=False, error=error)


@dataclass(frozen=True)
class PolicyContext:
    """Routing identifiers supplied by the caller of the engine."""

    server_id: str | None = None
    session_id: str | None = None
    method: str | None = None


@dataclass(frozen=True)
class FindingLocation:
    """A span within the string value of one payload field.

    Attributes:
        field_path: Path into the payload, e.g. ``arguments.items[0].note``.
        start: Start character offset within the field's string value.
        end: End character offset (exclusive).
    """

    field_path: str
    start: int
    end: int

    def to_dict(self) -> dict[str, Any]:
        return {"field_path": self.field_path, "start": self.start, "end": self.end}


@dataclass(frozen=True)
class Finding:
    """Evidence that a condition matched.

    Attributes:
        details: Human-readable description of the match.
        metadata: Condition-specific data.
        is_text_match: True when the finding is a literal span suitable
            for text-level rewriting.
        location: Where the span is, if the condition identified one.
    """

    details: str
    metadata: dict[str, Any] | None = None
    is_text_match: bool = False
    location: FindingLocation | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "details": self.details,
            "metadata": self.metadata,
            "is_text_match": self.is_text_match,
            "location": self.location.to_dict() if self.location else None,
        }


@dataclass(frozen=True)
class FieldModification:
    """A typed edit against one span of one string field.

    ``start`` and ``end`` locate the span in the field value of the document
    version the modification was computed against.
    """

    field_path: str
    start: int
    end: int
    operation: ModificationOperation
    replacement_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "field",
            "field_path": self.field_path,
            "start": self.start,
            "end": self.end,
            "operation": self.operation.value,
            "replacement_text": self.replacement_text,
        }


@dataclass(frozen=True)
class MessageReplacement:
    """A synthetic payload that replaces the whole message."""

    payload: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": "message", "payload": self.payload}


ContentModification = Union[FieldModification, MessageReplacement]


@dataclass(frozen=True)
class ActionEvent:
    """The effect an action wants applied to a message.

    Attributes:
        details: Human-readable description of the effect.
        metadata: Action-specific data.
        content_modification: The edit or replacement to apply, if any.
        condition_instance_id: The condition instance whose finding
            produced this event, when there is exactly one.
    """

    details: str
    metadata: dict[str, Any] | None = None
    content_modification: ContentModification | None = None
    condition_instance_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "details": self.details,
            "metadata": self.metadata,
            "content_modification": (
                self.content_modification.to_dict() if self.content_modification else None
            ),
            "condition_instance_id": self.condition_instance_id,
        }


@dataclass
class AppliedFieldModification:
    """A FieldModification annotated with where it landed.

    Produced by the field modification engine, never by callers.

    Attributes:
        modification: The requested edit.
        applied: Whether the edit was applied.  False when its field no
            longer resolves to a string or its span is out of range.
        result_start: Start of the edited span in the new field value.
        result_end: End of the edited span in the new field value.
        document_original_start: Absolute offset of the span in the
            original document text.
        document_original_end: See ``document_original_start``.
        document_result_start: Absolute offset of the edited span in the
            resulting document text.
        document_result_end: See ``document_result_start``.
        policy_id: Owning policy, filled in by the policy engine.
        action_instance_id: Owning action instance, filled in by the engine.
        condition_instance_id: Condition instance that located the span.
    """

    modification: FieldModification
    applied: bool = False
    result_start: int = 0
    result_end: int = 0
    document_original_start: int | None = None
    document_original_end: int | None = None
    document_result_start: int | None = None
    document_result_end: int | None = None
    policy_id: int | str | None = None
    action_instance_id: str | None = None
    condition_instance_id: str | None = None

    @classmethod
    def from_modification(cls, modification: FieldModification) -> AppliedFieldModification:
        return cls(
            modification=modification,
            result_start=modification.start,
            result_end=modification.end,
        )

    @property
    def field_path(self) -> str:
        return self.modification.field_path

    @property
    def start(self) -> int:
        return self.modification.start

    @property
    def end(self) -> int:
        return self.modification.end

    @property
    def operation(self) -> ModificationOperation:
        return self.modification.operation

    @property
    def replacement_text(self) -> str:
        return self.modification.replacement_text or ""

    def to_dict(self) -> dict[str, Any]:
        data = self.modification.to_dict()
        data.update(
            {
                "applied": self.applied,
                "result_start": self.result_start,
                "result_end": self.result_end,
                "document_original_start": self.document_original_start,
                "document_original_end": self.document_original_end,
                "document_result_start": self.document_result_start,
                "document_result_end": self.document_result_end,
                "policy_id": self.policy_id,
                "action_instance_id": self.action_instance_id,
                "condition_instance_id": self.condition_instance_id,
            }
        )
        return data


@dataclass(frozen=True)
class AppliedMessageReplacement:
    """The message replacement chosen during reconciliation."""

    event: ActionEvent
    policy_id: int | str
    action_class_id: str
    action_instance_id: str
    severity: int

    @property
    def payload(self) -> dict[str, Any]:
        modification = self.event.content_modification
        assert isinstance(modification, MessageReplacement)
        return modification.payload

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "policy_id": self.policy_id,
            "action_class_id": self.action_class_id,
            "action_instance_id": self.action_instance_id,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class ResolvedFinding:
    """A located finding mapped to absolute offsets in a document."""

    finding: Finding
    resolved_start: int
    resolved_end: int


@dataclass
class FieldModificationResult:
    """Output of applying field modifications to a document.

    Attributes:
        result_text: The edited document text.
        applied_modifications: One entry per requested modification, in
            request order.
    """

    result_text: str
    applied_modifications: list[AppliedFieldModification] = field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return sum(1 for m in self.applied_modifications if m.applied)
