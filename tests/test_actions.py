"""Tests for the rewrite and error actions."""

from __future__ import annotations

import pytest

from contentward.engine.actions import ACTIONS, ErrorAction, RewriteAction
from contentward.engine.elements import ElementValidationError
from contentward.engine.models import (
    FieldModification,
    Finding,
    FindingLocation,
    MessageReplacement,
    ModificationOperation,
)
from contentward.engine.results import ConditionFindings, ConditionInstance
from contentward.protocol import Message, MessageOrigin

MESSAGE = Message(
    origin=MessageOrigin.CLIENT,
    id=1,
    method="tools/call",
    params={"note": "Contact me at a@b.com"},
)


def _condition_findings(*findings: Finding, instance_id: str = "c1") -> ConditionFindings:
    return ConditionFindings(
        condition=ConditionInstance(
            class_id="regex", instance_id=instance_id, name="Emails", params={}
        ),
        findings=list(findings),
    )


LOCATED = Finding(
    details="Regex match found: a@b.com",
    metadata={"regex": "x"},
    is_text_match=True,
    location=FindingLocation("note", 14, 21),
)
STRUCTURAL = Finding(details="Tool description changed")


class TestRewriteAction:
    @pytest.mark.asyncio
    async def test_one_event_per_located_finding(self) -> None:
        events = await RewriteAction().apply(
            MESSAGE,
            [_condition_findings(LOCATED, STRUCTURAL), _condition_findings(LOCATED, instance_id="c2")],
            None,
            {"operation": "redact"},
        )
        assert len(events) == 2
        assert [e.condition_instance_id for e in events] == ["c1", "c2"]

        modification = events[0].content_modification
        assert modification == FieldModification(
            field_path="note",
            start=14,
            end=21,
            operation=ModificationOperation.REDACT,
        )
        assert events[0].details == "Applied redact to Emails: Regex match found: a@b.com"
        assert events[0].metadata == {"regex": "x"}

    @pytest.mark.asyncio
    async def test_no_located_findings_no_events(self) -> None:
        events = await RewriteAction().apply(
            MESSAGE, [_condition_findings(STRUCTURAL)], None, {"operation": "remove"}
        )
        assert events == []

    @pytest.mark.asyncio
    async def test_replace_carries_text(self) -> None:
        events = await RewriteAction().apply(
            MESSAGE,
            [_condition_findings(LOCATED)],
            None,
            {"operation": "replace", "replacement_text": "<email>"},
        )
        assert events[0].content_modification.replacement_text == "<email>"

    @pytest.mark.asyncio
    async def test_redact_pattern_alias(self) -> None:
        events = await RewriteAction().apply(
            MESSAGE,
            [_condition_findings(LOCATED)],
            None,
            {"operation": "redactPattern", "replacement_text": "[*]"},
        )
        assert events[0].content_modification.operation == ModificationOperation.REDACT_WITH_PATTERN

    @pytest.mark.asyncio
    async def test_invalid_params_raise(self) -> None:
        with pytest.raises(ElementValidationError, match="rewrite"):
            await RewriteAction().apply(MESSAGE, [], None, {"operation": "replace"})

    @pytest.mark.parametrize(
        "params",
        [
            {},
            {"operation": "shred"},
            {"operation": "replace"},
            {"operation": "replace", "replacement_text": ""},
            {"operation": "redactWithPattern"},
            {"operation": "redactWithPattern", "replacement_text": "ab"},
            {"operation": "redactWithPattern", "replacement_text": "abcd"},
        ],
    )
    def test_invalid_params(self, params: dict) -> None:
        assert not RewriteAction().validate_params(params).is_valid

    @pytest.mark.parametrize(
        "params",
        [
            {"operation": "remove"},
            {"operation": "redact"},
            {"operation": "redactWithPattern", "replacement_text": "#"},
            {"operation": "redactWithPattern", "replacement_text": "[*]"},
            {"operation": "replace", "replacement_text": "Z"},
        ],
    )
    def test_valid_params(self, params: dict) -> None:
        assert RewriteAction().validate_params(params).is_valid


class TestErrorAction:
    @pytest.mark.asyncio
    async def test_single_replacement(self) -> None:
        events = await ErrorAction().apply(
            MESSAGE,
            [_condition_findings(LOCATED, STRUCTURAL)],
            None,
            {"code": -32001, "message": "blocked"},
        )
        assert len(events) == 1
        assert events[0].content_modification == MessageReplacement(
            payload={"error": {"code": -32001, "message": "blocked"}}
        )
        assert events[0].details == "Policy error: blocked"
        assert events[0].metadata == {"finding_count": 2}

    @pytest.mark.parametrize(
        "params",
        [
            {},
            {"code": -32001},
            {"message": "blocked"},
            {"code": "-32001", "message": "blocked"},
            {"code": -32001, "message": ""},
        ],
    )
    def test_invalid_params(self, params: dict) -> None:
        assert not ErrorAction().validate_params(params).is_valid


class TestActionRegistry:
    def test_available_in_registration_order(self) -> None:
        assert [a.class_id for a in ACTIONS.available()] == ["rewrite", "error"]

    def test_wrong_element_type_rejected(self) -> None:
        from contentward.engine.conditions import TextMatchCondition

        with pytest.raises(ValueError, match="registry"):
            ACTIONS.register(TextMatchCondition())  # type: ignore[arg-type]
