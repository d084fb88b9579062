"""Tests for audit records and the audit logger."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from contentward.audit.logger import AuditLogger
from contentward.audit.records import build_alert_records, build_message_action_records
from contentward.engine.core import PolicyEngine
from contentward.engine.results import EngineResult
from contentward.policy.schema import ActionRef, ConditionRef, Policy
from contentward.protocol import Message, MessageOrigin

MESSAGE = Message(
    origin=MessageOrigin.CLIENT,
    id="req-1",
    method="tools/call",
    params={"note": "mail a@b.com", "other": "mail c@d.org"},
)


def _policy(policy_id: int, action: ActionRef, severity: int = 5) -> Policy:
    return Policy(
        policy_id=policy_id,
        name=f"Policy {policy_id}",
        severity=severity,
        conditions=[
            ConditionRef(
                class_id="regex",
                instance_id=f"emails-{policy_id}",
                name="Emails",
                params={"regex": r"\w@\w\.\w+"},
            )
        ],
        actions=[action],
    )


async def _process(*policies: Policy) -> EngineResult:
    return await PolicyEngine().process(MESSAGE, list(policies))


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class TestRecords:
    @pytest.mark.asyncio
    async def test_alert_per_condition(self) -> None:
        result = await _process(
            _policy(1, ActionRef(class_id="rewrite", instance_id="a1", params={"operation": "redact"}))
        )
        (alert,) = build_alert_records(result, "req-1", MessageOrigin.CLIENT, "2026-01-01T00:00:00")
        assert alert.policy_id == 1
        assert alert.condition.instance_id == "emails-1"
        assert len(alert.findings) == 2
        data = alert.to_dict()
        assert data["origin"] == "client"
        assert data["timestamp"] == "2026-01-01T00:00:00"
        assert data["findings"][0]["location"] == {"field_path": "note", "start": 5, "end": 12}
        assert len(alert.alert_id) == 32

    @pytest.mark.asyncio
    async def test_field_events_carry_applied_offsets(self) -> None:
        result = await _process(
            _policy(1, ActionRef(class_id="rewrite", instance_id="a1", params={"operation": "redact"}))
        )
        alerts = build_alert_records(result, "req-1", MessageOrigin.CLIENT)
        (record,) = build_message_action_records(result, "req-1", MessageOrigin.CLIENT, alerts)

        assert record.severity == 5
        assert record.applied_replacement is None
        assert [e["alert_id"] for e in record.action_events] == [alerts[0].alert_id] * 2
        first = record.action_events[0]["content_modification"]
        assert first["applied"] is True
        assert first["field_path"] == "note"
        assert first["action_instance_id"] == "a1"
        assert first["document_original_start"] is not None

    @pytest.mark.asyncio
    async def test_replacement_recorded_and_field_edits_unapplied(self) -> None:
        result = await _process(
            _policy(1, ActionRef(class_id="rewrite", instance_id="a1", params={"operation": "remove"})),
            _policy(
                2,
                ActionRef(class_id="error", instance_id="a2", params={"code": -32001, "message": "no"}),
                severity=1,
            ),
        )
        alerts = build_alert_records(result, "req-1", MessageOrigin.CLIENT)
        rewrite, error = build_message_action_records(result, "req-1", MessageOrigin.CLIENT, alerts)

        assert all(e["content_modification"]["applied"] is False for e in rewrite.action_events)
        assert rewrite.applied_replacement is None
        assert error.applied_replacement is not None
        assert error.applied_replacement["policy_id"] == 2
        assert error.to_dict()["action"]["class_id"] == "error"


# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------


class TestAuditLogger:
    @pytest.mark.asyncio
    async def test_writes_json_lines(self, tmp_path: Path) -> None:
        result = await _process(
            _policy(1, ActionRef(class_id="rewrite", instance_id="a1", params={"operation": "redact"}))
        )
        alerts = build_alert_records(result, "req-1", MessageOrigin.CLIENT)
        records = build_message_action_records(result, "req-1", MessageOrigin.CLIENT, alerts)

        log_path = tmp_path / "audit.jsonl"
        logger = AuditLogger(log_path=log_path)
        logger.log_alert(alerts[0])
        logger.log_message_action(records[0])
        logger.close()

        entries = [json.loads(line) for line in log_path.read_text().splitlines()]
        assert [e["event"] for e in entries] == ["alert", "message_action"]
        assert entries[0]["alert_id"] == alerts[0].alert_id
        assert entries[1]["action_events"][0]["alert_id"] == alerts[0].alert_id

    def test_filter_error_entry(self, tmp_path: Path) -> None:
        log_path = tmp_path / "audit.jsonl"
        logger = AuditLogger(log_path=log_path)
        logger.log_filter_error(MESSAGE, ValueError("bad payload"))
        logger.close()

        (entry,) = [json.loads(line) for line in log_path.read_text().splitlines()]
        assert entry["event"] == "filter_error"
        assert entry["message_id"] == "req-1"
        assert entry["method"] == "tools/call"
        assert entry["error"] == "bad payload"
        assert "timestamp" in entry

    def test_write_failure_does_not_raise(self, tmp_path: Path) -> None:
        logger = AuditLogger(log_path=tmp_path / "audit.jsonl")
        assert logger._log_file is not None
        logger._log_file.close()

        logger.log_filter_error(MESSAGE, ValueError("first"))
        assert logger._log_file is None
        # Later writes are dropped silently
        logger.log_filter_error(MESSAGE, ValueError("second"))

    def test_stderr_only(self) -> None:
        logger = AuditLogger()
        logger.log_filter_error(MESSAGE, ValueError("no file"))
        logger.close()
