"""Tests for the message filter service."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from contentward.audit.logger import AuditLogger
from contentward.engine.core import PolicyEngine
from contentward.engine.models import PolicyContext
from contentward.filter import MessageFilter
from contentward.modify.jsonc import PayloadParseError
from contentward.policy.loader import load_policies
from contentward.protocol import ErrorData, Message, MessageOrigin, parse_message_line
from tests.fixtures.mcp_messages import (
    CANCEL_REQUEST_3,
    INITIALIZED_NOTIFICATION,
    NAN_ARGUMENT_REQUEST,
    TOOLS_CALL_CLEAN,
    TOOLS_CALL_PAYMENT,
    TOOLS_CALL_RESPONSE_SECRET,
)

FIXTURES = Path(__file__).parent / "fixtures"
PAYMENT_REQUEST = (FIXTURES / "payment_request.json").read_bytes()


class _BrokenEngine(PolicyEngine):
    async def process(self, message, policies, context=None):  # type: ignore[override]
        raise PayloadParseError("Unexpected character '?'", 12)


@pytest.fixture
def message_filter() -> MessageFilter:
    return MessageFilter(load_policies(FIXTURES / "content_policy.yaml"))


class TestMessageFilter:
    @pytest.mark.asyncio
    async def test_redacts_request(self, message_filter: MessageFilter) -> None:
        message = parse_message_line("client", PAYMENT_REQUEST)
        result = await message_filter.filter(message)

        note = result.message.params["arguments"]["note"]
        assert note == "card [" + "*" * 14 + "], receipt to XXXXXXX"
        assert result.is_modified
        assert result.error is None
        assert [a.condition.instance_id for a in result.alerts] == ["emails", "cards"]
        assert [r.action.instance_id for r in result.message_actions] == [
            "redact-emails",
            "mask-cards",
        ]

    @pytest.mark.asyncio
    async def test_events_linked_to_alerts(self, message_filter: MessageFilter) -> None:
        message = parse_message_line("client", PAYMENT_REQUEST)
        result = await message_filter.filter(message)

        alert_ids = {a.condition.instance_id: a.alert_id for a in result.alerts}
        (email_event,) = result.message_actions[0].action_events
        (card_event,) = result.message_actions[1].action_events
        assert email_event["alert_id"] == alert_ids["emails"]
        assert card_event["alert_id"] == alert_ids["cards"]
        assert email_event["content_modification"]["applied"] is True
        assert email_event["content_modification"]["policy_id"] == 1

    @pytest.mark.asyncio
    async def test_message_id_is_correlation_id(self, message_filter: MessageFilter) -> None:
        result = await message_filter.filter(parse_message_line("client", PAYMENT_REQUEST))
        assert {a.message_id for a in result.alerts} == {"3"}

    @pytest.mark.asyncio
    async def test_response_matched_by_request_method(self, message_filter: MessageFilter) -> None:
        context = PolicyContext(server_id="payments", session_id="s1")
        await message_filter.filter(parse_message_line("client", TOOLS_CALL_PAYMENT), context)

        response = parse_message_line("server", TOOLS_CALL_RESPONSE_SECRET)
        assert message_filter.request_method(response, "s1") == "tools/call"

        result = await message_filter.filter(response, context)
        assert result.message.error == ErrorData(code=-32001, message="Response blocked by policy")
        assert result.message.id == 3
        assert result.message_actions[0].applied_replacement is not None

        # The request/response pair is complete
        assert message_filter.request_method(response, "s1") is None

    @pytest.mark.asyncio
    async def test_response_without_request_not_method_matched(
        self, message_filter: MessageFilter
    ) -> None:
        response = parse_message_line("server", TOOLS_CALL_RESPONSE_SECRET)
        result = await message_filter.filter(response)
        assert result.message is response
        assert not result.is_modified

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_requests(self, message_filter: MessageFilter) -> None:
        await message_filter.filter(
            parse_message_line("client", TOOLS_CALL_PAYMENT), PolicyContext(session_id="a")
        )
        response = parse_message_line("server", TOOLS_CALL_RESPONSE_SECRET)
        result = await message_filter.filter(response, PolicyContext(session_id="b"))
        assert result.message is response

    @pytest.mark.asyncio
    async def test_clean_message_unchanged(self, message_filter: MessageFilter) -> None:
        message = parse_message_line("client", TOOLS_CALL_CLEAN)
        result = await message_filter.filter(message)
        assert result.message is message
        assert result.alerts == []
        assert result.message_actions == []

    @pytest.mark.asyncio
    async def test_no_applicable_policies(self) -> None:
        # Only the client-side tools/call email policy
        policies = load_policies(FIXTURES / "content_policy.yaml").policies[:1]
        message = parse_message_line("server", INITIALIZED_NOTIFICATION)
        result = await MessageFilter(policies).filter(message)
        assert result.message is message
        assert result.engine_result is None

    @pytest.mark.asyncio
    async def test_fails_open_on_parse_error(self, tmp_path: Path) -> None:
        log_path = tmp_path / "audit.jsonl"
        audit = AuditLogger(log_path=log_path)
        message_filter = MessageFilter(
            load_policies(FIXTURES / "content_policy.yaml"),
            audit_logger=audit,
            engine=_BrokenEngine(),
        )
        message = parse_message_line("client", PAYMENT_REQUEST)
        result = await message_filter.filter(message)
        audit.close()

        assert result.message is message
        assert result.engine_result is None
        assert "Unexpected character" in result.error

        (entry,) = [json.loads(line) for line in log_path.read_text().splitlines()]
        assert entry["event"] == "filter_error"
        assert entry["message_id"] == "3"

    @pytest.mark.asyncio
    async def test_fails_open_on_strict_json_violation(self, tmp_path: Path) -> None:
        log_path = tmp_path / "audit.jsonl"
        audit = AuditLogger(log_path=log_path, quiet=True)
        message_filter = MessageFilter(
            load_policies(FIXTURES / "content_policy.yaml"), audit_logger=audit
        )
        message = parse_message_line("client", NAN_ARGUMENT_REQUEST)
        result = await message_filter.filter(message)
        audit.close()

        # The email is found, but the payload text cannot be edited
        assert result.message is message
        assert result.engine_result is None
        assert "Unexpected character 'N'" in result.error

        (entry,) = [json.loads(line) for line in log_path.read_text().splitlines()]
        assert entry["event"] == "filter_error"
        assert entry["message_id"] == "11"

    @pytest.mark.asyncio
    async def test_audit_log_written(self, tmp_path: Path) -> None:
        log_path = tmp_path / "logs" / "audit.jsonl"
        audit = AuditLogger(log_path=log_path, quiet=True)
        message_filter = MessageFilter(
            load_policies(FIXTURES / "content_policy.yaml"), audit_logger=audit
        )
        await message_filter.filter(parse_message_line("client", PAYMENT_REQUEST))
        audit.close()

        events = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
        assert events == ["alert", "alert", "message_action", "message_action"]

    def test_accepts_policy_list(self) -> None:
        policies = load_policies(FIXTURES / "content_policy.yaml").policies
        assert len(MessageFilter(policies).policies) == 4


# ---------------------------------------------------------------------------
# Pending requests
# ---------------------------------------------------------------------------


def _request(request_id: int) -> Message:
    return Message(origin=MessageOrigin.CLIENT, id=request_id, method="tools/list", params={})


def _response(request_id: int) -> Message:
    return Message(origin=MessageOrigin.SERVER, id=request_id, result={"tools": []})


class TestPendingRequests:
    @pytest.mark.asyncio
    async def test_cancelled_request_forgotten(self, message_filter: MessageFilter) -> None:
        await message_filter.filter(
            parse_message_line("client", TOOLS_CALL_PAYMENT), PolicyContext(session_id="s1")
        )
        response = parse_message_line("server", TOOLS_CALL_RESPONSE_SECRET)
        assert message_filter.request_method(response, "s1") == "tools/call"

        await message_filter.filter(
            parse_message_line("client", CANCEL_REQUEST_3), PolicyContext(session_id="s1")
        )
        assert message_filter.request_method(response, "s1") is None

    @pytest.mark.asyncio
    async def test_cancel_from_other_side_ignored(self, message_filter: MessageFilter) -> None:
        await message_filter.filter(
            parse_message_line("client", TOOLS_CALL_PAYMENT), PolicyContext(session_id="s1")
        )
        await message_filter.filter(
            parse_message_line("server", CANCEL_REQUEST_3), PolicyContext(session_id="s1")
        )
        response = parse_message_line("server", TOOLS_CALL_RESPONSE_SECRET)
        assert message_filter.request_method(response, "s1") == "tools/call"

    @pytest.mark.asyncio
    async def test_forget_session(self, message_filter: MessageFilter) -> None:
        await message_filter.filter(_request(1), PolicyContext(session_id="a"))
        await message_filter.filter(_request(1), PolicyContext(session_id="b"))

        message_filter.forget_session("a")
        assert message_filter.request_method(_response(1), "a") is None
        assert message_filter.request_method(_response(1), "b") == "tools/list"

    @pytest.mark.asyncio
    async def test_oldest_pending_evicted(self) -> None:
        message_filter = MessageFilter([], max_pending=2)
        for request_id in (1, 2, 3):
            await message_filter.filter(_request(request_id))

        assert message_filter.request_method(_response(1)) is None
        assert message_filter.request_method(_response(2)) == "tools/list"
        assert message_filter.request_method(_response(3)) == "tools/list"
