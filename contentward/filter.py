"""Message filter service.

Sits between the transport and the policy engine: picks the policies that
apply to each message, runs the engine, turns the result into audit
records, and returns the message to forward.

Responses carry no method of their own, so the filter remembers the method
of every request it sees and matches a response against the method of the
request it answers.  Cancelled requests are forgotten, and once the limit
is reached the oldest pending request is evicted.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from contentward.audit.logger import AuditLogger
from contentward.audit.records import (
    AlertRecord,
    MessageActionRecord,
    build_alert_records,
    build_message_action_records,
    now_iso,
)
from contentward.engine.core import PolicyEngine
from contentward.engine.models import PolicyContext
from contentward.engine.results import EngineResult
from contentward.modify.jsonc import PayloadParseError
from contentward.policy.schema import Policy, PolicySet
from contentward.protocol import Message, MessageOrigin

CANCELLED_METHOD = "notifications/cancelled"

# Requests awaiting a response, across all sessions; the oldest are evicted first
MAX_PENDING_REQUESTS = 10_000


@dataclass
class FilterResult:
    """Outcome of filtering one message.

    Attributes:
        message: The message to forward.  The original message when nothing
            matched or filtering failed.
        engine_result: The engine result, or None if filtering failed.
        error: Why filtering failed, if it did.
        alerts: Alert records created for this message.
        message_actions: Message action records created for this message.
    """

    message: Message
    engine_result: EngineResult | None = None
    error: str | None = None
    alerts: list[AlertRecord] = field(default_factory=list)
    message_actions: list[MessageActionRecord] = field(default_factory=list)

    @property
    def is_modified(self) -> bool:
        return self.engine_result is not None and self.engine_result.is_modified


def select_applicable(
    policies: list[Policy], message: Message, method: str | None = None
) -> list[Policy]:
    """Policies that are enabled and whose origin and method filters match."""
    return [p for p in policies if p.applies_to(message, method)]


class MessageFilter:
    """Applies a policy set to a stream of messages.

    Args:
        policies: The policy set (or plain policy list) to enforce.
        audit_logger: Where alerts and message actions are recorded.
        engine: The engine to run; defaults to one using the built-in
            conditions and actions.
        max_pending: How many unanswered requests to remember for
            response matching.
    """

    def __init__(
        self,
        policies: PolicySet | list[Policy],
        audit_logger: AuditLogger | None = None,
        engine: PolicyEngine | None = None,
        max_pending: int = MAX_PENDING_REQUESTS,
    ) -> None:
        if isinstance(policies, PolicySet):
            self._policies = list(policies.policies)
            element_configs = policies.element_configs
        else:
            self._policies = list(policies)
            element_configs = {}
        self._audit = audit_logger
        self._engine = engine or PolicyEngine(element_configs=element_configs)
        # (session_id, request origin, correlation id) -> request method
        self._pending_methods: dict[tuple[str | None, MessageOrigin, str], str] = {}
        self._max_pending = max_pending

    @property
    def policies(self) -> list[Policy]:
        return list(self._policies)

    def request_method(self, message: Message, session_id: str | None = None) -> str | None:
        """The method a message should be matched against.

        Requests and notifications use their own method.  Responses use the
        method of the request they answer, if it was seen.
        """
        if message.method is not None:
            return message.method
        if message.correlation_id is None:
            return None
        request_origin = (
            MessageOrigin.CLIENT if message.origin == MessageOrigin.SERVER else MessageOrigin.SERVER
        )
        return self._pending_methods.get((session_id, request_origin, message.correlation_id))

    async def filter(self, message: Message, context: PolicyContext | None = None) -> FilterResult:
        """Run the applicable policies over one message.

        Never raises on malformed payload text: a ``PayloadParseError``
        forwards the original message and records a ``filter_error`` entry.

        Args:
            message: The inbound message.
            context: Routing identifiers for the message's session.

        Returns:
            The message to forward and the audit records produced.
        """
        context = context or PolicyContext()
        method = self.request_method(message, context.session_id)
        self._track(message, context.session_id)

        applicable = select_applicable(self._policies, message, method)
        if not applicable:
            return FilterResult(message=message)

        engine_context = PolicyContext(
            server_id=context.server_id,
            session_id=context.session_id,
            method=method,
        )
        try:
            result = await self._engine.process(message, applicable, engine_context)
        except PayloadParseError as e:
            if self._audit is not None:
                self._audit.log_filter_error(message, e)
            return FilterResult(message=message, error=str(e))

        message_id = message.correlation_id or uuid.uuid4().hex
        timestamp = now_iso()
        alerts = build_alert_records(result, message_id, message.origin, timestamp)
        message_actions = build_message_action_records(
            result, message_id, message.origin, alerts, timestamp
        )
        if self._audit is not None:
            for alert in alerts:
                self._audit.log_alert(alert)
            for record in message_actions:
                self._audit.log_message_action(record)

        return FilterResult(
            message=result.modified_message,
            engine_result=result,
            alerts=alerts,
            message_actions=message_actions,
        )

    def forget_session(self, session_id: str | None) -> None:
        """Drop the pending requests of a session that has ended."""
        for key in [k for k in self._pending_methods if k[0] == session_id]:
            del self._pending_methods[key]

    def _track(self, message: Message, session_id: str | None) -> None:
        if message.method == CANCELLED_METHOD:
            self._cancel(message, session_id)
            return
        correlation_id = message.correlation_id
        if correlation_id is None:
            return
        if message.is_request:
            assert message.method is not None
            key = (session_id, message.origin, correlation_id)
            # Re-inserting moves a reused id to the newest position
            self._pending_methods.pop(key, None)
            self._pending_methods[key] = message.method
            while len(self._pending_methods) > self._max_pending:
                del self._pending_methods[next(iter(self._pending_methods))]
        elif message.is_response:
            request_origin = (
                MessageOrigin.CLIENT if message.origin == MessageOrigin.SERVER else MessageOrigin.SERVER
            )
            self._pending_methods.pop((session_id, request_origin, correlation_id), None)

    def _cancel(self, message: Message, session_id: str | None) -> None:
        # The side that issued a request is the one that cancels it
        if not isinstance(message.params, dict):
            return
        request_id = message.params.get("requestId")
        if request_id is None or isinstance(request_id, bool):
            return
        self._pending_methods.pop((session_id, message.origin, str(request_id)), None)
