"""Structured audit logging for ContentWard.

Records every alert and message action as structured JSON.  Writes a
human-readable summary to stderr (via rich), and optionally appends JSON
Lines to a file for machine consumption and SIEM ingestion.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import IO, Any

from rich.console import Console

from contentward.audit.records import AlertRecord, MessageActionRecord, now_iso
from contentward.protocol import Message

# All CLI/log output goes to stderr; stdout is reserved for protocol output
_console = Console(stderr=True)


class AuditLogger:
    """Logs alerts, message actions and filter failures."""

    def __init__(self, log_path: Path | None = None, *, quiet: bool = False) -> None:
        """Initialize the audit logger.

        Args:
            log_path: Optional path to write structured JSON Lines audit log.
                      If None, only logs to stderr via rich console.
            quiet: Suppress the stderr summary.
        """
        self._log_file: IO[str] | None = None
        self._log_path = log_path
        self._quiet = quiet
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = open(log_path, "a", encoding="utf-8")  # noqa: SIM115

    def close(self) -> None:
        """Flush and close the log file if open."""
        if self._log_file is not None:
            self._log_file.flush()
            self._log_file.close()
            self._log_file = None

    def log_alert(self, alert: AlertRecord) -> None:
        """Log the findings of one condition instance."""
        entry = {"event": "alert", **alert.to_dict()}
        self._write_entry(entry)

        if self._quiet:
            return
        count = len(alert.findings)
        _console.print(
            f"  [#ffcc00]⚠ ALERT[/#ffcc00] policy {alert.policy_id} "
            f"[dim]({alert.condition.name})[/dim] {count} finding{'s' if count != 1 else ''}",
            highlight=False,
        )

    def log_message_action(self, record: MessageActionRecord) -> None:
        """Log what one action instance did to a message."""
        entry = {"event": "message_action", **record.to_dict()}
        self._write_entry(entry)

        if self._quiet:
            return
        action = record.action.class_id
        if record.applied_replacement is not None:
            _console.print(
                f"  [bold red]✗ REPLACED[/bold red] by policy {record.policy_id} ({action})",
                highlight=False,
            )
            return
        applied = sum(
            1
            for event in record.action_events
            if (event.get("content_modification") or {}).get("applied")
        )
        _console.print(
            f"  [#5eead4]✎ {action.upper()}[/#5eead4] policy {record.policy_id}: "
            f"{applied}/{len(record.action_events)} modification(s) applied",
            highlight=False,
        )

    def log_filter_error(self, message: Message, error: Exception) -> None:
        """Log a message that was forwarded unfiltered because filtering failed."""
        entry = {
            "timestamp": now_iso(),
            "event": "filter_error",
            "origin": message.origin.value,
            "message_id": message.correlation_id,
            "method": message.method,
            "error": str(error),
        }
        self._write_entry(entry)
        _console.print(
            f"[bold red]Filter failed, forwarding original message:[/bold red] {error}",
            highlight=False,
        )

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Write a structured JSON entry to the log file.

        If the write fails (disk full, permission error, etc.), logs the
        failure to stderr and continues.

        Args:
            entry: The log entry as a dictionary.
        """
        if self._log_file is not None:
            try:
                self._log_file.write(json.dumps(entry, default=str) + "\n")
                self._log_file.flush()
            except (OSError, ValueError) as e:
                # OSError: disk full, permission denied, etc.
                # ValueError: I/O operation on closed file
                _console.print(
                    f"[bold red]Audit log write failed:[/bold red] {e}",
                    highlight=False,
                )
                # Close the broken file handle to avoid repeated failures
                try:
                    self._log_file.close()
                except (OSError, ValueError):
                    pass
                self._log_file = None
