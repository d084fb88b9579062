"""Tests for the `contentward` CLI.

Uses typer's CliRunner for isolated testing without subprocesses.  Human
summaries go to stderr, so assertions on machine output only look at the
JSON written to stdout.
"""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from contentward import __version__
from contentward.cli import app

runner = CliRunner()
FIXTURES = Path(__file__).parent / "fixtures"
POLICY = FIXTURES / "content_policy.yaml"


def _message_line(stdout: str) -> dict:
    """The JSON-RPC message the filter command wrote to stdout."""
    (line,) = [ln for ln in stdout.splitlines() if ln.startswith('{"jsonrpc"')]
    return json.loads(line)


class TestVersion:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestValidateCLI:
    def test_valid_policy(self) -> None:
        result = runner.invoke(app, ["validate", str(POLICY)])
        assert result.exit_code == 0
        assert "valid" in result.output

    def test_invalid_policy(self) -> None:
        result = runner.invoke(app, ["validate", str(FIXTURES / "invalid_elements_policy.yaml")])
        assert result.exit_code == 1
        assert "Policy error" in result.output

    def test_missing_policy(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestElementsCLI:
    def test_table(self) -> None:
        result = runner.invoke(app, ["elements"])
        assert result.exit_code == 0
        assert "regex" in result.output
        assert "rewrite" in result.output

    def test_json(self) -> None:
        result = runner.invoke(app, ["elements", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [(e["element_type"], e["class_id"]) for e in data] == [
            ("condition", "regex"),
            ("action", "rewrite"),
            ("action", "error"),
        ]
        assert "operation" in data[1]["params_schema"]["properties"]


class TestFilterCLI:
    def test_redacts_request_file(self) -> None:
        result = runner.invoke(
            app,
            ["filter", str(POLICY), str(FIXTURES / "payment_request.json"), "--origin", "client"],
        )
        assert result.exit_code == 0
        message = _message_line(result.stdout)
        assert message["id"] == 3
        assert message["params"]["arguments"]["note"] == (
            "card [" + "*" * 14 + "], receipt to XXXXXXX"
        )

    def test_reads_stdin(self) -> None:
        request = (FIXTURES / "payment_request.json").read_text()
        result = runner.invoke(app, ["filter", str(POLICY), "-", "--origin", "client"], input=request)
        assert result.exit_code == 0
        assert "XXXXXXX" in _message_line(result.stdout)["params"]["arguments"]["note"]

    def test_server_origin_request_passes_through(self) -> None:
        request = (FIXTURES / "payment_request.json").read_text()
        result = runner.invoke(app, ["filter", str(POLICY), "-", "--origin", "server"], input=request)
        assert result.exit_code == 0
        # A request sent by the server carries no result to scan
        assert _message_line(result.stdout) == json.loads(request)

    def test_writes_audit_log(self, tmp_path: Path) -> None:
        log_path = tmp_path / "audit.jsonl"
        result = runner.invoke(
            app,
            [
                "filter",
                str(POLICY),
                str(FIXTURES / "payment_request.json"),
                "--origin",
                "client",
                "--log",
                str(log_path),
                "--server-id",
                "payments",
                "--session-id",
                "s1",
            ],
        )
        assert result.exit_code == 0
        events = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
        assert events.count("alert") == 2
        assert events.count("message_action") == 2

    def test_invalid_message(self) -> None:
        result = runner.invoke(
            app, ["filter", str(POLICY), "-", "--origin", "client"], input="not json\n"
        )
        assert result.exit_code == 1
        assert "Invalid message" in result.output

    def test_invalid_origin(self) -> None:
        request = (FIXTURES / "payment_request.json").read_text()
        result = runner.invoke(app, ["filter", str(POLICY), "-", "--origin", "proxy"], input=request)
        assert result.exit_code == 1


class TestApplyCLI:
    def test_prints_edited_document(self) -> None:
        result = runner.invoke(
            app, ["apply", str(FIXTURES / "document.jsonc"), str(FIXTURES / "modifications.json")]
        )
        assert result.exit_code == 0
        assert result.stdout == (
            "{\n"
            "  // tool call arguments\n"
            '  "to": "XXXXXXX",\n'
            '  "body": "BBBZ", /* edited below */\n'
            "}\n"
        )

    def test_json_offsets(self) -> None:
        result = runner.invoke(
            app,
            [
                "apply",
                str(FIXTURES / "document.jsonc"),
                str(FIXTURES / "modifications.json"),
                "--json",
            ],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["applied_count"] == 3
        replace = data["applied_modifications"][2]
        assert (replace["result_start"], replace["result_end"]) == (3, 4)
        text = data["result_text"]
        assert text[replace["document_result_start"]:replace["document_result_end"]] == "Z"

    def test_invalid_modifications(self, tmp_path: Path) -> None:
        mods = tmp_path / "mods.json"
        mods.write_text('[{"field_path": "to", "start": 0, "end": 1, "operation": "shred"}]')
        result = runner.invoke(app, ["apply", str(FIXTURES / "document.jsonc"), str(mods)])
        assert result.exit_code == 1
        assert "Invalid modifications" in result.output

    def test_invalid_document(self, tmp_path: Path) -> None:
        doc = tmp_path / "doc.json"
        doc.write_text('{"to": ')
        result = runner.invoke(app, ["apply", str(doc), str(FIXTURES / "modifications.json")])
        assert result.exit_code == 1
        assert "Invalid document" in result.output
