"""Tests for interactive CLI loop functionality.

Covers:
- _run_cli_interactive: REPL-like command loop
- EOF/KeyboardInterrupt handling
- JSON command parsing
"""

import json
from unittest.mock import patch

import pytest

from outreach.adapters.cli.commands import CLICommandHandler
from outreach.core.models import Actor, EntityKind
from outreach.main import _run_cli_interactive
from outreach.tests.fakes import Harness, make_harness


@pytest.fixture
def harness() -> Harness:
    return make_harness()


@pytest.fixture
def handler(harness: Harness) -> CLICommandHandler:
    return CLICommandHandler(harness.intake, harness.dashboard, Actor.operator("Dana"))


def printed_json(mock_print) -> list[dict]:
    """Decode every JSON document the loop printed."""
    results = []
    for call in mock_print.call_args_list:
        try:
            results.append(json.loads(call.args[0]))
        except (IndexError, ValueError):
            continue
    return results


@pytest.mark.asyncio
class TestInteractiveCLILoop:
    """Test suite for interactive CLI loop."""

    async def test_cli_reads_and_executes_commands(
        self, handler: CLICommandHandler, harness: Harness
    ) -> None:
        commands = [
            f'subscribe {json.dumps({"email": "reader@example.com"})}',
            "exit",
        ]

        with patch("builtins.input", side_effect=commands):
            with patch("builtins.print") as mock_print:
                await _run_cli_interactive(handler)

        (result,) = printed_json(mock_print)
        assert result["status"] == "success"
        assert len(harness.store.documents(EntityKind.NEWSLETTER)) == 1

    async def test_cli_handles_json_parse_errors(self, handler: CLICommandHandler) -> None:
        commands = ["subscribe not-valid-json", "list [1, 2]", "exit"]

        with patch("builtins.input", side_effect=commands):
            with patch("builtins.print") as mock_print:
                await _run_cli_interactive(handler)

        assert printed_json(mock_print) == []

    async def test_cli_reports_unknown_command(self, handler: CLICommandHandler) -> None:
        commands = ["launch {}", "verify {}", "exit"]

        with patch("builtins.input", side_effect=commands):
            with patch("builtins.print") as mock_print:
                await _run_cli_interactive(handler)

        unknown, missing = printed_json(mock_print)
        assert unknown["status"] == "error"
        assert "Unknown command" in unknown["message"]
        assert missing["message"] == "Missing required parameter: identifier"

    async def test_cli_handles_eof(self, handler: CLICommandHandler) -> None:
        def input_with_eof(_: str) -> str:
            raise EOFError()

        with patch("builtins.input", side_effect=input_with_eof):
            await _run_cli_interactive(handler)

    async def test_cli_handles_keyboard_interrupt(self, handler: CLICommandHandler) -> None:
        call_count = [0]

        def input_with_interrupt(_: str) -> str:
            call_count[0] += 1
            if call_count[0] == 1:
                raise KeyboardInterrupt()
            return "exit"

        with patch("builtins.input", side_effect=input_with_interrupt):
            await _run_cli_interactive(handler)

        assert call_count[0] == 2

    async def test_cli_ignores_empty_input(self, handler: CLICommandHandler) -> None:
        with patch("builtins.input", side_effect=["", "   ", "EXIT"]):
            with patch("builtins.print") as mock_print:
                await _run_cli_interactive(handler)

        mock_print.assert_not_called()

    async def test_cli_shows_help_command(self, handler: CLICommandHandler) -> None:
        with patch("builtins.input", side_effect=["help", "exit"]):
            with patch("builtins.print") as mock_print:
                await _run_cli_interactive(handler)

        help_text = mock_print.call_args.args[0]
        assert "Available Commands" in help_text
        assert "resubscribe" in help_text
