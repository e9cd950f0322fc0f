"""Tests for the agentloop command line interface."""

import json

import pytest
from typer.testing import CliRunner

from agentloop import VERSION
from agentloop.cli.app import app

runner = CliRunner()


@pytest.fixture
def paris_script(tmp_path):
    script = {
        "system": "You are a helpful assistant.",
        "user": "What is the weather in Paris right now?",
        "responses": [
            {"tool_calls": [{"id": "call_time", "name": "HelperFunctions-GetCurrentUtcTime"}]},
            {"tool_calls": [{
                "id": "call_weather",
                "name": "HelperFunctions-Get_Weather_For_City",
                "arguments": {"cityName": "Paris"},
            }]},
            {"content": "It is currently 60 and rainy in Paris."},
        ],
    }
    path = tmp_path / "paris.json"
    path.write_text(json.dumps(script))
    return path


class TestCli:
    """Test CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert VERSION in result.output

    def test_functions(self):
        result = runner.invoke(app, ["functions"])
        assert result.exit_code == 0
        assert "2 functions in 1 namespaces" in result.output

    @pytest.mark.parametrize("options", [[], ["--stream", "--chunk-size", "3"], ["--manual"]])
    def test_replay_completes(self, paris_script, options):
        result = runner.invoke(app, ["replay", str(paris_script), *options])

        assert result.exit_code == 0, result.output
        assert "Completed after 2 tool-call cycles" in result.output
        assert "It is currently 60 and rainy in Paris." in result.output

    def test_replay_budget_exceeded(self, paris_script):
        result = runner.invoke(app, ["replay", str(paris_script), "--max-iterations", "1"])

        assert result.exit_code == 1
        assert "iteration_budget_exceeded" in result.output

    def test_replay_rejects_bad_script(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"responses": []}))

        result = runner.invoke(app, ["replay", str(path)])
        assert result.exit_code == 1

    def test_chat_requires_api_key(self):
        result = runner.invoke(app, ["chat", "hello"])
        assert result.exit_code == 1
        assert "No API key configured" in result.output
