"""
Tests for the click CLI (coderetriever.cli.main).

Every command rebuilds its index in memory, so each test points the CLI
at the temporary project or at a JSON fragment dump.
"""

import json
import re
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from coderetriever.cli.main import ShellSession, cli
from coderetriever.core.engine import AnswerGenerator
from coderetriever.core.search import HybridRetrievalStrategy
from coderetriever.exceptions import ProviderError

ENV = {"CODERETRIEVER_USE_EMBEDDINGS": "0", "CODERETRIEVER_LLM_PROVIDER": "gemini"}


@pytest.fixture
def runner():
    return CliRunner()


def invoke(runner, *args):
    return runner.invoke(cli, [str(a) for a in args], env=ENV)


class TestSearchCommand:

    def test_console_output(self, runner, tmp_project):
        result = invoke(runner, "search", tmp_project, "user repository database")
        assert result.exit_code == 0, result.output
        assert "[0] CLASS: UserRepository" in result.output
        assert "Hybrid (Keyword + Dependency)" in result.output
        assert "Use 'show <n>' for details" in result.output

    def test_compact_output(self, runner, tmp_project):
        result = invoke(runner, "search", tmp_project, "user repository", "-f", "compact")
        assert result.exit_code == 0, result.output
        assert "UserRepository  [CLASS]" in result.output

    def test_json_output(self, runner, tmp_project):
        result = invoke(runner, "search", tmp_project, "user repository", "-f", "json", "-n", "2")
        assert result.exit_code == 0, result.output
        out = result.output
        payload = json.loads(out[out.index("[\n"):])
        assert len(payload) <= 2
        assert payload[0]["rank"] == 1
        assert payload[0]["name"] == "UserRepository"

    def test_no_results(self, runner, tmp_project):
        result = invoke(runner, "search", tmp_project, "zzzqqq")
        assert result.exit_code == 0, result.output
        assert "No results found." in result.output

    def test_ranking_failure(self, runner, tmp_project):
        with patch.object(HybridRetrievalStrategy, "retrieve_scored", side_effect=KeyError("boom")):
            result = invoke(runner, "search", tmp_project, "user")
        assert result.exit_code == 1
        assert "Retrieval failed" in result.output

    def test_rejects_non_json_file(self, runner, tmp_project):
        result = invoke(runner, "search", tmp_project / "app" / "models.py", "user")
        assert result.exit_code == 1
        assert "neither a directory nor a .json dump" in result.output


class TestStatsCommand:

    def test_prints_counts(self, runner, tmp_project):
        result = invoke(runner, "stats", tmp_project)
        assert result.exit_code == 0, result.output
        assert "Index Statistics" in result.output
        assert "Parse errors" in result.output
        assert "Enums" in result.output
        assert re.search(r"Total\s+11\b", result.output)


class TestDumpCommand:

    def test_dump_then_search_dump(self, runner, tmp_project, tmp_path_factory):
        out = tmp_path_factory.mktemp("dump") / "fragments.json"
        result = invoke(runner, "dump", tmp_project, out)
        assert result.exit_code == 0, result.output
        assert "Wrote 11 fragments" in result.output
        assert len(json.loads(out.read_text(encoding="utf-8"))) == 11

        result = invoke(runner, "search", out, "user repository", "-f", "compact")
        assert result.exit_code == 0, result.output
        assert "UserRepository  [CLASS]" in result.output

    def test_corrupt_dump(self, runner, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json", encoding="utf-8")
        result = invoke(runner, "stats", bad)
        assert result.exit_code == 1
        assert "Error:" in result.output


class TestAskCommand:

    def test_prints_answer(self, runner, tmp_project):
        with patch.object(AnswerGenerator, "answer", return_value="Users live in a table.") as answer:
            result = invoke(runner, "ask", tmp_project, "How are users stored?")
        assert result.exit_code == 0, result.output
        assert "Users live in a table." in result.output
        question, context = answer.call_args.args
        assert question == "How are users stored?"
        assert context

    def test_provider_failure(self, runner, tmp_project):
        with patch.object(AnswerGenerator, "answer", side_effect=ProviderError("down")):
            result = invoke(runner, "ask", tmp_project, "anything")
        assert result.exit_code == 1
        assert "Error: down" in result.output


class TestShellCommand:

    def test_session(self, runner, tmp_project):
        script = "search user repository database\nshow 0\nshow 99\nshow x\nlist\nbogus\nquit\n"
        result = runner.invoke(cli, ["shell", str(tmp_project)], input=script, env=ENV)
        assert result.exit_code == 0, result.output
        out = result.output
        assert "Index built (11 elements)." in out
        assert "Available commands:" in out
        assert "Element: UserRepository (app.models.UserRepository)" in out
        assert "Invalid result number. Choose 0-" in out
        assert "Invalid number. Use 'show <n>'." in out
        assert "Code elements (first 11 of 11):" in out
        assert "Unknown command. Available commands:" in out
        assert out.rstrip().endswith("Goodbye!")

    def test_end_of_input_exits(self, runner, tmp_project):
        result = runner.invoke(cli, ["shell", str(tmp_project)], input="", env=ENV)
        assert result.exit_code == 0, result.output
        assert "Goodbye!" in result.output


class TestShellSession:

    @pytest.fixture
    def session(self, tmp_path):
        client = MagicMock()
        client.strategy_name = "Hybrid (Keyword + Dependency)"
        return ShellSession(client, tmp_path)

    def test_quit(self, session):
        assert session.handle("quit") is False
        assert session.handle("EXIT") is False
        assert session.handle("   ") is True

    def test_show_before_search(self, session, capsys):
        session.handle("show 0")
        assert "No search results. Run 'search <query>' first." in capsys.readouterr().out

    def test_empty_arguments(self, session, capsys):
        session.handle("search")
        session.handle("ask")
        out = capsys.readouterr().out
        assert "Enter a search term." in out
        assert "Enter a question for the LLM." in out
        session.client.search.assert_not_called()

    def test_ask_error_keeps_session(self, session, capsys):
        session.client.ask.side_effect = ProviderError("no key")
        assert session.handle("ask what is this") is True
        assert "Error: no key" in capsys.readouterr().out
