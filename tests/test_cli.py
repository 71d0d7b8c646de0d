"""Tests for the Steward CLI.

Commands run in-process through click's CliRunner against a temporary
sqlite database.
"""

import asyncio

import pytest
from click.testing import CliRunner

from steward import __version__
from steward.cli import ConsoleCallback, main
from steward.engine.plan import ExecutionPlan, PlanDecision, PlanStep
from steward.explain.decision_log import DecisionRecord
from steward.providers.mock import EMPTY_QUEUE_REPLY
from steward.storage.store import StateStore


@pytest.fixture
def runner(monkeypatch):
    for var in ("STEWARD_PROVIDER", "STEWARD_MODEL", "STEWARD_APPROVAL_MODE", "STEWARD_DB_PATH"):
        monkeypatch.delenv(var, raising=False)
    return CliRunner()


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "steward.db")


class TestCLIBasic:
    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "decisions", "consent", "status"):
            assert command in result.output

    def test_status_masks_keys(self, runner, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-1234567890abcd")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert f"Steward {__version__}" in result.output
        assert "sk-a...abcd" in result.output
        assert "1234567890" not in result.output
        assert "NOT SET" in result.output


class TestRun:
    def test_run_with_mock_provider(self, runner, db):
        result = runner.invoke(
            main, ["run", "Say hello", "--provider", "mock", "--no-builtins", "--json-output", "--db", db]
        )
        assert result.exit_code == 0, result.output
        assert '"success": true' in result.output
        assert EMPTY_QUEUE_REPLY in result.output

    def test_unknown_mode_rejected(self, runner):
        result = runner.invoke(main, ["run", "x", "--mode", "reckless"])
        assert result.exit_code == 2


class TestConsent:
    def test_grant_list_revoke(self, runner, db):
        granted = runner.invoke(main, ["consent", "grant", "tool:web_fetch", "--db", db])
        assert granted.exit_code == 0
        assert "Granted tool:web_fetch" in granted.output

        listed = runner.invoke(main, ["consent", "list", "--db", db])
        assert "tool:web_fetch" in listed.output
        assert "never" in listed.output

        revoked = runner.invoke(main, ["consent", "revoke", "tool:web_fetch", "--db", db])
        assert "Revoked tool:web_fetch" in revoked.output
        again = runner.invoke(main, ["consent", "revoke", "tool:web_fetch", "--db", db])
        assert "No consent recorded for tool:web_fetch" in again.output

    def test_invalid_scope(self, runner, db):
        result = runner.invoke(main, ["consent", "grant", "everything", "--db", db])
        assert result.exit_code == 2
        assert "provider:NAME or tool:NAME" in result.output

    def test_empty_list(self, runner, db):
        result = runner.invoke(main, ["consent", "list", "--db", db])
        assert "No consent records." in result.output


class TestDecisions:
    def test_empty(self, runner, db):
        result = runner.invoke(main, ["decisions", "--db", db])
        assert result.exit_code == 0
        assert "No decisions recorded yet." in result.output

    def test_table(self, runner, db):
        store = StateStore(db)
        store.append_decision(DecisionRecord(id=1, action="file_read", risk_level="read_only", confidence=0.9))
        store.close()

        result = runner.invoke(main, ["decisions", "--db", db])

        assert result.exit_code == 0
        assert "file_read" in result.output
        assert "90%" in result.output


# ─── Console callback ───────────────────────────────────────


class TestConsoleCallback:
    def test_plan_review_answers(self, monkeypatch):
        plan = ExecutionPlan(goal="g", steps=[PlanStep(index=0, description="only step")])
        answers = iter(["q", "Why?"])
        monkeypatch.setattr("steward.cli.Prompt.ask", lambda *a, **kw: next(answers))

        decision = asyncio.run(ConsoleCallback().on_plan_review(plan))

        assert decision == PlanDecision.ask_question("Why?")

    def test_plan_review_reject(self, monkeypatch):
        plan = ExecutionPlan(goal="g", steps=[PlanStep(index=0, description="only step")])
        monkeypatch.setattr("steward.cli.Prompt.ask", lambda *a, **kw: "r")
        assert asyncio.run(ConsoleCallback().on_plan_review(plan)) == PlanDecision.reject()
