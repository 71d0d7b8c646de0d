"""Tests for sqlite persistence of memory, decisions, consent and scheduler state."""

from datetime import UTC, datetime

import pytest

from conftest import make_agent

from steward.agent import Agent
from steward.callbacks import RecordingCallback
from steward.config import AgentConfig, ApprovalMode
from steward.engine.scheduler import HeartbeatJob
from steward.explain.decision_log import DecisionLog, DecisionOutcome, DecisionRecord, OutcomeKind
from steward.memory.long_term import Fact, LongTermMemory
from steward.safety.consent import ConsentManager
from steward.storage.store import StateStore


@pytest.fixture
def store(tmp_path):
    s = StateStore(tmp_path / "state" / "steward.db")
    yield s
    s.close()


class TestStateStore:
    def test_facts_and_corrections_in_order(self, store):
        memory = LongTermMemory(store=store)
        memory.add_fact(Fact(content="first", tags=["a"]))
        memory.add_fact(Fact(content="second"))
        memory.add_correction("rm", "trash", context="cleanup")

        reloaded = LongTermMemory(store=store)
        reloaded.load()

        assert [f.content for f in reloaded.facts] == ["first", "second"]
        assert reloaded.facts[0].tags == ["a"]
        assert reloaded.corrections[0].corrected == "trash"
        assert store.fact_count == 2

    def test_load_respects_cap(self, store):
        memory = LongTermMemory(store=store)
        for i in range(5):
            memory.add_fact(Fact(content=f"fact {i}"))
        capped = LongTermMemory(max_facts=2, store=store)
        capped.load()
        assert [f.content for f in capped.facts] == ["fact 3", "fact 4"]

    def test_preferences_upsert(self, store):
        store.save_preference("editor", "vim")
        store.save_preference("editor", "helix")
        assert store.load_preferences() == {"editor": "helix"}

    def test_decision_log_keeps_latest_outcome(self, store):
        log = DecisionLog(store)
        first = log.record(DecisionRecord(action="Tool: a"))
        log.record(DecisionRecord(action="Tool: b"))
        log.update_outcome(first, DecisionOutcome.of(OutcomeKind.SUCCEEDED))

        records = store.load_decisions()

        assert [r.action for r in records] == ["Tool: b", "Tool: a"]
        assert records[1].outcome.kind == OutcomeKind.SUCCEEDED
        assert [r.action for r in store.load_decisions(limit=1)] == ["Tool: a"]

    def test_consent_round_trip(self, store):
        manager = ConsentManager(store=store)
        manager.grant("provider:claude", ttl_hours=2)
        manager.grant("local_storage")
        manager.revoke("local_storage")

        reloaded = ConsentManager(store=store)

        assert reloaded.load() == 1
        assert reloaded.is_granted("provider:claude")

    def test_json_values(self, store):
        assert store.load_json("missing") is None
        store.save_json("k", {"a": [1, 2]})
        assert store.load_json("k") == {"a": [1, 2]}

    def test_in_memory(self):
        store = StateStore(":memory:")
        store.save_preference("x", "y")
        assert store.load_preferences() == {"x": "y"}
        store.close()


class TestAgentPersistence:
    @pytest.mark.asyncio
    async def test_facts_survive_restart(self, provider, store):
        provider.queue_response(provider.tool_call_response("echo", {"text": "persist me please"}))
        provider.queue_response(provider.text_response("done"))
        config = AgentConfig()
        config.safety.approval_mode = ApprovalMode.YOLO
        agent = Agent(provider, config, RecordingCallback(), store=store, classifier=lambda task: None)
        agent.register_builtin_tools()

        await agent.process_task("Echo something")

        restarted = Agent(provider, config, RecordingCallback(), store=store)
        assert restarted.memory.long_term.search_facts("persist me")
        assert "Tool: echo" in [r.action for r in store.load_decisions()]

    def test_scheduler_state_round_trip(self, provider, store):
        agent = make_agent(provider)
        assert not agent.save_scheduler_state()

        agent = Agent(provider, AgentConfig(), RecordingCallback(), store=store)
        ran_at = datetime(2026, 1, 1, tzinfo=UTC)
        agent.scheduler.add_job(HeartbeatJob(name="digest", task="Summarize inbox", interval_seconds=3600,
                                             last_run=ran_at, run_count=3))
        assert agent.save_scheduler_state()

        restarted = Agent(provider, AgentConfig(), RecordingCallback(), store=store)
        assert restarted.load_scheduler_state()
        job = restarted.scheduler.get_job("digest")
        assert job.run_count == 3
        assert job.last_run == ran_at
