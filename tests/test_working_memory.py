"""
Tests for aura_memory.memory.working — per-session working memory.

Covers:
- Session lifecycle (initialize, overwrite, clear)
- Recent-event ring buffer capacity and eviction order
- Context, attention and planning mutations
- No-op behaviour for unknown sessions
- Deterministic summary rendering
- Inactivity sweep (pure function and manager)
"""

from __future__ import annotations

import pytest

from aura_memory.events import RunEvent
from aura_memory.memory.working import (
    NO_ACTIVE_MEMORY,
    WorkingMemory,
    WorkingMemoryManager,
    find_expired_sessions,
    render_summary,
)
from aura_memory.metrics import SESSIONS_ACTIVE, SESSIONS_EXPIRED, metrics


@pytest.fixture()
def manager(clock) -> WorkingMemoryManager:
    return WorkingMemoryManager(clock=clock)


def _event(i: int) -> RunEvent:
    return RunEvent(type="step.completed", data={"step_id": f"s{i}"}, timestamp=float(i))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:

    def test_initialize(self, manager, clock):
        memory = manager.initialize("u1", "sess-1", "Ship the PRD")
        assert memory.user_id == "u1"
        assert memory.current_goal == "Ship the PRD"
        assert memory.last_touched == clock()
        assert manager.get("sess-1") is memory
        assert manager.active_sessions() == ["sess-1"]

    def test_reinitialize_overwrites(self, manager):
        manager.initialize("u1", "sess-1", "first")
        manager.add_context("sess-1", "doc", "prd-1")
        manager.initialize("u1", "sess-1", "second")
        memory = manager.get("sess-1")
        assert memory.current_goal == "second"
        assert memory.active_context == {}
        assert manager.count == 1

    def test_clear(self, manager):
        manager.initialize("u1", "sess-1", "goal")
        assert manager.clear("sess-1") is True
        assert manager.get("sess-1") is None
        assert manager.clear("sess-1") is False

    def test_active_gauge_tracks_sessions(self, manager):
        manager.initialize("u1", "a", "g")
        manager.initialize("u1", "b", "g")
        assert metrics.gauge(SESSIONS_ACTIVE) == 2
        manager.clear("a")
        assert metrics.gauge(SESSIONS_ACTIVE) == 1

    def test_sessions_are_independent(self, manager):
        manager.initialize("u1", "a", "goal a")
        manager.initialize("u2", "b", "goal b")
        manager.add_context("a", "k", 1)
        assert manager.get_context("b", "k") is None
        assert manager.get_context("a", "k") == 1


# ---------------------------------------------------------------------------
# Recent events
# ---------------------------------------------------------------------------

class TestRecentEvents:

    def test_capacity_is_fifty(self, manager):
        manager.initialize("u1", "s", "goal")
        for i in range(51):
            manager.add_event("s", _event(i))
        events = manager.get("s").recent_events
        assert len(events) == 50
        assert events[0].data == {"step_id": "s1"}
        assert events[-1].data == {"step_id": "s50"}

    def test_custom_capacity(self, clock):
        manager = WorkingMemoryManager(clock=clock, max_recent_events=3)
        manager.initialize("u1", "s", "goal")
        for i in range(5):
            manager.add_event("s", _event(i))
        assert [e.timestamp for e in manager.get("s").recent_events] == [2.0, 3.0, 4.0]

    def test_event_data_is_copied(self, manager):
        manager.initialize("u1", "s", "goal")
        event = _event(1)
        manager.add_event("s", event)
        event.data["step_id"] = "changed"
        assert manager.get("s").recent_events[0].data == {"step_id": "s1"}


# ---------------------------------------------------------------------------
# Attention and planning
# ---------------------------------------------------------------------------

class TestAttentionAndPlanning:

    def test_attention_deduplicated(self, manager):
        manager.initialize("u1", "s", "goal")
        manager.set_attention("s", ["formatting", "tone", "formatting"])
        manager.add_attention("s", "tone")
        manager.add_attention("s", "length")
        manager.remove_attention("s", "formatting")
        assert manager.get("s").attention == ["tone", "length"]

    def test_empty_attention_item_ignored(self, manager):
        manager.initialize("u1", "s", "goal")
        manager.add_attention("s", "")
        manager.add_hypothesis("s", "")
        assert manager.get("s").attention == []
        assert manager.get("s").planning_state.hypotheses == []

    def test_planning_items(self, manager):
        manager.initialize("u1", "s", "goal")
        manager.add_hypothesis("s", "user wants bullets")
        manager.add_hypothesis("s", "user wants bullets")
        manager.add_next_action("s", "draft outline")
        manager.add_uncertainty("s", "deadline")
        manager.add_blocker("s", "missing data")
        planning = manager.get("s").planning_state
        assert planning.hypotheses == ["user wants bullets"]
        assert planning.next_actions == ["draft outline"]
        assert planning.uncertainties == ["deadline"]
        assert planning.blockers == ["missing data"]

    def test_update_planning_replaces_fields(self, manager):
        manager.initialize("u1", "s", "goal")
        manager.add_blocker("s", "old")
        manager.update_planning("s", blockers=["new", "new"], next_actions=["a"])
        planning = manager.get("s").planning_state
        assert planning.blockers == ["new"]
        assert planning.next_actions == ["a"]

    def test_update_planning_rejects_unknown_field(self, manager):
        manager.initialize("u1", "s", "goal")
        with pytest.raises(ValueError, match="unknown planning fields"):
            manager.update_planning("s", wishes=["x"])

    def test_clear_planning(self, manager):
        manager.initialize("u1", "s", "goal")
        manager.add_hypothesis("s", "h")
        manager.add_blocker("s", "b")
        manager.clear_planning("s")
        planning = manager.get("s").planning_state
        assert planning.hypotheses == [] and planning.blockers == []

    def test_mutations_touch_session(self, manager, clock):
        manager.initialize("u1", "s", "goal")
        clock.advance(120)
        manager.update_goal("s", "new goal")
        assert manager.get("s").last_touched == clock()


# ---------------------------------------------------------------------------
# Unknown sessions
# ---------------------------------------------------------------------------

class TestUnknownSession:

    def test_mutations_are_noops(self, manager):
        manager.update_goal("ghost", "goal")
        manager.add_context("ghost", "k", "v")
        manager.add_event("ghost", _event(1))
        manager.add_attention("ghost", "x")
        manager.add_hypothesis("ghost", "h")
        manager.update_planning("ghost", blockers=["b"])
        manager.clear_planning("ghost")
        assert manager.get("ghost") is None
        assert manager.count == 0

    def test_reads(self, manager):
        assert manager.get_context("ghost", "k") is None
        assert manager.get_summary("ghost") == NO_ACTIVE_MEMORY


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

class TestSummary:

    def test_empty_session(self, manager):
        manager.initialize("u1", "s", "Ship the PRD")
        assert manager.get_summary("s") == "\n".join([
            "# Working Memory Summary",
            "",
            "## Current Goal",
            "Ship the PRD",
            "",
            "## Active Context",
            "(none)",
            "",
            "## Attention Focus",
            "(none)",
            "",
            "## Planning State",
            "- Hypotheses: (none)",
            "- Next Actions: (none)",
            "- Uncertainties: (none)",
            "- Blockers: (none)",
            "",
            "## Recent Events",
            "(none)",
        ])

    def test_populated_session(self, manager):
        manager.initialize("u1", "s", "Ship the PRD")
        manager.add_context("s", "doc", {"id": "prd-1", "draft": 2})
        manager.set_attention("s", ["formatting", "tone"])
        manager.add_hypothesis("s", "h1")
        manager.add_hypothesis("s", "h2")
        manager.add_event("s", RunEvent(type="run.started", timestamp=0))
        summary = manager.get_summary("s")
        assert '- doc: {"draft": 2, "id": "prd-1"}' in summary
        assert "## Attention Focus\nformatting, tone\n" in summary
        assert "- Hypotheses: h1, h2" in summary
        assert summary.endswith("## Recent Events\n- run.started at 1970-01-01T00:00:00+00:00")

    def test_only_last_events_rendered(self, manager):
        manager.initialize("u1", "s", "goal")
        for i in range(8):
            manager.add_event("s", _event(i))
        lines = manager.get_summary("s").split("## Recent Events\n", 1)[1].splitlines()
        assert len(lines) == 5
        assert lines[0].startswith("- step.completed at 1970-01-01T00:00:03")

    def test_deterministic(self, manager):
        manager.initialize("u1", "s", "goal")
        manager.add_context("s", "b", 1)
        manager.add_context("s", "a", [1, 2])
        assert manager.get_summary("s") == manager.get_summary("s")

    def test_render_summary_without_events(self):
        memory = WorkingMemory(user_id="u1", session_id="s", current_goal="g")
        memory.recent_events.append(_event(1))
        assert render_summary(memory, event_count=0).endswith("## Recent Events\n(none)")


# ---------------------------------------------------------------------------
# Inactivity sweep
# ---------------------------------------------------------------------------

class TestSweep:

    def test_find_expired_is_strict(self):
        sessions = {
            "idle": WorkingMemory(user_id="u1", session_id="idle", last_touched=0.0),
            "edge": WorkingMemory(user_id="u1", session_id="edge", last_touched=400.0),
            "busy": WorkingMemory(user_id="u1", session_id="busy", last_touched=900.0),
        }
        assert find_expired_sessions(sessions, now=4000.0, max_age_seconds=3600) == ["idle"]

    def test_idle_for_61_minutes_removed(self, manager, clock):
        manager.initialize("u1", "s", "goal")
        clock.advance_minutes(61)
        assert manager.clear_expired() == 1
        assert manager.get("s") is None
        assert metrics.counter(SESSIONS_EXPIRED) == 1

    def test_idle_for_30_minutes_kept(self, manager, clock):
        manager.initialize("u1", "s", "goal")
        clock.advance_minutes(30)
        assert manager.clear_expired() == 0
        assert manager.get("s") is not None

    def test_activity_resets_idle_time(self, manager, clock):
        manager.initialize("u1", "s", "goal")
        clock.advance_minutes(50)
        manager.add_context("s", "k", "v")
        clock.advance_minutes(50)
        assert manager.clear_expired() == 0

    def test_custom_ttl(self, clock):
        manager = WorkingMemoryManager(clock=clock, session_ttl_seconds=60)
        manager.initialize("u1", "s", "goal")
        clock.advance(61)
        assert manager.clear_expired() == 1
