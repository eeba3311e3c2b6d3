"""Tests for council/session.py snapshot save and load."""

import json
from pathlib import Path

import pytest

from council.models import (
    Citation,
    DebatePhase,
    EngineStatus,
    Fallacy,
    FinalVerdict,
    GuestDescriptor,
    TokenUsage,
    ToolCall,
    Vote,
)
from council.session import load_session, save_session, snapshot_from_dict, snapshot_to_dict
from council.state import DebateStateMachine


def test_snapshot_restores_mid_debate_state(started_machine, agents, tmp_path: Path):
    message = started_machine.append_message("agent-a", "Cars must go.", citations=[Citation("Study", "https://x.org")])
    started_machine.attach_fallacy(message.id, Fallacy("Strawman", "Misrepresents.", "major"))
    started_machine.advance_turn()
    started_machine.record_usage(TokenUsage(100, 50, 0.02))
    started_machine.suspend_for_tool(ToolCall("askUser", {"question": "Do you drive?"}, "c1"), "Do you drive?")
    started_machine.set_guest(GuestDescriptor("Dr. Park", "Planner", "You plan."))

    path = save_session(tmp_path / "sessions" / "debate.session.json", started_machine.snapshot(), agents)
    state, roster = load_session(path)

    assert roster == agents
    assert state == started_machine.snapshot()
    assert state.phase == DebatePhase.USER_INPUT
    assert state.suspended_phase == DebatePhase.OPENING
    assert state.current_turn_agent_id == "agent-b"
    assert state.transcript[0].fallacy.severity == "major"
    assert state.pending_tool_call.arguments == {"question": "Do you drive?"}


def test_resumed_machine_continues_rotation(started_machine, agents, tmp_path: Path):
    started_machine.advance_turn()
    path = save_session(tmp_path / "s.json", started_machine.snapshot(), agents)
    state, roster = load_session(path)

    resumed = DebateStateMachine(roster, state=state)
    resumed.advance_turn()
    assert resumed.state.current_turn_agent_id == "agent-c"
    assert resumed.state.phase == DebatePhase.OPENING


def test_generating_snapshot_restored_idle(started_machine, agents):
    started_machine.begin_generation("agent-a")
    state, _ = snapshot_from_dict(snapshot_to_dict(started_machine.snapshot(), agents))
    assert state.status == EngineStatus.IDLE
    assert state.is_thinking is False
    assert state.thinking_agent_id is None


def test_verdict_survives_round_trip(started_machine, agents):
    started_machine.set_verdict(FinalVerdict("agent-b", "Cyrus wins.", ["Pilot"], [Vote("agent-a", "agent-b", 8, "Sharp.")]))
    state, _ = snapshot_from_dict(json.loads(json.dumps(snapshot_to_dict(started_machine.snapshot(), agents))))
    assert state.final_verdict == started_machine.state.final_verdict


def test_load_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_session(tmp_path / "nope.json")


def test_load_unsupported_version(tmp_path: Path):
    path = tmp_path / "old.json"
    path.write_text(json.dumps({"version": 99, "state": {}, "agents": []}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_session(path)
