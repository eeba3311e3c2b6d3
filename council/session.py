"""Session snapshots: serialize {DebateState, roster} to JSON and back."""

import json
import logging
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any

from council.models import (
    Agent,
    AgentRole,
    Citation,
    ContextDocument,
    DebateMode,
    DebatePhase,
    DebateState,
    EngineStatus,
    Fallacy,
    FinalVerdict,
    GuestDescriptor,
    Message,
    MessageKind,
    TokenUsage,
    ToolCall,
    Vote,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _message(raw: dict) -> Message:
    fallacy = raw.get("fallacy")
    return Message(
        id=raw["id"],
        agent_id=raw["agent_id"],
        content=raw["content"],
        timestamp=float(raw["timestamp"]),
        phase=DebatePhase(raw["phase"]),
        kind=MessageKind(raw.get("kind", "text")),
        citations=[Citation(**c) for c in raw.get("citations", [])],
        is_guest=bool(raw.get("is_guest", False)),
        guest_role=raw.get("guest_role"),
        fallacy=Fallacy(**fallacy) if fallacy else None,
    )


def _verdict(raw: dict | None) -> FinalVerdict | None:
    if not raw:
        return None
    return FinalVerdict(
        winner_id=raw["winner_id"],
        summary=raw["summary"],
        key_takeaways=list(raw.get("key_takeaways", [])),
        votes=[Vote(**v) for v in raw.get("votes", [])],
    )


def snapshot_to_dict(state: DebateState, agents: list[Agent]) -> dict[str, Any]:
    """Capture everything needed to resume at the current phase, turn and round."""
    return {
        "version": SNAPSHOT_VERSION,
        "state": _plain(asdict(state)),
        "agents": [_plain(asdict(a)) for a in agents],
    }


def snapshot_from_dict(data: dict[str, Any]) -> tuple[DebateState, list[Agent]]:
    """Rebuild state and roster.

    A snapshot taken mid-generation is restored as IDLE so the scheduler
    re-runs the interrupted turn.
    """
    raw = data["state"]
    agents = [
        Agent(
            id=a["id"],
            name=a["name"],
            role=AgentRole(a["role"]),
            system_prompt=a["system_prompt"],
            description=a.get("description", ""),
            model_override=a.get("model_override"),
        )
        for a in data["agents"]
    ]

    status = EngineStatus(raw.get("status", "IDLE"))
    if status == EngineStatus.GENERATING:
        status = EngineStatus.IDLE

    tool_call = raw.get("pending_tool_call")
    guest = raw.get("summoned_guest")
    suspended = raw.get("suspended_phase")

    state = DebateState(
        topic=raw["topic"],
        mode=DebateMode(raw["mode"]),
        max_rounds=int(raw["max_rounds"]),
        current_round=int(raw["current_round"]),
        phase=DebatePhase(raw["phase"]),
        current_turn_agent_id=raw.get("current_turn_agent_id"),
        transcript=[_message(m) for m in raw.get("transcript", [])],
        is_thinking=False,
        thinking_agent_id=raw.get("thinking_agent_id") if status != EngineStatus.IDLE else None,
        pending_user_question=raw.get("pending_user_question"),
        pending_tool_call=ToolCall(**tool_call) if tool_call else None,
        pending_tool_result=raw.get("pending_tool_result"),
        suspended_phase=DebatePhase(suspended) if suspended else None,
        show_consultation_prompt=bool(raw.get("show_consultation_prompt", False)),
        user_requested_stop=bool(raw.get("user_requested_stop", False)),
        summoned_guest=GuestDescriptor(**guest) if guest else None,
        context_documents=[ContextDocument(**d) for d in raw.get("context_documents", [])],
        token_usage=TokenUsage(**raw.get("token_usage", {})),
        final_verdict=_verdict(raw.get("final_verdict")),
        status=status,
    )
    return state, agents


def save_session(path: Path, state: DebateState, agents: list[Agent]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot_to_dict(state, agents), ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("Session saved to: %s", path)
    return path


def load_session(path: Path) -> tuple[DebateState, list[Agent]]:
    """Load a snapshot written by save_session.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a snapshot of a supported version.
    """
    if not path.exists():
        raise FileNotFoundError(f"Session file not found: {path}")
    data = json.loads(path.read_text(encoding="utf-8"))
    if data.get("version") != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported session snapshot version: {data.get('version')}")
    return snapshot_from_dict(data)
