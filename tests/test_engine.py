"""Tests for council/engine.py scheduling, driven end to end over a scripted provider."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from council import prompts
from council.client import GenerationClient
from council.engine import DebateEngine, EngineBusyError
from council.fallacy import FallacyAnalyzer
from council.models import (
    CHAIRPERSON_ID,
    SYSTEM_ID,
    USER_ID,
    DebateMode,
    DebatePhase,
    EngineStatus,
    GenerationRequest,
    MessageKind,
    ToolCall,
)
from council.orchestrator import DEFAULT_GUIDANCE, OrchestratorDecisionModule
from council.providers.base import ErrorKind, ProviderError
from council.search import SearchAugmentationService
from council.state import InvalidTransitionError
from council.turn import FILLER_TEXT, TurnExecutor
from council.voting import VotingPipeline
from tests.conftest import MockProvider, make_response

GUEST = {
    "name": "Dr. Lena Park",
    "role": "Urban Planner",
    "systemPrompt": "You are an urban planner.",
    "reason": "Zoning questions came up.",
}
LONG_TURN = "We should ban cars because a single anecdote from my neighbour proves it works everywhere. " * 2


class ScriptedModel:
    """Routes each request by its shape: agent turn, tool resume, fallacy, orchestrator, vote, verdict."""

    def __init__(self, decisions=(), turn_text="A short turn.", fallacy=None, ask_user_once=None):
        self.decisions = list(decisions)
        self.turn_text = turn_text
        self.fallacy = fallacy or {"found": False}
        self.ask_user_once = ask_user_once
        self.search_once: str | None = None
        self.ask_user_arguments = None
        self.fail_turns = False
        self.gate: asyncio.Event | None = None
        self.turn_prompts: list[str] = []
        self.resume_prompts: list[str] = []

    async def generate(self, request: GenerationRequest, model: str):
        schema = request.response_schema
        if schema is prompts.FALLACY_SCHEMA:
            return make_response(json.dumps(self.fallacy))
        if schema is prompts.ORCHESTRATOR_SCHEMA:
            decision = self.decisions.pop(0) if self.decisions else {"shouldConclude": True, "guidance": "Wrap up."}
            return make_response(json.dumps(decision))
        if schema is prompts.VOTE_SCHEMA:
            return make_response(json.dumps({"targetAgentId": "agent-b", "score": 8, "reason": "Sharp."}))
        if schema is prompts.VERDICT_SCHEMA:
            return make_response(json.dumps({
                "winnerId": "agent-b", "summary": "Cyrus wins.", "keyTakeaways": ["Pilot first"],
            }))
        if request.system_instruction.endswith(prompts.FOLLOW_UP_SYSTEM):
            return make_response("Start with one district.")

        if request.prompt.startswith("Current Topic:"):
            self.resume_prompts.append(request.prompt)
            return make_response("Thanks, that settles it.")

        self.turn_prompts.append(request.prompt)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_turns:
            raise ProviderError("mock", "boom")
        if self.search_once is not None:
            query, self.search_once = self.search_once, None
            return make_response("", tool_call=ToolCall(prompts.SEARCH_WEB, {"query": query}, "call-2"))
        if self.ask_user_once is not None and request.system_instruction == "You are Aria.":
            question, self.ask_user_once = self.ask_user_once, None
            arguments = {"question": question} if self.ask_user_arguments is None else self.ask_user_arguments
            return make_response("", tool_call=ToolCall(prompts.ASK_USER, arguments, "call-1"))
        return make_response(self.turn_text)


@pytest.fixture
def scripted() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def scripted_provider(scripted) -> MockProvider:
    provider = MockProvider()
    provider.generate.side_effect = scripted.generate
    return provider


def _engine(
    machine, provider, pricing, consultation_timeout_sec=None, orchestrator=None, search=None, executor=None
) -> DebateEngine:
    client = GenerationClient(provider, "test-model", pricing, search_augmentation=search is not None)
    return DebateEngine(
        machine,
        executor or TurnExecutor(client, search=search),
        orchestrator or OrchestratorDecisionModule(client),
        VotingPipeline(client, vote_delay_sec=0),
        FallacyAnalyzer(client),
        consultation_timeout_sec=consultation_timeout_sec,
    )


def _agent_turns(state):
    return [m for m in state.transcript if m.agent_id.startswith("agent-") and m.kind == MessageKind.TEXT
            and m.agent_id != CHAIRPERSON_ID]


async def _until_generating(engine: DebateEngine) -> None:
    for _ in range(100):
        if engine.status == EngineStatus.GENERATING:
            return
        await asyncio.sleep(0)
    raise AssertionError("engine never started generating")


async def test_fixed_single_round_runs_to_verdict(machine, scripted_provider, pricing_config):
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    status = await engine.run()

    s = engine.state
    assert status == EngineStatus.IDLE
    assert s.phase == DebatePhase.VERDICT
    assert s.final_verdict.winner_id == "agent-b"
    assert [m.phase for m in _agent_turns(s)] == [DebatePhase.OPENING] * 3 + [DebatePhase.REBUTTAL] * 3 + [
        DebatePhase.SYNTHESIS
    ] * 3
    vote_messages = [m for m in s.transcript if m.kind == MessageKind.VOTE]
    assert len(vote_messages) == 3
    assert vote_messages[0].content.startswith("Voted for Cyrus (8)")
    assert s.token_usage.input_tokens > 0
    assert await engine.step() is False


async def test_auto_mode_guidance_then_conclude(machine, scripted, scripted_provider, pricing_config):
    scripted.decisions = [
        {"shouldConclude": False, "guidance": "Focus on cost."},
        {"shouldConclude": True, "guidance": "Enough."},
    ]
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.AUTO)

    await engine.run()

    s = engine.state
    chair = [m.content for m in s.transcript if m.agent_id == CHAIRPERSON_ID]
    assert chair == ["Focus on cost."]
    assert any(m.agent_id == SYSTEM_ID and m.content == "Chairperson Concluding: Enough." for m in s.transcript)
    assert s.current_round == 2
    assert len(_agent_turns(s)) == 9 + 6
    assert s.phase == DebatePhase.VERDICT


async def test_orchestrator_crash_falls_back_until_round_limit(machine, scripted_provider, pricing_config):
    client = GenerationClient(scripted_provider, "test-model", pricing_config)
    orchestrator = OrchestratorDecisionModule(client, conclude_after_round=5)
    orchestrator.decide = AsyncMock(side_effect=RuntimeError("bug"))
    engine = _engine(machine, scripted_provider, pricing_config, orchestrator=orchestrator)
    engine.start("Car bans", DebateMode.AUTO)

    await engine.run()

    s = engine.state
    assert s.phase == DebatePhase.VERDICT
    assert s.current_round == 6
    assert s.transcript[-4].content == f"Chairperson Concluding: {DEFAULT_GUIDANCE}"


async def test_guest_turn_then_next_round(machine, scripted, scripted_provider, pricing_config):
    scripted.decisions = [
        {"shouldConclude": False, "guidance": "Bring in planning.", "summonGuest": GUEST},
        {"shouldConclude": True, "guidance": "Enough."},
    ]
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.AUTO)

    await engine.run()

    s = engine.state
    notice = next(m for m in s.transcript if m.agent_id == CHAIRPERSON_ID)
    assert "Dr. Lena Park" in notice.content
    assert "Zoning questions came up." in notice.content
    guest = next(m for m in s.transcript if m.is_guest)
    assert guest.guest_role == "Urban Planner"
    assert guest.agent_id == "guest-dr-lena-park"
    assert s.summoned_guest is None
    assert s.current_round == 2


async def test_consultation_auto_declines_after_timeout(machine, scripted, scripted_provider, pricing_config):
    scripted.decisions = [{"shouldConclude": False, "guidance": "Any input?", "shouldConsultUser": True}]
    engine = _engine(machine, scripted_provider, pricing_config, consultation_timeout_sec=0.01)
    engine.start("Car bans", DebateMode.AUTO)

    assert await engine.run() == EngineStatus.AWAITING_CONSULTATION
    assert engine.state.show_consultation_prompt is True

    await asyncio.sleep(0.05)

    s = engine.state
    assert s.show_consultation_prompt is False
    assert s.phase == DebatePhase.REBUTTAL
    assert s.current_round == 2
    assert engine.status == EngineStatus.IDLE


async def test_consultation_accepted_takes_user_feedback(machine, scripted, scripted_provider, pricing_config):
    scripted.decisions = [{"shouldConclude": False, "guidance": "Any input?", "shouldConsultUser": True}]
    engine = _engine(machine, scripted_provider, pricing_config, consultation_timeout_sec=0.01)
    engine.start("Car bans", DebateMode.AUTO)
    await engine.run()

    engine.respond_to_consultation(True)
    await asyncio.sleep(0.05)
    assert engine.status == EngineStatus.AWAITING_HUMAN
    assert engine.state.pending_user_question == prompts.CONSULTATION_QUESTION

    engine.submit_answer("Consider buses.")
    s = engine.state
    assert s.transcript[-1].agent_id == USER_ID
    assert s.phase == DebatePhase.REBUTTAL
    assert s.current_round == 2


async def test_wait_for_consultation_returns_after_auto_decline(machine, scripted, scripted_provider, pricing_config):
    scripted.decisions = [{"shouldConclude": False, "guidance": "Any input?", "shouldConsultUser": True}]
    engine = _engine(machine, scripted_provider, pricing_config, consultation_timeout_sec=0.01)
    engine.start("Car bans", DebateMode.AUTO)

    assert await engine.run() == EngineStatus.AWAITING_CONSULTATION
    assert engine.consultation_timer_armed is True

    await asyncio.wait_for(engine.wait_for_consultation(), timeout=1)

    assert engine.consultation_timer_armed is False
    assert engine.status == EngineStatus.IDLE
    assert engine.state.current_round == 2


async def test_consultation_without_timer_waits_for_an_answer(machine, scripted, scripted_provider, pricing_config):
    scripted.decisions = [{"shouldConclude": False, "guidance": "Any input?", "shouldConsultUser": True}]
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.AUTO)

    assert await engine.run() == EngineStatus.AWAITING_CONSULTATION
    assert engine.consultation_timer_armed is False
    await asyncio.sleep(0.02)
    assert engine.status == EngineStatus.AWAITING_CONSULTATION


async def test_ask_user_suspends_and_resumes(machine, scripted, scripted_provider, pricing_config):
    scripted.ask_user_once = "Do you drive to work?"
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    assert await engine.run() == EngineStatus.AWAITING_HUMAN
    s = engine.state
    assert s.phase == DebatePhase.USER_INPUT
    assert s.pending_user_question == "Do you drive to work?"
    assert s.transcript == []

    engine.submit_answer("Rarely")
    assert engine.status == EngineStatus.AWAITING_TOOL
    assert await engine.step() is True

    s = engine.state
    assert [m.agent_id for m in s.transcript] == [USER_ID, "agent-a"]
    assert s.transcript[1].content == "Thanks, that settles it."
    assert s.transcript[1].phase == DebatePhase.OPENING
    assert s.current_turn_agent_id == "agent-b"
    assert "Rarely" in scripted.resume_prompts[0]


async def test_ask_user_without_question_gets_default(machine, scripted, scripted_provider, pricing_config):
    scripted.ask_user_once = ""
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)
    await engine.run()
    assert engine.state.pending_user_question == "What is your view on this?"


async def test_failed_turn_appends_error_filler(machine, scripted, scripted_provider, pricing_config):
    scripted.fail_turns = True
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)
    await engine.step()
    message = engine.state.transcript[0]
    assert message.content == FILLER_TEXT
    assert message.kind == MessageKind.ERROR
    assert engine.state.current_turn_agent_id == "agent-b"


async def test_transient_failures_exhaust_retries_then_filler(machine, pricing_config):
    provider = MockProvider("google", native_search=True, retry_transient=True)
    provider.generate.side_effect = ProviderError("google", "429 quota exceeded", ErrorKind.RATE_LIMITED)
    engine = _engine(machine, provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    with patch("council.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        assert await engine.step() is True

    assert provider.generate.await_count == 4
    assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0, 8.0]
    s = engine.state
    assert s.transcript[0].agent_id == "agent-a"
    assert s.transcript[0].content == FILLER_TEXT
    assert s.transcript[0].kind == MessageKind.ERROR
    assert s.current_turn_agent_id == "agent-b"
    assert engine.status == EngineStatus.IDLE


async def test_turn_crash_appends_filler_and_rotates(machine, scripted_provider, pricing_config):
    executor = TurnExecutor(GenerationClient(scripted_provider, "test-model", pricing_config))
    executor.run_turn = AsyncMock(side_effect=AttributeError("'str' object has no attribute 'get'"))
    engine = _engine(machine, scripted_provider, pricing_config, executor=executor)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    assert await engine.step() is True

    s = engine.state
    assert engine.status == EngineStatus.IDLE
    assert s.transcript[0].content == FILLER_TEXT
    assert s.transcript[0].kind == MessageKind.ERROR
    assert s.current_turn_agent_id == "agent-b"
    assert await engine.step() is True
    assert engine.state.current_turn_agent_id == "agent-c"


async def test_search_payload_not_an_object_still_ends_turn(
    monkeypatch, machine, scripted, scripted_provider, pricing_config
):
    monkeypatch.setenv("TEST_PPLX_KEY", "pplx-test")
    scripted.search_once = "Oslo car ban"
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=["unexpected"]))
    async with httpx.AsyncClient(transport=transport) as http:
        search = SearchAugmentationService("TEST_PPLX_KEY", http_client=http)
        engine = _engine(machine, scripted_provider, pricing_config, search=search)
        engine.start("Car bans", DebateMode.FIXED, max_rounds=1)
        assert await engine.step() is True

    s = engine.state
    assert engine.status == EngineStatus.IDLE
    assert [m.agent_id for m in s.transcript] == ["agent-a"]
    assert s.transcript[0].content == "Thanks, that settles it."
    assert "Failed to perform search." in scripted.resume_prompts[0]
    assert s.current_turn_agent_id == "agent-b"


async def test_ask_user_with_non_object_arguments_still_suspends(
    machine, scripted, scripted_provider, pricing_config
):
    scripted.ask_user_once = ""
    scripted.ask_user_arguments = "why?"
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    assert await engine.run() == EngineStatus.AWAITING_HUMAN
    assert engine.state.pending_user_question == "What is your view on this?"

    engine.submit_answer("Rarely")
    assert await engine.step() is True
    assert engine.state.current_turn_agent_id == "agent-b"


async def test_fallacies_attached_through_update_queue(machine, scripted, scripted_provider, pricing_config):
    scripted.turn_text = LONG_TURN
    scripted.fallacy = {"found": True, "name": "Hasty Generalization", "reason": "One anecdote.", "severity": "major"}
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    await engine.run()
    await engine.wait_for_background()

    turns = _agent_turns(engine.state)
    assert len(turns) == 9
    assert all(m.fallacy is not None and m.fallacy.name == "Hasty Generalization" for m in turns)


async def test_skip_turn_while_generating(machine, scripted, scripted_provider, pricing_config):
    scripted.gate = asyncio.Event()
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    step = asyncio.ensure_future(engine.step())
    await _until_generating(engine)
    with pytest.raises(EngineBusyError):
        await engine.step()

    engine.skip_turn()
    await step
    s = engine.state
    assert s.current_turn_agent_id == "agent-b"
    assert s.transcript == []

    scripted.gate.set()
    await engine.wait_for_background()
    assert [m.agent_id for m in engine.state.transcript] == ["agent-a"]


async def test_force_phase_during_turn(machine, scripted, scripted_provider, pricing_config):
    scripted.gate = asyncio.Event()
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    step = asyncio.ensure_future(engine.step())
    await _until_generating(engine)
    engine.force_phase(DebatePhase.VOTING)
    await step
    scripted.gate.set()

    await engine.run()
    assert engine.state.phase == DebatePhase.VERDICT


async def test_stop_request_goes_to_voting(machine, scripted_provider, pricing_config):
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=3)
    engine.request_stop()

    await engine.run()

    s = engine.state
    assert len(_agent_turns(s)) == 1
    assert s.phase == DebatePhase.VERDICT


async def test_director_injection_reaches_next_prompt(machine, scripted, scripted_provider, pricing_config):
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)
    engine.inject_message("Consider cyclists.")
    engine.add_context("Oslo cut traffic by 20%.")

    await engine.step()

    prompt = scripted.turn_prompts[0]
    assert "[SYSTEM INJECTION]: [DIRECTOR OVERRIDE]: Consider cyclists." in prompt
    assert "[DOC]: Oslo cut traffic by 20%." in prompt


async def test_follow_up_after_verdict(machine, scripted_provider, pricing_config):
    engine = _engine(machine, scripted_provider, pricing_config)
    engine.start("Car bans", DebateMode.FIXED, max_rounds=1)

    with pytest.raises(InvalidTransitionError):
        await engine.ask_follow_up("Too early?")

    await engine.run()
    verdict = engine.state.final_verdict
    answer = await engine.ask_follow_up("Where do we start?")

    s = engine.state
    assert answer.agent_id == CHAIRPERSON_ID
    assert answer.content == "Start with one district."
    assert s.transcript[-2].agent_id == USER_ID
    assert s.final_verdict == verdict
    assert s.phase == DebatePhase.VERDICT
    assert engine.status == EngineStatus.IDLE
