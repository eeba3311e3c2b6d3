"""Debate state machine: the single owner of DebateState and its transition functions."""

import copy
import logging
import time
import uuid
from collections.abc import Callable

from council import prompts
from council.models import (
    CHAIRPERSON_ID,
    ORCHESTRATOR_TURN,
    SYSTEM_ID,
    USER_ID,
    Agent,
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
)

logger = logging.getLogger(__name__)

_DEBATING_PHASES = (DebatePhase.OPENING, DebatePhase.REBUTTAL, DebatePhase.SYNTHESIS)


class InvalidTransitionError(RuntimeError):
    """Raised when a mutation is not valid in the current state."""


class DebateStateMachine:
    """Owns the live DebateState. Every mutation goes through a method here.

    Other components read ``snapshot()`` copies and hand back results for the
    machine to apply.
    """

    def __init__(
        self,
        agents: list[Agent],
        state: DebateState | None = None,
        on_message: Callable[[Message], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._agents = list(agents)
        self._state = state or DebateState()
        self._on_message = on_message
        self._clock = clock

    @property
    def state(self) -> DebateState:
        """The live state. Treat as read-only outside this class."""
        return self._state

    @property
    def agents(self) -> list[Agent]:
        return list(self._agents)

    def snapshot(self) -> DebateState:
        return copy.deepcopy(self._state)

    def agent(self, agent_id: str | None) -> Agent | None:
        return next((a for a in self._agents if a.id == agent_id), None)

    # --- lifecycle ---

    def start(
        self,
        topic: str,
        mode: DebateMode = DebateMode.AUTO,
        max_rounds: int = 2,
        initial_context: str = "",
    ) -> None:
        if not self._agents:
            raise ValueError("A debate needs at least one agent")
        if self._state.phase != DebatePhase.SETUP:
            raise InvalidTransitionError(f"Debate already started (phase {self._state.phase.value})")

        documents = []
        if initial_context.strip():
            documents.append(ContextDocument(id=str(uuid.uuid4()), content=initial_context, timestamp=self._clock()))

        self._state = DebateState(
            topic=topic,
            mode=mode,
            max_rounds=max_rounds,
            phase=DebatePhase.OPENING,
            current_turn_agent_id=self._agents[0].id,
            context_documents=documents,
        )
        logger.info("Debate started: %r (%s, %d agents)", topic, mode.value, len(self._agents))

    # --- transcript ---

    def append_message(
        self,
        agent_id: str,
        content: str,
        phase: DebatePhase | None = None,
        citations: list[Citation] | None = None,
        kind: MessageKind = MessageKind.TEXT,
        is_guest: bool = False,
        guest_role: str | None = None,
    ) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            content=content,
            timestamp=self._clock(),
            phase=phase or self._state.phase,
            kind=kind,
            citations=list(citations or []),
            is_guest=is_guest,
            guest_role=guest_role,
        )
        self._state.transcript.append(message)
        if self._on_message:
            self._on_message(message)
        return message

    def attach_fallacy(self, message_id: str, fallacy: Fallacy) -> bool:
        """Attach a finding to a message. Returns False (silently) if the message is gone."""
        for message in self._state.transcript:
            if message.id == message_id:
                message.fallacy = fallacy
                return True
        logger.debug("Dropping fallacy for missing message %s", message_id)
        return False

    def record_usage(self, usage: TokenUsage) -> None:
        if usage.input_tokens < 0 or usage.output_tokens < 0 or usage.total_cost < 0:
            logger.warning("Ignoring negative usage delta: %s", usage)
            return
        self._state.token_usage = self._state.token_usage + usage

    # --- turn rotation ---

    def begin_generation(self, agent_id: str | None) -> None:
        self._state.status = EngineStatus.GENERATING
        self._state.is_thinking = True
        self._state.thinking_agent_id = agent_id

    def end_generation(self) -> None:
        self._state.status = EngineStatus.IDLE
        self._state.is_thinking = False
        self._state.thinking_agent_id = None

    def advance_turn(self) -> None:
        """Move to the next agent, running the phase transition at the end of the list."""
        s = self._state
        s.pending_tool_call = None
        s.pending_tool_result = None

        if s.user_requested_stop:
            s.current_turn_agent_id = None
            s.phase = DebatePhase.VOTING
            self.end_generation()
            logger.info("Stop honored at turn boundary, moving to voting")
            return

        index = next((i for i, a in enumerate(self._agents) if a.id == s.current_turn_agent_id), -1)
        next_index = index + 1
        next_phase = s.phase
        next_round = s.current_round

        if next_index >= len(self._agents):
            next_index = 0
            if s.phase == DebatePhase.OPENING:
                next_phase = DebatePhase.REBUTTAL
            elif s.phase == DebatePhase.REBUTTAL:
                next_phase = DebatePhase.SYNTHESIS
            elif s.phase == DebatePhase.SYNTHESIS:
                if s.mode == DebateMode.AUTO:
                    s.current_turn_agent_id = ORCHESTRATOR_TURN
                    self.end_generation()
                    return
                if s.current_round >= s.max_rounds:
                    next_phase = DebatePhase.VOTING
                else:
                    next_round += 1
                    next_phase = DebatePhase.REBUTTAL

        if next_phase == DebatePhase.VOTING:
            s.current_turn_agent_id = None
        else:
            s.current_turn_agent_id = self._agents[next_index].id
        if next_phase != s.phase:
            logger.info("Phase %s -> %s (round %d)", s.phase.value, next_phase.value, next_round)
        s.phase = next_phase
        s.current_round = next_round
        self.end_generation()

    def request_stop(self) -> None:
        self._state.user_requested_stop = True
        self.append_message(SYSTEM_ID, prompts.STOP_NOTICE)

    # --- human input ---

    def suspend_for_tool(self, tool_call: ToolCall, question: str) -> None:
        s = self._state
        s.pending_tool_call = tool_call
        s.pending_user_question = question
        s.suspended_phase = s.phase
        s.phase = DebatePhase.USER_INPUT
        s.status = EngineStatus.AWAITING_HUMAN
        s.is_thinking = False
        s.thinking_agent_id = s.current_turn_agent_id

    def submit_answer(self, answer: str) -> None:
        s = self._state
        if not s.pending_user_question:
            raise InvalidTransitionError("No question is pending")

        self.append_message(USER_ID, answer, phase=DebatePhase.USER_INPUT)
        s.pending_user_question = None

        if s.thinking_agent_id == CHAIRPERSON_ID:
            self.resume_next_round()
            return

        s.pending_tool_result = answer
        s.phase = s.suspended_phase or DebatePhase.OPENING
        s.suspended_phase = None
        s.status = EngineStatus.AWAITING_TOOL

    def cancel_pending_question(self) -> None:
        s = self._state
        if s.phase == DebatePhase.USER_INPUT:
            s.phase = s.suspended_phase or DebatePhase.OPENING
        s.suspended_phase = None
        s.pending_user_question = None
        s.pending_tool_call = None
        s.pending_tool_result = None
        s.show_consultation_prompt = False
        self.end_generation()

    def raise_consultation(self) -> None:
        self._state.show_consultation_prompt = True
        self._state.status = EngineStatus.AWAITING_CONSULTATION
        self._state.is_thinking = False

    def respond_to_consultation(self, accepted: bool) -> None:
        s = self._state
        if not s.show_consultation_prompt:
            raise InvalidTransitionError("No consultation prompt is open")
        s.show_consultation_prompt = False
        if not accepted:
            self.resume_next_round()
            return
        s.pending_user_question = prompts.CONSULTATION_QUESTION
        s.thinking_agent_id = CHAIRPERSON_ID
        s.status = EngineStatus.AWAITING_HUMAN

    # --- orchestrator outcomes ---

    def resume_next_round(self) -> None:
        s = self._state
        s.current_turn_agent_id = self._agents[0].id
        s.phase = DebatePhase.REBUTTAL
        s.current_round += 1
        s.summoned_guest = None
        self.end_generation()
        logger.info("Round %d begins", s.current_round)

    def set_guest(self, guest: GuestDescriptor | None) -> None:
        self._state.summoned_guest = guest

    def conclude(self, guidance: str) -> None:
        self.append_message(SYSTEM_ID, f"Chairperson Concluding: {guidance}")
        self._state.current_turn_agent_id = None
        self._state.phase = DebatePhase.VOTING
        self.end_generation()

    def set_verdict(self, verdict: FinalVerdict) -> None:
        s = self._state
        s.final_verdict = verdict
        s.phase = DebatePhase.VERDICT
        s.current_turn_agent_id = None
        self.end_generation()
        logger.info("Verdict reached: winner %s", verdict.winner_id)

    # --- director overrides ---

    def force_phase(self, phase: DebatePhase) -> None:
        if phase in (DebatePhase.SETUP, DebatePhase.USER_INPUT):
            raise InvalidTransitionError(f"Cannot force phase {phase.value}")
        if phase == DebatePhase.VERDICT and self._state.final_verdict is None:
            raise InvalidTransitionError("Cannot force VERDICT before a verdict exists")

        self.cancel_pending_question()
        s = self._state
        s.phase = phase
        if phase in _DEBATING_PHASES:
            s.current_turn_agent_id = self._agents[0].id
            s.final_verdict = None
        else:
            s.current_turn_agent_id = None
            if phase == DebatePhase.VOTING:
                s.final_verdict = None
        s.user_requested_stop = False
        logger.info("Director forced phase %s", phase.value)

    def inject_message(self, text: str) -> Message:
        return self.append_message(SYSTEM_ID, f"[DIRECTOR OVERRIDE]: {text}")

    def add_context(self, content: str) -> ContextDocument:
        document = ContextDocument(id=str(uuid.uuid4()), content=content, timestamp=self._clock())
        self._state.context_documents.append(document)
        self.append_message(SYSTEM_ID, prompts.CONTEXT_NOTICE)
        return document
