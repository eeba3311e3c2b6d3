"""Debate engine: an explicit scheduler that drives the state machine one step at a time."""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass

from council import prompts
from council.fallacy import FallacyAnalyzer, FallacyUpdate
from council.models import (
    CHAIRPERSON_ID,
    ORCHESTRATOR_TURN,
    USER_ID,
    Agent,
    DebateMode,
    DebatePhase,
    DebateState,
    EngineStatus,
    GuestDescriptor,
    Message,
    MessageKind,
    OrchestratorDecision,
)
from council.orchestrator import OrchestratorDecisionModule, guest_agent
from council.state import DebateStateMachine, InvalidTransitionError
from council.turn import FILLER_TEXT, TurnExecutor, TurnResult
from council.voting import VotingPipeline

logger = logging.getLogger(__name__)

_DEFAULT_QUESTION = "What is your view on this?"


class EngineBusyError(RuntimeError):
    """Raised when a turn-producing sequence is started while another is in flight."""


@dataclass
class _LateTurn:
    """Result of a turn that was skipped while its generation call was in flight."""

    agent: Agent
    phase: DebatePhase
    result: TurnResult


class DebateEngine:
    """Single-writer driver over a DebateStateMachine.

    ``step()`` looks at the state and dispatches exactly one of: start a turn,
    resume a tool call, run the orchestrator, run voting. Fallacy findings and
    results of skipped turns arrive on an update queue that is drained before
    every dispatch.
    """

    def __init__(
        self,
        machine: DebateStateMachine,
        executor: TurnExecutor,
        orchestrator: OrchestratorDecisionModule,
        voting: VotingPipeline,
        fallacy: FallacyAnalyzer,
        consultation_timeout_sec: float | None = 10.0,
    ) -> None:
        self._machine = machine
        self._executor = executor
        self._orchestrator = orchestrator
        self._voting = voting
        self._fallacy = fallacy
        self._consultation_timeout = consultation_timeout_sec
        self._consultation_timer: asyncio.TimerHandle | None = None
        self._consultation_closed: asyncio.Event | None = None
        self._updates: asyncio.Queue = asyncio.Queue()
        self._background: set[asyncio.Task] = set()
        self._skip_event: asyncio.Event | None = None

    @property
    def machine(self) -> DebateStateMachine:
        return self._machine

    @property
    def state(self) -> DebateState:
        return self._machine.snapshot()

    @property
    def status(self) -> EngineStatus:
        return self._machine.state.status

    def start(
        self,
        topic: str,
        mode: DebateMode = DebateMode.AUTO,
        max_rounds: int = 2,
        initial_context: str = "",
    ) -> None:
        self._machine.start(topic, mode, max_rounds, initial_context)

    # --- scheduler ---

    async def step(self) -> bool:
        """Dispatch one unit of work. Returns False when nothing can proceed."""
        self.drain_updates()
        s = self._machine.state
        if s.status == EngineStatus.GENERATING:
            raise EngineBusyError("A turn-producing sequence is already in flight")
        if s.phase in (DebatePhase.SETUP, DebatePhase.VERDICT):
            return False
        if s.status in (EngineStatus.AWAITING_HUMAN, EngineStatus.AWAITING_CONSULTATION):
            return False

        if s.phase == DebatePhase.VOTING:
            if s.final_verdict is not None:
                return False
            await self._run_voting()
        elif s.current_turn_agent_id == ORCHESTRATOR_TURN:
            await self._run_orchestrator()
        elif s.status == EngineStatus.AWAITING_TOOL:
            await self._resume_tool()
        elif s.current_turn_agent_id:
            await self._start_turn()
        else:
            return False
        self.drain_updates()
        return True

    async def run(self) -> EngineStatus:
        """Drive the debate until a verdict is reached or a human must respond."""
        while await self.step():
            pass
        return self._machine.state.status

    # --- turns ---

    async def _await_unless_skipped(self, work: Awaitable[TurnResult]) -> tuple[asyncio.Task, TurnResult | None]:
        task = asyncio.ensure_future(work)
        skip_event = self._skip_event = asyncio.Event()
        skip_waiter = asyncio.ensure_future(skip_event.wait())
        try:
            await asyncio.wait({task, skip_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            skip_waiter.cancel()
            self._skip_event = None
        # A skip has already advanced the turn, even if the call finished in the same tick.
        if skip_event.is_set():
            return task, None
        return task, task.result()

    def _detach(self, task: asyncio.Task, agent: Agent, phase: DebatePhase) -> None:
        logger.info("Turn of %s skipped; its result will be appended when it arrives", agent.id)
        self._background.add(task)

        def on_done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if t.cancelled():
                return
            if t.exception() is not None:
                logger.warning("Skipped turn of %s failed: %s", agent.id, t.exception())
                return
            self._updates.put_nowait(_LateTurn(agent, phase, t.result()))

        task.add_done_callback(on_done)

    async def _start_turn(self) -> None:
        s = self._machine.state
        agent = self._machine.agent(s.current_turn_agent_id)
        if agent is None:
            logger.warning("Unknown agent %s holds the turn, advancing", s.current_turn_agent_id)
            self._machine.advance_turn()
            return

        phase = s.phase
        self._machine.begin_generation(agent.id)
        snapshot = self._machine.snapshot()
        await self._run_agent_turn(
            agent,
            phase,
            self._executor.run_turn(
                agent,
                snapshot.transcript,
                snapshot.topic,
                phase,
                snapshot.context_documents,
                self._machine.agents,
            ),
        )

    async def _resume_tool(self) -> None:
        s = self._machine.state
        agent = self._machine.agent(s.current_turn_agent_id)
        tool_call = s.pending_tool_call
        if agent is None or tool_call is None:
            logger.warning("Nothing to resume for %s, advancing", s.current_turn_agent_id)
            self._machine.advance_turn()
            return

        phase = s.phase
        answer = s.pending_tool_result or "Proceed."
        self._machine.begin_generation(agent.id)
        await self._run_agent_turn(
            agent, phase, self._executor.resume(agent, s.topic, tool_call, {"answer": answer})
        )

    async def _run_agent_turn(self, agent: Agent, phase: DebatePhase, work: Awaitable[TurnResult]) -> None:
        """Await a turn and land its outcome. A crash still ends the turn with filler text."""
        try:
            task, result = await self._await_unless_skipped(work)
            if result is None:
                self._detach(task, agent, phase)
                return
            self._complete_turn(agent, phase, result)
        except Exception as exc:
            logger.error("Turn of %s crashed, appending filler: %s", agent.id, exc)
            self._machine.cancel_pending_question()
            self._append_turn(agent, phase, TurnResult(text=FILLER_TEXT, failed=True))
            self._machine.advance_turn()

    def _complete_turn(self, agent: Agent, phase: DebatePhase, result: TurnResult) -> None:
        self._machine.record_usage(result.usage)
        if result.pending:
            arguments = result.tool_call.arguments if isinstance(result.tool_call.arguments, dict) else {}
            question = str(arguments.get("question") or "") or _DEFAULT_QUESTION
            self._machine.suspend_for_tool(result.tool_call, question)
            return
        self._append_turn(agent, phase, result)
        self._machine.advance_turn()

    def _append_turn(
        self,
        agent: Agent,
        phase: DebatePhase,
        result: TurnResult,
        guest: GuestDescriptor | None = None,
    ) -> Message:
        message = self._machine.append_message(
            agent.id,
            result.text,
            phase=phase,
            citations=result.citations,
            kind=MessageKind.ERROR if result.failed else MessageKind.TEXT,
            is_guest=guest is not None,
            guest_role=guest.role if guest else None,
        )
        if not result.failed:
            self._fire_fallacy(message)
        return message

    # --- fallacy side channel ---

    def _fire_fallacy(self, message: Message) -> None:
        if not self._fallacy.qualifies(message.content):
            return
        task = asyncio.ensure_future(
            self._fallacy.analyze(message.id, message.content, self._machine.state.topic)
        )
        self._background.add(task)
        task.add_done_callback(self._on_fallacy_done)

    def _on_fallacy_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.warning("Fallacy analysis crashed: %s", task.exception())
            return
        self._updates.put_nowait(task.result())

    def drain_updates(self) -> int:
        """Apply every queued background update. Returns how many were applied."""
        applied = 0
        while True:
            try:
                update = self._updates.get_nowait()
            except asyncio.QueueEmpty:
                break
            if isinstance(update, FallacyUpdate):
                self._machine.record_usage(update.usage)
                if update.fallacy is not None:
                    self._machine.attach_fallacy(update.message_id, update.fallacy)
            elif isinstance(update, _LateTurn):
                self._machine.record_usage(update.result.usage)
                if update.result.pending:
                    logger.warning("Discarding question from skipped turn of %s", update.agent.id)
                else:
                    self._append_turn(update.agent, update.phase, update.result)
            applied += 1
        return applied

    async def wait_for_background(self) -> None:
        """Wait for outstanding analyses and skipped turns, then apply their results."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        self.drain_updates()

    # --- orchestrator ---

    async def _run_orchestrator(self) -> None:
        s = self._machine.state
        self._machine.begin_generation(CHAIRPERSON_ID)
        snapshot = self._machine.snapshot()
        try:
            decision: OrchestratorDecision = await self._orchestrator.decide(
                snapshot.topic, snapshot.transcript, snapshot.current_round, self._machine.agents
            )
        except Exception as exc:
            logger.error("Orchestrator crashed, using fallback decision: %s", exc)
            decision = self._orchestrator.fallback(s.current_round)
        self._machine.record_usage(decision.usage)

        if decision.should_conclude or self._machine.state.user_requested_stop:
            self._machine.conclude(decision.guidance)
            return

        if decision.summon_guest is not None:
            await self._run_guest(decision.summon_guest)
            return

        self._machine.append_message(CHAIRPERSON_ID, decision.guidance)
        if decision.should_consult_user:
            self._machine.raise_consultation()
            self._arm_consultation_timer()
            return
        self._machine.resume_next_round()

    async def _run_guest(self, guest: GuestDescriptor) -> None:
        self._machine.append_message(
            CHAIRPERSON_ID,
            prompts.SUMMON_NOTICE.format(name=guest.name, role=guest.role, reason=guest.reason),
        )
        self._machine.set_guest(guest)
        agent = guest_agent(guest)
        self._machine.begin_generation(agent.id)
        snapshot = self._machine.snapshot()
        try:
            result = await self._executor.run_turn(
                agent,
                snapshot.transcript,
                snapshot.topic,
                snapshot.phase,
                snapshot.context_documents,
                self._machine.agents,
                allow_user_questions=False,
            )
        except Exception as exc:
            logger.error("Guest turn of %s crashed, appending filler: %s", agent.id, exc)
            result = TurnResult(text=FILLER_TEXT, failed=True)
        self._machine.record_usage(result.usage)
        self._append_turn(agent, snapshot.phase, result, guest=guest)
        self._machine.resume_next_round()

    # --- consultation ---

    def _arm_consultation_timer(self) -> None:
        if self._consultation_timeout is None:
            return
        loop = asyncio.get_running_loop()
        self._consultation_closed = asyncio.Event()
        self._consultation_timer = loop.call_later(self._consultation_timeout, self._auto_decline)

    def _cancel_consultation_timer(self) -> None:
        if self._consultation_timer is not None:
            self._consultation_timer.cancel()
            self._consultation_timer = None
        if self._consultation_closed is not None:
            self._consultation_closed.set()

    def _auto_decline(self) -> None:
        self._consultation_timer = None
        if self._machine.state.show_consultation_prompt:
            logger.info("Consultation prompt timed out, declining")
            self._machine.respond_to_consultation(False)
        if self._consultation_closed is not None:
            self._consultation_closed.set()

    @property
    def consultation_timer_armed(self) -> bool:
        return self._consultation_timer is not None

    async def wait_for_consultation(self) -> None:
        """Wait until the open consultation prompt is answered or auto-declined."""
        closed = self._consultation_closed
        if closed is not None and self._machine.state.show_consultation_prompt:
            await closed.wait()

    def respond_to_consultation(self, accepted: bool) -> None:
        self._cancel_consultation_timer()
        self._machine.respond_to_consultation(accepted)

    def submit_answer(self, answer: str) -> None:
        """Answer the pending question (an agent's askUser call or the chairperson's consultation)."""
        self._machine.submit_answer(answer)

    # --- voting ---

    async def _run_voting(self) -> None:
        self._machine.begin_generation(None)
        snapshot = self._machine.snapshot()
        agents = self._machine.agents

        votes, usage = await self._voting.collect_votes(agents, snapshot.topic, snapshot.transcript)
        self._machine.record_usage(usage)
        names = {a.id: a.name for a in agents}
        for vote in votes:
            self._machine.append_message(
                vote.voter_id,
                f"Voted for {names.get(vote.target_agent_id, vote.target_agent_id)} "
                f"({vote.score:g}): {vote.reason}",
                phase=DebatePhase.VOTING,
                kind=MessageKind.VOTE,
            )

        verdict, usage = await self._voting.render_verdict(
            snapshot.topic, snapshot.transcript, votes, agents
        )
        self._machine.record_usage(usage)
        self._machine.set_verdict(verdict)

    # --- director and post-verdict surface ---

    def request_stop(self) -> None:
        self._machine.request_stop()

    def inject_message(self, text: str) -> Message:
        return self._machine.inject_message(text)

    def add_context(self, content: str) -> None:
        self._machine.add_context(content)

    def skip_turn(self) -> None:
        """Run the rotation boundary now. An in-flight call keeps running; its text lands later."""
        s = self._machine.state
        agent_holds_turn = self._machine.agent(s.current_turn_agent_id) is not None
        if s.status == EngineStatus.GENERATING:
            if self._skip_event is None or not agent_holds_turn:
                raise EngineBusyError("Only an agent turn can be skipped while generating")
            self._skip_event.set()
        elif not agent_holds_turn:
            logger.info("No agent turn to skip (turn=%s)", s.current_turn_agent_id)
            return
        elif s.status in (EngineStatus.AWAITING_HUMAN, EngineStatus.AWAITING_TOOL):
            self._machine.cancel_pending_question()
        self._machine.advance_turn()

    def force_phase(self, phase: DebatePhase) -> None:
        s = self._machine.state
        if s.status == EngineStatus.GENERATING:
            if self._skip_event is None:
                raise EngineBusyError("Cannot force a phase while the orchestrator or voting is running")
            self._skip_event.set()
        self._cancel_consultation_timer()
        self._machine.force_phase(phase)

    async def ask_follow_up(self, question: str) -> Message:
        """Post-verdict Q&A with the chairperson. Leaves the verdict and phase untouched."""
        s = self._machine.state
        if s.final_verdict is None:
            raise InvalidTransitionError("Follow-up questions need a verdict")
        if s.status == EngineStatus.GENERATING:
            raise EngineBusyError("A turn-producing sequence is already in flight")

        self._machine.append_message(USER_ID, question, phase=DebatePhase.VERDICT)
        self._machine.begin_generation(CHAIRPERSON_ID)
        try:
            answer, usage = await self._voting.answer_follow_up(question, s.final_verdict)
        finally:
            self._machine.end_generation()
        self._machine.record_usage(usage)
        return self._machine.append_message(CHAIRPERSON_ID, answer, phase=DebatePhase.VERDICT)
