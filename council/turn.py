"""Turn executor: builds an agent's prompt, calls the generation client, resolves tool calls."""

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from council import prompts
from council.client import GenerationClient
from council.models import (
    CHAIRPERSON_ID,
    SYSTEM_ID,
    USER_ID,
    Agent,
    Citation,
    ContextDocument,
    DebatePhase,
    GenerationRequest,
    Message,
    TokenUsage,
    ToolCall,
)
from council.search import SearchAugmentationService

logger = logging.getLogger(__name__)

FILLER_TEXT = "Error generating response."
EMPTY_TURN_TEXT = "I have no further comments."
EMPTY_RESUME_TEXT = "Acknowledged."
NO_SEARCH_TEXT = "Search is not available in this session."

_TEMPERATURE = 0.7


@dataclass
class TurnResult:
    """Outcome of one turn: final text, or a pending user question in ``tool_call``."""

    text: str
    citations: list[Citation] = field(default_factory=list)
    tool_call: ToolCall | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    failed: bool = False

    @property
    def pending(self) -> bool:
        return self.tool_call is not None


def render_history(messages: Sequence[Message], roster: Sequence[Agent] = ()) -> str:
    """Render transcript lines with labels that set moderator/guest/system text apart."""
    names = {a.id: a.name for a in roster}
    lines: list[str] = []
    for m in messages:
        if m.agent_id == CHAIRPERSON_ID:
            lines.append(f"[MODERATOR GUIDANCE]: {m.content}")
        elif m.is_guest:
            lines.append(f"[GUEST EXPERT {m.guest_role}]: {m.content}")
        elif m.agent_id == SYSTEM_ID:
            lines.append(f"[SYSTEM INJECTION]: {m.content}")
        elif m.agent_id == USER_ID:
            lines.append(f"User: {m.content}")
        else:
            lines.append(f"{names.get(m.agent_id, m.agent_id)}: {m.content}")
    return "\n\n".join(lines)


class TurnExecutor:
    """Produces one agent turn.

    Web searches requested through the ``search_web`` tool are resolved inline;
    an ``askUser`` call is handed back to the caller as a pending tool call.
    Provider failures degrade to filler text rather than raising.
    """

    def __init__(
        self,
        client: GenerationClient,
        search: SearchAugmentationService | None = None,
        transcript_window: int = 15,
    ) -> None:
        self._client = client
        self._search = search
        self._window = transcript_window

    def _search_hint(self) -> str:
        if self._client.native_search:
            return prompts.SEARCH_HINT_NATIVE
        if self._client.search_augmentation:
            return prompts.SEARCH_HINT_TOOL
        return prompts.SEARCH_HINT_NONE

    def build_prompt(
        self,
        transcript: Sequence[Message],
        topic: str,
        phase: DebatePhase,
        documents: Sequence[ContextDocument] = (),
        roster: Sequence[Agent] = (),
        allow_user_questions: bool = True,
    ) -> str:
        recent = list(transcript)[-self._window:] if self._window > 0 else list(transcript)

        template = prompts.PHASE_INSTRUCTIONS.get(phase, prompts.DEFAULT_PHASE_INSTRUCTION)
        instructions = template.format(topic=topic, search_hint=self._search_hint())

        context = ""
        if documents:
            context = prompts.CONTEXT_BLOCK.format(
                documents="\n\n".join(f"[DOC]: {d.content}" for d in documents)
            )

        return prompts.AGENT_TURN.format(
            topic=topic,
            context=context,
            history=render_history(recent, roster),
            instructions=instructions,
            ask_user_rule=prompts.ASK_USER_RULE if allow_user_questions else "",
        )

    async def run_turn(
        self,
        agent: Agent,
        transcript: Sequence[Message],
        topic: str,
        phase: DebatePhase,
        documents: Sequence[ContextDocument] = (),
        roster: Sequence[Agent] = (),
        allow_user_questions: bool = True,
    ) -> TurnResult:
        tools = [prompts.ASK_USER_TOOL] if allow_user_questions else []
        if self._client.search_augmentation:
            tools.append(prompts.SEARCH_WEB_TOOL)

        request = GenerationRequest(
            prompt=self.build_prompt(transcript, topic, phase, documents, roster, allow_user_questions),
            system_instruction=agent.system_prompt,
            tools=tools,
            model_override=agent.model_override,
            temperature=_TEMPERATURE,
            native_search=True,
        )

        try:
            response = await self._client.generate(request)
        except Exception as exc:
            logger.error("Agent turn failed for %s: %s", agent.id, exc)
            return TurnResult(text=FILLER_TEXT, failed=True)

        call = response.tool_call
        if call is not None:
            if not isinstance(call.arguments, dict):
                logger.warning("Dropping non-object arguments of %s from %s", call.name, agent.id)
                call = ToolCall(name=call.name, arguments={}, id=call.id)
            try:
                if call.name == prompts.ASK_USER and allow_user_questions:
                    logger.info("%s asks the user: %s", agent.id, call.arguments.get("question"))
                    return TurnResult(text="", tool_call=call, usage=response.usage)
                if call.name == prompts.SEARCH_WEB:
                    return await self._resolve_search(agent, topic, call, response.usage)
            except Exception as exc:
                logger.error("Tool call %s failed for %s: %s", call.name, agent.id, exc)
                return TurnResult(text=FILLER_TEXT, usage=response.usage, failed=True)
            logger.warning("Ignoring unsupported tool call %r from %s", call.name, agent.id)

        return TurnResult(
            text=response.text or EMPTY_TURN_TEXT,
            citations=response.citations,
            usage=response.usage,
        )

    async def _resolve_search(
        self, agent: Agent, topic: str, call: ToolCall, usage: TokenUsage
    ) -> TurnResult:
        query = str(call.arguments.get("query", ""))
        if self._search is None:
            result = await self.resume(agent, topic, call, {"result": NO_SEARCH_TEXT})
            result.usage = usage + result.usage
            return result

        search = await self._search.search(query)
        usage = usage + TokenUsage(total_cost=self._client.augmentation_cost())
        result = await self.resume(agent, topic, call, {"result": search.text})
        result.usage = usage + result.usage
        result.citations = search.citations + result.citations
        return result

    async def resume(
        self,
        agent: Agent,
        topic: str,
        tool_call: ToolCall,
        tool_result: dict[str, Any],
    ) -> TurnResult:
        """Continue a turn after its tool call was answered."""
        request = GenerationRequest(
            prompt=prompts.TOOL_RESUME.format(
                topic=topic,
                tool_name=tool_call.name,
                tool_result=json.dumps(tool_result, ensure_ascii=False),
            ),
            system_instruction=agent.system_prompt,
            model_override=agent.model_override,
            native_search=True,
        )
        try:
            response = await self._client.generate(request)
        except Exception as exc:
            logger.error("Tool resume failed for %s (%s): %s", agent.id, tool_call.name, exc)
            return TurnResult(text=FILLER_TEXT, failed=True)

        return TurnResult(
            text=response.text or EMPTY_RESUME_TEXT,
            citations=response.citations,
            usage=response.usage,
        )
