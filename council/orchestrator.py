"""Auto-pilot decision module: conclude, consult the human, or summon a guest."""

import logging
import re
from collections.abc import Sequence

from council import prompts
from council.client import GenerationClient
from council.json_utils import parse_json_object
from council.models import (
    Agent,
    AgentRole,
    GenerationRequest,
    GuestDescriptor,
    Message,
    OrchestratorDecision,
)
from council.turn import render_history

logger = logging.getLogger(__name__)

DEFAULT_GUIDANCE = "Continue the debate."
_THINKING_BUDGET = 1024


def guest_agent(guest: GuestDescriptor) -> Agent:
    """Synthesize the transient agent for a summoned guest."""
    slug = re.sub(r"[^a-z0-9]+", "-", guest.name.lower()).strip("-") or "expert"
    return Agent(
        id=f"guest-{slug}",
        name=guest.name,
        role=AgentRole.GUEST,
        system_prompt=guest.system_prompt,
        description=f"Guest Expert: {guest.role}",
    )


def _parse_guest(raw: object) -> GuestDescriptor | None:
    if not isinstance(raw, dict):
        return None
    name = str(raw.get("name") or "").strip()
    system_prompt = str(raw.get("systemPrompt") or "").strip()
    if not name or not system_prompt:
        return None
    return GuestDescriptor(
        name=name,
        role=str(raw.get("role") or "Expert"),
        system_prompt=system_prompt,
        reason=str(raw.get("reason") or ""),
    )


class OrchestratorDecisionModule:
    """Invoked once per full agent cycle in auto-pilot mode.

    ``guest_round_limit`` makes the guest-summon round restriction a checked
    rule instead of a prompt-only request; ``None`` leaves it to the prompt.
    ``persona`` is the configured chairperson prompt, prefixed to the system
    instruction.
    """

    def __init__(
        self,
        client: GenerationClient,
        conclude_after_round: int = 5,
        guest_round_limit: int | None = 2,
        use_thinking: bool | None = None,
        persona: str = "",
    ) -> None:
        self._client = client
        self._conclude_after = conclude_after_round
        self._guest_round_limit = guest_round_limit
        self._use_thinking = client.native_search if use_thinking is None else use_thinking
        self._persona = persona

    def fallback(self, current_round: int) -> OrchestratorDecision:
        return OrchestratorDecision(
            should_conclude=current_round > self._conclude_after,
            guidance=DEFAULT_GUIDANCE,
        )

    async def decide(
        self,
        topic: str,
        transcript: Sequence[Message],
        current_round: int,
        roster: Sequence[Agent] = (),
    ) -> OrchestratorDecision:
        request = GenerationRequest(
            prompt=prompts.ORCHESTRATOR.format(
                topic=topic,
                round=current_round,
                transcript=render_history(transcript, roster),
                conclude_after=self._conclude_after,
                guest_limit=self._guest_round_limit if self._guest_round_limit is not None else 2,
            ),
            system_instruction=prompts.with_persona(self._persona, prompts.ORCHESTRATOR_SYSTEM),
            response_schema=prompts.ORCHESTRATOR_SCHEMA,
            thinking_budget=_THINKING_BUDGET if self._use_thinking else None,
        )
        try:
            response = await self._client.generate(request)
        except Exception as exc:
            logger.error("Orchestrator decision failed in round %d: %s", current_round, exc)
            return self.fallback(current_round)

        data = parse_json_object(response.text)
        if not data:
            logger.warning("Orchestrator returned no usable JSON in round %d", current_round)

        guest = _parse_guest(data.get("summonGuest"))
        if guest and self._guest_round_limit is not None and current_round > self._guest_round_limit:
            logger.warning(
                "Dropping guest %s: round %d is past the guest limit %d",
                guest.name, current_round, self._guest_round_limit,
            )
            guest = None

        decision = OrchestratorDecision(
            should_conclude=bool(data.get("shouldConclude")) or current_round > self._conclude_after,
            guidance=str(data.get("guidance") or DEFAULT_GUIDANCE),
            should_consult_user=bool(data.get("shouldConsultUser")),
            summon_guest=guest,
            usage=response.usage,
        )
        logger.info(
            "Orchestrator round %d: conclude=%s consult=%s guest=%s",
            current_round, decision.should_conclude, decision.should_consult_user,
            guest.name if guest else None,
        )
        return decision
