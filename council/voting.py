"""Voting and verdict: sequential per-agent votes, then one chairperson synthesis call."""

import asyncio
import logging
from collections.abc import Sequence

from council import prompts
from council.client import GenerationClient
from council.json_utils import parse_json_object
from council.models import Agent, FinalVerdict, GenerationRequest, Message, TokenUsage, Vote

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "Debate concluded."
DEFAULT_FOLLOW_UP = "I cannot answer that."
_VOTE_CONTEXT = 10
_THINKING_BUDGET = 2048


def _format_full_transcript(transcript: Sequence[Message]) -> str:
    """Format every message as ``author: content`` for the synthesis call."""
    return "\n".join(f"{m.agent_id}: {m.content}" for m in transcript)


def _resolve_agent(value: object, candidates: Sequence[Agent]) -> Agent | None:
    """Match a model-supplied id or display name against the candidates."""
    text = str(value or "").strip()
    if not text:
        return None
    for agent in candidates:
        if agent.id == text:
            return agent
    lowered = text.lower()
    for agent in candidates:
        if agent.name.lower() == lowered:
            return agent
    return None


def _score(value: object) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 5.0
    return score if score > 0 else 5.0


class VotingPipeline:
    def __init__(
        self,
        client: GenerationClient,
        vote_delay_sec: float = 1.0,
        use_thinking: bool | None = None,
        persona: str = "",
    ) -> None:
        self._client = client
        self._delay = vote_delay_sec
        self._use_thinking = client.native_search if use_thinking is None else use_thinking
        self._persona = persona

    async def cast_vote(
        self,
        agent: Agent,
        topic: str,
        transcript: Sequence[Message],
        agents: Sequence[Agent],
    ) -> tuple[Vote, TokenUsage]:
        """Ask one agent for its vote.

        Raises:
            ValueError: If the agent has nobody else to vote for.
            ProviderError: If the generation call fails.
        """
        candidates = [a for a in agents if a.id != agent.id]
        if not candidates:
            raise ValueError(f"No candidates for voter {agent.id}")

        recent = "\n".join(f"{m.agent_id}: {m.content}" for m in list(transcript)[-_VOTE_CONTEXT:])
        request = GenerationRequest(
            prompt=prompts.VOTE.format(
                topic=topic,
                candidates="\n".join(f"- {c.name} (id: {c.id})" for c in candidates),
                transcript=recent,
            ),
            system_instruction=agent.system_prompt,
            response_schema=prompts.VOTE_SCHEMA,
            model_override=agent.model_override,
        )
        response = await self._client.generate(request)

        data = parse_json_object(response.text)
        target = _resolve_agent(data.get("targetAgentId"), candidates) or candidates[0]
        vote = Vote(
            voter_id=agent.id,
            target_agent_id=target.id,
            score=_score(data.get("score")),
            reason=str(data.get("reason") or ("Good points." if data else "Default")),
        )
        return vote, response.usage

    async def collect_votes(
        self,
        agents: Sequence[Agent],
        topic: str,
        transcript: Sequence[Message],
    ) -> tuple[list[Vote], TokenUsage]:
        """Collect votes in roster order, one at a time, pausing before each call.

        A failed vote is logged and left out of the tally.
        """
        votes: list[Vote] = []
        usage = TokenUsage()
        for agent in agents:
            await asyncio.sleep(self._delay)
            try:
                vote, vote_usage = await self.cast_vote(agent, topic, transcript, agents)
            except Exception as exc:
                logger.error("Error collecting vote from %s: %s", agent.name, exc)
                continue
            votes.append(vote)
            usage = usage + vote_usage

        logger.info("Voting complete: %d/%d votes cast", len(votes), len(agents))
        return votes, usage

    async def render_verdict(
        self,
        topic: str,
        transcript: Sequence[Message],
        votes: list[Vote],
        agents: Sequence[Agent],
    ) -> tuple[FinalVerdict, TokenUsage]:
        """Synthesize the final verdict. Malformed or failed output yields a safe default."""
        names = {a.id: a.name for a in agents}
        votes_summary = "\n".join(
            f'{names.get(v.voter_id, v.voter_id)} voted for {names.get(v.target_agent_id, v.target_agent_id)} '
            f'(Score: {v.score:g}): "{v.reason}"'
            for v in votes
        )
        request = GenerationRequest(
            prompt=prompts.VERDICT.format(
                topic=topic,
                roster="\n".join(f"- {a.name} (id: {a.id})" for a in agents),
                votes=votes_summary or "(no votes were cast)",
                transcript=_format_full_transcript(transcript),
            ),
            system_instruction=prompts.with_persona(self._persona, prompts.VERDICT_SYSTEM),
            response_schema=prompts.VERDICT_SCHEMA,
            thinking_budget=_THINKING_BUDGET if self._use_thinking else None,
        )

        data: dict = {}
        usage = TokenUsage()
        try:
            response = await self._client.generate(request)
            data = parse_json_object(response.text)
            usage = response.usage
        except Exception as exc:
            logger.error("Verdict synthesis failed: %s", exc)

        winner = _resolve_agent(data.get("winnerId"), agents)
        takeaways = data.get("keyTakeaways")
        if not isinstance(takeaways, list):
            takeaways = []

        verdict = FinalVerdict(
            winner_id=winner.id if winner else agents[0].id,
            summary=str(data.get("summary") or DEFAULT_SUMMARY),
            key_takeaways=[str(t) for t in takeaways],
            votes=list(votes),
        )
        return verdict, usage

    async def answer_follow_up(self, question: str, verdict: FinalVerdict) -> tuple[str, TokenUsage]:
        """Answer a post-verdict question as the chairperson. Does not change the verdict."""
        request = GenerationRequest(
            prompt=prompts.FOLLOW_UP.format(
                question=question,
                summary=verdict.summary,
                takeaways="\n".join(f"- {t}" for t in verdict.key_takeaways) or "(none)",
            ),
            system_instruction=prompts.with_persona(self._persona, prompts.FOLLOW_UP_SYSTEM),
        )
        try:
            response = await self._client.generate(request)
        except Exception as exc:
            logger.error("Follow-up answer failed: %s", exc)
            return DEFAULT_FOLLOW_UP, TokenUsage()
        return response.text or DEFAULT_FOLLOW_UP, response.usage
