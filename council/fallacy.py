"""Best-effort logical-fallacy classification of completed messages."""

import logging
from dataclasses import dataclass, field

from council import prompts
from council.client import GenerationClient
from council.json_utils import parse_json_object
from council.models import Fallacy, GenerationRequest, TokenUsage

logger = logging.getLogger(__name__)

_SEVERITIES = ("minor", "major")


@dataclass
class FallacyUpdate:
    """Result of one analysis, queued for the state machine to apply."""

    message_id: str
    fallacy: Fallacy | None
    usage: TokenUsage = field(default_factory=TokenUsage)


class FallacyAnalyzer:
    def __init__(self, client: GenerationClient, min_chars: int = 150) -> None:
        self._client = client
        self._min_chars = min_chars

    def qualifies(self, text: str) -> bool:
        return bool(text) and len(text) >= self._min_chars

    async def analyze(self, message_id: str, text: str, topic: str) -> FallacyUpdate:
        """Classify ``text``. Never raises; failures yield no finding."""
        if not self.qualifies(text):
            return FallacyUpdate(message_id, None)

        request = GenerationRequest(
            prompt=prompts.FALLACY.format(topic=topic, text=text),
            system_instruction=prompts.FALLACY_SYSTEM,
            response_schema=prompts.FALLACY_SCHEMA,
        )
        try:
            response = await self._client.generate(request)
        except Exception as exc:
            logger.warning("Fallacy check failed for message %s: %s", message_id, exc)
            return FallacyUpdate(message_id, None)

        data = parse_json_object(response.text)
        if not data.get("found"):
            return FallacyUpdate(message_id, None, response.usage)

        severity = str(data.get("severity") or "minor").lower()
        fallacy = Fallacy(
            name=str(data.get("name") or "Logical Fallacy"),
            reason=str(data.get("reason") or "Flawed logic detected."),
            severity=severity if severity in _SEVERITIES else "minor",
        )
        logger.info("Fallacy detected in %s: %s (%s)", message_id, fallacy.name, fallacy.severity)
        return FallacyUpdate(message_id, fallacy, response.usage)
