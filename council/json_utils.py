"""
Tolerant JSON parsing for structured model output.

Providers occasionally wrap JSON in markdown fences or add a short preamble.
Callers get {} back instead of an exception and substitute their own defaults.
"""

import json
import re
from typing import Any


def _strip_fences(text: str) -> str:
    t = (text or "").strip()
    if t.startswith("```"):
        t = re.sub(r"^```(?:json)?\s*", "", t, flags=re.IGNORECASE)
        t = re.sub(r"\s*```$", "", t)
    return t.strip()


def parse_json_object(value: Any) -> dict:
    """
    Best-effort parse a JSON object from a model response.

    Returns:
      dict: parsed object, or {} if parsing fails.
    """
    if isinstance(value, dict):
        return value
    if not isinstance(value, str):
        return {}

    text = _strip_fences(value)
    if not text:
        return {}

    candidates: list[str] = [text]
    first_curly = text.find("{")
    last_curly = text.rfind("}")
    if first_curly != -1 and last_curly > first_curly:
        candidates.append(text[first_curly:last_curly + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

        # Repair trailing commas.
        repaired = re.sub(r",\s*([}\]])", r"\1", candidate)
        try:
            parsed = json.loads(repaired)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    return {}
