"""OpenRouter provider using the openai SDK (OpenAI-compatible API)."""

import asyncio
import json
import logging
import os
import time

import httpx
import openai
from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from council.models import GenerationRequest, GenerationResponse, ToolCall, ToolSpec
from council.pricing import ModelPrice
from council.providers.base import ErrorKind, GenerationProvider, ProviderError

logger = logging.getLogger(__name__)

_APP_TITLE = "LLM Council"
_JSON_SUFFIX = " You must respond with valid JSON."


def _classify(exc: openai.APIError) -> ErrorKind:
    if isinstance(exc, openai.RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ErrorKind.AUTH
    if isinstance(exc, openai.APIStatusError) and exc.status_code in (502, 503, 529):
        return ErrorKind.OVERLOADED
    return ErrorKind.OTHER


def _openai_tool(spec: ToolSpec) -> dict:
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": {
                "type": "object",
                "properties": {
                    param: {"type": "string", "description": desc}
                    for param, desc in spec.parameters.items()
                },
                "required": spec.required,
            },
        },
    }


class OpenRouterProvider(GenerationProvider):
    """OpenRouter provider. No native search grounding, no transient retries."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.openrouter_api_key_env, "").strip()
        if not api_key:
            raise ProviderError("openrouter", f"Missing API key: {config.openrouter_api_key_env}", ErrorKind.AUTH)
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=config.openrouter_base_url,
            default_headers={"X-Title": _APP_TITLE},
        )

    def name(self) -> str:
        return "openrouter"

    async def generate(self, request: GenerationRequest, model: str) -> GenerationResponse:
        system = request.system_instruction
        kwargs: dict = {}
        if request.tools:
            kwargs["tools"] = [_openai_tool(t) for t in request.tools]
        if request.response_schema is not None:
            kwargs["response_format"] = {"type": "json_object"}
            if "json" not in system.lower():
                system += _JSON_SUFFIX

        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": request.prompt},
        ]
        temperature = request.temperature if request.temperature is not None else self._config.temperature

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    **kwargs,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError("openrouter", f"Request timed out after {self._config.timeout_sec}s") from exc
        except openai.APIError as exc:
            raise ProviderError("openrouter", f"API call failed: {exc}", _classify(exc)) from exc
        except Exception as exc:
            raise ProviderError("openrouter", f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        message = choice.message if choice else None

        tool_call: ToolCall | None = None
        if message and message.tool_calls:
            tc = message.tool_calls[0]
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("OpenRouter returned unparseable tool arguments: %r", tc.function.arguments)
                arguments = {}
            if not isinstance(arguments, dict):
                logger.warning("OpenRouter returned non-object tool arguments: %r", tc.function.arguments)
                arguments = {}
            tool_call = ToolCall(name=tc.function.name, arguments=arguments, id=tc.id)

        input_tokens = 0
        output_tokens = 0
        if response.usage:
            input_tokens = response.usage.prompt_tokens or 0
            output_tokens = response.usage.completion_tokens or 0

        logger.info("OpenRouter %s: %.2fs, %d in / %d out tokens", model, latency, input_tokens, output_tokens)

        return GenerationResponse(
            text=(message.content if message else None) or "",
            model=model,
            tool_call=tool_call,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


async def fetch_openrouter_pricing(
    api_key: str,
    base_url: str = "https://openrouter.ai/api/v1",
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, ModelPrice]:
    """Fetch the published per-token price table. Returns {} on any failure."""
    client = http_client or httpx.AsyncClient(timeout=30.0)
    try:
        response = await client.get(
            f"{base_url}/models",
            headers={"Authorization": f"Bearer {api_key}"},
        )
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Failed to fetch OpenRouter models: %s", exc)
        return {}
    finally:
        if http_client is None:
            await client.aclose()

    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        logger.error("OpenRouter models endpoint returned no model list")
        return {}

    prices: dict[str, ModelPrice] = {}
    for model in data:
        if not isinstance(model, dict):
            continue
        pricing = model.get("pricing") or {}
        try:
            prices[model["id"]] = ModelPrice(
                prompt=float(pricing.get("prompt") or 0),
                completion=float(pricing.get("completion") or 0),
            )
        except (AttributeError, KeyError, TypeError, ValueError):
            continue
    logger.info("Loaded OpenRouter pricing for %d models", len(prices))
    return prices
