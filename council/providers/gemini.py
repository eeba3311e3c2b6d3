"""Gemini provider using google-genai SDK with native async and search grounding."""

import asyncio
import logging
import os
import time

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import ProviderConfig
from council.models import Citation, GenerationRequest, GenerationResponse, ToolCall, ToolSpec
from council.providers.base import ErrorKind, GenerationProvider, ProviderError

logger = logging.getLogger(__name__)


def _classify(exc: genai_errors.APIError) -> ErrorKind:
    message = str(exc).lower()
    if exc.code == 429 or "resource_exhausted" in message or "quota" in message:
        return ErrorKind.RATE_LIMITED
    if exc.code == 503:
        return ErrorKind.OVERLOADED
    if exc.code in (401, 403) or "api_key_invalid" in message or "api key not valid" in message:
        return ErrorKind.AUTH
    return ErrorKind.OTHER


def _function_declaration(spec: ToolSpec) -> genai_types.FunctionDeclaration:
    return genai_types.FunctionDeclaration(
        name=spec.name,
        description=spec.description,
        parameters=genai_types.Schema(
            type=genai_types.Type.OBJECT,
            properties={
                param: genai_types.Schema(type=genai_types.Type.STRING, description=desc)
                for param, desc in spec.parameters.items()
            },
            required=spec.required,
        ),
    )


class GeminiProvider(GenerationProvider):
    """Google Gemini provider via google-genai SDK."""

    native_search = True
    retry_transient = True

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.google_api_key_env, "").strip()
        if not api_key:
            raise ProviderError("google", f"Missing API key: {config.google_api_key_env}", ErrorKind.AUTH)
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return "google"

    def _build_config(self, request: GenerationRequest) -> genai_types.GenerateContentConfig:
        tools: list[genai_types.Tool] = []
        if request.native_search:
            tools.append(genai_types.Tool(google_search=genai_types.GoogleSearch()))
        if request.tools:
            tools.append(
                genai_types.Tool(function_declarations=[_function_declaration(t) for t in request.tools])
            )

        kwargs: dict = {
            "system_instruction": request.system_instruction,
            "temperature": request.temperature if request.temperature is not None else self._config.temperature,
        }
        if tools:
            kwargs["tools"] = tools
        if request.response_schema is not None:
            kwargs["response_mime_type"] = "application/json"
            kwargs["response_json_schema"] = request.response_schema
        if request.thinking_budget is not None:
            kwargs["thinking_config"] = genai_types.ThinkingConfig(thinking_budget=request.thinking_budget)
        return genai_types.GenerateContentConfig(**kwargs)

    async def generate(self, request: GenerationRequest, model: str) -> GenerationResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=model,
                    contents=request.prompt,
                    config=self._build_config(request),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError("google", f"Request timed out after {self._config.timeout_sec}s") from exc
        except genai_errors.APIError as exc:
            raise ProviderError("google", f"API call failed: {exc}", _classify(exc)) from exc
        except Exception as exc:
            raise ProviderError("google", f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        tool_call: ToolCall | None = None
        if response.function_calls:
            call = response.function_calls[0]
            args = call.args if isinstance(call.args, dict) else {}
            tool_call = ToolCall(name=call.name or "", arguments=dict(args), id=call.id or "unknown-id")

        citations: list[Citation] = []
        search_queries = 0
        candidate = response.candidates[0] if response.candidates else None
        grounding = candidate.grounding_metadata if candidate else None
        chunks = grounding.grounding_chunks if grounding else None
        if chunks:
            citations = [
                Citation(title=c.web.title, uri=c.web.uri)
                for c in chunks
                if c.web and c.web.uri and c.web.title
            ]
            search_queries = 1

        input_tokens = 0
        output_tokens = 0
        if response.usage_metadata:
            input_tokens = response.usage_metadata.prompt_token_count or 0
            output_tokens = response.usage_metadata.candidates_token_count or 0

        text = ""
        if tool_call is None:
            text = response.text or ""

        logger.info("Gemini %s: %.2fs, %d in / %d out tokens", model, latency, input_tokens, output_tokens)

        return GenerationResponse(
            text=text,
            model=model,
            citations=citations,
            tool_call=tool_call,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            search_queries=search_queries,
        )
