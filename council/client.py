"""Generation client: one call shape over both providers, with retry/backoff and cost."""

import asyncio
import logging

from config.config_loader import PricingConfig, RetryConfig
from council.models import GenerationRequest, GenerationResponse
from council.pricing import ModelPrice, estimate_cost
from council.providers.base import GenerationProvider, ProviderError

logger = logging.getLogger(__name__)


class GenerationClient:
    """Normalizes calls to the active provider.

    The agent-level model override wins over the session default. Transient
    failures (rate limit, overload) are retried only when the provider opts in.
    """

    def __init__(
        self,
        provider: GenerationProvider,
        default_model: str,
        pricing: PricingConfig,
        retry: RetryConfig | None = None,
        published_prices: dict[str, ModelPrice] | None = None,
        search_augmentation: bool = False,
    ) -> None:
        self._provider = provider
        self._default_model = default_model
        self._pricing = pricing
        self._retry = retry or RetryConfig()
        self._published_prices = published_prices or {}
        self._search_augmentation = search_augmentation

    @property
    def native_search(self) -> bool:
        return self._provider.native_search

    @property
    def search_augmentation(self) -> bool:
        """True when a search-augmentation service backs the web-search tool."""
        return not self._provider.native_search and self._search_augmentation

    def resolve_model(self, request: GenerationRequest) -> str:
        return request.model_override or self._default_model

    def cost(self, model: str, input_tokens: int, output_tokens: int, search_queries: int = 0) -> float:
        return estimate_cost(
            self._pricing,
            input_tokens,
            output_tokens,
            search_queries=search_queries,
            published=self._published_prices.get(model),
        )

    def augmentation_cost(self, calls: int = 1) -> float:
        return estimate_cost(self._pricing, 0, 0, augmentation_calls=calls)

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Run one generation call with retries on transient provider errors.

        Raises:
            ProviderError: On a non-transient failure, or once retries are exhausted.
        """
        model = self.resolve_model(request)
        if not self._provider.native_search:
            request.native_search = False

        retries_left = self._retry.max_retries
        backoff_ms = self._retry.initial_backoff_ms
        while True:
            try:
                response = await self._provider.generate(request, model)
                break
            except ProviderError as exc:
                if not (self._provider.retry_transient and exc.transient) or retries_left <= 0:
                    raise
                logger.warning(
                    "%s transient failure (%s). Retrying in %dms...",
                    self._provider.name(), exc.kind.value, backoff_ms,
                )
                await asyncio.sleep(backoff_ms / 1000)
                retries_left -= 1
                backoff_ms *= 2

        response.cost = self.cost(
            model,
            response.input_tokens,
            response.output_tokens,
            search_queries=response.search_queries,
        )
        return response
