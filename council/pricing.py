"""Per-call cost estimation from usage counters."""

from dataclasses import dataclass

from config.config_loader import PricingConfig


@dataclass(frozen=True)
class ModelPrice:
    prompt: float       # USD per input token
    completion: float   # USD per output token


def estimate_cost(
    pricing: PricingConfig,
    input_tokens: int,
    output_tokens: int,
    search_queries: int = 0,
    augmentation_calls: int = 0,
    published: ModelPrice | None = None,
) -> float:
    """Return the estimated USD cost of one call.

    ``published`` is the provider-published per-token price for the model
    actually used; when given it replaces the fixed estimate table and the
    native grounding surcharge does not apply.
    """
    augmentation = augmentation_calls * pricing.search_augmentation_request
    if published is not None:
        return input_tokens * published.prompt + output_tokens * published.completion + augmentation

    token_cost = (
        input_tokens / 1_000_000 * pricing.input_per_1m
        + output_tokens / 1_000_000 * pricing.output_per_1m
    )
    return token_cost + search_queries * pricing.search_grounding_request + augmentation
