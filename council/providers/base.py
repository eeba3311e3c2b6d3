"""Abstract base for generation providers."""

from abc import ABC, abstractmethod
from enum import Enum

from council.models import GenerationRequest, GenerationResponse


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    AUTH = "auth"
    OTHER = "other"


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str, kind: ErrorKind = ErrorKind.OTHER) -> None:
        self.provider_name = provider_name
        self.kind = kind
        super().__init__(f"[{provider_name}] {message}")

    @property
    def transient(self) -> bool:
        return self.kind in (ErrorKind.RATE_LIMITED, ErrorKind.OVERLOADED)


class GenerationProvider(ABC):
    """Abstract base for generation providers.

    Subclasses set ``native_search`` when the backend grounds answers with its
    own web search, and ``retry_transient`` when rate-limit and overload
    failures should be retried by the generation client.
    """

    native_search: bool = False
    retry_transient: bool = False

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'google', 'openrouter')."""
        ...

    @abstractmethod
    async def generate(self, request: GenerationRequest, model: str) -> GenerationResponse:
        """Run one generation call.

        Args:
            request: Provider-neutral request (prompt, directive, tools, schema).
            model: Resolved model identifier for this call.

        Returns:
            GenerationResponse with text, citations, optional tool call and usage.
            ``cost`` is left at 0.0; the generation client fills it in.

        Raises:
            ProviderError: On API failure, timeout, or invalid credentials.
        """
        ...
