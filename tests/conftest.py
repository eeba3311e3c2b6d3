"""Shared pytest fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import PricingConfig, RetryConfig
from council.client import GenerationClient
from council.models import (
    Agent,
    AgentRole,
    DebateMode,
    GenerationRequest,
    GenerationResponse,
    ToolCall,
)
from council.providers.base import GenerationProvider
from council.state import DebateStateMachine


def make_response(
    text: str = "Mock response",
    tool_call: ToolCall | None = None,
    input_tokens: int = 10,
    output_tokens: int = 20,
    **kwargs,
) -> GenerationResponse:
    return GenerationResponse(
        text=text,
        model="mock-model",
        tool_call=tool_call,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        **kwargs,
    )


class MockProvider(GenerationProvider):
    """Test double GenerationProvider."""

    def __init__(
        self,
        provider_name: str = "mock",
        response_content: str = "Mock response",
        native_search: bool = False,
        retry_transient: bool = False,
    ) -> None:
        self._name = provider_name
        self._response_content = response_content
        self.native_search = native_search
        self.retry_transient = retry_transient
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(return_value=make_response(response_content))  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    async def generate(self, request: GenerationRequest, model: str) -> GenerationResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return make_response(self._response_content)


@pytest.fixture
def pricing_config() -> PricingConfig:
    return PricingConfig()


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def client(mock_provider: MockProvider, pricing_config: PricingConfig) -> GenerationClient:
    return GenerationClient(mock_provider, "test-model", pricing_config, RetryConfig())


@pytest.fixture
def agents() -> list[Agent]:
    return [
        Agent(id="agent-a", name="Aria", role=AgentRole.OPTIMIST, system_prompt="You are Aria."),
        Agent(id="agent-b", name="Cyrus", role=AgentRole.SKEPTIC, system_prompt="You are Cyrus."),
        Agent(id="agent-c", name="Nova", role=AgentRole.VISIONARY, system_prompt="You are Nova."),
    ]


@pytest.fixture
def machine(agents: list[Agent]) -> DebateStateMachine:
    clock = iter(range(1_000, 100_000))
    return DebateStateMachine(agents, clock=lambda: float(next(clock)))


@pytest.fixture
def started_machine(machine: DebateStateMachine) -> DebateStateMachine:
    machine.start("Should cities ban cars downtown?", DebateMode.FIXED, max_rounds=1)
    return machine


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "output"
