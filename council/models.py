"""Pure dataclasses and enums for the LLM Council debate engine. No logic, no deps."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

USER_ID = "user"
SYSTEM_ID = "system"
CHAIRPERSON_ID = "agent-chairperson"
ORCHESTRATOR_TURN = "ORCHESTRATOR"


class AgentRole(str, Enum):
    OPTIMIST = "OPTIMIST"
    SKEPTIC = "SKEPTIC"
    REALIST = "REALIST"
    VISIONARY = "VISIONARY"
    HISTORIAN = "HISTORIAN"
    SCIENTIST = "SCIENTIST"
    MODERATOR = "MODERATOR"
    ETHICIST = "ETHICIST"
    ECONOMIST = "ECONOMIST"
    GUEST = "GUEST_EXPERT"


class DebatePhase(str, Enum):
    SETUP = "SETUP"
    OPENING = "OPENING"
    REBUTTAL = "REBUTTAL"
    SYNTHESIS = "SYNTHESIS"
    VOTING = "VOTING"
    VERDICT = "VERDICT"
    USER_INPUT = "USER_INPUT"


class DebateMode(str, Enum):
    FIXED = "FIXED"
    AUTO = "AUTO"


class MessageKind(str, Enum):
    TEXT = "text"
    VOTE = "vote"
    ERROR = "error"


class EngineStatus(str, Enum):
    IDLE = "IDLE"
    GENERATING = "GENERATING"
    AWAITING_TOOL = "AWAITING_TOOL"            # human answered, tool result ready to resume
    AWAITING_HUMAN = "AWAITING_HUMAN"          # question pending, no answer yet
    AWAITING_CONSULTATION = "AWAITING_CONSULTATION"


@dataclass
class Agent:
    id: str
    name: str
    role: AgentRole
    system_prompt: str
    description: str = ""
    model_override: str | None = None


@dataclass
class Citation:
    title: str
    uri: str


@dataclass
class Fallacy:
    name: str
    reason: str
    severity: str = "minor"   # "minor" or "major"


@dataclass
class Message:
    id: str
    agent_id: str             # agent id, or USER_ID / SYSTEM_ID / CHAIRPERSON_ID
    content: str
    timestamp: float
    phase: DebatePhase
    kind: MessageKind = MessageKind.TEXT
    citations: list[Citation] = field(default_factory=list)
    is_guest: bool = False
    guest_role: str | None = None
    fallacy: Fallacy | None = None


@dataclass
class Vote:
    voter_id: str
    target_agent_id: str
    score: float
    reason: str


@dataclass
class FinalVerdict:
    winner_id: str
    summary: str
    key_takeaways: list[str] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)


@dataclass
class ContextDocument:
    id: str
    content: str
    timestamp: float


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float = 0.0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_cost=self.total_cost + other.total_cost,
        )


@dataclass
class GuestDescriptor:
    name: str
    role: str
    system_prompt: str
    reason: str = ""


@dataclass
class ToolCall:
    name: str
    arguments: dict[str, Any]
    id: str


@dataclass
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, str]   # parameter name -> description; all string-typed
    required: list[str] = field(default_factory=list)


@dataclass
class GenerationRequest:
    prompt: str
    system_instruction: str
    tools: list[ToolSpec] = field(default_factory=list)
    response_schema: dict[str, Any] | None = None
    model_override: str | None = None
    temperature: float | None = None
    native_search: bool = False
    thinking_budget: int | None = None


@dataclass
class GenerationResponse:
    text: str
    model: str
    citations: list[Citation] = field(default_factory=list)
    tool_call: ToolCall | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    search_queries: int = 0
    cost: float = 0.0

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(self.input_tokens, self.output_tokens, self.cost)


@dataclass
class OrchestratorDecision:
    should_conclude: bool
    guidance: str
    should_consult_user: bool = False
    summon_guest: GuestDescriptor | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class DebateState:
    topic: str = ""
    mode: DebateMode = DebateMode.AUTO
    max_rounds: int = 2
    current_round: int = 1
    phase: DebatePhase = DebatePhase.SETUP
    current_turn_agent_id: str | None = None
    transcript: list[Message] = field(default_factory=list)
    is_thinking: bool = False
    thinking_agent_id: str | None = None
    pending_user_question: str | None = None
    pending_tool_call: ToolCall | None = None
    pending_tool_result: str | None = None
    suspended_phase: DebatePhase | None = None
    show_consultation_prompt: bool = False
    user_requested_stop: bool = False
    summoned_guest: GuestDescriptor | None = None
    context_documents: list[ContextDocument] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    final_verdict: FinalVerdict | None = None
    status: EngineStatus = EngineStatus.IDLE
