"""
Uniform agent façade.

An agent type is data: an AgentSpec carrying its operation table. A single
Agent class runs any operation of its spec:

  1. validate the payload against the operation's request model
  2. compose the message sequence
  3. call the model client (structured when a response schema is declared)
  4. re-validate the output against the response schema
"""
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Type

from pydantic import BaseModel, Field

from agentcore.cache import make_fingerprint
from agentcore.config import MODEL_MAX_OUTPUT_TOKENS
from agentcore.errors import NotFound, ValidationFailed
from agentcore.llm.client import ChatMessage, ModelClient, Sampling
from agentcore.llm.schema import ResponseSchema, validate_input

logger = logging.getLogger(__name__)


class AgentType(str, Enum):
    PRODUCT_RECOMMENDATION = "productRecommendation"
    CUSTOMER_SUPPORT = "customerSupport"
    ARTISAN_ASSISTANT = "artisanAssistant"
    ORDER_PROCESSING = "orderProcessing"
    CONTENT_GENERATION = "contentGeneration"

    @classmethod
    def parse(cls, value: str) -> "AgentType":
        try:
            return cls(value)
        except ValueError:
            raise NotFound(
                f"Unknown agent type: {value}",
                details={"allowed": [t.value for t in cls]},
            ) from None


# ─────────────────────────────────────────────
# Agent configuration
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class AgentConfig:
    system_prompt: str
    temperature: float
    max_tokens: int
    top_p: Optional[float] = None
    top_k: Optional[int] = None

    def validate(self) -> "AgentConfig":
        errors = []
        if not self.system_prompt or not self.system_prompt.strip():
            errors.append({"path": "systemPrompt", "message": "must be non-empty"})
        if not 0.0 <= self.temperature <= 2.0:
            errors.append({"path": "temperature", "message": "must be within [0, 2]"})
        if not 1 <= self.max_tokens <= MODEL_MAX_OUTPUT_TOKENS:
            errors.append({"path": "maxTokens", "message": f"must be within [1, {MODEL_MAX_OUTPUT_TOKENS}]"})
        if self.top_p is not None and not 0.0 <= self.top_p <= 1.0:
            errors.append({"path": "topP", "message": "must be within [0, 1]"})
        if self.top_k is not None and self.top_k < 1:
            errors.append({"path": "topK", "message": "must be >= 1"})
        if errors:
            raise ValidationFailed("Invalid agent configuration", details=errors)
        return self

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "AgentConfig":
        """Apply camelCase overrides from a start request (unknown keys ignored)."""
        if not overrides:
            return self
        changes: dict[str, Any] = {}
        try:
            if "systemPrompt" in overrides:
                changes["system_prompt"] = str(overrides["systemPrompt"])
            if "temperature" in overrides:
                changes["temperature"] = float(overrides["temperature"])
            if "maxTokens" in overrides:
                changes["max_tokens"] = int(overrides["maxTokens"])
            if "topP" in overrides:
                changes["top_p"] = float(overrides["topP"])
            if "topK" in overrides:
                changes["top_k"] = int(overrides["topK"])
        except (TypeError, ValueError) as e:
            raise ValidationFailed(f"Invalid agent configuration: {e}") from e
        return replace(self, **changes).validate()

    def sampling(self) -> Sampling:
        return Sampling(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            top_k=self.top_k,
        )

    def to_dict(self) -> dict:
        out = {
            "systemPrompt": self.system_prompt,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
        }
        if self.top_p is not None:
            out["topP"] = self.top_p
        if self.top_k is not None:
            out["topK"] = self.top_k
        return out


_MARKETPLACE = "Art-O-Mart, a marketplace for authentic handcrafted items from traditional artisans across India"

DEFAULT_AGENT_CONFIGS: dict[AgentType, AgentConfig] = {
    AgentType.PRODUCT_RECOMMENDATION: AgentConfig(
        system_prompt=(
            f"You are an AI shopping assistant for {_MARKETPLACE}. "
            "Your role is to help customers discover unique handcrafted products based on their preferences, "
            "budget, and cultural interests. Always provide culturally rich insights about the crafts and artisans. "
            "Be enthusiastic about the heritage and stories behind each craft."
        ),
        temperature=0.7,
        max_tokens=1500,
    ),
    AgentType.CUSTOMER_SUPPORT: AgentConfig(
        system_prompt=(
            "You are a helpful customer support agent for the Art-O-Mart marketplace. "
            "Help customers with order inquiries, shipping information, product details, and general marketplace "
            "navigation. Be polite, professional, and solution-oriented. If you don't know something, offer to "
            "connect them with human support."
        ),
        temperature=0.5,
        max_tokens=1000,
    ),
    AgentType.ARTISAN_ASSISTANT: AgentConfig(
        system_prompt=(
            "You are an AI assistant helping traditional artisans on the Art-O-Mart marketplace. "
            "Help artisans with product listings, pricing strategies, order management, and business insights. "
            "Provide culturally sensitive advice that respects traditional crafting methods while suggesting "
            "modern business practices."
        ),
        temperature=0.6,
        max_tokens=1200,
    ),
    AgentType.ORDER_PROCESSING: AgentConfig(
        system_prompt=(
            "You are an order processing AI agent for Art-O-Mart. "
            "Help process orders, track shipments, handle returns, and manage inventory updates. "
            "Ensure accuracy in all transaction-related operations."
        ),
        temperature=0.3,
        max_tokens=800,
    ),
    AgentType.CONTENT_GENERATION: AgentConfig(
        system_prompt=(
            "You are a content generation AI for Art-O-Mart. "
            "Create engaging product descriptions, artisan stories, and cultural insights. "
            "Focus on authenticity, cultural significance, and the human stories behind each craft."
        ),
        temperature=0.8,
        max_tokens=1500,
    ),
}


# ─────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────

Composer = Callable[[BaseModel], list[ChatMessage]]
# (validated input, validated output) -> output; must keep the output schema-conformant
PostProcessor = Callable[[dict, Any], Any]


@dataclass(frozen=True)
class Operation:
    name: str
    request_model: Type[BaseModel]
    compose: Composer
    response_schema: Optional[ResponseSchema] = None    # None: free-form text via complete()
    description: str = ""
    postprocess: Optional[PostProcessor] = None

    @property
    def structured(self) -> bool:
        return self.response_schema is not None

    def describe(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "structured": self.structured,
            "requestSchema": self.request_model.model_json_schema(),
            "responseSchema": self.response_schema.json_schema() if self.response_schema else None,
        }


@dataclass(frozen=True)
class AgentSpec:
    agent_type: AgentType
    operations: dict[str, Operation]
    description: str = ""
    default_operation: str = "query"


def json_message(payload: Any, instruction: str) -> ChatMessage:
    """A single user turn carrying a JSON document plus the task instruction."""
    body = dict(payload) if isinstance(payload, Mapping) else {"input": payload}
    body["instruction"] = instruction
    return ChatMessage(role="user", text=json.dumps(body, ensure_ascii=False, sort_keys=True, default=str))


def dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", exclude_none=True, by_alias=True)


class QueryInput(BaseModel):
    """Free-form question for any agent."""
    query: str = Field(min_length=1)
    context: Optional[dict[str, Any]] = None


class Timeframe(BaseModel):
    start: datetime
    end: datetime


def _compose_query(inp: QueryInput) -> list[ChatMessage]:
    body = {"query": inp.query, "additionalContext": inp.context or {}}
    return [ChatMessage(role="user", text=json.dumps(body, ensure_ascii=False, sort_keys=True, default=str))]


QUERY_OPERATION = Operation(
    name="query",
    request_model=QueryInput,
    compose=_compose_query,
    description="Answer a free-form question in the agent's role.",
)


def operation_table(*operations: Operation) -> dict[str, Operation]:
    """Build an operation table; every agent also answers free-form ``query``."""
    table = {QUERY_OPERATION.name: QUERY_OPERATION}
    for op in operations:
        table[op.name] = op
    return table


@dataclass(frozen=True)
class Invocation:
    """A validated, fully composed model call for one operation."""
    agent_type: AgentType
    operation: Operation
    input: dict
    system_instruction: str
    messages: tuple[ChatMessage, ...]
    sampling: Sampling
    model_id: str

    @property
    def fingerprint(self) -> str:
        return make_fingerprint(self.agent_type.value, {
            "agentType": self.agent_type.value,
            "modelId": self.model_id,
            "temperature": self.sampling.temperature,
            "maxTokens": self.sampling.max_tokens,
            "topP": self.sampling.top_p,
            "topK": self.sampling.top_k,
            "operation": self.operation.name,
            "system": self.system_instruction,
            "messages": [m.to_dict() for m in self.messages],
        })


class Agent:
    """Runs the operations of one AgentSpec against a model client."""

    def __init__(self, spec: AgentSpec, config: AgentConfig, model_client: ModelClient) -> None:
        self.spec = spec
        self.config = config
        self.model = model_client

    @property
    def agent_type(self) -> AgentType:
        return self.spec.agent_type

    def operation(self, name: Optional[str]) -> Operation:
        name = name or self.spec.default_operation
        op = self.spec.operations.get(name)
        if op is None:
            raise ValidationFailed(
                f"Unknown operation '{name}' for agent {self.agent_type.value}",
                details={"allowed": sorted(self.spec.operations)},
            )
        return op

    def prepare(self, operation_name: Optional[str], payload: Any) -> Invocation:
        op = self.operation(operation_name)
        validated = validate_input(op.request_model, payload)
        messages = tuple(op.compose(validated))
        return Invocation(
            agent_type=self.agent_type,
            operation=op,
            input=dump(validated),
            system_instruction=self.config.system_prompt,
            messages=messages,
            sampling=self.config.sampling(),
            model_id=self.model.model_id,
        )

    async def call(self, invocation: Invocation) -> Any:
        op = invocation.operation
        if op.response_schema is None:
            return await self.model.complete(invocation.system_instruction, invocation.messages, invocation.sampling)
        value = await self.model.complete_structured(
            invocation.system_instruction,
            invocation.messages,
            invocation.sampling,
            op.response_schema,
        )
        # The client validated already; a client that skips it must not leak bad shapes.
        value = op.response_schema.validate(value)
        if op.postprocess is not None:
            value = op.response_schema.validate(op.postprocess(invocation.input, value))
        return value

    async def run(self, operation_name: Optional[str], payload: Any) -> Any:
        """Prepare and call in one step (no cache, no statistics)."""
        return await self.call(self.prepare(operation_name, payload))

    def describe(self) -> dict:
        return {
            "agentType": self.agent_type.value,
            "description": self.spec.description,
            "config": self.config.to_dict(),
            "operations": [op.describe() for op in self.spec.operations.values()],
        }
