"""Operation tables of every known agent type."""
from agentcore.agents import (
    artisan_assistant,
    content_generation,
    customer_support,
    order_processing,
    product_recommendation,
)
from agentcore.agents.base import DEFAULT_AGENT_CONFIGS, Agent, AgentConfig, AgentSpec, AgentType
from agentcore.llm.client import ModelClient

AGENT_SPECS: dict[AgentType, AgentSpec] = {
    spec.agent_type: spec
    for spec in (
        product_recommendation.SPEC,
        customer_support.SPEC,
        artisan_assistant.SPEC,
        order_processing.SPEC,
        content_generation.SPEC,
    )
}


def build_agent(agent_type: AgentType, model_client: ModelClient, config: AgentConfig | None = None) -> Agent:
    return Agent(AGENT_SPECS[agent_type], config or DEFAULT_AGENT_CONFIGS[agent_type], model_client)
