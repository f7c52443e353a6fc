"""
Agent façade: operation tables, payload validation, configuration overrides, fingerprints.
"""
import json

import pytest

from agentcore.agents.base import DEFAULT_AGENT_CONFIGS, AgentType, json_message
from agentcore.agents.catalog import AGENT_SPECS, build_agent
from agentcore.agents.customer_support import needs_escalation
from agentcore.errors import NotFound, ValidationFailed
from conftest import FakeModelClient

SUPPORT_REPLY = {
    "response": "We are sorry to hear that.",
    "needsEscalation": False,
    "category": "Returns",
    "sentiment": "negative",
    "suggestedActions": [{"action": "refund", "description": "Start a refund", "priority": "high"}],
}


def test_every_agent_type_has_a_spec_with_query():
    assert set(AGENT_SPECS) == set(AgentType)
    for spec in AGENT_SPECS.values():
        assert "query" in spec.operations
        assert spec.default_operation == "query"
        assert not spec.operations["query"].structured


def test_named_operations_per_type():
    ops = {t: set(spec.operations) for t, spec in AGENT_SPECS.items()}
    assert {"getRecommendations", "parseSearchQuery"} <= ops[AgentType.PRODUCT_RECOMMENDATION]
    assert {"handleSupportQuery", "getFAQResponse", "analyzeFeedback"} <= ops[AgentType.CUSTOMER_SUPPORT]
    assert "suggestPricing" in ops[AgentType.ARTISAN_ASSISTANT]
    assert "processOrder" in ops[AgentType.ORDER_PROCESSING]
    assert "generateProductDescription" in ops[AgentType.CONTENT_GENERATION]


def test_agent_type_parse():
    assert AgentType.parse("customerSupport") is AgentType.CUSTOMER_SUPPORT
    with pytest.raises(NotFound) as exc_info:
        AgentType.parse("bogus")
    assert "customerSupport" in exc_info.value.details["allowed"]


def test_needs_escalation_keywords():
    assert needs_escalation("I want a REFUND now")
    assert needs_escalation("this is urgent")
    assert not needs_escalation("where is my parcel?")


@pytest.mark.asyncio
async def test_keyword_escalation_overrides_model_flag():
    model = FakeModelClient(structured={"handleSupportQuery": SUPPORT_REPLY})
    agent = build_agent(AgentType.CUSTOMER_SUPPORT, model)

    escalated = await agent.run("handleSupportQuery", {"query": "The vase arrived damaged, I need a refund"})
    assert escalated["needsEscalation"] is True

    calm = await agent.run("handleSupportQuery", {"query": "Which colours does the shawl come in?"})
    assert calm["needsEscalation"] is False


@pytest.mark.asyncio
async def test_query_operation_sends_system_prompt_and_sampling():
    model = FakeModelClient(text="Namaste")
    agent = build_agent(AgentType.PRODUCT_RECOMMENDATION, model)

    assert await agent.run(None, {"query": "blue pottery"}) == "Namaste"

    call = model.calls[0]
    assert call["kind"] == "complete"
    assert call["system"] == DEFAULT_AGENT_CONFIGS[AgentType.PRODUCT_RECOMMENDATION].system_prompt
    assert call["sampling"].temperature == 0.7
    body = json.loads(call["messages"][0].text)
    assert body == {"query": "blue pottery", "additionalContext": {}}


def test_unknown_operation_is_rejected():
    agent = build_agent(AgentType.ORDER_PROCESSING, FakeModelClient())
    with pytest.raises(ValidationFailed) as exc_info:
        agent.prepare("teleport", {})
    assert "query" in exc_info.value.details["allowed"]


def test_invalid_payload_is_rejected_before_model_call():
    model = FakeModelClient()
    agent = build_agent(AgentType.CUSTOMER_SUPPORT, model)
    with pytest.raises(ValidationFailed):
        agent.prepare("query", {"query": ""})
    assert model.call_count == 0


def test_config_overrides_apply_and_validate():
    base = DEFAULT_AGENT_CONFIGS[AgentType.CONTENT_GENERATION]
    cfg = base.with_overrides({"temperature": 0.2, "maxTokens": 256, "topK": 40, "unknown": 1})
    assert cfg.temperature == 0.2
    assert cfg.max_tokens == 256
    assert cfg.top_k == 40
    assert cfg.system_prompt == base.system_prompt
    assert cfg.to_dict()["topK"] == 40
    assert base.with_overrides(None) is base


@pytest.mark.parametrize("overrides", [
    {"temperature": 3},
    {"maxTokens": 0},
    {"systemPrompt": "   "},
    {"topP": 1.5},
    {"temperature": "warm"},
])
def test_config_overrides_reject_out_of_range(overrides):
    with pytest.raises(ValidationFailed):
        DEFAULT_AGENT_CONFIGS[AgentType.ORDER_PROCESSING].with_overrides(overrides)


def test_json_message_is_canonical():
    a = json_message({"b": 1, "a": 2}, "do it")
    b = json_message({"a": 2, "b": 1}, "do it")
    assert a.text == b.text
    assert json.loads(a.text)["instruction"] == "do it"
    assert json.loads(json_message([1, 2], "x").text)["input"] == [1, 2]


def test_fingerprint_tracks_every_input_that_changes_output():
    model = FakeModelClient()
    agent = build_agent(AgentType.PRODUCT_RECOMMENDATION, model)
    base = agent.prepare("query", {"query": "pottery"})

    assert base.fingerprint.startswith("productRecommendation:")
    assert agent.prepare("query", {"query": "pottery"}).fingerprint == base.fingerprint
    assert agent.prepare("query", {"query": "textiles"}).fingerprint != base.fingerprint
    assert agent.prepare("parseSearchQuery", {"query": "pottery"}).fingerprint != base.fingerprint

    warmer = DEFAULT_AGENT_CONFIGS[AgentType.PRODUCT_RECOMMENDATION].with_overrides({"temperature": 1.0})
    assert build_agent(AgentType.PRODUCT_RECOMMENDATION, model, warmer).prepare(
        "query", {"query": "pottery"}).fingerprint != base.fingerprint

    prompt = DEFAULT_AGENT_CONFIGS[AgentType.PRODUCT_RECOMMENDATION].with_overrides({"systemPrompt": "Be terse."})
    assert build_agent(AgentType.PRODUCT_RECOMMENDATION, model, prompt).prepare(
        "query", {"query": "pottery"}).fingerprint != base.fingerprint


def test_describe_lists_operations_and_config():
    info = build_agent(AgentType.ARTISAN_ASSISTANT, FakeModelClient()).describe()
    assert info["agentType"] == "artisanAssistant"
    assert info["config"]["temperature"] == 0.6
    names = [op["name"] for op in info["operations"]]
    assert names[0] == "query"
    assert all("requestSchema" in op for op in info["operations"])
