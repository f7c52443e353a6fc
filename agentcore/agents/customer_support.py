"""
customerSupport: order, shipping and marketplace help for customers.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from agentcore.agents.base import AgentSpec, AgentType, Operation, Timeframe, json_message, operation_table
from agentcore.llm.client import ChatMessage
from agentcore.llm.schema import ResponseSchema

ESCALATION_KEYWORDS = ("refund", "complaint", "legal", "urgent", "emergency", "fraud", "stolen", "damaged")

SUPPORT_CATEGORIES = ["Order Status", "Shipping", "Returns", "Product Info", "Payment", "Account", "Technical", "Other"]


def needs_escalation(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in ESCALATION_KEYWORDS)


# ─────────────────────────────────────────────
# Request models
# ─────────────────────────────────────────────

class HistoryTurn(BaseModel):
    sender: str
    text: str


class SupportRequest(BaseModel):
    query: str = Field(min_length=1)
    conversationHistory: list[HistoryTurn] = Field(default_factory=list)
    recentOrders: list[dict[str, Any]] = Field(default_factory=list)


class FAQRequest(BaseModel):
    question: str = Field(min_length=1)
    faqs: list[dict[str, Any]] = Field(default_factory=list)


class FeedbackRequest(BaseModel):
    data: dict[str, Any]
    timeframe: Optional[Timeframe] = None


# ─────────────────────────────────────────────
# Response models
# ─────────────────────────────────────────────

class SuggestedAction(BaseModel):
    action: str
    description: str
    priority: Literal["low", "medium", "high"]


class SupportReply(BaseModel):
    """Customer support answer with triage metadata."""
    response: str
    needsEscalation: bool = Field(description="True when the issue requires a human agent")
    category: Literal["Order Status", "Shipping", "Returns", "Product Info", "Payment", "Account", "Technical", "Other"]
    subcategory: Optional[str] = None
    sentiment: Literal["positive", "neutral", "negative"]
    suggestedActions: list[SuggestedAction]


class FeedbackTheme(BaseModel):
    theme: str
    mentions: int
    sentiment: Literal["positive", "neutral", "negative"]
    examples: list[str]


class FeedbackAnalysis(BaseModel):
    """Aggregated analysis of customer feedback."""
    summary: str
    overallSentiment: Literal["positive", "neutral", "negative", "mixed"]
    themes: list[FeedbackTheme]
    topPositives: list[str]
    topConcerns: list[str]
    actionItems: list[SuggestedAction]


# ─────────────────────────────────────────────
# Composers
# ─────────────────────────────────────────────

def _compose_support(req: SupportRequest) -> list:
    history = [
        ChatMessage(role="user" if turn.sender == "user" else "assistant", text=turn.text)
        for turn in req.conversationHistory
    ]
    return history + [json_message(
        {
            "customerQuery": req.query,
            "recentOrders": req.recentOrders,
            "supportCategories": SUPPORT_CATEGORIES,
            "escalationKeywords": list(ESCALATION_KEYWORDS),
        },
        "Provide helpful customer support. Categorise the query, assess the customer's sentiment and "
        "suggest next actions. Set needsEscalation when the issue requires human intervention or the "
        "query mentions any escalation keyword.",
    )]


def _escalate_on_keywords(inp: dict, reply: dict) -> dict:
    if not reply.get("needsEscalation") and needs_escalation(inp.get("query", "")):
        reply = {**reply, "needsEscalation": True}
    return reply


def _compose_faq(req: FAQRequest) -> list:
    return [json_message(
        {"question": req.question, "availableFaqs": req.faqs},
        "Find the most relevant FAQ answer or provide a helpful response if no FAQ matches.",
    )]


def _compose_feedback(req: FeedbackRequest) -> list:
    return [json_message(
        {"feedback": req.data, "timeframe": req.timeframe.model_dump(mode="json") if req.timeframe else None},
        "Analyse the customer feedback and summarise recurring themes, sentiment and action items.",
    )]


SPEC = AgentSpec(
    agent_type=AgentType.CUSTOMER_SUPPORT,
    description="Answers customer questions and triages support requests.",
    operations=operation_table(
        Operation(
            name="handleSupportQuery",
            request_model=SupportRequest,
            compose=_compose_support,
            response_schema=ResponseSchema("handleSupportQuery", SupportReply),
            postprocess=_escalate_on_keywords,
            description="Answer a support query with category, sentiment and escalation flag.",
        ),
        Operation(
            name="getFAQResponse",
            request_model=FAQRequest,
            compose=_compose_faq,
            description="Answer a question from a supplied FAQ list.",
        ),
        Operation(
            name="analyzeFeedback",
            request_model=FeedbackRequest,
            compose=_compose_feedback,
            response_schema=ResponseSchema("analyzeFeedback", FeedbackAnalysis),
            description="Summarise customer feedback.",
        ),
    ),
)
