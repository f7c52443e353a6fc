"""AI convenience routes. Each maps onto an agent operation and goes through the dispatcher."""
import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from agentcore.agents.base import AgentType, Timeframe
from agentcore.db.models import TaskRequest
from agentcore.envelope import RequestContext, guard, ok
from agentcore.errors import AgentCoreError
from agentcore.events import EventKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])

CHAT_AGENTS = {
    "product": AgentType.PRODUCT_RECOMMENDATION,
    "support": AgentType.CUSTOMER_SUPPORT,
    "artisan": AgentType.ARTISAN_ASSISTANT,
    "order": AgentType.ORDER_PROCESSING,
}

# type -> (operation, field receiving `input`, field receiving `parameters`)
GENERATE_OPERATIONS = {
    "product_description": ("generateProductDescription", "productDetails", "targetAudience"),
    "artisan_story": ("createArtisanStory", "artisanProfile", "achievements"),
    "marketing_content": ("generateMarketingContent", "campaign", "products"),
    "seo_content": ("optimizeForSEO", "content", "keywords"),
}

# type -> (agent, operation, whether `data` is spread into the payload)
ANALYZE_OPERATIONS = {
    "business_insights": (AgentType.ARTISAN_ASSISTANT, "getBusinessInsights", True),
    "market_analysis": (AgentType.ARTISAN_ASSISTANT, "suggestPricing", True),
    "customer_feedback": (AgentType.CUSTOMER_SUPPORT, "analyzeFeedback", False),
    "performance_metrics": (AgentType.ORDER_PROCESSING, "analyzePerformance", False),
}


class ChatContext(BaseModel):
    type: Literal["product", "support", "artisan", "order"]
    data: Optional[dict[str, Any]] = None


class ChatBody(BaseModel):
    message: str = Field(min_length=1)
    context: ChatContext


class ChatRequest(BaseModel):
    body: ChatBody


class GenerateBody(BaseModel):
    type: Literal["product_description", "artisan_story", "marketing_content", "seo_content"]
    input: dict[str, Any]
    parameters: Optional[dict[str, Any]] = None


class GenerateRequest(BaseModel):
    body: GenerateBody


class AnalyzeBody(BaseModel):
    type: Literal["business_insights", "market_analysis", "customer_feedback", "performance_metrics"]
    data: dict[str, Any]
    timeframe: Optional[Timeframe] = None


class AnalyzeRequest(BaseModel):
    body: AnalyzeBody


@router.post("/chat")
async def chat(request: Request, ctx: RequestContext = Depends(guard("ai", schema=ChatRequest))):
    services = request.app.state.services
    body: ChatBody = ctx.data.body
    agent_type = CHAT_AGENTS[body.context.type]
    task = TaskRequest(
        agent_type=agent_type.value,
        operation="query",
        payload={"query": body.message, "context": body.context.data},
        user_id=ctx.user_id,
    )
    services.bus.emit(
        EventKind.AI_THINKING,
        {"requestId": task.request_id, "agentType": agent_type.value},
        user_id=ctx.user_id,
    )
    try:
        result = await services.dispatcher.submit(task)
    except AgentCoreError as e:
        services.bus.emit(
            EventKind.AI_ERROR,
            {"requestId": task.request_id, "agentType": agent_type.value, "error": e.message, "code": e.code},
            user_id=ctx.user_id,
        )
        raise
    services.bus.emit(
        EventKind.AI_RESPONSE,
        {
            "requestId": task.request_id,
            "agentType": agent_type.value,
            "response": result.result,
            "cached": result.cached,
        },
        user_id=ctx.user_id,
    )
    return ok(result.to_dict())


@router.post("/generate")
async def generate(request: Request, ctx: RequestContext = Depends(guard("ai", schema=GenerateRequest))):
    body: GenerateBody = ctx.data.body
    operation, input_field, parameters_field = GENERATE_OPERATIONS[body.type]
    payload: dict[str, Any] = {input_field: body.input}
    if body.parameters is not None:
        payload[parameters_field] = body.parameters
    task = TaskRequest(
        agent_type=AgentType.CONTENT_GENERATION.value,
        operation=operation,
        payload=payload,
        user_id=ctx.user_id,
    )
    result = await request.app.state.services.dispatcher.submit(task)
    return ok(result.to_dict())


@router.post("/analyze")
async def analyze(request: Request, ctx: RequestContext = Depends(guard("ai", schema=AnalyzeRequest))):
    body: AnalyzeBody = ctx.data.body
    agent_type, operation, spread = ANALYZE_OPERATIONS[body.type]
    payload: dict[str, Any] = dict(body.data) if spread else {"data": body.data}
    if body.timeframe is not None:
        payload["timeframe"] = body.timeframe.model_dump(mode="json")
    task = TaskRequest(
        agent_type=agent_type.value,
        operation=operation,
        payload=payload,
        user_id=ctx.user_id,
    )
    result = await request.app.state.services.dispatcher.submit(task)
    return ok(result.to_dict())
