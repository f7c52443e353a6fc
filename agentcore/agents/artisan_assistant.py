"""
artisanAssistant: listing, pricing and business advice for artisans.
"""
from typing import Any, Optional

from pydantic import BaseModel, Field

from agentcore.agents.base import AgentSpec, AgentType, Operation, Timeframe, dump, json_message, operation_table
from agentcore.llm.schema import ResponseSchema


# ─────────────────────────────────────────────
# Request models
# ─────────────────────────────────────────────

class OptimizationGoals(BaseModel):
    title: Optional[bool] = None
    description: Optional[bool] = None
    tags: Optional[bool] = None
    pricing: Optional[bool] = None
    images: Optional[bool] = None


class OptimizeListingRequest(BaseModel):
    product: dict[str, Any]
    goals: OptimizationGoals = Field(default_factory=OptimizationGoals)


class ProductData(BaseModel):
    title: str
    description: str
    materials: list[str]
    productionTime: float
    craftingComplexity: str


class MarketContext(BaseModel):
    category: str
    region: str
    seasonality: Optional[str] = None
    competitorPrices: Optional[list[float]] = None


class PricingRequest(BaseModel):
    productData: ProductData
    marketContext: MarketContext
    timeframe: Optional[Timeframe] = None


class BusinessInsightsRequest(BaseModel):
    orders: list[dict[str, Any]] = Field(default_factory=list)
    reviews: list[dict[str, Any]] = Field(default_factory=list)
    products: list[dict[str, Any]] = Field(default_factory=list)
    timeframe: Optional[Timeframe] = None


class ListingContentRequest(BaseModel):
    productDetails: dict[str, Any]
    culturalContext: Optional[dict[str, Any]] = None


# ─────────────────────────────────────────────
# Response models
# ─────────────────────────────────────────────

class TextSuggestion(BaseModel):
    current: str
    suggestion: str
    reason: str


class TagSuggestion(BaseModel):
    current: list[str]
    suggestion: list[str]
    reason: str


class PriceSuggestion(BaseModel):
    current: float
    suggestion: float
    reason: str


class ImageSuggestion(BaseModel):
    current: list[str]
    suggestions: list[str]
    reason: str


class ListingOptimization(BaseModel):
    """Optimization suggestions for a product listing."""
    title: Optional[TextSuggestion] = None
    description: Optional[TextSuggestion] = None
    tags: Optional[TagSuggestion] = None
    pricing: Optional[PriceSuggestion] = None
    images: Optional[ImageSuggestion] = None


class PriceRange(BaseModel):
    min: float
    max: float


class PricingFactor(BaseModel):
    name: str
    impact: str
    description: str


class PricingStrategy(BaseModel):
    name: str
    description: str
    expectedImpact: str


class PricingRecommendation(BaseModel):
    """Pricing recommendation from product and market data."""
    basePrice: float
    recommendedPrice: float
    priceRange: PriceRange
    rationale: str
    factors: list[PricingFactor]
    strategies: list[PricingStrategy]


class ProductTrend(BaseModel):
    productId: str
    trend: str
    recommendation: str


class SalesTrends(BaseModel):
    overall: str
    byProduct: list[ProductTrend]


class CustomerFeedback(BaseModel):
    summary: str
    topPositives: list[str]
    topConcerns: list[str]
    actionItems: list[str]


class MarketOpportunity(BaseModel):
    opportunity: str
    rationale: str
    suggestedActions: list[str]


class GrowthRecommendation(BaseModel):
    area: str
    recommendation: str
    impact: str
    timeframe: str


class BusinessInsights(BaseModel):
    """Business insights from order, review and product data."""
    salesTrends: SalesTrends
    customerFeedback: CustomerFeedback
    marketOpportunities: list[MarketOpportunity]
    growthRecommendations: list[GrowthRecommendation]


class Specification(BaseModel):
    name: str
    value: str


class SeoMetadata(BaseModel):
    metaTitle: str
    metaDescription: str
    focusKeywords: list[str]


class ListingContent(BaseModel):
    """Listing content that emphasises cultural authenticity and craftsmanship."""
    title: str
    description: str
    shortDescription: str
    tags: list[str]
    culturalStory: str
    specifications: list[Specification]
    seoMetadata: SeoMetadata


# ─────────────────────────────────────────────
# Composers
# ─────────────────────────────────────────────

def _compose_optimize(req: OptimizeListingRequest) -> list:
    return [json_message(
        dump(req),
        "Analyze the product listing and provide optimization suggestions based on the specified goals.",
    )]


def _compose_pricing(req: PricingRequest) -> list:
    return [json_message(dump(req), "Analyze the product and market data to provide pricing recommendations.")]


def _compose_insights(req: BusinessInsightsRequest) -> list:
    return [json_message(
        dump(req),
        "Analyze the business data and provide comprehensive insights and recommendations.",
    )]


def _compose_listing(req: ListingContentRequest) -> list:
    return [json_message(
        dump(req),
        "Create optimized product listing content that emphasizes cultural authenticity and craftsmanship.",
    )]


SPEC = AgentSpec(
    agent_type=AgentType.ARTISAN_ASSISTANT,
    description="Supports artisans with listings, pricing and business insight.",
    operations=operation_table(
        Operation(
            name="optimizeListing",
            request_model=OptimizeListingRequest,
            compose=_compose_optimize,
            response_schema=ResponseSchema("generateOptimizations", ListingOptimization),
        ),
        Operation(
            name="suggestPricing",
            request_model=PricingRequest,
            compose=_compose_pricing,
            response_schema=ResponseSchema("generatePricingRecommendation", PricingRecommendation),
        ),
        Operation(
            name="getBusinessInsights",
            request_model=BusinessInsightsRequest,
            compose=_compose_insights,
            response_schema=ResponseSchema("generateBusinessInsights", BusinessInsights),
        ),
        Operation(
            name="generateListingContent",
            request_model=ListingContentRequest,
            compose=_compose_listing,
            response_schema=ResponseSchema("generateListingContent", ListingContent),
        ),
    ),
)
