"""
productRecommendation: product discovery for shoppers.

Catalogue data is supplied by the caller in ``products``; the agent never
queries the marketplace itself.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from agentcore.agents.base import AgentSpec, AgentType, Operation, dump, json_message, operation_table
from agentcore.llm.schema import ResponseSchema

# Products forwarded to the model per request.
MAX_PRODUCTS_IN_PROMPT = 20

CATEGORIES = ["Textiles", "Pottery", "Jewelry", "Paintings", "Woodcraft", "Metalwork", "Leather"]
REGIONS = ["Rajasthan", "Kerala", "West Bengal", "Gujarat", "Kashmir", "Tamil Nadu", "Uttar Pradesh"]


# ─────────────────────────────────────────────
# Request models
# ─────────────────────────────────────────────

class Preferences(BaseModel):
    budget_min: Optional[float] = Field(default=None, alias="budgetMin", ge=0)
    budget_max: Optional[float] = Field(default=None, alias="budgetMax", ge=0)
    categories: Optional[list[str]] = None
    regions: Optional[list[str]] = None
    materials: Optional[list[str]] = None

    model_config = {"populate_by_name": True}


class RecommendationRequest(BaseModel):
    query: str = Field(min_length=1)
    preferences: Preferences = Field(default_factory=Preferences)
    products: list[dict[str, Any]] = Field(default_factory=list)


class SearchQueryRequest(BaseModel):
    query: str = Field(min_length=1)


# ─────────────────────────────────────────────
# Response models
# ─────────────────────────────────────────────

class Recommendation(BaseModel):
    productId: str
    productName: str
    artisanName: str
    price: float
    rating: float
    matchScore: float = Field(description="Score from 0-100 indicating match quality")
    reason: str = Field(description="Why this product matches the query")
    culturalInsight: Optional[str] = Field(default=None, description="Cultural or historical insight about the product")


class Budget(BaseModel):
    min: float
    max: float


class SearchCriteria(BaseModel):
    budget: Optional[Budget] = None
    categories: Optional[list[str]] = None
    regions: Optional[list[str]] = None
    materials: Optional[list[str]] = None


class ProductRecommendations(BaseModel):
    """Recommend products based on the user query and preferences."""
    recommendations: list[Recommendation]
    searchCriteria: SearchCriteria
    summary: str = Field(description="Brief summary of recommendations")


class ParsedSearch(BaseModel):
    """Structured filters parsed from a natural-language search."""
    keywords: Optional[list[str]] = None
    budgetMin: Optional[float] = None
    budgetMax: Optional[float] = None
    categories: Optional[list[str]] = None
    regions: Optional[list[str]] = None
    materials: Optional[list[str]] = None
    artisanNames: Optional[list[str]] = None
    priceSort: Optional[Literal["asc", "desc"]] = None
    ratingMin: Optional[float] = None


# ─────────────────────────────────────────────
# Composers
# ─────────────────────────────────────────────

def _compose_recommendations(req: RecommendationRequest) -> list:
    return [json_message(
        {
            "userQuery": req.query,
            "availableProducts": req.products[:MAX_PRODUCTS_IN_PROMPT],
            "totalProducts": len(req.products),
            "userPreferences": dump(req.preferences),
        },
        "Recommend the most suitable products based on the query and preferences. "
        "Include cultural insights where relevant.",
    )]


def _compose_search(req: SearchQueryRequest) -> list:
    return [json_message(
        {"searchQuery": req.query, "availableCategories": CATEGORIES, "availableRegions": REGIONS},
        "Parse this search query into structured filters.",
    )]


SPEC = AgentSpec(
    agent_type=AgentType.PRODUCT_RECOMMENDATION,
    description="Helps customers discover handcrafted products.",
    operations=operation_table(
        Operation(
            name="getRecommendations",
            request_model=RecommendationRequest,
            compose=_compose_recommendations,
            response_schema=ResponseSchema("generateRecommendations", ProductRecommendations),
            description="Personalised product recommendations from a supplied catalogue.",
        ),
        Operation(
            name="parseSearchQuery",
            request_model=SearchQueryRequest,
            compose=_compose_search,
            response_schema=ResponseSchema("parseSearchQuery", ParsedSearch),
            description="Turn a natural-language search into structured filters.",
        ),
    ),
)
