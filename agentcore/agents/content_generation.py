"""
contentGeneration: product copy, artisan stories, marketing and SEO.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from agentcore.agents.base import AgentSpec, AgentType, Operation, dump, json_message, operation_table
from agentcore.llm.schema import ResponseSchema


# ─────────────────────────────────────────────
# Request models
# ─────────────────────────────────────────────

class ProductDescriptionRequest(BaseModel):
    productDetails: dict[str, Any]
    targetAudience: Optional[dict[str, Any]] = None


class ArtisanStoryRequest(BaseModel):
    artisanProfile: dict[str, Any]
    achievements: Optional[dict[str, Any]] = None


class MarketingRequest(BaseModel):
    campaign: dict[str, Any]
    products: Optional[dict[str, Any]] = None
    audience: Optional[dict[str, Any]] = None


class SeoRequest(BaseModel):
    content: dict[str, Any]
    keywords: Optional[dict[str, Any]] = None
    platform: Optional[str] = None


# ─────────────────────────────────────────────
# Response models
# ─────────────────────────────────────────────

class Specification(BaseModel):
    name: str
    value: str


class MainCopy(BaseModel):
    title: str
    shortDescription: str = Field(max_length=200)
    longDescription: str
    highlights: list[str]
    materials: list[str]
    dimensions: Optional[str] = None
    care: Optional[str] = None


class CulturalContext(BaseModel):
    significance: str
    technique: str
    history: str
    region: str


class TechnicalCopy(BaseModel):
    specifications: list[Specification]
    keywords: list[str]
    categoryTags: list[str]


class SeoCopy(BaseModel):
    title: str
    description: str
    keywords: list[str]


class ProductDescription(BaseModel):
    """Product description with cultural context."""
    main: MainCopy
    cultural: CulturalContext
    technical: TechnicalCopy
    seo: SeoCopy


class Biography(BaseModel):
    introduction: str
    background: str
    journey: str
    philosophy: str


class Technique(BaseModel):
    name: str
    description: str
    significance: str


class Material(BaseModel):
    name: str
    description: str
    sourcing: str


class Craft(BaseModel):
    tradition: str
    techniques: list[Technique]
    materials: list[Material]


class Achievement(BaseModel):
    title: str
    description: str
    year: Optional[str] = None


class Impact(BaseModel):
    community: str
    cultural: str
    environmental: Optional[str] = None


class HighlightImage(BaseModel):
    url: str
    caption: str


class StoryMedia(BaseModel):
    quotes: list[str]
    highlightImages: Optional[list[HighlightImage]] = None


class ArtisanStory(BaseModel):
    """Artisan biography with craft and impact."""
    biography: Biography
    craft: Craft
    achievements: list[Achievement]
    impact: Impact
    media: StoryMedia


class SocialContent(BaseModel):
    text: str
    hashtags: list[str]
    callToAction: str


class SocialPost(BaseModel):
    platform: Literal["instagram", "facebook", "twitter", "pinterest"]
    content: SocialContent
    imagePrompts: Optional[list[str]] = None


class EmailSection(BaseModel):
    type: Literal["header", "product", "story", "cta"]
    content: str


class EmailCopy(BaseModel):
    subject: str
    preheader: str
    body: str
    sections: list[EmailSection]


class BlogSection(BaseModel):
    heading: str
    content: str
    imagePrompt: Optional[str] = None


class BlogPost(BaseModel):
    title: str
    excerpt: str
    content: str
    sections: list[BlogSection]
    conclusion: str
    callToAction: str


class MarketingContent(BaseModel):
    """Multi-channel marketing content."""
    socialMedia: list[SocialPost]
    email: EmailCopy
    blog: BlogPost


class Improvement(BaseModel):
    type: str
    suggestion: str
    priority: Literal["high", "medium", "low"]


class SeoAnalysis(BaseModel):
    currentScore: float
    improvements: list[Improvement]


class Header(BaseModel):
    level: int
    text: str


class Keyword(BaseModel):
    word: str
    density: float
    placement: list[str]


class OptimizedCopy(BaseModel):
    title: str
    description: str
    headers: list[Header]
    content: str
    keywords: list[Keyword]


class Alternate(BaseModel):
    lang: str
    url: str


class TechnicalSeo(BaseModel):
    canonicalUrl: Optional[str] = None
    structuredData: str = Field(description="JSON-LD document serialised as a string")
    alternates: Optional[list[Alternate]] = None


class SeoOptimization(BaseModel):
    """SEO analysis and optimised copy."""
    analysis: SeoAnalysis
    optimized: OptimizedCopy
    technical: TechnicalSeo


# ─────────────────────────────────────────────
# Composers
# ─────────────────────────────────────────────

def _instructed(instruction: str):
    def compose(req: BaseModel) -> list:
        return [json_message(dump(req), instruction)]
    return compose


SPEC = AgentSpec(
    agent_type=AgentType.CONTENT_GENERATION,
    description="Writes product descriptions, artisan stories, marketing and SEO copy.",
    operations=operation_table(
        Operation(
            name="generateProductDescription",
            request_model=ProductDescriptionRequest,
            compose=_instructed(
                "Create a compelling product description that highlights craftsmanship and cultural significance."
            ),
            response_schema=ResponseSchema("generateDescription", ProductDescription),
        ),
        Operation(
            name="createArtisanStory",
            request_model=ArtisanStoryRequest,
            compose=_instructed(
                "Create an engaging artisan biography that highlights their journey, craft, and cultural impact."
            ),
            response_schema=ResponseSchema("generateArtisanStory", ArtisanStory),
        ),
        Operation(
            name="generateMarketingContent",
            request_model=MarketingRequest,
            compose=_instructed(
                "Create marketing content for various channels while maintaining cultural authenticity."
            ),
            response_schema=ResponseSchema("generateMarketingContent", MarketingContent),
        ),
        Operation(
            name="optimizeForSEO",
            request_model=SeoRequest,
            compose=_instructed(
                "Optimize content for search engines while preserving cultural authenticity and readability."
            ),
            response_schema=ResponseSchema("optimizeContent", SeoOptimization),
        ),
    ),
)
