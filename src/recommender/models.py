import math
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

ItemType = Literal["post", "paper"]
FeedbackItemType = Literal["post", "paper", "group", "project", "user"]
FeedbackKind = Literal["positive", "negative", "not_interested"]
RecommendationType = Literal["posts", "papers", "mixed"]
Outcome = Literal["positive", "negative"]

CONTROL_VARIANT = "control"


class ApiModel(BaseModel):
    """Base for models exchanged with the web app (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScoringWeights(ApiModel):
    """Weight of each normalized signal in the final score. Must sum to 1."""

    recency: float = Field(0.20, ge=0, le=1)
    network: float = Field(0.30, ge=0, le=1)
    topical: float = Field(0.35, ge=0, le=1)
    popularity: float = Field(0.15, ge=0, le=1)

    @model_validator(mode="after")
    def _check_sum(self):
        total = self.recency + self.network + self.topical + self.popularity
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"weights must sum to 1.0, got {total:.4f}")
        return self

    def as_dict(self) -> dict[str, float]:
        return {
            "recency": self.recency,
            "network": self.network,
            "topical": self.topical,
            "popularity": self.popularity,
        }


class RecommendationScore(ApiModel):
    """A scored item produced for one request. Never persisted."""

    item_type: ItemType
    item_id: str
    score: float = Field(..., ge=0)
    reasons: list[str] = Field(default_factory=list)
    created_at: datetime | None = Field(
        None, description="Creation time of the underlying item (tie-breaker)"
    )


class RecommendedItem(ApiModel):
    """A recommended post or paper with its ranking metadata."""

    type: ItemType
    id: str
    item: dict[str, Any] = Field(default_factory=dict)
    recommendation_score: float
    recommendation_reasons: list[str]
    recommendation_position: int
    recommendation_session_id: str
    variant_id: str


class RecommendationsResponse(ApiModel):
    recommendations: list[RecommendedItem]
    total: int
    session_id: str
    variant_id: str
    cached: bool = False


class FeedbackRequest(ApiModel):
    """Body of ``POST /recommendations/feedback``."""

    item_type: FeedbackItemType
    item_id: str = Field(..., min_length=1)
    feedback: FeedbackKind
    reason: str | None = None
    session_id: str | None = None
    position: int | None = Field(None, ge=0)
    variant_id: str | None = None


class FeedbackRecord(ApiModel):
    """One feedback event. Append-only."""

    user_id: str
    item_type: FeedbackItemType
    item_id: str
    feedback: FeedbackKind
    reason: str | None = None
    session_id: str | None = None
    position: int | None = Field(None, ge=0)
    created_at: datetime


class FeedbackResponse(ApiModel):
    success: bool = True
    message: str = "Feedback recorded"


class FeedbackHistoryResponse(ApiModel):
    feedback: list[FeedbackRecord]
    total: int


class DiscoverResponse(ApiModel):
    groups: list[dict[str, Any]]
    projects: list[dict[str, Any]]
    users: list[dict[str, Any]]
    total: int


class VariantConfig(ApiModel):
    """Definition of an A/B variant."""

    name: str = Field(..., min_length=1)
    description: str = ""
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    is_control: bool = False
    traffic_percent: float = Field(..., ge=0, le=100)


class VariantAssignment(ApiModel):
    variant_id: str
    weights: ScoringWeights


class VariantResults(ApiModel):
    id: str
    name: str
    description: str = ""
    weights: ScoringWeights
    is_control: bool = False
    is_active: bool = True
    total_assignments: int = 0
    total_shown: int = 0
    total_clicked: int = 0
    total_positive_feedback: int = 0
    total_negative_feedback: int = 0
    acceptance_rate: float | None = None
    avg_click_through_rate: float = 0.0
    avg_positive_feedback_per_user: float = 0.0
    avg_negative_feedback_per_user: float = 0.0
    performance_score: float = 50.0
