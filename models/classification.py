"""Classification result models for civic issue reports.

Every classifier in the system (remote model, keyword matcher, consensus
engine) speaks in these types, so the rest of the pipeline never sees a raw
model response.

Normalization:
    ``main_category`` is coerced into the taxonomy by a field validator and
    ``confidence`` is clamped to [0, 1]. Both happen once, at construction,
    so a ClassificationResult can never carry an out-of-taxonomy category or
    an out-of-range confidence.

Sources:
    image / text / voice        per-modality remote (or fallback) results
    keyword-fallback            keyword classifier rescued an ``Other`` best
    consensus                   two or more modalities agreed
    none                        nothing was supplied to classify
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from models.taxonomy import MainCategory, map_to_standard_category

logger = logging.getLogger(__name__)

Modality = Literal["image", "text", "voice", "keyword-fallback"]
BestSource = Literal["image", "text", "voice", "keyword-fallback", "consensus", "none"]


def clamp_confidence(value, default: float = 0.0) -> float:
    """Coerce a confidence-like value into [0, 1]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(0.0, min(1.0, number))


def _normalize_main_category(value) -> MainCategory:
    return map_to_standard_category(value)


class ClassificationResult(BaseModel):
    """Result of classifying one modality of a report.

    Attributes:
        subcategory: Free-text label from the model or the matched keyword
        main_category: Taxonomy member
        confidence: Clamped to [0, 1]
        is_photo: Whether the image looked like a real photograph (images only)
        explanation: Short human-readable justification
        source: Which classifier produced this result
        raw: Raw model response text, kept for debugging
    """

    subcategory: str = Field(default="", description="Free-text label")
    main_category: MainCategory = Field(default=MainCategory.OTHER, description="Taxonomy category")
    confidence: float = Field(default=0.0, description="Confidence (0-1)")
    is_photo: bool | None = Field(default=None, description="Image looked like a real photo")
    explanation: str = Field(default="", description="Short justification")
    source: Modality = Field(default="text", description="Producing classifier")
    raw: str = Field(default="", description="Raw response text")

    @field_validator("main_category", mode="before")
    @classmethod
    def _normalize_category(cls, value):
        return _normalize_main_category(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        return clamp_confidence(value)

    @classmethod
    def neutral(cls, source: Modality, explanation: str = "") -> "ClassificationResult":
        """Placeholder for a modality that produced nothing usable."""
        return cls(
            subcategory=MainCategory.OTHER.value,
            main_category=MainCategory.OTHER,
            confidence=0.0,
            source=source,
            explanation=explanation,
        )

    @property
    def is_other(self) -> bool:
        return self.main_category == MainCategory.OTHER

    def __str__(self) -> str:
        """Human-readable representation for logging."""
        return f"Classification({self.source}, {self.main_category.value}, {self.confidence:.2f})"


class Candidate(BaseModel):
    """A weighted modality result used for ranking.

    Only ever persisted inside the admin-only raw payload.
    """

    source: Modality
    main_category: MainCategory
    confidence: float
    weight: float
    score: float

    @classmethod
    def from_result(cls, result: ClassificationResult, weight: float) -> "Candidate":
        return cls(
            source=result.source,
            main_category=result.main_category,
            confidence=result.confidence,
            weight=weight,
            score=result.confidence * weight,
        )


class ConsensusResult(BaseModel):
    """Agreement between two or more modalities on one category."""

    main_category: MainCategory
    confidence: float = Field(ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    votes: int = Field(ge=2)


class BestResult(BaseModel):
    """The single best answer for a report."""

    main_category: MainCategory = MainCategory.OTHER
    confidence: float = 0.0
    source: BestSource = "none"
    explanation: str = ""

    @field_validator("main_category", mode="before")
    @classmethod
    def _normalize_category(cls, value):
        return _normalize_main_category(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        return clamp_confidence(value)


class SafetyVerdict(BaseModel):
    """Content-appropriateness verdict for an image.

    Attributes:
        is_appropriate: False only when the model said so
        confidence: Model's confidence in the verdict (0-1)
        reason: Short reason, empty when appropriate
    """

    is_appropriate: bool = True
    confidence: float = 1.0
    reason: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        return clamp_confidence(value)

    def blocks(self, threshold: float) -> bool:
        """Whether this verdict should flag the report."""
        return not self.is_appropriate and self.confidence >= threshold


class AnalysisResult(BaseModel):
    """Combined output of the consensus engine for one report."""

    image: ClassificationResult | None = None
    text: ClassificationResult | None = None
    voice: ClassificationResult | None = None
    best: BestResult = Field(default_factory=BestResult)
    consensus: ConsensusResult | None = None
    safety: SafetyVerdict | None = None
    content_flagged: bool = False
    candidates: list[Candidate] = Field(default_factory=list)

    def debug_payload(self) -> dict:
        """JSON-safe dump stored as the report's admin-only raw response."""
        return self.model_dump(mode="json")
