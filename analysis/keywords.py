"""Deterministic keyword classifier.

Used on its own when no remote model is configured, and as the last-resort
tier whenever a remote classification fails or returns something unusable.

Scoring:
    For each category, the longest matching keyword (case-insensitive
    substring) scores ``len(keyword) / 10``. That score is divided by the
    category priority, so a priority-1 category beats the catch-all ``Other``
    on equally long evidence. The highest final score wins; confidence is
    ``min(0.9, 0.7 + final * 0.2)``.

The functions here are pure and never raise.
"""

import logging

from models.classification import ClassificationResult, Modality
from models.taxonomy import MainCategory, TAXONOMY

logger = logging.getLogger(__name__)

BLANK_CONFIDENCE = 0.15
NO_MATCH_CONFIDENCE = 0.35
MAX_KEYWORD_CONFIDENCE = 0.9

IMAGE_REFERENCE_CONFIDENCE = 0.7
IMAGE_DEFAULT_CONFIDENCE = 0.6

# Coarse hints looked for in an image URL or file path
_REFERENCE_HINTS: dict[MainCategory, tuple[str, ...]] = {
    MainCategory.ROAD: ("road", "pothole", "crack", "bridge", "street", "pavement", "infrastructure"),
    MainCategory.WATER: ("water", "leak", "pipe", "drain", "sewer", "flood", "sewage"),
    MainCategory.WASTE: ("garbage", "trash", "waste", "dump", "litter", "bin"),
    MainCategory.LIGHTING: ("light", "lamp", "electric", "power", "pole", "wire"),
    MainCategory.SAFETY: ("safety", "animal", "dog", "illegal", "vendor", "hazard"),
}


def classify_by_keywords(
    text: str | None,
    source: Modality = "keyword-fallback",
) -> ClassificationResult:
    """Classify free text by keyword containment.

    Args:
        text: Description, transcript or raw model output
        source: Source label to stamp on the result

    Returns:
        ClassificationResult; ``Other`` at 0.15 for blank input and at 0.35
        when nothing matches
    """
    normalized = (text or "").strip().lower()
    if not normalized:
        return ClassificationResult(
            subcategory="other",
            main_category=MainCategory.OTHER,
            confidence=BLANK_CONFIDENCE,
            explanation="No text to classify",
            source=source,
            raw=text or "",
        )

    best_category: MainCategory | None = None
    best_keyword = ""
    best_score = 0.0

    for category, entry in TAXONOMY.items():
        category_score = 0.0
        matched = ""
        for keyword in entry.keywords:
            keyword_lower = keyword.lower()
            if keyword_lower in normalized:
                score = len(keyword_lower) / 10
                if score > category_score:
                    category_score = score
                    matched = keyword_lower
        if category_score <= 0:
            continue
        final_score = category_score / entry.priority
        # Strict comparison keeps the earlier category on exact ties
        if final_score > best_score:
            best_score = final_score
            best_category = category
            best_keyword = matched

    if best_category is None:
        return ClassificationResult(
            subcategory="other",
            main_category=MainCategory.OTHER,
            confidence=NO_MATCH_CONFIDENCE,
            explanation="No category keywords matched",
            source=source,
            raw=text or "",
        )

    confidence = min(MAX_KEYWORD_CONFIDENCE, 0.7 + best_score * 0.2)
    logger.debug(
        "Keyword match | category=%s keyword=%s score=%.2f",
        best_category.value,
        best_keyword,
        best_score,
    )
    return ClassificationResult(
        subcategory=best_keyword,
        main_category=best_category,
        confidence=confidence,
        explanation=f"Matched keyword '{best_keyword}'",
        source=source,
        raw=text or "",
    )


def classify_image_reference(reference: str | None) -> ClassificationResult:
    """Guess an image's category from its URL or file path.

    Used when an image could be fetched but not classified remotely. An
    unrecognized reference is still treated as relevant civic evidence.
    """
    lowered = (reference or "").lower()
    for category, hints in _REFERENCE_HINTS.items():
        for hint in hints:
            if hint in lowered:
                return ClassificationResult(
                    subcategory=hint,
                    main_category=category,
                    confidence=IMAGE_REFERENCE_CONFIDENCE,
                    explanation=f"Image reference mentions '{hint}'",
                    source="image",
                    raw=reference or "",
                )
    return ClassificationResult(
        subcategory="unidentified civic issue",
        main_category=MainCategory.OTHER,
        confidence=IMAGE_DEFAULT_CONFIDENCE,
        explanation="Image could not be classified",
        source="image",
        raw=reference or "",
    )
