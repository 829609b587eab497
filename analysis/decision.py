"""Final-category decision ladder.

Turns an AnalysisResult plus the submitter's own category choice into the
single category a report is filed under. Rules are evaluated in order and
the first match wins:

    1. a real user-chosen category, verbatim
    2. image      >= 0.7, not Other
    3. consensus  >= 0.6, not Other
    4. best       >= 0.6, not Other
    5. image      >= 0.4, not Other
    6. text       >= 0.5, not Other
    7. voice      >= 0.5, not Other
    8. Other

Some clients submit a placeholder (empty, or the role name "citizen")
instead of a category; those mean "no override".
"""

import logging

from models.classification import AnalysisResult
from models.taxonomy import MainCategory

logger = logging.getLogger(__name__)

PLACEHOLDER_USER_CATEGORIES = frozenset({"", "citizen"})

STRONG_IMAGE_CONFIDENCE = 0.7
CONSENSUS_CONFIDENCE = 0.6
BEST_CONFIDENCE = 0.6
WEAK_IMAGE_CONFIDENCE = 0.4
TEXT_CONFIDENCE = 0.5
VOICE_CONFIDENCE = 0.5


def normalize_user_category(value: str | None) -> str | None:
    """Return the user's category, or None for empty/placeholder values."""
    if value is None:
        return None
    if value.strip().lower() in PLACEHOLDER_USER_CATEGORIES:
        return None
    return value


def _qualifies(category: MainCategory | None, confidence: float, threshold: float) -> bool:
    return category is not None and category != MainCategory.OTHER and confidence >= threshold


def decide_final_category(analysis: AnalysisResult, user_category: str | None = None) -> str:
    """Apply the decision ladder.

    Args:
        analysis: Consensus engine output
        user_category: Category chosen by the submitter (may be a placeholder)

    Returns:
        The user's category verbatim, or a taxonomy name
    """
    override = normalize_user_category(user_category)
    if override is not None:
        logger.debug("Final category from user | category=%s", override)
        return override

    image = analysis.image
    consensus = analysis.consensus
    best = analysis.best
    text = analysis.text
    voice = analysis.voice

    ladder = (
        ("image", image.main_category if image else None, image.confidence if image else 0.0, STRONG_IMAGE_CONFIDENCE),
        ("consensus", consensus.main_category if consensus else None, consensus.confidence if consensus else 0.0, CONSENSUS_CONFIDENCE),
        ("best", best.main_category, best.confidence, BEST_CONFIDENCE),
        ("image", image.main_category if image else None, image.confidence if image else 0.0, WEAK_IMAGE_CONFIDENCE),
        ("text", text.main_category if text else None, text.confidence if text else 0.0, TEXT_CONFIDENCE),
        ("voice", voice.main_category if voice else None, voice.confidence if voice else 0.0, VOICE_CONFIDENCE),
    )
    for rule, category, confidence, threshold in ladder:
        if _qualifies(category, confidence, threshold):
            logger.debug(
                "Final category decided | rule=%s category=%s confidence=%.2f",
                rule,
                category.value,
                confidence,
            )
            return category.value

    return MainCategory.OTHER.value
