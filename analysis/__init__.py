"""Classification logic that does not talk to a model.

classify_by_keywords / classify_image_reference:
    Deterministic fallbacks used when a remote model is missing or fails.

parse_category_response:
    Three-tier parser turning raw model text into a ClassificationResult.

ConsensusEngine:
    Runs every supplied modality concurrently and combines the results.

decide_final_category:
    Ordered decision ladder producing a report's final category.
"""

from analysis.keywords import classify_by_keywords, classify_image_reference
from analysis.parsing import Parsed, Unparseable, extract_json, parse_category_response
from analysis.consensus import ConsensusEngine
from analysis.decision import decide_final_category, normalize_user_category

__all__ = [
    "classify_by_keywords",
    "classify_image_reference",
    "Parsed",
    "Unparseable",
    "extract_json",
    "parse_category_response",
    "ConsensusEngine",
    "decide_final_category",
    "normalize_user_category",
]
