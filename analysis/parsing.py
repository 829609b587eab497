"""Lenient parsing of remote model responses.

Models are asked for JSON but routinely wrap it in code fences, prepend
prose, or ignore the format entirely. Responses are parsed through an
ordered chain of tiers; each tier either returns ``Parsed`` or hands the
text on as ``Unparseable``:

    1. json      strip fences, take the outermost ``{...}``, JSON-decode.
                 The object must name a category (mainCategory, main,
                 category or subcategory).
    2. pattern   ``Category: X ... Confidence: N`` in free text
    3. keywords  keyword classifier over the raw response (never fails)

The result is normalized into a ClassificationResult once, here, so callers
never see a raw response.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, Literal

from analysis.keywords import classify_by_keywords
from models.classification import ClassificationResult, Modality, clamp_confidence
from models.taxonomy import map_to_standard_category, match_category_name

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5

_FENCE_OPEN = re.compile(r"^\s*```[\s\S]*?\n")
_FENCE_CLOSE = re.compile(r"```\s*$")
_CATEGORY_PATTERN = re.compile(
    r"Category[:\s]*([A-Za-z0-9 _-]+)[,;\s]*Confidence[:\s]*([0-9.]+)",
    re.IGNORECASE,
)
_CATEGORY_KEYS = ("mainCategory", "main", "category", "subcategory")


@dataclass(frozen=True)
class Parsed:
    result: ClassificationResult
    tier: Literal["json", "pattern", "keywords"]


@dataclass(frozen=True)
class Unparseable:
    raw: str
    reason: str


ParseOutcome = Parsed | Unparseable


def extract_json(text: str | None) -> dict | None:
    """Pull a JSON object out of a model response.

    Strips a leading/trailing code fence, then tries the span between the
    first ``{`` and the last ``}``, then the whole remaining text.

    Returns:
        The decoded object, or None if nothing decodes to a dict
    """
    if not text:
        return None
    stripped = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", str(text).strip(), count=1)).strip()

    candidates = []
    first = stripped.find("{")
    last = stripped.rfind("}")
    if first != -1 and last > first:
        candidates.append(stripped[first:last + 1])
    candidates.append(stripped)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug("JSON decode failed | error=%s", e)
            continue
        if isinstance(data, dict):
            return data
    return None


def _confidence_or_default(value) -> float:
    # JSON booleans are ints in Python; they are not confidences
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    return clamp_confidence(value, DEFAULT_CONFIDENCE)


def parse_json_tier(raw: str, source: Modality) -> ParseOutcome:
    data = extract_json(raw)
    if data is None:
        return Unparseable(raw=raw, reason="no JSON object")
    if not any(data.get(key) for key in _CATEGORY_KEYS):
        return Unparseable(raw=raw, reason="JSON object names no category")

    subcategory = str(data.get("subcategory") or data.get("category") or "")
    main = data.get("mainCategory") or data.get("main")
    main_category = match_category_name(str(main)) if main else None
    if main_category is None:
        # Unknown or missing main category: remap from the subcategory
        main_category = map_to_standard_category(subcategory)

    is_photo = None
    if source == "image":
        is_photo = data["isPhoto"] if isinstance(data.get("isPhoto"), bool) else True

    result = ClassificationResult(
        subcategory=subcategory,
        main_category=main_category,
        confidence=_confidence_or_default(data.get("confidence")),
        is_photo=is_photo,
        explanation=str(data.get("explanation") or ""),
        source=source,
        raw=raw,
    )
    return Parsed(result=result, tier="json")


def parse_pattern_tier(raw: str, source: Modality) -> ParseOutcome:
    match = _CATEGORY_PATTERN.search(raw)
    if not match:
        return Unparseable(raw=raw, reason="no category/confidence pattern")
    subcategory = match.group(1).strip()
    result = ClassificationResult(
        subcategory=subcategory,
        main_category=map_to_standard_category(subcategory),
        confidence=clamp_confidence(match.group(2), DEFAULT_CONFIDENCE),
        source=source,
        raw=raw,
    )
    return Parsed(result=result, tier="pattern")


def parse_keyword_tier(raw: str, source: Modality) -> ParseOutcome:
    return Parsed(result=classify_by_keywords(raw, source=source), tier="keywords")


PARSE_CHAIN: tuple[Callable[[str, Modality], ParseOutcome], ...] = (
    parse_json_tier,
    parse_pattern_tier,
    parse_keyword_tier,
)


def parse_category_response(text: str | None, source: Modality) -> ClassificationResult:
    """Parse a category response through the tier chain.

    Args:
        text: Raw model response
        source: Modality the response belongs to

    Returns:
        Normalized ClassificationResult (never raises)
    """
    raw = (text or "").strip()
    for tier in PARSE_CHAIN:
        outcome = tier(raw, source)
        if isinstance(outcome, Parsed):
            logger.debug(
                "Parsed response | source=%s tier=%s category=%s confidence=%.2f",
                source,
                outcome.tier,
                outcome.result.main_category.value,
                outcome.result.confidence,
            )
            return outcome.result
        logger.debug("Parse tier skipped | source=%s reason=%s", source, outcome.reason)
    # parse_keyword_tier always returns Parsed
    raise AssertionError("parse chain exhausted")
