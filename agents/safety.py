"""Image content-safety filter.

Runs an independent model query asking whether a photo is appropriate for
a public civic reporting platform. The filter fails open: a missing model,
an unreadable answer or a failed call all produce an "appropriate" verdict,
and only a confident "inappropriate" verdict flags a report.

Verdicts:
    no model / no image       appropriate, confidence 1.0
    parsed verdict            as returned (missing confidence -> 0.8)
    unreadable response       appropriate, confidence 0.5
    call failed               FAIL_OPEN_VERDICT (appropriate, confidence 0.0)
"""

import logging

from agents.client import ModelClient
from analysis.parsing import extract_json
from config import Config
from models.classification import SafetyVerdict, clamp_confidence

logger = logging.getLogger(__name__)

DEFAULT_VERDICT_CONFIDENCE = 0.8

FAIL_OPEN_VERDICT = SafetyVerdict(is_appropriate=True, confidence=0.0, reason="Safety check failed")

SAFETY_PROMPT = """You are a content safety classifier for a civic reporting platform.
TASK: Determine if this image is appropriate for a public civic issue reporting platform.

APPROPRIATE CONTENT:
- Infrastructure problems (roads, lights, utilities)
- Public spaces and facilities
- Civic issues and complaints
- Environmental problems
- Public safety concerns

INAPPROPRIATE CONTENT:
- Nudity or explicit sexual content
- Private spaces (bedrooms, private bathrooms)
- Personal/private photos unrelated to civic issues
- Violence or harassment
- Content clearly not related to civic infrastructure

OUTPUT FORMAT (JSON only):
{
  "isAppropriate": true/false,
  "confidence": 0.0-1.0,
  "reason": "brief explanation if inappropriate, empty if appropriate"
}"""


class SafetyFilter:
    """Content-appropriateness gate for report photos.

    Example:
        >>> safety = SafetyFilter(client, config)
        >>> verdict = await safety.check_safety(jpeg_bytes)
        >>> safety.is_blocked(verdict)
        False
    """

    def __init__(self, client: ModelClient | None, config: Config):
        self.client = client
        self.threshold = config.safety_min_confidence

    async def check_safety(self, image: bytes | None) -> SafetyVerdict:
        """Ask the model whether an image is appropriate. Never raises."""
        if self.client is None or not image:
            return SafetyVerdict(is_appropriate=True, confidence=1.0, reason="")

        try:
            response = await self.client.generate(SAFETY_PROMPT, image=image)
        except Exception as e:
            logger.warning("Safety check failed; allowing image | error=%s", e)
            return FAIL_OPEN_VERDICT

        data = extract_json(response)
        if data is None or not isinstance(data.get("isAppropriate"), bool):
            logger.info("Safety response unreadable; allowing image")
            return SafetyVerdict(is_appropriate=True, confidence=0.5, reason="")

        confidence = data.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = DEFAULT_VERDICT_CONFIDENCE
        verdict = SafetyVerdict(
            is_appropriate=data["isAppropriate"],
            confidence=clamp_confidence(confidence, DEFAULT_VERDICT_CONFIDENCE),
            reason=str(data.get("reason") or ""),
        )
        logger.debug(
            "Safety verdict | appropriate=%s confidence=%.2f",
            verdict.is_appropriate,
            verdict.confidence,
        )
        return verdict

    def is_blocked(self, verdict: SafetyVerdict) -> bool:
        """Whether a verdict is confident enough to flag the report."""
        return verdict.blocks(self.threshold)
