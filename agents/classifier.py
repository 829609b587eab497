"""Remote classifier for report images and text.

This module implements the RemoteClassifier, which asks the configured
remote model to place a report photo or description into the taxonomy.

Design Philosophy:
    - Raise, don't guess: remote failures propagate as RemoteModelError or
      asyncio.TimeoutError so the consensus engine can fall back to the
      keyword classifier
    - Parse leniently: responses go through the three-tier parser and are
      normalized into the taxonomy before leaving this module
    - Penalize drawings: an image the model says is not a real photograph
      keeps only 30% of its confidence

The prompts list the exact taxonomy names so well-behaved models answer
with a category that needs no remapping.
"""

import logging

from agents.client import ModelClient, ModelUnavailableError
from analysis.parsing import parse_category_response
from config import Config
from models.classification import ClassificationResult, Modality
from models.taxonomy import CATEGORY_NAMES, MainCategory, TAXONOMY

logger = logging.getLogger(__name__)

NON_PHOTO_PENALTY = 0.3
IMAGE_CONFIDENCE_BONUS = 0.1


def build_image_prompt() -> str:
    """Prompt for classifying a report photo."""
    categories = ", ".join(CATEGORY_NAMES)
    definitions = "\n".join(
        f"- {entry.name.value}: Issues related to {', '.join(entry.keywords[:10])}, etc."
        for entry in TAXONOMY.values()
    )
    return f"""You are an expert civic infrastructure problem classifier analyzing citizen-reported issues.

TASK: Analyze this image to identify the PRIMARY civic infrastructure problem and classify it into one of these EXACT categories.

AVAILABLE CATEGORIES (choose exactly one):
{categories}

CATEGORY DEFINITIONS:
{definitions}

ANALYSIS RULES:
1. This is a photograph taken by a citizen reporting an infrastructure problem
2. Focus on the MAIN visible problem that dominates the image
3. Choose the MOST APPROPRIATE category from the list above
4. If multiple issues exist, pick the most prominent one
5. Use the EXACT category name from the list
6. Set isPhoto to false for drawings, screenshots, memes or stock graphics

OUTPUT FORMAT (JSON only):
{{
  "subcategory": "specific_issue_description",
  "mainCategory": "exact_category_name_from_list",
  "confidence": 0.0-1.0,
  "isPhoto": true,
  "explanation": "brief description focusing on why you chose this category"
}}

Be decisive and use only the category names provided above."""


def build_text_prompt(text: str) -> str:
    """Prompt for classifying a description or voice transcript."""
    categories = ", ".join(CATEGORY_NAMES)
    escaped = (text or "").replace('"', '\\"')
    return f"""You are a civic issues text classifier for citizen complaints.
AVAILABLE CATEGORIES: {categories}
Analyze the text description and classify the civic infrastructure issue being reported.
OUTPUT FORMAT (JSON only):
{{
  "subcategory": "specific_issue_name",
  "mainCategory": "one_of_the_main_categories",
  "confidence": 0.0-1.0,
  "explanation": "brief explanation"
}}

User Description: "{escaped}\""""


class RemoteClassifier:
    """Classifies report images and text with the remote model.

    Error Handling:
        Every failure is raised to the caller. The consensus engine decides
        how to degrade (keyword classifier for text, image-reference guess
        for photos).

    Example:
        >>> classifier = RemoteClassifier(client, config)
        >>> result = await classifier.classify_text("streetlight out on 5th avenue")
        >>> result.main_category
        <MainCategory.LIGHTING: 'Street Lighting & Electrical'>
    """

    def __init__(self, client: ModelClient | None, config: Config):
        """Initialize the classifier.

        Args:
            client: Model handle, or None when no model is available
            config: Application configuration (image confidence threshold)
        """
        self.client = client
        self.config = config

    @property
    def available(self) -> bool:
        return self.client is not None

    def _require_client(self) -> ModelClient:
        if self.client is None:
            raise ModelUnavailableError("no remote model configured")
        return self.client

    async def classify_image(self, image: bytes) -> ClassificationResult:
        """Classify a prepared JPEG image.

        Args:
            image: JPEG bytes (already resized/re-encoded)

        Returns:
            Image ClassificationResult with photo penalty and confidence
            bonus applied

        Raises:
            ModelUnavailableError: No model configured
            RemoteModelError: The model call failed
            asyncio.TimeoutError: The model call timed out
        """
        client = self._require_client()
        response = await client.generate(build_image_prompt(), image=image)
        result = parse_category_response(response, source="image")

        confidence = result.confidence
        if result.is_photo is False:
            confidence *= NON_PHOTO_PENALTY
            logger.info("Image classified as non-photo; confidence reduced | confidence=%.2f", confidence)
        if result.main_category != MainCategory.OTHER and confidence > self.config.image_min_confidence:
            confidence = min(1.0, confidence + IMAGE_CONFIDENCE_BONUS)

        result = result.model_copy(update={"confidence": confidence})
        logger.info(
            "Image classified | model=%s category=%s confidence=%.2f subcategory=%s",
            client.name,
            result.main_category.value,
            result.confidence,
            result.subcategory,
        )
        return result

    async def classify_text(self, text: str, source: Modality = "text") -> ClassificationResult:
        """Classify a description or transcript.

        Args:
            text: Text to classify
            source: "text" for descriptions, "voice" for transcripts

        Raises:
            ModelUnavailableError: No model configured
            RemoteModelError: The model call failed
            asyncio.TimeoutError: The model call timed out
        """
        client = self._require_client()
        response = await client.generate(build_text_prompt(text))
        result = parse_category_response(response, source=source)
        logger.info(
            "Text classified | model=%s source=%s category=%s confidence=%.2f",
            client.name,
            source,
            result.main_category.value,
            result.confidence,
        )
        return result
