"""Consensus engine combining image, text and voice classifications.

This module implements the ConsensusEngine, the core of report triage. It
runs every supplied modality concurrently, weights the results, looks for
agreement between modalities and picks one best category.

Pipeline:
    1. Classify each modality concurrently. The image branch fetches the
       photo once, runs the safety filter and, unless the photo is blocked,
       classifies it. A modality that raises becomes a neutral Other/0.0
       placeholder.
    2. Weight: score = confidence * weight. Images count most, but lose
       weight when the model says they are not photos or is unsure.
    3. Rank candidates by score (stable: image, text, voice on ties).
    4. Consensus: two or more modalities on the same category get
       ``avg(confidence) + boost``. A consensus more confident than the top
       ranked candidate becomes the best pick.
    5. Image override: a confident, specific image result wins unless the
       best pick already names the same category.
    6. Keyword rescue: a best pick of ``Other`` is replaced by the keyword
       classifier's answer on the description when it finds something.

Degradation:
    No remote model: text and voice use the keyword classifier, images use
    the URL/path guess. Remote failure per modality: the same fallbacks.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from analysis.keywords import classify_by_keywords, classify_image_reference
from config import Config
from models.classification import (
    AnalysisResult,
    BestResult,
    Candidate,
    ClassificationResult,
    ConsensusResult,
    Modality,
    SafetyVerdict,
)
from models.taxonomy import MainCategory
from tools.fetch import fetch_bytes
from tools.images import prepare_image

if TYPE_CHECKING:
    from agents.classifier import RemoteClassifier
    from agents.safety import SafetyFilter

logger = logging.getLogger(__name__)

NON_PHOTO_WEIGHT_FACTOR = 0.2
LOW_CONFIDENCE_WEIGHT_FACTOR = 0.5
KEYWORD_RESCUE_FACTOR = 0.8

Fetcher = Callable[..., Awaitable[bytes | None]]


class ConsensusEngine:
    """Runs and combines per-modality classifications for one report.

    Example:
        >>> engine = ConsensusEngine(config, classifier, safety)
        >>> analysis = await engine.analyze(text="large pothole blocking the road")
        >>> analysis.best.main_category
        <MainCategory.ROAD: 'Road & Infrastructure'>
    """

    def __init__(
        self,
        config: Config,
        classifier: "RemoteClassifier",
        safety: "SafetyFilter",
        fetcher: Fetcher = fetch_bytes,
    ):
        """Initialize the engine.

        Args:
            config: Weights, thresholds and image preparation settings
            classifier: Remote image/text classifier (may have no model)
            safety: Image safety filter (may have no model)
            fetcher: Attachment fetcher, ``fetch_bytes`` by default
        """
        self.config = config
        self.classifier = classifier
        self.safety = safety
        self.fetcher = fetcher

    # === Per-modality branches ===

    async def _load_image(self, reference: str) -> bytes | None:
        data = await self.fetcher(reference, timeout=self.config.ai_timeout_seconds)
        if data is None:
            return None
        try:
            return await prepare_image(
                data,
                max_dim=self.config.max_image_width,
                quality=self.config.jpeg_quality,
            )
        except Exception as e:
            logger.warning("Image preparation failed; sending original | error=%s", e)
            return data

    async def _analyze_image(
        self, reference: str
    ) -> tuple[ClassificationResult, SafetyVerdict | None, bool]:
        """Fetch, safety-check and classify the report photo.

        Returns:
            (image result, safety verdict, blocked)
        """
        if not self.classifier.available:
            # Nothing to send the bytes to; guess from the reference alone
            verdict = await self.safety.check_safety(None)
            return classify_image_reference(reference), verdict, False

        image = await self._load_image(reference)
        if image is None:
            return ClassificationResult.neutral("image", "Image could not be fetched"), None, False

        verdict = await self.safety.check_safety(image)
        if self.safety.is_blocked(verdict):
            logger.warning(
                "Image failed safety check | confidence=%.2f reason=%s",
                verdict.confidence,
                verdict.reason,
            )
            return ClassificationResult.neutral("image", "Blocked by safety filter"), verdict, True

        try:
            result = await self.classifier.classify_image(image)
        except Exception as e:
            logger.warning("Image classification failed; using reference fallback | error=%s", e)
            result = classify_image_reference(reference)
        return result, verdict, False

    async def _analyze_text(self, text: str, source: Modality) -> ClassificationResult:
        if not self.classifier.available:
            return classify_by_keywords(text, source=source)
        try:
            return await self.classifier.classify_text(text, source=source)
        except Exception as e:
            logger.warning("Remote %s classification failed; using keywords | error=%s", source, e)
            return classify_by_keywords(text, source=source)

    # === Combination ===

    def _image_weight(self, result: ClassificationResult) -> float:
        weight = self.config.image_weight
        if result.is_photo is False:
            weight *= NON_PHOTO_WEIGHT_FACTOR
        if result.confidence < self.config.image_min_confidence:
            weight *= LOW_CONFIDENCE_WEIGHT_FACTOR
        return weight

    def _rank(
        self,
        image: ClassificationResult | None,
        text: ClassificationResult | None,
        voice: ClassificationResult | None,
    ) -> list[Candidate]:
        candidates = []
        if image is not None:
            candidates.append(Candidate.from_result(image, self._image_weight(image)))
        if text is not None:
            candidates.append(Candidate.from_result(text, self.config.text_weight))
        if voice is not None:
            candidates.append(Candidate.from_result(voice, self.config.voice_weight))
        # sorted() is stable, so equal scores keep image, text, voice order
        return sorted(candidates, key=lambda c: c.score, reverse=True)

    def find_consensus(self, candidates: list[Candidate]) -> ConsensusResult | None:
        """Find the strongest category agreed on by two or more modalities.

        Ties are broken by more votes, then higher average confidence, then
        category name.
        """
        groups: dict[MainCategory, list[Candidate]] = {}
        for candidate in candidates:
            groups.setdefault(candidate.main_category, []).append(candidate)

        agreeing = [(category, members) for category, members in groups.items() if len(members) >= 2]
        if not agreeing:
            return None

        def sort_key(item: tuple[MainCategory, list[Candidate]]):
            category, members = item
            average = sum(m.confidence for m in members) / len(members)
            return (-len(members), -average, category.value)

        category, members = min(agreeing, key=sort_key)
        average = sum(m.confidence for m in members) / len(members)
        return ConsensusResult(
            main_category=category,
            confidence=min(1.0, average + self.config.consensus_boost),
            sources=[m.source for m in members],
            votes=len(members),
        )

    def _select_best(
        self,
        candidates: list[Candidate],
        consensus: ConsensusResult | None,
        image: ClassificationResult | None,
        text: str | None,
        results: dict[str, ClassificationResult],
    ) -> BestResult:
        if candidates:
            top = candidates[0]
            best = BestResult(
                main_category=top.main_category,
                confidence=top.confidence,
                source=top.source,
                explanation=results[top.source].explanation,
            )
        else:
            best = BestResult()

        if consensus is not None and consensus.confidence > best.confidence:
            best = BestResult(
                main_category=consensus.main_category,
                confidence=consensus.confidence,
                source="consensus",
                explanation=f"Agreement between {', '.join(consensus.sources)}",
            )

        if (
            image is not None
            and image.confidence >= self.config.image_min_confidence
            and image.main_category != MainCategory.OTHER
            and image.main_category != best.main_category
        ):
            logger.debug("Confident image result overrides best | category=%s", image.main_category.value)
            best = BestResult(
                main_category=image.main_category,
                confidence=image.confidence,
                source="image",
                explanation=image.explanation,
            )

        if best.main_category == MainCategory.OTHER and text:
            keyword_result = classify_by_keywords(text)
            if keyword_result.main_category != MainCategory.OTHER:
                logger.debug("Keyword rescue | category=%s", keyword_result.main_category.value)
                best = BestResult(
                    main_category=keyword_result.main_category,
                    confidence=max(best.confidence, keyword_result.confidence * KEYWORD_RESCUE_FACTOR),
                    source="keyword-fallback",
                    explanation=keyword_result.explanation,
                )
        return best

    async def analyze(
        self,
        image: str | None = None,
        text: str | None = None,
        voice_transcript: str | None = None,
    ) -> AnalysisResult:
        """Classify a report from any combination of photo, text and voice.

        Args:
            image: Photo URL or path
            text: Raw description
            voice_transcript: Transcribed voice note

        Returns:
            AnalysisResult; ``best`` is Other/0.0 when nothing was supplied
        """
        text = text if text and text.strip() else None
        voice_transcript = voice_transcript if voice_transcript and voice_transcript.strip() else None
        logger.info(
            "Analysis started | image=%s text=%s voice=%s",
            bool(image),
            bool(text),
            bool(voice_transcript),
        )

        async def none() -> None:
            return None

        outcomes = await asyncio.gather(
            self._analyze_image(image) if image else none(),
            self._analyze_text(text, "text") if text else none(),
            self._analyze_text(voice_transcript, "voice") if voice_transcript else none(),
            return_exceptions=True,
        )
        image_outcome, text_outcome, voice_outcome = outcomes

        safety: SafetyVerdict | None = None
        flagged = False
        image_result: ClassificationResult | None = None
        if isinstance(image_outcome, BaseException):
            logger.error("Image branch raised | error=%s", image_outcome, exc_info=image_outcome)
            image_result = ClassificationResult.neutral("image", "Image analysis failed")
        elif image_outcome is not None:
            image_result, safety, flagged = image_outcome

        def settle(outcome, source: Modality) -> ClassificationResult | None:
            if isinstance(outcome, BaseException):
                logger.error("%s branch raised | error=%s", source, outcome, exc_info=outcome)
                return ClassificationResult.neutral(source, f"{source} analysis failed")
            return outcome

        text_result = settle(text_outcome, "text")
        voice_result = settle(voice_outcome, "voice")

        results = {
            r.source: r for r in (image_result, text_result, voice_result) if r is not None
        }
        candidates = self._rank(image_result, text_result, voice_result)
        consensus = self.find_consensus(candidates)
        best = self._select_best(candidates, consensus, image_result, text, results)

        analysis = AnalysisResult(
            image=image_result,
            text=text_result,
            voice=voice_result,
            best=best,
            consensus=consensus,
            safety=safety,
            content_flagged=flagged,
            candidates=candidates,
        )
        logger.info(
            "Analysis complete | category=%s confidence=%.2f source=%s consensus=%s flagged=%s",
            best.main_category.value,
            best.confidence,
            best.source,
            consensus.main_category.value if consensus else "-",
            flagged,
        )
        return analysis
