"""Pydantic models for the civic report triage pipeline.

This package contains all data models used throughout the pipeline:

MainCategory / TAXONOMY:
    Closed set of report categories with keywords and priorities.
    ``map_to_standard_category`` coerces any label into the set.

ClassificationResult:
    Output of one classifier for one modality (image, text, voice).

AnalysisResult:
    Combined consensus-engine output: per-modality results, consensus,
    best pick, safety verdict and ranked candidates.

Report:
    The report record the worker reads and updates.

Example:
    >>> from models import ClassificationResult, MainCategory
    >>> ClassificationResult(main_category="pothole", confidence=1.4).main_category
    <MainCategory.ROAD: 'Road & Infrastructure'>
"""

from models.taxonomy import (
    CATEGORY_NAMES,
    TAXONOMY,
    Category,
    MainCategory,
    map_to_standard_category,
)
from models.classification import (
    AnalysisResult,
    BestResult,
    Candidate,
    ClassificationResult,
    ConsensusResult,
    SafetyVerdict,
)
from models.report import AIStatus, Photo, Report, ReportStatus, VoiceAttachment

__all__ = [
    "CATEGORY_NAMES",
    "TAXONOMY",
    "Category",
    "MainCategory",
    "map_to_standard_category",
    "AnalysisResult",
    "BestResult",
    "Candidate",
    "ClassificationResult",
    "ConsensusResult",
    "SafetyVerdict",
    "AIStatus",
    "Photo",
    "Report",
    "ReportStatus",
    "VoiceAttachment",
]
