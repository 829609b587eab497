"""Report record model.

A Report is created upstream (by whatever accepts citizen submissions) with
``ai_status=pending``. The worker owns the AI fields below and is the only
writer of them; everything else on the record is read-only input.

Lifecycle:
    pending -> processing -> completed | failed

    ``completed`` is terminal: a redelivered job for a completed report is a
    no-op. ``failed`` reports are retried by the job queue.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AIStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReportStatus(str, Enum):
    """Public-facing report status."""

    PROCESSING = "processing"
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    FLAGGED = "flagged"
    DELETED = "deleted"


class Photo(BaseModel):
    url: str
    key: str = ""


class VoiceAttachment(BaseModel):
    url: str = ""
    key: str = ""
    transcript: str = ""


class Report(BaseModel):
    """A citizen report and the AI classification state attached to it.

    Attributes:
        id: Opaque report id (hex uuid)
        user_category: Category chosen by the submitter, if any. Placeholder
            values are cleared by the worker.
        photos: Attached photos; only the first is classified
        voice: Optional voice note and its transcript
        description: Raw text description
        ai_raw_response: Full analysis dump (admin-only)
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str = ""
    user_category: str | None = None
    photos: list[Photo] = Field(default_factory=list)
    voice: VoiceAttachment | None = None
    description: str = ""
    address: str = ""

    # AI classification
    ai_status: AIStatus = AIStatus.PENDING
    ai_category: str = ""
    ai_category_confidence: float = 0.0
    ai_category_image: str = ""
    ai_category_image_confidence: float = 0.0
    ai_category_text: str = ""
    ai_category_text_confidence: float = 0.0
    ai_category_voice: str = ""
    ai_category_voice_confidence: float = 0.0
    ai_category_consensus: str = ""
    ai_category_consensus_confidence: float = 0.0
    final_category: str = ""
    ai_attempts: int = 0
    ai_error: str = ""
    ai_raw_response: dict = Field(default_factory=dict)

    # Content safety
    content_safety_flag: bool = False
    content_safety_reason: str = ""
    needs_manual_review: bool = False
    flagged: bool = False
    flagged_reason: str = ""

    status: ReportStatus = ReportStatus.PROCESSING
    assigned_department: int | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def image_url(self) -> str | None:
        """URL or path of the first photo, if any."""
        if self.photos and self.photos[0].url:
            return self.photos[0].url
        return None

    @property
    def voice_url(self) -> str | None:
        if self.voice and self.voice.url:
            return self.voice.url
        return None

    @property
    def voice_transcript(self) -> str | None:
        if self.voice and self.voice.transcript:
            return self.voice.transcript
        return None

    def clear_per_source_fields(self) -> None:
        """Reset per-modality and consensus classification fields."""
        self.ai_category_image = ""
        self.ai_category_image_confidence = 0.0
        self.ai_category_text = ""
        self.ai_category_text_confidence = 0.0
        self.ai_category_voice = ""
        self.ai_category_voice_confidence = 0.0
        self.ai_category_consensus = ""
        self.ai_category_consensus_confidence = 0.0

    def __str__(self) -> str:
        return f"Report({self.id[:8]}, {self.ai_status.value}, {self.final_category or '-'})"
