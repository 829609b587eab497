"""Configuration management for the civic report classification worker.

This module provides centralized configuration for all worker components.
All settings are loaded from environment variables with sensible defaults.

Environment Variables:
    Remote Model:
        GEMINI_API_KEY: Google Gemini API key for the remote classifier
        USE_AI: Set to 'false' to run on the keyword classifier only
        AI_MODELS: Comma-separated model identifiers tried in order at startup
            (PydanticAI format - provider:model)
        AI_TIMEOUT_SECONDS: Timeout for every remote model call

    Image Preparation:
        AI_MAX_IMAGE_WIDTH: Longest edge in pixels before upload
        AI_JPEG_QUALITY: JPEG re-encode quality (1-95)

    Scoring:
        AI_IMAGE_WEIGHT, AI_TEXT_WEIGHT, AI_VOICE_WEIGHT: Per-modality multipliers
        AI_CONSENSUS_BOOST: Additive boost when two or more modalities agree
        AI_IMAGE_MIN_CONFIDENCE: Image confidence bar for trusting image evidence
        SAFETY_MIN_CONFIDENCE: Confidence bar for flagging inappropriate images

    Worker:
        DB_PATH: SQLite database file path
        WORKER_CONCURRENCY: Celery worker processes
        JOB_ATTEMPTS: Attempts per job before it is kept as failed
        JOB_BACKOFF_SECONDS: Base delay for exponential retry backoff
        JOB_MAX_BACKOFF_SECONDS: Upper bound for a single retry delay
        POLL_INTERVAL_SECONDS: Delay between scans for pending reports
        STALE_PROCESSING_SECONDS: Age after which a report stuck in
            processing (worker died mid-job) is queued again

    Job Queue:
        CELERY_BROKER_URL: Celery broker (Redis by default)
        CELERY_RESULT_BACKEND: Result backend for job state (default: broker)
        CELERY_ALWAYS_EAGER: Run jobs inline instead of through the broker

    Transcription:
        STT_LANGUAGE: Language hint for voice transcription
        TRANSCRIPTION_MODEL: OpenAI-compatible transcription model (empty = disabled)
        TRANSCRIPTION_BASE_URL: Optional base URL for the transcription server
        OPENAI_API_KEY: API key for the transcription server

    Notifications:
        NOTIFICATION_WEBHOOK_URL: HTTP endpoint for department alerts
        ALERTS_FILE: Path for JSONL alert file

    Optional Features:
        ENABLE_LOGFIRE: Enable Logfire/OpenTelemetry tracing

    Logging:
        LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_BACKUP_COUNT: Number of rotated log files to keep
        LOG_MAX_BYTES: Max log file size in bytes (0 = time-based rotation)
        LOG_FORMAT: Log format ('text' or 'json' for structured logging)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env(key: str, default: str = "") -> str:
    """Get string environment variable with optional default.

    Args:
        key: Environment variable name
        default: Value to return if not set

    Returns:
        Environment variable value or default
    """
    return os.environ.get(key, default)


def _env_int(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as integer
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer value for {key}: '{val}'")


def _env_float(key: str, default: float) -> float:
    """Get float environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as float
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Invalid float value for {key}: '{val}'")


def _env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable with default.

    Recognizes truthy values: '1', 'true', 'yes', 'on'
    Recognizes falsy values: '0', 'false', 'no', 'off'
    """
    val = os.environ.get(key, "").lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    return default


def _env_list(key: str, default: list[str]) -> list[str]:
    """Get comma-separated list environment variable with default."""
    val = os.environ.get(key)
    if not val:
        return list(default)
    return [item.strip() for item in val.split(",") if item.strip()]


# Tried in order at startup; the first model that initializes is used.
DEFAULT_AI_MODELS = [
    "google-gla:gemini-2.5-flash",
    "google-gla:gemini-2.0-flash",
    "google-gla:gemini-1.5-flash",
]


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    All settings can be overridden via environment variables. Use Config.load()
    to create an instance with values from the environment.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     print(f"Config error: {error}")
    """

    # === Remote Model ===
    gemini_api_key: str = ""  # GEMINI_API_KEY - Google AI API key
    use_ai: bool = True  # USE_AI - False forces the keyword classifier
    ai_models: list[str] = field(default_factory=lambda: DEFAULT_AI_MODELS.copy())
    ai_timeout_seconds: float = 120.0  # AI_TIMEOUT_SECONDS - Per remote call

    # === Image Preparation ===
    max_image_width: int = 1024  # AI_MAX_IMAGE_WIDTH
    jpeg_quality: int = 78  # AI_JPEG_QUALITY

    # === Scoring ===
    image_weight: float = 4.0  # AI_IMAGE_WEIGHT
    text_weight: float = 1.5  # AI_TEXT_WEIGHT
    voice_weight: float = 1.2  # AI_VOICE_WEIGHT
    consensus_boost: float = 0.15  # AI_CONSENSUS_BOOST
    image_min_confidence: float = 0.6  # AI_IMAGE_MIN_CONFIDENCE
    safety_min_confidence: float = 0.8  # SAFETY_MIN_CONFIDENCE

    # === Database ===
    db_path: Path = field(default_factory=lambda: Path("civic.db"))  # DB_PATH

    # === Worker Behavior ===
    worker_concurrency: int = 2  # WORKER_CONCURRENCY - Concurrent jobs
    job_attempts: int = 3  # JOB_ATTEMPTS - Attempts before a job stays failed
    job_backoff_seconds: float = 5.0  # JOB_BACKOFF_SECONDS - Base exponential delay
    job_max_backoff_seconds: int = 600  # JOB_MAX_BACKOFF_SECONDS - Retry delay cap
    poll_interval_seconds: int = 30  # POLL_INTERVAL_SECONDS - Pending report scan
    stale_processing_seconds: int = 900  # STALE_PROCESSING_SECONDS - Requeue stuck reports

    # === Job Queue (Celery) ===
    broker_url: str = "redis://localhost:6379/0"  # CELERY_BROKER_URL
    result_backend: str = ""  # CELERY_RESULT_BACKEND - Empty = same as broker
    jobs_eager: bool = False  # CELERY_ALWAYS_EAGER - Run jobs inline (no broker)

    # === Transcription ===
    stt_language: str = "en"  # STT_LANGUAGE
    transcription_model: str = ""  # TRANSCRIPTION_MODEL - Empty disables transcription
    transcription_base_url: str = ""  # TRANSCRIPTION_BASE_URL
    openai_api_key: str = ""  # OPENAI_API_KEY

    # === Notifications ===
    webhook_url: str = ""  # NOTIFICATION_WEBHOOK_URL - POST endpoint for alerts
    alerts_file: str = ""  # ALERTS_FILE - JSONL file path for alerts

    # === Output Directories ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR

    # === Logging Configuration ===
    log_level: str = "INFO"  # LOG_LEVEL - DEBUG, INFO, WARNING, ERROR
    log_backup_count: int = 30  # LOG_BACKUP_COUNT - Number of rotated logs to keep
    log_max_bytes: int = 0  # LOG_MAX_BYTES - Max file size (0 = time-based rotation)
    log_format: str = "text"  # LOG_FORMAT - 'text' or 'json' for structured logging

    # === Optional: Observability ===
    # Requires: pip install logfire
    enable_logfire: bool = False  # ENABLE_LOGFIRE - Enable distributed tracing
    logfire_token: str = ""  # LOGFIRE_TOKEN - Authentication token

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            gemini_api_key=_env("GEMINI_API_KEY"),
            use_ai=_env_bool("USE_AI", True),
            ai_models=_env_list("AI_MODELS", DEFAULT_AI_MODELS),
            ai_timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", 120.0),
            max_image_width=_env_int("AI_MAX_IMAGE_WIDTH", 1024),
            jpeg_quality=_env_int("AI_JPEG_QUALITY", 78),
            image_weight=_env_float("AI_IMAGE_WEIGHT", 4.0),
            text_weight=_env_float("AI_TEXT_WEIGHT", 1.5),
            voice_weight=_env_float("AI_VOICE_WEIGHT", 1.2),
            consensus_boost=_env_float("AI_CONSENSUS_BOOST", 0.15),
            image_min_confidence=_env_float("AI_IMAGE_MIN_CONFIDENCE", 0.6),
            safety_min_confidence=_env_float("SAFETY_MIN_CONFIDENCE", 0.8),
            db_path=Path(_env("DB_PATH", "civic.db")),
            worker_concurrency=_env_int("WORKER_CONCURRENCY", 2),
            job_attempts=_env_int("JOB_ATTEMPTS", 3),
            job_backoff_seconds=_env_float("JOB_BACKOFF_SECONDS", 5.0),
            job_max_backoff_seconds=_env_int("JOB_MAX_BACKOFF_SECONDS", 600),
            poll_interval_seconds=_env_int("POLL_INTERVAL_SECONDS", 30),
            stale_processing_seconds=_env_int("STALE_PROCESSING_SECONDS", 900),
            broker_url=_env("CELERY_BROKER_URL", "redis://localhost:6379/0"),
            result_backend=_env("CELERY_RESULT_BACKEND"),
            jobs_eager=_env_bool("CELERY_ALWAYS_EAGER", False),
            stt_language=_env("STT_LANGUAGE", "en"),
            transcription_model=_env("TRANSCRIPTION_MODEL"),
            transcription_base_url=_env("TRANSCRIPTION_BASE_URL"),
            openai_api_key=_env("OPENAI_API_KEY"),
            webhook_url=_env("NOTIFICATION_WEBHOOK_URL"),
            alerts_file=_env("ALERTS_FILE"),
            log_dir=Path(_env("LOG_DIR", "log")),
            enable_logfire=_env_bool("ENABLE_LOGFIRE", False),
            logfire_token=_env("LOGFIRE_TOKEN"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 30),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 0),
            log_format=_env("LOG_FORMAT", "text").lower(),
        )

    @property
    def ai_enabled(self) -> bool:
        """Whether remote classification should be attempted at all."""
        return self.use_ai and bool(self.ai_models)

    def validate(self) -> str | None:
        """Validate configuration for required fields and valid values.

        The API key is only required when every configured model is a
        Gemini model; local 'openai:<model>@<url>' models need none.

        Returns:
            Error message string if invalid, None if valid.
        """
        gemini_only = all(m.startswith("google") for m in self.ai_models)
        if self.ai_enabled and gemini_only and not self.gemini_api_key:
            return "GEMINI_API_KEY environment variable is required (or set USE_AI=false)"
        if self.ai_timeout_seconds <= 0:
            return "AI_TIMEOUT_SECONDS must be positive"
        if self.max_image_width <= 0:
            return "AI_MAX_IMAGE_WIDTH must be positive"
        if not 1 <= self.jpeg_quality <= 95:
            return "AI_JPEG_QUALITY must be between 1 and 95"
        if min(self.image_weight, self.text_weight, self.voice_weight) <= 0:
            return "Modality weights must be positive"
        if not 0 <= self.consensus_boost <= 1:
            return "AI_CONSENSUS_BOOST must be between 0 and 1"
        if not 0 <= self.image_min_confidence <= 1:
            return "AI_IMAGE_MIN_CONFIDENCE must be between 0 and 1"
        if not 0 <= self.safety_min_confidence <= 1:
            return "SAFETY_MIN_CONFIDENCE must be between 0 and 1"
        if self.worker_concurrency <= 0:
            return "WORKER_CONCURRENCY must be positive"
        if self.job_attempts <= 0:
            return "JOB_ATTEMPTS must be positive"
        if self.job_backoff_seconds < 0:
            return "JOB_BACKOFF_SECONDS must be non-negative"
        if self.job_max_backoff_seconds < 0:
            return "JOB_MAX_BACKOFF_SECONDS must be non-negative"
        if self.poll_interval_seconds <= 0:
            return "POLL_INTERVAL_SECONDS must be positive"
        if self.stale_processing_seconds <= 0:
            return "STALE_PROCESSING_SECONDS must be positive"
        if not self.broker_url:
            return "CELERY_BROKER_URL is required"
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be DEBUG, INFO, WARNING, ERROR, or CRITICAL"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0:
            return "LOG_BACKUP_COUNT must be non-negative"
        if self.log_max_bytes < 0:
            return "LOG_MAX_BYTES must be non-negative"
        return None
