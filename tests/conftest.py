"""Pytest configuration and shared fixtures."""

import io
import json
from pathlib import Path

import pytest
from PIL import Image

from agents.classifier import RemoteClassifier
from agents.safety import SAFETY_PROMPT, SafetyFilter
from analysis.consensus import ConsensusEngine
from config import Config
from database import Database


class FakeModelClient:
    """Stands in for ModelClient: routes each prompt to a scripted reply.

    ``image`` / ``text`` / ``safety`` are either a response string, an
    exception instance to raise, or None (safety only: appropriate).
    """

    name = "fake-model"

    def __init__(self, image=None, text=None, safety=None):
        self.replies = {"image": image, "text": text, "safety": safety}
        self.calls: list[tuple[str, bool]] = []

    @staticmethod
    def kind(prompt: str, image: bytes | None) -> str:
        if prompt == SAFETY_PROMPT:
            return "safety"
        return "image" if image is not None else "text"

    async def generate(self, prompt: str, image: bytes | None = None) -> str:
        kind = self.kind(prompt, image)
        self.calls.append((kind, image is not None))
        reply = self.replies[kind]
        if isinstance(reply, Exception):
            raise reply
        if reply is None:
            if kind == "safety":
                return json.dumps({"isAppropriate": True, "confidence": 0.95, "reason": ""})
            raise AssertionError(f"unexpected {kind} call")
        return reply

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.calls if k == kind)


def category_json(main: str, confidence: float, subcategory: str = "", is_photo: bool | None = None) -> str:
    """Model-style JSON reply for a category prompt."""
    data = {"subcategory": subcategory or main, "mainCategory": main, "confidence": confidence}
    if is_photo is not None:
        data["isPhoto"] = is_photo
    return json.dumps(data)


def safety_json(appropriate: bool, confidence: float, reason: str = "") -> str:
    return json.dumps({"isAppropriate": appropriate, "confidence": confidence, "reason": reason})


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Defaults with paths under tmp_path, fast retries and inline Celery jobs."""
    return Config(
        gemini_api_key="test-key",
        ai_models=["test:fake"],
        db_path=tmp_path / "civic.db",
        log_dir=tmp_path / "log",
        job_backoff_seconds=0.01,
        poll_interval_seconds=1,
        broker_url="memory://",
        result_backend="cache+memory://",
        jobs_eager=True,
    )


@pytest.fixture
def db(config: Config):
    database = Database(config.db_path)
    yield database
    database.close()


@pytest.fixture
def jpeg_bytes() -> bytes:
    img = Image.new("RGB", (64, 48), color=(120, 120, 120))
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def fetcher(jpeg_bytes: bytes):
    """Attachment fetcher that always returns a small JPEG."""

    async def fetch(reference: str, timeout: float = 30.0) -> bytes:
        return jpeg_bytes

    return fetch


@pytest.fixture
def make_engine(config: Config, fetcher):
    """Factory: ConsensusEngine over a FakeModelClient (or no model at all)."""

    def factory(client: FakeModelClient | None = None, fetch=None) -> ConsensusEngine:
        classifier = RemoteClassifier(client, config)
        safety = SafetyFilter(client, config)
        return ConsensusEngine(config, classifier, safety, fetcher=fetch or fetcher)

    return factory
