"""Tests for attachment fetching, image preparation and transcription."""

import io
from types import SimpleNamespace

import pytest
from PIL import Image

from config import Config
from tools.fetch import fetch_bytes, is_remote
from tools.images import prepare_image, prepare_image_sync
from tools.transcribe import Transcriber, TranscriptionError


def _png(size: tuple[int, int], mode: str = "RGBA") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size).save(buf, format="PNG")
    return buf.getvalue()


# === Images ===


def test_large_image_is_downscaled_to_jpeg():
    out = prepare_image_sync(_png((3000, 1500), "RGB"), max_dim=1024, quality=78)
    img = Image.open(io.BytesIO(out))
    assert img.format == "JPEG"
    assert img.size == (1024, 512)


def test_small_image_is_not_enlarged():
    out = prepare_image_sync(_png((200, 100)), max_dim=1024)
    img = Image.open(io.BytesIO(out))
    assert img.size == (200, 100)
    assert img.mode == "RGB"


def test_unreadable_image_passes_through():
    data = b"definitely not an image"
    assert prepare_image_sync(data) == data


@pytest.mark.asyncio
async def test_prepare_image_async():
    out = await prepare_image(_png((2048, 2048), "RGB"), max_dim=512)
    assert Image.open(io.BytesIO(out)).size == (512, 512)


# === Fetch ===


def test_is_remote():
    assert is_remote("https://cdn.example.com/a.jpg")
    assert is_remote("http://cdn.example.com/a.jpg")
    assert not is_remote("/tmp/a.jpg")
    assert not is_remote("file:///tmp/a.jpg")


@pytest.mark.asyncio
async def test_fetch_local_file(tmp_path):
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"abc")
    assert await fetch_bytes(str(path)) == b"abc"
    assert await fetch_bytes(path.as_uri()) == b"abc"


@pytest.mark.asyncio
async def test_fetch_missing_or_oversized(tmp_path):
    assert await fetch_bytes(str(tmp_path / "missing.jpg")) is None
    path = tmp_path / "big.bin"
    path.write_bytes(b"x" * 100)
    assert await fetch_bytes(str(path), max_bytes=10) is None


# === Transcription ===


def _fake_openai(text: str = "", error: Exception | None = None):
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        if error:
            raise error
        return SimpleNamespace(text=text)

    client = SimpleNamespace(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create)))
    return client, calls


@pytest.mark.asyncio
async def test_transcribe_local_audio(tmp_path):
    audio = tmp_path / "note.m4a"
    audio.write_bytes(b"fake-audio")
    client, calls = _fake_openai("  water leaking from the pipe  ")
    transcriber = Transcriber(Config(transcription_model="whisper-1"), client=client)

    text = await transcriber.transcribe_from_url(str(audio), language="en")

    assert text == "water leaking from the pipe"
    assert calls[0]["model"] == "whisper-1"
    assert calls[0]["file"] == ("note.m4a", b"fake-audio")
    assert calls[0]["language"] == "en"


@pytest.mark.asyncio
async def test_transcribe_disabled():
    transcriber = Transcriber(Config())
    assert transcriber.enabled is False
    assert await transcriber.transcribe_from_url("https://cdn.example.com/v.m4a") is None


@pytest.mark.asyncio
async def test_transcribe_endpoint_error(tmp_path):
    audio = tmp_path / "note.m4a"
    audio.write_bytes(b"fake-audio")
    client, _ = _fake_openai(error=RuntimeError("429"))
    transcriber = Transcriber(Config(transcription_model="whisper-1"), client=client)
    with pytest.raises(TranscriptionError, match="429"):
        await transcriber.transcribe_from_url(str(audio))
