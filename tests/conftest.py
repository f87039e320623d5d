"""Shared fixtures for screenplay TTS tests."""

import base64
import json

import httpx
import pytest

from screenplay_tts.client import ElevenLabsClient
from screenplay_tts.models import CharacterConfig, DialogueChunk, ProjectSettings
from screenplay_tts.progress import BlobCache, ProgressStore, StatsStore
from screenplay_tts.storage import JsonFileStorage


SAMPLE_SCRIPT = """Title: The Long Night
Author: Test Writer

Characters:
- DETECTIVE SARAH MILLER (lead investigator)
- JOHN

INT. PRECINCT - NIGHT

SARAH (V.O.)
(quietly)
It was a night like any other.

JOHN
Coffee?

DETECTIVE MILLER: Black. [beat] Thanks.

CUT TO:

SARAH: We should go.
"""


def tts_response(audio: bytes = b"AUDIO", alignment=None, headers=None, status=200) -> httpx.Response:
    """A with-timestamps JSON response carrying base64 audio."""
    payload = {"audio_base64": base64.b64encode(audio).decode("ascii")}
    if alignment is not None:
        payload["alignment"] = alignment
    return httpx.Response(status, json=payload, headers=headers or {})


def error_response(status: int, detail="boom") -> httpx.Response:
    return httpx.Response(status, json={"detail": detail})


def make_client(handler, api_key="test-key") -> ElevenLabsClient:
    """ElevenLabsClient whose HTTP calls go to ``handler(request)``."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ElevenLabsClient(api_key, http_client=http)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sample_script():
    return SAMPLE_SCRIPT


@pytest.fixture
def john_jane_chunks():
    return [
        DialogueChunk(character="JOHN", text="Hello there.", original_text="Hello there."),
        DialogueChunk(character="JANE", text="Hi, John.", original_text="(warmly) Hi, John."),
    ]


@pytest.fixture
def character_configs():
    return {
        "JOHN": CharacterConfig(voice_id="voice-john"),
        "JANE": CharacterConfig(voice_id="voice-jane"),
    }


@pytest.fixture
def settings():
    return ProjectSettings(request_delay_ms=0)


@pytest.fixture
def storage(tmp_path):
    return JsonFileStorage(str(tmp_path / "store"))


@pytest.fixture
def stores(storage):
    """(ProgressStore, BlobCache, StatsStore) sharing one storage root."""
    return ProgressStore(storage), BlobCache(storage), StatsStore(storage)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def project_config_file(tmp_path):
    path = tmp_path / "project.json"
    path.write_text(json.dumps({
        "characterConfigs": {
            "JOHN": {"voiceId": "voice-john"},
            "jane": {"voiceId": "voice-jane", "voiceSettings": {"stability": 0.3}},
        },
        "projectSettings": {"model": "eleven_turbo_v2", "outputFormat": "mp3_44100_128", "requestDelayMs": 0},
    }))
    return str(path)
