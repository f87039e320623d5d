"""Tests for validator module."""

from screenplay_tts.models import CharacterConfig, DialogueChunk
from screenplay_tts.validator import validate_configuration


def test_valid_configuration(john_jane_chunks, character_configs):
    """Key, chunks and every voice present."""
    result = validate_configuration(john_jane_chunks, character_configs, "key")
    assert result.valid
    assert result.errors == []


def test_missing_voice_mentions_character(john_jane_chunks):
    """JANE without a voiceId is reported by name."""
    configs = {"JOHN": CharacterConfig(voice_id="voice-john"), "JANE": CharacterConfig(voice_id="")}
    result = validate_configuration(john_jane_chunks, configs, "key")
    assert not result.valid
    assert result.errors == ["Missing voice IDs for: JANE"]


def test_missing_config_listed_once():
    """A character with several lines appears once in the error."""
    chunks = [DialogueChunk("BOB", "One."), DialogueChunk("AL", "Two."), DialogueChunk("BOB", "Three.")]
    result = validate_configuration(chunks, {}, "key")
    assert result.errors == ["Missing voice IDs for: BOB, AL"]


def test_all_errors_collected():
    """Blank key and empty script are both reported."""
    result = validate_configuration([], {}, "   ")
    assert not result.valid
    assert result.errors == ["API key is required", "No dialogue chunks found in script"]
