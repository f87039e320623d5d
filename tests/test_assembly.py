"""Tests for local clip assembly."""

import pytest
from pydub import AudioSegment

from screenplay_tts.assembly import concatenate_clips


def _wav(tmp_path, name, duration_ms):
    """Write a silent WAV clip (no ffmpeg needed)."""
    path = tmp_path / name
    AudioSegment.silent(duration=duration_ms).export(str(path), format="wav")
    return str(path)


def test_concatenate_in_order_with_pauses(tmp_path):
    """Durations add up, including the pauses between clips."""
    clips = [_wav(tmp_path, "0000_A.wav", 100), _wav(tmp_path, "0001_B.wav", 200)]
    output = str(tmp_path / "out" / "joined.wav")

    result = concatenate_clips(clips, output, pause_ms=50)

    assert result == output
    joined = AudioSegment.from_file(output, format="wav")
    assert abs(len(joined) - 350) <= 1


def test_concatenate_without_pause(tmp_path):
    """Default is back-to-back."""
    clips = [_wav(tmp_path, "a.wav", 100), _wav(tmp_path, "b.wav", 100), _wav(tmp_path, "c.wav", 100)]
    output = str(tmp_path / "joined.wav")
    concatenate_clips(clips, output)
    assert abs(len(AudioSegment.from_file(output, format="wav")) - 300) <= 1


def test_concatenate_nothing_raises(tmp_path):
    """Empty clip list is an error."""
    with pytest.raises(ValueError):
        concatenate_clips([], str(tmp_path / "x.wav"))
