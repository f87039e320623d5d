"""Tests for manifest building and bundling."""

import io
import json
import zipfile

from screenplay_tts.manifest import (
    build_manifest_entries,
    build_zip_bundle,
    estimate_duration_ms,
    manifest_to_csv,
    manifest_to_json,
)
from screenplay_tts.models import DialogueChunk, GeneratedBlob, WordTimestamp


def test_estimate_duration():
    """150 words per minute: 5 words take 2 seconds."""
    assert estimate_duration_ms("one two three four five") == 2000
    assert estimate_duration_ms("") == 0


def test_entries_use_blob_timings():
    """Real clip timings win over estimates."""
    chunks = [DialogueChunk("JOHN", "Hello there."), DialogueChunk("JANE", "Hi.")]
    blobs = [
        GeneratedBlob(b"a", "0000_JOHN.mp3", start_time_ms=0, end_time_ms=900,
                      alignment=[WordTimestamp("Hello", 0, 400), WordTimestamp("there.", 450, 900)]),
        GeneratedBlob(b"b", "0001_JANE.mp3", start_time_ms=900, end_time_ms=1300),
    ]
    entries = build_manifest_entries(chunks, blobs)
    assert [(e.index, e.filename, e.start_time_ms, e.end_time_ms) for e in entries] == [
        (0, "0000_JOHN.mp3", 0, 900),
        (1, "0001_JANE.mp3", 900, 1300),
    ]
    assert entries[0].estimated_duration_ms == 900
    assert entries[0].words[1].word == "there."


def test_entries_fall_back_to_estimates():
    """Without timings entries run back to back on word-count estimates."""
    chunks = [DialogueChunk("JOHN", "one two three four five"), DialogueChunk("JANE", "six seven")]
    entries = build_manifest_entries(chunks, [])
    assert (entries[0].start_time_ms, entries[0].end_time_ms) == (0, 2000)
    assert (entries[1].start_time_ms, entries[1].end_time_ms) == (2000, 2800)
    assert entries[1].filename == ""


def test_manifest_csv_escapes_quotes():
    """Header row, 1-based index, embedded quotes doubled."""
    chunks = [DialogueChunk("JOHN", 'He said "run", then left.')]
    blobs = [GeneratedBlob(b"a", "0000_JOHN.mp3", start_time_ms=0, end_time_ms=1000)]
    csv_text = manifest_to_csv(build_manifest_entries(chunks, blobs))
    lines = csv_text.split("\n")
    assert lines[0] == "index,character,filename,text,estimatedDurationMs,startTimeMs,endTimeMs"
    assert lines[1] == '1,JOHN,0000_JOHN.mp3,"He said ""run"", then left.",1000,0,1000'


def test_manifest_json():
    """JSON lists one object per entry."""
    entries = build_manifest_entries([DialogueChunk("JOHN", "Hi.")], [])
    data = json.loads(manifest_to_json(entries))
    assert data[0]["character"] == "JOHN"
    assert data[0]["index"] == 0


def test_zip_bundle_contents():
    """ZIP holds every clip plus both manifests."""
    chunks = [DialogueChunk("JOHN", "Hi."), DialogueChunk("JANE", "Hey.")]
    blobs = [GeneratedBlob(b"one", "0000_JOHN.mp3"), GeneratedBlob(b"two", "0001_JANE.mp3")]
    data = build_zip_bundle(blobs, build_manifest_entries(chunks, blobs))
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert sorted(zf.namelist()) == ["0000_JOHN.mp3", "0001_JANE.mp3", "manifest.csv", "manifest.json"]
        assert zf.read("0001_JANE.mp3") == b"two"
