"""Tests for progress store, clip cache and statistics."""

import logging

from screenplay_tts.models import GeneratedBlob, GenerationProgressState, WordTimestamp
from screenplay_tts.progress import (
    BlobCache,
    ProgressStore,
    StatsStore,
    deserialize_blobs,
    estimate_time_remaining,
    get_progress_percentage,
    serialize_blobs,
)
from screenplay_tts.storage import JsonFileStorage, user_key

NOW = 1_700_000_000.0
HOUR_MS = 60 * 60 * 1000


def _state(current=1, total=3, timestamp_ms=None, status="in_progress"):
    return GenerationProgressState(
        timestamp=int(NOW * 1000) if timestamp_ms is None else timestamp_ms,
        dialogue_chunks=[{"character": "JOHN", "text": "Hi."}],
        character_configs={"JOHN": {"voice_id": "v"}},
        project_settings={},
        current_index=current,
        total_chunks=total,
        status=status,
    )


def test_storage_round_trip(storage):
    """set/get/remove by key, missing keys read as None."""
    storage.set("alice-thing", {"a": 1})
    assert storage.get("alice-thing") == {"a": 1}
    assert "alice-thing" in storage
    storage.remove("alice-thing")
    assert storage.get("alice-thing") is None
    storage.remove("alice-thing")


def test_storage_malformed_json(tmp_path, caplog):
    """Corrupt records are ignored with a warning."""
    root = tmp_path / "store"
    root.mkdir()
    (root / "bob-x.json").write_text("{not json")
    with caplog.at_level(logging.WARNING):
        assert JsonFileStorage(str(root)).get("bob-x") is None
    assert "Malformed" in caplog.text


def test_user_key():
    """Keys are prefixed by user id."""
    assert user_key("alice", "generation-progress") == "alice-generation-progress"


def test_save_and_load(storage):
    """Fresh record loads back unchanged."""
    store = ProgressStore(storage, clock=lambda: NOW)
    store.save(_state(), "alice")
    loaded = store.load("alice")
    assert loaded == _state()
    assert store.load("bob") is None


def test_expired_record_deleted(storage):
    """A record 25h old is discarded and removed."""
    store = ProgressStore(storage, clock=lambda: NOW)
    store.save(_state(timestamp_ms=int(NOW * 1000) - 25 * HOUR_MS), "alice")
    assert store.load("alice") is None
    assert user_key("alice", "generation-progress") not in storage


def test_non_object_record_discarded(storage, caplog):
    """A stored list or bare string reads as no progress and is removed."""
    store = ProgressStore(storage, clock=lambda: NOW)
    key = user_key("alice", "generation-progress")
    for junk in ([1, 2], "in_progress", {"timestamp": "yesterday"}):
        storage.set(key, junk)
        with caplog.at_level(logging.WARNING, logger="screenplay_tts.progress"):
            assert store.load("alice") is None
            assert not store.has_resumable("alice")
        assert key not in storage
    assert "unreadable progress record" in caplog.text

    storage.set(user_key("alice", "generationStats"), [1, 2])
    stats = StatsStore(storage, clock=lambda: NOW).record("alice", "completed")
    assert stats.completed == 1


def test_record_just_under_expiry_kept(storage):
    """23h old is still resumable."""
    store = ProgressStore(storage, clock=lambda: NOW)
    store.save(_state(timestamp_ms=int(NOW * 1000) - 23 * HOUR_MS), "alice")
    assert store.load("alice") is not None


def test_update_merges_and_refreshes_timestamp(storage):
    """Partial update keeps other fields and bumps timestamp."""
    clock = [NOW]
    store = ProgressStore(storage, clock=lambda: clock[0])
    store.save(_state(), "alice")
    clock[0] = NOW + 10
    store.update("alice", {"current_index": 2, "last_message": "halfway"})
    loaded = store.load("alice")
    assert loaded.current_index == 2
    assert loaded.last_message == "halfway"
    assert loaded.total_chunks == 3
    assert loaded.timestamp == int((NOW + 10) * 1000)


def test_update_without_record_is_noop(storage, caplog):
    """Updating a missing record only warns."""
    store = ProgressStore(storage, clock=lambda: NOW)
    with caplog.at_level(logging.WARNING):
        store.update("ghost", {"current_index": 1})
    assert store.load("ghost") is None
    assert "No existing progress" in caplog.text


def test_has_resumable(storage):
    """Only unfinished in_progress records are resumable."""
    store = ProgressStore(storage, clock=lambda: NOW)
    assert not store.has_resumable("alice")
    store.save(_state(current=1, total=3), "alice")
    assert store.has_resumable("alice")
    store.save(_state(current=3, total=3), "alice")
    assert not store.has_resumable("alice")
    store.save(_state(current=1, total=3, status="error"), "alice")
    assert not store.has_resumable("alice")


def test_clear(storage):
    """clear removes the record."""
    store = ProgressStore(storage, clock=lambda: NOW)
    store.save(_state(), "alice")
    store.clear("alice")
    assert store.load("alice") is None


def test_progress_percentage():
    """1/3 is 33%, empty runs are 0%, halves round up."""
    assert get_progress_percentage(_state(current=1, total=3)) == 33
    assert get_progress_percentage(_state(current=0, total=0)) == 0
    assert get_progress_percentage(_state(current=1, total=200)) == 1
    assert get_progress_percentage(_state(current=3, total=3)) == 100


def test_estimate_time_remaining():
    """Average time per chunk extrapolated to what is left."""
    start_ms = int(NOW * 1000)
    assert estimate_time_remaining(_state(current=0, timestamp_ms=start_ms), now=NOW + 5) == "Calculating..."
    # 2 chunks in 20s → 10s each, 2 left
    assert estimate_time_remaining(_state(current=2, total=4, timestamp_ms=start_ms), now=NOW + 20) == "~20s remaining"
    # 1 chunk in 45s, 3 left → 135s
    assert estimate_time_remaining(_state(current=1, total=4, timestamp_ms=start_ms), now=NOW + 45) == "~2m 15s remaining"
    assert estimate_time_remaining(_state(current=4, total=4, timestamp_ms=start_ms), now=NOW + 45) == "Calculating..."


def test_blob_serialization_round_trip():
    """Binary data and timings survive JSON-safe serialization."""
    blobs = [
        GeneratedBlob(b"\x00\xffAUDIO", "0000_JOHN.mp3", "audio/mpeg", 0, 500, [WordTimestamp("Hi", 0, 500)]),
        GeneratedBlob(b"more", "0001_JANE.mp3"),
    ]
    assert deserialize_blobs(serialize_blobs(blobs)) == blobs


def test_blob_cache(storage):
    """Cache saves, loads and clears per user."""
    cache = BlobCache(storage)
    assert cache.load("alice") == []
    cache.save("alice", [GeneratedBlob(b"x", "0000_A.mp3")])
    assert cache.load("alice")[0].data == b"x"
    cache.clear("alice")
    assert cache.load("alice") == []


def test_blob_cache_unreadable(storage, caplog):
    """Corrupt cache entries are dropped with a warning."""
    storage.set(user_key("alice", "generatedBlobs"), [{"filename": "x"}])
    with caplog.at_level(logging.WARNING):
        assert BlobCache(storage).load("alice") == []
    assert "unreadable" in caplog.text


def test_stats_record(storage):
    """Counters accumulate per outcome."""
    stats_store = StatsStore(storage, clock=lambda: NOW)
    stats_store.record("alice", "completed", chunks=3, characters=40)
    stats = stats_store.record("alice", "error", chunks=1, characters=10)
    assert stats.completed == 1
    assert stats.error == 1
    assert stats.chunks_generated == 4
    assert stats.characters_synthesized == 50
    assert stats.last_status == "error"
    assert stats.last_run_at == int(NOW * 1000)
    assert stats_store.load("alice") == stats
