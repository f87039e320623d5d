"""Resumable generation state, cached clips, and run statistics.

Everything is stored per user through a JsonFileStorage so a restarted
process can pick up where a failed run stopped. One active run per user is
assumed; concurrent runs for the same user id are not supported.
"""

import base64
import logging
import time

from screenplay_tts.constants import (
    GENERATED_BLOBS_KEY,
    GENERATION_STATS_KEY,
    PROGRESS_EXPIRY_MS,
    PROGRESS_KEY,
)
from screenplay_tts.models import (
    GeneratedBlob,
    GenerationProgressState,
    GenerationStats,
    WordTimestamp,
)
from screenplay_tts.storage import JsonFileStorage, user_key

logger = logging.getLogger(__name__)


def _now_ms(clock) -> int:
    return int(clock() * 1000)


class ProgressStore:
    """save / load / update / clear / has_resumable for ``<user>-generation-progress``."""

    def __init__(self, storage: JsonFileStorage, clock=time.time):
        self.storage = storage
        self.clock = clock

    def save(self, state: GenerationProgressState, user_id: str) -> None:
        self.storage.set(user_key(user_id, PROGRESS_KEY), state.to_dict())

    def load(self, user_id: str) -> GenerationProgressState | None:
        """Stored state, or None if absent. Records older than 24h are deleted."""
        data = self.storage.get(user_key(user_id, PROGRESS_KEY))
        if not data:
            return None
        try:
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")
            state = GenerationProgressState.from_dict(data)
            age_ms = _now_ms(self.clock) - state.timestamp
        except (TypeError, ValueError, AttributeError):
            logger.warning("Discarding unreadable progress record for %s", user_id)
            self.clear(user_id)
            return None

        if age_ms > PROGRESS_EXPIRY_MS:
            logger.info("Progress for %s expired, clearing", user_id)
            self.clear(user_id)
            return None
        return state

    def update(self, user_id: str, partial: dict) -> None:
        """Merge fields into the stored record and refresh its timestamp."""
        existing = self.load(user_id)
        if existing is None:
            logger.warning("No existing progress to update for %s", user_id)
            return
        merged = {**existing.to_dict(), **partial, "timestamp": _now_ms(self.clock)}
        self.save(GenerationProgressState.from_dict(merged), user_id)

    def clear(self, user_id: str) -> None:
        self.storage.remove(user_key(user_id, PROGRESS_KEY))

    def has_resumable(self, user_id: str) -> bool:
        state = self.load(user_id)
        return (
            state is not None
            and state.status == "in_progress"
            and state.current_index < state.total_chunks
        )


def get_progress_percentage(state: GenerationProgressState) -> int:
    if state.total_chunks == 0:
        return 0
    # halves round up: 50.5 → 51
    return int(state.current_index / state.total_chunks * 100 + 0.5)


def estimate_time_remaining(state: GenerationProgressState, now: float | None = None) -> str:
    """Human-readable ETA from the average time per completed chunk."""
    now_ms = int((time.time() if now is None else now) * 1000)
    remaining = state.total_chunks - state.current_index
    if state.current_index == 0 or remaining <= 0:
        return "Calculating..."

    elapsed = now_ms - state.timestamp
    estimated_ms = elapsed / state.current_index * remaining
    minutes = int(estimated_ms // 60000)
    seconds = int(estimated_ms % 60000 // 1000)
    if minutes > 0:
        return f"~{minutes}m {seconds}s remaining"
    return f"~{seconds}s remaining"


def serialize_blobs(blobs: list[GeneratedBlob]) -> list[dict]:
    return [
        {
            "filename": b.filename,
            "mime_type": b.mime_type,
            "base64": base64.b64encode(b.data).decode("ascii"),
            "start_time_ms": b.start_time_ms,
            "end_time_ms": b.end_time_ms,
            "alignment": [vars(w) for w in b.alignment] if b.alignment else None,
        }
        for b in blobs
    ]


def deserialize_blobs(items: list[dict]) -> list[GeneratedBlob]:
    return [
        GeneratedBlob(
            data=base64.b64decode(item["base64"]),
            filename=item["filename"],
            mime_type=item.get("mime_type") or "application/octet-stream",
            start_time_ms=item.get("start_time_ms"),
            end_time_ms=item.get("end_time_ms"),
            alignment=[WordTimestamp(**w) for w in item["alignment"]] if item.get("alignment") else None,
        )
        for item in items
    ]


class BlobCache:
    """Completed clips of an unfinished run, kept under ``<user>-generatedBlobs``."""

    def __init__(self, storage: JsonFileStorage):
        self.storage = storage

    def save(self, user_id: str, blobs: list[GeneratedBlob]) -> None:
        self.storage.set(user_key(user_id, GENERATED_BLOBS_KEY), serialize_blobs(blobs))

    def load(self, user_id: str) -> list[GeneratedBlob]:
        items = self.storage.get(user_key(user_id, GENERATED_BLOBS_KEY)) or []
        try:
            return deserialize_blobs(items)
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable clip cache for %s", user_id)
            return []

    def clear(self, user_id: str) -> None:
        self.storage.remove(user_key(user_id, GENERATED_BLOBS_KEY))


class StatsStore:
    """Run counters under ``<user>-generationStats``."""

    def __init__(self, storage: JsonFileStorage, clock=time.time):
        self.storage = storage
        self.clock = clock

    def load(self, user_id: str) -> GenerationStats:
        data = self.storage.get(user_key(user_id, GENERATION_STATS_KEY))
        if not isinstance(data, dict):
            if data:
                logger.warning("Ignoring unreadable generation stats for %s", user_id)
            return GenerationStats()
        return GenerationStats.from_dict(data)

    def record(self, user_id: str, status: str, chunks: int = 0, characters: int = 0) -> GenerationStats:
        """Count one finished run. status is completed, error or cancelled."""
        stats = self.load(user_id)
        setattr(stats, status, getattr(stats, status) + 1)
        stats.chunks_generated += chunks
        stats.characters_synthesized += characters
        stats.last_status = status
        stats.last_run_at = _now_ms(self.clock)
        self.storage.set(user_key(user_id, GENERATION_STATS_KEY), stats.to_dict())
        return stats
