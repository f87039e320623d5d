"""Per-clip manifest (JSON / CSV) and the ZIP bundle of generated files."""

import csv
import io
import json
import zipfile
from dataclasses import asdict

from screenplay_tts.constants import WORDS_PER_MINUTE
from screenplay_tts.models import DialogueChunk, GeneratedBlob, ManifestEntry

CSV_HEADER = ["index", "character", "filename", "text", "estimatedDurationMs", "startTimeMs", "endTimeMs"]


def estimate_duration_ms(text: str) -> int:
    """Spoken duration at a fixed 150 words per minute."""
    words = len(text.split())
    return round(words / WORDS_PER_MINUTE * 60 * 1000)


def build_manifest_entries(chunks: list[DialogueChunk], blobs: list[GeneratedBlob]) -> list[ManifestEntry]:
    """One entry per chunk, in script order.

    Real timings from the clip win; otherwise the entry starts where the
    previous one ended and lasts its word-count estimate.
    """
    entries = []
    cursor = 0
    for index, chunk in enumerate(chunks):
        blob = blobs[index] if index < len(blobs) else None

        start = None
        if blob is not None and blob.start_time_ms is not None:
            start = blob.start_time_ms
        elif chunk.start_time_ms is not None:
            start = chunk.start_time_ms
        else:
            start = cursor

        if blob is not None and blob.end_time_ms is not None:
            duration = blob.end_time_ms - start
        else:
            duration = estimate_duration_ms(chunk.text)

        if blob is not None and blob.end_time_ms is not None:
            end = blob.end_time_ms
        elif chunk.end_time_ms is not None:
            end = chunk.end_time_ms
        else:
            end = start + duration
        cursor = end

        entries.append(ManifestEntry(
            index=index,
            character=chunk.character,
            filename=blob.filename if blob else "",
            text=chunk.text,
            estimated_duration_ms=duration,
            start_time_ms=start,
            end_time_ms=end,
            words=(blob.alignment if blob and blob.alignment else chunk.words),
        ))
    return entries


def manifest_to_json(entries: list[ManifestEntry]) -> str:
    return json.dumps([asdict(e) for e in entries], indent=2)


def manifest_to_csv(entries: list[ManifestEntry]) -> str:
    """CSV with a 1-based index column. Embedded quotes are doubled."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n", doublequote=True)
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow([
            entry.index + 1,
            entry.character,
            entry.filename,
            entry.text,
            entry.estimated_duration_ms,
            "" if entry.start_time_ms is None else entry.start_time_ms,
            "" if entry.end_time_ms is None else entry.end_time_ms,
        ])
    return buf.getvalue().rstrip("\n")


def build_zip_bundle(blobs: list[GeneratedBlob], entries: list[ManifestEntry]) -> bytes:
    """ZIP of every clip plus manifest.json and manifest.csv."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for i, blob in enumerate(blobs):
            zf.writestr(blob.filename or f"clip_{i:04d}.mp3", blob.data)
        if entries:
            zf.writestr("manifest.json", manifest_to_json(entries))
            zf.writestr("manifest.csv", manifest_to_csv(entries))
    return buf.getvalue()
