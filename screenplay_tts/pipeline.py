"""Sequential, resumable audio generation for a list of dialogue chunks.

Chunks are synthesized strictly one at a time, in script order. Transient
failures (network errors, 5xx, 429) are retried with exponential backoff;
permanent client errors stop the run immediately. Every run ends in one of
four outcomes instead of raising:

    Completed     all chunks synthesized (and optionally concatenated)
    NeedsResume   stopped at ``index``; resume there with ``completed_blobs``
    Failed        pre-flight validation failed, nothing was generated
    Cancelled     the cancellation token fired
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field

from screenplay_tts.artifacts import slugify
from screenplay_tts.cancellation import CancellationToken
from screenplay_tts.client import ElevenLabsClient, RateLimitInfo, SynthesisResult, format_details
from screenplay_tts.concatenation import ConcatenationClient
from screenplay_tts.constants import (
    DEFAULT_USER_ID,
    RATE_LIMIT_WAIT_REMAINING,
    RATE_LIMIT_WARN_REMAINING,
    SNIPPET_LENGTH,
    TTS_MAX_ATTEMPTS,
    TTS_RETRY_BASE_DELAY_MS,
    TTS_RETRY_JITTER_MS,
)
from screenplay_tts.errors import (
    ApiError,
    ConcatenationError,
    ConfigurationError,
    GenerationCancelled,
    ScreenplayTTSError,
    TransientNetworkError,
)
from screenplay_tts.manifest import build_manifest_entries, build_zip_bundle, estimate_duration_ms
from screenplay_tts.models import (
    AudioProductionSettings,
    CharacterConfig,
    DialogueChunk,
    GeneratedBlob,
    GenerationProgressState,
    ManifestEntry,
    ProjectSettings,
    WordTimestamp,
)
from screenplay_tts.progress import BlobCache, ProgressStore, StatsStore
from screenplay_tts.validator import validate_configuration

logger = logging.getLogger(__name__)


@dataclass
class GenerationProgress:
    current: int
    total: int
    character: str
    status: str        # generating | complete | error | cancelled | concatenating
    message: str
    snippet: str = ""


@dataclass
class Completed:
    blobs: list[GeneratedBlob]
    manifest: list[ManifestEntry]
    concatenated: bytes | None = None
    concatenation_failed: bool = False
    bundle: bytes | None = None        # ZIP, when clips are delivered individually
    warning: str = ""


@dataclass
class NeedsResume:
    index: int
    character: str
    completed_blobs: list[GeneratedBlob]
    reason: str
    error: Exception | None = None


@dataclass
class Failed:
    reason: str
    errors: list[str] = field(default_factory=list)


@dataclass
class Cancelled:
    index: int
    completed_blobs: list[GeneratedBlob]
    reason: str = ""


def backoff_delay_ms(attempt: int, rng=random.random) -> float:
    """1000ms * 2^attempt plus up to 1000ms of jitter."""
    return TTS_RETRY_BASE_DELAY_MS * (2 ** attempt) + rng() * TTS_RETRY_JITTER_MS


def chunk_filename(index: int, character: str, output_format: str, version_label: str | None = None) -> str:
    """0003_DETECTIVE_SARAH_MILLER.mp3, prefixed with the version slug if any."""
    extension = format_details(output_format)["extension"]
    name = f"{index:04d}_{'_'.join(character.split())}.{extension}"
    if version_label:
        name = f"{slugify(version_label)}_{name}"
    return name


class GenerationPipeline:
    def __init__(
        self,
        client: ElevenLabsClient,
        settings: ProjectSettings,
        *,
        user_id: str = DEFAULT_USER_ID,
        progress: ProgressStore | None = None,
        blob_cache: BlobCache | None = None,
        stats: StatsStore | None = None,
        concatenator: ConcatenationClient | None = None,
        audio_production: AudioProductionSettings | None = None,
        on_progress=None,
        deliver=None,
        sleep=asyncio.sleep,
        clock=time.time,
        rng=random.random,
    ):
        self.client = client
        self.settings = settings
        self.user_id = user_id
        self.progress = progress
        self.blob_cache = blob_cache
        self.stats = stats
        self.concatenator = concatenator
        self.audio_production = audio_production
        self.on_progress = on_progress
        self.deliver = deliver
        self.sleep = sleep
        self.clock = clock
        self.rng = rng

    # --- progress reporting ---

    def _emit(self, current, total, character, status, message, text=""):
        if self.on_progress is None:
            return
        self.on_progress(GenerationProgress(
            current=current,
            total=total,
            character=character,
            status=status,
            message=message,
            snippet=text[:SNIPPET_LENGTH].strip(),
        ))

    def _persist(self, chunks, configs, index, status, blobs, message):
        if self.progress is not None:
            self.progress.save(GenerationProgressState(
                timestamp=int(self.clock() * 1000),
                dialogue_chunks=[c.to_dict() for c in chunks],
                character_configs={name: cfg.to_dict() for name, cfg in configs.items()},
                project_settings=self.settings.to_dict(),
                current_index=index,
                total_chunks=len(chunks),
                status=status,
                generated_files=[b.filename for b in blobs],
                last_message=message,
            ), self.user_id)
        if self.blob_cache is not None:
            self.blob_cache.save(self.user_id, blobs)

    def _clear_persisted(self):
        if self.progress is not None:
            self.progress.clear(self.user_id)
        if self.blob_cache is not None:
            self.blob_cache.clear(self.user_id)

    def _record(self, status, chunks_done=0, characters=0):
        if self.stats is not None:
            self.stats.record(self.user_id, status, chunks=chunks_done, characters=characters)

    # --- per-chunk work ---

    async def _synthesize_with_retry(self, text, config, token) -> SynthesisResult:
        last_error = None
        for attempt in range(TTS_MAX_ATTEMPTS):
            try:
                return await token.guard(self.client.synthesize_with_timestamps(text, config, self.settings))
            except ApiError as e:
                if not e.retryable:
                    raise
                last_error = e
            except TransientNetworkError as e:
                last_error = e

            if attempt < TTS_MAX_ATTEMPTS - 1:
                delay_ms = backoff_delay_ms(attempt, self.rng)
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.0fms",
                    attempt + 1, TTS_MAX_ATTEMPTS, last_error, delay_ms,
                )
                await token.guard(self.sleep(delay_ms / 1000))

        raise last_error

    async def _pace(self, rate_limit: RateLimitInfo, token):
        """Back off when quota runs low, then apply the fixed inter-request delay."""
        remaining = rate_limit.remaining
        if remaining is not None and remaining < RATE_LIMIT_WARN_REMAINING:
            logger.warning("Rate limit low: %d requests remaining", remaining)

        if remaining is not None and remaining < RATE_LIMIT_WAIT_REMAINING:
            wait_s = rate_limit.seconds_until_reset(self.clock())
            if wait_s is not None and wait_s > 0:
                logger.warning("Rate limit nearly exhausted, waiting %.1fs for reset", wait_s)
                await token.guard(self.sleep(wait_s))

        delay_ms = self.settings.request_delay_ms
        if delay_ms and delay_ms > 0:
            await token.guard(self.sleep(delay_ms / 1000))

    def _make_blob(self, index, chunk, result: SynthesisResult, cursor) -> GeneratedBlob:
        alignment = None
        if result.alignment:
            alignment = [
                WordTimestamp(w.word, w.start_ms + cursor, w.end_ms + cursor)
                for w in result.alignment
            ]
        start = alignment[0].start_ms if alignment else cursor
        end = alignment[-1].end_ms if alignment else start + estimate_duration_ms(chunk.text)
        return GeneratedBlob(
            data=result.audio,
            filename=chunk_filename(index, chunk.character, self.settings.output_format, self.settings.version_label),
            mime_type=result.mime_type,
            start_time_ms=start,
            end_time_ms=end,
            alignment=alignment,
        )

    @staticmethod
    def _initial_cursor(chunks, blobs) -> int:
        """Timeline position after the clips already generated."""
        for blob in reversed(blobs):
            if blob.end_time_ms is not None:
                return blob.end_time_ms
        cursor = 0
        for chunk in chunks[:len(blobs)]:
            if chunk.end_time_ms is not None:
                cursor = chunk.end_time_ms
            else:
                cursor += estimate_duration_ms(chunk.text)
        return cursor

    def _spoken_text(self, chunk: DialogueChunk) -> str:
        if self.settings.speak_parentheticals and chunk.original_text:
            return chunk.original_text
        return chunk.text

    # --- runs ---

    async def run(
        self,
        chunks: list[DialogueChunk],
        character_configs: dict[str, CharacterConfig],
        *,
        start_index: int = 0,
        existing_blobs: list[GeneratedBlob] | None = None,
        token: CancellationToken | None = None,
        preflight: bool = True,
    ):
        """Generate audio for ``chunks[start_index:]``.

        ``existing_blobs`` are the clips completed by an earlier run and are
        reused as-is. Set ``preflight=False`` when the caller already ran
        validate_configuration.
        """
        token = token or CancellationToken()
        total = len(chunks)

        if preflight:
            validation = validate_configuration(chunks, character_configs, self.client.api_key)
            if not validation.valid:
                if self.progress is not None and self.progress.load(self.user_id) is not None:
                    self.progress.update(self.user_id, {"status": "error", "last_message": "; ".join(validation.errors)})
                return Failed(reason="Configuration errors", errors=validation.errors)

        blobs = list(existing_blobs or [])
        reused = len(blobs)
        cursor = self._initial_cursor(chunks, blobs)
        characters_sent = 0
        index = start_index
        self._persist(chunks, character_configs, start_index, "in_progress", blobs,
                      f"Starting at chunk {start_index + 1} of {total}")

        try:
            for index in range(start_index, total):
                token.raise_if_cancelled()
                chunk = chunks[index]
                text = self._spoken_text(chunk)

                config = character_configs.get(chunk.character)
                if config is None or not config.voice_id:
                    error = ConfigurationError(f"No voice configuration found for character: {chunk.character}")
                    return self._needs_resume(chunks, character_configs, index, blobs, error, reused, characters_sent)

                self._emit(index + 1, total, chunk.character, "generating",
                           f"Generating audio for {chunk.character}...", text)
                try:
                    result = await self._synthesize_with_retry(text, config, token)
                except GenerationCancelled:
                    raise
                except ScreenplayTTSError as e:
                    return self._needs_resume(chunks, character_configs, index, blobs, e, reused, characters_sent)

                blob = self._make_blob(index, chunk, result, cursor)
                cursor = blob.end_time_ms
                blobs.append(blob)
                characters_sent += len(text)

                if not self.settings.concatenate and self.deliver is not None:
                    self.deliver(blob)

                self._persist(chunks, character_configs, index + 1, "in_progress", blobs,
                              f"Completed {chunk.character}")
                self._emit(index + 1, total, chunk.character, "complete",
                           f"Completed {chunk.character}", text)

                if index < total - 1:
                    await self._pace(result.rate_limit, token)

            return await self._finish(chunks, blobs, token, reused, characters_sent)
        except GenerationCancelled as e:
            logger.info("Generation cancelled at chunk %d", index + 1)
            self._clear_persisted()
            self._record("cancelled", len(blobs) - reused, characters_sent)
            self._emit(index + 1, total, "", "cancelled", "Generation cancelled")
            return Cancelled(index=index, completed_blobs=blobs, reason=str(e))

    def _needs_resume(self, chunks, configs, index, blobs, error, reused, characters_sent) -> NeedsResume:
        chunk = chunks[index]
        message = f"Error on chunk {index + 1} ({chunk.character}): {error}"
        logger.error(message)
        # stays in_progress so has_resumable() offers this index
        self._persist(chunks, configs, index, "in_progress", blobs, message)
        self._record("error", len(blobs) - reused, characters_sent)
        self._emit(index + 1, len(chunks), chunk.character, "error", f"Failed: {error}", chunk.text)
        return NeedsResume(
            index=index,
            character=chunk.character,
            completed_blobs=blobs,
            reason=str(error),
            error=error,
        )

    async def _finish(self, chunks, blobs, token, reused, characters_sent) -> Completed:
        manifest = build_manifest_entries(chunks, blobs)
        outcome = Completed(blobs=blobs, manifest=manifest)

        if self.settings.concatenate and blobs:
            self._emit(len(chunks), len(chunks), "All", "concatenating", "Concatenating audio files...")
            if self.concatenator is None:
                outcome.concatenation_failed = True
                outcome.warning = "Concatenation requested but no concatenation service is configured."
            else:
                try:
                    outcome.concatenated = await token.guard(self.concatenator.concatenate(
                        blobs, self.audio_production, self.settings.output_format,
                    ))
                except ConcatenationError as e:
                    outcome.concatenation_failed = True
                    outcome.warning = f"Concatenation failed, delivering individual files instead: {e}"
            if outcome.warning:
                logger.warning(outcome.warning)

        if not self.settings.concatenate or outcome.concatenation_failed:
            outcome.bundle = build_zip_bundle(blobs, manifest)

        self._clear_persisted()
        self._record("completed", len(blobs) - reused, characters_sent)
        self._emit(len(chunks), len(chunks), "All", "complete", f"Generated {len(blobs)} audio files")
        return outcome

    async def resume(
        self,
        character_configs: dict[str, CharacterConfig] | None = None,
        token: CancellationToken | None = None,
    ):
        """Continue the persisted run for this user from its saved index.

        Character configs default to the ones stored with the run.
        """
        state = self.progress.load(self.user_id) if self.progress is not None else None
        if state is None or state.status != "in_progress" or state.current_index >= state.total_chunks:
            return Failed(reason="No resumable progress found")

        chunks = [DialogueChunk.from_dict(c) for c in state.dialogue_chunks]
        if character_configs is None:
            character_configs = {
                name: CharacterConfig.from_dict(cfg) for name, cfg in state.character_configs.items()
            }
        blobs = self.blob_cache.load(self.user_id) if self.blob_cache is not None else []
        start = min(state.current_index, len(blobs))
        logger.info("Resuming generation for %s at chunk %d/%d", self.user_id, start + 1, len(chunks))
        return await self.run(
            chunks,
            character_configs,
            start_index=start,
            existing_blobs=blobs[:start],
            token=token,
        )
