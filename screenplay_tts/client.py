"""Async HTTP client for the ElevenLabs text-to-speech API."""

import base64
import logging
from dataclasses import dataclass

import httpx

from screenplay_tts.constants import (
    API_BASE_URL,
    API_KEY_HEADER,
    HTTP_TIMEOUT_SECONDS,
    OUTPUT_FORMAT_DETAILS,
    DEFAULT_OUTPUT_FORMAT,
    RATE_LIMIT_EPOCH_THRESHOLD,
)
from screenplay_tts.errors import ApiError, ScreenplayTTSError, TransientNetworkError, translate_api_error
from screenplay_tts.models import CharacterConfig, ProjectSettings, WordTimestamp

logger = logging.getLogger(__name__)

_REMAINING_HEADERS = ("ratelimit-remaining", "x-ratelimit-remaining", "x-rate-limit-remaining")
_RESET_HEADERS = ("ratelimit-reset", "x-ratelimit-reset", "x-rate-limit-reset")


def format_details(output_format: str) -> dict:
    """Extension and Accept header for an output format (mp3_44100_128 if unknown)."""
    return OUTPUT_FORMAT_DETAILS.get(output_format, OUTPUT_FORMAT_DETAILS[DEFAULT_OUTPUT_FORMAT])


@dataclass
class RateLimitInfo:
    remaining: int | None = None
    reset_at: float | None = None       # unix seconds
    reset_after: float | None = None    # seconds from when the response arrived

    def seconds_until_reset(self, now: float) -> float | None:
        if self.reset_at is not None:
            return self.reset_at - now
        return self.reset_after


@dataclass
class SynthesisResult:
    audio: bytes
    mime_type: str
    alignment: list[WordTimestamp] | None
    rate_limit: RateLimitInfo


@dataclass
class ApiKeyStatus:
    valid: bool
    status_code: int
    message: str = ""


def _first_header(headers: httpx.Headers, names) -> str | None:
    for name in names:
        value = headers.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def parse_rate_limit(headers: httpx.Headers) -> RateLimitInfo:
    """Read remaining-quota and reset headers. Unparseable values are ignored.

    A reset value above 1e9 is a unix timestamp (``reset_at``), anything
    smaller is a number of seconds from now (``reset_after``). The caller
    resolves either against its own clock.
    """
    info = RateLimitInfo()

    remaining = _first_header(headers, _REMAINING_HEADERS)
    if remaining is not None:
        try:
            info.remaining = int(float(remaining))
        except ValueError:
            pass

    reset = _first_header(headers, _RESET_HEADERS)
    if reset is not None:
        try:
            value = float(reset)
        except ValueError:
            value = None
        if value is not None:
            if value > RATE_LIMIT_EPOCH_THRESHOLD:
                info.reset_at = value
            else:
                info.reset_after = value

    return info


def _words_from_characters(chars, starts, ends) -> list[WordTimestamp]:
    words = []
    current, start_s, end_s = "", None, None
    for ch, s, e in zip(chars, starts, ends):
        if ch.isspace():
            if current:
                words.append(WordTimestamp(current, round(start_s * 1000), round(end_s * 1000)))
            current, start_s, end_s = "", None, None
            continue
        if not current:
            start_s = s
        current += ch
        end_s = e
    if current:
        words.append(WordTimestamp(current, round(start_s * 1000), round(end_s * 1000)))
    return words


def decode_alignment(payload: dict, text: str) -> list[WordTimestamp] | None:
    """Word timings (ms, relative to the clip) from a with-timestamps response.

    Understands word-level arrays (word_start_times_seconds) and the
    character-level arrays the API returns, grouping characters into words.
    """
    alignment = payload.get("normalized_alignment") or payload.get("alignment")
    if not isinstance(alignment, dict):
        return None

    if "word_start_times_seconds" in alignment:
        starts = alignment.get("word_start_times_seconds") or []
        ends = alignment.get("word_end_times_seconds") or []
        tokens = alignment.get("words") or text.split()
        words = [
            WordTimestamp(word.strip(), round(s * 1000), round(e * 1000))
            for word, s, e in zip(tokens, starts, ends)
        ]
    elif "characters" in alignment:
        words = _words_from_characters(
            alignment.get("characters") or [],
            alignment.get("character_start_times_seconds") or [],
            alignment.get("character_end_times_seconds") or [],
        )
    else:
        return None

    words = [w for w in words if w.word]
    return words or None


def _error_message(response: httpx.Response) -> str:
    """Best-effort message: JSON ``detail`` (string or {message}), else raw text."""
    try:
        data = response.json()
    except ValueError:
        return response.text
    detail = data.get("detail") if isinstance(data, dict) else None
    if isinstance(detail, str):
        return detail
    if isinstance(detail, dict):
        return detail.get("message") or detail.get("status") or response.text
    return response.text


class ElevenLabsClient:
    """Thin async wrapper around the endpoints the pipeline needs.

    Non-2xx responses raise ApiError; transport failures raise
    TransientNetworkError.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = API_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {API_KEY_HEADER: self.api_key, **kwargs.pop("headers", {})}
        try:
            return await self._http.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.RequestError as exc:
            raise TransientNetworkError(f"Network error contacting ElevenLabs: {exc}") from exc

    def _raise_for_status(self, response: httpx.Response):
        if response.is_success:
            return
        raw = _error_message(response)
        raise ApiError(response.status_code, translate_api_error(response.status_code, raw), body=raw)

    @staticmethod
    def _synthesis_body(text: str, config: CharacterConfig, settings: ProjectSettings) -> dict:
        vs = config.voice_settings
        body = {
            "text": text,
            "model_id": settings.model_id,
            "output_format": settings.output_format,
            "voice_settings": {
                "stability": vs.stability,
                "similarity_boost": vs.similarity_boost,
                "style": vs.style or 0,
                "speed": vs.speed if vs.speed is not None else 1,
                "use_speaker_boost": True,
            },
        }
        if settings.language_code:
            body["language_code"] = settings.language_code
        return body

    async def synthesize_with_timestamps(
        self,
        text: str,
        config: CharacterConfig,
        settings: ProjectSettings,
    ) -> SynthesisResult:
        """Synthesize one line and return decoded audio plus word alignment."""
        response = await self._request(
            "POST",
            f"/v1/text-to-speech/{config.voice_id}/with-timestamps",
            params={"output_format": settings.output_format},
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            json=self._synthesis_body(text, config, settings),
        )
        self._raise_for_status(response)

        try:
            payload = response.json()
            audio = base64.b64decode(payload["audio_base64"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ScreenplayTTSError(f"Malformed synthesis response: {exc}") from exc

        return SynthesisResult(
            audio=audio,
            mime_type=format_details(settings.output_format)["accept"],
            alignment=decode_alignment(payload, text),
            rate_limit=parse_rate_limit(response.headers),
        )

    async def synthesize(self, text: str, config: CharacterConfig, settings: ProjectSettings) -> bytes:
        """Preview variant: raw audio bytes, no alignment."""
        response = await self._request(
            "POST",
            f"/v1/text-to-speech/{config.voice_id}",
            params={"output_format": settings.output_format},
            headers={
                "Accept": format_details(settings.output_format)["accept"],
                "Content-Type": "application/json",
            },
            json=self._synthesis_body(text, config, settings),
        )
        self._raise_for_status(response)
        return response.content

    async def validate_api_key(self) -> ApiKeyStatus:
        """Check the key against the subscription endpoint. Never raises for HTTP errors."""
        response = await self._request("GET", "/v1/user/subscription")
        if response.is_success:
            return ApiKeyStatus(valid=True, status_code=response.status_code)
        message = _error_message(response)
        logger.debug("API key rejected: %s %s", response.status_code, message)
        return ApiKeyStatus(valid=False, status_code=response.status_code, message=message)

    async def list_voices(self) -> list[dict]:
        if not self.api_key:
            return []
        response = await self._request("GET", "/v1/voices")
        self._raise_for_status(response)
        return response.json().get("voices", [])

    async def list_models(self) -> list[dict]:
        if not self.api_key:
            return []
        response = await self._request("GET", "/v1/models")
        self._raise_for_status(response)
        data = response.json()
        # /v1/models returns a bare list
        return data if isinstance(data, list) else data.get("models", [])
