"""Client for the external concatenation/mixing service."""

import json
import logging
import os

import httpx

from screenplay_tts.constants import DEFAULT_CONCAT_URL, HTTP_TIMEOUT_SECONDS
from screenplay_tts.errors import ConcatenationError
from screenplay_tts.models import AudioProductionSettings, GeneratedBlob

logger = logging.getLogger(__name__)


def health_url(concat_url: str) -> str:
    """http://host:3001/concatenate → http://host:3001/health"""
    return str(httpx.URL(concat_url).copy_with(path="/health", query=None))


def build_mix_config(production: AudioProductionSettings | None) -> tuple[dict | None, list]:
    """Mix configuration plus the extra multipart files it references by field name."""
    if production is None:
        return None, []

    files = []
    mix = {"soundEffects": []}

    bg = production.background_track
    if bg is not None:
        field_name = "backgroundTrack"
        files.append((field_name, bg.path))
        mix["background"] = {"ref": field_name, "volume": bg.volume}

    for effect in production.sound_effects:
        field_name = f"soundEffect_{effect.id}"
        files.append((field_name, effect.path))
        mix["soundEffects"].append({
            "ref": field_name,
            "startTimeMs": effect.start_time_ms,
            "volume": effect.volume,
            "label": effect.label,
        })

    if "background" not in mix and not mix["soundEffects"]:
        return None, []
    return mix, files


class ConcatenationClient:
    def __init__(
        self,
        url: str = DEFAULT_CONCAT_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.url = url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self):
        if self._owns_client:
            await self._http.aclose()

    async def health(self) -> bool:
        """True when GET /health answers {"status": "ok"}."""
        try:
            response = await self._http.get(health_url(self.url))
        except httpx.RequestError as exc:
            logger.debug("Concatenation health check failed: %s", exc)
            return False
        if not response.is_success:
            return False
        try:
            return response.json().get("status") == "ok"
        except ValueError:
            return False

    async def concatenate(
        self,
        blobs: list[GeneratedBlob],
        production: AudioProductionSettings | None = None,
        output_format: str | None = None,
    ) -> bytes:
        """Upload clips in order and return the joined (and mixed) audio."""
        mix, extra_files = build_mix_config(production)

        files = [("audioFiles", (b.filename, b.data, b.mime_type)) for b in blobs]
        handles = []
        try:
            for field_name, path in extra_files:
                handle = open(path, "rb")
                handles.append(handle)
                files.append((field_name, (os.path.basename(path), handle)))

            data = {}
            if mix is not None:
                data["mixConfig"] = json.dumps(mix)
            if output_format:
                data["outputFormat"] = output_format

            response = await self._http.post(self.url, files=files, data=data)
        except (httpx.RequestError, OSError) as exc:
            raise ConcatenationError(f"Concatenation service unreachable: {exc}") from exc
        finally:
            for handle in handles:
                handle.close()

        if not response.is_success:
            raise ConcatenationError(
                f"Concatenation service error: {response.status_code} - {response.text}"
            )
        return response.content
