"""Durable key-value storage: one JSON file per key under a root directory."""

import json
import logging
import os
import re

from screenplay_tts.artifacts import load_artifact, write_artifact

logger = logging.getLogger(__name__)


def user_key(user_id: str, suffix: str) -> str:
    """Per-user storage key, e.g. "alice-generation-progress"."""
    return f"{user_id}-{suffix}"


class JsonFileStorage:
    """Keys map to <root>/<key>.json. Missing or unreadable keys read as None."""

    def __init__(self, root: str):
        self.root = root

    def _filename(self, key: str) -> str:
        return re.sub(r"[^A-Za-z0-9_.-]+", "_", key) + ".json"

    def get(self, key: str):
        try:
            return load_artifact(self.root, self._filename(key))
        except json.JSONDecodeError:
            logger.warning("Malformed storage record %r, ignoring", key)
            return None

    def set(self, key: str, value) -> None:
        write_artifact(self.root, self._filename(key), value)

    def remove(self, key: str) -> None:
        path = os.path.join(self.root, self._filename(key))
        if os.path.exists(path):
            os.remove(path)

    def __contains__(self, key: str) -> bool:
        return os.path.exists(os.path.join(self.root, self._filename(key)))
