"""Output directory management and project-file loading."""

import json
import os
import re

from screenplay_tts.constants import OUTPUT_DIR
from screenplay_tts.errors import ConfigurationError
from screenplay_tts.models import ProjectConfig


def slugify(value: str) -> str:
    """Lowercase, non-alphanumeric runs collapsed to underscores.

    "Take 2 (final)" → "take_2_final"
    """
    return re.sub(r"[^a-zA-Z0-9]+", "_", value).strip("_").lower()


def slug_from_path(script_path: str) -> str:
    """Convert script filename to an output slug.

    "/path/to/Pilot Episode.txt" → "pilot_episode"
    """
    basename = os.path.splitext(os.path.basename(script_path))[0]
    return slugify(basename)


def init_output_dir(script_path: str, output_base: str = OUTPUT_DIR) -> str:
    """Create output/<slug>/ and return its path. Existing files are kept."""
    project_dir = os.path.join(output_base, slug_from_path(script_path))
    os.makedirs(project_dir, exist_ok=True)
    return project_dir


def write_artifact(project_dir: str, filename: str, data) -> str:
    """Write JSON artifact to project_dir/filename.

    Returns path to the written file.
    """
    os.makedirs(project_dir, exist_ok=True)
    path = os.path.join(project_dir, filename)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    return path


def load_artifact(project_dir: str, filename: str):
    """Read JSON artifact. Returns None if file doesn't exist."""
    path = os.path.join(project_dir, filename)
    if not os.path.exists(path):
        return None
    with open(path) as f:
        return json.load(f)


def write_bytes(project_dir: str, filename: str, data: bytes) -> str:
    """Write a binary file (audio clip, archive) and return its path."""
    os.makedirs(project_dir, exist_ok=True)
    path = os.path.join(project_dir, filename)
    with open(path, "wb") as f:
        f.write(data)
    return path


def load_project_config(config_path: str) -> ProjectConfig:
    """Load character configs + project settings from a JSON project file.

    Raises ConfigurationError if the file is missing or not valid JSON.
    """
    if not os.path.exists(config_path):
        raise ConfigurationError(f"Project config not found: {config_path}")
    try:
        with open(config_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Malformed project config {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Project config must be a JSON object: {config_path}")
    return ProjectConfig.from_dict(data)
