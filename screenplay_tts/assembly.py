"""Join generated clip files locally when no concatenation service is available."""

import os

from pydub import AudioSegment


def _format_from_path(path: str) -> str:
    return os.path.splitext(path)[1].lstrip(".").lower() or "mp3"


def concatenate_clips(
    paths: list[str],
    output_path: str,
    pause_ms: int = 0,
    format: str | None = None,
) -> str:
    """Concatenate clips in order with optional silence between them.

    The output format defaults to the extension of output_path.
    Returns output_path.
    """
    if not paths:
        raise ValueError("No clips to concatenate")

    result = AudioSegment.from_file(paths[0], format=_format_from_path(paths[0]))
    for path in paths[1:]:
        if pause_ms > 0:
            result += AudioSegment.silent(duration=pause_ms)
        result += AudioSegment.from_file(path, format=_format_from_path(path))

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    result.export(output_path, format=format or _format_from_path(output_path))
    return output_path
