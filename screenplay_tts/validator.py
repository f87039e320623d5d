"""Pre-flight checks before any audio is generated."""

from screenplay_tts.models import CharacterConfig, DialogueChunk, ValidationResult


def validate_configuration(
    chunks: list[DialogueChunk],
    character_configs: dict[str, CharacterConfig],
    api_key: str,
) -> ValidationResult:
    """Collect every configuration problem instead of stopping at the first."""
    errors = []

    if not api_key or not api_key.strip():
        errors.append("API key is required")

    if not chunks:
        errors.append("No dialogue chunks found in script")

    missing = []
    for chunk in chunks:
        if chunk.character in missing:
            continue
        config = character_configs.get(chunk.character)
        if config is None or not config.voice_id:
            missing.append(chunk.character)

    if missing:
        errors.append(f"Missing voice IDs for: {', '.join(missing)}")

    return ValidationResult(valid=not errors, errors=errors)
