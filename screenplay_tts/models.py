"""Data models for screenplay parsing and audio generation."""

from dataclasses import dataclass, field, asdict

from screenplay_tts.constants import (
    DEFAULT_MODEL_ID,
    DEFAULT_OUTPUT_FORMAT,
    REQUEST_DELAY_MS,
)


@dataclass
class WordTimestamp:
    word: str
    start_ms: int
    end_ms: int


@dataclass
class DialogueChunk:
    character: str              # canonical full name
    text: str                   # cleaned text sent to TTS
    original_text: str = ""     # raw block, parentheticals intact
    start_time_ms: int | None = None
    end_time_ms: int | None = None
    words: list[WordTimestamp] | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DialogueChunk":
        words = data.get("words")
        return cls(
            character=data["character"],
            text=data["text"],
            original_text=data.get("original_text", data.get("originalText", "")),
            start_time_ms=data.get("start_time_ms"),
            end_time_ms=data.get("end_time_ms"),
            words=[WordTimestamp(**w) for w in words] if words else None,
        )


@dataclass
class UnmatchedLine:
    line_number: int
    content: str


@dataclass
class ParserDiagnostics:
    unmatched_lines: list[UnmatchedLine] = field(default_factory=list)


@dataclass
class ParsedScript:
    characters: list[str]
    dialogue_chunks: list[DialogueChunk]
    diagnostics: ParserDiagnostics


@dataclass
class VoiceSettings:
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    speed: float = 1.0


@dataclass
class CharacterConfig:
    voice_id: str
    voice_settings: VoiceSettings = field(default_factory=VoiceSettings)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CharacterConfig":
        settings = data.get("voice_settings", data.get("voiceSettings")) or {}
        return cls(
            voice_id=data.get("voice_id", data.get("voiceId", "")),
            voice_settings=VoiceSettings(
                stability=settings.get("stability", 0.5),
                similarity_boost=settings.get("similarity_boost", 0.75),
                style=settings.get("style") or 0.0,
                speed=settings.get("speed") if settings.get("speed") is not None else 1.0,
            ),
        )


# camelCase keys found in exported project files → field names
_SETTINGS_ALIASES = {
    "model": "model_id",
    "modelId": "model_id",
    "outputFormat": "output_format",
    "speakParentheticals": "speak_parentheticals",
    "languageCode": "language_code",
    "requestDelayMs": "request_delay_ms",
    "versionLabel": "version_label",
}


@dataclass
class ProjectSettings:
    model_id: str = DEFAULT_MODEL_ID
    output_format: str = DEFAULT_OUTPUT_FORMAT
    concatenate: bool = False
    speak_parentheticals: bool = False
    language_code: str | None = None
    request_delay_ms: int = REQUEST_DELAY_MS
    version_label: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectSettings":
        known = set(cls.__dataclass_fields__)
        kwargs = {}
        for key, value in data.items():
            name = _SETTINGS_ALIASES.get(key, key)
            if name in known and value is not None:
                kwargs[name] = value
        return cls(**kwargs)


@dataclass
class BackgroundTrack:
    path: str
    volume: float = 0.35


@dataclass
class SoundEffect:
    id: str
    path: str
    start_time_ms: int
    volume: float = 1.0
    label: str = ""


@dataclass
class AudioProductionSettings:
    background_track: BackgroundTrack | None = None
    sound_effects: list[SoundEffect] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> "AudioProductionSettings":
        if not data:
            return cls()
        bg = data.get("background_track", data.get("backgroundTrack"))
        effects = data.get("sound_effects", data.get("soundEffects")) or []
        return cls(
            background_track=BackgroundTrack(bg["path"], bg.get("volume", 0.35)) if bg else None,
            sound_effects=[
                SoundEffect(
                    id=str(e["id"]),
                    path=e["path"],
                    start_time_ms=e.get("start_time_ms", e.get("startTimeMs", 0)),
                    volume=e.get("volume", 1.0),
                    label=e.get("label", ""),
                )
                for e in effects
            ],
        )


@dataclass
class GeneratedBlob:
    data: bytes
    filename: str
    mime_type: str = "audio/mpeg"
    start_time_ms: int | None = None
    end_time_ms: int | None = None
    alignment: list[WordTimestamp] | None = None


@dataclass
class ManifestEntry:
    index: int
    character: str
    filename: str
    text: str
    estimated_duration_ms: int
    start_time_ms: int | None = None
    end_time_ms: int | None = None
    words: list[WordTimestamp] | None = None


@dataclass
class GenerationProgressState:
    timestamp: int                       # ms since epoch, refreshed on update
    dialogue_chunks: list[dict]
    character_configs: dict
    project_settings: dict
    current_index: int
    total_chunks: int
    status: str                          # in_progress | paused | completed | error
    generated_files: list[str] = field(default_factory=list)
    last_message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "GenerationProgressState":
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str]


@dataclass
class GenerationStats:
    completed: int = 0
    error: int = 0
    cancelled: int = 0
    chunks_generated: int = 0
    characters_synthesized: int = 0
    last_status: str = ""
    last_run_at: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "GenerationStats":
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ProjectConfig:
    character_configs: dict[str, CharacterConfig]
    project_settings: ProjectSettings
    audio_production: AudioProductionSettings | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectConfig":
        from screenplay_tts.parser import normalize_character_name

        configs = data.get("character_configs", data.get("characterConfigs")) or {}
        settings = data.get("project_settings", data.get("projectSettings")) or {}
        production = data.get("audio_production", data.get("audioProduction"))
        return cls(
            # names are keyed the way the parser emits them
            character_configs={
                normalize_character_name(name): CharacterConfig.from_dict(cfg) for name, cfg in configs.items()
            },
            project_settings=ProjectSettings.from_dict(settings),
            audio_production=AudioProductionSettings.from_dict(production) if production else None,
        )
