"""All magic numbers and configuration constants."""

API_BASE_URL = "https://api.elevenlabs.io"
API_KEY_HEADER = "xi-api-key"
API_KEY_ENV = "ELEVENLABS_API_KEY"
CONCAT_URL_ENV = "SCREENPLAY_TTS_CONCAT_URL"
DEFAULT_CONCAT_URL = "http://localhost:3001/concatenate"

DEFAULT_MODEL_ID = "eleven_multilingual_v2"
DEFAULT_OUTPUT_FORMAT = "mp3_44100_128"
OUTPUT_FORMAT_DETAILS = {
    "mp3_44100_128": {"extension": "mp3", "accept": "audio/mpeg"},
    "mp3_44100_192": {"extension": "mp3", "accept": "audio/mpeg"},
    "pcm_24000": {"extension": "wav", "accept": "audio/wav"},
}

TTS_MAX_ATTEMPTS = 3                 # total attempts per chunk (first try + 2 retries)
TTS_RETRY_BASE_DELAY_MS = 1000       # base for exponential backoff
TTS_RETRY_JITTER_MS = 1000           # random 0..N ms added to each backoff
REQUEST_DELAY_MS = 500               # minimum pause between chunk requests
RATE_LIMIT_WARN_REMAINING = 10       # warn below this many remaining requests
RATE_LIMIT_WAIT_REMAINING = 5        # wait for reset below this many
RATE_LIMIT_EPOCH_THRESHOLD = 1e9     # reset header above this is a unix timestamp
HTTP_TIMEOUT_SECONDS = 120.0

WORDS_PER_MINUTE = 150               # duration estimate when no alignment is returned
SNIPPET_LENGTH = 80                  # chars of chunk text shown in progress events

PROGRESS_EXPIRY_MS = 24 * 60 * 60 * 1000
DEFAULT_USER_ID = "default"
SCRIPT_TEXT_KEY = "scriptText"
GENERATED_BLOBS_KEY = "generatedBlobs"
GENERATION_STATS_KEY = "generationStats"
PROGRESS_KEY = "generation-progress"

OUTPUT_DIR = "cli_output"
STORAGE_DIR = ".screenplay_tts"
CONCATENATED_BASENAME = "concatenated_audio"
VERSION = "0.1.0"
