"""Exception types and translation of failures into user-facing guidance."""

from dataclasses import dataclass, field


class ScreenplayTTSError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ScreenplayTTSError):
    """Missing or unusable configuration. Never retried."""


class ApiError(ScreenplayTTSError):
    """Non-2xx response from the TTS API."""

    def __init__(self, status: int, message: str, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        # 4xx is permanent except 429
        return self.status >= 500 or self.status == 429


class TransientNetworkError(ScreenplayTTSError):
    """Connection failure, timeout or other transport problem. Retried."""


class ConcatenationError(ScreenplayTTSError):
    """The concatenation service was unreachable or returned an error."""


class GenerationCancelled(ScreenplayTTSError):
    """Raised at a suspension point once the cancellation token fired."""


def translate_api_error(status: int, raw_message: str) -> str:
    """Short, actionable message for an API status code."""
    if status == 401:
        return "ElevenLabs rejected the API key (401). Double-check the key."
    if status == 429:
        return "ElevenLabs rate limit reached (429). Increase the request delay or pause before retrying."
    if "insufficient_quota" in raw_message.lower() or "quota_exceeded" in raw_message.lower():
        return "Your ElevenLabs character quota is exhausted. Upgrade your plan or wait for the monthly reset."
    if status >= 500:
        return f"ElevenLabs is experiencing issues ({status}). Try again in a few minutes."
    return f"API Error {status}: {raw_message or 'Unexpected response from ElevenLabs.'}"


@dataclass
class ErrorDetails:
    title: str
    message: str
    actions: list[str] = field(default_factory=list)


def _contains(text: str, *needles: str) -> bool:
    return any(n in text for n in needles)


def describe_error(error, context: str | None = None) -> ErrorDetails:
    """Convert an exception (or message) into a title, message and remediation steps."""
    raw = str(error)
    lower = raw.lower()
    status = getattr(error, "status", None)

    if status == 401 or _contains(lower, "401", "unauthorized", "invalid api key", "rejected the api key"):
        return ErrorDetails(
            title="Invalid API Key",
            message="Your ElevenLabs API key appears to be invalid or has expired.",
            actions=[
                "Verify your API key at https://elevenlabs.io/app/settings/api-keys",
                "Make sure you copied the entire key without extra spaces",
                "Check if your API key has been revoked or expired",
                "Try generating a new API key",
            ],
        )

    if status == 429 or _contains(lower, "429", "rate limit", "too many requests"):
        return ErrorDetails(
            title="Rate Limit Exceeded",
            message="You've hit the ElevenLabs API rate limit. Failed requests are retried with delays.",
            actions=[
                "Wait a few minutes before trying again",
                "Increase the delay between requests (--delay)",
                "Consider upgrading your ElevenLabs plan for higher rate limits",
                "Check your usage at https://elevenlabs.io/app/usage",
            ],
        )

    if _contains(lower, "quota", "insufficient credits"):
        return ErrorDetails(
            title="Quota Exceeded",
            message="You've used up your ElevenLabs character quota for this billing period.",
            actions=[
                "Check your remaining quota at https://elevenlabs.io/app/usage",
                "Wait until your quota resets",
                "Upgrade your plan for more characters per month",
            ],
        )

    if isinstance(error, ConcatenationError) or _contains(lower, "concatenation", "connection refused"):
        return ErrorDetails(
            title="Concatenation Service Not Running",
            message="The audio concatenation service could not be reached or failed.",
            actions=[
                "Start the concatenation service and check its /health endpoint",
                "Or run without --concat to keep individual files",
                "Make sure the service URL in SCREENPLAY_TTS_CONCAT_URL is correct",
            ],
        )

    if isinstance(error, TransientNetworkError) or _contains(lower, "network", "timed out", "timeout"):
        return ErrorDetails(
            title="Network Error",
            message="Unable to connect to ElevenLabs servers. This could be a temporary connection issue.",
            actions=[
                "Check your internet connection",
                "Try again in a few moments",
                "Check if ElevenLabs is down at https://status.elevenlabs.io",
            ],
        )

    if "no voice configuration" in lower:
        character = raw.split(":", 1)[1].strip() if ":" in raw else "unknown"
        return ErrorDetails(
            title="Missing Voice Configuration",
            message=f'The character "{character}" doesn\'t have a voice assigned.',
            actions=[
                f'Add a voiceId for "{character}" to characterConfigs in the project config',
                "Make sure every character in the screenplay has a voice assigned",
            ],
        )

    if _contains(lower, "no dialogue chunks", "parsing"):
        return ErrorDetails(
            title="Screenplay Format Error",
            message="The screenplay parser couldn't detect any dialogue in your script.",
            actions=[
                'Start the script with a "Characters:" section',
                "List character names with dashes: - CHARACTER NAME",
                "Use ALL CAPS for character names in dialogue cues",
            ],
        )

    if (status is not None and status >= 500) or _contains(lower, "500", "502", "503"):
        return ErrorDetails(
            title="Server Error",
            message="ElevenLabs servers are experiencing issues. This is usually temporary.",
            actions=[
                "Wait a few minutes and try again",
                "Check ElevenLabs status page: https://status.elevenlabs.io",
                "Resume the run to continue from the failed line",
            ],
        )

    return ErrorDetails(
        title=context or "Unexpected Error",
        message=raw or "An unexpected error occurred.",
        actions=[
            "Re-run with --verbose for more details",
            "Try a simpler screenplay to isolate the problem",
        ],
    )


def format_error(details: ErrorDetails) -> str:
    """Render error details as a block of text with numbered steps."""
    lines = [details.title, "", details.message]
    if details.actions:
        lines += ["", "Troubleshooting:"]
        lines += [f"{i}. {action}" for i, action in enumerate(details.actions, 1)]
    return "\n".join(lines)
