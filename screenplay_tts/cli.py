"""CLI interface with subcommand routing and generation orchestration."""

import argparse
import asyncio
import json
import logging
import os
import shutil
import signal
import sys

from pydub.exceptions import CouldntDecodeError

from screenplay_tts.artifacts import init_output_dir, load_project_config, write_bytes
from screenplay_tts.assembly import concatenate_clips
from screenplay_tts.cancellation import CancellationToken
from screenplay_tts.client import ElevenLabsClient, format_details
from screenplay_tts.concatenation import ConcatenationClient
from screenplay_tts.constants import (
    API_KEY_ENV,
    CONCAT_URL_ENV,
    CONCATENATED_BASENAME,
    DEFAULT_CONCAT_URL,
    DEFAULT_USER_ID,
    OUTPUT_DIR,
    SCRIPT_TEXT_KEY,
    STORAGE_DIR,
    VERSION,
)
from screenplay_tts.errors import ApiError, ScreenplayTTSError, describe_error, format_error
from screenplay_tts.manifest import manifest_to_csv, manifest_to_json
from screenplay_tts.models import CharacterConfig, ProjectSettings
from screenplay_tts.parser import extract_voice_ids, parse_script
from screenplay_tts.pipeline import Cancelled, Failed, GenerationPipeline, NeedsResume
from screenplay_tts.progress import (
    BlobCache,
    ProgressStore,
    StatsStore,
    estimate_time_remaining,
    get_progress_percentage,
)
from screenplay_tts.storage import JsonFileStorage, user_key
from screenplay_tts.validator import validate_configuration

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _fail(error, context: str | None = None):
    """Print human-readable error details to stderr and exit 1."""
    print(format_error(describe_error(error, context)), file=sys.stderr)
    raise SystemExit(1)


def _read_scripts(paths: list[str]) -> str:
    """Read one or more script files; multiple files are joined in order."""
    texts = []
    for path in paths:
        if not os.path.exists(path):
            print(f"Error: File not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        with open(path) as f:
            text = f.read()
        if not text.strip():
            print(f"Error: File is empty: {path}", file=sys.stderr)
            raise SystemExit(1)
        texts.append(text)
    return "\n\n".join(texts)


def _api_key(args) -> str:
    return args.api_key or os.environ.get(API_KEY_ENV, "")


def _storage(args) -> JsonFileStorage:
    return JsonFileStorage(args.storage_dir or STORAGE_DIR)


def _make_tts_client(api_key: str) -> ElevenLabsClient:
    return ElevenLabsClient(api_key)


def _make_concat_client() -> ConcatenationClient:
    return ConcatenationClient(os.environ.get(CONCAT_URL_ENV, DEFAULT_CONCAT_URL))


def _print_progress(event):
    if event.status == "generating":
        print(f"  [{event.current}/{event.total}] Generating audio for {event.character}...")
    elif event.status == "concatenating":
        print("  Concatenating audio files...")
    elif event.status == "error":
        print(f"  [{event.current}/{event.total}] {event.message}", file=sys.stderr)


def cmd_parse(args):
    """Parse a screenplay and report characters, chunks and unmatched lines."""
    _configure_logging(args.verbose)
    parsed = parse_script(_read_scripts(args.script))

    if args.json:
        print(json.dumps({
            "characters": parsed.characters,
            "dialogueChunks": [c.to_dict() for c in parsed.dialogue_chunks],
            "unmatchedLines": [vars(u) for u in parsed.diagnostics.unmatched_lines],
        }, indent=2))
        return

    print(f"Characters ({len(parsed.characters)}):")
    for name in parsed.characters:
        count = sum(1 for c in parsed.dialogue_chunks if c.character == name)
        print(f"  {name:<24} {count} lines")
    print(f"Dialogue chunks: {len(parsed.dialogue_chunks)}")
    unmatched = parsed.diagnostics.unmatched_lines
    if unmatched:
        print(f"Unmatched lines ({len(unmatched)}):")
        for line in unmatched:
            print(f"  {line.line_number:>5}: {line.content}")


async def _run_generation(args, api_key, settings, project, chunks, configs, out_dir, storage, resume):
    written = set()

    def deliver(blob):
        write_bytes(out_dir, blob.filename, blob.data)
        written.add(blob.filename)

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError, ValueError):
        pass

    client = _make_tts_client(api_key)
    concatenator = None
    try:
        if settings.concatenate:
            concatenator = _make_concat_client()
            if not await concatenator.health():
                print("Concatenation service not reachable, clips will be joined locally.")
                await concatenator.aclose()
                concatenator = None

        pipeline = GenerationPipeline(
            client,
            settings,
            user_id=args.user,
            progress=ProgressStore(storage),
            blob_cache=BlobCache(storage),
            stats=StatsStore(storage),
            concatenator=concatenator,
            audio_production=project.audio_production if project else None,
            on_progress=_print_progress,
            deliver=deliver,
        )
        if resume:
            outcome = await pipeline.resume(configs, token=token)
        else:
            outcome = await pipeline.run(chunks, configs, token=token, preflight=False)
    finally:
        await client.aclose()
        if concatenator is not None:
            await concatenator.aclose()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError, ValueError):
            pass
    return outcome, written


def _write_clips(out_dir, blobs, written) -> list[str]:
    paths = []
    for blob in blobs:
        if blob.filename not in written:
            write_bytes(out_dir, blob.filename, blob.data)
            written.add(blob.filename)
        paths.append(os.path.join(out_dir, blob.filename))
    return paths


def _join_locally(paths, out_dir, settings) -> str | None:
    """Local pydub join; None when ffmpeg is missing or a clip won't decode."""
    extension = format_details(settings.output_format)["extension"]
    if extension != "wav" and not shutil.which("ffmpeg"):
        print("ffmpeg not found, keeping individual files.", file=sys.stderr)
        return None
    output_path = os.path.join(out_dir, f"{CONCATENATED_BASENAME}.{extension}")
    try:
        return concatenate_clips(paths, output_path)
    except (CouldntDecodeError, OSError) as e:
        logger.warning("Local concatenation failed: %s", e)
        print(f"Local concatenation failed ({e}), keeping individual files.", file=sys.stderr)
        return None


def cmd_generate(args):
    """Parse, validate, and generate audio for a screenplay."""
    _configure_logging(args.verbose)
    storage = _storage(args)
    api_key = _api_key(args)

    project = None
    if args.config:
        try:
            project = load_project_config(args.config)
        except ScreenplayTTSError as e:
            _fail(e, "Project Configuration Error")

    if args.resume:
        progress = ProgressStore(storage)
        if not progress.has_resumable(args.user):
            print(f"Error: No resumable generation for user '{args.user}'.", file=sys.stderr)
            raise SystemExit(1)
        state = progress.load(args.user)
        settings = ProjectSettings.from_dict(state.project_settings)
        configs = project.character_configs if project else {
            name: CharacterConfig.from_dict(cfg) for name, cfg in state.character_configs.items()
        }
        chunks = None
        print(f"Resuming at chunk {state.current_index + 1}/{state.total_chunks}")
    else:
        if not args.script:
            print("Error: --script is required unless --resume is given.", file=sys.stderr)
            raise SystemExit(1)
        script_text = _read_scripts(args.script)
        script_voices = extract_voice_ids(script_text)
        if project is None and not script_voices:
            print("Error: --config is required to assign voices.", file=sys.stderr)
            raise SystemExit(1)
        parsed = parse_script(script_text)
        storage.set(user_key(args.user, SCRIPT_TEXT_KEY), script_text)
        chunks = parsed.dialogue_chunks
        configs = dict(project.character_configs) if project else {}
        settings = project.project_settings if project else ProjectSettings()
        # config file entries take precedence over voice IDs in the script
        for name, voice_id in script_voices.items():
            configs.setdefault(name, CharacterConfig(voice_id=voice_id))
        if script_voices:
            print(f"Found voice IDs for {len(script_voices)} characters in the script")
        unmatched = parsed.diagnostics.unmatched_lines
        print(f"Parsed {len(chunks)} dialogue chunks for {len(parsed.characters)} characters")
        if unmatched:
            print(f"Warning: {len(unmatched)} lines could not be matched (run 'parse' to list them)")

        validation = validate_configuration(chunks, configs, api_key)
        if not validation.valid:
            for error in validation.errors:
                print(f"Error: {error}", file=sys.stderr)
            if "No dialogue chunks found in script" in validation.errors:
                _fail("No dialogue chunks found in script")
            raise SystemExit(1)

    if args.delay is not None:
        settings.request_delay_ms = args.delay
    if args.concat:
        settings.concatenate = True

    out_base = args.out or OUTPUT_DIR
    if args.script:
        out_dir = init_output_dir(args.script[0], output_base=out_base)
    else:
        out_dir = os.path.join(out_base, args.user)
        os.makedirs(out_dir, exist_ok=True)

    outcome, written = asyncio.run(_run_generation(
        args, api_key, settings, project, chunks, configs, out_dir, storage, args.resume,
    ))

    if isinstance(outcome, Failed):
        print(f"Error: {outcome.reason}", file=sys.stderr)
        for error in outcome.errors:
            print(f"  {error}", file=sys.stderr)
        raise SystemExit(1)

    if isinstance(outcome, Cancelled):
        _write_clips(out_dir, outcome.completed_blobs, written)
        print(f"Cancelled after {len(outcome.completed_blobs)} clips. Files kept in {out_dir}")
        raise SystemExit(1)

    if isinstance(outcome, NeedsResume):
        _write_clips(out_dir, outcome.completed_blobs, written)
        print(f"Stopped at chunk {outcome.index + 1} ({outcome.character}).", file=sys.stderr)
        print(f"Resume with: screenplay-tts generate --resume --user {args.user}", file=sys.stderr)
        _fail(outcome.error or outcome.reason, "Generation Error")

    paths = _write_clips(out_dir, outcome.blobs, written)
    write_bytes(out_dir, "manifest.json", manifest_to_json(outcome.manifest).encode())
    write_bytes(out_dir, "manifest.csv", manifest_to_csv(outcome.manifest).encode())

    if outcome.concatenated is not None:
        extension = format_details(settings.output_format)["extension"]
        final = write_bytes(out_dir, f"{CONCATENATED_BASENAME}.{extension}", outcome.concatenated)
        print(f"Done: {final}")
        return

    if settings.concatenate and paths:
        final = _join_locally(paths, out_dir, settings)
        if final:
            print(f"Done: {final}")
            return

    if outcome.bundle is not None:
        write_bytes(out_dir, "audio_files.zip", outcome.bundle)
    print(f"Done: {len(paths)} files in {out_dir}")


def cmd_status(args):
    """Show resumable progress and run statistics for a user."""
    storage = _storage(args)
    state = ProgressStore(storage).load(args.user)
    stats = StatsStore(storage).load(args.user)

    print(f"User: {args.user}")
    if state is None:
        print("No generation in progress.")
    else:
        print(f"Status:   {state.status}")
        print(f"Progress: {state.current_index}/{state.total_chunks} ({get_progress_percentage(state)}%)")
        print(f"ETA:      {estimate_time_remaining(state)}")
        if state.last_message:
            print(f"Last:     {state.last_message}")

    print(f"Runs: {stats.completed} completed, {stats.error} failed, {stats.cancelled} cancelled")
    print(f"Chunks generated: {stats.chunks_generated}, characters synthesized: {stats.characters_synthesized}")


async def _check_key(api_key):
    async with _make_tts_client(api_key) as client:
        return await client.validate_api_key()


def cmd_check_key(args):
    """Validate the API key against the subscription endpoint."""
    _configure_logging(args.verbose)
    api_key = _api_key(args)
    if not api_key:
        print(f"Error: No API key. Pass --api-key or set {API_KEY_ENV}.", file=sys.stderr)
        raise SystemExit(1)
    try:
        status = asyncio.run(_check_key(api_key))
    except ScreenplayTTSError as e:
        _fail(e, "API Key Check Failed")
    if not status.valid:
        _fail(ApiError(status.status_code, status.message), "API Key Check Failed")
    print("API key is valid.")


async def _list_voices(api_key):
    async with _make_tts_client(api_key) as client:
        return await client.list_voices()


def cmd_voices(args):
    """List voices available to the account."""
    _configure_logging(args.verbose)
    try:
        voices = asyncio.run(_list_voices(_api_key(args)))
    except ScreenplayTTSError as e:
        _fail(e, "Could Not List Voices")

    filter_str = args.filter.lower() if args.filter else None
    if filter_str:
        voices = [v for v in voices if filter_str in v.get("name", "").lower()]
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        print(f"  {v.get('name', ''):<24} {v.get('voice_id', '')}")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="screenplay-tts",
        description="Screenplay TTS: turn a screenplay into per-character voiced audio",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # generate
    gen_parser = subparsers.add_parser("generate", help="Generate audio for a screenplay")
    gen_parser.add_argument("--script", action="append", help="Screenplay file (repeatable)")
    gen_parser.add_argument("--config", help="Project config JSON with characterConfigs / projectSettings")
    gen_parser.add_argument("--out", help=f"Output base directory (default: {OUTPUT_DIR})")
    gen_parser.add_argument("--delay", type=int, help="Delay between requests in ms")
    gen_parser.add_argument("--concat", action="store_true", help="Concatenate clips into one file")
    gen_parser.add_argument("--api-key", help=f"API key (default: ${API_KEY_ENV})")
    gen_parser.add_argument("--user", default=DEFAULT_USER_ID, help="User id for saved progress")
    gen_parser.add_argument("--storage-dir", help=f"Progress storage directory (default: {STORAGE_DIR})")
    gen_parser.add_argument("--resume", action="store_true", help="Resume the saved generation")
    gen_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    gen_parser.set_defaults(func=cmd_generate)

    # parse
    parse_parser = subparsers.add_parser("parse", help="Parse a screenplay and show what was found")
    parse_parser.add_argument("script", nargs="+", help="Screenplay file(s)")
    parse_parser.add_argument("--json", action="store_true", help="Print the parse result as JSON")
    parse_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parse_parser.set_defaults(func=cmd_parse)

    # status
    status_parser = subparsers.add_parser("status", help="Show saved generation progress")
    status_parser.add_argument("--user", default=DEFAULT_USER_ID, help="User id")
    status_parser.add_argument("--storage-dir", help=f"Progress storage directory (default: {STORAGE_DIR})")
    status_parser.set_defaults(func=cmd_status)

    # check-key
    key_parser = subparsers.add_parser("check-key", help="Validate the API key")
    key_parser.add_argument("--api-key", help=f"API key (default: ${API_KEY_ENV})")
    key_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    key_parser.set_defaults(func=cmd_check_key)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by name substring")
    voices_parser.add_argument("--api-key", help=f"API key (default: ${API_KEY_ENV})")
    voices_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    voices_parser.set_defaults(func=cmd_voices)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
