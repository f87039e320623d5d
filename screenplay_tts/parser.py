"""Parse screenplay text into a character roster and ordered dialogue chunks."""

import logging
import re

from screenplay_tts.models import (
    DialogueChunk,
    ParsedScript,
    ParserDiagnostics,
    UnmatchedLine,
)

logger = logging.getLogger(__name__)

# INT. / EXT. / I/E. / INT/EXT / EST. / SCENE 12 / forced ".HEADING"
_SCENE_HEADING_RE = re.compile(
    r"^(?:(?:INT\./EXT|INT/EXT|I/E|INT|EXT|EST)(?:\.|\s|$)|SCENE\s+\d+|\.(?!\.))",
    re.IGNORECASE,
)

_TRANSITION_RE = re.compile(
    r"^(?:CUT TO:|FADE (?:IN|OUT|TO)\b|SMASH CUT|MATCH CUT|JUMP CUT|DISSOLVE TO:|IRIS OUT|WIPE TO:)",
    re.IGNORECASE,
)

# NAME: dialogue on one line. Name case is checked later against aliases.
_INLINE_DIALOGUE_RE = re.compile(r"^([A-Za-z0-9][A-Za-z0-9\s().'\"-]*?)\s*:\s*(.*)$")

# Shape of a character cue: starts with a capital, only caps/digits/cue punctuation
_UPPERCASE_CUE_RE = re.compile(r"^[A-Z][A-Z0-9\s.'\"()-]*$")

_PARENTHETICAL_RE = re.compile(r"\([^)]*\)")
_BRACKET_RE = re.compile(r"\[[^\]]*\]")
_CONTD_RE = re.compile(r"\bCONT'D\b", re.IGNORECASE)
_NAME_NOISE_RE = re.compile(r"[^A-Za-z0-9\s'-]")
_WHITESPACE_RE = re.compile(r"\s+")
_LETTER_RE = re.compile(r"[A-Za-z]")

# "- CELESTE (Voice ID: 21m00Tcm4TlvDq8ikWAM - Rachel: opera singer)"
_VOICE_ID_RE = re.compile(
    r"^[ \t]*-[ \t]*([^()\n]*?[A-Za-z0-9][^()\n]*?)[ \t]*\([ \t]*Voice ID:[ \t]*([A-Za-z0-9]+)",
    re.IGNORECASE | re.MULTILINE,
)


def clean_dialogue(text: str) -> str:
    """Strip (parentheticals) and [bracketed] notes, collapse whitespace.

    Idempotent: cleaning already-cleaned text returns it unchanged.
    """
    text = _PARENTHETICAL_RE.sub("", text)
    text = _BRACKET_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_character_name(value: str) -> str:
    """Canonical form of a character name.

    "Sarah (V.O.)" → "SARAH", "john cont'd" → "JOHN", "Dr. Who" → "DR WHO"
    """
    value = _PARENTHETICAL_RE.sub("", value)
    value = _CONTD_RE.sub("", value)
    value = _NAME_NOISE_RE.sub(" ", value)
    return _WHITESPACE_RE.sub(" ", value).strip().upper()


def extract_voice_ids(script_text: str) -> dict[str, str]:
    """Voice assignments written into character declarations.

    Reads "- NAME (Voice ID: abc123 ...)" lines. Names are normalized like
    parsed cue names; a later declaration of the same name wins.
    """
    voice_ids = {}
    for match in _VOICE_ID_RE.finditer(script_text or ""):
        name = normalize_character_name(match.group(1))
        if name:
            voice_ids[name] = match.group(2)
    return voice_ids


def generate_aliases(full_name: str) -> list[str]:
    """All names a character can be addressed by, full name first.

    Full name, each single token, every contiguous multi-token run, and the
    first+last token pair. "DETECTIVE SARAH MILLER" yields e.g. "SARAH",
    "DETECTIVE SARAH", "SARAH MILLER" and "DETECTIVE MILLER".
    """
    tokens = full_name.split()
    if not tokens:
        return []

    aliases = [" ".join(tokens)]

    def add(parts):
        alias = " ".join(parts)
        if alias not in aliases:
            aliases.append(alias)

    for token in tokens:
        add([token])
    for start in range(len(tokens)):
        for end in range(start + 2, len(tokens) + 1):
            add(tokens[start:end])
    if len(tokens) >= 2:
        add([tokens[0], tokens[-1]])

    return aliases


class _Roster:
    """Alias → canonical name registry. First registration keeps an alias."""

    def __init__(self):
        self.names: list[str] = []
        self._aliases: dict[str, str] = {}

    def add(self, full_name: str) -> str:
        if full_name in self.names:
            return full_name
        self.names.append(full_name)

        for alias in generate_aliases(full_name):
            owner = self._aliases.get(alias)
            if owner is None:
                self._aliases[alias] = full_name
            elif alias == full_name:
                # An exact full name always resolves to its own character
                logger.warning(
                    "Alias collision: %r now resolves to %r instead of %r",
                    alias, full_name, owner,
                )
                self._aliases[alias] = full_name
            else:
                logger.warning(
                    "Alias collision: %r already belongs to %r, not assigning to %r",
                    alias, owner, full_name,
                )
        return full_name

    def find(self, name: str) -> str | None:
        normalized = normalize_character_name(name)
        if not normalized:
            return None
        return self._aliases.get(normalized)

    def register(self, raw_name: str) -> str | None:
        full_name = normalize_character_name(raw_name)
        if not full_name:
            return None
        return self.add(full_name)


class _ScriptBodyParser:
    """Dialogue extraction state: current speaker plus buffered lines."""

    def __init__(self, roster: _Roster):
        self.roster = roster
        self.chunks: list[DialogueChunk] = []
        self.unmatched: list[UnmatchedLine] = []
        self.speaker: str | None = None
        self.buffer: list[str] = []

    def flush(self):
        if self.speaker and self.buffer:
            raw = " ".join(self.buffer).strip()
            text = clean_dialogue(raw)
            if text:
                self.chunks.append(DialogueChunk(character=self.speaker, text=text, original_text=raw))
        self.buffer = []

    def _reset(self):
        self.flush()
        self.speaker = None

    def _resolve_cue(self, name: str) -> str | None:
        found = self.roster.find(name)
        if found is None and _UPPERCASE_CUE_RE.match(name):
            found = self.roster.register(name)
        return found

    def feed(self, line: str, line_number: int):
        if not line or _SCENE_HEADING_RE.match(line) or _TRANSITION_RE.match(line):
            self._reset()
            return

        inline = _INLINE_DIALOGUE_RE.match(line)
        if inline:
            character = self._resolve_cue(inline.group(1).strip())
            if character:
                self.flush()
                raw = inline.group(2).strip()
                if not raw:
                    # "JOHN:" alone is a cue; dialogue follows on the next lines
                    self.speaker = character
                    return
                text = clean_dialogue(raw)
                if text:
                    self.chunks.append(DialogueChunk(character=character, text=text, original_text=raw))
                # Inline lines never open a multi-line block
                self.speaker = None
                return

        character = self._resolve_cue(line)
        if character:
            self.flush()
            self.speaker = character
        elif self.speaker:
            self.buffer.append(line)
        else:
            self.unmatched.append(UnmatchedLine(line_number=line_number, content=line))


def _starts_script_body(line: str) -> bool:
    """Metadata lines that mean the script began without a Characters: list."""
    if _SCENE_HEADING_RE.match(line):
        return True
    inline = _INLINE_DIALOGUE_RE.match(line)
    return bool(inline and _UPPERCASE_CUE_RE.match(inline.group(1).strip()))


def parse_script(script_text: str) -> ParsedScript:
    """Parse screenplay text.

    Scans in three one-way modes: metadata (until a "Characters:" header),
    characterList ("- NAME (notes)" declarations) and scriptBody (dialogue).
    Never raises; lines that cannot be attributed are reported in
    diagnostics.unmatched_lines.
    """
    roster = _Roster()
    body = _ScriptBodyParser(roster)

    if not script_text:
        return ParsedScript(characters=[], dialogue_chunks=[], diagnostics=ParserDiagnostics())

    mode = "metadata"
    for index, line in enumerate(script_text.splitlines()):
        line_number = index + 1
        stripped = line.strip()

        if mode == "metadata":
            if stripped.lower().startswith("characters:"):
                mode = "characterList"
                continue
            if not _starts_script_body(stripped):
                continue
            mode = "scriptBody"

        if mode == "characterList":
            if stripped.startswith("-"):
                definition = stripped[1:].strip()
                if not _LETTER_RE.search(definition):
                    continue
                raw_name = definition.split("(", 1)[0]
                roster.register(raw_name)
                continue
            if not stripped:
                continue
            mode = "scriptBody"

        body.feed(stripped, line_number)

    body.flush()

    return ParsedScript(
        characters=sorted(roster.names),
        dialogue_chunks=body.chunks,
        diagnostics=ParserDiagnostics(unmatched_lines=body.unmatched),
    )
