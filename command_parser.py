"""Input sanitizing and command-line tokenizing for SecShell.

Public API:
    clean = sanitize_input(raw_line)
    parsed = tokenize(clean)          # ParsedLine(text, stages, warnings)
    for command in parsed.stages:     # Command(args, mode, stdin_path, stdout_path)
        ...

Accepted syntax:
    cmd arg1 "quoted arg" 'quoted arg' arg\\ with\\ escape
    cmd1 | cmd2 | cmd3
    cmd < infile > outfile
    cmd &

There is no shell grammar beyond this: no subshells, no control flow, no
globbing and no variable expansion (echo gets simple $VAR substitution at
launch time).
"""

import os
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse, urlunparse

from shell_errors import CommandSyntaxError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MODE_FOREGROUND = "foreground"
MODE_BACKGROUND = "background"
MODE_RAW_TERMINAL = "raw_terminal"
MODE_PIPELINE_STAGE = "pipeline_stage"

BACKGROUND_MARKER = "&"
OUTPUT_REDIRECT = ">"
INPUT_REDIRECT = "<"
PIPE = "|"

UNCLOSED_QUOTE_WARNING = "Unclosed quotes detected in command"
BACKGROUND_PIPELINE_WARNING = "Background pipelines are not supported; running in foreground"

# Programs that need full control of the terminal
RAW_TERMINAL_COMMANDS = frozenset({
    "ssh", "vim", "vi", "nano", "pico", "emacs", "less", "more", "top", "htop",
    "nvim", "python", "python3", "ruby", "node", "mysql", "psql", "su", "sudo",
    "screen", "tmux", "man", "info",
})

MAX_URL_LENGTH = 2083
MAX_FILENAME_LENGTH = 255

_BLOCKED_URL_EXTENSIONS = frozenset({
    ".exe", ".dll", ".so", ".dylib", ".bat", ".cmd", ".sh", ".com",
    ".bin", ".ps1", ".msi", ".vbs", ".jar",
})


# ---------------------------------------------------------------------------
# Sanitizer
# ---------------------------------------------------------------------------

# Command chaining and substitution are never accepted
_ALWAYS_STRIPPED_RE = re.compile(r"[;`]")
_SPECIAL_CHARS_RE = re.compile(r"[&|><${}\[\]()\"'\\]")
_COMMAND_NAME_RE = re.compile(r"[^A-Za-z0-9._-]")
_PATH_STRIPPED_RE = re.compile(r"[;`\\{}\[\]()\"']")
_FILENAME_REPLACED_RE = re.compile(r"[<>:\"/\\|?*]")


def sanitize_input(text: str, allow_special_chars: bool = True) -> str:
    """Strip dangerous characters from a raw input line.

    The default keeps quotes, backslashes and the pipe/redirection/background
    operators so the tokenizer can interpret them. With allow_special_chars
    False every shell metacharacter is removed.
    """
    text = _ALWAYS_STRIPPED_RE.sub("", text)
    if not allow_special_chars:
        text = _SPECIAL_CHARS_RE.sub("", text)
    return text.strip()


def sanitize_command_name(name: str) -> str:
    return _COMMAND_NAME_RE.sub("", name.strip())


def sanitize_path(path: str) -> str:
    return _PATH_STRIPPED_RE.sub("", path.strip())


def sanitize_filename(name: str) -> str:
    """Reduce a user-supplied file name to a safe basename. Raises ValueError."""
    name = name.strip()
    if not name:
        raise ValueError("empty filename")
    if len(name) > MAX_FILENAME_LENGTH:
        raise ValueError(f"filename too long (max {MAX_FILENAME_LENGTH} characters)")
    base = os.path.basename(name.replace("\\", "/"))
    base = _FILENAME_REPLACED_RE.sub("_", base)
    if base in ("", ".", ".."):
        raise ValueError(f"invalid filename: {name!r}")
    return base


def sanitize_url(url: str) -> str:
    """Validate an http(s) URL and return it normalized. Raises ValueError."""
    url = url.strip()
    if not url:
        raise ValueError("empty URL")
    if len(url) > MAX_URL_LENGTH:
        raise ValueError(f"URL too long (max {MAX_URL_LENGTH} characters)")

    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError("only http and https URLs are allowed")
    if not parsed.hostname:
        raise ValueError("URL has no host")
    if ".." in parsed.path:
        raise ValueError("path traversal is not allowed in URLs")

    _, ext = os.path.splitext(parsed.path.lower())
    if ext in _BLOCKED_URL_EXTENSIONS:
        raise ValueError(f"downloads of '{ext}' files are blocked")

    return urlunparse(parsed._replace(scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower()))


# ---------------------------------------------------------------------------
# Parsed command types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Command:
    args: tuple[str, ...]
    mode: str = MODE_FOREGROUND
    stdin_path: Optional[str] = None
    stdout_path: Optional[str] = None

    @property
    def name(self) -> str:
        return self.args[0] if self.args else ""


@dataclass
class ParsedLine:
    text: str
    stages: list[Command] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.stages

    @property
    def is_pipeline(self) -> bool:
        return len(self.stages) > 1


@dataclass(frozen=True)
class _Token:
    value: str
    literal: bool  # quoted or escaped somewhere, so never an operator


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

def _lex(text: str) -> tuple[list[_Token], bool]:
    """Split one pipeline stage into tokens. Returns (tokens, unclosed_quote)."""
    tokens: list[_Token] = []
    current: list[str] = []
    literal = False
    quote = None
    escaped = False

    for ch in text:
        if escaped:
            current.append(ch)
            literal = True
            escaped = False
        elif ch == "\\":
            escaped = True
        elif quote:
            if ch == quote:
                quote = None
            else:
                current.append(ch)
        elif ch in ("'", '"'):
            quote = ch
            literal = True
        elif ch.isspace():
            if current:
                tokens.append(_Token("".join(current), literal))
            current = []
            literal = False
        else:
            current.append(ch)

    if current:
        tokens.append(_Token("".join(current), literal))
    return tokens, quote is not None


def _is_operator(token: _Token, operator: str) -> bool:
    return not token.literal and token.value == operator


def split_pipeline(line: str) -> list[str]:
    """Split a line on pipe characters that are neither quoted nor escaped."""
    segments = []
    current: list[str] = []
    quote = None
    escaped = False

    for ch in line:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            current.append(ch)
            escaped = True
        elif quote:
            if ch == quote:
                quote = None
            current.append(ch)
        elif ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif ch == PIPE:
            segments.append("".join(current))
            current = []
        else:
            current.append(ch)

    segments.append("".join(current))
    return segments


def split_arguments(text: str) -> list[str]:
    """Tokenize a single command (no pipes, no operators) into its arguments."""
    tokens, _ = _lex(text)
    return [t.value for t in tokens]


def _build_command(tokens: list[_Token]) -> Command:
    background = False
    if _is_operator(tokens[-1], BACKGROUND_MARKER):
        background = True
        tokens = tokens[:-1]

    args: list[str] = []
    stdin_path = None
    stdout_path = None
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if _is_operator(token, OUTPUT_REDIRECT) or _is_operator(token, INPUT_REDIRECT):
            if i + 1 >= len(tokens):
                raise CommandSyntaxError(f"Missing redirection target after '{token.value}'")
            if token.value == OUTPUT_REDIRECT:
                stdout_path = tokens[i + 1].value
            else:
                stdin_path = tokens[i + 1].value
            i += 2
            continue
        args.append(token.value)
        i += 1

    if not args:
        raise CommandSyntaxError("Missing command name")

    if background:
        mode = MODE_BACKGROUND
    elif (os.path.basename(args[0]) in RAW_TERMINAL_COMMANDS
          and stdin_path is None and stdout_path is None):
        mode = MODE_RAW_TERMINAL
    else:
        mode = MODE_FOREGROUND

    return Command(args=tuple(args), mode=mode, stdin_path=stdin_path, stdout_path=stdout_path)


def tokenize(line: str) -> ParsedLine:
    """Turn one input line into pipeline stages.

    Blank input gives an empty ParsedLine, which callers treat as a no-op.
    An unclosed quote is tolerated: the partial token is kept and a warning
    is attached. Structural problems raise CommandSyntaxError.
    """
    text = line.strip()
    parsed = ParsedLine(text=text)
    if not text:
        return parsed

    segments = split_pipeline(text)

    if len(segments) == 1:
        tokens, unclosed = _lex(segments[0])
        if unclosed:
            parsed.warnings.append(UNCLOSED_QUOTE_WARNING)
        if tokens:
            parsed.stages.append(_build_command(tokens))
        return parsed

    last = len(segments) - 1
    for index, segment in enumerate(segments):
        tokens, unclosed = _lex(segment)
        if unclosed:
            parsed.warnings.append(UNCLOSED_QUOTE_WARNING)
        if index == last and tokens and _is_operator(tokens[-1], BACKGROUND_MARKER):
            tokens = tokens[:-1]
            parsed.warnings.append(BACKGROUND_PIPELINE_WARNING)
        if not tokens:
            raise CommandSyntaxError(f"Empty command in pipeline stage {index + 1}")
        parsed.stages.append(Command(
            args=tuple(t.value for t in tokens),
            mode=MODE_PIPELINE_STAGE,
        ))
    return parsed
