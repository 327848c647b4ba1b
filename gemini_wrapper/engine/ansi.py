"""ANSI stripping and noise classification for Gemini CLI terminal output.

Strips control sequences (colors, cursor movement, line clearing, titles)
from pty output and decides whether a line is answer text or decorative
noise: banners, tips, boxes, the redrawn input prompt, selection menus and
the status footer.

The noise vocabulary is a fixed list per CLI release, not a classifier.
New banner text goes into NoiseVocabulary (or the `noise:` section of the
YAML config), never into ad-hoc checks elsewhere.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace

from .models import FilteredLine

# - CSI sequences: ESC [ params final_byte (colors, cursor, erase, modes)
# - OSC sequences: ESC ] ... BEL or ST (window title, bg color queries)
# - Character set designation: ESC ( X / ESC ) X
# - Keypad mode and other single-char escapes: ESC = / ESC > / ESC M ...
_ANSI_ESCAPE_RE = re.compile(
    r"\x1b"
    r"(?:"
    r"\[[0-9;?<=>]*[ -/]*[@-~]"
    r"|\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|[()][0-9A-Za-z]"
    r"|[78@-Z\\-_=>]"
    r")"
)

# Backspace overprinting: char + BS (bold on old terminals).
_BACKSPACE_OVERWRITE_RE = re.compile(r"[^\x08]\x08")

# Whatever control bytes survive (stray ESC, BEL, CR, NUL...). Tab is kept.
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")

_BOX_RULE_RE = re.compile(r"[─━═]{3,}")
_MENU_ITEM_RE = re.compile(r"^[●○◉›❯]\s*\d+\.\s+\S")

PROMPT_PLACEHOLDER = "Type your message or @path/to/file"
AUTH_WAIT_MARKER = "Waiting for auth"


def strip_ansi(raw: str) -> str:
    """Remove ANSI/VT control sequences and stray control characters."""
    result = raw
    while True:
        stripped = _ANSI_ESCAPE_RE.sub("", result)
        if stripped == result:
            break
        result = stripped
    while _BACKSPACE_OVERWRITE_RE.search(result):
        result = _BACKSPACE_OVERWRITE_RE.sub("", result)
    return _CONTROL_CHARS_RE.sub("", result)


@dataclass(frozen=True)
class NoiseVocabulary:
    """Explicit, extensible list of decorative text emitted by the CLI."""
    substrings: tuple[str, ...] = ()
    prefixes: tuple[str, ...] = ()
    exact_lines: tuple[str, ...] = ()
    # The boxed input line. A bare "> " line is a markdown blockquote.
    prompt_prefixes: tuple[str, ...] = ("│ >", "┃ >")
    prompt_substrings: tuple[str, ...] = (PROMPT_PLACEHOLDER,)

    def extend(
        self,
        *,
        substrings: list[str] | tuple[str, ...] = (),
        prefixes: list[str] | tuple[str, ...] = (),
        exact_lines: list[str] | tuple[str, ...] = (),
    ) -> NoiseVocabulary:
        """Return a copy with extra entries appended (duplicates skipped)."""
        def merge(base: tuple[str, ...], extra) -> tuple[str, ...]:
            merged = list(base)
            for item in extra:
                if item and item not in merged:
                    merged.append(item)
            return tuple(merged)

        return replace(
            self,
            substrings=merge(self.substrings, substrings),
            prefixes=merge(self.prefixes, prefixes),
            exact_lines=merge(self.exact_lines, exact_lines),
        )

    def is_prompt(self, clean: str) -> bool:
        trimmed = clean.strip()
        if any(trimmed.startswith(p) for p in self.prompt_prefixes):
            return True
        return any(s in clean for s in self.prompt_substrings)

    def is_noise(self, clean: str) -> bool:
        trimmed = clean.strip()
        if not trimmed:
            return True
        if self.is_prompt(clean):
            return True
        if _BOX_RULE_RE.search(trimmed) or _MENU_ITEM_RE.match(trimmed):
            return True
        if trimmed in self.exact_lines:
            return True
        if any(trimmed.startswith(p) for p in self.prefixes):
            return True
        return any(s in clean for s in self.substrings)


DEFAULT_NOISE = NoiseVocabulary(
    substrings=(
        # ASCII-art logo and boxes
        "░░░",
        "╭──",
        "│",
        "╰──",
        "╮",
        "╯",
        # Banner and tips
        "GEMINI",
        "with Gemini",
        "Tips for getting started",
        "Ask questions",
        "Be specific",
        "Create GEMINI.md",
        "/help for more information",
        "Warning you are running",
        "This warning can be disabled",
        "Gemini 3 Flash and Pro",
        'Enable "Preview features"',
        "Learn more at",
        # Status footer
        "no sandbox",
        "Auto (Gemini",
        "/model",
        "context left)",
        "esc to cancel",
        "YOLO mode",
    ),
    prefixes=(
        "~",
        "Using:",
    ),
    exact_lines=(
        "directory.",
        ">",
    ),
)


def filter_line(
    raw: str,
    vocabulary: NoiseVocabulary = DEFAULT_NOISE,
) -> tuple[str, bool]:
    """Strip control sequences from one raw line and flag decorative noise.

    Pure and stateless: safe to call per line in any order, and applying it
    to its own output yields the same noise flag.
    """
    clean = strip_ansi(raw)
    return clean, vocabulary.is_noise(clean)


def classify_line(
    raw: str,
    vocabulary: NoiseVocabulary = DEFAULT_NOISE,
) -> FilteredLine:
    """filter_line() plus the prompt and auth-wait flags the collector needs."""
    clean, is_noise = filter_line(raw, vocabulary)
    return FilteredLine(
        text=clean,
        is_noise=is_noise,
        is_prompt=vocabulary.is_prompt(clean),
        is_auth_wait=AUTH_WAIT_MARKER in clean,
    )
