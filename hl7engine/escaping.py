"""
HL7 escape sequence handling.

The parser keeps escape sequences verbatim. Consumers that need the
literal text of a node (display, comparisons against user input, edits)
go through ``unescape`` and ``escape`` here.
"""

import re

from .tokenizer import Delimiters, DEFAULT_DELIMITERS


def _sequence_pattern(escape_char: str) -> re.Pattern:
    e = re.escape(escape_char)
    return re.compile(f"{e}([^{e}]*){e}")


# Decode Escape Sequences
def unescape(text: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> str:
    """
    Replace escape sequences with the characters they stand for.

    Handles the delimiter escapes (F, S, T, R, E) and hexadecimal data
    (``\\Xhh..\\``). Formatting and highlighting sequences such as
    ``\\.br\\`` or ``\\H\\`` are left untouched.
    """
    if not text or delimiters.escape not in text:
        return text

    mapping = {
        "F": delimiters.field,
        "S": delimiters.component,
        "T": delimiters.subcomponent,
        "R": delimiters.repetition,
        "E": delimiters.escape,
    }

    def replace(match: re.Match) -> str:
        body = match.group(1)
        if body in mapping:
            return mapping[body]
        if body.startswith("X") and len(body) > 1 and len(body) % 2 == 1:
            try:
                return bytes.fromhex(body[1:]).decode("latin-1")
            except ValueError:
                return match.group(0)
        return match.group(0)

    return _sequence_pattern(delimiters.escape).sub(replace, text)


# Encode Reserved Characters
def escape(text: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> str:
    """Encode delimiter characters in literal text as escape sequences."""
    if not text:
        return text

    e = delimiters.escape
    replacements = {
        e: f"{e}E{e}",
        delimiters.field: f"{e}F{e}",
        delimiters.component: f"{e}S{e}",
        delimiters.subcomponent: f"{e}T{e}",
        delimiters.repetition: f"{e}R{e}",
    }
    return "".join(replacements.get(char, char) for char in text)
