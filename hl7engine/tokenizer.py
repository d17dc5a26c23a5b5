"""
HL7 message tokenizer and low-level splitting utilities.

This module handles the raw wire format of HL7 v2.x messages: resolving
the delimiter set from the MSH header, breaking text into segment lines,
and splitting lines into raw field strings. It knows nothing about the
nested value model built on top of it.
"""

from dataclasses import dataclass
from typing import List, Tuple

from .exceptions import InvalidMessageStructureError, MalformedHeaderError

# Default HL7 delimiters (can be overridden from MSH)
DEFAULT_FIELD_SEPARATOR = "|"
DEFAULT_COMPONENT_SEPARATOR = "^"
DEFAULT_REPETITION_SEPARATOR = "~"
DEFAULT_ESCAPE_CHARACTER = "\\"
DEFAULT_SUBCOMPONENT_SEPARATOR = "&"

HEADER_SEGMENT = "MSH"

# MSH + field separator + four encoding characters
MIN_HEADER_LENGTH = 8

# Batch envelope segments wrapping several messages in one file
BATCH_SEGMENTS = ("FHS", "BHS", "BTS", "FTS")

# MLLP framing bytes sometimes left around messages read from capture files
FRAMING_CHARACTERS = "\x0b\x1c"


# Delimiters Dataclass
@dataclass(frozen=True)
class Delimiters:
    """
    HL7 message delimiters extracted from MSH segment.

    The MSH segment always starts with "MSH|" and the encoding characters
    follow in position MSH-2, defining how the rest of the message is parsed.
    Instances are immutable so one set can be shared by every consumer of a
    parsed message.
    """

    field: str = DEFAULT_FIELD_SEPARATOR
    component: str = DEFAULT_COMPONENT_SEPARATOR
    repetition: str = DEFAULT_REPETITION_SEPARATOR
    escape: str = DEFAULT_ESCAPE_CHARACTER
    subcomponent: str = DEFAULT_SUBCOMPONENT_SEPARATOR

    @property
    def encoding_characters(self) -> str:
        """MSH-2 as it appears on the wire."""
        return self.component + self.repetition + self.escape + self.subcomponent

    def as_dict(self) -> dict:
        return {
            "field": self.field,
            "component": self.component,
            "repetition": self.repetition,
            "escape": self.escape,
            "subcomponent": self.subcomponent,
        }


DEFAULT_DELIMITERS = Delimiters()


# Resolve Delimiters from Header
def resolve_delimiters(header_line: str, line_number: int = None) -> Delimiters:
    """
    Resolve the delimiter set from a raw MSH line.

    The field separator is character 4 and the four encoding characters
    are characters 5-8 (``MSH|^~\\&``).

    Args:
        header_line: Raw MSH segment text
        line_number: Source line, used only in error messages

    Returns:
        Delimiters for the message

    Raises:
        MalformedHeaderError: If the line is too short, is not an MSH
            segment, or declares colliding or unusable delimiters
    """
    if not header_line or not header_line.startswith(HEADER_SEGMENT):
        tag = header_line[:3] if header_line else ""
        raise MalformedHeaderError(
            f"expected segment '{HEADER_SEGMENT}', got '{tag}'", line_number
        )

    if len(header_line) < MIN_HEADER_LENGTH:
        raise MalformedHeaderError(
            f"header must be at least {MIN_HEADER_LENGTH} characters, "
            f"got {len(header_line)}",
            line_number,
        )

    encoding = header_line[4:8]
    delimiters = Delimiters(
        field=header_line[3],
        component=encoding[0],
        repetition=encoding[1],
        escape=encoding[2],
        subcomponent=encoding[3],
    )
    _validate_delimiters(delimiters, line_number)
    return delimiters


def _validate_delimiters(delimiters: Delimiters, line_number: int = None) -> None:
    """
    Validate that detected delimiters are reasonable.

    HL7 delimiters should be non-alphanumeric special characters
    and should not conflict with each other.
    """
    named = list(delimiters.as_dict().items())

    for name, char in named:
        if char.isalnum() or char.isspace():
            raise MalformedHeaderError(
                f"invalid {name} delimiter '{char}': must be a non-alphanumeric, "
                "non-whitespace character",
                line_number,
            )

    seen = {}
    for name, char in named:
        if char in seen:
            raise MalformedHeaderError(
                f"conflicting delimiter '{char}' used as both {seen[char]} and {name}",
                line_number,
            )
        seen[char] = name


# Escape-aware Splitting
def split_escaped(text: str, separator: str, escape: str) -> List[str]:
    """
    Split text on a separator, leaving escape sequences intact.

    Anything between an escape character and the next escape character is
    copied verbatim, so a delimiter inside ``\\X..\\`` never splits. An
    escape character with no closing partner is treated as ordinary data.
    Joining the result with ``separator`` always reproduces ``text``.
    """
    if escape not in text:
        return text.split(separator)

    parts = []
    current_start = 0
    i = 0
    length = len(text)

    while i < length:
        char = text[i]
        if char == escape:
            closing = text.find(escape, i + 1)
            if closing != -1:
                i = closing + 1
                continue
        elif char == separator:
            parts.append(text[current_start:i])
            current_start = i + 1
        i += 1

    parts.append(text[current_start:])
    return parts


# HL7 Tokenizer Class
class HL7Tokenizer:
    """
    Breaks raw HL7 text into segment lines and raw field strings.

    The tokenizer is stateless; the delimiters used for field splitting
    are passed in explicitly so a single instance can serve many messages
    concurrently.
    """

    def normalize_line_endings(self, text: str) -> str:
        """Convert various line endings to simple newlines."""
        return text.replace("\r\n", "\n").replace("\r", "\n")

    def segment_lines(self, message_text: str) -> List[Tuple[int, str]]:
        """
        Split message text into non-blank segment lines.

        Returns:
            List of (1-based line number, line text) pairs
        """
        normalized = self.normalize_line_endings(message_text)
        lines = []
        for number, line in enumerate(normalized.split("\n"), 1):
            line = line.strip(FRAMING_CHARACTERS)
            if not line.strip():
                continue
            lines.append((number, line))
        return lines

    def split_fields(
        self, line: str, delimiters: Delimiters, line_number: int = None
    ) -> List[str]:
        """
        Split a segment line into raw field strings.

        Index ``i`` of the result is HL7 field ``i``: index 0 is the segment
        tag. For MSH, index 1 is the field separator and index 2 the
        encoding characters, so MSH-9 sits at index 9 like any other field.
        """
        if line.startswith(HEADER_SEGMENT + delimiters.field):
            return self._split_msh_fields(line, delimiters)

        fields = split_escaped(line, delimiters.field, delimiters.escape)
        self._check_segment_tag(fields[0], line_number)
        return fields

    def _split_msh_fields(self, line: str, delimiters: Delimiters) -> List[str]:
        """
        Split an MSH line.

        MSH-1 is the field separator itself and MSH-2 holds the escape
        character, so both are taken by position before any escape-aware
        splitting of the remainder.
        """
        sep = delimiters.field
        encoding_end = line.find(sep, 4)
        if encoding_end == -1:
            return [HEADER_SEGMENT, sep, line[4:]]

        rest = split_escaped(line[encoding_end + 1 :], sep, delimiters.escape)
        return [HEADER_SEGMENT, sep, line[4:encoding_end]] + rest

    def _check_segment_tag(self, tag: str, line_number: int = None) -> None:
        if (
            len(tag) != 3
            or not tag.isascii()
            or not tag[0].isupper()
            or not all(c.isupper() or c.isdigit() for c in tag[1:])
        ):
            raise InvalidMessageStructureError(
                f"invalid segment tag '{tag}'", segment=tag, line_number=line_number
            )


# HL7 Message Splitter
def split_hl7_messages(content: str) -> List[str]:
    """
    Split file content containing multiple HL7 messages.

    Messages are separated by MSH segments. Batch envelope segments
    (FHS, BHS, BTS, FTS) are dropped. Any other line before the first MSH
    stays with the first message so the parser reports it instead of the
    splitter discarding it silently.

    Args:
        content: File content potentially containing multiple messages

    Returns:
        List of individual message strings
    """
    tokenizer = HL7Tokenizer()
    messages = []
    current_message_lines = []

    for _, line in tokenizer.segment_lines(content):
        if line[:3] in BATCH_SEGMENTS:
            continue

        # New message starts with MSH
        if (
            line.startswith(HEADER_SEGMENT)
            and current_message_lines
            and current_message_lines[0].startswith(HEADER_SEGMENT)
        ):
            messages.append("\n".join(current_message_lines))
            current_message_lines = []

        current_message_lines.append(line)

    # Don't forget the last message
    if current_message_lines:
        messages.append("\n".join(current_message_lines))

    return messages
