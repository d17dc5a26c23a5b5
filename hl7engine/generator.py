"""
HL7 message generation.

The inverse of the parser: serializes a ``Message`` (or a plain segment
tree such as the output of ``Message.to_dict``) back to pipe-delimited
text. Escape sequences are written through unchanged; the generator never
re-escapes.
"""

from typing import Iterable, List, Mapping, Union

import structlog

from .exceptions import GenerationError
from .models import (
    COMPONENT_LEVEL,
    FIELD_LEVEL,
    REPETITION_LEVEL,
    SUBCOMPONENT_LEVEL,
    Composite,
    Message,
    Repeated,
    Segment,
    Text,
    Value,
    decompose,
    encode_segment,
)
from .tokenizer import HEADER_SEGMENT, Delimiters

logger = structlog.get_logger(__name__)

SEGMENT_SEPARATOR = "\n"


# HL7 Generator Class
class HL7Generator:
    """
    Serializes messages using the delimiters carried on the message
    itself, so a message parsed with custom delimiters is written back
    with the same ones.
    """

    def __init__(self, segment_separator: str = SEGMENT_SEPARATOR):
        self.segment_separator = segment_separator

    def generate(self, message: Union[Message, Mapping, Iterable]) -> str:
        """
        Generate HL7 text.

        Args:
            message: A Message, or a segment tree accepted by
                ``build_message``

        Returns:
            Segments joined by the segment separator

        Raises:
            GenerationError: If the input cannot be serialized
        """
        if not isinstance(message, Message):
            message = build_message(message)

        lines = [encode_segment(s, message.delimiters) for s in message.segments]
        logger.debug("Generated message", segments=len(lines))
        return self.segment_separator.join(lines)


# Build Message from Segment Tree
def build_message(tree) -> Message:
    """
    Convert a plain segment tree into a Message.

    Accepted shapes:
    - ``{"delimiters": {...}, "segments": [{"tag": "PID", "fields": [...]}, ...]}``
    - ``{"segments": [[...fields...], ...]}`` or a bare list of field lists
    - ``{"PID": [...fields...], ...}``, one segment per tag

    Field lists follow the engine's numbering (index 0 is the tag; for
    MSH index 1 is the field separator and index 2 the encoding
    characters). A field value may be raw text, a ``Value``, a list
    (components, or subcomponents inside a component) or
    ``{"repeated": [...]}``.

    Raises:
        GenerationError: If the tree does not have one of these shapes
    """
    if isinstance(tree, (str, bytes)):
        raise GenerationError("expected a segment tree, got text")

    explicit_delimiters = None
    if isinstance(tree, Mapping):
        if "segments" in tree:
            explicit_delimiters = tree.get("delimiters")
            raw_segments = tree["segments"]
            if isinstance(raw_segments, Mapping):
                raw_segments = list(raw_segments.values())
        else:
            raw_segments = list(tree.values())
    else:
        raw_segments = tree

    try:
        segment_fields = [_segment_fields(s) for s in raw_segments]
    except TypeError as e:
        raise GenerationError(f"invalid segment tree: {e}") from e

    if not segment_fields:
        raise GenerationError("segment tree contains no segments")

    delimiters = _tree_delimiters(segment_fields, explicit_delimiters)
    segments = tuple(_build_segment(fields, delimiters) for fields in segment_fields)
    return Message(segments=segments, delimiters=delimiters)


def _segment_fields(raw) -> List:
    if isinstance(raw, Segment):
        return list(raw.fields)
    if isinstance(raw, Mapping):
        fields = list(raw.get("fields") or [])
        tag = raw.get("tag")
        if tag and (not fields or _as_text(fields[0]) != tag):
            fields.insert(0, tag)
        return fields
    if isinstance(raw, (str, bytes)):
        raise GenerationError("segments must be field lists, not raw text")
    return list(raw)


def _as_text(value) -> str:
    if isinstance(value, Text):
        return value.value
    if isinstance(value, str):
        return value
    raise GenerationError(f"expected text, got {type(value).__name__}")


def _tree_delimiters(segment_fields: List[List], explicit) -> Delimiters:
    if explicit:
        try:
            return Delimiters(**dict(explicit))
        except TypeError as e:
            raise GenerationError(f"invalid delimiters: {e}") from e

    for fields in segment_fields:
        if fields and _as_text(fields[0]) == HEADER_SEGMENT and len(fields) > 2:
            field_sep = _as_text(fields[1])
            encoding = _as_text(fields[2])
            if len(field_sep) != 1 or len(encoding) < 4:
                raise GenerationError(
                    f"MSH-1/MSH-2 do not define delimiters: {field_sep!r} {encoding!r}"
                )
            return Delimiters(field_sep, encoding[0], encoding[1], encoding[2], encoding[3])

    return Delimiters()


def _build_segment(fields: List, delimiters: Delimiters) -> Segment:
    if not fields:
        raise GenerationError("segment has no tag")

    tag = _as_text(fields[0])
    if tag == HEADER_SEGMENT:
        head = [Text(tag)] + [Text(_as_text(f)) for f in fields[1:3]]
        rest = fields[3:]
    else:
        head = [Text(tag)]
        rest = fields[1:]

    values = head + [_to_value(f, delimiters, FIELD_LEVEL) for f in rest]
    return Segment(tag=tag, fields=tuple(values))


def _to_value(raw, delimiters: Delimiters, level: int) -> Value:
    if isinstance(raw, (Text, Repeated, Composite)):
        return raw
    if raw is None:
        return Text("")
    if isinstance(raw, str):
        if level == FIELD_LEVEL:
            return decompose(raw, delimiters)
        return Text(raw)
    if isinstance(raw, Mapping) and "repeated" in raw:
        if level != FIELD_LEVEL:
            raise GenerationError("repetitions are only allowed at field level")
        return Repeated(
            tuple(_to_value(item, delimiters, REPETITION_LEVEL) for item in raw["repeated"])
        )
    if isinstance(raw, (list, tuple)):
        if level == SUBCOMPONENT_LEVEL:
            raise GenerationError("subcomponents cannot contain further structure")
        inner = SUBCOMPONENT_LEVEL if level == COMPONENT_LEVEL else COMPONENT_LEVEL
        return Composite(tuple(_to_value(item, delimiters, inner) for item in raw))
    if isinstance(raw, (int, float)):
        return Text(str(raw))
    raise GenerationError(f"unsupported field value: {raw!r}")


# Convenience function
def generate_message(message: Union[Message, Mapping, Iterable]) -> str:
    """Serialize a Message or segment tree to HL7 text."""
    return HL7Generator().generate(message)
