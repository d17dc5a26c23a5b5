"""
Domain models for parsed HL7 messages.

A field value is one of three immutable variants:

- ``Text``: a scalar string, escape sequences kept verbatim
- ``Repeated``: the repetitions of a field (``~``)
- ``Composite``: components of a field or repetition (``^``), or the
  subcomponents of a component (``&``)

A level is only introduced when its separator occurs in the source text,
so a plain field stays a single ``Text``. Splitting and re-joining with
the same delimiters reproduces the original text exactly.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from .escaping import escape, unescape
from .exceptions import GenerationError, InvalidPathError
from .paths import FieldPath, parse_path
from .tokenizer import DEFAULT_DELIMITERS, HEADER_SEGMENT, Delimiters, split_escaped

# Nesting depths used while encoding
FIELD_LEVEL = 0
REPETITION_LEVEL = 1
COMPONENT_LEVEL = 2
SUBCOMPONENT_LEVEL = 3


@dataclass(frozen=True)
class Text:
    value: str = ""


@dataclass(frozen=True)
class Repeated:
    items: Tuple["Value", ...]


@dataclass(frozen=True)
class Composite:
    items: Tuple["Value", ...]


Value = Union[Text, Repeated, Composite]


# Decompose Raw Field Text
def decompose(text: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> Value:
    """
    Split raw field text into the nested value model.

    Repetitions are split first, then components, then subcomponents,
    each only when the separator is present outside escape sequences.
    """
    esc = delimiters.escape
    repetitions = split_escaped(text, delimiters.repetition, esc)
    if len(repetitions) > 1:
        return Repeated(tuple(_decompose_components(r, delimiters) for r in repetitions))
    return _decompose_components(text, delimiters)


def _decompose_components(text: str, delimiters: Delimiters) -> Value:
    components = split_escaped(text, delimiters.component, delimiters.escape)
    if len(components) > 1:
        return Composite(
            tuple(_decompose_subcomponents(c, delimiters) for c in components)
        )

    value = _decompose_subcomponents(text, delimiters)
    if isinstance(value, Composite):
        # Subcomponents without components: keep the component level so a
        # path like PID.3.1 still addresses the whole component.
        return Composite((value,))
    return value


def _decompose_subcomponents(text: str, delimiters: Delimiters) -> Value:
    subcomponents = split_escaped(text, delimiters.subcomponent, delimiters.escape)
    if len(subcomponents) > 1:
        return Composite(tuple(Text(s) for s in subcomponents))
    return Text(text)


# Encode Value to Raw Text
def encode_value(
    value: Value, delimiters: Delimiters = DEFAULT_DELIMITERS, level: int = FIELD_LEVEL
) -> str:
    """
    Join a value back into raw text. Inverse of ``decompose``.

    Raises:
        GenerationError: If the value nests deeper than HL7 allows or is
            not a value variant at all
    """
    if isinstance(value, Text):
        return value.value

    if isinstance(value, Repeated):
        if level != FIELD_LEVEL:
            raise GenerationError("repetitions are only allowed at field level")
        return delimiters.repetition.join(
            encode_value(item, delimiters, REPETITION_LEVEL) for item in value.items
        )

    if isinstance(value, Composite):
        if level in (FIELD_LEVEL, REPETITION_LEVEL):
            return delimiters.component.join(
                encode_value(item, delimiters, COMPONENT_LEVEL) for item in value.items
            )
        if level == COMPONENT_LEVEL:
            return delimiters.subcomponent.join(
                encode_value(item, delimiters, SUBCOMPONENT_LEVEL)
                for item in value.items
            )
        raise GenerationError("subcomponents cannot contain further structure")

    raise GenerationError(f"unsupported field value: {value!r}")


# Value to JSON-friendly Structure
def value_to_data(value: Value):
    """Text becomes a string, Composite a list, Repeated ``{"repeated": [...]}``."""
    if isinstance(value, Text):
        return value.value
    if isinstance(value, Repeated):
        return {"repeated": [value_to_data(item) for item in value.items]}
    return [value_to_data(item) for item in value.items]


# Segment Dataclass
@dataclass(frozen=True)
class Segment:
    """
    A parsed HL7 segment.

    ``fields[i]`` is HL7 field ``i``; ``fields[0]`` is the tag. For MSH,
    ``fields[1]`` is the field separator and ``fields[2]`` the encoding
    characters, both kept as plain ``Text``.
    """

    tag: str
    fields: Tuple[Value, ...]

    def get_field(self, index: int) -> Optional[Value]:
        """
        Safely retrieve a field by HL7 field number.

        Returns:
            The field value, or None if the segment has fewer fields
        """
        if index < 0 or index >= len(self.fields):
            return None
        return self.fields[index]

    @property
    def field_count(self) -> int:
        """Number of fields after the tag."""
        return len(self.fields) - 1


# Encode Segment to Raw Text
def encode_segment(segment: Segment, delimiters: Delimiters = DEFAULT_DELIMITERS) -> str:
    """Serialize one segment, handling the MSH field separator quirk."""
    sep = delimiters.field
    encoded = [encode_value(v, delimiters) for v in segment.fields]

    if segment.tag == HEADER_SEGMENT:
        # MSH-1 is the separator itself, written once between tag and MSH-2
        return segment.tag + sep + sep.join(encoded[2:])
    return sep.join(encoded)


# Message Dataclass
@dataclass(frozen=True)
class Message:
    """
    An ordered, immutable sequence of segments plus the delimiters they
    were parsed with.

    A tag -> positions index is built once at construction, so path
    lookups do not rescan the segment list. Edits return a new Message.
    """

    segments: Tuple[Segment, ...]
    delimiters: Delimiters = DEFAULT_DELIMITERS
    _index: Dict[str, List[int]] = field(
        init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self):
        index: Dict[str, List[int]] = {}
        for position, segment in enumerate(self.segments):
            index.setdefault(segment.tag, []).append(position)
        object.__setattr__(self, "_index", index)

    @property
    def header(self) -> Optional[Segment]:
        return self.segment(HEADER_SEGMENT)

    @property
    def segment_types(self) -> List[str]:
        """Distinct segment tags in order of first appearance."""
        return list(self._index)

    def count(self, tag: str) -> int:
        return len(self._index.get(tag, ()))

    def segment(self, tag: str, occurrence: int = 1) -> Optional[Segment]:
        """Return the n-th (1-based) segment with this tag, or None."""
        positions = self._index.get(tag, ())
        if occurrence < 1 or occurrence > len(positions):
            return None
        return self.segments[positions[occurrence - 1]]

    def resolve(self, path: Union[str, FieldPath]) -> Union[Segment, Value, None]:
        """
        Find the node a path points at.

        Returns:
            The Segment for a segment-only path, the Value for deeper
            paths, or None when any level is absent

        Raises:
            InvalidPathError: If the path is malformed
        """
        fp = parse_path(path) if isinstance(path, str) else path

        segment = self.segment(fp.segment, fp.occurrence)
        if segment is None or fp.field is None:
            return segment

        node = segment.get_field(fp.field)
        if node is None:
            return None

        if fp.repetition is not None:
            node = _nth_repetition(node, fp.repetition)
        elif fp.component is not None and isinstance(node, Repeated):
            node = node.items[0]
        if node is None or fp.component is None:
            return node

        node = _nth_item(node, fp.component)
        if node is None or fp.subcomponent is None:
            return node

        return _nth_item(node, fp.subcomponent)

    def value_at(self, path: Union[str, FieldPath]) -> Optional[str]:
        """
        Raw text of the node at ``path`` (escape sequences kept).

        Returns None when the path does not resolve, and "" for a field
        that is present but empty.
        """
        fp = parse_path(path) if isinstance(path, str) else path
        node = self.resolve(fp)
        if node is None:
            return None
        if isinstance(node, Segment):
            return encode_segment(node, self.delimiters)

        level = FIELD_LEVEL
        if fp.subcomponent is not None:
            level = SUBCOMPONENT_LEVEL
        elif fp.component is not None:
            level = COMPONENT_LEVEL
        elif fp.repetition is not None:
            level = REPETITION_LEVEL
        return encode_value(node, self.delimiters, level)

    def text_at(self, path: Union[str, FieldPath]) -> Optional[str]:
        """Like ``value_at`` but with escape sequences decoded."""
        raw = self.value_at(path)
        if raw is None:
            return None
        return unescape(raw, self.delimiters)

    def with_value(self, path: Union[str, FieldPath], text: str) -> "Message":
        """
        Return a copy of the message with the node at ``path`` replaced.

        ``text`` is literal: delimiter characters in it are escaped.
        Missing fields, repetitions, components and subcomponents are
        padded with empty values. A segment that does not exist yet is
        appended when ``path`` names the next occurrence of its tag.

        Raises:
            InvalidPathError: For segment-only paths, MSH-1/MSH-2, or a
                segment occurrence that would leave a gap
        """
        fp = parse_path(path) if isinstance(path, str) else path
        if fp.field is None:
            raise InvalidPathError(str(fp), "a field index is required")
        if fp.segment == HEADER_SEGMENT and fp.field in (1, 2):
            raise InvalidPathError(str(fp), "MSH-1 and MSH-2 define the delimiters")

        positions = self._index.get(fp.segment, [])
        segments = list(self.segments)
        if fp.occurrence <= len(positions):
            position = positions[fp.occurrence - 1]
            fields = list(segments[position].fields)
        elif fp.occurrence == len(positions) + 1:
            position = len(segments)
            fields = [Text(fp.segment)]
            segments.append(None)
        else:
            raise InvalidPathError(
                str(fp), f"message has only {len(positions)} {fp.segment} segment(s)"
            )

        while len(fields) <= fp.field:
            fields.append(Text(""))

        leaf = Text(escape(text, self.delimiters))
        fields[fp.field] = _replace_in_field(fields[fp.field], fp, leaf)
        segments[position] = Segment(tag=fp.segment, fields=tuple(fields))
        return Message(segments=tuple(segments), delimiters=self.delimiters)

    def to_dict(self) -> dict:
        return {
            "delimiters": self.delimiters.as_dict(),
            "segments": [
                {"tag": s.tag, "fields": [value_to_data(v) for v in s.fields]}
                for s in self.segments
            ],
        }


def _nth_repetition(value: Value, n: int) -> Optional[Value]:
    if isinstance(value, Repeated):
        return value.items[n - 1] if n <= len(value.items) else None
    return value if n == 1 else None


def _nth_item(value: Value, n: int) -> Optional[Value]:
    # A scalar answers position 1 with itself
    if isinstance(value, Composite):
        return value.items[n - 1] if n <= len(value.items) else None
    if isinstance(value, Text):
        return value if n == 1 else None
    return None


def _padded(items: List[Value], size: int) -> List[Value]:
    while len(items) < size:
        items.append(Text(""))
    return items


def _replace_in_field(current: Value, fp: FieldPath, leaf: Text) -> Value:
    if fp.repetition is None and fp.component is None:
        return leaf

    repetitions = list(current.items) if isinstance(current, Repeated) else [current]
    index = (fp.repetition or 1) - 1
    _padded(repetitions, index + 1)

    if fp.component is None:
        repetitions[index] = leaf
    else:
        repetitions[index] = _replace_component(
            repetitions[index], fp.component, fp.subcomponent, leaf
        )

    if len(repetitions) == 1:
        return repetitions[0]
    return Repeated(tuple(repetitions))


def _replace_component(
    current: Value, component: int, subcomponent: Optional[int], leaf: Text
) -> Value:
    components = list(current.items) if isinstance(current, Composite) else [current]
    _padded(components, component)

    if subcomponent is None:
        components[component - 1] = leaf
    else:
        target = components[component - 1]
        subs = list(target.items) if isinstance(target, Composite) else [target]
        _padded(subs, subcomponent)
        subs[subcomponent - 1] = leaf
        components[component - 1] = subs[0] if len(subs) == 1 else Composite(tuple(subs))

    if len(components) == 1 and not isinstance(components[0], Composite):
        return components[0]
    return Composite(tuple(components))


# Message Metadata
@dataclass(frozen=True)
class Metadata:
    """Message-level summary derived from the MSH segment."""

    message_type: Optional[str] = None
    message_code: Optional[str] = None
    trigger_event: Optional[str] = None
    message_structure: Optional[str] = None
    version_id: Optional[str] = None
    sending_application: Optional[str] = None
    sending_facility: Optional[str] = None
    receiving_application: Optional[str] = None
    receiving_facility: Optional[str] = None
    control_id: Optional[str] = None
    processing_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to dictionary, excluding None values for cleaner output."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            result[key] = value.isoformat() if isinstance(value, datetime) else value
        return result


# Parse Result Container
@dataclass
class ParseResult:
    """
    Container for parsing results, including any warnings or issues
    encountered during parsing that didn't prevent it.
    """

    message: Message
    metadata: Metadata
    warnings: list = field(default_factory=list)
    source_message_index: int = 0

    def to_dict(self) -> dict:
        result = {
            "metadata": self.metadata.to_dict(),
            "message_index": self.source_message_index,
        }
        if self.warnings:
            result["warnings"] = self.warnings
        return result
