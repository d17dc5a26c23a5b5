"""
Dotted path addressing for parsed HL7 messages.

A path names one node of the parsed tree::

    PID             the first PID segment
    OBX[2].5        field 5 of the second OBX segment
    PID.3[2].1      component 1 of the second repetition of PID-3
    PID.5.1.2       subcomponent 2 of component 1 of PID-5

All indices are 1-based and follow the field numbering described in
``tokenizer.HL7Tokenizer.split_fields``, so ``MSH.9`` is the message type.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from .exceptions import InvalidPathError

SEGMENT_PATTERN = re.compile(r"^([A-Z][A-Z0-9]{2})(?:\[(\d+)\])?$")
FIELD_PATTERN = re.compile(r"^(\d+)(?:\[(\d+)\])?$")
INDEX_PATTERN = re.compile(r"^\d+$")


# Field Path Dataclass
@dataclass(frozen=True)
class FieldPath:
    """A parsed path. Unset levels are ``None``."""

    segment: str
    occurrence: int = 1
    field: Optional[int] = None
    repetition: Optional[int] = None
    component: Optional[int] = None
    subcomponent: Optional[int] = None

    def __str__(self) -> str:
        text = self.segment
        if self.occurrence != 1:
            text += f"[{self.occurrence}]"
        if self.field is None:
            return text
        text += f".{self.field}"
        if self.repetition is not None:
            text += f"[{self.repetition}]"
        if self.component is not None:
            text += f".{self.component}"
        if self.subcomponent is not None:
            text += f".{self.subcomponent}"
        return text


# Parse Path
@lru_cache(maxsize=1024)
def parse_path(path: str) -> FieldPath:
    """
    Parse a dotted path string.

    Results are cached, so evaluating the same rule against many
    messages parses its path once.

    Raises:
        InvalidPathError: If the path does not follow the grammar
    """
    if not isinstance(path, str) or not path.strip():
        raise InvalidPathError(str(path), "path is empty")

    parts = path.strip().split(".")
    if len(parts) > 4:
        raise InvalidPathError(path, "too many levels (max SEG.field.component.sub)")

    segment_match = SEGMENT_PATTERN.match(parts[0])
    if not segment_match:
        raise InvalidPathError(path, f"'{parts[0]}' is not a segment tag")

    segment = segment_match.group(1)
    occurrence = _positive(path, segment_match.group(2), default=1)

    if len(parts) == 1:
        return FieldPath(segment=segment, occurrence=occurrence)

    field_match = FIELD_PATTERN.match(parts[1])
    if not field_match:
        raise InvalidPathError(path, f"'{parts[1]}' is not a field index")

    field_index = _positive(path, field_match.group(1))
    repetition = _positive(path, field_match.group(2))

    component = None
    subcomponent = None
    if len(parts) > 2:
        component = _index(path, parts[2])
    if len(parts) > 3:
        subcomponent = _index(path, parts[3])

    return FieldPath(
        segment=segment,
        occurrence=occurrence,
        field=field_index,
        repetition=repetition,
        component=component,
        subcomponent=subcomponent,
    )


def _index(path: str, part: str) -> int:
    if not INDEX_PATTERN.match(part):
        raise InvalidPathError(path, f"'{part}' is not a numeric index")
    return _positive(path, part)


def _positive(path: str, digits: Optional[str], default: Optional[int] = None):
    if digits is None:
        return default
    value = int(digits)
    if value < 1:
        raise InvalidPathError(path, "indices are 1-based")
    return value
