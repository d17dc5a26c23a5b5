"""
Schema validation of parsed HL7 messages.

Walks every segment of a message against a ``Schema`` and reports
findings as data. Nothing here raises for an invalid message; the
caller receives a ``Findings`` object and decides what to do with it.
"""

import re
from typing import Callable, Dict, Iterable, Optional

import structlog

from .escaping import unescape
from .issues import Findings, Severity, ValidationIssue
from .models import (
    REPETITION_LEVEL,
    Composite,
    Message,
    Repeated,
    Segment,
    Text,
    Value,
    encode_value,
)
from .schema import HL7_V25_SCHEMA, FieldDefinition, Schema, SegmentDefinition
from .timestamps import is_hl7_date, is_hl7_datetime

logger = structlog.get_logger(__name__)

NUMERIC_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")
SEQUENCE_ID_PATTERN = re.compile(r"^\d+$")
TIME_PATTERN = re.compile(r"^\d{2}(\d{2}(\d{2}(\.\d{1,4})?)?)?([+-]\d{4})?$")
CODED_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")
MESSAGE_CODE_PATTERN = re.compile(r"^[A-Z0-9]{3}$")
CONTROL_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


# Data type shape checks, applied to the first component of each repetition
DATA_TYPE_CHECKS: Dict[str, Callable[[str], bool]] = {
    "NM": lambda v: bool(NUMERIC_PATTERN.match(v)),
    "SI": lambda v: bool(SEQUENCE_ID_PATTERN.match(v)),
    "DT": is_hl7_date,
    "DTM": is_hl7_datetime,
    "TS": is_hl7_datetime,
    "TM": lambda v: bool(TIME_PATTERN.match(v)),
    "ID": lambda v: bool(CODED_PATTERN.match(v)),
    "IS": lambda v: bool(CODED_PATTERN.match(v)),
    "PT": lambda v: bool(CODED_PATTERN.match(v)),
    "MSG": lambda v: bool(MESSAGE_CODE_PATTERN.match(v)),
}


# Schema Validator Class
class SchemaValidator:
    """
    Validates messages against a static schema.

    The schema is read-only, so one validator can be shared by any
    number of concurrent callers.

    Usage:
        validator = SchemaValidator()
        findings = validator.validate(result.message)
        for issue in findings.errors:
            print(issue.segment, issue.field, issue.message)
    """

    def __init__(self, schema: Schema = HL7_V25_SCHEMA, content_checks: bool = True):
        self.schema = schema
        self.content_checks = content_checks

    def validate(self, message: Message) -> Findings:
        """
        Validate a message.

        Args:
            message: Parsed message

        Returns:
            Findings bucketed into errors, warnings and info
        """
        findings = Findings()
        self._check_structure(message, findings)

        reported_unknown = set()
        occurrences = {}
        for segment in message.segments:
            occurrence = occurrences[segment.tag] = occurrences.get(segment.tag, 0) + 1
            definition = self.schema.definition(segment.tag)
            if definition is None:
                if segment.tag not in reported_unknown:
                    reported_unknown.add(segment.tag)
                    findings.add(
                        _issue(
                            segment.tag,
                            0,
                            f"Unknown segment type '{segment.tag}' for schema "
                            f"{self.schema.name}",
                            Severity.WARNING,
                        )
                    )
                continue
            self._check_segment(segment, occurrence, definition, message, findings)

        if self.content_checks:
            self._check_content(message, findings)

        logger.debug(
            "Schema validation complete",
            schema=self.schema.name,
            errors=len(findings.errors),
            warnings=len(findings.warnings),
            info=len(findings.info),
        )
        return findings

    def _check_structure(self, message: Message, findings: Findings) -> None:
        for tag in self.schema.required_segments:
            if message.count(tag) == 0:
                findings.add(
                    _issue(tag, 0, f"Required segment {tag} is missing", Severity.ERROR)
                )

        for tag, (minimum, maximum) in self.schema.cardinality.items():
            count = message.count(tag)
            if count < minimum and tag not in self.schema.required_segments:
                findings.add(
                    _issue(
                        tag,
                        0,
                        f"Segment {tag} must appear at least {minimum} time(s), "
                        f"found {count}",
                        Severity.ERROR,
                    )
                )
            if maximum is not None and count > maximum:
                findings.add(
                    _issue(
                        tag,
                        0,
                        f"Segment {tag} may appear at most {maximum} time(s), "
                        f"found {count}",
                        Severity.ERROR,
                    )
                )

    def _check_segment(
        self,
        segment: Segment,
        occurrence: int,
        definition: SegmentDefinition,
        message: Message,
        findings: Findings,
    ) -> None:
        for field_def in definition.fields:
            value = segment.get_field(field_def.position)
            label = f"{segment.tag}-{field_def.position} ({field_def.name})"

            if value is None or _is_blank(value):
                if field_def.required:
                    findings.add(
                        _issue(
                            segment.tag,
                            field_def.position,
                            f"Required field {label} is missing",
                            Severity.ERROR,
                            occurrence,
                        )
                    )
                elif field_def.recommended:
                    findings.add(
                        _issue(
                            segment.tag,
                            field_def.position,
                            f"Recommended field {label} is empty",
                            field_def.recommended_severity,
                            occurrence,
                        )
                    )
                continue

            repetitions = value.items if isinstance(value, Repeated) else (value,)
            if field_def.max_repeats is not None and len(repetitions) > field_def.max_repeats:
                findings.add(
                    _issue(
                        segment.tag,
                        field_def.position,
                        f"Field {label} repeats {len(repetitions)} times, "
                        f"at most {field_def.max_repeats} allowed",
                        Severity.WARNING,
                        occurrence,
                    )
                )

            for repetition in repetitions:
                self._check_repetition(
                    segment.tag, occurrence, field_def, label, repetition, message, findings
                )

    def _check_repetition(
        self,
        tag: str,
        occurrence: int,
        field_def: FieldDefinition,
        label: str,
        repetition: Value,
        message: Message,
        findings: Findings,
    ) -> None:
        raw = encode_value(repetition, message.delimiters, REPETITION_LEVEL)
        if not raw:
            return

        if field_def.max_length is not None and len(raw) > field_def.max_length:
            findings.add(
                _issue(
                    tag,
                    field_def.position,
                    f"Field {label} is {len(raw)} characters long, "
                    f"maximum is {field_def.max_length}",
                    Severity.WARNING,
                    occurrence,
                )
            )

        first = unescape(_first_component(repetition), message.delimiters)
        if not first:
            return

        check = DATA_TYPE_CHECKS.get(field_def.data_type)
        if check is not None and not check(first):
            findings.add(
                _issue(
                    tag,
                    field_def.position,
                    f"Field {label} value '{first}' is not a valid {field_def.data_type}",
                    Severity.WARNING,
                    occurrence,
                )
            )

        if field_def.value_set and first not in field_def.value_set:
            findings.add(
                _issue(
                    tag,
                    field_def.position,
                    f"Field {label} value '{first}' is not one of "
                    f"{', '.join(field_def.value_set)}",
                    Severity.ERROR if field_def.closed else Severity.WARNING,
                    occurrence,
                )
            )

    def _check_content(self, message: Message, findings: Findings) -> None:
        """Semantic checks that go beyond data type shapes."""
        if message.header is not None:
            control_id = message.text_at("MSH.10")
            if control_id and not CONTROL_ID_PATTERN.fullmatch(control_id):
                findings.add(
                    _issue(
                        "MSH",
                        10,
                        "Message control ID should be alphanumeric",
                        Severity.WARNING,
                    )
                )

            message_type = message.value_at("MSH.9")
            if message_type and message.delimiters.component not in message_type:
                findings.add(
                    _issue(
                        "MSH",
                        9,
                        "Message type should be in format TYPE^TRIGGER (e.g. ADT^A01)",
                        Severity.WARNING,
                    )
                )

        for occurrence in range(1, message.count("PID") + 1):
            patient_id = message.text_at(f"PID[{occurrence}].3[1].1")
            if patient_id and len(patient_id) < 3:
                findings.add(
                    _issue(
                        "PID",
                        3,
                        f"Patient ID '{patient_id}' seems too short",
                        Severity.WARNING,
                        occurrence,
                    )
                )


def _issue(
    segment: str, field: int, message: str, severity: Severity, occurrence: int = 1
) -> ValidationIssue:
    return ValidationIssue(
        segment=segment, field=field, message=message, severity=severity, occurrence=occurrence
    )


def _leaves(value: Value) -> Iterable[str]:
    if isinstance(value, Text):
        yield value.value
    else:
        for item in value.items:
            yield from _leaves(item)


def _is_blank(value: Value) -> bool:
    """True when every leaf is empty, e.g. ``""`` or ``^^``."""
    return not any(_leaves(value))


def _first_component(value: Value) -> str:
    while isinstance(value, Composite):
        if not value.items:
            return ""
        value = value.items[0]
    return value.value if isinstance(value, Text) else ""


# Convenience function
def validate_schema(message: Message, schema: Optional[Schema] = None) -> Findings:
    """Validate a message against ``schema`` (HL7 v2.5 by default)."""
    return SchemaValidator(schema or HL7_V25_SCHEMA).validate(message)
