"""
Static HL7 schema tables.

A schema describes, per segment type, which fields exist, their data
types, whether they are required, how often they may repeat and which
coded values they accept. Schemas are immutable and loaded once; any
number of validations may share one instance.

Two schemas ship with the engine: ``HL7_V25_SCHEMA`` (a practical subset
of HL7 v2.5) and ``UK_ITK_SCHEMA`` (the NHS Interoperability Toolkit
profile layered on top of it). Others can be loaded from documents with
``Schema.from_dict``.
"""

import re
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .issues import Severity

# (min, max) occurrences of a segment; max None means unbounded
Cardinality = Tuple[int, Optional[int]]

CARDINALITY_PATTERN = re.compile(r"^\[?\s*(\d+)\s*\.\.\s*(\d+|\*)\s*\]?$")


# Field Definition
@dataclass(frozen=True)
class FieldDefinition:
    position: int
    name: str
    data_type: str = "ST"
    required: bool = False
    recommended: bool = False
    max_length: Optional[int] = None
    max_repeats: Optional[int] = None
    value_set: Tuple[str, ...] = ()
    closed: bool = False
    description: str = ""
    # Severity reported when a recommended field is empty
    recommended_severity: Severity = Severity.INFO

    @classmethod
    def from_dict(cls, data: Mapping) -> "FieldDefinition":
        return cls(
            position=int(data["position"]),
            name=data.get("name", f"Field {data['position']}"),
            data_type=data.get("dataType", "ST"),
            required=bool(data.get("required", False)),
            recommended=bool(data.get("recommended", False)),
            max_length=data.get("maxLength"),
            max_repeats=data.get("maxRepeats"),
            value_set=tuple(data.get("valueSet") or ()),
            closed=bool(data.get("closed", False)),
            description=data.get("description", ""),
            recommended_severity=Severity(data.get("recommendedSeverity", Severity.INFO)),
        )


# Segment Definition
@dataclass(frozen=True)
class SegmentDefinition:
    name: str
    fields: Tuple[FieldDefinition, ...] = ()
    description: str = ""

    @classmethod
    def from_dict(cls, data: Mapping) -> "SegmentDefinition":
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            fields=tuple(FieldDefinition.from_dict(f) for f in data.get("fields", ())),
        )


# Schema
@dataclass(frozen=True)
class Schema:
    """A versioned, read-only set of segment definitions."""

    name: str
    version: str
    segments: Mapping[str, SegmentDefinition]
    required_segments: Tuple[str, ...] = ("MSH",)
    cardinality: Mapping[str, Cardinality] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "segments", MappingProxyType(dict(self.segments)))
        object.__setattr__(self, "cardinality", MappingProxyType(dict(self.cardinality)))

    def definition(self, segment_type: str) -> Optional[SegmentDefinition]:
        return self.segments.get(segment_type)

    def extended(self, name: str, version: str = None, **changes) -> "Schema":
        """
        Derive a profile from this schema.

        ``segments`` and ``cardinality`` passed here are merged over the
        base tables; other keyword arguments replace attributes outright.
        """
        segments = dict(self.segments)
        segments.update(changes.pop("segments", {}))
        cardinality = dict(self.cardinality)
        cardinality.update(changes.pop("cardinality", {}))
        return replace(
            self,
            name=name,
            version=version or self.version,
            segments=segments,
            cardinality=cardinality,
            **changes,
        )

    @classmethod
    def from_dict(cls, data: Mapping) -> "Schema":
        """
        Load a schema document.

        Expected shape::

            {
              "name": "LOCAL", "version": "2.5",
              "segments": {"PID": {"name": "...", "fields": [{"position": 3, ...}]}},
              "requiredSegments": ["MSH", "PID"],
              "segmentCardinality": {"PID": "[1..1]"}
            }

        Raises:
            ValueError: If a cardinality string cannot be parsed
        """
        segments = {
            tag: SegmentDefinition.from_dict(definition)
            for tag, definition in (data.get("segments") or {}).items()
        }
        cardinality = {
            tag: parse_cardinality(text)
            for tag, text in (data.get("segmentCardinality") or {}).items()
        }
        return cls(
            name=data.get("name", "custom"),
            version=str(data.get("version", "2.5")),
            segments=segments,
            required_segments=tuple(data.get("requiredSegments") or ("MSH",)),
            cardinality=cardinality,
        )


def parse_cardinality(text: str) -> Cardinality:
    """Parse ``[1..1]`` / ``0..*`` notation."""
    match = CARDINALITY_PATTERN.match(str(text).strip())
    if not match:
        raise ValueError(f"Invalid cardinality '{text}', expected e.g. [0..1]")
    upper = None if match.group(2) == "*" else int(match.group(2))
    return int(match.group(1)), upper


def _f(position: int, name: str, data_type: str = "ST", **kwargs) -> FieldDefinition:
    return FieldDefinition(position=position, name=name, data_type=data_type, **kwargs)


# HL7 tables used below
PROCESSING_IDS = ("D", "P", "T")
ACK_TYPES = ("AL", "NE", "ER", "SU")
ACK_CODES = ("AA", "AE", "AR", "CA", "CE", "CR")
HL7_VERSIONS = (
    "2.1", "2.2", "2.3", "2.3.1", "2.4", "2.5", "2.5.1",
    "2.6", "2.7", "2.7.1", "2.8", "2.8.1", "2.8.2", "2.9",
)
ADMINISTRATIVE_SEX = ("A", "F", "M", "N", "O", "U")
PATIENT_CLASSES = ("B", "C", "E", "I", "N", "O", "P", "R", "U")
OBSERVATION_STATUS = ("C", "D", "F", "I", "N", "O", "P", "R", "S", "U", "W", "X")
VALUE_TYPES = (
    "AD", "CE", "CF", "CK", "CN", "CP", "CWE", "CX", "DT", "DTM", "ED", "FT",
    "ID", "MO", "NM", "PN", "RP", "SN", "ST", "TM", "TN", "TS", "TX", "XAD",
    "XCN", "XON", "XPN", "XTN",
)
ORDER_CONTROL = (
    "CA", "CH", "CN", "CR", "DC", "DE", "HD", "NW", "OC", "OD", "OK", "PA",
    "RE", "RF", "RO", "RP", "RQ", "RU", "SC", "SN", "SS", "UA", "XO", "XX",
)


_V25_SEGMENTS: Dict[str, SegmentDefinition] = {
    "MSH": SegmentDefinition(
        name="Message Header",
        description="Contains information about the message",
        fields=(
            _f(1, "Field Separator", "ST", required=True, max_length=1),
            _f(2, "Encoding Characters", "ST", required=True, max_length=4),
            _f(3, "Sending Application", "HD", recommended=True, max_length=227),
            _f(4, "Sending Facility", "HD", recommended=True, max_length=227),
            _f(5, "Receiving Application", "HD", recommended=True, max_length=227),
            _f(6, "Receiving Facility", "HD", recommended=True, max_length=227),
            _f(7, "Date/Time of Message", "TS", recommended=True, max_length=26),
            _f(9, "Message Type", "MSG", required=True, max_length=15, max_repeats=1),
            _f(10, "Message Control ID", "ST", required=True, max_length=20, max_repeats=1),
            _f(11, "Processing ID", "PT", required=True, max_length=3,
               value_set=PROCESSING_IDS, closed=True),
            _f(12, "Version ID", "VID", required=True, max_length=60,
               value_set=HL7_VERSIONS),
            _f(13, "Sequence Number", "NM", max_length=15),
            _f(15, "Accept Acknowledgment Type", "ID", max_length=2,
               value_set=ACK_TYPES, closed=True),
            _f(16, "Application Acknowledgment Type", "ID", max_length=2,
               value_set=ACK_TYPES, closed=True),
        ),
    ),
    "EVN": SegmentDefinition(
        name="Event Type",
        description="Communicates trigger event information",
        fields=(
            _f(1, "Event Type Code", "ID", max_length=3),
            _f(2, "Recorded Date/Time", "TS", required=True, max_length=26),
            _f(3, "Date/Time Planned Event", "TS", max_length=26),
            _f(6, "Event Occurred", "TS", max_length=26),
        ),
    ),
    "PID": SegmentDefinition(
        name="Patient Identification",
        description="Contains patient demographic information",
        fields=(
            _f(1, "Set ID", "SI", max_length=4, max_repeats=1),
            _f(3, "Patient Identifier List", "CX", required=True, max_length=250),
            _f(5, "Patient Name", "XPN", required=True, max_length=250),
            _f(7, "Date/Time of Birth", "TS", max_length=26, max_repeats=1),
            _f(8, "Administrative Sex", "IS", max_length=1, max_repeats=1,
               value_set=ADMINISTRATIVE_SEX),
            _f(11, "Patient Address", "XAD", max_length=250),
            _f(13, "Phone Number - Home", "XTN", max_length=250),
            _f(18, "Patient Account Number", "CX", max_length=250, max_repeats=1),
            _f(29, "Patient Death Date and Time", "TS", max_length=26),
        ),
    ),
    "NK1": SegmentDefinition(
        name="Next of Kin / Associated Parties",
        fields=(
            _f(1, "Set ID", "SI", required=True, max_length=4),
            _f(2, "Name", "XPN", max_length=250),
            _f(3, "Relationship", "CE", max_length=250),
        ),
    ),
    "PV1": SegmentDefinition(
        name="Patient Visit",
        description="Contains visit-specific information",
        fields=(
            _f(1, "Set ID", "SI", max_length=4),
            _f(2, "Patient Class", "IS", required=True, max_length=1,
               value_set=PATIENT_CLASSES),
            _f(3, "Assigned Patient Location", "PL", max_length=80),
            _f(7, "Attending Doctor", "XCN", max_length=250),
            _f(19, "Visit Number", "CX", max_length=250),
            _f(44, "Admit Date/Time", "TS", max_length=26),
            _f(45, "Discharge Date/Time", "TS", max_length=26),
        ),
    ),
    "ORC": SegmentDefinition(
        name="Common Order",
        fields=(
            _f(1, "Order Control", "ID", required=True, max_length=2,
               value_set=ORDER_CONTROL),
            _f(2, "Placer Order Number", "EI", max_length=22),
            _f(3, "Filler Order Number", "EI", max_length=22),
            _f(9, "Date/Time of Transaction", "TS", max_length=26),
        ),
    ),
    "OBR": SegmentDefinition(
        name="Observation Request",
        fields=(
            _f(1, "Set ID", "SI", max_length=4),
            _f(2, "Placer Order Number", "EI", max_length=22),
            _f(3, "Filler Order Number", "EI", max_length=22),
            _f(4, "Universal Service Identifier", "CE", required=True, max_length=250),
            _f(7, "Observation Date/Time", "TS", max_length=26),
            _f(22, "Results Rpt/Status Chng - Date/Time", "TS", max_length=26),
        ),
    ),
    "OBX": SegmentDefinition(
        name="Observation/Result",
        fields=(
            _f(1, "Set ID", "SI", max_length=4),
            _f(2, "Value Type", "ID", max_length=3, value_set=VALUE_TYPES),
            _f(3, "Observation Identifier", "CE", required=True, max_length=250),
            _f(5, "Observation Value", "VARIES", max_length=99999),
            _f(6, "Units", "CE", max_length=250),
            _f(11, "Observation Result Status", "ID", required=True, max_length=1,
               value_set=OBSERVATION_STATUS, closed=True),
            _f(14, "Date/Time of the Observation", "TS", max_length=26),
        ),
    ),
    "NTE": SegmentDefinition(
        name="Notes and Comments",
        fields=(
            _f(1, "Set ID", "SI", max_length=4),
            _f(3, "Comment", "FT", max_length=65536),
        ),
    ),
    "AL1": SegmentDefinition(
        name="Patient Allergy Information",
        fields=(
            _f(1, "Set ID", "SI", required=True, max_length=4),
            _f(3, "Allergen Code", "CE", required=True, max_length=250),
        ),
    ),
    "DG1": SegmentDefinition(
        name="Diagnosis",
        fields=(
            _f(1, "Set ID", "SI", required=True, max_length=4),
            _f(3, "Diagnosis Code", "CE", max_length=250),
            _f(5, "Diagnosis Date/Time", "TS", max_length=26),
            _f(6, "Diagnosis Type", "IS", required=True, max_length=2),
        ),
    ),
    "MSA": SegmentDefinition(
        name="Message Acknowledgment",
        fields=(
            _f(1, "Acknowledgment Code", "ID", required=True, max_length=2,
               value_set=ACK_CODES, closed=True),
            _f(2, "Message Control ID", "ST", required=True, max_length=20),
        ),
    ),
}

# Standard segments recognised without field-level rules
for _tag, _name in (
    ("PD1", "Patient Additional Demographic"),
    ("PV2", "Patient Visit - Additional Information"),
    ("ROL", "Role"),
    ("IN1", "Insurance"),
    ("IN2", "Insurance Additional Information"),
    ("GT1", "Guarantor"),
    ("MRG", "Merge Patient Information"),
    ("ERR", "Error"),
    ("QAK", "Query Acknowledgment"),
    ("QPD", "Query Parameter Definition"),
    ("RCP", "Response Control Parameter"),
    ("SCH", "Scheduling Activity Information"),
    ("RGS", "Resource Group"),
    ("AIS", "Appointment Information"),
    ("AIG", "Appointment Information - General Resource"),
    ("AIL", "Appointment Information - Location Resource"),
    ("AIP", "Appointment Information - Personnel Resource"),
    ("TQ1", "Timing/Quantity"),
    ("SPM", "Specimen"),
    ("TXA", "Transcription Document Header"),
    ("FT1", "Financial Transaction"),
    ("PR1", "Procedures"),
    ("ACC", "Accident"),
    ("UB1", "UB82"),
    ("DB1", "Disability"),
    ("RXA", "Pharmacy/Treatment Administration"),
    ("RXE", "Pharmacy/Treatment Encoded Order"),
    ("RXO", "Pharmacy/Treatment Order"),
    ("RXR", "Pharmacy/Treatment Route"),
):
    _V25_SEGMENTS[_tag] = SegmentDefinition(name=_name)


HL7_V25_SCHEMA = Schema(
    name="HL7_V25",
    version="2.5",
    segments=_V25_SEGMENTS,
    required_segments=("MSH",),
    cardinality={"MSH": (1, 1)},
)


UK_ITK_SCHEMA = HL7_V25_SCHEMA.extended(
    name="UK_ITK",
    version="2.4",
    required_segments=("MSH", "EVN"),
    cardinality={"EVN": (1, 1), "QAK": (0, 1)},
    segments={
        "ZU1": SegmentDefinition(
            name="Additional PV info",
            description="UK ITK Z-segment",
            fields=(
                _f(1, "Additional PV info", "ST", recommended=True,
                   recommended_severity=Severity.WARNING),
                _f(2, "Field 2", "ST"),
                _f(3, "Field 3", "ST"),
            ),
        ),
        "ZU3": SegmentDefinition(
            name="Attendance Details",
            description="UK ITK Z-segment",
            fields=(
                _f(1, "Attendance Details", "ST", recommended=True,
                   recommended_severity=Severity.WARNING),
                _f(2, "Field 2", "ST"),
            ),
        ),
    },
)


SCHEMAS = MappingProxyType({"v25": HL7_V25_SCHEMA, "uk_itk": UK_ITK_SCHEMA})
