"""
Validation findings.

Findings are plain immutable records. Validators return them; they are
never raised.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueSource(str, Enum):
    SCHEMA = "schema"
    CUSTOM = "custom"


# Validation Issue
@dataclass(frozen=True)
class ValidationIssue:
    """
    One finding about a message.

    ``field`` is the HL7 field number, 0 when the finding concerns the
    segment as a whole. ``occurrence`` is the 1-based position of the
    segment among those with the same tag.
    """

    segment: str
    field: int
    message: str
    severity: Severity
    source: IssueSource = IssueSource.SCHEMA
    rule_name: Optional[str] = None
    occurrence: int = 1

    def to_dict(self) -> dict:
        result = {
            "segment": self.segment,
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
            "source": self.source.value,
        }
        if self.occurrence != 1:
            result["occurrence"] = self.occurrence
        if self.rule_name:
            result["rule_name"] = self.rule_name
        return result


# Findings Container
@dataclass
class Findings:
    """Issues from one validator, bucketed by severity."""

    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    info: List[ValidationIssue] = field(default_factory=list)

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity is Severity.ERROR:
            self.errors.append(issue)
        elif issue.severity is Severity.WARNING:
            self.warnings.append(issue)
        else:
            self.info.append(issue)

    def extend(self, other: "Findings") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.info.extend(other.info)

    def all(self) -> List[ValidationIssue]:
        return self.errors + self.warnings + self.info
