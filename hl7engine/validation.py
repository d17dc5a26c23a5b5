"""
Combined validation.

Runs the schema validator and, optionally, a custom rule set over one
message and merges both into a single ``ValidationResult``. An invalid
message is an ordinary outcome reported through ``is_valid``; only text
that cannot be parsed at all raises.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional, Union

import structlog

from .issues import Findings, ValidationIssue
from .models import Message
from .parser import HL7Parser
from .rules import RuleEngine, RuleSet
from .schema import HL7_V25_SCHEMA, Schema
from .schema_validator import SchemaValidator

logger = structlog.get_logger(__name__)


# Validation Result Container
@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    info: List[ValidationIssue] = field(default_factory=list)
    rule_set_used: Optional[str] = None
    validation_time_ms: float = 0.0

    @classmethod
    def from_findings(
        cls, findings: Findings, rule_set_used: str = None, validation_time_ms: float = 0.0
    ) -> "ValidationResult":
        return cls(
            is_valid=not findings.errors,
            errors=list(findings.errors),
            warnings=list(findings.warnings),
            info=list(findings.info),
            rule_set_used=rule_set_used,
            validation_time_ms=validation_time_ms,
        )

    @property
    def summary(self) -> dict:
        return {
            "total_errors": len(self.errors),
            "total_warnings": len(self.warnings),
            "total_info": len(self.info),
            "rule_set_used": self.rule_set_used,
            "validation_time_ms": round(self.validation_time_ms, 3),
        }

    @property
    def issues(self) -> List[ValidationIssue]:
        return self.errors + self.warnings + self.info

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "info": [i.to_dict() for i in self.info],
            "summary": self.summary,
        }


# Validation Engine Class
class ValidationEngine:
    """
    Schema plus custom-rule validation.

    Usage:
        engine = ValidationEngine(schema=UK_ITK_SCHEMA)
        result = engine.validate(raw_text, rule_set)
        if not result.is_valid:
            ...
    """

    def __init__(self, schema: Schema = HL7_V25_SCHEMA, content_checks: bool = True):
        self.schema_validator = SchemaValidator(schema, content_checks=content_checks)
        self.rule_engine = RuleEngine()
        self.parser = HL7Parser()

    def validate(
        self, message: Union[Message, str], rule_set: Optional[RuleSet] = None
    ) -> ValidationResult:
        """
        Validate a message.

        Args:
            message: Parsed Message or raw HL7 text
            rule_set: Optional custom rules applied after the schema

        Returns:
            ValidationResult; ``is_valid`` is False when any error was found

        Raises:
            HL7ParseError: If ``message`` is raw text that cannot be parsed
        """
        started = time.perf_counter()
        if isinstance(message, str):
            message = self.parser.parse(message).message

        findings = self.schema_validator.validate(message)
        if rule_set is not None:
            findings.extend(self.rule_engine.evaluate(message, rule_set))

        result = ValidationResult.from_findings(
            findings,
            rule_set_used=rule_set.name if rule_set is not None else None,
            validation_time_ms=(time.perf_counter() - started) * 1000,
        )
        logger.debug("Validation complete", valid=result.is_valid, **result.summary)
        return result


# Convenience functions
def validate_message(
    message: Union[Message, str], schema: Schema = HL7_V25_SCHEMA
) -> ValidationResult:
    """Validate a message against the schema only."""
    return ValidationEngine(schema).validate(message)


def validate_with_rule_set(
    message: Union[Message, str], rule_set: RuleSet, schema: Schema = HL7_V25_SCHEMA
) -> ValidationResult:
    """
    Validate against the schema and a custom rule set.

    Schema and rule findings are concatenated; the message is valid only
    when neither produced an error.
    """
    return ValidationEngine(schema).validate(message, rule_set)
