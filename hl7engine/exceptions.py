"""
Custom exceptions for the HL7 message engine.

Only structurally unrecoverable conditions are raised. A message that
parses but fails validation is reported as data (see ``validation``),
never through these classes.
"""


# Base Exception
class HL7Error(Exception):
    """Base exception for everything raised by the engine."""


# Parse Error
class HL7ParseError(HL7Error):
    """Base exception for all HL7 parsing errors."""

    def __init__(
        self,
        message: str,
        segment: str = None,
        field_index: int = None,
        line_number: int = None,
    ):
        self.segment = segment
        self.field_index = field_index
        self.line_number = line_number

        details = []
        if segment:
            details.append(f"segment={segment}")
        if field_index is not None:
            details.append(f"field={field_index}")
        if line_number is not None:
            details.append(f"line={line_number}")

        full_message = message
        if details:
            full_message = f"{message} [{', '.join(details)}]"

        super().__init__(full_message)


# Malformed Header Error
class MalformedHeaderError(HL7ParseError):
    """Raised when delimiters cannot be resolved from the MSH header."""

    def __init__(self, reason: str, line_number: int = None):
        self.reason = reason
        super().__init__(
            f"Malformed header: {reason}", segment="MSH", line_number=line_number
        )


# Invalid Message Structure Error
class InvalidMessageStructureError(HL7ParseError):
    """Raised when the message as a whole is not a valid segment sequence."""

    def __init__(self, reason: str, segment: str = None, line_number: int = None):
        self.reason = reason
        super().__init__(
            f"Invalid message structure: {reason}",
            segment=segment,
            line_number=line_number,
        )


# Missing Required Field Error
class MissingRequiredFieldError(HL7ParseError):
    """Raised when metadata cannot be built because a header field is empty."""

    def __init__(self, segment: str, field_index: int, field_name: str):
        self.field_name = field_name
        super().__init__(
            f"Required field {segment}-{field_index} ({field_name}) is missing",
            segment=segment,
            field_index=field_index,
        )


# Invalid Timestamp Error
class InvalidTimestampError(HL7ParseError):
    """Raised when an HL7 timestamp cannot be parsed."""

    def __init__(self, value: str, reason: str = None):
        self.value = value
        msg = f"Invalid HL7 timestamp: '{value}'"
        if reason:
            msg += f" - {reason}"
        super().__init__(msg)


# Invalid Path Error
class InvalidPathError(HL7Error, ValueError):
    """Raised when a dotted path such as ``PID.5.1`` is not well formed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid path '{path}': {reason}")


# Generation Error
class GenerationError(HL7Error):
    """Raised when a segment tree cannot be serialized to HL7 text."""


# Rule Definition Error
class RuleDefinitionError(HL7Error, ValueError):
    """Raised when a rule or rule set document cannot be loaded."""

    def __init__(self, rule_name: str, reason: str):
        self.rule_name = rule_name
        self.reason = reason
        super().__init__(f"Invalid rule '{rule_name}': {reason}")


# Rule Evaluation Error
class ValidationRuleEvaluationError(HL7Error):
    """
    Raised internally when a single rule fails while being evaluated.

    The rule engine always catches it and turns it into a warning, so
    callers of the public API never see it.
    """

    def __init__(self, rule_name: str, cause: Exception):
        self.rule_name = rule_name
        self.cause = cause
        super().__init__(f'Failed to evaluate rule "{rule_name}": {cause}')


# File Read Error
class FileReadError(HL7Error):
    """Raised when an input file cannot be read."""

    def __init__(self, filepath: str, reason: str):
        self.filepath = filepath
        self.reason = reason
        super().__init__(f"Cannot read file '{filepath}': {reason}")
