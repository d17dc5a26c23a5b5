"""
HL7 v2.x Message Engine

Parses pipe-delimited HL7 v2.x messages of any type into an immutable
segment/field tree, regenerates text from that tree without loss, and
validates messages against static schemas and user-authored rule sets.
"""

from .exceptions import (
    FileReadError,
    GenerationError,
    HL7Error,
    HL7ParseError,
    InvalidMessageStructureError,
    InvalidPathError,
    InvalidTimestampError,
    MalformedHeaderError,
    MissingRequiredFieldError,
    RuleDefinitionError,
    ValidationRuleEvaluationError,
)
from .extractors import extract_metadata
from .generator import HL7Generator, build_message, generate_message
from .highlighter import HL7SyntaxHighlighter, apply_highlighting, issues_to_highlights
from .issues import Findings, IssueSource, Severity, ValidationIssue
from .models import Composite, Message, Metadata, ParseResult, Repeated, Segment, Text
from .parser import HL7Parser, parse_message, parse_messages
from .rules import Condition, RuleEngine, RuleSet, ValidationRule, create_custom_rule
from .schema import HL7_V25_SCHEMA, UK_ITK_SCHEMA, Schema
from .schema_validator import SchemaValidator
from .tokenizer import Delimiters, resolve_delimiters
from .validation import (
    ValidationEngine,
    ValidationResult,
    validate_message,
    validate_with_rule_set,
)

__version__ = "1.0.0"
__author__ = "Healthcare Integration Team"
