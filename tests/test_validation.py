"""Tests for combined schema and rule validation."""

import json

import pytest

from hl7engine.exceptions import InvalidMessageStructureError
from hl7engine.parser import parse_message
from hl7engine.rules import RuleSet, ValidationRule
from hl7engine.schema import UK_ITK_SCHEMA
from hl7engine.validation import ValidationEngine, validate_message, validate_with_rule_set

VALID_MESSAGE = (
    "MSH|^~\\&|SENDAPP|SENDFAC|RECVAPP|RECVFAC|20240115143000||ADT^A01^ADT_A01|MSG00001|P|2.5\r"
    "EVN|A01|20240115143000\r"
    "PID|1||PAT12345^^^HOSP^MR||DOE^JOHN^MIDDLE||19800101\r"
    "PV1|1|I|WARD1^101^A"
)

RULE_SET = RuleSet.from_dict(
    {
        "name": "Admission checks",
        "rules": [
            {
                "name": "Sex required",
                "targetPath": "PID.8",
                "condition": "exists",
                "severity": "error",
                "actionDetail": "PID-8 is required for admissions",
            },
            {
                "name": "Inpatient",
                "targetPath": "PV1.2",
                "condition": "equals",
                "value": "I",
                "severity": "warning",
            },
        ],
    }
)


# Tests for schema-only validation
class TestValidateMessage:
    """Tests for validate_message."""

    def test_valid_message(self):
        """Test that a clean message is valid."""
        result = validate_message(VALID_MESSAGE)

        assert result.is_valid is True
        assert result.errors == []
        assert result.summary["total_errors"] == 0
        assert result.summary["rule_set_used"] is None

    def test_accepts_parsed_message(self):
        """Test that a Message is validated without re-parsing."""
        message = parse_message(VALID_MESSAGE).message

        assert validate_message(message).is_valid is True

    def test_missing_message_type(self):
        """Test that missing MSH-9 makes the message invalid with one error."""
        text = VALID_MESSAGE.replace("ADT^A01^ADT_A01", "")
        result = validate_message(text)

        assert result.is_valid is False
        assert len(result.errors) == 1
        assert result.errors[0].segment == "MSH"
        assert result.errors[0].field == 9
        assert result.errors[0].severity.value == "error"

    def test_unknown_segment_still_valid(self):
        """Test that a Z-segment does not invalidate the message."""
        result = validate_message(VALID_MESSAGE + "\rZZZ|custom|data")

        assert result.is_valid is True
        assert len(result.warnings) == 1

    def test_profile_schema(self):
        """Test validating against the UK ITK profile."""
        text = VALID_MESSAGE.replace("EVN|A01|20240115143000\r", "")
        result = validate_message(text, UK_ITK_SCHEMA)

        assert result.is_valid is False
        assert result.errors[0].segment == "EVN"

    def test_unparseable_text_raises(self):
        """Test that 'could not parse' is distinct from 'invalid'."""
        with pytest.raises(InvalidMessageStructureError):
            validate_message("PID|1||P1")


# Tests for schema plus custom rules
class TestValidateWithRuleSet:
    """Tests for validate_with_rule_set."""

    def test_rule_errors_invalidate(self):
        """Test that a custom error makes the message invalid."""
        result = validate_with_rule_set(VALID_MESSAGE, RULE_SET)

        assert result.is_valid is False
        assert [e.message for e in result.errors] == ["PID-8 is required for admissions"]
        assert result.summary["rule_set_used"] == "Admission checks"

    def test_rules_satisfied(self):
        """Test that a message meeting every rule stays valid."""
        text = VALID_MESSAGE.replace("|19800101\r", "|19800101|M\r")
        result = validate_with_rule_set(text, RULE_SET)

        assert result.is_valid is True
        assert result.issues == []

    def test_schema_and_rule_findings_concatenated(self):
        """Test that schema findings come before rule findings."""
        text = VALID_MESSAGE.replace("ADT^A01^ADT_A01", "").replace("PV1|1|I", "PV1|1|O")
        result = validate_with_rule_set(text, RULE_SET)

        assert [e.source.value for e in result.errors] == ["schema", "custom"]
        assert [w.rule_name for w in result.warnings] == ["Inpatient"]

    def test_engine_reuse(self):
        """Test that one engine validates many messages independently."""
        engine = ValidationEngine()
        first = engine.validate(VALID_MESSAGE, RULE_SET)
        second = engine.validate(VALID_MESSAGE)

        assert first.is_valid is False
        assert second.is_valid is True

    def test_to_dict(self):
        """Test the JSON report shape."""
        data = validate_with_rule_set(VALID_MESSAGE, RULE_SET).to_dict()

        assert data["is_valid"] is False
        assert data["errors"][0]["source"] == "custom"
        assert data["errors"][0]["rule_name"] == "Sex required"
        assert set(data["summary"]) == {
            "total_errors",
            "total_warnings",
            "total_info",
            "rule_set_used",
            "validation_time_ms",
        }
        json.dumps(data)

    def test_directly_built_error_rule_invalidates(self):
        """Test that a rule constructed with severity="error" makes the message invalid."""
        rule = ValidationRule(name="sex", target_path="PID.8", severity="error")
        rule_set = RuleSet("Direct", (rule,))
        result = validate_with_rule_set(VALID_MESSAGE, rule_set)

        assert result.is_valid is False
        assert [e.rule_name for e in result.errors] == ["sex"]
        assert result.info == []
