"""Tests for the command line interface."""

import json
import os
import tempfile

from hl7_cli import (
    EXIT_FILE_ERROR,
    EXIT_INVALID,
    EXIT_OK,
    EXIT_PARSE_ERROR,
    format_output,
    main,
)

ADT_MESSAGE = (
    "MSH|^~\\&|SENDAPP|SENDFAC|RECVAPP|RECVFAC|20240115143000||ADT^A01^ADT_A01|MSG00001|P|2.5\r"
    "EVN|A01|20240115143000\r"
    "PID|1||PAT12345^^^HOSP^MR||DOE^JOHN||19800101|M\r"
    "PV1|1|I|WARD1^101^A"
)

SECOND_MESSAGE = (
    "MSH|^~\\&|SENDAPP|SENDFAC|RECVAPP|RECVFAC|20240115150000||ADT^A03|MSG00002|P|2.5\r"
    "EVN|A03|20240115150000\r"
    "PID|1||PAT12345^^^HOSP^MR||DOE^JOHN||19800101|M\r"
    "PV1|1|I|WARD1^101^A"
)

# MSH-9 removed, which is a schema error
INVALID_MESSAGE = ADT_MESSAGE.replace("ADT^A01^ADT_A01", "")


# Tests for the CLI entry point
class TestMain:
    """Tests for main() exit codes and reports."""

    def setup_method(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def teardown_method(self):
        self.tmpdir.cleanup()

    def _write(self, name, content):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        return path

    def _output(self):
        return os.path.join(self.tmpdir.name, "report.json")

    def _read_report(self):
        with open(self._output(), encoding="utf-8") as f:
            return json.load(f)

    def test_valid_message(self):
        """Test that a valid file exits 0 with a report."""
        path = self._write("adt.hl7", ADT_MESSAGE)

        assert main([path, "-o", self._output()]) == EXIT_OK
        report = self._read_report()
        assert report["metadata"]["message_type"] == "ADT^A01^ADT_A01"
        assert report["metadata"]["control_id"] == "MSG00001"
        assert report["validation"]["is_valid"] is True
        assert "regenerated" not in report

    def test_multiple_messages(self):
        """Test that several messages produce a JSON array."""
        path = self._write("batch.hl7", ADT_MESSAGE + "\r" + SECOND_MESSAGE)

        assert main([path, "-o", self._output()]) == EXIT_OK
        reports = self._read_report()
        assert [r["message_index"] for r in reports] == [0, 1]
        assert reports[1]["metadata"]["trigger_event"] == "A03"

    def test_missing_file(self):
        """Test that a missing input file exits 1."""
        assert main([os.path.join(self.tmpdir.name, "missing.hl7")]) == EXIT_FILE_ERROR

    def test_bad_rules_file(self):
        """Test that an unreadable rule set exits 1."""
        path = self._write("adt.hl7", ADT_MESSAGE)
        rules = self._write("rules.json", "{not json")

        assert main([path, "--rules", rules]) == EXIT_FILE_ERROR

    def test_unknown_condition_in_rules(self):
        """Test that a rule with an unknown condition exits 1."""
        path = self._write("adt.hl7", ADT_MESSAGE)
        rules = self._write(
            "rules.json",
            json.dumps({"name": "Site", "rules": [{"targetPath": "PID.8", "condition": "lookup"}]}),
        )

        assert main([path, "--rules", rules]) == EXIT_FILE_ERROR

    def test_parse_error(self):
        """Test that text not starting with MSH exits 2."""
        path = self._write("bad.hl7", "PID|1||PAT12345\rPV1|1|I")

        assert main([path]) == EXIT_PARSE_ERROR

    def test_invalid_message_reported(self):
        """Test that an invalid message still exits 0 by default."""
        path = self._write("adt.hl7", INVALID_MESSAGE)

        assert main([path, "-o", self._output()]) == EXIT_OK
        validation = self._read_report()["validation"]
        assert validation["is_valid"] is False
        assert validation["errors"][0]["field"] == 9

    def test_fail_on_invalid(self):
        """Test that --fail-on-invalid exits 4 for an invalid message."""
        path = self._write("adt.hl7", INVALID_MESSAGE)

        assert main([path, "-o", self._output(), "--fail-on-invalid"]) == EXIT_INVALID

    def test_rules_applied(self):
        """Test that custom rules show up in the report."""
        path = self._write("adt.hl7", ADT_MESSAGE)
        rules = self._write(
            "rules.json",
            json.dumps(
                {
                    "name": "Site",
                    "rules": [
                        {
                            "name": "Female only",
                            "targetPath": "PID.8",
                            "condition": "equals",
                            "value": "F",
                            "severity": "error",
                        }
                    ],
                }
            ),
        )

        assert main([path, "-r", rules, "-o", self._output(), "--fail-on-invalid"]) == EXIT_INVALID
        validation = self._read_report()["validation"]
        assert validation["summary"]["rule_set_used"] == "Site"
        assert validation["errors"][0]["rule_name"] == "Female only"

    def test_profile(self):
        """Test validating against the UK ITK profile."""
        path = self._write("adt.hl7", ADT_MESSAGE.replace("EVN|A01|20240115143000\r", ""))

        assert main([path, "-o", self._output()]) == EXIT_OK
        assert main([path, "-o", self._output(), "--profile", "uk_itk"]) == EXIT_OK
        assert self._read_report()["validation"]["errors"][0]["segment"] == "EVN"

    def test_schema_file(self):
        """Test validating against a schema document."""
        path = self._write("adt.hl7", ADT_MESSAGE)
        schema = self._write(
            "schema.json",
            json.dumps(
                {
                    "name": "LOCAL",
                    "version": "2.5",
                    "segments": {"MSH": {"name": "Header"}},
                    "requiredSegments": ["MSH", "ZPI"],
                }
            ),
        )

        assert main([path, "--schema", schema, "-o", self._output(), "--fail-on-invalid"]) == (
            EXIT_INVALID
        )

    def test_regenerate(self):
        """Test that --regenerate includes the rebuilt text."""
        path = self._write("adt.hl7", ADT_MESSAGE)

        assert main([path, "-g", "-o", self._output()]) == EXIT_OK
        assert self._read_report()["regenerated"] == ADT_MESSAGE.replace("\r", "\n")

    def test_stream(self):
        """Test that --stream writes one JSON line per message."""
        path = self._write("batch.hl7", ADT_MESSAGE + "\r" + SECOND_MESSAGE)

        assert main([path, "--stream", "--compact", "-o", self._output()]) == EXIT_OK
        with open(self._output(), encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["metadata"]["control_id"] == "MSG00002"

    def test_stream_fail_on_invalid(self):
        """Test that streaming honours --fail-on-invalid."""
        path = self._write("batch.hl7", ADT_MESSAGE + "\r" + INVALID_MESSAGE)

        assert main([path, "--stream", "-c", "-o", self._output(), "--fail-on-invalid"]) == (
            EXIT_INVALID
        )

    def test_empty_file(self):
        """Test that a file without messages exits 1."""
        path = self._write("empty.hl7", "\n\n")

        assert main([path]) == EXIT_FILE_ERROR


# Tests for output formatting
class TestFormatOutput:
    """Tests for format_output."""

    def test_single_report_is_object(self):
        """Test that one report is printed as an object."""
        assert json.loads(format_output([{"a": 1}])) == {"a": 1}

    def test_several_reports_are_array(self):
        """Test that several reports are printed as an array."""
        assert json.loads(format_output([{"a": 1}, {"a": 2}], compact=True)) == [{"a": 1}, {"a": 2}]

    def test_compact(self):
        """Test that compact output has no newlines."""
        assert "\n" not in format_output([{"a": 1, "b": [1, 2]}], compact=True)
