"""Unit tests for the value model, paths and escaping."""

import pytest

from hl7engine.escaping import escape, unescape
from hl7engine.exceptions import GenerationError, InvalidPathError
from hl7engine.models import (
    Composite,
    Repeated,
    Text,
    decompose,
    encode_value,
    value_to_data,
)
from hl7engine.parser import parse_message
from hl7engine.paths import FieldPath, parse_path
from hl7engine.tokenizer import Delimiters

ADT_MESSAGE = (
    "MSH|^~\\&|SENDAPP|SENDFAC|RECVAPP|RECVFAC|20240115143000||ADT^A01^ADT_A01|MSG00001|P|2.5\r"
    "EVN|A01|20240115143000\r"
    "PID|1||PAT12345^^^HOSP^MR~ALT999^^^OTHER||DOE^JOHN^MIDDLE||19800101|M\r"
    "PV1|1|I|WARD1^101^A\r"
    "OBX|1|ST|CODE^Test||first\r"
    "OBX|2|ST|CODE^Test||second"
)


# Tests for decomposition into the value model
class TestDecompose:
    """Tests for splitting raw field text into Text/Repeated/Composite."""

    def test_scalar_field(self):
        """Test that a field without separators stays a plain Text."""
        assert decompose("PATID") == Text("PATID")

    def test_empty_field(self):
        """Test that an empty field is an empty Text, not absent."""
        assert decompose("") == Text("")

    def test_composite_field(self):
        """Test that DOE^JOHN^MIDDLE is a three-element Composite."""
        assert decompose("DOE^JOHN^MIDDLE") == Composite(
            (Text("DOE"), Text("JOHN"), Text("MIDDLE"))
        )

    def test_trailing_empty_components_kept(self):
        """Test that trailing empty components are not trimmed."""
        value = decompose("A^^")

        assert value == Composite((Text("A"), Text(""), Text("")))
        assert encode_value(value) == "A^^"

    def test_repeated_field(self):
        """Test repetitions, each decomposed on its own."""
        value = decompose("A^1~B")

        assert value == Repeated((Composite((Text("A"), Text("1"))), Text("B")))

    def test_subcomponents(self):
        """Test subcomponents nested inside a component."""
        value = decompose("X&Y^Z")

        assert value == Composite((Composite((Text("X"), Text("Y"))), Text("Z")))
        assert encode_value(value) == "X&Y^Z"

    def test_subcomponents_without_components(self):
        """Test that subcomponents alone still sit under a component level."""
        value = decompose("X&Y")

        assert value == Composite((Composite((Text("X"), Text("Y"))),))
        assert encode_value(value) == "X&Y"

    def test_escape_sequence_not_split(self):
        """Test that separators inside escape sequences are data."""
        value = decompose("A\\^\\B")

        assert value == Text("A\\^\\B")

    def test_custom_delimiters(self):
        """Test decomposition with non-default delimiters."""
        delimiters = Delimiters(field="#", component="!")
        value = decompose("DOE!JOHN", delimiters)

        assert value == Composite((Text("DOE"), Text("JOHN")))
        assert encode_value(value, delimiters) == "DOE!JOHN"

    def test_encode_rejects_nested_repetition(self):
        """Test that a repetition inside a component cannot be encoded."""
        value = Composite((Repeated((Text("A"), Text("B"))),))

        with pytest.raises(GenerationError):
            encode_value(value)

    def test_value_to_data(self):
        """Test conversion to plain JSON-friendly data."""
        assert value_to_data(decompose("A^B~C")) == {"repeated": [["A", "B"], "C"]}


# Tests for path parsing
class TestParsePath:
    """Tests for the dotted path grammar."""

    def test_segment_only(self):
        """Test a path naming just a segment."""
        assert parse_path("PID") == FieldPath(segment="PID")

    def test_full_path(self):
        """Test a path using every level."""
        fp = parse_path("OBX[2].5[3].1.2")

        assert fp.segment == "OBX"
        assert fp.occurrence == 2
        assert fp.field == 5
        assert fp.repetition == 3
        assert fp.component == 1
        assert fp.subcomponent == 2
        assert str(fp) == "OBX[2].5[3].1.2"

    def test_invalid_paths(self):
        """Test that malformed paths raise InvalidPathError."""
        for bad in ("", "pid.3", "PID.x", "PID.0", "PID.3.1.2.1", "PID.3.a"):
            with pytest.raises(InvalidPathError):
                parse_path(bad)

    def test_invalid_path_is_value_error(self):
        """Test that callers catching ValueError also catch path errors."""
        with pytest.raises(ValueError):
            parse_path("PID..3")


# Tests for Message lookups and edits
class TestMessage:
    """Tests for path resolution and immutable edits."""

    def test_value_at_fields_and_components(self):
        """Test reading fields and components by path."""
        message = parse_message(ADT_MESSAGE).message

        assert message.value_at("PID.5") == "DOE^JOHN^MIDDLE"
        assert message.value_at("PID.5.2") == "JOHN"
        assert message.value_at("MSH.9.2") == "A01"
        assert message.value_at("PV1.3.1") == "WARD1"

    def test_msh_indexing(self):
        """Test that MSH-1 and MSH-2 are the delimiters."""
        message = parse_message(ADT_MESSAGE).message

        assert message.value_at("MSH.1") == "|"
        assert message.value_at("MSH.2") == "^~\\&"
        assert message.value_at("MSH.10") == "MSG00001"

    def test_repetitions(self):
        """Test addressing repetitions, defaulting to the first."""
        message = parse_message(ADT_MESSAGE).message

        assert message.value_at("PID.3[2].1") == "ALT999"
        assert message.value_at("PID.3.1") == "PAT12345"
        assert message.value_at("PID.3[3]") is None

    def test_segment_occurrence(self):
        """Test addressing the n-th segment of a type."""
        message = parse_message(ADT_MESSAGE).message

        assert message.value_at("OBX[2].5") == "second"
        assert message.value_at("OBX.5") == "first"
        assert message.count("OBX") == 2
        assert message.value_at("OBX[3].5") is None

    def test_scalar_answers_first_component(self):
        """Test that a plain field is its own first component."""
        message = parse_message(ADT_MESSAGE).message

        assert message.value_at("PID.8.1") == "M"
        assert message.value_at("PID.8.2") is None

    def test_missing_and_empty(self):
        """Test that absent nodes are None and empty fields are ''."""
        message = parse_message(ADT_MESSAGE).message

        assert message.value_at("PID.2") == ""
        assert message.value_at("PID.30") is None
        assert message.value_at("NK1.1") is None

    def test_segment_path(self):
        """Test that a segment-only path resolves to the segment text."""
        message = parse_message(ADT_MESSAGE).message

        assert message.value_at("PV1") == "PV1|1|I|WARD1^101^A"

    def test_segment_types(self):
        """Test distinct tags in first-appearance order."""
        message = parse_message(ADT_MESSAGE).message

        assert message.segment_types == ["MSH", "EVN", "PID", "PV1", "OBX"]

    def test_with_value_returns_new_message(self):
        """Test that edits leave the original untouched."""
        message = parse_message(ADT_MESSAGE).message
        edited = message.with_value("PID.8", "F")

        assert edited.value_at("PID.8") == "F"
        assert message.value_at("PID.8") == "M"

    def test_with_value_component(self):
        """Test replacing one component."""
        message = parse_message(ADT_MESSAGE).message
        edited = message.with_value("PID.5.2", "JANE")

        assert edited.value_at("PID.5") == "DOE^JANE^MIDDLE"

    def test_with_value_pads_missing_fields(self):
        """Test that setting a field beyond the end pads with empties."""
        message = parse_message(ADT_MESSAGE).message
        edited = message.with_value("PV1.6.2", "X")

        assert edited.value_at("PV1") == "PV1|1|I|WARD1^101^A|||^X"

    def test_with_value_escapes_delimiters(self):
        """Test that literal delimiter characters are escaped."""
        message = parse_message(ADT_MESSAGE).message
        edited = message.with_value("PID.19", "A|B^C")

        assert edited.value_at("PID.19") == "A\\F\\B\\S\\C"
        assert edited.text_at("PID.19") == "A|B^C"

    def test_with_value_appends_segment(self):
        """Test that naming the next occurrence appends a segment."""
        message = parse_message(ADT_MESSAGE).message
        edited = message.with_value("NK1.2", "DOE^JANE")

        assert edited.count("NK1") == 1
        assert edited.segments[-1].tag == "NK1"
        assert edited.text_at("NK1.2") == "DOE^JANE"

    def test_with_value_rejects_delimiter_fields(self):
        """Test that MSH-1 and MSH-2 cannot be edited."""
        message = parse_message(ADT_MESSAGE).message

        with pytest.raises(InvalidPathError):
            message.with_value("MSH.1", "#")
        with pytest.raises(InvalidPathError):
            message.with_value("MSH.2", "!~\\&")

    def test_with_value_rejects_gap(self):
        """Test that a segment cannot be created two occurrences ahead."""
        message = parse_message(ADT_MESSAGE).message

        with pytest.raises(InvalidPathError):
            message.with_value("OBX[4].5", "x")


# Tests for escape handling
class TestEscaping:
    """Tests for decoding and encoding escape sequences."""

    def test_unescape_delimiters(self):
        """Test the F, S, T, R and E sequences."""
        assert unescape("A\\F\\B\\S\\C\\T\\D\\R\\E\\E\\") == "A|B^C&D~E\\"

    def test_unescape_hex(self):
        """Test hexadecimal data sequences."""
        assert unescape("Line\\X0D0A\\End") == "Line\r\nEnd"

    def test_unescape_keeps_formatting_sequences(self):
        """Test that unknown sequences such as .br are left alone."""
        assert unescape("one\\.br\\two") == "one\\.br\\two"

    def test_escape_is_inverse(self):
        """Test that escaped text decodes back to the literal."""
        literal = "50% ^ 2 | A&B ~ C\\D"
        assert unescape(escape(literal)) == literal

    def test_text_at_decodes(self):
        """Test that text_at returns the literal value."""
        message = parse_message(
            "MSH|^~\\&|A|B|C|D|20240101||ORU^R01|1|P|2.5\rOBX|1|ST|CODE||A\\S\\B"
        ).message

        assert message.value_at("OBX.5") == "A\\S\\B"
        assert message.text_at("OBX.5") == "A^B"
