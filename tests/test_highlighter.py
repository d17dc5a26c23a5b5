"""Unit tests for syntax highlighting."""

from hl7engine.highlighter import (
    HL7_SYNTAX_CSS,
    HL7SyntaxHighlighter,
    apply_highlighting,
    issues_to_highlights,
    tokenize,
)
from hl7engine.issues import Severity, ValidationIssue
from hl7engine.tokenizer import Delimiters

MESSAGE = (
    "MSH|^~\\&|SENDAPP|SENDFAC|RECVAPP|RECVFAC|20240115143000||ADT^A01|MSG00001|P|2.5\r"
    "PID|1||PAT^^^H||DOE^JOHN"
)


def types(tokens):
    """Token types in order."""
    return [t.type for t in tokens]


# Tests for tokenizing
class TestTokenize:
    """Tests for typed token output."""

    def test_separator_types(self):
        """Test that each delimiter gets its own token type."""
        tokens = tokenize("PID|1|A^B~C&D")

        assert types(tokens) == [
            "segment",
            "field-separator",
            "text",
            "field-separator",
            "text",
            "component-separator",
            "text",
            "repetition-separator",
            "text",
            "subcomponent-separator",
            "text",
        ]
        assert (tokens[0].value, tokens[0].start, tokens[0].end) == ("PID", 0, 3)
        assert (tokens[6].value, tokens[6].start, tokens[6].end) == ("B", 8, 9)

    def test_header_encoding_characters(self):
        """Test that MSH-2 is one token rather than four separators."""
        tokens = tokenize("MSH|^~\\&|APP")

        assert types(tokens) == [
            "segment",
            "field-separator",
            "encoding-characters",
            "field-separator",
            "text",
        ]
        assert tokens[2].value == "^~\\&"
        assert (tokens[2].start, tokens[2].end) == (4, 8)

    def test_escape_sequence(self):
        """Test that an escape sequence is a single token."""
        tokens = tokenize("NTE|1||A\\F\\B")
        escape = [t for t in tokens if t.type == "escape-sequence"]

        assert len(escape) == 1
        assert escape[0].value == "\\F\\"
        assert (escape[0].start, escape[0].end) == (8, 11)
        assert tokens[-1].value == "B"

    def test_unclosed_escape_is_text(self):
        """Test that a lone escape character is plain text."""
        tokens = tokenize("NTE|1|A\\B")

        assert "escape-sequence" not in types(tokens)
        assert tokens[-1].value == "\\B"

    def test_line_numbers(self):
        """Test that tokens carry 0-based line numbers across CR endings."""
        tokens = tokenize(MESSAGE)

        assert tokens[0].line == 0
        assert tokens[-1].line == 1
        assert tokens[-1].value == "JOHN"

    def test_delimiters_from_header(self):
        """Test that custom delimiters in MSH drive tokenizing."""
        tokens = tokenize("MSH#!~\\&#APP\nPID#1#A!B")
        second_line = [t for t in tokens if t.line == 1]

        assert types(second_line) == [
            "segment",
            "field-separator",
            "text",
            "field-separator",
            "text",
            "component-separator",
            "text",
        ]

    def test_explicit_delimiters(self):
        """Test delimiters given to the highlighter directly."""
        highlighter = HL7SyntaxHighlighter(Delimiters(field="#", component="!"))
        tokens = highlighter.tokenize("PID#A!B")

        assert "component-separator" in types(tokens)
        assert "field-separator" in types(tokens)


# Tests for mapping findings to spans
class TestIssuesToHighlights:
    """Tests for issues_to_highlights."""

    def test_field_span(self):
        """Test that a field issue covers the field's columns."""
        issue = ValidationIssue("PID", 3, "Patient ID missing", Severity.ERROR)
        spans = issues_to_highlights(MESSAGE, [issue])

        assert len(spans) == 1
        span = spans[0]
        assert (span.line, span.start, span.end) == (1, 7, 14)
        assert span.css_class == "hl7-error"
        assert span.severity == "error"
        assert span.message == "Patient ID missing"

    def test_header_field_spans(self):
        """Test MSH columns, where MSH-1 is the separator itself."""
        highlighter = HL7SyntaxHighlighter()
        line = MESSAGE.split("\r")[0]
        delimiters = Delimiters()

        assert highlighter.field_span(line, 1, delimiters) == (3, 4)
        assert highlighter.field_span(line, 2, delimiters) == (4, 8)
        assert highlighter.field_span(line, 3, delimiters) == (9, 16)
        assert highlighter.field_span(line, 40, delimiters) is None

    def test_segment_level_issue(self):
        """Test that field 0 covers the segment tag."""
        issue = ValidationIssue("PID", 0, "Unexpected segment", Severity.WARNING)
        span = issues_to_highlights(MESSAGE, [issue])[0]

        assert (span.line, span.start, span.end) == (1, 0, 3)
        assert span.css_class == "hl7-warning"

    def test_absent_locations_skipped(self):
        """Test that issues outside the text produce no span."""
        issues = [
            ValidationIssue("EVN", 0, "Missing EVN", Severity.ERROR),
            ValidationIssue("PID", 30, "Missing field", Severity.INFO),
        ]

        assert issues_to_highlights(MESSAGE, issues) == []

    def test_issue_on_second_occurrence(self):
        """Test that an issue on the second OBX highlights the second OBX line."""
        text = MESSAGE + "\rOBX|1|ST|A||ok\rOBX|2|ST|B||bad"
        issue = ValidationIssue("OBX", 5, "Bad value", Severity.WARNING, occurrence=2)
        span = issues_to_highlights(text, [issue])[0]

        assert span.line == 3
        assert (span.start, span.end) == (12, 15)

    def test_missing_occurrence_skipped(self):
        """Test that an occurrence beyond the text produces no span."""
        issue = ValidationIssue("PID", 3, "Patient ID missing", Severity.ERROR, occurrence=2)

        assert issues_to_highlights(MESSAGE, [issue]) == []


# Tests for HTML rendering
class TestApplyHighlighting:
    """Tests for apply_highlighting."""

    def test_plain_rendering(self):
        """Test one span per token."""
        assert apply_highlighting("PID|1") == (
            '<span class="hl7-segment">PID</span>'
            '<span class="hl7-field-separator">|</span>'
            '<span class="hl7-text">1</span>'
        )

    def test_html_is_escaped(self):
        """Test that message text cannot inject markup."""
        rendered = apply_highlighting("PID|1|<b>")

        assert "<b>" not in rendered
        assert '<span class="hl7-text">&lt;b&gt;</span>' in rendered

    def test_issue_class_and_title(self):
        """Test that highlighted tokens carry the severity class and message."""
        text = "PID|1|<b>"
        issue = ValidationIssue("PID", 2, 'bad "value"', Severity.WARNING)
        rendered = apply_highlighting(text, issues_to_highlights(text, [issue]))

        assert (
            '<span class="hl7-text hl7-warning" title="bad &quot;value&quot;">&lt;b&gt;</span>'
            in rendered
        )

    def test_lines_preserved(self):
        """Test that output keeps one line per segment."""
        rendered = apply_highlighting(MESSAGE)

        assert len(rendered.split("\n")) == 2

    def test_styles_included(self):
        """Test that the stylesheet can be prepended to the rendered HTML."""
        rendered = apply_highlighting("PID|1", include_styles=True)

        assert rendered.startswith("<style>")
        assert HL7_SYNTAX_CSS in rendered
        assert rendered.endswith('<span class="hl7-text">1</span>')

    def test_stylesheet_covers_token_types(self):
        """Test that every token type and severity has a CSS rule."""
        for token in tokenize(MESSAGE + "\rNTE|1||A\\F\\B~C&D"):
            assert f".hl7-{token.type} " in HL7_SYNTAX_CSS
        for severity in Severity:
            assert f".hl7-{severity.value} " in HL7_SYNTAX_CSS
