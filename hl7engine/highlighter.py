"""
Presentation-only syntax highlighting.

Re-tokenizes raw HL7 text into typed tokens with positions, maps
validation findings onto column spans and renders both as HTML. Nothing
here feeds back into parsing; it only needs the text and, optionally,
validation issues.
"""

import html
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .exceptions import MalformedHeaderError
from .issues import ValidationIssue
from .tokenizer import (
    DEFAULT_DELIMITERS,
    HEADER_SEGMENT,
    Delimiters,
    HL7Tokenizer,
    resolve_delimiters,
    split_escaped,
)

SEGMENT = "segment"
FIELD_SEPARATOR = "field-separator"
COMPONENT_SEPARATOR = "component-separator"
REPETITION_SEPARATOR = "repetition-separator"
SUBCOMPONENT_SEPARATOR = "subcomponent-separator"
ESCAPE_SEQUENCE = "escape-sequence"
ENCODING_CHARACTERS = "encoding-characters"
TEXT = "text"

HL7_SYNTAX_CSS = """
.hl7-segment { color: #0066cc; font-weight: bold; }
.hl7-field-separator { color: #666666; font-weight: bold; }
.hl7-component-separator { color: #cc6600; }
.hl7-repetition-separator { color: #009900; }
.hl7-subcomponent-separator { color: #9900cc; }
.hl7-escape-sequence { color: #cc0000; font-weight: bold; }
.hl7-encoding-characters { color: #666666; font-style: italic; }
.hl7-text { color: #333333; }
.hl7-error { background-color: #ffebee; border-bottom: 2px solid #f44336; }
.hl7-warning { background-color: #fff3e0; border-bottom: 2px solid #ff9800; }
.hl7-info { background-color: #e3f2fd; border-bottom: 2px solid #2196f3; }
"""


@dataclass(frozen=True)
class Token:
    """A run of characters on one line; ``end`` is exclusive, lines 0-based."""

    type: str
    value: str
    line: int
    start: int
    end: int


@dataclass(frozen=True)
class HighlightSpan:
    line: int
    start: int
    end: int
    css_class: str
    severity: str
    message: str = ""


# Syntax Highlighter Class
class HL7SyntaxHighlighter:
    """
    Tokenizes HL7 text for display.

    Delimiters come from the constructor when given, otherwise from the
    text's own MSH header, falling back to the defaults when the header
    is missing or unusable.
    """

    def __init__(self, delimiters: Optional[Delimiters] = None):
        self.delimiters = delimiters
        self.tokenizer = HL7Tokenizer()

    def _lines(self, text: str) -> List[str]:
        return self.tokenizer.normalize_line_endings(text).split("\n")

    def delimiters_for(self, text: str) -> Delimiters:
        if self.delimiters is not None:
            return self.delimiters
        for line in self._lines(text):
            if line.startswith(HEADER_SEGMENT):
                try:
                    return resolve_delimiters(line)
                except MalformedHeaderError:
                    break
        return DEFAULT_DELIMITERS

    def tokenize(self, text: str) -> List[Token]:
        """
        Split text into typed tokens.

        Escape sequences (``\\F\\``, ``\\X0D\\``...) become a single
        ``escape-sequence`` token; an escape character without a closing
        partner is plain text.
        """
        delimiters = self.delimiters_for(text)
        tokens = []
        for line_index, line in enumerate(self._lines(text)):
            if line.strip():
                tokens.extend(self._tokenize_line(line, line_index, delimiters))
        return tokens

    def _tokenize_line(self, line: str, line_index: int, delimiters: Delimiters) -> List[Token]:
        separator_types = {
            delimiters.field: FIELD_SEPARATOR,
            delimiters.component: COMPONENT_SEPARATOR,
            delimiters.repetition: REPETITION_SEPARATOR,
            delimiters.subcomponent: SUBCOMPONENT_SEPARATOR,
        }
        special = set(separator_types) | {delimiters.escape}

        if len(line) < 3:
            return [Token(TEXT, line, line_index, 0, len(line))]

        tokens = [Token(SEGMENT, line[:3], line_index, 0, 3)]
        i = 3

        if line.startswith(HEADER_SEGMENT + delimiters.field):
            tokens.append(Token(FIELD_SEPARATOR, delimiters.field, line_index, 3, 4))
            end = line.find(delimiters.field, 4)
            end = len(line) if end == -1 else end
            if end > 4:
                tokens.append(Token(ENCODING_CHARACTERS, line[4:end], line_index, 4, end))
            i = end

        while i < len(line):
            char = line[i]
            if char in separator_types:
                tokens.append(Token(separator_types[char], char, line_index, i, i + 1))
                i += 1
                continue

            if char == delimiters.escape:
                closing = line.find(delimiters.escape, i + 1)
                if closing != -1:
                    tokens.append(
                        Token(ESCAPE_SEQUENCE, line[i : closing + 1], line_index, i, closing + 1)
                    )
                    i = closing + 1
                    continue

            j = i + 1
            while j < len(line) and line[j] not in special:
                j += 1
            tokens.append(Token(TEXT, line[i:j], line_index, i, j))
            i = j

        return tokens

    def field_span(
        self, line: str, field_number: int, delimiters: Delimiters
    ) -> Optional[Tuple[int, int]]:
        """
        Column range of HL7 field ``field_number`` on a segment line.

        Returns:
            (start, end) columns, or None when the line has fewer fields
        """
        if line.startswith(HEADER_SEGMENT + delimiters.field):
            fields = self.tokenizer.split_fields(line, delimiters)
            if field_number >= len(fields):
                return None
            if field_number == 1:
                return 3, 4
            # MSH-1 is the separator itself, so MSH-2 starts right after it
            position = 4
            for i in range(2, field_number):
                position += len(fields[i]) + 1
        else:
            fields = split_escaped(line, delimiters.field, delimiters.escape)
            if field_number >= len(fields):
                return None
            position = 0
            for i in range(field_number):
                position += len(fields[i]) + 1
        return position, position + len(fields[field_number])

    def issues_to_highlights(
        self, text: str, issues: Iterable[ValidationIssue]
    ) -> List[HighlightSpan]:
        """
        Map findings onto spans.

        Each issue lands on the line of its segment occurrence (the second
        OBX for ``occurrence=2``). Field-level issues cover the field's
        columns; segment-level issues (field 0) cover the segment tag.
        Issues whose segment occurrence or field is not present in the text
        are skipped.
        """
        delimiters = self.delimiters_for(text)
        lines = self._lines(text)
        spans = []

        for issue in issues:
            matching = [n for n, line in enumerate(lines) if line[:3] == issue.segment]
            if len(matching) < issue.occurrence:
                continue
            line_index = matching[issue.occurrence - 1]

            if issue.field > 0:
                span = self.field_span(lines[line_index], issue.field, delimiters)
                if span is None:
                    continue
            else:
                span = (0, len(issue.segment))

            severity = issue.severity.value
            spans.append(
                HighlightSpan(
                    line=line_index,
                    start=span[0],
                    end=span[1],
                    css_class=f"hl7-{severity}",
                    severity=severity,
                    message=issue.message,
                )
            )
        return spans

    def apply_highlighting(
        self, text: str, spans: Iterable[HighlightSpan] = (), include_styles: bool = False
    ) -> str:
        """
        Render text as HTML, one ``<span>`` per token.

        A token inside a highlight span also gets the span's class and
        its message as the title; the first matching span wins. With
        ``include_styles`` the output starts with a ``<style>`` block
        holding ``HL7_SYNTAX_CSS``.
        """
        spans = list(spans)
        by_line = {}
        for token in self.tokenize(text):
            by_line.setdefault(token.line, []).append(token)

        rendered = []
        for line_index, line in enumerate(self._lines(text)):
            parts = []
            position = 0
            line_spans = [s for s in spans if s.line == line_index]

            for token in by_line.get(line_index, ()):
                if token.start > position:
                    parts.append(html.escape(line[position : token.start]))

                match = next(
                    (s for s in line_spans if s.start <= token.start and token.end <= s.end),
                    None,
                )
                if match is None:
                    parts.append(f'<span class="hl7-{token.type}">')
                else:
                    parts.append(
                        f'<span class="hl7-{token.type} {match.css_class}" '
                        f'title="{html.escape(match.message)}">'
                    )
                parts.append(html.escape(token.value) + "</span>")
                position = token.end

            if position < len(line):
                parts.append(html.escape(line[position:]))
            rendered.append("".join(parts))

        html_text = "\n".join(rendered)
        if include_styles:
            return f"<style>{HL7_SYNTAX_CSS}</style>\n{html_text}"
        return html_text


# Convenience functions
def tokenize(text: str) -> List[Token]:
    return HL7SyntaxHighlighter().tokenize(text)


def issues_to_highlights(text: str, issues: Iterable[ValidationIssue]) -> List[HighlightSpan]:
    return HL7SyntaxHighlighter().issues_to_highlights(text, issues)


def apply_highlighting(
    text: str, spans: Iterable[HighlightSpan] = (), include_styles: bool = False
) -> str:
    return HL7SyntaxHighlighter().apply_highlighting(text, spans, include_styles)
