"""
Main HL7 message parser.

This module orchestrates the parsing process: tokenizing raw text,
resolving delimiters from the header, decomposing every field into the
nested value model and deriving message metadata.
"""

from typing import List

import structlog

from .exceptions import (
    HL7ParseError,
    InvalidMessageStructureError,
    MissingRequiredFieldError,
)
from .extractors import MSHExtractor
from .models import Message, ParseResult, Segment, Text, decompose
from .tokenizer import (
    HEADER_SEGMENT,
    Delimiters,
    HL7Tokenizer,
    resolve_delimiters,
    split_hl7_messages,
)

logger = structlog.get_logger(__name__)


# HL7 Parser Class
class HL7Parser:
    """
    Parser for HL7 v2.x pipe-delimited messages of any type.

    This parser handles:
    - CR, LF and CRLF segment terminators, blank lines ignored
    - Delimiters declared in MSH-1/MSH-2
    - Lossless decomposition into repetitions, components and
      subcomponents, with escape sequences kept verbatim
    - Metadata extraction, recovering from missing header fields

    Usage:
        parser = HL7Parser()
        result = parser.parse(message_text)
        print(result.metadata.message_type)
    """

    def __init__(self):
        self.tokenizer = HL7Tokenizer()

    def parse(self, content: str, message_index: int = 0) -> ParseResult:
        """
        Parse a single HL7 message.

        Args:
            content: Raw HL7 message text
            message_index: Position of this message in its source file

        Returns:
            ParseResult with the message, its metadata and any warnings

        Raises:
            MalformedHeaderError: If delimiters cannot be resolved
            InvalidMessageStructureError: If the text is empty, does not
                start with MSH, or contains an invalid segment tag
        """
        if not content or not content.strip():
            raise InvalidMessageStructureError("message is empty")

        lines = self.tokenizer.segment_lines(content)
        first_line_number, first_line = lines[0]

        if not first_line.startswith(HEADER_SEGMENT):
            raise InvalidMessageStructureError(
                f"first segment must be {HEADER_SEGMENT}, got '{first_line[:3]}'",
                segment=first_line[:3],
                line_number=first_line_number,
            )

        delimiters = resolve_delimiters(first_line, first_line_number)
        segments = tuple(
            self._build_segment(line, line_number, delimiters)
            for line_number, line in lines
        )
        message = Message(segments=segments, delimiters=delimiters)

        warnings = []
        extractor = MSHExtractor(message)
        try:
            metadata = extractor.extract_metadata()
        except MissingRequiredFieldError as e:
            logger.warning(
                "Metadata incomplete",
                segment=e.segment,
                field=e.field_index,
                message_index=message_index,
            )
            warnings.append(str(e))
            metadata = extractor.partial_metadata()

        logger.debug(
            "Parsed message",
            segments=len(segments),
            message_type=metadata.message_type,
            control_id=metadata.control_id,
        )

        return ParseResult(
            message=message,
            metadata=metadata,
            warnings=warnings,
            source_message_index=message_index,
        )

    def parse_all(self, content: str) -> List[ParseResult]:
        """
        Parse content that may contain one or more messages.

        Returns:
            List of ParseResult objects, one per message

        Raises:
            HL7ParseError: On the first message that cannot be parsed
        """
        if not content or not content.strip():
            return []

        results = []
        for idx, message_text in enumerate(split_hl7_messages(content)):
            try:
                results.append(self.parse(message_text, idx))
            except HL7ParseError:
                logger.warning("Message could not be parsed", message_index=idx)
                raise
        return results

    def _build_segment(
        self, line: str, line_number: int, delimiters: Delimiters
    ) -> Segment:
        raw_fields = self.tokenizer.split_fields(line, delimiters, line_number)
        tag = raw_fields[0]

        if tag == HEADER_SEGMENT:
            # MSH-1 and MSH-2 are delimiter characters, never split
            values = [Text(f) for f in raw_fields[:3]]
            values.extend(decompose(f, delimiters) for f in raw_fields[3:])
        else:
            values = [Text(tag)]
            values.extend(decompose(f, delimiters) for f in raw_fields[1:])

        return Segment(tag=tag, fields=tuple(values))


# Convenience function to parse a single HL7 message
def parse_message(content: str) -> ParseResult:
    """
    Parse one HL7 message.

    Args:
        content: Raw HL7 message text

    Returns:
        ParseResult carrying ``message`` and ``metadata``
    """
    return HL7Parser().parse(content)


def parse_messages(content: str) -> List[ParseResult]:
    """Parse every message in a batch of HL7 text."""
    return HL7Parser().parse_all(content)
