"""
File I/O operations for HL7 message processing.

Handles reading HL7 files from disk with encoding detection, loading
rule set and schema documents, and writing JSON reports.
"""

import codecs
import json
from pathlib import Path
from typing import Iterator, List, Union

import structlog

from .exceptions import FileReadError
from .models import ParseResult
from .parser import HL7Parser
from .rules import RuleSet
from .schema import Schema
from .tokenizer import BATCH_SEGMENTS, FRAMING_CHARACTERS, HEADER_SEGMENT

logger = structlog.get_logger(__name__)

# Common encodings used in HL7 files
ENCODINGS_TO_TRY = ["utf-8", "latin-1", "cp1252", "ascii"]

# Bytes sampled when choosing an encoding for streamed reads
ENCODING_SAMPLE_SIZE = 64 * 1024


def _check_file(filepath: Path) -> None:
    if not filepath.exists():
        raise FileReadError(str(filepath), "file does not exist")

    if not filepath.is_file():
        raise FileReadError(str(filepath), "path is not a file")


# Read HL7 File
def read_hl7_file(filepath: Union[str, Path]) -> str:
    """
    Read an HL7 file from disk.

    Attempts multiple encodings to handle various file sources.

    Args:
        filepath: Path to the HL7 file

    Returns:
        File content as string

    Raises:
        FileReadError: If file cannot be read
    """
    filepath = Path(filepath)
    _check_file(filepath)

    # Try different encodings
    last_error = None
    for encoding in ENCODINGS_TO_TRY:
        try:
            with open(filepath, "r", encoding=encoding, newline="") as f:
                content = f.read()
            logger.debug("Read HL7 file", path=str(filepath), encoding=encoding)
            return content
        except UnicodeDecodeError as e:
            last_error = e
            continue
        except OSError as e:
            raise FileReadError(str(filepath), str(e))

    # If all encodings failed
    raise FileReadError(
        str(filepath),
        f"could not decode file with any supported encoding: {last_error}",
    )


# Parse HL7 File
def parse_hl7_file(filepath: Union[str, Path]) -> List[ParseResult]:
    """
    Read and parse every message in an HL7 file.

    Raises:
        FileReadError: If the file cannot be read
        HL7ParseError: If a message cannot be parsed
    """
    content = read_hl7_file(filepath)
    return HL7Parser().parse_all(content)


def _detect_encoding(filepath: Path) -> str:
    with open(filepath, "rb") as f:
        sample = f.read(ENCODING_SAMPLE_SIZE)

    for encoding in ENCODINGS_TO_TRY:
        try:
            # Incremental decoding tolerates a character cut at the sample edge
            codecs.getincrementaldecoder(encoding)().decode(sample, final=False)
            return encoding
        except UnicodeDecodeError:
            continue
    raise FileReadError(str(filepath), "could not decode file with any supported encoding")


# Stream Parse HL7 File
def stream_hl7_file(filepath: Union[str, Path]) -> Iterator[ParseResult]:
    """
    Stream parse an HL7 file, yielding results one at a time.

    Useful for large files with many messages where loading all
    results into memory at once is not desirable. The encoding is chosen
    from the first 64 KiB of the file.

    Yields:
        ParseResult for each message

    Raises:
        FileReadError: If the file cannot be read or decoded
        HL7ParseError: If a message cannot be parsed
    """
    filepath = Path(filepath)
    _check_file(filepath)
    encoding = _detect_encoding(filepath)

    parser = HL7Parser()
    current_message_lines = []
    message_idx = 0

    try:
        with open(filepath, "r", encoding=encoding) as file_handle:
            for line in file_handle:
                stripped = line.rstrip("\r\n").strip(FRAMING_CHARACTERS)
                if not stripped.strip() or stripped[:3] in BATCH_SEGMENTS:
                    continue

                # New message starts with MSH
                if stripped.startswith(HEADER_SEGMENT) and current_message_lines:
                    yield parser.parse("\n".join(current_message_lines), message_idx)
                    message_idx += 1
                    current_message_lines = []

                current_message_lines.append(stripped)
    except UnicodeDecodeError as e:
        raise FileReadError(str(filepath), f"decoding failed as {encoding}: {e}")

    # Don't forget the last message
    if current_message_lines:
        yield parser.parse("\n".join(current_message_lines), message_idx)


# Load JSON Documents
def load_json_document(filepath: Union[str, Path]):
    """
    Read a JSON configuration document.

    Raises:
        FileReadError: If the file is missing or not valid JSON
    """
    filepath = Path(filepath)
    _check_file(filepath)
    try:
        with open(filepath, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise FileReadError(str(filepath), f"invalid JSON: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise FileReadError(str(filepath), str(e))


def load_rule_set(filepath: Union[str, Path]) -> RuleSet:
    """
    Load a rule set document.

    The document is either a rule set object (``{"name", "rules"}``) or a
    bare list of rules, in which case the file name becomes the set name.

    Raises:
        FileReadError: If the file cannot be read
        RuleDefinitionError: If a rule is invalid
    """
    filepath = Path(filepath)
    document = load_json_document(filepath)
    if isinstance(document, list):
        document = {"name": filepath.stem, "rules": document}
    if not isinstance(document, dict):
        raise FileReadError(str(filepath), "rule set must be a JSON object or list")

    rule_set = RuleSet.from_dict(document)
    logger.debug("Loaded rule set", name=rule_set.name, rules=len(rule_set.rules))
    return rule_set


def load_schema(filepath: Union[str, Path]) -> Schema:
    """
    Load a schema document (see ``Schema.from_dict``).

    Raises:
        FileReadError: If the file cannot be read or is not a valid schema
    """
    filepath = Path(filepath)
    document = load_json_document(filepath)
    if not isinstance(document, dict):
        raise FileReadError(str(filepath), "schema must be a JSON object")
    try:
        return Schema.from_dict(document)
    except (KeyError, TypeError, ValueError) as e:
        raise FileReadError(str(filepath), f"invalid schema: {e}")


# Write JSON Output
def write_json_output(data, filepath: Union[str, Path], pretty: bool = True) -> None:
    """
    Write a JSON report to a file.

    Args:
        data: JSON-serializable report
        filepath: Output file path
        pretty: If True, format JSON with indentation
    """
    indent = 2 if pretty else None

    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent)
        f.write("\n")
