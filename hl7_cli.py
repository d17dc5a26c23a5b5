#!/usr/bin/env python3
"""
HL7 v2.x Message Engine - Command Line Interface

Parses every message in an HL7 file, validates it against a schema and
an optional custom rule set, and prints a JSON report.

Usage:
    python hl7_cli.py input.hl7
    python hl7_cli.py input.hl7 --rules rules.json -o report.json
    python hl7_cli.py input.hl7 --profile uk_itk --fail-on-invalid
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

import structlog

from hl7engine import __version__
from hl7engine.exceptions import FileReadError, HL7ParseError, RuleDefinitionError
from hl7engine.generator import HL7Generator
from hl7engine.io_handler import (
    load_rule_set,
    load_schema,
    parse_hl7_file,
    stream_hl7_file,
    write_json_output,
)
from hl7engine.models import ParseResult
from hl7engine.rules import RuleSet
from hl7engine.schema import SCHEMAS
from hl7engine.validation import ValidationEngine

EXIT_OK = 0
EXIT_FILE_ERROR = 1
EXIT_PARSE_ERROR = 2
EXIT_UNEXPECTED = 3
EXIT_INVALID = 4


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="hl7-engine",
        description="Parse and validate HL7 v2.x messages, reporting as JSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s admission.hl7
      Parse and validate, JSON report to stdout

  %(prog)s admission.hl7 --rules site-rules.json -o report.json
      Apply a custom rule set as well and save the report

  %(prog)s admission.hl7 --profile uk_itk --fail-on-invalid
      Validate against the UK ITK profile, exit 4 if any message is invalid

  %(prog)s batch.hl7 --stream --compact
      Report one JSON line per message without loading the whole file
""",
    )

    parser.add_argument("input_file", type=Path, help="Path to the HL7 file to process")

    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        dest="output_file",
        help="Output file path (default: stdout)",
    )

    parser.add_argument(
        "-r",
        "--rules",
        type=Path,
        dest="rules_file",
        help="JSON rule set applied after schema validation",
    )

    schema_group = parser.add_mutually_exclusive_group()
    schema_group.add_argument(
        "--schema",
        type=Path,
        dest="schema_file",
        help="JSON schema document to validate against",
    )
    schema_group.add_argument(
        "--profile",
        choices=sorted(SCHEMAS),
        default="v25",
        help="Built-in schema to validate against (default: v25)",
    )

    parser.add_argument(
        "-g",
        "--regenerate",
        action="store_true",
        help="Include the regenerated HL7 text of each message in the report",
    )

    parser.add_argument(
        "-c",
        "--compact",
        action="store_true",
        help="Output compact JSON (no indentation)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Include the full segment tree and log progress to stderr",
    )

    parser.add_argument(
        "--stream",
        action="store_true",
        help="Stream parse large files, writing JSON Lines (memory efficient)",
    )

    parser.add_argument(
        "--fail-on-invalid",
        action="store_true",
        help="Exit with status 4 when any message fails validation",
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser


def configure_logging(verbose: bool = False) -> None:
    """Send structlog output to stderr, debug level when verbose."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def build_report(
    result: ParseResult,
    engine: ValidationEngine,
    rule_set: Optional[RuleSet] = None,
    regenerate: bool = False,
    verbose: bool = False,
) -> dict:
    """
    Build the JSON report for one parsed message.

    Returns:
        Dict with metadata, validation result, and optionally the
        regenerated text and segment tree
    """
    validation = engine.validate(result.message, rule_set)
    report = result.to_dict()
    report["validation"] = validation.to_dict()

    if regenerate:
        report["regenerated"] = HL7Generator().generate(result.message)
    if verbose:
        report["message"] = result.message.to_dict()
    return report


def format_output(reports: List[dict], compact: bool = False) -> str:
    """
    Format reports as a JSON string.

    A single message is output as an object, several as an array.
    """
    indent = None if compact else 2

    if len(reports) == 1:
        return json.dumps(reports[0], indent=indent)

    return json.dumps(reports, indent=indent)


def print_warnings(results: Iterable[ParseResult], total: int) -> None:
    """Print any warnings from parsing to stderr."""
    for result in results:
        if result.warnings:
            msg_label = f"Message {result.source_message_index + 1}" if total > 1 else "Message"
            for warning in result.warnings:
                print(f"Warning ({msg_label}): {warning}", file=sys.stderr)


def _run_stream(parsed_args, engine, rule_set) -> int:
    indent = None if parsed_args.compact else 2
    any_invalid = False
    count = 0

    out = (
        open(parsed_args.output_file, "w", encoding="utf-8")
        if parsed_args.output_file
        else sys.stdout
    )
    try:
        for result in stream_hl7_file(parsed_args.input_file):
            report = build_report(
                result,
                engine,
                rule_set,
                regenerate=parsed_args.regenerate,
                verbose=parsed_args.verbose,
            )
            any_invalid = any_invalid or not report["validation"]["is_valid"]
            out.write(json.dumps(report, indent=indent) + "\n")
            count += 1
    finally:
        if out is not sys.stdout:
            out.close()

    if count == 0:
        print("No HL7 messages found in file", file=sys.stderr)
        return EXIT_FILE_ERROR
    if parsed_args.verbose:
        print("Streaming completed successfully", file=sys.stderr)
    return EXIT_INVALID if any_invalid and parsed_args.fail_on_invalid else EXIT_OK


def main(args: List[str] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    parser = create_argument_parser()
    parsed_args = parser.parse_args(args)
    configure_logging(parsed_args.verbose)

    try:
        if parsed_args.schema_file:
            schema = load_schema(parsed_args.schema_file)
        else:
            schema = SCHEMAS[parsed_args.profile]
        rule_set = load_rule_set(parsed_args.rules_file) if parsed_args.rules_file else None
        engine = ValidationEngine(schema=schema)

        if parsed_args.stream:
            return _run_stream(parsed_args, engine, rule_set)

        results = parse_hl7_file(parsed_args.input_file)
        if not results:
            print("No HL7 messages found in file", file=sys.stderr)
            return EXIT_FILE_ERROR

        # Show warnings if verbose
        if parsed_args.verbose:
            print_warnings(results, len(results))

        reports = [
            build_report(
                r,
                engine,
                rule_set,
                regenerate=parsed_args.regenerate,
                verbose=parsed_args.verbose,
            )
            for r in results
        ]

        # Write output
        if parsed_args.output_file:
            data = reports[0] if len(reports) == 1 else reports
            write_json_output(data, parsed_args.output_file, pretty=not parsed_args.compact)
            if parsed_args.verbose:
                print(f"Output written to: {parsed_args.output_file}", file=sys.stderr)
        else:
            print(format_output(reports, compact=parsed_args.compact))

        # Report summary in verbose mode
        invalid = sum(1 for r in reports if not r["validation"]["is_valid"])
        if parsed_args.verbose:
            count = len(results)
            msg = "message" if count == 1 else "messages"
            print(f"Processed {count} {msg}, {invalid} invalid", file=sys.stderr)

        if invalid and parsed_args.fail_on_invalid:
            return EXIT_INVALID
        return EXIT_OK

    except (FileReadError, RuleDefinitionError) as e:
        print(f"Error reading input: {e}", file=sys.stderr)
        return EXIT_FILE_ERROR

    except HL7ParseError as e:
        print(f"Parse error: {e}", file=sys.stderr)
        return EXIT_PARSE_ERROR

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if parsed_args.verbose:
            import traceback

            traceback.print_exc()
        return EXIT_UNEXPECTED


if __name__ == "__main__":
    sys.exit(main())
