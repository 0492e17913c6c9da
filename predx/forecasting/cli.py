"""
Command-line interface for predx.

Provides subcommands for validating forecast submissions, verifying them
against an expected specification, and converting between formats.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from . import flusight
from . import interchange
from . import verify
from .classes import FormatError
from .convert import GroupingError
from .table import PredxTable
from ..logging_config import configure_logging

FORMATS = ("csv", "json", "flusight")

# Errors that end a command with exit code 1
COMMAND_ERRORS = (
    OSError,
    FormatError,
    GroupingError,
    verify.ExpectedSpecError,
    ValueError,
)


def guess_format(path: str) -> str:
    """Pick an input format from the file name."""
    name = Path(path).name
    if name.lower().endswith(".json"):
        return "json"
    if flusight.FILENAME_PATTERN.search(name):
        return "flusight"
    return "csv"


def load_table(path: str, fmt: Optional[str] = None) -> PredxTable:
    """Read a table in the given (or guessed) format."""
    fmt = fmt or guess_format(path)
    if fmt == "json":
        return interchange.import_json(path)
    if fmt == "flusight":
        return flusight.import_flusight_csv(path)
    return interchange.import_csv(path)


def _format_key(record) -> str:
    return ", ".join(f"{name}={value}" for name, value in record.key)


def cmd_validate(args: argparse.Namespace) -> int:
    """Import a submission and list records that failed validation."""
    try:
        table = load_table(args.file, args.format)
    except COMMAND_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    summary = table.summary()
    print(f"Records: {summary['total']} ({summary['valid']} valid, {summary['errors']} failed)")
    for predx_class, count in sorted(summary["by_class"].items()):
        print(f"  {predx_class or '(no class)'}: {count}")

    errors = table.errors()
    if errors:
        print()
        print("Failed records:")
        for record in errors:
            print(f"  {_format_key(record)} [{record.predx_class or '?'}]: {record.error}")
        return 1

    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Check a submission against an expected specification."""
    try:
        table = load_table(args.file, args.format)
        if args.expected:
            expected = verify.load_expected(args.expected)
        else:
            expected = flusight.EXPECTED_PRESETS[args.preset]()
        result = verify.verify_expected(table, expected)

        if args.records:
            records = result.to_records()
            if args.output:
                path = interchange.write_rows_csv(records, args.output, overwrite=args.overwrite)
                print(f"{len(records)} discrepancy record(s) written to {path}")
            else:
                print(json.dumps(records, indent=2))
        else:
            print(result.format_report())

        return 0 if result.ok else 1

    except COMMAND_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_convert(args: argparse.Namespace) -> int:
    """Convert a submission to another format."""
    try:
        table = load_table(args.file, args.format)
        if args.to == "json":
            path = interchange.export_json(table, args.output, overwrite=args.overwrite)
        elif args.to == "flusight":
            path = flusight.export_flusight_csv(table, args.output, overwrite=args.overwrite)
        else:
            path = interchange.export_csv(table, args.output, overwrite=args.overwrite)

        n_errors = len(table.errors())
        print(f"Wrote {len(table) - n_errors} record(s) to {path}")
        if n_errors:
            print(f"Skipped {n_errors} record(s) that failed validation", file=sys.stderr)
        return 0

    except COMMAND_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="predx",
        description="Validate, verify and convert probabilistic forecast submissions"
    )

    # Global options
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: $PREDX_LOG_LEVEL or WARNING)"
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also append logs to this file"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add_input(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("file", help="Submission file")
        sub.add_argument("--format", choices=FORMATS,
                         help="Input format (guessed from the file name if omitted)")

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a submission")
    add_input(validate_parser)
    validate_parser.set_defaults(func=cmd_validate)

    # verify command
    verify_parser = subparsers.add_parser("verify", help="Check a submission against expected predictions")
    add_input(verify_parser)
    spec_group = verify_parser.add_mutually_exclusive_group(required=True)
    spec_group.add_argument("--expected", help="Expected specification (YAML or JSON)")
    spec_group.add_argument("--preset", choices=sorted(flusight.EXPECTED_PRESETS),
                            help="Built-in expected specification")
    verify_parser.add_argument("--records", action="store_true",
                               help="Output one record per discrepancy instead of a report")
    verify_parser.add_argument("--output", "-o", help="Write discrepancy records to this CSV")
    verify_parser.add_argument("--overwrite", action="store_true", help="Replace an existing output file")
    verify_parser.set_defaults(func=cmd_verify)

    # convert command
    convert_parser = subparsers.add_parser("convert", help="Convert a submission to another format")
    add_input(convert_parser)
    convert_parser.add_argument("--to", choices=FORMATS, required=True, help="Output format")
    convert_parser.add_argument("--output", "-o", required=True,
                                help="Output file (directory for --to flusight)")
    convert_parser.add_argument("--overwrite", action="store_true", help="Replace an existing output file")
    convert_parser.set_defaults(func=cmd_convert)

    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
