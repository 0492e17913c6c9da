"""
Interchange codecs for predx tables.

Two forms are supported:

    flat (CSV) - one row per scalar prediction, per bin, or per sample draw,
                 tagged with predx_class and carrying the payload columns
                 point, prob, cat, lwr and sample
    JSON       - one object per record with the payload nested under
                 "predx" as scalars or arrays

Records holding errors have no payload and are skipped on export; the
number skipped is logged as a warning. Decoding never aborts on a bad
record: it becomes an error record, same as during conversion.
"""

import csv
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, TextIO, Union

import jsonschema

from .classes import FormatError, PredxClass, PredxValue, ValidationError, make_predx
from .convert import CLASS_FIELD, PAYLOAD_FIELDS, tag_text, to_predx
from .table import PredxRecord, PredxTable

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent / "schemas"
RECORD_SCHEMA_PATH = SCHEMA_DIR / "predx_record.schema.json"

# Field holding the nested payload in the JSON form
JSON_PAYLOAD_FIELD = "predx"

PathLike = Union[str, Path]


class PredxIOError(OSError):
    """Raised when an interchange file cannot be read."""
    pass


class ExportError(OSError):
    """Raised when an export destination cannot be written."""
    pass


@contextmanager
def open_for_export(path: PathLike, overwrite: bool = False) -> Iterator[TextIO]:
    """
    Open an export destination for writing.

    Content goes to a temporary file in the destination directory that is
    moved into place only after the block completes, so a failed export
    leaves no partial file behind.

    Args:
        path: Destination file
        overwrite: Replace the destination if it already exists

    Raises:
        ExportError: If the destination exists and overwrite is False,
            or it cannot be written
    """
    path = Path(path)
    if path.exists() and not overwrite:
        raise ExportError(f'"{path}" already exists. Use overwrite=True to replace.')

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise ExportError(f"Failed to open {path} for writing: {e}")

    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        if overwrite:
            os.replace(tmp_name, path)
        else:
            # link fails if the destination appeared while writing
            try:
                os.link(tmp_name, path)
            except FileExistsError:
                raise ExportError(f'"{path}" already exists. Use overwrite=True to replace.')
            os.unlink(tmp_name)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.info(f"Wrote {path}")


def open_for_import(path: PathLike) -> TextIO:
    """
    Open an interchange file for reading.

    Raises:
        PredxIOError: If the file is missing or unreadable
    """
    try:
        return open(path, "r", encoding="utf-8", newline="")
    except OSError as e:
        raise PredxIOError(f"Cannot read {path}: {e}")


def write_rows_csv(
    rows: Sequence[Mapping[str, Any]],
    path: PathLike,
    fieldnames: Optional[Sequence[str]] = None,
    overwrite: bool = False
) -> Path:
    """
    Write dict rows to a CSV file through open_for_export().

    Columns default to the keys of all rows in first-seen order. None is
    written as an empty field.
    """
    if fieldnames is None:
        fieldnames = []
        for row in rows:
            fieldnames.extend(k for k in row if k not in fieldnames)

    with open_for_export(path, overwrite=overwrite) as handle:
        writer = csv.DictWriter(handle, fieldnames=list(fieldnames))
        writer.writeheader()
        writer.writerows(rows)
    return Path(path)


def _flat_row(base: Mapping[str, Any], tag: PredxClass, **payload: Any) -> Dict[str, Any]:
    row = dict(base)
    row[CLASS_FIELD] = tag.value
    for name in PAYLOAD_FIELDS:
        row[name] = payload.get(name)
    return row


def _flatten_value(base: Mapping[str, Any], value: PredxValue) -> List[Dict[str, Any]]:
    tag = value.predx_class
    if tag is PredxClass.POINT:
        return [_flat_row(base, tag, point=value.point)]
    if tag is PredxClass.BINARY:
        return [_flat_row(base, tag, prob=value.prob)]
    if tag is PredxClass.BIN_CAT:
        return [_flat_row(base, tag, cat=cat, prob=prob) for cat, prob in value.bins]
    if tag is PredxClass.BIN_LWR:
        return [_flat_row(base, tag, lwr=lwr, prob=prob) for lwr, prob in value.bins]
    if tag is PredxClass.SAMPLE:
        return [_flat_row(base, tag, sample=draw) for draw in value.sample]
    raise FormatError(f"unhandled predx_class '{tag}'")


def _exportable(table: PredxTable) -> PredxTable:
    errors = table.errors()
    if len(errors):
        logger.warning(f"Skipping {len(errors)} error record(s) on export")
    return table.valid()


def flatten(table: PredxTable) -> List[Dict[str, Any]]:
    """
    Flatten a table to generic interchange rows.

    Args:
        table: Table to flatten; error records are skipped

    Returns:
        List of row dicts with key fields, predx_class and payload columns
    """
    rows = []
    for record in _exportable(table):
        rows.extend(_flatten_value(record.fields, record.value))
    return rows


def unflatten(
    rows: Iterable[Mapping[str, Any]],
    key_fields: Optional[Sequence[str]] = None
) -> PredxTable:
    """Rebuild a table from generic interchange rows."""
    return to_predx(rows, key_fields=key_fields)


def export_csv(
    table: PredxTable,
    path: Optional[PathLike] = None,
    overwrite: bool = False
) -> Union[List[Dict[str, Any]], Path]:
    """
    Export a table in the flat CSV form.

    Args:
        table: Table to export
        path: Destination file. If None, the rows are returned instead.
        overwrite: Replace an existing destination

    Returns:
        The flattened rows when path is None, otherwise the written path

    Raises:
        ExportError: If the destination exists and overwrite is False
    """
    rows = flatten(table)
    if path is None:
        return rows

    fieldnames = table.key_fields + [CLASS_FIELD] + list(PAYLOAD_FIELDS)
    return write_rows_csv(rows, path, fieldnames=fieldnames, overwrite=overwrite)


def import_csv(path: PathLike, key_fields: Optional[Sequence[str]] = None) -> PredxTable:
    """
    Import a table from the flat CSV form.

    All fields are read as text; payload fields are converted to numbers
    by the value classes and key fields stay text.

    Raises:
        PredxIOError: If the file cannot be read
    """
    with open_for_import(path) as handle:
        rows = list(csv.DictReader(handle))
    logger.info(f"Read {len(rows)} row(s) from {path}")
    return unflatten(rows, key_fields=key_fields)


def to_json_records(table: PredxTable) -> List[Dict[str, Any]]:
    """Encode a table as JSON-ready records, skipping error records."""
    records = []
    for record in _exportable(table):
        obj = record.fields
        obj[CLASS_FIELD] = record.predx_class
        obj[JSON_PAYLOAD_FIELD] = record.value.to_payload()
        records.append(obj)
    return records


def load_record_schema(schema_path: Path = RECORD_SCHEMA_PATH) -> Dict[str, Any]:
    with open(schema_path, "r") as f:
        return json.load(f)


def _decode_record(obj: Any, index: int, schema: Dict[str, Any]) -> PredxRecord:
    if not isinstance(obj, dict):
        return PredxRecord(key=(), predx_class="", error=f"record {index} is not an object")

    key = [(k, v) for k, v in obj.items() if k not in (CLASS_FIELD, JSON_PAYLOAD_FIELD)]
    raw_tag = obj.get(CLASS_FIELD)
    try:
        try:
            jsonschema.validate(obj, schema)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path)
            where = f" at {path}" if path else ""
            raise FormatError(f"record {index}{where}: {e.message}")
        value = make_predx(raw_tag, obj[JSON_PAYLOAD_FIELD])
    except (FormatError, ValidationError) as e:
        logger.debug(f"JSON record {index} rejected: {e}")
        return PredxRecord(key=key, predx_class=tag_text(raw_tag), error=str(e))

    return PredxRecord(key=key, predx_class=value.predx_class.value, value=value)


def from_json_records(records: Iterable[Any]) -> PredxTable:
    """
    Decode JSON records into a table.

    Each record is checked against the predx record schema. A record that
    fails the schema or value validation becomes an error record.
    """
    schema = load_record_schema()
    return PredxTable(_decode_record(obj, i, schema) for i, obj in enumerate(records))


def export_json(
    table: PredxTable,
    path: Optional[PathLike] = None,
    overwrite: bool = False
) -> Union[List[Dict[str, Any]], Path]:
    """
    Export a table in the JSON form.

    Args:
        table: Table to export
        path: Destination file. If None, the records are returned instead.
        overwrite: Replace an existing destination

    Returns:
        The encoded records when path is None, otherwise the written path

    Raises:
        ExportError: If the destination exists and overwrite is False
    """
    records = to_json_records(table)
    if path is None:
        return records

    with open_for_export(path, overwrite=overwrite) as handle:
        json.dump(records, handle, indent=2, ensure_ascii=False)
        handle.write("\n")
    return Path(path)


def import_json(path: PathLike) -> PredxTable:
    """
    Import a table from a JSON file holding a list of records.

    Raises:
        PredxIOError: If the file cannot be read or is not a JSON list
    """
    with open_for_import(path) as handle:
        try:
            records = json.load(handle)
        except json.JSONDecodeError as e:
            raise PredxIOError(f"Invalid JSON in {path}: {e}")
    if not isinstance(records, list):
        raise PredxIOError(f"{path} must hold a JSON list of records")
    logger.info(f"Read {len(records)} record(s) from {path}")
    return from_json_records(records)
