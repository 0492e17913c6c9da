"""
Expected-set verification for predx tables.

An expected specification is a list of requirement blocks. Each block maps
field names to the values that field must take, and stands for every
combination of those values. For example

    {"target": ["habitability"], "location": ["Mercury", "Venus"],
     "predx_class": ["Binary"]}

requires two Binary predictions. The fields "cat" and "lwr" address the
individual bins of BinCat and BinLwr predictions.

Verification expands every block into its keys, collects the keys present
among the valid records of a table, and reports both differences:
missing keys (required but absent) and unexpected keys (present but
matching no block). Error records count as absent.
"""

import itertools
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

import jsonschema
import yaml

from .classes import PredxClass
from .convert import CLASS_FIELD
from .table import PredxRecord, PredxTable

logger = logging.getLogger(__name__)

EXPECTED_SCHEMA_PATH = Path(__file__).parent / "schemas" / "expected.schema.json"

# Fields naming one bin of a binned prediction
BIN_FIELDS = {
    "cat": PredxClass.BIN_CAT,
    "lwr": PredxClass.BIN_LWR,
}

# A key is a tuple of (field, value) pairs sorted by field name
Key = Tuple[Tuple[str, Any], ...]
Block = Dict[str, Tuple[Any, ...]]

ALL_PRESENT_MESSAGE = "All expected predictions present, no unexpected predictions."


class ExpectedSpecError(Exception):
    """Raised when an expected specification is malformed."""
    pass


def canonical_value(field: str, value: Any) -> Any:
    """
    Bring a field value to the form used for comparison.

    Lower bounds compare as floats so that 1, 1.0 and "1.0" agree; every
    other field compares as text.
    """
    if field == "lwr":
        try:
            return float(value)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def normalize_expected(expected: Sequence[Mapping[str, Any]]) -> List[Block]:
    """
    Canonicalize an expected specification.

    Scalars become one-element value sets, duplicate values are dropped
    and values are brought to canonical form.

    Raises:
        ExpectedSpecError: If expected is not a list of mappings
    """
    if isinstance(expected, Mapping) or isinstance(expected, (str, bytes)):
        raise ExpectedSpecError("expected must be a list of requirement blocks")

    blocks = []
    for i, block in enumerate(expected):
        if not isinstance(block, Mapping):
            raise ExpectedSpecError(f"requirement block {i} must be a mapping")
        normalized: Block = {}
        for field, values in block.items():
            if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
                values = [values]
            canonical = []
            for v in values:
                c = canonical_value(field, v)
                if c not in canonical:
                    canonical.append(c)
            normalized[str(field)] = tuple(canonical)
        blocks.append(normalized)
    return blocks


def expand_block(block: Block) -> Iterator[Key]:
    """
    Yield every key a block requires.

    The number of keys is the product of the value set sizes, so a block
    with an empty value set (or no fields) yields nothing.
    """
    fields = sorted(block)
    if not fields:
        return
    for combo in itertools.product(*(block[f] for f in fields)):
        yield tuple(zip(fields, combo))


def expected_keys(expected: Sequence[Mapping[str, Any]]) -> Set[Key]:
    """Union of the keys required by all blocks."""
    keys: Set[Key] = set()
    for block in normalize_expected(expected):
        keys.update(expand_block(block))
    return keys


def record_atoms(record: PredxRecord) -> List[Dict[str, Any]]:
    """
    Addressable units of a valid record.

    A BinCat or BinLwr record gives one atom per bin, carrying the bin's
    cat or lwr; any other record gives a single atom.
    """
    base = {name: canonical_value(name, value) for name, value in record.key}
    base[CLASS_FIELD] = record.predx_class

    value = record.value
    if value.predx_class is PredxClass.BIN_CAT:
        return [dict(base, cat=canonical_value("cat", c)) for c in value.cat]
    if value.predx_class is PredxClass.BIN_LWR:
        return [dict(base, lwr=canonical_value("lwr", lwr)) for lwr in value.lwr]
    return [base]


def _project(atom: Mapping[str, Any], fields: Sequence[str]) -> Optional[Key]:
    if any(f not in atom for f in fields):
        return None
    return tuple((f, atom[f]) for f in fields)


def _matches(atom: Mapping[str, Any], block: Block) -> bool:
    if not block:
        return False
    return all(f in atom and atom[f] in block[f] for f in block)


def _sort_key(key: Key) -> Tuple[Any, ...]:
    return tuple(
        (field, (0, value, "") if isinstance(value, float) else (1, 0.0, str(value)))
        for field, value in key
    )


@dataclass(frozen=True)
class VerificationResult:
    """
    Outcome of verify_expected().

    Attributes:
        missing: Required keys with no valid record
        unexpected: Keys of valid records matching no requirement block
    """

    missing: FrozenSet[Key]
    unexpected: FrozenSet[Key]

    @property
    def ok(self) -> bool:
        return not self.missing and not self.unexpected

    def sorted_missing(self) -> List[Key]:
        return sorted(self.missing, key=_sort_key)

    def sorted_unexpected(self) -> List[Key]:
        return sorted(self.unexpected, key=_sort_key)

    def format_report(self) -> str:
        """Human-readable summary listing every discrepancy."""
        if self.ok:
            return ALL_PRESENT_MESSAGE

        def fmt(key: Key) -> str:
            return ", ".join(f"{field}={value}" for field, value in key)

        lines = []
        if self.missing:
            lines.append(f"Missing {len(self.missing)} expected prediction(s):")
            lines.extend(f"  {fmt(k)}" for k in self.sorted_missing())
        else:
            lines.append("All expected predictions present.")
        if self.unexpected:
            lines.append(f"Found {len(self.unexpected)} unexpected prediction(s):")
            lines.extend(f"  {fmt(k)}" for k in self.sorted_unexpected())
        else:
            lines.append("No unexpected predictions.")
        return "\n".join(lines)

    def to_records(self) -> List[Dict[str, Any]]:
        """One dict per discrepancy, with status "missing" or "unexpected"."""
        records = [dict(k, status="missing") for k in self.sorted_missing()]
        records.extend(dict(k, status="unexpected") for k in self.sorted_unexpected())
        return records


def verify_expected(
    table: PredxTable,
    expected: Sequence[Mapping[str, Any]]
) -> VerificationResult:
    """
    Compare a table against an expected specification.

    Args:
        table: Table to check; only valid records count as present
        expected: List of requirement blocks

    Returns:
        VerificationResult with missing and unexpected keys

    Raises:
        ExpectedSpecError: If expected is malformed
    """
    blocks = normalize_expected(expected)
    atoms = [atom for record in table if record.ok for atom in record_atoms(record)]

    # Present keys, projected once per distinct block shape
    present: Dict[Tuple[str, ...], Set[Key]] = {}
    missing: Set[Key] = set()
    for block in blocks:
        fields = tuple(sorted(block))
        if fields not in present:
            present[fields] = {
                k for k in (_project(a, fields) for a in atoms) if k is not None
            }
        missing.update(k for k in expand_block(block) if k not in present[fields])

    report_fields = sorted({f for block in blocks for f in block})
    unexpected: Set[Key] = set()
    for atom in atoms:
        if any(_matches(atom, block) for block in blocks):
            continue
        fields = [f for f in report_fields if f in atom] or sorted(atom)
        unexpected.add(tuple((f, atom[f]) for f in fields))

    n_errors = len(table.errors())
    if n_errors:
        logger.info(f"{n_errors} error record(s) treated as absent")
    logger.info(f"Verification: {len(missing)} missing, {len(unexpected)} unexpected")
    return VerificationResult(missing=frozenset(missing), unexpected=frozenset(unexpected))


def check_expected(
    table: PredxTable,
    expected: Sequence[Mapping[str, Any]],
    as_records: bool = False
) -> Union[str, List[Dict[str, Any]]]:
    """
    Verify a table and return the report text, or records if as_records.

    The records form is an empty list when nothing is missing or unexpected.
    """
    result = verify_expected(table, expected)
    if as_records:
        return result.to_records()
    return result.format_report()


def load_expected_schema(schema_path: Path = EXPECTED_SCHEMA_PATH) -> Dict[str, Any]:
    with open(schema_path, "r") as f:
        return json.load(f)


def validate_expected(expected: Any, schema_path: Path = EXPECTED_SCHEMA_PATH) -> bool:
    """
    Validate an expected specification against its JSON schema.

    Raises:
        ExpectedSpecError: If validation fails
    """
    try:
        jsonschema.validate(expected, load_expected_schema(schema_path))
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path)
        if path:
            raise ExpectedSpecError(f"Invalid expected specification at {path}: {e.message}")
        raise ExpectedSpecError(f"Invalid expected specification: {e.message}")
    return True


def load_expected(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Load an expected specification from a YAML or JSON file.

    Args:
        path: File ending in .json (parsed as JSON) or anything else
            (parsed as YAML)

    Returns:
        List of requirement blocks

    Raises:
        FileNotFoundError: If the file doesn't exist
        ExpectedSpecError: If the file can't be parsed or fails validation
    """
    path = Path(path)
    with open(path, "r") as f:
        try:
            if path.suffix.lower() == ".json":
                expected = json.load(f)
            else:
                expected = yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ExpectedSpecError(f"Cannot parse {path}: {e}")

    validate_expected(expected)
    return expected
