"""
Conversion of raw forecast rows into a predx table.

Every input row lands in exactly one output record. Point and Binary rows
map one-to-one; BinCat, BinLwr and Sample rows sharing a row key are
collapsed into a single record placed where the group's first row was.
A row that cannot be built yields an error record instead of aborting the
batch. Only ambiguous grouping is fatal.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .classes import (
    MULTI_ROW_CLASSES,
    REQUIRED_FIELDS,
    FormatError,
    PredxClass,
    ValidationError,
    is_missing,
    make_predx,
)
from .table import PredxRecord, PredxTable

logger = logging.getLogger(__name__)

# Columns holding prediction payloads; everything else describes the row
PAYLOAD_FIELDS = ("point", "prob", "cat", "lwr", "sample")
CLASS_FIELD = "predx_class"

# Raw binned probabilities summing within this band are rescaled to 1
NORMALIZE_LOWER = 0.9
NORMALIZE_UPPER = 1.1


class GroupingError(Exception):
    """Raised when rows meant to form one record disagree on shared fields."""
    pass


@dataclass
class _Group:
    slot: int
    tag: PredxClass
    key: List[Tuple[str, Any]]
    rows: List[Mapping[str, Any]] = field(default_factory=list)


def normalize_probs(probs: Sequence[Any]) -> List[Any]:
    """
    Rescale probabilities by their sum when it is close to 1.

    The sum must lie in [NORMALIZE_LOWER, NORMALIZE_UPPER], both ends
    included. Otherwise, or when an entry is missing or not numeric, the
    input comes back unchanged and construction decides.

    Args:
        probs: Raw probabilities of one binned prediction

    Returns:
        List of probabilities
    """
    if any(is_missing(p) for p in probs):
        return list(probs)
    try:
        values = [float(p) for p in probs]
    except (TypeError, ValueError):
        return list(probs)

    total = math.fsum(values)
    if NORMALIZE_LOWER <= total <= NORMALIZE_UPPER:
        return [v / total for v in values]
    return list(probs)


def descriptive_fields(row: Mapping[str, Any]) -> List[Tuple[str, Any]]:
    """Row key fields of a raw row, in column order."""
    return [
        (name, value) for name, value in row.items()
        if name not in PAYLOAD_FIELDS and name != CLASS_FIELD
    ]


def _grouping_key(
    key: List[Tuple[str, Any]],
    key_fields: Optional[Sequence[str]]
) -> Tuple[Tuple[str, Any], ...]:
    if key_fields is None:
        return tuple(sorted(key, key=lambda kv: kv[0]))
    values = dict(key)
    return tuple((name, values.get(name)) for name in key_fields)


def _spread_draws(cells: Sequence[Any]) -> List[Any]:
    # A cell may hold a single draw or a whole list of draws
    draws: List[Any] = []
    for cell in cells:
        if isinstance(cell, (list, tuple)):
            draws.extend(cell)
        else:
            draws.append(cell)
    return draws


def tag_text(tag: Any) -> str:
    if isinstance(tag, PredxClass):
        return tag.value
    return "" if is_missing(tag) else str(tag)


def _build(key: List[Tuple[str, Any]], tag: PredxClass, payload: Mapping[str, Any]) -> PredxRecord:
    try:
        value = make_predx(tag, payload)
    except (ValidationError, FormatError) as e:
        logger.debug(f"{tag.value} record {dict(key)} failed: {e}")
        return PredxRecord(key=key, predx_class=tag.value, error=str(e))
    return PredxRecord(key=key, predx_class=tag.value, value=value)


def to_predx(
    rows: Iterable[Mapping[str, Any]],
    predx_class: Any = None,
    key_fields: Optional[Sequence[str]] = None,
    normalize: bool = False
) -> PredxTable:
    """
    Convert raw rows into a predx table.

    Args:
        rows: Mappings of field name to raw value. Payload fields are
            point, prob, cat, lwr and sample; the rest form the row key.
            A Sample row may carry one draw or a list of draws.
        predx_class: Tag applied to every row. If None, each row's
            predx_class field is used.
        key_fields: Fields that decide which rows group together. Other
            descriptive fields must then agree within a group. If None,
            all descriptive fields are used.
        normalize: Rescale BinCat/BinLwr probabilities summing within
            [0.9, 1.1] before validation

    Returns:
        PredxTable with failures stored inline as error records

    Raises:
        FormatError: If predx_class is given but is not a known tag
        GroupingError: If rows in one group disagree on a shared field
    """
    forced_tag = PredxClass.parse(predx_class) if predx_class is not None else None

    slots: List[Optional[PredxRecord]] = []
    groups: Dict[Tuple[Any, ...], _Group] = {}

    for index, row in enumerate(rows):
        key = descriptive_fields(row)
        raw_tag = forced_tag if forced_tag is not None else row.get(CLASS_FIELD)

        try:
            tag = PredxClass.parse(raw_tag)
            absent = [f for f in REQUIRED_FIELDS[tag] if f not in row]
            if absent:
                raise FormatError(f"{tag.value} row missing field(s): {', '.join(absent)}")
        except FormatError as e:
            logger.debug(f"row {index} rejected: {e}")
            slots.append(PredxRecord(key=key, predx_class=tag_text(raw_tag), error=str(e)))
            continue

        if tag not in MULTI_ROW_CLASSES:
            payload = {f: row[f] for f in REQUIRED_FIELDS[tag]}
            slots.append(_build(key, tag, payload))
            continue

        group_id = (tag, _grouping_key(key, key_fields))
        group = groups.get(group_id)
        if group is None:
            group = _Group(slot=len(slots), tag=tag, key=key)
            groups[group_id] = group
            slots.append(None)
        elif dict(group.key) != dict(key):
            shared = dict(group.key)
            differing = sorted(
                name for name in set(shared) | set(dict(key))
                if shared.get(name) != dict(key).get(name)
            )
            raise GroupingError(
                f"row {index} disagrees with its {tag.value} group "
                f"{dict(group_id[1])} on field(s): {', '.join(differing)}"
            )
        group.rows.append(row)

    for group in groups.values():
        payload = {f: [r[f] for r in group.rows] for f in REQUIRED_FIELDS[group.tag]}
        if "sample" in payload:
            payload["sample"] = _spread_draws(payload["sample"])
        if normalize and "prob" in payload:
            payload["prob"] = normalize_probs(payload["prob"])
        slots[group.slot] = _build(group.key, group.tag, payload)

    table = PredxTable(slots)
    n_errors = len(table.errors())
    logger.info(f"Converted {len(table)} record(s), {n_errors} failed validation")
    return table
