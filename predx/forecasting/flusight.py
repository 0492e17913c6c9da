"""
FluSight challenge adapter.

Converts between FluSight submission CSVs (columns Location, Target, Type,
Unit, Bin_start_incl, Bin_end_notincl, Value) and predx tables, and
provides the expected specifications for the FluSight challenges.

Row classification:
    Type == Point                               -> Point
    Type == Bin, onset / peak week targets      -> BinCat (weeks)
    Type == Bin, peak percentage / k wk ahead   -> BinLwr (percent)

Binned probabilities summing within [0.9, 1.1] are rescaled to sum to 1
on import. Point rows with missing values are dropped, since Point does
not allow missing values.
"""

import csv
import logging
import re
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .classes import PredxClass, is_missing
from .convert import CLASS_FIELD, to_predx
from .interchange import PathLike, flatten, open_for_import, write_rows_csv
from .table import PredxTable

logger = logging.getLogger(__name__)

# EW<mmwr week>-<team>-<submission date>.csv
FILENAME_PATTERN = re.compile(
    r"EW(?P<mmwr_week>\d{1,2})-(?P<team>.*)-(?P<submission_date>\d{4}-\d{2}-\d{2})"
)

FLUSIGHT_COLUMNS = [
    "location", "target", "type", "unit", "bin_start_incl", "bin_end_notincl", "value",
]

BINCAT_TARGETS = ("Season onset", "Season peak week")
BINLWR_TARGETS = (
    "Season peak percentage", "1 wk ahead", "2 wk ahead", "3 wk ahead", "4 wk ahead",
)

# Upper percent bin is open-ended and reported as ending at 100
LAST_PERCENT_LWR = 13.0

WEEK_CATS = tuple(str(w) for w in list(range(40, 53)) + list(range(1, 21)))

# Exclusive end of each week bin, keyed by bin start
BIN_END_NOTINCL = MappingProxyType({
    **{week: f"{int(week) + 1}.0" for week in WEEK_CATS},
    "none": "none",
})

HHS_REGIONS = (
    "HHS Region 1", "HHS Region 10", "HHS Region 2", "HHS Region 3",
    "HHS Region 4", "HHS Region 5", "HHS Region 6", "HHS Region 7",
    "HHS Region 8", "HHS Region 9", "US National",
)

STATES = (
    "Alabama", "Alaska", "Arizona", "Arkansas", "California", "Colorado",
    "Connecticut", "Delaware", "District of Columbia", "Georgia",
    "Hawaii", "Idaho", "Illinois", "Indiana", "Iowa", "Kansas", "Kentucky",
    "Louisiana", "Maine", "Maryland", "Massachusetts", "Michigan",
    "Minnesota", "Mississippi", "Missouri", "Montana", "Nebraska",
    "Nevada", "New Hampshire", "New Jersey", "New Mexico", "New York",
    "North Carolina", "North Dakota", "Ohio", "Oklahoma", "Oregon",
    "Pennsylvania", "Puerto Rico", "Rhode Island", "South Carolina",
    "South Dakota", "Tennessee", "Texas", "Utah", "Vermont", "Virgin Islands",
    "Virginia", "Washington", "West Virginia", "Wisconsin", "Wyoming",
)

HOSPITALIZATION_AGE_GROUPS = (
    "Overall", "0-4 yr", "5-17 yr", "18-49 yr", "50-64 yr", "65+ yr",
)


def percent_lwr() -> List[float]:
    """Lower bounds of the 0.1-wide percent bins, 0 through 13."""
    return [round(i * 0.1, 1) for i in range(131)]


def classify_row(row_type: Any, target: Any) -> Optional[PredxClass]:
    """Predx class of a FluSight row, or None if it fits no class."""
    if row_type == "Point":
        return PredxClass.POINT
    if row_type == "Bin" and target in BINCAT_TARGETS:
        return PredxClass.BIN_CAT
    if row_type == "Bin" and target in BINLWR_TARGETS:
        return PredxClass.BIN_LWR
    return None


def _week_cat(bin_start: Any) -> Any:
    # Exported week bins start at "40.0"; categories are "40"
    if isinstance(bin_start, str) and re.fullmatch(r"\d+\.0", bin_start.strip()):
        return bin_start.strip()[:-2]
    return bin_start


def prep_flusight(rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Turn FluSight rows into generic rows ready for to_predx().

    Headers are lower-cased, each row gets its predx_class and payload
    fields, and the FluSight-only columns are dropped.

    Args:
        rows: FluSight rows, e.g. from csv.DictReader

    Returns:
        List of generic rows
    """
    prepped = []
    dropped = 0
    for raw in rows:
        row = {str(name).lower(): value for name, value in raw.items()}
        tag = classify_row(row.pop("type", None), row.get("target"))
        value = row.pop("value", None)
        bin_start = row.pop("bin_start_incl", None)
        row.pop("bin_end_notincl", None)

        row[CLASS_FIELD] = tag.value if tag is not None else None
        row["point"] = value if tag is PredxClass.POINT else None
        row["prob"] = value if tag in (PredxClass.BIN_CAT, PredxClass.BIN_LWR) else None
        row["cat"] = _week_cat(bin_start) if tag is PredxClass.BIN_CAT else None
        row["lwr"] = bin_start if tag is PredxClass.BIN_LWR else None

        if tag is PredxClass.POINT and is_missing(row["point"]):
            dropped += 1
            continue
        prepped.append(row)

    if dropped:
        logger.info(f"Dropped {dropped} Point row(s) with missing values")
    return prepped


def parse_filename(path: PathLike) -> Dict[str, Any]:
    """
    Extract team, MMWR week and submission date from a submission file name.

    Returns:
        Dictionary with team, mmwr_week (int) and submission_date; values
        are None if the name doesn't follow EW<week>-<team>-<date>.csv
    """
    match = FILENAME_PATTERN.search(Path(path).name)
    if match is None:
        logger.warning(f"File name {Path(path).name} does not match EW<week>-<team>-<date>.csv")
        return {"team": None, "mmwr_week": None, "submission_date": None}
    return {
        "team": match.group("team"),
        "mmwr_week": int(match.group("mmwr_week")),
        "submission_date": match.group("submission_date"),
    }


def import_flusight_csv(path: PathLike) -> PredxTable:
    """
    Read a FluSight submission CSV into a predx table.

    Team, MMWR week and submission date are taken from the file name and
    added to every row key.

    Raises:
        PredxIOError: If the file cannot be read
    """
    meta = parse_filename(path)
    with open_for_import(path) as handle:
        rows = [dict(row, **meta) for row in csv.DictReader(handle)]
    logger.info(f"Read {len(rows)} FluSight row(s) from {path}")
    return to_predx(prep_flusight(rows), normalize=True)


def _single(table: PredxTable, field: str) -> Any:
    values = {record.get(field) for record in table}
    if len(values) != 1:
        raise ValueError(
            "table contains more than one team, mmwr_week, or submission_date. "
            "These variables are not included in the FluSight template"
        )
    return values.pop()


def _flusight_row(flat: Mapping[str, Any]) -> Dict[str, Any]:
    tag = flat[CLASS_FIELD]
    unit = flat.get("unit")
    is_bin = tag in (PredxClass.BIN_CAT.value, PredxClass.BIN_LWR.value)

    row_type = None
    if is_bin:
        row_type = "Bin"
    elif tag == PredxClass.POINT.value:
        row_type = "Point"

    bin_start = bin_end = None
    if is_bin and unit == "percent" and flat.get("lwr") is not None:
        lwr = flat["lwr"]
        bin_start = f"{lwr:.1f}"
        bin_end = "100.0" if lwr == LAST_PERCENT_LWR else f"{lwr + 0.1:.1f}"
    elif is_bin and unit == "week" and flat.get("cat") is not None:
        cat = flat["cat"]
        bin_start = "none" if cat == "none" else f"{cat}.0"
        bin_end = BIN_END_NOTINCL.get(cat)

    if is_bin:
        value = flat["prob"]
    elif row_type == "Point":
        value = flat["point"]
    else:
        value = None

    return {
        "location": flat.get("location"),
        "target": flat.get("target"),
        "type": row_type,
        "unit": unit,
        "bin_start_incl": bin_start,
        "bin_end_notincl": bin_end,
        "value": value,
    }


def export_flusight_csv(
    table: PredxTable,
    directory: Optional[PathLike] = None,
    overwrite: bool = False
) -> Union[List[Dict[str, Any]], Path]:
    """
    Export a table as a FluSight submission.

    Args:
        table: Table holding one team, MMWR week and submission date
        directory: Output directory. If None, the rows are returned instead.
        overwrite: Replace an existing submission file

    Returns:
        FluSight rows when directory is None, otherwise the written path

    Raises:
        ValueError: If the table mixes teams, weeks or submission dates
        ExportError: If the file exists and overwrite is False
    """
    team = _single(table, "team")
    mmwr_week = _single(table, "mmwr_week")
    submission_date = _single(table, "submission_date")

    rows = [_flusight_row(flat) for flat in flatten(table)]
    if directory is None:
        return rows

    path = Path(directory) / f"EW{mmwr_week}-{team}-{submission_date}.csv"
    return write_rows_csv(rows, path, fieldnames=FLUSIGHT_COLUMNS, overwrite=overwrite)


def to_flusight_pkg_format(table: PredxTable) -> List[Dict[str, Any]]:
    """FluSight rows with integer bin starts as decimals and a forecast_week column."""
    mmwr_week = _single(table, "mmwr_week")
    rows = export_flusight_csv(table)
    for row in rows:
        start = row["bin_start_incl"]
        if start is not None and re.fullmatch(r"\d+", start):
            row["bin_start_incl"] = f"{start}.0"
        row["forecast_week"] = int(mmwr_week) if mmwr_week else None
    return rows


def _expected(locations: Iterable[str], onset: bool) -> List[Dict[str, Any]]:
    locations = list(locations)
    blocks = [
        {
            "target": list(BINLWR_TARGETS),
            "location": locations,
            "predx_class": "BinLwr",
            "lwr": percent_lwr(),
        },
        {
            "target": "Season peak week",
            "location": locations,
            "predx_class": "BinCat",
            "cat": list(WEEK_CATS),
        },
    ]
    point_targets = list(BINLWR_TARGETS)
    if onset:
        blocks.append({
            "target": "Season onset",
            "location": locations,
            "predx_class": "BinCat",
            "cat": list(WEEK_CATS) + ["none"],
        })
        point_targets.append("Season onset")
    point_targets.append("Season peak week")
    blocks.append({
        "target": point_targets,
        "location": locations,
        "predx_class": "Point",
    })
    return blocks


def flusight_ilinet_expected() -> List[Dict[str, Any]]:
    """Expected predictions for the national/regional ILINet challenge."""
    return _expected(HHS_REGIONS, onset=True)


def flusight_state_ilinet_expected() -> List[Dict[str, Any]]:
    """Expected predictions for the state ILINet challenge (no onset target)."""
    return _expected(STATES, onset=False)


def flusight_hospitalization_expected() -> List[Dict[str, Any]]:
    """Expected predictions for the hospitalization challenge (no onset target)."""
    return _expected(HOSPITALIZATION_AGE_GROUPS, onset=False)


EXPECTED_PRESETS = {
    "flusight-ilinet": flusight_ilinet_expected,
    "flusight-state-ilinet": flusight_state_ilinet_expected,
    "flusight-hospitalization": flusight_hospitalization_expected,
}
