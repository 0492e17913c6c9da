"""
Prediction value classes.

Each class wraps one forecast shape and validates itself on construction,
so an instance that exists is always valid:

    Point  - single numeric point estimate
    Binary - probability of a binary outcome
    BinCat - probabilities over named categories
    BinLwr - probabilities over numeric bins keyed by their lower bound
    Sample - draws from a predictive distribution

Construction failures raise ValidationError with a human-readable reason.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Sequence, Tuple, Union


# Tolerance for probability sum validation on constructed values
PROBABILITY_SUM_TOLERANCE = 1e-6

# Text values treated as missing (compared lower-cased and stripped)
MISSING_MARKERS = {"", "na", "nan", "null"}

MISSING_VALUE_MESSAGE = "NA(s) found in entry"


class ValidationError(Exception):
    """Raised when a prediction value fails validation."""
    pass


class FormatError(Exception):
    """Raised when a record has an unknown tag or lacks a required field."""
    pass


class PredxClass(str, Enum):
    """Variant tag naming the shape of a prediction."""

    POINT = "Point"
    BINARY = "Binary"
    BIN_CAT = "BinCat"
    BIN_LWR = "BinLwr"
    SAMPLE = "Sample"

    @classmethod
    def parse(cls, tag: Any) -> "PredxClass":
        """
        Resolve a raw tag to a PredxClass.

        Raises:
            FormatError: If the tag is missing or names no known class
        """
        if isinstance(tag, cls):
            return tag
        if is_missing(tag):
            raise FormatError("missing predx_class")
        try:
            return cls(str(tag).strip())
        except ValueError:
            raise FormatError(f"unknown predx_class '{tag}'")


# Payload fields each class needs to be built
REQUIRED_FIELDS: Dict[PredxClass, Tuple[str, ...]] = {
    PredxClass.POINT: ("point",),
    PredxClass.BINARY: ("prob",),
    PredxClass.BIN_CAT: ("cat", "prob"),
    PredxClass.BIN_LWR: ("lwr", "prob"),
    PredxClass.SAMPLE: ("sample",),
}

# Classes built from several rows sharing one key
MULTI_ROW_CLASSES = {PredxClass.BIN_CAT, PredxClass.BIN_LWR, PredxClass.SAMPLE}


def is_missing(value: Any) -> bool:
    """Return True for None, NaN and NA-like text."""
    if value is None:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    if isinstance(value, str):
        return value.strip().lower() in MISSING_MARKERS
    return False


def check_no_nas(values: Iterable[Any]) -> None:
    """
    Fail on the first missing entry.

    Raises:
        ValidationError: If any value is missing
    """
    if any(is_missing(v) for v in values):
        raise ValidationError(MISSING_VALUE_MESSAGE)


def _to_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} is not numeric: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} is not numeric: {value!r}")


def _check_probability(prob: float, label: str) -> None:
    if not 0.0 <= prob <= 1.0:
        raise ValidationError(f"probability {prob:g} for {label} out of range [0, 1]")


def _check_sum(probs: Sequence[float]) -> None:
    total = math.fsum(probs)
    if abs(total - 1.0) > PROBABILITY_SUM_TOLERANCE:
        raise ValidationError(f"probabilities sum to {total:.6g}, expected ~1.0")


def _as_list(values: Any, field: str) -> List[Any]:
    if is_missing(values):
        raise ValidationError(MISSING_VALUE_MESSAGE)
    if isinstance(values, (str, bytes)):
        raise ValidationError(f"{field} must be a sequence")
    try:
        return list(values)
    except TypeError:
        raise ValidationError(f"{field} must be a sequence")


def _unpack_bins(bins: Iterable[Any], what: str) -> List[Tuple[Any, Any]]:
    pairs = []
    for b in _as_list(bins, "bins"):
        try:
            key, prob = b
        except (TypeError, ValueError):
            raise ValidationError(f"bin must be a ({what}, probability) pair: {b!r}")
        pairs.append((key, prob))
    if not pairs:
        raise ValidationError("no bins")
    return pairs


def _zip_columns(keys: Sequence[Any], probs: Sequence[Any], what: str) -> List[Tuple[Any, Any]]:
    keys = _as_list(keys, what)
    probs = _as_list(probs, "prob")
    if len(keys) != len(probs):
        raise ValidationError(f"{what} and prob lengths differ ({len(keys)} vs {len(probs)})")
    return list(zip(keys, probs))


@dataclass(frozen=True)
class Point:
    """Single point estimate."""

    point: float
    predx_class: ClassVar[PredxClass] = PredxClass.POINT

    def __post_init__(self):
        check_no_nas([self.point])
        object.__setattr__(self, "point", _to_float(self.point, "point"))

    def to_payload(self) -> Dict[str, Any]:
        return {"point": self.point}


@dataclass(frozen=True)
class Binary:
    """Probability that a binary outcome occurs."""

    prob: float
    predx_class: ClassVar[PredxClass] = PredxClass.BINARY

    def __post_init__(self):
        check_no_nas([self.prob])
        prob = _to_float(self.prob, "prob")
        _check_probability(prob, "binary outcome")
        object.__setattr__(self, "prob", prob)

    def to_payload(self) -> Dict[str, Any]:
        return {"prob": self.prob}


@dataclass(frozen=True)
class BinCat:
    """
    Probabilities over named categories.

    Bins keep their input order. Categories are stored as text and must be
    unique; probabilities must each lie in [0, 1] and sum to 1.
    """

    bins: Tuple[Tuple[str, float], ...]
    predx_class: ClassVar[PredxClass] = PredxClass.BIN_CAT

    def __post_init__(self):
        pairs = _unpack_bins(self.bins, "category")
        check_no_nas([c for c, _ in pairs] + [p for _, p in pairs])

        seen = set()
        bins = []
        for cat, prob in pairs:
            cat = str(cat)
            if cat in seen:
                raise ValidationError(f"duplicate category: {cat}")
            seen.add(cat)
            prob = _to_float(prob, "prob")
            _check_probability(prob, f"category '{cat}'")
            bins.append((cat, prob))

        _check_sum([p for _, p in bins])
        object.__setattr__(self, "bins", tuple(bins))

    @classmethod
    def from_columns(cls, cat: Sequence[Any], prob: Sequence[Any]) -> "BinCat":
        return cls(tuple(_zip_columns(cat, prob, "cat")))

    @property
    def cat(self) -> Tuple[str, ...]:
        return tuple(c for c, _ in self.bins)

    @property
    def prob(self) -> Tuple[float, ...]:
        return tuple(p for _, p in self.bins)

    def to_payload(self) -> Dict[str, Any]:
        return {"cat": list(self.cat), "prob": list(self.prob)}


@dataclass(frozen=True)
class BinLwr:
    """
    Probabilities over numeric bins identified by their lower bound.

    Bins are stored sorted ascending by lower bound.
    """

    bins: Tuple[Tuple[float, float], ...]
    predx_class: ClassVar[PredxClass] = PredxClass.BIN_LWR

    def __post_init__(self):
        pairs = _unpack_bins(self.bins, "lower bound")
        check_no_nas([lwr for lwr, _ in pairs] + [p for _, p in pairs])

        seen = set()
        bins = []
        for lwr, prob in pairs:
            lwr = _to_float(lwr, "lwr")
            if lwr in seen:
                raise ValidationError(f"duplicate lower bound: {lwr:g}")
            seen.add(lwr)
            prob = _to_float(prob, "prob")
            _check_probability(prob, f"bin with lower bound {lwr:g}")
            bins.append((lwr, prob))

        _check_sum([p for _, p in bins])
        bins.sort(key=lambda b: b[0])
        object.__setattr__(self, "bins", tuple(bins))

    @classmethod
    def from_columns(cls, lwr: Sequence[Any], prob: Sequence[Any]) -> "BinLwr":
        return cls(tuple(_zip_columns(lwr, prob, "lwr")))

    @property
    def lwr(self) -> Tuple[float, ...]:
        return tuple(lwr for lwr, _ in self.bins)

    @property
    def prob(self) -> Tuple[float, ...]:
        return tuple(p for _, p in self.bins)

    def to_payload(self) -> Dict[str, Any]:
        return {"lwr": list(self.lwr), "prob": list(self.prob)}


@dataclass(frozen=True)
class Sample:
    """Draws from a predictive distribution."""

    sample: Tuple[float, ...]
    predx_class: ClassVar[PredxClass] = PredxClass.SAMPLE

    def __post_init__(self):
        draws = tuple(_as_list(self.sample, "sample"))
        if not draws:
            raise ValidationError("empty sample")
        check_no_nas(draws)
        object.__setattr__(self, "sample", tuple(_to_float(d, "sample") for d in draws))

    def to_payload(self) -> Dict[str, Any]:
        return {"sample": list(self.sample)}


PredxValue = Union[Point, Binary, BinCat, BinLwr, Sample]


def make_predx(predx_class: Any, payload: Mapping[str, Any]) -> PredxValue:
    """
    Build a prediction value from its tag and payload fields.

    Args:
        predx_class: Variant tag (PredxClass or its string name)
        payload: Mapping holding the fields listed in REQUIRED_FIELDS;
            BinCat/BinLwr/Sample fields are sequences

    Returns:
        Validated prediction value

    Raises:
        FormatError: If the tag is unknown or a required field is absent
        ValidationError: If the payload fails the class's rules
    """
    tag = PredxClass.parse(predx_class)
    absent = [f for f in REQUIRED_FIELDS[tag] if f not in payload]
    if absent:
        raise FormatError(f"{tag.value} record missing field(s): {', '.join(absent)}")

    if tag is PredxClass.POINT:
        return Point(payload["point"])
    if tag is PredxClass.BINARY:
        return Binary(payload["prob"])
    if tag is PredxClass.BIN_CAT:
        return BinCat.from_columns(payload["cat"], payload["prob"])
    if tag is PredxClass.BIN_LWR:
        return BinLwr.from_columns(payload["lwr"], payload["prob"])
    if tag is PredxClass.SAMPLE:
        return Sample(payload["sample"])
    raise FormatError(f"unhandled predx_class '{tag.value}'")
